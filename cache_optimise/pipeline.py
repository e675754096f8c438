"""
The optimisation run: discover cache entries, then take each one through
validation, CSS collection, render, purge, rewrite and write, one at a time.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from cache_optimise.annotator import annotate_optimised_tree
from cache_optimise.cache_status import CacheStatusProbe
from cache_optimise.config import OptimiseSettings
from cache_optimise.css_sources import collect_css_sources, original_css
from cache_optimise.discovery import discover_entries
from cache_optimise.errors import (
    EntrySkipped,
    LockHeld,
    NoCssFound,
    NotFoundPage,
    Outcome,
)
from cache_optimise.lock import RunLock
from cache_optimise.models import CacheEntry, ProcessingState
from cache_optimise.protocols import PurgeTool, Renderer
from cache_optimise.purge import (
    PurgeCssTool,
    combine_css,
    finalise_css,
    parse_purge_output,
    read_supplemental_css,
)
from cache_optimise.render import NodeRenderer
from cache_optimise.rewriter import HtmlRewriter, detect_state, parse_html
from cache_optimise.runlog import close_run_log, configure_run_log
from cache_optimise.validator import ensure_valid
from cache_optimise.writer import ScratchSpace, write_entry

logger = logging.getLogger(__name__)

NOT_FOUND_MARKER = "Error 404"


@dataclass
class EntryResult:
    path: Path
    outcome: Outcome
    detail: str = ""


@dataclass
class RunReport:
    """Collects one result per processed entry."""

    results: List[EntryResult] = field(default_factory=list)

    def record(self, result: EntryResult) -> None:
        self.results.append(result)

    def counts(self) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in Outcome}
        for result in self.results:
            counts[result.outcome.value] += 1
        return counts

    def outcome_for(self, path: Path) -> Optional[Outcome]:
        for result in self.results:
            if result.path == Path(path):
                return result.outcome
        return None


def size_reduction(before: int, after: int) -> float:
    """Percentage saved going from ``before`` to ``after`` bytes."""
    if before <= 0:
        return 0.0
    return 100 - (after / before) * 100


class Optimiser:
    """Runs the per-entry pipeline over the cache store.

    Collaborators are injected so the run can be exercised without a browser
    or the purge CLI; by default they are built from the settings.
    """

    def __init__(
        self,
        settings: OptimiseSettings,
        renderer: Optional[Renderer] = None,
        purger: Optional[PurgeTool] = None,
        probe: Optional[CacheStatusProbe] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.renderer = renderer or NodeRenderer(
            settings.render_command, settings.host, timeout=settings.render_timeout
        )
        self.purger = purger or PurgeCssTool(settings.purge_command, timeout=settings.purge_timeout)
        self.probe = probe or CacheStatusProbe(settings.cache_root, settings.domain)
        self.rewriter = HtmlRewriter(settings, self.probe, clock=clock)

    # -------------------------------
    # Helpers
    # -------------------------------

    def _dbg(self, msg: str, *args) -> None:
        """Debug log gated by the ``debug`` setting."""
        if not self.settings.debug:
            return
        logger.debug("[optimise] " + msg, *args)

    def _write(self, entry: CacheEntry, html: str) -> None:
        write_entry(
            entry.path,
            html,
            gzip_variant=self.settings.gzip_variant,
            gzip_level=self.settings.gzip_level,
        )

    # -------------------------------
    # Run
    # -------------------------------

    def discover(self, only: Optional[Iterable[Path]] = None) -> List[CacheEntry]:
        entries = discover_entries(self.settings.cache_root, self.settings.domain)
        if only is None:
            return entries
        wanted = {Path(p).resolve() for p in only}
        return [e for e in entries if e.path.resolve() in wanted]

    def run(
        self,
        only: Optional[Iterable[Path]] = None,
        lock: Optional[RunLock] = None,
        report: Optional[RunReport] = None,
    ) -> RunReport:
        report = report if report is not None else RunReport()
        entries = self.discover(only)
        total = len(entries)

        for index, entry in enumerate(entries, start=1):
            if lock is not None:
                lock.heartbeat()
            logger.info("Checking %d/%d %s", index, total, entry.path)
            result = self.process_entry(entry)
            if result.outcome == Outcome.OPTIMISED:
                logger.info("Done %d/%d files for optimisation", index, total)
            elif result.outcome == Outcome.FAILED:
                logger.error("FAIL %d/%d %s: %s", index, total, entry.path, result.detail)
            elif result.detail:
                logger.info("Skipped %s: %s", entry.path, result.detail)
            report.record(result)

        logger.info("Run finished: %s", report.counts())
        return report

    def process_entry(self, entry: CacheEntry) -> EntryResult:
        """Process one entry; per-entry failures become the result's outcome."""
        try:
            outcome = self._process(entry)
        except EntrySkipped as e:
            return EntryResult(entry.path, e.outcome, e.message)
        return EntryResult(entry.path, outcome)

    def _process(self, entry: CacheEntry) -> Outcome:
        try:
            entry.content = entry.path.read_bytes()
        except FileNotFoundError:
            raise EntrySkipped(f"entry vanished: {entry.path}") from None

        html = entry.text()
        if NOT_FOUND_MARKER in html:
            raise NotFoundPage("404 placeholder")
        ensure_valid(html, "pre")

        soup = parse_html(html)
        entry.state = detect_state(soup, self.settings.footer_comment)
        entry.footprint = entry.state != ProcessingState.UNPROCESSED

        if entry.footprint:
            annotated = annotate_optimised_tree(soup, self.probe)
            if annotated is None:
                self._dbg("Already inlined %s", entry.path)
                return Outcome.UNCHANGED
            self._write(entry, annotated)
            entry.state = ProcessingState.ANNOTATED
            return Outcome.ANNOTATED

        with ScratchSpace(self.settings.temp_prefix) as scratch:
            output = self._optimise(entry, html, soup, scratch)
            self._write(entry, output)

        entry.state = ProcessingState.OPTIMISED
        return Outcome.OPTIMISED

    def _optimise(self, entry: CacheEntry, html: str, soup: BeautifulSoup, scratch: ScratchSpace) -> str:
        sources = collect_css_sources(soup, self.settings.domain, self.settings.site_root, scratch)
        if not sources:
            raise NoCssFound("no CSS found")
        for source in sources:
            self._dbg("CSS source %s (%s)", source.path, source.origin)

        baseline = original_css(sources)
        logger.info("Original CSS length is %d from %d sources", len(baseline), len(sources))

        render = self.renderer.render(entry.path)
        logger.info("Got html length %d", len(render.html))
        self._dbg("Extra inline CSS length %d", len(render.intrinsic_css))

        # Rendered and original markup both count as evidence of used selectors.
        content_file = scratch.write(render.html + html)
        css_file = scratch.write(baseline)
        fragments = parse_purge_output(self.purger.purge(css_file, content_file))

        combined = combine_css(
            fragments,
            read_supplemental_css(self.settings.supplemental_css),
            render.intrinsic_css,
        )
        logger.info("Combined CSS length %d", len(combined.text))
        css = finalise_css(combined)
        logger.info(
            "New CSS length is %d vs %d %.2f%%",
            len(css),
            len(baseline),
            size_reduction(len(baseline), len(css)),
        )

        output = self.rewriter.rewrite_tree(soup, css, render)
        return ensure_valid(output, "post")


def run_once(
    settings: OptimiseSettings,
    only: Optional[Iterable[Path]] = None,
    optimiser: Optional[Optimiser] = None,
) -> Optional[RunReport]:
    """Run under the process-wide lock. Returns None if another run holds it."""
    lock = RunLock(settings.lockfile)
    try:
        lock.acquire()
    except LockHeld:
        return None

    handler = None
    try:
        handler = configure_run_log(settings)
        optimiser = optimiser or Optimiser(settings)
        return optimiser.run(only=only, lock=lock)
    finally:
        close_run_log(handler)
        lock.release()
