"""Unused-CSS purge collaborator and CSS combination."""

import json
import logging
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from cache_optimise.errors import PurgeFragmentMissing, PurgeUnavailable
from cache_optimise.minify import demote_preserved_comments, minify_css
from cache_optimise.models import CombinedCss

logger = logging.getLogger(__name__)


def _record_css(record) -> str:
    if not isinstance(record, dict):
        raise PurgeFragmentMissing(f"purge record is not an object: {type(record).__name__}")
    css = record.get("css")
    file_ref = record.get("file")
    if not isinstance(css, str) or not file_ref:
        raise PurgeFragmentMissing(f"purge record lacks css/file: keys={sorted(record)}")
    return css


def parse_purge_output(lines: Iterable[str]) -> List[str]:
    """Return the retained CSS of every well-formed purge record, in output order.

    Each line holds JSON: either a list of records or a single record. Lines
    or records without both ``css`` and ``file`` are logged and dropped.
    """
    fragments: List[str] = []
    for number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except ValueError:
            logger.warning("Dropping purge output line %d: not JSON", number)
            continue
        records = payload if isinstance(payload, list) else [payload]
        for record in records:
            try:
                fragments.append(_record_css(record))
            except PurgeFragmentMissing as e:
                logger.warning("Dropping purge output line %d: %s", number, e)
    return fragments


class PurgeCssTool:
    """Run the purge CLI once per entry: ``<command...> --css FILE --content FILE``."""

    def __init__(self, command: Sequence[str], timeout: Optional[float] = 120.0) -> None:
        self.command = list(command)
        self.timeout = timeout

    def build_command(self, css_file: Path, content_file: Path) -> List[str]:
        return [*self.command, "--css", str(css_file), "--content", str(content_file)]

    def purge(self, css_file: Path, content_file: Path) -> List[str]:
        args = self.build_command(css_file, content_file)
        logger.debug("Purging %s", " ".join(args))
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise PurgeUnavailable(f"purge timed out after {self.timeout}s") from None
        except OSError as e:
            raise PurgeUnavailable(f"purge could not start: {e}") from e

        if completed.returncode != 0:
            logger.warning("Purge exited with %d: %s", completed.returncode, completed.stderr.strip()[:240])
        lines = completed.stdout.splitlines()
        logger.info("Got output with %d lines", len(lines))
        return lines


def read_supplemental_css(path: Optional[Path]) -> str:
    """Contents of the curated stylesheet, or "" when unset or missing."""
    if path is None:
        return ""
    try:
        return Path(path).read_text(encoding="utf8")
    except FileNotFoundError:
        logger.warning("Supplemental stylesheet %s not found", path)
        return ""


def combine_css(fragments: List[str], supplemental: str = "", intrinsic: str = "") -> CombinedCss:
    return CombinedCss(fragments=list(fragments), supplemental=supplemental, intrinsic=intrinsic)


def finalise_css(combined: CombinedCss) -> str:
    """Demote ``/*!`` comments and minify the combined stylesheet."""
    return minify_css(demote_preserved_comments(combined.text))
