"""End-to-end tests of the per-entry pipeline with in-process collaborators."""

import gzip
import os
import sys
from pathlib import Path

import pytest

from cache_optimise.errors import Outcome, RenderUnavailable
from cache_optimise.models import RenderResult
from cache_optimise.pipeline import Optimiser, RunReport, run_once, size_reduction
from cache_optimise.render import NodeRenderer
from cache_optimise import rewriter
from cache_optimise.rewriter import make_footprint
from conftest import DOMAIN, FIXED_TIME, FOOTER, FakePurge, FakeRenderer, build_page, purge_line

HEAD = (
    '<link rel="stylesheet" href="https://example.com/wp-content/themes/site/style.css?ver=2">'
    "<style>.inline{margin:0}</style>"
)


def _entry(cache_root: Path, page: str = "", html: str = None) -> Path:
    directory = cache_root / DOMAIN / page if page else cache_root / DOMAIN
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "index-https.html"
    path.write_text(html if html is not None else build_page(head=HEAD), encoding="utf8")
    return path


@pytest.fixture()
def stylesheet(site_root) -> Path:
    path = site_root / "wp-content" / "themes" / "site" / "style.css"
    path.parent.mkdir(parents=True)
    path.write_text(".kept { color: red; }\n.unused { color: blue; }", encoding="utf8")
    return path


def _optimiser(settings, renderer=None, purger=None):
    return Optimiser(
        settings,
        renderer=renderer or FakeRenderer(),
        purger=purger or FakePurge(),
        clock=lambda: FIXED_TIME,
    )


class TestOptimise:
    def test_entry_is_optimised(self, settings, cache_root, stylesheet, scratch_dir):
        path = _entry(cache_root)
        renderer = FakeRenderer()
        purger = FakePurge()

        report = _optimiser(settings, renderer, purger).run()

        assert report.outcome_for(path) == Outcome.OPTIMISED
        output = path.read_text(encoding="utf8")
        assert output.endswith(make_footprint(FOOTER, FIXED_TIME))
        assert ".kept{color:red}" in output
        assert "style.css" not in output
        assert ".inline{margin:0}" not in output
        assert (cache_root / DOMAIN / "index-https.html_gzip").exists()

        assert renderer.calls == [path]
        assert ".unused { color: blue; }" in purger.seen_css
        assert ".inline{margin:0}" in purger.seen_css
        assert "class='rendered'" in purger.seen_content
        assert "Lorem ipsum" in purger.seen_content
        assert list(scratch_dir.iterdir()) == []

    def test_entry_is_parsed_once(self, settings, cache_root, stylesheet, scratch_dir, monkeypatch):
        """Test: state detection, CSS collection and the rewrite share one parse tree."""
        parses = []
        real_soup = rewriter.BeautifulSoup

        def counting_soup(*args, **kwargs):
            parses.append(args[0][:15])
            return real_soup(*args, **kwargs)

        monkeypatch.setattr(rewriter, "BeautifulSoup", counting_soup)
        path = _entry(cache_root)

        report = _optimiser(settings).run()

        assert report.outcome_for(path) == Outcome.OPTIMISED
        assert len(parses) == 1

    def test_repeated_runs_are_idempotent(self, settings, cache_root, stylesheet, scratch_dir):
        path = _entry(cache_root)
        renderer = FakeRenderer()
        optimiser = _optimiser(settings, renderer)

        first = optimiser.run()
        after_first = path.read_bytes()
        second = optimiser.run()
        third = optimiser.run()

        assert first.outcome_for(path) == Outcome.OPTIMISED
        assert second.outcome_for(path) == Outcome.UNCHANGED
        assert third.outcome_for(path) == Outcome.UNCHANGED
        assert path.read_bytes() == after_first
        assert len(renderer.calls) == 1
        assert path.read_text(encoding="utf8").count(FOOTER) == 1

    def test_newly_cached_link_is_annotated_later(self, settings, cache_root, stylesheet, scratch_dir):
        path = _entry(cache_root, html=build_page(head=HEAD, body='<a href="/about/">About</a>'))
        optimiser = _optimiser(settings)
        optimiser.run(only=[path])

        _entry(cache_root, "about")
        report = _optimiser(settings).run(only=[path])

        assert report.outcome_for(path) == Outcome.ANNOTATED
        output = path.read_text(encoding="utf8")
        assert 'data-is-rocket-cached="true"' in output
        assert output.count(FOOTER) == 1

    def test_purge_partial_output_is_tolerated(self, settings, cache_root, stylesheet, scratch_dir):
        path = _entry(cache_root)
        purger = FakePurge([purge_line(".one{top:0}"), '[{"css": ".lost{}"}]', purge_line(".two{left:0}")])

        report = _optimiser(settings, purger=purger).run()

        assert report.outcome_for(path) == Outcome.OPTIMISED
        output = path.read_text(encoding="utf8")
        assert ".one{top:0}.two{left:0}" in output
        assert ".lost" not in output

    def test_supplemental_and_intrinsic_css(self, settings, cache_root, stylesheet, scratch_dir, tmp_path):
        forced = tmp_path / "forcecss.css"
        forced.write_text(".forced { display: block; }", encoding="utf8")
        configured = settings.model_copy(update={"supplemental_css": forced})
        render = RenderResult(html="<html></html>", intrinsic_css=".sec{contain-intrinsic-size:auto 500px}")
        path = _entry(cache_root)

        _optimiser(configured, renderer=FakeRenderer(render)).run()

        output = path.read_text(encoding="utf8")
        assert ".kept{color:red}.forced{display:block}.sec{contain-intrinsic-size:auto 500px}" in output


class TestSkipsAndFailures:
    def test_post_validation_failure_leaves_entry_untouched(self, settings, cache_root, stylesheet, scratch_dir):
        """Test: a page whose bulk was inline CSS is too short once rewritten."""
        big_style = "<style>" + ".x{color:red}" * 1000 + "</style>"
        path = _entry(cache_root, html=build_page(head=big_style, filler=0))
        before = path.read_bytes()

        report = _optimiser(settings).run()

        assert report.outcome_for(path) == Outcome.FAILED
        assert path.read_bytes() == before
        assert not (cache_root / DOMAIN / "index-https.html_gzip").exists()
        assert list(scratch_dir.iterdir()) == []

    def test_page_without_css_is_skipped(self, settings, cache_root, scratch_dir):
        html = build_page(body="<noscript><style>.lazy{opacity:1}</style></noscript>")
        path = _entry(cache_root, html=html)
        renderer = FakeRenderer()

        report = _optimiser(settings, renderer).run()

        assert report.outcome_for(path) == Outcome.SKIPPED
        assert renderer.calls == []
        assert path.read_text(encoding="utf8") == html

    def test_render_failure_moves_on(self, settings, cache_root, stylesheet, scratch_dir):
        failing = _entry(cache_root, "broken")
        working = _entry(cache_root, "fine")

        class SelectiveRenderer(FakeRenderer):
            def render(self, path):
                if Path(path) == failing:
                    self.calls.append(Path(path))
                    raise RenderUnavailable("render timed out")
                return super().render(path)

        report = _optimiser(settings, renderer=SelectiveRenderer()).run()

        assert report.outcome_for(failing) == Outcome.SKIPPED
        assert report.outcome_for(working) == Outcome.OPTIMISED
        assert FOOTER not in failing.read_text(encoding="utf8")
        assert list(scratch_dir.iterdir()) == []

    def test_undecodable_render_output_does_not_stop_the_run(self, settings, cache_root, stylesheet, scratch_dir):
        first = _entry(cache_root, "one")
        second = _entry(cache_root, "two")
        script = "import sys; sys.stdout.buffer.write(b'<html><body>\\xff\\xfe</body></html>')"
        renderer = NodeRenderer([sys.executable, "-c", script], DOMAIN)

        report = _optimiser(settings, renderer=renderer).run()

        assert report.outcome_for(first) == Outcome.OPTIMISED
        assert report.outcome_for(second) == Outcome.OPTIMISED

    def test_not_found_placeholder_is_skipped(self, settings, cache_root, stylesheet, scratch_dir):
        html = build_page(head=HEAD, body="<h1>Error 404</h1>")
        path = _entry(cache_root, html=html)
        renderer = FakeRenderer()

        report = _optimiser(settings, renderer).run()

        assert report.outcome_for(path) == Outcome.SKIPPED
        assert renderer.calls == []
        assert path.read_text(encoding="utf8") == html

    def test_malformed_input_is_skipped(self, settings, cache_root, scratch_dir):
        path = _entry(cache_root, html="<html><body>short</body></html>")
        report = _optimiser(settings).run()
        assert report.outcome_for(path) == Outcome.SKIPPED

    def test_zero_byte_entry_is_evicted(self, settings, cache_root, stylesheet, scratch_dir):
        empty = _entry(cache_root, "empty", html="")
        (empty.parent / "index-https.html_gzip").write_bytes(b"\x1f\x8b")
        path = _entry(cache_root)

        report = _optimiser(settings).run()

        assert not empty.exists()
        assert not (empty.parent / "index-https.html_gzip").exists()
        assert report.outcome_for(empty) is None
        assert report.outcome_for(path) == Outcome.OPTIMISED

    def test_write_failure(self, settings, cache_root, stylesheet, scratch_dir, monkeypatch):
        path = _entry(cache_root)
        before = path.read_bytes()

        def broken_replace(src, dst):
            raise OSError("read-only file system")

        monkeypatch.setattr(os, "replace", broken_replace)
        report = _optimiser(settings).run()

        assert report.outcome_for(path) == Outcome.FAILED
        assert path.read_bytes() == before
        assert sorted(p.name for p in path.parent.iterdir()) == ["index-https.html"]

    def test_gzip_write_failure_is_retried_next_run(self, settings, cache_root, stylesheet, scratch_dir, monkeypatch):
        """Test: a failed compressed copy leaves the page unprocessed, so the next run redoes both."""
        path = _entry(cache_root)
        before = path.read_bytes()
        real_replace = os.replace

        def failing_gzip_replace(src, dst):
            if str(dst).endswith("_gzip"):
                raise OSError("no space left on device")
            real_replace(src, dst)

        monkeypatch.setattr(os, "replace", failing_gzip_replace)
        first = _optimiser(settings).run()
        assert first.outcome_for(path) == Outcome.FAILED
        assert path.read_bytes() == before

        monkeypatch.setattr(os, "replace", real_replace)
        second = _optimiser(settings).run()

        assert second.outcome_for(path) == Outcome.OPTIMISED
        compressed = cache_root / DOMAIN / "index-https.html_gzip"
        assert gzip.decompress(compressed.read_bytes()) == path.read_bytes()


class TestRun:
    def test_entries_are_processed_shortest_path_first(self, settings, cache_root, stylesheet, scratch_dir):
        deep = _entry(cache_root, "blog/2024/post")
        top = _entry(cache_root)
        renderer = FakeRenderer()

        _optimiser(settings, renderer).run()

        assert renderer.calls == [top, deep]

    def test_only_restricts_entries(self, settings, cache_root, stylesheet, scratch_dir):
        top = _entry(cache_root)
        other = _entry(cache_root, "other")
        report = _optimiser(settings).run(only=[other])
        assert report.outcome_for(other) == Outcome.OPTIMISED
        assert report.outcome_for(top) is None

    def test_counts(self):
        report = RunReport()
        assert report.counts() == {"optimised": 0, "annotated": 0, "unchanged": 0, "skipped": 0, "failed": 0}

    def test_size_reduction(self):
        assert size_reduction(200, 50) == 75.0
        assert size_reduction(0, 10) == 0.0

    def test_run_once_writes_run_log(self, settings, cache_root, stylesheet, scratch_dir):
        logging_settings = settings.model_copy(update={"write_log": True})
        _entry(cache_root)

        report = run_once(logging_settings, optimiser=_optimiser(logging_settings))

        assert report.counts()["optimised"] == 1
        log = logging_settings.status_file.read_text(encoding="utf8")
        assert "Got 1 files to optimise" in log
        assert "New CSS length is" in log

    def test_run_once_stamps_status_file(self, settings, cache_root, scratch_dir):
        report = run_once(settings, optimiser=_optimiser(settings))
        assert report.results == []
        assert settings.status_file.read_text(encoding="utf8").isdigit()
