"""Shared test fixtures for the cache-optimise test suite."""

import json
from pathlib import Path
from typing import List, Optional

import pytest

from cache_optimise.config import OptimiseSettings
from cache_optimise.models import RenderResult

DOMAIN = "example.com"
FOOTER = "optimised-by-tests"
FIXED_TIME = 1700000000


def build_page(head: str = "", body: str = "", filler: int = 11000) -> str:
    """A cached page that passes validation: doctype, title, body and enough bytes."""
    text = "Lorem ipsum dolor sit amet. " * (filler // 28 + 1)
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en"><head><meta charset="utf-8"><title>Home</title>'
        f"{head}</head>"
        f"<body>{body}<p>{text}</p></body></html>\n"
    )


def purge_line(css: str, file: str = "/tmp/TMPLCcss") -> str:
    return json.dumps([{"css": css, "file": file}])


class FakeRenderer:
    """Render collaborator stand-in returning a fixed result or raising an error."""

    def __init__(self, result: Optional[RenderResult] = None, error: Optional[Exception] = None):
        self.result = result or RenderResult(html="<html><body><div class='rendered'></div></body></html>")
        self.error = error
        self.calls: List[Path] = []

    def render(self, path: Path) -> RenderResult:
        self.calls.append(Path(path))
        if self.error is not None:
            raise self.error
        return self.result


class FakePurge:
    """Purge collaborator stand-in; remembers what it was given."""

    def __init__(self, lines: Optional[List[str]] = None):
        self.lines = lines if lines is not None else [purge_line(".kept{color:red}")]
        self.calls = []
        self.seen_css = ""
        self.seen_content = ""

    def purge(self, css_file: Path, content_file: Path) -> List[str]:
        self.calls.append((Path(css_file), Path(content_file)))
        self.seen_css = Path(css_file).read_text(encoding="utf8")
        self.seen_content = Path(content_file).read_text(encoding="utf8")
        return list(self.lines)


@pytest.fixture()
def site_root(tmp_path) -> Path:
    root = tmp_path / "site"
    root.mkdir()
    return root


@pytest.fixture()
def cache_root(tmp_path) -> Path:
    root = tmp_path / "cache"
    (root / DOMAIN).mkdir(parents=True)
    return root


@pytest.fixture()
def settings(tmp_path, site_root, cache_root) -> OptimiseSettings:
    return OptimiseSettings(
        domain=DOMAIN,
        site_root=site_root,
        cache_root=cache_root,
        lockfile=tmp_path / "run.lock",
        status_file=tmp_path / "status.txt",
        footer_comment=FOOTER,
    )


@pytest.fixture()
def scratch_dir(tmp_path, monkeypatch) -> Path:
    """Send every scratch file into a directory the test can inspect."""
    import tempfile

    directory = tmp_path / "scratch"
    directory.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(directory))
    return directory
