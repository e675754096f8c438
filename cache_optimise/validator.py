"""Structural sanity checks applied to HTML before and after the rewrite."""

from cache_optimise.errors import MalformedHtml

MIN_LENGTH = 10000
DOCTYPE = "<!DOCTYPE html"
SNIPPET_LENGTH = 15


def html_passes_checks(html: str) -> bool:
    """Check that a string should be written as cache contents."""
    if not html:
        return False
    return (
        len(html.encode("utf8")) >= MIN_LENGTH
        and "<body" in html
        and "<style" in html
        and "</body>" in html
        and html.strip().startswith(DOCTYPE)
    )


def ensure_valid(html: str, stage: str) -> str:
    """Return ``html`` unchanged, or raise ``MalformedHtml`` with a short snippet."""
    if not html_passes_checks(html):
        raise MalformedHtml(stage, (html or "").strip()[:SNIPPET_LENGTH])
    return html
