"""Locate every stylesheet a cache entry uses.

Inline ``<style>`` blocks are written to scratch files so that they, and the
linked stylesheets found on disk, form one uniform list of files for the
purge tool.
"""

import logging
import os
import re
from pathlib import Path
from typing import Callable, List, Optional

from bs4 import BeautifulSoup, Tag

from cache_optimise.models import CssSource
from cache_optimise.writer import ScratchSpace

logger = logging.getLogger(__name__)

CLAIMED_REL = "to_compress"
NOSCRIPT_REL = "noscript"

_QUERY_RE = re.compile(r"[?#].*$")


def is_noscript_style(tag: Tag) -> bool:
    return NOSCRIPT_REL in _rel_values(tag)


def _rel_values(tag: Tag) -> List[str]:
    rel = tag.get("rel")
    if rel is None:
        return []
    if isinstance(rel, str):
        return rel.split()
    return list(rel)


def is_stylesheet_link(tag: Tag) -> bool:
    return tag.name == "link" and "stylesheet" in [r.lower() for r in _rel_values(tag)]


def mark_noscript_styles(soup: BeautifulSoup) -> None:
    """Tag styles inside ``<noscript>`` so no later pass collects or clears them."""
    for style in soup.select("noscript style"):
        style["rel"] = NOSCRIPT_REL


def candidate_paths(href: str, domain: str, site_root: Path) -> List[Path]:
    """Filesystem candidates for a stylesheet href, most likely first.

    The domain prefix and any query string are stripped, then the remainder is
    tried under ``site_root`` and, failing that, as a path of its own (scratch
    files are linked by absolute path).
    """
    href = (href or "").strip()
    if not href:
        return []
    for prefix in (f"https://{domain}", f"http://{domain}", f"//{domain}"):
        if href.startswith(prefix):
            href = href[len(prefix):]
            break
    href = _QUERY_RE.sub("", href)
    if not href or "://" in href or href.startswith("//"):
        return []

    candidates = [Path(str(site_root).rstrip("/") + "/" + href.lstrip("/"))]
    if href.startswith("/"):
        candidates.append(Path(href))
    return candidates


def resolve_stylesheet_href(
    href: str,
    domain: str,
    site_root: Path,
    exists: Callable[[Path], bool] = os.path.isfile,
) -> Optional[Path]:
    """First existing candidate for ``href``, or None."""
    for path in candidate_paths(href, domain, site_root):
        if exists(path):
            return path
    return None


def collect_css_sources(
    soup: BeautifulSoup,
    domain: str,
    site_root: Path,
    scratch: ScratchSpace,
) -> List[CssSource]:
    """Return the entry's CSS sources in document order.

    Inline styles (noscript ones excepted) become scratch files. Linked
    stylesheets found on disk are claimed by setting ``rel="to_compress"``.
    """
    sources: List[CssSource] = []
    mark_noscript_styles(soup)

    for tag in soup.find_all(["style", "link"]):
        if tag.name == "style":
            if is_noscript_style(tag):
                continue
            text = tag.string if tag.string is not None else tag.get_text()
            path = scratch.write(text)
            logger.debug("Created tmp sheet of %s", path)
            sources.append(CssSource(origin="inline", path=path, content=text))
            continue

        if not is_stylesheet_link(tag):
            continue
        href = tag.get("href", "")
        path = resolve_stylesheet_href(href, domain, site_root)
        if path is None:
            logger.debug("No file found for stylesheet %s", href)
            continue
        content = path.read_text(encoding="utf8", errors="replace")
        sources.append(CssSource(origin="linked", path=path, content=content))
        tag["rel"] = CLAIMED_REL

    return sources


def original_css(sources: List[CssSource]) -> str:
    """All source contents concatenated; the baseline for size telemetry."""
    return "".join(source.content for source in sources)
