"""Font preload selection."""

import re
from typing import Dict, Iterable, List

from cache_optimise.models import FontAsset

FONT_PRIORITY: List[str] = ["woff2", "woff", "otf", "ttf"]

_FORMAT_RE = re.compile(r"\.(woff2|woff|otf|ttf)$", re.IGNORECASE)
_QUERY_RE = re.compile(r"[?#].*$")


def group_font_assets(urls: Iterable[str]) -> List[FontAsset]:
    """Group observed font URLs by base name, in first-seen order.

    Query strings are dropped; URLs without a known font extension are ignored.
    """
    assets: Dict[str, FontAsset] = {}
    for url in urls:
        clean = _QUERY_RE.sub("", url)
        match = _FORMAT_RE.search(clean)
        if not match:
            continue
        fmt = match.group(1).lower()
        base = clean[: match.start()]
        asset = assets.setdefault(base, FontAsset(base=base))
        if fmt not in asset.formats:
            asset.formats.append(fmt)
    return list(assets.values())


def choose_font_preloads(urls: Iterable[str]) -> List[str]:
    """One URL per base name, in the best available format (woff2 > woff > otf > ttf)."""
    preloads: List[str] = []
    for asset in group_font_assets(urls):
        fmt = asset.preferred_format(FONT_PRIORITY)
        if fmt:
            preloads.append(f"{asset.base}.{fmt}")
    return preloads
