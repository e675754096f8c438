"""Cache entry discovery.

Walks the cache store and returns the entries of one domain, shortest path
first: top-level pages are usually the busiest, so they are refreshed before
deeply nested ones.
"""

import logging
import os
from pathlib import Path
from typing import List

from cache_optimise.models import CacheEntry, gzip_sibling

logger = logging.getLogger(__name__)

GZIP_SUFFIX = "_gzip"


def belongs_to_domain(path: Path, domain: str) -> bool:
    """True if one directory segment of ``path`` is exactly ``domain``.

    ``www.example.com`` and ``notexample.com`` segments never match
    ``example.com``, and nothing under a subdomain directory is taken either.
    """
    parts = path.parts[:-1]
    if domain not in parts:
        return False
    return not any(part.endswith("." + domain) for part in parts)


def is_compressed_variant(path: Path) -> bool:
    return path.name.endswith(GZIP_SUFFIX)


def evict_zero_byte(path: Path) -> None:
    """Delete an empty entry and its compressed sibling."""
    logger.info("Zero byte found %s", path)
    for target in (path, gzip_sibling(path)):
        try:
            target.unlink()
        except FileNotFoundError:
            pass


def order_by_priority(paths: List[Path]) -> List[Path]:
    """Ascending by path-string length; ties keep their walk order."""
    return sorted(paths, key=lambda p: len(str(p)))


def discover_entries(cache_root: Path, domain: str) -> List[CacheEntry]:
    """Return the ordered cache entries of ``domain`` under ``cache_root``.

    Zero-byte entries are evicted as a side effect and left out of the result.
    File contents are not read here; only their size is checked.
    """
    cache_root = Path(cache_root)
    candidates: List[Path] = []

    for dirpath, dirnames, filenames in os.walk(cache_root):
        dirnames.sort()
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if is_compressed_variant(path):
                continue
            if not belongs_to_domain(path.relative_to(cache_root), domain):
                continue
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                continue
            if size == 0:
                evict_zero_byte(path)
                continue
            candidates.append(path)

    ordered = order_by_priority(candidates)
    logger.info("Got %d files to optimise", len(ordered))
    return [CacheEntry(path=p) for p in ordered]
