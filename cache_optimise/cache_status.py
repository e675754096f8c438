"""Check whether a link target already has a cached rendering."""

import logging
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

CACHE_FILE_NAME = "index-https.html"


def cached_path_for(href: str, cache_root: Path, domain: str) -> Optional[Path]:
    """Map a link to the cache file the caching layer would have written for it.

    ``https://example.com/about/?x=1`` -> ``<cache_root>/example.com/about/index-https.html``.
    Root-relative hrefs are taken as pages of ``domain``. Anything that is not
    an http(s) page link (mailto:, tel:, fragments, protocol-less relative
    paths) maps to None.
    """
    href = (href or "").strip()
    if not href or href.startswith("#"):
        return None

    if href.startswith("//"):
        href = "https:" + href
    elif href.startswith("/"):
        href = f"https://{domain}{href}"

    parts = urlsplit(href)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None

    path = parts.path or "/"
    if not path.endswith("/"):
        path += "/"
    relative = (parts.netloc + path).lstrip("/")
    if ".." in relative.split("/"):
        return None
    return Path(cache_root) / relative / CACHE_FILE_NAME


class CacheStatusProbe:
    """Memoised ``href -> is cached`` lookups for one run."""

    def __init__(self, cache_root: Path, domain: str) -> None:
        self.cache_root = Path(cache_root)
        self.domain = domain
        self._seen: Dict[str, bool] = {}

    def is_cached(self, href: str) -> bool:
        if href in self._seen:
            return self._seen[href]
        path = cached_path_for(href, self.cache_root, self.domain)
        found = path is not None and path.exists()
        if found:
            logger.debug("Found path exists for %s", path)
        self._seen[href] = found
        return found
