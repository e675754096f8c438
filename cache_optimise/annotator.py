"""Cache-status annotation for pages that already carry the footprint.

Only anchors are touched. CSS, scripts and the footprint stay exactly as the
earlier run left them, and a page with nothing new to annotate is not written.
"""

import logging
from typing import Optional

from bs4 import BeautifulSoup

from cache_optimise.cache_status import CacheStatusProbe
from cache_optimise.rewriter import annotate_cached_links, parse_html
from cache_optimise.validator import ensure_valid

logger = logging.getLogger(__name__)


def annotate_optimised_tree(soup: BeautifulSoup, probe: CacheStatusProbe) -> Optional[str]:
    """Annotate a parsed page in place; return it serialised, or None when no anchor changed.

    Raises ``MalformedHtml`` if the annotated page fails validation.
    """
    changed = annotate_cached_links(soup, probe)
    if not changed:
        return None
    logger.info("Annotated %d cached links", changed)
    return ensure_valid(str(soup), "post")


def annotate_optimised_page(html: str, probe: CacheStatusProbe) -> Optional[str]:
    return annotate_optimised_tree(parse_html(html), probe)
