"""
In-place rewrite of a cached page: inline the purged CSS, defer scripts,
preload fonts and leave a footprint for later runs.

The document is parsed once, every pass in ``REWRITE_PASSES`` mutates the tree
in a fixed order, and the tree is serialised once at the end.
"""

import base64
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from bs4 import BeautifulSoup, Comment, Tag
from bs4.element import Script, Stylesheet

from cache_optimise.cache_status import CacheStatusProbe
from cache_optimise.config import OptimiseSettings
from cache_optimise.css_sources import (
    CLAIMED_REL,
    is_noscript_style,
    is_stylesheet_link,
    mark_noscript_styles,
)
from cache_optimise.errors import MalformedHtml
from cache_optimise.fonts import choose_font_preloads
from cache_optimise.minify import minify_css, minify_html_page, minify_js
from cache_optimise.models import ProcessingState, RenderResult

logger = logging.getLogger(__name__)

PARSER = "html.parser"
MAX_PARSE_BYTES = 6000000

CACHED_ATTR = "data-is-rocket-cached"
LAZY_SCRIPT_TYPE = "rocketlazyloadscript"
LAZY_SRC_ATTR = "data-rocket-src"
INLINE_LIBRARY_MARKER = "jQuery"
DISPATCHER_MARKER = "RocketLazyLoadScripts"
SVG_PLACEHOLDER = "data:image/svg"

TRIGGER_CALL = "e._addUserInteractionListener(e)"
TRIGGER_TEMPLATE = (
    "e._addUserInteractionListener(e);setTimeout(function() {{  "
    'if(typeof(document.onreadystatechange)!="function") {{ '
    "e._loadEverythingNow(); e._removeUserInteractionListener();}} }},{delay});"
)

_EMPTY_URL_RES = [
    re.compile(r"background\s*:\s*url\(\s*(?:''|\"\")\s*\)\s*;?"),
    re.compile(r"url\(\s*(?:''|\"\")\s*\)"),
]


def parse_html(html: str) -> BeautifulSoup:
    if len(html.encode("utf8")) > MAX_PARSE_BYTES:
        raise MalformedHtml("parse", html.strip()[:15])
    return BeautifulSoup(html, PARSER)


# -------------------------------
# Footprint
# -------------------------------


def make_footprint(footer_comment: str, timestamp: Optional[int] = None) -> str:
    if timestamp is None:
        timestamp = int(time.time())
    return f"<!-- {footer_comment} @{timestamp}-->"


def has_footprint(soup: BeautifulSoup, footer_comment: str) -> bool:
    """True if a real comment node carries the footprint.

    Marker text inside scripts, attributes or body copy does not count.
    """
    pattern = re.compile(rf"^\s*{re.escape(footer_comment)}\s*@\d+\s*$")
    return any(pattern.match(str(c)) for c in soup.find_all(string=lambda s: isinstance(s, Comment)))


def detect_state(soup: BeautifulSoup, footer_comment: str) -> ProcessingState:
    """Processing state of a parsed page.

    No footprint comment means unprocessed. A footprinted page whose anchors
    carry cache-status annotations is annotated; otherwise it is optimised.
    """
    if not has_footprint(soup, footer_comment):
        return ProcessingState.UNPROCESSED
    if soup.find("a", attrs={CACHED_ATTR: True}) is not None:
        return ProcessingState.ANNOTATED
    return ProcessingState.OPTIMISED


# -------------------------------
# Shared passes
# -------------------------------


def annotate_cached_links(soup: BeautifulSoup, probe: CacheStatusProbe) -> int:
    """Flag anchors whose target is already cached. Returns how many changed."""
    changed = 0
    for link in soup.find_all("a", href=True):
        if link.get(CACHED_ATTR):
            continue
        if probe.is_cached(link["href"]):
            link[CACHED_ATTR] = "true"
            changed += 1
            logger.debug("Marked as cached %s", link["href"])
    return changed


@dataclass
class RewriteContext:
    settings: OptimiseSettings
    probe: CacheStatusProbe
    css: str
    render: RenderResult
    bootstrap: List[Tag] = field(default_factory=list)
    annotated: int = 0


def _mark_noscript_styles(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    mark_noscript_styles(soup)


def _remove_stylesheet_links(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    for link in soup.find_all("link"):
        if is_stylesheet_link(link) or CLAIMED_REL in (link.get("rel") or []):
            link.decompose()


def _clear_inline_styles(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    for style in soup.find_all("style"):
        if is_noscript_style(style):
            continue
        style.string = Stylesheet("")


def _annotate_links(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    ctx.annotated = annotate_cached_links(soup, ctx.probe)


def _defer_scripts(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    allowlist = ctx.settings.script_allowlist
    for script in soup.find_all("script"):
        src = script.get("src")
        if src:
            if ctx.settings.lazyload_script in src:
                ctx.bootstrap.append(script.extract())
                continue
            if any(allowed in src for allowed in allowlist):
                continue
            del script["src"]
            script.attrs.pop("async", None)
            script["defer"] = "defer"
            script["type"] = LAZY_SCRIPT_TYPE
            script[LAZY_SRC_ATTR] = src
            continue

        if script.get("type") != LAZY_SCRIPT_TYPE:
            continue
        body = script.string or ""
        if INLINE_LIBRARY_MARKER not in body or DISPATCHER_MARKER in body:
            continue
        if ctx.settings.minify_inline_scripts:
            body = minify_js(body)
        encoded = base64.b64encode(body.encode("utf8")).decode("ascii")
        script.attrs.pop("async", None)
        script["defer"] = "defer"
        script[LAZY_SRC_ATTR] = f"data:text/javascript;base64,{encoded}"
        script.string = Script("")


def _substitute_images(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    placeholder = ctx.settings.placeholder_image
    if placeholder:
        for img in soup.find_all("img"):
            if SVG_PLACEHOLDER in (img.get("src") or ""):
                img["src"] = placeholder

    for selector, data_uri in ctx.settings.brand_image_substitutions():
        for img in soup.select(selector):
            img["src"] = data_uri


def _head_anchor(soup: BeautifulSoup) -> Tag:
    title = soup.find("title")
    if title is not None:
        return title
    raise MalformedHtml("rewrite", "no <title> to anchor inlined CSS")


def _insert_head_block(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    """After ``</title>``: font preloads, then the lazy-load bootstrap, then the inlined CSS."""
    anchor = _head_anchor(soup)

    style = soup.new_tag("style")
    style.string = Stylesheet(ctx.css)
    anchor.insert_after(style)

    for script in reversed(ctx.bootstrap):
        anchor.insert_after(script)

    preloads = choose_font_preloads(ctx.render.fonts)
    if preloads:
        logger.debug("To preload is %s", preloads)
    for href in reversed(preloads):
        link = soup.new_tag("link", rel="preload", href=href, attrs={"as": "font", "crossorigin": ""})
        anchor.insert_after(link)


def _import_pattern(source: str) -> "re.Pattern[str]":
    src = re.escape(source)
    return re.compile(rf"@import\s+(?:url\(\s*(['\"]?){src}\1\s*\)|(['\"]){src}\2)\s*;")


def _inline_font_imports(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    if not ctx.render.font_imports:
        return
    replacements: Dict["re.Pattern[str]", str] = {
        _import_pattern(source): minify_css(css) for source, css in ctx.render.font_imports.items()
    }
    for style in soup.find_all("style"):
        text = style.string
        if not text or "@import" not in text:
            continue
        new_text = str(text)
        for pattern, css in replacements.items():
            new_text = pattern.sub(lambda _m, css=css: css, new_text)
        if new_text != text:
            style.string = Stylesheet(new_text)


def strip_empty_urls(css: str) -> str:
    for pattern in _EMPTY_URL_RES:
        css = pattern.sub("", css)
    return css


def _strip_empty_url_placeholders(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    for style in soup.find_all("style"):
        if style.string:
            cleaned = strip_empty_urls(str(style.string))
            if cleaned != style.string:
                style.string = Stylesheet(cleaned)
    for tag in soup.find_all(style=True):
        tag["style"] = strip_empty_urls(tag["style"])


def _inject_preload_trigger(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    delay = ctx.settings.preload_delay
    if delay is None:
        return
    replacement = TRIGGER_TEMPLATE.format(delay=delay)
    for script in soup.find_all("script"):
        body = script.string
        if body and TRIGGER_CALL in body:
            script.string = Script(str(body).replace(TRIGGER_CALL, replacement))


REWRITE_PASSES: List[Callable[[BeautifulSoup, RewriteContext], None]] = [
    _mark_noscript_styles,
    _remove_stylesheet_links,
    _clear_inline_styles,
    _annotate_links,
    _defer_scripts,
    _substitute_images,
    _insert_head_block,
    _inline_font_imports,
    _strip_empty_url_placeholders,
    _inject_preload_trigger,
]


class HtmlRewriter:
    """Apply the full rewrite to one cache entry."""

    def __init__(
        self,
        settings: OptimiseSettings,
        probe: CacheStatusProbe,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.probe = probe
        self.clock = clock

    def rewrite(self, html: str, css: str, render: RenderResult) -> str:
        """Return the rewritten page, footprint included."""
        return self.rewrite_tree(parse_html(html), css, render)

    def rewrite_tree(self, soup: BeautifulSoup, css: str, render: RenderResult) -> str:
        """Rewrite an already parsed page in place and serialise it."""
        ctx = RewriteContext(settings=self.settings, probe=self.probe, css=css, render=render)
        for rewrite_pass in REWRITE_PASSES:
            rewrite_pass(soup, ctx)

        output = str(soup)
        if self.settings.minify_html:
            output = minify_html_page(output, self.settings.htmlmin_opts)
        return output + make_footprint(self.settings.footer_comment, int(self.clock()))
