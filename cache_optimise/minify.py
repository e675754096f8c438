"""
CSS, JS and HTML minification used by the rewrite
"""

import logging
from typing import Callable, Dict, Optional, Tuple, Union

import csscompressor
import htmlmin
import jsmin
from packaging import version

logger = logging.getLogger(__name__)

# Minifier dispatch table for JS/CSS. HTML is handled via `htmlmin2` package.
MINIFIERS: Dict[str, Callable] = {
    "js": jsmin.jsmin,
    "css": csscompressor.compress,
}

# Compatibility: csscompressor<=0.9.5. Preserve whitespace in url() to avoid breaking SVG data URIs.
if version.parse(csscompressor.__version__) <= version.parse("0.9.5"):
    # See https://github.com/sprymix/csscompressor/issues/9#issuecomment-1024417374
    _preserve_call_tokens_original = csscompressor._preserve_call_tokens
    _url_re = csscompressor._url_re

    def _preserve_call_tokens_keep_url_ws(*args, **kwargs):
        """If regex is for url pattern, switch the keyword remove_ws to False."""
        if _url_re == args[1]:
            kwargs["remove_ws"] = False
        return _preserve_call_tokens_original(*args, **kwargs)

    csscompressor._preserve_call_tokens = _preserve_call_tokens_keep_url_ws


# Options forwarded to `htmlmin.minify`; user options may only override these keys.
HTMLMIN_DEFAULTS: Dict[str, Union[bool, str, Tuple[str, ...]]] = {
    "remove_comments": False,
    "remove_empty_space": False,
    "remove_all_empty_space": False,
    "reduce_empty_attributes": True,
    "reduce_boolean_attributes": False,
    "remove_optional_attribute_quotes": False,
    "convert_charrefs": True,
    "keep_pre": False,
    "pre_tags": ("pre", "textarea"),
    "pre_attr": "pre",
}


def minify_with(data: str, minify_func: Callable) -> str:
    """Run the correct minifier with safe parameters."""
    if minify_func.__name__ == "jsmin":
        return minify_func(data, quote_chars="'\"`")
    return minify_func(data)


def demote_preserved_comments(css: str) -> str:
    """Turn ``/*!`` comments into ordinary ones so the minifier drops them too."""
    return css.replace("/*!", "/*")


def minify_css(css: str) -> str:
    return minify_with(css, MINIFIERS["css"])


def minify_js(js: str) -> str:
    return minify_with(js, MINIFIERS["js"])


def minify_html_page(output: Optional[str], selected_opts: Optional[Dict] = None) -> Optional[str]:
    """Minify HTML with the defaults above merged with ``selected_opts``.

    Comments are kept by default; the footprint marker lives in one.
    """
    if output is None:
        return None

    output_opts = dict(HTMLMIN_DEFAULTS)
    for key, value in (selected_opts or {}).items():
        if key in output_opts:
            output_opts[key] = value
        else:
            logger.warning("htmlmin option '%s' not recognized", key)

    return htmlmin.minify(output, **output_opts)
