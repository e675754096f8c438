"""
Tests for the minifiers used by the rewrite.
"""

from cache_optimise.minify import (
    MINIFIERS,
    demote_preserved_comments,
    minify_css,
    minify_html_page,
    minify_js,
    minify_with,
)


class TestMinify:
    """Test for the minifier helpers."""

    def test_minify_js(self):
        """Test: JavaScript minification works."""
        js_code = "console.log('hello');\nvar x = 1;"
        result = minify_with(js_code, MINIFIERS["js"])
        assert "console.log('hello');var x=1" in result

    def test_minify_js_keeps_template_literals(self):
        """Test: backtick strings are treated as quoted."""
        result = minify_js("var s = `a   b`;")
        assert "`a   b`" in result

    def test_minify_css(self):
        """Test: CSS minification works."""
        css_code = ".test {\n    color: red;\n    margin: 10px;\n}"
        result = minify_css(css_code)
        assert ".test{" in result and "color:red" in result

    def test_svg_data_uri_whitespace_survives(self):
        """Test: whitespace inside url() is kept so inline SVG stays valid."""
        css = ".i{background:url(\"data:image/svg+xml;utf8,<svg xmlns='http://www.w3.org/2000/svg' viewBox='0 0 1 1'></svg>\")}"
        result = minify_css(css)
        assert "viewBox='0 0 1 1'" in result

    def test_demote_preserved_comments(self):
        """Test: bang comments are dropped once demoted."""
        css = "/*! License */ .a { color: red; }"
        assert "License" in minify_css(css)
        assert "License" not in minify_css(demote_preserved_comments(css))

    def test_minify_html(self):
        """Test: HTML minification works."""
        html_code = "<html><body><p>Hello   World</p></body></html>"
        result = minify_html_page(html_code)
        assert result is not None
        assert "<html><body><p>Hello World</p></body></html>" in result

    def test_minify_html_keeps_comments(self):
        """Test: comments survive the default options."""
        result = minify_html_page("<html><body><!-- marker @1--><p>x</p></body></html>")
        assert "<!-- marker @1-->" in result

    def test_unknown_htmlmin_option(self, caplog):
        """Test: unknown options are reported and ignored."""
        result = minify_html_page("<p>x</p>", {"remove_comments": True, "not_an_option": 1})
        assert result == "<p>x</p>"
        assert "htmlmin option 'not_an_option' not recognized" in caplog.text

    def test_error_handling(self):
        """Test: malformed input does not crash the minifiers."""
        bad_css = ".test { color: red; /* unclosed comment"
        assert minify_css(bad_css) is not None

        bad_html = "<html><body><p>Unclosed paragraph"
        assert minify_html_page(bad_html) is not None

    def test_none_inputs(self):
        """Test: None input gives None."""
        assert minify_html_page(None) is None
