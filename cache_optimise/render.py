"""Headless-browser render collaborator.

The render script is called as ``<command...> file://<entry> <host>`` and
prints the client-side rendered document. It may append two comments:

    <!-- FONTS["https://example.com/f/a.woff2", ...]-->
    <!-- GOOGLEFONTS{"https://fonts.googleapis.com/css?family=X": "<base64 css>"}-->

and may inject a ``<style data-intrinsic-lc=true>`` block with
``contain-intrinsic-size`` rules for below-the-fold sections.
"""

import base64
import binascii
import json
import logging
import re
import subprocess
from pathlib import Path
from typing import Dict, List, Sequence

from cache_optimise.errors import RenderUnavailable
from cache_optimise.models import RenderResult

logger = logging.getLogger(__name__)

FONTS_RE = re.compile(r"<!-- FONTS(.*?)-->", re.DOTALL)
GOOGLE_FONTS_RE = re.compile(r"<!-- GOOGLEFONTS(.*?)-->", re.DOTALL)
INTRINSIC_RE = re.compile(r"<style data-intrinsic-lc[^>]*>(.*?)</style>", re.DOTALL)


def _load_json(payload: str, marker: str):
    try:
        return json.loads(payload)
    except ValueError:
        logger.warning("Could not decode %s payload from render output", marker)
        return None


def _parse_fonts(payload: str) -> List[str]:
    data = _load_json(payload, "FONTS")
    if not isinstance(data, list):
        return []
    return [url for url in data if isinstance(url, str)]


def _parse_font_imports(payload: str) -> Dict[str, str]:
    data = _load_json(payload, "GOOGLEFONTS")
    if not isinstance(data, dict):
        return {}
    imports: Dict[str, str] = {}
    for source, encoded in data.items():
        try:
            imports[source] = base64.b64decode(encoded, validate=True).decode("utf8")
        except (binascii.Error, TypeError, UnicodeDecodeError):
            logger.warning("Skipping undecodable font CSS for %s", source)
    return imports


def parse_render_output(output: str) -> RenderResult:
    """Split raw render output into the page and its sideband data.

    The marker comments are removed from the returned HTML.
    """
    html = output
    fonts: List[str] = []
    font_imports: Dict[str, str] = {}

    match = FONTS_RE.search(html)
    if match:
        fonts = _parse_fonts(match.group(1))
        html = html.replace(match.group(0), "")

    match = GOOGLE_FONTS_RE.search(html)
    if match:
        font_imports = _parse_font_imports(match.group(1))
        html = html.replace(match.group(0), "")

    intrinsic = ""
    match = INTRINSIC_RE.search(html)
    if match:
        intrinsic = match.group(1)

    return RenderResult(html=html, fonts=fonts, font_imports=font_imports, intrinsic_css=intrinsic)


class NodeRenderer:
    """Run the render script in a subprocess under a hard timeout."""

    def __init__(self, command: Sequence[str], host: str, timeout: float = 30.0) -> None:
        self.command = list(command)
        self.host = host
        self.timeout = timeout

    def build_command(self, path: Path) -> List[str]:
        return [*self.command, f"file://{Path(path).as_posix()}", self.host]

    def render(self, path: Path) -> RenderResult:
        args = self.build_command(path)
        logger.debug("Rendering %s", " ".join(args))
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise RenderUnavailable(f"render timed out after {self.timeout}s for {path}") from None
        except OSError as e:
            raise RenderUnavailable(f"render could not start for {path}: {e}") from e

        output = completed.stdout
        if completed.returncode != 0 or not output.strip():
            if completed.stderr:
                logger.debug("Render stderr for %s: %s", path, completed.stderr.strip()[:240])
            raise RenderUnavailable(f"render returned no HTML for {path} (exit {completed.returncode})")
        return parse_render_output(output)
