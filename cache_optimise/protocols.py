"""Protocol interfaces for the external collaborators.

The pipeline references these, not the subprocess-backed implementations, so
tests can hand in in-process fakes.
"""

from pathlib import Path
from typing import List, Protocol

from cache_optimise.models import RenderResult


class Renderer(Protocol):
    """Returns the client-side rendered page; raises ``RenderUnavailable`` on timeout or error."""

    def render(self, path: Path) -> RenderResult: ...


class PurgeTool(Protocol):
    """Returns the purge tool's raw output lines; raises ``PurgeUnavailable`` on timeout."""

    def purge(self, css_file: Path, content_file: Path) -> List[str]: ...
