"""Data carried through the per-entry pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Literal, Optional


class ProcessingState(str, Enum):
    """Read from the parsed page: no footprint, footprint with cache-status anchors, footprint only."""

    UNPROCESSED = "unprocessed"
    ANNOTATED = "annotated"
    OPTIMISED = "optimised"


@dataclass
class CacheEntry:
    """One cached HTML page. Owned by the pipeline until it is written or skipped."""

    path: Path
    content: bytes = b""
    state: ProcessingState = ProcessingState.UNPROCESSED
    footprint: bool = False

    @property
    def gzip_path(self) -> Path:
        return gzip_sibling(self.path)

    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


def gzip_sibling(path: Path) -> Path:
    """The compressed variant the cache layer keeps beside every entry."""
    return path.with_name(path.name + "_gzip")


@dataclass(frozen=True)
class CssSource:
    origin: Literal["linked", "inline"]
    path: Path
    content: str


@dataclass
class RenderResult:
    html: str
    fonts: List[str] = field(default_factory=list)
    font_imports: Dict[str, str] = field(default_factory=dict)
    intrinsic_css: str = ""


@dataclass
class FontAsset:
    """A font base name (no extension, no query) and the formats seen for it."""

    base: str
    formats: List[str] = field(default_factory=list)

    def preferred_format(self, priority: List[str]) -> Optional[str]:
        for fmt in priority:
            if fmt in self.formats:
                return fmt
        return None


@dataclass
class CombinedCss:
    """Purge fragments in source order, then the curated stylesheet, then the intrinsic-size block."""

    fragments: List[str] = field(default_factory=list)
    supplemental: str = ""
    intrinsic: str = ""

    @property
    def text(self) -> str:
        return "".join(self.fragments) + self.supplemental + self.intrinsic
