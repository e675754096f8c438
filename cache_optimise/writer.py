"""Atomic cache writes and per-entry scratch files."""

import gzip
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

from cache_optimise.errors import WriteFailure
from cache_optimise.models import gzip_sibling

logger = logging.getLogger(__name__)

FILE_MODE = 0o644


def _stage(path: Path, data: bytes, mode: int = FILE_MODE) -> Path:
    """Write ``data`` to a synced temp file beside ``path`` and return it."""
    try:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise WriteFailure(f"cannot open temp file beside {path}: {e}") from e

    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            written = handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        if written != len(data):
            raise WriteFailure(f"short write to {path}: {written}/{len(data)} bytes")
        os.chmod(tmp, mode)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise WriteFailure(f"cannot write {path}: {e}") from e
    except WriteFailure:
        tmp.unlink(missing_ok=True)
        raise
    return tmp


def _commit(staged: List[Tuple[Path, Path]]) -> None:
    """Rename every staged temp file over its target, in order.

    Temp files not yet renamed are removed if a rename fails.
    """
    for index, (tmp, path) in enumerate(staged):
        try:
            os.replace(tmp, path)
        except OSError as e:
            for leftover, _ in staged[index:]:
                leftover.unlink(missing_ok=True)
            raise WriteFailure(f"cannot write {path}: {e}") from e


def write_atomic(path: Path, data: bytes, mode: int = FILE_MODE) -> None:
    """Replace ``path`` with ``data`` so no reader ever sees a truncated file.

    Writes a sibling temp file, fsyncs it, then renames it over the target.
    Any failure leaves the original untouched and raises ``WriteFailure``.
    """
    path = Path(path)
    _commit([(_stage(path, data, mode), path)])


def write_entry(path: Path, html: str, *, gzip_variant: bool = True, gzip_level: int = 3) -> None:
    """Write the page and, when enabled, its ``_gzip`` variant beside it.

    Both files are staged before either is renamed. The variant is renamed
    first: if the page rename then fails, the page still lacks the footprint
    and the next run rebuilds both.
    """
    path = Path(path)
    data = html.encode("utf8")
    sibling = gzip_sibling(path)

    if not gzip_variant:
        write_atomic(path, data)
        try:
            sibling.unlink()
            logger.debug("Removed stale compressed variant %s", sibling)
        except FileNotFoundError:
            pass
        return

    compressed = gzip.compress(data, compresslevel=gzip_level)
    page_tmp = _stage(path, data)
    try:
        gzip_tmp = _stage(sibling, compressed)
    except WriteFailure:
        page_tmp.unlink(missing_ok=True)
        raise
    _commit([(gzip_tmp, sibling), (page_tmp, path)])


class ScratchSpace:
    """Temporary files owned by one cache entry.

    Every file is created with the configured prefix and removed when the
    ``with`` block ends, whatever the outcome of the entry.
    """

    def __init__(self, prefix: str, directory: Optional[Path] = None) -> None:
        self.prefix = prefix
        self.directory = directory
        self.paths: List[Path] = []

    def write(self, text: str) -> Path:
        fd, name = tempfile.mkstemp(prefix=self.prefix, dir=self.directory)
        path = Path(name)
        self.paths.append(path)
        with os.fdopen(fd, "w", encoding="utf8") as handle:
            handle.write(text)
        return path

    def cleanup(self) -> None:
        for path in self.paths:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove scratch file %s: %s", path, e)
        self.paths = []

    def __enter__(self) -> "ScratchSpace":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()
