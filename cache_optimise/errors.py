from enum import Enum


class Outcome(str, Enum):
    OPTIMISED = "optimised"
    ANNOTATED = "annotated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


class OptimiseError(Exception):
    """Base class for every failure the optimiser raises on purpose."""


class LockHeld(OptimiseError):
    """Another run holds the lock. The invocation ends without doing anything."""


class PurgeFragmentMissing(OptimiseError):
    """One purge output record had no usable css/file pair. Tolerated per record."""


class EntrySkipped(OptimiseError):
    """Raised while processing one cache entry.

    Caught by the driver loop in pipeline.py and recorded against the entry;
    it never aborts the run.
    """

    outcome = Outcome.SKIPPED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundPage(EntrySkipped):
    pass


class NoCssFound(EntrySkipped):
    pass


class RenderUnavailable(EntrySkipped):
    pass


class PurgeUnavailable(EntrySkipped):
    pass


class MalformedHtml(EntrySkipped):
    """HTML failed the structural checks, before or after the rewrite."""

    def __init__(self, stage: str, snippet: str) -> None:
        super().__init__(f"malformed HTML ({stage}): {snippet!r}")
        self.stage = stage
        self.snippet = snippet
        if stage == "post":
            self.outcome = Outcome.FAILED


class WriteFailure(EntrySkipped):
    outcome = Outcome.FAILED
