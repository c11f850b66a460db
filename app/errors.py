"""
Extraction error taxonomy.

Item-scoped errors (CommentFetchError, AssemblyError) are absorbed by the
pipeline and recorded as skips. FeedFetchError ends timeline collection early.
ValidationError and FatalError are the only ones that reach the caller.
"""


class ExtractionError(Exception):
    """Base class for all extraction failures."""


class ValidationError(ExtractionError):
    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"Missing required field: {field}")


class FeedFetchError(ExtractionError):
    """A timeline page could not be fetched or decoded."""


class CommentFetchError(FeedFetchError):
    """A single item's comment history could not be fetched or decoded."""


class AssemblyError(ExtractionError):
    """A single report row could not be built."""


class FatalError(ExtractionError):
    """Unrecoverable condition; aborts the whole run."""


class ExtractionCancelled(ExtractionError):
    """The consumer went away; the run stopped at a checkpoint."""
