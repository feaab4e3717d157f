"""Exceptions raised while building or querying a search index."""


class SearchIndexError(Exception):
    """Base class for search index errors."""


class MalformedRecordError(SearchIndexError):
    """A symbol record cannot be indexed; the build skips it and continues."""

    def __init__(self, reason: str, record: object = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.record = record


class MissingPartitionError(SearchIndexError):
    """A bucket partition is absent or unreadable; queries into it return nothing."""

    def __init__(self, bucket: str, reason: str) -> None:
        super().__init__(f"Partition {bucket!r} unavailable: {reason}")
        self.bucket = bucket
        self.reason = reason


class CorruptArtifactError(SearchIndexError):
    """The artifact header is unusable; search must be disabled for the session."""
