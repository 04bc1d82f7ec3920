from typing import Any, Optional


class PromptloomError(Exception):
    """Base class for every error raised by promptloom."""


# ---- Storage ----

class StorageError(PromptloomError):
    pass


class StorageUnavailableError(StorageError):
    """The data directory cannot be opened, read or written."""


class SchemaVersionError(StorageError):
    """Stored schema cannot be brought to the current version."""

    def __init__(self, found: int, expected: int, message: str = "") -> None:
        self.found = found
        self.expected = expected
        super().__init__(
            message or f"Schema version {found} cannot be migrated to {expected}"
        )


class NotFoundError(StorageError):
    def __init__(self, collection: str, record_id: Any) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection} record {record_id} not found")


class StoreNotOpenError(StorageError):
    """A data operation was attempted before open() completed."""


class QueryError(StorageError):
    """Records could not be ordered by the requested key."""


# ---- Composition / reads ----

class FetchError(PromptloomError):
    """Reading roles or tags failed."""


class ComposeError(PromptloomError):
    """System prompt could not be composed; the previous prompt stays in effect."""


# ---- Completion ----

class ProviderNotConfiguredError(PromptloomError):
    pass


class StreamError(PromptloomError):
    """The fragment stream failed mid-way.

    ``result`` holds whatever was applied to the transcript before the failure.
    """

    def __init__(self, message: str, result: Optional[Any] = None) -> None:
        super().__init__(message)
        self.result = result


class TurnInProgressError(PromptloomError):
    """A reply is still streaming into the active session."""


# ---- Prompt library ----

class PromptLibraryError(PromptloomError):
    """The external prompt library could not be fetched or parsed."""


class PromptLibraryNotConfiguredError(PromptLibraryError):
    pass
