from typing import Optional


class EmphasizeError(Exception):
    """Base class for every error raised by emphasize."""


class ConfigError(EmphasizeError):
    """A configuration value is missing or cannot be parsed."""


class IngestionError(EmphasizeError):
    """
    Source content is malformed or unreachable.
    Aborts the whole batch: the previously published snapshot keeps serving.
    """


class FrontMatterError(IngestionError):
    """An article file has a missing or malformed frontmatter block."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"{reason} while parsing {name!r}")
        self.name = name
        self.reason = reason


class StoreError(EmphasizeError):
    """A Publication Store operation failed for a single article."""

    def __init__(self, message: str, article_id: Optional[str] = None):
        super().__init__(message)
        self.article_id = article_id


class StoreUnavailable(StoreError):
    """The backing store could not be reached, or the call timed out."""


class StoreConflict(StoreError):
    """A concurrent write was detected. Retry with fresh data."""


class BindError(EmphasizeError):
    """The listening port could not be bound at startup. Fatal."""

    def __init__(self, host: str, port: int, reason: str):
        super().__init__(f"Cannot bind {host}:{port}: {reason}")
        self.host = host
        self.port = port
