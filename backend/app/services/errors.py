"""Ingestion error taxonomy. Routes map these to HTTP status codes; batch loops record them per item."""


class IngestionError(Exception):
    """Base for every failure raised while turning a payload into a stored workout."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ParseError(IngestionError):
    """Source payload is structurally invalid (no track, no session, unreadable bytes)."""


class UnsupportedFileError(IngestionError):
    """Uploaded file has an extension no normalizer handles."""


class ExtractionError(IngestionError):
    """Vision/AI service is unconfigured or returned no usable JSON."""


class ExternalServiceError(IngestionError):
    """Third-party API failure (OAuth exchange, token refresh, activity fetch)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageError(IngestionError):
    """Persistence failure; never retried automatically."""
