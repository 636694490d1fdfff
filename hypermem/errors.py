"""
Shared error types for hypermem services.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class ExtractionProviderError(RuntimeError):
    """Raised when the extraction provider is unavailable or answers badly."""


class FeedFetchError(RuntimeError):
    """Raised when a syndicated feed cannot be fetched or parsed."""


class UnsupportedDocumentError(ValueError):
    """Raised for uploaded documents with an extension we cannot read."""
