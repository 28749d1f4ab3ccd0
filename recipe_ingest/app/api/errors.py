from typing import Optional


class IngestRequestError(Exception):
    """Raised when a request is well-formed JSON but cannot start an ingest task."""

    def __init__(self, error_code: str, message: str, field: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.field = field
        self.reason = reason
