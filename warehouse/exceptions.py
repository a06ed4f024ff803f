# warehouse/exceptions.py


class WarehouseError(Exception):
    """Base exception for warehouse backend errors."""
    def __init__(self, message="An error occurred talking to the warehouse", original_exception=None):
        self.original_exception = original_exception
        super().__init__(message)

class QuerySubmissionError(WarehouseError):
    """Raised when the warehouse rejects a query (syntax, permissions, missing table)."""

class PageFetchError(WarehouseError):
    """Raised when a result page cannot be read."""
