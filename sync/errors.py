# sync/errors.py

from utils.config import ConfigurationError


class SyncConfigurationError(ConfigurationError):
    """Raised before any remote call when a SyncRequest is incomplete or invalid."""

class SyncAbortedError(Exception):
    """
    Raised when a result page cannot be fetched mid-run.

    Every wave completed before the failure is already in the checkpoint and
    the audit file; `summary` holds the counts up to that point.
    """
    def __init__(self, message, summary=None, original_exception=None):
        self.summary = summary
        self.original_exception = original_exception
        super().__init__(message)
