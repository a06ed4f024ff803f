# hubspot_client/exceptions.py

import json
from typing import Any, Optional


def _response_details(original_exception: Optional[BaseException]) -> str:
    """Pulls the HTTP body out of an SDK ApiException or a requests exception."""
    if original_exception is None:
        return ""
    response = getattr(original_exception, "response", None)
    if response is not None and hasattr(response, "text"):
        try:
            return response.text
        except Exception:
            return "Response body unavailable"
    body = getattr(original_exception, "body", None)
    if body is not None:
        return body.decode("utf-8", "replace") if isinstance(body, bytes) else str(body)
    return ""


class HubSpotError(Exception):
    """Base exception for HubSpot client errors."""
    def __init__(self, message="An error occurred with the HubSpot API", status_code=None, original_exception=None):
        self.status_code = status_code
        self.original_exception = original_exception
        self.body = _response_details(original_exception)
        details = f" - Body: {self.body}" if self.body else ""
        super().__init__(f"{message}{details}")

class HubSpotAuthenticationError(HubSpotError):
    """Raised for authentication issues (missing token, 401 or 403)."""
    def __init__(self, message="HubSpot authentication failed (401)", status_code=401, original_exception=None):
        super().__init__(message, status_code, original_exception)

class HubSpotRateLimitError(HubSpotError):
    """Raised when HubSpot API rate limits are exceeded."""
    def __init__(self, message="HubSpot API rate limit exceeded (429)", status_code=429, original_exception=None):
        super().__init__(message, status_code, original_exception)

class HubSpotNotFoundError(HubSpotError):
    """Raised when a record id does not exist for the object type."""
    def __init__(self, message="HubSpot resource not found (404)", status_code=404, original_exception=None):
        super().__init__(message, status_code, original_exception)

class HubSpotBadRequestError(HubSpotError):
    """Raised for invalid requests (unknown property, bad enum value...)."""
    def __init__(self, message="HubSpot bad request (400)", status_code=400, original_exception=None):
        super().__init__(message, status_code, original_exception)

class HubSpotConflictError(HubSpotError):
    """Raised for conflicts (e.g. merging an already merged record)."""
    def __init__(self, message="HubSpot conflict (409)", status_code=409, original_exception=None):
        super().__init__(message, status_code, original_exception)

class HubSpotServerError(HubSpotError):
    """Raised for server-side errors on HubSpot's end."""
    def __init__(self, message="HubSpot server error (5xx)", status_code=500, original_exception=None):
        if original_exception is not None:
            response = getattr(original_exception, "response", None)
            status = getattr(original_exception, "status", None)
            if response is not None and getattr(response, "status_code", None) is not None:
                status_code = response.status_code
            elif status is not None:
                status_code = status
        super().__init__(message, status_code, original_exception)


def error_detail(exc: BaseException) -> str:
    """
    Serializes an update failure for the audit file.

    Prefers the HubSpot response body (compact JSON when it parses),
    falling back to the exception message.
    """
    body: Any = getattr(exc, "body", None)
    if not body:
        body = _response_details(getattr(exc, "original_exception", None))
    if body:
        if isinstance(body, bytes):
            body = body.decode("utf-8", "replace")
        try:
            return json.dumps(json.loads(body), separators=(",", ":"))
        except (TypeError, ValueError):
            return str(body)
    return str(exc) or type(exc).__name__
