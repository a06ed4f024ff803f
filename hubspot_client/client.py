# hubspot_client/client.py

import time
from typing import Any, Callable, Dict, Optional

import requests
from hubspot import HubSpot

from utils import config
from utils.logger import get_logger
from .exceptions import (
    HubSpotError, HubSpotAuthenticationError, HubSpotRateLimitError,
    HubSpotNotFoundError, HubSpotBadRequestError, HubSpotConflictError, HubSpotServerError
)

logger = get_logger("hubspot_client")

_client: Optional[HubSpot] = None


def get_hubspot_client() -> HubSpot:
    """
    Returns the process-wide HubSpot client, creating it on first use.

    Raises:
        HubSpotAuthenticationError: if no access token is configured.
    """
    global _client
    if _client is None:
        if not config.HUBSPOT_ACCESS_TOKEN:
            logger.critical("❌ HubSpot access token not found (HUBSPOT_PERSONAL_ACCESS_KEY).")
            raise HubSpotAuthenticationError("HubSpot access token not configured.")
        _client = HubSpot(access_token=config.HUBSPOT_ACCESS_TOKEN)
        account = config.HUBSPOT_ACCOUNT_ID or "(not set)"
        logger.info(f"✅ HubSpot client initialized for account {account}.")
    return _client


def _status_of(e: Exception) -> Optional[int]:
    if isinstance(e, requests.exceptions.RequestException):
        return e.response.status_code if e.response is not None else None
    status = getattr(e, "status", None)
    return status if isinstance(status, int) else None


def _handle_api_exception(e: Exception, context: str):
    """Translates an SDK ApiException or a requests exception into a typed HubSpot error."""
    if isinstance(e, HubSpotError):
        raise e

    status_code = _status_of(e)
    if status_code is None:
        if isinstance(e, requests.exceptions.RequestException):
            logger.error(f"HubSpot request failed during {context}: {e}")
            raise HubSpotError(message=f"Network or request error during {context}: {e}", original_exception=e) from e
        logger.exception(f"Unexpected error during {context}: {e}")
        raise HubSpotError(message=f"Unexpected error during {context}: {e}", original_exception=e) from e

    logger.error(f"HubSpot API exception during {context}: Status={status_code}, Reason={getattr(e, 'reason', 'N/A')}")

    if status_code == 401:
        raise HubSpotAuthenticationError(original_exception=e) from e
    elif status_code == 403:
        raise HubSpotAuthenticationError(message=f"HubSpot Forbidden (403) during {context}", status_code=status_code, original_exception=e) from e
    elif status_code == 404:
        raise HubSpotNotFoundError(message=f"HubSpot resource not found (404) during {context}", original_exception=e) from e
    elif status_code == 409:
        raise HubSpotConflictError(original_exception=e) from e
    elif status_code == 429:
        raise HubSpotRateLimitError(original_exception=e) from e
    elif status_code == 400:
        raise HubSpotBadRequestError(original_exception=e) from e
    elif status_code >= 500:
        raise HubSpotServerError(original_exception=e) from e
    raise HubSpotError(message=f"Unhandled HubSpot error during {context} (Status: {status_code})", status_code=status_code, original_exception=e) from e


def call_with_retry(func: Callable[[], Any], context: str, max_retries: Optional[int] = None) -> Any:
    """
    Runs func, retrying rate limits (429) and server errors (5xx) with
    exponential backoff. Any other failure is translated right away.

    Blocking: meant to run on a worker thread via run_in_executor.
    """
    retries = config.HUBSPOT_MAX_RETRIES if max_retries is None else max_retries
    retry_delay = config.HUBSPOT_INITIAL_RETRY_DELAY

    for attempt in range(retries + 1):
        try:
            return func()
        except Exception as e:
            status_code = _status_of(e)
            retryable = status_code == 429 or (status_code is not None and status_code >= 500)
            if not retryable or attempt == retries:
                _handle_api_exception(e, context)

            retry_after = None
            if isinstance(e, requests.exceptions.RequestException) and e.response is not None:
                retry_after = e.response.headers.get("Retry-After")
            else:
                headers = getattr(e, "headers", None) or {}
                retry_after = headers.get("Retry-After")
            wait = int(retry_after) if retry_after and str(retry_after).isdigit() else retry_delay
            wait = min(wait, config.HUBSPOT_MAX_RETRY_DELAY)

            logger.warning(f"⚠️ HubSpot returned {status_code} during {context} "
                           f"(attempt {attempt + 1}/{retries + 1}). Retrying in {wait}s...")
            time.sleep(wait)
            retry_delay = min(retry_delay * 2, config.HUBSPOT_MAX_RETRY_DELAY)


def post_json(path: str, payload: Dict[str, Any], context: str, timeout: int = 30) -> Dict[str, Any]:
    """
    POSTs to a HubSpot REST path with the configured bearer token.

    Used for endpoints the SDK does not expose the same way across
    versions (batch upsert by e-mail, contact merge).
    """
    if not config.HUBSPOT_ACCESS_TOKEN:
        logger.error(f"❌ Cannot call {path}: HubSpot access token not configured.")
        raise HubSpotAuthenticationError("HubSpot access token not configured.")

    url = f"{config.HUBSPOT_API_URL}{path}"

    def _send():
        response = requests.post(
            url,
            json=payload,
            headers={
                "Authorization": f"Bearer {config.HUBSPOT_ACCESS_TOKEN}",
                "Content-Type": "application/json"
            },
            timeout=timeout
        )
        response.raise_for_status()
        return response.json() if response.content else {}

    logger.debug(f"POST {path} ({context})")
    return call_with_retry(_send, context)
