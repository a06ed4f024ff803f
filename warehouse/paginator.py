# warehouse/paginator.py

from typing import Any, Dict, List, Optional, Tuple

from utils import config
from utils.config import ConfigurationError
from utils.logger import get_logger
from .exceptions import WarehouseError, QuerySubmissionError, PageFetchError

logger = get_logger("paginator")


class QueryPaginator:
    """
    Thin wrapper over a warehouse backend (anything with submit/fetch_page).

    Guarantees the error contract callers rely on: a rejected query is a
    QuerySubmissionError, any failure while reading a page is a PageFetchError.
    Pages are returned in backend order, untouched.
    """

    def __init__(self, backend):
        self.backend = backend

    def open_query(self, query_text: str) -> Any:
        try:
            return self.backend.submit(query_text)
        except QuerySubmissionError:
            raise
        except WarehouseError as e:
            raise QuerySubmissionError(str(e), original_exception=e) from e

    def next_page(self, job: Any, page_token: Optional[str], page_size: int) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        try:
            rows, next_token = self.backend.fetch_page(job, page_token, page_size)
        except PageFetchError:
            raise
        except Exception as e:
            raise PageFetchError(f"Failed to fetch page (token={page_token}): {e}", original_exception=e) from e
        logger.debug(f"Fetched page of {len(rows)} rows (token={page_token}, next={next_token})")
        return rows, next_token


_warehouse = None


def get_warehouse():
    """Returns the process-wide warehouse backend selected by WAREHOUSE_BACKEND."""
    global _warehouse
    if _warehouse is None:
        if config.WAREHOUSE_BACKEND == "bigquery":
            from .bigquery_client import BigQueryWarehouse
            _warehouse = BigQueryWarehouse()
        elif config.WAREHOUSE_BACKEND == "snowflake":
            from .snowflake_client import SnowflakeWarehouse
            _warehouse = SnowflakeWarehouse()
        else:
            raise ConfigurationError(f"Unknown WAREHOUSE_BACKEND: {config.WAREHOUSE_BACKEND!r} (expected bigquery or snowflake)")
        logger.info(f"Using {config.WAREHOUSE_BACKEND} warehouse backend.")
    return _warehouse
