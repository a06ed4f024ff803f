# warehouse/bigquery_client.py

from typing import Any, Dict, List, Optional, Tuple

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import bigquery

from utils import config
from utils.logger import get_logger
from .exceptions import QuerySubmissionError, PageFetchError, WarehouseError

logger = get_logger("bigquery_client")

# Rows per insert_rows_json call.
INSERT_CHUNK_SIZE = 500


class BigQueryWarehouse:
    """
    BigQuery backend. A query runs as a job; its result table is then read
    page by page with list_rows and the page token BigQuery hands back.
    """

    name = "bigquery"

    def __init__(self, project_id: Optional[str] = None, location: Optional[str] = None, client: Optional[bigquery.Client] = None):
        self.project_id = project_id or config.BQ_PROJECT_ID
        self.location = location or config.BQ_LOCATION
        self._client = client

    @property
    def client(self) -> bigquery.Client:
        if self._client is None:
            self._client = bigquery.Client(project=self.project_id)
            logger.info(f"✅ BigQuery client initialized (project={self.project_id}, location={self.location}).")
        return self._client

    def submit(self, query: str) -> bigquery.QueryJob:
        """Starts the query and waits for it to finish. Rejections raise QuerySubmissionError."""
        try:
            job = self.client.query(query, location=self.location)
            job.result()
        except GoogleAPIError as e:
            logger.error(f"❌ BigQuery rejected the query: {e}")
            raise QuerySubmissionError(f"BigQuery query failed: {e}", original_exception=e) from e
        logger.info(f"BigQuery job {job.job_id} finished.")
        return job

    def fetch_page(self, job: bigquery.QueryJob, page_token: Optional[str], page_size: int) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Returns one page of the job's result rows and the token of the next page (None when done)."""
        try:
            iterator = self.client.list_rows(job.destination, page_size=page_size, page_token=page_token)
            page = next(iterator.pages, None)
            rows = [dict(row.items()) for row in page] if page is not None else []
            return rows, iterator.next_page_token
        except GoogleAPIError as e:
            raise PageFetchError(f"Failed to read BigQuery result page: {e}", original_exception=e) from e

    def run_query(self, query: str) -> List[Dict[str, Any]]:
        """Runs a query and returns every row. Meant for small control tables."""
        job = self.submit(query)
        try:
            return [dict(row.items()) for row in job.result()]
        except GoogleAPIError as e:
            raise PageFetchError(f"Failed to read BigQuery results: {e}", original_exception=e) from e

    def quote_table(self, table: str) -> str:
        return f"`{table}`"

    def ensure_table(self, table: str, schema: List[Tuple[str, str]]) -> None:
        """Creates the dataset and table when missing. schema is [(column, STRING|TIMESTAMP|...)]."""
        dataset_id = table.rsplit(".", 1)[0]
        try:
            self.client.create_dataset(bigquery.Dataset(dataset_id), exists_ok=True)
            try:
                self.client.get_table(table)
                logger.info(f"Table {table} already exists.")
            except NotFound:
                fields = [bigquery.SchemaField(name, field_type) for name, field_type in schema]
                self.client.create_table(bigquery.Table(table, schema=fields))
                logger.info(f"✅ Created table {table}.")
        except GoogleAPIError as e:
            raise WarehouseError(f"Could not prepare table {table}: {e}", original_exception=e) from e

    def insert_rows(self, table: str, rows: List[Dict[str, Any]]) -> int:
        """Streams rows into table in chunks. Returns the number of rows inserted."""
        inserted = 0
        for start in range(0, len(rows), INSERT_CHUNK_SIZE):
            chunk = rows[start:start + INSERT_CHUNK_SIZE]
            errors = self.client.insert_rows_json(table, chunk)
            if errors:
                logger.error(f"❌ Insert errors on {table}: {errors}")
                raise WarehouseError(f"BigQuery insert into {table} failed: {errors}")
            inserted += len(chunk)
            logger.info(f"Inserted {inserted}/{len(rows)} rows into {table}.")
        return inserted
