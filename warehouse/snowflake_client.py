# warehouse/snowflake_client.py

from typing import Any, Dict, List, Optional, Tuple

import snowflake.connector
from snowflake.connector import DictCursor
from snowflake.connector.errors import Error as SnowflakeError

from utils import config
from utils.logger import get_logger
from .exceptions import QuerySubmissionError, PageFetchError, WarehouseError

logger = get_logger("snowflake_client")

_TYPE_NAMES = {"STRING": "VARCHAR", "TIMESTAMP": "TIMESTAMP_NTZ", "INT64": "INTEGER", "BOOL": "BOOLEAN"}


class SnowflakeJob:
    """An executed query: its open cursor plus how many rows were read so far."""

    def __init__(self, cursor):
        self.cursor = cursor
        self.offset = 0


class SnowflakeWarehouse:
    """
    Snowflake backend. Pages come from fetchmany on one open cursor, so the
    page token is just the row offset already consumed and pages have to be
    read in order.

    Snowflake upper-cases unquoted column names; keys are lower-cased here so
    the same SQL and id_column work on both backends.
    """

    name = "snowflake"

    def __init__(self, connection=None, lowercase_columns: bool = True):
        self._connection = connection
        self.lowercase_columns = lowercase_columns

    @property
    def connection(self):
        if self._connection is None:
            self._connection = snowflake.connector.connect(
                user=config.SNOWFLAKE_USER,
                password=config.SNOWFLAKE_PASSWORD,
                account=config.SNOWFLAKE_ACCOUNT,
                warehouse=config.SNOWFLAKE_WAREHOUSE,
                database=config.SNOWFLAKE_DATABASE,
                schema=config.SNOWFLAKE_SCHEMA,
            )
            logger.info(f"✅ Connected to Snowflake ({config.SNOWFLAKE_DATABASE}.{config.SNOWFLAKE_SCHEMA}).")
        return self._connection

    def _row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        if not self.lowercase_columns:
            return dict(row)
        return {key.lower(): value for key, value in row.items()}

    def submit(self, query: str) -> SnowflakeJob:
        try:
            cursor = self.connection.cursor(DictCursor)
            cursor.execute(query)
        except SnowflakeError as e:
            logger.error(f"❌ Snowflake rejected the query: {e}")
            raise QuerySubmissionError(f"Snowflake query failed: {e}", original_exception=e) from e
        logger.info(f"Snowflake query {cursor.sfqid} submitted.")
        return SnowflakeJob(cursor)

    def fetch_page(self, job: SnowflakeJob, page_token: Optional[str], page_size: int) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        expected = None if job.offset == 0 else str(job.offset)
        if page_token != expected:
            raise PageFetchError(f"Snowflake pages must be read in order (expected token {expected!r}, got {page_token!r})")
        try:
            rows = job.cursor.fetchmany(page_size)
        except SnowflakeError as e:
            raise PageFetchError(f"Failed to read Snowflake result page: {e}", original_exception=e) from e

        job.offset += len(rows)
        # A short page means the cursor is exhausted.
        next_token = str(job.offset) if len(rows) == page_size else None
        if next_token is None:
            job.cursor.close()
        return [self._row(r) for r in rows], next_token

    def run_query(self, query: str) -> List[Dict[str, Any]]:
        job = self.submit(query)
        try:
            return [self._row(r) for r in job.cursor.fetchall()]
        except SnowflakeError as e:
            raise PageFetchError(f"Failed to read Snowflake results: {e}", original_exception=e) from e
        finally:
            job.cursor.close()

    def quote_table(self, table: str) -> str:
        return table

    def ensure_table(self, table: str, schema: List[Tuple[str, str]]) -> None:
        columns = ",\n                ".join(f"{name.upper()} {_TYPE_NAMES.get(t.upper(), t)}" for name, t in schema)
        cursor = self.connection.cursor()
        try:
            cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                {columns}
            )
            """)
            logger.info(f"✅ Table {table} is ready.")
        except SnowflakeError as e:
            raise WarehouseError(f"Could not prepare table {table}: {e}", original_exception=e) from e
        finally:
            cursor.close()

    def insert_rows(self, table: str, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        columns = list(rows[0].keys())
        placeholders = ", ".join(["%s"] * len(columns))
        sql = f"INSERT INTO {table} ({', '.join(c.upper() for c in columns)}) VALUES ({placeholders})"
        cursor = self.connection.cursor()
        try:
            cursor.executemany(sql, [tuple(row.get(c) for c in columns) for row in rows])
            self.connection.commit()
        except SnowflakeError as e:
            raise WarehouseError(f"Snowflake insert into {table} failed: {e}", original_exception=e) from e
        finally:
            cursor.close()
        logger.info(f"Inserted {len(rows)} rows into {table}.")
        return len(rows)
