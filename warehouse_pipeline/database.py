import os
import sqlite3
import logging
from datetime import date, datetime
from typing import Iterable, Tuple

import pandas as pd

from warehouse_pipeline.sources import BRONZE_LAYOUTS, SILVER_LAYOUTS

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

LEDGER_DDL = (
    """
    CREATE TABLE IF NOT EXISTS etl_log_batch_runs (
        batch_id       INTEGER PRIMARY KEY AUTOINCREMENT,
        batch_start    TEXT NOT NULL,
        batch_end      TEXT,
        duration_sec   INTEGER,
        status         TEXT NOT NULL,
        error_message  TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS etl_log_table_runs (
        run_id         INTEGER PRIMARY KEY AUTOINCREMENT,
        batch_id       INTEGER NOT NULL REFERENCES etl_log_batch_runs(batch_id),
        table_name     TEXT NOT NULL,
        start_time     TEXT NOT NULL,
        end_time       TEXT,
        duration_sec   INTEGER,
        row_count      INTEGER,
        status         TEXT NOT NULL,
        error_message  TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS etl_log_quality_results (
        result_id      INTEGER PRIMARY KEY AUTOINCREMENT,
        batch_id       INTEGER,
        entity         TEXT NOT NULL,
        phase          TEXT NOT NULL,
        check_name     TEXT NOT NULL,
        status         TEXT NOT NULL,
        observed       INTEGER,
        expected       INTEGER,
        detail         TEXT,
        checked_at     TEXT NOT NULL
    )
    """,
)


def connect(db_path: str) -> sqlite3.Connection:
    """
    Create a connection to the warehouse database, creating its folder if needed.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        SQLite connection object
    """
    folder = os.path.dirname(db_path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    return sqlite3.connect(db_path, timeout=30, check_same_thread=False)


def _table_ddl(table_name: str, columns: Iterable[Tuple[str, str]]) -> str:
    column_defs = ",\n    ".join(f"{name} {sql_type}" for name, sql_type in columns)
    return f"CREATE TABLE IF NOT EXISTS {table_name} (\n    {column_defs}\n)"


def create_tables(conn: sqlite3.Connection) -> None:
    """Create bronze, silver and ledger tables if they don't already exist."""
    cursor = conn.cursor()
    for kind, columns in BRONZE_LAYOUTS.items():
        cursor.execute(_table_ddl(kind.bronze_table, columns))
    for kind, columns in SILVER_LAYOUTS.items():
        cursor.execute(_table_ddl(kind.silver_table, columns))
    for statement in LEDGER_DDL:
        cursor.execute(statement)
    conn.commit()
    logger.debug("Warehouse tables ensured")


def count_rows(conn: sqlite3.Connection, table_name: str) -> int:
    cursor = conn.execute(f"SELECT COUNT(*) FROM {table_name}")
    return cursor.fetchone()[0]


def read_table(conn: sqlite3.Connection, table_name: str) -> pd.DataFrame:
    """
    Read a whole relation into a DataFrame of plain Python values.

    Values are kept as object columns so that NULL stays None and integers
    don't get widened to floats next to missing values.
    """
    cursor = conn.execute(f"SELECT * FROM {table_name}")
    columns = [description[0] for description in cursor.description]
    return pd.DataFrame(cursor.fetchall(), columns=columns, dtype=object)


def _to_storage(value):
    if isinstance(value, datetime):
        return value.strftime(TIMESTAMP_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    return value


def replace_table(conn: sqlite3.Connection, table_name: str, frame: pd.DataFrame) -> int:
    """
    Overwrite a relation with the given rows in a single transaction.

    Returns:
        Number of rows written
    """
    try:
        conn.execute(f"DELETE FROM {table_name}")
        if not frame.empty:
            storable = pd.DataFrame(
                {column: frame[column].map(_to_storage) for column in frame.columns},
                dtype=object,
            )
            storable.to_sql(table_name, conn, if_exists="append", index=False)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return len(frame)
