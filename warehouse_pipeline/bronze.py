import csv
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

from utils.logger import with_run_context
from warehouse_pipeline.database import connect, count_rows
from warehouse_pipeline.ledger import RunLedger, RunStatus
from warehouse_pipeline.sources import SourceTableSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadOutcome:
    """Result of loading one source table: Success(row_count) or Failure(message)."""

    table_name: str
    run_id: int
    status: RunStatus
    row_count: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, table_name: str, run_id: int, row_count: int) -> "LoadOutcome":
        return cls(table_name, run_id, RunStatus.SUCCESS, row_count=row_count)

    @classmethod
    def failure(cls, table_name: str, run_id: int, message: str) -> "LoadOutcome":
        return cls(table_name, run_id, RunStatus.FAILED, error=message)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS


def validate_csv_structure(header: Optional[Sequence[str]], required_columns: List[str]) -> None:
    """
    Validate the header row of a source extract against the expected layout.

    Names are compared case-insensitively; ERP extracts ship upper-case headers.

    Args:
        header: Header row as read from the file (None if the file is empty)
        required_columns: Column names in the order the bronze table expects

    Raises:
        ValueError: if the file is empty or its columns don't match
    """
    if not header:
        raise ValueError("CSV file is empty or has no headers")
    found = [column.strip().lower() for column in header]
    missing_columns = [col for col in required_columns if col not in found]
    if missing_columns:
        raise ValueError(f"CSV file is missing required columns: {missing_columns}")
    if found != required_columns:
        raise ValueError(f"CSV columns {found} do not match expected layout {required_columns}")


def _raw_rows(reader, width: int) -> Iterator[tuple]:
    # Line 1 is the header; data starts on line 2.
    for line_number, row in enumerate(reader, start=2):
        if not row:
            continue
        if len(row) != width:
            raise ValueError(
                f"Malformed row at line {line_number}: expected {width} fields, got {len(row)}"
            )
        yield tuple(value if value != "" else None for value in row)


class TableLoader:
    """Loads one raw source table into its bronze relation and reports to the ledger."""

    def __init__(self, ledger: RunLedger, db_path: str):
        self.ledger = ledger
        self.db_path = db_path

    def load(self, spec: SourceTableSpec, batch_id: int) -> LoadOutcome:
        """
        Truncate-and-reload one bronze table from its source file.

        Failures while clearing, transferring or counting are caught and
        recorded as a FAILED table run; they never reach the caller. Failures
        of the ledger itself are not table-scoped and propagate.

        Args:
            spec: Source table to load
            batch_id: Batch the load belongs to

        Returns:
            LoadOutcome describing the table run
        """
        run_id = self.ledger.open_table_run(batch_id, spec.table_name)
        log = with_run_context(logger, batch_id=batch_id, run_id=run_id)
        log.info(f"Loading {spec.table_name} from {spec.source_location}")

        try:
            row_count = self._transfer(spec)
        except Exception as e:
            message = str(e) or type(e).__name__
            log.error(f"Load of {spec.table_name} failed: {message}")
            self.ledger.close_table_run(run_id, RunStatus.FAILED, error=message)
            return LoadOutcome.failure(spec.table_name, run_id, message)

        self.ledger.close_table_run(run_id, RunStatus.SUCCESS, row_count=row_count)
        log.info(f"Loaded {row_count} rows into {spec.table_name}")
        return LoadOutcome.success(spec.table_name, run_id, row_count)

    def _transfer(self, spec: SourceTableSpec) -> int:
        conn = connect(self.db_path)
        try:
            # Clearing is committed on its own: a failed transfer leaves the table empty.
            conn.execute(f"DELETE FROM {spec.table_name}")
            conn.commit()

            columns = spec.column_names
            placeholders = ", ".join("?" for _ in columns)
            insert_sql = f"INSERT INTO {spec.table_name} ({', '.join(columns)}) VALUES ({placeholders})"

            with open(spec.source_location, newline="", encoding="utf-8-sig") as f:
                reader = csv.reader(f)
                validate_csv_structure(next(reader, None), columns)
                conn.executemany(insert_sql, _raw_rows(reader, len(columns)))

            conn.commit()
            return count_rows(conn, spec.table_name)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
