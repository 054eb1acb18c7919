"""
Run ledger: append-only audit trail of batch and table loads.

Every batch gets one row in etl_log_batch_runs and every table load inside it
one row in etl_log_table_runs. Rows are opened as RUNNING and closed exactly
once with a terminal status; nothing is ever deleted. Advisory quality gate
findings are appended to etl_log_quality_results under the same batch id.
"""
import sqlite3
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from warehouse_pipeline.database import TIMESTAMP_FORMAT
from warehouse_pipeline.quality import QualityCheckResult

logger = logging.getLogger(__name__)

# Width of the error_message columns in the log tables.
MAX_ERROR_LENGTH = 4000


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class LedgerStateError(RuntimeError):
    """Raised on ledger misuse: unknown ids, double closes, bad statuses."""


@dataclass
class BatchRun:
    batch_id: int
    start_time: datetime
    end_time: Optional[datetime]
    duration: Optional[int]
    status: RunStatus
    error_message: Optional[str] = None


@dataclass
class TableRun:
    run_id: int
    batch_id: int
    table_name: str
    start_time: datetime
    end_time: Optional[datetime]
    duration: Optional[int]
    row_count: Optional[int]
    status: RunStatus
    error_message: Optional[str] = None


def _format(moment: Optional[datetime]) -> Optional[str]:
    return moment.strftime(TIMESTAMP_FORMAT) if moment is not None else None


def _parse(text: Optional[str]) -> Optional[datetime]:
    return datetime.strptime(text, TIMESTAMP_FORMAT) if text is not None else None


def _clip(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return message[:MAX_ERROR_LENGTH]


def _terminal(status) -> RunStatus:
    status = RunStatus(status)
    if not status.is_terminal:
        raise LedgerStateError(f"Cannot close a run with non-terminal status {status.value}")
    return status


class RunLedger:
    """
    Batch and table run bookkeeping on top of a single SQLite connection.

    All writes go through one lock, so table loads running on worker threads
    can share the ledger without interleaving their statements.
    """

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], datetime] = datetime.now):
        self._conn = conn
        self._clock = clock
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        # Whole seconds, so stored end - start always equals the stored duration.
        return self._clock().replace(microsecond=0)

    # ------------------------------------------------------------------
    # Batch level
    # ------------------------------------------------------------------

    def open_batch(self) -> int:
        """Insert a RUNNING batch and return its id."""
        with self._lock:
            cursor = self._conn.execute(
                "INSERT INTO etl_log_batch_runs (batch_start, status) VALUES (?, ?)",
                (_format(self._now()), RunStatus.RUNNING.value),
            )
            self._conn.commit()
            batch_id = cursor.lastrowid
        logger.debug(f"Opened batch {batch_id}")
        return batch_id

    def close_batch(self, batch_id: int, status, error: Optional[str] = None) -> BatchRun:
        """
        Close a batch once with a terminal status.

        Raises:
            LedgerStateError: if the batch is unknown, already closed, or the
                status is not terminal
        """
        status = _terminal(status)
        with self._lock:
            row = self._conn.execute(
                "SELECT batch_start, status FROM etl_log_batch_runs WHERE batch_id = ?",
                (batch_id,),
            ).fetchone()
            if row is None:
                raise LedgerStateError(f"Unknown batch {batch_id}")
            if row[1] != RunStatus.RUNNING.value:
                raise LedgerStateError(f"Batch {batch_id} is already closed as {row[1]}")

            start = _parse(row[0])
            end = self._now()
            duration = int((end - start).total_seconds())
            self._conn.execute(
                """
                UPDATE etl_log_batch_runs
                SET batch_end = ?, duration_sec = ?, status = ?, error_message = ?
                WHERE batch_id = ?
                """,
                (_format(end), duration, status.value, _clip(error), batch_id),
            )
            self._conn.commit()
        return BatchRun(batch_id, start, end, duration, status, _clip(error))

    def get_batch(self, batch_id: int) -> BatchRun:
        row = self._conn.execute(
            """
            SELECT batch_id, batch_start, batch_end, duration_sec, status, error_message
            FROM etl_log_batch_runs WHERE batch_id = ?
            """,
            (batch_id,),
        ).fetchone()
        if row is None:
            raise LedgerStateError(f"Unknown batch {batch_id}")
        return BatchRun(row[0], _parse(row[1]), _parse(row[2]), row[3], RunStatus(row[4]), row[5])

    def batches(self) -> List[BatchRun]:
        rows = self._conn.execute("SELECT batch_id FROM etl_log_batch_runs ORDER BY batch_id").fetchall()
        return [self.get_batch(row[0]) for row in rows]

    # ------------------------------------------------------------------
    # Table level
    # ------------------------------------------------------------------

    def open_table_run(self, batch_id: int, table_name: str) -> int:
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO etl_log_table_runs (batch_id, table_name, start_time, status)
                VALUES (?, ?, ?, ?)
                """,
                (batch_id, table_name, _format(self._now()), RunStatus.RUNNING.value),
            )
            self._conn.commit()
            return cursor.lastrowid

    def close_table_run(
        self,
        run_id: int,
        status,
        row_count: Optional[int] = None,
        error: Optional[str] = None,
    ) -> TableRun:
        """Record the outcome of one table load. A run can be closed only once."""
        status = _terminal(status)
        with self._lock:
            row = self._conn.execute(
                "SELECT start_time, status FROM etl_log_table_runs WHERE run_id = ?",
                (run_id,),
            ).fetchone()
            if row is None:
                raise LedgerStateError(f"Unknown table run {run_id}")
            if row[1] != RunStatus.RUNNING.value:
                raise LedgerStateError(f"Table run {run_id} is already closed as {row[1]}")

            end = self._now()
            duration = int((end - _parse(row[0])).total_seconds())
            self._conn.execute(
                """
                UPDATE etl_log_table_runs
                SET end_time = ?, duration_sec = ?, row_count = ?, status = ?, error_message = ?
                WHERE run_id = ?
                """,
                (_format(end), duration, row_count, status.value, _clip(error), run_id),
            )
            self._conn.commit()
            return self.get_table_run(run_id)

    def get_table_run(self, run_id: int) -> TableRun:
        row = self._conn.execute(
            """
            SELECT run_id, batch_id, table_name, start_time, end_time,
                   duration_sec, row_count, status, error_message
            FROM etl_log_table_runs WHERE run_id = ?
            """,
            (run_id,),
        ).fetchone()
        if row is None:
            raise LedgerStateError(f"Unknown table run {run_id}")
        return self._table_run(row)

    def table_runs(self, batch_id: int) -> List[TableRun]:
        rows = self._conn.execute(
            """
            SELECT run_id, batch_id, table_name, start_time, end_time,
                   duration_sec, row_count, status, error_message
            FROM etl_log_table_runs WHERE batch_id = ? ORDER BY run_id
            """,
            (batch_id,),
        ).fetchall()
        return [self._table_run(row) for row in rows]

    @staticmethod
    def _table_run(row) -> TableRun:
        return TableRun(
            run_id=row[0],
            batch_id=row[1],
            table_name=row[2],
            start_time=_parse(row[3]),
            end_time=_parse(row[4]),
            duration=row[5],
            row_count=row[6],
            status=RunStatus(row[7]),
            error_message=row[8],
        )

    # ------------------------------------------------------------------
    # Quality gate channel
    # ------------------------------------------------------------------

    def record_quality_result(self, batch_id: Optional[int], result: QualityCheckResult) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO etl_log_quality_results (
                    batch_id, entity, phase, check_name, status,
                    observed, expected, detail, checked_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    batch_id,
                    result.entity,
                    result.phase,
                    result.check_name,
                    result.status,
                    result.observed,
                    result.expected,
                    _clip(result.detail),
                    _format(self._now()),
                ),
            )
            self._conn.commit()

    def quality_results(self, batch_id: Optional[int] = None) -> List[QualityCheckResult]:
        query = """
            SELECT entity, phase, check_name, status, observed, expected, detail
            FROM etl_log_quality_results
        """
        if batch_id is None:
            rows = self._conn.execute(query + " ORDER BY result_id").fetchall()
        else:
            rows = self._conn.execute(
                query + " WHERE batch_id = ? ORDER BY result_id", (batch_id,)
            ).fetchall()
        return [QualityCheckResult(*row) for row in rows]
