"""
Batch orchestration for the bronze layer.

One batch = one ledger entry plus one table run per configured source table.
Table failures are isolated: they come back as FAILED LoadOutcomes and the
loop moves on. Only errors outside the per-table boundary (the ledger going
away, a bug in the loop itself) fail the batch.

The batch is closed SUCCESS whenever orchestration completes, even if some
tables failed. Per-table results live in the table runs.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from utils.logger import with_run_context
from warehouse_pipeline.bronze import LoadOutcome, TableLoader
from warehouse_pipeline.ledger import RunLedger, RunStatus
from warehouse_pipeline.sources import SourceTableSpec

logger = logging.getLogger(__name__)


class BatchState(str, Enum):
    INIT = "INIT"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class BatchResult:
    batch_id: int
    status: RunStatus
    outcomes: Dict[str, LoadOutcome] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def failed_tables(self) -> List[str]:
        return [name for name, outcome in self.outcomes.items() if not outcome.ok]

    @property
    def total_rows(self) -> int:
        return sum(outcome.row_count or 0 for outcome in self.outcomes.values())


class BatchOrchestrator:
    """Drives one end-to-end bronze load over every configured source table."""

    def __init__(self, ledger: RunLedger, loader: TableLoader, max_workers: int = 1):
        self.ledger = ledger
        self.loader = loader
        self.max_workers = max(1, max_workers)
        self.state = BatchState.INIT

    def run(self, specs: Sequence[SourceTableSpec]) -> BatchResult:
        """
        Run one batch.

        Args:
            specs: Source tables to load

        Returns:
            BatchResult with the terminal batch status and per-table outcomes
        """
        if self.state is not BatchState.INIT:
            raise RuntimeError(f"Orchestrator already used (state {self.state.value})")

        batch_id = self.ledger.open_batch()
        self.state = BatchState.RUNNING
        log = with_run_context(logger, batch_id=batch_id)
        log.info(f"Starting bronze load of {len(specs)} tables")

        outcomes: Dict[str, LoadOutcome] = {}
        try:
            if self.max_workers > 1:
                self._run_parallel(specs, batch_id, outcomes)
            else:
                for spec in specs:
                    outcomes[spec.table_name] = self.loader.load(spec, batch_id)
        except Exception as e:
            message = str(e) or type(e).__name__
            log.error(f"Batch aborted: {message}")
            self.ledger.close_batch(batch_id, RunStatus.FAILED, message)
            self.state = BatchState.FAILED
            return BatchResult(batch_id, RunStatus.FAILED, outcomes, message)

        closed = self.ledger.close_batch(batch_id, RunStatus.SUCCESS)
        self.state = BatchState.SUCCESS
        result = BatchResult(batch_id, RunStatus.SUCCESS, outcomes)
        if result.failed_tables:
            log.warning(f"Batch completed with failed tables: {result.failed_tables}")
        log.info(
            f"Bronze load completed in {closed.duration} seconds, "
            f"{result.total_rows} rows across {len(outcomes)} tables"
        )
        return result

    def _run_parallel(self, specs, batch_id: int, outcomes: Dict[str, LoadOutcome]) -> None:
        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            futures = [(spec, executor.submit(self.loader.load, spec, batch_id)) for spec in specs]
            # Collected in configuration order so results don't depend on scheduling.
            for spec, future in futures:
                outcomes[spec.table_name] = future.result()
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
