import sys
import logging
import argparse
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, Optional

from utils.logger import setup_logger
from warehouse_pipeline.batch import BatchOrchestrator, BatchResult
from warehouse_pipeline.bronze import TableLoader
from warehouse_pipeline.config import PipelineConfig
from warehouse_pipeline.database import connect, count_rows, create_tables
from warehouse_pipeline.ledger import RunLedger, RunStatus
from warehouse_pipeline.silver import EntityOutcome, SilverLoader
from warehouse_pipeline.sources import EntityKind, source_table_specs

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    batch: BatchResult
    silver: Dict[EntityKind, EntityOutcome] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.batch.status is RunStatus.SUCCESS


def get_layer_stats(db_path: str) -> Dict[str, int]:
    """
    Get record counts for every bronze and silver table.

    Returns:
        Dictionary mapping table name to row count
    """
    conn = connect(db_path)
    try:
        stats = {}
        for kind in EntityKind:
            stats[kind.bronze_table] = count_rows(conn, kind.bronze_table)
            stats[kind.silver_table] = count_rows(conn, kind.silver_table)
        return stats
    finally:
        conn.close()


def run_pipeline(
    config: PipelineConfig,
    with_silver: bool = True,
    clock: Callable[[], datetime] = datetime.now,
    as_of: Optional[date] = None,
) -> PipelineResult:
    """
    Run one full-refresh batch: bronze load of every source table, then silver.

    The silver step is skipped when the bronze batch itself failed.

    Args:
        config: Database and source locations, worker count
        with_silver: Set to False to stop after the bronze load
        clock: Time source for the run ledger
        as_of: Reference date for the silver rules (default: today)

    Returns:
        PipelineResult with the batch result and per-entity silver outcomes
    """
    logger.info("Starting ETL pipeline...")
    conn = connect(config.db_path)
    try:
        create_tables(conn)
        ledger = RunLedger(conn, clock=clock)
        loader = TableLoader(ledger, config.db_path)
        orchestrator = BatchOrchestrator(ledger, loader, max_workers=config.max_workers)

        batch = orchestrator.run(source_table_specs(config.source_path))
        result = PipelineResult(batch)

        if not with_silver:
            logger.info("Silver layer skipped on request.")
        elif batch.status is RunStatus.SUCCESS:
            result.silver = SilverLoader(config.db_path, ledger, as_of=as_of).load_all(batch.batch_id)
        else:
            logger.error(f"Bronze batch {batch.batch_id} failed; silver layer not refreshed.")
    finally:
        conn.close()

    logger.info(f"Pipeline completed. Layer statistics: {get_layer_stats(config.db_path)}")
    return result


def main(argv=None) -> int:
    """Command-line entry point for the pipeline."""
    defaults = PipelineConfig.from_env()
    parser = argparse.ArgumentParser(description='Run the bronze/silver warehouse load')
    parser.add_argument('--base-path', type=str, default=defaults.source_path,
                        help='Folder holding source_crm/ and source_erp/ extracts')
    parser.add_argument('--db', type=str, default=defaults.db_path, help='Path to SQLite database')
    parser.add_argument('--workers', type=int, default=defaults.max_workers,
                        help='Number of tables to load in parallel')
    parser.add_argument('--skip-silver', action='store_true', help='Only load the bronze layer')
    parser.add_argument('--log-dir', type=str, default=defaults.log_dir, help='Directory for log files')
    args = parser.parse_args(argv)

    setup_logger(
        "warehouse_pipeline",
        log_file="warehouse_pipeline.log",
        level=getattr(logging, defaults.log_level, logging.INFO),
        log_dir=args.log_dir,
    )

    config = PipelineConfig(
        db_path=args.db,
        source_path=args.base_path,
        log_dir=args.log_dir,
        log_level=defaults.log_level,
        max_workers=max(1, args.workers),
    )
    result = run_pipeline(config, with_silver=not args.skip_silver)

    print("Pipeline execution completed:")
    print(f"Batch {result.batch.batch_id}: {result.batch.status.value}")
    for table_name, outcome in result.batch.outcomes.items():
        if outcome.ok:
            print(f"  {table_name}: {outcome.row_count} rows")
        else:
            print(f"  {table_name}: FAILED ({outcome.error})")
    for kind, outcome in result.silver.items():
        flagged = len(outcome.failed_checks)
        state = f"{outcome.silver_rows} rows, {flagged} checks flagged" if outcome.ok else f"FAILED ({outcome.error})"
        print(f"  {kind.silver_table}: {state}")

    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
