import os
import logging
from datetime import date

import pytest

from data_generator import generate_sources
from warehouse_pipeline.config import PipelineConfig
from warehouse_pipeline.database import connect, read_table
from warehouse_pipeline.ledger import RunLedger, RunStatus
from warehouse_pipeline.run_pipeline import get_layer_stats, main, run_pipeline
from warehouse_pipeline.sources import EntityKind

AS_OF = date(2025, 9, 7)


@pytest.fixture
def config(tmp_path):
    source_path = str(tmp_path / "datasets")
    generate_sources(source_path, num_customers=50, num_products=10, num_orders=200, seed=7)
    return PipelineConfig(
        db_path=str(tmp_path / "database" / "warehouse.db"),
        source_path=source_path,
        log_dir=str(tmp_path / "logs"),
    )


def _snapshot(db_path):
    conn = connect(db_path)
    try:
        return {
            table: read_table(conn, table).values.tolist()
            for kind in EntityKind
            for table in (kind.bronze_table, kind.silver_table)
        }
    finally:
        conn.close()


@pytest.mark.integration
class TestRunPipeline:

    def test_full_run(self, config, clock):
        result = run_pipeline(config, clock=clock, as_of=AS_OF)

        assert result.ok
        assert result.batch.failed_tables == []
        assert len(result.batch.outcomes) == len(EntityKind)
        assert all(outcome.ok for outcome in result.silver.values())
        stats = get_layer_stats(config.db_path)
        assert all(stats[kind.bronze_table] > 0 for kind in EntityKind)
        assert stats["silver_crm_cust_info"] == 50

    def test_rerun_is_idempotent(self, config, clock):
        run_pipeline(config, clock=clock, as_of=AS_OF)
        first = _snapshot(config.db_path)
        run_pipeline(config, clock=clock, as_of=AS_OF)
        second = _snapshot(config.db_path)

        assert first == second

        conn = connect(config.db_path)
        try:
            ledger = RunLedger(conn)
            batches = ledger.batches()
            assert len(batches) == 2
            for batch in batches:
                assert batch.status is RunStatus.SUCCESS
                assert len(ledger.table_runs(batch.batch_id)) == len(EntityKind)
        finally:
            conn.close()

    def test_dirty_customers_are_flagged_not_blocked(self, config, clock):
        result = run_pipeline(config, clock=clock, as_of=AS_OF)

        customer = result.silver[EntityKind.CUSTOMER]
        flagged = {(r.phase, r.check_name) for r in customer.failed_checks}
        assert ("pre", "duplicate_cst_id") in flagged
        assert ("pre", "null_cst_id") in flagged
        assert customer.ok

    def test_duplicate_silver_key_is_flagged_and_batch_completes(self, config, clock):
        location_file = os.path.join(config.source_path, "source_erp", "LOC_A101.csv")
        with open(location_file, encoding="utf-8") as f:
            lines = f.read().splitlines()
        with open(location_file, "a", encoding="utf-8") as f:
            f.write(lines[1] + "\n")

        result = run_pipeline(config, clock=clock, as_of=AS_OF)

        assert result.ok
        location = result.silver[EntityKind.ERP_LOCATION]
        assert location.ok
        assert ("post", "duplicate_cid") in {(r.phase, r.check_name) for r in location.failed_checks}

        conn = connect(config.db_path)
        try:
            recorded = RunLedger(conn).quality_results(result.batch.batch_id)
        finally:
            conn.close()
        duplicate = [r for r in recorded if (r.entity, r.phase, r.check_name) == ("erp_loc_a101", "post", "duplicate_cid")]
        assert len(duplicate) == 1
        assert duplicate[0].status == "FAIL"
        assert duplicate[0].observed == 1

    def test_missing_file_isolated_across_layers(self, config, clock):
        os.remove(os.path.join(config.source_path, "source_erp", "LOC_A101.csv"))

        result = run_pipeline(config, clock=clock, as_of=AS_OF)

        assert result.ok
        assert result.batch.failed_tables == ["bronze_erp_loc_a101"]
        assert result.silver[EntityKind.ERP_LOCATION].silver_rows == 0
        assert result.silver[EntityKind.SALES_DETAIL].silver_rows == 200

    def test_skip_silver(self, config, clock):
        result = run_pipeline(config, with_silver=False, clock=clock)

        assert result.ok
        assert result.silver == {}
        assert get_layer_stats(config.db_path)["silver_crm_cust_info"] == 0


@pytest.mark.integration
def test_main_exit_code(config, capsys):
    exit_code = main([
        "--base-path", config.source_path,
        "--db", config.db_path,
        "--log-dir", config.log_dir,
        "--workers", "2",
    ])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "SUCCESS" in out
    assert os.path.exists(os.path.join(config.log_dir, "warehouse_pipeline.log"))

    pipeline_logger = logging.getLogger("warehouse_pipeline")
    for handler in list(pipeline_logger.handlers):
        handler.close()
        pipeline_logger.removeHandler(handler)
