from unittest import mock

import pytest

from warehouse_pipeline.batch import BatchOrchestrator, BatchState
from warehouse_pipeline.bronze import TableLoader
from warehouse_pipeline.database import count_rows
from warehouse_pipeline.ledger import RunStatus
from warehouse_pipeline.sources import EntityKind, source_table_specs


def _orchestrator(ledger, db_path, max_workers=1):
    return BatchOrchestrator(ledger, TableLoader(ledger, db_path), max_workers=max_workers)


@pytest.mark.unit
class TestBatchOrchestrator:

    def test_one_batch_and_one_run_per_table(self, ledger, db_path, write_sources):
        specs = source_table_specs(write_sources())
        orchestrator = _orchestrator(ledger, db_path)

        result = orchestrator.run(specs)

        assert orchestrator.state is BatchState.SUCCESS
        assert result.status is RunStatus.SUCCESS
        assert [batch.batch_id for batch in ledger.batches()] == [result.batch_id]
        batch = ledger.get_batch(result.batch_id)
        assert batch.status is RunStatus.SUCCESS
        assert batch.duration == int((batch.end_time - batch.start_time).total_seconds())

        runs = ledger.table_runs(result.batch_id)
        assert [run.table_name for run in runs] == [spec.table_name for spec in specs]
        for run in runs:
            assert run.status is RunStatus.SUCCESS
            assert run.duration == int((run.end_time - run.start_time).total_seconds())
            assert run.duration >= 0
        assert result.total_rows == 4 + 3 + 2 + 2 + 2 + 2

    def test_failed_table_does_not_stop_the_batch(self, ledger, db_path, conn, write_sources):
        specs = source_table_specs(write_sources({EntityKind.PRODUCT: None}))

        result = _orchestrator(ledger, db_path).run(specs)

        # Per-table failures are reported in the table runs, not the batch status
        assert result.status is RunStatus.SUCCESS
        assert result.failed_tables == ["bronze_crm_prd_info"]
        statuses = {run.table_name: run.status for run in ledger.table_runs(result.batch_id)}
        assert statuses.pop("bronze_crm_prd_info") is RunStatus.FAILED
        assert set(statuses.values()) == {RunStatus.SUCCESS}
        # Tables after the failed one were still loaded
        assert count_rows(conn, "bronze_crm_sales_details") == 2
        assert count_rows(conn, "bronze_erp_px_cat_g1v2") == 2

    def test_ledger_failure_fails_the_batch(self, ledger, db_path, write_sources):
        specs = source_table_specs(write_sources())
        orchestrator = _orchestrator(ledger, db_path)
        real_open = ledger.open_table_run
        calls = []

        def open_table_run(batch_id, table_name):
            calls.append(table_name)
            if len(calls) == 3:
                raise RuntimeError("ledger unavailable")
            return real_open(batch_id, table_name)

        with mock.patch.object(ledger, "open_table_run", side_effect=open_table_run):
            result = orchestrator.run(specs)

        assert orchestrator.state is BatchState.FAILED
        assert result.status is RunStatus.FAILED
        assert result.error == "ledger unavailable"
        assert len(calls) == 3
        assert len(result.outcomes) == 2
        batch = ledger.get_batch(result.batch_id)
        assert batch.status is RunStatus.FAILED
        assert batch.error_message == "ledger unavailable"

    def test_orchestrator_is_single_use(self, ledger, db_path, write_sources):
        specs = source_table_specs(write_sources())
        orchestrator = _orchestrator(ledger, db_path)
        orchestrator.run(specs)

        with pytest.raises(RuntimeError):
            orchestrator.run(specs)

    def test_parallel_matches_sequential(self, ledger, db_path, write_sources):
        specs = source_table_specs(write_sources({EntityKind.ERP_CUSTOMER_DEMO: None}))

        sequential = _orchestrator(ledger, db_path).run(specs)
        parallel = _orchestrator(ledger, db_path, max_workers=3).run(specs)

        assert parallel.status is RunStatus.SUCCESS
        assert list(parallel.outcomes) == list(sequential.outcomes)
        for name, outcome in parallel.outcomes.items():
            assert outcome.status is sequential.outcomes[name].status
            assert outcome.row_count == sequential.outcomes[name].row_count
        assert len(ledger.table_runs(parallel.batch_id)) == len(specs)
        assert all(run.status.is_terminal for run in ledger.table_runs(parallel.batch_id))
