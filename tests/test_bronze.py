from unittest import mock

import pytest

from warehouse_pipeline.bronze import TableLoader, validate_csv_structure
from warehouse_pipeline.database import count_rows, read_table
from warehouse_pipeline.ledger import RunStatus
from warehouse_pipeline.sources import EntityKind, source_table_spec


@pytest.mark.unit
class TestValidateCsvStructure:

    def test_accepts_matching_header(self):
        validate_csv_structure(["cid", "cntry"], ["cid", "cntry"])

    def test_header_is_case_insensitive(self):
        validate_csv_structure(["CID", " CNTRY "], ["cid", "cntry"])

    def test_empty_file(self):
        with pytest.raises(ValueError, match="empty"):
            validate_csv_structure(None, ["cid", "cntry"])

    def test_missing_column(self):
        with pytest.raises(ValueError, match="missing required columns"):
            validate_csv_structure(["cid"], ["cid", "cntry"])

    def test_wrong_order(self):
        with pytest.raises(ValueError, match="do not match"):
            validate_csv_structure(["cntry", "cid"], ["cid", "cntry"])


@pytest.fixture
def loader(ledger, db_path):
    return TableLoader(ledger, db_path)


@pytest.mark.unit
class TestTableLoader:

    def test_successful_load(self, loader, ledger, write_sources):
        base_path = write_sources()
        batch_id = ledger.open_batch()

        outcome = loader.load(source_table_spec(EntityKind.CUSTOMER, base_path), batch_id)

        assert outcome.ok
        assert outcome.row_count == 4
        run = ledger.get_table_run(outcome.run_id)
        assert run.status is RunStatus.SUCCESS
        assert run.row_count == 4
        assert run.table_name == "bronze_crm_cust_info"

    def test_rows_are_raw_copies(self, loader, ledger, conn, write_sources):
        base_path = write_sources()
        loader.load(source_table_spec(EntityKind.CUSTOMER, base_path), ledger.open_batch())

        bronze = read_table(conn, "bronze_crm_cust_info")
        first = bronze.iloc[0]
        assert first["cst_firstname"] == " Jon"
        assert first["cst_lastname"] == "Yang "
        # Empty fields land as NULL
        assert bronze.iloc[3]["cst_id"] is None
        assert bronze.iloc[3]["cst_key"] == "PO25"

    def test_upper_case_erp_header(self, loader, ledger, conn, write_sources):
        base_path = write_sources()
        outcome = loader.load(source_table_spec(EntityKind.ERP_LOCATION, base_path), ledger.open_batch())

        assert outcome.ok
        assert count_rows(conn, "bronze_erp_loc_a101") == 2

    def test_missing_file_fails_the_table_only(self, loader, ledger, write_sources):
        base_path = write_sources({EntityKind.ERP_LOCATION: None})
        batch_id = ledger.open_batch()

        outcome = loader.load(source_table_spec(EntityKind.ERP_LOCATION, base_path), batch_id)

        assert not outcome.ok
        assert outcome.row_count is None
        assert "LOC_A101.csv" in outcome.error
        run = ledger.get_table_run(outcome.run_id)
        assert run.status is RunStatus.FAILED
        assert run.row_count is None
        assert run.error_message == outcome.error
        assert run.end_time is not None

    def test_malformed_row_leaves_table_empty(self, loader, ledger, conn, write_sources):
        base_path = write_sources()
        spec = source_table_spec(EntityKind.ERP_LOCATION, base_path)
        loader.load(spec, ledger.open_batch())
        assert count_rows(conn, spec.table_name) == 2

        write_sources({EntityKind.ERP_LOCATION: "CID,CNTRY\nAW-00011000,USA\nAW-00011001,DE,extra\n"})
        outcome = loader.load(spec, ledger.open_batch())

        assert not outcome.ok
        assert "line 3" in outcome.error
        assert count_rows(conn, spec.table_name) == 0

    def test_header_mismatch_fails(self, loader, ledger, write_sources):
        base_path = write_sources({EntityKind.PRODUCT_CATEGORY: "ID,CATEGORY,SUBCAT,MAINTENANCE\nAC_HE,A,B,Yes\n"})

        outcome = loader.load(source_table_spec(EntityKind.PRODUCT_CATEGORY, base_path), ledger.open_batch())

        assert not outcome.ok
        assert "missing required columns" in outcome.error

    def test_reload_replaces_previous_rows(self, loader, ledger, conn, write_sources):
        base_path = write_sources()
        spec = source_table_spec(EntityKind.SALES_DETAIL, base_path)

        loader.load(spec, ledger.open_batch())
        first = read_table(conn, spec.table_name)
        loader.load(spec, ledger.open_batch())
        second = read_table(conn, spec.table_name)

        assert len(second) == 2
        assert first.values.tolist() == second.values.tolist()

    def test_ledger_failure_propagates(self, db_path, write_sources):
        base_path = write_sources()
        broken_ledger = mock.Mock()
        broken_ledger.open_table_run.side_effect = RuntimeError("ledger unavailable")

        with pytest.raises(RuntimeError, match="ledger unavailable"):
            TableLoader(broken_ledger, db_path).load(source_table_spec(EntityKind.CUSTOMER, base_path), 1)
