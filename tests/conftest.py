"""
Shared pytest fixtures
"""
import os
from datetime import datetime, timedelta

import pytest

from warehouse_pipeline.database import connect, create_tables
from warehouse_pipeline.ledger import RunLedger
from warehouse_pipeline.sources import SOURCE_SUBPATHS, EntityKind


SAMPLE_SOURCES = {
    EntityKind.CUSTOMER: (
        "cst_id,cst_key,cst_firstname,cst_lastname,cst_marital_status,cst_gndr,cst_create_date\n"
        "11000,AW00011000, Jon,Yang ,M,M,2025-10-06\n"
        "11001,AW00011001,Eugene,Huang,S,m ,2025-10-06\n"
        "11000,AW00011000,Jon,Yang,S,M,2025-01-01\n"
        ",PO25,,,,,\n"
    ),
    EntityKind.PRODUCT: (
        "prd_id,prd_key,prd_nm,prd_cost,prd_line,prd_start_dt,prd_end_dt\n"
        "210,CO-RF-FR-R92B-58,HL Road Frame - Black- 58,,R ,2003-07-01,\n"
        "211,AC-HE-HL-U509,Sport-100 Helmet- Red,12,S,2011-07-01,2007-12-28\n"
        "212,AC-HE-HL-U509,Sport-100 Helmet- Red,14,S,2012-07-01,2008-12-27\n"
    ),
    EntityKind.SALES_DETAIL: (
        "sls_ord_num,sls_prd_key,sls_cust_id,sls_order_dt,sls_ship_dt,sls_due_dt,sls_sales,sls_quantity,sls_price\n"
        "SO43697,HL-U509,11000,20101229,20110105,20110110,,3,10\n"
        "SO43698,FR-R92B-58,11001,0,20110105,20110110,100,5,\n"
    ),
    EntityKind.ERP_CUSTOMER_DEMO: (
        "CID,BDATE,GEN\n"
        "NASAW00011000,1971-10-06,Male\n"
        "AW00011001,2090-01-01, f\n"
    ),
    EntityKind.ERP_LOCATION: (
        "CID,CNTRY\n"
        "AW-00011000,USA\n"
        "AW-00011001,\n"
    ),
    EntityKind.PRODUCT_CATEGORY: (
        "ID,CAT,SUBCAT,MAINTENANCE\n"
        "AC_HE,Accessories,Helmets,Yes \n"
        "CO_RF,Components,Road Frames,No\n"
    ),
}


class FakeClock:
    """Deterministic time source: every call moves time forward by ``step``."""

    def __init__(self, start=datetime(2025, 9, 7, 8, 0, 0), step=timedelta(seconds=2)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


@pytest.fixture
def db_path(tmp_path):
    """Warehouse database with every table created"""
    path = str(tmp_path / "warehouse" / "warehouse.db")
    conn = connect(path)
    create_tables(conn)
    conn.close()
    return path


@pytest.fixture
def conn(db_path):
    connection = connect(db_path)
    yield connection
    connection.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(conn, clock):
    return RunLedger(conn, clock=clock)


@pytest.fixture
def write_sources(tmp_path):
    """
    Write source extracts under a base path.

    Overrides replace the sample content of an entity; an override of None
    leaves that file out entirely.
    """

    def _write(overrides=None, base_path=None):
        base_path = base_path or str(tmp_path / "datasets")
        contents = dict(SAMPLE_SOURCES)
        contents.update(overrides or {})
        for kind, text in contents.items():
            if text is None:
                continue
            path = os.path.join(base_path, SOURCE_SUBPATHS[kind])
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", newline="", encoding="utf-8") as f:
                f.write(text)
        return base_path

    return _write
