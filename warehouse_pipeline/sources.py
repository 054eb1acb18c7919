"""
Source table registry.

Six fixed source tables across two operational systems (CRM and ERP). Each
entry names the bronze destination, the file it is extracted to under the base
path, and the column layout the file is expected to carry.
"""
import os
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple


class EntityKind(str, Enum):
    """Entities carried from bronze to silver, keyed by their source name."""

    CUSTOMER = "crm_cust_info"
    PRODUCT = "crm_prd_info"
    SALES_DETAIL = "crm_sales_details"
    ERP_CUSTOMER_DEMO = "erp_cust_az12"
    ERP_LOCATION = "erp_loc_a101"
    PRODUCT_CATEGORY = "erp_px_cat_g1v2"

    @property
    def bronze_table(self) -> str:
        return f"bronze_{self.value}"

    @property
    def silver_table(self) -> str:
        return f"silver_{self.value}"


@dataclass(frozen=True)
class SourceTableSpec:
    """Where one source table comes from and what it looks like."""

    table_name: str
    source_location: str
    columns: Tuple[Tuple[str, str], ...]

    @property
    def column_names(self) -> List[str]:
        return [name for name, _ in self.columns]


# Column layouts mirror the extract files; types only set SQLite affinity.
BRONZE_LAYOUTS = {
    EntityKind.CUSTOMER: (
        ("cst_id", "INTEGER"),
        ("cst_key", "TEXT"),
        ("cst_firstname", "TEXT"),
        ("cst_lastname", "TEXT"),
        ("cst_marital_status", "TEXT"),
        ("cst_gndr", "TEXT"),
        ("cst_create_date", "DATE"),
    ),
    EntityKind.PRODUCT: (
        ("prd_id", "INTEGER"),
        ("prd_key", "TEXT"),
        ("prd_nm", "TEXT"),
        ("prd_cost", "INTEGER"),
        ("prd_line", "TEXT"),
        ("prd_start_dt", "DATETIME"),
        ("prd_end_dt", "DATETIME"),
    ),
    EntityKind.SALES_DETAIL: (
        ("sls_ord_num", "TEXT"),
        ("sls_prd_key", "TEXT"),
        ("sls_cust_id", "INTEGER"),
        ("sls_order_dt", "INTEGER"),
        ("sls_ship_dt", "INTEGER"),
        ("sls_due_dt", "INTEGER"),
        ("sls_sales", "INTEGER"),
        ("sls_quantity", "INTEGER"),
        ("sls_price", "INTEGER"),
    ),
    EntityKind.ERP_CUSTOMER_DEMO: (
        ("cid", "TEXT"),
        ("bdate", "DATE"),
        ("gen", "TEXT"),
    ),
    EntityKind.ERP_LOCATION: (
        ("cid", "TEXT"),
        ("cntry", "TEXT"),
    ),
    EntityKind.PRODUCT_CATEGORY: (
        ("id", "TEXT"),
        ("cat", "TEXT"),
        ("subcat", "TEXT"),
        ("maintenance", "TEXT"),
    ),
}

SILVER_LAYOUTS = {
    EntityKind.CUSTOMER: (
        ("cst_id", "INTEGER"),
        ("cst_key", "TEXT"),
        ("cst_firstname", "TEXT"),
        ("cst_lastname", "TEXT"),
        ("cst_marital_status", "TEXT"),
        ("cst_gndr", "TEXT"),
        ("cst_create_date", "DATE"),
    ),
    EntityKind.PRODUCT: (
        ("prd_id", "INTEGER"),
        ("cat_id", "TEXT"),
        ("prd_key", "TEXT"),
        ("prd_nm", "TEXT"),
        ("prd_cost", "INTEGER"),
        ("prd_line", "TEXT"),
        ("prd_start_dt", "DATE"),
        ("prd_end_dt", "DATE"),
    ),
    EntityKind.SALES_DETAIL: (
        ("sls_ord_num", "TEXT"),
        ("sls_prd_key", "TEXT"),
        ("sls_cust_id", "INTEGER"),
        ("sls_order_dt", "DATE"),
        ("sls_ship_dt", "DATE"),
        ("sls_due_dt", "DATE"),
        ("sls_sales", "NUMERIC"),
        ("sls_quantity", "INTEGER"),
        ("sls_price", "NUMERIC"),
    ),
    EntityKind.ERP_CUSTOMER_DEMO: (
        ("cid", "TEXT"),
        ("bdate", "DATE"),
        ("gen", "TEXT"),
    ),
    EntityKind.ERP_LOCATION: (
        ("cid", "TEXT"),
        ("cntry", "TEXT"),
    ),
    EntityKind.PRODUCT_CATEGORY: (
        ("id", "TEXT"),
        ("cat", "TEXT"),
        ("subcat", "TEXT"),
        ("maintenance", "TEXT"),
    ),
}

# Relative to the base path handed to the pipeline.
SOURCE_SUBPATHS = {
    EntityKind.CUSTOMER: os.path.join("source_crm", "cust_info.csv"),
    EntityKind.PRODUCT: os.path.join("source_crm", "prd_info.csv"),
    EntityKind.SALES_DETAIL: os.path.join("source_crm", "sales_details.csv"),
    EntityKind.ERP_CUSTOMER_DEMO: os.path.join("source_erp", "CUST_AZ12.csv"),
    EntityKind.ERP_LOCATION: os.path.join("source_erp", "LOC_A101.csv"),
    EntityKind.PRODUCT_CATEGORY: os.path.join("source_erp", "PX_CAT_G1V2.csv"),
}


def source_table_spec(kind: EntityKind, base_path: str) -> SourceTableSpec:
    return SourceTableSpec(
        table_name=kind.bronze_table,
        source_location=os.path.join(base_path, SOURCE_SUBPATHS[kind]),
        columns=BRONZE_LAYOUTS[kind],
    )


def source_table_specs(base_path: str) -> List[SourceTableSpec]:
    """
    Build the configured source tables for one batch, CRM first, then ERP.

    Args:
        base_path: Folder holding the source_crm/ and source_erp/ extracts

    Returns:
        One SourceTableSpec per source table
    """
    return [source_table_spec(kind, base_path) for kind in EntityKind]
