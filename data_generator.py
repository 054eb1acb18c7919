import os
import argparse
from datetime import date, timedelta

import numpy as np
import pandas as pd

from warehouse_pipeline.sources import BRONZE_LAYOUTS, SOURCE_SUBPATHS, EntityKind

CATEGORIES = [
    ("AC_HE", "Accessories", "Helmets", "Yes"),
    ("BI_MB", "Bikes", "Mountain Bikes", "Yes"),
    ("BI_RB", "Bikes", "Road Bikes", "Yes"),
    ("CL_JE", "Clothing", "Jerseys", "No "),
    ("CO_BR", "Components", "Brakes", "Yes"),
]
PRODUCT_LINES = ["M", "R", "S", "T", " R ", None]
COUNTRIES = ["DE", "US", "USA", "Germany", "France ", "", None]
GENDER_CODES = ["M", "F", " f", "", None]
ERP_GENDERS = ["M", "F", "Male", "Female ", "", None]


def _yyyymmdd(day: date) -> int:
    return int(day.strftime("%Y%m%d"))


def generate_customers(rng, num_customers: int) -> pd.DataFrame:
    records = []
    start = date(2025, 1, 1)
    for i in range(num_customers):
        cst_id = 11000 + i
        records.append({
            "cst_id": cst_id,
            "cst_key": f"AW{cst_id:08d}",
            "cst_firstname": rng.choice([" Jon", "Elizabeth", "Lauren ", "Ian"]),
            "cst_lastname": rng.choice(["Yang", " Huang", "Walker ", "Jenkins"]),
            "cst_marital_status": rng.choice(["M", "S", " s", None]),
            "cst_gndr": rng.choice(GENDER_CODES),
            "cst_create_date": (start + timedelta(days=int(rng.integers(0, 300)))).isoformat(),
        })
    # A few customers appear twice with different create dates, plus keyless rows.
    for record in records[:3]:
        newer = dict(record, cst_lastname=record["cst_lastname"].strip() + " (updated)")
        newer["cst_create_date"] = (date.fromisoformat(record["cst_create_date"]) + timedelta(days=30)).isoformat()
        records.append(newer)
    records.append({"cst_id": None, "cst_key": "PO25", "cst_firstname": None, "cst_lastname": None,
                    "cst_marital_status": None, "cst_gndr": None, "cst_create_date": None})
    return pd.DataFrame(records, dtype=object)


def generate_products(rng, num_products: int) -> pd.DataFrame:
    records = []
    for i in range(num_products):
        cat_id = CATEGORIES[i % len(CATEGORIES)][0].replace("_", "-")
        prd_key = f"{cat_id}-P{i:03d}"
        first_start = date(2011, 7, 1) + timedelta(days=int(rng.integers(0, 365)))
        # Some products have several versions over time.
        for version in range(int(rng.integers(1, 4))):
            records.append({
                "prd_id": 200 + len(records),
                "prd_key": prd_key,
                "prd_nm": f"Product {i} v{version + 1}",
                "prd_cost": None if rng.random() < 0.05 else int(rng.integers(2, 2000)),
                "prd_line": rng.choice(PRODUCT_LINES),
                "prd_start_dt": (first_start + timedelta(days=365 * version)).isoformat(),
                "prd_end_dt": first_start.isoformat(),
            })
    return pd.DataFrame(records, dtype=object)


def generate_sales(rng, customers: pd.DataFrame, products: pd.DataFrame, num_orders: int) -> pd.DataFrame:
    cust_ids = customers["cst_id"].dropna().astype(int).tolist()
    prd_keys = sorted(set(key[6:] for key in products["prd_key"]))
    records = []
    for i in range(num_orders):
        order_day = date(2012, 1, 1) + timedelta(days=int(rng.integers(0, 1000)))
        quantity = int(rng.integers(1, 4))
        price = int(rng.integers(5, 3000))
        sales = quantity * price
        roll = rng.random()
        if roll < 0.03:
            sales = None
        elif roll < 0.06:
            price = -price
        elif roll < 0.09:
            price = None
        order_dt = 0 if rng.random() < 0.02 else _yyyymmdd(order_day)
        records.append({
            "sls_ord_num": f"SO{43697 + i}",
            "sls_prd_key": rng.choice(prd_keys),
            "sls_cust_id": rng.choice(cust_ids),
            "sls_order_dt": order_dt,
            "sls_ship_dt": _yyyymmdd(order_day + timedelta(days=7)),
            "sls_due_dt": _yyyymmdd(order_day + timedelta(days=12)),
            "sls_sales": sales,
            "sls_quantity": quantity,
            "sls_price": price,
        })
    return pd.DataFrame(records, dtype=object)


def generate_erp_customers(rng, customers: pd.DataFrame) -> pd.DataFrame:
    records = []
    for key in customers["cst_key"].dropna().unique():
        born = date(1940, 1, 1) + timedelta(days=int(rng.integers(0, 365 * 70)))
        if rng.random() < 0.02:
            born = date.today() + timedelta(days=400)
        records.append({
            "cid": f"NAS{key}" if rng.random() < 0.5 else key,
            "bdate": born.isoformat(),
            "gen": rng.choice(ERP_GENDERS),
        })
    return pd.DataFrame(records, dtype=object)


def generate_locations(rng, customers: pd.DataFrame) -> pd.DataFrame:
    keys = customers["cst_key"].dropna().unique()
    return pd.DataFrame({
        "cid": [f"{key[:2]}-{key[2:]}" for key in keys],
        "cntry": [rng.choice(COUNTRIES) for _ in keys],
    })


def generate_categories() -> pd.DataFrame:
    return pd.DataFrame(CATEGORIES, columns=["id", "cat", "subcat", "maintenance"])


def generate_sources(base_path: str, num_customers: int = 200, num_products: int = 40,
                     num_orders: int = 1000, seed: int = 42) -> None:
    """Write the six source extracts under base_path using the expected subpaths."""
    rng = np.random.default_rng(seed)
    customers = generate_customers(rng, num_customers)
    products = generate_products(rng, num_products)
    frames = {
        EntityKind.CUSTOMER: customers,
        EntityKind.PRODUCT: products,
        EntityKind.SALES_DETAIL: generate_sales(rng, customers, products, num_orders),
        EntityKind.ERP_CUSTOMER_DEMO: generate_erp_customers(rng, customers),
        EntityKind.ERP_LOCATION: generate_locations(rng, customers),
        EntityKind.PRODUCT_CATEGORY: generate_categories(),
    }
    for kind, frame in frames.items():
        output_file = os.path.join(base_path, SOURCE_SUBPATHS[kind])
        os.makedirs(os.path.dirname(output_file), exist_ok=True)
        columns = [name for name, _ in BRONZE_LAYOUTS[kind]]
        # Nullable integer columns would otherwise be written as floats (11000.0).
        frame = frame[columns].astype(object)
        frame.to_csv(output_file, index=False)
        print(f"Generated {len(frame)} rows at: {output_file}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate sample CRM/ERP source extracts")
    parser.add_argument("--output", type=str, default=os.path.join(os.path.dirname(os.path.abspath(__file__)), "datasets"))
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()
    generate_sources(args.output, seed=args.seed)
