"""
SQLite Medallion Warehouse Package

Modules:
    sources.py      - Source table registry (CRM/ERP extracts and layouts).
    database.py     - Connections, DDL and table read/replace helpers.
    ledger.py       - Run ledger: batch and table run audit trail.
    bronze.py       - Loads one raw CSV extract into its bronze table.
    batch.py        - Orchestrates a bronze batch with per-table fault isolation.
    rules.py        - Field-level cleansing and derivation rules.
    silver.py       - Per-entity rule sets, transform() and the silver load.
    quality.py      - Advisory quality gate run around each transformation.
    run_pipeline.py - Runs the full pipeline from the command line.

Version: 1.0.0
"""

__version__ = "1.0.0"
