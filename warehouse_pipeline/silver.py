import logging
from dataclasses import dataclass, field
from datetime import date
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

from utils.logger import with_run_context
from warehouse_pipeline import rules
from warehouse_pipeline.database import connect, read_table, replace_table
from warehouse_pipeline.ledger import RunLedger
from warehouse_pipeline.quality import (
    DEFAULT_CHECKS,
    POST_LOAD,
    PRE_LOAD,
    CheckContext,
    QualityCheck,
    QualityCheckResult,
    QualityGate,
)
from warehouse_pipeline.sources import BRONZE_LAYOUTS, SILVER_LAYOUTS, EntityKind

logger = logging.getLogger(__name__)

# Dimensions first: sales and ERP checks look keys up in already-loaded silver tables.
LOAD_ORDER = (
    EntityKind.CUSTOMER,
    EntityKind.PRODUCT,
    EntityKind.SALES_DETAIL,
    EntityKind.ERP_CUSTOMER_DEMO,
    EntityKind.ERP_LOCATION,
    EntityKind.PRODUCT_CATEGORY,
)


@dataclass(frozen=True)
class FieldRule:
    """Maps one or more bronze fields of a row to one silver field."""

    target: str
    sources: Tuple[str, ...]
    func: Callable

    def apply(self, frame: pd.DataFrame) -> pd.Series:
        values = [self.func(*args) for args in zip(*(frame[source] for source in self.sources))]
        return pd.Series(values, index=frame.index, dtype=object)


def _rule(target: str, func: Callable, *sources: str) -> FieldRule:
    return FieldRule(target, sources or (target,), func)


@dataclass(frozen=True)
class EntityRules:
    """
    Declarative description of one bronze -> silver transformation.

    Field rules only ever read bronze columns of the same row. Row policies
    (dropping null keys, keeping the latest duplicate) and the optional window
    step run on the silver values afterwards.
    """

    kind: EntityKind
    fields: Tuple[FieldRule, ...]
    natural_key: Tuple[str, ...] = ()
    required_key: Optional[str] = None
    dedup_key: Optional[str] = None
    dedup_order: Optional[str] = None
    window: Optional[Callable[[pd.DataFrame], pd.DataFrame]] = None


def _product_end_dates(silver: pd.DataFrame) -> pd.DataFrame:
    """End each product version the day before the next version of the same key starts."""
    groups: Dict[object, List] = {}
    for index, key in silver["prd_key"].items():
        groups.setdefault(key, []).append(index)

    starts = silver["prd_start_dt"]
    ends = pd.Series([None] * len(silver), index=silver.index, dtype=object)
    for indexes in groups.values():
        # Unknown start dates sort first; sorted() keeps input order for ties.
        ordered = sorted(indexes, key=lambda i: (starts[i] is not None, starts[i] or date.min))
        for current, following in zip(ordered, ordered[1:]):
            ends[current] = rules.day_before(starts[following])

    silver = silver.copy()
    silver["prd_end_dt"] = ends
    return silver


def entity_rules(kind: EntityKind, as_of: Optional[date] = None) -> EntityRules:
    """
    Rule set for one entity.

    Args:
        kind: Entity to transform
        as_of: Reference date for "in the future" checks (default: today)
    """
    as_of = as_of or date.today()

    if kind is EntityKind.CUSTOMER:
        return EntityRules(
            kind,
            fields=(
                _rule("cst_id", rules.to_int),
                _rule("cst_key", rules.passthrough),
                _rule("cst_firstname", rules.trim),
                _rule("cst_lastname", rules.trim),
                _rule("cst_marital_status", rules.marital_status),
                _rule("cst_gndr", rules.customer_gender),
                _rule("cst_create_date", rules.parse_date),
            ),
            natural_key=("cst_id",),
            required_key="cst_id",
            dedup_key="cst_id",
            dedup_order="cst_create_date",
        )
    if kind is EntityKind.PRODUCT:
        return EntityRules(
            kind,
            fields=(
                _rule("prd_id", rules.to_int),
                _rule("cat_id", rules.category_id, "prd_key"),
                _rule("prd_key", rules.product_key),
                _rule("prd_nm", rules.passthrough),
                _rule("prd_cost", rules.cost_or_zero),
                _rule("prd_line", rules.product_line),
                _rule("prd_start_dt", rules.parse_date),
            ),
            natural_key=("prd_id",),
            window=_product_end_dates,
        )
    if kind is EntityKind.SALES_DETAIL:
        amounts = ("sls_sales", "sls_quantity", "sls_price")
        return EntityRules(
            kind,
            fields=(
                _rule("sls_ord_num", rules.passthrough),
                _rule("sls_prd_key", rules.passthrough),
                _rule("sls_cust_id", rules.to_int),
                _rule("sls_order_dt", rules.int_to_date),
                _rule("sls_ship_dt", rules.int_to_date),
                _rule("sls_due_dt", rules.int_to_date),
                _rule("sls_sales", rules.derive_sales, *amounts),
                _rule("sls_quantity", rules.to_number),
                _rule("sls_price", rules.derive_price, *amounts),
            ),
            natural_key=("sls_ord_num", "sls_prd_key", "sls_cust_id"),
        )
    if kind is EntityKind.ERP_CUSTOMER_DEMO:
        return EntityRules(
            kind,
            fields=(
                _rule("cid", rules.strip_nas_prefix),
                _rule("bdate", partial(rules.birthdate_not_after, as_of=as_of)),
                _rule("gen", rules.erp_gender),
            ),
            natural_key=("cid",),
        )
    if kind is EntityKind.ERP_LOCATION:
        return EntityRules(
            kind,
            fields=(
                _rule("cid", rules.strip_dashes),
                _rule("cntry", rules.country_name),
            ),
            natural_key=("cid",),
        )
    if kind is EntityKind.PRODUCT_CATEGORY:
        return EntityRules(
            kind,
            fields=(
                _rule("id", rules.passthrough),
                _rule("cat", rules.passthrough),
                _rule("subcat", rules.passthrough),
                _rule("maintenance", rules.trim),
            ),
            natural_key=("id",),
        )
    raise ValueError(f"No transformation rules for entity {kind!r}")


BronzeRows = Union[pd.DataFrame, Iterable[dict]]


def _bronze_frame(kind: EntityKind, bronze_rows: BronzeRows) -> pd.DataFrame:
    columns = [name for name, _ in BRONZE_LAYOUTS[kind]]
    frame = bronze_rows if isinstance(bronze_rows, pd.DataFrame) else pd.DataFrame(list(bronze_rows))
    missing_columns = [col for col in columns if col not in frame.columns]
    if missing_columns and not frame.empty:
        raise ValueError(f"Bronze rows for {kind.value} are missing columns: {missing_columns}")
    # Positional labels: later steps look rows up by label and restore input order with sort_index.
    frame = frame.reindex(columns=columns).astype(object).reset_index(drop=True)
    return frame.where(frame.notna(), None)


def _keep_latest(silver: pd.DataFrame, key: str, order_by: str) -> pd.DataFrame:
    # Stable sort: equal (or unknown) dates keep input order, so the first one wins.
    ranked = silver.sort_values(order_by, ascending=False, na_position="last", kind="mergesort")
    return ranked.drop_duplicates(subset=[key], keep="first").sort_index()


def transform(entity_kind, bronze_rows: BronzeRows, as_of: Optional[date] = None) -> pd.DataFrame:
    """
    Turn bronze rows of one entity into silver rows.

    Pure and deterministic: the same input gives the same output. Bad field
    values degrade to None or a default; rows without a mandatory key are
    dropped.

    Args:
        entity_kind: EntityKind (or its source name, e.g. "crm_cust_info")
        bronze_rows: DataFrame or iterable of dicts with the bronze layout
        as_of: Reference date for future-date rules (default: today)

    Returns:
        DataFrame with the silver layout of the entity
    """
    kind = EntityKind(entity_kind)
    entity = entity_rules(kind, as_of)
    bronze = _bronze_frame(kind, bronze_rows)
    silver_columns = [name for name, _ in SILVER_LAYOUTS[kind]]

    silver = pd.DataFrame(
        {rule.target: rule.apply(bronze) for rule in entity.fields},
        index=bronze.index,
        columns=silver_columns,
        dtype=object,
    )
    if entity.required_key:
        silver = silver[~silver[entity.required_key].map(rules.is_missing).astype(bool)]
    if entity.dedup_key and not silver.empty:
        silver = _keep_latest(silver, entity.dedup_key, entity.dedup_order)
    if entity.window is not None:
        silver = entity.window(silver)
    return silver.reset_index(drop=True)


@dataclass
class EntityOutcome:
    entity: EntityKind
    ok: bool
    bronze_rows: int = 0
    silver_rows: int = 0
    error: Optional[str] = None
    checks: List[QualityCheckResult] = field(default_factory=list)

    @property
    def failed_checks(self) -> List[QualityCheckResult]:
        return [result for result in self.checks if not result.passed]


class SilverLoader:
    """Full-refresh load of every silver entity from its bronze table."""

    def __init__(
        self,
        db_path: str,
        ledger: Optional[RunLedger] = None,
        checks: Optional[Dict[EntityKind, List[QualityCheck]]] = None,
        as_of: Optional[date] = None,
    ):
        self.db_path = db_path
        self.ledger = ledger
        self.checks = checks if checks is not None else DEFAULT_CHECKS
        self.as_of = as_of

    def _gate(self, batch_id: Optional[int]) -> QualityGate:
        recorder = None
        if self.ledger is not None:
            recorder = partial(self.ledger.record_quality_result, batch_id)
        return QualityGate(self.checks, recorder)

    def load_entity(self, kind: EntityKind, batch_id: Optional[int] = None) -> EntityOutcome:
        """
        Transform one entity and overwrite its silver table.

        Quality checks run before and after; their findings are reported but
        never stop the load.
        """
        log = with_run_context(logger, batch_id=batch_id)
        as_of = self.as_of or date.today()
        gate = self._gate(batch_id)

        conn = connect(self.db_path)
        try:
            bronze = read_table(conn, kind.bronze_table)
            log.info(f"Transforming {len(bronze)} bronze rows into {kind.silver_table}")
            context = CheckContext(
                entity=kind,
                bronze=bronze,
                dimension=lambda dimension: read_table(conn, dimension.silver_table),
                as_of=as_of,
            )
            checks = gate.run(PRE_LOAD, context)

            silver = transform(kind, bronze, as_of)
            written = replace_table(conn, kind.silver_table, silver)

            context.silver = silver
            checks.extend(gate.run(POST_LOAD, context))
        finally:
            conn.close()

        outcome = EntityOutcome(kind, True, len(bronze), written, checks=checks)
        log.info(
            f"Loaded {written} rows into {kind.silver_table} "
            f"({len(outcome.failed_checks)} of {len(checks)} checks flagged)"
        )
        return outcome

    def load_all(self, batch_id: Optional[int] = None) -> Dict[EntityKind, EntityOutcome]:
        """Load every entity in dependency order; one entity failing doesn't stop the rest."""
        log = with_run_context(logger, batch_id=batch_id)
        outcomes: Dict[EntityKind, EntityOutcome] = {}
        for kind in LOAD_ORDER:
            try:
                outcomes[kind] = self.load_entity(kind, batch_id)
            except Exception as e:
                message = str(e) or type(e).__name__
                log.error(f"Silver load of {kind.silver_table} failed: {message}")
                outcomes[kind] = EntityOutcome(kind, False, error=message)
        return outcomes
