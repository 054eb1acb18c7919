"""
Quality gate for the silver load.

A fixed battery of checks runs against each entity before (bronze) and after
(silver) its transformation. Checks are advisory: every result is logged and
handed to a recorder (the run ledger in the pipeline), but nothing here ever
stops a load. A check that blows up is reported as ERROR instead of raising.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Union

import pandas as pd

from warehouse_pipeline import rules
from warehouse_pipeline.sources import SILVER_LAYOUTS, EntityKind

logger = logging.getLogger(__name__)

PRE_LOAD = "pre"
POST_LOAD = "post"

PASS = "PASS"
FAIL = "FAIL"
ERROR = "ERROR"

SAMPLE_SIZE = 5
MIN_BIRTHDATE = date(1924, 1, 1)


@dataclass
class QualityCheckResult:
    entity: str
    phase: str
    check_name: str
    status: str
    observed: Optional[int] = None
    expected: Optional[int] = None
    detail: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == PASS


def _empty_dimension(kind: EntityKind) -> pd.DataFrame:
    return pd.DataFrame(columns=[name for name, _ in SILVER_LAYOUTS[kind]], dtype=object)


@dataclass
class CheckContext:
    """Everything a check may look at for one entity."""

    entity: EntityKind
    bronze: pd.DataFrame
    silver: Optional[pd.DataFrame] = None
    dimension: Callable[[EntityKind], pd.DataFrame] = _empty_dimension
    as_of: date = field(default_factory=date.today)

    def frame(self, layer: str) -> pd.DataFrame:
        if layer == "silver":
            if self.silver is None:
                raise ValueError("Silver rows are not available before the load")
            return self.silver
        return self.bronze


Observation = Union[pd.DataFrame, int]


@dataclass(frozen=True)
class QualityCheck:
    """
    One named assertion.

    ``observe`` returns either the offending rows (the check passes when there
    are none) or a count that must equal ``expected``.
    """

    name: str
    phase: str
    observe: Callable[[CheckContext], Observation]
    expected: Optional[Callable[[CheckContext], int]] = None

    def run(self, context: CheckContext) -> QualityCheckResult:
        entity = context.entity.value
        try:
            observed = self.observe(context)
            expected = self.expected(context) if self.expected is not None else 0
        except Exception as e:
            return QualityCheckResult(entity, self.phase, self.name, ERROR, detail=f"{type(e).__name__}: {e}")

        detail = None
        if isinstance(observed, pd.DataFrame):
            count = len(observed)
            if count:
                sample = observed.head(SAMPLE_SIZE).astype(str).to_dict("records")
                detail = f"{count} offending rows, e.g. {sample}"
        else:
            count = int(observed)
        status = PASS if count == expected else FAIL
        if status == FAIL and detail is None:
            detail = f"observed {count}, expected {expected}"
        return QualityCheckResult(entity, self.phase, self.name, status, count, expected, detail)


# ----------------------------------------------------------------------
# Building blocks
# ----------------------------------------------------------------------

def _missing(frame: pd.DataFrame, column: str) -> pd.Series:
    return frame[column].map(rules.is_missing).astype(bool)


def null_keys(layer: str, columns: Sequence[str]):
    def observe(context: CheckContext) -> pd.DataFrame:
        frame = context.frame(layer)
        mask = pd.Series(False, index=frame.index)
        for column in columns:
            mask |= _missing(frame, column)
        return frame[mask]

    return observe


def duplicate_keys(layer: str, columns: Sequence[str]):
    def observe(context: CheckContext) -> pd.DataFrame:
        frame = context.frame(layer)
        keyed = frame[list(columns)].dropna()
        if keyed.empty:
            return keyed
        counts = keyed.groupby(list(columns), sort=False).size().reset_index(name="dup_count")
        return counts[counts["dup_count"] > 1]

    return observe


def untrimmed(layer: str, columns: Sequence[str]):
    def observe(context: CheckContext) -> pd.DataFrame:
        frame = context.frame(layer)
        mask = pd.Series(False, index=frame.index)
        for column in columns:
            mask |= frame[column].map(lambda v: isinstance(v, str) and v != v.strip()).astype(bool)
        return frame[mask]

    return observe


def outside_domain(layer: str, column: str, allowed: Sequence[str]):
    allowed = set(allowed)

    def observe(context: CheckContext) -> pd.DataFrame:
        frame = context.frame(layer)
        return frame[~frame[column].map(lambda v: v in allowed).astype(bool)]

    return observe


def not_in_dimension(
    layer: str,
    column: str,
    dimension: EntityKind,
    dimension_column: str,
    normalize: Callable = rules.passthrough,
):
    """Rows whose (normalized) key has no match in a silver dimension."""

    def observe(context: CheckContext) -> pd.DataFrame:
        frame = context.frame(layer)
        known = {
            str(value) for value in context.dimension(dimension)[dimension_column]
            if not rules.is_missing(value)
        }
        keys = frame[column].map(normalize)
        mask = keys.map(lambda v: not rules.is_missing(v) and str(v) not in known).astype(bool)
        return frame[mask]

    return observe


def rows_where(layer: str, predicate: Callable[[pd.Series, CheckContext], bool]):
    def observe(context: CheckContext) -> pd.DataFrame:
        frame = context.frame(layer)
        if frame.empty:
            return frame
        mask = frame.apply(lambda row: bool(predicate(row, context)), axis=1).astype(bool)
        return frame[mask]

    return observe


def silver_count(context: CheckContext) -> int:
    return len(context.frame("silver"))


def bronze_count(context: CheckContext) -> int:
    return len(context.bronze)


def distinct_customer_ids(context: CheckContext) -> int:
    ids = {rules.to_int(value) for value in context.bronze["cst_id"]}
    ids.discard(None)
    return len(ids)


# ----------------------------------------------------------------------
# Row predicates
# ----------------------------------------------------------------------

def _after(left, right) -> bool:
    return left is not None and right is not None and left > right


def _bad_cost(row, context) -> bool:
    cost = rules.to_number(row["prd_cost"])
    return cost is None or cost < 0


def _bronze_end_before_start(row, context) -> bool:
    return _after(rules.parse_date(row["prd_start_dt"]), rules.parse_date(row["prd_end_dt"]))


def _silver_end_before_start(row, context) -> bool:
    return _after(row["prd_start_dt"], row["prd_end_dt"])


def _bronze_invalid_order_date(row, context) -> bool:
    value = row["sls_order_dt"]
    return not rules.is_missing(value) and rules.int_to_date(value) is None


def _bronze_date_order(row, context) -> bool:
    order = rules.to_int(row["sls_order_dt"])
    return _after(order, rules.to_int(row["sls_ship_dt"])) or _after(order, rules.to_int(row["sls_due_dt"]))


def _silver_date_order(row, context) -> bool:
    order = row["sls_order_dt"]
    return _after(order, row["sls_ship_dt"]) or _after(order, row["sls_due_dt"])


def _bad_sales_or_price(row, context) -> bool:
    sales = rules.to_number(row["sls_sales"])
    quantity = rules.to_number(row["sls_quantity"])
    price = rules.to_number(row["sls_price"])
    if sales is None or quantity is None or price is None:
        return True
    if sales <= 0 or quantity <= 0 or price <= 0:
        return True
    return sales != quantity * price


def _bad_birthdate(row, context) -> bool:
    born = rules.parse_date(row["bdate"])
    return born is not None and (born < MIN_BIRTHDATE or born > context.as_of)


def _bad_country(row, context) -> bool:
    value = row["cntry"]
    return rules.is_missing(value) or str(value) == ""


# ----------------------------------------------------------------------
# The battery
# ----------------------------------------------------------------------

GENDERS = ("Female", "Male", rules.NOT_AVAILABLE)
MARITAL_STATUSES = ("Single", "Married", rules.NOT_AVAILABLE)
PRODUCT_LINES = ("Mountain", "Road", "Other Sales", "Touring", rules.NOT_AVAILABLE)
ORDER_LINE_KEY = ("sls_ord_num", "sls_prd_key", "sls_cust_id")


def _check(name, phase, observe, expected=None) -> QualityCheck:
    return QualityCheck(name=name, phase=phase, observe=observe, expected=expected)


DEFAULT_CHECKS: Dict[EntityKind, List[QualityCheck]] = {
    EntityKind.CUSTOMER: [
        _check("null_cst_id", PRE_LOAD, null_keys("bronze", ["cst_id"])),
        _check("duplicate_cst_id", PRE_LOAD, duplicate_keys("bronze", ["cst_id"])),
        _check("untrimmed_names", PRE_LOAD, untrimmed("bronze", ["cst_firstname", "cst_lastname"])),
        _check("row_count_parity", POST_LOAD, silver_count, distinct_customer_ids),
        _check("null_cst_id", POST_LOAD, null_keys("silver", ["cst_id"])),
        _check("duplicate_cst_id", POST_LOAD, duplicate_keys("silver", ["cst_id"])),
        _check("untrimmed_names", POST_LOAD, untrimmed("silver", ["cst_firstname", "cst_lastname"])),
        _check("gender_domain", POST_LOAD, outside_domain("silver", "cst_gndr", GENDERS)),
        _check("marital_status_domain", POST_LOAD, outside_domain("silver", "cst_marital_status", MARITAL_STATUSES)),
    ],
    EntityKind.PRODUCT: [
        _check("untrimmed_product_name", PRE_LOAD, untrimmed("bronze", ["prd_nm"])),
        _check("negative_or_null_cost", PRE_LOAD, rows_where("bronze", _bad_cost)),
        _check("end_before_start", PRE_LOAD, rows_where("bronze", _bronze_end_before_start)),
        _check("row_count_parity", POST_LOAD, silver_count, bronze_count),
        _check("null_prd_id", POST_LOAD, null_keys("silver", ["prd_id"])),
        _check("duplicate_prd_id", POST_LOAD, duplicate_keys("silver", ["prd_id"])),
        _check("negative_or_null_cost", POST_LOAD, rows_where("silver", _bad_cost)),
        _check("product_line_domain", POST_LOAD, outside_domain("silver", "prd_line", PRODUCT_LINES)),
        _check("end_before_start", POST_LOAD, rows_where("silver", _silver_end_before_start)),
    ],
    EntityKind.SALES_DETAIL: [
        _check("invalid_product_keys", PRE_LOAD,
               not_in_dimension("bronze", "sls_prd_key", EntityKind.PRODUCT, "prd_key")),
        _check("invalid_customer_ids", PRE_LOAD,
               not_in_dimension("bronze", "sls_cust_id", EntityKind.CUSTOMER, "cst_id", rules.to_int)),
        _check("invalid_order_dates", PRE_LOAD, rows_where("bronze", _bronze_invalid_order_date)),
        _check("date_order_errors", PRE_LOAD, rows_where("bronze", _bronze_date_order)),
        _check("invalid_sales_or_price", PRE_LOAD, rows_where("bronze", _bad_sales_or_price)),
        _check("row_count_parity", POST_LOAD, silver_count, bronze_count),
        _check("null_order_keys", POST_LOAD, null_keys("silver", ORDER_LINE_KEY)),
        _check("duplicate_order_lines", POST_LOAD, duplicate_keys("silver", ORDER_LINE_KEY)),
        _check("date_order_errors", POST_LOAD, rows_where("silver", _silver_date_order)),
        _check("invalid_sales_or_price", POST_LOAD, rows_where("silver", _bad_sales_or_price)),
    ],
    EntityKind.ERP_CUSTOMER_DEMO: [
        _check("invalid_birthdates", PRE_LOAD, rows_where("bronze", _bad_birthdate)),
        _check("unmapped_customers", PRE_LOAD,
               not_in_dimension("bronze", "cid", EntityKind.CUSTOMER, "cst_key", rules.strip_nas_prefix)),
        _check("row_count_parity", POST_LOAD, silver_count, bronze_count),
        _check("null_cid", POST_LOAD, null_keys("silver", ["cid"])),
        _check("duplicate_cid", POST_LOAD, duplicate_keys("silver", ["cid"])),
        _check("invalid_birthdates", POST_LOAD, rows_where("silver", _bad_birthdate)),
        _check("gender_domain", POST_LOAD, outside_domain("silver", "gen", GENDERS)),
    ],
    EntityKind.ERP_LOCATION: [
        _check("unmapped_customers", PRE_LOAD,
               not_in_dimension("bronze", "cid", EntityKind.CUSTOMER, "cst_key", rules.strip_dashes)),
        _check("row_count_parity", POST_LOAD, silver_count, bronze_count),
        _check("null_cid", POST_LOAD, null_keys("silver", ["cid"])),
        _check("duplicate_cid", POST_LOAD, duplicate_keys("silver", ["cid"])),
        _check("invalid_countries", POST_LOAD, rows_where("silver", _bad_country)),
    ],
    EntityKind.PRODUCT_CATEGORY: [
        _check("untrimmed_maintenance", PRE_LOAD, untrimmed("bronze", ["maintenance"])),
        _check("unused_categories", PRE_LOAD,
               not_in_dimension("bronze", "id", EntityKind.PRODUCT, "cat_id")),
        _check("row_count_parity", POST_LOAD, silver_count, bronze_count),
        _check("null_id", POST_LOAD, null_keys("silver", ["id"])),
        _check("duplicate_id", POST_LOAD, duplicate_keys("silver", ["id"])),
        _check("untrimmed_maintenance", POST_LOAD, untrimmed("silver", ["maintenance"])),
    ],
}


class QualityGate:
    """Runs the advisory checks for one entity and phase and reports every result."""

    def __init__(
        self,
        checks: Optional[Dict[EntityKind, List[QualityCheck]]] = None,
        recorder: Optional[Callable[[QualityCheckResult], None]] = None,
    ):
        self.checks = checks if checks is not None else DEFAULT_CHECKS
        self.recorder = recorder

    def run(self, phase: str, context: CheckContext) -> List[QualityCheckResult]:
        results = [
            check.run(context)
            for check in self.checks.get(context.entity, [])
            if check.phase == phase
        ]
        for result in results:
            if result.passed:
                logger.debug(f"Check {result.entity}.{result.phase}.{result.check_name} passed")
            else:
                logger.warning(
                    f"Check {result.entity}.{result.phase}.{result.check_name} "
                    f"{result.status}: {result.detail}"
                )
            if self.recorder is not None:
                self.recorder(result)
        return results
