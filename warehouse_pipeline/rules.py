"""
Field-level cleansing and derivation rules.

Every rule is a pure function of one bronze value (or a small group of values
from the same row). None of them raise on bad input: an unusable value
degrades to None or to the rule's documented default.
"""
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional, Union

import pandas as pd

NOT_AVAILABLE = "n/a"

# Integer dates (YYYYMMDD) outside this window are treated as garbage.
MIN_INT_DATE = 19010101
MAX_INT_DATE = 20491231

Number = Union[int, float]


def is_missing(value) -> bool:
    """True for None, NaN, NaT and pandas NA."""
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def passthrough(value):
    return None if is_missing(value) else value


def trim(value) -> Optional[str]:
    if is_missing(value):
        return None
    return str(value).strip()


def to_number(value) -> Optional[Number]:
    """Parse a numeric value, keeping integers as int. Unparsable input gives None."""
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number) if number.is_integer() else number


def to_int(value) -> Optional[int]:
    number = to_number(value)
    if number is None or not float(number).is_integer():
        return None
    return int(number)


def parse_date(value) -> Optional[date]:
    """Read an ISO date (optionally followed by a time part)."""
    if is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def int_to_date(value) -> Optional[date]:
    """
    Convert a YYYYMMDD integer into a date.

    Zero, wrong length, out-of-range and impossible calendar dates all give None.
    """
    number = to_int(value)
    if not number:
        return None
    text = str(number)
    if len(text) != 8 or not MIN_INT_DATE <= number <= MAX_INT_DATE:
        return None
    try:
        return date(int(text[:4]), int(text[4:6]), int(text[6:]))
    except ValueError:
        return None


def map_code(mapping: Dict[str, str], default: str = NOT_AVAILABLE) -> Callable[[object], str]:
    """Build a rule that upper-cases and trims a code before looking it up."""

    def rule(value) -> str:
        if is_missing(value):
            return default
        return mapping.get(str(value).strip().upper(), default)

    return rule


marital_status = map_code({"S": "Single", "M": "Married"})
customer_gender = map_code({"F": "Female", "M": "Male"})
erp_gender = map_code({"F": "Female", "FEMALE": "Female", "M": "Male", "MALE": "Male"})
product_line = map_code({"M": "Mountain", "R": "Road", "S": "Other Sales", "T": "Touring"})


# ----------------------------------------------------------------------
# Product
# ----------------------------------------------------------------------

def category_id(prd_key) -> Optional[str]:
    """First five characters of the composite product key, dashes as underscores."""
    if is_missing(prd_key):
        return None
    return str(prd_key)[:5].replace("-", "_")


def product_key(prd_key) -> Optional[str]:
    """Composite product key without its category prefix (from position 7 on)."""
    if is_missing(prd_key):
        return None
    return str(prd_key)[6:]


def cost_or_zero(value) -> Number:
    number = to_number(value)
    return 0 if number is None else number


def day_before(value) -> Optional[date]:
    start = parse_date(value)
    return start - timedelta(days=1) if start is not None else None


# ----------------------------------------------------------------------
# Sales
# ----------------------------------------------------------------------

def _integral(number: Optional[Number]) -> Optional[Number]:
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def derive_sales(sales, quantity, price) -> Optional[Number]:
    """Recompute sales as quantity * |price| when it is missing, non-positive or inconsistent."""
    sales, quantity, price = to_number(sales), to_number(quantity), to_number(price)
    expected = None
    if quantity is not None and price is not None:
        expected = _integral(quantity * abs(price))
    if sales is None or sales <= 0:
        return expected
    if expected is not None and sales != expected:
        return expected
    return sales


def derive_price(sales, quantity, price) -> Optional[Number]:
    """Derive price as sales / quantity when missing or non-positive, else its absolute value."""
    sales, quantity, price = to_number(sales), to_number(quantity), to_number(price)
    if price is not None and price > 0:
        return abs(price)
    if sales is None or not quantity:
        return None
    return _integral(sales / quantity)


# ----------------------------------------------------------------------
# ERP
# ----------------------------------------------------------------------

def strip_dashes(value) -> Optional[str]:
    if is_missing(value):
        return None
    return str(value).replace("-", "")


def strip_nas_prefix(value) -> Optional[str]:
    if is_missing(value):
        return None
    text = str(value)
    return text[3:] if text.startswith("NAS") else text


def birthdate_not_after(value, as_of: date) -> Optional[date]:
    """Birthdates in the future are unknown."""
    born = parse_date(value)
    if born is None or born > as_of:
        return None
    return born


def country_name(value) -> str:
    text = trim(value)
    if not text:
        return NOT_AVAILABLE
    code = text.upper()
    if code == "DE":
        return "Germany"
    if code in ("US", "USA"):
        return "United States"
    return text
