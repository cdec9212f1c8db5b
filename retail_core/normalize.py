"""Record normalizer.

Maps raw spreadsheet/CSV rows with unknown column names into the canonical
sales-record frame used by every aggregation:

    date | category | product | quantity | amount | cost | brand | is_gift
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

UNKNOWN_DATE = "Unknown"
DEFAULT_CATEGORY = "Uncategorized"
DEFAULT_PRODUCT = "Unknown product"
OTHER_BRAND = "Other 其他"

RECORD_COLUMNS = ["date", "category", "product", "quantity", "amount", "cost", "brand", "is_gift"]

# Substrings matched against lowercased column names, first matching column wins.
COLUMN_PATTERNS: Dict[str, Tuple[str, ...]] = {
    "date": ("date", "日期", "時間", "month", "day"),
    "category": ("category", "cat", "類別", "品類", "部門", "類型"),
    "product": ("product", "name", "model", "商品", "型號", "名稱", "品名"),
    "quantity": ("qty", "quantity", "count", "數量", "銷量", "sales_qty"),
    "amount": ("amount", "price", "revenue", "金額", "售價", "總價", "sales_amt", "營業額"),
    "cost": ("cost", "成本", "進價"),
}

# Order matters: a name carrying several keywords resolves to the first brand listed.
BRAND_KEYWORDS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("panasonic", "國際"), "Panasonic 國際"),
    (("lg",), "LG 樂金"),
    (("samsung", "三星"), "Samsung 三星"),
    (("sony", "索尼"), "Sony"),
    (("hitachi", "日立"), "Hitachi 日立"),
    (("toshiba", "東芝"), "Toshiba 東芝"),
    (("sharp", "夏普"), "Sharp 夏普"),
    (("teco", "東元"), "TECO 東元"),
    (("sampo", "聲寶"), "SAMPO 聲寶"),
    (("heran", "禾聯"), "HERAN 禾聯"),
    (("sanlux", "三洋"), "Sanlux 三洋"),
    (("sakura", "櫻花"), "Sakura 櫻花"),
    (("dyson",), "Dyson"),
    (("philips", "飛利浦"), "Philips"),
    (("tatung", "大同"), "Tatung 大同"),
    (("whirlpool", "惠而浦"), "Whirlpool"),
    (("daikin", "大金"), "Daikin 大金"),
)

GIFT_KEYWORDS = ("贈", "贈品", "禮", "附贈", "加贈", "送", "免費", "gift")
# Whole-word match only, so "freezer" is not a gift.
GIFT_WORD = re.compile(r"\bfree\b")

# Days between the 1900 spreadsheet epoch and 1970-01-01.
SERIAL_EPOCH_OFFSET = 25569
UNIX_EPOCH = pd.Timestamp("1970-01-01")


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, (bool, np.bool_))


def find_column(keys: Sequence[str], patterns: Iterable[str]) -> Optional[str]:
    lowered = [p.lower() for p in patterns]
    for key in keys:
        k = str(key).lower()
        if any(p in k for p in lowered):
            return key
    return None


def to_number(value: object) -> float:
    if _is_blank(value):
        return 0
    try:
        out = float(str(value).strip()) if isinstance(value, str) else float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    if not np.isfinite(out):
        return 0
    return int(out) if out.is_integer() else out


def to_cost(value: object) -> Optional[float]:
    if _is_blank(value):
        return None
    out = to_number(value)
    if not out:
        return None
    return out


def normalize_date(value: object) -> str:
    if _is_blank(value) or (_is_number(value) and value == 0):
        return UNKNOWN_DATE
    if isinstance(value, np.datetime64):
        value = pd.Timestamp(value)
    if isinstance(value, (datetime, date)):
        ts = pd.Timestamp(value)
        if ts.tzinfo is not None:
            ts = ts.tz_convert("UTC")
        return ts.strftime("%Y-%m-%d")
    if _is_number(value):
        try:
            ts = UNIX_EPOCH + pd.to_timedelta(float(value) - SERIAL_EPOCH_OFFSET, unit="D")
        except (OverflowError, ValueError):
            return str(value)
        return ts.strftime("%Y-%m-%d")
    text = str(value).strip()
    try:
        ts = pd.to_datetime(text, errors="coerce")
    except (OverflowError, ValueError):
        ts = pd.NaT
    if pd.isna(ts):
        return text
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC")
    return ts.strftime("%Y-%m-%d")


def detect_brand(product_name: str) -> str:
    normalized = str(product_name).lower()
    for keywords, label in BRAND_KEYWORDS:
        if any(k in normalized for k in keywords):
            return label
    return OTHER_BRAND


def detect_gift(product_name: str, amount: float) -> bool:
    if amount == 0:
        return True
    normalized = str(product_name).lower()
    return any(k in normalized for k in GIFT_KEYWORDS) or bool(GIFT_WORD.search(normalized))


def normalize_row(row: Mapping[str, Any], *, detect_gifts: bool = False) -> Dict[str, Any]:
    keys = list(row.keys())

    def get_val(field_name: str) -> Any:
        key = find_column(keys, COLUMN_PATTERNS[field_name])
        return row[key] if key is not None else None

    product_val = get_val("product")
    category_val = get_val("category")
    product = DEFAULT_PRODUCT if _is_blank(product_val) or product_val == 0 else str(product_val).strip()
    category = DEFAULT_CATEGORY if _is_blank(category_val) or category_val == 0 else str(category_val).strip()
    quantity = to_number(get_val("quantity"))
    amount = to_number(get_val("amount"))

    return {
        "date": normalize_date(get_val("date")),
        "category": category,
        "product": product,
        "quantity": quantity,
        "amount": amount,
        "cost": to_cost(get_val("cost")),
        "brand": detect_brand(product),
        "is_gift": detect_gift(product, amount) if detect_gifts else False,
    }


def merge_sources(sources: Iterable[Iterable[Mapping[str, Any]]]) -> List[Mapping[str, Any]]:
    merged: List[Mapping[str, Any]] = []
    for rows in sources:
        merged.extend(rows)
    return merged


def normalize_rows(
    rows: Iterable[Mapping[str, Any]],
    *,
    dedupe: bool = False,
    detect_gifts: bool = False,
) -> pd.DataFrame:
    """Normalize raw rows into canonical sales records.

    Malformed fields fall back to defaults; rows with neither a positive
    quantity nor a positive amount are dropped. With ``dedupe`` the first of
    several identical (date, product, quantity, amount) rows is kept.
    Counts of what was dropped are left in ``DataFrame.attrs``.
    """
    seen: set = set()
    records: List[Dict[str, Any]] = []
    rows_in = 0
    duplicates = 0
    for row in rows:
        rows_in += 1
        rec = normalize_row(row, detect_gifts=detect_gifts)
        if dedupe:
            key = (rec["date"], rec["product"], rec["quantity"], rec["amount"])
            if key in seen:
                duplicates += 1
                continue
            seen.add(key)
        records.append(rec)

    kept = [r for r in records if r["quantity"] > 0 or r["amount"] > 0]
    df = pd.DataFrame(kept, columns=RECORD_COLUMNS)
    df["quantity"] = pd.to_numeric(df["quantity"])
    df["amount"] = pd.to_numeric(df["amount"])
    df["cost"] = pd.to_numeric(df["cost"], errors="coerce")
    df["is_gift"] = df["is_gift"].astype(bool)

    df.attrs["rows_in"] = rows_in
    df.attrs["duplicates_dropped"] = duplicates
    df.attrs["empty_rows_dropped"] = len(records) - len(kept)
    df.attrs["gift_rows"] = int(df["is_gift"].sum())
    logger.info(
        "Normalized %d raw rows -> %d records (%d duplicates, %d empty dropped)",
        rows_in,
        len(df),
        duplicates,
        len(records) - len(kept),
    )
    return df
