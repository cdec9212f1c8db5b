"""Aggregation engine.

Every function here is a pure transform over the canonical record frame
produced by ``retail_core.normalize`` (or any row subset of it) and returns a
fresh DataFrame/dict. Nothing is cached or mutated between calls, so a
filtered subset can be fed through the same functions at any time.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from retail_core.normalize import UNKNOWN_DATE

PERFORMANCE_COLUMNS = [
    "product_name",
    "category",
    "total_qty",
    "total_amount",
    "average_price",
    "qty_share",
    "amount_share",
    "cumulative_share",
    "abc_class",
    "sales_frequency",
    "velocity_score",
]
SEASONALITY_COLUMNS = ["month", "sales", "revenue", "top_category"]
PRICE_BAND_COLUMNS = ["range", "sales_count", "revenue", "percent"]
BRAND_COLUMNS = ["brand", "revenue", "sales_count", "percentage"]
DAILY_TREND_COLUMNS = ["date", "revenue", "orders"]
INVENTORY_COLUMNS = [
    "product_name",
    "category",
    "avg_daily_sales",
    "std_dev",
    "safety_stock",
    "reorder_point",
    "suggested_order_qty",
]
YOY_COLUMNS = ["month", "current_revenue", "previous_revenue", "mom_growth", "yoy_growth"]
PROFIT_COLUMNS = ["product_name", "category", "total_revenue", "total_cost", "gross_profit", "margin_percent"]
SLOW_MOVING_COLUMNS = [
    "product_name",
    "category",
    "last_sale_date",
    "days_since_last_sale",
    "total_qty_in_period",
    "risk_level",
    "recommendation",
]

# ABC cut-offs on cumulative revenue share (%).
ABC_A_MAX = 80.0
ABC_B_MAX = 95.0

# (upper bound exclusive, label); the last band is open-ended.
PRICE_BANDS = [
    (3000, "Budget (<3k)"),
    (10000, "Entry (3k-10k)"),
    (25000, "Mid-range (10k-25k)"),
    (40000, "Premium (25k-40k)"),
    (math.inf, "Flagship (>40k)"),
]

# One-sided z-score for a 95% service level.
SERVICE_LEVEL_Z = 1.65
COVERAGE_DAYS = 30

TREND_THRESHOLD_PCT = 5.0
FORECAST_WINDOW = 3

SLOW_MOVING_TIERS = [
    (60, "HIGH", "Liquidate or halt reorder"),
    (30, "MEDIUM", "Promote or discount"),
]
SLOW_MOVING_FALLBACK = ("LOW", "Continue monitoring")


# ---------------- Numeric helpers ----------------
def round_half_up(value: object, ndigits: int = 0) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    q = Decimal(10) ** -ndigits
    out = Decimal(str(value)).quantize(q, rounding=ROUND_HALF_UP)
    return int(out) if ndigits == 0 else float(out)


def share_pct(part: float, total: float) -> float:
    return (part / total) * 100 if total > 0 else 0.0


def growth_pct(current: float, previous: float) -> Optional[float]:
    if previous is None or previous <= 0:
        return None
    return round_half_up((current - previous) / previous * 100, 1)


def _empty(columns: List[str]) -> pd.DataFrame:
    return pd.DataFrame(columns=columns)


# ---------------- Analyzers ----------------
def analyze_performance(records: pd.DataFrame) -> pd.DataFrame:
    """Per-product totals with Pareto (ABC) classes.

    Classes depend on rank within ``records``: re-running on a subset can
    change a product's class. The top-ranked product is always A, so when it
    alone holds more than 80% of revenue its class departs from the 80/95
    cumulative-share cutoffs. Every other product follows them.
    """
    if records.empty:
        return _empty(PERFORMANCE_COLUMNS)

    total_amount = float(records["amount"].sum())
    total_qty = float(records["quantity"].sum())
    perf = (
        records.groupby("product", sort=False)
        .agg(
            category=("category", "first"),
            total_qty=("quantity", "sum"),
            total_amount=("amount", "sum"),
            sales_frequency=("quantity", "size"),
        )
        .reset_index()
        .rename(columns={"product": "product_name"})
    )
    perf["average_price"] = [
        round_half_up(a / q) if q > 0 else 0 for a, q in zip(perf["total_amount"], perf["total_qty"])
    ]
    perf["qty_share"] = perf["total_qty"].apply(lambda v: share_pct(float(v), total_qty))
    perf["amount_share"] = perf["total_amount"].apply(lambda v: share_pct(float(v), total_amount))
    # Heuristic: volume plus a frequency bonus, capped at 100.
    perf["velocity_score"] = np.minimum(100, perf["total_qty"] * 1.5 + perf["sales_frequency"] * 0.5)

    perf = perf.sort_values("total_amount", ascending=False, kind="stable").reset_index(drop=True)
    perf["cumulative_share"] = perf["amount_share"].cumsum()
    perf["abc_class"] = np.select(
        [perf["cumulative_share"] <= ABC_A_MAX, perf["cumulative_share"] <= ABC_B_MAX],
        ["A", "B"],
        default="C",
    )
    # The top seller is always A, even when it alone crosses the 80% line.
    perf.loc[0, "abc_class"] = "A"
    return perf[PERFORMANCE_COLUMNS]


def month_key(date_str: str) -> str:
    return date_str[:7] if len(date_str) >= 7 else date_str


def analyze_seasonality(records: pd.DataFrame) -> pd.DataFrame:
    if records.empty:
        return _empty(SEASONALITY_COLUMNS)

    df = records.assign(month=records["date"].astype(str).map(month_key))
    monthly = (
        df.groupby("month", sort=False)
        .agg(sales=("quantity", "sum"), revenue=("amount", "sum"))
        .reset_index()
    )
    # Highest quantity wins; ties go to the category seen first that month.
    top = (
        df.groupby(["month", "category"], sort=False)["quantity"]
        .sum()
        .reset_index()
        .sort_values("quantity", ascending=False, kind="stable")
        .drop_duplicates(subset=["month"], keep="first")
        .set_index("month")["category"]
    )
    monthly["top_category"] = monthly["month"].map(top).fillna("None")
    return monthly.sort_values("month", kind="stable").reset_index(drop=True)[SEASONALITY_COLUMNS]


def price_band(unit_price: float) -> str:
    for upper, label in PRICE_BANDS:
        if unit_price < upper:
            return label
    return PRICE_BANDS[-1][1]


def analyze_price_bands(records: pd.DataFrame) -> pd.DataFrame:
    if records.empty:
        return _empty(PRICE_BAND_COLUMNS)

    qty = records["quantity"]
    unit_price = records["amount"].div(qty.where(qty > 0)).fillna(0)
    total_rev = float(records["amount"].sum())
    bands = (
        records.assign(range=unit_price.map(price_band))
        .groupby("range", sort=False)
        .agg(sales_count=("quantity", "sum"), revenue=("amount", "sum"))
    )
    order = [label for _, label in PRICE_BANDS if label in bands.index]
    bands = bands.reindex(order).reset_index()
    bands["percent"] = bands["revenue"].apply(lambda v: share_pct(float(v), total_rev))
    return bands[PRICE_BAND_COLUMNS]


def analyze_brands(records: pd.DataFrame) -> pd.DataFrame:
    if records.empty:
        return _empty(BRAND_COLUMNS)

    total_rev = float(records["amount"].sum())
    brands = (
        records.groupby("brand", sort=False)
        .agg(revenue=("amount", "sum"), sales_count=("quantity", "sum"))
        .reset_index()
    )
    brands["percentage"] = brands["revenue"].apply(lambda v: share_pct(float(v), total_rev))
    return brands.sort_values("revenue", ascending=False, kind="stable").reset_index(drop=True)[BRAND_COLUMNS]


def analyze_daily_trend(records: pd.DataFrame) -> pd.DataFrame:
    """Revenue and order count per calendar day; one record counts as one order."""
    if records.empty:
        return _empty(DAILY_TREND_COLUMNS)

    daily = (
        records.groupby("date", sort=False)
        .agg(revenue=("amount", "sum"), orders=("amount", "size"))
        .reset_index()
    )
    return daily.sort_values("date", kind="stable").reset_index(drop=True)[DAILY_TREND_COLUMNS]


def calculate_inventory_metrics(
    records: pd.DataFrame,
    lead_time_days: int = 7,
    variance_basis: str = "transaction",
) -> pd.DataFrame:
    """Safety stock, reorder point and 30-day order suggestion per product.

    ``variance_basis="transaction"`` takes the standard deviation over the
    individual record quantities, not over a daily series, so days with
    several transactions are not summed first. ``"daily"`` measures each
    product's per-day totals across every date in ``records`` instead, which
    shifts safety stock figures.
    """
    if records.empty:
        return _empty(INVENTORY_COLUMNS)

    total_days = int(records["date"].nunique()) or 1
    inv = (
        records.groupby("product", sort=False)
        .agg(
            category=("category", "first"),
            total_qty=("quantity", "sum"),
            std_dev=("quantity", lambda s: float(np.std(s.to_numpy(dtype=float)))),
        )
        .reset_index()
        .rename(columns={"product": "product_name"})
    )
    if variance_basis == "daily":
        daily = records.pivot_table(index="product", columns="date", values="quantity", aggfunc="sum", fill_value=0)
        daily_std = daily.apply(lambda r: float(np.std(r.to_numpy(dtype=float))), axis=1)
        inv["std_dev"] = inv["product_name"].map(daily_std).astype(float)

    avg_daily = inv["total_qty"] / total_days
    safety = np.ceil(SERVICE_LEVEL_Z * inv["std_dev"] * math.sqrt(lead_time_days))
    inv["safety_stock"] = safety.astype(int)
    inv["reorder_point"] = np.ceil(safety + avg_daily * lead_time_days).astype(int)
    inv["suggested_order_qty"] = np.ceil(avg_daily * COVERAGE_DAYS).astype(int)
    inv["avg_daily_sales"] = avg_daily.apply(lambda v: round_half_up(v, 2))
    inv["std_dev"] = inv["std_dev"].apply(lambda v: round_half_up(v, 2))

    inv = inv.sort_values("avg_daily_sales", ascending=False, kind="stable").reset_index(drop=True)
    return inv[INVENTORY_COLUMNS]


def forecast_next_month(seasonality: pd.DataFrame) -> Dict[str, Any]:
    """Three-month moving average of the monthly series."""
    if seasonality.empty:
        return {
            "next_month_revenue": 0,
            "next_month_qty": 0,
            "trend": "STABLE",
            "trend_percent": 0,
            "confidence": "LOW",
            "method": "No historical data",
        }

    recent = seasonality.tail(FORECAST_WINDOW)
    revenues = [float(v) for v in recent["revenue"]]
    quantities = [float(v) for v in recent["sales"]]
    avg_revenue = sum(revenues) / len(revenues)
    avg_qty = sum(quantities) / len(quantities)

    trend = "STABLE"
    trend_pct = 0.0
    if len(revenues) >= 2:
        last, prev = revenues[-1], revenues[-2]
        trend_pct = (last - prev) / prev * 100 if prev > 0 else 0.0
        if trend_pct > TREND_THRESHOLD_PCT:
            trend = "UP"
        elif trend_pct < -TREND_THRESHOLD_PCT:
            trend = "DOWN"

    months = len(seasonality)
    confidence = "MEDIUM"
    if months >= 6:
        confidence = "HIGH"
    elif months < 3:
        confidence = "LOW"

    return {
        "next_month_revenue": round_half_up(avg_revenue),
        "next_month_qty": round_half_up(avg_qty),
        "trend": trend,
        "trend_percent": round_half_up(trend_pct, 1),
        "confidence": confidence,
        "method": "3-month moving average",
    }


def _prior_year_key(month: str) -> Optional[str]:
    parts = month.split("-")
    if len(parts) != 2:
        return None
    try:
        year = int(parts[0])
    except ValueError:
        return None
    return f"{year - 1}-{parts[1]}"


def calculate_yoy_comparison(seasonality: pd.DataFrame) -> pd.DataFrame:
    """Month-over-month and year-over-year revenue growth.

    MoM compares each row with the row before it in the series. Growth
    fields are None (not 0) when the base period is missing or has no revenue.
    """
    if seasonality.empty:
        return _empty(YOY_COLUMNS)

    revenue_by_month = dict(zip(seasonality["month"], seasonality["revenue"]))
    rows: List[Dict[str, Any]] = []
    prev_revenue: Optional[float] = None
    for idx, (month, revenue) in enumerate(zip(seasonality["month"], seasonality["revenue"])):
        row: Dict[str, Any] = {
            "month": month,
            "current_revenue": revenue,
            "previous_revenue": None,
            "mom_growth": None,
            "yoy_growth": None,
        }
        if idx > 0:
            row["previous_revenue"] = prev_revenue
            row["mom_growth"] = growth_pct(float(revenue), float(prev_revenue))
        ly_key = _prior_year_key(str(month))
        if ly_key is not None and ly_key in revenue_by_month:
            row["yoy_growth"] = growth_pct(float(revenue), float(revenue_by_month[ly_key]))
        rows.append(row)
        prev_revenue = revenue
    # object dtype keeps missing growth as None instead of NaN
    return pd.DataFrame(rows, columns=YOY_COLUMNS, dtype=object)


def has_cost_data(records: pd.DataFrame) -> bool:
    if records.empty or "cost" not in records.columns:
        return False
    return bool((pd.to_numeric(records["cost"], errors="coerce") > 0).any())


def analyze_profit_margin(records: pd.DataFrame) -> pd.DataFrame:
    """Gross margin per product.

    Empty when no record carries a positive cost: that means "not
    applicable", not zero margin.
    """
    if not has_cost_data(records):
        return _empty(PROFIT_COLUMNS)

    cost = pd.to_numeric(records["cost"], errors="coerce").fillna(0)
    profit = (
        records.assign(line_cost=cost * records["quantity"])
        .groupby("product", sort=False)
        .agg(
            category=("category", "first"),
            total_revenue=("amount", "sum"),
            total_cost=("line_cost", "sum"),
        )
        .reset_index()
        .rename(columns={"product": "product_name"})
    )
    profit = profit[profit["total_revenue"] > 0].copy()
    profit["gross_profit"] = profit["total_revenue"] - profit["total_cost"]
    profit["margin_percent"] = [
        round_half_up(gp / rev * 100, 1) for gp, rev in zip(profit["gross_profit"], profit["total_revenue"])
    ]
    return profit.sort_values("margin_percent", ascending=False, kind="stable").reset_index(drop=True)[PROFIT_COLUMNS]


def _risk_tier(days: int) -> tuple:
    for min_days, level, recommendation in SLOW_MOVING_TIERS:
        if days >= min_days:
            return level, recommendation
    return SLOW_MOVING_FALLBACK


def detect_slow_moving(records: pd.DataFrame, threshold_days: int = 30) -> pd.DataFrame:
    """Products whose last sale is at least ``threshold_days`` before the dataset's last date.

    The LOW tier only shows up when ``threshold_days`` is below 30.
    """
    if records.empty:
        return _empty(SLOW_MOVING_COLUMNS)

    dated = records[records["date"] != UNKNOWN_DATE]
    if dated.empty:
        return _empty(SLOW_MOVING_COLUMNS)
    last_observed = pd.to_datetime(dated["date"].max(), format="%Y-%m-%d", errors="coerce")
    if pd.isna(last_observed):
        return _empty(SLOW_MOVING_COLUMNS)

    per_product = (
        records.groupby("product", sort=False)
        .agg(category=("category", "first"), total_qty_in_period=("quantity", "sum"))
    )
    last_sale = dated.groupby("product", sort=False)["date"].max()
    alerts = per_product.join(last_sale.rename("last_sale_date"), how="inner").reset_index()
    alerts = alerts.rename(columns={"product": "product_name"})

    last_ts = pd.to_datetime(alerts["last_sale_date"], format="%Y-%m-%d", errors="coerce")
    alerts = alerts[last_ts.notna()].copy()
    alerts["days_since_last_sale"] = (last_observed - last_ts[last_ts.notna()]).dt.days.astype(int)
    alerts = alerts[alerts["days_since_last_sale"] >= threshold_days]
    if alerts.empty:
        return _empty(SLOW_MOVING_COLUMNS)

    tiers = alerts["days_since_last_sale"].map(_risk_tier)
    alerts["risk_level"] = tiers.map(lambda t: t[0])
    alerts["recommendation"] = tiers.map(lambda t: t[1])
    alerts = alerts.sort_values("days_since_last_sale", ascending=False, kind="stable").reset_index(drop=True)
    return alerts[SLOW_MOVING_COLUMNS]
