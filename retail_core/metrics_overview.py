from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional

import pandas as pd

from retail_core.aggregations import (
    analyze_daily_trend,
    analyze_seasonality,
    calculate_yoy_comparison,
    forecast_next_month,
    round_half_up,
)
from retail_core.filters import DashboardFilters
from retail_core.normalize import UNKNOWN_DATE


def _date_bounds(records: pd.DataFrame) -> tuple[Optional[str], Optional[str]]:
    dates = records["date"][records["date"] != UNKNOWN_DATE]
    if dates.empty:
        return None, None
    return str(dates.min()), str(dates.max())


def compute_overview(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    df: pd.DataFrame = ctx.get("filtered_records", pd.DataFrame())

    if df.empty:
        return {
            "filters": asdict(filters),
            "kpis": {},
            "daily_trend": [],
            "seasonality": [],
            "forecast": forecast_next_month(pd.DataFrame()),
            "yoy": [],
        }

    revenue = float(df["amount"].sum())
    units = float(df["quantity"].sum())
    orders = int(len(df))
    first_date, last_date = _date_bounds(df)
    kpis = {
        "total_revenue": revenue,
        "total_units": units,
        "orders": orders,
        "products": int(df["product"].nunique()),
        "avg_order_value": round_half_up(revenue / orders, 2) if orders else None,
        "asp": round_half_up(revenue / units, 2) if units > 0 else None,
        "first_date": first_date,
        "last_date": last_date,
        "gift_rows": int(df["is_gift"].sum()) if "is_gift" in df.columns else 0,
    }

    seasonality = analyze_seasonality(df)
    return {
        "filters": asdict(filters),
        "kpis": kpis,
        "daily_trend": analyze_daily_trend(df).to_dict(orient="records"),
        "seasonality": seasonality.to_dict(orient="records"),
        "forecast": forecast_next_month(seasonality),
        "yoy": calculate_yoy_comparison(seasonality).to_dict(orient="records"),
    }
