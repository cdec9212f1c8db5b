from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional

import pandas as pd

from retail_core.aggregations import analyze_profit_margin, round_half_up
from retail_core.filters import DashboardFilters


def _best(profit: pd.DataFrame, key: str) -> Optional[Dict[str, Any]]:
    grouped = profit.groupby(key, sort=False)["gross_profit"].sum()
    if grouped.empty:
        return None
    grouped = grouped.sort_values(ascending=False, kind="stable")
    return {"name": str(grouped.index[0]), "value": float(grouped.iloc[0])}


def compute_finance(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    df: pd.DataFrame = ctx.get("filtered_records", pd.DataFrame())
    profit = analyze_profit_margin(df) if not df.empty else pd.DataFrame()

    if profit.empty:
        # No cost column with a positive value: margin is not applicable here.
        return {"filters": asdict(filters), "available": False, "summary": {}, "top_margin": [], "low_margin": [], "products": []}

    revenue = float(profit["total_revenue"].sum())
    cost = float(profit["total_cost"].sum())
    gross = float(profit["gross_profit"].sum())
    summary = {
        "revenue": revenue,
        "cost": cost,
        "gross_profit": gross,
        "gross_margin_pct": round_half_up(gross / revenue * 100, 1) if revenue else None,
        "top_gp_product": _best(profit, "product_name"),
        "top_gp_category": _best(profit, "category"),
        "negative_margin_products": int((profit["gross_profit"] < 0).sum()),
    }

    low = profit.sort_values("margin_percent", ascending=True, kind="stable").head(filters.top_n)
    return {
        "filters": asdict(filters),
        "available": True,
        "summary": summary,
        "top_margin": profit.head(filters.top_n).to_dict(orient="records"),
        "low_margin": low.to_dict(orient="records"),
        "products": profit.to_dict(orient="records"),
    }
