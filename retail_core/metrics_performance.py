from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Literal

import pandas as pd

from retail_core.aggregations import analyze_brands, analyze_price_bands, share_pct
from retail_core.filters import ABC_CLASSES, DashboardFilters

Metric = Literal["revenue", "units"]


def summarize_abc(perf: pd.DataFrame) -> list[Dict[str, Any]]:
    total = float(perf["total_amount"].sum()) if not perf.empty else 0.0
    out = []
    for cls in ABC_CLASSES:
        part = perf[perf["abc_class"] == cls] if not perf.empty else perf
        revenue = float(part["total_amount"].sum()) if not part.empty else 0.0
        out.append(
            {
                "abc_class": cls,
                "products": int(len(part)),
                "revenue": revenue,
                "revenue_share": share_pct(revenue, total),
            }
        )
    return out


def compute_performance(
    filters: DashboardFilters,
    ctx: Dict[str, Any],
    *,
    metric: Metric = "revenue",
) -> Dict[str, Any]:
    df: pd.DataFrame = ctx.get("filtered_records", pd.DataFrame())
    perf: pd.DataFrame = ctx.get("filtered_performance", pd.DataFrame())
    metric_col = "total_amount" if metric == "revenue" else "total_qty"

    if df.empty or perf.empty:
        return {
            "filters": asdict(filters),
            "metric": metric,
            "top": [],
            "products": [],
            "abc_summary": [],
            "price_bands": [],
            "brands": [],
        }

    top = perf.sort_values(metric_col, ascending=False, kind="stable").head(filters.top_n).reset_index(drop=True)
    top.insert(0, "rank", top.index + 1)

    return {
        "filters": asdict(filters),
        "metric": metric,
        "top": top.to_dict(orient="records"),
        "products": perf.to_dict(orient="records"),
        "abc_summary": summarize_abc(perf),
        "price_bands": analyze_price_bands(df).to_dict(orient="records"),
        "brands": analyze_brands(df).to_dict(orient="records"),
    }
