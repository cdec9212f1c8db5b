from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict

import pandas as pd

from retail_core.aggregations import calculate_inventory_metrics, detect_slow_moving
from retail_core.filters import DashboardFilters


def compute_inventory(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    df: pd.DataFrame = ctx.get("filtered_records", pd.DataFrame())
    opts = filters.options
    params = {"lead_time_days": opts.lead_time_days, "slow_moving_days": opts.slow_moving_days, "variance_basis": opts.variance_basis}

    if df.empty:
        return {"filters": asdict(filters), "params": params, "kpis": {}, "reorder": [], "slow_moving": []}

    inventory = calculate_inventory_metrics(df, lead_time_days=opts.lead_time_days, variance_basis=opts.variance_basis)
    slow = detect_slow_moving(df, threshold_days=opts.slow_moving_days)

    risk_counts = slow["risk_level"].value_counts().to_dict() if not slow.empty else {}
    kpis = {
        "products": int(len(inventory)),
        "total_suggested_order_qty": int(inventory["suggested_order_qty"].sum()),
        "slow_moving": int(len(slow)),
        "slow_moving_high": int(risk_counts.get("HIGH", 0)),
        "slow_moving_medium": int(risk_counts.get("MEDIUM", 0)),
        "slow_moving_low": int(risk_counts.get("LOW", 0)),
    }
    return {
        "filters": asdict(filters),
        "params": params,
        "kpis": kpis,
        "reorder": inventory.to_dict(orient="records"),
        "slow_moving": slow.to_dict(orient="records"),
    }
