from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict

import pandas as pd

from retail_core.aggregations import month_key
from retail_core.filters import DashboardFilters
from retail_core.normalize import DEFAULT_CATEGORY, DEFAULT_PRODUCT, OTHER_BRAND, UNKNOWN_DATE


def compute_debug(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    records: pd.DataFrame = ctx.get("records", pd.DataFrame())
    filtered: pd.DataFrame = ctx.get("filtered_records", pd.DataFrame())
    dq: Dict[str, Any] = ctx.get("dq", {}) or {}

    payload = {
        "filters": asdict(filters),
        "files": list(ctx.get("files", [])),
        "row_counts": {
            "raw_rows": int(dq.get("rows_in", len(records))),
            "records": int(len(records)),
            "filtered_records": int(len(filtered)),
        },
        "cleaning_checks": {
            "duplicates_dropped": int(dq.get("duplicates_dropped", 0) or 0),
            "empty_rows_dropped": int(dq.get("empty_rows_dropped", 0) or 0),
            "gift_rows": int(dq.get("gift_rows", 0) or 0),
        },
        "defaults_applied": {},
        "month_coverage": [],
        "unparsed_dates": [],
        "other_brand_top": [],
    }
    if records.empty:
        return payload

    dated = records["date"] != UNKNOWN_DATE
    iso = pd.to_datetime(records["date"], format="%Y-%m-%d", errors="coerce")
    cost = pd.to_numeric(records["cost"], errors="coerce")
    payload["defaults_applied"] = {
        "unknown_date_rows": int((~dated).sum()),
        "unparsed_date_rows": int((dated & iso.isna()).sum()),
        "default_category_rows": int((records["category"] == DEFAULT_CATEGORY).sum()),
        "default_product_rows": int((records["product"] == DEFAULT_PRODUCT).sum()),
        "other_brand_rows": int((records["brand"] == OTHER_BRAND).sum()),
        "cost_rows": int((cost > 0).sum()),
    }

    valid = records[iso.notna()]
    if not valid.empty:
        coverage = (
            valid.assign(month=valid["date"].map(month_key))
            .groupby("month")
            .agg(rows=("date", "size"), days_present=("date", "nunique"))
            .reset_index()
        )
        payload["month_coverage"] = coverage.to_dict(orient="records")

    bad = records.loc[dated & iso.isna(), "date"]
    if not bad.empty:
        payload["unparsed_dates"] = bad.value_counts().head(20).rename_axis("date").reset_index(name="count").to_dict(orient="records")

    other = records.loc[records["brand"] == OTHER_BRAND, "product"]
    if not other.empty:
        payload["other_brand_top"] = other.value_counts().head(20).rename_axis("product").reset_index(name="count").to_dict(orient="records")
    return payload
