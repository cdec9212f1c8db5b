from __future__ import annotations

import csv
from typing import Sequence

import pandas as pd

from retail_core.ai import ProductDecision
from retail_core.normalize import to_number

EXPORT_COLUMNS = [
    "Tag",
    "Product",
    "Category",
    "ABC Class",
    "Lifecycle",
    "Reason",
    "Action",
    "Total Qty",
    "Average Price",
]


def decision_rows(performance: pd.DataFrame, decisions: Sequence[ProductDecision]) -> pd.DataFrame:
    """One row per decision, joined with that product's metrics ("-"/0 when unknown)."""
    metrics = {}
    if not performance.empty:
        metrics = performance.drop_duplicates("product_name").set_index("product_name").to_dict(orient="index")

    rows = []
    for d in decisions:
        m = metrics.get(d.product_name, {})
        rows.append(
            [
                d.tag,
                d.product_name,
                d.category,
                m.get("abc_class") or "-",
                d.lifecycle,
                d.reason,
                d.action,
                to_number(m.get("total_qty", 0)),
                to_number(m.get("average_price", 0)),
            ]
        )
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS, dtype=object)


def decisions_to_csv(performance: pd.DataFrame, decisions: Sequence[ProductDecision]) -> bytes:
    """UTF-8 CSV with a byte-order mark so spreadsheet apps pick the right encoding."""
    text = decision_rows(performance, decisions).to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
    return text.encode("utf-8-sig")
