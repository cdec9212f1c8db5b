from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from retail_core import settings

ABC_CLASSES = ("A", "B", "C")


@dataclass(frozen=True)
class AnalysisOptions:
    lead_time_days: int = settings.LEAD_TIME_DAYS
    slow_moving_days: int = settings.SLOW_MOVING_DAYS
    variance_basis: str = "transaction"
    dedupe: bool = settings.DEDUPE_SOURCES
    detect_gifts: bool = settings.DETECT_GIFTS


@dataclass(frozen=True)
class DashboardFilters:
    selected_categories: List[str] = field(default_factory=list)
    selected_brands: List[str] = field(default_factory=list)
    selected_products: List[str] = field(default_factory=list)
    selected_abc: List[str] = field(default_factory=list)
    product_query: str = ""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    top_n: int = 15
    options: AnalysisOptions = field(default_factory=AnalysisOptions)


def _as_str_list(values: Optional[Iterable[object]]) -> List[str]:
    if not values:
        return []
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


def _as_int(value: object, default: int, *, lo: int, hi: int) -> int:
    try:
        out = int(value)  # type: ignore[arg-type]
    except Exception:
        out = default
    return max(lo, min(hi, out))


def _as_date(value: object) -> Optional[str]:
    s = str(value).strip() if value is not None else ""
    return s or None


def normalize_filters(raw: dict) -> DashboardFilters:
    raw = raw or {}
    selected_abc = [c.upper() for c in _as_str_list(raw.get("selected_abc")) if c.upper() in ABC_CLASSES]

    o = raw.get("options") or {}
    basis = str(o.get("variance_basis", "transaction")).lower()
    options = AnalysisOptions(
        lead_time_days=_as_int(o.get("lead_time_days", settings.LEAD_TIME_DAYS), settings.LEAD_TIME_DAYS, lo=1, hi=365),
        slow_moving_days=_as_int(o.get("slow_moving_days", settings.SLOW_MOVING_DAYS), settings.SLOW_MOVING_DAYS, lo=1, hi=3650),
        variance_basis=basis if basis in {"transaction", "daily"} else "transaction",
        dedupe=bool(o.get("dedupe", settings.DEDUPE_SOURCES)),
        detect_gifts=bool(o.get("detect_gifts", settings.DETECT_GIFTS)),
    )

    return DashboardFilters(
        selected_categories=_as_str_list(raw.get("selected_categories")),
        selected_brands=_as_str_list(raw.get("selected_brands")),
        selected_products=_as_str_list(raw.get("selected_products")),
        selected_abc=selected_abc,
        product_query=(raw.get("product_query") or "").strip(),
        start_date=_as_date(raw.get("start_date")),
        end_date=_as_date(raw.get("end_date")),
        top_n=_as_int(raw.get("top_n", 15), 15, lo=1, hi=200),
        options=options,
    )
