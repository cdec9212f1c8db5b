from __future__ import annotations

import io
import logging
from dataclasses import asdict
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from retail_core import settings
from retail_core.aggregations import analyze_performance
from retail_core.errors import NoValidDataError
from retail_core.filters import AnalysisOptions, DashboardFilters, normalize_filters
from retail_core.normalize import UNKNOWN_DATE, merge_sources, normalize_rows

logger = logging.getLogger(__name__)


def get_source_files(data_dir: Optional[Path] = None) -> List[Path]:
    data_dir = data_dir or settings.DATA_DIR
    if not data_dir.exists():
        return []
    files: List[Path] = []
    for pattern in settings.FILE_GLOBS:
        files.extend(p for p in data_dir.glob(pattern) if not p.name.startswith("~$"))
    return sorted(set(files))


def file_signature(files: List[Path]) -> Tuple[Tuple[str, float], ...]:
    return tuple((str(f), f.stat().st_mtime) for f in files)


# ---------------- Loaders ----------------
CSV_ENCODINGS = ("utf-8-sig", "big5", "latin-1")


def _open(source: Union[Path, bytes]) -> Union[Path, io.BytesIO]:
    return io.BytesIO(source) if isinstance(source, bytes) else source


def read_csv_rows(source: Union[Path, bytes], name: str = "") -> List[Dict[str, Any]]:
    last_error: Optional[UnicodeDecodeError] = None
    for encoding in CSV_ENCODINGS:
        try:
            df = pd.read_csv(_open(source), encoding=encoding)
        except UnicodeDecodeError as exc:
            logger.info("%s decoding failed for %s, trying next encoding", encoding, name or source)
            last_error = exc
            continue
        return df.to_dict(orient="records")
    raise last_error  # type: ignore[misc]


EXCEL_ENGINES = {".xlsx": "openpyxl", ".xls": "xlrd"}


def read_excel_rows(source: Union[Path, bytes], engine: Optional[str] = None) -> List[Dict[str, Any]]:
    df = pd.read_excel(_open(source), sheet_name=0, engine=engine)
    df = df.dropna(how="all")
    return df.to_dict(orient="records")


def load_rows(path: Path, content: Optional[bytes] = None) -> List[Dict[str, Any]]:
    """Read one spreadsheet/CSV (first sheet only) into raw row dicts.

    With ``content`` the bytes are parsed instead of reading ``path``; the
    name only picks the format.
    """
    source: Union[Path, bytes] = path if content is None else content
    if path.suffix.lower() == ".csv":
        rows = read_csv_rows(source, path.name)
    else:
        rows = read_excel_rows(source, EXCEL_ENGINES.get(path.suffix.lower()))
    logger.info("Loaded %d rows from %s", len(rows), path.name)
    return rows


# ---------------- Context builders ----------------
def require_records(records: pd.DataFrame) -> pd.DataFrame:
    if records is None or records.empty:
        raise NoValidDataError()
    return records


def build_data_context(
    sources: Sequence[Iterable[Mapping[str, Any]]],
    *,
    options: Optional[AnalysisOptions] = None,
    files: Optional[List[str]] = None,
) -> Dict[str, object]:
    options = options or AnalysisOptions()
    rows = merge_sources(sources)
    records = normalize_rows(rows, dedupe=options.dedupe, detect_gifts=options.detect_gifts)
    global_performance = analyze_performance(records)

    return {
        "files": files or [],
        "records": records,
        "global_performance": global_performance,
        "categories": sorted(records["category"].astype(str).unique().tolist()),
        "brands": sorted(records["brand"].astype(str).unique().tolist()),
        "products": sorted(records["product"].astype(str).unique().tolist()),
        "dq": {
            "rows_in": int(records.attrs.get("rows_in", len(records))),
            "duplicates_dropped": int(records.attrs.get("duplicates_dropped", 0)),
            "empty_rows_dropped": int(records.attrs.get("empty_rows_dropped", 0)),
            "gift_rows": int(records.attrs.get("gift_rows", 0)),
        },
        "options": asdict(options),
    }


@lru_cache(maxsize=4)
def _load_dashboard_data_cached(
    files_sig: Tuple[Tuple[str, float], ...],
    dedupe: bool,
    detect_gifts: bool,
) -> Dict[str, object]:
    files = [Path(name) for name, _ in files_sig]
    sources = [load_rows(path) for path in files]
    options = AnalysisOptions(dedupe=dedupe, detect_gifts=detect_gifts)
    return build_data_context(sources, options=options, files=[p.name for p in files])


def load_dashboard_data(options: Optional[AnalysisOptions] = None) -> Dict[str, object]:
    options = options or AnalysisOptions()
    files = get_source_files()
    if not files:
        return build_data_context([], options=options)
    return _load_dashboard_data_cached(file_signature(files), options.dedupe, options.detect_gifts)


# ---------------- Filtering ----------------
def filter_records(records: pd.DataFrame, filt: DashboardFilters, global_performance: pd.DataFrame) -> pd.DataFrame:
    df = records
    if df.empty:
        return df
    if filt.selected_categories:
        df = df[df["category"].isin(filt.selected_categories)]
    if filt.selected_brands:
        df = df[df["brand"].isin(filt.selected_brands)]
    if filt.selected_products:
        df = df[df["product"].isin(filt.selected_products)]
    if filt.product_query:
        df = df[df["product"].astype(str).str.contains(filt.product_query, case=False, regex=False, na=False)]
    if filt.start_date or filt.end_date:
        df = df[df["date"] != UNKNOWN_DATE]
        if filt.start_date:
            df = df[df["date"] >= filt.start_date]
        if filt.end_date:
            df = df[df["date"] <= filt.end_date]
    if filt.selected_abc and not global_performance.empty:
        keep = global_performance.loc[global_performance["abc_class"].isin(filt.selected_abc), "product_name"]
        df = df[df["product"].isin(set(keep))]
    return df


def attach_global_abc(local_performance: pd.DataFrame, global_performance: pd.DataFrame) -> pd.DataFrame:
    """Pin each product's ABC class to its rank in the full dataset.

    The rank within the filtered subset is kept as ``local_abc_class``.
    """
    perf = local_performance.copy()
    perf["local_abc_class"] = perf["abc_class"]
    if global_performance.empty or perf.empty:
        return perf
    global_map = global_performance.set_index("product_name")["abc_class"]
    perf["abc_class"] = perf["product_name"].map(global_map).fillna(perf["local_abc_class"])
    return perf


def prepare_context(filters: dict | DashboardFilters, data_ctx: Dict[str, object]) -> Dict[str, object]:
    records: pd.DataFrame = data_ctx.get("records", pd.DataFrame())
    global_performance: pd.DataFrame = data_ctx.get("global_performance", pd.DataFrame())
    filt = filters if isinstance(filters, DashboardFilters) else normalize_filters(filters)

    filtered_records = filter_records(records, filt, global_performance)
    local_performance = attach_global_abc(analyze_performance(filtered_records), global_performance)

    return {
        "filters": filt,
        "records": records,
        "filtered_records": filtered_records,
        "global_performance": global_performance,
        "filtered_performance": local_performance,
        "files": data_ctx.get("files", []),
        "dq": data_ctx.get("dq", {}),
    }
