import math

import pandas as pd

from retail_core.aggregations import analyze_performance, analyze_profit_margin
from retail_core.normalize import (
    DEFAULT_CATEGORY,
    DEFAULT_PRODUCT,
    OTHER_BRAND,
    RECORD_COLUMNS,
    UNKNOWN_DATE,
    detect_brand,
    detect_gift,
    merge_sources,
    normalize_date,
    normalize_row,
    normalize_rows,
    to_cost,
    to_number,
)


def test_canonical_columns(records):
    assert list(records.columns) == RECORD_COLUMNS
    assert len(records) == 5
    first = records.iloc[0]
    assert first["date"] == "2024-01-05"
    assert first["product"] == "Sony Bravia 55"
    assert first["brand"] == "Sony"
    assert first["quantity"] == 2
    assert first["amount"] == 60000
    assert first["cost"] == 22000


def test_chinese_headers_are_inferred():
    rec = normalize_row({"日期": "2024/01/05", "類別": "冷氣", "型號": "日立 RAS-22", "數量": "2", "金額": "50000"})
    assert rec["date"] == "2024-01-05"
    assert rec["category"] == "冷氣"
    assert rec["product"] == "日立 RAS-22"
    assert rec["quantity"] == 2
    assert rec["amount"] == 50000
    assert rec["cost"] is None
    assert rec["brand"] == "Hitachi 日立"


def test_missing_fields_fall_back_to_defaults():
    rec = normalize_row({"Qty": 1, "Amount": 100})
    assert rec["date"] == UNKNOWN_DATE
    assert rec["category"] == DEFAULT_CATEGORY
    assert rec["product"] == DEFAULT_PRODUCT
    assert rec["brand"] == OTHER_BRAND
    assert rec["is_gift"] is False


def test_number_coercion():
    assert to_number("2") == 2
    assert isinstance(to_number("2"), int)
    assert to_number("1.5") == 1.5
    assert to_number("abc") == 0
    assert to_number(None) == 0
    assert to_number(float("nan")) == 0
    assert to_cost("") is None
    assert to_cost(0) is None
    assert to_cost("n/a") is None
    assert to_cost("120") == 120


def test_non_finite_numbers_become_zero():
    for raw in ("inf", "-Infinity", "1e400", float("inf")):
        assert to_number(raw) == 0
        assert to_cost(raw) is None


def test_non_finite_values_do_not_break_aggregations():
    rows = [
        {"Date": "2024-01-01", "Product": "Sony TV", "Qty": 1, "Amount": "inf", "Cost": "Infinity"},
        {"Date": "2024-01-02", "Product": "LG TV", "Qty": 1, "Amount": 100, "Cost": 60},
    ]
    records = normalize_rows(rows)
    assert records["amount"].tolist() == [0, 100]
    assert records["cost"].isna().tolist() == [True, False]

    perf = analyze_performance(records)
    assert perf["total_amount"].tolist() == [100, 0]
    profit = analyze_profit_margin(records)
    assert profit["product_name"].tolist() == ["LG TV"]


def test_date_normalization():
    assert normalize_date(45292) == "2024-01-01"
    assert normalize_date(45292.5) == "2024-01-01"
    assert normalize_date(pd.Timestamp("2024-05-06 13:00")) == "2024-05-06"
    assert normalize_date("2024-01-01T23:30:00-05:00") == "2024-01-02"
    assert normalize_date("2024/2/9") == "2024-02-09"
    assert normalize_date("") == UNKNOWN_DATE
    assert normalize_date(None) == UNKNOWN_DATE
    assert normalize_date(0) == UNKNOWN_DATE
    assert normalize_date(math.nan) == UNKNOWN_DATE
    assert normalize_date("sometime") == "sometime"


def test_brand_detection_is_total_and_ordered():
    assert detect_brand("Panasonic LG combo") == "Panasonic 國際"
    assert detect_brand("LG Fridge X") == "LG 樂金"
    assert detect_brand("日立冷氣") == "Hitachi 日立"
    assert detect_brand("no-name kettle") == OTHER_BRAND


def test_zero_rows_are_dropped():
    df = normalize_rows(
        [
            {"Date": "2024-01-01", "Product": "A", "Qty": 0, "Amount": 0},
            {"Date": "2024-01-01", "Product": "B", "Qty": 0, "Amount": 10},
        ]
    )
    assert df["product"].tolist() == ["B"]
    assert df.attrs["empty_rows_dropped"] == 1


def test_dedupe_flag():
    row = {"Date": "2024-01-01", "Product": "A", "Qty": 1, "Amount": 10}
    rows = merge_sources([[row], [dict(row)]])
    assert len(normalize_rows(rows)) == 2

    deduped = normalize_rows(rows, dedupe=True)
    assert len(deduped) == 1
    assert deduped.attrs["duplicates_dropped"] == 1
    assert deduped.attrs["rows_in"] == 2


def test_gift_detection_flag():
    rows = [
        {"Date": "2024-01-01", "Product": "贈品 濾網", "Qty": 1, "Amount": 0},
        {"Date": "2024-01-01", "Product": "Sony TV", "Qty": 1, "Amount": 100},
    ]
    assert normalize_rows(rows)["is_gift"].tolist() == [False, False]

    flagged = normalize_rows(rows, detect_gifts=True)
    assert flagged["is_gift"].tolist() == [True, False]
    assert flagged.attrs["gift_rows"] == 1


def test_gift_keywords_match_whole_words_only():
    assert detect_gift("Panasonic Freezer 300L", 25000) is False
    assert detect_gift("Free filter with purchase", 100) is True
    assert detect_gift("Gift box", 100) is True
    assert detect_gift("Sony TV", 0) is True


def test_empty_input():
    df = normalize_rows([])
    assert df.empty
    assert list(df.columns) == RECORD_COLUMNS
