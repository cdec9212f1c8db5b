import numpy as np
import pandas as pd
import pytest

from retail_core.aggregations import (
    PERFORMANCE_COLUMNS,
    analyze_brands,
    analyze_daily_trend,
    analyze_performance,
    analyze_price_bands,
    analyze_profit_margin,
    analyze_seasonality,
    calculate_inventory_metrics,
    calculate_yoy_comparison,
    detect_slow_moving,
    forecast_next_month,
    growth_pct,
    has_cost_data,
    round_half_up,
)
from retail_core.normalize import normalize_rows


def _records(rows):
    return normalize_rows(rows)


def test_performance_single_product_example():
    recs = _records(
        [
            {"date": "2024-01-05", "category": "Fridge", "product": "LG Fridge X", "quantity": 2, "amount": 40000},
            {"date": "2024-01-06", "category": "Fridge", "product": "LG Fridge X", "quantity": 1, "amount": 20000},
        ]
    )
    perf = analyze_performance(recs)
    assert len(perf) == 1
    row = perf.iloc[0]
    assert row["product_name"] == "LG Fridge X"
    assert row["total_qty"] == 3
    assert row["total_amount"] == 60000
    assert row["average_price"] == 20000
    assert isinstance(row["average_price"], (int, np.integer))
    assert row["amount_share"] == pytest.approx(100.0)
    assert row["abc_class"] == "A"
    assert row["sales_frequency"] == 2


def test_performance_ranking_and_classes(records):
    perf = analyze_performance(records)
    assert list(perf.columns) == PERFORMANCE_COLUMNS
    assert perf["product_name"].tolist() == ["Sony Bravia 55", "LG OLED 65", "Panasonic NR-B", "Tatung Fan"]
    assert perf["abc_class"].tolist() == ["A", "A", "B", "C"]
    assert perf["average_price"].tolist() == [30000, 80000, 15000, 2000]
    assert perf["cumulative_share"].iloc[-1] == pytest.approx(100.0)
    assert perf["amount_share"].sum() == pytest.approx(100.0)
    assert perf["qty_share"].sum() == pytest.approx(100.0)
    assert (perf["velocity_score"] <= 100).all()


def test_performance_classes_follow_cumulative_share(records):
    perf = analyze_performance(records)
    for i, row in perf.iterrows():
        if i == 0:
            continue
        cum = row["cumulative_share"]
        expected = "A" if cum <= 80 else ("B" if cum <= 95 else "C")
        assert row["abc_class"] == expected


def test_aggregations_are_idempotent(records):
    pd.testing.assert_frame_equal(analyze_performance(records), analyze_performance(records))
    pd.testing.assert_frame_equal(analyze_seasonality(records), analyze_seasonality(records))
    pd.testing.assert_frame_equal(calculate_inventory_metrics(records), calculate_inventory_metrics(records))


def test_no_phantom_products(records):
    perf = analyze_performance(records)
    assert set(perf["product_name"]) == set(records["product"])
    subset = records[records["category"] == "TV"]
    assert set(analyze_performance(subset)["product_name"]) == {"Sony Bravia 55", "LG OLED 65"}


def test_seasonality(records):
    seas = analyze_seasonality(records)
    assert seas["month"].tolist() == ["2024-01", "2024-02", "2024-03"]
    assert seas["sales"].tolist() == [3, 4, 10]
    assert seas["revenue"].tolist() == [140000, 75000, 20000]
    assert seas["top_category"].tolist() == ["TV", "Fridge", "Fan"]


def test_ties_keep_first_seen_order():
    recs = _records(
        [
            {"date": "2024-01-02", "category": "TV", "product": "Sony A", "quantity": 2, "amount": 500},
            {"date": "2024-01-03", "category": "Fridge", "product": "LG B", "quantity": 1, "amount": 500},
            {"date": "2024-01-04", "category": "Fan", "product": "Tatung C", "quantity": 1, "amount": 300},
            {"date": "2024-01-05", "category": "Fridge", "product": "Hitachi D", "quantity": 1, "amount": 200},
        ]
    )
    perf = analyze_performance(recs)
    assert perf["product_name"].tolist() == ["Sony A", "LG B", "Tatung C", "Hitachi D"]

    brands = analyze_brands(recs)
    assert brands["brand"].tolist()[:2] == ["Sony", "LG 樂金"]

    # TV and Fridge both sell 2 units in January; TV appears first.
    assert analyze_seasonality(recs)["top_category"].tolist() == ["TV"]


def test_seasonality_tie_follows_first_category_per_month():
    recs = _records(
        [
            {"date": "2024-02-01", "category": "Fan", "product": "Tatung C", "quantity": 3, "amount": 900},
            {"date": "2024-02-02", "category": "TV", "product": "Sony A", "quantity": 3, "amount": 900},
            {"date": "2024-03-01", "category": "TV", "product": "Sony A", "quantity": 1, "amount": 300},
            {"date": "2024-03-02", "category": "Fan", "product": "Tatung C", "quantity": 1, "amount": 300},
        ]
    )
    assert analyze_seasonality(recs)["top_category"].tolist() == ["Fan", "TV"]


def test_price_band_example():
    recs = _records([{"date": "2024-01-01", "product": "X", "quantity": 1, "amount": 15000}])
    bands = analyze_price_bands(recs)
    assert len(bands) == 1
    row = bands.iloc[0]
    assert "10k-25k" in row["range"]
    assert row["sales_count"] == 1
    assert row["revenue"] == 15000
    assert row["percent"] == pytest.approx(100.0)


def test_price_bands_keep_fixed_order(records):
    bands = analyze_price_bands(records)
    assert bands["range"].tolist() == ["Budget (<3k)", "Mid-range (10k-25k)", "Premium (25k-40k)", "Flagship (>40k)"]
    assert bands["sales_count"].tolist() == [10, 3, 3, 1]
    assert bands["percent"].sum() == pytest.approx(100.0)


def test_brands_sorted_by_revenue(records):
    brands = analyze_brands(records)
    assert brands["brand"].tolist() == ["Sony", "LG 樂金", "Panasonic 國際", "Tatung 大同"]
    assert brands["sales_count"].tolist() == [3, 1, 3, 10]


def test_daily_trend(records):
    trend = analyze_daily_trend(records)
    assert trend["date"].tolist() == ["2024-01-05", "2024-01-20", "2024-02-03", "2024-02-14", "2024-03-01"]
    assert trend["orders"].tolist() == [1, 1, 1, 1, 1]


def test_inventory_transaction_variance(records):
    inv = calculate_inventory_metrics(records, lead_time_days=7)
    assert inv["product_name"].tolist() == ["Tatung Fan", "Sony Bravia 55", "Panasonic NR-B", "LG OLED 65"]
    fan = inv.iloc[0]
    assert fan["avg_daily_sales"] == 2.0
    assert fan["std_dev"] == 0.0
    assert fan["safety_stock"] == 0
    assert fan["reorder_point"] == 14
    assert fan["suggested_order_qty"] == 60

    sony = inv.iloc[1]
    # Two transactions of 2 and 1 units: population std 0.5.
    assert sony["std_dev"] == 0.5
    assert sony["safety_stock"] == 3


def test_inventory_daily_variance_basis(records):
    inv = calculate_inventory_metrics(records, lead_time_days=7, variance_basis="daily")
    fan = inv.set_index("product_name").loc["Tatung Fan"]
    # 10 units on one of five dates: daily series [0, 0, 0, 0, 10].
    assert fan["std_dev"] == 4.0
    assert fan["safety_stock"] == 18
    assert fan["reorder_point"] == 32


def test_forecast(records):
    fc = forecast_next_month(analyze_seasonality(records))
    assert fc["next_month_revenue"] == 78333
    assert isinstance(fc["next_month_revenue"], int)
    assert fc["next_month_qty"] == 6
    assert fc["trend"] == "DOWN"
    assert fc["trend_percent"] == -73.3
    assert fc["confidence"] == "MEDIUM"


def test_forecast_short_history_is_low_confidence():
    seas = pd.DataFrame([{"month": "2024-01", "sales": 5, "revenue": 1000, "top_category": "TV"}])
    fc = forecast_next_month(seas)
    assert fc["confidence"] == "LOW"
    assert fc["trend"] == "STABLE"
    assert fc["next_month_revenue"] == 1000


def test_forecast_without_history():
    fc = forecast_next_month(pd.DataFrame())
    assert fc["method"] == "No historical data"
    assert fc["next_month_revenue"] == 0


def test_yoy_and_mom(records):
    yoy = calculate_yoy_comparison(analyze_seasonality(records))
    assert yoy["mom_growth"].tolist()[0] is None
    assert yoy["mom_growth"].tolist()[1:] == [-46.4, -73.3]
    assert all(v is None for v in yoy["yoy_growth"].tolist())

    seas = pd.DataFrame(
        [
            {"month": "2023-01", "sales": 1, "revenue": 100, "top_category": "x"},
            {"month": "2024-01", "sales": 1, "revenue": 150, "top_category": "x"},
        ]
    )
    yoy = calculate_yoy_comparison(seas)
    assert yoy["yoy_growth"].tolist() == [None, 50.0]
    assert yoy["mom_growth"].tolist() == [None, 50.0]


def test_growth_helpers():
    assert growth_pct(10, 0) is None
    assert growth_pct(15, 10) == 50.0
    assert round_half_up(2.5) == 3
    assert round_half_up(0.125, 2) == 0.13
    assert round_half_up(None) is None


def test_profit_margin(records):
    assert has_cost_data(records)
    profit = analyze_profit_margin(records)
    assert profit["product_name"].tolist() == ["Panasonic NR-B", "Sony Bravia 55", "LG OLED 65", "Tatung Fan"]
    sony = profit.set_index("product_name").loc["Sony Bravia 55"]
    assert sony["total_cost"] == 66000
    assert sony["gross_profit"] == 24000
    assert sony["margin_percent"] == 26.7


def test_profit_requires_cost_data():
    recs = _records([{"date": "2024-01-01", "product": "X", "quantity": 1, "amount": 100}])
    assert not has_cost_data(recs)
    assert analyze_profit_margin(recs).empty


def test_slow_moving_example():
    recs = _records(
        [
            {"date": "2023-12-01", "product": "Old Heater", "quantity": 1, "amount": 3000},
            {"date": "2024-03-01", "product": "New Fan", "quantity": 1, "amount": 1000},
        ]
    )
    slow = detect_slow_moving(recs)
    assert slow["product_name"].tolist() == ["Old Heater"]
    row = slow.iloc[0]
    assert row["days_since_last_sale"] == 91
    assert row["risk_level"] == "HIGH"
    assert row["recommendation"] == "Liquidate or halt reorder"


def test_slow_moving_thresholds(records):
    slow = detect_slow_moving(records, threshold_days=30)
    assert slow["product_name"].tolist() == ["LG OLED 65"]
    assert slow.iloc[0]["days_since_last_sale"] == 41
    assert slow.iloc[0]["risk_level"] == "MEDIUM"

    slow = detect_slow_moving(records, threshold_days=10)
    assert slow["product_name"].tolist() == ["LG OLED 65", "Panasonic NR-B", "Sony Bravia 55"]
    assert slow["risk_level"].tolist() == ["MEDIUM", "LOW", "LOW"]


def test_slow_moving_skips_unknown_dates():
    recs = _records(
        [
            {"product": "Undated", "quantity": 1, "amount": 10},
            {"date": "2024-03-01", "product": "Dated", "quantity": 1, "amount": 10},
        ]
    )
    assert detect_slow_moving(recs, threshold_days=0)["product_name"].tolist() == ["Dated"]


def test_empty_inputs_return_empty_frames():
    empty = _records([])
    for fn in (
        analyze_performance,
        analyze_seasonality,
        analyze_price_bands,
        analyze_brands,
        analyze_daily_trend,
        calculate_inventory_metrics,
        analyze_profit_margin,
        detect_slow_moving,
    ):
        assert fn(empty).empty
