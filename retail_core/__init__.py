"""Core (UI-agnostic) retail analytics logic.

This package contains:
- record normalization (raw spreadsheet/CSV rows -> canonical pandas frame)
- the aggregation engine (ABC, seasonality, price bands, inventory, forecast...)
- data loading and filter normalization
- page compute functions (JSON-serializable payloads)
- the external AI boundary (decisions, chat) and CSV export
"""
