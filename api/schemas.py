from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from retail_core import settings
from retail_core.ai import ChatMessage, ProductDecision


class AnalysisOptionsModel(BaseModel):
    lead_time_days: int = settings.LEAD_TIME_DAYS
    slow_moving_days: int = settings.SLOW_MOVING_DAYS
    variance_basis: Literal["transaction", "daily"] = "transaction"
    dedupe: bool = settings.DEDUPE_SOURCES
    detect_gifts: bool = settings.DETECT_GIFTS


class DashboardFiltersModel(BaseModel):
    selected_categories: List[str] = Field(default_factory=list)
    selected_brands: List[str] = Field(default_factory=list)
    selected_products: List[str] = Field(default_factory=list)
    selected_abc: List[str] = Field(default_factory=list)
    product_query: str = ""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    top_n: int = 15
    options: AnalysisOptionsModel = Field(default_factory=AnalysisOptionsModel)


class AnalyzeRequest(BaseModel):
    """Inline data: ``rows`` is one source, ``sources`` several.

    When both are empty the files under DATA_DIR are used.
    """

    rows: List[Dict[str, Any]] = Field(default_factory=list)
    sources: List[List[Dict[str, Any]]] = Field(default_factory=list)
    filters: DashboardFiltersModel = Field(default_factory=DashboardFiltersModel)


class DecisionsRequest(AnalyzeRequest):
    pass


class ChatRequest(AnalyzeRequest):
    question: str = Field(min_length=1)
    history: List[ChatMessage] = Field(default_factory=list)
    overall_summary: Optional[str] = None


class ExportRequest(AnalyzeRequest):
    decisions: List[ProductDecision] = Field(default_factory=list)
