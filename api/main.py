from __future__ import annotations

from dataclasses import asdict
from datetime import date
import logging
import math
from pathlib import Path
from typing import List, Literal, Optional

import numpy as np
import pandas as pd
from fastapi import Depends, FastAPI, File, Form, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.responses import Response
from fastapi.encoders import jsonable_encoder

from api.schemas import AnalyzeRequest, ChatRequest, DashboardFiltersModel, DecisionsRequest, ExportRequest
from retail_core import settings
from retail_core.aggregations import analyze_seasonality
from retail_core.ai import LLMService, ask_sales_question, generate_decisions
from retail_core.data import build_data_context, load_dashboard_data, load_rows, prepare_context, require_records
from retail_core.errors import AIAnalysisError, NoValidDataError
from retail_core.export import decisions_to_csv
from retail_core.filters import DashboardFilters, normalize_filters
from retail_core.metrics_debug import compute_debug
from retail_core.metrics_finance import compute_finance
from retail_core.metrics_inventory import compute_inventory
from retail_core.metrics_overview import compute_overview
from retail_core.metrics_performance import compute_performance


logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="Retail Insight API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_llm_service() -> Optional[LLMService]:
    """One client per app; None when no API key is configured."""
    service = getattr(app.state, "llm", None)
    if service is None:
        try:
            service = LLMService.from_settings()
        except AIAnalysisError as exc:
            logger.warning("AI service unavailable: %s", exc)
            return None
        app.state.llm = service
    return service


def _require_llm(service: Optional[LLMService]) -> LLMService:
    if service is None:
        raise AIAnalysisError("AI service is not configured (OPENAI_API_KEY is missing)")
    return service


def _filters_from_model(model: DashboardFiltersModel) -> DashboardFilters:
    return normalize_filters(model.model_dump())


def _data_context(req: AnalyzeRequest, f: DashboardFilters) -> dict:
    if req.rows or req.sources:
        sources = list(req.sources)
        if req.rows:
            sources.insert(0, req.rows)
        data_ctx = build_data_context(sources, options=f.options)
    else:
        data_ctx = load_dashboard_data(f.options)
    require_records(data_ctx["records"])
    return data_ctx


def _all_payloads(f: DashboardFilters, ctx: dict, metric: str) -> dict:
    return {
        "overview": compute_overview(f, ctx),
        "performance": compute_performance(f, ctx, metric=metric),
        "inventory": compute_inventory(f, ctx),
        "finance": compute_finance(f, ctx),
        "debug": compute_debug(f, ctx),
    }


def _json(data: object) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        )
    )


def _error(exc: Exception, where: str) -> JSONResponse:
    if isinstance(exc, NoValidDataError):
        logger.warning("%s: %s", where, exc)
        status = 422
    elif isinstance(exc, AIAnalysisError):
        logger.warning("%s: %s", where, exc)
        status = 502
    else:
        logger.exception("%s failed", where)
        status = 500
    return JSONResponse(status_code=status, content={"error": str(exc), "type": type(exc).__name__})


@app.get("/meta/categories")
def meta_categories():
    try:
        data_ctx = load_dashboard_data()
        return _json({"categories": data_ctx.get("categories", [])})
    except Exception as exc:
        return _error(exc, "meta_categories")


@app.get("/meta/brands")
def meta_brands():
    try:
        data_ctx = load_dashboard_data()
        return _json({"brands": data_ctx.get("brands", [])})
    except Exception as exc:
        return _error(exc, "meta_brands")


@app.get("/meta/products")
def meta_products(q: str = Query(default="")):
    try:
        data_ctx = load_dashboard_data()
        products = data_ctx.get("products", [])
        needle = (q or "").strip().lower()
        if needle:
            products = [p for p in products if needle in p.lower()]
        return _json({"products": products[:500]})
    except Exception as exc:
        return _error(exc, "meta_products")


@app.post("/overview")
def overview(filters: DashboardFiltersModel):
    try:
        f = _filters_from_model(filters)
        ctx = prepare_context(f, _data_context(AnalyzeRequest(), f))
        return _json(compute_overview(f, ctx))
    except Exception as exc:
        return _error(exc, "overview")


@app.post("/performance")
def performance(filters: DashboardFiltersModel, metric: Literal["revenue", "units"] = Query(default="revenue")):
    try:
        f = _filters_from_model(filters)
        ctx = prepare_context(f, _data_context(AnalyzeRequest(), f))
        return _json(compute_performance(f, ctx, metric=metric))
    except Exception as exc:
        return _error(exc, "performance")


@app.post("/inventory")
def inventory(filters: DashboardFiltersModel):
    try:
        f = _filters_from_model(filters)
        ctx = prepare_context(f, _data_context(AnalyzeRequest(), f))
        return _json(compute_inventory(f, ctx))
    except Exception as exc:
        return _error(exc, "inventory")


@app.post("/finance")
def finance(filters: DashboardFiltersModel):
    try:
        f = _filters_from_model(filters)
        ctx = prepare_context(f, _data_context(AnalyzeRequest(), f))
        return _json(compute_finance(f, ctx))
    except Exception as exc:
        return _error(exc, "finance")


@app.post("/debug")
def debug(filters: DashboardFiltersModel):
    try:
        f = _filters_from_model(filters)
        ctx = prepare_context(f, _data_context(AnalyzeRequest(), f))
        return _json(compute_debug(f, ctx))
    except Exception as exc:
        return _error(exc, "debug")


@app.post("/analyze")
def analyze(req: AnalyzeRequest, metric: Literal["revenue", "units"] = Query(default="revenue")):
    try:
        f = _filters_from_model(req.filters)
        ctx = prepare_context(f, _data_context(req, f))
        return _json(_all_payloads(f, ctx, metric))
    except Exception as exc:
        return _error(exc, "analyze")


@app.post("/analyze/upload")
def analyze_upload(
    files: List[UploadFile] = File(...),
    filters: str = Form(default="{}"),
    metric: Literal["revenue", "units"] = Query(default="revenue"),
):
    try:
        f = _filters_from_model(DashboardFiltersModel.model_validate_json(filters or "{}"))
        sources = []
        for upload in files:
            content = upload.file.read()
            sources.append(load_rows(Path(upload.filename or "upload.csv"), content))
        data_ctx = build_data_context(sources, options=f.options, files=[u.filename or "" for u in files])
        require_records(data_ctx["records"])
        ctx = prepare_context(f, data_ctx)
        return _json(_all_payloads(f, ctx, metric))
    except Exception as exc:
        return _error(exc, "analyze_upload")


@app.post("/decisions")
def decisions(req: DecisionsRequest, llm: Optional[LLMService] = Depends(get_llm_service)):
    try:
        f = _filters_from_model(req.filters)
        ctx = prepare_context(f, _data_context(req, f))
        perf: pd.DataFrame = ctx["filtered_performance"]
        seasonality = analyze_seasonality(ctx["filtered_records"])
        payload = {
            "filters": asdict(f),
            "performance": compute_performance(f, ctx),
            "seasonality": seasonality.to_dict(orient="records"),
            "decisions": [],
            "overall_summary": None,
            "ai_error": None,
        }
        # Local metrics still go out when the AI step fails.
        try:
            result = generate_decisions(_require_llm(llm), perf, seasonality)
            payload["decisions"] = [d.model_dump() for d in result.decisions]
            payload["overall_summary"] = result.overall_summary
        except AIAnalysisError as exc:
            logger.warning("decision generation failed: %s", exc)
            payload["ai_error"] = str(exc)
        return _json(payload)
    except Exception as exc:
        return _error(exc, "decisions")


@app.post("/chat")
def chat(req: ChatRequest, llm: Optional[LLMService] = Depends(get_llm_service)):
    try:
        f = _filters_from_model(req.filters)
        ctx = prepare_context(f, _data_context(req, f))
        answer = ask_sales_question(
            _require_llm(llm),
            req.question,
            ctx["filtered_records"],
            ctx["filtered_performance"],
            overall_summary=req.overall_summary,
            history=req.history,
        )
        return _json({"answer": answer})
    except Exception as exc:
        return _error(exc, "chat")


@app.post("/export/decisions")
def export_decisions(req: ExportRequest):
    try:
        f = _filters_from_model(req.filters)
        ctx = prepare_context(f, _data_context(req, f))
        csv_bytes = decisions_to_csv(ctx["filtered_performance"], req.decisions)
    except Exception as exc:
        return _error(exc, "export_decisions")
    filename = f"decision_matrix_{date.today().isoformat()}.csv"
    return Response(
        content=csv_bytes,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
