"""External AI boundary: stocking decisions and sales Q&A.

The LLM client is an explicitly constructed ``LLMService`` handle that callers
pass in; nothing here talks to the network at import time.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence, TypeVar

import pandas as pd
from openai import OpenAI
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from retail_core import settings
from retail_core.errors import AIAnalysisError, NoValidDataError
from retail_core.normalize import OTHER_BRAND

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Sample caps: head of A band, head of B band, tail of C band.
SAMPLE_A_LIMIT = 30
SAMPLE_B_LIMIT = 5
SAMPLE_C_LIMIT = 5
SAMPLE_A_MAX_SHARE = 80.0
SAMPLE_B_MAX_SHARE = 95.0

CHAT_HISTORY_LIMIT = 6
CHAT_TOP_LIMIT = 10

DEFAULT_SUMMARY = "The AI did not provide a summary."
CHAT_FALLBACK_ANSWER = "Sorry, no answer could be retrieved."
NO_DATA_CONTEXT = "No sales data is currently loaded."

DecisionTag = Literal["main_stock", "display_only", "stop_order", "watch_list"]
LifecycleStage = Literal["new", "growth", "mature", "decline"]

# Labels models tend to echo back, including the storefront's own wording.
TAG_ALIASES: Dict[str, tuple] = {
    "main_stock": ("main_stock", "high_stock", "主力進貨"),
    "display_only": ("display_only", "display", "形象陳列"),
    "stop_order": ("stop_order", "drop", "停止進貨"),
    "watch_list": ("watch_list", "watch", "觀察名單"),
}
LIFECYCLE_ALIASES: Dict[str, tuple] = {
    "new": ("new", "launch", "introduction", "新品"),
    "growth": ("growth", "growing", "成長"),
    "mature": ("mature", "maturity", "成熟"),
    "decline": ("decline", "declining", "衰退"),
}


def _coerce_label(value: object, aliases: Dict[str, tuple]) -> object:
    if not isinstance(value, str):
        return value
    key = re.sub(r"[\s\-]+", "_", value.strip().lower())
    if key in aliases:
        return key
    for canonical, words in aliases.items():
        if any(w in key for w in words):
            return canonical
    return value


class ProductDecision(BaseModel):
    product_name: str = Field(validation_alias=AliasChoices("product_name", "productName"))
    category: str = ""
    tag: DecisionTag
    lifecycle: LifecycleStage
    reason: str = ""
    action: str = ""

    @field_validator("tag", mode="before")
    @classmethod
    def _tag(cls, value: object) -> object:
        return _coerce_label(value, TAG_ALIASES)

    @field_validator("lifecycle", mode="before")
    @classmethod
    def _lifecycle(cls, value: object) -> object:
        return _coerce_label(value, LIFECYCLE_ALIASES)


class DecisionResult(BaseModel):
    decisions: List[ProductDecision] = Field(default_factory=list)
    overall_summary: str = DEFAULT_SUMMARY


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


# ---------------- Service handle ----------------
class FallbackPolicy:
    """Try ``fn(model, timeout)`` for each model in order; first success wins."""

    def __init__(self, models: Sequence[str], timeout: float) -> None:
        self.models = [m for m in models if m]
        self.timeout = float(timeout)

    def preferring(self, model: Optional[str]) -> "FallbackPolicy":
        if not model:
            return self
        return FallbackPolicy([model] + [m for m in self.models if m != model], self.timeout)

    def run(self, fn: Callable[[str, float], T]) -> T:
        if not self.models:
            raise AIAnalysisError("No AI models configured")
        last_error: Optional[Exception] = None
        for model in self.models:
            try:
                logger.info("AI request: trying model %s", model)
                return fn(model, self.timeout)
            except Exception as exc:
                logger.warning("AI model %s failed: %s", model, exc)
                last_error = exc
        raise AIAnalysisError(f"All AI models failed: {last_error}") from last_error


class LLMService:
    def __init__(self, client: Any, policy: FallbackPolicy, chat_model: Optional[str] = None) -> None:
        self.client = client
        self.policy = policy
        self.chat_model = chat_model

    @classmethod
    def from_settings(cls, api_key: Optional[str] = None) -> "LLMService":
        key = api_key or settings.OPENAI_API_KEY
        if not key:
            raise AIAnalysisError("OPENAI_API_KEY is not set")
        # Retries are the policy's job; one attempt per model.
        client = OpenAI(api_key=key, max_retries=0)
        return cls(client, FallbackPolicy(settings.AI_MODELS, settings.AI_TIMEOUT_SECONDS), chat_model=settings.CHAT_MODEL)

    def complete(self, prompt: str, *, json_mode: bool = False, model: Optional[str] = None) -> str:
        def _call(model_id: str, timeout: float) -> str:
            kwargs: Dict[str, Any] = {}
            if json_mode:
                kwargs["response_format"] = {"type": "json_object"}
            resp = self.client.chat.completions.create(
                model=model_id,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout,
                **kwargs,
            )
            if not resp.choices:
                return ""
            return resp.choices[0].message.content or ""

        return self.policy.preferring(model).run(_call)


# ---------------- Decisions ----------------
def build_decision_sample(performance: pd.DataFrame, seasonality: pd.DataFrame) -> Dict[str, List[Dict[str, Any]]]:
    """Bounded slice of the performance table for the decision prompt.

    ``performance`` must be sorted by revenue descending (as returned by
    ``analyze_performance``).
    """
    products: List[Dict[str, Any]] = []
    if not performance.empty:
        cum = performance["cumulative_share"]
        sample = pd.concat(
            [
                performance[cum <= SAMPLE_A_MAX_SHARE].head(SAMPLE_A_LIMIT),
                performance[(cum > SAMPLE_A_MAX_SHARE) & (cum <= SAMPLE_B_MAX_SHARE)].head(SAMPLE_B_LIMIT),
                performance[cum > SAMPLE_B_MAX_SHARE].tail(SAMPLE_C_LIMIT),
            ]
        )
        products = [
            {
                "Product": str(row["product_name"]),
                "Category": str(row["category"]),
                "ABC": str(row["abc_class"]),
                "AvgPrice": row["average_price"],
                "TotalQty": row["total_qty"],
                "Freq": int(row["sales_frequency"]),
            }
            for row in sample.to_dict(orient="records")
        ]
    months = seasonality.to_dict(orient="records") if not seasonality.empty else []
    return {"products": products, "seasonality": months}


def build_decision_prompt(sample: Dict[str, List[Dict[str, Any]]]) -> str:
    products = json.dumps(sample["products"], ensure_ascii=False, indent=2, default=str)
    months = json.dumps(sample["seasonality"], ensure_ascii=False, indent=2, default=str)
    return f"""You are a retail supply-chain decision system. Analyze the data below for stocking and purchasing.

Rules of thumb:
1. ABC: class A products (top 80% of revenue) must never run out of stock; slow class C products are candidates for removal.
2. Lifecycle: identify new (recent and frequent), mature (stable) and declining (falling volume) products.
3. Display: high price with low turnover means display only; low price with high turnover means bulk stacking.

Product performance sample:
{products}

Monthly seasonality:
{months}

Reply with a single JSON object and no markdown, in this shape:
{{
  "overall_summary": "executive summary with this season's key strategy and inventory health",
  "decisions": [
    {{
      "product_name": "product name",
      "category": "category",
      "tag": "main_stock | display_only | stop_order | watch_list",
      "lifecycle": "new | growth | mature | decline",
      "reason": "why",
      "action": "concrete next step"
    }}
  ]
}}
Write overall_summary, reason and action in Traditional Chinese."""


def parse_decision_response(text: str) -> DecisionResult:
    cleaned = (text or "").replace("```json", "").replace("```", "").strip()
    if not cleaned:
        raise AIAnalysisError("AI returned an empty response")
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("Unparseable AI response: %.500s", text)
        raise AIAnalysisError("AI response could not be parsed as JSON") from exc
    if not isinstance(parsed, dict) or not isinstance(parsed.get("decisions"), list):
        raise AIAnalysisError("AI response is missing the decisions array")

    decisions: List[ProductDecision] = []
    for item in parsed["decisions"]:
        try:
            decisions.append(ProductDecision.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping malformed decision %r: %s", item, exc.errors()[0].get("msg"))
    summary = parsed.get("overall_summary") or parsed.get("overallSummary") or DEFAULT_SUMMARY
    return DecisionResult(decisions=decisions, overall_summary=str(summary))


def generate_decisions(service: LLMService, performance: pd.DataFrame, seasonality: pd.DataFrame) -> DecisionResult:
    if performance.empty:
        raise NoValidDataError()
    sample = build_decision_sample(performance, seasonality)
    logger.info("Requesting decisions for %d sampled products", len(sample["products"]))
    text = service.complete(build_decision_prompt(sample), json_mode=True)
    result = parse_decision_response(text)
    logger.info("AI returned %d decisions", len(result.decisions))
    return result


# ---------------- Chat ----------------
def _fmt(value: object) -> str:
    v = float(value)  # type: ignore[arg-type]
    return f"{v:,.0f}" if v.is_integer() else f"{v:,.2f}"


def build_chat_context(records: pd.DataFrame, performance: pd.DataFrame, overall_summary: Optional[str] = None) -> str:
    if records.empty or performance.empty:
        return NO_DATA_CONTEXT

    brand_of = records.drop_duplicates("product").set_index("product")["brand"]
    brands = (
        performance.assign(brand=performance["product_name"].map(brand_of).fillna(OTHER_BRAND))
        .groupby("brand", sort=False)
        .agg(qty=("total_qty", "sum"), amount=("total_amount", "sum"))
        .sort_values("amount", ascending=False, kind="stable")
        .head(CHAT_TOP_LIMIT)
    )
    brand_lines = [f"- {b}: {_fmt(r.qty)} units, ${_fmt(r.amount)}" for b, r in brands.iterrows()]
    product_lines = [
        f"- {r['product_name']}: {_fmt(r['total_qty'])} units, ${_fmt(r['total_amount'])}"
        for r in performance.head(CHAT_TOP_LIMIT).to_dict(orient="records")
    ]

    return "\n".join(
        [
            "[Sales summary]",
            f"Products: {len(performance)}",
            f"Units sold: {_fmt(performance['total_qty'].sum())}",
            f"Revenue: ${_fmt(performance['total_amount'].sum())}",
            "",
            f"[Top {CHAT_TOP_LIMIT} brands]",
            *brand_lines,
            "",
            f"[Top {CHAT_TOP_LIMIT} products]",
            *product_lines,
            "",
            "[AI strategy summary]",
            overall_summary or "None",
        ]
    )


def ask_sales_question(
    service: LLMService,
    question: str,
    records: pd.DataFrame,
    performance: pd.DataFrame,
    overall_summary: Optional[str] = None,
    history: Optional[Sequence[ChatMessage]] = None,
) -> str:
    context = build_chat_context(records, performance, overall_summary)
    recent = list(history or [])[-CHAT_HISTORY_LIMIT:]
    history_text = "\n".join(f"{'User' if m.role == 'user' else 'AI'}: {m.content}" for m in recent)

    parts = ["You are a sales data analyst for a home-appliance retailer. Answer using the data below.", "", context, ""]
    if history_text:
        parts += ["[Conversation so far]", history_text, ""]
    parts += [
        "[Question]",
        question,
        "",
        "Answer directly and briefly (200 words at most). Quote numbers from the data above; "
        "if the data does not contain the answer, say so.",
    ]
    answer = service.complete("\n".join(parts), model=service.chat_model)
    return answer.strip() or CHAT_FALLBACK_ANSWER
