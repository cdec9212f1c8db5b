from types import SimpleNamespace

import pytest

from retail_core.ai import FallbackPolicy, LLMService
from retail_core.data import build_data_context
from retail_core.filters import AnalysisOptions
from retail_core.normalize import normalize_rows

SAMPLE_ROWS = [
    {"Date": "2024-01-05", "Category": "TV", "Product": "Sony Bravia 55", "Qty": 2, "Amount": 60000, "Cost": 22000},
    {"Date": "2024-01-20", "Category": "TV", "Product": "LG OLED 65", "Qty": 1, "Amount": 80000, "Cost": 60000},
    {"Date": "2024-02-03", "Category": "Fridge", "Product": "Panasonic NR-B", "Qty": 3, "Amount": 45000, "Cost": 10000},
    {"Date": "2024-02-14", "Category": "TV", "Product": "Sony Bravia 55", "Qty": 1, "Amount": 30000, "Cost": 22000},
    {"Date": "2024-03-01", "Category": "Fan", "Product": "Tatung Fan", "Qty": 10, "Amount": 20000, "Cost": 1500},
]


@pytest.fixture
def sample_rows():
    return [dict(r) for r in SAMPLE_ROWS]


@pytest.fixture
def records(sample_rows):
    return normalize_rows(sample_rows)


@pytest.fixture
def data_ctx(sample_rows):
    return build_data_context([sample_rows], options=AnalysisOptions(dedupe=True, detect_gifts=False))


class FakeCompletions:
    """Stands in for ``client.chat.completions``; replies are strings or exceptions."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


@pytest.fixture
def make_service():
    def _make(replies, models=("model-a", "model-b"), chat_model=None):
        completions = FakeCompletions(replies)
        client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        return LLMService(client, FallbackPolicy(list(models), timeout=5), chat_model=chat_model), completions

    return _make
