import os
from pathlib import Path

from dotenv import load_dotenv

# --- Base Directory ---
BASE_DIR = Path(__file__).resolve().parent.parent

# --- Load Environment Variables ---
load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name) or default
    return [p.strip() for p in raw.split(",") if p.strip()]


# --- Source Files ---
DATA_DIR = BASE_DIR / os.getenv("DATA_DIR", "data")
FILE_GLOBS = ("*.xlsx", "*.xls", "*.csv")

# --- External AI Service ---
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
# Tried in order; first success wins.
AI_MODELS = _env_list("AI_MODELS", "gpt-4o-mini,gpt-4.1-mini")
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "300"))
CHAT_MODEL = os.getenv("CHAT_MODEL") or (AI_MODELS[0] if AI_MODELS else None)

# --- Analysis Defaults ---
LEAD_TIME_DAYS = int(os.getenv("LEAD_TIME_DAYS", "7"))
SLOW_MOVING_DAYS = int(os.getenv("SLOW_MOVING_DAYS", "30"))
DEDUPE_SOURCES = _env_bool("DEDUPE_SOURCES", True)
DETECT_GIFTS = _env_bool("DETECT_GIFTS", False)

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
