from __future__ import annotations


class NoValidDataError(ValueError):
    """Raised when a dataset yields zero usable sales records."""

    def __init__(self, message: str = "No valid data could be parsed; check required columns (date, product, quantity, amount).") -> None:
        super().__init__(message)


class AIAnalysisError(RuntimeError):
    """Raised when the external AI step fails (timeout, empty or malformed response)."""
