"""Error taxonomy for the reconciliation core."""
from __future__ import annotations

from dataclasses import dataclass

from .models import NOT_AVAILABLE


@dataclass
class ReconciliationError(Exception):
    """Base error carrying a processor or local error code."""

    code: str = NOT_AVAILABLE
    message: str = ""

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def as_note(self) -> str:
        """Format as ``(<code>) <message>.`` for order notes."""

        message = self.message or NOT_AVAILABLE
        if not message.endswith("."):
            message += "."
        return f"({self.code}) {message}"


@dataclass
class ExternalApiError(ReconciliationError):
    """Network failure, timeout or processor-reported error on a synchronous call."""


@dataclass
class ValidationError(ReconciliationError):
    """Malformed input: unknown webhook type, bad correlation token, bad request values."""


@dataclass
class StateConflictError(ReconciliationError):
    """Transition into a state the record already occupies; always benign."""
