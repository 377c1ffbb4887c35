"""Error taxonomy shared by the exploration engine and its adapters.

Only step-level failures are modelled here. A verification outcome is never an
error: :class:`~app_explorer.verification.VerificationResult` always carries a
verdict and a reason.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ExplorationError(Exception):
    """Base class for every error raised by app_explorer."""


class CaptureError(ExplorationError):
    """UI inspection failed. Fatal to the current step only."""


class DecisionErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    MALFORMED_RESPONSE = "malformed_response"
    NETWORK = "network"
    PROVIDER = "provider"


class DecisionError(ExplorationError):
    """The decision capability could not produce a usable decision."""

    def __init__(self, kind: DecisionErrorKind, message: str = "", recoverable: Optional[bool] = None) -> None:
        self.kind = kind
        # bad credentials never get better by retrying
        self.recoverable = kind != DecisionErrorKind.INVALID_CREDENTIALS if recoverable is None else recoverable
        super().__init__(message or kind.value)


class ExecutionErrorKind(str, Enum):
    UNKNOWN_ACTION = "unknown_action"
    MISSING_TARGET = "missing_target"
    MISSING_TEXT = "missing_text"
    ELEMENT_NOT_FOUND = "element_not_found"
    EXECUTION_FAILED = "execution_failed"


class ExecutionError(ExplorationError):
    """An action could not be carried out. Counted as a failed step, never verified."""

    _MESSAGES = {
        ExecutionErrorKind.UNKNOWN_ACTION: "Unknown action: '{detail}'. Valid actions: tap, type, swipe, back, done",
        ExecutionErrorKind.MISSING_TARGET: "Action requires a target element identifier",
        ExecutionErrorKind.MISSING_TEXT: "Type action requires text to type",
        ExecutionErrorKind.ELEMENT_NOT_FOUND: "Element not found: '{detail}'",
        ExecutionErrorKind.EXECUTION_FAILED: "Action execution failed: {detail}",
    }

    def __init__(self, kind: ExecutionErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(self._MESSAGES[kind].format(detail=detail))


class AssertionKind(str, Enum):
    INSUFFICIENT_COVERAGE = "insufficient_coverage"
    INSUFFICIENT_TRANSITIONS = "insufficient_transitions"
    INSUFFICIENT_SUCCESS_RATE = "insufficient_success_rate"
    NO_ACTIONS_EXECUTED = "no_actions_executed"
    CRITICAL_FAILURES_FOUND = "critical_failures_found"


class ExplorationAssertionError(AssertionError):
    """Raised by the ExplorationResult assertion helpers so a calling test fails."""

    def __init__(self, kind: AssertionKind, message: str) -> None:
        self.kind = kind
        super().__init__(message)
