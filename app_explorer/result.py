from __future__ import annotations

"""Step history and the final session result."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence, Set, Tuple

from .errors import AssertionKind, ExplorationAssertionError

if TYPE_CHECKING:
    from .decision import ExplorationDecision
    from .hierarchy import CompressedHierarchy
    from .knowledge import NavigationGraph
    from .verification import VerificationResult

_DESCRIBED_ELEMENTS = 5


class TerminationReason(str, Enum):
    DONE = "done"
    STEP_BUDGET_EXHAUSTED = "step_budget_exhausted"
    STUCK_ABORTED = "stuck_aborted"
    ERROR_ABORTED = "error_aborted"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ExplorationStep:
    """One executed (or attempted) action, as remembered by the session."""

    action: str
    target_element: Optional[str] = None
    text_typed: Optional[str] = None
    screen_description: str = "Empty screen"
    interactive_element_count: int = 0
    reasoning: str = ""
    confidence: int = 50
    was_successful: bool = True
    verification: Optional["VerificationResult"] = None
    was_retry: bool = False
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_decision(
        cls,
        decision: "ExplorationDecision",
        hierarchy: "CompressedHierarchy",
        was_successful: bool = True,
        verification: Optional["VerificationResult"] = None,
        was_retry: bool = False,
    ) -> "ExplorationStep":
        interactive = hierarchy.interactive_elements()
        names = [e.display_name for e in interactive[:_DESCRIBED_ELEMENTS] if e.display_name]
        if interactive:
            more = "..." if len(interactive) > _DESCRIBED_ELEMENTS else ""
            description = f"Screen with: {', '.join(names)}{more}"
        else:
            description = "Empty screen"
        return cls(
            action=decision.action,
            target_element=decision.target_element,
            text_typed=decision.text_to_type,
            screen_description=description,
            interactive_element_count=len(interactive),
            reasoning=decision.reasoning,
            confidence=decision.confidence,
            was_successful=was_successful,
            verification=verification,
            was_retry=was_retry,
        )

    def compact_description(self) -> str:
        text = f" '{self.text_typed}'" if self.text_typed else ""
        return f"{self.action} {self.target_element or 'none'}{text}"


def navigation_map(steps: Sequence[ExplorationStep], max_steps: int = 10) -> str:
    """Plain-text trail of the most recent steps, used in decision prompts."""
    if not steps:
        return "START -> [no steps taken yet]"

    recent = list(steps)[-max_steps:] if max_steps > 0 else []
    first_number = len(steps) - len(recent) + 1
    lines = ["EXPLORATION PATH:"]
    for offset, step in enumerate(recent):
        marker = "-> *" if offset == len(recent) - 1 else "  ->"
        status = "ok" if step.was_successful else "failed"
        lines.append(f"{first_number + offset}. {marker} {step.compact_description()} [{status}]")
    if len(steps) > len(recent):
        lines.append(f"   ... ({len(steps) - len(recent)} earlier steps)")

    visited: Set[str] = {s.target_element for s in steps if s.target_element}
    lines.append("")
    lines.append(f"Current: {steps[-1].screen_description}")
    lines.append(f"Progress: {len(steps)} steps, {len(visited)} unique elements")
    return "\n".join(lines)


@dataclass(frozen=True)
class ExplorationResult:
    screens_discovered: int
    transitions: int
    duration: float
    navigation_graph: "NavigationGraph"
    termination: TerminationReason
    successful_actions: int = 0
    failed_actions: int = 0
    verifications_performed: int = 0
    verifications_passed: int = 0
    verifications_failed: int = 0
    retry_attempts: int = 0
    steps: Tuple[ExplorationStep, ...] = ()
    start_time: float = field(default_factory=time.time)

    # --- derived figures ---------------------------------------------------
    @property
    def total_actions(self) -> int:
        return self.successful_actions + self.failed_actions

    @property
    def success_rate_percent(self) -> int:
        if self.total_actions == 0:
            return 0
        return (self.successful_actions * 100) // self.total_actions

    @property
    def verification_success_rate(self) -> float:
        if self.verifications_performed == 0:
            return 0.0
        return self.verifications_passed / self.verifications_performed * 100.0

    @property
    def has_critical_failures(self) -> bool:
        return self.failed_actions > 0

    def summary(self) -> str:
        lines = [
            "Exploration Summary:",
            f"  Screens: {self.screens_discovered}",
            f"  Transitions: {self.transitions}",
            f"  Duration: {int(self.duration)}s",
            f"  Success Rate: {self.success_rate_percent}% ({self.successful_actions}/{self.total_actions})",
            f"  Failures: {self.failed_actions}",
        ]
        if self.verifications_performed:
            lines.append(
                f"  Verifications: {self.verifications_passed}/{self.verifications_performed} passed"
                f" ({self.verification_success_rate:.0f}%)"
            )
        if self.retry_attempts:
            lines.append(f"  Retries: {self.retry_attempts} alternative actions attempted")
        lines.append(f"  Ended: {self.termination.value}")
        return "\n".join(lines)

    # --- assertion helpers -------------------------------------------------
    def assert_discovered(self, min_screens: int) -> None:
        if self.screens_discovered < min_screens:
            raise ExplorationAssertionError(
                AssertionKind.INSUFFICIENT_COVERAGE,
                f"Expected at least {min_screens} screens, but only discovered {self.screens_discovered}",
            )

    def assert_transitions(self, min_transitions: int) -> None:
        if self.transitions < min_transitions:
            raise ExplorationAssertionError(
                AssertionKind.INSUFFICIENT_TRANSITIONS,
                f"Expected at least {min_transitions} transitions, but only made {self.transitions}",
            )

    def assert_success_rate(self, min_percent: int) -> None:
        if self.total_actions == 0:
            raise ExplorationAssertionError(
                AssertionKind.NO_ACTIONS_EXECUTED, "No actions were executed during exploration",
            )
        if self.success_rate_percent < min_percent:
            raise ExplorationAssertionError(
                AssertionKind.INSUFFICIENT_SUCCESS_RATE,
                f"Expected success rate >= {min_percent}%, but got {self.success_rate_percent}% "
                f"({self.successful_actions} successful, {self.failed_actions} failed)",
            )

    def assert_no_critical_issues(self) -> None:
        if self.has_critical_failures:
            raise ExplorationAssertionError(
                AssertionKind.CRITICAL_FAILURES_FOUND,
                f"Found {self.failed_actions} failed actions during exploration",
            )
