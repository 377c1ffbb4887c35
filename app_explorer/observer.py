from __future__ import annotations

"""Progress hooks for an exploration session.

Subclass :class:`ExplorationObserver` and override only the hooks you care
about; every hook is a no-op by default. Hooks run inline on the loop's task,
so they should return quickly.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable

if TYPE_CHECKING:
    from .decision import ExplorationDecision
    from .errors import ExplorationError
    from .hierarchy import CompressedHierarchy
    from .knowledge import ScreenNode, Transition

logger = logging.getLogger(__name__)


class ExplorationEvent(str, Enum):
    SCREEN_DISCOVERED = "screen_discovered"
    SCREEN_REVISITED = "screen_revisited"
    BEFORE_DECISION = "before_decision"
    AFTER_DECISION = "after_decision"
    TRANSITION_RECORDED = "transition_recorded"
    STUCK_DETECTED = "stuck_detected"
    ERROR_ENCOUNTERED = "error_encountered"


class ExplorationObserver:
    def on_screen_discovered(self, node: "ScreenNode") -> None:
        pass

    def on_screen_revisited(self, node: "ScreenNode") -> None:
        pass

    def on_before_decision(self, hierarchy: "CompressedHierarchy") -> None:
        pass

    def on_after_decision(self, decision: "ExplorationDecision") -> None:
        pass

    def on_transition_recorded(self, transition: "Transition") -> None:
        pass

    def on_stuck_detected(self, fingerprint: str, revisits: int) -> None:
        pass

    def on_error(self, error: "ExplorationError") -> None:
        pass


_HOOKS: Dict[ExplorationEvent, str] = {
    ExplorationEvent.SCREEN_DISCOVERED: "on_screen_discovered",
    ExplorationEvent.SCREEN_REVISITED: "on_screen_revisited",
    ExplorationEvent.BEFORE_DECISION: "on_before_decision",
    ExplorationEvent.AFTER_DECISION: "on_after_decision",
    ExplorationEvent.TRANSITION_RECORDED: "on_transition_recorded",
    ExplorationEvent.STUCK_DETECTED: "on_stuck_detected",
    ExplorationEvent.ERROR_ENCOUNTERED: "on_error",
}


def dispatch(observers: Iterable[ExplorationObserver], event: ExplorationEvent, *args: Any) -> None:
    hook = _HOOKS[event]
    for observer in observers:
        getattr(observer, hook)(*args)


class LoggingObserver(ExplorationObserver):
    """Writes every event to the ``app_explorer.observer`` logger."""

    def on_screen_discovered(self, node: "ScreenNode") -> None:
        logger.info("New screen %s (%s) at depth %d", node.fingerprint[:8], node.label, node.depth)

    def on_screen_revisited(self, node: "ScreenNode") -> None:
        logger.debug("Revisited %s (%d visits)", node.fingerprint[:8], node.visit_count)

    def on_before_decision(self, hierarchy: "CompressedHierarchy") -> None:
        logger.debug("Deciding on %s with %d interactive elements",
                     hierarchy.fingerprint[:8], len(hierarchy.interactive_elements()))

    def on_after_decision(self, decision: "ExplorationDecision") -> None:
        logger.info("Decision: %s %s (%s) - %s", decision.action, decision.target_element or "",
                    decision.success_probability.confidence_level.value, decision.reasoning)

    def on_transition_recorded(self, transition: "Transition") -> None:
        logger.debug("Transition %s -> %s via %s%s", transition.from_fingerprint[:8],
                     transition.to_fingerprint[:8], transition.action.describe(),
                     "" if transition.was_successful else " (unverified)")

    def on_stuck_detected(self, fingerprint: str, revisits: int) -> None:
        logger.warning("Stuck on %s after %d consecutive revisits", fingerprint[:8], revisits)

    def on_error(self, error: "ExplorationError") -> None:
        logger.warning("%s: %s", type(error).__name__, error)
