from __future__ import annotations

"""What the decision capability hands back: one action plus how sure it is."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import DecisionError, DecisionErrorKind
from .knowledge import Action, ActionType

VALID_ACTIONS = ("tap", "type", "swipe", "done")
EXECUTABLE_ACTIONS = ("tap", "type", "swipe", "back", "done")


class ConfidenceLevel(str, Enum):
    VERY_LOW = "veryLow"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "veryHigh"


@dataclass(frozen=True)
class SuccessProbability:
    value: float = 0.5
    reasoning: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", min(max(float(self.value), 0.0), 1.0))

    @property
    def confidence_level(self) -> ConfidenceLevel:
        if self.value < 0.2:
            return ConfidenceLevel.VERY_LOW
        if self.value < 0.4:
            return ConfidenceLevel.LOW
        if self.value < 0.6:
            return ConfidenceLevel.MEDIUM
        if self.value < 0.8:
            return ConfidenceLevel.HIGH
        return ConfidenceLevel.VERY_HIGH


@dataclass(frozen=True)
class ExplorationDecision:
    action: str
    reasoning: str = ""
    target_element: Optional[str] = None
    text_to_type: Optional[str] = None
    success_probability: SuccessProbability = field(default_factory=SuccessProbability)
    expected_outcome: Optional[str] = None
    alternative_actions: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "action", self.action.strip().lower())
        object.__setattr__(self, "alternative_actions", tuple(self.alternative_actions))

    @property
    def is_done(self) -> bool:
        return self.action == ActionType.DONE.value

    @property
    def confidence(self) -> int:
        return int(round(self.success_probability.value * 100))

    def to_action(self) -> Action:
        return Action(
            type=ActionType(self.action),
            target_element=self.target_element,
            text_typed=self.text_to_type,
            reasoning=self.reasoning,
            confidence=self.confidence,
        )

    def validate(self) -> None:
        """Reject decisions the execution side cannot act on."""
        problems: List[str] = []
        if self.action not in VALID_ACTIONS:
            problems.append(f"action '{self.action}' is not one of {', '.join(VALID_ACTIONS)}")
        if self.action in ("tap", "type") and not self.target_element:
            problems.append(f"'{self.action}' needs a targetElement")
        if self.action == "type" and not self.text_to_type:
            problems.append("'type' needs textToType")
        if not self.reasoning.strip():
            problems.append("reasoning is empty")
        if problems:
            raise DecisionError(DecisionErrorKind.MALFORMED_RESPONSE, "; ".join(problems))

    # --- (de)serialisation ------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "targetElement": self.target_element,
            "textToType": self.text_to_type,
            "reasoning": self.reasoning,
            "successProbability": {
                "value": self.success_probability.value,
                "reasoning": self.success_probability.reasoning,
            },
            "expectedOutcome": self.expected_outcome,
            "alternativeActions": list(self.alternative_actions),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExplorationDecision":
        """Build from the JSON shape the decision model is asked to reply with."""
        raw_probability = data.get("successProbability", 0.5)
        if isinstance(raw_probability, Mapping):
            probability = SuccessProbability(
                value=raw_probability.get("value", 0.5),
                reasoning=str(raw_probability.get("reasoning", "")),
            )
        else:
            probability = SuccessProbability(value=raw_probability)
        return cls(
            action=str(data.get("action", "")),
            reasoning=str(data.get("reasoning", "")),
            target_element=data.get("targetElement") or None,
            text_to_type=data.get("textToType") or None,
            success_probability=probability,
            expected_outcome=data.get("expectedOutcome") or None,
            alternative_actions=tuple(str(a) for a in data.get("alternativeActions") or ()),
        )


# ---------------------------------------------------------------------------
# Alternative actions
# ---------------------------------------------------------------------------

_ALT_SPLIT = re.compile(r"[_:\s]")


def parse_alternative(alternative: str, sample_text: str = "test") -> Optional[ExplorationDecision]:
    """Turn a shorthand such as ``tap_loginButton`` into a decision.

    Accepted forms: ``swipe``, ``back``, ``tap_back``, ``done``,
    ``tap_<id>`` / ``tap:<id>`` / ``tap <id>`` and ``type_<id>`` /
    ``type:<id>:<text>``. Anything else yields ``None``.
    """
    text = alternative.strip()
    lowered = text.lower()
    reasoning = f"Retry with alternative: {text}"
    probability = SuccessProbability(0.5, "alternative action")

    if lowered in ("swipe", "back", "done"):
        return ExplorationDecision(action=lowered, reasoning=reasoning, success_probability=probability)
    if lowered in ("tap_back", "tap back", "tap:back"):
        return ExplorationDecision(action="back", reasoning=reasoning, success_probability=probability)

    parts = _ALT_SPLIT.split(text, maxsplit=1)
    if len(parts) != 2 or not parts[1].strip():
        return None
    verb, rest = parts[0].lower(), parts[1].strip()

    if verb == "tap":
        return ExplorationDecision(
            action="tap", target_element=rest, reasoning=reasoning, success_probability=probability,
        )
    if verb == "type":
        target, _, typed = rest.partition(":")
        if not target:
            return None
        return ExplorationDecision(
            action="type",
            target_element=target,
            text_to_type=typed or sample_text,
            reasoning=reasoning,
            success_probability=probability,
        )
    return None
