from __future__ import annotations

import pytest

from app_explorer.decision import (
    ConfidenceLevel,
    ExplorationDecision,
    SuccessProbability,
    parse_alternative,
)
from app_explorer.errors import DecisionError, DecisionErrorKind
from app_explorer.knowledge import ActionType


@pytest.mark.parametrize(
    "value, level",
    [
        (0.0, ConfidenceLevel.VERY_LOW),
        (0.19, ConfidenceLevel.VERY_LOW),
        (0.2, ConfidenceLevel.LOW),
        (0.4, ConfidenceLevel.MEDIUM),
        (0.6, ConfidenceLevel.HIGH),
        (0.8, ConfidenceLevel.VERY_HIGH),
        (1.0, ConfidenceLevel.VERY_HIGH),
    ],
)
def test_confidence_buckets(value, level) -> None:
    assert SuccessProbability(value).confidence_level == level


def test_probability_is_clamped() -> None:
    assert SuccessProbability(1.7).value == 1.0
    assert SuccessProbability(-0.2).value == 0.0


def test_from_dict_accepts_object_or_bare_probability() -> None:
    nested = ExplorationDecision.from_dict(
        {
            "action": " TAP ",
            "targetElement": "loginButton",
            "reasoning": "submit the form",
            "successProbability": {"value": 0.85, "reasoning": "obvious primary action"},
            "expectedOutcome": "dashboard appears",
            "alternativeActions": ["tap_cancelButton", "swipe"],
        }
    )
    bare = ExplorationDecision.from_dict({"action": "swipe", "reasoning": "look for more", "successProbability": 0.3})

    assert nested.action == "tap"
    assert nested.success_probability.confidence_level == ConfidenceLevel.VERY_HIGH
    assert nested.alternative_actions == ("tap_cancelButton", "swipe")
    assert nested.confidence == 85
    assert bare.success_probability.value == pytest.approx(0.3)
    assert bare.target_element is None


def test_to_action_carries_target_and_confidence() -> None:
    decision = ExplorationDecision(
        action="type",
        target_element="emailField",
        text_to_type="test@example.com",
        reasoning="fill email",
        success_probability=SuccessProbability(0.9),
    )
    action = decision.to_action()

    assert action.type == ActionType.TYPE
    assert action.text_typed == "test@example.com"
    assert action.confidence == 90


@pytest.mark.parametrize(
    "payload",
    [
        {"action": "pinch", "reasoning": "zoom"},
        {"action": "tap", "reasoning": "no target"},
        {"action": "type", "targetElement": "emailField", "reasoning": "no text"},
        {"action": "swipe", "reasoning": "   "},
    ],
)
def test_validate_rejects_unusable_decisions(payload) -> None:
    with pytest.raises(DecisionError) as excinfo:
        ExplorationDecision.from_dict(payload).validate()
    assert excinfo.value.kind == DecisionErrorKind.MALFORMED_RESPONSE
    assert excinfo.value.recoverable


def test_validate_accepts_done_without_target() -> None:
    ExplorationDecision(action="done", reasoning="goal reached").validate()


@pytest.mark.parametrize(
    "alternative, action, target, text",
    [
        ("tap_loginButton", "tap", "loginButton", None),
        ("tap:Sign up", "tap", "Sign up", None),
        ("tap settingsButton", "tap", "settingsButton", None),
        ("type_emailField", "type", "emailField", "test"),
        ("type:searchField:coffee", "type", "searchField", "coffee"),
        ("swipe", "swipe", None, None),
        ("back", "back", None, None),
        ("tap_back", "back", None, None),
        ("done", "done", None, None),
    ],
)
def test_parse_alternative(alternative, action, target, text) -> None:
    decision = parse_alternative(alternative)

    assert decision is not None
    assert (decision.action, decision.target_element, decision.text_to_type) == (action, target, text)
    assert decision.reasoning == f"Retry with alternative: {alternative}"


@pytest.mark.parametrize("alternative", ["", "tap", "tap_", "type:", "pinch_map", "Try the other button"])
def test_parse_alternative_rejects_unknown_forms(alternative) -> None:
    assert parse_alternative(alternative) is None


def test_parse_alternative_uses_sample_text() -> None:
    decision = parse_alternative("type_emailField", sample_text="me@example.com")
    assert decision.text_to_type == "me@example.com"
