from __future__ import annotations

"""Deterministic, model-free decision capability."""

import logging
from typing import Dict, List, Optional, Sequence, Set

from .decision import ExplorationDecision, SuccessProbability
from .elements import Element, ElementType
from .hierarchy import CompressedHierarchy
from .result import ExplorationStep

logger = logging.getLogger(__name__)


def sample_text_for(element: Element) -> str:
    """Plausible input for a text field, guessed from its id/label."""
    hint = f"{element.id or ''} {element.label or ''}".lower()
    if "email" in hint or "user" in hint:
        return "test@example.com"
    if "password" in hint:
        return "password123"
    if "phone" in hint:
        return "123-456-7890"
    if "name" in hint:
        return "Jane Doe"
    if "search" in hint:
        return "test"
    return "sample text"


class HeuristicDecider:
    """Prefers untried, highest-priority interactive elements on the current screen.

    Input fields are typed into before anything else is tapped, so login and
    form screens are filled in before they are submitted. Once every element
    of a screen has been tried the decider answers ``done``.
    """

    def __init__(self, alternatives: int = 2) -> None:
        self._alternatives = alternatives
        self._tried: Dict[str, Set[str]] = {}

    async def decide(
        self,
        hierarchy: CompressedHierarchy,
        goal: str,
        history: Sequence[ExplorationStep],
    ) -> ExplorationDecision:
        tried = self._tried.setdefault(hierarchy.fingerprint, set())
        candidates = self._rank([e for e in hierarchy.interactive_elements()
                                 if e.display_name and e.display_name not in tried])
        if not candidates:
            logger.debug("Nothing left to try on %s", hierarchy.fingerprint[:8])
            return ExplorationDecision(
                action="done",
                reasoning="Every interactive element on this screen has been tried",
                success_probability=SuccessProbability(0.9, "no untried elements"),
            )

        target = candidates[0]
        tried.add(target.display_name)
        alternatives = tuple(f"tap_{e.display_name}" for e in candidates[1:1 + self._alternatives])
        if target.type == ElementType.INPUT:
            return ExplorationDecision(
                action="type",
                target_element=target.display_name,
                text_to_type=sample_text_for(target),
                reasoning=f"Fill in {target.display_name} before submitting",
                success_probability=SuccessProbability(0.8, "text entry rarely fails"),
                alternative_actions=alternatives,
            )
        return ExplorationDecision(
            action="tap",
            target_element=target.display_name,
            reasoning=f"Highest-priority untried element towards: {goal}",
            success_probability=SuccessProbability(0.6, "untried element"),
            alternative_actions=alternatives,
        )

    @staticmethod
    def _rank(elements: List[Element]) -> List[Element]:
        # inputs first, then priority; sort is stable so traversal order breaks ties
        return sorted(elements, key=lambda e: (e.type != ElementType.INPUT, -(e.priority or 0)))
