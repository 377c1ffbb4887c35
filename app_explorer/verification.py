from __future__ import annotations

"""Checks whether an executed action did what the decision said it would."""

import logging
import string
from dataclasses import dataclass
from typing import List, Optional

from .decision import ExplorationDecision
from .hierarchy import CompressedHierarchy

logger = logging.getLogger(__name__)

_UI_KEYWORDS = (
    "button", "field", "label", "text", "view", "screen", "message", "title",
    "header", "footer", "nav", "tab", "alert", "dialog", "dashboard", "welcome",
    "login", "settings", "profile",
)
_GENERIC_WORDS = {"message", "text", "button", "field"}
_MIN_CANDIDATE_LENGTH = 4
_SUBSTRING_MATCH_LENGTH = 8


@dataclass(frozen=True)
class VerificationResult:
    passed: bool
    reason: str
    screen_changed: bool
    expected_element_found: Optional[bool] = None


def extract_candidate_ids(expected_outcome: str) -> List[str]:
    """Words of an outcome sentence that look like element ids or labels.

    A word qualifies when it is at least four characters long and either
    contains a UI keyword or is camelCase. Generic words are dropped.
    """
    candidates: List[str] = []
    for word in expected_outcome.split():
        cleaned = word.strip(string.punctuation)
        if len(cleaned) < _MIN_CANDIDATE_LENGTH:
            continue
        lowered = cleaned.lower()
        if lowered in _GENERIC_WORDS:
            continue
        has_keyword = any(k in lowered for k in _UI_KEYWORDS)
        camel_case = cleaned[0].islower() and any(c.isupper() for c in cleaned)
        if (has_keyword or camel_case) and cleaned not in candidates:
            candidates.append(cleaned)
    return candidates


class ActionVerifier:
    """Stateless; first matching rule decides the verdict."""

    def verify(
        self,
        decision: ExplorationDecision,
        before: CompressedHierarchy,
        after: CompressedHierarchy,
    ) -> VerificationResult:
        if decision.is_done:
            return VerificationResult(
                passed=True, reason="No verification required for done action", screen_changed=False,
            )

        screen_changed = before.fingerprint != after.fingerprint

        if decision.action == "type" and decision.target_element and decision.text_to_type:
            target = after.find_element(decision.target_element)
            if target is not None and target.value is not None and decision.text_to_type in target.value:
                return VerificationResult(
                    passed=True,
                    reason=f"Type action succeeded: text was entered into '{decision.target_element}'",
                    screen_changed=screen_changed,
                )

        if decision.expected_outcome:
            candidates = extract_candidate_ids(decision.expected_outcome)
            if candidates:
                found = self._any_candidate_present(candidates, after)
                if found and screen_changed:
                    reason = "Expected outcome matched: screen changed and expected element found"
                elif found:
                    reason = "Expected element found but screen did not change"
                elif screen_changed:
                    reason = "Screen changed but expected element not found (unexpected outcome)"
                else:
                    reason = "Screen did not change and expected element not found"
                return VerificationResult(
                    passed=screen_changed and found,
                    reason=reason,
                    screen_changed=screen_changed,
                    expected_element_found=found,
                )

        if screen_changed:
            return VerificationResult(
                passed=True, reason="Action succeeded: screen changed (basic verification)", screen_changed=True,
            )
        return VerificationResult(
            passed=False, reason="Action failed: screen did not change (no visible effect)", screen_changed=False,
        )

    @staticmethod
    def _any_candidate_present(candidates: List[str], after: CompressedHierarchy) -> bool:
        for candidate in candidates:
            word = candidate.lower()
            for element in after.all_elements():
                for attr in (element.id, element.label):
                    if attr is None:
                        continue
                    text = attr.lower()
                    if text == word:
                        return True
                    if len(word) >= _SUBSTRING_MATCH_LENGTH and word in text:
                        return True
        return False
