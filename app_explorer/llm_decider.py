from __future__ import annotations

"""Decision capability backed by an OpenAI chat model."""

import json
import logging
import re
from typing import Any, Optional, Sequence

import openai
from openai import AsyncOpenAI

from .config import LLMConfig
from .decision import ExplorationDecision
from .errors import DecisionError, DecisionErrorKind
from .hierarchy import CompressedHierarchy
from .result import ExplorationStep, navigation_map

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an app crawler that explores a user interface one action at a time. "
    "Always reply with a single JSON object and nothing else."
)

_OUTPUT_FORMAT = """OUTPUT FORMAT (JSON):
{
  "action": "tap" | "type" | "swipe" | "done",
  "targetElement": <exact id or label from CURRENT SCREEN, null for swipe/done>,
  "textToType": <text, required for type>,
  "reasoning": <1-2 sentences>,
  "successProbability": {"value": <0.0-1.0>, "reasoning": <str>},
  "expectedOutcome": <what should be visible afterwards, mention element ids>,
  "alternativeActions": [<fallbacks such as "tap_cancelButton", "swipe">]
}"""


def build_prompt(
    hierarchy: CompressedHierarchy,
    goal: str,
    history: Sequence[ExplorationStep],
    max_chars: int = 12000,
) -> str:
    screen_context = f" [{hierarchy.screen_type.value} screen]" if hierarchy.screen_type else ""
    visited = sorted({s.target_element for s in history if s.target_element})[:20]
    screen_json = hierarchy.to_json(interactive_only=True)
    if len(screen_json) > max_chars:
        # keep the prompt bounded; the model still sees the highest-ranked part
        screen_json = screen_json[:max_chars]

    previous = f"\nPREVIOUS: {history[-1].compact_description()}" if history else ""
    return (
        f"App crawler{screen_context}. Goal: {goal}\n\n"
        f"{navigation_map(history)}\n\n"
        f"CURRENT SCREEN:\n{screen_json}\n\n"
        f"VISITED: {', '.join(visited) if visited else 'none'}{previous}\n\n"
        "STRATEGY:\n"
        "- Elements have \"intent\" (submit/cancel/destructive/navigation) and \"priority\" (higher=more important)\n"
        "- For login screens and forms: fill all inputs before tapping submit\n"
        "- Pick an unvisited interactive element; use its EXACT id/label as targetElement\n\n"
        f"{_OUTPUT_FORMAT}"
    )


def parse_decision(content: str) -> ExplorationDecision:
    """Parse and validate a model reply; raises DecisionError(malformed_response)."""
    # replies sometimes come wrapped in code fences
    json_str = re.sub(r"```[a-zA-Z]*", "", content or "").strip("` \n")
    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError as exc:
        raise DecisionError(DecisionErrorKind.MALFORMED_RESPONSE, f"Reply is not JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise DecisionError(DecisionErrorKind.MALFORMED_RESPONSE, "Reply is not a JSON object")
    decision = ExplorationDecision.from_dict(parsed)
    decision.validate()
    return decision


class OpenAIDecider:
    """Asks a chat model for the next action and maps provider failures onto DecisionError."""

    def __init__(self, config: Optional[LLMConfig] = None, client: Optional[Any] = None) -> None:
        self.config = config or LLMConfig.from_env()
        self._client = client or AsyncOpenAI(api_key=self.config.api_key)
        self.token_usage: int = 0

    async def decide(
        self,
        hierarchy: CompressedHierarchy,
        goal: str,
        history: Sequence[ExplorationStep],
    ) -> ExplorationDecision:
        prompt = build_prompt(hierarchy, goal, history, self.config.max_prompt_chars)
        try:
            resp = await self._client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                response_format={"type": "json_object"},
            )
        except openai.AuthenticationError as exc:
            raise DecisionError(DecisionErrorKind.INVALID_CREDENTIALS, str(exc)) from exc
        except openai.RateLimitError as exc:
            raise DecisionError(DecisionErrorKind.RATE_LIMITED, str(exc)) from exc
        except openai.APIConnectionError as exc:
            # APITimeoutError is a subclass
            raise DecisionError(DecisionErrorKind.NETWORK, str(exc)) from exc
        except openai.APIError as exc:
            raise DecisionError(DecisionErrorKind.PROVIDER, str(exc)) from exc

        self.token_usage += resp.usage.total_tokens if resp and resp.usage else 0
        if not resp.choices:
            raise DecisionError(DecisionErrorKind.MALFORMED_RESPONSE, "Reply has no choices")
        content = resp.choices[0].message.content or ""
        logger.debug("Model reply: %s", content[:500])
        return parse_decision(content)
