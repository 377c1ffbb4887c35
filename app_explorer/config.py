"""Tunable knobs for compression, exploration and the LLM adapter.

Every config object is a plain dataclass with defaults. Environment overrides
are read through ``from_env`` after loading a local ``.env`` file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional

from dotenv import load_dotenv

from .elements import ElementType, SemanticIntent

if TYPE_CHECKING:
    from .semantic_analyzer import ElementCategorizer, SemanticAnalyzer

ENV_PREFIX = "APP_EXPLORER_"


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(ENV_PREFIX + name, default)


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PriorityWeights:
    """Additive scoring used when the compressor has to trim elements."""

    interactive: int = 20
    has_id: int = 10
    has_label: int = 10
    intent: Dict[SemanticIntent, int] = field(
        default_factory=lambda: {
            SemanticIntent.SUBMIT: 150,
            SemanticIntent.NAVIGATION: 100,
            SemanticIntent.NEUTRAL: 60,
            SemanticIntent.CANCEL: 30,
            SemanticIntent.DESTRUCTIVE: 15,
        }
    )
    element_type: Dict[ElementType, int] = field(
        default_factory=lambda: {
            ElementType.INPUT: 40,
            ElementType.BUTTON: 25,
            ElementType.TOGGLE: 20,
            ElementType.PICKER: 20,
            ElementType.SLIDER: 20,
            ElementType.TAB: 15,
            ElementType.LINK: 15,
            ElementType.TEXT: 10,
            ElementType.IMAGE: 5,
            ElementType.SCROLLABLE: 5,
            ElementType.CONTAINER: 0,
        }
    )


@dataclass
class HierarchyConfig:
    max_depth: int = 10
    max_children_per_element: int = 50
    exclude_keyboard: bool = True
    use_semantic_analysis: bool = True
    target_element_count: int = 50
    weights: PriorityWeights = field(default_factory=PriorityWeights)
    # None means "use the default"; pass an explicit analyzer or disable
    # enrichment with use_semantic_analysis=False.
    categorizer: Optional["ElementCategorizer"] = None
    semantic_analyzer: Optional["SemanticAnalyzer"] = None

    def __post_init__(self) -> None:
        self.max_depth = max(self.max_depth, 0)
        self.max_children_per_element = max(self.max_children_per_element, 0)
        self.target_element_count = max(self.target_element_count, 1)


class StuckPolicy(str, Enum):
    ABORT = "abort"
    FORCE_ACTION = "force_action"


@dataclass
class ExplorationConfig:
    steps: int = 20
    goal: str = "Explore the app systematically"
    enable_verification: bool = True
    max_retries: int = 2
    stuck_threshold: int = 3
    stuck_policy: StuckPolicy = StuckPolicy.ABORT
    settle_delay: float = 1.0
    decision_retries: int = 2
    decision_retry_delay: float = 0.5
    session_timeout: Optional[float] = None
    history_window: int = 10

    def __post_init__(self) -> None:
        self.steps = max(self.steps, 0)
        self.max_retries = max(self.max_retries, 0)
        self.stuck_threshold = max(self.stuck_threshold, 0)
        self.decision_retries = max(self.decision_retries, 1)
        self.settle_delay = max(self.settle_delay, 0.0)

    @classmethod
    def ci_preset(cls, steps: int, goal: str) -> "ExplorationConfig":
        """Shorter settle delay and decision backoff, for CI runs."""
        return cls(steps=steps, goal=goal, settle_delay=0.5, decision_retry_delay=0.25)

    @classmethod
    def from_env(cls, **overrides) -> "ExplorationConfig":
        load_dotenv()
        cfg = cls(
            steps=int(_env("STEPS", "20")),
            goal=_env("GOAL", "Explore the app systematically"),
            enable_verification=_env_bool("ENABLE_VERIFICATION", True),
            max_retries=int(_env("MAX_RETRIES", "2")),
            stuck_threshold=int(_env("STUCK_THRESHOLD", "3")),
            stuck_policy=StuckPolicy(_env("STUCK_POLICY", StuckPolicy.ABORT.value)),
            settle_delay=float(_env("SETTLE_DELAY", "1.0")),
            decision_retries=int(_env("DECISION_RETRIES", "2")),
            decision_retry_delay=float(_env("DECISION_RETRY_DELAY", "0.5")),
            session_timeout=float(_env("SESSION_TIMEOUT")) if _env("SESSION_TIMEOUT") else None,
        )
        for key, value in overrides.items():
            setattr(cfg, key, value)
        cfg.__post_init__()
        return cfg


@dataclass
class LLMConfig:
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 512
    max_prompt_chars: int = 12000

    def __post_init__(self) -> None:
        self.temperature = min(max(self.temperature, 0.0), 1.0)

    @classmethod
    def from_env(cls) -> "LLMConfig":
        load_dotenv()
        return cls(
            model=_env("LLM_MODEL", "gpt-4o-mini"),
            api_key=os.getenv("OPENAI_API_KEY"),
            temperature=float(_env("LLM_TEMPERATURE", "0.7")),
            max_tokens=int(_env("LLM_MAX_TOKENS", "512")),
        )
