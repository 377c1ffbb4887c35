from __future__ import annotations

"""Turns a raw UI capture into a small, deterministic screen description.

The compressor walks the raw tree once, maps every node onto an :class:`Element`,
drops layout noise and, when the screen is still too large, trims the least useful
non-interactive elements. The resulting :class:`CompressedHierarchy` carries a
SHA-256 fingerprint that identifies the screen inside the navigation graph.
"""

import base64
import hashlib
import itertools
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .config import HierarchyConfig
from .elements import Element, ElementType, ScreenType, SemanticIntent, iter_elements
from .semantic_analyzer import (
    DefaultElementCategorizer,
    DefaultSemanticAnalyzer,
    ElementCategorizer,
    SemanticAnalyzer,
)

logger = logging.getLogger(__name__)

RawNode = Mapping[str, Any]
RawTree = Union[RawNode, Sequence[RawNode]]

FORMAT_VERSION = "1.0"
_KEYBOARD_TYPES = {"keyboard", "key"}


def fingerprint_elements(elements: Sequence[Element]) -> str:
    """SHA-256 over ``type:id:label`` of every element in pre-order.

    Values and screenshots are left out, so typing into a field or a moving
    spinner never turns a screen into a different one.
    """
    joined = "|".join(e.signature for e in iter_elements(elements))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CompressedHierarchy:
    elements: Tuple[Element, ...]
    screenshot: bytes = b""
    screen_type: Optional[ScreenType] = None
    version: str = FORMAT_VERSION
    fingerprint: str = field(init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "elements", tuple(self.elements))
        object.__setattr__(self, "fingerprint", fingerprint_elements(self.elements))

    # --- queries ---------------------------------------------------------
    def all_elements(self) -> Iterator[Element]:
        return iter_elements(self.elements)

    def interactive_elements(self) -> List[Element]:
        return [e for e in self.all_elements() if e.interactive]

    def element_count(self) -> int:
        return sum(1 for _ in self.all_elements())

    def find_element(self, identifier: str) -> Optional[Element]:
        """First element (pre-order) whose id or label equals ``identifier``."""
        for element in self.all_elements():
            if element.id == identifier or element.label == identifier:
                return element
        return None

    # --- serialisation ---------------------------------------------------
    def to_dict(self, include_screenshot: bool = False, interactive_only: bool = False) -> Dict[str, Any]:
        if interactive_only:
            # flat list: everything actionable plus anything addressable by id
            picked = [e for e in self.all_elements() if e.interactive or e.id is not None]
            elements = [e.with_children(()).to_dict() for e in picked]
        else:
            elements = [e.to_dict() for e in self.elements]
        data: Dict[str, Any] = {"version": self.version, "elements": elements}
        if self.screen_type is not None:
            data["screenType"] = self.screen_type.value
        if include_screenshot and self.screenshot:
            data["screenshot"] = base64.b64encode(self.screenshot).decode()
        return data

    def to_json(self, include_screenshot: bool = False, interactive_only: bool = False, indent: Optional[int] = None) -> str:
        return json.dumps(
            self.to_dict(include_screenshot=include_screenshot, interactive_only=interactive_only),
            indent=indent,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompressedHierarchy":
        # any "fingerprint" key in the payload is ignored and recomputed
        screen_type = data.get("screenType")
        screenshot = data.get("screenshot")
        return cls(
            elements=tuple(Element.from_dict(e) for e in data.get("elements", [])),
            screenshot=base64.b64decode(screenshot) if screenshot else b"",
            screen_type=ScreenType(screen_type) if screen_type else None,
            version=data.get("version", FORMAT_VERSION),
        )

    @classmethod
    def from_json(cls, payload: Union[str, bytes]) -> "CompressedHierarchy":
        return cls.from_dict(json.loads(payload))


class HierarchyCompressor:
    """Compress raw capture trees according to a :class:`HierarchyConfig`."""

    def __init__(self, config: Optional[HierarchyConfig] = None) -> None:
        self.config = config or HierarchyConfig()
        self.categorizer: ElementCategorizer = self.config.categorizer or DefaultElementCategorizer()
        self.semantic_analyzer: Optional[SemanticAnalyzer] = None
        if self.config.use_semantic_analysis:
            self.semantic_analyzer = self.config.semantic_analyzer or DefaultSemanticAnalyzer()

    # ------------------------------------------------------------------
    def compress(self, raw_tree: RawTree, screenshot: bytes = b"") -> CompressedHierarchy:
        roots = [raw_tree] if isinstance(raw_tree, Mapping) else list(raw_tree or [])
        forest: List[Element] = []
        for root in roots:
            forest.extend(self._walk(root, 0))

        forest = self._trim(forest)
        hierarchy = CompressedHierarchy(
            elements=tuple(forest),
            screenshot=screenshot,
            screen_type=self._detect_screen_type(forest),
        )
        logger.debug(
            "Compressed %d root(s) into %d element(s), fingerprint %s",
            len(roots), hierarchy.element_count(), hierarchy.fingerprint[:8],
        )
        return hierarchy

    def score(self, element: Element) -> int:
        w = self.config.weights
        total = 0
        if element.interactive:
            total += w.interactive
        if element.id:
            total += w.has_id
        if element.label:
            total += w.has_label
        total += w.intent.get(element.intent or SemanticIntent.NEUTRAL, 0)
        total += w.element_type.get(element.type, 0)
        return total

    # --- walk ------------------------------------------------------------
    def _walk(self, raw: RawNode, depth: int) -> List[Element]:
        """Return the element(s) ``raw`` contributes to its parent's child list."""
        raw_type = str(raw.get("type") or "")
        if self.config.exclude_keyboard and self._is_keyboard(raw, raw_type):
            return []
        if self.categorizer.should_skip(raw_type):
            return []

        children: List[Element] = []
        if depth < self.config.max_depth:
            raw_children = raw.get("children") or []
            for child in raw_children[: self.config.max_children_per_element]:
                children.extend(self._walk(child, depth + 1))

        element = self._to_element(raw, raw_type, children)
        if self._is_noise(element):
            return list(element.children)
        return [element]

    @staticmethod
    def _is_keyboard(raw: RawNode, raw_type: str) -> bool:
        if raw_type.strip().lower() in _KEYBOARD_TYPES:
            return True
        identifier = str(raw.get("id") or raw.get("identifier") or "").lower()
        return "keyboard" in identifier

    def _to_element(self, raw: RawNode, raw_type: str, children: List[Element]) -> Element:
        category = self.categorizer.categorize(raw_type)
        interactive = bool(raw["interactive"]) if raw.get("interactive") is not None else category.interactive
        identifier = _text_or_none(raw.get("id") or raw.get("identifier"))
        label = _text_or_none(raw.get("label"))
        value = _text_or_none(raw.get("value")) if interactive else None

        element = Element(
            type=category.type,
            interactive=interactive,
            id=identifier,
            label=label,
            value=value,
            children=tuple(children),
        )
        if self.semantic_analyzer is None:
            return element
        intent = self.semantic_analyzer.detect_intent(label, identifier)
        if intent != SemanticIntent.NEUTRAL:
            element = replace(element, intent=intent)
        return replace(element, priority=self.semantic_analyzer.calculate_semantic_priority(element))

    @staticmethod
    def _is_noise(element: Element) -> bool:
        return (
            not element.interactive
            and element.id is None
            and element.label is None
            and element.type != ElementType.IMAGE
        )

    # --- trimming --------------------------------------------------------
    def _trim(self, forest: List[Element]) -> List[Element]:
        ordered = list(iter_elements(forest))
        excess = len(ordered) - self.config.target_element_count
        if excess <= 0:
            return forest

        candidates = [(self.score(e), -index, index) for index, e in enumerate(ordered) if not e.interactive]
        candidates.sort()
        removed = {index for _, _, index in candidates[:excess]}
        if len(removed) < excess:
            logger.debug(
                "Only interactive elements left, keeping %d over the cap of %d",
                len(ordered) - len(removed), self.config.target_element_count,
            )
        return self._rebuild(forest, removed)

    @staticmethod
    def _rebuild(forest: List[Element], removed: Set[int]) -> List[Element]:
        counter = itertools.count()

        def visit(element: Element) -> List[Element]:
            index = next(counter)
            children = [kept for child in element.children for kept in visit(child)]
            if index in removed:
                return children
            return [element.with_children(tuple(children))]

        return [kept for root in forest for kept in visit(root)]

    def _detect_screen_type(self, forest: List[Element]) -> Optional[ScreenType]:
        if self.semantic_analyzer is None:
            return None
        screen_type = self.semantic_analyzer.detect_screen_type(list(iter_elements(forest)))
        return None if screen_type == ScreenType.CONTENT else screen_type


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None
