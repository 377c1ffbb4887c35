"""Element-level data model: the vocabulary a compressed screen is written in."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple


class ElementType(str, Enum):
    BUTTON = "button"
    INPUT = "input"
    TEXT = "text"
    IMAGE = "image"
    TOGGLE = "toggle"
    LINK = "link"
    TAB = "tab"
    SCROLLABLE = "scrollable"
    CONTAINER = "container"
    PICKER = "picker"
    SLIDER = "slider"


class SemanticIntent(str, Enum):
    SUBMIT = "submit"  # Login, Save, Send, Continue
    CANCEL = "cancel"  # Cancel, Close, Back, Skip
    DESTRUCTIVE = "destructive"  # Delete, Remove, Logout
    NAVIGATION = "navigation"  # Settings, Profile, Home, Menu
    NEUTRAL = "neutral"


class ScreenType(str, Enum):
    LOGIN = "login"
    FORM = "form"
    LIST = "list"
    SETTINGS = "settings"
    TAB_NAVIGATION = "tabNavigation"
    ERROR = "error"
    LOADING = "loading"
    CONTENT = "content"


@dataclass(frozen=True)
class Element:
    """A single node of a compressed UI tree.

    Absent attributes stay ``None`` in memory but are dropped entirely from the
    serialized form, as is an empty ``children`` list. Every key saved is a few
    tokens the decision model does not have to read.
    """

    type: ElementType
    interactive: bool = False
    id: Optional[str] = None
    label: Optional[str] = None
    value: Optional[str] = None
    intent: Optional[SemanticIntent] = None
    priority: Optional[int] = None
    children: Tuple["Element", ...] = field(default_factory=tuple)

    @property
    def signature(self) -> str:
        return f"{self.type.value}:{self.id or ''}:{self.label or ''}"

    @property
    def display_name(self) -> Optional[str]:
        return self.id or self.label

    def walk(self) -> Iterator["Element"]:
        """Pre-order traversal including ``self``."""
        yield self
        for child in self.children:
            yield from child.walk()

    def with_children(self, children: Tuple["Element", ...]) -> "Element":
        return replace(self, children=tuple(children))

    # --- serialisation ---------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value}
        if self.id is not None:
            data["id"] = self.id
        if self.label is not None:
            data["label"] = self.label
        data["interactive"] = self.interactive
        if self.value is not None:
            data["value"] = self.value
        if self.intent is not None:
            data["intent"] = self.intent.value
        if self.priority is not None:
            data["priority"] = self.priority
        if self.children:
            data["children"] = [c.to_dict() for c in self.children]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Element":
        intent = data.get("intent")
        return cls(
            type=ElementType(data["type"]),
            interactive=bool(data.get("interactive", False)),
            id=data.get("id"),
            label=data.get("label"),
            value=data.get("value"),
            intent=SemanticIntent(intent) if intent is not None else None,
            priority=data.get("priority"),
            children=tuple(cls.from_dict(c) for c in data.get("children") or ()),
        )


def iter_elements(elements: Tuple[Element, ...] | list) -> Iterator[Element]:
    """Pre-order traversal over a forest of elements."""
    for element in elements:
        yield from element.walk()
