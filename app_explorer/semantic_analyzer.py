"""Strategies that give raw UI nodes a type and a meaning.

Two strategies are injected into :class:`~app_explorer.hierarchy.HierarchyCompressor`:

ElementCategorizer – maps a platform-specific raw type string (accessibility
                     role, XCUI element type, HTML tag) onto ElementType.
SemanticAnalyzer   – detects the intent of an element, scores it and guesses
                     the category of a whole screen.

Both ship a default implementation; callers may subclass either one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from .elements import Element, ElementType, ScreenType, SemanticIntent


# ---------------------------------------------------------------------------
# Element categorisation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Category:
    type: ElementType
    interactive: bool


class ElementCategorizer:
    """Base strategy: everything is a non-interactive container."""

    def categorize(self, raw_type: str) -> Category:
        return Category(ElementType.CONTAINER, False)

    def should_skip(self, raw_type: str) -> bool:
        return False


class DefaultElementCategorizer(ElementCategorizer):
    """Covers XCUI element types, ARIA roles and the common HTML tags."""

    _TYPE_MAP = {
        ElementType.BUTTON: {"button", "menuitem", "segmentedcontrol", "stepper", "submit"},
        ElementType.INPUT: {
            "input", "textfield", "securetextfield", "searchfield", "textview",
            "textarea", "textbox", "searchbox", "combobox", "edittext",
        },
        ElementType.TEXT: {"text", "statictext", "label", "heading", "paragraph", "p", "span",
                           "h1", "h2", "h3", "h4", "h5", "h6"},
        ElementType.IMAGE: {"image", "img", "icon", "imageview", "svg"},
        ElementType.TOGGLE: {"toggle", "switch", "checkbox", "radio", "radiobutton"},
        ElementType.LINK: {"link", "a"},
        ElementType.TAB: {"tab"},
        ElementType.SCROLLABLE: {"scrollable", "scrollview", "table", "collectionview",
                                 "list", "listview", "recyclerview", "grid", "ul", "ol"},
        ElementType.PICKER: {"picker", "pickerwheel", "select", "datepicker", "listbox"},
        ElementType.SLIDER: {"slider", "range", "seekbar"},
    }
    _INTERACTIVE = {
        ElementType.BUTTON, ElementType.INPUT, ElementType.TOGGLE, ElementType.LINK,
        ElementType.TAB, ElementType.PICKER, ElementType.SLIDER,
    }
    _SKIPPED = {"statusbar", "script", "style", "meta", "head", "noscript", "template"}

    def __init__(self) -> None:
        self._lookup = {raw: et for et, raws in self._TYPE_MAP.items() for raw in raws}

    @staticmethod
    def _normalise(raw_type: str) -> str:
        normalised = re.sub(r"[^a-z0-9]", "", (raw_type or "").lower())
        if normalised.startswith("xcuielementtype"):
            normalised = normalised[len("xcuielementtype"):]
        return normalised

    def categorize(self, raw_type: str) -> Category:
        element_type = self._lookup.get(self._normalise(raw_type), ElementType.CONTAINER)
        return Category(element_type, element_type in self._INTERACTIVE)

    def should_skip(self, raw_type: str) -> bool:
        return self._normalise(raw_type) in self._SKIPPED


# ---------------------------------------------------------------------------
# Semantic analysis
# ---------------------------------------------------------------------------

class GroupType(str, Enum):
    FORM_INPUT = "formInput"
    ACTION = "action"
    NAVIGATION = "navigation"
    CONTENT = "content"


@dataclass(frozen=True)
class ElementGroup:
    type: GroupType
    elements: Tuple[Element, ...]
    primary_element: Optional[Element] = None


class SemanticAnalyzer:
    """Base strategy: no intent, flat priority, no screen category."""

    def detect_intent(self, label: Optional[str], identifier: Optional[str]) -> SemanticIntent:
        return SemanticIntent.NEUTRAL

    def calculate_semantic_priority(self, element: Element) -> int:
        return 0

    def detect_screen_type(self, elements: Sequence[Element]) -> ScreenType:
        return ScreenType.CONTENT


def _words(text: str) -> str:
    """'loginButton' / 'login_button' / 'Log In' -> 'login button' style text."""
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", text)
    return " ".join(re.sub(r"[^0-9a-zA-Z]+", " ", text).lower().split())


def _compile(patterns: Iterable[str]) -> Optional[re.Pattern]:
    patterns = list(patterns)
    if not patterns:
        return None
    return re.compile(r"\b(" + "|".join(re.escape(p) for p in patterns) + r")\b")


@dataclass
class DefaultSemanticAnalyzer(SemanticAnalyzer):
    """Keyword-driven analyzer. Pattern lists are plain attributes so they can be tuned."""

    submit_patterns: List[str] = field(default_factory=lambda: [
        "submit", "login", "log in", "sign in", "signin", "continue", "next",
        "confirm", "save", "send", "create", "add", "done", "ok", "go",
    ])
    destructive_patterns: List[str] = field(default_factory=lambda: [
        "delete", "remove", "clear", "logout", "log out", "sign out",
        "signout", "disconnect", "uninstall", "reset",
    ])
    cancel_patterns: List[str] = field(default_factory=lambda: [
        "cancel", "close", "dismiss", "back", "skip", "not now", "later",
        "maybe later", "no thanks",
    ])
    navigation_patterns: List[str] = field(default_factory=lambda: [
        "settings", "profile", "home", "menu", "more", "details", "info",
        "about", "help", "account",
    ])

    def __post_init__(self) -> None:
        self._regex = {
            SemanticIntent.DESTRUCTIVE: _compile(self.destructive_patterns),
            SemanticIntent.SUBMIT: _compile(self.submit_patterns),
            SemanticIntent.CANCEL: _compile(self.cancel_patterns),
            SemanticIntent.NAVIGATION: _compile(self.navigation_patterns),
        }

    # --- intent ----------------------------------------------------------
    def detect_intent(self, label: Optional[str], identifier: Optional[str]) -> SemanticIntent:
        text = _words(label or identifier or "")
        if not text:
            return SemanticIntent.NEUTRAL
        # destructive first: "logout" must not read as a login
        for intent in (SemanticIntent.DESTRUCTIVE, SemanticIntent.SUBMIT,
                       SemanticIntent.CANCEL, SemanticIntent.NAVIGATION):
            regex = self._regex[intent]
            if regex is not None and regex.search(text):
                return intent
        return SemanticIntent.NEUTRAL

    def _intent_of(self, element: Element) -> SemanticIntent:
        return self.detect_intent(element.label, element.id)

    # --- priority --------------------------------------------------------
    def calculate_semantic_priority(self, element: Element) -> int:
        intent = self._intent_of(element)
        priority = {
            SemanticIntent.SUBMIT: 150,
            SemanticIntent.NAVIGATION: 100,
            SemanticIntent.NEUTRAL: 60,
            SemanticIntent.CANCEL: 30,
            SemanticIntent.DESTRUCTIVE: 15,
        }[intent]
        if element.interactive and intent == SemanticIntent.NEUTRAL:
            priority += 20
        if element.id is not None:
            priority += 10
        if element.type == ElementType.INPUT:
            priority += 40
        return priority

    # --- screen type -----------------------------------------------------
    def detect_screen_type(self, elements: Sequence[Element]) -> ScreenType:
        if self._has_loading_indicators(elements):
            return ScreenType.LOADING
        if self._has_error_indicators(elements):
            return ScreenType.ERROR
        if sum(1 for e in elements if e.type == ElementType.TAB) >= 2:
            return ScreenType.TAB_NAVIGATION
        if self._is_login_screen(elements):
            return ScreenType.LOGIN
        if self._is_form_screen(elements):
            return ScreenType.FORM
        if self._is_settings_screen(elements):
            return ScreenType.SETTINGS
        if self._is_list_screen(elements):
            return ScreenType.LIST
        return ScreenType.CONTENT

    @staticmethod
    def _text(element: Element) -> str:
        return (element.label or element.id or "").lower()

    def _has_loading_indicators(self, elements: Sequence[Element]) -> bool:
        return any(
            "loading" in self._text(e) or "please wait" in self._text(e)
            or "activityindicator" in (e.id or "").lower()
            for e in elements
        )

    @staticmethod
    def _has_error_indicators(elements: Sequence[Element]) -> bool:
        markers = ("error", "failed", "retry", "try again")
        return any(any(m in (e.label or "").lower() for m in markers) for e in elements)

    def _is_login_screen(self, elements: Sequence[Element]) -> bool:
        has_user = any(
            any(m in self._text(e) for m in ("email", "username", "user")) for e in elements
        )
        has_password = any("password" in self._text(e) for e in elements)
        has_login_button = any(
            self._intent_of(e) == SemanticIntent.SUBMIT
            and ("login" in _words(self._text(e)).replace(" ", "") or "sign in" in _words(self._text(e)))
            for e in elements
        )
        return has_user and has_password and has_login_button

    def _is_form_screen(self, elements: Sequence[Element]) -> bool:
        inputs = sum(1 for e in elements if e.type == ElementType.INPUT)
        has_submit = any(self._intent_of(e) == SemanticIntent.SUBMIT for e in elements)
        return inputs >= 2 and has_submit

    def _is_settings_screen(self, elements: Sequence[Element]) -> bool:
        titled = any("settings" in self._text(e) or "preferences" in self._text(e) for e in elements)
        return titled or any(e.type == ElementType.TOGGLE for e in elements)

    @staticmethod
    def _is_list_screen(elements: Sequence[Element]) -> bool:
        has_scrollable = any(e.type == ElementType.SCROLLABLE for e in elements)
        return has_scrollable and sum(1 for e in elements if e.type == ElementType.TEXT) >= 3

    # --- grouping --------------------------------------------------------
    def group_related_elements(self, elements: Sequence[Element]) -> List[ElementGroup]:
        """Bucket elements into form inputs, actions, navigation and content."""
        groups: List[ElementGroup] = []

        inputs = tuple(e for e in elements if e.type == ElementType.INPUT)
        if inputs:
            groups.append(ElementGroup(GroupType.FORM_INPUT, inputs))

        buttons = tuple(e for e in elements if e.type == ElementType.BUTTON)
        if buttons:
            groups.append(ElementGroup(GroupType.ACTION, buttons, self._primary_action(buttons)))

        nav = tuple(
            e for e in elements
            if e.type == ElementType.TAB or self._intent_of(e) == SemanticIntent.NAVIGATION
        )
        if nav:
            groups.append(ElementGroup(GroupType.NAVIGATION, nav))

        content = tuple(e for e in elements if e.type in (ElementType.TEXT, ElementType.IMAGE))
        if content:
            groups.append(ElementGroup(GroupType.CONTENT, content))
        return groups

    def _primary_action(self, buttons: Sequence[Element]) -> Optional[Element]:
        for button in buttons:
            if self._intent_of(button) == SemanticIntent.SUBMIT:
                return button
        return max(buttons, key=self.calculate_semantic_priority, default=None)
