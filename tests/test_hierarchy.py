from __future__ import annotations

import copy
import json

from app_explorer.config import HierarchyConfig
from app_explorer.elements import ElementType, ScreenType, SemanticIntent
from app_explorer.hierarchy import CompressedHierarchy, HierarchyCompressor

from fakes import DASHBOARD_SCREEN, LOGIN_SCREEN


def test_fingerprint_is_deterministic() -> None:
    compressor = HierarchyCompressor()
    first = compressor.compress(LOGIN_SCREEN, b"one")
    second = compressor.compress(copy.deepcopy(LOGIN_SCREEN), b"two")

    assert first.fingerprint == second.fingerprint
    assert len(first.fingerprint) == 64


def test_fingerprint_ignores_values_but_not_labels() -> None:
    compressor = HierarchyCompressor()
    typed = copy.deepcopy(LOGIN_SCREEN)
    typed["children"][0]["value"] = "me@example.com"
    relabelled = copy.deepcopy(LOGIN_SCREEN)
    relabelled["children"][2]["label"] = "Sign In"

    base = compressor.compress(LOGIN_SCREEN)
    assert compressor.compress(typed).fingerprint == base.fingerprint
    assert compressor.compress(relabelled).fingerprint != base.fingerprint


def test_noise_containers_are_hoisted() -> None:
    hierarchy = HierarchyCompressor().compress(LOGIN_SCREEN)

    assert [e.id for e in hierarchy.elements] == ["emailField", "passwordField", "loginButton"]
    assert hierarchy.elements[0].type == ElementType.INPUT
    assert hierarchy.elements[2].intent == SemanticIntent.SUBMIT


def test_depth_zero_keeps_only_the_root() -> None:
    tree = {"type": "button", "id": "root", "children": [{"type": "button", "id": "child"}]}
    hierarchy = HierarchyCompressor(HierarchyConfig(max_depth=0)).compress(tree)

    assert len(hierarchy.elements) == 1
    assert hierarchy.elements[0].id == "root"
    assert hierarchy.elements[0].children == ()


def test_children_cap_zero_yields_childless_nodes() -> None:
    tree = {"type": "group", "id": "list", "children": [{"type": "button", "id": "a"}, {"type": "button", "id": "b"}]}
    hierarchy = HierarchyCompressor(HierarchyConfig(max_children_per_element=0)).compress(tree)

    assert hierarchy.element_count() == 1


def test_children_cap_limits_each_node() -> None:
    tree = {"type": "group", "id": "list", "children": [{"type": "button", "id": str(i)} for i in range(5)]}
    hierarchy = HierarchyCompressor(HierarchyConfig(max_children_per_element=2)).compress(tree)

    assert [c.id for c in hierarchy.elements[0].children] == ["0", "1"]


def test_serialized_form_omits_absent_fields() -> None:
    tree = {"type": "group", "id": "card", "children": [{"type": "image"}, {"type": "text", "label": "Hi", "value": "x"}]}
    data = HierarchyCompressor().compress(tree).to_dict()
    card = data["elements"][0]
    image, text = card["children"]

    assert "children" not in image
    assert "id" not in image and "label" not in image
    assert "value" not in text  # values are only kept for interactive elements
    assert "intent" not in text


def test_keyboard_subtree_is_excluded() -> None:
    tree = {
        "type": "window",
        "children": [
            {"type": "textField", "id": "search"},
            {"type": "keyboard", "children": [{"type": "key", "label": "q"}, {"type": "button", "label": "return"}]},
        ],
    }
    hierarchy = HierarchyCompressor().compress(tree)
    assert [e.display_name for e in hierarchy.all_elements()] == ["search"]

    kept = HierarchyCompressor(HierarchyConfig(exclude_keyboard=False)).compress(tree)
    assert "return" in [e.display_name for e in kept.all_elements()]


def test_trimming_drops_lowest_scored_non_interactive_first() -> None:
    tree = {
        "type": "window",
        "children": [
            {"type": "button", "id": "save", "label": "Save"},
            {"type": "text", "id": "title", "label": "Title"},
            {"type": "text", "label": "first"},
            {"type": "text", "label": "second"},
            {"type": "text", "label": "third"},
            {"type": "button", "id": "cancel", "label": "Cancel"},
        ],
    }
    hierarchy = HierarchyCompressor(HierarchyConfig(target_element_count=3)).compress(tree)

    assert [e.display_name for e in hierarchy.all_elements()] == ["save", "title", "cancel"]


def test_trimming_never_removes_interactive_elements() -> None:
    tree = {"type": "window", "children": [{"type": "button", "id": f"b{i}"} for i in range(5)]}
    hierarchy = HierarchyCompressor(HierarchyConfig(target_element_count=2)).compress(tree)

    assert hierarchy.element_count() == 5


def test_trimming_hoists_children_of_removed_elements() -> None:
    tree = {
        "type": "group",
        "label": "section",
        "children": [{"type": "button", "id": "inner"}, {"type": "text", "label": "note"}],
    }
    hierarchy = HierarchyCompressor(HierarchyConfig(target_element_count=1)).compress(tree)

    assert [e.id for e in hierarchy.elements] == ["inner"]


def test_screen_type_detection() -> None:
    compressor = HierarchyCompressor()
    assert compressor.compress(LOGIN_SCREEN).screen_type == ScreenType.LOGIN

    plain = compressor.compress({"type": "text", "label": "About this app"})
    assert plain.screen_type is None


def test_semantic_analysis_can_be_disabled() -> None:
    hierarchy = HierarchyCompressor(HierarchyConfig(use_semantic_analysis=False)).compress(LOGIN_SCREEN)

    assert hierarchy.screen_type is None
    assert all(e.intent is None and e.priority is None for e in hierarchy.all_elements())


def test_from_json_recomputes_fingerprint() -> None:
    hierarchy = HierarchyCompressor().compress(DASHBOARD_SCREEN, b"png-bytes")
    data = json.loads(hierarchy.to_json(include_screenshot=True))
    data["fingerprint"] = "0" * 64

    restored = CompressedHierarchy.from_dict(data)

    assert restored.fingerprint == hierarchy.fingerprint
    assert restored.screenshot == b"png-bytes"
    assert restored.elements == hierarchy.elements


def test_interactive_only_json_keeps_actionable_and_identified_elements() -> None:
    hierarchy = HierarchyCompressor().compress(DASHBOARD_SCREEN)
    data = json.loads(hierarchy.to_json(interactive_only=True))

    assert [e["id"] for e in data["elements"]] == ["welcomeMessage", "settingsButton"]
    assert "screenshot" not in data
