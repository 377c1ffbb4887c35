from __future__ import annotations

"""The navigation graph: every screen seen so far and every action that moved between them.

Screens are nodes keyed by their fingerprint, transitions are edges of a
``networkx.MultiDiGraph`` keyed by a per-transition uuid, so repeated and
parallel actions between the same two screens are all kept.
"""

import base64
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import networkx as nx

from .elements import Element, ScreenType
from .hierarchy import CompressedHierarchy, fingerprint_elements

logger = logging.getLogger(__name__)

GRAPH_FORMAT_VERSION = "1.0"


class ActionType(str, Enum):
    """Interaction primitives understood by the execution capability."""

    TAP = "tap"
    TYPE = "type"
    SWIPE = "swipe"
    BACK = "back"
    DONE = "done"


@dataclass
class Action:
    type: ActionType
    target_element: Optional[str] = None
    text_typed: Optional[str] = None
    reasoning: str = ""
    confidence: int = 50  # 0..100

    def __post_init__(self) -> None:
        self.type = ActionType(self.type)
        self.confidence = min(max(int(self.confidence), 0), 100)

    def describe(self) -> str:
        if self.target_element:
            return f"{self.type.value}: {self.target_element}"
        return self.type.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "targetElement": self.target_element,
            "textTyped": self.text_typed,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        return cls(
            type=ActionType(data["type"]),
            target_element=data.get("targetElement"),
            text_typed=data.get("textTyped"),
            reasoning=data.get("reasoning", ""),
            confidence=data.get("confidence", 50),
        )


@dataclass
class ScreenNode:
    """A discovered screen. Created once, then only its visit bookkeeping changes."""

    fingerprint: str
    screen_type: Optional[ScreenType] = None
    elements: Tuple[Element, ...] = ()
    screenshot: bytes = field(default=b"", repr=False)
    depth: int = 0
    parent_fingerprint: Optional[str] = None
    visit_count: int = 1
    timestamp: float = field(default_factory=time.time)
    last_visited: float = field(default_factory=time.time)

    @classmethod
    def from_hierarchy(
        cls,
        hierarchy: CompressedHierarchy,
        depth: int = 0,
        parent_fingerprint: Optional[str] = None,
    ) -> "ScreenNode":
        return cls(
            fingerprint=hierarchy.fingerprint,
            screen_type=hierarchy.screen_type,
            elements=hierarchy.elements,
            screenshot=hierarchy.screenshot,
            depth=depth,
            parent_fingerprint=parent_fingerprint,
        )

    @property
    def label(self) -> str:
        return self.screen_type.value if self.screen_type else "Screen"


@dataclass
class Transition:
    from_fingerprint: str
    to_fingerprint: str
    action: Action
    duration: float = 0.0  # seconds
    was_successful: bool = True
    timestamp: float = field(default_factory=time.time)
    transition_id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class CoverageStats:
    total_screens: int
    explored_screens: int
    coverage_percentage: float
    total_edges: int
    average_depth: float


class NavigationGraph:
    """Directed multigraph of screens (fingerprints) and the transitions between them."""

    def __init__(self) -> None:
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()
        self._transitions: List[Transition] = []
        self._start: Optional[str] = None
        self._current: Optional[str] = None

    def __len__(self) -> int:
        return sum(1 for _ in self.nodes())

    def __contains__(self, fingerprint: object) -> bool:
        return isinstance(fingerprint, str) and self.has_visited(fingerprint)

    # --- node helpers ----------------------------------------------------
    def add_node(self, node: ScreenNode) -> bool:
        """Insert ``node`` or count a revisit. Returns True only for a first discovery."""
        if self._start is None:
            self._start = node.fingerprint
        self._current = node.fingerprint

        existing = self.get_node(node.fingerprint)
        if existing is not None:
            existing.visit_count += 1
            existing.last_visited = time.time()
            return False
        # fills in a placeholder left by add_transition, if any
        self._g.add_node(node.fingerprint, obj=node)
        return True

    def get_node(self, fingerprint: str) -> Optional[ScreenNode]:
        if fingerprint in self._g:
            return self._g.nodes[fingerprint].get("obj")
        return None

    def has_visited(self, fingerprint: str) -> bool:
        return self.get_node(fingerprint) is not None

    def get_visit_count(self, fingerprint: str) -> int:
        node = self.get_node(fingerprint)
        return node.visit_count if node else 0

    def nodes(self) -> Iterator[ScreenNode]:
        for _, data in self._g.nodes(data=True):
            if "obj" in data:
                yield data["obj"]

    @property
    def start_node(self) -> Optional[str]:
        return self._start

    @property
    def current_node(self) -> Optional[str]:
        return self._current

    # --- edge helpers ----------------------------------------------------
    def add_transition(
        self,
        from_fingerprint: str,
        to_fingerprint: str,
        action: Action,
        duration: float,
        was_successful: bool = True,
    ) -> Transition:
        """Record an edge out of a known screen and move the current screen to ``to``.

        An unknown ``to`` is kept as a placeholder endpoint that does not count
        as a visited screen until :meth:`add_node` adds it.
        """
        if not self.has_visited(from_fingerprint):
            raise ValueError(f"Unknown screen {from_fingerprint[:8]}; add the node before its transitions")
        if to_fingerprint not in self._g:
            logger.debug("Transition into unvisited screen %s", to_fingerprint[:8])
        transition = Transition(
            from_fingerprint=from_fingerprint,
            to_fingerprint=to_fingerprint,
            action=action,
            duration=max(float(duration), 0.0),
            was_successful=was_successful,
        )
        self._insert(transition)
        self._current = to_fingerprint
        return transition

    def _insert(self, transition: Transition) -> None:
        self._g.add_edge(
            transition.from_fingerprint,
            transition.to_fingerprint,
            key=transition.transition_id,
            obj=transition,
            duration=transition.duration,
        )
        self._transitions.append(transition)

    @property
    def transitions(self) -> List[Transition]:
        return list(self._transitions)

    def outgoing_transitions(self, fingerprint: str) -> List[Transition]:
        if fingerprint not in self._g:
            return []
        return [data["obj"] for _, _, data in self._g.out_edges(fingerprint, data=True)]

    # --- analysis --------------------------------------------------------
    def find_cycles(self) -> List[List[str]]:
        """Elementary cycles over the collapsed digraph, self-loops included."""
        cycles = [_rotate_to_min(c) for c in nx.simple_cycles(nx.DiGraph(self._g))]
        cycles.sort(key=lambda c: (len(c), c))
        return cycles

    def would_create_cycle(self, from_fingerprint: str, to_fingerprint: str) -> bool:
        """Would a ``from -> to`` edge close a loop, i.e. is ``from`` reachable from ``to``?"""
        if not self.has_visited(to_fingerprint):
            return False
        if to_fingerprint == from_fingerprint:
            return True
        if not self.has_visited(from_fingerprint):
            return False
        return nx.has_path(self._g, to_fingerprint, from_fingerprint)

    def shortest_path(self, from_fingerprint: str, to_fingerprint: str) -> Optional[List[Action]]:
        """Cheapest action sequence by total ``duration``.

        Returns ``[]`` when both ends are the same known screen and ``None``
        when an end is unknown or unreachable.
        """
        if not (self.has_visited(from_fingerprint) and self.has_visited(to_fingerprint)):
            return None
        if from_fingerprint == to_fingerprint:
            return []
        try:
            path_nodes = nx.dijkstra_path(self._g, from_fingerprint, to_fingerprint, weight="duration")
        except nx.NetworkXNoPath:
            return None

        actions: List[Action] = []
        for src, dst in zip(path_nodes, path_nodes[1:]):
            # parallel edges are in insertion order; min keeps the first on ties
            edge_data = self._g.get_edge_data(src, dst)
            cheapest = min(edge_data.values(), key=lambda data: data["duration"])
            actions.append(cheapest["obj"].action)
        return actions

    def coverage_stats(self) -> CoverageStats:
        nodes = list(self.nodes())
        total = len(nodes)
        explored = sum(1 for n in nodes if n.visit_count > 0)
        return CoverageStats(
            total_screens=total,
            explored_screens=explored,
            coverage_percentage=(explored / total * 100.0) if total else 0.0,
            total_edges=self._g.number_of_edges(),
            average_depth=(sum(n.depth for n in nodes) / total) if total else 0.0,
        )

    # --- export ----------------------------------------------------------
    def export_mermaid(self) -> str:
        lines = ["graph TD"]
        for t in self._transitions:
            lines.append(
                f"    {t.from_fingerprint[:6]}[{self._mermaid_label(t.from_fingerprint)}] -->|{t.action.describe()}| "
                f"{t.to_fingerprint[:6]}[{self._mermaid_label(t.to_fingerprint)}]"
            )
        return "\n".join(lines) + "\n"

    def _mermaid_label(self, fingerprint: str) -> str:
        node = self.get_node(fingerprint)
        return node.label if node else "Screen"

    def export_graphml(self, path: str) -> None:
        """Write a GraphML copy carrying only primitive attributes."""
        g_ml = nx.MultiDiGraph()
        for node in self.nodes():
            g_ml.add_node(
                node.fingerprint,
                screen_type=node.label,
                depth=node.depth,
                visit_count=node.visit_count,
            )
        for t in self._transitions:
            g_ml.add_edge(
                t.from_fingerprint,
                t.to_fingerprint,
                key=t.transition_id,
                action=t.action.type.value,
                target=t.action.target_element or "",
                duration=t.duration,
                success=t.was_successful,
            )
        nx.write_graphml(g_ml, path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": GRAPH_FORMAT_VERSION,
            "startNode": self._start,
            "currentNode": self._current,
            "nodes": [
                {
                    "fingerprint": n.fingerprint,
                    "screenType": n.screen_type.value if n.screen_type else None,
                    "elements": [e.to_dict() for e in n.elements],
                    "screenshot": base64.b64encode(n.screenshot).decode() if n.screenshot else None,
                    "depth": n.depth,
                    "parentFingerprint": n.parent_fingerprint,
                    "visitCount": n.visit_count,
                    "timestamp": n.timestamp,
                    "lastVisited": n.last_visited,
                }
                for n in self.nodes()
            ],
            "edges": [
                {
                    "id": t.transition_id,
                    "from": t.from_fingerprint,
                    "to": t.to_fingerprint,
                    "action": t.action.to_dict(),
                    "duration": t.duration,
                    "wasSuccessful": t.was_successful,
                    "timestamp": t.timestamp,
                }
                for t in self._transitions
            ],
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NavigationGraph":
        graph = cls()
        # stored fingerprints are only used to wire edges up; identity comes from the elements
        remap: Dict[str, str] = {}
        for meta in data.get("nodes", []):
            elements = tuple(Element.from_dict(e) for e in meta.get("elements", []))
            fingerprint = fingerprint_elements(elements)
            if meta.get("fingerprint") and meta["fingerprint"] != fingerprint:
                logger.warning("Stored fingerprint %s does not match its elements; using %s",
                               meta["fingerprint"][:8], fingerprint[:8])
            remap[meta.get("fingerprint") or fingerprint] = fingerprint
            screen_type = meta.get("screenType")
            screenshot = meta.get("screenshot")
            node = ScreenNode(
                fingerprint=fingerprint,
                screen_type=ScreenType(screen_type) if screen_type else None,
                elements=elements,
                screenshot=base64.b64decode(screenshot) if screenshot else b"",
                depth=meta.get("depth", 0),
                parent_fingerprint=meta.get("parentFingerprint"),
                visit_count=meta.get("visitCount", 1),
                timestamp=meta.get("timestamp", time.time()),
                last_visited=meta.get("lastVisited", time.time()),
            )
            graph._g.add_node(fingerprint, obj=node)

        for node in graph.nodes():
            if node.parent_fingerprint is not None:
                node.parent_fingerprint = remap.get(node.parent_fingerprint, node.parent_fingerprint)

        for meta in data.get("edges", []):
            src, dst = remap.get(meta["from"], meta["from"]), remap.get(meta["to"], meta["to"])
            if not graph.has_visited(src):
                logger.warning("Dropping transition %s from unknown screen", meta.get("id"))
                continue
            transition = Transition(
                from_fingerprint=src,
                to_fingerprint=dst,
                action=Action.from_dict(meta["action"]),
                duration=meta.get("duration", 0.0),
                was_successful=meta.get("wasSuccessful", True),
                timestamp=meta.get("timestamp", time.time()),
                transition_id=meta.get("id") or str(uuid.uuid4()),
            )
            graph._insert(transition)

        start, current = data.get("startNode"), data.get("currentNode")
        graph._start = remap.get(start, start) if start else None
        graph._current = remap.get(current, current) if current else None
        return graph

    @classmethod
    def from_json(cls, payload: Union[str, bytes]) -> "NavigationGraph":
        return cls.from_dict(json.loads(payload))


def _rotate_to_min(cycle: List[str]) -> List[str]:
    pivot = cycle.index(min(cycle))
    return cycle[pivot:] + cycle[:pivot]
