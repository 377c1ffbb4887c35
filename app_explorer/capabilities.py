from __future__ import annotations

"""The three collaborators an :class:`~app_explorer.exploration_loop.ExplorationLoop` is built from.

Capture and execution may be implemented with plain or ``async`` methods;
the loop awaits whatever comes back when it is awaitable. Decisions are
always asynchronous.
"""

import inspect
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Protocol, Sequence, Tuple, TypeVar, Union, runtime_checkable

if TYPE_CHECKING:
    from .decision import ExplorationDecision
    from .hierarchy import CompressedHierarchy, RawTree
    from .result import ExplorationStep

T = TypeVar("T")


class ExecutionOutcome(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"  # the driver wants the session to end
    FAILED = "failed"


@runtime_checkable
class CaptureCapability(Protocol):
    def capture(self) -> Union[Tuple["RawTree", bytes], Awaitable[Tuple["RawTree", bytes]]]:
        """Return ``(raw_tree, screenshot_png)``; raise CaptureError when inspection fails."""
        ...


@runtime_checkable
class DecisionCapability(Protocol):
    async def decide(
        self,
        hierarchy: "CompressedHierarchy",
        goal: str,
        history: Sequence["ExplorationStep"],
    ) -> "ExplorationDecision":
        ...


@runtime_checkable
class ExecutionCapability(Protocol):
    def execute(
        self, decision: "ExplorationDecision"
    ) -> Union[ExecutionOutcome, Awaitable[ExecutionOutcome]]:
        ...


async def resolve(value: Union[T, Awaitable[T]]) -> T:
    """Await ``value`` when a capability returned a coroutine, pass it through otherwise."""
    if inspect.isawaitable(value):
        return await value
    return value
