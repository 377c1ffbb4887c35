from __future__ import annotations

"""The exploration driver: capture -> decide -> execute -> verify -> retry -> record.

One :class:`ExplorationLoop` runs one session on one asyncio task and owns one
:class:`~app_explorer.knowledge.NavigationGraph`. All graph mutations of a step
happen in a single synchronous block after the step's last await, so a step
that is cancelled half-way leaves no trace in the graph.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Dict, List, Optional, Sequence, Set, TypeVar

from .capabilities import (
    CaptureCapability,
    DecisionCapability,
    ExecutionCapability,
    ExecutionOutcome,
    resolve,
)
from .config import ExplorationConfig, StuckPolicy
from .decision import EXECUTABLE_ACTIONS, ExplorationDecision, SuccessProbability, parse_alternative
from .elements import ElementType
from .errors import CaptureError, DecisionError, ExecutionError, ExecutionErrorKind, ExplorationError
from .hierarchy import CompressedHierarchy, HierarchyCompressor
from .knowledge import NavigationGraph, ScreenNode
from .observer import ExplorationEvent, ExplorationObserver, LoggingObserver, dispatch
from .result import ExplorationResult, ExplorationStep, TerminationReason
from .verification import ActionVerifier, VerificationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class LoopState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    DECIDING = "deciding"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    RECORDING = "recording"
    RETRYING = "retrying"
    DONE = "done"
    STUCK_ABORTED = "stuck_aborted"
    ERROR_ABORTED = "error_aborted"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({LoopState.DONE, LoopState.STUCK_ABORTED, LoopState.ERROR_ABORTED, LoopState.CANCELLED})


class LoopTransitionError(RuntimeError):
    pass


@dataclass
class StateChange:
    previous: LoopState
    next_state: LoopState


class LoopStateMachine:
    """Guards the order in which an exploration step may move through its phases."""

    _ALLOWED = {
        LoopState.IDLE: {LoopState.CAPTURING, LoopState.DONE, LoopState.CANCELLED},
        LoopState.CAPTURING: {LoopState.DECIDING, LoopState.RECORDING, LoopState.STUCK_ABORTED, LoopState.CANCELLED},
        LoopState.DECIDING: {
            LoopState.EXECUTING, LoopState.RECORDING, LoopState.DONE,
            LoopState.ERROR_ABORTED, LoopState.CANCELLED,
        },
        LoopState.EXECUTING: {LoopState.VERIFYING, LoopState.RECORDING, LoopState.DONE, LoopState.CANCELLED},
        LoopState.VERIFYING: {LoopState.RETRYING, LoopState.RECORDING, LoopState.CANCELLED},
        LoopState.RETRYING: {LoopState.EXECUTING, LoopState.CANCELLED},
        LoopState.RECORDING: {LoopState.CAPTURING, LoopState.DONE, LoopState.CANCELLED},
    }

    def __init__(self) -> None:
        self.current_state = LoopState.IDLE
        self.history: List[StateChange] = []

    @property
    def is_terminal(self) -> bool:
        return self.current_state in TERMINAL_STATES

    def next(self, target: LoopState) -> LoopState:
        allowed_targets = self._ALLOWED.get(self.current_state, set())
        if target not in allowed_targets:
            raise LoopTransitionError(
                f"Illegal transition from {self.current_state.name} to {target.name}"
            )
        self.history.append(StateChange(self.current_state, target))
        self.current_state = target
        return self.current_state


class _SessionInterrupted(Exception):
    """cancel() or the session timeout fired while the step was suspended."""


@dataclass(frozen=True)
class _Attempt:
    decision: ExplorationDecision
    after: CompressedHierarchy
    duration: float
    verification: VerificationResult
    was_retry: bool = False


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------

class ExplorationLoop:
    """Drives one exploration session.

    ``explore()`` may be awaited once per instance; use a fresh loop (optionally
    seeded with a restored ``graph``) to continue a previous session.
    """

    def __init__(
        self,
        capture: CaptureCapability,
        decider: DecisionCapability,
        executor: ExecutionCapability,
        config: Optional[ExplorationConfig] = None,
        *,
        compressor: Optional[HierarchyCompressor] = None,
        verifier: Optional[ActionVerifier] = None,
        observers: Optional[Sequence[ExplorationObserver]] = None,
        graph: Optional[NavigationGraph] = None,
    ) -> None:
        self.config = config or ExplorationConfig()
        self._capture = capture
        self._decider = decider
        self._executor = executor
        self._compressor = compressor or HierarchyCompressor()
        self._verifier = verifier or ActionVerifier()
        self._observers: List[ExplorationObserver] = (
            list(observers) if observers is not None else [LoggingObserver()]
        )
        self.graph = graph or NavigationGraph()
        self.machine = LoopStateMachine()

        self._cancel_event = asyncio.Event()
        self._timed_out = False

        # session counters
        self._steps_taken = 0
        self._successful = 0
        self._failed = 0
        self._verifications = 0
        self._verifications_passed = 0
        self._retries = 0
        self._transitions = 0
        self._history: List[ExplorationStep] = []

        # stuck bookkeeping
        self._stuck_counts: Dict[str, int] = {}
        self._tried_targets: Dict[str, Set[str]] = {}
        self._fresh_arrival: Optional[str] = None

    # --- public ----------------------------------------------------------
    @property
    def state(self) -> LoopState:
        return self.machine.current_state

    @property
    def history(self) -> List[ExplorationStep]:
        return list(self._history)

    def cancel(self) -> None:
        """Stop at the next suspension point; ``explore()`` still returns a result."""
        self._cancel_event.set()

    async def explore(self) -> ExplorationResult:
        cfg = self.config
        start_wall = time.time()
        started = time.monotonic()
        timeout_handle = None
        if cfg.session_timeout is not None:
            timeout_handle = asyncio.get_running_loop().call_later(cfg.session_timeout, self._on_timeout)

        logger.info("Exploration started: goal=%r, steps=%d", cfg.goal, cfg.steps)
        try:
            termination = await self._run()
        finally:
            if timeout_handle is not None:
                timeout_handle.cancel()

        result = ExplorationResult(
            screens_discovered=len(self.graph),
            transitions=self._transitions,
            duration=time.monotonic() - started,
            navigation_graph=self.graph,
            termination=termination,
            successful_actions=self._successful,
            failed_actions=self._failed,
            verifications_performed=self._verifications,
            verifications_passed=self._verifications_passed,
            verifications_failed=self._verifications - self._verifications_passed,
            retry_attempts=self._retries,
            steps=tuple(self._history),
            start_time=start_wall,
        )
        logger.info(
            "Exploration finished (%s): %d screens, %d transitions, %d/%d actions succeeded",
            termination.value, result.screens_discovered, result.transitions,
            result.successful_actions, result.total_actions,
        )
        return result

    # --- session ---------------------------------------------------------
    async def _run(self) -> TerminationReason:
        while True:
            if self._cancel_event.is_set():
                return self._interrupted()
            if self._steps_taken >= self.config.steps:
                self.machine.next(LoopState.DONE)
                return TerminationReason.STEP_BUDGET_EXHAUSTED
            try:
                termination = await self._step()
            except _SessionInterrupted:
                return self._interrupted()
            if termination is not None:
                return termination

    def _on_timeout(self) -> None:
        logger.warning("Session timeout of %.1fs reached", self.config.session_timeout)
        self._timed_out = True
        self._cancel_event.set()

    def _interrupted(self) -> TerminationReason:
        self.machine.next(LoopState.CANCELLED)
        return TerminationReason.TIMED_OUT if self._timed_out else TerminationReason.CANCELLED

    async def _interruptible(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancel() / timeout fires first."""
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        raise _SessionInterrupted()

    # --- one step --------------------------------------------------------
    async def _step(self) -> Optional[TerminationReason]:
        cfg = self.config
        self.machine.next(LoopState.CAPTURING)
        try:
            hierarchy = await self._capture_hierarchy()
        except CaptureError as exc:
            self._fail_step(exc)
            return None
        self._observe_screen(hierarchy)

        forced = False
        revisits = self._stuck_counts.get(hierarchy.fingerprint, 0)
        if revisits > cfg.stuck_threshold:
            dispatch(self._observers, ExplorationEvent.STUCK_DETECTED, hierarchy.fingerprint, revisits)
            if cfg.stuck_policy == StuckPolicy.ABORT:
                self.machine.next(LoopState.STUCK_ABORTED)
                return TerminationReason.STUCK_ABORTED
            forced = True
            self._stuck_counts[hierarchy.fingerprint] = 0

        self.machine.next(LoopState.DECIDING)
        if forced:
            decision = self._forced_decision(hierarchy)
        else:
            dispatch(self._observers, ExplorationEvent.BEFORE_DECISION, hierarchy)
            try:
                decision = await self._decide(hierarchy)
            except DecisionError as exc:
                if not exc.recoverable:
                    dispatch(self._observers, ExplorationEvent.ERROR_ENCOUNTERED, exc)
                    self.machine.next(LoopState.ERROR_ABORTED)
                    return TerminationReason.ERROR_ABORTED
                self._fail_step(exc)
                return None
        dispatch(self._observers, ExplorationEvent.AFTER_DECISION, decision)

        if decision.is_done:
            self.machine.next(LoopState.DONE)
            return TerminationReason.DONE

        if decision.action not in EXECUTABLE_ACTIONS:
            self._fail_step(ExecutionError(ExecutionErrorKind.UNKNOWN_ACTION, decision.action), decision, hierarchy)
            return None

        return await self._execute_and_verify(decision, hierarchy)

    async def _execute_and_verify(
        self, decision: ExplorationDecision, before: CompressedHierarchy
    ) -> Optional[TerminationReason]:
        cfg = self.config
        self.machine.next(LoopState.EXECUTING)
        current = decision
        attempt = 0
        # the latest attempt that ran and failed verification; a retry that
        # breaks down falls back to recording it
        verified: Optional[_Attempt] = None
        while True:
            started = time.monotonic()
            try:
                outcome = await self._interruptible(resolve(self._executor.execute(current)))
            except ExecutionError as exc:
                self._abandon_attempt(exc, current, before, verified)
                return None
            if outcome == ExecutionOutcome.STOP:
                logger.info("Executor requested stop after %s", current.action)
                if verified is not None:
                    self._record_attempt(before, verified)
                self.machine.next(LoopState.DONE)
                return TerminationReason.DONE
            if outcome == ExecutionOutcome.FAILED:
                self._abandon_attempt(None, current, before, verified)
                return None

            if cfg.settle_delay > 0:
                await self._interruptible(asyncio.sleep(cfg.settle_delay))
            try:
                after = await self._capture_hierarchy()
            except CaptureError as exc:
                self._abandon_attempt(exc, current, before, verified)
                return None
            duration = time.monotonic() - started

            if not cfg.enable_verification:
                verification: Optional[VerificationResult] = None
                passed = True
                break

            self.machine.next(LoopState.VERIFYING)
            verification = self._verifier.verify(current, before, after)
            self._verifications += 1
            if verification.passed:
                self._verifications_passed += 1
            passed = verification.passed
            if passed or attempt >= cfg.max_retries:
                break
            logger.warning("Verification failed for %s: %s", current.action, verification.reason)
            verified = _Attempt(current, after, duration, verification, was_retry=attempt > 0)

            # alternatives always come from the first decision, in order
            alternative = self._alternative(decision, attempt)
            if alternative is None:
                break
            if alternative.is_done:
                logger.info("Alternative is done; ending after %s", current.action)
                self._record_attempt(before, verified)
                self.machine.next(LoopState.DONE)
                return TerminationReason.DONE
            attempt += 1
            self._retries += 1
            logger.info("Retrying with alternative %d/%d: %s %s", attempt, cfg.max_retries,
                        alternative.action, alternative.target_element or "")
            self.machine.next(LoopState.RETRYING)
            self.machine.next(LoopState.EXECUTING)
            current = alternative

        self._record(current, before, after, duration, passed, verification, was_retry=attempt > 0)
        return None

    def _abandon_attempt(
        self,
        error: Optional[ExplorationError],
        decision: ExplorationDecision,
        before: CompressedHierarchy,
        verified: Optional[_Attempt],
    ) -> None:
        """Close a step whose latest attempt could not run or be captured."""
        if verified is None:
            self._fail_step(error, decision, before)
            return
        if error is not None:
            dispatch(self._observers, ExplorationEvent.ERROR_ENCOUNTERED, error)
        logger.warning("Alternative %s %s broke down; recording the attempt before it",
                       decision.action, decision.target_element or "")
        self._remember_target(before.fingerprint, decision)
        self._record_attempt(before, verified)

    def _record_attempt(self, before: CompressedHierarchy, attempt: _Attempt) -> None:
        self._record(
            attempt.decision, before, attempt.after, attempt.duration,
            attempt.verification.passed, attempt.verification, was_retry=attempt.was_retry,
        )

    # --- capture / decide ------------------------------------------------
    async def _capture_hierarchy(self) -> CompressedHierarchy:
        raw_tree, screenshot = await self._interruptible(resolve(self._capture.capture()))
        return self._compressor.compress(raw_tree, screenshot or b"")

    async def _decide(self, hierarchy: CompressedHierarchy) -> ExplorationDecision:
        cfg = self.config
        window = self._history[-cfg.history_window:] if cfg.history_window > 0 else []
        attempt = 0
        while True:
            try:
                return await self._interruptible(self._decider.decide(hierarchy, cfg.goal, window))
            except DecisionError as exc:
                if not exc.recoverable or attempt + 1 >= cfg.decision_retries:
                    raise
                delay = cfg.decision_retry_delay * (2 ** attempt)
                logger.warning("Decision failed (%s), retrying in %.2fs", exc.kind.value, delay)
                attempt += 1
            await self._interruptible(asyncio.sleep(delay))

    @staticmethod
    def _alternative(decision: ExplorationDecision, attempt: int) -> Optional[ExplorationDecision]:
        if attempt >= len(decision.alternative_actions):
            return None
        raw = decision.alternative_actions[attempt]
        alternative = parse_alternative(raw)
        if alternative is None:
            logger.warning("Ignoring unparseable alternative action %r", raw)
        return alternative

    def _forced_decision(self, hierarchy: CompressedHierarchy) -> ExplorationDecision:
        tried = self._tried_targets.get(hierarchy.fingerprint, set())
        candidates = [e for e in hierarchy.interactive_elements() if e.display_name and e.display_name not in tried]
        candidates.sort(key=lambda e: -(e.priority or 0))
        probability = SuccessProbability(0.3, "forced to break a revisit loop")
        if candidates:
            target = candidates[0]
            logger.info("Forcing untried element %s", target.display_name)
            return ExplorationDecision(
                action="tap",
                target_element=target.display_name,
                reasoning="Stuck on this screen; forcing an untried element",
                success_probability=probability,
            )
        if "swipe" not in tried and any(e.type == ElementType.SCROLLABLE for e in hierarchy.all_elements()):
            return ExplorationDecision(
                action="swipe", reasoning="Stuck on this screen; scrolling for new content",
                success_probability=probability,
            )
        return ExplorationDecision(
            action="back", reasoning="Stuck on this screen; going back", success_probability=probability,
        )

    # --- bookkeeping (synchronous) -----------------------------------------
    def _observe_screen(self, hierarchy: CompressedHierarchy) -> None:
        """Add or revisit the screen; stuck counts are kept per fingerprint."""
        fp = hierarchy.fingerprint
        if fp == self._fresh_arrival:
            # already added when the previous step's transition was recorded
            self._fresh_arrival = None
            return
        self._fresh_arrival = None

        # only used when fp is new, so the current node is never fp itself
        parent = self.graph.get_node(self.graph.current_node) if self.graph.current_node else None
        node = ScreenNode.from_hierarchy(
            hierarchy,
            depth=parent.depth + 1 if parent else 0,
            parent_fingerprint=parent.fingerprint if parent else None,
        )
        if self.graph.add_node(node):
            dispatch(self._observers, ExplorationEvent.SCREEN_DISCOVERED, node)
            self._stuck_counts[fp] = 0
        else:
            dispatch(self._observers, ExplorationEvent.SCREEN_REVISITED, self.graph.get_node(fp))
            self._stuck_counts[fp] = self._stuck_counts.get(fp, 0) + 1

    def _record(
        self,
        decision: ExplorationDecision,
        before: CompressedHierarchy,
        after: CompressedHierarchy,
        duration: float,
        passed: bool,
        verification: Optional[VerificationResult],
        was_retry: bool,
    ) -> None:
        self.machine.next(LoopState.RECORDING)
        self._steps_taken += 1
        if passed:
            self._successful += 1
        else:
            self._failed += 1
        self._remember_target(before.fingerprint, decision)

        src = before.fingerprint
        dst = after.fingerprint
        if not self.graph.has_visited(dst):
            origin = self.graph.get_node(src)
            node = ScreenNode.from_hierarchy(after, depth=origin.depth + 1, parent_fingerprint=src)
            self.graph.add_node(node)
            dispatch(self._observers, ExplorationEvent.SCREEN_DISCOVERED, node)
            self._stuck_counts[dst] = 0
            self._fresh_arrival = dst

        transition = self.graph.add_transition(src, dst, decision.to_action(), duration, was_successful=passed)
        self._transitions += 1
        dispatch(self._observers, ExplorationEvent.TRANSITION_RECORDED, transition)

        self._history.append(
            ExplorationStep.from_decision(
                decision, before, was_successful=passed, verification=verification, was_retry=was_retry,
            )
        )

    def _fail_step(
        self,
        error: Optional[ExplorationError],
        decision: Optional[ExplorationDecision] = None,
        hierarchy: Optional[CompressedHierarchy] = None,
    ) -> None:
        """Count a step that produced no transition."""
        if error is not None:
            dispatch(self._observers, ExplorationEvent.ERROR_ENCOUNTERED, error)
        self.machine.next(LoopState.RECORDING)
        self._steps_taken += 1
        self._failed += 1
        if decision is not None and hierarchy is not None:
            self._remember_target(hierarchy.fingerprint, decision)
            self._history.append(ExplorationStep.from_decision(decision, hierarchy, was_successful=False))

    def _remember_target(self, fingerprint: str, decision: ExplorationDecision) -> None:
        token = decision.target_element or decision.action
        self._tried_targets.setdefault(fingerprint, set()).add(token)
