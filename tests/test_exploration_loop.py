from __future__ import annotations

import asyncio

import pytest

from app_explorer.action_selector import HeuristicDecider
from app_explorer.capabilities import ExecutionOutcome
from app_explorer.config import ExplorationConfig, StuckPolicy
from app_explorer.decision import ExplorationDecision
from app_explorer.errors import DecisionError, DecisionErrorKind, ExecutionError, ExecutionErrorKind
from app_explorer.exploration_loop import ExplorationLoop, LoopState, LoopStateMachine, LoopTransitionError
from app_explorer.knowledge import NavigationGraph
from app_explorer.observer import ExplorationEvent
from app_explorer.result import TerminationReason

from fakes import (
    DASHBOARD_SCREEN,
    LOGIN_SCREEN,
    FakeApp,
    RecordingObserver,
    RepeatingDecider,
    ScriptedDecider,
    SlowDecider,
    tap,
)

SCREENS = {"login": LOGIN_SCREEN, "dashboard": DASHBOARD_SCREEN}
LOGIN_ROUTES = {("login", "tap", "loginButton"): "dashboard"}


def _config(steps: int = 5, **overrides) -> ExplorationConfig:
    return ExplorationConfig(steps=steps, settle_delay=0, decision_retry_delay=0, **overrides)


def _app(**kwargs) -> FakeApp:
    return FakeApp(SCREENS, "login", LOGIN_ROUTES, **kwargs)


def _loop(app, decider, config, observer=None, graph=None) -> ExplorationLoop:
    return ExplorationLoop(
        app, decider, app, config, observers=[observer] if observer else [], graph=graph,
    )


# --- end to end -----------------------------------------------------------

async def test_login_flow_counts_steps_screens_and_verifications() -> None:
    app = _app()
    decider = ScriptedDecider([
        tap("emailField"),
        tap("passwordField"),
        tap("loginButton", expected="welcomeMessage appears"),
    ])
    observer = RecordingObserver()

    result = await _loop(app, decider, _config(steps=3, history_window=1), observer).explore()

    assert result.termination == TerminationReason.STEP_BUDGET_EXHAUSTED
    assert result.screens_discovered == 2
    assert result.transitions == 3
    assert (result.successful_actions, result.failed_actions) == (1, 2)
    assert (result.verifications_performed, result.verifications_passed) == (3, 1)
    assert result.verifications_failed == 2
    assert [s.was_successful for s in result.steps] == [False, False, True]
    assert observer.count(ExplorationEvent.SCREEN_DISCOVERED) == 2
    assert observer.count(ExplorationEvent.SCREEN_REVISITED) == 2
    assert observer.count(ExplorationEvent.TRANSITION_RECORDED) == 3
    assert [window for _, window in decider.calls] == [0, 1, 1]


async def test_decider_done_ends_session_without_executing() -> None:
    app = _app()
    result = await _loop(app, ScriptedDecider([]), _config()).explore()

    assert result.termination == TerminationReason.DONE
    assert result.screens_discovered == 1
    assert result.transitions == 0
    assert app.executed == []


async def test_heuristic_decider_fills_login_form_then_finishes() -> None:
    app = _app()
    result = await _loop(app, HeuristicDecider(), _config(steps=10)).explore()

    assert result.termination == TerminationReason.DONE
    assert result.screens_discovered == 2
    assert [(d.action, d.target_element) for d in app.executed] == [
        ("type", "emailField"),
        ("type", "passwordField"),
        ("tap", "loginButton"),
        ("tap", "settingsButton"),
    ]
    assert (result.successful_actions, result.failed_actions) == (3, 1)


async def test_zero_step_budget_captures_nothing() -> None:
    app = _app()
    result = await _loop(app, ScriptedDecider([]), _config(steps=0)).explore()

    assert result.termination == TerminationReason.STEP_BUDGET_EXHAUSTED
    assert app.captures == 0
    assert result.screens_discovered == 0


# --- verification and retries ------------------------------------------------

async def test_failed_verification_retries_with_alternative() -> None:
    app = _app()
    decider = ScriptedDecider([tap("helpButton", alternatives=("tap_loginButton",))])

    result = await _loop(app, decider, _config(steps=1)).explore()

    assert [d.target_element for d in app.executed] == ["helpButton", "loginButton"]
    assert result.retry_attempts == 1
    assert (result.verifications_performed, result.verifications_passed) == (2, 1)
    assert result.successful_actions == 1
    [transition] = result.navigation_graph.transitions
    assert transition.action.target_element == "loginButton"
    assert result.steps[0].was_retry


async def test_retries_are_bounded_by_max_retries() -> None:
    app = _app()
    decider = ScriptedDecider([tap("a", alternatives=("tap_b", "tap_c", "tap_d"))])

    result = await _loop(app, decider, _config(steps=1, max_retries=2)).explore()

    assert [d.target_element for d in app.executed] == ["a", "b", "c"]
    assert result.retry_attempts == 2
    assert result.verifications_performed == 3
    assert result.failed_actions == 1
    assert result.steps[0].target_element == "c"


async def test_no_retry_when_max_retries_is_zero() -> None:
    app = _app()
    decider = ScriptedDecider([tap("a", alternatives=("tap_loginButton",))])

    result = await _loop(app, decider, _config(steps=1, max_retries=0)).explore()

    assert len(app.executed) == 1
    assert result.retry_attempts == 0


async def test_unparseable_alternative_stops_retrying() -> None:
    app = _app()
    decider = ScriptedDecider([tap("a", alternatives=("wiggle the phone", "tap_loginButton"))])

    result = await _loop(app, decider, _config(steps=1)).explore()

    assert len(app.executed) == 1
    assert result.retry_attempts == 0
    assert result.failed_actions == 1


async def test_done_alternative_records_the_failed_attempt_then_ends_session() -> None:
    app = _app()
    decider = ScriptedDecider([tap("emailField", alternatives=("done",))])

    result = await _loop(app, decider, _config()).explore()

    assert result.termination == TerminationReason.DONE
    assert len(app.executed) == 1
    assert result.retry_attempts == 0
    assert result.verifications_performed == 1
    assert result.transitions == 1
    assert result.failed_actions == 1
    assert result.steps[0].target_element == "emailField"
    assert result.steps[0].was_successful is False


async def test_alternative_that_fails_to_execute_keeps_the_verified_attempt() -> None:
    app = _app()
    app.outcomes = [ExecutionOutcome.CONTINUE, ExecutionError(ExecutionErrorKind.ELEMENT_NOT_FOUND, "ghost")]
    observer = RecordingObserver()
    decider = ScriptedDecider([tap("emailField", alternatives=("tap_ghost",))])

    result = await _loop(app, decider, _config(steps=1), observer).explore()

    assert [d.target_element for d in app.executed] == ["emailField", "ghost"]
    assert result.retry_attempts == 1
    assert result.transitions == 1
    assert result.navigation_graph.transitions[0].action.target_element == "emailField"
    assert (result.successful_actions, result.failed_actions) == (0, 1)
    assert len(result.steps) == 1
    assert result.steps[0].target_element == "emailField"
    assert observer.count(ExplorationEvent.ERROR_ENCOUNTERED) == 1


async def test_alternative_that_stops_the_executor_keeps_the_verified_attempt() -> None:
    app = _app()
    app.outcomes = [ExecutionOutcome.CONTINUE, ExecutionOutcome.STOP]
    decider = ScriptedDecider([tap("emailField", alternatives=("tap_passwordField",))])

    result = await _loop(app, decider, _config()).explore()

    assert result.termination == TerminationReason.DONE
    assert len(app.executed) == 2
    assert result.transitions == 1
    assert result.failed_actions == 1


async def test_verification_disabled_counts_every_executed_action_as_success() -> None:
    app = _app()
    result = await _loop(app, ScriptedDecider([tap("emailField")]), _config(steps=1, enable_verification=False)).explore()

    assert result.successful_actions == 1
    assert result.verifications_performed == 0
    assert result.steps[0].verification is None


# --- stuck handling ------------------------------------------------------------

async def test_stuck_session_aborts() -> None:
    app = _app()
    decider = RepeatingDecider(tap("emailField"))
    observer = RecordingObserver()

    result = await _loop(app, decider, _config(steps=10, stuck_threshold=1), observer).explore()

    assert result.termination == TerminationReason.STUCK_ABORTED
    assert decider.calls == 2
    assert result.transitions == 2
    assert observer.count(ExplorationEvent.STUCK_DETECTED) == 1


async def test_stuck_counts_are_kept_per_screen() -> None:
    routes = {("login", "tap", "go"): "dashboard", ("dashboard", "tap", "go"): "login"}
    app = FakeApp(SCREENS, "login", routes)
    decider = RepeatingDecider(tap("go"))

    result = await _loop(app, decider, _config(steps=10, stuck_threshold=1)).explore()

    # each screen is revisited once before login crosses the threshold
    assert result.termination == TerminationReason.STUCK_ABORTED
    assert decider.calls == 4
    assert result.transitions == 4


async def test_force_action_taps_untried_element() -> None:
    app = _app()
    decider = RepeatingDecider(tap("emailField"))
    observer = RecordingObserver()
    config = _config(steps=3, stuck_threshold=1, stuck_policy=StuckPolicy.FORCE_ACTION)

    result = await _loop(app, decider, config, observer).explore()

    assert decider.calls == 2
    assert app.executed[-1].target_element == "loginButton"
    assert result.screens_discovered == 2
    assert result.termination == TerminationReason.STEP_BUDGET_EXHAUSTED
    assert observer.count(ExplorationEvent.BEFORE_DECISION) == 2
    assert observer.count(ExplorationEvent.AFTER_DECISION) == 3


# --- failures ----------------------------------------------------------------

async def test_recoverable_decision_error_is_retried() -> None:
    app = _app()
    decider = ScriptedDecider([DecisionError(DecisionErrorKind.RATE_LIMITED), tap("loginButton")])
    observer = RecordingObserver()

    result = await _loop(app, decider, _config(steps=1, decision_retries=2), observer).explore()

    assert len(decider.calls) == 2
    assert result.successful_actions == 1
    assert observer.count(ExplorationEvent.ERROR_ENCOUNTERED) == 0


async def test_exhausted_decision_retries_fail_the_step() -> None:
    app = _app()
    decider = ScriptedDecider([DecisionError(DecisionErrorKind.NETWORK), DecisionError(DecisionErrorKind.NETWORK)])
    observer = RecordingObserver()

    result = await _loop(app, decider, _config(steps=1, decision_retries=2), observer).explore()

    assert result.termination == TerminationReason.STEP_BUDGET_EXHAUSTED
    assert result.failed_actions == 1
    assert result.transitions == 0
    assert result.steps == ()
    assert observer.count(ExplorationEvent.ERROR_ENCOUNTERED) == 1


async def test_invalid_credentials_abort_immediately() -> None:
    app = _app()
    decider = ScriptedDecider([DecisionError(DecisionErrorKind.INVALID_CREDENTIALS), tap("loginButton")])
    loop = _loop(app, decider, _config(decision_retries=3))

    result = await loop.explore()

    assert result.termination == TerminationReason.ERROR_ABORTED
    assert loop.state == LoopState.ERROR_ABORTED
    assert len(decider.calls) == 1
    assert app.executed == []


async def test_execution_error_is_a_failed_step_without_verification() -> None:
    app = _app()
    app.outcomes = [ExecutionError(ExecutionErrorKind.ELEMENT_NOT_FOUND, "ghost")]
    observer = RecordingObserver()

    result = await _loop(app, ScriptedDecider([tap("ghost")]), _config(steps=1), observer).explore()

    assert result.failed_actions == 1
    assert result.transitions == 0
    assert result.verifications_performed == 0
    assert result.steps[0].was_successful is False
    assert observer.count(ExplorationEvent.ERROR_ENCOUNTERED) == 1


async def test_unknown_action_is_a_failed_step_and_never_executed() -> None:
    app = _app()
    observer = RecordingObserver()
    decider = ScriptedDecider([ExplorationDecision(action="longpress", target_element="emailField", reasoning="hold")])

    result = await _loop(app, decider, _config(steps=1), observer).explore()

    assert result.termination == TerminationReason.STEP_BUDGET_EXHAUSTED
    assert app.executed == []
    assert result.failed_actions == 1
    assert result.transitions == 0
    assert result.steps[0].action == "longpress"
    assert observer.count(ExplorationEvent.ERROR_ENCOUNTERED) == 1


async def test_failed_outcome_is_a_failed_step() -> None:
    app = _app()
    app.outcomes = [ExecutionOutcome.FAILED]

    result = await _loop(app, ScriptedDecider([tap("loginButton")]), _config(steps=1)).explore()

    assert result.failed_actions == 1
    assert result.transitions == 0


async def test_stop_outcome_ends_session() -> None:
    app = _app()
    app.outcomes = [ExecutionOutcome.STOP]

    result = await _loop(app, ScriptedDecider([tap("loginButton")]), _config()).explore()

    assert result.termination == TerminationReason.DONE
    assert result.transitions == 0


async def test_capture_failure_fails_only_that_step() -> None:
    app = _app(capture_failures=1)
    observer = RecordingObserver()

    result = await _loop(app, ScriptedDecider([]), _config(steps=3), observer).explore()

    assert result.failed_actions == 1
    assert result.screens_discovered == 1
    assert result.termination == TerminationReason.DONE
    assert observer.count(ExplorationEvent.ERROR_ENCOUNTERED) == 1


# --- cancellation and timeout ------------------------------------------------

async def test_cancel_returns_partial_result() -> None:
    app = _app()
    loop = _loop(app, SlowDecider(), _config())

    task = asyncio.create_task(loop.explore())
    await asyncio.sleep(0.05)
    loop.cancel()
    result = await asyncio.wait_for(task, timeout=2)

    assert result.termination == TerminationReason.CANCELLED
    assert loop.state == LoopState.CANCELLED
    assert result.screens_discovered == 1
    assert result.transitions == 0


async def test_cancel_before_start() -> None:
    app = _app()
    loop = _loop(app, ScriptedDecider([]), _config())
    loop.cancel()

    result = await loop.explore()

    assert result.termination == TerminationReason.CANCELLED
    assert app.captures == 0


async def test_session_timeout() -> None:
    app = _app()
    result = await asyncio.wait_for(
        _loop(app, SlowDecider(), _config(session_timeout=0.05)).explore(), timeout=2,
    )

    assert result.termination == TerminationReason.TIMED_OUT


async def test_cancel_during_execution_records_nothing() -> None:
    class SlowApp(FakeApp):
        async def execute(self, decision):
            await asyncio.sleep(10)
            return await super().execute(decision)

    app = SlowApp(SCREENS, "login", LOGIN_ROUTES)
    loop = _loop(app, ScriptedDecider([tap("loginButton")]), _config())

    task = asyncio.create_task(loop.explore())
    await asyncio.sleep(0.05)
    loop.cancel()
    result = await asyncio.wait_for(task, timeout=2)

    assert result.termination == TerminationReason.CANCELLED
    assert result.transitions == 0
    assert result.navigation_graph.transitions == []


# --- resumption ----------------------------------------------------------------

async def test_resumed_session_recognises_known_screens() -> None:
    first = await _loop(_app(), ScriptedDecider([tap("loginButton")]), _config(steps=1)).explore()
    restored = NavigationGraph.from_json(first.navigation_graph.to_json())

    app = FakeApp(SCREENS, "dashboard")
    observer = RecordingObserver()
    result = await _loop(app, ScriptedDecider([]), _config(), observer, graph=restored).explore()

    assert result.screens_discovered == 2
    assert observer.count(ExplorationEvent.SCREEN_DISCOVERED) == 0
    assert observer.count(ExplorationEvent.SCREEN_REVISITED) == 1


# --- state machine -------------------------------------------------------------

def test_state_machine_accepts_a_full_step() -> None:
    machine = LoopStateMachine()
    for state in (
        LoopState.CAPTURING,
        LoopState.DECIDING,
        LoopState.EXECUTING,
        LoopState.VERIFYING,
        LoopState.RETRYING,
        LoopState.EXECUTING,
        LoopState.VERIFYING,
        LoopState.RECORDING,
        LoopState.DONE,
    ):
        machine.next(state)

    assert machine.is_terminal
    assert len(machine.history) == 9


def test_state_machine_rejects_illegal_transitions() -> None:
    machine = LoopStateMachine()
    with pytest.raises(LoopTransitionError):
        machine.next(LoopState.EXECUTING)

    machine.next(LoopState.DONE)
    with pytest.raises(LoopTransitionError):
        machine.next(LoopState.CAPTURING)
