"""Reconciliation of live and historical run data into one status view.

All transitions are pure reducers over :class:`ControllerState`:
``reduce(state, event, graph)`` returns the next state plus the effects
(timers, fetches) the caller must carry out. :class:`ReconciliationController`
wraps the reducer with the queries the UI renders from.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from . import resolver
from .config import ViewConfig
from .contracts import (
    RunRecord,
    RunSummary,
    StepResult,
    StepStatus,
    ViewMode,
    WaitingRun,
    coerce_status,
)
from .events import (
    Effect,
    Event,
    HistoryFailed,
    HistoryLoaded,
    HistoryRequested,
    NoticeRaised,
    NoticesDismissed,
    RunCompleted,
    RunFailed,
    RunFetched,
    RunSelected,
    StepUpdate,
    Tick,
    ViewModeChanged,
)
from .graph import GraphModel, Node, visual_steps
from .store import RunStore
from .utils.timefmt import format_duration

logger = logging.getLogger(__name__)

Effects = Tuple[Effect, ...]


class Notice(BaseModel):
    """Non-blocking, user-visible notification."""

    model_config = ConfigDict(frozen=True)

    level: Literal["info", "warning", "error"] = "warning"
    message: str
    operation: Optional[str] = None


class ControllerState(BaseModel):
    model_config = ConfigDict(frozen=True)

    view_mode: ViewMode = ViewMode.LIVE
    selected_run_id: Optional[str] = None
    selected_run: Optional[RunRecord] = None
    store: RunStore = Field(default_factory=RunStore)
    run_started_at: Optional[float] = None
    elapsed_ms: int = 0
    live_run_id: Optional[str] = None
    live_finalized: bool = False
    history_token: int = 0
    history_loading: bool = False
    notices: Tuple[Notice, ...] = ()


# ----------------------------------------------------------------------
# Reducers


def _activity_transition(
    state: ControllerState, was_active: bool, restarted: bool, at: float
) -> Tuple[ControllerState, Effects]:
    """Apply timer and auto-follow rules after the live results changed."""
    is_active = state.store.has_active()
    if is_active and (restarted or not was_active):
        update = {"run_started_at": at, "elapsed_ms": 0}
        if state.view_mode != ViewMode.LIVE:
            logger.info(f"Live run started, switching view from {state.view_mode.value} to live")
            update.update(view_mode=ViewMode.LIVE, selected_run_id=None, selected_run=None)
        return state.model_copy(update=update), (Effect.START_TIMER,)
    if was_active and not is_active:
        elapsed = state.elapsed_ms
        if state.run_started_at is not None:
            elapsed = max(0, int((at - state.run_started_at) * 1000))
        logger.info(f"Live run settled after {elapsed}ms")
        return (
            state.model_copy(update={"elapsed_ms": elapsed}),
            (Effect.STOP_TIMER, Effect.REFRESH_HISTORY),
        )
    return state, ()


def _on_step_update(
    state: ControllerState, event: StepUpdate, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    store = state.store
    was_active = store.has_active()
    fresh = (
        not store.live_results
        or state.live_finalized
        or bool(event.run_id and state.live_run_id and event.run_id != state.live_run_id)
    )
    update: Dict[str, object] = {}
    if fresh:
        store = store.cleared_live()
        update.update(live_run_id=event.run_id, live_finalized=False)
    elif event.run_id and not state.live_run_id:
        update["live_run_id"] = event.run_id

    update["store"] = store.with_step(
        event.node_id, event.status, output=event.output, duration_ms=event.duration_ms
    )
    return _activity_transition(state.model_copy(update=update), was_active, fresh, event.at)


def _on_run_finished(
    state: ControllerState, event: RunCompleted | RunFailed, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    if state.live_finalized or not state.store.live_results:
        logger.debug("Ignoring run end signal without a live run")
        return state, ()
    was_active = state.store.has_active()
    update: Dict[str, object] = {"live_finalized": True}
    if isinstance(event, RunFailed):
        update["store"] = state.store.with_active_settled(StepStatus.ERROR)
        message = event.error or "Workflow run failed"
        update["notices"] = state.notices + (
            Notice(level="error", message=message, operation="run"),
        )
    else:
        update["store"] = state.store.with_unrun_skipped(graph).with_active_settled(
            StepStatus.SKIPPED
        )
    return _activity_transition(state.model_copy(update=update), was_active, False, event.at)


def _on_tick(state: ControllerState, event: Tick, graph: GraphModel) -> Tuple[ControllerState, Effects]:
    if state.run_started_at is None or not state.store.has_active():
        return state, ()
    elapsed = max(0, int((event.at - state.run_started_at) * 1000))
    return state.model_copy(update={"elapsed_ms": elapsed}), ()


def _on_view_mode(
    state: ControllerState, event: ViewModeChanged, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    update: Dict[str, object] = {"view_mode": event.mode}
    if event.mode != ViewMode.DETAIL:
        update.update(selected_run_id=None, selected_run=None)
    return state.model_copy(update=update), ()


def _on_run_selected(
    state: ControllerState, event: RunSelected, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    record = state.store.find(event.run_id)
    new_state = state.model_copy(
        update={
            "view_mode": ViewMode.DETAIL,
            "selected_run_id": event.run_id,
            "selected_run": record,
        }
    )
    return new_state, (() if record is not None else (Effect.FETCH_SELECTED,))


def _on_run_fetched(
    state: ControllerState, event: RunFetched, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    if state.view_mode != ViewMode.DETAIL or state.selected_run_id != event.run.id:
        logger.debug(f"Discarding stale detail response for run {event.run.id}")
        return state, ()
    return state.model_copy(update={"selected_run": event.run}), ()


def _on_history_requested(
    state: ControllerState, event: HistoryRequested, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    return state.model_copy(update={"history_token": event.token, "history_loading": True}), ()


def _on_history_loaded(
    state: ControllerState, event: HistoryLoaded, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    if event.token != state.history_token:
        logger.debug(
            f"Discarding stale history response {event.token} (latest {state.history_token})"
        )
        return state, ()
    store = state.store.with_history(event.runs)
    update: Dict[str, object] = {"store": store, "history_loading": False}
    if state.selected_run_id is not None:
        refreshed = store.find(state.selected_run_id)
        if refreshed is not None:
            update["selected_run"] = refreshed
    logger.info(f"Loaded {len(event.runs)} runs into history")
    return state.model_copy(update=update), ()


def _on_history_failed(
    state: ControllerState, event: HistoryFailed, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    if event.token != state.history_token:
        logger.debug(f"Discarding stale history failure {event.token}")
        return state, ()
    notice = Notice(level="warning", message=event.error, operation="list_runs")
    return (
        state.model_copy(
            update={"history_loading": False, "notices": state.notices + (notice,)}
        ),
        (),
    )


def _on_notice_raised(
    state: ControllerState, event: NoticeRaised, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    notice = Notice(level=event.level, message=event.message, operation=event.operation)
    return state.model_copy(update={"notices": state.notices + (notice,)}), ()


def _on_notices_dismissed(
    state: ControllerState, event: NoticesDismissed, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    return state.model_copy(update={"notices": ()}), ()


_REDUCERS = {
    StepUpdate: _on_step_update,
    RunCompleted: _on_run_finished,
    RunFailed: _on_run_finished,
    Tick: _on_tick,
    ViewModeChanged: _on_view_mode,
    RunSelected: _on_run_selected,
    RunFetched: _on_run_fetched,
    HistoryRequested: _on_history_requested,
    HistoryLoaded: _on_history_loaded,
    HistoryFailed: _on_history_failed,
    NoticeRaised: _on_notice_raised,
    NoticesDismissed: _on_notices_dismissed,
}


def reduce(
    state: ControllerState, event: Event, graph: GraphModel
) -> Tuple[ControllerState, Effects]:
    """Apply one event and return the next state and requested effects."""
    handler = _REDUCERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unsupported event type: {type(event).__name__}")
    return handler(state, event, graph)


def replay(
    graph: GraphModel, events: Iterable[Event], state: Optional[ControllerState] = None
) -> ControllerState:
    """Fold ``events`` over ``state`` (or a fresh state), ignoring effects."""
    state = state or ControllerState()
    for event in events:
        state, _ = reduce(state, event, graph)
    return state


# ----------------------------------------------------------------------
# Controller


class ReconciliationController:
    """Decides which per-node status map is current for one workflow."""

    def __init__(
        self,
        graph: GraphModel,
        view_config: Optional[ViewConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.graph = graph
        self.view_config = view_config or ViewConfig()
        self.clock = clock
        self.state = ControllerState()

    def dispatch(self, event: Event) -> Effects:
        self.state, effects = reduce(self.state, event, self.graph)
        return effects

    # ------------------------------------------------------------------
    # Commands
    def on_live_event(
        self,
        node_id: str,
        status: StepStatus | str,
        output: object = None,
        duration_ms: Optional[int] = None,
        run_id: Optional[str] = None,
    ) -> Effects:
        """Merge one pushed per-node update into the live results."""
        return self.dispatch(
            StepUpdate(
                node_id=node_id,
                status=coerce_status(status, StepStatus.SUCCESS),
                output=output,
                duration_ms=duration_ms,
                run_id=run_id,
                at=self.clock(),
            )
        )

    def complete_run(self, run_id: Optional[str] = None) -> Effects:
        return self.dispatch(RunCompleted(run_id=run_id, at=self.clock()))

    def fail_run(self, run_id: Optional[str] = None, error: Optional[str] = None) -> Effects:
        return self.dispatch(RunFailed(run_id=run_id, error=error, at=self.clock()))

    def tick(self) -> Effects:
        return self.dispatch(Tick(at=self.clock()))

    def set_view_mode(self, mode: ViewMode | str) -> Effects:
        return self.dispatch(ViewModeChanged(mode=ViewMode(mode)))

    def select_run(self, run_id: str) -> Effects:
        return self.dispatch(RunSelected(run_id=run_id))

    def begin_history_refresh(self) -> int:
        """Issue a new history request token; older responses become stale."""
        token = self.state.history_token + 1
        self.dispatch(HistoryRequested(token=token))
        return token

    def dismiss_notices(self) -> None:
        self.dispatch(NoticesDismissed())

    # ------------------------------------------------------------------
    # Queries
    @property
    def view_mode(self) -> ViewMode:
        return self.state.view_mode

    @property
    def history(self) -> Tuple[RunRecord, ...]:
        return self.state.store.history

    @property
    def live_results(self) -> Dict[str, StepResult]:
        return self.state.store.live_results

    @property
    def notices(self) -> Tuple[Notice, ...]:
        return self.state.notices

    def has_active_run(self) -> bool:
        return self.state.store.has_active()

    def waiting_runs(self) -> List[WaitingRun]:
        return self.state.store.waiting_runs()

    def _resolve(self, run: RunRecord) -> Dict[str, StepResult]:
        return resolver.resolve_run(self.graph, run, self.view_config.trigger_aliases)

    def _live_view(self) -> Dict[str, StepResult]:
        live = self.state.store.live_results
        return {
            node.id: live.get(node.id)
            or StepResult(node_id=node.id, status=StepStatus.PENDING)
            for node in self.graph.nodes
        }

    def current_view(self) -> Dict[str, StepResult]:
        """Return the status map to render, total over the graph's nodes.

        An active live run always wins so a newly started run is never
        hidden behind a historical view.
        """
        state = self.state
        if self.has_active_run():
            return self._live_view()
        if state.view_mode == ViewMode.DETAIL and state.selected_run is not None:
            return self._resolve(state.selected_run)
        if state.view_mode == ViewMode.LIVE and not state.store.live_results:
            latest = state.store.latest()
            if latest is not None:
                return self._resolve(latest)
        return self._live_view()

    def run_summary(self) -> RunSummary:
        if self.has_active_run():
            return RunSummary.RUNNING
        statuses = {step.status for step in self.current_view().values()}
        if StepStatus.ERROR in statuses:
            return RunSummary.ERROR
        if StepStatus.SUCCESS in statuses:
            return RunSummary.SUCCESS
        return RunSummary.IDLE

    def elapsed_ms(self) -> int:
        return self.state.elapsed_ms

    def visual_steps(self) -> List[Node]:
        return visual_steps(self.graph, self.view_config.row_tolerance)

    def status_line(self) -> str:
        """One-line header text describing what the view currently shows."""
        state = self.state
        if self.has_active_run():
            return f"Running for {format_duration(self.elapsed_ms())}"
        if state.view_mode == ViewMode.DETAIL and state.selected_run is not None:
            created = state.selected_run.created_at
            when = created.strftime("%Y-%m-%d %H:%M:%S") if created else "unknown time"
            return f"Run details • {when}"
        if state.view_mode == ViewMode.HISTORY:
            return "View past executions"
        if state.view_mode == ViewMode.WAITING:
            return "Runs waiting for approval"
        summary = self.run_summary()
        if summary == RunSummary.SUCCESS:
            return "Run successful"
        if summary == RunSummary.ERROR:
            return "Run failed"
        return "Ready for execution"
