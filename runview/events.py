"""Events consumed by the reconciliation reducer and the effects it requests."""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

from .contracts import ChannelMessage, RunRecord, StepStatus, ViewMode, coerce_status


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class StepUpdate(_Event):
    """Per-node update for the in-flight run."""

    node_id: str
    status: StepStatus
    output: Any = None
    duration_ms: Optional[int] = None
    run_id: Optional[str] = None
    at: float


class RunCompleted(_Event):
    run_id: Optional[str] = None
    at: float


class RunFailed(_Event):
    run_id: Optional[str] = None
    error: Optional[str] = None
    at: float


class Tick(_Event):
    at: float


class ViewModeChanged(_Event):
    mode: ViewMode


class RunSelected(_Event):
    run_id: str


class RunFetched(_Event):
    """Single-run detail response for a previously selected run."""

    run: RunRecord


class HistoryRequested(_Event):
    token: int


class HistoryLoaded(_Event):
    token: int
    runs: List[RunRecord]


class HistoryFailed(_Event):
    token: int
    error: str


class NoticeRaised(_Event):
    level: Literal["info", "warning", "error"] = "warning"
    message: str
    operation: Optional[str] = None


class NoticesDismissed(_Event):
    pass


Event = Union[
    StepUpdate,
    RunCompleted,
    RunFailed,
    Tick,
    ViewModeChanged,
    RunSelected,
    RunFetched,
    HistoryRequested,
    HistoryLoaded,
    HistoryFailed,
    NoticeRaised,
    NoticesDismissed,
]


class Effect(str, Enum):
    """Side effects the session performs after a reducer step."""

    START_TIMER = "start_timer"
    STOP_TIMER = "stop_timer"
    REFRESH_HISTORY = "refresh_history"
    FETCH_SELECTED = "fetch_selected"


def from_channel(message: ChannelMessage, at: float) -> Optional[Event]:
    """Translate a push channel envelope into a reducer event.

    Returns ``None`` for step messages that do not name a node.
    """
    if message.event == "run-complete":
        return RunCompleted(run_id=message.run_id, at=at)
    if message.event == "flow-failed":
        return RunFailed(run_id=message.run_id, error=message.error, at=at)
    if not message.node_id:
        return None
    if message.event == "step-run-start":
        return StepUpdate(
            node_id=message.node_id,
            status=StepStatus.RUNNING,
            output=message.output,
            duration_ms=message.duration_ms,
            run_id=message.run_id,
            at=at,
        )
    return StepUpdate(
        node_id=message.node_id,
        status=coerce_status(message.status, StepStatus.SUCCESS),
        output=message.output,
        duration_ms=message.duration_ms,
        run_id=message.run_id,
        at=at,
    )
