"""Core data contracts for run projection."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    """Status of a single workflow step within one run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"
    WAITING = "waiting"
    REJECTED = "rejected"

    @property
    def is_active(self) -> bool:
        return self in (StepStatus.RUNNING, StepStatus.WAITING)

    @property
    def is_terminal(self) -> bool:
        return self in (
            StepStatus.SUCCESS,
            StepStatus.ERROR,
            StepStatus.SKIPPED,
            StepStatus.REJECTED,
        )


# Status strings emitted by upstream runners that are not StepStatus values.
_STATUS_ALIASES = {
    "completed": StepStatus.SUCCESS,
    "complete": StepStatus.SUCCESS,
    "done": StepStatus.SUCCESS,
    "ok": StepStatus.SUCCESS,
    "failed": StepStatus.ERROR,
    "failure": StepStatus.ERROR,
    "paused": StepStatus.WAITING,
}


def coerce_status(value: Any, default: StepStatus) -> StepStatus:
    """Map a loosely typed status value onto :class:`StepStatus`.

    Unknown or empty values yield ``default``.
    """
    if isinstance(value, StepStatus):
        return value
    if not isinstance(value, str) or not value:
        return default
    key = value.strip().lower()
    try:
        return StepStatus(key)
    except ValueError:
        return _STATUS_ALIASES.get(key, default)


class ViewMode(str, Enum):
    LIVE = "live"
    HISTORY = "history"
    DETAIL = "detail"
    WAITING = "waiting"


class RunSummary(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"
    SUCCESS = "success"


class StepResult(BaseModel):
    """Projected status of one node for the current view."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    status: StepStatus
    output: Any = None
    duration_ms: int = Field(default=0, ge=0)


class RunRecord(BaseModel):
    """Mirror of one run as reported by the execution engine.

    ``result_payload`` is kept raw: it may be an object or a JSON-encoded
    string and is only interpreted by the resolver.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    status: str
    result_payload: Any = Field(default=None, alias="result")
    created_at: Optional[datetime] = None
    current_context: Any = None
    flow_id: Optional[str] = None
    name: Optional[str] = None
    logs: List[str] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, v: Any) -> str:
        return str(v or "").strip().lower()

    @property
    def is_live(self) -> bool:
        return self.status in ("running", "waiting")

    def context(self) -> Dict[str, Any]:
        """Return ``current_context`` decoded to a dict (empty if unusable)."""
        raw = self.current_context
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError:
                logger.debug(f"Ignoring undecodable current_context on run {self.id}")
                return {}
        return raw if isinstance(raw, dict) else {}

    def as_waiting(self) -> Optional["WaitingRun"]:
        """Return this record as a :class:`WaitingRun` when it is paused."""
        if self.status != "waiting":
            return None
        return WaitingRun.model_validate(self.model_dump(by_alias=True))


class WaitingRun(RunRecord):
    """A run paused at a human-approval step.

    The narrowed ``status`` makes a non-waiting run unrepresentable here.
    """

    status: Literal["waiting"]

    def wait_info(self) -> Dict[str, Any]:
        info = self.context().get("wait_info")
        return info if isinstance(info, dict) else {}


class ApprovalDecision(str, Enum):
    RESUME = "resume"
    REJECT = "reject"


class ChannelMessage(BaseModel):
    """Envelope pushed by the execution engine for the in-flight run."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event: Literal["step-run-start", "step-run-finish", "run-complete", "flow-failed"]
    flow_id: str
    run_id: Optional[str] = None
    node_id: Optional[str] = None
    status: Optional[str] = None
    output: Any = None
    duration_ms: Optional[int] = Field(default=None, alias="durationMs")
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ChannelMessage":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)
