"""Human-in-the-loop approval of paused runs.

The gateway never changes a run locally. A decision is sent to the engine
and the outcome becomes visible only through the next history refresh.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Literal, Optional

from pydantic import BaseModel

from .config import ApprovalConfig
from .constants import DEFAULT_APPROVAL_INSTRUCTIONS
from .contracts import ApprovalDecision, RunRecord, WaitingRun
from .errors import ApprovalStateError, TransportFailure
from .api.base import RunsApi

logger = logging.getLogger(__name__)


class ApprovalState(str, Enum):
    NONE = "none"
    OPENED = "opened"
    SUBMITTING = "submitting"
    FAILED = "failed"


def approval_instructions(run: WaitingRun) -> str:
    """Instruction text of the first paused step, or a generic prompt."""
    wait_info = run.wait_info()
    if wait_info:
        first = next(iter(wait_info.values()))
        if isinstance(first, dict) and first.get("instructions"):
            return str(first["instructions"])
    return DEFAULT_APPROVAL_INSTRUCTIONS


class ApprovalRequest(BaseModel):
    """An open approval dialog for one waiting run."""

    run: WaitingRun
    instructions: str
    decision: Literal["pending", "approved", "rejected"] = "pending"
    submitting: bool = False
    error: Optional[str] = None

    @property
    def state(self) -> ApprovalState:
        if self.submitting:
            return ApprovalState.SUBMITTING
        if self.error is not None:
            return ApprovalState.FAILED
        return ApprovalState.OPENED


class ApprovalGateway:
    """Opens, submits and dismisses approval requests for one workflow."""

    def __init__(
        self,
        flow_id: str,
        api: RunsApi,
        on_resolved: Optional[Callable[[], Awaitable[object]]] = None,
        config: Optional[ApprovalConfig] = None,
    ) -> None:
        self.flow_id = flow_id
        self._api = api
        self._on_resolved = on_resolved
        self.config = config or ApprovalConfig()
        self.request: Optional[ApprovalRequest] = None

    @property
    def state(self) -> ApprovalState:
        return self.request.state if self.request else ApprovalState.NONE

    @staticmethod
    def pending(history: Iterable[RunRecord]) -> List[WaitingRun]:
        """Return the runs of ``history`` that are waiting for a decision."""
        return [w for w in (run.as_waiting() for run in history) if w is not None]

    def open(self, run: WaitingRun) -> ApprovalRequest:
        """Open the dialog for ``run``, discarding any request already open."""
        if self.request is not None:
            logger.debug(
                f"Discarding approval request for run {self.request.run.id} in favour of {run.id}"
            )
        self.request = ApprovalRequest(run=run, instructions=approval_instructions(run))
        return self.request

    def dismiss(self) -> None:
        self.request = None

    async def submit(
        self, decision: ApprovalDecision | str, approver: Optional[str] = None
    ) -> bool:
        """Send ``decision`` for the open request.

        Returns ``True`` once the engine accepted it; the request is then
        closed and a history refresh is triggered. On failure the request
        stays open with ``error`` set so the user can retry; nothing is
        retried automatically.
        """
        request = self.request
        if request is None:
            raise ApprovalStateError("No approval request is open")
        if request.submitting:
            raise ApprovalStateError(f"Decision for run {request.run.id} is already being submitted")

        decision = ApprovalDecision(decision)
        request.submitting = True
        request.error = None
        request.decision = "approved" if decision == ApprovalDecision.RESUME else "rejected"
        try:
            await self._api.submit_decision(
                self.flow_id,
                request.run.id,
                decision,
                approver or self.config.approver,
                self.config.source,
            )
        except TransportFailure as exc:
            logger.warning(f"Approval {decision.value} for run {request.run.id} failed: {exc}")
            request.decision = "pending"
            request.error = str(exc)
            return False
        except BaseException:
            # Cancelled or unexpected error: leave the dialog retryable.
            request.decision = "pending"
            raise
        finally:
            request.submitting = False

        logger.info(f"Run {request.run.id} {decision.value}d by {approver or self.config.approver}")
        if self.request is request:
            self.request = None
        if self._on_resolved is not None:
            await self._on_resolved()
        return True
