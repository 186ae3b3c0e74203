"""Protocol for the execution engine's pull API."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import ApprovalDecision, RunRecord


class RunsApi(Protocol):
    """Remote run history and approval actions for workflows."""

    async def list_runs(self, flow_id: str) -> list[RunRecord]:
        """Return the run history of ``flow_id``, newest first."""

    async def get_run(self, flow_id: str, run_id: str) -> Optional[RunRecord]:
        """Return one run, or ``None`` when the engine does not know it."""

    async def submit_decision(
        self,
        flow_id: str,
        run_id: str,
        decision: ApprovalDecision,
        approver: Optional[str],
        source: str,
    ) -> None:
        """Resume or reject a waiting run."""

    async def aclose(self) -> None:
        """Release network resources."""
