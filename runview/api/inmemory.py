"""In-memory stand-in for the execution engine's runs API."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from ..contracts import ApprovalDecision, RunRecord
from .base import RunsApi


class InMemoryRunsApi(RunsApi):
    """Keep run records in local memory.

    Useful for tests or local previews. Decisions are applied the way the
    engine applies them: a resumed run goes back to ``running`` and a
    rejected run becomes ``rejected``.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, List[RunRecord]] = {}
        self.decisions: List[Tuple[str, str, ApprovalDecision, Optional[str], str]] = []

    def add_run(self, flow_id: str, run: RunRecord) -> None:
        """Record a copy of ``run`` as the newest entry of ``flow_id``."""
        record = RunRecord.model_validate(
            {**run.model_dump(by_alias=True), "flow_id": run.flow_id or flow_id}
        )
        self._runs.setdefault(flow_id, []).insert(0, record)

    def update_run(self, flow_id: str, run_id: str, **changes: object) -> None:
        """Apply engine-side changes (status, result...) to a stored run."""
        runs = self._runs.get(flow_id, [])
        for index, run in enumerate(runs):
            if run.id == run_id:
                runs[index] = RunRecord.model_validate(
                    {**run.model_dump(by_alias=True), **changes}
                )
                return
        raise KeyError(run_id)

    async def list_runs(self, flow_id: str) -> list[RunRecord]:
        return [run.model_copy(deep=True) for run in self._runs.get(flow_id, [])]

    async def get_run(self, flow_id: str, run_id: str) -> Optional[RunRecord]:
        for run in self._runs.get(flow_id, []):
            if run.id == run_id:
                return run.model_copy(deep=True)
        return None

    async def submit_decision(
        self,
        flow_id: str,
        run_id: str,
        decision: ApprovalDecision,
        approver: Optional[str],
        source: str,
    ) -> None:
        self.decisions.append((flow_id, run_id, decision, approver, source))
        status = "running" if decision == ApprovalDecision.RESUME else "rejected"
        if any(run.id == run_id for run in self._runs.get(flow_id, [])):
            self.update_run(flow_id, run_id, status=status)

    async def aclose(self) -> None:
        pass
