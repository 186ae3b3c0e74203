"""Run history and live results for one workflow."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .contracts import RunRecord, StepResult, StepStatus, WaitingRun
from .graph import GraphModel, NodeKind

logger = logging.getLogger(__name__)


class RunStore(BaseModel):
    """Canonical run history plus the accumulating results of the live run.

    Instances are immutable; every update returns a new store so reducers
    can compare before/after states. ``history`` is kept in server order
    (newest first) and never merged with local entries.
    """

    model_config = ConfigDict(frozen=True)

    history: Tuple[RunRecord, ...] = ()
    live_results: Dict[str, StepResult] = Field(default_factory=dict)

    # ------------------------------------------------------------------
    # History
    def with_history(self, runs: List[RunRecord]) -> "RunStore":
        return self.model_copy(update={"history": tuple(runs)})

    def latest(self) -> Optional[RunRecord]:
        return self.history[0] if self.history else None

    def find(self, run_id: str) -> Optional[RunRecord]:
        for run in self.history:
            if run.id == run_id:
                return run
        return None

    def waiting_runs(self) -> List[WaitingRun]:
        return [w for w in (run.as_waiting() for run in self.history) if w is not None]

    # ------------------------------------------------------------------
    # Live results
    def has_active(self) -> bool:
        return any(r.status.is_active for r in self.live_results.values())

    def cleared_live(self) -> "RunStore":
        return self.model_copy(update={"live_results": {}})

    def with_step(
        self,
        node_id: str,
        status: StepStatus,
        output: Any = None,
        duration_ms: Optional[int] = None,
    ) -> "RunStore":
        """Merge one per-node update into the live results.

        A node whose status is already terminal keeps it: late or
        out-of-order updates for it are ignored.
        """
        current = self.live_results.get(node_id)
        if current is not None and current.status.is_terminal:
            logger.debug(
                f"Ignoring {status.value} update for node {node_id}: already {current.status.value}"
            )
            return self

        update: Dict[str, Any] = {"status": status}
        if output is not None:
            update["output"] = output
        if duration_ms is not None:
            update["duration_ms"] = max(0, int(duration_ms))

        if current is None:
            step = StepResult(node_id=node_id, **update)
        else:
            step = current.model_copy(update=update)
        live = dict(self.live_results)
        live[node_id] = step
        return self.model_copy(update={"live_results": live})

    def with_unrun_skipped(self, graph: GraphModel) -> "RunStore":
        """Mark every renderable node without a live result as skipped."""
        live = dict(self.live_results)
        for node in graph.nodes:
            if node.kind in (NodeKind.END, NodeKind.PLACEHOLDER) or node.id in live:
                continue
            live[node.id] = StepResult(node_id=node.id, status=StepStatus.SKIPPED)
        return self.model_copy(update={"live_results": live})

    def with_active_settled(self, status: StepStatus) -> "RunStore":
        """Replace every still-active live status with ``status``."""
        live = {
            node_id: (
                step.model_copy(update={"status": status})
                if step.status.is_active
                else step
            )
            for node_id, step in self.live_results.items()
        }
        return self.model_copy(update={"live_results": live})
