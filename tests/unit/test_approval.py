"""Approval gateway tests."""

import asyncio
import json

import pytest
from pydantic import ValidationError

from runview.api.inmemory import InMemoryRunsApi
from runview.approval import ApprovalGateway, ApprovalState, approval_instructions
from runview.config import ApprovalConfig
from runview.constants import DEFAULT_APPROVAL_INSTRUCTIONS
from runview.contracts import ApprovalDecision, RunRecord, WaitingRun
from runview.errors import ApprovalStateError, TransportFailure


def _waiting_run(run_id: str = "r1", instructions: str = "Confirm refund") -> WaitingRun:
    context = {"wait_info": {"step_a": {"instructions": instructions}}}
    return WaitingRun(id=run_id, status="waiting", current_context=json.dumps(context))


class FailingApi(InMemoryRunsApi):
    async def submit_decision(self, flow_id, run_id, decision, approver, source):
        raise TransportFailure(f"{decision.value}_run", "503 Service Unavailable")


class GatedApi(InMemoryRunsApi):
    """Blocks submissions until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def submit_decision(self, flow_id, run_id, decision, approver, source):
        await self.release.wait()
        await super().submit_decision(flow_id, run_id, decision, approver, source)


def test_instructions_come_from_wait_info():
    assert approval_instructions(_waiting_run()) == "Confirm refund"


def test_instructions_fall_back_to_default():
    run = WaitingRun(id="r1", status="waiting", current_context="not json")
    assert approval_instructions(run) == DEFAULT_APPROVAL_INSTRUCTIONS
    run = WaitingRun(id="r2", status="waiting", current_context={"wait_info": {"s": {}}})
    assert approval_instructions(run) == DEFAULT_APPROVAL_INSTRUCTIONS


def test_non_waiting_run_cannot_become_waiting_run():
    with pytest.raises(ValidationError):
        WaitingRun(id="r1", status="success")
    assert RunRecord(id="r1", status="success").as_waiting() is None


def test_pending_lists_waiting_runs_only():
    history = [
        RunRecord(id="r3", status="running"),
        RunRecord(id="r2", status="waiting"),
        RunRecord(id="r1", status="rejected"),
    ]
    assert [run.id for run in ApprovalGateway.pending(history)] == ["r2"]


@pytest.mark.asyncio
async def test_reject_closes_dialog_and_refreshes():
    api = InMemoryRunsApi()
    run = _waiting_run()
    api.add_run("flow-1", run)
    refreshed = []

    async def on_resolved():
        refreshed.append(True)

    gateway = ApprovalGateway(
        "flow-1", api, on_resolved=on_resolved, config=ApprovalConfig(approver="ops@example.com")
    )
    request = gateway.open(run)
    assert request.instructions == "Confirm refund"
    assert gateway.state == ApprovalState.OPENED

    assert await gateway.submit(ApprovalDecision.REJECT) is True

    assert gateway.request is None
    assert gateway.state == ApprovalState.NONE
    assert refreshed == [True]
    assert api.decisions == [
        ("flow-1", "r1", ApprovalDecision.REJECT, "ops@example.com", "run-sidebar")
    ]
    # the gateway never flips the run itself; the opened copy is untouched
    assert run.status == "waiting"


@pytest.mark.asyncio
async def test_explicit_approver_overrides_config():
    api = InMemoryRunsApi()
    gateway = ApprovalGateway("flow-1", api, config=ApprovalConfig(approver="default"))
    gateway.open(_waiting_run())
    await gateway.submit("resume", approver="alice")
    assert api.decisions[0][2:4] == (ApprovalDecision.RESUME, "alice")


@pytest.mark.asyncio
async def test_failed_submit_keeps_dialog_open():
    refreshed = []

    async def on_resolved():
        refreshed.append(True)

    gateway = ApprovalGateway("flow-1", FailingApi(), on_resolved=on_resolved)
    gateway.open(_waiting_run())

    assert await gateway.submit(ApprovalDecision.RESUME) is False

    assert gateway.state == ApprovalState.FAILED
    assert gateway.request.decision == "pending"
    assert "503" in gateway.request.error
    assert not gateway.request.submitting
    assert refreshed == []


@pytest.mark.asyncio
async def test_timed_out_submit_can_be_retried():
    api = GatedApi()
    gateway = ApprovalGateway("flow-1", api)
    request = gateway.open(_waiting_run())

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(gateway.submit(ApprovalDecision.RESUME), 0.05)

    assert gateway.state == ApprovalState.OPENED
    assert request.decision == "pending"
    assert not request.submitting

    api.release.set()
    assert await gateway.submit(ApprovalDecision.RESUME) is True
    assert gateway.state == ApprovalState.NONE


@pytest.mark.asyncio
async def test_unexpected_error_does_not_lock_request():
    class BrokenApi(InMemoryRunsApi):
        async def submit_decision(self, flow_id, run_id, decision, approver, source):
            raise RuntimeError("boom")

    gateway = ApprovalGateway("flow-1", BrokenApi())
    request = gateway.open(_waiting_run())

    with pytest.raises(RuntimeError):
        await gateway.submit(ApprovalDecision.REJECT)

    assert not request.submitting
    assert request.decision == "pending"
    assert gateway.state == ApprovalState.OPENED


@pytest.mark.asyncio
async def test_submit_without_request_raises():
    gateway = ApprovalGateway("flow-1", InMemoryRunsApi())
    with pytest.raises(ApprovalStateError):
        await gateway.submit(ApprovalDecision.RESUME)


@pytest.mark.asyncio
async def test_second_submit_while_in_flight_raises():
    api = GatedApi()
    gateway = ApprovalGateway("flow-1", api)
    gateway.open(_waiting_run())

    first = asyncio.create_task(gateway.submit(ApprovalDecision.RESUME))
    await asyncio.sleep(0)
    assert gateway.state == ApprovalState.SUBMITTING
    with pytest.raises(ApprovalStateError):
        await gateway.submit(ApprovalDecision.REJECT)

    api.release.set()
    assert await first is True


@pytest.mark.asyncio
async def test_opening_second_request_discards_first():
    api = GatedApi()
    gateway = ApprovalGateway("flow-1", api)
    gateway.open(_waiting_run("r1"))

    first = asyncio.create_task(gateway.submit(ApprovalDecision.RESUME))
    await asyncio.sleep(0)
    second = gateway.open(_waiting_run("r2", instructions="Check invoice"))

    api.release.set()
    assert await first is True

    assert gateway.request is second
    assert gateway.request.instructions == "Check invoice"
    assert gateway.state == ApprovalState.OPENED


def test_dismiss_closes_without_submitting():
    api = InMemoryRunsApi()
    gateway = ApprovalGateway("flow-1", api)
    gateway.open(_waiting_run())
    gateway.dismiss()
    assert gateway.state == ApprovalState.NONE
    assert api.decisions == []
