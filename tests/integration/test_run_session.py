"""End-to-end RunSession tests over the in-memory channel and API."""

import asyncio
from pathlib import Path

import pytest

from runview import RunSession, load_graph
from runview.api import InMemoryRunsApi
from runview.channels import InMemoryChannel, flow_topic
from runview.config import RunviewConfig, ViewConfig
from runview.contracts import ChannelMessage, RunRecord, RunSummary, StepStatus, ViewMode
from runview.errors import TransportFailure

GRAPH = Path(__file__).parent.parent / "fixtures" / "refund_flow.json"
FLOW = "flow-1"


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _config() -> RunviewConfig:
    return RunviewConfig(view=ViewConfig(tick_interval=0.01))


async def _push(channel: InMemoryChannel, event: str, **fields) -> None:
    fields.setdefault("flow_id", FLOW)
    await channel.publish(flow_topic(FLOW), ChannelMessage(event=event, **fields))


class BrokenHistoryApi(InMemoryRunsApi):
    async def list_runs(self, flow_id):
        raise TransportFailure("list_runs", "engine unavailable")


@pytest.fixture
def api() -> InMemoryRunsApi:
    api = InMemoryRunsApi()
    api.add_run(FLOW, RunRecord(id="r1", status="success", result={"1": {"data": "mail"}}))
    return api


@pytest.mark.asyncio
async def test_session_loads_history_and_follows_live_run(api):
    channel = InMemoryChannel(poll_interval=0.005)
    session = RunSession(FLOW, load_graph(GRAPH), channel, api, config=_config())
    await session.start()
    try:
        await session.drain()
        assert [run.id for run in session.history] == ["r1"]
        assert session.current_view()["1"].status == StepStatus.SUCCESS
        assert session.run_summary() == RunSummary.SUCCESS

        session.set_view_mode(ViewMode.HISTORY)
        await _push(channel, "step-run-start", node_id="1", run_id="r2")
        await wait_for(session.has_active_run)

        assert session.view_mode == ViewMode.LIVE
        assert session.run_summary() == RunSummary.RUNNING
        await wait_for(lambda: session.elapsed_ms() > 0)
        assert session.status_line().startswith("Running for")

        # the engine records the new run before announcing the end of the step
        api.add_run(FLOW, RunRecord(id="r2", status="running", result={"1": {"data": "mail"}}))
        await _push(channel, "step-run-finish", node_id="1", run_id="r2", durationMs=40)
        await wait_for(lambda: not session.has_active_run())
        await wait_for(lambda: [run.id for run in session.history] == ["r2", "r1"])

        frozen = session.elapsed_ms()
        await asyncio.sleep(0.05)
        assert session.elapsed_ms() == frozen

        await _push(channel, "run-complete", run_id="r2")
        await wait_for(lambda: session.controller.state.live_finalized)
        view = session.current_view()
        assert view["1"].status == StepStatus.SUCCESS
        assert view["1"].duration_ms == 40
        assert view["2"].status == StepStatus.SKIPPED
        assert session.run_summary() == RunSummary.SUCCESS
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_flow_failure_raises_notice(api):
    channel = InMemoryChannel(poll_interval=0.005)
    async with RunSession(FLOW, load_graph(GRAPH), channel, api, config=_config()) as session:
        await _push(channel, "step-run-start", node_id="2", run_id="r2")
        await wait_for(session.has_active_run)
        await _push(channel, "flow-failed", run_id="r2", error="Model quota exceeded")
        await wait_for(lambda: session.run_summary() == RunSummary.ERROR)

        assert session.current_view()["2"].status == StepStatus.ERROR
        assert session.notices()[-1].message == "Model quota exceeded"
        session.dismiss_notices()
        assert session.notices() == ()


@pytest.mark.asyncio
async def test_messages_for_other_flows_are_ignored(api):
    channel = InMemoryChannel(poll_interval=0.005)
    async with RunSession(FLOW, load_graph(GRAPH), channel, api, config=_config()) as session:
        await _push(channel, "step-run-start", node_id="1", flow_id="flow-2")
        await wait_for(lambda: channel.acked == 1)
        await session.drain()
        assert not session.has_active_run()


@pytest.mark.asyncio
async def test_approval_flow_refreshes_history(api):
    api.add_run(
        FLOW,
        RunRecord(
            id="w1",
            status="waiting",
            result={"1": {"data": "mail"}, "4": {"status": "waiting"}},
            current_context='{"wait_info": {"4": {"instructions": "Confirm refund"}}}',
        ),
    )
    channel = InMemoryChannel(poll_interval=0.005)
    async with RunSession(FLOW, load_graph(GRAPH), channel, api, config=_config()) as session:
        await session.drain()
        session.set_view_mode(ViewMode.WAITING)
        await session.wait_idle()

        waiting = session.waiting_runs()
        assert [run.id for run in waiting] == ["w1"]
        request = session.open_approval(waiting[0])
        assert request.instructions == "Confirm refund"

        assert await session.submit_approval("reject", approver="alice") is True
        await session.drain()

        assert session.waiting_runs() == []
        assert session.history[0].status == "rejected"
        session.select_run("w1")
        assert session.current_view()["4"].status == StepStatus.REJECTED


@pytest.mark.asyncio
async def test_selecting_unknown_run_fetches_it(api):
    channel = InMemoryChannel(poll_interval=0.005)
    async with RunSession(FLOW, load_graph(GRAPH), channel, api, config=_config()) as session:
        await session.drain()
        api.add_run(FLOW, RunRecord(id="late", status="failed", result={"chat": {"status": "error"}}))

        session.select_run("late")
        await session.wait_idle()
        assert session.current_view()["2"].status == StepStatus.ERROR

        session.select_run("ghost")
        await session.wait_idle()
        assert session.notices()[-1].message == "Run ghost not found"


@pytest.mark.asyncio
async def test_history_failure_becomes_notice():
    channel = InMemoryChannel(poll_interval=0.005)
    async with RunSession(
        FLOW, load_graph(GRAPH), channel, BrokenHistoryApi(), config=_config()
    ) as session:
        await session.drain()
        assert session.history == ()
        assert "engine unavailable" in session.notices()[-1].message


@pytest.mark.asyncio
async def test_close_cancels_background_work(api):
    channel = InMemoryChannel(poll_interval=0.005)
    session = RunSession(FLOW, load_graph(GRAPH), channel, api, config=_config())
    await session.start()
    await _push(channel, "step-run-start", node_id="1")
    await wait_for(session.has_active_run)

    await session.close()
    elapsed = session.elapsed_ms()
    await asyncio.sleep(0.05)
    assert session.elapsed_ms() == elapsed
    await session.close()


class DroppingChannel(InMemoryChannel):
    async def subscribe(self, topic, lifespan=None):
        raise TransportFailure("subscribe", "connection reset by peer")
        yield  # pragma: no cover


@pytest.mark.asyncio
async def test_channel_drop_becomes_notice(api):
    async with RunSession(
        FLOW, load_graph(GRAPH), DroppingChannel(), api, config=_config()
    ) as session:
        await wait_for(lambda: bool(session.notices()))
        notice = session.notices()[-1]
        assert notice.operation == "subscribe"
        assert "connection reset" in notice.message
        await session.wait_idle()
        assert [run.id for run in session.history] == ["r1"]
