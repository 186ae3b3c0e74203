"""Simple example following a live run and approving its paused step."""

import asyncio
from pathlib import Path

from runview import ChannelMessage, RunRecord, RunSession, get_channel, get_runs_api, load_graph
from runview.channels import flow_topic

FLOW_ID = "refund-flow"
GRAPH_PATH = Path(__file__).parent.parent / "tests" / "fixtures" / "refund_flow.json"


async def simulate_engine(channel, api) -> None:
    """Publish the events an execution engine would push for one run."""
    topic = flow_topic(FLOW_ID)
    for node_id in ("1", "2"):
        await channel.publish(
            topic, ChannelMessage(event="step-run-start", flow_id=FLOW_ID, run_id="r1", node_id=node_id)
        )
        await asyncio.sleep(0.3)
        await channel.publish(
            topic,
            ChannelMessage(
                event="step-run-finish", flow_id=FLOW_ID, run_id="r1", node_id=node_id, durationMs=300
            ),
        )

    # The run pauses at the approval step
    api.add_run(
        FLOW_ID,
        RunRecord(
            id="r1",
            status="waiting",
            result={"1": {"data": "mail"}, "2": {"data": "summary"}, "4": {"status": "waiting"}},
            current_context={"wait_info": {"4": {"instructions": "Confirm refund of $42"}}},
        ),
    )
    await channel.publish(
        topic, ChannelMessage(event="step-run-start", flow_id=FLOW_ID, run_id="r1", node_id="4")
    )
    await channel.publish(
        topic,
        ChannelMessage(
            event="step-run-finish", flow_id=FLOW_ID, run_id="r1", node_id="4", status="waiting"
        ),
    )


async def main():
    """Watch a run, then approve it."""
    channel = get_channel("inmemory")
    api = get_runs_api()
    graph = load_graph(GRAPH_PATH)

    async with RunSession(FLOW_ID, graph, channel, api) as session:
        engine = asyncio.create_task(simulate_engine(channel, api))
        while not engine.done():
            print(f"⏱️  {session.status_line()}")
            await asyncio.sleep(0.2)
        await asyncio.sleep(0.1)
        await session.wait_idle()

        for node in session.visual_steps():
            step = session.current_view()[node.id]
            print(f"  {node.display_label}: {step.status.value}")

        session.set_view_mode("waiting")
        await session.wait_idle()
        for run in session.waiting_runs():
            request = session.open_approval(run)
            print(f"📋 {run.id}: {request.instructions}")
            if await session.submit_approval("resume", approver="guide@example.com"):
                print(f"✅ Run {run.id} resumed")
            else:
                print(f"❌ Could not resume {run.id}: {request.error}")

        await session.wait_idle()
        print(f"Runs waiting for approval: {len(session.waiting_runs())}")


if __name__ == "__main__":
    asyncio.run(main())
