"""One actor per workflow subscription.

Push channel messages, ticker ticks and pull API responses are turned into
reducer events and applied by a single consumer in arrival order. UI
commands are applied directly on the event loop, which is equally ordered
because reducer steps never await.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set, Tuple

from .api.base import RunsApi
from .approval import ApprovalGateway, ApprovalRequest
from .channels.base import BaseChannel, flow_topic
from .config import RunviewConfig, load_config
from .contracts import (
    ApprovalDecision,
    RunRecord,
    RunSummary,
    StepResult,
    ViewMode,
    WaitingRun,
)
from .controller import Notice, ReconciliationController
from .errors import TransportFailure
from .events import (
    Effect,
    Event,
    HistoryFailed,
    HistoryLoaded,
    NoticeRaised,
    RunFetched,
    RunSelected,
    Tick,
    ViewModeChanged,
    from_channel,
)
from .graph import GraphModel, Node

logger = logging.getLogger(__name__)


class RunSession:
    """Live and historical status projection for one workflow."""

    def __init__(
        self,
        flow_id: str,
        graph: GraphModel,
        channel: BaseChannel,
        api: RunsApi,
        config: Optional[RunviewConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.flow_id = flow_id
        self.config = config or load_config()
        self.clock = clock
        self.controller = ReconciliationController(graph, self.config.view, clock)
        self.approvals = ApprovalGateway(
            flow_id, api, on_resolved=self.refresh_history, config=self.config.approval
        )
        self._channel = channel
        self._api = api
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._pump: Optional[asyncio.Task] = None
        self._ticker: Optional[asyncio.Task] = None
        self._fetches: Set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(self, lifespan: Optional[float] = None) -> None:
        """Subscribe to the push channel and load the run history."""
        if self._consumer is not None:
            return
        await self._channel.connect()
        self._consumer = asyncio.create_task(self._consume())
        self._pump = asyncio.create_task(self._pump_channel(lifespan))
        logger.info(f"Run session started for flow {self.flow_id}")
        await self.refresh_history()

    async def close(self) -> None:
        """Unsubscribe and cancel every in-flight task. Nothing is persisted."""
        if self._closed:
            return
        self._closed = True
        tasks = [t for t in (self._pump, self._ticker, self._consumer) if t is not None]
        tasks.extend(self._fetches)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._fetches.clear()
        await self._channel.disconnect()
        logger.info(f"Run session closed for flow {self.flow_id}")

    async def __aenter__(self) -> "RunSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        await self._queue.join()

    async def wait_idle(self) -> None:
        """Wait for in-flight fetches and the queue to settle."""
        while self._fetches:
            await asyncio.gather(*list(self._fetches), return_exceptions=True)
        await self.drain()

    # ------------------------------------------------------------------
    # Actor internals
    async def _pump_channel(self, lifespan: Optional[float]) -> None:
        topic = flow_topic(self.flow_id)
        try:
            async for raw_message, message in self._channel.subscribe(topic, lifespan=lifespan):
                if message.flow_id == self.flow_id:
                    event = from_channel(message, self.clock())
                    if event is not None:
                        await self._queue.put(event)
                else:
                    logger.debug(f"Ignoring event for flow {message.flow_id} on {topic}")
                await self._channel.ack(raw_message)
        except TransportFailure as exc:
            logger.warning(f"Live updates for flow {self.flow_id} stopped: {exc}")
            await self._queue.put(
                NoticeRaised(message=f"Live updates stopped: {exc}", operation=exc.operation)
            )

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self._apply(event)
            finally:
                self._queue.task_done()

    async def _tick(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._queue.put(Tick(at=self.clock()))

    def _apply(self, event: Event) -> None:
        for effect in self.controller.dispatch(event):
            if effect == Effect.START_TIMER:
                self._stop_ticker()
                self._ticker = asyncio.create_task(
                    self._tick(self.config.view.tick_interval)
                )
            elif effect == Effect.STOP_TIMER:
                self._stop_ticker()
            elif effect == Effect.REFRESH_HISTORY:
                self._spawn(self.refresh_history())
            elif effect == Effect.FETCH_SELECTED:
                run_id = self.controller.state.selected_run_id
                if run_id is not None:
                    self._spawn(self._fetch_run(run_id))

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        if self._closed:
            coro.close()
            return
        task = asyncio.create_task(coro)
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)

    async def _fetch_run(self, run_id: str) -> None:
        try:
            run = await self._api.get_run(self.flow_id, run_id)
        except TransportFailure as exc:
            await self._queue.put(
                NoticeRaised(message=str(exc), operation=exc.operation)
            )
            return
        if run is None:
            await self._queue.put(NoticeRaised(message=f"Run {run_id} not found", operation="get_run"))
            return
        await self._queue.put(RunFetched(run=run))

    async def refresh_history(self) -> None:
        """Fetch the run history; older in-flight responses become stale."""
        if self._closed:
            return
        token = self.controller.begin_history_refresh()
        try:
            runs = await self._api.list_runs(self.flow_id)
        except TransportFailure as exc:
            logger.warning(f"History refresh for flow {self.flow_id} failed: {exc}")
            await self._queue.put(HistoryFailed(token=token, error=str(exc)))
            return
        await self._queue.put(HistoryLoaded(token=token, runs=runs))

    # ------------------------------------------------------------------
    # UI surface
    def current_view(self) -> Dict[str, StepResult]:
        return self.controller.current_view()

    def run_summary(self) -> RunSummary:
        return self.controller.run_summary()

    def elapsed_ms(self) -> int:
        return self.controller.elapsed_ms()

    def visual_steps(self) -> List[Node]:
        return self.controller.visual_steps()

    def status_line(self) -> str:
        return self.controller.status_line()

    def has_active_run(self) -> bool:
        return self.controller.has_active_run()

    @property
    def view_mode(self) -> ViewMode:
        return self.controller.view_mode

    @property
    def history(self) -> Tuple[RunRecord, ...]:
        return self.controller.history

    def notices(self) -> Tuple[Notice, ...]:
        return self.controller.notices

    def dismiss_notices(self) -> None:
        self.controller.dismiss_notices()

    def waiting_runs(self) -> List[WaitingRun]:
        return self.controller.waiting_runs()

    def set_view_mode(self, mode: ViewMode | str) -> None:
        mode = ViewMode(mode)
        self._apply(ViewModeChanged(mode=mode))
        if mode in (ViewMode.HISTORY, ViewMode.WAITING):
            self._spawn(self.refresh_history())

    def select_run(self, run_id: str) -> None:
        """Show ``run_id`` in detail mode; its full record is fetched in the background."""
        self._apply(RunSelected(run_id=run_id))

    def open_approval(self, run: WaitingRun) -> ApprovalRequest:
        return self.approvals.open(run)

    async def submit_approval(
        self, decision: ApprovalDecision | str, approver: Optional[str] = None
    ) -> bool:
        return await self.approvals.submit(decision, approver=approver)
