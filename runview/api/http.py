"""HTTP implementation of the runs API using httpx."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ..contracts import ApprovalDecision, RunRecord
from ..errors import TransportFailure
from .base import RunsApi

logger = logging.getLogger(__name__)


class HttpRunsApi(RunsApi):
    """Talk to the execution engine's REST endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        client = self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(f"{operation} request to {path} failed: {exc}")
            raise TransportFailure(operation, str(exc), cause=exc) from exc
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise TransportFailure(operation, "response is not JSON", cause=exc) from exc

    async def list_runs(self, flow_id: str) -> list[RunRecord]:
        data = await self._request("list_runs", "GET", f"/api/flows/{flow_id}/runs")
        if isinstance(data, dict):
            if data.get("success") is False:
                raise TransportFailure("list_runs", data.get("error") or "engine reported failure")
            raw_runs = data.get("runs") or []
        else:
            raw_runs = data or []
        runs = []
        for raw in raw_runs:
            try:
                runs.append(RunRecord.model_validate({"flow_id": flow_id, **raw}))
            except (TypeError, ValidationError) as exc:
                raise TransportFailure("list_runs", f"invalid run record: {exc}", cause=exc) from exc
        return runs

    async def get_run(self, flow_id: str, run_id: str) -> Optional[RunRecord]:
        for run in await self.list_runs(flow_id):
            if run.id == run_id:
                return run
        return None

    async def submit_decision(
        self,
        flow_id: str,
        run_id: str,
        decision: ApprovalDecision,
        approver: Optional[str],
        source: str,
    ) -> None:
        operation = f"{decision.value}_run"
        data = await self._request(
            operation,
            "POST",
            f"/api/v1/flows/{flow_id}/runs/{run_id}/{decision.value}",
            json={"approver": approver, "source": source},
        )
        if isinstance(data, dict) and data.get("success") is False:
            raise TransportFailure(operation, data.get("error") or "engine reported failure")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
