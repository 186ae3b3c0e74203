"""Pull API clients for run history and approval actions."""

from __future__ import annotations

import os
from typing import Optional

from ..config import RunviewConfig, load_config
from .base import RunsApi
from .http import HttpRunsApi
from .inmemory import InMemoryRunsApi

_api_instance: RunsApi | None = None


def get_runs_api(
    base_url: Optional[str] = None, config: Optional[RunviewConfig] = None
) -> RunsApi:
    """Factory function to obtain a runs API client.

    The backend is selected based on ``base_url`` which can be provided
    explicitly, via environment variable ``RUNVIEW_API_URL``, or from loaded
    configuration. When no URL is configured, an in-memory API is returned.
    """

    global _api_instance
    if _api_instance is not None and base_url is None and config is None:
        return _api_instance

    config = config or load_config()
    base_url = base_url or os.getenv("RUNVIEW_API_URL") or config.api.base_url

    if not base_url:
        _api_instance = InMemoryRunsApi()
    elif base_url.startswith("http://") or base_url.startswith("https://"):
        _api_instance = HttpRunsApi(base_url, timeout=config.api.timeout)
    else:
        raise ValueError(f"Unsupported API url: {base_url}")

    return _api_instance


__all__ = [
    "RunsApi",
    "HttpRunsApi",
    "InMemoryRunsApi",
    "get_runs_api",
]
