"""Runview: live and historical status projection for workflow runs."""

from .api import get_runs_api
from .approval import ApprovalGateway, ApprovalRequest
from .channels import get_channel
from .config import RunviewConfig, load_config
from .contracts import ChannelMessage, RunRecord, StepResult, StepStatus, ViewMode, WaitingRun
from .controller import ReconciliationController
from .graph import GraphModel, load_graph, visual_steps
from .resolver import resolve, resolve_run
from .session import RunSession

__version__ = "0.1.0"
__all__ = [
    "ApprovalGateway",
    "ApprovalRequest",
    "ChannelMessage",
    "GraphModel",
    "ReconciliationController",
    "RunRecord",
    "RunSession",
    "RunviewConfig",
    "StepResult",
    "StepStatus",
    "ViewMode",
    "WaitingRun",
    "get_channel",
    "get_runs_api",
    "load_config",
    "load_graph",
    "resolve",
    "resolve_run",
    "visual_steps",
]
