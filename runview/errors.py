"""Exception types raised by runview."""

from __future__ import annotations

from typing import Optional


class RunviewError(Exception):
    """Base class for all runview errors."""


class MalformedPayload(RunviewError, ValueError):
    """A raw run-result payload could not be decoded into a JSON object."""


class TransportFailure(RunviewError):
    """A remote call (history fetch, approval submit, channel) failed.

    Attributes:
        operation: Short name of the failed operation, e.g. ``"list_runs"``.
    """

    def __init__(self, operation: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.cause = cause


class ApprovalStateError(RunviewError):
    """An approval action was attempted without a matching open request."""
