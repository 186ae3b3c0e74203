"""Project raw run-result payloads onto a per-node status map.

Upstream execution payloads are keyed inconsistently depending on the step
type: by node id, by a well-known trigger key, by the app or action
identifier, or by the step label. Each guess is a named matcher and the
matchers are tried in a fixed order, first hit wins. The order is a
best-match heuristic, not a guarantee, and changing it changes which record
a node picks up when several keys are present.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from .constants import TRIGGER_KEY_ALIASES
from .contracts import RunRecord, StepResult, StepStatus, coerce_status
from .errors import MalformedPayload
from .graph import GraphModel, Node

logger = logging.getLogger(__name__)

Payload = Mapping[str, Any]
Matcher = Callable[[Node, Payload, Sequence[str]], Optional[Any]]


def decode_payload(raw: Any, strict: bool = False) -> Dict[str, Any]:
    """Return ``raw`` as a JSON object.

    Strings and bytes are parsed as JSON. Anything that is not (or does not
    decode to) an object becomes ``{}``, unless ``strict`` is set, in which
    case :class:`MalformedPayload` is raised instead.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            decoded = json.loads(raw)
        except ValueError as exc:
            if strict:
                raise MalformedPayload(f"Result payload is not valid JSON: {exc}") from exc
            return {}
        if isinstance(decoded, dict):
            return decoded
        if strict:
            raise MalformedPayload(
                f"Result payload decodes to {type(decoded).__name__}, expected object"
            )
        return {}
    if strict:
        raise MalformedPayload(f"Unsupported payload type: {type(raw).__name__}")
    return {}


def _lookup(payload: Payload, key: Optional[str]) -> Optional[Any]:
    if not key:
        return None
    value = payload.get(key)
    return value if value else None


def match_exact_id(node: Node, payload: Payload, aliases: Sequence[str]) -> Optional[Any]:
    return _lookup(payload, node.id)


def match_trigger_alias(node: Node, payload: Payload, aliases: Sequence[str]) -> Optional[Any]:
    if not node.is_trigger:
        return None
    for key in aliases:
        value = _lookup(payload, key)
        if value is not None:
            return value
    return None


def match_action_id(node: Node, payload: Payload, aliases: Sequence[str]) -> Optional[Any]:
    return _lookup(payload, node.metadata.action_id)


def match_app_name(node: Node, payload: Payload, aliases: Sequence[str]) -> Optional[Any]:
    return _lookup(payload, node.metadata.app_name)


def match_combined_key(node: Node, payload: Payload, aliases: Sequence[str]) -> Optional[Any]:
    app, action = node.metadata.app_name, node.metadata.action_id
    if not app or not action:
        return None
    for key in (f"{app}_{action}", f"{app}-{action}"):
        value = _lookup(payload, key)
        if value is not None:
            return value
    return None


def match_label(node: Node, payload: Payload, aliases: Sequence[str]) -> Optional[Any]:
    return _lookup(payload, node.metadata.label)


MATCHERS: Tuple[Tuple[str, Matcher], ...] = (
    ("ExactId", match_exact_id),
    ("TriggerAlias", match_trigger_alias),
    ("ActionId", match_action_id),
    ("AppName", match_app_name),
    ("CombinedKey", match_combined_key),
    ("Label", match_label),
)


def find_step(
    node: Node, payload: Payload, aliases: Sequence[str] = TRIGGER_KEY_ALIASES
) -> Tuple[Optional[str], Optional[Any]]:
    """Return ``(matcher_name, raw_step)`` for the first matcher that hits."""
    for name, matcher in MATCHERS:
        raw_step = matcher(node, payload, aliases)
        if raw_step is not None:
            return name, raw_step
    return None, None


def _duration_ms(raw_step: Mapping[str, Any]) -> int:
    for key in ("duration", "durationMs", "duration_ms"):
        value = raw_step.get(key)
        if value is None:
            continue
        try:
            return max(0, int(value))
        except (TypeError, ValueError, OverflowError):
            return 0
    return 0


def step_from_raw(node_id: str, raw_step: Any) -> StepResult:
    """Build a :class:`StepResult` from one matched payload record."""
    if not isinstance(raw_step, Mapping):
        return StepResult(node_id=node_id, status=StepStatus.SUCCESS, output=raw_step)

    if raw_step.get("data") is not None:
        output = raw_step["data"]
    elif raw_step.get("output") is not None:
        output = raw_step["output"]
    else:
        output = dict(raw_step)

    return StepResult(
        node_id=node_id,
        status=coerce_status(raw_step.get("status"), StepStatus.SUCCESS),
        output=output,
        duration_ms=_duration_ms(raw_step),
    )


def skipped(node_id: str) -> StepResult:
    return StepResult(node_id=node_id, status=StepStatus.SKIPPED, output=None, duration_ms=0)


def resolve(
    graph: GraphModel, payload: Any, aliases: Sequence[str] = TRIGGER_KEY_ALIASES
) -> Dict[str, StepResult]:
    """Map a raw result payload to exactly one :class:`StepResult` per node.

    Never raises: a malformed payload resolves to an all-``skipped`` map.
    """
    try:
        data = decode_payload(payload, strict=True)
    except MalformedPayload as exc:
        logger.debug(f"Treating malformed result payload as empty: {exc}")
        data = {}

    results: Dict[str, StepResult] = {}
    for node in graph.nodes:
        _, raw_step = find_step(node, data, aliases)
        results[node.id] = skipped(node.id) if raw_step is None else step_from_raw(node.id, raw_step)
    return results


def explain(
    graph: GraphModel, payload: Any, aliases: Sequence[str] = TRIGGER_KEY_ALIASES
) -> Dict[str, Optional[str]]:
    """Report which matcher produced each node's record (``None`` if none did)."""
    data = decode_payload(payload)
    return {node.id: find_step(node, data, aliases)[0] for node in graph.nodes}


# Node status a terminal run leaves behind for steps still marked active.
_SETTLED_ACTIVE = {
    "rejected": StepStatus.REJECTED,
    "error": StepStatus.ERROR,
    "failed": StepStatus.ERROR,
}


def resolve_run(
    graph: GraphModel, run: RunRecord, aliases: Sequence[str] = TRIGGER_KEY_ALIASES
) -> Dict[str, StepResult]:
    """Resolve a run record, keeping node statuses consistent with the run.

    Only a ``running`` or ``waiting`` run may contain active nodes; for any
    other run an active node is settled according to how the run ended.
    """
    results = resolve(graph, run.result_payload, aliases)
    if run.is_live:
        return results
    settled = _SETTLED_ACTIVE.get(run.status, StepStatus.SKIPPED)
    for node_id, step in results.items():
        if step.status.is_active:
            results[node_id] = step.model_copy(update={"status": settled})
    return results
