"""Immutable workflow graph as supplied by the external editor."""

from __future__ import annotations

import json
from enum import Enum
from functools import cmp_to_key
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import DEFAULT_ROW_TOLERANCE, FIRST_NODE_ID


class NodeKind(str, Enum):
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    END = "end"
    PLACEHOLDER = "placeholder"


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0


class NodeMetadata(BaseModel):
    """Declared node metadata. Unknown editor keys are preserved."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    app_name: Optional[str] = Field(default=None, alias="appName")
    action_id: Optional[str] = Field(default=None, alias="actionId")
    label: Optional[str] = None


class Node(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: NodeKind = NodeKind.ACTION
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)
    position: Position = Field(default_factory=Position)

    @property
    def is_trigger(self) -> bool:
        """Whether this node is the designated entry step of the workflow."""
        return self.kind == NodeKind.TRIGGER or self.id == FIRST_NODE_ID

    @property
    def display_label(self) -> str:
        return self.metadata.label or self.id


class Edge(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    source: str
    target: str


# Editor node types that map onto a NodeKind other than ``action``.
_EDITOR_KINDS = {
    "trigger": NodeKind.TRIGGER,
    "condition": NodeKind.CONDITION,
    "end": NodeKind.END,
    "placeholder": NodeKind.PLACEHOLDER,
}


class GraphModel(BaseModel):
    """Read-only view of workflow nodes and edges for one run-view session."""

    model_config = ConfigDict(frozen=True)

    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()

    @model_validator(mode="after")
    def _unique_ids(self) -> "GraphModel":
        seen = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: {node.id}")
            seen.add(node.id)
        return self

    def get(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    @classmethod
    def from_editor(cls, data: Dict[str, Any]) -> "GraphModel":
        """Build a graph from the editor's ``{"nodes": [...], "edges": [...]}`` export."""
        nodes = []
        for raw in data.get("nodes") or []:
            node_data = dict(raw.get("data") or {})
            if node_data.pop("isPlaceholder", False):
                kind = NodeKind.PLACEHOLDER
            else:
                kind = _EDITOR_KINDS.get(raw.get("type") or "", NodeKind.ACTION)
            nodes.append(
                Node(
                    id=str(raw["id"]),
                    kind=kind,
                    metadata=NodeMetadata.model_validate(node_data),
                    position=Position.model_validate(raw.get("position") or {}),
                )
            )
        edges = [
            Edge(
                id=str(raw.get("id") or f"{raw['source']}->{raw['target']}"),
                source=str(raw["source"]),
                target=str(raw["target"]),
            )
            for raw in data.get("edges") or []
        ]
        return cls(nodes=tuple(nodes), edges=tuple(edges))


def load_graph(path: str | Path) -> GraphModel:
    """Load an editor graph export from a JSON file."""
    with open(path) as f:
        return GraphModel.from_editor(json.load(f))


def visual_steps(
    graph: GraphModel, row_tolerance: float = DEFAULT_ROW_TOLERANCE
) -> List[Node]:
    """Order nodes for top-to-bottom rendering.

    This approximates topological order from layout geometry and does not
    walk edges: it assumes the editor places sequential steps at strictly
    increasing Y. Nodes within ``row_tolerance`` of each other on Y share a
    row and are ordered left to right, which keeps parallel branches
    together. Branches that loop back upwards are mis-ordered.
    """

    def compare(a: Node, b: Node) -> int:
        dy = a.position.y - b.position.y
        if abs(dy) > row_tolerance:
            return -1 if dy < 0 else 1
        dx = a.position.x - b.position.x
        return (dx > 0) - (dx < 0)

    candidates = [n for n in graph.nodes if n.kind != NodeKind.PLACEHOLDER]
    return sorted(candidates, key=cmp_to_key(compare))
