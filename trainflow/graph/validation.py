"""Structural validation of workflow graphs."""

from __future__ import annotations

import logging
from collections import Counter, deque
from typing import Dict, List

from pydantic import BaseModel, Field

from ..constants import CONDITION_FALSE, CONDITION_TRUE
from ..contracts import WorkflowDefinition, WorkflowEdge
from ..errors import InvalidGraph

logger = logging.getLogger(__name__)


class ValidationResult(BaseModel):
    """Every violation found in a definition."""

    errors: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def validate(definition: WorkflowDefinition) -> ValidationResult:
    """Check the structural invariants of ``definition``.

    All violations are collected so an editor can surface them together.
    """
    errors: List[str] = []
    nodes = {node.id: node for node in definition.nodes}

    for node_id, count in Counter(n.id for n in definition.nodes).items():
        if count > 1:
            errors.append(f"Duplicate node id {node_id}")
    for edge_id, count in Counter(e.id for e in definition.edges).items():
        if count > 1:
            errors.append(f"Duplicate edge id {edge_id}")

    starts = [n.id for n in definition.nodes if n.type == "start"]
    if not starts:
        errors.append("Workflow must have a start node")
    elif len(starts) > 1:
        errors.append(f"Workflow must have exactly one start node, found {len(starts)}: {', '.join(starts)}")

    if not any(n.type == "end" for n in definition.nodes):
        errors.append("Workflow must have at least one end node")

    valid_edges: List[WorkflowEdge] = []
    for edge in definition.edges:
        dangling = [end for end in (edge.source, edge.target) if end not in nodes]
        if dangling:
            errors.append(
                f"Edge {edge.id} references unknown node(s): {', '.join(dangling)}"
            )
        else:
            valid_edges.append(edge)

    incoming: Dict[str, int] = Counter(e.target for e in valid_edges)
    outgoing: Dict[str, List[WorkflowEdge]] = {node_id: [] for node_id in nodes}
    for edge in valid_edges:
        outgoing[edge.source].append(edge)

    for node in definition.nodes:
        edges_out = outgoing.get(node.id, [])
        if node.type != "start" and not incoming.get(node.id):
            errors.append(f"Node {node.id} ({node.type}) has no incoming edge")

        if node.type == "condition":
            labels = sorted(str(e.label) for e in edges_out)
            if len(edges_out) != 2 or labels != sorted([CONDITION_TRUE, CONDITION_FALSE]):
                errors.append(
                    f"Condition node {node.id} must have exactly two outgoing edges "
                    f"labeled True and False, found {len(edges_out)}"
                    + (f" ({', '.join(labels)})" if labels else "")
                )
        elif node.type == "end":
            if edges_out:
                errors.append(f"End node {node.id} must not have outgoing edges")
        elif len(edges_out) != 1:
            errors.append(
                f"Node {node.id} ({node.type}) must have exactly one outgoing edge, "
                f"found {len(edges_out)}"
            )

    if len(starts) == 1:
        seen = {starts[0]}
        queue = deque(starts)
        while queue:
            current = queue.popleft()
            for edge in outgoing.get(current, []):
                if edge.target not in seen:
                    seen.add(edge.target)
                    queue.append(edge.target)
        for node in definition.nodes:
            if node.id not in seen:
                errors.append(f"Node {node.id} ({node.type}) is not reachable from the start node")

    if errors:
        logger.debug(f"Definition {definition.id} v{definition.version} failed validation: {errors}")
    return ValidationResult(errors=errors)


def ensure_valid(definition: WorkflowDefinition) -> WorkflowDefinition:
    """Raise :class:`InvalidGraph` listing every violation, else return ``definition``."""
    result = validate(definition)
    if not result.ok:
        raise InvalidGraph(result.errors)
    return definition
