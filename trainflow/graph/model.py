"""In-memory view of a definition used for traversal."""

from __future__ import annotations

from typing import Dict, List, Optional, Union

from ..constants import CONDITION_FALSE, CONDITION_TRUE
from ..contracts import WorkflowDefinition, WorkflowEdge, WorkflowNode
from ..errors import UnknownNode


class WorkflowGraph:
    """Indexes the nodes and edges of one definition version."""

    def __init__(self, definition: WorkflowDefinition) -> None:
        self.definition = definition
        self._nodes: Dict[str, WorkflowNode] = {n.id: n for n in definition.nodes}
        self._outgoing: Dict[str, List[WorkflowEdge]] = {n.id: [] for n in definition.nodes}
        for edge in definition.edges:
            self._outgoing.setdefault(edge.source, []).append(edge)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def node(self, node_id: str) -> WorkflowNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise UnknownNode(node_id, self.definition.id) from None

    def start_node(self) -> WorkflowNode:
        for node in self.definition.nodes:
            if node.type == "start":
                return node
        raise UnknownNode("start", self.definition.id)

    def outgoing_edges(self, node_id: str) -> List[WorkflowEdge]:
        """Edges leaving ``node_id`` in definition order."""
        self.node(node_id)
        return list(self._outgoing.get(node_id, []))

    def next_node(
        self, node_id: str, chosen_label: Optional[Union[str, bool]] = None
    ) -> Optional[WorkflowNode]:
        """Return the successor of ``node_id``.

        Condition nodes follow the edge labeled ``chosen_label`` (``True`` or
        ``False``); every other node type has a single outgoing edge and the
        label is ignored. Returns ``None`` when there is no successor.
        """
        node = self.node(node_id)
        edges = self.outgoing_edges(node_id)
        if node.type == "condition":
            if isinstance(chosen_label, bool):
                chosen_label = CONDITION_TRUE if chosen_label else CONDITION_FALSE
            if chosen_label not in (CONDITION_TRUE, CONDITION_FALSE):
                raise ValueError(
                    f"Condition node {node_id} requires chosen_label True or False, got {chosen_label!r}"
                )
            edge = next((e for e in edges if e.label == chosen_label), None)
        else:
            edge = edges[0] if edges else None
        return self.node(edge.target) if edge else None
