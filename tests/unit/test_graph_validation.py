import pytest

from trainflow.contracts import ApprovalNode, ConditionNode, WorkflowDefinition, WorkflowEdge
from trainflow.errors import InvalidGraph, UnknownNode
from trainflow.graph import WorkflowGraph, ensure_valid, validate


def _definition(nodes, edges) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate(
        {"name": "t", "category": "training_request", "nodes": nodes, "edges": edges}
    )


def test_builtin_definition_is_valid(basic_definition):
    result = validate(basic_definition)
    assert result.ok, result.errors


def test_missing_start_and_end_are_both_reported():
    definition = _definition(
        [{"id": "a", "type": "action", "action": {"type": "update_status"}}], []
    )
    result = validate(definition)
    assert not result.ok
    assert "Workflow must have a start node" in result.errors
    assert "Workflow must have at least one end node" in result.errors


def test_condition_with_single_edge_is_rejected(basic_definition):
    edges = [e for e in basic_definition.edges if not (e.source == "cond-0" and e.label == "False")]
    definition = basic_definition.model_copy(update={"edges": edges})
    result = validate(definition)
    assert any("Condition node cond-0" in e for e in result.errors)
    # the auto-approve branch is now orphaned too
    assert any("act-0" in e and "no incoming edge" in e for e in result.errors)


def test_dangling_edge_and_multiple_starts():
    definition = _definition(
        [
            {"id": "s1", "type": "start"},
            {"id": "s2", "type": "start"},
            {"id": "end", "type": "end"},
        ],
        [
            {"id": "e1", "source": "s1", "target": "end"},
            {"id": "e2", "source": "s2", "target": "ghost"},
        ],
    )
    result = validate(definition)
    assert any("exactly one start node" in e for e in result.errors)
    assert any("Edge e2 references unknown node(s): ghost" == e for e in result.errors)


def test_unreachable_node_is_reported():
    definition = _definition(
        [
            {"id": "start", "type": "start"},
            {"id": "end", "type": "end"},
            {"id": "loop-a", "type": "action", "action": {"type": "update_status"}},
            {"id": "loop-b", "type": "action", "action": {"type": "update_status"}},
        ],
        [
            {"source": "start", "target": "end"},
            {"source": "loop-a", "target": "loop-b"},
            {"source": "loop-b", "target": "loop-a"},
        ],
    )
    errors = validate(definition).errors
    assert any("loop-a" in e and "not reachable" in e for e in errors)


def test_ensure_valid_raises_with_every_violation():
    definition = _definition([], [])
    with pytest.raises(InvalidGraph) as exc_info:
        ensure_valid(definition)
    assert len(exc_info.value.errors) == 2


def test_editor_shaped_nodes_are_parsed():
    definition = _definition(
        [
            {"id": "start", "type": "start", "position": {"x": 0, "y": 0}},
            {
                "id": "cond",
                "type": "condition",
                "data": {
                    "label": "Amount > 1000?",
                    "config": {"condition": {"field": "estimated_cost", "operator": ">", "value": 1000}},
                },
            },
            {"id": "yes", "type": "end"},
            {"id": "no", "type": "end"},
        ],
        [
            {"source": "start", "target": "cond"},
            {"source": "cond", "target": "yes", "label": True},
            {"source": "cond", "target": "no", "label": False},
        ],
    )
    cond = definition.nodes[1]
    assert isinstance(cond, ConditionNode)
    assert cond.label == "Amount > 1000?"
    assert cond.condition.rules[0].operator == "greater_than"
    assert validate(definition).ok


def test_editor_approver_keys_map_to_assignees():
    node = ApprovalNode.model_validate(
        {"id": "a", "type": "approval", "data": {"config": {"approver_role": "manager", "timeout_hours": 4}}}
    )
    assert node.assigned_role == "manager"
    assert node.assigned_user is None
    assert node.timeout_hours == 4

    by_user = ApprovalNode.model_validate({"id": "b", "type": "approval", "approverUser": "eve"})
    assert by_user.assigned_user == "eve"

    # an explicit assignee wins over the editor key
    both = ApprovalNode.model_validate(
        {"id": "c", "type": "approval", "assigned_role": "finance", "approver_role": "manager"}
    )
    assert both.assigned_role == "finance"


def test_condition_node_without_rules_fails_at_parse_time():
    with pytest.raises(ValueError):
        _definition([{"id": "c", "type": "condition", "condition": {"logic": "all", "rules": []}}], [])


def test_next_node_follows_labels(basic_definition):
    graph = WorkflowGraph(basic_definition)
    assert graph.start_node().id == "start-0"
    assert graph.next_node("start-0").id == "cond-0"
    assert graph.next_node("cond-0", True).id == "appr-0"
    assert graph.next_node("cond-0", "False").id == "act-0"
    assert graph.next_node("end-0") is None
    assert [e.target for e in graph.outgoing_edges("cond-0")] == ["appr-0", "act-0"]


def test_next_node_requires_label_for_condition(basic_definition):
    graph = WorkflowGraph(basic_definition)
    with pytest.raises(ValueError):
        graph.next_node("cond-0")
    with pytest.raises(UnknownNode):
        graph.node("missing")


def test_edge_labels_accept_booleans():
    assert WorkflowEdge(source="a", target="b", label=False).label == "False"
