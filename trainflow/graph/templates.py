"""Built-in workflow templates and template instantiation."""

from __future__ import annotations

import uuid
from typing import Callable, Dict, List

from ..contracts import (
    ActionConfig,
    ActionNode,
    ApprovalNode,
    ConditionGroup,
    ConditionNode,
    ConditionRule,
    EndNode,
    NotificationNode,
    StartNode,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowTemplate,
    new_id,
    utcnow,
)
from ..errors import TemplateNotFound


def instantiate(template: WorkflowTemplate, created_by: str | None = None) -> WorkflowDefinition:
    """Clone ``template`` into a new draft definition with fresh ids.

    Node ids are regenerated (keeping their prefix) and edge endpoints are
    remapped, so two definitions built from the same template never share ids.
    """
    source = template.definition
    id_map: Dict[str, str] = {}
    nodes = []
    for node in source.nodes:
        prefix = node.id.split("-", 1)[0] if "-" in node.id else node.type
        id_map[node.id] = new_id(prefix)
        nodes.append(node.model_copy(update={"id": id_map[node.id]}, deep=True))

    edges = [
        edge.model_copy(
            update={
                "id": new_id("e"),
                "source": id_map.get(edge.source, edge.source),
                "target": id_map.get(edge.target, edge.target),
            }
        )
        for edge in source.edges
    ]

    now = utcnow()
    return WorkflowDefinition(
        id=str(uuid.uuid4()),
        name=source.name,
        description=source.description,
        category=source.category,
        status="draft",
        version=1,
        nodes=nodes,
        edges=edges,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )


def training_approval_basic() -> WorkflowTemplate:
    """Submit, cost check, manager approval or auto approval, end."""
    start = StartNode(id="start-0", label="Start")
    cond = ConditionNode(
        id="cond-0",
        label="Amount > 1000?",
        entity_type="training_requests",
        condition=ConditionGroup(
            logic="all",
            rules=[ConditionRule(field="estimated_cost", operator="greater_than", value=1000)],
        ),
    )
    approval = ApprovalNode(
        id="appr-0",
        label="Manager Approval",
        assigned_role="manager",
        entity_type="training_requests",
        entity_field="status",
    )
    auto = ActionNode(
        id="act-0",
        label="Auto Approve",
        entity_type="training_requests",
        action=ActionConfig(type="update_status", entity_updates={"status": "approved"}),
    )
    end = EndNode(id="end-0", label="End")
    edges = [
        WorkflowEdge(source=start.id, target=cond.id),
        WorkflowEdge(source=cond.id, target=approval.id, label="True"),
        WorkflowEdge(source=cond.id, target=auto.id, label="False"),
        WorkflowEdge(source=approval.id, target=end.id),
        WorkflowEdge(source=auto.id, target=end.id),
    ]
    return WorkflowTemplate(
        id="tmpl-training-approval-basic",
        name="Training Request Approval (Basic)",
        description="Submit -> Amount check -> Manager approval -> Mark Approved -> End",
        category="training_request",
        definition=WorkflowDefinition(
            name="Training Request Approval",
            description="Basic approval flow based on estimated cost",
            category="training_request",
            nodes=[start, cond, approval, auto, end],
            edges=edges,
        ),
    )


def expense_approval() -> WorkflowTemplate:
    """Finance approval followed by a requester notification."""
    start = StartNode(id="start-0", label="Start")
    approval = ApprovalNode(
        id="appr-0",
        label="Finance Approval",
        assigned_role="finance",
        entity_type="course_cost_actuals",
        entity_field="status",
    )
    notify = NotificationNode(
        id="notif-0",
        label="Notify Requester",
        subject="Your expense has been processed",
        template="Expense {{invoice_no}} has been {{status}}.",
        entity_fields=["invoice_no", "status"],
    )
    end = EndNode(id="end-0", label="End")
    return WorkflowTemplate(
        id="tmpl-expense-approval",
        name="Expense Approval",
        description="Submit expense -> Finance approval -> Notify -> End",
        category="expense_approval",
        definition=WorkflowDefinition(
            name="Course Expense Approval",
            description="Finance approval for course expenses",
            category="expense_approval",
            nodes=[start, approval, notify, end],
            edges=[
                WorkflowEdge(source=start.id, target=approval.id),
                WorkflowEdge(source=approval.id, target=notify.id),
                WorkflowEdge(source=notify.id, target=end.id),
            ],
        ),
    )


_TEMPLATE_FACTORIES: List[Callable[[], WorkflowTemplate]] = [
    training_approval_basic,
    expense_approval,
]


def list_templates() -> List[WorkflowTemplate]:
    return [factory() for factory in _TEMPLATE_FACTORIES]


def get_template(template_id: str) -> WorkflowTemplate:
    for template in list_templates():
        if template.id == template_id:
            return template
    raise TemplateNotFound(template_id)
