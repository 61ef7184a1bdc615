"""Workflow definition contracts: typed nodes, edges and versioned definitions."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .constants import CONDITION_FALSE, CONDITION_TRUE, DEFAULT_APPROVAL_FIELD, DEFAULT_APPROVED_VALUE

WorkflowCategory = Literal[
    "training_request", "course_enrollment", "certification", "expense_approval"
]
DefinitionStatus = Literal["draft", "active", "inactive"]
ConditionOperator = Literal[
    "equals",
    "not_equals",
    "greater_than",
    "less_than",
    "greater_than_or_equal",
    "less_than_or_equal",
    "contains",
]
ActionType = Literal["update_status", "send_email", "create_record", "custom"]

# Symbols produced by the visual editor.
OPERATOR_ALIASES: Dict[str, str] = {
    "=": "equals",
    "==": "equals",
    "!=": "not_equals",
    ">": "greater_than",
    "<": "less_than",
    ">=": "greater_than_or_equal",
    "<=": "less_than_or_equal",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str = "") -> str:
    value = uuid.uuid4().hex[:12]
    return f"{prefix}-{value}" if prefix else str(uuid.uuid4())


class _Model(BaseModel):
    """Accepts both snake_case and the editor's camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class ConditionRule(_Model):
    """A single ``field operator value`` comparison."""

    field: str
    operator: ConditionOperator = "equals"
    value: Any = None

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, v: Any) -> Any:
        if isinstance(v, str):
            return OPERATOR_ALIASES.get(v.strip(), v.strip())
        return v


class ConditionGroup(_Model):
    """Rules combined with ``all`` (AND) or ``any`` (OR)."""

    logic: Literal["all", "any"] = "all"
    rules: List[ConditionRule] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _lift_legacy_rule(cls, data: Any) -> Any:
        # Older definitions carry a single rule at the top level.
        if isinstance(data, dict) and not data.get("rules") and data.get("field"):
            rule = {
                "field": data["field"],
                "operator": data.get("operator", "equals"),
                "value": data.get("value"),
            }
            return {"logic": data.get("logic", "all"), "rules": [rule]}
        return data


class ActionConfig(_Model):
    """Typed operation executed by an ``action`` node."""

    type: ActionType = "update_status"
    entity_updates: Dict[str, Any] = Field(default_factory=dict)
    parameters: Dict[str, Any] = Field(default_factory=dict)


# Keys the node editor uses for approval assignees.
_EDITOR_ALIASES = {
    "approver_role": "assigned_role",
    "approverRole": "assigned_role",
    "approver_user": "assigned_user",
    "approverUser": "assigned_user",
}


class _NodeBase(_Model):
    id: str
    label: str = ""
    description: Optional[str] = None
    # Presentation only; never read by the engine.
    position: Optional[Dict[str, float]] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_editor_data(cls, data: Any) -> Any:
        """Merge the editor's ``data`` bag into the node's own fields."""
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            merged = dict(data["data"])
            merged.update({k: v for k, v in data.items() if k != "data"})
            config = merged.pop("config", None)
            if isinstance(config, dict):
                for key, value in config.items():
                    merged.setdefault(key, value)
            data = merged
        if isinstance(data, dict) and isinstance(data.get("notification"), dict):
            data = dict(data)
            for key, value in data.pop("notification").items():
                data.setdefault(key, value)
        if isinstance(data, dict):
            renamed = {
                old: new
                for old, new in _EDITOR_ALIASES.items()
                if data.get(old) is not None
            }
            if renamed:
                data = dict(data)
                for old, new in renamed.items():
                    data.setdefault(new, data.pop(old))
        return data


class StartNode(_NodeBase):
    type: Literal["start"] = "start"


class EndNode(_NodeBase):
    type: Literal["end"] = "end"


class ConditionNode(_NodeBase):
    type: Literal["condition"] = "condition"
    entity_type: Optional[str] = None
    condition: ConditionGroup = Field(default_factory=ConditionGroup)

    @field_validator("condition")
    @classmethod
    def _require_rules(cls, v: ConditionGroup) -> ConditionGroup:
        if not v.rules:
            raise ValueError("condition node requires at least one rule")
        return v


class ApprovalNode(_NodeBase):
    type: Literal["approval"] = "approval"
    assigned_role: Optional[str] = None
    assigned_user: Optional[str] = None
    entity_type: Optional[str] = None
    entity_field: str = DEFAULT_APPROVAL_FIELD
    approved_value: Any = DEFAULT_APPROVED_VALUE
    timeout_hours: Optional[float] = None

    @model_validator(mode="after")
    def _require_assignee(self) -> "ApprovalNode":
        if not self.assigned_role and not self.assigned_user:
            raise ValueError("approval node requires assigned_role or assigned_user")
        return self


class NotificationNode(_NodeBase):
    type: Literal["notification"] = "notification"
    recipients: List[str] = Field(default_factory=list)
    subject: str = ""
    template: str = ""
    entity_fields: List[str] = Field(default_factory=list)


class ActionNode(_NodeBase):
    type: Literal["action"] = "action"
    entity_type: Optional[str] = None
    action: ActionConfig = Field(default_factory=ActionConfig)


WorkflowNode = Annotated[
    Union[StartNode, EndNode, ConditionNode, ApprovalNode, NotificationNode, ActionNode],
    Field(discriminator="type"),
]


class WorkflowEdge(_Model):
    """Directed connection between two nodes."""

    id: str = Field(default_factory=lambda: new_id("e"))
    source: str
    target: str
    label: Optional[str] = None

    @field_validator("label", mode="before")
    @classmethod
    def _bool_label(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return CONDITION_TRUE if v else CONDITION_FALSE
        return v


class WorkflowDefinition(_Model):
    """A named, versioned node/edge graph."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str = ""
    category: WorkflowCategory
    status: DefinitionStatus = "draft"
    version: int = 1
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}

    def to_json(self) -> str:
        """Serialize definition to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowDefinition":
        """Deserialize definition from JSON."""
        return cls.model_validate_json(data)


class WorkflowTemplate(_Model):
    """Reusable starting point for a definition."""

    id: str
    name: str
    description: str = ""
    category: WorkflowCategory
    definition: WorkflowDefinition
