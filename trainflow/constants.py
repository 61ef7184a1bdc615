"""Shared constants for trainflow."""

SYSTEM_ACTOR = "system"

# Roles allowed to use the operator surface (retry, cancel).
OPERATOR_ROLES = ("admin", "manager")

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

DEFAULT_APPROVAL_FIELD = "status"
DEFAULT_APPROVED_VALUE = "approved"

# Event types written to the instance timeline.
EVENT_STARTED = "started"
EVENT_NODE_ENTERED = "node_entered"
EVENT_NODE_COMPLETED = "node_completed"
EVENT_TASK_CREATED = "task_created"
EVENT_TASK_RESOLVED = "task_resolved"
EVENT_NOTIFICATION_SENT = "notification_sent"
EVENT_NOTIFICATION_FAILED = "notification_failed"
EVENT_COMPLETED = "completed"
EVENT_FAILED = "failed"
EVENT_RETRY = "retry"
EVENT_CANCELLED = "cancelled"
