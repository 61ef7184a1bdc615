"""Exception hierarchy for the workflow engine."""

from __future__ import annotations

from typing import Iterable, List, Optional


class WorkflowError(Exception):
    """Base class for domain errors raised by the engine."""


class InvalidGraph(WorkflowError):
    """Definition failed structural validation.

    ``errors`` lists every violation found, not just the first one.
    """

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors: List[str] = list(errors)
        super().__init__("Invalid workflow graph: " + "; ".join(self.errors))


class DefinitionNotFound(WorkflowError):
    def __init__(self, definition_id: str, version: Optional[int] = None) -> None:
        self.definition_id = definition_id
        self.version = version
        suffix = f" (version {version})" if version is not None else ""
        super().__init__(f"Workflow definition {definition_id}{suffix} not found")


class DefinitionNotActive(WorkflowError):
    def __init__(self, definition_id: str, status: Optional[str] = None) -> None:
        self.definition_id = definition_id
        self.status = status
        detail = f" (status: {status})" if status else ""
        super().__init__(f"Workflow definition {definition_id} is not active{detail}")


class InstanceNotFound(WorkflowError):
    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Workflow instance {instance_id} not found")


class TemplateNotFound(WorkflowError):
    def __init__(self, template_id: str) -> None:
        self.template_id = template_id
        super().__init__(f"Unknown workflow template: {template_id}")


class TaskNotFound(WorkflowError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Workflow task {task_id} not found")


class UnknownNode(WorkflowError):
    def __init__(self, node_id: str, definition_id: Optional[str] = None) -> None:
        self.node_id = node_id
        self.definition_id = definition_id
        where = f" in definition {definition_id}" if definition_id else ""
        super().__init__(f"Unknown node {node_id}{where}")


class DuplicateTask(WorkflowError):
    """A pending task already exists for the (instance, node) pair."""

    def __init__(self, instance_id: str, node_id: str, existing_task_id: str) -> None:
        self.instance_id = instance_id
        self.node_id = node_id
        self.existing_task_id = existing_task_id
        super().__init__(
            f"Task {existing_task_id} is already open for instance {instance_id} at node {node_id}"
        )


class InstanceTerminated(WorkflowError):
    def __init__(self, instance_id: str, status: str) -> None:
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow instance {instance_id} is {status}")


class InvalidTransition(WorkflowError):
    """Operation is not legal for the current state of a record."""


class RetryLimitExceeded(WorkflowError):
    def __init__(self, instance_id: str, limit: int) -> None:
        self.instance_id = instance_id
        self.limit = limit
        super().__init__(f"Workflow instance {instance_id} reached the retry limit of {limit}")


class ActionFailure(WorkflowError):
    """An action node could not perform its required side effect."""


class DeliveryFailure(WorkflowError):
    """A notification channel rejected or could not deliver a message."""


class ConcurrentModification(WorkflowError):
    def __init__(self, instance_id: str, expected: int, actual: int) -> None:
        self.instance_id = instance_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Workflow instance {instance_id} was modified concurrently "
            f"(expected revision {expected}, found {actual})"
        )


class AuthorizationError(Exception):
    """Base class for access-control failures, kept apart from domain errors."""


class Forbidden(AuthorizationError):
    def __init__(self, actor: str, action: str) -> None:
        self.actor = actor
        self.action = action
        super().__init__(f"Actor {actor} is not allowed to {action}")


__all__ = [
    "WorkflowError",
    "InvalidGraph",
    "DefinitionNotFound",
    "DefinitionNotActive",
    "InstanceNotFound",
    "TaskNotFound",
    "TemplateNotFound",
    "UnknownNode",
    "DuplicateTask",
    "InstanceTerminated",
    "InvalidTransition",
    "RetryLimitExceeded",
    "ActionFailure",
    "DeliveryFailure",
    "ConcurrentModification",
    "AuthorizationError",
    "Forbidden",
]
