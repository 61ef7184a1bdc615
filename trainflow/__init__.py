"""trainflow: workflow automation engine for training management."""

from .contracts import WorkflowDefinition, WorkflowEdge, WorkflowNode, WorkflowTemplate
from .definitions import DefinitionStore
from .engine import WorkflowEngine
from .errors import AuthorizationError, Forbidden, WorkflowError
from .notifications import get_dispatcher
from .persistence import get_repository
from .recovery import RecoveryController
from .service import WorkflowService
from .tasks import TaskManager

__version__ = "0.1.0"
__all__ = [
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "WorkflowTemplate",
    "DefinitionStore",
    "WorkflowEngine",
    "TaskManager",
    "RecoveryController",
    "WorkflowService",
    "WorkflowError",
    "AuthorizationError",
    "Forbidden",
    "get_dispatcher",
    "get_repository",
]
