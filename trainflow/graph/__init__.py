"""Graph model: traversal, validation and templates."""

from __future__ import annotations

from .model import WorkflowGraph
from .templates import get_template, instantiate, list_templates
from .validation import ValidationResult, ensure_valid, validate

__all__ = [
    "WorkflowGraph",
    "ValidationResult",
    "validate",
    "ensure_valid",
    "instantiate",
    "get_template",
    "list_templates",
]
