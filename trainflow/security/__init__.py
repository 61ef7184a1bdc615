"""Authorization for operator-facing operations."""

from .policy import DEFAULT_RULES, PolicyEngine

__all__ = ["DEFAULT_RULES", "PolicyEngine"]
