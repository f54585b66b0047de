"""LangGraph state definitions for the coherence workflow."""

from .states import CoherenceWorkflowState

__all__ = ["CoherenceWorkflowState"]
