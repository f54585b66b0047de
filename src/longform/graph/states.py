"""Typed state definitions for the longform LangGraph workflow."""

from __future__ import annotations

from typing import Any, TypedDict


class CoherenceWorkflowState(TypedDict, total=False):
    """State passed between the coherence graph nodes.

    The session itself lives in the session store; the graph only carries
    what the routing functions need to pick the next node.
    """

    session_id: str

    # retrieval input for the skeleton node
    content: Any

    # chunk planning
    total_chunks: int
    next_index: int

    # routing flags
    needs_supplement: bool
    failed: bool

    # finalize output (StitchReport as a plain dict)
    report: dict[str, Any]


__all__ = ["CoherenceWorkflowState"]
