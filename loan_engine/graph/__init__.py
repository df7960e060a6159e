"""
Dependency graph: in-memory builder, integrity scorer and relational store.
"""

from .integrity import compute_integrity_score, score_from_counts
from .build import GraphBuilder, GraphPlan, NodeSpec, EdgeSpec
from .store import GraphStore

__all__ = [
    "compute_integrity_score",
    "score_from_counts",
    "GraphBuilder",
    "GraphPlan",
    "NodeSpec",
    "EdgeSpec",
    "GraphStore",
]
