# loan_engine/graph/store.py
"""
Graph Store - relational persistence of the workspace dependency graph

Writes happen only through ``replace``, which swaps the whole node/edge set
inside the caller's unit of work. Everything else is a read.
"""

from datetime import datetime
from typing import List, Optional, Set, Tuple

from sqlalchemy import delete, or_
from sqlmodel import Session, select

from ..engine_logging import get_logger
from ..models import Clause, GraphEdge, GraphNode, GraphState, Variable, utcnow
from .build import GraphPlan, SourceKey

logger = get_logger(__name__)


class GraphStore:
    """SQL-backed graph storage for one session"""

    MAX_NEIGHBORS = 1000

    def __init__(self, session: Session):
        self.session = session

    # Sources

    def load_sources(self, workspace_id: str) -> Tuple[List[Clause], List[Variable]]:
        """Clauses in document order and every variable of the workspace"""
        clauses = list(self.session.exec(
            select(Clause).where(Clause.workspace_id == workspace_id).order_by(Clause.order)
        ).all())
        variables = list(self.session.exec(
            select(Variable).where(Variable.workspace_id == workspace_id).order_by(Variable.label)
        ).all())
        return clauses, variables

    def warned_sources(self, workspace_id: str) -> Set[SourceKey]:
        """Source keys of current nodes flagged with a warning"""
        rows = self.session.exec(
            select(GraphNode).where(GraphNode.workspace_id == workspace_id, GraphNode.has_warning == True)  # noqa: E712
        ).all()
        keys: Set[SourceKey] = set()
        for node in rows:
            if node.variable_id:
                keys.add(("variable", node.variable_id))
            elif node.clause_id:
                keys.add(("clause", node.clause_id))
        return keys

    # Writes

    def replace(self, plan: GraphPlan, computed_at: Optional[datetime] = None) -> GraphState:
        """
        Swap the stored graph for ``plan`` and upsert the integrity projection

        Does not commit; the caller's unit of work decides.
        """
        workspace_id = plan.workspace_id
        computed_at = computed_at or utcnow()

        self.session.exec(delete(GraphEdge).where(GraphEdge.workspace_id == workspace_id))
        self.session.exec(delete(GraphNode).where(GraphNode.workspace_id == workspace_id))
        self.session.flush()

        self.session.add_all([node.to_row() for node in plan.nodes])
        self.session.flush()
        self.session.add_all([edge.to_row() for edge in plan.edges])

        state = self.get_state(workspace_id)
        if state is None:
            state = GraphState(workspace_id=workspace_id)
        state.integrity_score = plan.integrity_score
        state.last_computed_at = computed_at
        self.session.add(state)
        self.session.flush()

        logger.info(
            f"Replaced graph for {workspace_id}: {plan.node_count} nodes, {plan.edge_count} edges",
            extra={'workspace_id': workspace_id},
        )
        return state

    # Reads

    def get_state(self, workspace_id: str) -> Optional[GraphState]:
        return self.session.exec(
            select(GraphState).where(GraphState.workspace_id == workspace_id)
        ).first()

    def list_nodes(self, workspace_id: str) -> List[GraphNode]:
        return list(self.session.exec(
            select(GraphNode).where(GraphNode.workspace_id == workspace_id).order_by(GraphNode.created_at)
        ).all())

    def list_edges(self, workspace_id: str) -> List[GraphEdge]:
        return list(self.session.exec(
            select(GraphEdge).where(GraphEdge.workspace_id == workspace_id)
        ).all())

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self.session.get(GraphNode, node_id)

    def neighbors(self, node_id: str) -> List[GraphNode]:
        """
        Nodes adjacent to ``node_id`` over edges in either direction

        Args:
            node_id: Starting node

        Returns:
            Distinct neighbouring nodes, capped at MAX_NEIGHBORS
        """
        edges = self.session.exec(
            select(GraphEdge).where(or_(GraphEdge.source_id == node_id, GraphEdge.target_id == node_id))
        ).all()

        neighbor_ids: List[str] = []
        for edge in edges:
            other = edge.target_id if edge.source_id == node_id else edge.source_id
            if other not in neighbor_ids:
                neighbor_ids.append(other)
            if len(neighbor_ids) >= self.MAX_NEIGHBORS:
                logger.warning(f"Neighbor limit reached for node {node_id}")
                break

        if not neighbor_ids:
            return []
        return list(self.session.exec(select(GraphNode).where(GraphNode.id.in_(neighbor_ids))).all())
