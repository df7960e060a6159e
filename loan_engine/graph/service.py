# loan_engine/graph/service.py
"""
Graph operations exposed to the API: sync/recompute and read access.
"""

from typing import List, Optional

from sqlmodel import Session

from ..access import Actor, MemberContext, require_membership
from ..audit import audit_sink
from ..config import EngineConfig
from ..database_config import unit_of_work
from ..drift.detector import count_unresolved_drift
from ..engine_logging import get_logger
from ..errors import NotFoundError, ValidationError
from ..governance import enforcer, load_rules
from ..models import AuditEventType, GraphNode, Variable, utcnow
from ..schemas import GraphEdgeOut, GraphNodeOut, GraphOut, GraphRebuildResult, NodeLocation, SyncResult
from .build import GraphBuilder, GraphPlan
from .integrity import compute_integrity_score
from .store import GraphStore

logger = get_logger(__name__)


def _rebuild(session: Session, ctx: MemberContext, config: Optional[EngineConfig] = None) -> GraphPlan:
    """Build and swap in a new graph; runs inside the caller's unit of work"""
    workspace = ctx.workspace
    store = GraphStore(session)

    clauses, variables = store.load_sources(workspace.id)
    plan = GraphBuilder(config).build(workspace.id, clauses, variables, store.warned_sources(workspace.id))

    now = utcnow()
    store.replace(plan, computed_at=now)

    workspace.last_sync_at = now
    session.add(workspace)

    audit_sink.record(
        session,
        ctx.actor,
        AuditEventType.GRAPH_SYNC,
        workspace_id=workspace.id,
        target_type="workspace",
        target_id=workspace.id,
        after_state={
            "integrityScore": plan.integrity_score,
            "nodeCount": plan.node_count,
            "edgeCount": plan.edge_count,
        },
    )
    return plan


def sync_workspace(
    session: Session, workspace_id: str, actor: Actor, config: Optional[EngineConfig] = None
) -> SyncResult:
    """
    Rebuild the dependency graph of a workspace from its clauses and variables

    The old node/edge set is replaced in a single transaction. Any manually
    curated edges are lost; the result only carries ownership edges.

    Args:
        session: Database session
        workspace_id: Workspace to sync
        actor: Caller
        config: Engine configuration override

    Returns:
        SyncResult with score, counts and unresolved drift count
    """
    with unit_of_work(session):
        ctx = require_membership(session, workspace_id, actor)
        enforcer.ensure_can_sync(ctx, load_rules(ctx.workspace))
        plan = _rebuild(session, ctx, config)
        drift_count = count_unresolved_drift(session, workspace_id)

    logger.info(
        f"Workspace {workspace_id} synced: score {plan.integrity_score}, "
        f"{plan.node_count} nodes, {plan.edge_count} edges",
        extra={'workspace_id': workspace_id, 'actor_id': actor.actor_id},
    )
    return SyncResult(
        integrity_score=plan.integrity_score,
        node_count=plan.node_count,
        edge_count=plan.edge_count,
        drift_count=drift_count,
    )


def recompute_graph(
    session: Session, workspace_id: str, actor: Actor, config: Optional[EngineConfig] = None
) -> GraphRebuildResult:
    """Rebuild the graph and report the new score and counts"""
    with unit_of_work(session):
        ctx = require_membership(session, workspace_id, actor)
        enforcer.ensure_can_sync(ctx, load_rules(ctx.workspace))
        plan = _rebuild(session, ctx, config)

    return GraphRebuildResult(
        integrity_score=plan.integrity_score,
        node_count=plan.node_count,
        edge_count=plan.edge_count,
    )


def current_integrity_score(session: Session, workspace_id: str) -> int:
    """Integrity score recomputed from the stored node flags"""
    return compute_integrity_score(GraphStore(session).list_nodes(workspace_id))


def get_graph(session: Session, workspace_id: str, actor: Actor) -> GraphOut:
    """Nodes, edges and integrity of a workspace graph"""
    require_membership(session, workspace_id, actor)
    store = GraphStore(session)

    nodes = store.list_nodes(workspace_id)
    edges = store.list_edges(workspace_id)
    state = store.get_state(workspace_id)

    if state is not None:
        integrity_score = state.integrity_score
        last_computed_at = state.last_computed_at
    else:
        integrity_score = compute_integrity_score(nodes)
        last_computed_at = utcnow()

    return GraphOut(
        nodes=[GraphNodeOut.model_validate(node) for node in nodes],
        edges=[GraphEdgeOut.model_validate(edge) for edge in edges],
        integrity_score=integrity_score,
        last_computed_at=last_computed_at,
    )


def _load_node(session: Session, node_id: str, actor: Actor) -> GraphNode:
    if not node_id:
        raise ValidationError("Node ID is required")
    node = GraphStore(session).get_node(node_id)
    if node is None:
        raise NotFoundError("Node not found", details={"nodeId": node_id})
    require_membership(session, node.workspace_id, actor)
    return node


def get_node(session: Session, node_id: str, actor: Actor) -> GraphNodeOut:
    return GraphNodeOut.model_validate(_load_node(session, node_id, actor))


def locate_node(session: Session, node_id: str, actor: Actor) -> NodeLocation:
    """
    Clause to navigate to for a node

    Variable nodes resolve to the clause owning the variable.
    """
    node = _load_node(session, node_id, actor)
    if node.clause_id:
        return NodeLocation(node_id=node.id, clause_id=node.clause_id)

    if node.variable_id:
        variable = session.get(Variable, node.variable_id)
        if variable is not None:
            return NodeLocation(node_id=node.id, clause_id=variable.clause_id, variable_id=variable.id)

    raise NotFoundError("Node has no source location", details={"nodeId": node_id})


def connected_nodes(session: Session, node_id: str, actor: Actor) -> List[GraphNodeOut]:
    node = _load_node(session, node_id, actor)
    return [GraphNodeOut.model_validate(neighbor) for neighbor in GraphStore(session).neighbors(node.id)]
