# loan_engine/graph_routes.py
"""
Dependency graph endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .access import Actor, require_actor
from .database_config import get_db_session
from .graph import service
from .schemas import GraphNodeOut, GraphOut, GraphRebuildResult, NodeLocation

graph_router = APIRouter(prefix="/graph", tags=["graph"])


# Node routes come first so "nodes" is never taken for a workspace id

@graph_router.get("/nodes/{node_id}", response_model=GraphNodeOut)
def get_node(node_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)):
    return service.get_node(session, node_id, actor)


@graph_router.get("/nodes/{node_id}/locate", response_model=NodeLocation)
def locate_node(node_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)):
    return service.locate_node(session, node_id, actor)


@graph_router.get("/nodes/{node_id}/connected", response_model=List[GraphNodeOut])
def connected_nodes(node_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)):
    return service.connected_nodes(session, node_id, actor)


@graph_router.get("/{workspace_id}", response_model=GraphOut)
def get_graph(workspace_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)):
    return service.get_graph(session, workspace_id, actor)


@graph_router.post("/{workspace_id}/recompute", response_model=GraphRebuildResult)
def recompute(workspace_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)):
    """Rebuild the graph; same simplification as a workspace sync"""
    return service.recompute_graph(session, workspace_id, actor)
