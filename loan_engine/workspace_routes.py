# loan_engine/workspace_routes.py
"""
Workspace sync, governance and variable edit endpoints.
"""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .access import Actor, require_actor
from .database_config import get_db_session
from .drift.detector import update_variable
from .governance import GovernanceRules, GovernanceRulesPatch, get_governance_rules, update_governance_rules
from .graph.service import sync_workspace
from .schemas import SyncResult, VariableUpdateRequest, VariableUpdateResult

workspace_router = APIRouter(tags=["workspaces"])


@workspace_router.post("/workspaces/{workspace_id}/sync", response_model=SyncResult)
def sync(
    workspace_id: str,
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    """
    Rebuild the workspace graph from its clauses and variables.

    The rebuilt graph holds only direct clause-to-variable edges
    (``simplified: true``); manually curated edges do not survive a resync.
    """
    return sync_workspace(session, workspace_id, actor)


@workspace_router.get("/workspaces/{workspace_id}/governance", response_model=GovernanceRules)
def read_governance(
    workspace_id: str,
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    return get_governance_rules(session, workspace_id, actor)


@workspace_router.patch("/workspaces/{workspace_id}/governance", response_model=GovernanceRules)
def patch_governance(
    workspace_id: str,
    patch: GovernanceRulesPatch,
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    """Merge-patch governance rules (workspace admins only)"""
    return update_governance_rules(session, workspace_id, patch, actor)


@workspace_router.patch("/variables/{variable_id}", response_model=VariableUpdateResult)
def patch_variable(
    variable_id: str,
    request: VariableUpdateRequest,
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    """Edit a variable; drift detection runs in the same transaction"""
    return update_variable(session, variable_id, request, actor)
