# loan_engine/drift_routes.py
"""
Drift listing, aggregates and resolution endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .access import Actor, require_actor
from .database_config import get_db_session
from .drift import detector, resolver
from .models import ClauseType, DriftSeverity, DriftStatus
from .schemas import (
    ApprovalRequest,
    BlockedResult,
    CountResult,
    DriftItemOut,
    DriftRecomputeResult,
    ResolutionRequest,
)

drift_router = APIRouter(prefix="/drifts", tags=["drift"])


@drift_router.get("", response_model=List[DriftItemOut])
def list_drift(
    workspace_id: Optional[str] = Query(default=None, alias="workspaceId"),
    severity: Optional[DriftSeverity] = Query(default=None),
    status: Optional[DriftStatus] = Query(default=None),
    drift_type: Optional[ClauseType] = Query(default=None, alias="type"),
    keyword: Optional[str] = Query(default=None),
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    """Drift items ordered HIGH to LOW, newest first within a severity"""
    return detector.list_drift(session, workspace_id, actor, severity, status, drift_type, keyword)


@drift_router.get("/high-drift-count", response_model=CountResult)
def high_drift_count(
    workspace_id: Optional[str] = Query(default=None, alias="workspaceId"),
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    return CountResult(count=detector.get_high_drift_count(session, workspace_id, actor))


@drift_router.get("/publish-blocked", response_model=BlockedResult)
def publish_blocked(
    workspace_id: Optional[str] = Query(default=None, alias="workspaceId"),
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    return BlockedResult(blocked=detector.is_publish_blocked(session, workspace_id, actor))


@drift_router.post("/recompute", response_model=DriftRecomputeResult)
def recompute(
    workspace_id: Optional[str] = Query(default=None, alias="workspaceId"),
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    return DriftRecomputeResult(drift_count=detector.recompute_drift(session, workspace_id, actor))


@drift_router.get("/{drift_id}", response_model=DriftItemOut)
def get_drift(drift_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)):
    return detector.get_drift(session, drift_id, actor)


@drift_router.post("/{drift_id}/override", response_model=DriftItemOut)
def override(
    drift_id: str,
    request: ResolutionRequest,
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    """Advance the baseline to the current value"""
    return resolver.override_baseline(session, drift_id, request.reason, actor, request.reason_category)


@drift_router.post("/{drift_id}/revert", response_model=DriftItemOut)
def revert(
    drift_id: str,
    request: ResolutionRequest,
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    """Restore the baseline value into the draft"""
    return resolver.revert_draft(session, drift_id, request.reason, actor, request.reason_category)


@drift_router.post("/{drift_id}/approve", response_model=DriftItemOut)
def approve(
    drift_id: str,
    request: ApprovalRequest,
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    return resolver.approve_drift(session, drift_id, request.reason, actor)
