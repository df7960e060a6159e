# loan_engine/audit_routes.py
"""
Read-only audit trail endpoint.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .access import Actor, require_actor, require_membership
from .audit import audit_sink
from .database_config import get_db_session
from .models import AuditEventType
from .schemas import AuditEventOut

audit_router = APIRouter(prefix="/audit-events", tags=["audit"])


@audit_router.get("", response_model=List[AuditEventOut])
def list_audit_events(
    workspace_id: Optional[str] = Query(default=None, alias="workspaceId"),
    event_type: Optional[AuditEventType] = Query(default=None, alias="eventType"),
    limit: int = Query(default=200, ge=1, le=1000),
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    """Newest-first audit events of a workspace"""
    require_membership(session, workspace_id, actor)
    events = audit_sink.list_events(session, workspace_id, event_type=event_type, limit=limit)
    return [AuditEventOut.model_validate(event) for event in events]
