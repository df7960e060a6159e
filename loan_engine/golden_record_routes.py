# loan_engine/golden_record_routes.py
"""
Golden record endpoints: readiness, export and publish.
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlmodel import Session

from . import golden_record
from .access import Actor, require_actor
from .database_config import get_db_session
from .schemas import ConnectorOut, CovenantOut, ExportResult, GoldenRecordOut, PublishCheck, PublishRequest

golden_record_router = APIRouter(prefix="/golden-records", tags=["golden-record"])


@golden_record_router.get("/{workspace_id}", response_model=GoldenRecordOut)
def get_golden_record(
    workspace_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)
):
    return golden_record.get_golden_record(session, workspace_id, actor)


@golden_record_router.get("/{workspace_id}/publish-check", response_model=PublishCheck)
def publish_check(
    workspace_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)
):
    return golden_record.can_publish(session, workspace_id, actor)


@golden_record_router.get("/{workspace_id}/connectors", response_model=List[ConnectorOut])
def connectors(
    workspace_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)
):
    return golden_record.list_connectors(session, workspace_id, actor)


@golden_record_router.get("/{workspace_id}/covenants", response_model=List[CovenantOut])
def covenants(
    workspace_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)
):
    return golden_record.list_covenants(session, workspace_id, actor)


@golden_record_router.post("/{workspace_id}/export", response_model=ExportResult)
def export(
    workspace_id: str, session: Session = Depends(get_db_session), actor: Actor = Depends(require_actor)
):
    return golden_record.export_schema(session, workspace_id, actor)


@golden_record_router.post("/{workspace_id}/publish", response_model=GoldenRecordOut)
def publish(
    workspace_id: str,
    request: PublishRequest,
    session: Session = Depends(get_db_session),
    actor: Actor = Depends(require_actor),
):
    """Publish to downstream connectors; rejected with FORBIDDEN while IN_REVIEW"""
    return golden_record.publish(session, workspace_id, request.reason, actor, request.reason_category)
