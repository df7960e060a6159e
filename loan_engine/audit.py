# audit.py
"""
Append-only audit sink.

Events are written inside the caller's unit of work so they commit or roll
back together with the change they describe. There is no update or
delete path.
"""

import json
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from .access import Actor
from .engine_logging import get_logger
from .models import AuditEvent, AuditEventType, ReasonCategory

logger = get_logger(__name__)


def _dump_state(state: Optional[Dict[str, Any]]) -> Optional[str]:
    if state is None:
        return None
    return json.dumps(state, default=str, sort_keys=True)


class AuditSink:
    """Writes immutable audit events"""

    def record(
        self,
        session: Session,
        actor: Actor,
        event_type: AuditEventType,
        workspace_id: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        before_state: Optional[Dict[str, Any]] = None,
        after_state: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        reason_category: Optional[ReasonCategory] = None,
    ) -> AuditEvent:
        """
        Stage one audit event in the session

        Args:
            session: Session of the surrounding unit of work
            actor: Caller performing the action
            event_type: Audit event type
            before_state: State before the change (serialized to JSON)
            after_state: State after the change (serialized to JSON)

        Returns:
            The pending AuditEvent row
        """
        event = AuditEvent(
            workspace_id=workspace_id,
            actor_id=actor.actor_id,
            actor_name=actor.actor_name,
            event_type=event_type,
            target_type=target_type,
            target_id=target_id,
            before_state=_dump_state(before_state),
            after_state=_dump_state(after_state),
            reason=reason,
            reason_category=reason_category,
        )
        session.add(event)
        logger.debug(
            f"Audit {event_type.value} staged",
            extra={'workspace_id': workspace_id, 'actor_id': actor.actor_id},
        )
        return event

    def list_events(
        self,
        session: Session,
        workspace_id: str,
        event_type: Optional[AuditEventType] = None,
        limit: int = 200,
    ) -> List[AuditEvent]:
        """Newest-first read of a workspace's events"""
        statement = select(AuditEvent).where(AuditEvent.workspace_id == workspace_id)
        if event_type is not None:
            statement = statement.where(AuditEvent.event_type == event_type)
        statement = statement.order_by(AuditEvent.timestamp.desc()).limit(limit)
        return list(session.exec(statement).all())


audit_sink = AuditSink()
