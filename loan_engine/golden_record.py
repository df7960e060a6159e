# loan_engine/golden_record.py
"""
Publish Gate - golden record readiness, export and publish

Readiness is never trusted from storage: every read recomputes the integrity
score from node flags and the unresolved HIGH drift count, then refreshes the
stored row.
"""

import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .access import Actor, MemberContext, require_membership
from .audit import audit_sink
from .config import EngineConfig, get_engine_config
from .database_config import unit_of_work
from .drift.detector import unresolved_high_drift_count
from .engine_logging import get_logger
from .errors import PublishBlockedError, ValidationError
from .governance import enforcer, load_rules
from .graph.service import current_integrity_score
from .models import (
    AuditEventType,
    Clause,
    ConnectorStatus,
    ConnectorType,
    Covenant,
    DownstreamConnector,
    GoldenRecord,
    GoldenRecordStatus,
    ReasonCategory,
    Variable,
    Workspace,
    utcnow,
)
from .schemas import ConnectorOut, CovenantOut, ExportResult, GoldenRecordOut, PublishCheck

logger = get_logger(__name__)

SNAPSHOT_VERSION = "1.0"

DEFAULT_CONNECTORS: List[Tuple[str, str, ConnectorType]] = [
    ("loaniq", "LoanIQ", ConnectorType.LOANIQ),
    ("finastra", "Finastra", ConnectorType.FINASTRA),
    ("allvue", "Allvue", ConnectorType.ALLVUE),
    ("covenant", "CovenantTracker", ConnectorType.COVENANT_TRACKER),
]


def compute_status(integrity_score: int, high_drift_count: int, threshold: int = 90) -> GoldenRecordStatus:
    """READY iff the score meets the threshold and no HIGH drift is unresolved"""
    if integrity_score >= threshold and high_drift_count == 0:
        return GoldenRecordStatus.READY
    return GoldenRecordStatus.IN_REVIEW


def default_connectors(workspace_id: str) -> List[DownstreamConnector]:
    return [
        DownstreamConnector(
            id=f"connector-{slug}-{workspace_id}",
            workspace_id=workspace_id,
            name=name,
            type=connector_type,
            status=ConnectorStatus.DISCONNECTED,
        )
        for slug, name, connector_type in DEFAULT_CONNECTORS
    ]


def build_snapshot(session: Session, workspace: Workspace, generated_at: Optional[datetime] = None) -> str:
    """Serialize the workspace's structured terms for downstream systems"""
    clauses = session.exec(
        select(Clause).where(Clause.workspace_id == workspace.id).order_by(Clause.order)
    ).all()
    variables = session.exec(
        select(Variable).where(Variable.workspace_id == workspace.id).order_by(Variable.label)
    ).all()
    covenants = session.exec(
        select(Covenant).where(Covenant.workspace_id == workspace.id).order_by(Covenant.name)
    ).all()

    snapshot: Dict[str, Any] = {
        "version": SNAPSHOT_VERSION,
        "generatedAt": (generated_at or utcnow()).isoformat(),
        "workspace": {
            "id": workspace.id,
            "name": workspace.name,
            "currency": workspace.currency,
            "amount": workspace.amount,
            "standard": workspace.standard,
        },
        "clauses": [
            {"id": c.id, "title": c.title, "type": c.type.value, "order": c.order}
            for c in clauses
        ],
        "variables": [
            {
                "id": v.id,
                "label": v.label,
                "type": v.type.value,
                "value": v.value,
                "unit": v.unit,
                "clauseId": v.clause_id,
            }
            for v in variables
        ],
        "covenants": [
            {
                "id": c.id,
                "name": c.name,
                "testFrequency": c.test_frequency,
                "threshold": c.threshold,
                "calculationBasis": c.calculation_basis,
                "clauseId": c.clause_id,
            }
            for c in covenants
        ],
    }
    return json.dumps(snapshot, indent=2)


def export_filename(workspace_name: str, at: datetime) -> str:
    """golden_record_<name>_<ISO timestamp with ':' and '.' replaced>.json"""
    timestamp = at.strftime("%Y-%m-%dT%H-%M-%S-") + f"{at.microsecond // 1000:03d}Z"
    name = re.sub(r"\s+", "_", workspace_name)
    return f"golden_record_{name}_{timestamp}.json"


class PublishGate:
    """Golden record operations for one session"""

    def __init__(self, session: Session, config: Optional[EngineConfig] = None):
        self.session = session
        self.config = config or get_engine_config()

    def assess(self, workspace_id: str) -> Tuple[int, int, GoldenRecordStatus]:
        """Current (integrity score, unresolved HIGH count, status)"""
        score = current_integrity_score(self.session, workspace_id)
        high_count = unresolved_high_drift_count(self.session, workspace_id)
        return score, high_count, compute_status(score, high_count, self.config.ready_integrity_threshold)

    def connectors(self, workspace_id: str) -> List[DownstreamConnector]:
        return list(self.session.exec(
            select(DownstreamConnector)
            .where(DownstreamConnector.workspace_id == workspace_id)
            .order_by(DownstreamConnector.name)
        ).all())

    def covenants(self, workspace_id: str) -> List[Covenant]:
        return list(self.session.exec(
            select(Covenant).where(Covenant.workspace_id == workspace_id).order_by(Covenant.name)
        ).all())

    def refresh(self, workspace: Workspace) -> GoldenRecord:
        """
        Recompute readiness and store it, creating the record on first access

        Default connectors are created together with a new record when the
        workspace has none.
        """
        score, high_count, status = self.assess(workspace.id)
        snapshot = build_snapshot(self.session, workspace)

        record = self._stored_record(workspace.id)
        if record is None:
            record = self._create_record(workspace)

        record.status = status
        record.integrity_score = score
        record.unresolved_high_drift_count = high_count
        record.snapshot_json = snapshot
        record.updated_at = utcnow()
        self.session.add(record)
        self.session.flush()
        return record

    def _stored_record(self, workspace_id: str) -> Optional[GoldenRecord]:
        return self.session.exec(
            select(GoldenRecord).where(GoldenRecord.workspace_id == workspace_id)
        ).first()

    def _create_record(self, workspace: Workspace) -> GoldenRecord:
        workspace_id = workspace.id
        created_connectors = not self.connectors(workspace_id)
        record = GoldenRecord(workspace_id=workspace_id)
        self.session.add(record)
        if created_connectors:
            self.session.add_all(default_connectors(workspace_id))
        try:
            self.session.flush()
        except IntegrityError:
            # A concurrent first read stored the record
            self.session.rollback()
            logger.info(f"Golden record for {workspace_id} created concurrently, reusing it",
                        extra={'workspace_id': workspace_id})
            return self._stored_record(workspace_id)

        if created_connectors:
            logger.info(f"Created default connectors for {workspace_id}", extra={'workspace_id': workspace_id})
        return record

    def to_out(self, record: GoldenRecord) -> GoldenRecordOut:
        return GoldenRecordOut(
            id=record.id,
            workspace_id=record.workspace_id,
            status=record.status,
            integrity_score=record.integrity_score,
            unresolved_high_drift_count=record.unresolved_high_drift_count,
            last_export_at=record.last_export_at,
            last_publish_at=record.last_publish_at,
            snapshot_json=record.snapshot_json,
            connectors=[ConnectorOut.model_validate(c) for c in self.connectors(record.workspace_id)],
            covenants=[CovenantOut.model_validate(c) for c in self.covenants(record.workspace_id)],
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


def get_golden_record(
    session: Session, workspace_id: str, actor: Actor, config: Optional[EngineConfig] = None
) -> GoldenRecordOut:
    """Golden record with freshly computed status, connectors and covenants"""
    with unit_of_work(session):
        ctx = require_membership(session, workspace_id, actor)
        gate = PublishGate(session, config)
        result = gate.to_out(gate.refresh(ctx.workspace))
    return result


def can_publish(
    session: Session, workspace_id: str, actor: Actor, config: Optional[EngineConfig] = None
) -> PublishCheck:
    """Whether a publish would be accepted right now"""
    ctx = require_membership(session, workspace_id, actor)
    gate = PublishGate(session, config)
    score, high_count, status = gate.assess(workspace_id)
    return _publish_check(ctx, gate, score, high_count, status)


def _publish_check(
    ctx: MemberContext, gate: PublishGate, score: int, high_count: int, status: GoldenRecordStatus
) -> PublishCheck:
    reason = None
    if status != GoldenRecordStatus.READY:
        if high_count > 0:
            reason = f"{high_count} unresolved HIGH severity drift item(s)"
        else:
            reason = f"Integrity score {score} is below {gate.config.ready_integrity_threshold}"
    elif load_rules(ctx.workspace).external_counsel_read_only and ctx.is_external_counsel:
        reason = "External counsel has read-only access"

    return PublishCheck(
        allowed=reason is None,
        reason=reason,
        integrity_score=score,
        unresolved_high_drift_count=high_count,
    )


def export_schema(
    session: Session, workspace_id: str, actor: Actor, config: Optional[EngineConfig] = None
) -> ExportResult:
    """
    Export the golden record snapshot as JSON

    Export does not depend on readiness. It stamps lastExportAt and writes an
    EXPORT_JSON audit event with the file name and size.
    """
    with unit_of_work(session):
        ctx = require_membership(session, workspace_id, actor)
        enforcer.ensure_can_export(ctx, load_rules(ctx.workspace))

        gate = PublishGate(session, config)
        record = gate.refresh(ctx.workspace)

        now = utcnow()
        filename = export_filename(ctx.workspace.name, now)
        record.last_export_at = now
        session.add(record)

        audit_sink.record(
            session,
            actor,
            AuditEventType.EXPORT_JSON,
            workspace_id=workspace_id,
            target_type="golden_record",
            target_id=record.id,
            after_state={"filename": filename, "size": len(record.snapshot_json)},
        )
        snapshot = record.snapshot_json

    logger.info(f"Golden record exported: {filename}", extra={'workspace_id': workspace_id, 'actor_id': actor.actor_id})
    return ExportResult(snapshot_json=snapshot, filename=filename)


def publish(
    session: Session,
    workspace_id: str,
    reason: Optional[str],
    actor: Actor,
    reason_category: Optional[ReasonCategory] = None,
    config: Optional[EngineConfig] = None,
) -> GoldenRecordOut:
    """
    Publish the golden record to every downstream connector

    Args:
        session: Database session
        workspace_id: Workspace to publish
        reason: Required justification
        actor: Caller
        reason_category: Optional reason classification
        config: Engine configuration override

    Returns:
        The golden record after publishing

    Raises:
        ValidationError: Empty reason
        PublishBlockedError: Record is IN_REVIEW; nothing is written
    """
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("Reason is required for publishing")

    with unit_of_work(session):
        ctx = require_membership(session, workspace_id, actor)
        enforcer.ensure_can_publish(ctx, load_rules(ctx.workspace))

        gate = PublishGate(session, config)
        score, high_count, status = gate.assess(workspace_id)
        if status != GoldenRecordStatus.READY:
            logger.info(
                f"Publish blocked for {workspace_id}: score {score}, {high_count} HIGH drift",
                extra={'workspace_id': workspace_id, 'actor_id': actor.actor_id},
            )
            raise PublishBlockedError(score, high_count)

        record = gate.refresh(ctx.workspace)
        now = utcnow()
        record.last_publish_at = now
        session.add(record)
        session.flush()

        session.exec(
            update(DownstreamConnector.__table__)
            .where(DownstreamConnector.__table__.c.workspace_id == workspace_id)
            .values(status=ConnectorStatus.READY, last_sync_at=now)
        )
        session.expire_all()

        connector_count = len(gate.connectors(workspace_id))
        audit_sink.record(
            session,
            actor,
            AuditEventType.PUBLISH,
            workspace_id=workspace_id,
            target_type="golden_record",
            target_id=record.id,
            after_state={
                "status": GoldenRecordStatus.READY.value,
                "integrityScore": score,
                "connectorCount": connector_count,
            },
            reason=cleaned,
            reason_category=reason_category,
        )
        result = gate.to_out(record)

    logger.info(f"Golden record published for {workspace_id}", extra={'workspace_id': workspace_id, 'actor_id': actor.actor_id})
    return result


def list_connectors(session: Session, workspace_id: str, actor: Actor) -> List[ConnectorOut]:
    require_membership(session, workspace_id, actor)
    return [ConnectorOut.model_validate(c) for c in PublishGate(session).connectors(workspace_id)]


def list_covenants(session: Session, workspace_id: str, actor: Actor) -> List[CovenantOut]:
    require_membership(session, workspace_id, actor)
    return [CovenantOut.model_validate(c) for c in PublishGate(session).covenants(workspace_id)]
