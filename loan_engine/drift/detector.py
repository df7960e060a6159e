# loan_engine/drift/detector.py
"""
Drift Detector - compare variable values against their approved baselines

Creates or refreshes at most one unresolved drift item per variable. Items in
a terminal status are never touched here.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import case, func, insert, or_, text
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, select

from ..access import Actor, require_membership
from ..audit import audit_sink
from ..config import EngineConfig
from ..database_config import unit_of_work
from ..engine_logging import get_logger
from ..errors import ConflictError, NotFoundError, ValidationError
from ..governance import enforcer, load_rules
from ..models import (
    ACTIVE_DRIFT_WHERE,
    AuditEventType,
    Clause,
    ClauseType,
    DriftItem,
    DriftSeverity,
    DriftStatus,
    Variable,
    utcnow,
)
from ..schemas import DriftItemOut, VariableOut, VariableUpdateRequest, VariableUpdateResult
from .severity import SeverityPolicy, get_severity_policy

logger = get_logger(__name__)

SEVERITY_RANK = case(
    (DriftItem.severity == DriftSeverity.HIGH, 0),
    (DriftItem.severity == DriftSeverity.MEDIUM, 1),
    else_=2,
)


class DriftDetector:
    """Maintains the unresolved drift item of each drifting variable"""

    def __init__(self, policy: Optional[SeverityPolicy] = None, config: Optional[EngineConfig] = None):
        self.policy = policy or get_severity_policy(config)

    def detect(
        self,
        session: Session,
        clause: Clause,
        variable: Variable,
        actor_id: str,
        severity: Optional[DriftSeverity] = None,
        baseline_approved_at: Optional[datetime] = None,
    ) -> Optional[DriftItem]:
        """
        Run drift detection for one variable

        Args:
            session: Session of the surrounding unit of work
            clause: Clause owning the variable
            variable: Variable to compare
            actor_id: Who made the current value
            severity: Severity supplied by the caller; the policy decides when None
            baseline_approved_at: Approval time recorded on a new item

        Returns:
            The unresolved item tracking the divergence, or None when there is
            no divergence or it was already accepted
        """
        if variable.baseline_value is None or variable.value == variable.baseline_value:
            return None

        active = self._active_item(session, variable)
        if active is not None:
            return self._refresh(session, active, clause, variable, actor_id, severity)

        if self._already_accepted(session, variable):
            logger.debug(f"Drift on variable {variable.id} already approved, not reopening")
            return None

        item = DriftItem(
            workspace_id=variable.workspace_id,
            clause_id=clause.id,
            variable_id=variable.id,
            title=f"{variable.label} Change",
            type=clause.type,
            severity=severity or self.policy.classify(clause.type, variable.baseline_value, variable.value),
            baseline_value=variable.baseline_value,
            baseline_approved_at=baseline_approved_at or utcnow(),
            current_value=variable.value,
            current_modified_at=variable.last_modified_at or utcnow(),
            current_modified_by=variable.last_modified_by or actor_id,
            status=DriftStatus.UNRESOLVED,
        )
        if self._insert_unless_active(session, item):
            logger.info(
                f"Drift detected on {variable.label}: {variable.baseline_value} -> {variable.value}",
                extra={'workspace_id': variable.workspace_id, 'drift_id': item.id},
            )
            return session.get(DriftItem, item.id)

        # Another writer created the active item first
        winner = self._active_item(session, variable)
        if winner is None:
            raise ConflictError("Drift item changed concurrently", details={"variableId": variable.id})
        return self._refresh(session, winner, clause, variable, actor_id, severity)

    def _active_item(self, session: Session, variable: Variable) -> Optional[DriftItem]:
        return session.exec(
            select(DriftItem).where(
                DriftItem.workspace_id == variable.workspace_id,
                DriftItem.variable_id == variable.id,
                DriftItem.status == DriftStatus.UNRESOLVED,
            )
        ).first()

    def _already_accepted(self, session: Session, variable: Variable) -> bool:
        approved = session.exec(
            select(DriftItem).where(
                DriftItem.workspace_id == variable.workspace_id,
                DriftItem.variable_id == variable.id,
                DriftItem.status == DriftStatus.APPROVED,
                DriftItem.baseline_value == variable.baseline_value,
                DriftItem.current_value == variable.value,
            )
        ).first()
        return approved is not None

    def _refresh(
        self,
        session: Session,
        item: DriftItem,
        clause: Clause,
        variable: Variable,
        actor_id: str,
        severity: Optional[DriftSeverity],
    ) -> DriftItem:
        """Point an unresolved item at the variable's latest value"""
        if severity is None and self.policy.value_sensitive:
            severity = self.policy.classify(clause.type, item.baseline_value, variable.value)

        item.current_value = variable.value
        item.current_modified_at = variable.last_modified_at or utcnow()
        item.current_modified_by = variable.last_modified_by or actor_id
        if severity is not None:
            item.severity = severity
        session.add(item)
        session.flush()
        return item

    @staticmethod
    def _insert_unless_active(session: Session, item: DriftItem) -> bool:
        """Insert ``item``; False when the active-item unique index already holds one"""
        values = {column.name: getattr(item, column.name) for column in DriftItem.__table__.columns}
        dialect = session.get_bind().dialect.name

        if dialect == "postgresql":
            statement = postgresql_insert(DriftItem.__table__).values(**values)
        elif dialect == "sqlite":
            statement = sqlite_insert(DriftItem.__table__).values(**values)
        else:
            session.exec(insert(DriftItem.__table__).values(**values))
            return True

        statement = statement.on_conflict_do_nothing(
            index_elements=["workspace_id", "variable_id"],
            index_where=text(ACTIVE_DRIFT_WHERE),
        )
        result = session.exec(statement)
        return result.rowcount == 1


# Aggregates

def count_unresolved_drift(session: Session, workspace_id: str) -> int:
    return session.exec(
        select(func.count()).select_from(DriftItem).where(
            DriftItem.workspace_id == workspace_id,
            DriftItem.status == DriftStatus.UNRESOLVED,
        )
    ).one()


def unresolved_high_drift_count(session: Session, workspace_id: str) -> int:
    """Exact number of unresolved HIGH severity items"""
    return session.exec(
        select(func.count()).select_from(DriftItem).where(
            DriftItem.workspace_id == workspace_id,
            DriftItem.status == DriftStatus.UNRESOLVED,
            DriftItem.severity == DriftSeverity.HIGH,
        )
    ).one()


def get_high_drift_count(session: Session, workspace_id: str, actor: Actor) -> int:
    require_membership(session, workspace_id, actor)
    return unresolved_high_drift_count(session, workspace_id)


def is_publish_blocked(session: Session, workspace_id: str, actor: Actor) -> bool:
    """True when governance blocks publishing because of unresolved HIGH drift"""
    ctx = require_membership(session, workspace_id, actor)
    rules = load_rules(ctx.workspace)
    return enforcer.publish_blocked(rules, unresolved_high_drift_count(session, workspace_id))


# Reads

def list_drift(
    session: Session,
    workspace_id: str,
    actor: Actor,
    severity: Optional[DriftSeverity] = None,
    status: Optional[DriftStatus] = None,
    drift_type: Optional[ClauseType] = None,
    keyword: Optional[str] = None,
) -> List[DriftItemOut]:
    """
    Drift items of a workspace, HIGH first, then most recently modified

    Keyword matching is case-insensitive over title, baseline and current value.
    """
    require_membership(session, workspace_id, actor)

    statement = select(DriftItem).where(DriftItem.workspace_id == workspace_id)
    if severity is not None:
        statement = statement.where(DriftItem.severity == severity)
    if status is not None:
        statement = statement.where(DriftItem.status == status)
    if drift_type is not None:
        statement = statement.where(DriftItem.type == drift_type)
    if keyword and keyword.strip():
        pattern = f"%{keyword.strip().lower()}%"
        statement = statement.where(or_(
            func.lower(DriftItem.title).like(pattern),
            func.lower(DriftItem.baseline_value).like(pattern),
            func.lower(DriftItem.current_value).like(pattern),
        ))

    statement = statement.order_by(SEVERITY_RANK, DriftItem.current_modified_at.desc())
    return [DriftItemOut.model_validate(item) for item in session.exec(statement).all()]


def load_drift(session: Session, drift_id: Optional[str]) -> DriftItem:
    if not drift_id:
        raise ValidationError("Drift ID is required")
    item = session.get(DriftItem, drift_id)
    if item is None:
        raise NotFoundError("Drift item not found", details={"driftId": drift_id})
    return item


def get_drift(session: Session, drift_id: str, actor: Actor) -> DriftItemOut:
    item = load_drift(session, drift_id)
    require_membership(session, item.workspace_id, actor)
    return DriftItemOut.model_validate(item)


# Writes

def recompute_drift(
    session: Session, workspace_id: str, actor: Actor, config: Optional[EngineConfig] = None
) -> int:
    """
    Run detection for every variable of a workspace

    Returns:
        Number of unresolved drift items afterwards
    """
    detector = DriftDetector(config=config)

    with unit_of_work(session):
        ctx = require_membership(session, workspace_id, actor)
        enforcer.ensure_not_read_only(ctx, load_rules(ctx.workspace), "recompute drift")

        clauses = {
            clause.id: clause
            for clause in session.exec(select(Clause).where(Clause.workspace_id == workspace_id)).all()
        }
        variables = session.exec(select(Variable).where(Variable.workspace_id == workspace_id)).all()

        for variable in variables:
            clause = clauses.get(variable.clause_id)
            if clause is None:
                continue
            detector.detect(
                session, clause, variable, actor.actor_id, baseline_approved_at=ctx.workspace.created_at
            )

        drift_count = count_unresolved_drift(session, workspace_id)

    logger.info(f"Drift recomputed for {workspace_id}: {drift_count} unresolved", extra={'workspace_id': workspace_id})
    return drift_count


def update_variable(
    session: Session,
    variable_id: str,
    request: VariableUpdateRequest,
    actor: Actor,
    config: Optional[EngineConfig] = None,
) -> VariableUpdateResult:
    """
    Edit a variable and run drift detection for it in the same transaction

    Args:
        session: Database session
        variable_id: Variable to edit
        request: Fields to change, reason and optional drift severity
        actor: Caller
        config: Engine configuration override

    Returns:
        The updated variable and the drift item now tracking it, if any
    """
    if not variable_id:
        raise ValidationError("Variable ID is required")
    if request.value is None and request.label is None and request.unit is None:
        raise ValidationError("No changes supplied")

    detector = DriftDetector(config=config)

    with unit_of_work(session):
        variable = session.get(Variable, variable_id)
        if variable is None:
            raise NotFoundError("Variable not found", details={"variableId": variable_id})

        ctx = require_membership(session, variable.workspace_id, actor)
        clause = session.get(Clause, variable.clause_id)
        if clause is None:
            raise NotFoundError("Clause not found", details={"clauseId": variable.clause_id})

        reason = (request.reason or "").strip() or None
        enforcer.ensure_can_edit_variable(ctx, load_rules(ctx.workspace), clause, reason)

        before = {"label": variable.label, "value": variable.value, "unit": variable.unit}
        if request.label is not None:
            variable.label = request.label
        if request.value is not None:
            variable.value = request.value
        if request.unit is not None:
            variable.unit = request.unit
        variable.last_modified_at = utcnow()
        variable.last_modified_by = actor.actor_id
        session.add(variable)
        session.flush()

        audit_sink.record(
            session,
            actor,
            AuditEventType.VARIABLE_EDIT,
            workspace_id=variable.workspace_id,
            target_type="variable",
            target_id=variable.id,
            before_state=before,
            after_state={"label": variable.label, "value": variable.value, "unit": variable.unit},
            reason=reason,
            reason_category=request.reason_category,
        )

        drift = None
        if before["value"] != variable.value:
            drift = detector.detect(session, clause, variable, actor.actor_id, severity=request.severity)

        result = VariableUpdateResult(
            variable=VariableOut.model_validate(variable),
            drift=DriftItemOut.model_validate(drift) if drift is not None else None,
        )

    logger.info(
        f"Variable {variable_id} updated",
        extra={'workspace_id': variable.workspace_id, 'actor_id': actor.actor_id},
    )
    return result
