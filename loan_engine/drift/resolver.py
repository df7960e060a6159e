# loan_engine/drift/resolver.py
"""
Drift Resolver - move unresolved drift items into a terminal status

    unresolved -> overridden   baseline advanced to the current value
    unresolved -> reverted     current value restored to the baseline
    unresolved -> approved     divergence accepted, values untouched

Each transition is a conditional update on ``status = 'unresolved'``; a caller
that loses a race gets CONFLICT and changes nothing.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlmodel import Session

from ..access import Actor, MemberContext, require_membership
from ..audit import audit_sink
from ..database_config import unit_of_work
from ..engine_logging import get_logger
from ..errors import ConflictError, NotFoundError, ValidationError
from ..governance import GovernanceRules, enforcer, load_rules
from ..models import AuditEventType, Clause, DriftItem, DriftStatus, ReasonCategory, Variable, utcnow
from ..schemas import DriftItemOut
from .detector import load_drift

logger = get_logger(__name__)


@dataclass
class ResolutionContext:
    item: DriftItem
    clause: Clause
    member: MemberContext
    rules: GovernanceRules
    reason: str


def _require_reason(reason: Optional[str], action: str) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError(f"Reason is required for {action}")
    return cleaned


def _open(session: Session, drift_id: str, reason: Optional[str], actor: Actor, action: str) -> ResolutionContext:
    """Validate input, load the item and check it is still unresolved"""
    if not drift_id:
        raise ValidationError("Drift ID is required")
    cleaned = _require_reason(reason, action)

    item = load_drift(session, drift_id)
    member = require_membership(session, item.workspace_id, actor)

    clause = session.get(Clause, item.clause_id)
    if clause is None:
        raise NotFoundError("Clause not found", details={"clauseId": item.clause_id})

    if item.status != DriftStatus.UNRESOLVED:
        raise ConflictError(
            f"Cannot {action} drift with status: {item.status.value}",
            details={"driftId": item.id, "status": item.status.value},
        )

    return ResolutionContext(item=item, clause=clause, member=member, rules=load_rules(member.workspace), reason=cleaned)


def _transition(session: Session, item: DriftItem, status: DriftStatus, values: Dict[str, Any]) -> None:
    """Apply ``values`` only if the item is still unresolved"""
    result = session.exec(
        update(DriftItem.__table__)
        .where(DriftItem.__table__.c.id == item.id, DriftItem.__table__.c.status == DriftStatus.UNRESOLVED)
        .values(status=status, **values)
    )
    if result.rowcount != 1:
        raise ConflictError("Drift item is no longer unresolved", details={"driftId": item.id})
    session.refresh(item)


def override_baseline(
    session: Session,
    drift_id: str,
    reason: Optional[str],
    actor: Actor,
    reason_category: Optional[ReasonCategory] = None,
) -> DriftItemOut:
    """
    Accept the current value as the new baseline

    Args:
        session: Database session
        drift_id: Drift item to resolve
        reason: Required justification
        actor: Caller
        reason_category: Optional reason classification

    Returns:
        The overridden drift item
    """
    with unit_of_work(session):
        ctx = _open(session, drift_id, reason, actor, "baseline override")
        enforcer.ensure_can_override(ctx.member, ctx.rules, ctx.clause)

        item = ctx.item
        old_baseline = item.baseline_value
        now = utcnow()

        _transition(session, item, DriftStatus.OVERRIDDEN, {
            "baseline_value": item.current_value,
            "baseline_approved_at": now,
            "approved_by": actor.actor_id,
            "approved_at": now,
            "approval_reason": ctx.reason,
        })

        if item.variable_id:
            variable = session.get(Variable, item.variable_id)
            if variable is not None:
                variable.baseline_value = item.baseline_value
                session.add(variable)

        audit_sink.record(
            session,
            actor,
            AuditEventType.DRIFT_OVERRIDE,
            workspace_id=item.workspace_id,
            target_type="drift",
            target_id=item.id,
            before_state={"baselineValue": old_baseline, "status": DriftStatus.UNRESOLVED.value},
            after_state={"baselineValue": item.baseline_value, "status": DriftStatus.OVERRIDDEN.value},
            reason=ctx.reason,
            reason_category=reason_category,
        )
        result = DriftItemOut.model_validate(item)

    logger.info(f"Drift {drift_id} overridden", extra={'drift_id': drift_id, 'actor_id': actor.actor_id})
    return result


def revert_draft(
    session: Session,
    drift_id: str,
    reason: Optional[str],
    actor: Actor,
    reason_category: Optional[ReasonCategory] = None,
) -> DriftItemOut:
    """
    Restore the baseline value into the draft

    Variable-level items restore the variable value; clause-level items
    restore the clause body.
    """
    with unit_of_work(session):
        ctx = _open(session, drift_id, reason, actor, "draft revert")
        enforcer.ensure_can_revert(ctx.member, ctx.rules, ctx.clause)

        item = ctx.item
        old_current = item.current_value
        now = utcnow()

        _transition(session, item, DriftStatus.REVERTED, {
            "current_value": item.baseline_value,
            "current_modified_at": now,
            "current_modified_by": actor.actor_id,
            "approved_by": actor.actor_id,
            "approved_at": now,
            "approval_reason": ctx.reason,
        })

        variable = session.get(Variable, item.variable_id) if item.variable_id else None
        if variable is not None:
            variable.value = item.baseline_value
            variable.last_modified_at = now
            variable.last_modified_by = actor.actor_id
            session.add(variable)
        elif item.variable_id is None:
            ctx.clause.body = item.baseline_value
            ctx.clause.last_modified_at = now
            ctx.clause.last_modified_by = actor.actor_id
            session.add(ctx.clause)

        audit_sink.record(
            session,
            actor,
            AuditEventType.DRIFT_REVERT,
            workspace_id=item.workspace_id,
            target_type="drift",
            target_id=item.id,
            before_state={"currentValue": old_current, "status": DriftStatus.UNRESOLVED.value},
            after_state={"currentValue": item.current_value, "status": DriftStatus.REVERTED.value},
            reason=ctx.reason,
            reason_category=reason_category,
        )
        result = DriftItemOut.model_validate(item)

    logger.info(f"Drift {drift_id} reverted", extra={'drift_id': drift_id, 'actor_id': actor.actor_id})
    return result


def approve_drift(session: Session, drift_id: str, reason: Optional[str], actor: Actor) -> DriftItemOut:
    """Accept the divergence as-is (risk/credit sign-off)"""
    with unit_of_work(session):
        ctx = _open(session, drift_id, reason, actor, "drift approval")
        enforcer.ensure_can_approve(ctx.member, ctx.rules)

        item = ctx.item
        now = utcnow()
        _transition(session, item, DriftStatus.APPROVED, {
            "approved_by": actor.actor_id,
            "approved_at": now,
            "approval_reason": ctx.reason,
        })

        audit_sink.record(
            session,
            actor,
            AuditEventType.DRIFT_APPROVE,
            workspace_id=item.workspace_id,
            target_type="drift",
            target_id=item.id,
            before_state={"status": DriftStatus.UNRESOLVED.value},
            after_state={"status": DriftStatus.APPROVED.value, "severity": item.severity.value},
            reason=ctx.reason,
        )
        result = DriftItemOut.model_validate(item)

    logger.info(f"Drift {drift_id} approved", extra={'drift_id': drift_id, 'actor_id': actor.actor_id})
    return result
