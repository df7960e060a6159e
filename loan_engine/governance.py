# governance.py
"""
Governance Rule Store and Enforcer

Per-workspace boolean toggles stored as JSON on the workspace row, validated
into a typed model at the boundary and merge-patched field by field.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlmodel import Session

from .access import Actor, MemberContext, require_membership
from .audit import audit_sink
from .database_config import unit_of_work
from .engine_logging import get_logger
from .errors import ForbiddenError, ValidationError
from .models import AuditEventType, Clause, ClauseType, MemberRole, Workspace

logger = get_logger(__name__)


class GovernanceRules(BaseModel):
    """Effective governance configuration of a workspace"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    require_reason_for_sensitive_edits: bool = True
    legal_can_revert_draft: bool = False
    risk_approval_required_for_override: bool = False
    publish_blocked_when_high_drift: bool = True
    definitions_locked_after_approval: bool = False
    external_counsel_read_only: bool = False

    @classmethod
    def from_stored(cls, stored: Optional[Dict[str, Any]]) -> "GovernanceRules":
        """
        Build rules from the stored JSON blob.

        Unknown keys and non-boolean values are ignored; affected fields keep
        their defaults.
        """
        accepted: Dict[str, bool] = {}
        for name, field in cls.model_fields.items():
            for key in (field.alias, name):
                if stored and key in stored:
                    value = stored[key]
                    if isinstance(value, bool):
                        accepted[name] = value
                    else:
                        logger.warning(f"Ignoring non-boolean governance value for {key}: {value!r}")
                    break
        return cls(**accepted)

    def to_stored(self) -> Dict[str, bool]:
        return self.model_dump(by_alias=True)


class GovernanceRulesPatch(BaseModel):
    """Partial governance update; omitted fields are left untouched"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    require_reason_for_sensitive_edits: Optional[bool] = Field(default=None)
    legal_can_revert_draft: Optional[bool] = Field(default=None)
    risk_approval_required_for_override: Optional[bool] = Field(default=None)
    publish_blocked_when_high_drift: Optional[bool] = Field(default=None)
    definitions_locked_after_approval: Optional[bool] = Field(default=None)
    external_counsel_read_only: Optional[bool] = Field(default=None)


def merge_rules(current: GovernanceRules, patch: GovernanceRulesPatch) -> GovernanceRules:
    """Overlay the fields present in ``patch`` onto ``current``"""
    updates = patch.model_dump(exclude_unset=True, exclude_none=True)
    return current.model_copy(update=updates)


def load_rules(workspace: Workspace) -> GovernanceRules:
    return GovernanceRules.from_stored(workspace.governance_rules)


class GovernanceEnforcer:
    """Read-only rule checks consulted before any write"""

    def ensure_not_read_only(self, ctx: MemberContext, rules: GovernanceRules, action: str) -> None:
        if rules.external_counsel_read_only and ctx.is_external_counsel:
            raise ForbiddenError(f"External counsel has read-only access and cannot {action}")

    def ensure_can_sync(self, ctx: MemberContext, rules: GovernanceRules) -> None:
        self.ensure_not_read_only(ctx, rules, "sync the graph")

    def ensure_definition_unlocked(self, rules: GovernanceRules, clause: Clause) -> None:
        if rules.definitions_locked_after_approval and clause.type == ClauseType.DEFINITION:
            raise ForbiddenError("Definitions are locked after approval")

    def ensure_can_edit_variable(
        self, ctx: MemberContext, rules: GovernanceRules, clause: Clause, reason: Optional[str]
    ) -> None:
        self.ensure_not_read_only(ctx, rules, "edit variables")
        if clause.is_locked:
            raise ForbiddenError("Clause is locked and cannot be edited")
        self.ensure_definition_unlocked(rules, clause)
        if rules.require_reason_for_sensitive_edits and clause.is_sensitive and not (reason or "").strip():
            raise ValidationError("Reason is required for editing sensitive clauses")

    def ensure_can_override(self, ctx: MemberContext, rules: GovernanceRules, clause: Clause) -> None:
        self.ensure_not_read_only(ctx, rules, "override baselines")
        self.ensure_definition_unlocked(rules, clause)
        if ctx.is_admin:
            return
        if rules.risk_approval_required_for_override:
            if not ctx.has_role(MemberRole.RISK):
                raise ForbiddenError("Baseline override requires the risk role")
        elif not ctx.has_role(MemberRole.AGENT):
            raise ForbiddenError("Baseline override is not permitted for this role")

    def ensure_can_revert(self, ctx: MemberContext, rules: GovernanceRules, clause: Clause) -> None:
        self.ensure_not_read_only(ctx, rules, "revert drafts")
        if clause.is_locked:
            raise ForbiddenError("Clause is locked and cannot be reverted")
        self.ensure_definition_unlocked(rules, clause)
        if ctx.is_admin or ctx.has_role(MemberRole.AGENT):
            return
        if ctx.has_role(MemberRole.LEGAL) and rules.legal_can_revert_draft:
            return
        raise ForbiddenError("Reverting a draft is not permitted for this role")

    def ensure_can_approve(self, ctx: MemberContext, rules: GovernanceRules) -> None:
        self.ensure_not_read_only(ctx, rules, "approve drift")
        if not (ctx.is_admin or ctx.has_role(MemberRole.RISK)):
            raise ForbiddenError("Drift approval requires the risk/credit role")

    def ensure_can_export(self, ctx: MemberContext, rules: GovernanceRules) -> None:
        self.ensure_not_read_only(ctx, rules, "export the golden record")

    def ensure_can_publish(self, ctx: MemberContext, rules: GovernanceRules) -> None:
        self.ensure_not_read_only(ctx, rules, "publish the golden record")

    @staticmethod
    def publish_blocked(rules: GovernanceRules, unresolved_high_drift_count: int) -> bool:
        return rules.publish_blocked_when_high_drift and unresolved_high_drift_count > 0


enforcer = GovernanceEnforcer()


def get_governance_rules(session: Session, workspace_id: str, actor: Actor) -> GovernanceRules:
    ctx = require_membership(session, workspace_id, actor)
    return load_rules(ctx.workspace)


def update_governance_rules(
    session: Session, workspace_id: str, patch: GovernanceRulesPatch, actor: Actor
) -> GovernanceRules:
    """
    Merge-patch a workspace's governance rules (admins only)

    Args:
        session: Database session
        workspace_id: Target workspace
        patch: Fields to overlay
        actor: Caller

    Returns:
        The effective rules after the update
    """
    with unit_of_work(session):
        ctx = require_membership(session, workspace_id, actor)
        if not ctx.is_admin:
            raise ForbiddenError("Only admins can update governance rules")

        before = load_rules(ctx.workspace)
        after = merge_rules(before, patch)

        # Assign a new dict so the JSON column change is detected
        ctx.workspace.governance_rules = after.to_stored()
        session.add(ctx.workspace)

        audit_sink.record(
            session,
            actor,
            AuditEventType.GOVERNANCE_UPDATED,
            workspace_id=ctx.workspace.id,
            target_type="workspace",
            target_id=ctx.workspace.id,
            before_state=before.to_stored(),
            after_state=after.to_stored(),
        )

    logger.info(f"Governance rules updated for workspace {workspace_id}", extra={'workspace_id': workspace_id})
    return after
