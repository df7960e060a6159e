# access.py
"""
Caller identity and workspace membership checks.

Session issuance lives outside the engine: the gateway authenticates the user
and forwards the identity in ``X-Actor-Id`` / ``X-Actor-Name`` headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from .engine_logging import get_logger
from .errors import ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from .models import MemberRole, MemberStatus, Workspace, WorkspaceMember

logger = get_logger(__name__)


class Actor(BaseModel):
    """Authenticated caller"""
    actor_id: str = Field(description="User ID")
    actor_name: str = Field(description="Display name recorded in the audit trail")


async def require_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
) -> Actor:
    """
    Require caller identity (dependency)

    Raises:
        UnauthorizedError: If the identity header is missing
    """
    if not x_actor_id or not x_actor_id.strip():
        raise UnauthorizedError("Authentication required")
    actor_id = x_actor_id.strip()
    name = (x_actor_name or "").strip() or actor_id
    return Actor(actor_id=actor_id, actor_name=name)


@dataclass
class MemberContext:
    """Active membership of an actor in one workspace"""
    actor: Actor
    workspace: Workspace
    member: WorkspaceMember

    @property
    def is_admin(self) -> bool:
        return bool(self.member.is_admin)

    @property
    def role(self) -> MemberRole:
        return self.member.role

    @property
    def is_external_counsel(self) -> bool:
        return bool(self.member.is_external_counsel)

    def has_role(self, *roles: MemberRole) -> bool:
        return self.member.role in roles


def get_workspace(session: Session, workspace_id: Optional[str]) -> Workspace:
    """Load a workspace or raise NOT_FOUND"""
    if not workspace_id:
        raise ValidationError("Workspace ID is required")
    workspace = session.get(Workspace, workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace not found", details={"workspaceId": workspace_id})
    return workspace


def require_membership(session: Session, workspace_id: Optional[str], actor: Actor) -> MemberContext:
    """
    Resolve the actor's active membership in a workspace

    Raises:
        NotFoundError: Workspace does not exist
        ForbiddenError: Actor has no active membership
    """
    workspace = get_workspace(session, workspace_id)
    member = session.exec(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace.id,
            WorkspaceMember.user_id == actor.actor_id,
            WorkspaceMember.status == MemberStatus.ACTIVE,
        )
    ).first()

    if member is None:
        logger.info(f"Access denied: {actor.actor_id} is not an active member of {workspace.id}")
        raise ForbiddenError("Access denied to this workspace")

    return MemberContext(actor=actor, workspace=workspace, member=member)
