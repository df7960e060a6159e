# models.py
"""
Relational models for the consistency engine.

Workspaces, members, clauses, variables and covenants are owned by the CRUD
surface and only read here; graph, drift, golden record, connector and audit
tables are written by the engine.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Type

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Enum as SQLEnum, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def enum_column(enum_cls: Type[Enum], nullable: bool = False, index: bool = False) -> Column:
    """Column storing enum *values* (not member names) as portable strings"""
    return Column(
        SQLEnum(
            enum_cls,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            length=32,
            validate_strings=True,
        ),
        nullable=nullable,
        index=index,
    )


def ts_column(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


# Enums

class MemberRole(str, Enum):
    """Workspace member role"""
    AGENT = "agent"
    LEGAL = "legal"
    RISK = "risk"
    INVESTOR = "investor"


class MemberStatus(str, Enum):
    """Workspace membership status"""
    ACTIVE = "active"
    PENDING = "pending"
    REMOVED = "removed"


class ClauseType(str, Enum):
    FINANCIAL = "financial"
    COVENANT = "covenant"
    DEFINITION = "definition"
    XREF = "xref"
    GENERAL = "general"


class VariableType(str, Enum):
    FINANCIAL = "financial"
    DEFINITION = "definition"
    COVENANT = "covenant"
    RATIO = "ratio"


class NodeCategory(str, Enum):
    """Graph node category"""
    FINANCIAL = "financial"
    COVENANT = "covenant"
    DEFINITION = "definition"
    XREF = "xref"


class DriftSeverity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class DriftStatus(str, Enum):
    """Drift item status; everything except UNRESOLVED is terminal"""
    UNRESOLVED = "unresolved"
    OVERRIDDEN = "overridden"
    REVERTED = "reverted"
    APPROVED = "approved"


class GoldenRecordStatus(str, Enum):
    READY = "READY"
    IN_REVIEW = "IN_REVIEW"


class ConnectorStatus(str, Enum):
    READY = "READY"
    IN_REVIEW = "IN_REVIEW"
    DISCONNECTED = "DISCONNECTED"


class ConnectorType(str, Enum):
    LOANIQ = "LoanIQ"
    FINASTRA = "Finastra"
    ALLVUE = "Allvue"
    COVENANT_TRACKER = "CovenantTracker"


class AuditEventType(str, Enum):
    """Audit events written by the engine"""
    VARIABLE_EDIT = "VARIABLE_EDIT"
    GRAPH_SYNC = "GRAPH_SYNC"
    DRIFT_OVERRIDE = "DRIFT_OVERRIDE"
    DRIFT_REVERT = "DRIFT_REVERT"
    DRIFT_APPROVE = "DRIFT_APPROVE"
    PUBLISH = "PUBLISH"
    EXPORT_JSON = "EXPORT_JSON"
    GOVERNANCE_UPDATED = "GOVERNANCE_UPDATED"


class ReasonCategory(str, Enum):
    BORROWER_REQUEST = "borrower_request"
    MARKET_CONDITIONS = "market_conditions"
    CREDIT_UPDATE = "credit_update"
    LEGAL_REQUIREMENT = "legal_requirement"
    OTHER = "other"


# Document models (owned by the CRUD surface)

class Workspace(SQLModel, table=True):
    """Workspace table - one facility agreement"""
    __tablename__ = "workspaces"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    name: str = Field(max_length=200, nullable=False)
    currency: str = Field(default="USD", max_length=3, nullable=False)
    amount: float = Field(default=0.0, nullable=False)
    standard: str = Field(default="LMA", max_length=20, nullable=False)
    created_by_id: Optional[str] = Field(default=None, max_length=36, nullable=True)
    governance_rules: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())
    last_sync_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())


class WorkspaceMember(SQLModel, table=True):
    """Workspace membership"""
    __tablename__ = "workspace_members"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    workspace_id: str = Field(foreign_key="workspaces.id", ondelete="CASCADE", index=True, nullable=False)
    user_id: str = Field(max_length=36, index=True, nullable=False)
    role: MemberRole = Field(default=MemberRole.INVESTOR, sa_column=enum_column(MemberRole))
    is_admin: bool = Field(default=False, nullable=False)
    is_external_counsel: bool = Field(default=False, nullable=False)
    status: MemberStatus = Field(default=MemberStatus.PENDING, sa_column=enum_column(MemberStatus, index=True))

    __table_args__ = (
        UniqueConstraint("user_id", "workspace_id", name="uq_workspace_member"),
    )


class Clause(SQLModel, table=True):
    """Clause table - one numbered section of the agreement"""
    __tablename__ = "clauses"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    workspace_id: str = Field(foreign_key="workspaces.id", ondelete="CASCADE", index=True, nullable=False)
    title: str = Field(max_length=300, nullable=False)
    body: str = Field(nullable=False)
    type: ClauseType = Field(sa_column=enum_column(ClauseType, index=True))
    order: int = Field(nullable=False)
    is_sensitive: bool = Field(default=False, nullable=False)
    is_locked: bool = Field(default=False, nullable=False)
    locked_by: Optional[str] = Field(default=None, max_length=36, nullable=True)
    locked_at: Optional[datetime] = Field(default=None, sa_column=ts_column(nullable=True))
    last_modified_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())
    last_modified_by: str = Field(max_length=36, nullable=False)

    __table_args__ = (
        UniqueConstraint("workspace_id", "order", name="uq_clause_workspace_order"),
    )


class Variable(SQLModel, table=True):
    """Variable bound to a clause"""
    __tablename__ = "variables"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    workspace_id: str = Field(foreign_key="workspaces.id", ondelete="CASCADE", index=True, nullable=False)
    clause_id: str = Field(foreign_key="clauses.id", ondelete="CASCADE", index=True, nullable=False)
    label: str = Field(max_length=200, nullable=False)
    type: VariableType = Field(sa_column=enum_column(VariableType, index=True))
    value: str = Field(nullable=False)
    unit: Optional[str] = Field(default=None, max_length=20, nullable=True)
    baseline_value: Optional[str] = Field(default=None, nullable=True)
    last_modified_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())
    last_modified_by: Optional[str] = Field(default=None, max_length=36, nullable=True)


class Covenant(SQLModel, table=True):
    """Financial covenant extracted from a clause"""
    __tablename__ = "covenants"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    workspace_id: str = Field(foreign_key="workspaces.id", ondelete="CASCADE", index=True, nullable=False)
    clause_id: str = Field(foreign_key="clauses.id", ondelete="CASCADE", nullable=False)
    name: str = Field(max_length=200, nullable=False)
    test_frequency: str = Field(max_length=50, nullable=False)
    threshold: str = Field(max_length=100, nullable=False)
    calculation_basis: str = Field(max_length=500, nullable=False)


# Engine models

class GraphNode(SQLModel, table=True):
    """Dependency graph node; lives only as long as the last rebuild"""
    __tablename__ = "graph_nodes"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    workspace_id: str = Field(foreign_key="workspaces.id", ondelete="CASCADE", index=True, nullable=False)
    label: str = Field(max_length=300, nullable=False)
    category: NodeCategory = Field(sa_column=enum_column(NodeCategory, index=True))
    clause_id: Optional[str] = Field(default=None, foreign_key="clauses.id", ondelete="CASCADE", index=True, nullable=True)
    variable_id: Optional[str] = Field(default=None, foreign_key="variables.id", ondelete="CASCADE", index=True, nullable=True)
    value: Optional[str] = Field(default=None, nullable=True)
    has_drift: bool = Field(default=False, nullable=False)
    has_warning: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())

    __table_args__ = (
        CheckConstraint("clause_id IS NULL OR variable_id IS NULL", name="ck_graph_node_single_source"),
    )


class GraphEdge(SQLModel, table=True):
    """Directed, weighted edge between two nodes of the same workspace"""
    __tablename__ = "graph_edges"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    workspace_id: str = Field(foreign_key="workspaces.id", ondelete="CASCADE", index=True, nullable=False)
    source_id: str = Field(foreign_key="graph_nodes.id", ondelete="CASCADE", index=True, nullable=False)
    target_id: str = Field(foreign_key="graph_nodes.id", ondelete="CASCADE", index=True, nullable=False)
    weight: int = Field(default=1, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())

    __table_args__ = (
        UniqueConstraint("workspace_id", "source_id", "target_id", name="uq_graph_edge"),
        CheckConstraint("weight BETWEEN 1 AND 5", name="ck_graph_edge_weight"),
        CheckConstraint("source_id <> target_id", name="ck_graph_edge_no_self_loop"),
    )


class GraphState(SQLModel, table=True):
    """Cached integrity projection of a workspace graph"""
    __tablename__ = "graph_state"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    workspace_id: str = Field(foreign_key="workspaces.id", ondelete="CASCADE", unique=True, nullable=False)
    integrity_score: int = Field(default=100, nullable=False)
    last_computed_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())


# Predicate of the partial unique index on drift_items
ACTIVE_DRIFT_WHERE = "status = 'unresolved' AND variable_id IS NOT NULL"


class DriftItem(SQLModel, table=True):
    """Divergence of a clause/variable from its approved baseline"""
    __tablename__ = "drift_items"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    workspace_id: str = Field(foreign_key="workspaces.id", ondelete="CASCADE", index=True, nullable=False)
    clause_id: str = Field(foreign_key="clauses.id", ondelete="CASCADE", index=True, nullable=False)
    variable_id: Optional[str] = Field(default=None, foreign_key="variables.id", ondelete="SET NULL", index=True, nullable=True)
    title: str = Field(max_length=300, nullable=False)
    type: ClauseType = Field(sa_column=enum_column(ClauseType))
    severity: DriftSeverity = Field(sa_column=enum_column(DriftSeverity, index=True))
    baseline_value: str = Field(nullable=False)
    baseline_approved_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())
    current_value: str = Field(nullable=False)
    current_modified_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())
    current_modified_by: str = Field(max_length=36, nullable=False)
    status: DriftStatus = Field(default=DriftStatus.UNRESOLVED, sa_column=enum_column(DriftStatus, index=True))
    approved_by: Optional[str] = Field(default=None, max_length=36, nullable=True)
    approved_at: Optional[datetime] = Field(default=None, sa_column=ts_column(nullable=True))
    approval_reason: Optional[str] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())

    __table_args__ = (
        # At most one active item per variable
        Index(
            "uq_drift_items_active_variable",
            "workspace_id",
            "variable_id",
            unique=True,
            sqlite_where=text(ACTIVE_DRIFT_WHERE),
            postgresql_where=text(ACTIVE_DRIFT_WHERE),
        ),
    )


class GoldenRecord(SQLModel, table=True):
    """Gated export snapshot; status is recomputed on every read"""
    __tablename__ = "golden_records"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    workspace_id: str = Field(foreign_key="workspaces.id", ondelete="CASCADE", unique=True, nullable=False)
    status: GoldenRecordStatus = Field(default=GoldenRecordStatus.IN_REVIEW, sa_column=enum_column(GoldenRecordStatus))
    integrity_score: int = Field(default=0, nullable=False)
    unresolved_high_drift_count: int = Field(default=0, nullable=False)
    last_export_at: Optional[datetime] = Field(default=None, sa_column=ts_column(nullable=True))
    last_publish_at: Optional[datetime] = Field(default=None, sa_column=ts_column(nullable=True))
    snapshot_json: str = Field(default="{}", nullable=False)
    created_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=ts_column())


class DownstreamConnector(SQLModel, table=True):
    """Downstream system fed by a publish"""
    __tablename__ = "downstream_connectors"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=80)
    workspace_id: str = Field(foreign_key="workspaces.id", ondelete="CASCADE", index=True, nullable=False)
    name: str = Field(max_length=100, nullable=False)
    type: ConnectorType = Field(sa_column=enum_column(ConnectorType))
    status: ConnectorStatus = Field(default=ConnectorStatus.DISCONNECTED, sa_column=enum_column(ConnectorStatus))
    last_sync_at: Optional[datetime] = Field(default=None, sa_column=ts_column(nullable=True))


class AuditEvent(SQLModel, table=True):
    """Append-only audit trail row"""
    __tablename__ = "audit_events"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    workspace_id: Optional[str] = Field(default=None, max_length=36, index=True, nullable=True)
    timestamp: datetime = Field(default_factory=utcnow, sa_column=ts_column())
    actor_id: str = Field(max_length=36, index=True, nullable=False)
    actor_name: str = Field(max_length=200, nullable=False)
    event_type: AuditEventType = Field(sa_column=enum_column(AuditEventType, index=True))
    target_type: Optional[str] = Field(default=None, max_length=50, nullable=True)
    target_id: Optional[str] = Field(default=None, max_length=80, nullable=True)
    before_state: Optional[str] = Field(default=None, nullable=True)
    after_state: Optional[str] = Field(default=None, nullable=True)
    reason: Optional[str] = Field(default=None, nullable=True)
    reason_category: Optional[ReasonCategory] = Field(default=None, sa_column=enum_column(ReasonCategory, nullable=True))


__all__ = [
    "Workspace", "WorkspaceMember", "Clause", "Variable", "Covenant",
    "GraphNode", "GraphEdge", "GraphState", "DriftItem", "GoldenRecord",
    "DownstreamConnector", "AuditEvent",
    "MemberRole", "MemberStatus", "ClauseType", "VariableType", "NodeCategory",
    "DriftSeverity", "DriftStatus", "GoldenRecordStatus", "ConnectorStatus",
    "ConnectorType", "AuditEventType", "ReasonCategory",
    "utcnow", "new_id", "ACTIVE_DRIFT_WHERE",
]
