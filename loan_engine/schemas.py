# loan_engine/schemas.py
"""
Request and response models of the HTTP API.

All payloads use camelCase keys on the wire and snake_case attributes in Python.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import (
    AuditEventType,
    ClauseType,
    ConnectorStatus,
    ConnectorType,
    DriftSeverity,
    DriftStatus,
    GoldenRecordStatus,
    NodeCategory,
    ReasonCategory,
    VariableType,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    @field_validator("*", mode="after")
    @classmethod
    def _timestamps_in_utc(cls, value):
        # SQLite hands back naive datetimes; stored values are UTC
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# Graph

class GraphNodeOut(CamelModel):
    id: str
    workspace_id: str
    label: str
    category: NodeCategory
    clause_id: Optional[str] = None
    variable_id: Optional[str] = None
    value: Optional[str] = None
    has_drift: bool
    has_warning: bool


class GraphEdgeOut(CamelModel):
    id: str
    workspace_id: str
    source_id: str
    target_id: str
    weight: int


class GraphOut(CamelModel):
    """Full graph of a workspace"""
    nodes: List[GraphNodeOut]
    edges: List[GraphEdgeOut]
    integrity_score: int = Field(description="Integrity score 0-100")
    last_computed_at: datetime


class GraphRebuildResult(CamelModel):
    """Outcome of a graph recompute"""
    integrity_score: int
    node_count: int
    edge_count: int


class SyncResult(GraphRebuildResult):
    """Outcome of a workspace sync"""
    drift_count: int = Field(description="Unresolved drift items after the sync")
    simplified: bool = Field(
        default=True,
        description="The rebuilt graph only holds direct clause-to-variable edges",
    )


class NodeLocation(CamelModel):
    """Navigation target of a graph node"""
    node_id: str
    clause_id: Optional[str] = None
    variable_id: Optional[str] = None


# Variables and drift

class VariableOut(CamelModel):
    id: str
    workspace_id: str
    clause_id: str
    label: str
    type: VariableType
    value: str
    unit: Optional[str] = None
    baseline_value: Optional[str] = None
    last_modified_at: datetime
    last_modified_by: Optional[str] = None


class DriftItemOut(CamelModel):
    id: str
    workspace_id: str
    clause_id: str
    variable_id: Optional[str] = None
    title: str
    type: ClauseType
    severity: DriftSeverity
    baseline_value: str
    baseline_approved_at: datetime
    current_value: str
    current_modified_at: datetime
    current_modified_by: str
    status: DriftStatus
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_reason: Optional[str] = None


class VariableUpdateRequest(CamelModel):
    """Edit of a bound variable"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    value: Optional[str] = Field(default=None, description="New value")
    label: Optional[str] = Field(default=None, description="New label")
    unit: Optional[str] = Field(default=None, description="New unit")
    reason: Optional[str] = Field(default=None, description="Reason for the edit")
    reason_category: Optional[ReasonCategory] = Field(default=None, description="Reason category")
    severity: Optional[DriftSeverity] = Field(default=None, description="Severity of any drift this edit creates")


class VariableUpdateResult(CamelModel):
    variable: VariableOut
    drift: Optional[DriftItemOut] = None


class ResolutionRequest(CamelModel):
    """Reason for an override or revert"""
    reason: Optional[str] = Field(default=None, description="Required, non-empty")
    reason_category: Optional[ReasonCategory] = Field(default=None)


class ApprovalRequest(CamelModel):
    reason: Optional[str] = Field(default=None, description="Required, non-empty")


class CountResult(CamelModel):
    count: int


class BlockedResult(CamelModel):
    blocked: bool


class DriftRecomputeResult(CamelModel):
    drift_count: int


# Golden record

class ConnectorOut(CamelModel):
    id: str
    workspace_id: str
    name: str
    type: ConnectorType
    status: ConnectorStatus
    last_sync_at: Optional[datetime] = None


class CovenantOut(CamelModel):
    id: str
    workspace_id: str
    clause_id: str
    name: str
    test_frequency: str
    threshold: str
    calculation_basis: str


class GoldenRecordOut(CamelModel):
    """Golden record with freshly computed readiness"""
    id: str
    workspace_id: str
    status: GoldenRecordStatus
    integrity_score: int
    unresolved_high_drift_count: int
    last_export_at: Optional[datetime] = None
    last_publish_at: Optional[datetime] = None
    snapshot_json: str = Field(alias="schemaJson", description="Last generated snapshot")
    connectors: List[ConnectorOut] = Field(default_factory=list)
    covenants: List[CovenantOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ExportResult(CamelModel):
    snapshot_json: str = Field(alias="schemaJson")
    filename: str


class PublishRequest(CamelModel):
    reason: Optional[str] = Field(default=None, description="Required, non-empty")
    reason_category: Optional[ReasonCategory] = Field(default=None)


class PublishCheck(CamelModel):
    """Whether a publish would currently be accepted"""
    allowed: bool
    reason: Optional[str] = None
    integrity_score: int
    unresolved_high_drift_count: int


# Audit

class AuditEventOut(CamelModel):
    id: str
    workspace_id: Optional[str] = None
    timestamp: datetime
    actor_id: str
    actor_name: str
    event_type: AuditEventType
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    before_state: Optional[str] = None
    after_state: Optional[str] = None
    reason: Optional[str] = None
    reason_category: Optional[ReasonCategory] = None
