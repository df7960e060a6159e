# tests/unit/test_graph_builder.py
"""
Unit tests for the graph builder, graph store and workspace sync.
"""

import pytest
from sqlmodel import select

from loan_engine.config import EngineConfig
from loan_engine.errors import ForbiddenError, InternalError, NotFoundError
from loan_engine.graph.build import GraphBuilder, display_value, variable_has_drift
from loan_engine.graph.service import connected_nodes, get_graph, locate_node, sync_workspace
from loan_engine.graph.store import GraphStore
from loan_engine.models import (
    AuditEvent,
    AuditEventType,
    Clause,
    ClauseType,
    GraphEdge,
    GraphNode,
    NodeCategory,
    Variable,
    VariableType,
)
from tests.conftest import actor, add_clause, add_variable


def clause(clause_id, clause_type=ClauseType.FINANCIAL, workspace_id="ws-1", body="Body", order=1):
    return Clause(
        id=clause_id,
        workspace_id=workspace_id,
        title=f"Clause {clause_id}",
        body=body,
        type=clause_type,
        order=order,
        last_modified_by="user-agent",
    )


def variable(variable_id, clause_id, value="250", baseline=None, variable_type=VariableType.FINANCIAL,
             unit=None, workspace_id="ws-1"):
    return Variable(
        id=variable_id,
        workspace_id=workspace_id,
        clause_id=clause_id,
        label=f"Variable {variable_id}",
        type=variable_type,
        value=value,
        unit=unit,
        baseline_value=baseline,
    )


class TestGraphBuilder:
    """In-memory graph plan construction"""

    def test_one_node_per_clause_and_variable(self):
        clauses = [clause("c1"), clause("c2", ClauseType.COVENANT, order=2), clause("c3", ClauseType.XREF, order=3)]
        variables = [variable("v1", "c1"), variable("v2", "c1"), variable("v3", "c2")]

        plan = GraphBuilder(EngineConfig()).build("ws-1", clauses, variables)

        assert plan.node_count == len(clauses) + len(variables)
        assert plan.edge_count == len(variables)

    def test_edges_run_from_clause_to_variable(self):
        plan = GraphBuilder(EngineConfig()).build("ws-1", [clause("c1")], [variable("v1", "c1")])
        nodes = {node.id: node for node in plan.nodes}
        edge = plan.edges[0]

        assert nodes[edge.source_id].clause_id == "c1"
        assert nodes[edge.target_id].variable_id == "v1"
        assert edge.weight == 1
        assert edge.workspace_id == nodes[edge.source_id].workspace_id == nodes[edge.target_id].workspace_id

    def test_categories_follow_source_types(self):
        clauses = [clause("c1", ClauseType.GENERAL), clause("c2", ClauseType.COVENANT, order=2)]
        variables = [variable("v1", "c2", variable_type=VariableType.RATIO),
                     variable("v2", "c2", variable_type=VariableType.DEFINITION)]

        plan = GraphBuilder(EngineConfig()).build("ws-1", clauses, variables)
        by_source = {node.source_key: node.category for node in plan.nodes}

        assert by_source[("clause", "c1")] == NodeCategory.DEFINITION
        assert by_source[("clause", "c2")] == NodeCategory.COVENANT
        assert by_source[("variable", "v1")] == NodeCategory.COVENANT
        assert by_source[("variable", "v2")] == NodeCategory.DEFINITION

    def test_clause_value_is_body_preview(self):
        plan = GraphBuilder(EngineConfig()).build("ws-1", [clause("c1", body="x" * 250)], [])
        assert plan.nodes[0].value == "x" * 100

    def test_variable_value_includes_unit(self):
        assert display_value(variable("v1", "c1", value="4.75", unit="x")) == "4.75 x"
        assert display_value(variable("v2", "c1", value="Quarterly")) == "Quarterly"

    def test_drift_flag(self):
        assert variable_has_drift(variable("v1", "c1", value="275", baseline="250"))
        assert not variable_has_drift(variable("v2", "c1", value="250", baseline="250"))
        assert not variable_has_drift(variable("v3", "c1", value="250", baseline=None))

    def test_warnings_carry_over_by_source(self):
        plan = GraphBuilder(EngineConfig()).build(
            "ws-1",
            [clause("c1")],
            [variable("v1", "c1"), variable("v2", "c1")],
            warned_sources={("variable", "v2")},
        )
        warned = [node.variable_id for node in plan.nodes if node.has_warning]
        assert warned == ["v2"]

    def test_plan_integrity_score(self):
        plan = GraphBuilder(EngineConfig()).build(
            "ws-1", [clause("c1")], [variable("v1", "c1", value="275", baseline="250")]
        )
        # 2 nodes, 1 drifting: 100 - 15
        assert plan.integrity_score == 85

    def test_cross_workspace_variable_rejected(self):
        with pytest.raises(InternalError):
            GraphBuilder(EngineConfig()).build(
                "ws-1", [clause("c1")], [variable("v1", "c1", workspace_id="ws-2")]
            )

    def test_variables_of_unknown_clauses_skipped(self):
        plan = GraphBuilder(EngineConfig()).build("ws-1", [clause("c1")], [variable("v1", "missing")])
        assert plan.node_count == 1
        assert plan.edge_count == 0


class TestWorkspaceSync:
    """Graph rebuild through the store"""

    @pytest.fixture
    def populated(self, session, workspace):
        facility = add_clause(session, workspace.id, "2.1 Facility", ClauseType.FINANCIAL, 1)
        leverage = add_clause(session, workspace.id, "22.1 Leverage", ClauseType.COVENANT, 2)
        add_clause(session, workspace.id, "1.1 Definitions", ClauseType.GENERAL, 3)
        add_variable(session, facility, "Facility Amount", "275", baseline="250")
        add_variable(session, facility, "Currency", "USD", baseline="USD")
        add_variable(session, leverage, "Leverage Ratio", "4.75", baseline="4.75", variable_type=VariableType.RATIO)
        return workspace

    def test_node_count_matches_sources(self, session, populated):
        result = sync_workspace(session, populated.id, actor("user-agent"))

        assert result.node_count == 3 + 3
        assert result.edge_count == 3
        assert result.simplified is True
        # 6 nodes, 1 drifting: 100 - 5
        assert result.integrity_score == 95

    def test_edges_stay_inside_workspace(self, session, populated):
        sync_workspace(session, populated.id, actor("user-agent"))

        nodes = {node.id: node for node in session.exec(select(GraphNode)).all()}
        for edge in session.exec(select(GraphEdge)).all():
            assert nodes[edge.source_id].workspace_id == edge.workspace_id
            assert nodes[edge.target_id].workspace_id == edge.workspace_id

    def test_resync_replaces_graph(self, session, populated):
        sync_workspace(session, populated.id, actor("user-agent"))
        first_ids = {node.id for node in GraphStore(session).list_nodes(populated.id)}

        sync_workspace(session, populated.id, actor("user-agent"))
        second = GraphStore(session).list_nodes(populated.id)

        assert len(second) == len(first_ids)
        assert first_ids.isdisjoint({node.id for node in second})

    def test_sync_stamps_workspace_and_audits(self, session, populated):
        before = populated.last_sync_at
        sync_workspace(session, populated.id, actor("user-agent"))

        session.refresh(populated)
        assert populated.last_sync_at.replace(tzinfo=None) >= before.replace(tzinfo=None)

        events = session.exec(
            select(AuditEvent).where(AuditEvent.event_type == AuditEventType.GRAPH_SYNC)
        ).all()
        assert len(events) == 1
        assert '"nodeCount": 6' in events[0].after_state

    def test_warning_survives_resync(self, session, populated):
        sync_workspace(session, populated.id, actor("user-agent"))
        node = session.exec(select(GraphNode).where(GraphNode.variable_id.is_not(None))).first()
        node.has_warning = True
        session.add(node)
        session.commit()

        sync_workspace(session, populated.id, actor("user-agent"))
        warned = session.exec(select(GraphNode).where(GraphNode.has_warning == True)).all()  # noqa: E712
        assert [n.variable_id for n in warned] == [node.variable_id]

    def test_failed_sync_keeps_previous_graph(self, session, populated, monkeypatch):
        sync_workspace(session, populated.id, actor("user-agent"))
        before = {node.id for node in GraphStore(session).list_nodes(populated.id)}

        def fail(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr("loan_engine.graph.service.audit_sink.record", fail)
        with pytest.raises(RuntimeError):
            sync_workspace(session, populated.id, actor("user-agent"))

        after = {node.id for node in GraphStore(session).list_nodes(populated.id)}
        assert after == before

    def test_sync_requires_membership(self, session, populated):
        with pytest.raises(ForbiddenError):
            sync_workspace(session, populated.id, actor("stranger"))
        with pytest.raises(ForbiddenError):
            sync_workspace(session, populated.id, actor("user-pending"))

    def test_sync_unknown_workspace(self, session, workspace):
        with pytest.raises(NotFoundError):
            sync_workspace(session, "ws-missing", actor("user-agent"))

    def test_external_counsel_blocked_when_read_only(self, session, populated):
        populated.governance_rules = {"externalCounselReadOnly": True}
        session.add(populated)
        session.commit()

        with pytest.raises(ForbiddenError):
            sync_workspace(session, populated.id, actor("user-counsel"))
        # Regular members are unaffected
        sync_workspace(session, populated.id, actor("user-legal"))


class TestGraphReads:
    """Graph, node location and neighbours"""

    @pytest.fixture
    def synced(self, session, workspace):
        facility = add_clause(session, workspace.id, "2.1 Facility", ClauseType.FINANCIAL, 1)
        add_variable(session, facility, "Facility Amount", "250", baseline="250")
        add_variable(session, facility, "Margin", "3.25", baseline="3.25")
        sync_workspace(session, workspace.id, actor("user-agent"))
        return facility

    def test_get_graph(self, session, synced):
        graph = get_graph(session, synced.workspace_id, actor("user-investor"))
        assert len(graph.nodes) == 3
        assert len(graph.edges) == 2
        assert graph.integrity_score == 100

    def test_locate_variable_node_returns_clause(self, session, synced):
        node = session.exec(select(GraphNode).where(GraphNode.variable_id.is_not(None))).first()
        location = locate_node(session, node.id, actor("user-legal"))
        assert location.clause_id == synced.id
        assert location.variable_id == node.variable_id

    def test_connected_nodes_of_clause(self, session, synced):
        clause_node = session.exec(select(GraphNode).where(GraphNode.clause_id == synced.id)).one()
        neighbours = connected_nodes(session, clause_node.id, actor("user-legal"))
        assert len(neighbours) == 2
        assert all(n.variable_id for n in neighbours)

    def test_unknown_node(self, session, synced):
        with pytest.raises(NotFoundError):
            locate_node(session, "node-missing", actor("user-legal"))
