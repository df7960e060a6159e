# loan_engine/graph/build.py
"""
Graph Builder - derive dependency graph nodes and edges from clauses and variables

The builder works on plain rows and produces a complete in-memory plan; the
store swaps the plan in atomically. Edges only express direct ownership
(clause -> bound variable), so any resync simplifies the graph to that shape.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..config import EngineConfig, get_engine_config
from ..engine_logging import get_logger
from ..errors import InternalError
from ..models import (
    Clause,
    ClauseType,
    GraphEdge,
    GraphNode,
    NodeCategory,
    Variable,
    VariableType,
    new_id,
)
from .integrity import score_from_counts

logger = get_logger(__name__)

MIN_EDGE_WEIGHT = 1
MAX_EDGE_WEIGHT = 5

# (kind, source row id) identifying the clause or variable a node stands for
SourceKey = Tuple[str, str]

CLAUSE_CATEGORY: Dict[ClauseType, NodeCategory] = {
    ClauseType.FINANCIAL: NodeCategory.FINANCIAL,
    ClauseType.COVENANT: NodeCategory.COVENANT,
    ClauseType.DEFINITION: NodeCategory.DEFINITION,
    ClauseType.XREF: NodeCategory.XREF,
    ClauseType.GENERAL: NodeCategory.DEFINITION,
}

VARIABLE_CATEGORY: Dict[VariableType, NodeCategory] = {
    VariableType.FINANCIAL: NodeCategory.FINANCIAL,
    VariableType.COVENANT: NodeCategory.COVENANT,
    VariableType.DEFINITION: NodeCategory.DEFINITION,
    VariableType.RATIO: NodeCategory.COVENANT,
}


@dataclass
class NodeSpec:
    """Node of a graph plan, not yet persisted"""
    id: str
    workspace_id: str
    label: str
    category: NodeCategory
    clause_id: Optional[str] = None
    variable_id: Optional[str] = None
    value: Optional[str] = None
    has_drift: bool = False
    has_warning: bool = False

    @property
    def source_key(self) -> SourceKey:
        if self.variable_id:
            return ("variable", self.variable_id)
        return ("clause", self.clause_id or "")

    def to_row(self) -> GraphNode:
        return GraphNode(
            id=self.id,
            workspace_id=self.workspace_id,
            label=self.label,
            category=self.category,
            clause_id=self.clause_id,
            variable_id=self.variable_id,
            value=self.value,
            has_drift=self.has_drift,
            has_warning=self.has_warning,
        )


@dataclass
class EdgeSpec:
    """Directed edge of a graph plan"""
    workspace_id: str
    source_id: str
    target_id: str
    weight: int = 1
    id: str = field(default_factory=new_id)

    def to_row(self) -> GraphEdge:
        return GraphEdge(
            id=self.id,
            workspace_id=self.workspace_id,
            source_id=self.source_id,
            target_id=self.target_id,
            weight=self.weight,
        )


@dataclass
class GraphPlan:
    """Complete replacement node/edge set for one workspace"""
    workspace_id: str
    nodes: List[NodeSpec] = field(default_factory=list)
    edges: List[EdgeSpec] = field(default_factory=list)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    @property
    def integrity_score(self) -> int:
        drift = sum(1 for node in self.nodes if node.has_drift)
        warning = sum(1 for node in self.nodes if node.has_warning)
        return score_from_counts(len(self.nodes), drift, warning)


def clause_category(clause_type: ClauseType) -> NodeCategory:
    return CLAUSE_CATEGORY.get(clause_type, NodeCategory.DEFINITION)


def variable_category(variable_type: VariableType) -> NodeCategory:
    return VARIABLE_CATEGORY.get(variable_type, NodeCategory.FINANCIAL)


def display_value(variable: Variable) -> str:
    if variable.unit:
        return f"{variable.value} {variable.unit}"
    return variable.value


def variable_has_drift(variable: Variable) -> bool:
    return variable.baseline_value is not None and variable.value != variable.baseline_value


class GraphBuilder:
    """
    Converts a workspace's clauses and bound variables into a graph plan

    - one node per clause (category from clause type, body preview as value)
    - one node per variable (category from variable type, "value unit" as value)
    - one clause -> variable edge per binding
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or get_engine_config()

    def build(
        self,
        workspace_id: str,
        clauses: Iterable[Clause],
        variables: Iterable[Variable],
        warned_sources: Optional[Set[SourceKey]] = None,
    ) -> GraphPlan:
        """
        Build the replacement graph for a workspace

        Args:
            workspace_id: Owning workspace
            clauses: Clauses of the workspace, in document order
            variables: Variables of the workspace
            warned_sources: Source keys whose previous node carried a warning

        Returns:
            GraphPlan with nodes and edges ready to persist
        """
        warned_sources = warned_sources or set()
        plan = GraphPlan(workspace_id=workspace_id)

        by_clause: Dict[str, List[Variable]] = defaultdict(list)
        for variable in variables:
            by_clause[variable.clause_id].append(variable)

        nodes_by_id: Dict[str, NodeSpec] = {}
        seen_clauses: Set[str] = set()

        for clause in clauses:
            seen_clauses.add(clause.id)
            clause_node = NodeSpec(
                id=new_id(),
                workspace_id=clause.workspace_id,
                label=clause.title,
                category=clause_category(clause.type),
                clause_id=clause.id,
                value=clause.body[: self.config.clause_preview_chars],
                has_warning=("clause", clause.id) in warned_sources,
            )
            plan.nodes.append(clause_node)
            nodes_by_id[clause_node.id] = clause_node

            for variable in by_clause.get(clause.id, []):
                variable_node = NodeSpec(
                    id=new_id(),
                    workspace_id=variable.workspace_id,
                    label=variable.label,
                    category=variable_category(variable.type),
                    variable_id=variable.id,
                    value=display_value(variable),
                    has_drift=variable_has_drift(variable),
                    has_warning=("variable", variable.id) in warned_sources,
                )
                plan.nodes.append(variable_node)
                nodes_by_id[variable_node.id] = variable_node

                plan.edges.append(self._make_edge(
                    workspace_id, clause_node, variable_node, self.config.default_edge_weight
                ))

        orphaned = [clause_id for clause_id in by_clause if clause_id not in seen_clauses]
        if orphaned:
            logger.warning(
                f"Skipped variables bound to {len(orphaned)} clause(s) outside workspace {workspace_id}",
                extra={'workspace_id': workspace_id},
            )

        for node in plan.nodes:
            if node.workspace_id != workspace_id:
                raise InternalError(
                    "Graph node belongs to a different workspace",
                    details={"workspaceId": workspace_id, "nodeWorkspaceId": node.workspace_id},
                )

        logger.debug(
            f"Built graph plan for {workspace_id}: {plan.node_count} nodes, {plan.edge_count} edges",
            extra={'workspace_id': workspace_id},
        )
        return plan

    @staticmethod
    def _make_edge(workspace_id: str, source: NodeSpec, target: NodeSpec, weight: int) -> EdgeSpec:
        """Create an edge after checking endpoint ownership and weight bounds"""
        if source.workspace_id != workspace_id or target.workspace_id != workspace_id:
            raise InternalError(
                "Edge endpoints must belong to the edge's workspace",
                details={
                    "workspaceId": workspace_id,
                    "sourceWorkspaceId": source.workspace_id,
                    "targetWorkspaceId": target.workspace_id,
                },
            )
        if source.id == target.id:
            raise InternalError("Graph edges cannot be self-loops", details={"nodeId": source.id})
        if not MIN_EDGE_WEIGHT <= weight <= MAX_EDGE_WEIGHT:
            raise InternalError(f"Edge weight must be between {MIN_EDGE_WEIGHT} and {MAX_EDGE_WEIGHT}")

        return EdgeSpec(workspace_id=workspace_id, source_id=source.id, target_id=target.id, weight=weight)
