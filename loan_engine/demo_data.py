# loan_engine/demo_data.py
"""
Demonstration dataset: two facility agreements with members, clauses,
variables, covenants, drift and a built graph.

Project Atlas ends up IN_REVIEW (integrity 87, two unresolved HIGH drift
items); Project Beacon ends up READY (integrity 95, no HIGH drift).
"""

from typing import Dict, List, Optional, Set, Tuple

from sqlmodel import Session

from .database_config import unit_of_work
from .drift.detector import DriftDetector
from .drift.severity import FixedSeverityPolicy
from .engine_logging import get_logger
from .graph.build import GraphBuilder
from .graph.store import GraphStore
from .models import (
    Clause,
    ClauseType,
    ConnectorStatus,
    ConnectorType,
    Covenant,
    DownstreamConnector,
    DriftSeverity,
    MemberRole,
    MemberStatus,
    Variable,
    VariableType,
    Workspace,
    WorkspaceMember,
    utcnow,
)

logger = get_logger(__name__)

ATLAS_ID = "ws-atlas"
BEACON_ID = "ws-beacon"

AGENT_USER = "user-agent"
LEGAL_USER = "user-legal"
RISK_USER = "user-risk"
INVESTOR_USER = "user-investor"
COUNSEL_USER = "user-counsel"

MEMBERS = [
    # user_id, role, is_admin, is_external_counsel
    (AGENT_USER, MemberRole.AGENT, True, False),
    (LEGAL_USER, MemberRole.LEGAL, False, False),
    (RISK_USER, MemberRole.RISK, False, False),
    (INVESTOR_USER, MemberRole.INVESTOR, False, False),
    (COUNSEL_USER, MemberRole.LEGAL, False, True),
]

# title, type, body, sensitive, [(label, type, value, unit, baseline, severity)]
ClauseSeed = Tuple[str, ClauseType, str, bool, List[Tuple[str, VariableType, str, Optional[str], str, Optional[DriftSeverity]]]]

ATLAS_CLAUSES: List[ClauseSeed] = [
    ("1.1 Definitions", ClauseType.DEFINITION,
     '"Consolidated EBITDA" means, for any period, the consolidated net income of the Group '
     "before interest, tax, depreciation and amortisation, adjusted for permitted add-backs.",
     True,
     [("EBITDA Add-back Cap", VariableType.DEFINITION, "25", "%", "20", DriftSeverity.MEDIUM)]),
    ("2.1 The Facility", ClauseType.FINANCIAL,
     "The Lenders make available to the Borrower a term loan facility in an aggregate amount "
     "equal to the Total Commitments.",
     True,
     [("Total Commitments", VariableType.FINANCIAL, "275,000,000", "USD", "250,000,000", DriftSeverity.HIGH)]),
    ("2.3 Margin", ClauseType.FINANCIAL,
     "The rate of interest on each Loan for each Interest Period is the percentage rate per annum "
     "which is the aggregate of the applicable Margin and Term SOFR.",
     False,
     [("Margin", VariableType.FINANCIAL, "3.25", "%", "3.25", None)]),
    ("22.1 Leverage", ClauseType.COVENANT,
     "The Borrower shall ensure that Leverage in respect of any Relevant Period shall not exceed "
     "the ratio set out below.",
     True,
     [("Maximum Leverage Ratio", VariableType.RATIO, "5.25", "x", "4.75", DriftSeverity.HIGH)]),
    ("22.2 Interest Cover", ClauseType.COVENANT,
     "The Borrower shall ensure that Interest Cover in respect of any Relevant Period shall not be "
     "less than the ratio set out below.",
     False,
     [("Minimum Interest Cover", VariableType.RATIO, "3.00", "x", "3.00", None)]),
]

BEACON_CLAUSES: List[ClauseSeed] = [
    ("1.1 Definitions", ClauseType.DEFINITION,
     '"Availability Period" means the period from and including the date of this Agreement to and '
     "including the date falling twelve months after it.",
     False,
     [("Availability Period", VariableType.DEFINITION, "12", "months", "12", None)]),
    ("2.1 The Facility", ClauseType.FINANCIAL,
     "The Lenders make available to the Borrower a revolving credit facility in an aggregate "
     "amount equal to the Total Commitments.",
     True,
     [("Total Commitments", VariableType.FINANCIAL, "150,000,000", "EUR", "150,000,000", None)]),
    ("11.3 Commitment Fee", ClauseType.FINANCIAL,
     "The Borrower shall pay to the Agent a fee computed at the rate of the applicable percentage "
     "of the Margin on each Lender's Available Commitment.",
     False,
     [("Commitment Fee", VariableType.FINANCIAL, "0.40", "%", "0.375", DriftSeverity.LOW)]),
    ("22.1 Leverage", ClauseType.COVENANT,
     "The Borrower shall ensure that Leverage in respect of any Relevant Period shall not exceed "
     "the ratio set out below.",
     True,
     [("Maximum Leverage Ratio", VariableType.RATIO, "3.50", "x", "3.50", None)]),
    ("26.4 Cross Default", ClauseType.XREF,
     "Any Financial Indebtedness of any member of the Group is not paid when due, subject to the "
     "threshold referred to in Clause 22.1.",
     False,
     [("Cross Default Threshold", VariableType.FINANCIAL, "10,000,000", "EUR", "10,000,000", None)]),
]

COVENANTS = {
    ATLAS_ID: [
        ("22.1 Leverage", "Maximum Leverage Ratio", "Quarterly", "4.75x", "Total Net Debt / Consolidated EBITDA"),
        ("22.2 Interest Cover", "Minimum Interest Cover", "Quarterly", "3.00x", "Consolidated EBITDA / Net Finance Charges"),
    ],
    BEACON_ID: [
        ("22.1 Leverage", "Maximum Leverage Ratio", "Semi-annually", "3.50x", "Total Net Debt / Consolidated EBITDA"),
    ],
}

# Clause titles whose graph nodes carry a warning
WARNINGS = {
    ATLAS_ID: {"2.3 Margin", "22.2 Interest Cover"},
    BEACON_ID: {"26.4 Cross Default"},
}

ATLAS_CONNECTORS = [
    ("loaniq", "LoanIQ Production", ConnectorType.LOANIQ, ConnectorStatus.READY),
    ("finastra", "Finastra Fusion", ConnectorType.FINASTRA, ConnectorStatus.READY),
    ("allvue", "Allvue Systems", ConnectorType.ALLVUE, ConnectorStatus.IN_REVIEW),
    ("covenant", "CovenantTracker", ConnectorType.COVENANT_TRACKER, ConnectorStatus.DISCONNECTED),
]


def _seed_workspace(
    session: Session,
    workspace_id: str,
    name: str,
    currency: str,
    amount: float,
    clause_seeds: List[ClauseSeed],
) -> Workspace:
    workspace = Workspace(id=workspace_id, name=name, currency=currency, amount=amount, created_by_id=AGENT_USER)
    session.add(workspace)
    session.flush()

    for user_id, role, is_admin, is_external in MEMBERS:
        session.add(WorkspaceMember(
            workspace_id=workspace_id,
            user_id=user_id,
            role=role,
            is_admin=is_admin,
            is_external_counsel=is_external,
            status=MemberStatus.ACTIVE,
        ))

    clauses_by_title: Dict[str, Clause] = {}
    for order, (title, clause_type, body, sensitive, _) in enumerate(clause_seeds, start=1):
        clause = Clause(
            workspace_id=workspace_id,
            title=title,
            body=body,
            type=clause_type,
            order=order,
            is_sensitive=sensitive,
            last_modified_by=AGENT_USER,
        )
        session.add(clause)
        clauses_by_title[title] = clause
    session.flush()

    drifting: List[Tuple[Clause, Variable, DriftSeverity]] = []
    for title, _, _, _, variable_seeds in clause_seeds:
        clause = clauses_by_title[title]
        for label, variable_type, value, unit, baseline, severity in variable_seeds:
            variable = Variable(
                workspace_id=workspace_id,
                clause_id=clause.id,
                label=label,
                type=variable_type,
                value=value,
                unit=unit,
                baseline_value=baseline,
                last_modified_by=LEGAL_USER,
            )
            session.add(variable)
            if severity is not None:
                drifting.append((clause, variable, severity))

    for clause_title, covenant_name, frequency, threshold, basis in COVENANTS.get(workspace_id, []):
        session.add(Covenant(
            workspace_id=workspace_id,
            clause_id=clauses_by_title[clause_title].id,
            name=covenant_name,
            test_frequency=frequency,
            threshold=threshold,
            calculation_basis=basis,
        ))
    session.flush()

    detector = DriftDetector(policy=FixedSeverityPolicy())
    for clause, variable, severity in drifting:
        detector.detect(session, clause, variable, LEGAL_USER, severity=severity,
                        baseline_approved_at=workspace.created_at)

    warned: Set[Tuple[str, str]] = {
        ("clause", clauses_by_title[title].id) for title in WARNINGS.get(workspace_id, set())
    }
    store = GraphStore(session)
    clauses, variables = store.load_sources(workspace_id)
    plan = GraphBuilder().build(workspace_id, clauses, variables, warned)
    store.replace(plan)
    workspace.last_sync_at = utcnow()

    logger.info(
        f"Seeded workspace {name}: {plan.node_count} nodes, integrity {plan.integrity_score}",
        extra={'workspace_id': workspace_id},
    )
    return workspace


def seed_demo_data(session: Session) -> List[str]:
    """
    Create the demonstration workspaces unless they already exist

    Returns:
        IDs of the workspaces created by this call
    """
    created: List[str] = []
    with unit_of_work(session):
        if session.get(Workspace, ATLAS_ID) is None:
            _seed_workspace(session, ATLAS_ID, "Project Atlas", "USD", 250_000_000, ATLAS_CLAUSES)
            for slug, name, connector_type, status in ATLAS_CONNECTORS:
                session.add(DownstreamConnector(
                    id=f"connector-{slug}-{ATLAS_ID}",
                    workspace_id=ATLAS_ID,
                    name=name,
                    type=connector_type,
                    status=status,
                    last_sync_at=utcnow() if status == ConnectorStatus.READY else None,
                ))
            created.append(ATLAS_ID)

        if session.get(Workspace, BEACON_ID) is None:
            _seed_workspace(session, BEACON_ID, "Project Beacon", "EUR", 150_000_000, BEACON_CLAUSES)
            created.append(BEACON_ID)

    return created
