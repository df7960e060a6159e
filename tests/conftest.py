# tests/conftest.py
"""
Pytest configuration and shared fixtures for Loan Engine tests.
"""

import os
import sys
from pathlib import Path
from typing import AsyncIterator, Dict, Iterator, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy import Engine
from sqlmodel import Session

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from loan_engine import database_config
from loan_engine.access import Actor
from loan_engine.app import app
from loan_engine.config import reset_engine_config
from loan_engine.database_config import create_db_engine, get_db_session, init_db
from loan_engine.demo_data import seed_demo_data
from loan_engine.engine_logging import setup_logging
from loan_engine.models import (
    Clause,
    ClauseType,
    MemberRole,
    MemberStatus,
    Variable,
    VariableType,
    Workspace,
    WorkspaceMember,
)

TEST_WORKSPACE_ID = "ws-test"


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """Configure logging for test runs."""
    os.environ["LOG_LEVEL"] = "ERROR"  # Minimize test output
    return setup_logging()


@pytest.fixture(autouse=True)
def engine_environment(monkeypatch):
    """Start every test from default engine settings."""
    for name in ("ENGINE_SEVERITY_POLICY", "ENGINE_DEFAULT_SEVERITY", "ENGINE_CLAUSE_PREVIEW_CHARS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("APP_ENV", "test")
    reset_engine_config()
    yield
    reset_engine_config()


@pytest.fixture
def db_engine(tmp_path: Path) -> Iterator[Engine]:
    """Fresh SQLite database per test."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'loan_engine_test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine: Engine) -> Iterator[Session]:
    with Session(db_engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def demo_session(session: Session) -> Session:
    """Session over a database holding Project Atlas and Project Beacon."""
    seed_demo_data(session)
    return session


@pytest.fixture
def test_client(db_engine: Engine, monkeypatch) -> Iterator[TestClient]:
    """Test client bound to the per-test database."""
    def override_session() -> Iterator[Session]:
        session = Session(db_engine, expire_on_commit=False)
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = override_session
    monkeypatch.setattr(database_config, "_engine", db_engine)
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(test_client: TestClient) -> AsyncIterator[AsyncClient]:
    """
    Async client over the same app and database as ``test_client``.

    Server errors come back as responses instead of being re-raised.
    """
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def demo_client(test_client: TestClient, db_engine: Engine) -> TestClient:
    with Session(db_engine, expire_on_commit=False) as session:
        seed_demo_data(session)
    return test_client


def actor(user_id: str, name: Optional[str] = None) -> Actor:
    return Actor(actor_id=user_id, actor_name=name or user_id)


def headers(user_id: str, name: Optional[str] = None) -> Dict[str, str]:
    result = {"X-Actor-Id": user_id}
    if name:
        result["X-Actor-Name"] = name
    return result


def add_member(
    session: Session,
    workspace_id: str,
    user_id: str,
    role: MemberRole,
    is_admin: bool = False,
    is_external_counsel: bool = False,
    status: MemberStatus = MemberStatus.ACTIVE,
) -> WorkspaceMember:
    member = WorkspaceMember(
        workspace_id=workspace_id,
        user_id=user_id,
        role=role,
        is_admin=is_admin,
        is_external_counsel=is_external_counsel,
        status=status,
    )
    session.add(member)
    session.commit()
    return member


def add_clause(
    session: Session,
    workspace_id: str,
    title: str,
    clause_type: ClauseType,
    order: int,
    body: str = "Clause body",
    is_sensitive: bool = False,
    is_locked: bool = False,
) -> Clause:
    clause = Clause(
        workspace_id=workspace_id,
        title=title,
        body=body,
        type=clause_type,
        order=order,
        is_sensitive=is_sensitive,
        is_locked=is_locked,
        last_modified_by="user-agent",
    )
    session.add(clause)
    session.commit()
    return clause


def add_variable(
    session: Session,
    clause: Clause,
    label: str,
    value: str,
    baseline: Optional[str] = None,
    variable_type: VariableType = VariableType.FINANCIAL,
    unit: Optional[str] = None,
) -> Variable:
    variable = Variable(
        workspace_id=clause.workspace_id,
        clause_id=clause.id,
        label=label,
        type=variable_type,
        value=value,
        unit=unit,
        baseline_value=baseline,
    )
    session.add(variable)
    session.commit()
    return variable


@pytest.fixture
def workspace(session: Session) -> Workspace:
    """
    Small workspace with one member per role.

    user-agent is the admin; user-counsel is external counsel.
    """
    ws = Workspace(id=TEST_WORKSPACE_ID, name="Test Facility", currency="USD", amount=250_000_000)
    session.add(ws)
    session.commit()

    add_member(session, ws.id, "user-agent", MemberRole.AGENT, is_admin=True)
    add_member(session, ws.id, "user-legal", MemberRole.LEGAL)
    add_member(session, ws.id, "user-risk", MemberRole.RISK)
    add_member(session, ws.id, "user-investor", MemberRole.INVESTOR)
    add_member(session, ws.id, "user-counsel", MemberRole.LEGAL, is_external_counsel=True)
    add_member(session, ws.id, "user-pending", MemberRole.AGENT, status=MemberStatus.PENDING)
    return ws
