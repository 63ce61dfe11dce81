import os
import pathlib
import sys
import tempfile
from datetime import datetime, timezone

import pytest


REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.append(str(REPO_ROOT))

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def pytest_configure():
    os.environ.setdefault("TWILIO_USE_STUB", "1")
    if os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL"):
        return
    temp_dir = tempfile.mkdtemp(prefix="punchlist-tests-")
    db_path = pathlib.Path(temp_dir) / "pytest.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"


@pytest.fixture(scope="session")
def sqlite_engine():
    from backend.punchlist import models  # noqa: F401
    from backend.punchlist.db import Base, engine

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


def _wipe(engine):
    from backend.punchlist.db import Base

    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def sqlite_session(sqlite_engine):
    from backend.punchlist.db import SessionLocal

    _wipe(sqlite_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        _wipe(sqlite_engine)


@pytest.fixture()
def second_session(sqlite_engine):
    """Independent session on the same database, for overlapping writers."""
    from backend.punchlist.db import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def settings():
    from backend.punchlist.config import DispatchSettings

    return DispatchSettings(admin_contact="(555) 010-9999", twilio_use_stub=True)


@pytest.fixture()
def transport():
    from backend.punchlist.integrations import StubTransport

    return StubTransport()


@pytest.fixture()
def make_project(sqlite_session):
    from backend.punchlist.models import Project

    def _make(title="Maple St Remodel", homeowner_name="Dana Ortiz"):
        project = Project(title=title, homeowner_name=homeowner_name, created_at=NOW)
        sqlite_session.add(project)
        sqlite_session.commit()
        return project

    return _make


@pytest.fixture()
def make_contractor(sqlite_session):
    from backend.punchlist.models import Contractor

    def _make(
        business_name="Ace Plumbing",
        phone="5551234567",
        specialties=("plumbing",),
        availability_status="available",
        rating=4.0,
        is_active=True,
        whatsapp_address=None,
    ):
        contractor = Contractor(
            business_name=business_name,
            phone=phone,
            specialties=list(specialties),
            availability_status=availability_status,
            rating=rating,
            is_active=is_active,
            whatsapp_address=whatsapp_address,
            created_at=NOW,
        )
        sqlite_session.add(contractor)
        sqlite_session.commit()
        return contractor

    return _make


@pytest.fixture()
def make_work_item(sqlite_session):
    from backend.punchlist.models import WorkItem

    def _make(
        project,
        description="Fix leaking kitchen faucet",
        trade="plumbing",
        priority="medium",
        area="Kitchen",
        materials_needed=("faucet cartridge", "plumber's tape"),
        estimated_hours=1.5,
    ):
        item = WorkItem(
            project_id=project.id,
            description=description,
            trade=trade,
            priority=priority,
            area=area,
            materials_needed=list(materials_needed),
            estimated_hours=estimated_hours,
            status="extracted",
            created_at=NOW,
            updated_at=NOW,
        )
        sqlite_session.add(item)
        sqlite_session.commit()
        return item

    return _make


@pytest.fixture()
def api_client(sqlite_engine, sqlite_session, settings, transport):
    from fastapi.testclient import TestClient

    from backend.punchlist.api.deps import settings_dep, transport_dep
    from backend.punchlist.db import get_db
    from backend.punchlist.main import app

    def _get_test_db():
        yield sqlite_session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[settings_dep] = lambda: settings
    app.dependency_overrides[transport_dep] = lambda: transport
    client = TestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)
        app.dependency_overrides.pop(settings_dep, None)
        app.dependency_overrides.pop(transport_dep, None)
