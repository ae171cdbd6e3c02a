import os
from io import BytesIO
from unittest.mock import MagicMock

import pytest
from openpyxl import Workbook

# Force an in-memory database before the app modules build their engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("GOOGLE_VISION_API_KEY", "test-key")

from fastapi.testclient import TestClient  # noqa: E402

from main import app  # noqa: E402
from vin_app.db import Base, SessionLocal, engine, init_db  # noqa: E402
from vin_app.spreadsheet import EXPORT_COLUMNS  # noqa: E402
from vin_app.store import VinStore  # noqa: E402


@pytest.fixture
def db_session():
    # Fresh tables for every test
    init_db()
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db_session):
    return VinStore(db_session)


@pytest.fixture
def client(db_session):
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def mock_db_session():
    # A session whose queries find nothing
    mock_session = MagicMock()
    mock_session.get.return_value = None
    return mock_session


@pytest.fixture
def make_workbook():
    """Build an xlsx file from rows, prepending the export header."""

    def _make(rows, header=True):
        workbook = Workbook()
        worksheet = workbook.active
        if header:
            worksheet.append(EXPORT_COLUMNS)
        for row in rows:
            worksheet.append(row)
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _make
