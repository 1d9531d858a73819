"""
Fixtures for the HTTP edge.

The app is built against the same database file as the kernel fixtures, so
``org`` and ``make_flow`` seed data the app can see.
"""

import pytest
from fastapi.testclient import TestClient

from oa_api.app import create_app
from oa_api.auth import issue_token
from oa_config import DatabaseSettings, JWTSettings, Settings
from oa_kernel.db.engine import reset_engine

SECRET = "test-secret"


@pytest.fixture
def settings(db_url):
    return Settings(
        database=DatabaseSettings(dsn=db_url),
        jwt=JWTSettings(secret=SECRET),
    )


@pytest.fixture
def client(settings, clock, db_engine):
    app = create_app(settings, clock=clock, configure_logs=False)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    reset_engine()


@pytest.fixture
def auth():
    """``auth(user_id)`` -> Authorization header for that user."""

    def _headers(user_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(user_id, SECRET)}"}

    return _headers


@pytest.fixture
def jwt_secret():
    return SECRET
