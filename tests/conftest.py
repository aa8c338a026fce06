"""
Shared fixtures: an in-memory Hearth server
"""

import pytest
from fastapi.testclient import TestClient

from hearth.config import Config
from hearth.main import create_app


@pytest.fixture
def config():
    return Config(
        database_url="sqlite://",
        sync_enabled=False,
        keepalive_seconds=0.05,
        lan_ip="192.168.1.50",
    )


@pytest.fixture
def app(config):
    return create_app(config)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def ctx(app, client):
    return app.state.context


@pytest.fixture
def token(client, ctx):
    response = client.post("/api/control/pair", json={"code": ctx.pairing_code})
    assert response.status_code == 200
    return response.json()["token"]


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}
