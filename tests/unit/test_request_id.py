"""Unit tests for Request ID middleware."""

import uuid

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from flagengine.core.request_id import RequestIDMiddleware, get_request_id


@pytest.fixture
def app():
    """Create a test FastAPI app with RequestIDMiddleware."""
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/test")
    async def test_endpoint(request: Request):
        return {"request_id": get_request_id(request)}

    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def test_request_id_auto_generation(client):
    response = client.get("/test")
    assert response.status_code == 200

    request_id = response.headers["X-Request-ID"]
    uuid.UUID(request_id)
    assert response.json()["request_id"] == request_id


def test_request_id_from_client(client):
    client_request_id = str(uuid.uuid4())

    response = client.get("/test", headers={"X-Request-ID": client_request_id})

    assert response.headers["X-Request-ID"] == client_request_id
    assert response.json()["request_id"] == client_request_id


def test_get_request_id_outside_middleware():
    app = FastAPI()

    @app.get("/bare")
    async def bare(request: Request):
        return {"request_id": get_request_id(request)}

    assert TestClient(app).get("/bare").json()["request_id"] == "unknown"
