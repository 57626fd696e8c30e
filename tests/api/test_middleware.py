"""Tests for RequestIDMiddleware and UserContextMiddleware."""

import pytest
from uuid import UUID
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.testclient import TestClient

from api.middleware import RequestIDMiddleware, UserContextMiddleware
from utils.user_context import get_current_user_id


@pytest.fixture
def app():
    """Minimal FastAPI app with RequestIDMiddleware."""
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/test")
    async def test_endpoint(request: Request):
        return JSONResponse({"request_id": request.state.request_id})

    return app


@pytest.fixture
def client(app):
    return TestClient(app)


class TestRequestIDMiddleware:
    """Tests for RequestIDMiddleware."""

    def test_response_has_request_id_header(self, client):
        """Response includes X-Request-ID header."""
        response = client.get("/test")

        assert "X-Request-ID" in response.headers
        # Should be a valid UUID
        UUID(response.headers["X-Request-ID"])

    def test_request_state_has_request_id(self, client):
        """request.state.request_id is set and matches header."""
        response = client.get("/test")

        header_id = response.headers["X-Request-ID"]
        body_id = response.json()["request_id"]
        assert header_id == body_id

    def test_each_request_gets_unique_id(self, client):
        """Different requests get different IDs."""
        r1 = client.get("/test")
        r2 = client.get("/test")

        assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


# =============================================================================
# USER CONTEXT
# =============================================================================


USER_ID = UUID("00000000-0000-0000-0000-0000000000aa")


@pytest.fixture
def user_app():
    """Minimal app where the X-User header stands in for a session."""

    def resolve_user(request):
        header = request.headers.get("X-User")
        return UUID(header) if header else None

    app = FastAPI()
    app.add_middleware(UserContextMiddleware, resolve_user=resolve_user)

    @app.get("/whoami")
    async def whoami(request: Request):
        return JSONResponse({
            "state": str(request.state.user_id),
            "context": str(get_current_user_id()),
        })

    @app.get("/health")
    async def health():
        return JSONResponse({"ok": True})

    return app


class TestUserContextMiddleware:
    """Tests for UserContextMiddleware."""

    def test_sets_state_and_context(self, user_app):
        response = TestClient(user_app).get("/whoami", headers={"X-User": str(USER_ID)})

        assert response.status_code == 200
        assert response.json() == {"state": str(USER_ID), "context": str(USER_ID)}

    def test_unresolved_user_returns_401(self, user_app):
        response = TestClient(user_app).get("/whoami")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_AUTHENTICATED"

    def test_public_path_skips_resolution(self, user_app):
        response = TestClient(user_app).get("/health")

        assert response.status_code == 200
        assert response.json() == {"ok": True}
