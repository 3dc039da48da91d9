"""Tests for FastAPI application entry point."""

import pytest
from fastapi.testclient import TestClient

from symlight import __version__
from symlight.api.deps import get_session_dependency, get_settings_dependency
from symlight.config import (
    CompletionSettings,
    CorsSettings,
    HealthSettings,
    ServerSettings,
    Settings,
)
from symlight.core.session import ExplainSession
from symlight.main import create_app


@pytest.fixture
def settings():
    return Settings(
        completion=CompletionSettings(base_url="http://llm.test/v1", api_key="k", model="m"),
        server=ServerSettings(cors=CorsSettings(allowed_origins=["http://editor.local"])),
        health=HealthSettings(endpoint_check_enabled=False),
    )


@pytest.fixture
def client(settings):
    app = create_app(settings)
    app.dependency_overrides[get_settings_dependency] = lambda: settings
    app.dependency_overrides[get_session_dependency] = lambda: ExplainSession(settings)
    return TestClient(app, raise_server_exceptions=False)


class TestAppCreation:
    """Tests for application creation."""

    def test_app_metadata(self, settings):
        """Test the app title and version."""
        app = create_app(settings)
        assert app.title == "symlight"
        assert app.version == __version__

    def test_routes_registered(self, settings):
        """Test every route is registered."""
        paths = {route.path for route in create_app(settings).routes}
        assert {"/explain", "/render", "/health", "/health/live", "/health/ready"} <= paths


class TestMiddleware:
    """Tests for middleware wiring."""

    def test_request_id_header(self, client):
        """Test responses carry a request ID header."""
        response = client.get("/health/live")
        assert "X-Request-ID" in response.headers

    def test_cors_allows_configured_origin(self, client):
        """Test CORS preflight allows the configured origin."""
        response = client.options(
            "/render",
            headers={
                "Origin": "http://editor.local",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert response.headers["access-control-allow-origin"] == "http://editor.local"

    def test_render_through_full_stack(self, client):
        """Test rendering through the full middleware stack."""
        response = client.post("/render", json={"text": "**hi**"})
        assert response.status_code == 200
        assert "<strong>hi</strong>" in response.json()["html"]


class TestExceptionHandlers:
    """Tests for application-level error handlers."""

    def test_unhandled_error_returns_request_id(self, settings):
        """Test unhandled errors return 500 with the request ID."""
        app = create_app(settings)

        @app.get("/boom")
        async def boom():
            raise RuntimeError("boom")

        response = TestClient(app, raise_server_exceptions=False).get(
            "/boom", headers={"X-Request-ID": "req-7"}
        )

        assert response.status_code == 500
        assert response.json() == {
            "detail": "An unexpected error occurred",
            "request_id": "req-7",
        }
