"""Tests for the one-shot render endpoint."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from symlight.api.handlers.render import router


def create_test_app() -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    return app


class TestRenderEndpoint:
    """Tests for POST /render."""

    def test_renders_allowed_link(self):
        """Test an allowed reference renders as a link."""
        client = TestClient(create_test_app())
        response = client.post(
            "/render",
            json={"text": "See `src/a.ts:10-12`.", "allowed_links": ["src/a.ts:10-12"]},
        )
        assert response.status_code == 200
        html = response.json()["html"]
        assert 'data-sl-line-end="12"' in html

    def test_empty_allow_list_degrades_links(self):
        """Test an empty allow-list degrades every link."""
        client = TestClient(create_test_app())
        response = client.post(
            "/render", json={"text": "See `src/a.ts:10-12`.", "allowed_links": []}
        )
        html = response.json()["html"]
        assert "<a" not in html
        assert "src/a.ts:10-12" in html

    def test_missing_allow_list_allows_all(self):
        """Test an omitted allow-list permits every link."""
        client = TestClient(create_test_app())
        response = client.post("/render", json={"text": "At src/b.ts:7."})
        assert 'data-sl-path="src/b.ts"' in response.json()["html"]

    def test_missing_text_rejected(self):
        """Test a body without text is rejected."""
        client = TestClient(create_test_app())
        assert client.post("/render", json={}).status_code == 422
