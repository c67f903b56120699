"""Tests for the FastAPI server.

These tests verify:
1. Training and retraining endpoints and their error mapping
2. Streamed and JSON page endpoints
3. Home page with and without a model
4. Health reporting and the concurrent stream limit
"""

import asyncio
import copy
import html
import logging
import sys
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from endless.config import DEFAULT_CONFIG
from endless.errors import GenerationError
from endless.model import train_model
from endless.server import create_app, render_home_page
from endless.store import InMemoryModelStore
from endless.streaming import PageStreamer

CORPUS = "The cat sat. The dog ran. A bird flew over the cat."


@pytest.fixture
def store():
    return InMemoryModelStore()


@pytest.fixture
def client(store):
    """Test client with an in-memory store and an instant streamer."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["generation"]["home_page_posts"] = 3
    app = create_app(
        config=config,
        store=store,
        streamer=PageStreamer(title_seconds=0, body_seconds=0, link_seconds=0, jitter=0),
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def trained_client(client):
    """Client whose store already holds a model."""
    response = client.post("/api/train", content=CORPUS.encode("utf-8"))
    assert response.status_code == 201
    return client


class TestTrainEndpoint:
    """Tests for POST /api/train."""

    def test_train_returns_201(self, client):
        """Test that training creates a model."""
        response = client.post("/api/train", content=b"The cat sat. The dog ran.")

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == 1
        assert data["sentences"] == 2
        assert data["tokens"] == 6
        assert data["vocabulary_size"] == 5
        assert data["transitions"] == 7
        assert "created_at" in data

    def test_each_train_creates_new_model(self, client):
        """Test that repeated training stores new ids."""
        first = client.post("/api/train", content=b"First text.").json()
        second = client.post("/api/train", content=b"Second text.").json()

        assert second["id"] != first["id"]

    @pytest.mark.parametrize("body", [b"", b"   \n  "])
    def test_empty_body_returns_400(self, client, store, body):
        """Test that empty training text is a client error."""
        response = client.post("/api/train", content=body)

        assert response.status_code == 400
        assert "detail" in response.json()
        assert store.list_recent_models(1) == []

    def test_invalid_utf8_returns_400(self, client):
        """Test that non-UTF-8 bodies are rejected."""
        response = client.post("/api/train", content=b"\xff\xfe bad bytes")

        assert response.status_code == 400

    def test_get_not_allowed(self, client):
        response = client.get("/api/train")

        assert response.status_code == 405


class TestRetrainEndpoint:
    """Tests for PUT /api/models/{id}."""

    def test_retrain_existing_model(self, trained_client):
        """Test that retraining extends the model."""
        response = trained_client.put("/api/models/1", content=b"A fish swam.")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == 1
        assert data["sentences"] == 1

    def test_retrain_unknown_model_returns_404(self, trained_client):
        response = trained_client.put("/api/models/99", content=b"Some text.")

        assert response.status_code == 404

    def test_retrain_invalid_id_returns_400(self, trained_client):
        response = trained_client.put("/api/models/abc", content=b"Some text.")

        assert response.status_code == 400

    def test_retrain_is_visible_after_invalidation(self, client):
        """Test that the next read after a retrain sees the new words."""
        client.post("/api/train", content=b"The cat sat.")
        client.get("/api/post/1")
        assert client.get("/health").json()["vocabulary_size"] == 3

        client.put("/api/models/1", content=b"A bird flew.")

        assert client.get("/health").json()["model_loaded"] is False
        client.get("/api/post/1")
        assert client.get("/health").json()["vocabulary_size"] == 6


class TestPostEndpoints:
    """Tests for streamed and JSON pages."""

    def test_json_page(self, trained_client):
        """Test the JSON page structure."""
        response = trained_client.get("/api/post/42")

        assert response.status_code == 200
        data = response.json()
        assert data["link"]["seed"] == 42
        assert data["link"]["url"].startswith("/post/42-")
        assert 1 <= len(data["links"]) <= 3
        assert data["author"]
        assert data["content"]

    def test_json_page_is_deterministic(self, trained_client):
        """Test that repeated requests return the same page."""
        first = trained_client.get("/api/post/1234").json()
        second = trained_client.get("/api/post/1234").json()

        assert first == second

    def test_streamed_page(self, trained_client):
        """Test that the streamed page contains the generated content."""
        page = trained_client.get("/api/post/42").json()

        response = trained_client.get(page["link"]["url"])

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        body = response.text
        assert body.rstrip().endswith("</html>")
        assert f"<h1>{html.escape(page['link']['title'])}</h1>" in body
        assert html.escape(page["content"]) in body
        for link in page["links"]:
            assert f'href="{link["url"]}"' in body

    def test_slug_is_ignored(self, trained_client):
        """Test that any slug resolves to the seed's page."""
        canonical = trained_client.get("/post/42-whatever").text
        other = trained_client.get("/post/42").text

        assert canonical == other

    def test_invalid_seed_returns_400(self, trained_client):
        assert trained_client.get("/post/not-a-seed").status_code == 400
        assert trained_client.get("/api/post/abc").status_code == 400

    def test_no_model_returns_404(self, client):
        """Test that pages are unavailable before training."""
        assert client.get("/post/1-anything").status_code == 404
        assert client.get("/api/post/1").status_code == 404

    def test_generation_failure_returns_500(self, trained_client):
        """Test that generation errors surface before streaming starts."""
        with patch("endless.server.generate_page", side_effect=GenerationError("stuck")):
            response = trained_client.get("/post/5-x")

        assert response.status_code == 500
        assert response.json()["detail"] == "stuck"

    def test_stream_limit_returns_429(self, trained_client):
        """Test that a saturated stream limit fails fast."""
        trained_client.app.state.stream_semaphore = asyncio.Semaphore(0)

        response = trained_client.get("/post/1-busy")

        assert response.status_code == 429


class TestHomePage:
    """Tests for the home page."""

    def test_placeholder_without_model(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "No stories yet" in response.text

    def test_posts_with_model(self, trained_client):
        """Test that the home page links to the day's posts."""
        response = trained_client.get("/")

        assert response.status_code == 200
        assert response.text.count('class="post"') == 3
        assert "/post/" in response.text

    def test_home_page_is_stable(self, trained_client):
        assert trained_client.get("/").text == trained_client.get("/").text

    def test_render_empty(self):
        assert "No stories yet" in render_home_page([])


class TestHealthAndInfo:
    """Tests for /health and /api/info."""

    def test_health_without_model(self, client):
        data = client.get("/health").json()

        assert data["status"] == "model_not_loaded"
        assert data["model_loaded"] is False
        assert data["model_id"] is None

    def test_health_with_model(self, trained_client):
        """Test health once a page has loaded the model."""
        trained_client.get("/api/post/1")

        data = trained_client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["model_loaded"] is True
        assert data["model_id"] == 1
        assert data["vocabulary_size"] > 0

    def test_model_loaded_at_startup(self, store):
        """Test that an existing model is warmed into the cache on startup."""
        store.save_model(train_model(CORPUS).to_bytes())
        app = create_app(config=copy.deepcopy(DEFAULT_CONFIG), store=store)

        with TestClient(app) as client:
            assert client.get("/health").json()["model_loaded"] is True

    def test_info(self, client):
        data = client.get("/api/info").json()

        assert data["server"] == "Endless"
        assert "/api/train" in data["endpoints"]


class TestStreamLimit:
    """Tests for the concurrent stream cap."""

    def _app(self, store, title_seconds):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config["server"]["max_concurrent_streams"] = 1
        store.save_model(train_model(CORPUS).to_bytes())
        streamer = PageStreamer(title_seconds=title_seconds, body_seconds=0, link_seconds=0, jitter=0)
        return create_app(config=config, store=store, streamer=streamer)

    def test_slot_is_released_after_stream(self, store):
        """Test that finished streams free their slot."""
        app = self._app(store, title_seconds=0)

        with TestClient(app) as client:
            assert client.get("/post/1-first").status_code == 200
            assert client.get("/post/2-second").status_code == 200
            assert not client.app.state.stream_semaphore.locked()

    def test_overlapping_stream_is_rejected(self, store):
        """Test that a second stream during a running one gets 429 instead of queueing."""
        app = self._app(store, title_seconds=0.5)

        async def run():
            async with app.router.lifespan_context(app):
                transport = httpx.ASGITransport(app=app)
                async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                    responses = await asyncio.gather(
                        client.get("/post/1-first"),
                        client.get("/post/2-second"),
                    )
            return sorted(r.status_code for r in responses)

        assert asyncio.run(run()) == [200, 429]


class TestRequestLogging:
    """Tests for RequestLoggingMiddleware."""

    def test_logs_size_and_status(self, client, caplog):
        """Test that the access line carries status and body size."""
        with caplog.at_level(logging.INFO, logger="endless.server"):
            response = client.get("/health", headers={"User-Agent": "pytest-agent"})

        lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("[HTTP] GET /health")]
        assert len(lines) == 1
        assert f" 200 {len(response.content)}B " in lines[0]
        assert lines[0].endswith('"pytest-agent"')

    def test_streamed_page_logs_full_size(self, trained_client, caplog):
        """Test that a streamed page logs every byte sent."""
        with caplog.at_level(logging.INFO, logger="endless.server"):
            response = trained_client.get("/post/42-x", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})

        lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("[HTTP] GET /post/42-x")]
        assert len(lines) == 1
        assert f" 200 {len(response.content)}B " in lines[0]
        assert " 203.0.113.9 " in lines[0]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
