"""
Tests for the HTTP routes.

Runs the FastAPI app against a temporary store and a scripted provider.
"""

import os
import tempfile
from datetime import date

from fastapi.testclient import TestClient

from chat_relay.api.app import MAX_BODY_BYTES, create_app
from chat_relay.config.loader import RelayConfig
from chat_relay.config.settings import Settings
from chat_relay.core.errors import UpstreamFailure
from chat_relay.core.orchestrator import create_orchestrator


class EchoProvider:
    """Completion provider echoing the last user message."""

    def __init__(self):
        self.error = None
        self.calls = 0

    def complete(self, messages, model, temperature, max_tokens):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return f"echo: {messages[-1]['content']}"


class TestRoutes:
    """Test the relay HTTP surface."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.settings = Settings(
            db_path=os.path.join(self.temp_dir, "test.db"),
            admin_key="secret"
        )
        self.provider = EchoProvider()
        orchestrator = create_orchestrator(
            self.settings,
            RelayConfig(),
            provider=self.provider,
            clock=lambda: date(2024, 3, 1)
        )
        self.client = TestClient(create_app(orchestrator, settings=self.settings))

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_health(self):
        response = self.client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_chat_success(self):
        response = self.client.post("/api/chat", json={"userId": "alice", "message": "Hello"})

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["reply"] == "echo: Hello"
        assert body["meta"] == {
            "userId": "alice",
            "model": "gpt-4.1-mini",
            "remainingRequests": 4,
        }

    def test_chat_defaults_to_guest(self):
        response = self.client.post("/api/chat", json={"message": "Hello"})
        assert response.json()["meta"]["userId"] == "guest"

    def test_chat_missing_message(self):
        """Missing message is a 400 and costs nothing."""
        response = self.client.post("/api/chat", json={"userId": "alice"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"
        assert self.provider.calls == 0

    def test_chat_malformed_body(self):
        response = self.client.post(
            "/api/chat",
            json={"userId": "alice", "message": "hi", "max_tokens": "many"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_chat_body_too_large(self):
        response = self.client.post(
            "/api/chat",
            json={"userId": "alice", "message": "x" * (MAX_BODY_BYTES + 1)}
        )
        assert response.status_code == 400
        assert self.provider.calls == 0

    def test_quota_exceeded(self):
        """The sixth free request is a 429 with a machine-readable reason."""
        for _ in range(5):
            assert self.client.post("/api/chat", json={"userId": "alice", "message": "hi"}).status_code == 200

        response = self.client.post("/api/chat", json={"userId": "alice", "message": "hi"})

        assert response.status_code == 429
        body = response.json()
        assert body["ok"] is False
        assert body["error"] == "quota_exceeded"
        assert body["details"] == {"reason": "quota_exhausted", "remaining": 0}
        assert self.provider.calls == 5

    def test_upstream_failure(self):
        self.provider.error = UpstreamFailure("Completion provider request failed", {"status": 500})
        response = self.client.post("/api/chat", json={"userId": "alice", "message": "hi"})

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "upstream_failure"
        assert body["details"]["upstream"] == {"status": 500}

        history = self.client.get("/api/history", params={"userId": "alice"}).json()
        assert history == {"history": []}

    def test_unlimited_remaining(self):
        self.client.post("/api/user/updateTier", json={"userId": "vip", "level": "premium"})
        response = self.client.post("/api/chat", json={"userId": "vip", "message": "hi"})
        assert response.json()["meta"]["remainingRequests"] == "unlimited"

    def test_history(self):
        self.client.post("/api/chat", json={"userId": "alice", "message": "Hello"})

        response = self.client.get("/api/history", params={"userId": "alice"})

        assert response.status_code == 200
        history = response.json()["history"]
        assert [(m["role"], m["content"]) for m in history] == [
            ("user", "Hello"),
            ("assistant", "echo: Hello"),
        ]
        assert "timestamp" in history[0]

    def test_history_requires_user_id(self):
        response = self.client.get("/api/history")
        assert response.status_code == 400

    def test_update_tier(self):
        response = self.client.post(
            "/api/user/updateTier",
            json={"userId": "alice", "level": "pro", "bonusRequests": 3}
        )

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["id"] == "alice"
        assert user["level"] == "pro"
        assert user["bonusRequests"] == 3
        assert user["usage"] == {"date": "2024-03-01", "count": 0}

    def test_update_tier_alias_keeps_bonus(self):
        """The legacy 'tier' field works and an absent bonus is kept."""
        self.client.post("/api/user/updateTier", json={"userId": "alice", "bonusRequests": 9})
        response = self.client.post("/api/user/updateTier", json={"userId": "alice", "tier": "basic"})

        user = response.json()["user"]
        assert user["level"] == "basic"
        assert user["bonusRequests"] == 9

    def test_update_tier_validation(self):
        assert self.client.post("/api/user/updateTier", json={"level": "pro"}).status_code == 400
        assert self.client.post(
            "/api/user/updateTier", json={"userId": "alice", "level": "gold"}
        ).status_code == 400
        assert self.client.post(
            "/api/user/updateTier", json={"userId": "alice", "bonusRequests": -2}
        ).status_code == 400

    def test_reset_usage_forbidden(self):
        assert self.client.post("/api/admin/resetUsage").status_code == 403
        response = self.client.post("/api/admin/resetUsage", headers={"x-admin-key": "nope"})
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_reset_usage(self):
        for _ in range(5):
            self.client.post("/api/chat", json={"userId": "alice", "message": "hi"})

        response = self.client.post("/api/admin/resetUsage", headers={"x-admin-key": "secret"})
        assert response.status_code == 200
        assert response.json() == {"ok": True, "reset": 1}

        response = self.client.post("/api/chat", json={"userId": "alice", "message": "hi"})
        assert response.status_code == 200
        assert response.json()["meta"]["remainingRequests"] == 4

    def test_chunked_body_too_large(self):
        """A body streamed without Content-Length is still capped."""
        def chunks():
            yield b'{"userId": "alice", "message": "'
            for _ in range(40):
                yield b"x" * 10240
            yield b'"}'

        response = self.client.post(
            "/api/chat",
            content=chunks(),
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"
        assert self.provider.calls == 0
        assert self.client.get("/api/history", params={"userId": "alice"}).json() == {"history": []}

    def test_chunked_body_under_limit(self):
        def chunks():
            yield b'{"userId": "alice", '
            yield b'"message": "Hello"}'

        response = self.client.post(
            "/api/chat",
            content=chunks(),
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json()["reply"] == "echo: Hello"
