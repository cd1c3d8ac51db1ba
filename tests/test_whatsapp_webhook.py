from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from conftest import FakeTransport
from toolchat.dependencies import get_container
from toolchat.main import app
from toolchat.services.whatsapp_service import MSG_AI_UNAVAILABLE, MSG_FATAL_ERROR

FROM = "whatsapp:+15551234567"


@pytest.fixture
def client(container):
    app.dependency_overrides[get_container] = lambda: container
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestWhatsAppWebhook:
    def test_delivered_reply_is_acknowledged(self, client, provider, transport):
        response = client.post("/whatsapp", data={"From": FROM, "Body": "help"})

        assert response.status_code == 200
        assert response.text == "OK"
        assert response.headers["content-type"].startswith("text/plain")
        assert transport.sent[0][0] == "+15551234567"
        assert transport.sent[0][1].startswith("🤖 *ToolChat Assistant* 🤖")

    def test_missing_fields(self, client, transport):
        response = client.post("/whatsapp", data={"From": FROM})

        assert response.status_code == 200
        assert response.text == "Missing required fields"
        assert transport.sent == []

    def test_blank_body_counts_as_missing(self, client):
        response = client.post("/whatsapp", data={"From": FROM, "Body": "   "})
        assert response.text == "Missing required fields"

    def test_rate_limit(self, client, container):
        for _ in range(container.rate_limits.whatsapp.max_requests):
            assert client.post("/whatsapp", data={"From": FROM, "Body": "menu"}).text == "OK"

        response = client.post("/whatsapp", data={"From": FROM, "Body": "menu"})

        assert response.status_code == 200
        assert response.text == "Rate limit exceeded"

    def test_unexpected_error_sends_apology(self, client, container, transport):
        container.whatsapp.handle_message = AsyncMock(side_effect=RuntimeError("boom"))

        response = client.post("/whatsapp", data={"From": FROM, "Body": "hello there"})

        assert response.status_code == 200
        assert response.text == "OK"
        assert transport.sent == [("+15551234567", MSG_FATAL_ERROR)]


class TestWhatsAppWebhookWithoutTransport:
    @pytest.fixture
    def transport(self):
        return FakeTransport(fail=True)

    def test_reply_returned_in_body_when_undeliverable(self, client, provider):
        provider.fail_chat = True

        response = client.post("/whatsapp", data={"From": FROM, "Body": "tell me a story"})

        assert response.status_code == 200
        assert response.text == MSG_AI_UNAVAILABLE

    def test_unexpected_error_without_transport(self, client, container):
        container.whatsapp.handle_message = AsyncMock(side_effect=RuntimeError("boom"))

        response = client.post("/whatsapp", data={"From": FROM, "Body": "hello there"})

        assert response.status_code == 200
        assert response.text == MSG_FATAL_ERROR
