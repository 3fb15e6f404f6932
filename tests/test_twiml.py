"""
Tests for the HTTP and WebSocket endpoints.
"""

import json
import xml.etree.ElementTree as ET

import pytest
from fastapi.testclient import TestClient

from tests.fakes import FakeProvider


@pytest.fixture
def client():
    """Test client with freshly built services."""
    from src.voice_bridge.config import get_config
    from server.app import app, get_services

    get_config.cache_clear()
    get_services.cache_clear()
    yield TestClient(app, raise_server_exceptions=False)
    get_services.cache_clear()


@pytest.fixture
def services(client):
    from server.app import get_services

    return get_services()


class TestTwimlGeneration:
    """Tests for TwiML endpoint."""

    def test_twiml_contains_stream_element(self, client):
        """Test that TwiML contains Stream element."""
        response = client.post("/twiml")

        assert response.status_code == 200
        assert "application/xml" in response.headers.get("content-type", "")

        content = response.text
        assert "<Response>" in content
        assert "<Connect>" in content
        assert "<Stream" in content
        assert "wss://test.ngrok.io/call" in content

    def test_twiml_is_valid_xml(self, client):
        """Test that TwiML is valid XML."""
        root = ET.fromstring(client.get("/twiml").text)

        assert root.tag == "Response"
        assert root.find("./Connect/Stream").get("url") == "wss://test.ngrok.io/call"

    def test_twiml_uses_correct_host(self, client, monkeypatch):
        """Test that TwiML uses PUBLIC_HOST from config."""
        from src.voice_bridge.config import get_config

        monkeypatch.setenv("PUBLIC_HOST", "my-custom-domain.example.com")
        get_config.cache_clear()

        response = client.post("/twiml")

        assert "wss://my-custom-domain.example.com/call" in response.text

    def test_twiml_records_call_participants(self, client, services):
        """Test that the webhook form links the CallSid to caller and dialled numbers."""
        response = client.post(
            "/twiml",
            data={"CallSid": "CA42", "From": "+15550001111", "To": "+15550002222"},
        )

        assert response.status_code == 200
        services.backend.link_call("S1", "CA42")
        assert services.backend.call_context.caller_for_session("S1") == "+15550001111"
        assert services.backend.call_context.twilio_number_for_session("S1") == "+15550002222"


class TestHealthEndpoint:
    """Tests for health endpoint."""

    def test_health_returns_ok(self, client):
        """Test health endpoint returns healthy status."""
        response = client.get("/health")

        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data


class TestMetricsEndpoint:
    """Tests for metrics endpoint."""

    def test_metrics_returns_json(self, client):
        """Test metrics endpoint returns JSON."""
        response = client.get("/metrics")

        assert response.status_code == 200

        data = response.json()
        assert "uptime_seconds" in data
        assert "total_calls" in data
        assert "active_calls" in data
        assert "total_observers" in data
        assert "errors" in data


class TestCallWebSocket:
    """Tests for the telephony and observer WebSockets."""

    def test_call_lifecycle(self, client, services, twilio_start_message, twilio_stop_message):
        from server.app import metrics

        providers = []

        def factory(settings):
            provider = FakeProvider(settings)
            providers.append(provider)
            return provider

        services.manager.provider_factory = factory
        total_calls = metrics.total_calls

        with client.websocket_connect("/call") as ws:
            ws.send_text(twilio_start_message)
            ws.send_text(twilio_stop_message)

        assert metrics.total_calls == total_calls + 1
        assert metrics.active_calls == 0
        assert len(providers) == 1
        assert providers[0].connect_calls == 1
        assert providers[0].close_calls >= 1
        assert services.manager.session is None

    def test_observer_connects_and_releases(self, client, services):
        from server.app import metrics

        total_observers = metrics.total_observers

        with client.websocket_connect("/logs") as ws:
            ws.send_text(json.dumps({"type": "session.update", "session": {"voice": "coral"}}))

        assert metrics.total_observers == total_observers + 1
        assert services.manager.session is None
        # The observer cannot change assistant settings.
        assert services.settings.voice == "ash"

    def test_session_endpoint_when_idle(self, client):
        assert client.get("/api/session").json() == {"active": False}


class TestToolEndpoints:
    """Tests for tool listing and per-call cart/order views."""

    def test_tools_lists_function_schemas(self, client):
        names = {schema["name"] for schema in client.get("/tools").json()}

        assert {"get_menu", "add_to_cart", "place_order", "cancel_order"} <= names

    def test_empty_cart_and_orders(self, client):
        assert client.get("/api/cart/S1").json() == {"sessionId": "S1", "items": [], "total": 0, "itemCount": 0}
        assert client.get("/api/orders/S1").json() == {"sessionId": "S1", "orders": []}

    def test_cart_view_reflects_tool_calls(self, client, services):
        import asyncio

        from src.voice_bridge.tool_registry import ToolContext

        asyncio.run(
            services.backend.add_to_cart(
                ToolContext(session_id="S1"), {"items": [{"itemId": "drink_water", "quantity": 2}]}
            )
        )

        data = client.get("/api/cart/S1").json()
        assert data["total"] == 3.98
        assert data["itemCount"] == 2


class TestAdminEndpoints:
    """Tests for runtime model, voice, prompt and function overrides."""

    def test_config_lists_choices(self, client):
        data = client.get("/admin/config").json()

        assert data["model"]["id"] == "openai:gpt-realtime"
        assert data["voice"] == "ash"
        assert "coral" in data["availableVoices"]
        assert len(data["availableModels"]) == 4

    def test_update_model_and_voice(self, client, services):
        assert client.post("/admin/config/model", json={"modelId": "openai:gpt-realtime-mini"}).status_code == 200
        assert services.settings.model.model == "gpt-realtime-mini"
        assert client.post("/admin/config/model", json={"modelId": "acme:thing"}).status_code == 400

        assert client.post("/admin/config/voice", json={"voice": "Coral"}).json()["voice"] == "coral"
        assert client.post("/admin/config/voice", json={"voice": "robot"}).status_code == 400

    def test_update_and_reset_prompt(self, client, services):
        default = services.settings.system_prompt

        response = client.post("/admin/config/prompt", json={"prompt": "  Talk like a pirate.  "})
        assert response.json()["systemPrompt"] == "Talk like a pirate."
        assert client.post("/admin/config/prompt", json={"prompt": "   "}).status_code == 400

        assert client.delete("/admin/config/prompt").json()["systemPrompt"] == default

    def test_function_schema_override_and_reset(self, client, services):
        response = client.put("/admin/functions/get_menu", json={"description": "List what we sell"})
        assert response.status_code == 200
        assert response.json()["description"] == "List what we sell"
        assert services.manager.dispatcher.tool_schemas()[0]["description"] == "List what we sell"

        reset = client.delete("/admin/functions/get_menu").json()
        assert reset["description"].startswith("Get the restaurant's menu")

        assert client.put("/admin/functions/nope", json={"description": "x"}).status_code == 404
        assert client.delete("/admin/functions/nope").status_code == 404
