"""
Pytest configuration and fixtures.
"""

import dataclasses
import json
import os
from unittest.mock import AsyncMock, patch

import pytest

from src.voice_bridge.providers import ProviderSettings, RealtimeProvider

from tests.fakes import FakeProvider


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "PUBLIC_HOST": "test.ngrok.io",
        "PORT": "8082",
        "LOG_LEVEL": "DEBUG",
        "OPENAI_API_KEY": "test_openai_key",
        "OPENAI_REALTIME_MODEL": "openai:gpt-realtime",
        "OPENAI_REALTIME_VOICE": "ash",
        "TWILIO_ACCOUNT_SID": "ACtest123456789",
        "TWILIO_AUTH_TOKEN": "test_auth_token",
        "TWILIO_MESSAGING_FROM": "",
        "TWILIO_MESSAGING_SERVICE_SID": "",
        "SMS_SHOW_CURRENCY": "false",
        "SMS_ASCII_ONLY": "false",
        "MENU_DATA_PATH": "",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.voice_bridge.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


@dataclasses.dataclass
class Harness:
    manager: object
    backend: object
    providers: list


@pytest.fixture
def make_harness():
    from src.voice_bridge.assistant_settings import AssistantSettings
    from src.voice_bridge.config import get_config
    from src.voice_bridge.dispatcher import FunctionCallDispatcher
    from src.voice_bridge.restaurant_tools import RestaurantBackend
    from src.voice_bridge.session import SessionManager

    def _make(provider_cls=FakeProvider, registry=None, **config_overrides) -> Harness:
        config = dataclasses.replace(get_config(), **config_overrides)
        providers = []

        def factory(settings: ProviderSettings) -> RealtimeProvider:
            provider = provider_cls(settings)
            providers.append(provider)
            return provider

        sms = AsyncMock()
        sms.send = AsyncMock(return_value="SM123")
        backend = RestaurantBackend(config=config, sms=sms)
        manager = SessionManager(
            config=config,
            settings=AssistantSettings(config),
            dispatcher=FunctionCallDispatcher(registry or backend.build_registry()),
            backend=backend,
            provider_factory=factory,
        )
        return Harness(manager=manager, backend=backend, providers=providers)

    return _make


@pytest.fixture
def twilio_start_message():
    """Sample Twilio start message."""
    return json.dumps({
        "event": "start",
        "streamSid": "S1",
        "start": {
            "streamSid": "S1",
            "callSid": "CA789012",
            "accountSid": "AC345678",
            "tracks": ["inbound"],
            "customParameters": {},
        }
    })


@pytest.fixture
def twilio_stop_message():
    """Sample Twilio stop message."""
    return json.dumps({
        "event": "stop",
        "streamSid": "S1",
    })
