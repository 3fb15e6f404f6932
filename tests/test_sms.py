"""
Tests for order confirmation SMS formatting and sending.
"""

import dataclasses
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from twilio.base.exceptions import TwilioException

from src.voice_bridge.config import get_config
from src.voice_bridge.sms import SmsSender, build_order_confirmation_sms, format_amount, to_ascii
from src.voice_bridge.stores import CartItem


def _items():
    return [
        CartItem(
            cart_item_id="c1",
            item_id="pizza_margherita",
            name="Margherita Pizza",
            quantity=2,
            unit_price=18.99,
            size="medium",
            toppings=["Extra Cheese"],
        ),
        CartItem(cart_item_id="c2", item_id="drink_water", name="Bottled Water", quantity=1, unit_price=1.99),
    ]


def _client(sid="SM42"):
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(sid=sid)
    return client


def test_format_amount_spaces_digits():
    assert format_amount(18.99) == "1 8 .9 9"
    assert format_amount(5) == "5 .0 0"
    assert format_amount(3.5, show_currency=True, currency_label="CAD") == "3 .5 0 CAD"
    assert format_amount(float("nan")) == "0 .0 0"


def test_confirmation_body_lists_items_total_and_eta():
    body = build_order_confirmation_sms(
        _items(), 39.97, "abc123", estimated_time=30, customer_name="Sam", config=get_config()
    )
    lines = body.split("\n")

    assert lines[0].startswith("Simple Pizza")
    assert "Order #: abc123" in lines
    assert "For: Sam" in lines
    assert "- 2 x Margherita Pizza (medium) [Extra Cheese] = 3 7 .9 8 (1 8 .9 9 ea)" in lines
    assert "- 1 x Bottled Water = 1 .9 9 (1 .9 9 ea)" in lines
    assert "Total: 3 9 .9 7" in lines
    assert "ETA: ~30 mins" in lines


def test_confirmation_body_ascii_mode():
    config = dataclasses.replace(get_config(), sms_ascii_only=True, sms_show_currency=True)

    body = build_order_confirmation_sms(_items(), 39.97, "abc123", config=config)

    assert body.isascii()
    assert "Total: 3 9 .9 7 USD" in body
    assert "ETA" not in body


def test_to_ascii_replaces_punctuation():
    assert to_ascii("a – b “c” café") == 'a - b "c" caf'


@pytest.mark.asyncio
async def test_send_prefers_messaging_service():
    config = dataclasses.replace(
        get_config(), twilio_messaging_service_sid="MG1", twilio_messaging_from="+15550000000"
    )
    client = _client()

    sid = await SmsSender(config, client=client).send("+15551234567", "hi", fallback_from="+15559999999")

    assert sid == "SM42"
    client.messages.create.assert_called_once_with(to="+15551234567", body="hi", messaging_service_sid="MG1")


@pytest.mark.asyncio
async def test_send_uses_configured_from_number():
    config = dataclasses.replace(get_config(), twilio_messaging_from="+15550000000")
    client = _client()

    await SmsSender(config, client=client).send("+15551234567", "hi", fallback_from="+15559999999")

    client.messages.create.assert_called_once_with(to="+15551234567", body="hi", from_="+15550000000")


@pytest.mark.asyncio
async def test_send_falls_back_to_dialled_number():
    client = _client()

    await SmsSender(get_config(), client=client).send("+15551234567", "hi", fallback_from="+15559999999")

    client.messages.create.assert_called_once_with(to="+15551234567", body="hi", from_="+15559999999")


@pytest.mark.asyncio
async def test_send_without_sender_returns_none():
    client = _client()

    assert await SmsSender(get_config(), client=client).send("+15551234567", "hi") is None
    client.messages.create.assert_not_called()


@pytest.mark.asyncio
async def test_send_twilio_error_returns_none():
    client = _client()
    client.messages.create.side_effect = TwilioException("rejected")

    assert await SmsSender(get_config(), client=client).send("+15551234567", "hi", fallback_from="+1555") is None


@pytest.mark.asyncio
async def test_sender_disabled_without_credentials():
    config = dataclasses.replace(get_config(), twilio_account_sid="", twilio_auth_token="")
    sender = SmsSender(config)

    assert sender.enabled is False
    assert await sender.send("+15551234567", "hi") is None
