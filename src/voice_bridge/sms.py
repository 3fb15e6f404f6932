"""
Order confirmation SMS.

Formatting is plain text. Digits in amounts are spaced out ("1 8 .9 9")
because some carriers mask currency-looking values.
"""

from __future__ import annotations

import asyncio
import math
import re
from typing import Iterable, Optional

import structlog
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from src.voice_bridge.config import Config, get_config
from src.voice_bridge.stores import CartItem

logger = structlog.get_logger(__name__)

_ASCII_REPLACEMENTS = {
    "•": "-",
    "–": "-",
    "—": "-",
    "’": "'",
    "“": '"',
    "”": '"',
}
_NON_ASCII_RE = re.compile(r"[^\x20-\x7f\n]")


def format_amount(amount: float, *, show_currency: bool = False, currency_label: str = "USD") -> str:
    value = amount if isinstance(amount, (int, float)) and math.isfinite(amount) else 0.0
    spaced = re.sub(r"\d", lambda m: m.group(0) + " ", f"{value:.2f}").strip()
    return f"{spaced} {currency_label}" if show_currency else spaced


def to_ascii(text: str) -> str:
    for src, dst in _ASCII_REPLACEMENTS.items():
        text = text.replace(src, dst)
    return _NON_ASCII_RE.sub("", text)


def build_order_confirmation_sms(
    items: Iterable[CartItem],
    total: float,
    order_id: str,
    *,
    estimated_time: Optional[int] = None,
    customer_name: Optional[str] = None,
    config: Optional[Config] = None,
) -> str:
    config = config or get_config()

    def amount(value: float) -> str:
        return format_amount(
            value,
            show_currency=config.sms_show_currency,
            currency_label=config.sms_currency_label,
        )

    lines = [f"{config.restaurant_name} \U0001F355 - Order Confirmed ✅", f"Order #: {order_id}"]
    if customer_name:
        lines.append(f"For: {customer_name}")
    lines.append("")
    lines.append("Items:")
    for item in items:
        size = f" ({item.size})" if item.size else ""
        toppings = f" [{', '.join(item.toppings)}]" if item.toppings else ""
        lines.append(
            f"- {item.quantity} x {item.name}{size}{toppings} = {amount(item.price)} ({amount(item.unit_price)} ea)"
        )
    lines.append("")
    lines.append(f"Total: {amount(total)}")
    if estimated_time:
        lines.append(f"ETA: ~{estimated_time} mins")
    lines.append("")
    lines.append("Thanks! We're firing up the ovens \U0001F525")

    body = "\n".join(lines)
    return to_ascii(body) if config.sms_ascii_only else body


class SmsSender:
    """Sends SMS through the Twilio REST API; a no-op when Twilio is not configured."""

    def __init__(self, config: Optional[Config] = None, client: Optional[TwilioClient] = None):
        self.config = config or get_config()
        self._client = client
        if self._client is None and self.config.twilio_enabled:
            self._client = TwilioClient(self.config.twilio_account_sid, self.config.twilio_auth_token)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def send(self, to: str, body: str, *, fallback_from: Optional[str] = None) -> Optional[str]:
        """
        Send one SMS. Returns the message SID, or None if it could not be sent.

        Sender precedence: messaging service SID, configured from-number, then
        `fallback_from` (the number the caller dialled).
        """
        if self._client is None:
            logger.warning("Cannot send SMS: Twilio client not configured")
            return None

        kwargs = {"to": to, "body": body}
        if self.config.twilio_messaging_service_sid:
            kwargs["messaging_service_sid"] = self.config.twilio_messaging_service_sid
        elif self.config.twilio_messaging_from:
            kwargs["from_"] = self.config.twilio_messaging_from
        elif fallback_from:
            kwargs["from_"] = fallback_from
        else:
            logger.warning("Cannot send SMS: no from number or messaging service configured")
            return None

        client = self._client

        def _call() -> str:
            return client.messages.create(**kwargs).sid

        try:
            sid = await asyncio.to_thread(_call)
        except TwilioException as e:
            logger.warning("SMS send failed", to_suffix=to[-4:], error=str(e))
            return None

        logger.info("SMS sent", to_suffix=to[-4:], sid=sid)
        return sid
