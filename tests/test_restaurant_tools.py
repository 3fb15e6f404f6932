"""
Tests for the restaurant menu, cart and order tools.
"""

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from src.voice_bridge.config import get_config
from src.voice_bridge.restaurant_tools import TOOL_SCHEMAS, RestaurantBackend, create_restaurant_tools
from src.voice_bridge.stores import OrderStatus
from src.voice_bridge.tool_registry import ToolContext


CONTEXT = ToolContext(session_id="S1")
ORDER_ARGS = {
    "customerInfo": {"name": "Sam"},
    "paymentMethod": {"type": "cash"},
}


@pytest.fixture
def sms():
    sender = AsyncMock()
    sender.send = AsyncMock(return_value="SM123")
    return sender


@pytest.fixture
def backend(sms):
    return RestaurantBackend(config=get_config(), sms=sms)


async def _add(backend, *items, context=CONTEXT):
    return await backend.add_to_cart(context, {"items": list(items)})


def test_registry_exposes_every_tool(backend):
    registry = backend.build_registry()

    assert set(registry.names()) == set(TOOL_SCHEMAS)
    assert all(schema["type"] == "function" for schema in registry.schemas())


def test_create_restaurant_tools_builds_backend_and_registry(backend):
    same_backend, registry = create_restaurant_tools(backend)

    assert same_backend is backend
    assert "place_order" in registry


@pytest.mark.asyncio
async def test_get_menu_overview_and_category(backend):
    overview = await backend.get_menu(CONTEXT, {})
    assert set(overview["categories"]) == {"pizzas", "appetizers", "drinks", "desserts"}
    assert {"itemId": "pizza_margherita", "name": "Margherita Pizza"} in overview["categories"]["pizzas"]
    assert "get_menu_item" in overview["message"]

    drinks = await backend.get_menu(CONTEXT, {"category": "drink"})
    assert drinks["category"] == "drink"
    assert any(item["itemId"] == "drink_water" for item in drinks["items"])


@pytest.mark.asyncio
async def test_get_menu_item_details_and_suggestions(backend):
    item = await backend.get_menu_item(CONTEXT, {"itemId": "pizza_pepperoni"})
    assert item["prices"]["large"] == 24.99

    missing = await backend.get_menu_item(CONTEXT, {"itemId": "pepperoni"})
    assert missing["error"] == "Menu item not found"
    assert missing["suggestions"][0]["itemId"] == "pizza_pepperoni"


@pytest.mark.asyncio
async def test_add_to_cart_prices_by_size(backend):
    result = await _add(
        backend,
        {"itemId": "pizza_margherita", "size": "large", "quantity": 2},
        {"itemId": "drink_water"},
    )

    assert result["success"] is True
    assert result["message"] == "Added 2 items to cart"
    assert result["cartTotal"] == 47.97
    assert result["cartItemCount"] == 3
    water = result["addedItems"][1]
    assert water["size"] is None
    assert water["unitPrice"] == 1.99


@pytest.mark.asyncio
async def test_add_to_cart_defaults_size_for_sized_items(backend):
    result = await _add(backend, {"itemId": "drink_coca_cola"})

    assert result["message"] == "Added 1 Coca-Cola (medium) to cart"
    assert result["cartTotal"] == 3.49


@pytest.mark.asyncio
async def test_add_to_cart_reports_unknown_items(backend):
    result = await _add(backend, {"itemId": "pizza_unicorn"})

    assert result["success"] is False
    assert result["errors"] == ["Menu item not found: pizza_unicorn"]


@pytest.mark.asyncio
async def test_add_to_cart_rejects_bad_arguments(backend):
    with pytest.raises(ValidationError):
        await backend.add_to_cart(CONTEXT, {"items": []})
    with pytest.raises(ValidationError):
        await _add(backend, {"itemId": "pizza_margherita", "size": "huge"})


@pytest.mark.asyncio
async def test_carts_are_scoped_per_call(backend):
    await _add(backend, {"itemId": "dessert_tiramisu"})

    other = await backend.get_cart(ToolContext(session_id="S2"), {})
    mine = await backend.get_cart(CONTEXT, {})

    assert other == {"empty": True, "message": "Your cart is empty", "items": [], "total": 0}
    assert mine["total"] == 6.99
    assert mine["itemCount"] == 1


@pytest.mark.asyncio
async def test_context_without_session_uses_active_session(backend):
    backend.set_active_session("S1")
    await _add(backend, {"itemId": "dessert_tiramisu"}, context=ToolContext(session_id=""))

    assert backend.carts.get_cart("S1").total == 6.99


@pytest.mark.asyncio
async def test_update_and_remove_cart_items(backend):
    added = await _add(backend, {"itemId": "dessert_tiramisu"}, {"itemId": "drink_water"})
    tiramisu_id = added["addedItems"][0]["cartItemId"]
    water_id = added["addedItems"][1]["cartItemId"]

    updated = await backend.update_cart_item(CONTEXT, {"cartItemId": tiramisu_id, "quantity": 3})
    assert updated == {"success": True, "message": "Cart item updated", "cartTotal": 22.96}

    removed = await backend.update_cart_item(CONTEXT, {"cartItemId": water_id, "quantity": 0})
    assert removed["message"] == "Item removed from cart"
    assert removed["cartTotal"] == 20.97

    result = await backend.remove_from_cart(CONTEXT, {"cartItemId": tiramisu_id})
    assert result["message"] == "Removed Tiramisu from cart"
    assert result["cartTotal"] == 0

    assert await backend.remove_from_cart(CONTEXT, {"cartItemId": tiramisu_id}) == {"error": "Cart item not found"}
    assert await backend.update_cart_item(
        ToolContext(session_id="S9"), {"cartItemId": "x", "quantity": 1}
    ) == {"error": "Cart not found"}


@pytest.mark.asyncio
async def test_place_order_requires_items(backend):
    result = await backend.place_order(CONTEXT, ORDER_ARGS)
    assert result == {"error": "Cannot place order: cart is empty"}


@pytest.mark.asyncio
async def test_place_order_clears_cart_and_texts_caller(backend, sms):
    backend.call_context.set_participants("CA1", "+15550001111", "+15550002222")
    backend.link_call("S1", "CA1")
    await _add(backend, {"itemId": "pizza_margherita", "size": "large"})

    result = await backend.place_order(CONTEXT, ORDER_ARGS)

    assert result["success"] is True
    assert result["total"] == 22.99
    assert 25 <= result["estimatedTime"] <= 39
    assert result["orderDetails"]["status"] == "confirmed"
    assert result["smsSent"] is True
    assert result["smsSid"] == "SM123"
    assert result["smsTo"] == "+15550001111"
    assert backend.carts.get_cart("S1") is None

    sms.send.assert_awaited_once()
    args, kwargs = sms.send.await_args
    assert args[0] == "+15550001111"
    assert result["orderId"] in args[1]
    assert kwargs["fallback_from"] == "+15550002222"


@pytest.mark.asyncio
async def test_place_order_prefers_customer_phone(backend, sms):
    await _add(backend, {"itemId": "drink_water"})

    result = await backend.place_order(
        CONTEXT,
        {"customerInfo": {"name": "Sam", "phone": "+15553334444"}, "paymentMethod": {"type": "card"}},
    )

    assert result["smsTo"] == "+15553334444"
    assert result["orderDetails"]["customerInfo"] == {"name": "Sam", "phone": "+15553334444"}


@pytest.mark.asyncio
async def test_place_order_without_phone_skips_sms(backend, sms):
    await _add(backend, {"itemId": "drink_water"})

    result = await backend.place_order(CONTEXT, ORDER_ARGS)

    assert result["smsSent"] is False
    assert "smsTo" not in result
    sms.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_sms_failure_does_not_fail_the_order(backend, sms):
    sms.send.side_effect = RuntimeError("twilio down")
    await _add(backend, {"itemId": "drink_water"})

    result = await backend.place_order(
        CONTEXT, {"customerInfo": {"name": "Sam", "phone": "+15553334444"}, "paymentMethod": {"type": "cash"}}
    )

    assert result["success"] is True
    assert result["smsSent"] is False
    assert backend.orders.get_order(result["orderId"]) is not None


@pytest.mark.asyncio
async def test_order_status_and_cancellation(backend):
    await _add(backend, {"itemId": "drink_water"})
    order_id = (await backend.place_order(CONTEXT, ORDER_ARGS))["orderId"]

    status = await backend.get_order_status(CONTEXT, {"orderId": order_id})
    assert status["status"] == "confirmed"
    assert status["total"] == 1.99

    cancelled = await backend.cancel_order(CONTEXT, {"orderId": order_id})
    assert cancelled["success"] is True
    assert cancelled["status"] == "cancelled"

    again = await backend.cancel_order(CONTEXT, {"orderId": order_id})
    assert again["error"].startswith("Cannot cancel order")

    missing = await backend.get_order_status(CONTEXT, {"orderId": "nope"})
    assert missing == {"error": "Order not found", "orderId": "nope"}


@pytest.mark.asyncio
async def test_delivered_orders_cannot_be_cancelled(backend):
    await _add(backend, {"itemId": "drink_water"})
    order_id = (await backend.place_order(CONTEXT, ORDER_ARGS))["orderId"]
    backend.orders.update_status(order_id, OrderStatus.DELIVERED)

    result = await backend.cancel_order(CONTEXT, {"orderId": order_id})

    assert "error" in result
