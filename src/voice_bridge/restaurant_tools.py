from __future__ import annotations

import random
from typing import Any, Dict, List, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.voice_bridge.call_context import CallContextStore
from src.voice_bridge.config import Config, get_config
from src.voice_bridge.menu import DEFAULT_SIZE, SECTIONS, MenuCatalog, find_menu_items, get_menu_catalog
from src.voice_bridge.sms import SmsSender, build_order_confirmation_sms
from src.voice_bridge.stores import CartItem, CartStore, OrderStore
from src.voice_bridge.tool_registry import ToolContext, ToolRegistry

logger = structlog.get_logger(__name__)

DEFAULT_SESSION_ID = "default_session"


class _Args(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GetMenuArgs(_Args):
    category: Optional[str] = None


class ItemIdArgs(_Args):
    item_id: str = Field(alias="itemId", min_length=1)


class CartItemRequest(_Args):
    item_id: str = Field(alias="itemId", min_length=1)
    quantity: int = Field(default=1, ge=1)
    size: Optional[Literal["small", "medium", "large"]] = None
    toppings: List[str] = Field(default_factory=list)


class AddToCartArgs(_Args):
    items: List[CartItemRequest] = Field(min_length=1)


class UpdateCartItemArgs(_Args):
    cart_item_id: str = Field(alias="cartItemId", min_length=1)
    quantity: int


class CartItemIdArgs(_Args):
    cart_item_id: str = Field(alias="cartItemId", min_length=1)


class CustomerInfo(_Args):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None


class PaymentMethod(_Args):
    type: Literal["card", "cash"]
    card_details: Optional[Dict[str, Any]] = Field(default=None, alias="cardDetails")


class PlaceOrderArgs(_Args):
    customer_info: CustomerInfo = Field(alias="customerInfo")
    payment_method: PaymentMethod = Field(alias="paymentMethod")


class OrderIdArgs(_Args):
    order_id: str = Field(alias="orderId", min_length=1)


def _object(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


TOOL_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "get_menu": {
        "name": "get_menu",
        "description": "Get the restaurant's menu. Can optionally filter by category (pizza, appetizer, drink, dessert)",
        "parameters": _object(
            {
                "category": {
                    "type": "string",
                    "description": "Optional category to filter by: pizza, appetizer, drink, or dessert",
                }
            }
        ),
    },
    "get_menu_item": {
        "name": "get_menu_item",
        "description": "Get detailed information about a specific menu item by its ID",
        "parameters": _object(
            {"itemId": {"type": "string", "description": "The unique ID of the menu item"}},
            ["itemId"],
        ),
    },
    "add_to_cart": {
        "name": "add_to_cart",
        "description": "Add one or more items to the customer's cart",
        "parameters": _object(
            {
                "items": {
                    "type": "array",
                    "description": "Array of items to add to cart",
                    "items": _object(
                        {
                            "itemId": {"type": "string", "description": "The unique ID of the menu item"},
                            "quantity": {"type": "number", "description": "Quantity to add (default: 1)"},
                            "size": {
                                "type": "string",
                                "enum": ["small", "medium", "large"],
                                "description": "Size for pizzas and drinks",
                            },
                            "toppings": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "Additional toppings for pizzas",
                            },
                        },
                        ["itemId"],
                    ),
                }
            },
            ["items"],
        ),
    },
    "get_cart": {
        "name": "get_cart",
        "description": "Get the current contents of the customer's cart",
        "parameters": _object({}),
    },
    "update_cart_item": {
        "name": "update_cart_item",
        "description": "Update the quantity of an item in the cart. A quantity of 0 removes the item.",
        "parameters": _object(
            {
                "cartItemId": {"type": "string", "description": "The unique ID of the cart item to update"},
                "quantity": {"type": "number", "description": "New quantity for the item"},
            },
            ["cartItemId", "quantity"],
        ),
    },
    "remove_from_cart": {
        "name": "remove_from_cart",
        "description": "Remove an item from the cart",
        "parameters": _object(
            {"cartItemId": {"type": "string", "description": "The unique ID of the cart item to remove"}},
            ["cartItemId"],
        ),
    },
    "place_order": {
        "name": "place_order",
        "description": "Place an order with customer information and payment method",
        "parameters": _object(
            {
                "customerInfo": {
                    "type": "object",
                    "description": "Customer information including name, phone, address, and email",
                    "properties": {
                        "name": {"type": "string"},
                        "phone": {"type": "string"},
                        "address": {"type": "string"},
                        "email": {"type": "string"},
                    },
                    "required": ["name"],
                },
                "paymentMethod": {
                    "type": "object",
                    "description": "Payment method information (card or cash)",
                    "properties": {"type": {"type": "string", "enum": ["card", "cash"]}},
                    "required": ["type"],
                },
            },
            ["customerInfo", "paymentMethod"],
        ),
    },
    "get_order_status": {
        "name": "get_order_status",
        "description": "Get the current status of an order",
        "parameters": _object(
            {"orderId": {"type": "string", "description": "The unique ID of the order to check"}},
            ["orderId"],
        ),
    },
    "cancel_order": {
        "name": "cancel_order",
        "description": "Cancel an existing order",
        "parameters": _object(
            {"orderId": {"type": "string", "description": "The unique ID of the order to cancel"}},
            ["orderId"],
        ),
    },
}


class RestaurantBackend:
    """
    Menu, cart and order operations for the pizza restaurant.

    Cart and order state is scoped by the call's stream id, which every tool
    call receives through its `ToolContext`. The lifecycle manager resets that
    scope at call start via `clear_session()` / `clear_cart()` and records the
    current call with `set_active_session()`.
    """

    def __init__(
        self,
        *,
        config: Optional[Config] = None,
        carts: Optional[CartStore] = None,
        orders: Optional[OrderStore] = None,
        call_context: Optional[CallContextStore] = None,
        menu: Optional[MenuCatalog] = None,
        sms: Optional[SmsSender] = None,
    ):
        self.config = config or get_config()
        self.carts = carts or CartStore()
        self.orders = orders or OrderStore()
        self.call_context = call_context or CallContextStore()
        self._menu = menu
        self._sms = sms
        self.active_session_id: Optional[str] = None

    @property
    def menu(self) -> MenuCatalog:
        if self._menu is None:
            self._menu = get_menu_catalog(self.config.menu_data_path or None)
        return self._menu

    @property
    def sms(self) -> SmsSender:
        if self._sms is None:
            self._sms = SmsSender(self.config)
        return self._sms

    # ------------------------------------------------------------------
    # Per-call scope
    # ------------------------------------------------------------------

    def set_active_session(self, session_id: str) -> None:
        self.active_session_id = session_id
        logger.info("Active session set", session_id=session_id)

    def clear_session(self, session_id: str) -> None:
        self.call_context.clear_session(session_id)
        if self.active_session_id == session_id:
            self.active_session_id = None

    def clear_cart(self, session_id: str) -> None:
        self.carts.clear_cart(session_id)

    def link_call(self, session_id: str, call_sid: Optional[str]) -> None:
        """Relate the stream to its CallSid so SMS can fall back to the caller's number."""
        self.call_context.link_session(session_id, call_sid)

    def _session_id(self, context: ToolContext) -> str:
        return context.session_id or self.active_session_id or DEFAULT_SESSION_ID

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def build_registry(self, registry: Optional[ToolRegistry] = None) -> ToolRegistry:
        registry = registry or ToolRegistry()
        handlers = {
            "get_menu": self.get_menu,
            "get_menu_item": self.get_menu_item,
            "add_to_cart": self.add_to_cart,
            "get_cart": self.get_cart,
            "update_cart_item": self.update_cart_item,
            "remove_from_cart": self.remove_from_cart,
            "place_order": self.place_order,
            "get_order_status": self.get_order_status,
            "cancel_order": self.cancel_order,
        }
        for name, handler in handlers.items():
            registry.register(TOOL_SCHEMAS[name], handler)
        return registry

    # ------------------------------------------------------------------
    # Menu
    # ------------------------------------------------------------------

    async def get_menu(self, context: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        parsed = GetMenuArgs.model_validate(args)
        if parsed.category:
            items = self.menu.by_category(parsed.category)
            return {"category": parsed.category, "items": [item.to_summary() for item in items]}

        return {
            "categories": {
                section: [item.to_summary() for item in self.menu.sections.get(section, ())]
                for section in SECTIONS
            },
            "message": (
                "Menu overview with item names only. "
                "Use get_menu_item() for detailed information about specific items."
            ),
        }

    async def get_menu_item(self, context: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        parsed = ItemIdArgs.model_validate(args)
        item = self.menu.get_item(parsed.item_id)
        if item is None:
            result: Dict[str, Any] = {"error": "Menu item not found", "itemId": parsed.item_id}
            matches = find_menu_items(self.menu, parsed.item_id.replace("_", " "), limit=3)
            if matches:
                result["suggestions"] = [match.to_summary() for match in matches]
            return result
        return item.to_dict()

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    async def add_to_cart(self, context: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        parsed = AddToCartArgs.model_validate(args)
        session_id = self._session_id(context)
        cart = self.carts.get_or_create_cart(session_id)

        added: List[CartItem] = []
        errors: List[str] = []
        for request in parsed.items:
            menu_item = self.menu.get_item(request.item_id)
            if menu_item is None:
                errors.append(f"Menu item not found: {request.item_id}")
                continue

            size = (request.size or DEFAULT_SIZE) if menu_item.prices else None
            cart_item = CartItem(
                cart_item_id=self.carts.new_cart_item_id(),
                item_id=menu_item.item_id,
                name=menu_item.name,
                quantity=request.quantity,
                unit_price=menu_item.unit_price(size),
                size=size,
                toppings=list(request.toppings),
            )
            cart.items.append(cart_item)
            added.append(cart_item)

        self.carts.touch(cart)

        if len(added) == 1:
            first = added[0]
            size_note = f" ({first.size})" if first.size else ""
            message = f"Added {first.quantity} {first.name}{size_note} to cart"
        else:
            message = f"Added {len(added)} items to cart"

        result: Dict[str, Any] = {
            "success": bool(added),
            "addedItems": [item.to_dict() for item in added],
            "message": message,
            "cartTotal": cart.total,
            "cartItemCount": cart.item_count,
        }
        if errors:
            result["errors"] = errors
        logger.info("Cart updated", session_id=session_id, added=len(added), errors=len(errors))
        return result

    async def get_cart(self, context: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        cart = self.carts.get_cart(self._session_id(context))
        if cart is None or not cart.items:
            return {"empty": True, "message": "Your cart is empty", "items": [], "total": 0}
        return {
            "items": [item.to_dict() for item in cart.items],
            "total": cart.total,
            "itemCount": cart.item_count,
        }

    async def update_cart_item(self, context: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        parsed = UpdateCartItemArgs.model_validate(args)
        cart = self.carts.get_cart(self._session_id(context))
        if cart is None:
            return {"error": "Cart not found"}
        item = cart.find(parsed.cart_item_id)
        if item is None:
            return {"error": "Cart item not found"}

        if parsed.quantity <= 0:
            cart.items.remove(item)
            message = "Item removed from cart"
        else:
            item.quantity = parsed.quantity
            message = "Cart item updated"
        self.carts.touch(cart)
        return {"success": True, "message": message, "cartTotal": cart.total}

    async def remove_from_cart(self, context: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        parsed = CartItemIdArgs.model_validate(args)
        cart = self.carts.get_cart(self._session_id(context))
        if cart is None:
            return {"error": "Cart not found"}
        item = cart.find(parsed.cart_item_id)
        if item is None:
            return {"error": "Cart item not found"}

        cart.items.remove(item)
        self.carts.touch(cart)
        return {"success": True, "message": f"Removed {item.name} from cart", "cartTotal": cart.total}

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def place_order(self, context: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        parsed = PlaceOrderArgs.model_validate(args)
        session_id = self._session_id(context)
        cart = self.carts.get_cart(session_id)
        if cart is None or not cart.items:
            return {"error": "Cannot place order: cart is empty"}

        customer_info = parsed.customer_info.model_dump(exclude_none=True)
        order = self.orders.create_order(
            session_id=session_id,
            items=list(cart.items),
            customer_info=customer_info,
            payment_method=parsed.payment_method.model_dump(by_alias=True, exclude_none=True),
            total=cart.total,
            estimated_time=25 + random.randint(0, 14),
        )
        self.carts.clear_cart(session_id)
        logger.info("Order placed", session_id=session_id, order_id=order.order_id, total=order.total)

        body = build_order_confirmation_sms(
            order.items,
            order.total,
            order.order_id,
            estimated_time=order.estimated_time,
            customer_name=parsed.customer_info.name,
            config=self.config,
        )
        sms_to = parsed.customer_info.phone or self.call_context.caller_for_session(session_id)
        sms_sid: Optional[str] = None
        if sms_to:
            try:
                sms_sid = await self.sms.send(
                    sms_to,
                    body,
                    fallback_from=self.call_context.twilio_number_for_session(session_id),
                )
            except Exception:
                # The order stands even if the confirmation cannot be sent.
                logger.exception("Order confirmation SMS failed", order_id=order.order_id)

        result: Dict[str, Any] = {
            "success": True,
            "orderId": order.order_id,
            "message": "Order placed successfully!",
            "estimatedTime": order.estimated_time,
            "total": order.total,
            "orderDetails": {
                "items": [item.to_dict() for item in order.items],
                "customerInfo": order.customer_info,
                "status": order.status.value,
            },
            "smsSent": bool(sms_sid),
        }
        if sms_sid:
            result["smsSid"] = sms_sid
        if sms_to:
            result["smsTo"] = sms_to
        return result

    async def get_order_status(self, context: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        parsed = OrderIdArgs.model_validate(args)
        order = self.orders.get_order(parsed.order_id)
        if order is None:
            return {"error": "Order not found", "orderId": parsed.order_id}
        data = order.to_dict()
        return {
            key: data[key]
            for key in ("orderId", "status", "estimatedTime", "total", "items", "customerInfo", "createdAt")
        }

    async def cancel_order(self, context: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        parsed = OrderIdArgs.model_validate(args)
        order = self.orders.cancel_order(parsed.order_id)
        if order is None:
            return {
                "error": (
                    "Cannot cancel order. Order not found or cannot be cancelled "
                    "(already delivered/cancelled)"
                ),
                "orderId": parsed.order_id,
            }
        logger.info("Order cancelled", order_id=order.order_id)
        return {
            "success": True,
            "message": "Order cancelled successfully",
            "orderId": order.order_id,
            "status": order.status.value,
        }


def create_restaurant_tools(
    backend: Optional[RestaurantBackend] = None,
) -> tuple[RestaurantBackend, ToolRegistry]:
    backend = backend or RestaurantBackend()
    return backend, backend.build_registry()
