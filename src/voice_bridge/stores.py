"""
In-memory cart and order storage, keyed by the call's stream id.

Nothing here is persisted; state lives for the lifetime of the process.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return uuid.uuid4().hex[:12]


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


_FINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


@dataclass
class CartItem:
    cart_item_id: str
    item_id: str
    name: str
    quantity: int
    unit_price: float
    size: Optional[str] = None
    toppings: List[str] = field(default_factory=list)

    @property
    def price(self) -> float:
        return round(self.unit_price * self.quantity, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cartItemId": self.cart_item_id,
            "itemId": self.item_id,
            "name": self.name,
            "quantity": self.quantity,
            "size": self.size,
            "toppings": list(self.toppings),
            "unitPrice": self.unit_price,
            "price": self.price,
        }


@dataclass
class Cart:
    session_id: str
    items: List[CartItem] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def total(self) -> float:
        return round(sum(item.price for item in self.items), 2)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find(self, cart_item_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.cart_item_id == cart_item_id:
                return item
        return None


@dataclass
class Order:
    order_id: str
    session_id: str
    items: List[CartItem]
    customer_info: Dict[str, Any]
    payment_method: Dict[str, Any]
    total: float
    status: OrderStatus = OrderStatus.CONFIRMED
    estimated_time: Optional[int] = None  # minutes
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "sessionId": self.session_id,
            "items": [item.to_dict() for item in self.items],
            "customerInfo": dict(self.customer_info),
            "paymentMethod": dict(self.payment_method),
            "total": self.total,
            "status": self.status.value,
            "estimatedTime": self.estimated_time,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class CartStore:
    def __init__(self) -> None:
        self._carts: Dict[str, Cart] = {}

    def get_cart(self, session_id: str) -> Optional[Cart]:
        return self._carts.get(session_id)

    def get_or_create_cart(self, session_id: str) -> Cart:
        cart = self._carts.get(session_id)
        if cart is None:
            cart = Cart(session_id=session_id)
            self._carts[session_id] = cart
        return cart

    def touch(self, cart: Cart) -> None:
        cart.updated_at = _now()
        self._carts[cart.session_id] = cart

    def clear_cart(self, session_id: str) -> None:
        self._carts.pop(session_id, None)

    def new_cart_item_id(self) -> str:
        return generate_id()


class OrderStore:
    def __init__(self) -> None:
        self._orders: Dict[str, Order] = {}

    def create_order(
        self,
        *,
        session_id: str,
        items: List[CartItem],
        customer_info: Dict[str, Any],
        payment_method: Dict[str, Any],
        total: float,
        estimated_time: Optional[int] = None,
        status: OrderStatus = OrderStatus.CONFIRMED,
    ) -> Order:
        order = Order(
            order_id=generate_id(),
            session_id=session_id,
            items=[CartItem(**asdict(item)) for item in items],
            customer_info=customer_info,
            payment_method=payment_method,
            total=total,
            status=status,
            estimated_time=estimated_time,
        )
        self._orders[order.order_id] = order
        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def update_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        order = self._orders.get(order_id)
        if order is None:
            return None
        order.status = status
        order.updated_at = _now()
        return order

    def orders_for_session(self, session_id: str) -> List[Order]:
        return [order for order in self._orders.values() if order.session_id == session_id]

    def cancel_order(self, order_id: str) -> Optional[Order]:
        """Cancel an order; returns None if missing or already delivered/cancelled."""
        order = self._orders.get(order_id)
        if order is None or order.status in _FINAL_STATUSES:
            return None
        return self.update_status(order_id, OrderStatus.CANCELLED)
