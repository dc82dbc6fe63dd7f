# provide dataclass models

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class User:
    id: str
    email: str
    user_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def role(self) -> Optional[str]:
        return self.user_metadata.get("role")

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "user_metadata": dict(self.user_metadata),
        }


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str
    user: User

    @property
    def authenticated(self) -> bool:
        return bool(self.access_token and self.refresh_token)

    def to_record(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "user": self.user.to_record(),
        }

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> Session:
        """Raises KeyError/TypeError on a malformed record."""
        user = rec["user"]
        metadata = user.get("user_metadata") or {}
        if not isinstance(metadata, dict):
            raise TypeError("user_metadata must be an object")
        return cls(
            access_token=str(rec["access_token"]),
            refresh_token=str(rec["refresh_token"]),
            user=User(id=str(user["id"]), email=str(user["email"]), user_metadata=metadata),
        )


@dataclass(frozen=True)
class Product:
    id: Any
    name: str
    price: float
    category: str
    description: str = ""
    scent_notes: str = ""
    image_url: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> Product:
        return cls(
            id=rec["id"],
            name=rec.get("name") or "",
            price=float(rec.get("price") or 0.0),
            category=rec.get("category") or "",
            description=rec.get("description") or "",
            scent_notes=rec.get("scent_notes") or "",
            image_url=rec.get("image_url") or "",
            created_at=rec.get("created_at"),
            updated_at=rec.get("updated_at"),
        )


@dataclass(frozen=True)
class CartLine:
    product_id: Any
    name: str
    unit_price: float  # price copied when the product was added
    image_url: str
    quantity: int

    @property
    def subtotal(self) -> float:
        return self.unit_price * self.quantity

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.product_id,
            "name": self.name,
            "price": self.unit_price,
            "image_url": self.image_url,
            "quantity": self.quantity,
        }

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> CartLine:
        quantity = int(rec["quantity"])
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        return cls(
            product_id=rec["id"],
            name=rec.get("name") or "",
            unit_price=float(rec["price"]),
            image_url=rec.get("image_url") or "",
            quantity=quantity,
        )


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# allowed moves; anything not listed is rejected. Nothing leads back to pending.
ORDER_TRANSITIONS: Dict[OrderStatus, Tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED),
    OrderStatus.PAID: (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    OrderStatus.PROCESSING: (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    OrderStatus.DELIVERED: (OrderStatus.CANCELLED,),
    OrderStatus.FAILED: (OrderStatus.CANCELLED,),
    OrderStatus.CANCELLED: (),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


@dataclass(frozen=True)
class Order:
    id: Any
    user_id: str
    total_amount: float
    status: OrderStatus
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> Order:
        known = {"id", "user_id", "total_amount", "status", "created_at", "updated_at"}
        return cls(
            id=rec["id"],
            user_id=str(rec.get("user_id") or ""),
            total_amount=float(rec.get("total_amount") or 0.0),
            status=OrderStatus(rec.get("status") or OrderStatus.PENDING.value),
            created_at=rec.get("created_at"),
            updated_at=rec.get("updated_at"),
            extra={k: v for k, v in rec.items() if k not in known},
        )


@dataclass(frozen=True)
class OrderItem:
    order_id: Any
    product_id: Any
    quantity: int
    price: float  # unit price at time of order
    id: Any = None

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> OrderItem:
        return cls(
            order_id=rec["order_id"],
            product_id=rec["product_id"],
            quantity=int(rec["quantity"]),
            price=float(rec["price"]),
            id=rec.get("id"),
        )


@dataclass(frozen=True)
class DashboardStats:
    total_orders: int = 0
    paid_orders: int = 0
    pending_orders: int = 0
    total_revenue: float = 0.0
    total_products: int = 0
    orders_by_status: Dict[str, int] = field(default_factory=dict)
