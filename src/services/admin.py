# admin-only product and order management, plus the dashboard numbers
from __future__ import annotations

import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from db.gateway import RemoteGateway
from db.models import DashboardStats, Order, OrderStatus, Product
from services.catalog import Catalog
from services.checkout import ORDER_ITEMS, CheckoutService
from services.session import SessionStore
from utils.config import Settings
from utils.errors import AdminRequired, RemoteError, ValidationError
from utils.logger import get_logger
from utils.pure import file_extension

_logger = get_logger(__name__)

PRODUCT_FIELDS = ("name", "price", "category", "description", "scent_notes", "image_url")


def _coerce_price(value: Any) -> float:
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid price: {value!r}") from None
    if price < 0:
        raise ValidationError("Price cannot be negative.")
    return price


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class AdminService:
    """
    Privileged operations. The admin role is checked again on every call, so
    a session that expires or loses the role mid-way is refused at once.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: RemoteGateway,
        session: SessionStore,
        catalog: Catalog,
        checkout: CheckoutService,
    ) -> None:
        self.settings = settings
        self._gateway = gateway
        self._session = session
        self._catalog = catalog
        self._checkout = checkout

    def ensure_admin(self) -> None:
        if not self._session.is_admin():
            raise AdminRequired()

    # ---------------------------
    # Products
    # ---------------------------

    async def get_all_products(self) -> Tuple[Product, ...]:
        self.ensure_admin()
        return await self._catalog.list_all()

    async def create_product(self, data: Mapping[str, Any]) -> Optional[Product]:
        self.ensure_admin()
        if not data.get("name") or data.get("price") in (None, "") or not data.get("category"):
            raise ValidationError("Missing required fields: name, price, category")
        payload = {
            "name": data["name"],
            "price": _coerce_price(data["price"]),
            "category": data["category"],
            "description": data.get("description") or "",
            "scent_notes": data.get("scent_notes") or "",
            "image_url": data.get("image_url") or "",
            "created_at": _timestamp(),
        }
        return await self._catalog.create(payload)

    async def update_product(self, product_id: Any, data: Mapping[str, Any]) -> Optional[Product]:
        """Apply only the fields that carry a value; blanks leave the stored value alone."""
        self.ensure_admin()
        payload: Dict[str, Any] = {}
        for name in PRODUCT_FIELDS:
            value = data.get(name)
            if value in (None, ""):
                continue
            payload[name] = _coerce_price(value) if name == "price" else value
        if not payload:
            raise ValidationError("Nothing to update.")
        payload["updated_at"] = _timestamp()
        return await self._catalog.update(product_id, payload)

    async def delete_product(self, product_id: Any) -> List[Dict[str, Any]]:
        self.ensure_admin()
        return await self._catalog.delete(product_id)

    async def upload_product_image(self, content: bytes, content_type: str, product_id: Any) -> str:
        """Store an image for a product and return its public URL."""
        self.ensure_admin()
        if not content or not (content_type or "").startswith("image/"):
            raise ValidationError("Please provide a valid image file")
        path = f"products/{product_id}-{int(time.time() * 1000)}.{file_extension(content_type)}"
        url = await self._gateway.upload(self.settings.image_bucket, path, content, content_type)
        _logger.info(f"Uploaded image for product {product_id} to {path}.")
        return url

    # ---------------------------
    # Orders
    # ---------------------------

    async def get_all_orders(self) -> List[Order]:
        self.ensure_admin()
        return await self._checkout.get_all_orders()

    async def get_order_details(self, order_id: Any) -> Optional[Dict[str, Any]]:
        """{"order": Order, "items": [OrderItem, ...]}, or None if the order is unknown."""
        self.ensure_admin()
        order = await self._checkout.get_order(order_id)
        if order is None:
            return None
        items = await self._checkout.get_order_items(order_id)
        return {"order": order, "items": items}

    async def update_order_status(self, order_id: Any, status: str) -> Order:
        self.ensure_admin()
        return await self._checkout.update_order_status(order_id, status)

    # ---------------------------
    # Reports
    # ---------------------------

    async def dashboard_stats(self) -> DashboardStats:
        """Recomputed from the full order and product lists on every call."""
        self.ensure_admin()
        orders = await self._checkout.get_all_orders()
        products = await self._catalog.list_all()

        by_status = Counter(o.status.value for o in orders)
        revenue = sum(o.total_amount for o in orders if o.status is OrderStatus.PAID)
        return DashboardStats(
            total_orders=len(orders),
            paid_orders=by_status[OrderStatus.PAID.value],
            pending_orders=by_status[OrderStatus.PENDING.value],
            total_revenue=revenue,
            total_products=len(products),
            orders_by_status={s.value: by_status[s.value] for s in OrderStatus},
        )

    async def top_products(
        self, k: int = 3, include_ties_at_k: bool = True
    ) -> List[Tuple[Any, int]]:
        """
        Products ranked by the number of distinct orders they appear in:
        [(product_id, order_count), ...]. With include_ties_at_k, every
        product tied with the k-th place is kept.
        """
        self.ensure_admin()
        if k < 1:
            return []
        try:
            rows = await self._gateway.read(ORDER_ITEMS, select="order_id,product_id")
        except RemoteError as e:
            _logger.error(f"Error fetching order items: {e}")
            return []

        orders_per_product: Dict[Any, set] = {}
        for row in rows:
            orders_per_product.setdefault(row.get("product_id"), set()).add(row.get("order_id"))
        ranked = sorted(
            ((pid, len(oids)) for pid, oids in orders_per_product.items()),
            key=lambda pair: (-pair[1], str(pair[0])),
        )
        if not ranked:
            return []
        if not include_ties_at_k:
            return ranked[:k]
        threshold = ranked[min(k, len(ranked)) - 1][1]
        return [pair for pair in ranked if pair[1] >= threshold]
