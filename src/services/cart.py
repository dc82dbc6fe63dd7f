# client-side shopping cart persisted in the profile store
from __future__ import annotations

import dataclasses
import json
from typing import Any, Callable, List, Optional, Tuple, Union

from db.models import CartLine, Product
from db.storage import LocalStorage
from utils.errors import StorageCorruption, ValidationError
from utils.events import EventEmitter, Unsubscribe
from utils.logger import get_logger
from utils.messages import CartUpdated, StorageChanged

_logger = get_logger(__name__)

CART_KEY = "cart"


def _decode_cart(raw: str) -> List[CartLine]:
    try:
        records = json.loads(raw)
        if not isinstance(records, list):
            raise TypeError("cart must be a list")
        lines = [CartLine.from_record(rec) for rec in records]
    except (ValueError, TypeError, KeyError) as e:
        raise StorageCorruption(CART_KEY, str(e)) from e

    # older or hand-edited records may repeat a product; fold them together
    merged: List[CartLine] = []
    for line in lines:
        idx = next((i for i, m in enumerate(merged) if m.product_id == line.product_id), None)
        if idx is None:
            merged.append(line)
        else:
            merged[idx] = dataclasses.replace(
                merged[idx], quantity=merged[idx].quantity + line.quantity
            )
    return merged


class CartStore:
    """
    Ordered cart lines, at most one per product, saved as a single record.

    Every mutation saves the whole cart and then emits CartUpdated with the
    full item list. Reads (items, count, total, has) are answered from memory.
    """

    def __init__(self, storage: LocalStorage) -> None:
        self._storage = storage
        self._lines: List[CartLine] = []
        self._events: EventEmitter[CartUpdated] = EventEmitter()
        self._unsubscribe_storage: Optional[Unsubscribe] = None

    # ---------------------------
    # Lifecycle
    # ---------------------------

    async def init(self) -> None:
        await self._load()
        if self._unsubscribe_storage is None:
            self._unsubscribe_storage = self._storage.subscribe(self._on_storage_changed)

    def dispose(self) -> None:
        if self._unsubscribe_storage is not None:
            self._unsubscribe_storage()
            self._unsubscribe_storage = None
        self._events.clear()

    def subscribe(self, listener: Callable[[CartUpdated], Any]) -> Unsubscribe:
        return self._events.subscribe(listener)

    async def _load(self) -> None:
        raw = await self._storage.get_item(CART_KEY)
        if raw is None:
            self._lines = []
            return
        try:
            self._lines = _decode_cart(raw)
        except StorageCorruption as e:
            _logger.error(f"{e}; starting with an empty cart.")
            self._lines = []
            await self._storage.remove_item(CART_KEY)

    async def _on_storage_changed(self, message: StorageChanged) -> None:
        if message.key != CART_KEY:
            return
        await self._load()
        await self._events.emit(CartUpdated(self.items()))

    async def _save(self) -> None:
        raw = json.dumps([line.to_record() for line in self._lines])
        await self._storage.set_item(CART_KEY, raw)
        await self._events.emit(CartUpdated(self.items()))

    def _index(self, product_id: Any) -> Optional[int]:
        for i, line in enumerate(self._lines):
            if line.product_id == product_id:
                return i
        return None

    # ---------------------------
    # Mutations
    # ---------------------------

    async def add(self, product: Union[Product, CartLine], quantity: int = 1) -> Tuple[CartLine, ...]:
        """
        Add quantity of product. An existing line for the same product grows
        by quantity instead of a second line being added.
        """
        product_id = getattr(product, "id", None)
        if product_id is None:
            product_id = getattr(product, "product_id", None)
        if product_id is None:
            raise ValidationError("Invalid product")
        if quantity < 1:
            raise ValidationError("Quantity to add must be at least 1.")

        idx = self._index(product_id)
        if idx is not None:
            line = self._lines[idx]
            self._lines[idx] = dataclasses.replace(line, quantity=line.quantity + quantity)
        elif isinstance(product, CartLine):
            self._lines.append(dataclasses.replace(product, quantity=quantity))
        else:
            self._lines.append(
                CartLine(
                    product_id=product.id,
                    name=product.name,
                    unit_price=float(product.price),
                    image_url=product.image_url,
                    quantity=quantity,
                )
            )
        await self._save()
        return self.items()

    async def remove(self, product_id: Any) -> Tuple[CartLine, ...]:
        self._lines = [line for line in self._lines if line.product_id != product_id]
        await self._save()
        return self.items()

    async def set_quantity(self, product_id: Any, quantity: int) -> Tuple[CartLine, ...]:
        """Set a line's quantity; zero or less removes the line. Unknown products are ignored."""
        if quantity <= 0:
            return await self.remove(product_id)
        idx = self._index(product_id)
        if idx is None:
            return self.items()
        self._lines[idx] = dataclasses.replace(self._lines[idx], quantity=int(quantity))
        await self._save()
        return self.items()

    async def clear(self) -> Tuple[CartLine, ...]:
        self._lines = []
        await self._save()
        return self.items()

    # ---------------------------
    # Reads
    # ---------------------------

    def items(self) -> Tuple[CartLine, ...]:
        return tuple(self._lines)

    def get_line(self, product_id: Any) -> Optional[CartLine]:
        idx = self._index(product_id)
        return self._lines[idx] if idx is not None else None

    def has(self, product_id: Any) -> bool:
        return self._index(product_id) is not None

    def count(self) -> int:
        return sum(line.quantity for line in self._lines)

    def total(self) -> float:
        return sum(line.unit_price * line.quantity for line in self._lines)

    def is_empty(self) -> bool:
        return not self._lines
