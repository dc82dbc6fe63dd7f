# product catalog: cached reads, admin writes
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from db.gateway import RemoteGateway, eq
from db.models import Product
from services.session import SessionStore
from utils.config import Settings
from utils.errors import AdminRequired, RemoteError, ValidationError
from utils.logger import get_logger

_logger = get_logger(__name__)

PRODUCTS = "products"


class QueryKind(Enum):
    ALL = "all"
    CATEGORY = "category"
    PRODUCT = "product"


@dataclass(frozen=True)
class CacheKey:
    kind: QueryKind
    value: Any = None

    @classmethod
    def all(cls) -> CacheKey:
        return cls(QueryKind.ALL)

    @classmethod
    def category(cls, name: str) -> CacheKey:
        return cls(QueryKind.CATEGORY, name)

    @classmethod
    def product(cls, product_id: Any) -> CacheKey:
        return cls(QueryKind.PRODUCT, str(product_id))


CachedValue = Union[Tuple[Product, ...], Product]


class Catalog:
    """
    Read-through cache over the remote products resource.

    Reads are cached per query shape (all, one category, one product) with no
    expiry. Writes drop the cache entries they could have made stale:

      - create: the "all" list and every category list
      - update / delete: the product's own entry, the "all" list and every
        category list

    search() and featured() never hit the network on their own; they filter
    the "all" list, loading it first if needed.

    Display reads log remote failures and return an empty result, so an empty
    list can mean either "no products" or "fetch failed".
    """

    def __init__(
        self,
        settings: Settings,
        gateway: RemoteGateway,
        session: Optional[SessionStore] = None,
    ) -> None:
        self.settings = settings
        self._gateway = gateway
        self._session = session
        self._cache: Dict[CacheKey, CachedValue] = {}

    def categories(self) -> Tuple[str, ...]:
        return tuple(self.settings.categories)

    def clear_cache(self) -> None:
        self._cache.clear()

    def cached(self, key: CacheKey) -> Optional[CachedValue]:
        return self._cache.get(key)

    # ---------------------------
    # Reads
    # ---------------------------

    async def _read_list(self, key: CacheKey, filters: Optional[Mapping[str, str]]) -> Tuple[Product, ...]:
        hit = self._cache.get(key)
        if hit is not None:
            _logger.debug(f"Cache hit for {key.kind.value}:{key.value}")
            return hit
        try:
            rows = await self._gateway.read(PRODUCTS, filters=filters, order="name.asc")
            products = tuple(Product.from_record(row) for row in rows)
        except (RemoteError, KeyError, TypeError, ValueError) as e:
            _logger.error(f"Error fetching products ({key.kind.value}:{key.value}): {e}")
            return ()
        self._cache[key] = products
        return products

    async def list_all(self) -> Tuple[Product, ...]:
        return await self._read_list(CacheKey.all(), None)

    async def list_by_category(self, category: str) -> Tuple[Product, ...]:
        return await self._read_list(CacheKey.category(category), {"category": eq(category)})

    async def get_by_id(self, product_id: Any) -> Optional[Product]:
        key = CacheKey.product(product_id)
        hit = self._cache.get(key)
        if hit is not None:
            _logger.debug(f"Cache hit for product:{product_id}")
            return hit
        try:
            rows = await self._gateway.read(PRODUCTS, filters={"id": eq(product_id)}, limit=1)
            product = Product.from_record(rows[0]) if rows else None
        except (RemoteError, KeyError, TypeError, ValueError) as e:
            _logger.error(f"Error fetching product {product_id}: {e}")
            return None
        if product is not None:
            self._cache[key] = product
        return product

    async def search(self, query: str) -> Tuple[Product, ...]:
        """Case-insensitive substring match over name and description of the loaded catalog."""
        needle = (query or "").strip().lower()
        products = await self.list_all()
        if not needle:
            return products
        return tuple(
            p
            for p in products
            if needle in p.name.lower() or needle in (p.description or "").lower()
        )

    async def featured(self, limit: int = 6) -> Tuple[Product, ...]:
        products = await self.list_all()
        return products[: max(limit, 0)]

    # ---------------------------
    # Writes (admin only)
    # ---------------------------

    def _require_admin(self) -> None:
        if self._session is None or not self._session.is_admin():
            raise AdminRequired()

    def _invalidate(self, product_id: Any = None) -> None:
        if product_id is not None:
            self._cache.pop(CacheKey.product(product_id), None)
        for key in [k for k in self._cache if k.kind is not QueryKind.PRODUCT]:
            del self._cache[key]

    async def create(self, record: Mapping[str, Any]) -> Optional[Product]:
        self._require_admin()
        rows = await self._gateway.create(PRODUCTS, record)
        self._invalidate()
        _logger.info(f"Created product {rows[0].get('id') if rows else '?'}.")
        return Product.from_record(rows[0]) if rows else None

    async def update(self, product_id: Any, patch: Mapping[str, Any]) -> Optional[Product]:
        self._require_admin()
        if not patch:
            raise ValidationError("Nothing to update.")
        rows = await self._gateway.update(PRODUCTS, patch, {"id": eq(product_id)})
        self._invalidate(product_id)
        _logger.info(f"Updated product {product_id}.")
        return Product.from_record(rows[0]) if rows else None

    async def delete(self, product_id: Any) -> List[Dict[str, Any]]:
        self._require_admin()
        rows = await self._gateway.delete(PRODUCTS, {"id": eq(product_id)})
        self._invalidate(product_id)
        _logger.info(f"Deleted product {product_id}.")
        return rows
