# composition root: builds the storefront components for one profile
from typing import Optional

from db.gateway import RemoteGateway
from db.storage import LocalStorage
from services.admin import AdminService
from services.cart import CartStore
from services.catalog import Catalog
from services.checkout import CheckoutService
from services.payment import PaymentWidget
from services.session import SessionStore
from utils.config import Settings
from utils.logger import get_logger

_logger = get_logger(__name__)


class Storefront:
    """
    Wires the storefront components for one profile ("tab").

    Nothing talks to storage or the network until init(); dispose() detaches
    every listener. Also usable as `async with Storefront(...) as shop:`.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        widget: Optional[PaymentWidget] = None,
        gateway: Optional[RemoteGateway] = None,
        storage: Optional[LocalStorage] = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.storage = storage or LocalStorage(self.settings.storage_path)
        self._owns_gateway = gateway is None
        self.gateway = gateway or RemoteGateway(self.settings)

        self.cart = CartStore(self.storage)
        self.session = SessionStore(self.settings, self.gateway, self.storage, self.cart)
        self.gateway.set_token_provider(self.session.access_token)

        self.catalog = Catalog(self.settings, self.gateway, self.session)
        self.checkout = CheckoutService(
            self.settings, self.gateway, self.session, self.cart, widget
        )
        self.admin = AdminService(
            self.settings, self.gateway, self.session, self.catalog, self.checkout
        )
        self._ready = False

    async def init(self) -> "Storefront":
        if not self._ready:
            await self.cart.init()
            await self.session.init()
            self._ready = True
            user = self.session.get_user()
            _logger.info(
                f"{self.settings.app_name} ready"
                + (f", signed in as {user.email}" if user else ", signed out")
                + f", {self.cart.count()} item(s) in cart."
            )
        return self

    async def dispose(self) -> None:
        self.session.dispose()
        self.cart.dispose()
        if self._owns_gateway:
            self.gateway.close()
        self._ready = False

    async def __aenter__(self) -> "Storefront":
        return await self.init()

    async def __aexit__(self, *exc) -> None:
        await self.dispose()
