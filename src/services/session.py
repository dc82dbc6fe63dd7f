# authentication session: sign in/up/out, refresh, persistence and role checks
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from db.gateway import RemoteGateway
from db.models import Session, User
from db.storage import LocalStorage
from services.cart import CartStore
from utils.config import Settings
from utils.errors import AuthRequired, RemoteError, StorageCorruption, ValidationError
from utils.events import EventEmitter, Unsubscribe
from utils.logger import get_logger
from utils.messages import AuthStateChanged, StorageChanged

_logger = get_logger(__name__)

SESSION_KEY = "auth_session"


def _decode_session(raw: str) -> Session:
    try:
        return Session.from_record(json.loads(raw))
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        raise StorageCorruption(SESSION_KEY, str(e)) from e


def _user_from_payload(data: Mapping[str, Any]) -> User:
    return User(
        id=str(data["id"]),
        email=str(data.get("email") or ""),
        user_metadata=dict(data.get("user_metadata") or {}),
    )


class SessionStore:
    """
    Holds the one active session of a profile.

    The persisted record is the source of truth: init() restores it, every
    successful sign in/up/refresh rewrites it, and a change made by another
    instance on the same profile reloads it. A record that fails to decode is
    discarded and the store behaves as signed out.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: RemoteGateway,
        storage: LocalStorage,
        cart: CartStore,
    ) -> None:
        self.settings = settings
        self._gateway = gateway
        self._storage = storage
        self._cart = cart
        self._session: Optional[Session] = None
        self._events: EventEmitter[AuthStateChanged] = EventEmitter()
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

    def subscribe(self, listener: Callable[[AuthStateChanged], Any]) -> Unsubscribe:
        return self._events.subscribe(listener)

    async def _load(self) -> None:
        raw = await self._storage.get_item(SESSION_KEY)
        if raw is None:
            self._session = None
            return
        try:
            self._session = _decode_session(raw)
        except StorageCorruption as e:
            _logger.error(f"{e}; discarding it.")
            self._session = None
            await self._storage.remove_item(SESSION_KEY)

    async def _on_storage_changed(self, message: StorageChanged) -> None:
        if message.key != SESSION_KEY:
            return
        before = self.get_user()
        await self._load()
        after = self.get_user()
        _logger.debug("Session record changed elsewhere; reloaded.")
        if before != after:
            await self._notify()

    async def _notify(self) -> None:
        await self._events.emit(AuthStateChanged(user=self.get_user(), is_admin=self.is_admin()))

    async def _save(self, session: Session) -> None:
        previous = self._session
        self._session = session
        if previous is not None and previous.user.id != session.user.id:
            # a different user took over the profile; the old cart goes with the old user
            await self._cart.clear()
        await self._storage.set_item(SESSION_KEY, json.dumps(session.to_record()))
        await self._notify()

    async def _clear(self) -> None:
        """Forget the session and the cart; checkout state never outlives a user."""
        self._session = None
        await self._storage.remove_item(SESSION_KEY)
        await self._cart.clear()
        await self._notify()

    # ---------------------------
    # Auth operations
    # ---------------------------

    async def sign_up(
        self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Register a user and create the matching profile row.

        When the backend signs the user in right away (no e-mail confirmation),
        the returned session is stored like a sign in. Returns
        {"user": User, "session": Session | None}.
        """
        if not email or not password:
            raise ValidationError("Email and password are required.")
        data = await self._gateway.auth(
            "signup", {"email": email, "password": password, "data": metadata or {}}
        )
        data = data or {}
        user_data = data.get("user") or data
        if "id" not in user_data:
            raise RemoteError(200, "Signup response did not include a user")
        user = _user_from_payload(user_data)

        session = None
        if data.get("access_token") and data.get("refresh_token"):
            session = Session(data["access_token"], data["refresh_token"], user)
            await self._save(session)

        await self._gateway.create(
            "users",
            {
                "id": user.id,
                "email": user.email,
                "created_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        _logger.info(f"Registered user {user.id}.")
        return {"user": user, "session": session}

    async def sign_in(self, email: str, password: str) -> Session:
        if not email or not password:
            raise ValidationError("Email and password are required.")
        data = await self._gateway.auth(
            "token", {"email": email, "password": password}, params={"grant_type": "password"}
        )
        try:
            session = Session(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                user=_user_from_payload(data["user"]),
            )
        except (KeyError, TypeError) as e:
            raise RemoteError(200, f"Malformed sign-in response: {e}") from e
        await self._save(session)
        _logger.info(f"Signed in user {session.user.id}.")
        return session

    async def sign_out(self) -> None:
        """
        End the session. The remote logout is best effort; local state is
        always cleared, including the cart.
        """
        token = self._session.access_token if self._session else None
        try:
            if token:
                await self._gateway.auth("logout", access_token=token)
        except RemoteError as e:
            _logger.warning(f"Remote logout failed: {e}")
        finally:
            await self._clear()
        _logger.info("Signed out.")

    async def refresh(self) -> Session:
        """Exchange the refresh token for new tokens. Any failure signs the user out."""
        if self._session is None or not self._session.refresh_token:
            raise AuthRequired("No refresh token available")
        try:
            data = await self._gateway.auth(
                "token",
                {"refresh_token": self._session.refresh_token},
                params={"grant_type": "refresh_token"},
            )
            access_token = data["access_token"]
        except (RemoteError, KeyError, TypeError) as e:
            _logger.error(f"Token refresh failed: {e}")
            await self._clear()
            raise AuthRequired("Token refresh failed") from e

        user = self._session.user
        if isinstance(data.get("user"), dict) and "id" in data["user"]:
            user = _user_from_payload(data["user"])
        session = Session(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or self._session.refresh_token,
            user=user,
        )
        await self._save(session)
        return session

    # ---------------------------
    # Queries
    # ---------------------------

    def get_current_session(self) -> Optional[Session]:
        return self._session

    def get_user(self) -> Optional[User]:
        return self._session.user if self._session else None

    def access_token(self) -> Optional[str]:
        return self._session.access_token if self.is_authenticated() else None

    def is_authenticated(self) -> bool:
        return self._session is not None and self._session.authenticated

    def is_admin(self) -> bool:
        """Only the role stored in user metadata counts; the e-mail is never inspected."""
        if not self.is_authenticated():
            return False
        return self._session.user.role == self.settings.admin_role

    def require_user(self) -> User:
        if not self.is_authenticated():
            raise AuthRequired()
        return self._session.user
