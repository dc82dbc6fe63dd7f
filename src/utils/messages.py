from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:
    from db.models import CartLine, User


@dataclass(frozen=True)
class AuthStateChanged:
    """
    Emitted by the session store after sign in, sign up, refresh, sign out,
    or a reload triggered by another instance sharing the same profile.
    user is None once signed out.
    """

    user: Optional[User]
    is_admin: bool


@dataclass(frozen=True)
class CartUpdated:
    """
    Emitted after every cart mutation. items is the complete cart; listeners
    should replace their copy with it instead of patching.
    """

    items: Tuple[CartLine, ...]


@dataclass(frozen=True)
class StorageChanged:
    """
    A keyed record was changed by another LocalStorage instance bound to the
    same profile file. new_value is None when the record was removed.
    """

    key: str
    old_value: Optional[str]
    new_value: Optional[str]
