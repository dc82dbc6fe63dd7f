# the hosted payment popup seen from the storefront: what we hand it and what it calls back
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union


@dataclass(frozen=True)
class PaymentRequest:
    public_key: str
    email: str
    amount: int  # minor currency unit (kobo for NGN)
    currency: str
    reference: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_setup_options(self) -> Dict[str, Any]:
        """Mapping in the shape the provider's inline widget setup call takes."""
        options = {
            "key": self.public_key,
            "email": self.email,
            "amount": self.amount,
            "currency": self.currency,
            "ref": self.reference,
        }
        if self.metadata:
            options["metadata"] = dict(self.metadata)
        return options


@dataclass(frozen=True)
class PaymentResponse:
    """What the widget reports on success; reference is the one we issued unless the provider rewrote it."""

    reference: str
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


SuccessCallback = Callable[[PaymentResponse], Union[Awaitable[None], None]]
CloseCallback = Callable[[], None]


class PaymentWidget(Protocol):
    """
    A payment popup. open() shows it and returns; later exactly one of
    on_success or on_close is called.
    """

    def open(
        self,
        request: PaymentRequest,
        on_success: SuccessCallback,
        on_close: CloseCallback,
    ) -> None: ...
