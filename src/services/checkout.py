# order creation, payment and order status
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from db.gateway import RemoteGateway, eq
from db.models import Order, OrderItem, OrderStatus, can_transition
from services.cart import CartStore
from services.payment import PaymentRequest, PaymentResponse, PaymentWidget
from services.session import SessionStore
from utils.config import Settings
from utils.errors import (
    AdminRequired,
    AuthRequired,
    InvalidTransition,
    PaymentCancelled,
    PaymentVerificationFailed,
    RemoteError,
    ValidationError,
)
from utils.logger import get_logger
from utils.pure import generate_reference, to_minor_units

_logger = get_logger(__name__)

ORDERS = "orders"
ORDER_ITEMS = "order_items"

# moves the buyer's own session may make; everything else is an admin override
BUYER_TRANSITIONS = {
    (OrderStatus.PENDING, OrderStatus.PAID),
    (OrderStatus.PENDING, OrderStatus.FAILED),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_orders(rows: List[Dict[str, Any]]) -> List[Order]:
    """Parse order rows, skipping (and logging) rows the client cannot represent."""
    orders = []
    for row in rows:
        try:
            orders.append(Order.from_record(row))
        except (KeyError, TypeError, ValueError) as e:
            _logger.warning(f"Skipping unreadable order row {row.get('id')!r}: {e!r}")
    return orders


def parse_status(status: Union[str, OrderStatus]) -> OrderStatus:
    try:
        return OrderStatus(status)
    except ValueError:
        valid = ", ".join(s.value for s in OrderStatus)
        raise ValidationError(f"Invalid status. Must be one of: {valid}") from None


class CheckoutService:
    """
    Turns the cart into an order, collects payment through the widget and
    settles the order status from the server's verification answer.

    Order rows and their item rows are written one request at a time. If an
    item write fails the order header stays behind as a pending order with
    fewer items than the cart had; the error is raised and the partial order
    is left in current_order for the caller to reconcile.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: RemoteGateway,
        session: SessionStore,
        cart: CartStore,
        widget: Optional[PaymentWidget] = None,
    ) -> None:
        self.settings = settings
        self._gateway = gateway
        self._session = session
        self._cart = cart
        self.widget = widget
        self.current_order: Optional[Order] = None
        self._verifications: Set[asyncio.Task] = set()

    # ---------------------------
    # Orders
    # ---------------------------

    async def create_order(self, extra: Optional[Mapping[str, Any]] = None) -> Order:
        """
        Create a pending order for the signed-in user from the current cart,
        plus one order item per cart line carrying the line's unit price.
        """
        user = self._session.require_user()
        lines = self._cart.items()
        if not lines:
            raise ValidationError("Cart is empty")

        total = sum(line.unit_price * line.quantity for line in lines)
        payload: Dict[str, Any] = dict(extra or {})
        payload.update(
            user_id=user.id,
            total_amount=total,
            status=OrderStatus.PENDING.value,
            created_at=_now(),
        )
        rows = await self._gateway.create(ORDERS, payload)
        if not rows or rows[0].get("id") is None:
            raise RemoteError(200, "Failed to create order")
        order = Order.from_record(rows[0])
        self.current_order = order
        _logger.info(f"Created order {order.id} for user {user.id}, total {total:.2f}.")

        written = 0
        for line in lines:
            try:
                await self._gateway.create(
                    ORDER_ITEMS,
                    {
                        "order_id": order.id,
                        "product_id": line.product_id,
                        "quantity": line.quantity,
                        "price": line.unit_price,
                        "created_at": _now(),
                    },
                )
            except RemoteError:
                _logger.error(
                    f"Order {order.id} left pending with {written}/{len(lines)} items written."
                )
                raise
            written += 1
        return order

    async def get_order(self, order_id: Any) -> Optional[Order]:
        try:
            rows = await self._gateway.read(ORDERS, filters={"id": eq(order_id)}, limit=1)
            return Order.from_record(rows[0]) if rows else None
        except (RemoteError, KeyError, ValueError) as e:
            _logger.error(f"Error fetching order {order_id}: {e}")
            return None

    async def get_user_orders(self, user_id: Optional[str] = None) -> List[Order]:
        """Orders of user_id (default: the signed-in user), newest first."""
        if user_id is None:
            user_id = self._session.require_user().id
        try:
            rows = await self._gateway.read(
                ORDERS, filters={"user_id": eq(user_id)}, order="created_at.desc"
            )
            return _parse_orders(rows)
        except (RemoteError, KeyError, ValueError) as e:
            _logger.error(f"Error fetching orders of user {user_id}: {e}")
            return []

    async def get_order_items(self, order_id: Any) -> List[OrderItem]:
        try:
            rows = await self._gateway.read(ORDER_ITEMS, filters={"order_id": eq(order_id)})
            return [OrderItem.from_record(row) for row in rows]
        except (RemoteError, KeyError, ValueError) as e:
            _logger.error(f"Error fetching items of order {order_id}: {e}")
            return []

    async def get_all_orders(self) -> List[Order]:
        if not self._session.is_admin():
            raise AdminRequired()
        try:
            rows = await self._gateway.read(ORDERS, order="created_at.desc")
            return _parse_orders(rows)
        except (RemoteError, KeyError, ValueError) as e:
            _logger.error(f"Error fetching all orders: {e}")
            return []

    # ---------------------------
    # Status transitions
    # ---------------------------

    async def _transition(self, order_id: Any, target: OrderStatus) -> Order:
        rows = await self._gateway.read(ORDERS, filters={"id": eq(order_id)}, limit=1)
        if not rows:
            raise ValidationError(f"Order {order_id} not found.")
        current = Order.from_record(rows[0])

        if not can_transition(current.status, target):
            raise InvalidTransition(current.status.value, target.value)

        if (current.status, target) in BUYER_TRANSITIONS:
            user = self._session.require_user()
            if current.user_id != user.id and not self._session.is_admin():
                raise AdminRequired("Only the buyer or an admin can settle this order.")
        elif not self._session.is_admin():
            raise AdminRequired()

        updated = await self._gateway.update(
            ORDERS, {"status": target.value, "updated_at": _now()}, {"id": eq(order_id)}
        )
        order = Order.from_record(updated[0]) if updated else current
        _logger.info(f"Order {order_id}: {current.status.value} -> {target.value}.")
        if self.current_order is not None and self.current_order.id == order.id:
            self.current_order = order
        return order

    async def update_order_status(self, order_id: Any, status: Union[str, OrderStatus]) -> Order:
        """Admin override of an order's status, limited to the moves the state machine allows."""
        target = parse_status(status)
        if not self._session.is_admin():
            raise AdminRequired()
        return await self._transition(order_id, target)

    # ---------------------------
    # Payment
    # ---------------------------

    async def verify_payment(self, reference: str, order_id: Any) -> Dict[str, Any]:
        """
        Ask the server to verify a payment. Only {"success": true} confirms it;
        every other answer raises PaymentVerificationFailed.
        """
        result = await self._gateway.invoke(
            self.settings.verify_payment_function,
            {"reference": reference, "order_id": order_id},
        )
        if isinstance(result, dict) and result.get("success") is True:
            _logger.info(f"Payment {reference} for order {order_id} verified.")
            return result
        message = result.get("message") if isinstance(result, dict) else None
        _logger.warning(f"Payment {reference} for order {order_id} not confirmed: {message}")
        raise PaymentVerificationFailed(message or "Payment verification failed")

    async def initialize_payment(self, order_id: Any, email: str, amount: float) -> Dict[str, Any]:
        """
        Open the payment widget for amount and wait for it.

        Resolves with the verification result after the widget reports
        success and the server confirms it. Raises PaymentCancelled when the
        payer closes the widget, and whatever verify_payment raises otherwise.
        """
        if self.widget is None:
            raise ValidationError("No payment widget configured.")
        if not email:
            raise ValidationError("Payer email is required.")

        reference = generate_reference(self.settings.reference_prefix)
        request = PaymentRequest(
            public_key=self.settings.paystack_public_key,
            email=email,
            amount=to_minor_units(amount),
            currency=self.settings.currency,
            reference=reference,
            metadata={"order_id": order_id},
        )

        loop = asyncio.get_running_loop()
        outcome: asyncio.Future = loop.create_future()

        async def verify(response: PaymentResponse) -> None:
            try:
                result = await self.verify_payment(response.reference or reference, order_id)
            except Exception as e:
                if not outcome.done():
                    outcome.set_exception(e)
            else:
                if not outcome.done():
                    outcome.set_result(result)

        def on_success(response: PaymentResponse) -> asyncio.Task:
            task = loop.create_task(verify(response))
            self._verifications.add(task)
            task.add_done_callback(self._verifications.discard)
            return task

        def on_close() -> None:
            if not outcome.done():
                outcome.set_exception(PaymentCancelled())

        _logger.info(f"Opening payment {reference} for order {order_id}.")
        self.widget.open(request, on_success, on_close)
        return await outcome

    async def handle_payment_success(self, order_id: Any) -> Optional[Order]:
        """Mark a verified order paid, then empty the cart."""
        await self._transition(order_id, OrderStatus.PAID)
        await self._cart.clear()
        return await self.get_order(order_id)

    async def handle_payment_failure(self, order_id: Any) -> Optional[Order]:
        await self._transition(order_id, OrderStatus.FAILED)
        return await self.get_order(order_id)

    async def pay(self, order: Order, email: Optional[str] = None) -> Optional[Order]:
        """
        Collect payment for order and settle it.

        A closed widget leaves the order pending and re-raises
        PaymentCancelled. A rejected verification marks the order failed and
        re-raises. A remote error during verification leaves the order pending,
        since the money may already have moved.
        """
        if email is None:
            user = self._session.get_user()
            if user is None:
                raise AuthRequired()
            email = user.email
        try:
            await self.initialize_payment(order.id, email, order.total_amount)
        except PaymentCancelled:
            _logger.info(f"Payment for order {order.id} abandoned; order stays pending.")
            raise
        except PaymentVerificationFailed:
            await self.handle_payment_failure(order.id)
            raise
        return await self.handle_payment_success(order.id)
