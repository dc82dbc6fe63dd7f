import asyncio

from db.models import OrderStatus, Product
from fakes import AutoWidget, FakeWidget, ProfileTestCase
from utils.errors import (
    AdminRequired,
    AuthRequired,
    InvalidTransition,
    PaymentCancelled,
    PaymentVerificationFailed,
    RemoteError,
    ValidationError,
)

PERFUME_A = Product(id=1, name="Oud Royale", price=1000.0, category="Men")
PERFUME_B = Product(id=2, name="Rose Noir", price=500.0, category="Women")


class CheckoutTestCase(ProfileTestCase):
    async def asyncSetUp(self):
        self.widget = FakeWidget()
        self.shop = await self.open_shop(widget=self.widget)
        self.checkout = self.shop.checkout

    async def fill_cart(self):
        await self.shop.cart.add(PERFUME_A, 2)
        await self.shop.cart.add(PERFUME_B, 1)

    # ---------- create_order ----------

    async def test_empty_cart_is_rejected_without_remote_calls(self):
        await self.sign_in(self.shop)
        calls = list(self.gateway.calls)
        with self.assertRaises(ValidationError):
            await self.checkout.create_order()
        self.assertEqual(self.gateway.calls, calls)

    async def test_requires_authentication(self):
        await self.fill_cart()
        with self.assertRaises(AuthRequired):
            await self.checkout.create_order()
        self.assertEqual(self.gateway.calls, [])

    async def test_creates_pending_order_with_price_copies(self):
        await self.sign_in(self.shop)
        await self.fill_cart()
        order = await self.checkout.create_order({"shipping_address": "12 Allen Ave, Ikeja"})

        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.total_amount, 2500.0)
        self.assertEqual(order.user_id, "u-1")
        self.assertEqual(order.extra["shipping_address"], "12 Allen Ave, Ikeja")
        self.assertIs(self.checkout.current_order, order)

        items = await self.checkout.get_order_items(order.id)
        self.assertEqual(sorted((i.product_id, i.quantity, i.price) for i in items), [(1, 2, 1000.0), (2, 1, 500.0)])
        # creating an order does not empty the cart
        self.assertEqual(self.shop.cart.count(), 3)

    async def test_extra_fields_cannot_override_core_fields(self):
        await self.sign_in(self.shop)
        await self.fill_cart()
        order = await self.checkout.create_order({"status": "paid", "total_amount": 1, "user_id": "x"})
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.total_amount, 2500.0)
        self.assertEqual(order.user_id, "u-1")

    async def test_item_prices_do_not_follow_catalog_changes(self):
        await self.sign_in(self.shop)
        await self.fill_cart()
        order = await self.checkout.create_order()
        self.gateway.tables.setdefault("products", []).append({"id": 1, "name": "Oud Royale", "price": 9999, "category": "Men"})
        items = await self.checkout.get_order_items(order.id)
        self.assertIn(1000.0, [i.price for i in items])

    async def test_item_failure_leaves_partial_pending_order(self):
        await self.sign_in(self.shop)
        await self.fill_cart()

        original_create = self.gateway.create
        created_items = []

        async def flaky_create(resource, record):
            if resource == "order_items" and created_items:
                raise RemoteError(500, "insert failed")
            result = await original_create(resource, record)
            if resource == "order_items":
                created_items.append(record)
            return result

        self.gateway.create = flaky_create
        with self.assertRaises(RemoteError):
            await self.checkout.create_order()

        order = self.checkout.current_order
        self.assertIsNotNone(order)
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(len(await self.checkout.get_order_items(order.id)), 1)
        self.assertEqual(self.shop.cart.count(), 3)

    async def test_header_failure_propagates(self):
        await self.sign_in(self.shop)
        await self.fill_cart()
        self.gateway.fail_on[("create", "orders")] = RemoteError(401, "JWT expired")
        with self.assertRaises(RemoteError):
            await self.checkout.create_order()
        self.assertNotIn("order_items", self.gateway.tables)

    # ---------- verify_payment ----------

    async def test_verify_confirms_only_literal_true(self):
        fn = self.settings.verify_payment_function
        self.gateway.function_results[fn] = {"success": True, "message": "ok"}
        result = await self.checkout.verify_payment("SBM-1", 7)
        self.assertTrue(result["success"])

        for answer in (
            {"message": "Transaction reference not found"},
            {"success": "true"},
            {"success": 1},
            {"success": False, "message": "declined"},
            [],
            None,
        ):
            self.gateway.function_results[fn] = answer
            with self.subTest(answer=answer), self.assertRaises(PaymentVerificationFailed):
                await self.checkout.verify_payment("SBM-1", 7)

    async def test_verify_reports_server_message(self):
        self.gateway.function_results[self.settings.verify_payment_function] = {"message": "declined"}
        with self.assertRaises(PaymentVerificationFailed) as ctx:
            await self.checkout.verify_payment("SBM-1", 7)
        self.assertIn("declined", str(ctx.exception))

    async def test_verify_remote_error_propagates(self):
        self.gateway.fail_on[("invoke", self.settings.verify_payment_function)] = RemoteError(502, "bad gateway")
        with self.assertRaises(RemoteError):
            await self.checkout.verify_payment("SBM-1", 7)

    # ---------- initialize_payment ----------

    async def test_widget_gets_minor_units_and_unique_reference(self):
        seen = []
        self.gateway.function_results[self.settings.verify_payment_function] = lambda p: seen.append(p) or {"success": True}

        pending = asyncio.ensure_future(self.checkout.initialize_payment(7, "ada@example.com", 2500.5))
        await asyncio.sleep(0)
        request = self.widget.requests[-1]
        self.assertEqual(request.amount, 250050)
        self.assertEqual(request.currency, "NGN")
        self.assertEqual(request.public_key, "pk_test_123")
        self.assertTrue(request.reference.startswith("SBM-"))
        options = request.to_setup_options()
        self.assertEqual(options["ref"], request.reference)
        self.assertEqual(options["amount"], 250050)

        await self.widget.succeed()
        result = await pending
        self.assertTrue(result["success"])
        self.assertEqual(seen, [{"reference": request.reference, "order_id": 7}])

        second = asyncio.ensure_future(self.checkout.initialize_payment(7, "ada@example.com", 10))
        await asyncio.sleep(0)
        self.assertNotEqual(self.widget.requests[-1].reference, request.reference)
        self.widget.close()
        with self.assertRaises(PaymentCancelled):
            await second

    async def test_close_is_distinct_from_failure(self):
        pending = asyncio.ensure_future(self.checkout.initialize_payment(7, "ada@example.com", 10))
        await asyncio.sleep(0)
        self.widget.close()
        with self.assertRaises(PaymentCancelled):
            await pending
        self.assertEqual(self.gateway.count("invoke", self.settings.verify_payment_function), 0)

    async def test_unverified_success_callback_rejects(self):
        self.gateway.function_results[self.settings.verify_payment_function] = {"success": False}
        pending = asyncio.ensure_future(self.checkout.initialize_payment(7, "ada@example.com", 10))
        await asyncio.sleep(0)
        await self.widget.succeed()
        with self.assertRaises(PaymentVerificationFailed):
            await pending

    async def test_needs_widget_and_email(self):
        self.checkout.widget = None
        with self.assertRaises(ValidationError):
            await self.checkout.initialize_payment(7, "ada@example.com", 10)
        self.checkout.widget = self.widget
        with self.assertRaises(ValidationError):
            await self.checkout.initialize_payment(7, "", 10)

    # ---------- settling ----------

    async def test_payment_success_marks_paid_and_clears_cart(self):
        await self.sign_in(self.shop)
        await self.fill_cart()
        order = await self.checkout.create_order()

        paid = await self.checkout.handle_payment_success(order.id)
        self.assertEqual(paid.status, OrderStatus.PAID)
        self.assertTrue(self.shop.cart.is_empty())
        self.assertEqual(self.checkout.current_order.status, OrderStatus.PAID)

    async def test_pay_end_to_end(self):
        self.shop.checkout.widget = AutoWidget("success")
        self.gateway.function_results[self.settings.verify_payment_function] = {"success": True}
        await self.sign_in(self.shop)
        await self.fill_cart()
        order = await self.checkout.create_order()

        paid = await self.checkout.pay(order)
        self.assertEqual(paid.status, OrderStatus.PAID)
        self.assertTrue(self.shop.cart.is_empty())
        self.assertEqual(self.checkout.widget.requests[0].email, "ada@example.com")
        self.assertEqual(self.checkout.widget.requests[0].amount, 250000)

    async def test_pay_closed_keeps_order_pending_and_cart(self):
        self.shop.checkout.widget = AutoWidget("close")
        await self.sign_in(self.shop)
        await self.fill_cart()
        order = await self.checkout.create_order()

        with self.assertRaises(PaymentCancelled):
            await self.checkout.pay(order)
        self.assertEqual((await self.checkout.get_order(order.id)).status, OrderStatus.PENDING)
        self.assertEqual(self.shop.cart.count(), 3)

    async def test_pay_declined_marks_failed_and_keeps_cart(self):
        self.shop.checkout.widget = AutoWidget("success")
        self.gateway.function_results[self.settings.verify_payment_function] = {"message": "declined"}
        await self.sign_in(self.shop)
        await self.fill_cart()
        order = await self.checkout.create_order()

        with self.assertRaises(PaymentVerificationFailed):
            await self.checkout.pay(order)
        self.assertEqual((await self.checkout.get_order(order.id)).status, OrderStatus.FAILED)
        self.assertEqual(self.shop.cart.count(), 3)

    async def test_pay_verification_outage_leaves_pending(self):
        self.shop.checkout.widget = AutoWidget("success")
        self.gateway.fail_on[("invoke", self.settings.verify_payment_function)] = RemoteError(0, "timeout")
        await self.sign_in(self.shop)
        await self.fill_cart()
        order = await self.checkout.create_order()

        with self.assertRaises(RemoteError):
            await self.checkout.pay(order)
        self.assertEqual((await self.checkout.get_order(order.id)).status, OrderStatus.PENDING)

    # ---------- status changes ----------

    async def test_state_machine(self):
        await self.sign_in(self.shop)
        await self.fill_cart()
        order = await self.checkout.create_order()

        with self.assertRaises(AdminRequired):
            await self.checkout.update_order_status(order.id, "cancelled")

        await self.checkout.handle_payment_success(order.id)
        with self.assertRaises(InvalidTransition):
            await self.checkout.handle_payment_failure(order.id)

        await self.sign_in(self.shop, role="admin", user_id="u-admin", email="ops@example.com")
        for status in ("processing", "shipped", "delivered"):
            updated = await self.checkout.update_order_status(order.id, status)
            self.assertEqual(updated.status.value, status)

        with self.assertRaises(InvalidTransition):
            await self.checkout.update_order_status(order.id, "pending")
        cancelled = await self.checkout.update_order_status(order.id, OrderStatus.CANCELLED)
        self.assertEqual(cancelled.status, OrderStatus.CANCELLED)
        with self.assertRaises(InvalidTransition):
            await self.checkout.update_order_status(order.id, "cancelled")

    async def test_invalid_status_value(self):
        await self.sign_in(self.shop, role="admin")
        with self.assertRaises(ValidationError):
            await self.checkout.update_order_status(1, "refunded")

    async def test_unknown_order(self):
        await self.sign_in(self.shop, role="admin")
        with self.assertRaises(ValidationError):
            await self.checkout.update_order_status(404, "cancelled")

    async def test_only_buyer_settles_own_order(self):
        await self.sign_in(self.shop)
        await self.fill_cart()
        order = await self.checkout.create_order()
        await self.sign_in(self.shop, user_id="u-2", email="eve@example.com")
        with self.assertRaises(AdminRequired):
            await self.checkout.handle_payment_success(order.id)

    # ---------- reads ----------

    async def test_order_reads(self):
        await self.sign_in(self.shop)
        self.gateway.seed(
            "orders",
            {"id": 1, "user_id": "u-1", "total_amount": 10, "status": "paid", "created_at": "2026-01-01T00:00:00"},
            {"id": 2, "user_id": "u-1", "total_amount": 20, "status": "pending", "created_at": "2026-02-01T00:00:00"},
            {"id": 3, "user_id": "u-2", "total_amount": 30, "status": "pending", "created_at": "2026-03-01T00:00:00"},
        )
        mine = await self.checkout.get_user_orders()
        self.assertEqual([o.id for o in mine], [2, 1])
        self.assertEqual((await self.checkout.get_order(3)).total_amount, 30.0)
        self.assertIsNone(await self.checkout.get_order(99))

        with self.assertRaises(AdminRequired):
            await self.checkout.get_all_orders()

        self.gateway.fail_on[("read", "orders")] = RemoteError(500, "down")
        self.assertEqual(await self.checkout.get_user_orders(), [])
        self.assertIsNone(await self.checkout.get_order(1))
