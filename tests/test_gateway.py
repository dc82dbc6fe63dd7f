import json
import unittest
from unittest import mock

import requests

from db.gateway import RemoteGateway, eq
from utils.config import Settings
from utils.errors import RemoteError, ValidationError


def make_response(status=200, body=None, raw=None, reason="OK"):
    resp = requests.Response()
    resp.status_code = status
    resp.reason = reason
    if raw is not None:
        resp._content = raw
    elif body is not None:
        resp._content = json.dumps(body).encode()
    else:
        resp._content = b""
    return resp


class RemoteGatewayTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.settings = Settings(
            supabase_url="https://demo.supabase.co",
            supabase_anon_key="anon-key",
            http_timeout=5.0,
        )
        self.http = mock.Mock(spec=requests.Session)
        self.http.request.return_value = make_response(body=[])
        self.token = None
        self.gateway = RemoteGateway(self.settings, lambda: self.token, http=self.http)

    def last_call(self):
        args, kwargs = self.http.request.call_args
        return args[0], args[1], kwargs

    async def test_read_builds_query_and_headers(self):
        self.http.request.return_value = make_response(body=[{"id": 1, "name": "Oud"}])
        rows = await self.gateway.read(
            "products", filters={"category": eq("Men")}, order="name.asc", limit=6
        )
        self.assertEqual(rows, [{"id": 1, "name": "Oud"}])

        method, url, kwargs = self.last_call()
        self.assertEqual(method, "GET")
        self.assertEqual(url, "https://demo.supabase.co/rest/v1/products")
        self.assertEqual(
            kwargs["params"],
            {"select": "*", "category": "eq.Men", "order": "name.asc", "limit": 6},
        )
        self.assertEqual(kwargs["headers"]["apikey"], "anon-key")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer anon-key")
        self.assertEqual(kwargs["timeout"], 5.0)

    async def test_bearer_uses_session_token_when_present(self):
        self.token = "user-token"
        await self.gateway.read("orders")
        _, _, kwargs = self.last_call()
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer user-token")
        self.assertEqual(kwargs["headers"]["apikey"], "anon-key")

    async def test_create_update_delete(self):
        self.http.request.return_value = make_response(201, body=[{"id": 5}])
        rows = await self.gateway.create("orders", {"status": "pending"})
        self.assertEqual(rows, [{"id": 5}])
        method, url, kwargs = self.last_call()
        self.assertEqual(method, "POST")
        self.assertEqual(kwargs["json"], {"status": "pending"})
        self.assertEqual(kwargs["headers"]["Prefer"], "return=representation")

        self.http.request.return_value = make_response(200, body=[{"id": 5, "status": "paid"}])
        await self.gateway.update("orders", {"status": "paid"}, {"id": eq(5)})
        method, url, kwargs = self.last_call()
        self.assertEqual(method, "PATCH")
        self.assertEqual(kwargs["params"], {"id": "eq.5"})

        self.http.request.return_value = make_response(204)
        self.assertEqual(await self.gateway.delete("orders", {"id": eq(5)}), [])
        method, _, kwargs = self.last_call()
        self.assertEqual(method, "DELETE")

    async def test_unfiltered_writes_are_refused(self):
        with self.assertRaises(ValidationError):
            await self.gateway.update("products", {"price": 1}, {})
        with self.assertRaises(ValidationError):
            await self.gateway.delete("products", {})
        self.http.request.assert_not_called()

    async def test_error_response_carries_status_and_message(self):
        self.http.request.return_value = make_response(
            409, body={"message": "duplicate key value"}, reason="Conflict"
        )
        with self.assertRaises(RemoteError) as ctx:
            await self.gateway.create("users", {"id": "u-1"})
        self.assertEqual(ctx.exception.status, 409)
        self.assertEqual(ctx.exception.message, "duplicate key value")

        self.http.request.return_value = make_response(
            400, body={"error": "invalid_grant", "error_description": "Invalid login credentials"}
        )
        with self.assertRaises(RemoteError) as ctx:
            await self.gateway.auth("token", {}, params={"grant_type": "password"})
        self.assertEqual(ctx.exception.message, "Invalid login credentials")

        self.http.request.return_value = make_response(502, raw=b"<html>bad gateway</html>")
        with self.assertRaises(RemoteError) as ctx:
            await self.gateway.read("products")
        self.assertEqual(ctx.exception.status, 502)

    async def test_transport_failure_is_remote_error(self):
        self.http.request.side_effect = requests.ConnectionError("no route")
        with self.assertRaises(RemoteError) as ctx:
            await self.gateway.read("products")
        self.assertEqual(ctx.exception.status, 0)

    async def test_malformed_success_body_is_remote_error(self):
        self.http.request.return_value = make_response(200, raw=b"{oops")
        with self.assertRaises(RemoteError):
            await self.gateway.read("products")

    async def test_invoke_posts_to_function_url(self):
        self.http.request.return_value = make_response(body={"success": True})
        result = await self.gateway.invoke("verify-payment", {"reference": "SBM-1", "order_id": 3})
        self.assertEqual(result, {"success": True})
        method, url, kwargs = self.last_call()
        self.assertEqual(method, "POST")
        self.assertEqual(url, "https://demo.supabase.co/functions/v1/verify-payment")
        self.assertEqual(kwargs["json"], {"reference": "SBM-1", "order_id": 3})

    async def test_auth_endpoint(self):
        self.http.request.return_value = make_response(body={"access_token": "a"})
        await self.gateway.auth("token", {"email": "e", "password": "p"}, params={"grant_type": "password"})
        method, url, kwargs = self.last_call()
        self.assertEqual(url, "https://demo.supabase.co/auth/v1/token")
        self.assertEqual(kwargs["params"], {"grant_type": "password"})
        self.assertNotIn("Authorization", kwargs["headers"])

        self.http.request.return_value = make_response(204)
        self.assertIsNone(await self.gateway.auth("logout", access_token="tok"))
        _, url, kwargs = self.last_call()
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer tok")

    async def test_upload_returns_public_url(self):
        self.http.request.return_value = make_response(body={"Key": "products/products/1-1.png"})
        url = await self.gateway.upload("products", "products/1-1.png", b"\x89PNG", "image/png")
        self.assertEqual(url, "https://demo.supabase.co/storage/v1/object/public/products/products/1-1.png")
        method, target, kwargs = self.last_call()
        self.assertEqual(target, "https://demo.supabase.co/storage/v1/object/products/products/1-1.png")
        self.assertEqual(kwargs["files"]["file"], ("1-1.png", b"\x89PNG", "image/png"))
        self.assertNotIn("Content-Type", kwargs["headers"])
