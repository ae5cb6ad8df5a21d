"""
Tests for the low-level API layer: token parsing, the auth calls, device
list mapping, the HTTP action endpoint and response/status handling.
"""

from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from custom_components.olarm.api.auth import (
    TokenResponse,
    get_standard_headers,
    parse_expiry,
    post_federated_link,
    post_login,
    post_refresh,
)
from custom_components.olarm.api.devices import fetch_devices, post_device_action
from custom_components.olarm.errors import (
    ApiResponseError,
    AuthError,
    NetworkError,
    NotFoundError,
    ProtocolError,
)
from custom_components.olarm.models import AreaAction
from custom_components.olarm.requests import _process_response, make_request

AUTH_REQUEST = "custom_components.olarm.api.auth.make_request"
DEVICES_REQUEST = "custom_components.olarm.api.devices.make_request"

NOW = 1_700_000_000.0


def _response(status: int, json_body=None, text: str = "", content_type: str = "application/json"):
    response = MagicMock()
    response.status = status
    response.headers = {"Content-Type": content_type}
    response.json = AsyncMock(return_value=json_body)
    response.text = AsyncMock(return_value=text)
    return response


class TestParseExpiry(unittest.TestCase):

    def test_relative_lifetime(self):
        self.assertEqual(parse_expiry(3600, now=NOW), NOW + 3600)

    def test_absolute_epoch(self):
        self.assertEqual(parse_expiry(NOW + 900, now=NOW), NOW + 900)

    def test_missing_or_malformed_uses_default(self):
        for value in (None, "3600", 0, -5, True):
            with self.subTest(value=value):
                self.assertEqual(parse_expiry(value, now=NOW), NOW + 600)


class TestTokenResponse(unittest.TestCase):

    def test_parses_tokens(self):
        tokens = TokenResponse({"oat": "a", "ort": "r", "oatExpire": 120}, now=NOW)
        self.assertEqual(tokens.access_token, "a")
        self.assertEqual(tokens.refresh_token, "r")
        self.assertEqual(tokens.expires_at, NOW + 120)

    def test_missing_tokens_raise_protocol_error(self):
        for body in ({"oat": "a"}, {"ort": "r"}, {}, None, ["oat"]):
            with self.subTest(body=body):
                with self.assertRaises(ProtocolError):
                    TokenResponse(body)

    def test_str_hides_tokens(self):
        text = str(TokenResponse({"oat": "secret-a", "ort": "secret-r"}, now=NOW))
        self.assertNotIn("secret", text)

    def test_standard_headers(self):
        self.assertEqual(get_standard_headers("t")["Authorization"], "Bearer t")


class TestAuthCalls(unittest.IsolatedAsyncioTestCase):

    async def test_login_posts_form(self):
        with patch(AUTH_REQUEST, new=AsyncMock(return_value={"oat": "a", "ort": "r", "oatExpire": 60})) as req:
            tokens = await post_login("user@example.com", "pw")

        self.assertEqual(tokens.access_token, "a")
        method, url, headers = req.await_args.args
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("/oauth/login/mobile"))
        self.assertEqual(headers["Content-Type"], "application/x-www-form-urlencoded")
        self.assertEqual(req.await_args.kwargs["data"], {"userEmailPhone": "user@example.com", "userPass": "pw"})

    async def test_login_rejection_is_auth_error(self):
        for status in (400, 401, 403):
            with self.subTest(status=status):
                with patch(AUTH_REQUEST, new=AsyncMock(side_effect=ApiResponseError(status, None))):
                    with self.assertRaises(AuthError) as ctx:
                        await post_login("u", "p")
                self.assertEqual(ctx.exception.status, status)

    async def test_login_server_error_is_not_auth_error(self):
        with patch(AUTH_REQUEST, new=AsyncMock(side_effect=ApiResponseError(502, "bad gateway"))):
            with self.assertRaises(ApiResponseError) as ctx:
                await post_login("u", "p")
        self.assertNotIsInstance(ctx.exception, AuthError)
        self.assertIsInstance(ctx.exception, NetworkError)

    async def test_federated_link(self):
        with patch(AUTH_REQUEST, new=AsyncMock(return_value={"userIndex": "12", "userId": "abc"})) as req:
            result = await post_federated_link("oat", "u", "p")

        self.assertEqual(result, (12, "abc"))
        self.assertEqual(req.await_args.kwargs["params"], {"oat": "oat"})
        self.assertEqual(req.await_args.kwargs["data"]["captchaToken"], "olarmapp")

    async def test_federated_link_missing_fields(self):
        for body in ({"userIndex": 1}, {"userId": "x"}, {"userIndex": "one", "userId": "x"}, []):
            with self.subTest(body=body):
                with patch(AUTH_REQUEST, new=AsyncMock(return_value=body)):
                    with self.assertRaises(ProtocolError):
                        await post_federated_link("oat", "u", "p")

    async def test_refresh(self):
        with patch(AUTH_REQUEST, new=AsyncMock(return_value={"oat": "a2", "ort": "r2"})) as req:
            tokens = await post_refresh("r1")

        self.assertEqual(tokens.refresh_token, "r2")
        self.assertEqual(req.await_args.kwargs["data"], {"ort": "r1"})

    async def test_refresh_rejected(self):
        with patch(AUTH_REQUEST, new=AsyncMock(side_effect=AuthError("HTTP 401", status=401))):
            with self.assertRaises(AuthError):
                await post_refresh("r1")


class TestDeviceCalls(unittest.IsolatedAsyncioTestCase):

    async def test_fetch_devices_maps_records(self):
        body = {
            "devices": [
                {
                    "id": "D1",
                    "IMEI": "IMEI1",
                    "deviceName": "House",
                    "deviceProfile": {"areasLabels": ["Main", "Garage"]},
                    "deviceState": {"areas": ["arm", "disarm"]},
                },
                {"deviceId": "D2", "imei": "IMEI2", "name": "Office"},
                {"id": "D3"},
                "garbage",
            ]
        }
        with patch(DEVICES_REQUEST, new=AsyncMock(return_value=body)) as req:
            records = await fetch_devices("oat", 7)

        self.assertTrue(req.await_args.args[1].endswith("users/7"))
        self.assertEqual(req.await_args.args[2]["Authorization"], "Bearer oat")
        self.assertEqual([r.device.id for r in records], ["D1", "D2"])
        self.assertEqual(records[0].device.imei, "IMEI1")
        self.assertEqual(records[0].device.name, "House")
        self.assertEqual(records[0].area_labels, ("Main", "Garage"))
        self.assertEqual(records[0].area_states, ("arm", "disarm"))
        self.assertEqual(records[1].area_states, ())

    async def test_fetch_devices_unexpected_body(self):
        for body in (None, [], {"devices": "nope"}):
            with self.subTest(body=body):
                with patch(DEVICES_REQUEST, new=AsyncMock(return_value=body)):
                    with self.assertRaises(ProtocolError):
                        await fetch_devices("oat", 7)

    async def test_post_device_action(self):
        with patch(DEVICES_REQUEST, new=AsyncMock(return_value=None)) as req:
            await post_device_action("oat", "D1", AreaAction.STAY, 2)

        self.assertTrue(req.await_args.args[1].endswith("devices/D1/actions"))
        self.assertEqual(req.await_args.kwargs["payload"], {"actionCmd": "area-stay", "actionNum": 2})
        self.assertEqual(req.await_args.kwargs["max_attempts"], 1)

    async def test_post_device_action_unknown_device(self):
        with patch(DEVICES_REQUEST, new=AsyncMock(side_effect=ApiResponseError(404, None))):
            with self.assertRaises(NotFoundError):
                await post_device_action("oat", "D9", AreaAction.ARM, 1)


class TestProcessResponse(unittest.IsolatedAsyncioTestCase):

    async def test_json_success(self):
        result = await _process_response(_response(200, {"ok": True}), "url")
        self.assertEqual(result, {"ok": True})

    async def test_empty_success(self):
        result = await _process_response(_response(204, content_type="text/plain"), "url")
        self.assertIsNone(result)

    async def test_non_json_success_is_error(self):
        with self.assertRaises(ApiResponseError):
            await _process_response(_response(200, text="<html>", content_type="text/html"), "url")

    async def test_auth_statuses(self):
        for status in (401, 403):
            with self.subTest(status=status):
                with self.assertRaises(AuthError) as ctx:
                    await _process_response(_response(status, {"error": "expired"}), "url")
                self.assertEqual(ctx.exception.status, status)

    async def test_other_errors_carry_status_and_body(self):
        with self.assertRaises(ApiResponseError) as ctx:
            await _process_response(_response(500, text="boom", content_type="text/plain"), "url")
        self.assertEqual(ctx.exception.status, 500)
        self.assertEqual(ctx.exception.body, "boom")

    async def test_unsupported_method(self):
        with self.assertRaises(ValueError):
            await make_request("DELETE", "https://example.invalid", {})
