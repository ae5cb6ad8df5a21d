"""
Tests for DeviceDirectory: enumeration, the single retry on a rejected
token, lookups and the seed frames built from the device list.
"""

from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, patch

from custom_components.olarm.api.devices import DeviceRecord
from custom_components.olarm.directory import DeviceDirectory
from custom_components.olarm.errors import AuthError, NetworkError, NotFoundError

from .test_common import make_device, make_session, make_session_manager

FETCH = "custom_components.olarm.directory.fetch_devices"


def _record(device_id: str, labels=(), states=()) -> DeviceRecord:
    return DeviceRecord(make_device(device_id), tuple(labels), tuple(states))


class TestDeviceDirectory(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.session_manager = make_session_manager(make_session(access_token="oat-1", user_index=7))
        self.directory = DeviceDirectory(self.session_manager)

    async def test_refresh_lists_devices(self):
        with patch(FETCH, new=AsyncMock(return_value=[_record("D1"), _record("D2")])) as fetch:
            devices = await self.directory.async_refresh()

        fetch.assert_awaited_once_with("oat-1", 7)
        self.assertEqual([d.id for d in devices], ["D1", "D2"])
        self.assertEqual(self.directory.get("D2").imei, "IMEI-D2")
        self.assertIsNone(self.directory.get("D3"))

    async def test_rejected_token_is_retried_once(self):
        fetch = AsyncMock(side_effect=[AuthError("HTTP 401", status=401), [_record("D1")]])
        with patch(FETCH, new=fetch):
            devices = await self.directory.async_refresh()

        self.assertEqual([d.id for d in devices], ["D1"])
        self.session_manager.invalidate.assert_called_once_with("oat-1")
        self.assertEqual(self.session_manager.ensure_valid.await_count, 2)
        self.assertEqual(fetch.await_count, 2)

    async def test_second_rejection_is_surfaced(self):
        fetch = AsyncMock(side_effect=AuthError("HTTP 401", status=401))
        with patch(FETCH, new=fetch):
            with self.assertRaises(AuthError):
                await self.directory.async_refresh()
        self.assertEqual(fetch.await_count, 2)

    async def test_network_error_keeps_previous_list(self):
        with patch(FETCH, new=AsyncMock(return_value=[_record("D1")])):
            await self.directory.async_refresh()
        with patch(FETCH, new=AsyncMock(side_effect=NetworkError("timeout"))):
            with self.assertRaises(NetworkError):
                await self.directory.async_refresh()

        self.assertEqual([d.id for d in self.directory.devices()], ["D1"])

    async def test_require_unknown_device(self):
        with self.assertRaises(NotFoundError):
            self.directory.require("D1")

    async def test_initial_frames(self):
        records = [
            _record("D1", labels=["Main", "Garage"], states=["arm", "disarm"]),
            _record("D2"),
        ]
        with patch(FETCH, new=AsyncMock(return_value=records)):
            await self.directory.async_refresh()

        frames = self.directory.initial_frames()

        self.assertEqual(list(frames), ["D1"])
        self.assertEqual(
            frames["D1"],
            {"type": "alarmPayload", "data": {"areas": ["arm", "disarm"], "areasDetail": ["Main", "Garage"]}},
        )
