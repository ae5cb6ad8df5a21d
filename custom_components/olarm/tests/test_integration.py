"""
Real API integration tests for the Olarm engine.
Requires OLARM_EMAIL and OLARM_PASSWORD environment variables to run.
Read-only: no arm or disarm command is ever sent.
Skip with:  pytest -k "not Integration"
"""

from __future__ import annotations

import asyncio
import os
import unittest
from unittest.mock import MagicMock

from dotenv import load_dotenv

from custom_components.olarm.connection import MqttClientFactory
from custom_components.olarm.coordinator import OlarmCoordinator

from .test_common import FakeStore, make_entry_data, wait_until


class TestOlarmIntegration(unittest.IsolatedAsyncioTestCase):
    """
    Integration tests that hit the real Olarm cloud.
    Skipped automatically when OLARM_EMAIL / OLARM_PASSWORD are not set.
    """

    def setUp(self):
        load_dotenv()
        email = os.getenv("OLARM_EMAIL")
        password = os.getenv("OLARM_PASSWORD")
        if not email or not password:
            self.skipTest("OLARM_EMAIL / OLARM_PASSWORD not set, skipping integration tests")

        self._entry_data = make_entry_data(user_email_phone=email, user_pass=password)

    async def asyncSetUp(self):
        hass = MagicMock()
        hass.async_create_task = lambda coro: asyncio.ensure_future(coro)
        self.store = FakeStore()
        self.coord = OlarmCoordinator(
            hass, self._entry_data, "integration", store=self.store, client_factory=MqttClientFactory()
        )

    async def asyncTearDown(self):
        await self.coord.async_shutdown()

    async def test_login_resolves_user(self):
        session = await self.coord.session_manager.ensure_valid()

        self.assertIsNotNone(session.access_token)
        self.assertTrue(session.has_user)
        self.assertEqual(self.store.session, session)

    async def test_fetch_devices(self):
        devices = await self.coord.directory.async_refresh()

        self.assertGreater(len(devices), 0)
        for device in devices:
            self.assertTrue(device.id)
            self.assertTrue(device.imei)

    async def test_connect_and_receive_areas(self):
        data = await self.coord._async_update_data()
        self.coord.data = data
        device = data.devices[0]

        self.assertTrue(await self.coord.pool.wait_ready(device.id, timeout=30))
        await wait_until(lambda: self.coord.state_store.areas_for(device.id) is not None, timeout=30)

        areas = self.coord.state_store.areas_for(device.id)
        self.assertTrue(areas)
        for area in areas:
            self.assertGreaterEqual(area.area_number, 1)
            self.assertTrue(area.name)
