"""
Tests for SessionStore on top of Home Assistant's Store helper.
"""

from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from homeassistant.exceptions import HomeAssistantError

from custom_components.olarm.models import Session
from custom_components.olarm.store import SessionStore

from .test_common import make_session


class TestSessionStore(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        patcher = patch("custom_components.olarm.store.Store")
        self.store_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.backend = MagicMock()
        self.backend.async_load = AsyncMock(return_value=None)
        self.backend.async_save = AsyncMock()
        self.backend.async_remove = AsyncMock()
        self.store_cls.return_value = self.backend

    def test_one_private_record_per_entry(self):
        hass = MagicMock()
        SessionStore(hass, "entry-1")

        args, kwargs = self.store_cls.call_args
        self.assertIs(args[0], hass)
        self.assertEqual(args[2], "olarm.session.entry-1")
        self.assertTrue(kwargs["private"])

    async def test_nothing_stored_loads_empty(self):
        session = await SessionStore(MagicMock(), "entry-1").async_load()
        self.assertTrue(session.is_empty)

    async def test_save_then_load(self):
        stored = make_session()
        store = SessionStore(MagicMock(), "entry-1")

        await store.async_save(stored)
        self.backend.async_load.return_value = self.backend.async_save.await_args.args[0]

        self.assertEqual(await store.async_load(), stored)

    async def test_incomplete_record_is_ignored(self):
        self.backend.async_load.return_value = {"accessToken": "a"}

        with self.assertLogs("custom_components.olarm.store", level="WARNING"):
            session = await SessionStore(MagicMock(), "entry-1").async_load()

        self.assertEqual(session, Session.empty())

    async def test_unreadable_store_loads_empty(self):
        self.backend.async_load.side_effect = HomeAssistantError("corrupt")

        with self.assertLogs("custom_components.olarm.store", level="ERROR"):
            session = await SessionStore(MagicMock(), "entry-1").async_load()

        self.assertTrue(session.is_empty)

    async def test_remove(self):
        await SessionStore(MagicMock(), "entry-1").async_remove()
        self.backend.async_remove.assert_awaited_once()
