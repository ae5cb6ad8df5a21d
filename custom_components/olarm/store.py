"""
Durable session persistence backed by Home Assistant's storage helper.

One record per config entry, rewritten after every login, refresh and
clear, so a restarted instance neither logs in needlessly nor retries a
refresh token that the server already rejected.
"""
from __future__ import annotations

import logging
from typing import Protocol

from homeassistant.core import HomeAssistant
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.storage import Store

from .const import STORAGE_KEY, STORAGE_VERSION
from .models import Session

_LOGGER = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """What SessionManager needs from a persistence backend."""

    async def async_load(self) -> Session: ...

    async def async_save(self, session: Session) -> None: ...


class SessionStore:
    """CredentialStore implementation keyed by config entry id."""

    def __init__(self, hass: HomeAssistant, entry_id: str) -> None:
        self._store: Store[dict] = Store(
            hass, STORAGE_VERSION, STORAGE_KEY.format(entry_id=entry_id), private=True
        )

    async def async_load(self) -> Session:
        try:
            data = await self._store.async_load()
        except HomeAssistantError as exc:
            _LOGGER.error("Failed to load stored session, starting without one: %s", exc)
            return Session.empty()
        session = Session.from_dict(data)
        if data and session.is_empty:
            _LOGGER.warning("Stored session record is incomplete, ignoring it")
        return session

    async def async_save(self, session: Session) -> None:
        await self._store.async_save(session.to_dict())
        _LOGGER.debug("Session saved (empty=%s)", session.is_empty)

    async def async_remove(self) -> None:
        await self._store.async_remove()
