"""
DeviceDirectory: resolves the authenticated user's device list.
"""
from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Mapping

from .api.devices import DeviceRecord, fetch_devices
from .const import ALARM_PAYLOAD_TYPE
from .errors import AuthError, NotFoundError
from .models import Device
from .session import SessionManager

_LOGGER = logging.getLogger(__name__)


class DeviceDirectory:
    """Cached device list, refreshed only on request."""

    def __init__(self, session_manager: SessionManager) -> None:
        self._session_manager = session_manager
        self._records: Mapping[str, DeviceRecord] = MappingProxyType({})

    async def async_refresh(self) -> list[Device]:
        """
        Re-enumerate the user's devices.

        A rejected access token is invalidated and the call retried once
        with a freshly refreshed session; a second rejection is surfaced.
        """
        session = await self._session_manager.ensure_valid()
        try:
            records = await fetch_devices(session.access_token, session.user_index)
        except AuthError:
            _LOGGER.warning("Device list request unauthorised, refreshing session and retrying")
            self._session_manager.invalidate(session.access_token)
            session = await self._session_manager.ensure_valid()
            records = await fetch_devices(session.access_token, session.user_index)

        self._records = MappingProxyType({r.device.id: r for r in records})
        _LOGGER.info("Found %s Olarm device(s)", len(records))
        return self.devices()

    def devices(self) -> list[Device]:
        return [r.device for r in self._records.values()]

    def get(self, device_id: str) -> Device | None:
        record = self._records.get(device_id)
        return record.device if record else None

    def require(self, device_id: str) -> Device:
        device = self.get(device_id)
        if device is None:
            raise NotFoundError(f"Unknown device {device_id}")
        return device

    def initial_frames(self) -> dict[str, dict]:
        """
        Alarm payload frames built from the device list's own area data.

        Lets the state table be seeded before the first pub/sub snapshot
        arrives. Devices whose listing carries no area states are omitted.
        """
        frames = {}
        for device_id, record in self._records.items():
            if not record.area_states:
                continue
            frames[device_id] = {
                "type": ALARM_PAYLOAD_TYPE,
                "data": {
                    "areas": list(record.area_states),
                    "areasDetail": list(record.area_labels),
                },
            }
        return frames
