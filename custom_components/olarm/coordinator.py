"""
DataUpdateCoordinator for the Olarm integration.

Responsibilities:
- Own the engine for the lifetime of a config entry: SessionManager,
  DeviceDirectory, ConnectionPool, DeviceFrameQueue, StateStore and
  CommandDispatcher.
- Re-enumerate devices every DEVICES_INTERVAL seconds, prune devices that
  disappeared and make sure every remaining device has a live connection.
- Push CoordinatorData snapshots to entities as soon as area state or a
  connection state changes, without waiting for the next poll.
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import timedelta

from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import ConfigEntryAuthFailed
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed
from homeassistant.util.ssl import client_context

from .connection import ConnectionPool, MqttClientFactory
from .const import (
    CONF_COMMAND_TRANSPORT,
    CONF_RECONNECT_INTERVAL,
    CONF_USER_EMAIL_PHONE,
    CONF_USER_PASS,
    DEFAULT_RECONNECT_INTERVAL,
    DEVICES_INTERVAL,
    DOMAIN,
    MANUFACTURER,
    TRANSPORT_HTTP,
    TRANSPORT_MQTT,
    VERSION,
)
from .coordinator_data import CoordinatorData
from .directory import DeviceDirectory
from .dispatcher import CommandDispatcher
from .errors import AuthError, OlarmError
from .frame_queue import DeviceFrameQueue
from .models import AreaAction, ChangeSet, CommandRequest, ConnectionState, Credentials
from .session import SessionManager
from .state_store import StateStore
from .store import CredentialStore, SessionStore

__all__ = ["CoordinatorData", "OlarmCoordinator"]

_LOGGER = logging.getLogger(__name__)


class OlarmCoordinator(DataUpdateCoordinator[CoordinatorData]):
    """
    Coordinator for the Olarm integration.

    Polls only the device list; area state arrives over the per-device
    pub/sub connections and is pushed to entities immediately.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        entry_data: dict,
        entry_id: str,
        store: CredentialStore | None = None,
        client_factory=None,
    ) -> None:
        """Initialize the coordinator and wire up the engine."""
        super().__init__(
            hass,
            _LOGGER,
            name=DOMAIN,
            update_interval=timedelta(seconds=DEVICES_INTERVAL),
        )
        self._entry_data = entry_data

        credentials = Credentials(
            user_email_phone=entry_data[CONF_USER_EMAIL_PHONE],
            user_pass=entry_data[CONF_USER_PASS],
        )
        self.session_manager = SessionManager(credentials, store or SessionStore(hass, entry_id))
        self.directory = DeviceDirectory(self.session_manager)
        self.state_store = StateStore()
        self.frame_queue = DeviceFrameQueue(self.state_store.apply_frame)
        self.pool = ConnectionPool(
            self.session_manager,
            self.frame_queue.submit,
            client_factory or MqttClientFactory(tls_context=client_context()),
            reconnect_interval=entry_data.get(CONF_RECONNECT_INTERVAL, DEFAULT_RECONNECT_INTERVAL),
        )
        self.dispatcher = CommandDispatcher(
            self.directory,
            self.state_store,
            self.pool,
            self.session_manager,
            transport=entry_data.get(CONF_COMMAND_TRANSPORT, TRANSPORT_MQTT),
        )

        self._session_loaded = False
        self._unsubscribers = [
            self.state_store.add_listener(self._on_areas_changed),
            self.pool.add_listener(self._on_connection_state),
        ]

        # Snapshot starts empty; entities must handle missing areas until first refresh
        self.data = CoordinatorData()

    # ------------------------------------------------------------------
    # HA entry point
    # ------------------------------------------------------------------

    async def _async_update_data(self) -> CoordinatorData:
        """
        Called by HA on every update_interval tick.

        Enumerates devices, drops state and connections of devices that are
        gone, seeds area state for new devices from the device list, and
        (re)connects every device.
        """
        if not self._session_loaded:
            await self.session_manager.async_load()
            self._session_loaded = True

        try:
            devices = await self.directory.async_refresh()
        except AuthError as exc:
            raise ConfigEntryAuthFailed(f"Olarm authentication failed: {exc}") from exc
        except OlarmError as exc:
            raise UpdateFailed(f"Olarm connection error: {exc}") from exc

        device_ids = [d.id for d in devices]
        for device_id in await self.pool.retain(device_ids):
            await self.frame_queue.remove(device_id)
        self.state_store.retain(device_ids)

        # Seed devices with no area state yet; goes through the frame queue
        # so it stays ordered with frames from the connection
        for device_id, frame in self.directory.initial_frames().items():
            if self.state_store.areas_for(device_id) is None:
                self.frame_queue.submit(device_id, frame)
                await self.frame_queue.async_drain(device_id)

        for device in devices:
            try:
                await self.pool.ensure_connected(device)
            except OlarmError as exc:
                raise UpdateFailed(f"Cannot connect device {device.id}: {exc}") from exc

        return self._build_data(devices)

    # ------------------------------------------------------------------
    # Push updates
    # ------------------------------------------------------------------

    def _build_data(self, devices=None) -> CoordinatorData:
        current = self.data or CoordinatorData()
        return dataclasses.replace(
            current,
            devices=list(devices) if devices is not None else current.devices,
            areas=dict(self.state_store.as_mapping()),
            connection_states=self.pool.states(),
        )

    def _push(self, new_data: CoordinatorData) -> None:
        # Not async_set_updated_data(): that would reschedule the device poll on every frame
        self.data = new_data
        self.async_update_listeners()

    @callback
    def _on_areas_changed(self, change: ChangeSet) -> None:
        _LOGGER.debug("Area state changed for device %s", change.device_id)
        self._push(dataclasses.replace(self.data, areas=dict(self.state_store.as_mapping())))

    @callback
    def _on_connection_state(self, device_id: str, state: ConnectionState) -> None:
        self._push(dataclasses.replace(self.data, connection_states=self.pool.states()))

    # ------------------------------------------------------------------
    # Write path: area commands (called from alarm_control_panel.py)
    # ------------------------------------------------------------------

    async def async_dispatch(self, device_id: str, area_number: int, action: AreaAction) -> None:
        """Send one area command; errors propagate to the caller."""
        await self.dispatcher.dispatch(
            CommandRequest(device_id=device_id, area_number=area_number, action=action)
        )

    def is_device_available(self, device_id: str) -> bool:
        """Whether commands to *device_id* can currently be sent."""
        if self.data.get_device(device_id) is None:
            return False
        if self.dispatcher.transport == TRANSPORT_HTTP:
            return True
        return self.data.connection_states.get(device_id) is ConnectionState.READY

    # ------------------------------------------------------------------
    # Entity helper: device info dict
    # ------------------------------------------------------------------

    def get_device_info(self, device_id: str) -> dict | None:
        """Return the HA DeviceInfo dict for the given device_id."""
        device = self.data.get_device(device_id)
        if device is None:
            return None
        return {
            "identifiers": {(DOMAIN, device.id)},
            "name": device.name or f"Olarm {device.imei}",
            "manufacturer": MANUFACTURER,
            "model": "Olarm Communicator",
            "serial_number": device.imei,
            "sw_version": VERSION,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def async_shutdown(self) -> None:
        """Clean up all resources owned by this coordinator."""
        await super().async_shutdown()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        await self.pool.shutdown()
        await self.frame_queue.shutdown()
        await self.session_manager.close()

    @property
    def entry_data(self):
        return self._entry_data
