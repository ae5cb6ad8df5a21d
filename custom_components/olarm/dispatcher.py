"""
CommandDispatcher: turns an area command into one outbound message.

A successful dispatch only means the command was handed to the transport.
The panel's actual state change arrives later through the normal inbound
frame path and is correlated on (device_id, area_number).

Commands are never retried here; every failure is surfaced to the caller.
"""
from __future__ import annotations

import json
import logging

from .api.devices import post_device_action
from .connection import ConnectionPool
from .const import CONTROL_TOPIC, MQTT_QOS, TRANSPORT_HTTP, TRANSPORT_MQTT
from .directory import DeviceDirectory
from .errors import AuthError, NotFoundError
from .models import CommandRequest, Device
from .session import SessionManager
from .state_store import StateStore

_LOGGER = logging.getLogger(__name__)


def build_control_payload(request: CommandRequest) -> str:
    """The control topic payload, e.g. {"method": "POST", "data": ["area-disarm", 1]}."""
    return json.dumps({"method": "POST", "data": [request.action.value, request.area_number]})


class CommandDispatcher:
    """Validates command requests and publishes them on the selected transport."""

    def __init__(
        self,
        directory: DeviceDirectory,
        state_store: StateStore,
        pool: ConnectionPool,
        session_manager: SessionManager,
        *,
        transport: str = TRANSPORT_MQTT,
    ) -> None:
        self._directory = directory
        self._state_store = state_store
        self._pool = pool
        self._session_manager = session_manager
        self.transport = transport

    @property
    def transport(self) -> str:
        return self._transport

    @transport.setter
    def transport(self, value: str) -> None:
        if value not in (TRANSPORT_MQTT, TRANSPORT_HTTP):
            raise ValueError(f"Unsupported command transport: {value}")
        self._transport = value

    async def dispatch(self, request: CommandRequest) -> None:
        """
        Send *request* once.

        Raises:
            NotFoundError: unknown device, or an area the device does not have
            NetworkError: no Ready connection (MQTT), or the send failed
            AuthError: the HTTP command endpoint rejected the session
            ShutdownError: the engine is shut down
        """
        device = self._directory.require(request.device_id)
        self._check_area(request)

        if self._transport == TRANSPORT_HTTP:
            await self._dispatch_http(device, request)
        else:
            await self._dispatch_mqtt(device, request)
        _LOGGER.info(
            "Sent %s to device %s area %s via %s",
            request.action.value, device.id, request.area_number, self._transport,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_area(self, request: CommandRequest) -> None:
        if request.area_number < 1:
            raise NotFoundError(f"Invalid area number {request.area_number}")
        areas = self._state_store.areas_for(request.device_id)
        # Area list not known yet: let the panel decide
        if areas is None:
            return
        if not any(a.area_number == request.area_number for a in areas):
            raise NotFoundError(
                f"Device {request.device_id} has no area {request.area_number}"
            )

    async def _dispatch_mqtt(self, device: Device, request: CommandRequest) -> None:
        await self._pool.publish(
            device.id,
            CONTROL_TOPIC.format(imei=device.imei),
            build_control_payload(request),
            qos=MQTT_QOS,
        )

    async def _dispatch_http(self, device: Device, request: CommandRequest) -> None:
        session = await self._session_manager.ensure_valid()
        try:
            await post_device_action(
                session.access_token, device.id, request.action, request.area_number
            )
        except AuthError:
            # The next command picks up a refreshed token
            self._session_manager.invalidate(session.access_token)
            raise
