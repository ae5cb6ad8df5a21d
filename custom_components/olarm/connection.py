"""
ConnectionPool: one persistent pub/sub connection per Olarm device.

Each DeviceConnection runs a single task driving a small state machine:

    Disconnected → Connecting → Connected → Subscribing → Ready
          any stage ──(error)──→ Reconnecting ──(delay)──→ Connecting
          any stage ──(close)──→ Closed (terminal)

On the way to Ready the connection subscribes to the device's status topic
and publishes a snapshot request; only then is it usable for commands.
Inbound messages are handed to a frame sink (normally DeviceFrameQueue.submit)
and never processed on the receive loop itself.

Callers never hold a DeviceConnection: the pool hands out ConnectionHandle
objects that resolve through the pool on every call.

This module has no HA dependencies.
"""
from __future__ import annotations

import asyncio
import json
import logging
import ssl
from typing import Any, Callable, Iterable

import aiomqtt

from .const import (
    DEFAULT_RECONNECT_INTERVAL,
    MAX_RECONNECT_INTERVAL,
    MIN_RECONNECT_INTERVAL,
    MQTT_CLIENT_ID_PREFIX,
    MQTT_CONNECT_TIMEOUT,
    MQTT_HOST,
    MQTT_KEEPALIVE,
    MQTT_PORT,
    MQTT_QOS,
    MQTT_USERNAME,
    MQTT_WEBSOCKET_PATH,
    STATUS_REQUEST_TOPIC,
    STATUS_TOPIC,
)
from .errors import AuthError, NetworkError, OlarmError, ProtocolError, ShutdownError
from .models import ConnectionState, Device
from .session import SessionManager

_LOGGER = logging.getLogger(__name__)

# CONNACK codes for refused credentials: MQTT 3.1.1 (4, 5) and their MQTT 5 equivalents
AUTH_REFUSED_CODES = (4, 5, 134, 135)

# States in which a connection is alive or on its way to Ready
LIVE_STATES = (
    ConnectionState.CONNECTING,
    ConnectionState.CONNECTED,
    ConnectionState.SUBSCRIBING,
    ConnectionState.READY,
)

STATUS_REQUEST_PAYLOAD = json.dumps({"method": "GET"})

FrameSink = Callable[[str, Any], None]
StateListener = Callable[[str, ConnectionState], None]
ClientFactory = Callable[[Device, str], Any]


class MqttClientFactory:
    """Builds the aiomqtt client for one device and access token."""

    def __init__(self, tls_context: ssl.SSLContext | None = None) -> None:
        self._tls_context = tls_context

    def __call__(self, device: Device, access_token: str) -> aiomqtt.Client:
        if self._tls_context is None:
            self._tls_context = ssl.create_default_context()
        return aiomqtt.Client(
            hostname=MQTT_HOST,
            port=MQTT_PORT,
            identifier=f"{MQTT_CLIENT_ID_PREFIX}{device.imei}",
            username=MQTT_USERNAME,
            password=access_token,
            transport="websockets",
            websocket_path=MQTT_WEBSOCKET_PATH,
            tls_context=self._tls_context,
            keepalive=MQTT_KEEPALIVE,
            timeout=MQTT_CONNECT_TIMEOUT,
            clean_session=True,
        )


def _reconnect_delay(interval: float, failures: int) -> float:
    """Capped exponential delay, never below MIN_RECONNECT_INTERVAL."""
    base = max(interval, MIN_RECONNECT_INTERVAL)
    return min(base * (2 ** max(failures - 1, 0)), max(MAX_RECONNECT_INTERVAL, base))


def _subscription_refused(granted) -> bool:
    """True if a SUBACK result carries a failure code (>= 0x80)."""
    if granted is None:
        return False
    for code in granted:
        value = getattr(code, "value", code)
        if isinstance(value, int) and value >= 0x80:
            return True
    return False


class DeviceConnection:
    """
    Persistent pub/sub connection for one device.

    Owned exclusively by ConnectionPool. Once closed it never reconnects.
    """

    def __init__(
        self,
        device: Device,
        session_manager: SessionManager,
        frame_sink: FrameSink,
        client_factory: ClientFactory,
        *,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
        on_state_change: StateListener | None = None,
    ) -> None:
        self.device = device
        self._session_manager = session_manager
        self._frame_sink = frame_sink
        self._client_factory = client_factory
        self._reconnect_interval = reconnect_interval
        self._on_state_change = on_state_change

        self._state = ConnectionState.DISCONNECTED
        self._client = None
        self._task: asyncio.Task | None = None
        self._ready = asyncio.Event()
        self._failures = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY and self._client is not None

    @property
    def status_topic(self) -> str:
        return STATUS_TOPIC.format(imei=self.device.imei)

    def start(self) -> None:
        """Start the connection task. No-op if already started or closed."""
        if self._task is None and self._state is not ConnectionState.CLOSED:
            self._task = asyncio.ensure_future(self._run())

    async def publish(self, topic: str, payload: str | bytes, qos: int = MQTT_QOS) -> None:
        """
        Publish on this connection; fails immediately unless Ready.

        Raises:
            ShutdownError: the connection is closed
            NetworkError: not Ready, or the publish itself failed
        """
        if self._state is ConnectionState.CLOSED:
            raise ShutdownError(f"Connection for device {self.device.id} is closed")
        client = self._client
        if self._state is not ConnectionState.READY or client is None:
            raise NetworkError(f"Connection for device {self.device.id} is not ready ({self._state.value})")
        try:
            await client.publish(topic, payload, qos=qos)
        except aiomqtt.MqttError as exc:
            raise NetworkError(f"Publish to {topic} failed: {exc}") from exc

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait until Ready; returns False on timeout."""
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_ready

    async def close(self) -> None:
        """Move to Closed and stop the connection task."""
        if self._state is ConnectionState.CLOSED:
            return
        self._set_state(ConnectionState.CLOSED)
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        _LOGGER.debug("Connection for device %s closed", self.device.id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if self._state is ConnectionState.CLOSED or self._state is state:
            return
        _LOGGER.debug("Device %s connection: %s → %s", self.device.id, self._state.value, state.value)
        self._state = state
        if state is ConnectionState.READY:
            self._ready.set()
        else:
            self._ready.clear()
        if self._on_state_change is not None:
            try:
                self._on_state_change(self.device.id, state)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Connection state listener failed")

    async def _run(self) -> None:
        """Connect, serve and reconnect until closed."""
        while self._state is not ConnectionState.CLOSED:
            token = None
            try:
                self._set_state(ConnectionState.CONNECTING)
                session = await self._session_manager.ensure_valid()
                token = session.access_token
                await self._serve(token)
                _LOGGER.warning("Broker closed the connection for device %s", self.device.id)
            except ShutdownError:
                return
            except aiomqtt.MqttCodeError as exc:
                if exc.rc in AUTH_REFUSED_CODES:
                    _LOGGER.warning(
                        "Broker refused credentials for device %s (rc: %s), refreshing session",
                        self.device.id, exc.rc,
                    )
                    self._session_manager.invalidate(token)
                else:
                    _LOGGER.warning("Connection error for device %s (rc: %s): %s", self.device.id, exc.rc, exc)
            except aiomqtt.MqttError as exc:
                _LOGGER.warning("Connection error for device %s: %s", self.device.id, exc)
            except AuthError as exc:
                _LOGGER.error("Cannot authenticate connection for device %s: %s", self.device.id, exc)
            except OlarmError as exc:
                _LOGGER.warning("Connection attempt for device %s failed: %s", self.device.id, exc)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Unexpected error on connection for device %s", self.device.id)
            finally:
                self._client = None

            if self._state is ConnectionState.CLOSED:
                return
            self._failures += 1
            delay = _reconnect_delay(self._reconnect_interval, self._failures)
            self._set_state(ConnectionState.RECONNECTING)
            _LOGGER.info("Reconnecting device %s in %.0fs", self.device.id, delay)
            await asyncio.sleep(delay)

    async def _serve(self, token: str) -> None:
        async with self._client_factory(self.device, token) as client:
            self._set_state(ConnectionState.CONNECTED)

            self._set_state(ConnectionState.SUBSCRIBING)
            granted = await client.subscribe(self.status_topic, qos=MQTT_QOS)
            if _subscription_refused(granted):
                raise ProtocolError(f"Subscription to {self.status_topic} refused")
            await client.publish(
                STATUS_REQUEST_TOPIC.format(imei=self.device.imei),
                STATUS_REQUEST_PAYLOAD,
                qos=MQTT_QOS,
            )

            self._client = client
            self._failures = 0
            self._set_state(ConnectionState.READY)
            _LOGGER.info("Device %s connected and subscribed", self.device.id)

            async for message in client.messages:
                self._frame_sink(self.device.id, message.payload)


class ConnectionHandle:
    """
    Capability for one device's connection.

    Resolves through the pool on every call, so it always reaches the
    current connection for the device, or fails if there is none.
    """

    def __init__(self, pool: "ConnectionPool", device_id: str) -> None:
        self._pool = pool
        self.device_id = device_id

    def __repr__(self) -> str:
        return f"ConnectionHandle(device_id={self.device_id!r}, state={self.state.value})"

    @property
    def state(self) -> ConnectionState:
        return self._pool.state(self.device_id)

    @property
    def is_ready(self) -> bool:
        return self.state is ConnectionState.READY

    async def publish(self, topic: str, payload: str | bytes, qos: int = MQTT_QOS) -> None:
        await self._pool.publish(self.device_id, topic, payload, qos)

    async def wait_ready(self, timeout: float | None = None) -> bool:
        return await self._pool.wait_ready(self.device_id, timeout)


class ConnectionPool:
    """Sole owner of every DeviceConnection; at most one per device id."""

    def __init__(
        self,
        session_manager: SessionManager,
        frame_sink: FrameSink,
        client_factory: ClientFactory | None = None,
        *,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
    ) -> None:
        self._session_manager = session_manager
        self._frame_sink = frame_sink
        self._client_factory = client_factory or MqttClientFactory()
        self._reconnect_interval = max(reconnect_interval, MIN_RECONNECT_INTERVAL)
        self._connections: dict[str, DeviceConnection] = {}
        self._listeners: list[StateListener] = []
        self._lock = asyncio.Lock()
        self._closed = False

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def ensure_connected(self, device: Device) -> ConnectionHandle:
        """
        Create or reuse the connection for *device*.

        An existing connection that is not live (or was opened for another
        IMEI) is closed before its replacement starts.
        """
        async with self._lock:
            if self._closed:
                raise ShutdownError("Connection pool is shut down")
            existing = self._connections.get(device.id)
            if existing is not None:
                if existing.state in LIVE_STATES and existing.device.imei == device.imei:
                    return ConnectionHandle(self, device.id)
                _LOGGER.debug(
                    "Replacing %s connection for device %s", existing.state.value, device.id
                )
                del self._connections[device.id]
                await existing.close()

            connection = DeviceConnection(
                device,
                self._session_manager,
                self._frame_sink,
                self._client_factory,
                reconnect_interval=self._reconnect_interval,
                on_state_change=self._notify,
            )
            self._connections[device.id] = connection
            connection.start()
            return ConnectionHandle(self, device.id)

    def handle(self, device_id: str) -> ConnectionHandle:
        return ConnectionHandle(self, device_id)

    def state(self, device_id: str) -> ConnectionState:
        if self._closed:
            return ConnectionState.CLOSED
        connection = self._connections.get(device_id)
        return connection.state if connection else ConnectionState.DISCONNECTED

    def states(self) -> dict[str, ConnectionState]:
        return {device_id: c.state for device_id, c in self._connections.items()}

    def is_ready(self, device_id: str) -> bool:
        connection = self._connections.get(device_id)
        return connection is not None and connection.is_ready

    async def publish(
        self, device_id: str, topic: str, payload: str | bytes, qos: int = MQTT_QOS
    ) -> None:
        """
        Publish through the device's connection. No retry.

        Raises:
            ShutdownError: the pool is shut down
            NetworkError: no Ready connection for the device, or the publish failed
        """
        if self._closed:
            raise ShutdownError("Connection pool is shut down")
        connection = self._connections.get(device_id)
        if connection is None:
            raise NetworkError(f"No connection for device {device_id}")
        await connection.publish(topic, payload, qos)

    async def wait_ready(self, device_id: str, timeout: float | None = None) -> bool:
        connection = self._connections.get(device_id)
        if connection is None:
            return False
        return await connection.wait_ready(timeout)

    async def remove(self, device_id: str) -> bool:
        """Close and forget the connection for *device_id*."""
        async with self._lock:
            connection = self._connections.pop(device_id, None)
        if connection is None:
            return False
        await connection.close()
        return True

    async def retain(self, device_ids: Iterable[str]) -> list[str]:
        """Close every connection whose device is not in *device_ids*."""
        keep = set(device_ids)
        removed = [d for d in list(self._connections) if d not in keep]
        for device_id in removed:
            await self.remove(device_id)
        return removed

    async def shutdown(self) -> None:
        """Close every connection; the pool cannot be used afterwards."""
        async with self._lock:
            self._closed = True
            connections = list(self._connections.values())
            self._connections.clear()
        await asyncio.gather(*(c.close() for c in connections), return_exceptions=True)
        _LOGGER.debug("Connection pool shut down (%s connection(s) closed)", len(connections))

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener(device_id, state)*; returns a remover."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _notify(self, device_id: str, state: ConnectionState) -> None:
        for listener in list(self._listeners):
            try:
                listener(device_id, state)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Connection state listener failed")
