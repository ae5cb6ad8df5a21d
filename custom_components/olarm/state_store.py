"""
StateStore: canonical in-memory table of per-device, per-area state.

The only writer is apply_frame(). Each update swaps in a fresh mapping, so a
reader holding a snapshot never observes a half-updated device.

This is a pure component with no HA or network dependencies.
"""
from __future__ import annotations

import json
import logging
from types import MappingProxyType
from typing import Any, Callable, Mapping

from .const import ALARM_PAYLOAD_TYPE
from .errors import ProtocolError
from .models import Area, AreaState, ChangeSet

_LOGGER = logging.getLogger(__name__)

_STATE_TABLE: dict[str, AreaState] = {
    "arm": AreaState.ARMED,
    "disarm": AreaState.DISARMED,
    "stay": AreaState.ARMED_STAY,
    "sleep": AreaState.ARMED_SLEEP,
    "notready": AreaState.NOT_READY,
    "not ready": AreaState.NOT_READY,
    "activated": AreaState.TRIGGERED,
    "alarm": AreaState.TRIGGERED,
}

ChangeListener = Callable[[ChangeSet], None]


def normalize_state(value: Any) -> AreaState:
    """Map a panel state string onto AreaState; unknown strings become NOT_READY."""
    key = value.strip().lower() if isinstance(value, str) else None
    state = _STATE_TABLE.get(key) if key is not None else None
    if state is None:
        _LOGGER.warning("Unknown area state %r, treating it as not ready", value)
        return AreaState.NOT_READY
    return state


def area_name(names: list | tuple | None, area_number: int, count: int) -> str:
    """Name for a 1-based area; synthetic when the names list does not line up."""
    if names is not None and len(names) == count:
        name = names[area_number - 1]
        if isinstance(name, str) and name.strip():
            return name.strip()
    return f"Area {area_number}"


def parse_frame(device_id: str, raw: Any) -> tuple[Area, ...]:
    """
    Parse one inbound frame into the device's full area list.

    Accepts bytes, str or an already decoded dict. Raises ProtocolError for
    anything that is not an alarm payload carrying an area-state list.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError("Frame is not valid UTF-8") from e
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ProtocolError(f"Frame is not JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ProtocolError(f"Frame is not an object: {type(raw).__name__}")
    if raw.get("type") != ALARM_PAYLOAD_TYPE:
        raise ProtocolError(f"Ignoring frame of type {raw.get('type')!r}")

    data = raw.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("areas"), list):
        raise ProtocolError("Alarm payload without an area list")

    states = data["areas"]
    names = data.get("areasDetail")
    if not isinstance(names, list):
        names = None

    return tuple(
        Area(
            device_id=device_id,
            area_number=index,
            name=area_name(names, index, len(states)),
            state=normalize_state(state),
        )
        for index, state in enumerate(states, start=1)
    )


class StateStore:
    """Per-device area table with change detection and listeners."""

    def __init__(self) -> None:
        # device_id → tuple of Areas ordered by area number; replaced, never mutated
        self._areas: Mapping[str, tuple[Area, ...]] = MappingProxyType({})
        self._listeners: list[ChangeListener] = []

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def apply_frame(self, device_id: str, raw: Any) -> ChangeSet:
        """
        Apply one frame for *device_id* and report whether anything changed.

        Invalid or irrelevant frames are logged and dropped; they yield an
        unchanged ChangeSet with the device's current areas.
        """
        try:
            areas = parse_frame(device_id, raw)
        except ProtocolError as exc:
            _LOGGER.debug("Dropping frame for device %s: %s", device_id, exc)
            return ChangeSet(device_id, False, self._areas.get(device_id, ()))
        return self.replace_areas(device_id, areas)

    def replace_areas(self, device_id: str, areas: tuple[Area, ...]) -> ChangeSet:
        """Swap in *areas* as the device's full area list and notify on change."""
        previous = self._areas.get(device_id)
        changed = previous != areas
        if changed:
            table = dict(self._areas)
            table[device_id] = areas
            self._areas = MappingProxyType(table)
            _LOGGER.debug(
                "Device %s areas changed: %s",
                device_id, ", ".join(f"{a.name}={a.state.value}" for a in areas),
            )
        change = ChangeSet(device_id=device_id, state_changed=changed, areas=areas)
        if changed:
            self._notify(change)
        return change

    def remove_device(self, device_id: str) -> bool:
        """Forget every area of *device_id*. Returns True if it was known."""
        if device_id not in self._areas:
            return False
        table = dict(self._areas)
        del table[device_id]
        self._areas = MappingProxyType(table)
        _LOGGER.debug("Removed areas of device %s", device_id)
        self._notify(ChangeSet(device_id=device_id, state_changed=True, areas=()))
        return True

    def retain(self, device_ids) -> list[str]:
        """Remove every device not in *device_ids*; returns the removed ids."""
        keep = set(device_ids)
        removed = [d for d in self._areas if d not in keep]
        for device_id in removed:
            self.remove_device(device_id)
        return removed

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def snapshot(self) -> list[Area]:
        """Every known area, ordered by device then area number."""
        table = self._areas
        return [area for device_id in sorted(table) for area in table[device_id]]

    def as_mapping(self) -> Mapping[tuple[str, int], Area]:
        table = self._areas
        return MappingProxyType({area.key: area for areas in table.values() for area in areas})

    def areas_for(self, device_id: str) -> tuple[Area, ...] | None:
        """The device's areas, or None if no valid frame has arrived for it yet."""
        return self._areas.get(device_id)

    def get_area(self, device_id: str, area_number: int) -> Area | None:
        for area in self._areas.get(device_id, ()):
            if area.area_number == area_number:
                return area
        return None

    @property
    def device_ids(self) -> list[str]:
        return list(self._areas)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register *listener* for change notifications; returns a remover."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self, change: ChangeSet) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("State change listener failed")
