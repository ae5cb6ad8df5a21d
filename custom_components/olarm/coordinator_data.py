"""
CoordinatorData: immutable snapshot of all Olarm data shared with entities.

This is a pure data module with no HA or network dependencies.
"""
from __future__ import annotations

import dataclasses

from .models import Area, ConnectionState, Device


@dataclasses.dataclass(frozen=True)
class CoordinatorData:
    """
    Typed, copy-on-write snapshot of all Olarm data.

    Always replace via dataclasses.replace(), never mutate in place.
    """

    # All devices in the account
    devices: list[Device] = dataclasses.field(default_factory=list)

    # (device_id, area_number) → Area
    areas: dict[tuple[str, int], Area] = dataclasses.field(default_factory=dict)

    # device_id → state of its pub/sub connection
    connection_states: dict[str, ConnectionState] = dataclasses.field(default_factory=dict)

    def get_device(self, device_id: str) -> Device | None:
        for device in self.devices:
            if device.id == device_id:
                return device
        return None

    def get_area(self, device_id: str, area_number: int) -> Area | None:
        return self.areas.get((device_id, area_number))
