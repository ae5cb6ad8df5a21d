"""
Platform for Olarm area alarm control panels.

One entity per area. Commands are confirmed asynchronously: after a command
the entity shows an optimistic target (arming/disarming) until the panel
reports the matching state, and rolls back if the command could not be
sent or the panel does not confirm within the pending timeout.
"""
from __future__ import annotations

import logging
from typing import Any

from homeassistant import config_entries
from homeassistant.components.alarm_control_panel import (
    AlarmControlPanelEntity,
    AlarmControlPanelEntityFeature,
    AlarmControlPanelState,
)
from homeassistant.core import CALLBACK_TYPE, HomeAssistant, callback
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.event import async_call_later
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import CONF_PENDING_TIMEOUT, DEFAULT_PENDING_TIMEOUT
from .coordinator import OlarmCoordinator
from .errors import OlarmError
from .models import Area, AreaAction, AreaState

_LOGGER = logging.getLogger(__name__)

AREA_STATE_TO_HA = {
    AreaState.ARMED: AlarmControlPanelState.ARMED_AWAY,
    AreaState.ARMED_STAY: AlarmControlPanelState.ARMED_HOME,
    AreaState.ARMED_SLEEP: AlarmControlPanelState.ARMED_NIGHT,
    AreaState.DISARMED: AlarmControlPanelState.DISARMED,
    AreaState.NOT_READY: AlarmControlPanelState.DISARMED,
    AreaState.TRIGGERED: AlarmControlPanelState.TRIGGERED,
}


class OlarmAreaAlarmControlPanel(CoordinatorEntity[OlarmCoordinator], AlarmControlPanelEntity):
    """
    Representation of one Olarm area.
    Takes its state from the coordinator snapshot; commands go through
    OlarmCoordinator.async_dispatch.
    """

    _attr_has_entity_name = True
    _attr_code_arm_required = False
    _attr_supported_features = (
        AlarmControlPanelEntityFeature.ARM_AWAY
        | AlarmControlPanelEntityFeature.ARM_HOME
        | AlarmControlPanelEntityFeature.ARM_NIGHT
    )

    def __init__(self, coordinator: OlarmCoordinator, area: Area) -> None:
        super().__init__(coordinator)
        self._device_id = area.device_id
        self._area_number = area.area_number
        self._attr_name = area.name
        self._attr_unique_id = f"olarm_{area.device_id}_area_{area.area_number}"
        self._attr_device_info = coordinator.get_device_info(area.device_id)
        # Optimistic target set by a command, cleared on confirmation or rollback
        self._pending_action: AreaAction | None = None
        self._cancel_pending: CALLBACK_TYPE | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def area(self) -> Area | None:
        return self.coordinator.data.get_area(self._device_id, self._area_number)

    @property
    def pending_action(self) -> AreaAction | None:
        return self._pending_action

    @property
    def available(self) -> bool:
        return (
            super().available
            and self.area is not None
            and self.coordinator.is_device_available(self._device_id)
        )

    @property
    def alarm_state(self) -> AlarmControlPanelState | None:
        area = self.area
        if area is None:
            return None
        if self._pending_action is not None and area.state is not AreaState.TRIGGERED:
            if self._pending_action is AreaAction.DISARM:
                return AlarmControlPanelState.DISARMING
            return AlarmControlPanelState.ARMING
        return AREA_STATE_TO_HA[area.state]

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        area = self.area
        return {
            "device_id": self._device_id,
            "area_number": self._area_number,
            "panel_state": area.state.value if area else None,
            "target_state": self._pending_action.target_state.value if self._pending_action else None,
        }

    @callback
    def _handle_coordinator_update(self) -> None:
        area = self.area
        if self._pending_action is not None and area is not None:
            if area.state is self._pending_action.target_state:
                _LOGGER.debug("Area %s/%s confirmed %s", self._device_id, self._area_number, area.state.value)
                self._clear_pending()
            elif area.state is AreaState.TRIGGERED:
                self._clear_pending()
            # NOT_READY keeps the pending target; the panel may still get there
        if area is not None and area.name != self._attr_name:
            self._attr_name = area.name
        super()._handle_coordinator_update()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def async_alarm_arm_away(self, code: str | None = None) -> None:
        await self._async_send(AreaAction.ARM)

    async def async_alarm_arm_home(self, code: str | None = None) -> None:
        await self._async_send(AreaAction.STAY)

    async def async_alarm_arm_night(self, code: str | None = None) -> None:
        await self._async_send(AreaAction.SLEEP)

    async def async_alarm_disarm(self, code: str | None = None) -> None:
        await self._async_send(AreaAction.DISARM)

    async def _async_send(self, action: AreaAction) -> None:
        area = self.area
        if area is not None and area.state is action.target_state and self._pending_action is None:
            _LOGGER.info("Area %s/%s already %s, nothing to send", self._device_id, self._area_number, area.state.value)
            return

        self._set_pending(action)
        try:
            await self.coordinator.async_dispatch(self._device_id, self._area_number, action)
        except OlarmError as exc:
            _LOGGER.error(
                "Failed to send %s to area %s/%s: %s",
                action.value, self._device_id, self._area_number, exc,
            )
            self._clear_pending()
            self.async_write_ha_state()
            raise HomeAssistantError(f"Olarm command failed: {exc}") from exc

    def _set_pending(self, action: AreaAction) -> None:
        self._clear_pending()
        self._pending_action = action
        timeout = self.coordinator.entry_data.get(CONF_PENDING_TIMEOUT, DEFAULT_PENDING_TIMEOUT)
        self._cancel_pending = async_call_later(self.hass, timeout, self._async_pending_expired)
        self.async_write_ha_state()

    @callback
    def _async_pending_expired(self, _now) -> None:
        self._cancel_pending = None
        if self._pending_action is None:
            return
        _LOGGER.warning(
            "Area %s/%s did not confirm %s in time, reverting",
            self._device_id, self._area_number, self._pending_action.value,
        )
        self._pending_action = None
        self.async_write_ha_state()

    def _clear_pending(self) -> None:
        self._pending_action = None
        if self._cancel_pending is not None:
            self._cancel_pending()
            self._cancel_pending = None

    async def async_will_remove_from_hass(self) -> None:
        self._clear_pending()
        await super().async_will_remove_from_hass()


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add an alarm control panel per area, including areas that appear later."""
    coordinator: OlarmCoordinator = config_entry.runtime_data
    known: set[tuple[str, int]] = set()

    @callback
    def _async_add_areas() -> None:
        entities = []
        for key, area in coordinator.data.areas.items():
            if key in known:
                continue
            known.add(key)
            entities.append(OlarmAreaAlarmControlPanel(coordinator, area))
        if entities:
            _LOGGER.debug("Adding %s area entities", len(entities))
            async_add_entities(entities)

    _async_add_areas()
    config_entry.async_on_unload(coordinator.async_add_listener(_async_add_areas))
