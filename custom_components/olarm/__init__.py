"""The Olarm integration."""
import logging

from homeassistant import config_entries, core
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant

from .const import DOMAIN
from .coordinator import OlarmCoordinator
from .store import SessionStore

PLATFORMS: list[Platform] = [Platform.ALARM_CONTROL_PANEL]
_LOGGER = logging.getLogger(__name__)


async def async_setup(hass: core.HomeAssistant, config: dict) -> bool:
    """Set up the integration."""
    hass.data.setdefault(DOMAIN, {})
    return True


async def async_setup_entry(
    hass: core.HomeAssistant, entry: config_entries.ConfigEntry
) -> bool:
    """Set up the engine and platforms from a ConfigEntry."""
    entry_data = {**entry.data, **entry.options}
    coordinator = OlarmCoordinator(hass, entry_data, entry.entry_id)

    try:
        # Raises ConfigEntryNotReady on network failure, ConfigEntryAuthFailed on bad credentials
        await coordinator.async_config_entry_first_refresh()
    except Exception:
        await coordinator.async_shutdown()
        raise

    entry.runtime_data = coordinator
    entry.async_on_unload(
        entry.add_update_listener(_async_update_listener)
    )

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    return True


async def _async_update_listener(hass: HomeAssistant, config_entry):
    """Handle config options update."""
    # Reload the integration when the options change.
    await hass.config_entries.async_reload(config_entry.entry_id)


async def async_unload_entry(
    hass: core.HomeAssistant, entry: config_entries.ConfigEntry
) -> bool:
    """Unload a config entry and close every connection."""
    unloaded = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unloaded:
        coordinator: OlarmCoordinator = entry.runtime_data
        await coordinator.async_shutdown()
    return unloaded


async def async_remove_entry(
    hass: core.HomeAssistant, entry: config_entries.ConfigEntry
) -> None:
    """Drop the persisted session when the entry is deleted."""
    await SessionStore(hass, entry.entry_id).async_remove()
    _LOGGER.debug("Removed stored session for entry %s", entry.entry_id)
