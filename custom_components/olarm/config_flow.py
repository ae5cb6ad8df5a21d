"""Config flow for the Olarm integration."""
from __future__ import annotations
import logging
from typing import Any, Dict, Optional
import homeassistant.helpers.config_validation as cv
import voluptuous as vol

from homeassistant import config_entries
from homeassistant.core import callback

from .api.auth import post_federated_link, post_login
from .const import (
    CONF_COMMAND_TRANSPORT,
    CONF_ENTRY_NAME,
    CONF_PENDING_TIMEOUT,
    CONF_RECONNECT_INTERVAL,
    CONF_USER_EMAIL_PHONE,
    CONF_USER_PASS,
    DEFAULT_PENDING_TIMEOUT,
    DEFAULT_RECONNECT_INTERVAL,
    DOMAIN,
    MAX_RECONNECT_INTERVAL,
    MIN_RECONNECT_INTERVAL,
    TRANSPORT_HTTP,
    TRANSPORT_MQTT,
)
from .errors import AuthError
from .store import SessionStore

_LOGGER = logging.getLogger(__name__)

reconnect_seconds = vol.All(vol.Coerce(int), vol.Range(min=MIN_RECONNECT_INTERVAL, max=MAX_RECONNECT_INTERVAL))
pending_seconds = vol.All(vol.Coerce(int), vol.Range(min=5, max=600))

DEFAULTS = {
    CONF_ENTRY_NAME: "My Olarm Account",
    CONF_USER_EMAIL_PHONE: "",
    CONF_USER_PASS: "",
    CONF_COMMAND_TRANSPORT: TRANSPORT_MQTT,
    CONF_RECONNECT_INTERVAL: DEFAULT_RECONNECT_INTERVAL,
    CONF_PENDING_TIMEOUT: DEFAULT_PENDING_TIMEOUT,
}


def _build_schema(defaults: Dict[str, Any]) -> vol.Schema:
    return vol.Schema(
        {
            vol.Required(CONF_ENTRY_NAME, default=defaults[CONF_ENTRY_NAME]): cv.string,
            vol.Required(CONF_USER_EMAIL_PHONE, default=defaults[CONF_USER_EMAIL_PHONE]): cv.string,
            vol.Required(CONF_USER_PASS, default=defaults[CONF_USER_PASS]): cv.string,
            vol.Required(CONF_COMMAND_TRANSPORT, default=defaults[CONF_COMMAND_TRANSPORT]): vol.In(
                [TRANSPORT_MQTT, TRANSPORT_HTTP]
            ),
            vol.Required(CONF_RECONNECT_INTERVAL, default=defaults[CONF_RECONNECT_INTERVAL]): reconnect_seconds,
            vol.Required(CONF_PENDING_TIMEOUT, default=defaults[CONF_PENDING_TIMEOUT]): pending_seconds,
        }
    )


CONFIG_SCHEMA = _build_schema(DEFAULTS)

REAUTH_SCHEMA = vol.Schema({vol.Required(CONF_USER_PASS): cv.string})

CREDENTIAL_KEYS = (CONF_USER_EMAIL_PHONE, CONF_USER_PASS)


async def _validate_credentials(user_email_phone: str, user_pass: str) -> str | None:
    """
    Try a real login with the given credentials.

    Returns None on success, "invalid_auth" if the credentials are rejected,
    or "cannot_connect" for any other failure.
    """
    try:
        tokens = await post_login(user_email_phone, user_pass)
        await post_federated_link(tokens.access_token, user_email_phone, user_pass)
    except AuthError:
        return "invalid_auth"
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("Olarm credential check failed: %s", exc)
        return "cannot_connect"
    return None


def _check_required(user_input: Dict[str, Any], errors: Dict[str, str]) -> None:
    if not user_input.get(CONF_ENTRY_NAME):
        errors['base'] = 'entry_name_required'
    if not user_input.get(CONF_USER_EMAIL_PHONE):
        errors['base'] = 'email_required'
    if not user_input.get(CONF_USER_PASS):
        errors['base'] = 'password_required'


class CustomFlow(config_entries.ConfigFlow, domain=DOMAIN):
    VERSION = 1
    data: Optional[Dict[str, Any]]
    _reauth_entry: Optional[config_entries.ConfigEntry] = None

    async def async_step_user(self, user_input: Optional[Dict[str, Any]] = None):
        errors: Dict[str, str] = {}
        if user_input is not None:
            self.data = dict(user_input)
            _check_required(self.data, errors)
            if not errors:
                self._async_abort_entries_match({CONF_USER_EMAIL_PHONE: self.data[CONF_USER_EMAIL_PHONE]})
                error = await _validate_credentials(self.data[CONF_USER_EMAIL_PHONE], self.data[CONF_USER_PASS])
                if error:
                    errors['base'] = error
            if not errors:
                return self.async_create_entry(title=f"{self.data[CONF_ENTRY_NAME]}", data=self.data)

        return self.async_show_form(step_id="user", data_schema=CONFIG_SCHEMA, errors=errors)

    async def async_step_reauth(self, entry_data: Dict[str, Any]):
        """Olarm rejected the stored password; ask for a new one."""
        self._reauth_entry = self.hass.config_entries.async_get_entry(self.context["entry_id"])
        return await self.async_step_reauth_confirm()

    async def async_step_reauth_confirm(self, user_input: Optional[Dict[str, Any]] = None):
        errors: Dict[str, str] = {}
        entry = self._reauth_entry
        user_email_phone = {**entry.data, **entry.options}[CONF_USER_EMAIL_PHONE]

        if user_input is not None:
            if not user_input.get(CONF_USER_PASS):
                errors['base'] = 'password_required'
            else:
                error = await _validate_credentials(user_email_phone, user_input[CONF_USER_PASS])
                if error:
                    errors['base'] = error
            if not errors:
                await SessionStore(self.hass, entry.entry_id).async_remove()
                # Options saved by older versions may still carry the old password
                options = {k: v for k, v in entry.options.items() if k not in CREDENTIAL_KEYS}
                return self.async_update_reload_and_abort(
                    entry,
                    data={**entry.data, CONF_USER_EMAIL_PHONE: user_email_phone, CONF_USER_PASS: user_input[CONF_USER_PASS]},
                    options=options,
                )

        return self.async_show_form(
            step_id="reauth_confirm",
            data_schema=REAUTH_SCHEMA,
            description_placeholders={CONF_USER_EMAIL_PHONE: user_email_phone},
            errors=errors,
        )

    @staticmethod
    @callback
    def async_get_options_flow(config_entry):
        """Get the options flow for this handler."""
        return OptionsFlowHandler(config_entry)


class OptionsFlowHandler(config_entries.OptionsFlow):
    """Handles options flow for the component."""

    def __init__(self, config_entry: config_entries.ConfigEntry) -> None:
        self._config_entry = config_entry

    def _current_values(self) -> Dict[str, Any]:
        """Form defaults: options override entry data, which overrides DEFAULTS."""
        values = dict(DEFAULTS)
        for key in DEFAULTS:
            if key in self._config_entry.data:
                values[key] = self._config_entry.data[key]
            if key in self._config_entry.options:
                values[key] = self._config_entry.options[key]
        return values

    async def async_step_init(
        self, user_input: Dict[str, Any] = None
    ) -> Dict[str, Any]:
        errors: Dict[str, str] = {}

        if user_input is not None:
            _check_required(user_input, errors)
            if not errors:
                current = self._current_values()
                credentials_changed = any(user_input[key] != current[key] for key in CREDENTIAL_KEYS)
                if credentials_changed:
                    error = await _validate_credentials(
                        user_input[CONF_USER_EMAIL_PHONE], user_input[CONF_USER_PASS]
                    )
                    if error:
                        errors['base'] = error
            if not errors:
                if credentials_changed:
                    # Tokens stored for the entry belong to the old login
                    await SessionStore(self.hass, self._config_entry.entry_id).async_remove()
                new_data = {**self._config_entry.data, **self._config_entry.options, **user_input}
                # Settings live in data only; a single update means a single reload
                self.hass.config_entries.async_update_entry(
                    self._config_entry,
                    data=new_data,
                    title=new_data[CONF_ENTRY_NAME],
                    options={},
                )
                return self.async_create_entry(title="", data={})

        return self.async_show_form(
            step_id="init", data_schema=_build_schema(self._current_values()), errors=errors
        )
