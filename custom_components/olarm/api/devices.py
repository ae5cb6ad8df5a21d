"""
Low-level device calls against the Olarm legacy API.

Responsible for:
- Fetching the user's device list and mapping it onto Device models
- Carrying each device's profile area labels and current area states
- Posting an area action over HTTP (alternate command path)
"""
import logging
from dataclasses import dataclass

from custom_components.olarm.api.auth import get_standard_headers
from custom_components.olarm.const import LEGACY_API_URL
from custom_components.olarm.errors import ApiResponseError, NotFoundError, ProtocolError
from custom_components.olarm.models import AreaAction, Device
from custom_components.olarm.requests import make_request

_LOGGER = logging.getLogger(__name__)

# The legacy API has shipped several spellings for the same fields
_NAME_KEYS = ("deviceName", "name", "deviceAlarmName")
_PROFILE_KEYS = ("deviceProfile", "profile")
_STATE_KEYS = ("deviceState", "state")


@dataclass(frozen=True)
class DeviceRecord:
    """A device plus the area data the device list reports for it."""

    device: Device
    area_labels: tuple[str, ...] = ()
    area_states: tuple[str, ...] = ()


def _first(mapping: dict, keys: tuple[str, ...]):
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None


def _string_list(value) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple("" if item is None else str(item) for item in value)


def _parse_device(raw: dict) -> DeviceRecord | None:
    """Map a single raw API device dict onto a DeviceRecord."""
    device_id = raw.get("id") or raw.get("deviceId")
    imei = raw.get("IMEI") or raw.get("imei")
    if not device_id or not imei:
        _LOGGER.warning("Device entry without id/IMEI, skipping: %s", sorted(raw.keys()))
        return None

    profile = _first(raw, _PROFILE_KEYS)
    state = _first(raw, _STATE_KEYS)
    labels = _string_list(profile.get("areasLabels")) if isinstance(profile, dict) else ()
    states = _string_list(state.get("areas")) if isinstance(state, dict) else ()
    name = _first(raw, _NAME_KEYS)

    return DeviceRecord(
        device=Device(id=str(device_id), imei=str(imei), name=str(name) if name else None),
        area_labels=labels,
        area_states=states,
    )


async def fetch_devices(access_token: str, user_index: int) -> list[DeviceRecord]:
    """
    Fetch all devices visible to the user.

    Corresponding CURL command:
    curl -X 'GET' 'https://api-legacy.olarm.com/api/v2/users/USER_INDEX' \\
      -H 'Authorization: Bearer TOKEN'
    """
    url = f"{LEGACY_API_URL}users/{user_index}"
    raw_json = await make_request("GET", url, get_standard_headers(access_token))

    if not isinstance(raw_json, dict) or not isinstance(raw_json.get("devices"), list):
        raise ProtocolError(f"Unexpected device list response: {type(raw_json).__name__}")

    parsed = [_parse_device(d) for d in raw_json["devices"] if isinstance(d, dict)]
    records = [r for r in parsed if r is not None]
    _LOGGER.debug("Fetched %s device(s)", len(records))
    return records


async def post_device_action(
    access_token: str, device_id: str, action: AreaAction, area_number: int
) -> None:
    """
    Send an area action through the HTTP API instead of the pub/sub connection.

    Corresponding CURL command:
    curl -X 'POST' 'https://api-legacy.olarm.com/api/v2/devices/DEVICE_ID/actions' \\
      -H 'Authorization: Bearer TOKEN' -H 'Content-Type: application/json' \\
      -d '{"actionCmd": "area-disarm", "actionNum": 1}'
    """
    url = f"{LEGACY_API_URL}devices/{device_id}/actions"
    headers = get_standard_headers(access_token)
    headers["Content-Type"] = "application/json"
    payload = {"actionCmd": action.value, "actionNum": area_number}
    try:
        await make_request("POST", url, headers, payload=payload, max_attempts=1)
    except ApiResponseError as e:
        if e.status == 404:
            raise NotFoundError(f"Device {device_id} not found") from e
        raise
