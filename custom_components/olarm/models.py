"""
Domain models for the Olarm integration.

This module contains pure data classes representing Olarm entities.
These classes have no dependencies on HTTP, MQTT, or Home Assistant internals.
All of them are immutable; updates always produce a new instance.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import time

_LOGGER = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Credentials:
    """User credentials exchanged for a session on login."""

    user_email_phone: str
    user_pass: str

    def __repr__(self) -> str:
        return f"Credentials(user_email_phone={self.user_email_phone!r}, user_pass='***')"


@dataclasses.dataclass(frozen=True)
class Session:
    """
    Current credential set.

    A cleared session has every field empty at once; a session with an
    access token always carries an expiry (epoch seconds).
    """

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: float | None = None
    user_index: int | None = None
    user_id: str | None = None

    def __post_init__(self) -> None:
        if self.access_token and self.expires_at is None:
            raise ValueError("A session with an access token must have an expiry")

    def __repr__(self) -> str:
        return (
            f"Session(access_token={'***' if self.access_token else None}, "
            f"refresh_token={'***' if self.refresh_token else None}, "
            f"expires_at={self.expires_at}, user_index={self.user_index}, user_id={self.user_id!r})"
        )

    @classmethod
    def empty(cls) -> "Session":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.access_token and not self.refresh_token

    @property
    def has_user(self) -> bool:
        return self.user_index is not None and self.user_id is not None

    def expires_within(self, margin: float, now: float | None = None) -> bool:
        """True if the access token is missing or expires within *margin* seconds."""
        if not self.access_token or self.expires_at is None:
            return True
        if now is None:
            now = time.time()
        return now >= self.expires_at - margin

    def to_dict(self) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "tokenExpiration": self.expires_at,
            "userIndex": self.user_index,
            "userId": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "Session":
        """
        Build a Session from a persisted record.

        Records that are partial (token without expiry, access token without
        refresh token) or of the wrong types load as an empty session, so a
        half-written file never produces a half-valid session.
        """
        if not isinstance(data, dict):
            return cls.empty()
        access_token = data.get("accessToken")
        refresh_token = data.get("refreshToken")
        expires_at = data.get("tokenExpiration")
        user_index = data.get("userIndex")
        user_id = data.get("userId")

        if not isinstance(access_token, str) or not access_token:
            return cls.empty()
        if not isinstance(refresh_token, str) or not refresh_token:
            return cls.empty()
        if not isinstance(expires_at, (int, float)) or isinstance(expires_at, bool):
            return cls.empty()
        if not isinstance(user_index, int) or isinstance(user_index, bool):
            user_index = None
        if not isinstance(user_id, str):
            user_id = None

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=float(expires_at),
            user_index=user_index,
            user_id=user_id,
        )


@dataclasses.dataclass(frozen=True)
class Device:
    """One Olarm communicator unit. *imei* is its hardware identifier."""

    id: str
    imei: str
    name: str | None = None


class AreaState(str, enum.Enum):
    """Arm state of one area; values are the strings the panel reports."""

    ARMED = "arm"
    DISARMED = "disarm"
    ARMED_STAY = "stay"
    ARMED_SLEEP = "sleep"
    NOT_READY = "notready"
    TRIGGERED = "activated"


class AreaAction(str, enum.Enum):
    """Area command; values are the action strings the panel accepts."""

    ARM = "area-arm"
    STAY = "area-stay"
    SLEEP = "area-sleep"
    DISARM = "area-disarm"

    @property
    def target_state(self) -> AreaState:
        return _ACTION_TARGET_STATES[self]


_ACTION_TARGET_STATES = {
    AreaAction.ARM: AreaState.ARMED,
    AreaAction.STAY: AreaState.ARMED_STAY,
    AreaAction.SLEEP: AreaState.ARMED_SLEEP,
    AreaAction.DISARM: AreaState.DISARMED,
}


@dataclasses.dataclass(frozen=True)
class Area:
    """One independently armable zone; identity is (device_id, area_number)."""

    device_id: str
    area_number: int
    name: str
    state: AreaState

    @property
    def key(self) -> tuple[str, int]:
        return self.device_id, self.area_number


@dataclasses.dataclass(frozen=True)
class ChangeSet:
    """Result of applying one frame: the device's areas and whether they changed."""

    device_id: str
    state_changed: bool
    areas: tuple[Area, ...] = ()


@dataclasses.dataclass(frozen=True)
class CommandRequest:
    """A caller's request to change one area's arm state."""

    device_id: str
    area_number: int
    action: AreaAction


class ConnectionState(str, enum.Enum):
    """Lifecycle of one device's pub/sub connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SUBSCRIBING = "subscribing"
    READY = "ready"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
