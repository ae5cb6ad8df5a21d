"""
Low-level authentication calls for the Olarm auth API.

Responsible for:
- Exchanging user credentials for an access/refresh token pair
- Resolving the user index and user id tied to an access token
- Exchanging a refresh token for a new token pair
- Building the standard authorization headers used by all API calls

Session bookkeeping (caching, persistence, coalescing) lives in session.py.
"""
import logging
import time

from custom_components.olarm.const import (
    ABSOLUTE_EXPIRY_THRESHOLD,
    CAPTCHA_TOKEN,
    DEFAULT_TOKEN_TTL,
    FEDERATED_LINK_URL,
    LOGIN_URL,
    REFRESH_URL,
)
from custom_components.olarm.errors import ApiResponseError, AuthError, ProtocolError
from custom_components.olarm.requests import make_request

_LOGGER = logging.getLogger(__name__)

FORM_HEADERS = {
    "accept": "application/json",
    "Content-Type": "application/x-www-form-urlencoded",
}

# Status codes with which the auth server rejects a credential outright
REJECTED_STATUSES = (400, 401, 403)


class TokenResponse:
    """Parsed response from the login and refresh endpoints."""

    access_token: str
    refresh_token: str
    expires_at: float

    def __init__(self, json: dict, now: float | None = None) -> None:
        if not isinstance(json, dict) or not json.get("oat") or not json.get("ort"):
            raise ProtocolError(f"Token response is missing oat/ort: {_redact(json)}")
        self.access_token = json["oat"]
        self.refresh_token = json["ort"]
        self.expires_at = parse_expiry(json.get("oatExpire"), now)

    def __str__(self) -> str:
        return f"access_token: ***, refresh_token: ***, expires_at: {self.expires_at}"


def parse_expiry(value, now: float | None = None) -> float:
    """
    Turn the server's oatExpire into an absolute epoch timestamp.

    The auth server has sent both an absolute epoch (seconds) and a relative
    lifetime; anything past ABSOLUTE_EXPIRY_THRESHOLD is taken as absolute.
    A missing or malformed value falls back to DEFAULT_TOKEN_TTL.
    """
    if now is None:
        now = time.time()
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        _LOGGER.debug("Token expiry missing or malformed (%r), assuming %ss", value, DEFAULT_TOKEN_TTL)
        return now + DEFAULT_TOKEN_TTL
    if value >= ABSOLUTE_EXPIRY_THRESHOLD:
        return float(value)
    return now + float(value)


def _redact(json) -> object:
    if not isinstance(json, dict):
        return json
    return {k: ("***" if k in ("oat", "ort") else v) for k, v in json.items()}


async def post_login(user_email_phone: str, user_pass: str) -> TokenResponse:
    """
    Exchange user credentials for a token pair.

    Corresponding CURL command:
    curl -X 'POST' 'https://auth.olarm.com/api/v4/oauth/login/mobile' \\
      -H 'Content-Type: application/x-www-form-urlencoded' \\
      -d 'userEmailPhone=EMAIL&userPass=PASSWORD'
    """
    form = {
        "userEmailPhone": user_email_phone,
        "userPass": user_pass,
    }
    try:
        json_response = await make_request("POST", LOGIN_URL, dict(FORM_HEADERS), data=form)
    except ApiResponseError as e:
        if e.status in REJECTED_STATUSES:
            raise AuthError(f"Login rejected: HTTP {e.status}", status=e.status) from e
        raise
    return TokenResponse(json_response)


async def post_federated_link(
    access_token: str, user_email_phone: str, user_pass: str
) -> tuple[int, str]:
    """
    Resolve the numeric user index and opaque user id for an access token.

    Corresponding CURL command:
    curl -X 'POST' 'https://auth.olarm.com/api/v4/oauth/federated-link-existing?oat=TOKEN' \\
      -H 'Content-Type: application/x-www-form-urlencoded' \\
      -d 'userEmailPhone=EMAIL&userPass=PASSWORD&captchaToken=olarmapp'
    """
    form = {
        "userEmailPhone": user_email_phone,
        "userPass": user_pass,
        "captchaToken": CAPTCHA_TOKEN,
    }
    try:
        json_response = await make_request(
            "POST", FEDERATED_LINK_URL, dict(FORM_HEADERS), params={"oat": access_token}, data=form
        )
    except ApiResponseError as e:
        if e.status in REJECTED_STATUSES:
            raise AuthError(f"Federated link rejected: HTTP {e.status}", status=e.status) from e
        raise

    if not isinstance(json_response, dict):
        raise ProtocolError(f"Unexpected federated link response: {json_response}")
    user_index = json_response.get("userIndex")
    user_id = json_response.get("userId")
    if user_index is None or user_id is None:
        raise ProtocolError(f"User index/ID missing in federated link response: {json_response}")
    try:
        user_index = int(user_index)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"User index is not numeric: {user_index!r}") from e
    _LOGGER.debug("Resolved user index %s", user_index)
    return user_index, str(user_id)


async def post_refresh(refresh_token: str) -> TokenResponse:
    """
    Exchange a refresh token for a new token pair.

    Corresponding CURL command:
    curl -X 'POST' 'https://auth.olarm.com/api/v4/oauth/refresh' \\
      -H 'Content-Type: application/x-www-form-urlencoded' \\
      -d 'ort=REFRESH_TOKEN'
    """
    try:
        json_response = await make_request(
            "POST", REFRESH_URL, dict(FORM_HEADERS), data={"ort": refresh_token}
        )
    except ApiResponseError as e:
        if e.status in REJECTED_STATUSES:
            raise AuthError(f"Refresh token rejected: HTTP {e.status}", status=e.status) from e
        raise
    return TokenResponse(json_response)


def get_standard_headers(token: str) -> dict:
    """
    Build the standard HTTP headers used by all authenticated Olarm API requests.

    :param token: Access token obtained from :func:`post_login` or :func:`post_refresh`.
    :return: Dictionary of HTTP headers.
    """
    return {
        "accept": "application/json",
        "Authorization": f"Bearer {token}",
    }
