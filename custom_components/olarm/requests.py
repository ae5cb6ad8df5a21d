"""
Low-level HTTP request library for Olarm API communication.
This module handles all HTTP requests with automatic retry logic and maps
HTTP failures onto the integration's error taxonomy.
"""
import asyncio
import logging
import aiohttp

from custom_components.olarm.errors import ApiResponseError, AuthError, NetworkError


_LOGGER = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5  # seconds, multiplied by attempt number for each retry
REQUEST_ATTEMPTS = 3  # maximum number of retry attempts
AUTH_STATUSES = (401, 403)


async def make_request(
    method: str,
    url: str,
    headers: dict,
    payload: dict = None,
    params: dict = None,
    data: dict = None,
    timeout: int = REQUEST_TIMEOUT,
    max_attempts: int = REQUEST_ATTEMPTS,
):
    """
    Make an HTTP request with automatic retry on timeout.

    Args:
        method: HTTP method (GET, POST, PUT)
        url: Target URL for the request
        headers: HTTP headers dictionary
        payload: JSON body (optional)
        params: URL query parameters (optional)
        data: form-encoded body (optional, mutually exclusive with payload)
        timeout: Base timeout in seconds (multiplied by attempt number for each retry)
        max_attempts: Maximum number of retry attempts

    Returns:
        Parsed JSON response (or None for an empty successful body)

    Raises:
        AuthError: on HTTP 401/403
        ApiResponseError: on any other non-2xx status
        NetworkError: on connection failures and when all attempts time out
    """
    method = method.upper()
    if method not in ("GET", "POST", "PUT"):
        raise ValueError(f"Unsupported HTTP method: {method}")

    for attempt in range(max_attempts):
        # Timeout grows with each attempt
        timeout_config = aiohttp.ClientTimeout(total=timeout * (attempt + 1))
        try:
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.request(
                    method, url, headers=headers, json=payload, params=params, data=data
                ) as response:
                    return await _process_response(response, url)

        except (asyncio.TimeoutError, TimeoutError) as e:
            if attempt < max_attempts - 1:
                _LOGGER.debug("Timeout on %s %s (attempt %s), retrying", method, url, attempt + 1)
                continue
            _LOGGER.warning(
                "Timeout on %s request to %s after %s attempts",
                method, url, max_attempts
            )
            raise NetworkError(f"Timeout on {method} {url}") from e

        except aiohttp.ClientError as e:
            # Connection level errors are not retried here; the caller owns the policy
            raise NetworkError(f"{method} {url} failed: {e}") from e

    raise NetworkError(f"{method} {url} failed after {max_attempts} attempts")


async def _process_response(response, url: str):
    """
    Process HTTP response and extract JSON data.

    Args:
        response: aiohttp response object
        url: Request URL (for logging)

    Returns:
        Parsed JSON response

    Raises:
        AuthError: on HTTP 401/403
        ApiResponseError: on other error statuses, or a non-JSON success body
    """
    content_type = response.headers.get('Content-Type', '')

    if 200 <= response.status < 300:
        if 'application/json' in content_type:
            return await response.json()
        text = await response.text()
        if not text:
            return None
        _LOGGER.warning(
            "Unexpected content type in successful response: %s (status %s) from %s",
            content_type, response.status, url
        )
        raise ApiResponseError(response.status, text[:200])

    if 'application/json' in content_type:
        try:
            body = await response.json()
        except (aiohttp.ContentTypeError, ValueError) as e:
            _LOGGER.error(
                "Failed to parse error response as JSON from %s: %s (status %s)",
                url, e, response.status
            )
            body = None
    else:
        body = (await response.text())[:500]
        _LOGGER.debug(
            "Received non-JSON error response from %s: status %s, content-type: %s",
            url, response.status, content_type
        )

    if response.status in AUTH_STATUSES:
        raise AuthError(f"HTTP {response.status} from {url}: {body}", status=response.status)
    raise ApiResponseError(response.status, body)
