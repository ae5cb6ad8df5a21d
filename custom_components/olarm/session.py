"""
SessionManager: owns the Olarm credential set.

Responsibilities:
- Load the persisted session at startup and persist it after every login,
  refresh and clear.
- Hand out a valid session via ensure_valid(), refreshing or logging in when
  the access token is missing or within TOKEN_SAFETY_MARGIN of expiry.
- Coalesce concurrent ensure_valid() callers onto one in-flight attempt
  (singleflight), so many connections needing a token trigger one network
  sequence.

Failure semantics:
- AuthError on refresh clears and persists the session, then exactly one
  login is attempted; a failing login is surfaced.
- NetworkError is surfaced without touching the stored session.

This is a pure asyncio component with no HA dependencies.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Callable

from .api.auth import TokenResponse, post_federated_link, post_login, post_refresh
from .const import TOKEN_SAFETY_MARGIN
from .errors import AuthError, ShutdownError
from .models import Credentials, Session
from .store import CredentialStore

_LOGGER = logging.getLogger(__name__)


class SessionManager:
    """Login, refresh and validity checking for one set of credentials."""

    def __init__(
        self,
        credentials: Credentials,
        store: CredentialStore,
        *,
        safety_margin: float = TOKEN_SAFETY_MARGIN,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credentials = credentials
        self._store = store
        self._safety_margin = safety_margin
        self._clock = clock
        self._session = Session.empty()
        # The single in-flight refresh/login attempt, shared by all callers
        self._inflight: asyncio.Task[Session] | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session:
        """The current session. Immutable; replaced wholesale on every change."""
        return self._session

    @property
    def closed(self) -> bool:
        return self._closed

    async def async_load(self) -> Session:
        """Load the persisted session, if any."""
        self._session = await self._store.async_load()
        if self._session.is_empty:
            _LOGGER.debug("No stored session, a login will be required")
        else:
            _LOGGER.debug("Loaded stored session (expires at %s)", self._session.expires_at)
        return self._session

    def is_valid(self, session: Session | None = None) -> bool:
        session = session or self._session
        return session.has_user and not session.expires_within(self._safety_margin, self._clock())

    async def ensure_valid(self) -> Session:
        """
        Return a session that is valid for at least TOKEN_SAFETY_MARGIN seconds.

        Concurrent callers share a single refresh/login attempt. Cancelling
        one caller does not cancel the shared attempt.
        """
        self._check_open()
        session = self._session
        if self.is_valid(session):
            return session

        task = self._inflight
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._refresh_or_login())
            task.add_done_callback(self._on_attempt_done)
            self._inflight = task
        else:
            _LOGGER.debug("Joining in-flight session refresh")

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled() and self._closed:
                raise ShutdownError("Session manager was shut down") from None
            raise

    async def login(self, credentials: Credentials | None = None) -> Session:
        """Exchange user credentials for a new session and persist it."""
        self._check_open()
        credentials = credentials or self._credentials
        _LOGGER.info("Logging in to Olarm")
        try:
            tokens = await post_login(credentials.user_email_phone, credentials.user_pass)
            user_index, user_id = await post_federated_link(
                tokens.access_token, credentials.user_email_phone, credentials.user_pass
            )
        except AuthError:
            _LOGGER.error("Olarm login rejected, check the configured credentials")
            if not self._session.is_empty:
                await self._set_session(Session.empty())
            raise

        session = self._session_from_tokens(tokens, user_index, user_id)
        await self._set_session(session)
        _LOGGER.info("Login successful (user index %s)", user_index)
        return session

    async def refresh(self, session: Session | None = None) -> Session:
        """
        Exchange the refresh token for a new token pair and persist it.

        A rejected refresh token clears (and persists) the session so the
        next ensure_valid() performs a full login.
        """
        self._check_open()
        session = session or self._session
        if not session.refresh_token:
            raise AuthError("No refresh token available")

        _LOGGER.debug("Refreshing access token")
        try:
            tokens = await post_refresh(session.refresh_token)
        except AuthError:
            _LOGGER.error("Token refresh rejected, clearing stored session")
            await self._set_session(Session.empty())
            raise

        # The old refresh token may already be spent, so keep the new pair
        # even if resolving the user fails below
        new_session = self._session_from_tokens(tokens, session.user_index, session.user_id)
        await self._set_session(new_session)
        _LOGGER.info("Access token refreshed")

        if not new_session.has_user:
            _LOGGER.warning("User index/ID missing after token refresh, resolving")
            user_index, user_id = await post_federated_link(
                tokens.access_token,
                self._credentials.user_email_phone,
                self._credentials.user_pass,
            )
            new_session = dataclasses.replace(new_session, user_index=user_index, user_id=user_id)
            await self._set_session(new_session)
        return new_session

    def invalidate(self, access_token: str | None) -> None:
        """
        Mark *access_token* as stale so the next ensure_valid() refreshes it.

        Ignored if the session has already moved on to a different token,
        so many connections failing on the same old token cause one refresh.
        """
        if not access_token or self._session.access_token != access_token:
            return
        _LOGGER.debug("Access token invalidated, will refresh on next use")
        self._session = dataclasses.replace(self._session, expires_at=0.0)

    async def close(self) -> None:
        """Cancel any in-flight attempt; later calls raise ShutdownError."""
        self._closed = True
        task = self._inflight
        self._inflight = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _refresh_or_login(self) -> Session:
        session = self._session
        if session.access_token and not session.expires_within(self._safety_margin, self._clock()):
            # Token is fine, only the user identifiers are missing
            user_index, user_id = await post_federated_link(
                session.access_token,
                self._credentials.user_email_phone,
                self._credentials.user_pass,
            )
            session = dataclasses.replace(session, user_index=user_index, user_id=user_id)
            await self._set_session(session)
            return session

        if session.refresh_token:
            try:
                return await self.refresh(session)
            except AuthError:
                _LOGGER.warning("Falling back to a full login")
        return await self.login()

    def _session_from_tokens(self, tokens: TokenResponse, user_index: int | None, user_id: str | None) -> Session:
        return Session(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
            user_index=user_index,
            user_id=user_id,
        )

    async def _set_session(self, session: Session) -> None:
        self._session = session
        try:
            await self._store.async_save(session)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Failed to persist session: %s", exc)

    def _on_attempt_done(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark the exception as retrieved even if every waiter went away
            task.exception()

    def _check_open(self) -> None:
        if self._closed:
            raise ShutdownError("Session manager was shut down")
