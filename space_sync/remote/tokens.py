"""
Token Lifecycle Manager — keeps the bearer token ahead of its expiry.

States:
  DISCONNECTED → CONNECTED → REFRESHING → CONNECTED
                             REFRESHING → DISCONNECTED (refresh failed)

A periodic check asks whether the token is inside the refresh threshold.
If so it refreshes; on failure the token is dropped so dependent calls
fail fast with AuthExpired instead of sending a stale token.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Protocol

from space_sync.errors import AuthExpired, RemoteError
from space_sync.models.config import TokenConfig
from space_sync.models.remote import TokenSet

logger = logging.getLogger(__name__)


class TokenState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    REFRESHING = "refreshing"


class TokenAuthenticator(Protocol):
    async def login(self) -> TokenSet:
        ...

    async def refresh(self, refresh_token: str) -> TokenSet:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenLifecycleManager:
    """Owns the current token. Read by the Remote Sync Client per request."""

    def __init__(
        self,
        authenticator: TokenAuthenticator,
        config: Optional[TokenConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.authenticator = authenticator
        self.config = config or TokenConfig()
        self._clock = clock
        self._tokens: Optional[TokenSet] = None
        self._state = TokenState.DISCONNECTED
        self._refresh_lock: Optional[asyncio.Lock] = None
        self._running = False

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def tokens(self) -> Optional[TokenSet]:
        return self._tokens

    @property
    def status(self) -> str:
        """Current refresh loop status."""
        return "running" if self._running else "stopped"

    def status_dict(self) -> dict:
        return {
            "state": self._state.value,
            "loop": self.status,
            "expires_at": self._tokens.expires_at.isoformat() if self._tokens else None,
        }

    # --- Connection ---

    async def connect(self) -> TokenSet:
        """Log in and move to CONNECTED."""
        try:
            tokens = await self.authenticator.login()
        except RemoteError:
            self.disconnect()
            raise
        self.connect_with(tokens)
        return tokens

    def connect_with(self, tokens: TokenSet) -> None:
        """Adopt tokens obtained elsewhere."""
        self._tokens = tokens
        self._state = TokenState.CONNECTED
        logger.info("Token connected expires_at=%s", tokens.expires_at.isoformat())

    def disconnect(self) -> None:
        self._tokens = None
        self._state = TokenState.DISCONNECTED
        logger.info("Token disconnected")

    # --- Token access ---

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self._tokens is None:
            return True
        return self._tokens.expires_at <= (now or self._clock())

    def needs_refresh(self, now: Optional[datetime] = None) -> bool:
        """True when the token is within the refresh threshold of expiry."""
        if self._tokens is None or self._state == TokenState.DISCONNECTED:
            return False
        threshold = timedelta(seconds=self.config.refresh_threshold_seconds)
        return self._tokens.expires_at - (now or self._clock()) <= threshold

    def require_token(self) -> str:
        """
        Current access token for one request.

        Raises AuthExpired when disconnected or past expiry; a token that
        is merely inside the refresh window is still returned.
        """
        if self._tokens is None or self._state == TokenState.DISCONNECTED:
            raise AuthExpired("Not connected to the remote service")
        if self.is_expired():
            raise AuthExpired("Access token has expired")
        return self._tokens.access_token

    # --- Refresh ---

    async def refresh(self) -> bool:
        """
        Refresh now. Concurrent callers share one refresh.
        Returns True when a fresh token is in place.
        """
        # Created on first use so it binds to the running loop
        if self._refresh_lock is None:
            self._refresh_lock = asyncio.Lock()
        if self._refresh_lock.locked():
            async with self._refresh_lock:
                return self._state == TokenState.CONNECTED

        async with self._refresh_lock:
            if self._tokens is None:
                return False
            previous = self._tokens
            self._state = TokenState.REFRESHING
            logger.info("Token near expiry, refreshing")
            try:
                if previous.refresh_token:
                    tokens = await self.authenticator.refresh(previous.refresh_token)
                else:
                    tokens = await self.authenticator.login()
            except RemoteError as exc:
                logger.error("Token refresh failed, disconnecting: %s", exc)
                self.disconnect()
                return False
            if tokens.refresh_token is None and previous.refresh_token:
                tokens = tokens.model_copy(update={"refresh_token": previous.refresh_token})
            self.connect_with(tokens)
            return True

    async def check_once(self, now: Optional[datetime] = None) -> bool:
        """One periodic check. Returns True if a refresh was attempted."""
        if not self.needs_refresh(now):
            return False
        await self.refresh()
        return True

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run the periodic check until `stop_event` is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                await self.check_once()
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.config.check_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
