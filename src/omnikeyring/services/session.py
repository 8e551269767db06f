"""
Session Manager - session lifetime for the keyring.

States:
    NO_SESSION -> ACTIVE -> (EXPIRED) -> NO_SESSION

Expiry is lazy: there is no timer. Crossing the timeout is noticed by the
next accessor, which wipes the session's keys and fails with
NotAuthenticated.
"""

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ..errors import NotAuthenticated
from ..models.account import AuthMethod, SessionAuth
from ..wallet.crypto import MnemonicWallet
from ..wallet.manager import AccountRegistry

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT_SECONDS = 30 * 60  # 30 minutes
SESSION_TOKEN_BYTES = 32


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"
    EXPIRED = "expired"


@dataclass
class Session:
    """The live, unlocked keyring session."""
    username: Optional[str]
    auth: SessionAuth
    accounts: AccountRegistry
    wallet: MnemonicWallet = field(repr=False)
    token: str = field(repr=False)
    last_activity: float
    created_at: float
    registry_verified: Optional[bool] = None

    @property
    def auth_method(self) -> AuthMethod:
        return self.auth.method

    def wipe(self) -> None:
        """Clear all secret material held by the session."""
        self.accounts.clear()
        self.wallet.lock()
        self.token = ""


class SessionManager:
    """Owns the single live session of a keyring instance."""

    def __init__(self, timeout_seconds: float = DEFAULT_SESSION_TIMEOUT_SECONDS,
                 clock: Optional[Callable[[], float]] = None):
        """
        Args:
            timeout_seconds: Inactivity timeout
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self.timeout_seconds = timeout_seconds
        self._clock = clock or time.monotonic
        self._session: Optional[Session] = None
        self._state = SessionState.NO_SESSION
        self._lock = threading.RLock()

    def create(self, username: Optional[str], auth: SessionAuth,
               accounts: AccountRegistry, wallet: MnemonicWallet) -> Session:
        """Start a new session, destroying any previous one."""
        with self._lock:
            if self._session is not None:
                self.destroy()
            now = self._clock()
            self._session = Session(
                username=username,
                auth=auth,
                accounts=accounts,
                wallet=wallet,
                token=secrets.token_hex(SESSION_TOKEN_BYTES),
                last_activity=now,
                created_at=now,
            )
            self._state = SessionState.ACTIVE
            logger.info(f"Session started ({auth.method.value})")
            return self._session

    def _check_expiry(self) -> None:
        """Move ACTIVE -> EXPIRED once the timeout has passed."""
        if self._state != SessionState.ACTIVE or self._session is None:
            return
        idle = self._clock() - self._session.last_activity
        if idle >= self.timeout_seconds:
            logger.info(f"Session expired after {idle:.0f}s of inactivity")
            self._session.wipe()
            self._state = SessionState.EXPIRED

    @property
    def state(self) -> SessionState:
        with self._lock:
            self._check_expiry()
            return self._state

    def is_valid(self) -> bool:
        """True iff a session is active and within the timeout."""
        return self.state == SessionState.ACTIVE

    def touch(self) -> None:
        """Record activity. No-op outside ACTIVE."""
        with self._lock:
            self._check_expiry()
            if self._state == SessionState.ACTIVE:
                self._session.last_activity = self._clock()

    def current(self) -> Session:
        """
        The live session.

        Raises:
            NotAuthenticated: No session, or the session has expired
        """
        with self._lock:
            self._check_expiry()
            if self._state != SessionState.ACTIVE:
                if self._state == SessionState.EXPIRED:
                    raise NotAuthenticated("Session expired")
                raise NotAuthenticated()
            return self._session

    def peek(self) -> Optional[Session]:
        """The live session or None, without raising."""
        with self._lock:
            self._check_expiry()
            return self._session if self._state == SessionState.ACTIVE else None

    def destroy(self) -> None:
        """End the session and wipe its secrets (ACTIVE|EXPIRED -> NO_SESSION)."""
        with self._lock:
            if self._session is not None:
                self._session.wipe()
                logger.info("Session ended")
            self._session = None
            self._state = SessionState.NO_SESSION
