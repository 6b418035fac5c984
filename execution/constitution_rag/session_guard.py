"""
Idle Session Guard

Advisory client-side idle timer: ACTIVE -> WARNING -> EXPIRED. Any activity
returns to ACTIVE and restarts the window. EXPIRED only asks the client to
redirect (soft logout); the credential itself stays valid until the auth
provider's own expiry. This machine shares no state with auth.py.
"""

import time
import logging
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

IDLE_TIMEOUT_SECONDS = 30 * 60
WARNING_BEFORE_SECONDS = 5 * 60
EXPIRED_REDIRECT = "/"


class SessionState(str, Enum):
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"


class IdleSessionGuard:
    """
    Usage:
        guard = IdleSessionGuard()
        guard.record_activity()       # on every user interaction
        state = guard.poll()          # on a UI timer tick
        if state is SessionState.EXPIRED:
            redirect(guard.redirect_to)
    """

    def __init__(
        self,
        timeout_seconds: float = IDLE_TIMEOUT_SECONDS,
        warning_before_seconds: float = WARNING_BEFORE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        redirect_to: str = EXPIRED_REDIRECT,
    ):
        if not 0 < warning_before_seconds < timeout_seconds:
            raise ValueError("warning_before_seconds must be between 0 and timeout_seconds")
        self.timeout_seconds = timeout_seconds
        self.warning_before_seconds = warning_before_seconds
        self.redirect_to = redirect_to
        self._clock = clock
        self._last_activity = clock()
        self._state = SessionState.ACTIVE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def warning_at(self) -> float:
        """Idle seconds after which the warning is shown."""
        return self.timeout_seconds - self.warning_before_seconds

    def record_activity(self) -> SessionState:
        """User activity: back to ACTIVE from any state, timer restarted."""
        self._last_activity = self._clock()
        if self._state is not SessionState.ACTIVE:
            logger.debug(f"Session guard {self._state.value} -> active")
        self._state = SessionState.ACTIVE
        return self._state

    def idle_seconds(self) -> float:
        return self._clock() - self._last_activity

    def seconds_remaining(self) -> float:
        return max(0.0, self.timeout_seconds - self.idle_seconds())

    def poll(self) -> SessionState:
        """Advance the state from elapsed idle time."""
        idle = self.idle_seconds()
        if idle >= self.timeout_seconds:
            new_state = SessionState.EXPIRED
        elif idle >= self.warning_at:
            new_state = SessionState.WARNING
        else:
            new_state = SessionState.ACTIVE

        if new_state is not self._state:
            logger.info(f"Session guard {self._state.value} -> {new_state.value}")
            self._state = new_state
        return self._state

    def redirect_target(self) -> Optional[str]:
        """Where the client should go, only once EXPIRED."""
        return self.redirect_to if self._state is SessionState.EXPIRED else None
