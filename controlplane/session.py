"""
Session gate for the flow API.

The authentication endpoint is called unconditionally before every logical
operation; there is no cheap validity probe. A successful (re)authentication
invalidates everything that may describe the topology from before the session
boundary, which is why listeners (the root-id cache) are told about it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List

from controlplane import config
from controlplane.errors import AuthenticationFailure, log_detailed_error
from controlplane.transport import Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionHandle:
    """Opaque result of a session establishment."""

    generation: int
    established_at: float
    credential: Any = field(default=None, repr=False)


class SessionGate:
    def __init__(
        self,
        transport: Transport,
        auth_path: str = config.AUTH_PATH,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.auth_path = auth_path
        self._clock = clock
        self._listeners: List[Callable[[], None]] = []
        self._generation = 0
        self._lock = threading.Lock()

    def on_reauthenticate(self, callback: Callable[[], None]):
        """Register a callback run after every successful authentication."""
        self._listeners.append(callback)

    def ensure_authenticated(self) -> SessionHandle:
        logger.info("Authenticating with flow API...")
        try:
            credential = self.transport.request(self.auth_path, "GET")
        except Exception as e:
            log_detailed_error("Failed to authenticate with flow API", e)
            raise AuthenticationFailure(
                f"Authentication failed: {e}",
                status=getattr(e, "status", None),
                data=getattr(e, "data", None),
                request_info=getattr(e, "request_info", None),
            ) from e

        for callback in self._listeners:
            callback()

        with self._lock:
            self._generation += 1
            handle = SessionHandle(self._generation, self._clock(), credential)
        logger.info("Authentication successful")
        return handle
