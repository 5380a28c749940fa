"""
Process group identity resolution.

Resolution priority for a ProcessGroupRef:
    explicit id > per-user mapping > dynamic root lookup > default-fallback lookup

The root process group id is the one hot lookup worth caching. The cache is a
single TTL slot owned by the resolver instance it is injected into; it is
replaced on refresh and cleared whenever the session gate reauthenticates.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from controlplane import config
from controlplane.errors import (
    AuthenticationFailure,
    FlowClientError,
    ResolutionFailure,
    log_detailed_error,
)
from controlplane.models import UserCredentials
from controlplane.session import SessionGate
from controlplane.transport import Transport

logger = logging.getLogger(__name__)

ROOT_LOOKUP_PATH = f"{config.FLOW_API_PREFIX}/flow/process-groups/root"


@dataclass(frozen=True)
class CachedRootId:
    value: str
    fetched_at: float


class RootIdCache:
    """Single-entry TTL cache for the root process group id."""

    def __init__(
        self,
        ttl_seconds: float = config.ROOT_ID_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[CachedRootId] = None
        self._lock = threading.Lock()

    @property
    def entry(self) -> Optional[CachedRootId]:
        with self._lock:
            return self._entry

    def fresh_value(self) -> Optional[str]:
        """Cached id if it is younger than the TTL, else None."""
        with self._lock:
            if self._entry is None:
                return None
            if self._clock() - self._entry.fetched_at >= self.ttl_seconds:
                return None
            return self._entry.value

    def store(self, value: str) -> CachedRootId:
        entry = CachedRootId(value=value, fetched_at=self._clock())
        with self._lock:
            self._entry = entry
        return entry

    def clear(self):
        with self._lock:
            self._entry = None


class RootGroupResolver:
    def __init__(
        self,
        transport: Transport,
        gate: SessionGate,
        cache: Optional[RootIdCache] = None,
        identity_mapping: Any = None,
        max_auth_retries: int = config.ROOT_AUTH_MAX_RETRIES,
    ):
        """
        Args:
            transport: Flow API transport
            gate: Session gate; its reauthentications clear ``cache``
            cache: Root id cache owned by this resolver
            identity_mapping: Collaborator exposing
                ``get_process_group_id_for_user(credentials)`` and
                ``get_default_process_group_id()``
            max_auth_retries: Reauthenticate-and-retry budget for 401 replies
        """
        self.transport = transport
        self.gate = gate
        self.cache = cache or RootIdCache()
        self.identity_mapping = identity_mapping
        self.max_auth_retries = max_auth_retries
        gate.on_reauthenticate(self.cache.clear)

    def _fetch_root_id(self) -> str:
        retries = 0
        while True:
            try:
                response = self.transport.request(ROOT_LOOKUP_PATH, "GET")
                break
            except FlowClientError as e:
                if getattr(e, "status", None) != 401:
                    raise
                if retries >= self.max_auth_retries:
                    raise ResolutionFailure(
                        f"Root process group lookup still unauthorized after {retries} reauthentications",
                        status=401,
                        data=e.data,
                    ) from e
                logger.info("Session expired or invalid, reauthenticating...")
                self.gate.ensure_authenticated()
                retries += 1

        root_id = None
        if isinstance(response, dict):
            root_id = (response.get("processGroupFlow") or {}).get("id")
        if not root_id:
            raise ResolutionFailure(
                "Root process group ID not found in API response", data=response
            )
        return root_id

    def get_root_id(self, force_refresh: bool = False) -> str:
        if not force_refresh:
            cached = self.cache.fresh_value()
            if cached is not None:
                logger.debug(f"Using cached root process group ID: {cached}")
                return cached

        try:
            self.gate.ensure_authenticated()
            logger.info(f"Fetching root process group ID from: {ROOT_LOOKUP_PATH}")
            root_id = self._fetch_root_id()
        except FlowClientError as e:
            log_detailed_error("Failed to fetch root process group ID", e)
            stale = self.cache.entry
            if stale is not None:
                logger.warning(f"Serving stale root process group ID {stale.value} after fetch failure")
                return stale.value
            if isinstance(e, (AuthenticationFailure, ResolutionFailure)):
                raise
            raise ResolutionFailure(
                f"Failed to fetch root process group ID: {e.message}",
                status=e.status,
                data=e.data,
            ) from e

        self.cache.store(root_id)
        logger.info(f"Root process group ID fetched and cached: {root_id}")
        return root_id

    def resolve_group_id(
        self,
        explicit_id: Optional[str] = None,
        credentials: Optional[UserCredentials] = None,
    ) -> str:
        if explicit_id:
            logger.debug(f"Using provided process group ID: {explicit_id}")
            return explicit_id

        if credentials is not None:
            if self.identity_mapping is None:
                raise ResolutionFailure(
                    f"No identity mapping configured to resolve user: {credentials.username}"
                )
            group_id = self.identity_mapping.get_process_group_id_for_user(credentials)
            if not group_id:
                raise ResolutionFailure(f"No process group found for user: {credentials.username}")
            logger.info(f"Using process group ID {group_id} for user: {credentials.username}")
            return group_id

        try:
            return self.get_root_id()
        except FlowClientError as e:
            logger.warning(f"Failed to resolve root process group ID, retrying with force refresh: {e}")

        try:
            root_id = self.get_root_id(force_refresh=True)
            logger.info(f"Fetched root process group ID on retry: {root_id}")
            return root_id
        except FlowClientError as e:
            logger.warning(f"Retry also failed, falling back to default process group lookup: {e}")

        if self.identity_mapping is None:
            raise ResolutionFailure("Unable to resolve process group ID after all attempts")
        try:
            fallback_id = self.identity_mapping.get_default_process_group_id()
        except FlowClientError as e:
            raise ResolutionFailure(
                f"Unable to resolve process group ID after all attempts: {e.message}"
            ) from e
        if not fallback_id:
            raise ResolutionFailure("Default process group lookup returned nothing")
        logger.info(f"Using fallback default process group ID: {fallback_id}")
        return fallback_id
