"""
Per-user resource sessions.

A session records which flow resources (process groups, controller services,
processors, connections) a logged-in console user can see, starting from the
process group their mapping points at. Sessions can be kept fresh by a
background refresh thread.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from controlplane import config
from controlplane.errors import AuthenticationFailure, FlowClientError
from controlplane.models import UserCredentials

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("processGroup", "controllerService", "processor", "connection")


@dataclass
class UserSession:
    user_id: str
    username: str
    credentials: UserCredentials
    root_process_group_id: str
    permissions: Dict[str, bool]
    process_group_ids: List[str] = field(default_factory=list)
    controller_service_ids: List[str] = field(default_factory=list)
    processor_ids: List[str] = field(default_factory=list)
    connection_ids: List[str] = field(default_factory=list)
    last_updated: datetime = field(default_factory=datetime.utcnow)
    is_active: bool = True

    def resource_ids(self, resource_type: str) -> List[str]:
        return {
            "processGroup": self.process_group_ids,
            "controllerService": self.controller_service_ids,
            "processor": self.processor_ids,
            "connection": self.connection_ids,
        }.get(resource_type, [])

    def total_resources(self) -> int:
        return sum(len(self.resource_ids(t)) for t in RESOURCE_TYPES)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "root_process_group_id": self.root_process_group_id,
            "permissions": dict(self.permissions),
            "process_group_ids": list(self.process_group_ids),
            "controller_service_ids": list(self.controller_service_ids),
            "processor_ids": list(self.processor_ids),
            "connection_ids": list(self.connection_ids),
            "last_updated": self.last_updated.isoformat(),
            "is_active": self.is_active,
        }


def _ids(items: Any) -> List[str]:
    return [item["id"] for item in items or [] if isinstance(item, dict) and item.get("id")]


class UserSessionService:
    def __init__(
        self,
        api,
        mapping_service,
        refresh_interval: float = config.SESSION_REFRESH_SECONDS,
        auto_refresh: bool = False,
    ):
        self.api = api
        self.mapping_service = mapping_service
        self.refresh_interval = refresh_interval
        self.auto_refresh = auto_refresh

        self._lock = threading.RLock()
        self._sessions: Dict[str, UserSession] = {}
        self._current: Optional[UserSession] = None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # Session lifecycle

    def initialize_user_session(self, user_id: str, username: str, password: str) -> UserSession:
        """Authenticate, look up the user's mapping and load their resources."""
        self.api.authenticate()
        credentials = UserCredentials(username=username, password=password)
        mapping = self.mapping_service.get_user_mapping(credentials)
        if not mapping:
            raise AuthenticationFailure(f"Invalid credentials for user: {username}", status=401)

        session = UserSession(
            user_id=user_id,
            username=username,
            credentials=credentials,
            root_process_group_id=mapping["process_group_id"],
            permissions=mapping["permissions"],
        )
        self._load_resources(session)

        with self._lock:
            self._sessions[user_id] = session
            self._current = session
        if self.auto_refresh:
            self.start_auto_refresh()
        logger.info(
            f"Session initialized for user: {username} ({user_id}) -> Process Group: {mapping['process_group_name']}"
        )
        return session

    def _load_resources(self, session: UserSession):
        flow = self.api.get_flow_process_groups(session.root_process_group_id, True)
        services = self.api.get_controller_services(process_group_id=session.root_process_group_id)

        contents = ((flow or {}).get("processGroupFlow") or {}).get("flow") or {}
        session.process_group_ids = _ids(contents.get("processGroups"))
        session.processor_ids = _ids(contents.get("processors"))
        session.connection_ids = _ids(contents.get("connections"))
        session.controller_service_ids = _ids((services or {}).get("controllerServices"))
        session.last_updated = datetime.utcnow()

        logger.info(
            f"Loaded resources for user {session.username}: "
            f"process_groups={len(session.process_group_ids)} "
            f"controller_services={len(session.controller_service_ids)} "
            f"processors={len(session.processor_ids)} "
            f"connections={len(session.connection_ids)} "
            f"root={session.root_process_group_id}"
        )

    def refresh_user_session(self) -> UserSession:
        with self._lock:
            session = self._current
        if session is None:
            raise FlowClientError("No active session to refresh")
        self._load_resources(session)
        with self._lock:
            self._sessions[session.user_id] = session
        logger.info(f"Session refreshed for user: {session.user_id}")
        return session

    def switch_user(self, user_id: str, username: str, password: str) -> UserSession:
        with self._lock:
            session = self._sessions.get(user_id)
            if session is not None and session.is_active:
                self._current = session
                return session
        return self.initialize_user_session(user_id, username, password)

    def logout(self):
        with self._lock:
            if self._current is not None:
                self._current.is_active = False
                logger.info(f"User logged out: {self._current.user_id}")
                self._current = None
        self.stop_auto_refresh()

    def clear_all_sessions(self):
        with self._lock:
            self._sessions.clear()
            self._current = None
        self.stop_auto_refresh()

    # Accessors

    def get_current_session(self) -> Optional[UserSession]:
        return self._current

    def get_user_session(self, user_id: str) -> Optional[UserSession]:
        with self._lock:
            return self._sessions.get(user_id)

    def get_process_group_ids(self) -> List[str]:
        return list(self._current.process_group_ids) if self._current else []

    def get_controller_service_ids(self) -> List[str]:
        return list(self._current.controller_service_ids) if self._current else []

    def get_processor_ids(self) -> List[str]:
        return list(self._current.processor_ids) if self._current else []

    def get_connection_ids(self) -> List[str]:
        return list(self._current.connection_ids) if self._current else []

    def get_root_process_group_id(self) -> str:
        return self._current.root_process_group_id if self._current else ""

    def has_access_to_resource(self, resource_id: str, resource_type: str) -> bool:
        session = self._current
        if session is None:
            return False
        return resource_id in session.resource_ids(resource_type)

    def get_session_stats(self) -> Dict[str, Any]:
        with self._lock:
            active = sum(1 for s in self._sessions.values() if s.is_active)
            current = self._current
        return {
            "active_sessions": active,
            "total_resources": current.total_resources() if current else 0,
            "current_user": current.user_id if current else None,
        }

    def validate_session(self) -> bool:
        if self._current is None:
            return False
        try:
            self.api.get_flow_status()
            return True
        except FlowClientError as e:
            logger.error(f"Session validation failed: {e}")
            return False

    # Auto refresh

    def start_auto_refresh(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._thread.start()
        logger.info(f"Session auto-refresh started (every {self.refresh_interval}s)")

    def stop_auto_refresh(self):
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread and thread is not threading.current_thread():
            thread.join(timeout=5)
            logger.info("Session auto-refresh stopped")

    def _refresh_loop(self):
        while not self._stop_event.wait(self.refresh_interval):
            session = self._current
            if session is None or not session.is_active:
                continue
            try:
                self.refresh_user_session()
            except FlowClientError as e:
                logger.warning(f"Auto-refresh failed: {e}")
