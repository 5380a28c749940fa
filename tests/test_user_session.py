"""Tests for per-user resource sessions."""

from __future__ import annotations

import pytest

from controlplane import config
from controlplane.errors import AuthenticationFailure, FlowClientError, TransportError
from mgmt.user_session import UserSessionService

API = config.FLOW_API_PREFIX

FLOW = {
    "processGroupFlow": {
        "flow": {
            "processGroups": [{"id": "pg-child"}],
            "processors": [{"id": "proc-1"}, {"id": "proc-2"}],
            "connections": [{"id": "conn-1"}],
        }
    }
}
SERVICES = {"controllerServices": [{"id": "cs-1"}]}


@pytest.fixture
def sessions(api, mapping_service, transport):
    mapping_service.create_user_with_default_permissions("alice", "pw", "pg-a", "Alpha")
    transport.script("GET", f"{API}/flow/process-groups/pg-a", FLOW)
    transport.script("GET", f"{API}/flow/process-groups/pg-a/controller-services", SERVICES)
    return UserSessionService(api, mapping_service)


def test_initialize_loads_resources(sessions):
    session = sessions.initialize_user_session("u1", "alice", "pw")

    assert session.root_process_group_id == "pg-a"
    assert session.process_group_ids == ["pg-child"]
    assert session.processor_ids == ["proc-1", "proc-2"]
    assert session.connection_ids == ["conn-1"]
    assert session.controller_service_ids == ["cs-1"]
    assert sessions.get_current_session() is session
    assert sessions.get_root_process_group_id() == "pg-a"


def test_invalid_credentials_rejected(sessions):
    with pytest.raises(AuthenticationFailure, match="alice"):
        sessions.initialize_user_session("u1", "alice", "wrong")
    assert sessions.get_current_session() is None


def test_access_checks(sessions):
    assert not sessions.has_access_to_resource("proc-1", "processor")
    sessions.initialize_user_session("u1", "alice", "pw")

    assert sessions.has_access_to_resource("proc-1", "processor")
    assert sessions.has_access_to_resource("cs-1", "controllerService")
    assert not sessions.has_access_to_resource("cs-1", "processor")
    assert not sessions.has_access_to_resource("pg-child", "unknown")


def test_switch_user_reuses_active_session(sessions, transport):
    first = sessions.initialize_user_session("u1", "alice", "pw")
    calls = len(transport.calls)

    assert sessions.switch_user("u1", "alice", "pw") is first
    assert len(transport.calls) == calls


def test_logout_and_stats(sessions):
    sessions.initialize_user_session("u1", "alice", "pw")
    assert sessions.get_session_stats() == {"active_sessions": 1, "total_resources": 5, "current_user": "u1"}

    sessions.logout()
    assert sessions.get_current_session() is None
    assert sessions.get_session_stats() == {"active_sessions": 0, "total_resources": 0, "current_user": None}
    assert not sessions.get_user_session("u1").is_active

    sessions.clear_all_sessions()
    assert sessions.get_user_session("u1") is None


def test_refresh_requires_session(sessions):
    with pytest.raises(FlowClientError, match="No active session"):
        sessions.refresh_user_session()


def test_validate_session(sessions, transport):
    assert not sessions.validate_session()
    sessions.initialize_user_session("u1", "alice", "pw")
    assert sessions.validate_session()

    transport.script("GET", f"{API}/flow/status", TransportError("down", status=503))
    assert not sessions.validate_session()


def test_auto_refresh_thread_starts_and_stops(sessions):
    sessions.refresh_interval = 3600
    sessions.start_auto_refresh()
    assert sessions._thread.is_alive()

    sessions.stop_auto_refresh()
    assert sessions._thread is None
