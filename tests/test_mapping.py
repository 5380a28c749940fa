"""Tests for user to process group mappings."""

from __future__ import annotations

import pytest

from controlplane.errors import ResolutionFailure, TransientTransportFailure, ValidationFailure
from controlplane.models import UserCredentials
from mgmt.mapping import UserProcessGroupMappingService
from mgmt.models import UserMapping, UserType

from tests.conftest import ROOT_PATH, root_reply


def creds(username="alice", password="s3cret"):
    return UserCredentials(username=username, password=password)


@pytest.fixture
def alice(mapping_service):
    return mapping_service.create_user_with_default_permissions("alice", "s3cret", "pg-a", "Alpha")


def test_password_is_hashed(alice, session_factory):
    db = session_factory()
    try:
        stored = db.query(UserMapping).filter_by(username="alice").one()
        assert stored.password_hash != "s3cret"
        assert stored.password_hash.startswith("$2")
    finally:
        db.close()


def test_authenticate_user(alice, mapping_service):
    mapping = mapping_service.authenticate_user(creds())
    assert mapping["process_group_id"] == "pg-a"
    assert mapping["permissions"] == {"can_read": True, "can_write": True, "can_delete": False}

    assert mapping_service.authenticate_user(creds(password="wrong")) is None
    assert mapping_service.authenticate_user(creds(username="nobody")) is None


def test_process_group_for_user(alice, mapping_service):
    assert mapping_service.get_process_group_id_for_user(creds()) == "pg-a"
    assert mapping_service.get_process_group_id_for_user(creds(password="x")) is None


def test_validate_permissions(alice, mapping_service):
    assert mapping_service.validate_user_permissions(creds(), "write")
    assert not mapping_service.validate_user_permissions(creds(), "delete")
    assert not mapping_service.validate_user_permissions(creds(password="x"), "read")


def test_add_user_mapping_upserts(alice, mapping_service):
    mapping_service.add_user_mapping(
        "alice", "new-pass", "pg-b", "Beta", {"can_read": True}, UserType.READONLY
    )

    assert mapping_service.get_user_count() == 1
    mapping = mapping_service.authenticate_user(creds(password="new-pass"))
    assert mapping["process_group_id"] == "pg-b"
    assert mapping["user_type"] == "READONLY"


def test_update_and_remove(alice, mapping_service):
    assert mapping_service.update_user_mapping("alice", password="rotated", permissions={"can_delete": True})
    assert mapping_service.authenticate_user(creds()) is None
    assert mapping_service.validate_user_permissions(creds(password="rotated"), "delete")

    assert not mapping_service.update_user_mapping("ghost", password="x")
    assert mapping_service.remove_user_mapping("alice")
    assert not mapping_service.user_exists("alice")
    assert not mapping_service.remove_user_mapping("alice")


def test_update_rejects_non_dict_permissions(alice, mapping_service):
    with pytest.raises(ValidationFailure, match="permissions"):
        mapping_service.update_user_mapping("alice", permissions=["can_delete"])

    assert not mapping_service.validate_user_permissions(creds(), "delete")


def test_stats_and_group_lookup(mapping_service):
    mapping_service.create_user_with_default_permissions("a", "p", "pg-1", "One", UserType.ADMIN)
    mapping_service.create_user_with_default_permissions("b", "p", "pg-1", "One", UserType.READONLY)
    mapping_service.create_user_with_default_permissions("c", "p", "pg-2", "Two")

    stats = mapping_service.get_process_group_stats()
    assert stats["total_users"] == 3
    assert stats["process_groups"] == {"pg-1": 2, "pg-2": 1}
    assert stats["permissions"] == {"can_read": 3, "can_write": 2, "can_delete": 1}
    assert [u["username"] for u in mapping_service.get_users_by_process_group_id("pg-1")] == ["a", "b"]
    assert [u["username"] for u in mapping_service.get_all_user_mappings()] == ["a", "b", "c"]


def test_permissions_for_user_type(mapping_service):
    assert mapping_service.get_permissions_for_user_type(UserType.ADMIN) == {
        "can_read": True,
        "can_write": True,
        "can_delete": True,
    }
    assert mapping_service.get_permissions_for_user_type("READONLY")["can_write"] is False


def test_default_group_uses_configured_id(session_factory):
    service = UserProcessGroupMappingService(
        session_factory=session_factory, default_process_group_id="pg-default", bcrypt_rounds=4
    )
    assert service.get_default_process_group_id() == "pg-default"


def test_default_group_falls_back_to_root_lookup(mapping_service, transport):
    transport.script("GET", ROOT_PATH, root_reply("root-1"))

    assert mapping_service.get_default_process_group_id() == "root-1"
    assert mapping_service.is_known_process_group_id("root-1")
    assert mapping_service.get_process_group_name("root-1") == "Root Process Group"


def test_default_group_lookup_failure(mapping_service, transport):
    transport.script("GET", ROOT_PATH, TransientTransportFailure("down"))

    with pytest.raises(ResolutionFailure, match="Unable to fetch root process group ID"):
        mapping_service.get_default_process_group_id()


def test_process_group_names(alice, mapping_service):
    assert mapping_service.get_process_group_name("pg-a") == "Alpha"
    assert mapping_service.get_process_group_name("pg-zzz") == "Unknown Process Group"


def test_refresh_root_moves_only_root_users(mapping_service, transport):
    transport.script("GET", ROOT_PATH, root_reply("root-1"), root_reply("root-2"))
    assert mapping_service.refresh_root_process_group_id() == "root-1"
    mapping_service.create_user_with_default_permissions("r", "p", "root-1", "Root Process Group")
    mapping_service.create_user_with_default_permissions("o", "p", "pg-other", "Other")

    assert mapping_service.refresh_root_process_group_id() == "root-2"

    assert mapping_service.get_process_group_id_for_user(creds("r", "p")) == "root-2"
    assert mapping_service.get_process_group_id_for_user(creds("o", "p")) == "pg-other"
