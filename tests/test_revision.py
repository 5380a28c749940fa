"""Tests for revisioned writes and client ids."""

from __future__ import annotations

import re

import pytest

from controlplane import config, revision
from controlplane.errors import ConflictFailure, TransportError
from controlplane.revision import (
    Revision,
    RevisionedMutator,
    generate_client_id,
    get_or_generate_client_id,
)
from controlplane.session import SessionGate

API = config.FLOW_API_PREFIX
SERVICE = f"{API}/controller-services/cs-1"


@pytest.fixture
def mutator(transport):
    return RevisionedMutator(transport, SessionGate(transport))


def test_write_reads_once_right_before_writing(mutator, transport):
    transport.script("GET", SERVICE, {"revision": {"version": 7, "clientId": "other"}})

    mutator.write(SERVICE, lambda rev, _entity: {"revision": rev.to_dict()}, client_id="me")

    assert transport.paths() == [SERVICE, SERVICE]
    assert [c["method"] for c in transport.calls if c["path"] == SERVICE] == ["GET", "PUT"]
    body = transport.last(SERVICE, "PUT")["body"]
    assert body["revision"] == {"clientId": "me", "version": 7}


def test_write_authenticates_before_reading(mutator, transport):
    mutator.write(SERVICE, lambda rev, _entity: {"revision": rev.to_dict()})

    assert transport.paths(include_auth=True)[0] == config.AUTH_PATH


def test_write_with_separate_read_path(mutator, transport):
    run_status = f"{SERVICE}/run-status"
    transport.script("GET", SERVICE, {"revision": {"version": 3}})

    mutator.write(run_status, lambda rev, _entity: {"revision": rev.to_dict()}, read_path=SERVICE)

    assert transport.paths() == [SERVICE, run_status]
    assert transport.last(run_status, "PUT")["body"]["revision"]["version"] == 3


def test_reuse_entity_client_id(mutator, transport):
    group = f"{API}/process-groups/pg-1"
    transport.script("GET", group, {"revision": {"version": 2, "clientId": "entity-client"}})

    mutator.write(
        f"{group}/paste",
        lambda rev, _entity: {"revision": rev.to_dict()},
        method="POST",
        read_path=group,
        reuse_entity_client_id=True,
    )

    assert transport.last(f"{group}/paste", "POST")["body"]["revision"] == {
        "clientId": "entity-client",
        "version": 2,
    }


def test_missing_version_defaults_to_zero(mutator, transport):
    transport.script("GET", SERVICE, {"component": {}})

    mutator.write(SERVICE, lambda rev, _entity: {"revision": rev.to_dict()})

    assert transport.last(SERVICE, "PUT")["body"]["revision"]["version"] == 0


def test_conflict_is_propagated_without_retry(mutator, transport):
    transport.script("GET", SERVICE, {"revision": {"version": 1}})
    transport.script("PUT", SERVICE, ConflictFailure("stale", status=409))

    with pytest.raises(ConflictFailure):
        mutator.write(SERVICE, lambda rev, _entity: {"revision": rev.to_dict()})
    assert transport.count(SERVICE, "PUT") == 1


def test_delete_sends_revision_as_query_params(mutator, transport):
    group = f"{API}/process-groups/pg-1"
    transport.script("GET", group, {"revision": {"version": 4}})

    mutator.delete(group, client_id="me")

    call = transport.last(group, "DELETE")
    assert call["body"] is None
    assert call["params"] == {"clientId": "me", "version": 4, "disconnectedNodeAcknowledged": "false"}


def test_failed_read_aborts_write(mutator, transport):
    transport.script("GET", SERVICE, TransportError("gone", status=404))

    with pytest.raises(TransportError):
        mutator.write(SERVICE, lambda rev, _entity: {"revision": rev.to_dict()})
    assert transport.count(SERVICE, "PUT") == 0


def test_generate_client_id_is_alphanumeric():
    client_id = generate_client_id()
    assert len(client_id) == 32
    assert re.fullmatch(r"[A-Za-z0-9]{32}", client_id)


def test_client_id_modes(monkeypatch):
    monkeypatch.setattr(revision.config, "CLIENT_ID_MODE", "uuid")
    assert re.fullmatch(r"[0-9a-f]{32}", revision.new_client_id())

    monkeypatch.setattr(revision.config, "CLIENT_ID_MODE", "token")
    assert len(revision.new_client_id()) == config.CLIENT_ID_LENGTH


def test_get_or_generate_keeps_given_id():
    assert get_or_generate_client_id("mine") == "mine"
    assert get_or_generate_client_id(None)


def test_revision_from_entity_ignores_bad_versions():
    assert Revision.from_entity({"revision": {"version": "3"}}, "c").version == 0
    assert Revision.from_entity({"revision": {"version": True}}, "c").version == 0
    assert Revision.from_entity(None, "c").version == 0
    assert Revision.coerce({"version": 5, "clientId": "x"}) == Revision(5, "x")
