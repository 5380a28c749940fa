"""Tests for the FlowApiService facade."""

from __future__ import annotations

import pytest

from controlplane import config
from controlplane.api import _parse_threshold, map_execution_engine, map_flowfile_concurrency
from controlplane.errors import ValidationFailure
from controlplane.models import Position, ProcessGroupConfiguration, UserCredentials

from tests.conftest import ROOT_PATH, root_reply

API = config.FLOW_API_PREFIX
BUNDLE = {"group": "org.example", "artifact": "flow-nar", "version": "1.0.0"}


def test_every_operation_authenticates_first(api, transport):
    api.get_flow_status()
    assert transport.paths(include_auth=True) == [config.AUTH_PATH, f"{API}/flow/status"]


def test_create_process_group_under_root(api, transport):
    transport.script("GET", ROOT_PATH, root_reply("root-1"))

    api.create_process_group(None, "ingest", client_id="me")

    call = transport.last(f"{API}/process-groups/root-1/process-groups", "POST")
    assert call["body"] == {
        "revision": {"clientId": "me", "version": 0},
        "disconnectedNodeAcknowledged": False,
        "component": {"position": config.DEFAULT_POSITION, "name": "ingest"},
    }


def test_create_process_group_with_explicit_parent_and_position(api, transport):
    api.create_process_group("pg-9", "ingest", Position(x=1, y=2))

    call = transport.last(f"{API}/process-groups/pg-9/process-groups", "POST")
    assert call["body"]["component"]["position"] == {"x": 1, "y": 2}
    assert transport.count(ROOT_PATH) == 0


def test_create_process_group_requires_name(api, transport):
    with pytest.raises(ValidationFailure):
        api.create_process_group("pg-1", "")
    assert transport.calls == []


@pytest.mark.parametrize("bundle", [None, {"group": "g", "artifact": "a"}, {**BUNDLE, "version": ""}])
def test_create_processor_validates_bundle_before_network(api, transport, bundle):
    with pytest.raises(ValidationFailure):
        api.create_processor("pg-1", "org.example.Proc", bundle)
    assert transport.calls == []


def test_create_controller_service_requires_type(api, transport):
    with pytest.raises(ValidationFailure):
        api.create_controller_service("pg-1", "", BUNDLE)
    assert transport.calls == []


def test_create_controller_service_body(api, transport):
    api.create_controller_service("pg-1", "org.example.Pool", BUNDLE, client_id="me")

    body = transport.last(f"{API}/process-groups/pg-1/controller-services", "POST")["body"]
    assert body["component"] == {"bundle": BUNDLE, "type": "org.example.Pool"}
    assert body["revision"] == {"clientId": "me", "version": 0}


def test_delete_process_group_uses_current_version(api, transport):
    group = f"{API}/process-groups/pg-1"
    transport.script("GET", group, {"revision": {"version": 11}})

    api.delete_process_group("pg-1", client_id="me")

    assert transport.last(group, "DELETE")["params"] == {
        "clientId": "me",
        "version": 11,
        "disconnectedNodeAcknowledged": "false",
    }


def test_copy_requires_ids(api, transport):
    with pytest.raises(ValidationFailure):
        api.copy_process_group("root-1", [])
    assert transport.calls == []


def test_paste_embeds_parent_revision(api, transport):
    parent = f"{API}/process-groups/root-1"
    transport.script("GET", parent, {"revision": {"version": 5, "clientId": "parent-client"}})
    copied = {"id": "copy-1", "processGroups": [{"id": "pg-1"}]}

    api.paste_process_group("root-1", copied)

    body = transport.last(f"{parent}/paste", "PUT")["body"]
    assert body == {
        "copyResponse": copied,
        "revision": {"clientId": "parent-client", "version": 5},
        "disconnectedNodeAcknowledged": False,
    }


def test_update_configuration_maps_values(api, transport):
    group = f"{API}/process-groups/pg-1"
    transport.script("GET", group, {"revision": {"version": 2}})
    configuration = ProcessGroupConfiguration(
        name="ingest",
        parameter_context_id="not-a-uuid",
        apply_recursively=True,
        execution_engine="Stateless",
        flowfile_concurrency="Single FlowFile Per Node",
        default_back_pressure_object_threshold="abc",
    )

    api.update_process_group_configuration("pg-1", configuration)

    body = transport.last(group, "PUT")["body"]
    assert body["processGroupUpdateStrategy"] == "ALL_DESCENDANTS"
    assert body["revision"]["version"] == 2
    component = body["component"]
    assert component["executionEngine"] == "STATELESS"
    assert component["flowfileConcurrency"] == "SINGLE_FLOWFILE_PER_NODE"
    assert component["defaultBackPressureObjectThreshold"] == 10000
    assert component["parameterContext"] is None


@pytest.mark.parametrize(
    "raw, expected",
    [("250 objects", 250), ("  42", 42), ("7.9", 7), ("0", 10000), ("", 10000), ("objects 5", 10000)],
)
def test_back_pressure_threshold_uses_leading_integer(raw, expected):
    assert _parse_threshold(raw) == expected


def test_update_configuration_keeps_uuid_parameter_context(api, transport):
    context_id = "0b5c3b0e-0190-1000-5a2f-6b3a9e2d1c4f"
    api.update_process_group_configuration(
        "pg-1", ProcessGroupConfiguration(name="n", parameter_context_id=context_id)
    )

    body = transport.last(f"{API}/process-groups/pg-1", "PUT")["body"]
    assert body["component"]["parameterContext"] == {"id": context_id}
    assert body["processGroupUpdateStrategy"] == "DIRECT_CHILDREN"


def test_enum_mappers_pass_unknown_values_upper_cased():
    assert map_execution_engine("inherited") == "INHERITED"
    assert map_execution_engine("custom") == "CUSTOM"
    assert map_flowfile_concurrency("single batch per node") == "SINGLE_BATCH_PER_NODE"


def test_get_process_group_id_by_name(api, transport):
    transport.script(
        "GET",
        f"{API}/flow/process-groups/root-1",
        {
            "processGroupFlow": {
                "flow": {
                    "processGroups": [
                        {"id": "a", "component": {"name": "alpha"}},
                        {"id": "b", "component": {"name": "beta"}},
                    ]
                }
            }
        },
    )

    assert api.get_process_group_id_by_name("beta", "root-1") == "b"
    assert api.get_process_group_id_by_name("gamma", "root-1") is None


def test_flow_process_groups_sends_ui_only(api, transport):
    api.get_flow_process_groups("pg-1", ui_only=False)
    assert transport.last(f"{API}/flow/process-groups/pg-1")["params"] == {"uiOnly": "false"}


def test_controller_services_for_user_use_mapping(api, transport):
    class Mapping:
        def get_process_group_id_for_user(self, credentials):
            return "pg-user"

    api.identity_mapping = Mapping()

    api.get_controller_services(UserCredentials(username="u", password="p"))

    assert transport.count(f"{API}/flow/process-groups/pg-user/controller-services") == 1
    assert transport.count(ROOT_PATH) == 0


def test_update_controller_service_sets_component_id(api, transport):
    service = f"{API}/controller-services/cs-1"
    transport.script("GET", service, {"revision": {"version": 8}})

    api.update_controller_service("cs-1", {"properties": {"url": "jdbc:x"}}, client_id="me")

    body = transport.last(service, "PUT")["body"]
    assert body["component"] == {"properties": {"url": "jdbc:x"}, "id": "cs-1"}
    assert body["revision"] == {"clientId": "me", "version": 8}
