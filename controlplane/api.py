"""
Flow API service.

Facade over the flow REST API used by the management console. It wires one
transport to one session gate, root-id resolver, revisioned mutator and
lifecycle coordinator, and exposes one method per console operation.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from controlplane import config
from controlplane.errors import ErrorClassifier, FlowClientError, ValidationFailure
from controlplane.lifecycle import LifecycleCoordinator, ReferenceState, ServiceState
from controlplane.models import Bundle, Position, ProcessGroupConfiguration, UserCredentials
from controlplane.resolver import RootGroupResolver, RootIdCache
from controlplane.revision import Revision, RevisionedMutator, get_or_generate_client_id
from controlplane.session import SessionGate, SessionHandle
from controlplane.transport import HttpTransport, Transport

logger = logging.getLogger(__name__)

API = config.FLOW_API_PREFIX

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")

_EXECUTION_ENGINES = {
    "inherited": "INHERITED",
    "standard": "STANDARD",
    "stateless": "STATELESS",
}

_FLOWFILE_CONCURRENCY = {
    "unbounded": "UNBOUNDED",
    "single flowfile per node": "SINGLE_FLOWFILE_PER_NODE",
    "single batch per node": "SINGLE_BATCH_PER_NODE",
}


def map_execution_engine(value: str) -> str:
    return _EXECUTION_ENGINES.get(value.lower(), value.upper())


def map_flowfile_concurrency(value: str) -> str:
    return _FLOWFILE_CONCURRENCY.get(value.lower(), value.upper())


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value or ""))


def _parse_threshold(raw: str, default: int = 10000) -> int:
    """Leading integer of ``raw`` ("250 objects" -> 250); zero or no digits give ``default``."""
    match = _LEADING_INT_RE.match(str(raw))
    if not match:
        return default
    return int(match.group(1)) or default


def _validated_bundle(type_name: str, bundle: Any, what: str) -> Bundle:
    if not type_name or bundle is None:
        raise ValidationFailure(
            f"Type and bundle (with group, artifact, version) are required to create a {what}"
        )
    if isinstance(bundle, Bundle):
        return bundle
    try:
        return Bundle.model_validate(bundle)
    except ValidationError as e:
        raise ValidationFailure(
            f"Type and bundle (with group, artifact, version) are required to create a {what}",
            data=e.errors(include_url=False, include_context=False, include_input=False),
        ) from e


class FlowApiService:
    def __init__(
        self,
        transport: Optional[Transport] = None,
        identity_mapping: Any = None,
        cache: Optional[RootIdCache] = None,
    ):
        self.transport = transport or HttpTransport()
        self.classifier = ErrorClassifier()
        self.gate = SessionGate(self.transport)
        self.resolver = RootGroupResolver(
            self.transport, self.gate, cache=cache, identity_mapping=identity_mapping
        )
        self.mutator = RevisionedMutator(self.transport, self.gate, self.classifier)
        self.lifecycle = LifecycleCoordinator(self.transport, self.gate, self.mutator, self.classifier)

    @property
    def identity_mapping(self):
        return self.resolver.identity_mapping

    @identity_mapping.setter
    def identity_mapping(self, value):
        self.resolver.identity_mapping = value

    def _request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        error_message: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Authenticate, then issue one request; failures are classified and re-raised."""
        self.gate.ensure_authenticated()
        logger.info(f"Making {method} request to: {path}")
        if body is not None:
            logger.debug(f"Request payload: {body}")
        try:
            response = self.transport.request(path, method, body, params)
        except FlowClientError as e:
            self.classifier.report(error_message or f"Failed to make {method} request to {path}", e)
            raise
        logger.debug(f"Response received from {path}: {response!r}")
        return response

    # Session and identity

    def authenticate(self) -> SessionHandle:
        return self.gate.ensure_authenticated()

    def get_root_process_group_id(self, force_refresh: bool = False) -> str:
        return self.resolver.get_root_id(force_refresh)

    def resolve_process_group_id(
        self,
        process_group_id: Optional[str] = None,
        credentials: Optional[UserCredentials] = None,
    ) -> str:
        return self.resolver.resolve_group_id(process_group_id, credentials)

    def get_flow_status(self) -> Dict[str, Any]:
        return self._request(f"{API}/flow/status", error_message="Failed to fetch flow status")

    # Process groups

    def create_process_group(
        self,
        parent_group_id: Optional[str],
        name: str,
        position: Optional[Position] = None,
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not name:
            raise ValidationFailure("Process group name is required")
        position = position or Position(**config.DEFAULT_POSITION)
        target = self.resolver.resolve_group_id(parent_group_id)
        body = {
            "revision": Revision(0, get_or_generate_client_id(client_id)).to_dict(),
            "disconnectedNodeAcknowledged": False,
            "component": {"position": position.model_dump(), "name": name},
        }
        logger.info(f"Creating process group '{name}' under {target}")
        return self._request(
            f"{API}/process-groups/{target}/process-groups",
            "POST",
            body,
            "Failed to create process group",
        )

    def get_flow_process_groups(
        self,
        parent_group_id: Optional[str] = None,
        ui_only: bool = True,
        credentials: Optional[UserCredentials] = None,
    ) -> Dict[str, Any]:
        target = self.resolver.resolve_group_id(parent_group_id, credentials)
        return self._request(
            f"{API}/flow/process-groups/{target}",
            params={"uiOnly": str(ui_only).lower()},
            error_message="Failed to fetch flow process groups",
        )

    def get_process_group(self, process_group_id: str) -> Dict[str, Any]:
        return self._request(
            f"{API}/process-groups/{process_group_id}", error_message="Failed to fetch process group"
        )

    def get_process_group_id_by_name(
        self, process_group_name: str, parent_group_id: Optional[str] = None
    ) -> Optional[str]:
        target = parent_group_id or self.resolver.get_root_id()
        flow = self.get_flow_process_groups(target, True)
        group_flow = (flow or {}).get("processGroupFlow") or {}
        groups = (group_flow.get("flow") or {}).get("processGroups") or []
        for group in groups:
            if (group.get("component") or {}).get("name") == process_group_name:
                logger.info(f"Found process group '{process_group_name}' with ID: {group.get('id')}")
                return group.get("id")
        logger.warning(f"Process group '{process_group_name}' not found under parent {target}")
        return None

    def delete_process_group(self, process_group_id: str, client_id: Optional[str] = None) -> Any:
        return self.mutator.delete(
            f"{API}/process-groups/{process_group_id}",
            client_id=client_id,
            error_message="Failed to delete process group",
        )

    def copy_process_group(self, parent_group_id: str, process_group_ids: List[str]) -> Dict[str, Any]:
        if not process_group_ids:
            raise ValidationFailure("At least one process group ID is required to copy")
        return self._request(
            f"{API}/process-groups/{parent_group_id}/copy",
            "POST",
            {"processGroups": list(process_group_ids)},
            "Failed to copy process group",
        )

    def paste_process_group(self, parent_group_id: str, copy_response: Dict[str, Any]) -> Dict[str, Any]:
        path = f"{API}/process-groups/{parent_group_id}"
        return self.mutator.write(
            f"{path}/paste",
            lambda revision, _entity: {
                "copyResponse": copy_response,
                "revision": revision.to_dict(),
                "disconnectedNodeAcknowledged": False,
            },
            read_path=path,
            reuse_entity_client_id=True,
            error_message="Failed to paste process group",
        )

    def start_process_group(self, process_group_id: str) -> Dict[str, Any]:
        return self.lifecycle.start_process_group(process_group_id)

    def stop_process_group(self, process_group_id: str) -> Dict[str, Any]:
        return self.lifecycle.stop_process_group(process_group_id)

    def enable_process_group(self, process_group_id: str) -> Dict[str, Any]:
        return self.lifecycle.enable_process_group(process_group_id)

    def disable_process_group(self, process_group_id: str) -> Dict[str, Any]:
        return self.lifecycle.disable_process_group(process_group_id)

    def update_process_group_configuration(
        self,
        process_group_id: str,
        configuration: ProcessGroupConfiguration,
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        component = {
            "id": process_group_id,
            "name": configuration.name,
            "executionEngine": map_execution_engine(configuration.execution_engine),
            "flowfileConcurrency": map_flowfile_concurrency(configuration.flowfile_concurrency),
            "flowfileOutboundPolicy": "STREAM_WHEN_AVAILABLE",
            "defaultFlowFileExpiration": configuration.default_flowfile_expiration,
            "defaultBackPressureObjectThreshold": _parse_threshold(
                configuration.default_back_pressure_object_threshold
            ),
            "defaultBackPressureDataSizeThreshold": "1 GB",
            "logFileSuffix": None,
            "comments": configuration.comments or "",
            # Only ids are accepted; a context name would be rejected, so it clears the context.
            "parameterContext": (
                {"id": configuration.parameter_context_id}
                if is_uuid(configuration.parameter_context_id)
                else None
            ),
        }
        strategy = "ALL_DESCENDANTS" if configuration.apply_recursively else "DIRECT_CHILDREN"
        return self.mutator.write(
            f"{API}/process-groups/{process_group_id}",
            lambda revision, _entity: {
                "revision": revision.to_dict(),
                "disconnectedNodeAcknowledged": False,
                "processGroupUpdateStrategy": strategy,
                "component": component,
            },
            client_id=client_id,
            error_message="Failed to update process group configuration",
        )

    # Processors

    def get_processor_types(self) -> Dict[str, Any]:
        return self._request(f"{API}/flow/processor-types", error_message="Failed to fetch processor types")

    def create_processor(
        self,
        process_group_id: Optional[str],
        type_name: str,
        bundle: Any,
        position: Optional[Position] = None,
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        bundle = _validated_bundle(type_name, bundle, "processor")
        target = self.resolver.resolve_group_id(process_group_id)
        component: Dict[str, Any] = {"bundle": bundle.model_dump(), "type": type_name}
        if position is not None:
            component["position"] = position.model_dump()
        body = {
            "revision": Revision(0, get_or_generate_client_id(client_id)).to_dict(),
            "disconnectedNodeAcknowledged": False,
            "component": component,
        }
        return self._request(
            f"{API}/process-groups/{target}/processors", "POST", body, "Failed to create processor"
        )

    # Controller services

    def get_controller_service_types(self) -> Dict[str, Any]:
        return self._request(
            f"{API}/flow/controller-service-types",
            error_message="Failed to fetch controller service types",
        )

    def get_controller_services(
        self,
        credentials: Optional[UserCredentials] = None,
        process_group_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        target = self.resolver.resolve_group_id(process_group_id, credentials)
        return self._request(
            f"{API}/flow/process-groups/{target}/controller-services",
            params={"uiOnly": "true"},
            error_message="Failed to fetch controller services",
        )

    def create_controller_service(
        self,
        process_group_id: Optional[str],
        type_name: str,
        bundle: Any,
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        bundle = _validated_bundle(type_name, bundle, "controller service")
        target = self.resolver.resolve_group_id(process_group_id)
        body = {
            "revision": Revision(0, get_or_generate_client_id(client_id)).to_dict(),
            "disconnectedNodeAcknowledged": False,
            "component": {"bundle": bundle.model_dump(), "type": type_name},
        }
        return self._request(
            f"{API}/process-groups/{target}/controller-services",
            "POST",
            body,
            "Failed to create controller service",
        )

    def get_controller_service(self, controller_service_id: str) -> Dict[str, Any]:
        return self._request(
            f"{API}/controller-services/{controller_service_id}",
            error_message="Failed to fetch controller service",
        )

    def get_controller_service_references(self, controller_service_id: str) -> Dict[str, Any]:
        return self._request(
            f"{API}/controller-services/{controller_service_id}/references",
            error_message="Failed to fetch controller service references",
        )

    def set_controller_service_state(
        self, controller_service_id: str, state: ServiceState, client_id: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.lifecycle.set_service_state(controller_service_id, state, client_id)

    def enable_controller_service(
        self,
        controller_service_id: str,
        cascade_references: bool = False,
        referencing_component_revisions: Optional[Dict[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self.lifecycle.enable_controller_service(
            controller_service_id, cascade_references, referencing_component_revisions, client_id
        )

    def disable_controller_service(
        self,
        controller_service_id: str,
        referencing_component_revisions: Optional[Dict[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self.lifecycle.disable_controller_service(
            controller_service_id, referencing_component_revisions, client_id
        )

    def update_controller_service_references(
        self,
        controller_service_id: str,
        state: ReferenceState,
        referencing_component_revisions: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        self.gate.ensure_authenticated()
        return self.lifecycle.update_references(controller_service_id, state, referencing_component_revisions)

    def update_controller_service(
        self,
        controller_service_id: str,
        component: Dict[str, Any],
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Update properties, settings or comments of a controller service.

        Conflicts are raised unlogged; retrying is the caller's decision.
        """
        component = dict(component)
        component["id"] = controller_service_id
        return self.mutator.write(
            f"{API}/controller-services/{controller_service_id}",
            lambda revision, _entity: {
                "revision": revision.to_dict(),
                "disconnectedNodeAcknowledged": False,
                "component": component,
            },
            client_id=client_id,
            error_message="Failed to update controller service",
        )

    def analyze_controller_service_config(
        self, controller_service_id: str, properties: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        body = {
            "configurationAnalysis": {
                "componentId": controller_service_id,
                "properties": properties or {},
            }
        }
        return self._request(
            f"{API}/controller-services/{controller_service_id}/config/analysis",
            "POST",
            body,
            "Failed to analyze controller service configuration",
        )

    def create_controller_service_verification_request(
        self,
        controller_service_id: str,
        properties: Optional[Dict[str, Any]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        body = {
            "request": {
                "properties": properties or {},
                "componentId": controller_service_id,
                "attributes": attributes or {},
            }
        }
        return self._request(
            f"{API}/controller-services/{controller_service_id}/config/verification-requests",
            "POST",
            body,
            "Failed to create verification request",
        )

    def get_controller_service_verification_request(
        self, controller_service_id: str, request_id: str
    ) -> Dict[str, Any]:
        return self._request(
            f"{API}/controller-services/{controller_service_id}/config/verification-requests/{request_id}",
            error_message="Failed to get verification request",
        )

    def delete_controller_service_verification_request(
        self, controller_service_id: str, request_id: str
    ) -> Any:
        return self._request(
            f"{API}/controller-services/{controller_service_id}/config/verification-requests/{request_id}",
            "DELETE",
            error_message="Failed to delete verification request",
        )
