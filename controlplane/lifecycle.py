"""
Multi-step lifecycle transitions for process groups and controller services.

Each transition is an explicit ordered pipeline of named steps, so the order
(stop references before disable, enable before starting references, primary
state before remote cascade before refresh) is fixed by construction instead
of by convention at each call site.

A failing step aborts the rest of its pipeline and the error propagates.
Steps already applied are not rolled back: a process group can be left with
its primary state changed but not its remote groups, and callers must detect
and repair that. The only exception is a step tagged ``optional``, whose
failure is logged and swallowed.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from controlplane import config
from controlplane.errors import ErrorClassifier, FlowClientError
from controlplane.revision import Revision, RevisionedMutator
from controlplane.session import SessionGate
from controlplane.transport import Transport

logger = logging.getLogger(__name__)

API = config.FLOW_API_PREFIX


class FlowState(str, enum.Enum):
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    ENABLED = "ENABLED"
    DISABLED = "DISABLED"


class RemoteState(str, enum.Enum):
    TRANSMITTING = "TRANSMITTING"
    STOPPED = "STOPPED"


class ServiceState(str, enum.Enum):
    ENABLED = "ENABLED"
    DISABLED = "DISABLED"


class ReferenceState(str, enum.Enum):
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class LifecycleRequest:
    target_state: FlowState
    cascade_to_remote_groups: bool = False
    remote_state_override: Optional[RemoteState] = None

    def __post_init__(self):
        object.__setattr__(self, "target_state", FlowState(self.target_state))
        if self.remote_state_override is not None:
            object.__setattr__(self, "remote_state_override", RemoteState(self.remote_state_override))

    def remote_target(self) -> RemoteState:
        if self.remote_state_override is not None:
            return self.remote_state_override
        if self.target_state is FlowState.RUNNING:
            return RemoteState.TRANSMITTING
        return RemoteState.STOPPED


@dataclass
class Step:
    name: str
    action: Callable[[], Any]
    optional: bool = False


class StepPipeline:
    """Run steps strictly in order; stop at the first non-optional failure."""

    def __init__(self, name: str, steps: List[Step]):
        self.name = name
        self.steps = steps

    def run(self) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        for step in self.steps:
            logger.debug(f"[{self.name}] step {step.name}")
            try:
                results[step.name] = step.action()
            except FlowClientError as e:
                if not step.optional:
                    logger.debug(f"[{self.name}] aborted at step {step.name}")
                    raise
                logger.warning(f"[{self.name}] optional step {step.name} failed, continuing: {e}")
                results[step.name] = None
        return results


_ACTION_TEXT = {
    FlowState.RUNNING: "Starting",
    FlowState.STOPPED: "Stopping",
    FlowState.ENABLED: "Enabling",
    FlowState.DISABLED: "Disabling",
}


def _revision_payload(revisions: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return {component_id: Revision.coerce(revision).to_dict() for component_id, revision in (revisions or {}).items()}


class LifecycleCoordinator:
    def __init__(
        self,
        transport: Transport,
        gate: SessionGate,
        mutator: RevisionedMutator,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.transport = transport
        self.gate = gate
        self.mutator = mutator
        self.classifier = classifier or mutator.classifier

    def _call(self, path: str, method: str, body: Any = None, error_message: str = "") -> Any:
        logger.info(f"Making {method} request to: {path}")
        try:
            return self.transport.request(path, method, body)
        except FlowClientError as e:
            self.classifier.report(error_message or f"Failed to make {method} request to {path}", e)
            raise

    # Process groups

    def transition(self, group_id: str, request: LifecycleRequest) -> Any:
        """Apply ``request`` to a process group and return its fresh representation."""
        state = request.target_state
        action = _ACTION_TEXT[state]
        self.gate.ensure_authenticated()

        steps = [
            Step(
                "set-flow-state",
                lambda: self._call(
                    f"{API}/flow/process-groups/{group_id}",
                    "PUT",
                    {"id": group_id, "disconnectedNodeAcknowledged": False, "state": state.value},
                    f"Failed to {action.lower()} process group flow",
                ),
            )
        ]
        if request.cascade_to_remote_groups:
            remote = request.remote_target()
            remote_action = "start" if remote is RemoteState.TRANSMITTING else "stop"
            steps.append(
                Step(
                    "set-remote-state",
                    lambda: self._call(
                        f"{API}/remote-process-groups/process-group/{group_id}/run-status",
                        "PUT",
                        {"disconnectedNodeAcknowledged": False, "state": remote.value},
                        f"Failed to {remote_action} remote process groups",
                    ),
                )
            )
        steps.append(
            Step(
                "refresh",
                lambda: self._call(
                    f"{API}/process-groups/{group_id}", "GET", None, "Failed to fetch process group"
                ),
            )
        )

        logger.info(f"{action} process group flow: {group_id}")
        results = StepPipeline(f"process-group {group_id} -> {state.value}", steps).run()
        logger.info(f"Process group {group_id} {state.value.lower()} and refreshed")
        return results["refresh"]

    def start_process_group(self, group_id: str) -> Any:
        return self.transition(group_id, LifecycleRequest(FlowState.RUNNING, True, RemoteState.TRANSMITTING))

    def stop_process_group(self, group_id: str) -> Any:
        return self.transition(group_id, LifecycleRequest(FlowState.STOPPED, True, RemoteState.STOPPED))

    def enable_process_group(self, group_id: str) -> Any:
        return self.transition(group_id, LifecycleRequest(FlowState.ENABLED))

    def disable_process_group(self, group_id: str) -> Any:
        return self.transition(group_id, LifecycleRequest(FlowState.DISABLED))

    # Controller services

    def update_references(
        self,
        service_id: str,
        state: ReferenceState,
        referencing_component_revisions: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Bulk-update components referencing a service. An empty revision map
        lets the server resolve component versions itself."""
        state = ReferenceState(state)
        body = {
            "id": service_id,
            "state": state.value,
            "referencingComponentRevisions": _revision_payload(referencing_component_revisions),
            "disconnectedNodeAcknowledged": False,
            "uiOnly": True,
        }
        return self._call(
            f"{API}/controller-services/{service_id}/references",
            "PUT",
            body,
            "Failed to update controller service references",
        )

    def set_service_state(self, service_id: str, state: ServiceState, client_id: Optional[str] = None) -> Any:
        state = ServiceState(state)
        verb = "enable" if state is ServiceState.ENABLED else "disable"
        return self.mutator.write(
            f"{API}/controller-services/{service_id}/run-status",
            lambda revision, _entity: {
                "revision": revision.to_dict(),
                "state": state.value,
                "disconnectedNodeAcknowledged": False,
            },
            read_path=f"{API}/controller-services/{service_id}",
            client_id=client_id,
            error_message=f"Failed to {verb} controller service",
        )

    def disable_controller_service(
        self,
        service_id: str,
        referencing_component_revisions: Optional[Mapping[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> Any:
        self.gate.ensure_authenticated()
        pipeline = StepPipeline(
            f"controller-service {service_id} -> DISABLED",
            [
                Step(
                    "stop-references",
                    lambda: self.update_references(
                        service_id, ReferenceState.STOPPED, referencing_component_revisions
                    ),
                ),
                Step(
                    "disable-service",
                    lambda: self.set_service_state(service_id, ServiceState.DISABLED, client_id),
                ),
            ],
        )
        logger.info(f"Disabling controller service {service_id} (stopping referencing components first)")
        return pipeline.run()["disable-service"]

    def enable_controller_service(
        self,
        service_id: str,
        cascade_references: bool = False,
        referencing_component_revisions: Optional[Mapping[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> Any:
        self.gate.ensure_authenticated()
        steps = [
            Step(
                "enable-service",
                lambda: self.set_service_state(service_id, ServiceState.ENABLED, client_id),
            )
        ]
        if cascade_references:
            # The service is already enabled when this runs; its failure must
            # not fail the operation.
            steps.append(
                Step(
                    "start-references",
                    lambda: self.update_references(
                        service_id, ReferenceState.RUNNING, referencing_component_revisions
                    ),
                    optional=True,
                )
            )
        logger.info(f"Enabling controller service {service_id}")
        return StepPipeline(f"controller-service {service_id} -> ENABLED", steps).run()["enable-service"]
