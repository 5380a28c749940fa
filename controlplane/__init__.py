"""
Control-plane client for the flow API.

Turns the stateless, versioned, session-authenticated REST API into safe
operations used by the management console:
- session: session gate (authenticate before every logical operation)
- resolver: root process group id cache + group id fallback chain
- revision: fetch-then-write optimistic concurrency
- lifecycle: ordered start/stop/enable/disable pipelines
- errors: failure taxonomy and conflict classification
- api: FlowApiService facade
"""

from controlplane.api import FlowApiService
from controlplane.errors import (
    AuthenticationFailure,
    ConflictFailure,
    ErrorKind,
    FlowClientError,
    ResolutionFailure,
    TransientTransportFailure,
    TransportError,
    ValidationFailure,
    classify,
)
from controlplane.lifecycle import FlowState, LifecycleRequest, RemoteState
from controlplane.models import UserCredentials

__all__ = [
    "AuthenticationFailure",
    "ConflictFailure",
    "ErrorKind",
    "FlowApiService",
    "FlowClientError",
    "FlowState",
    "LifecycleRequest",
    "RemoteState",
    "ResolutionFailure",
    "TransientTransportFailure",
    "TransportError",
    "UserCredentials",
    "ValidationFailure",
    "classify",
]
