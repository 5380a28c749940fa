"""
Optimistic-concurrency writes against versioned flow entities.

Every write embeds a ``{version, clientId}`` revision. The version is read
from the entity immediately before the write, inside the same logical
operation, and is never cached. That narrows the read/write race window but
does not close it: a concurrent writer still yields a ConflictFailure, which
is propagated for the caller to retry. Nothing here retries on conflict.
"""

from __future__ import annotations

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from controlplane import config
from controlplane.errors import ErrorClassifier, FlowClientError
from controlplane.session import SessionGate
from controlplane.transport import Transport

logger = logging.getLogger(__name__)

_TOKEN_ALPHABET = string.ascii_letters + string.digits


def generate_client_id(length: int = config.CLIENT_ID_LENGTH) -> str:
    """Random alphanumeric client id (not UUID formatted)."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def new_client_id() -> str:
    if config.CLIENT_ID_MODE == "token":
        return generate_client_id()
    return uuid.uuid4().hex


def get_or_generate_client_id(client_id: Optional[str] = None) -> str:
    return client_id or new_client_id()


@dataclass(frozen=True)
class Revision:
    version: int
    client_id: str

    @classmethod
    def from_entity(cls, entity: Any, client_id: Optional[str] = None) -> "Revision":
        revision = entity.get("revision") if isinstance(entity, dict) else None
        revision = revision or {}
        version = revision.get("version", 0)
        if not isinstance(version, int) or isinstance(version, bool):
            version = 0
        return cls(version=version, client_id=get_or_generate_client_id(client_id))

    @classmethod
    def coerce(cls, value: Any) -> "Revision":
        if isinstance(value, Revision):
            return value
        return cls(
            version=int(value.get("version", 0)),
            client_id=get_or_generate_client_id(value.get("clientId") or value.get("client_id")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"clientId": self.client_id, "version": self.version}


BodyBuilder = Callable[[Revision, Any], Dict[str, Any]]


class RevisionedMutator:
    def __init__(
        self,
        transport: Transport,
        gate: SessionGate,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.transport = transport
        self.gate = gate
        self.classifier = classifier or ErrorClassifier()

    def _read(self, read_path: str) -> Any:
        logger.info(f"Fetching current revision from: {read_path}")
        try:
            return self.transport.request(read_path, "GET")
        except FlowClientError as e:
            self.classifier.report(f"Failed to read revision from {read_path}", e)
            raise

    def _revision_for(
        self,
        read_path: str,
        client_id: Optional[str],
        reuse_entity_client_id: bool,
    ):
        self.gate.ensure_authenticated()
        entity = self._read(read_path)
        if client_id is None and reuse_entity_client_id and isinstance(entity, dict):
            client_id = (entity.get("revision") or {}).get("clientId")
        revision = Revision.from_entity(entity, client_id)
        logger.debug(f"Current version of {read_path}: {revision.version}")
        return revision, entity

    def write(
        self,
        path: str,
        build_body: BodyBuilder,
        method: str = "PUT",
        read_path: Optional[str] = None,
        client_id: Optional[str] = None,
        reuse_entity_client_id: bool = False,
        error_message: Optional[str] = None,
    ) -> Any:
        """
        Read the entity at ``read_path`` (defaults to ``path``) and write to
        ``path`` with a body built from the revision just read.

        Args:
            path: Write endpoint
            build_body: Called with ``(revision, entity)``; returns the request body
            method: PUT or POST
            read_path: Entity endpoint to read the revision from
            client_id: Client id to embed; generated when omitted
            reuse_entity_client_id: Embed the entity's own client id when
                no ``client_id`` is given
            error_message: Log prefix on failure
        """
        revision, entity = self._revision_for(read_path or path, client_id, reuse_entity_client_id)
        body = build_body(revision, entity)
        logger.info(f"Making {method} request to: {path}")
        logger.debug(f"Request payload: {body}")
        try:
            return self.transport.request(path, method, body)
        except FlowClientError as e:
            self.classifier.report(error_message or f"Failed to make {method} request to {path}", e)
            raise

    def delete(
        self,
        path: str,
        read_path: Optional[str] = None,
        client_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Any:
        revision, _ = self._revision_for(read_path or path, client_id, False)
        params = {
            "clientId": revision.client_id,
            "version": revision.version,
            "disconnectedNodeAcknowledged": "false",
        }
        logger.info(f"Making DELETE request to: {path} (version={revision.version})")
        try:
            return self.transport.request(path, "DELETE", params=params)
        except FlowClientError as e:
            self.classifier.report(error_message or f"Failed to delete {path}", e)
            raise
