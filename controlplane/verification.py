"""
Controller service configuration verification.

Verification is asynchronous on the server: a request is created, polled
until it reports completion, and must be deleted afterwards whatever the
outcome.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from controlplane import config
from controlplane.errors import FlowClientError, VerificationTimeout

logger = logging.getLogger(__name__)


def extract_request_id(response: Any) -> Optional[str]:
    """Find the verification request id in the shapes the server may return."""
    if isinstance(response, list):
        first = response[0] if response else {}
        if not isinstance(first, dict):
            return None
        return first.get("id") or first.get("requestId") or (first.get("request") or {}).get("id")
    if not isinstance(response, dict):
        return None
    if response.get("id") and not response.get("request"):
        return response["id"]
    request = response.get("request") or {}
    verification_request = response.get("verificationRequest") or {}
    return (
        request.get("id")
        or request.get("requestId")
        or request.get("verificationRequestId")
        or verification_request.get("id")
        or verification_request.get("requestId")
        or response.get("verificationRequestId")
        or response.get("id")
        or response.get("requestId")
    )


def is_complete(response: Any) -> bool:
    if not isinstance(response, dict):
        return False
    request = response.get("request") or response
    return request.get("complete") in (True, "true") or request.get("status") == "COMPLETE"


class ConfigVerifier:
    def __init__(
        self,
        api,
        poll_interval: float = config.VERIFICATION_POLL_SECONDS,
        max_polls: int = config.VERIFICATION_MAX_POLLS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api = api
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self._sleep = sleep

    def verify(
        self,
        service_id: str,
        properties: Optional[Dict[str, Any]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        self.api.analyze_controller_service_config(service_id, properties or {})
        created = self.api.create_controller_service_verification_request(
            service_id, properties or {}, attributes or {}
        )
        request_id = extract_request_id(created)
        if not request_id:
            raise FlowClientError("Verification request ID missing from response", data=created)
        if is_complete(created):
            self._cleanup(service_id, request_id)
            return created

        try:
            return self._poll(service_id, request_id)
        finally:
            self._cleanup(service_id, request_id)

    def _poll(self, service_id: str, request_id: str) -> Dict[str, Any]:
        last_good = None
        for attempt in range(self.max_polls):
            self._sleep(self.poll_interval)
            try:
                result = self.api.get_controller_service_verification_request(service_id, request_id)
            except FlowClientError as e:
                if e.status == 404:
                    if last_good is not None:
                        return last_good
                    raise FlowClientError(
                        "Verification request was deleted before results could be retrieved",
                        status=404,
                    ) from e
                logger.warning(f"Error polling verification request {request_id} (attempt {attempt + 1}): {e}")
                continue
            last_good = result
            if is_complete(result):
                return result

        if last_good is None:
            raise VerificationTimeout(f"Verification request {request_id} timed out")
        logger.warning(f"Verification request {request_id} did not complete, returning last result")
        return last_good

    def _cleanup(self, service_id: str, request_id: str):
        try:
            self.api.delete_controller_service_verification_request(service_id, request_id)
        except FlowClientError as e:
            logger.warning(f"Failed to delete verification request {request_id}: {e}")
