"""
HTTP transport for the flow API.

The rest of the package only relies on ``Transport.request``; HttpTransport is
the concrete implementation over a ``requests.Session``. The session's cookie
jar is the ambient credential store established by the authentication
endpoint, so it never leaves this module.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from controlplane import config
from controlplane.errors import TransientTransportFailure, error_for_status

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE")


class Transport:
    """Minimal request interface consumed by the control-plane client."""

    def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        raise NotImplementedError


def _decode(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpTransport(Transport):
    """
    requests-backed transport bound to one base URL.

    Usage:
        transport = HttpTransport("https://flow.example.internal")
        status = transport.request("/nifi-api/flow/status")
    """

    def __init__(
        self,
        base_url: str = config.FLOW_API_BASE_URL,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        verify: bool = config.VERIFY_TLS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.verify = verify
        self._session = session or requests.Session()
        self._session.headers.setdefault("Accept", "application/json")

    def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        method = method.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        url = f"{self.base_url}{path}"
        request_info = {"method": method, "url": url, "params": params}
        try:
            response = self._session.request(
                method,
                url,
                json=body,
                params=params,
                timeout=self.timeout,
                verify=self.verify,
            )
        except requests.exceptions.Timeout as e:
            raise TransientTransportFailure(
                f"Request to {url} timed out", request_info=request_info
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise TransientTransportFailure(
                f"Cannot connect to {self.base_url}: {e}", request_info=request_info
            ) from e
        except requests.RequestException as e:
            raise TransientTransportFailure(
                f"Failed to prepare {method} {url}: {e}"
            ) from e

        payload = _decode(response)
        if 200 <= response.status_code < 300:
            return payload

        if isinstance(payload, dict):
            detail = payload.get("details") or payload.get("message") or payload.get("error")
        else:
            detail = payload
        raise error_for_status(
            f"HTTP {response.status_code}: {detail or response.reason}",
            status=response.status_code,
            data=payload,
            request_info=request_info,
        )

    def close(self):
        self._session.close()
