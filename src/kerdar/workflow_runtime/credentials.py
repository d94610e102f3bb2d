"""
Credential Store - Lookup of credential data by reference.

The engine never stores secrets itself. A node's credential reference
(type -> id) is handed to a CredentialStore supplied by the host; the
in-memory store below is for tests and embedding demos.
"""

from __future__ import annotations

import base64
import threading
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from kerdar.node_sdk.errors import CredentialError
from kerdar.node_sdk.http import RequestOptions
from kerdar.observability import get_logger


logger = get_logger(__name__)


@runtime_checkable
class CredentialStore(Protocol):
    """What the context uses to fetch credential data."""

    def get(self, credential_id: str, credential_type: str) -> Dict[str, Any]:
        """Return the decrypted data, or raise CredentialError."""
        ...


class InMemoryCredentialStore:
    """
    Credentials kept in a dict.

    Usage:
        store = InMemoryCredentialStore()
        store.add("cred-1", "bearerToken", {"token": "abc"})
    """

    def __init__(self) -> None:
        self._credentials: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def add(self, credential_id: str, credential_type: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._credentials[credential_id] = {"type": credential_type, "data": dict(data)}

    def remove(self, credential_id: str) -> bool:
        with self._lock:
            return self._credentials.pop(credential_id, None) is not None

    def get(self, credential_id: str, credential_type: str) -> Dict[str, Any]:
        with self._lock:
            entry = self._credentials.get(credential_id)

        if entry is None:
            raise CredentialError(
                f"Credential '{credential_id}' not found", credential_type=credential_type
            )
        if entry["type"] != credential_type:
            raise CredentialError(
                f"Credential '{credential_id}' is of type '{entry['type']}', expected '{credential_type}'",
                credential_type=credential_type,
            )
        return dict(entry["data"])

    def __len__(self) -> int:
        return len(self._credentials)


def apply_credentials(
    options: RequestOptions,
    credential_type: str,
    data: Dict[str, Any],
) -> RequestOptions:
    """
    Return a copy of request options with credential data applied.

    Supported types:
    - apiKey: {"apiKey", "sendIn": header|query|body, "parameterName"}
    - bearerToken: {"token"}
    - httpHeaderAuth: {"headerName", "headerValue"}
    - httpBasicAuth: {"username", "password"}
    """
    result: Dict[str, Any] = dict(options)
    headers = dict(result.get("headers") or {})

    if credential_type == "apiKey":
        name = data.get("parameterName") or "X-API-Key"
        value = data.get("apiKey", "")
        send_in = data.get("sendIn", "header")
        if send_in == "query":
            result["qs"] = {**(result.get("qs") or {}), name: value}
        elif send_in == "body":
            body = result.get("body")
            result["body"] = {**(body if isinstance(body, dict) else {}), name: value}
        else:
            headers[name] = value

    elif credential_type == "bearerToken":
        headers["Authorization"] = f"Bearer {data.get('token', '')}"

    elif credential_type == "httpHeaderAuth":
        headers[data.get("headerName", "Authorization")] = data.get("headerValue", "")

    elif credential_type == "httpBasicAuth":
        raw = f"{data.get('username', '')}:{data.get('password', '')}".encode("utf-8")
        headers["Authorization"] = "Basic " + base64.b64encode(raw).decode("ascii")

    else:
        raise CredentialError(
            f"Cannot apply credentials of type '{credential_type}' to a request",
            credential_type=credential_type,
        )

    result["headers"] = headers
    logger.debug("Applied %s credentials to request", credential_type)
    return result  # type: ignore[return-value]


__all__ = [
    "CredentialStore",
    "InMemoryCredentialStore",
    "apply_credentials",
]
