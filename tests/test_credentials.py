"""
Tests for credential lookup and request decoration.
"""

import pytest

from kerdar.node_sdk.errors import CredentialError
from kerdar.workflow_runtime import CredentialStore, InMemoryCredentialStore, apply_credentials


REQUEST = {"method": "GET", "url": "https://api.example.com", "headers": {"Accept": "application/json"}}


class TestInMemoryStore:
    """Store behaviour."""

    def test_get_returns_copy(self):
        store = InMemoryCredentialStore()
        store.add("c1", "apiKey", {"apiKey": "secret"})

        data = store.get("c1", "apiKey")
        data["apiKey"] = "changed"

        assert store.get("c1", "apiKey") == {"apiKey": "secret"}
        assert len(store) == 1
        assert isinstance(store, CredentialStore)

    def test_missing(self):
        with pytest.raises(CredentialError, match="not found") as exc_info:
            InMemoryCredentialStore().get("nope", "apiKey")
        assert exc_info.value.credential_type == "apiKey"

    def test_wrong_type(self):
        store = InMemoryCredentialStore()
        store.add("c1", "bearerToken", {"token": "t"})
        with pytest.raises(CredentialError, match="expected 'apiKey'"):
            store.get("c1", "apiKey")

    def test_remove(self):
        store = InMemoryCredentialStore()
        store.add("c1", "bearerToken", {"token": "t"})
        assert store.remove("c1") is True
        assert store.remove("c1") is False


class TestApplyCredentials:
    """Each credential type decorates the request its own way."""

    def test_bearer(self):
        result = apply_credentials(REQUEST, "bearerToken", {"token": "abc"})
        assert result["headers"] == {"Accept": "application/json", "Authorization": "Bearer abc"}

    def test_basic(self):
        result = apply_credentials(REQUEST, "httpBasicAuth", {"username": "user", "password": "pass"})
        assert result["headers"]["Authorization"] == "Basic dXNlcjpwYXNz"

    def test_header(self):
        result = apply_credentials(REQUEST, "httpHeaderAuth", {"headerName": "X-Token", "headerValue": "v"})
        assert result["headers"]["X-Token"] == "v"

    def test_api_key_header_default(self):
        result = apply_credentials(REQUEST, "apiKey", {"apiKey": "k"})
        assert result["headers"]["X-API-Key"] == "k"

    def test_api_key_query(self):
        request = {**REQUEST, "qs": {"page": 2}}
        result = apply_credentials(request, "apiKey", {"apiKey": "k", "sendIn": "query", "parameterName": "key"})
        assert result["qs"] == {"page": 2, "key": "k"}

    def test_api_key_body(self):
        request = {**REQUEST, "body": {"a": 1}}
        result = apply_credentials(request, "apiKey", {"apiKey": "k", "sendIn": "body", "parameterName": "token"})
        assert result["body"] == {"a": 1, "token": "k"}

    def test_original_untouched(self):
        apply_credentials(REQUEST, "bearerToken", {"token": "abc"})
        assert "Authorization" not in REQUEST["headers"]

    def test_unsupported_type(self):
        with pytest.raises(CredentialError, match="Cannot apply credentials"):
            apply_credentials(REQUEST, "oAuth2", {})
