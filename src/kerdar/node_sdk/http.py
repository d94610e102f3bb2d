"""
HTTP Client - Timeout-bounded HTTP requests for nodes.

All HTTP calls MUST use timeouts: a node blocked on a socket holds a
worker thread past its own node timeout. This module provides a simple
wrapper around requests with sensible defaults and structured responses,
plus the request-options form used by the context helpers.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple, TypedDict, Union

import requests
from requests.exceptions import RequestException, Timeout

from kerdar.observability import get_logger

from .errors import NodeApiError, NodeTimeoutError


logger = get_logger(__name__)

# Default timeout in seconds
DEFAULT_TIMEOUT = 30


class RequestOptions(TypedDict, total=False):
    """Options accepted by the context's request helpers."""
    method: str
    url: str
    baseURL: str
    headers: Dict[str, str]
    body: Any
    qs: Dict[str, Any]
    json: bool
    timeout: float
    auth: Tuple[str, str]
    returnFullResponse: bool
    skipSslCertificateValidation: bool
    followRedirect: bool


class HttpResponse:
    """
    Wrapper for HTTP response with convenient accessors.
    """

    def __init__(self, response: requests.Response):
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._response.headers)

    @property
    def text(self) -> str:
        return self._response.text

    @property
    def content(self) -> bytes:
        return self._response.content

    def json(self) -> Any:
        """Parse response as JSON."""
        return self._response.json()

    @property
    def ok(self) -> bool:
        """True if status code is 2xx."""
        return self._response.ok

    @property
    def is_json(self) -> bool:
        return "application/json" in self._response.headers.get("content-type", "")

    def body(self) -> Any:
        """JSON body when the server says so, text otherwise."""
        if self.is_json:
            try:
                return self.json()
            except ValueError:
                return self.text
        return self.text

    def raise_for_status(self) -> None:
        """Raise NodeApiError if status code indicates error."""
        if not self.ok:
            raise NodeApiError(
                message=f"HTTP {self.status_code}: {self._response.reason}",
                status_code=self.status_code,
                response_body=self.text[:1000] if self.text else None,
                url=str(self._response.url),
                method=self._response.request.method if self._response.request else None,
            )


class HttpClient:
    """
    HTTP client with timeout enforcement and credential injection.

    Usage:
        client = HttpClient(base_url="https://api.example.com")
        response = client.get("/users", params={"limit": 10})
        data = response.json()
    """

    def __init__(
        self,
        base_url: str = "",
        default_headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        auth: Optional[tuple] = None,
        bearer_token: Optional[str] = None,
        api_key: Optional[str] = None,
        api_key_header: str = "X-API-Key",
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Base URL for all requests
            default_headers: Headers to include in all requests
            timeout: Default timeout in seconds (REQUIRED)
            auth: Basic auth tuple (username, password)
            bearer_token: Bearer token for Authorization header
            api_key: API key value
            api_key_header: Header name for API key
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.auth = auth

        self.headers: Dict[str, str] = dict(default_headers or {})

        if bearer_token:
            self.headers["Authorization"] = f"Bearer {bearer_token}"

        if api_key:
            self.headers[api_key_header] = api_key

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[Union[Dict[str, Any], str, bytes]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> HttpResponse:
        """
        Make HTTP request with timeout enforcement.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, etc.)
            endpoint: URL endpoint (appended to base_url)
            params: Query parameters
            json: JSON body (auto-serialized)
            data: Form data or raw body
            headers: Additional headers (merged with defaults)
            timeout: Override default timeout
            **kwargs: Additional arguments to requests.request

        Returns:
            HttpResponse wrapper

        Raises:
            NodeTimeoutError: If request times out
            NodeApiError: If request fails
        """
        url = f"{self.base_url}{endpoint}" if self.base_url else endpoint

        request_headers = {**self.headers, **(headers or {})}

        request_timeout = timeout or self.timeout
        auth = kwargs.pop("auth", None) or self.auth

        try:
            response = requests.request(
                method=method,
                url=url,
                params=params,
                json=json,
                data=data,
                headers=request_headers,
                auth=auth,
                timeout=request_timeout,
                **kwargs,
            )
            return HttpResponse(response)

        except Timeout as e:
            raise NodeTimeoutError(
                message=f"Request timed out after {request_timeout}s",
                timeout=request_timeout,
                url=url,
            ) from e

        except RequestException as e:
            raise NodeApiError(
                message=f"Request failed: {e}",
                url=url,
                method=method,
            ) from e

    def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> HttpResponse:
        """Make GET request."""
        return self.request("GET", endpoint, params=params, **kwargs)

    def post(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        data: Optional[Union[Dict[str, Any], str, bytes]] = None,
        **kwargs: Any,
    ) -> HttpResponse:
        """Make POST request."""
        return self.request("POST", endpoint, json=json, data=data, **kwargs)

    def put(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        data: Optional[Union[Dict[str, Any], str, bytes]] = None,
        **kwargs: Any,
    ) -> HttpResponse:
        """Make PUT request."""
        return self.request("PUT", endpoint, json=json, data=data, **kwargs)

    def patch(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        data: Optional[Union[Dict[str, Any], str, bytes]] = None,
        **kwargs: Any,
    ) -> HttpResponse:
        """Make PATCH request."""
        return self.request("PATCH", endpoint, json=json, data=data, **kwargs)

    def delete(
        self,
        endpoint: str,
        **kwargs: Any,
    ) -> HttpResponse:
        """Make DELETE request."""
        return self.request("DELETE", endpoint, **kwargs)

    def send(self, options: RequestOptions) -> Any:
        """
        Perform a request described by RequestOptions.

        Returns the parsed body, or a {"statusCode", "headers", "body"} dict
        when returnFullResponse is set. Non-2xx responses raise NodeApiError.
        """
        url = options.get("url")
        if not url:
            raise NodeApiError("URL is required")

        base_url = options.get("baseURL")
        if base_url:
            url = f"{base_url.rstrip('/')}/{url.lstrip('/')}"

        method = options.get("method", "GET").upper()
        body = options.get("body")
        as_json = options.get("json", True)

        request_kwargs: Dict[str, Any] = {
            "params": {k: v for k, v in (options.get("qs") or {}).items() if v is not None},
            "headers": options.get("headers"),
            "timeout": options.get("timeout"),
            "allow_redirects": options.get("followRedirect", True),
        }
        if options.get("skipSslCertificateValidation"):
            request_kwargs["verify"] = False
        if options.get("auth"):
            request_kwargs["auth"] = options["auth"]
        if body is not None:
            if as_json:
                request_kwargs["json"] = body
            else:
                request_kwargs["data"] = body if isinstance(body, (str, bytes)) else str(body)

        logger.debug("HTTP %s %s", method, url)
        response = self.request(method, url, **request_kwargs)
        response.raise_for_status()

        if options.get("returnFullResponse"):
            return {
                "statusCode": response.status_code,
                "headers": response.headers,
                "body": response.body(),
            }
        return response.body()
