"""
Core Nodes - Standard node implementations.

These nodes provide basic workflow functionality: triggering, routing,
reshaping items, waiting and outbound HTTP. They only use the execution
context API, so they run unchanged under any host.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from kerdar.node_sdk.basenode import BaseNode
from kerdar.node_sdk.errors import NodeOperationError
from kerdar.node_sdk.items import ExecutionItem, OutputChannels

from .conditions import CombineMode, ComparisonOperation, evaluate_conditions


CONDITION_PARAMETERS: List[Dict[str, Any]] = [
    {
        "displayName": "Conditions",
        "name": "conditions",
        "type": "fixedCollection",
        "default": {"conditions": []},
        "description": "Each entry: value1, operation, value2",
        "options": [op.value for op in ComparisonOperation],
    },
    {
        "displayName": "Combine",
        "name": "combineConditions",
        "type": "options",
        "default": CombineMode.AND.value,
        "options": [
            {"name": "AND", "value": CombineMode.AND.value},
            {"name": "OR", "value": CombineMode.OR.value},
        ],
    },
]


def get_path(data: Any, path: str) -> Any:
    """Dot-notation read; None when any segment is missing."""
    current = data
    for key in path.split("."):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return None
    return current


def set_path(data: Dict[str, Any], path: str, value: Any) -> None:
    """Dot-notation write, creating intermediate objects."""
    keys = path.split(".")
    current = data
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


def copy_item(item: ExecutionItem, index: int, json_data: Optional[Dict[str, Any]] = None) -> ExecutionItem:
    """Output item derived from input item index, keeping binary data."""
    result: ExecutionItem = {
        "json": dict(item.get("json") or {}) if json_data is None else json_data,
        "pairedItem": {"item": index},
    }
    if item.get("binary"):
        result["binary"] = item["binary"]
    return result


def _condition_list(value: Any) -> List[Dict[str, Any]]:
    if isinstance(value, dict):
        value = value.get("conditions", [])
    if not isinstance(value, list):
        raise NodeOperationError("Conditions must be a list")
    return [c for c in value if isinstance(c, dict)]


class ManualTriggerNode(BaseNode):
    """
    Manual Trigger - Start a workflow manually.

    Passes through the run's input items, or one empty item.
    """

    type = "manual-trigger"
    version = 1

    description = {
        "displayName": "Manual Trigger",
        "name": "manualTrigger",
        "icon": "fa:play",
        "group": ["trigger"],
        "description": "Starts the workflow when triggered manually",
        "version": 1,
        "inputs": [],
        "outputs": ["main"],
    }

    properties = {
        "parameters": [],
        "credentials": [],
    }

    def execute(self) -> OutputChannels:
        items = self.get_input_data()
        if not items:
            return [[{"json": {}}]]
        return [[copy_item(item, i) for i, item in enumerate(items)]]


class NoOpNode(BaseNode):
    """NoOp Node - Pass through items unchanged."""

    type = "no-op"
    version = 1

    description = {
        "displayName": "No Operation",
        "name": "noOp",
        "icon": "fa:arrow-right",
        "group": ["utility"],
        "description": "Pass through items without modification",
        "version": 1,
        "inputs": ["main"],
        "outputs": ["main"],
    }

    properties = {
        "parameters": [],
        "credentials": [],
    }

    def execute(self) -> OutputChannels:
        return [self.get_input_data()]


class SetVariableNode(BaseNode):
    """
    Set Variable - Set or modify fields on items.

    Manual mode takes typed fields with dot-notation names
    ("user.name"); JSON mode merges an object into each item.
    """

    type = "set-variable"
    version = 1

    description = {
        "displayName": "Set",
        "name": "setVariable",
        "icon": "fa:pen",
        "group": ["transform"],
        "description": "Sets values on items",
        "version": 1,
        "inputs": ["main"],
        "outputs": ["main"],
    }

    properties = {
        "parameters": [
            {
                "displayName": "Mode",
                "name": "mode",
                "type": "options",
                "default": "manual",
                "options": [
                    {"name": "Manual Mapping", "value": "manual"},
                    {"name": "JSON", "value": "json"},
                ],
            },
            {
                "displayName": "Fields to Set",
                "name": "fields",
                "type": "fixedCollection",
                "default": {"values": []},
                "description": "Each entry: name, type (string/number/boolean/json), value",
                "displayOptions": {"show": {"mode": ["manual"]}},
            },
            {
                "displayName": "JSON Data",
                "name": "jsonData",
                "type": "json",
                "default": "{}",
                "displayOptions": {"show": {"mode": ["json"]}},
            },
            {
                "displayName": "Keep Only Set",
                "name": "keepOnlySet",
                "type": "boolean",
                "default": False,
                "description": "If true, only keep the set values, discard others",
            },
        ],
        "credentials": [],
    }

    def execute(self) -> OutputChannels:
        results = []
        for i, item in self.iter_items():
            mode = self.get_node_parameter("mode")
            keep_only_set = self.get_node_parameter("keepOnlySet")

            output: Dict[str, Any] = {} if keep_only_set else json.loads(json.dumps(item.get("json") or {}))

            if mode == "json":
                data = self._parse_json(self.get_node_parameter("jsonData"), i)
                if not isinstance(data, dict):
                    raise NodeOperationError("JSON data must be an object", item_index=i)
                output.update(data)
            else:
                fields = self.get_node_parameter("fields")
                values = fields.get("values", []) if isinstance(fields, dict) else fields
                for field in values or []:
                    name = field.get("name")
                    if not name:
                        continue
                    set_path(output, name, self._coerce(field.get("value"), field.get("type", "string"), i))

            results.append(copy_item(item, i, output))

        return [results]

    @staticmethod
    def _parse_json(value: Any, item_index: int) -> Any:
        if not isinstance(value, str):
            return value
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise NodeOperationError(f"Invalid JSON: {e}", item_index=item_index) from e

    def _coerce(self, value: Any, value_type: str, item_index: int) -> Any:
        if value_type == "number":
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return value
            try:
                number = float(value)
            except (TypeError, ValueError) as e:
                raise NodeOperationError(f"'{value}' is not a number", item_index=item_index) from e
            return int(number) if number.is_integer() else number
        if value_type == "boolean":
            if isinstance(value, str):
                return value.strip().lower() in ("true", "1", "yes")
            return bool(value)
        if value_type in ("json", "object", "array"):
            return self._parse_json(value, item_index)
        if value_type == "string":
            if value is None:
                return ""
            return value if isinstance(value, str) else json.dumps(value)
        return value


class IfNode(BaseNode):
    """
    If - Route items to "true" (output 0) or "false" (output 1).
    """

    type = "if"
    version = 1

    description = {
        "displayName": "If",
        "name": "if",
        "icon": "fa:map-signs",
        "group": ["transform"],
        "description": "Route items based on conditions",
        "version": 1,
        "inputs": ["main"],
        "outputs": ["main", "main"],
        "outputNames": ["true", "false"],
    }

    properties = {
        "parameters": CONDITION_PARAMETERS,
        "credentials": [],
    }

    def execute(self) -> OutputChannels:
        true_items: List[ExecutionItem] = []
        false_items: List[ExecutionItem] = []

        for i, item in self.iter_items():
            conditions = _condition_list(self.get_node_parameter("conditions"))
            combine = self.get_node_parameter("combineConditions")
            target = true_items if evaluate_conditions(conditions, combine) else false_items
            target.append(copy_item(item, i))

        return [true_items, false_items]


class FilterNode(BaseNode):
    """
    Filter - Keep items matching the conditions.

    Output 0 holds kept items, output 1 the discarded ones.
    """

    type = "filter"
    version = 1

    description = {
        "displayName": "Filter",
        "name": "filter",
        "icon": "fa:filter",
        "group": ["transform"],
        "description": "Filter items based on conditions",
        "version": 1,
        "inputs": ["main"],
        "outputs": ["main", "main"],
        "outputNames": ["kept", "discarded"],
    }

    properties = {
        "parameters": CONDITION_PARAMETERS,
        "credentials": [],
    }

    def execute(self) -> OutputChannels:
        kept: List[ExecutionItem] = []
        discarded: List[ExecutionItem] = []

        for i, item in self.iter_items():
            conditions = _condition_list(self.get_node_parameter("conditions"))
            combine = self.get_node_parameter("combineConditions")
            (kept if evaluate_conditions(conditions, combine) else discarded).append(copy_item(item, i))

        self.logger.debug(f"Filter kept {len(kept)} of {len(kept) + len(discarded)} items")
        return [kept, discarded]


class LimitNode(BaseNode):
    """Limit - Keep at most maxItems items from the start or end."""

    type = "limit"
    version = 1

    description = {
        "displayName": "Limit",
        "name": "limit",
        "icon": "fa:compress",
        "group": ["transform"],
        "description": "Restrict the number of items",
        "version": 1,
        "inputs": ["main"],
        "outputs": ["main"],
    }

    properties = {
        "parameters": [
            {
                "displayName": "Max Items",
                "name": "maxItems",
                "type": "number",
                "default": 10,
            },
            {
                "displayName": "Keep",
                "name": "keep",
                "type": "options",
                "default": "firstItems",
                "options": [
                    {"name": "First Items", "value": "firstItems"},
                    {"name": "Last Items", "value": "lastItems"},
                ],
            },
        ],
        "credentials": [],
    }

    def execute(self) -> OutputChannels:
        items = self.get_input_data()
        max_items = self.get_node_parameter("maxItems")
        keep = self.get_node_parameter("keep")

        try:
            max_items = max(0, int(max_items))
        except (TypeError, ValueError) as e:
            raise NodeOperationError(f"Max Items must be a number, got {max_items!r}") from e

        indexed = list(enumerate(items))
        if keep in ("lastItems", "last"):
            selected = indexed[len(indexed) - max_items:] if max_items else []
        else:
            selected = indexed[:max_items]
        return [[copy_item(item, i) for i, item in selected]]


class SortNode(BaseNode):
    """
    Sort - Order items by a field (dot notation).

    Items missing the field go last in both directions.
    """

    type = "sort"
    version = 1

    description = {
        "displayName": "Sort",
        "name": "sort",
        "icon": "fa:sort",
        "group": ["transform"],
        "description": "Sort items by a field",
        "version": 1,
        "inputs": ["main"],
        "outputs": ["main"],
    }

    properties = {
        "parameters": [
            {
                "displayName": "Field",
                "name": "sortField",
                "type": "string",
                "default": "",
                "required": True,
            },
            {
                "displayName": "Order",
                "name": "sortOrder",
                "type": "options",
                "default": "asc",
                "options": [
                    {"name": "Ascending", "value": "asc"},
                    {"name": "Descending", "value": "desc"},
                ],
            },
        ],
        "credentials": [],
    }

    def execute(self) -> OutputChannels:
        field = self.get_node_parameter("sortField")
        order = self.get_node_parameter("sortOrder")
        if not field:
            raise NodeOperationError("Sort field is required")

        present = []
        missing = []
        for i, item in enumerate(self.get_input_data()):
            value = get_path(item.get("json") or {}, field)
            (missing if value is None else present).append((value, i, item))

        try:
            present.sort(key=lambda entry: entry[0], reverse=order == "desc")
        except TypeError as e:
            raise NodeOperationError(
                f'Cannot sort by "{field}": values have mixed types', description=str(e)
            ) from e

        return [[copy_item(item, i) for _, i, item in present + missing]]


class WaitNode(BaseNode):
    """
    Wait - Pause the branch before passing items on.

    The wait counts against the node timeout and ends early with
    ExecutionCancelledError when the run is cancelled.
    """

    type = "wait"
    version = 1

    description = {
        "displayName": "Wait",
        "name": "wait",
        "icon": "fa:pause-circle",
        "group": ["organization"],
        "description": "Wait before continuing",
        "version": 1,
        "inputs": ["main"],
        "outputs": ["main"],
    }

    properties = {
        "parameters": [
            {
                "displayName": "Amount",
                "name": "amount",
                "type": "number",
                "default": 1,
            },
            {
                "displayName": "Unit",
                "name": "unit",
                "type": "options",
                "default": "seconds",
                "options": [
                    {"name": "Milliseconds", "value": "milliseconds"},
                    {"name": "Seconds", "value": "seconds"},
                    {"name": "Minutes", "value": "minutes"},
                    {"name": "Hours", "value": "hours"},
                ],
            },
        ],
        "credentials": [],
    }

    UNIT_SECONDS = {
        "milliseconds": 0.001,
        "seconds": 1,
        "minutes": 60,
        "hours": 3600,
    }

    def execute(self) -> OutputChannels:
        amount = self.get_node_parameter("amount")
        unit = self.get_node_parameter("unit")

        if unit not in self.UNIT_SECONDS:
            raise NodeOperationError(f"Unknown wait unit: {unit}")
        try:
            seconds = float(amount) * self.UNIT_SECONDS[unit]
        except (TypeError, ValueError) as e:
            raise NodeOperationError(f"Wait amount must be a number, got {amount!r}") from e

        self.logger.debug(f"Waiting {seconds:.3f}s")
        self.context.sleep(seconds)
        return [self.get_input_data()]


class HttpRequestNode(BaseNode):
    """
    HTTP Request - Make HTTP API calls.

    One request per input item. Responses that are JSON objects become
    the item's json; anything else lands under "data".
    """

    type = "http-request"
    version = 1

    description = {
        "displayName": "HTTP Request",
        "name": "httpRequest",
        "icon": "fa:globe",
        "group": ["output"],
        "description": "Make HTTP requests to any URL",
        "version": 1,
        "inputs": ["main"],
        "outputs": ["main"],
    }

    # authentication option -> credential type applied to the request
    AUTH_CREDENTIALS = {
        "basicAuth": "httpBasicAuth",
        "headerAuth": "httpHeaderAuth",
        "bearerToken": "bearerToken",
        "apiKey": "apiKey",
    }

    properties = {
        "parameters": [
            {
                "displayName": "Method",
                "name": "method",
                "type": "options",
                "default": "GET",
                "options": [
                    {"name": m, "value": m}
                    for m in ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
                ],
            },
            {
                "displayName": "URL",
                "name": "url",
                "type": "string",
                "default": "",
                "required": True,
            },
            {
                "displayName": "Authentication",
                "name": "authentication",
                "type": "options",
                "default": "none",
                "options": [
                    {"name": "None", "value": "none"},
                    {"name": "Basic Auth", "value": "basicAuth"},
                    {"name": "Header Auth", "value": "headerAuth"},
                    {"name": "Bearer Token", "value": "bearerToken"},
                    {"name": "API Key", "value": "apiKey"},
                ],
            },
            {
                "displayName": "Bearer Token",
                "name": "bearerToken",
                "type": "string",
                "default": "",
                "description": "Used when no bearerToken credential is attached",
                "displayOptions": {"show": {"authentication": ["bearerToken"]}},
            },
            {"displayName": "Send Headers", "name": "sendHeaders", "type": "boolean", "default": False},
            {
                "displayName": "Headers",
                "name": "headerParameters",
                "type": "fixedCollection",
                "default": {"parameters": []},
            },
            {"displayName": "Send Query", "name": "sendQuery", "type": "boolean", "default": False},
            {
                "displayName": "Query Parameters",
                "name": "queryParameters",
                "type": "fixedCollection",
                "default": {"parameters": []},
            },
            {"displayName": "Send Body", "name": "sendBody", "type": "boolean", "default": False},
            {
                "displayName": "Body Content Type",
                "name": "bodyContentType",
                "type": "options",
                "default": "json",
                "options": [
                    {"name": "JSON", "value": "json"},
                    {"name": "Raw", "value": "raw"},
                ],
            },
            {"displayName": "Body", "name": "body", "type": "json", "default": "{}"},
            {"displayName": "Raw Body", "name": "rawBody", "type": "string", "default": ""},
            {
                "displayName": "Options",
                "name": "options",
                "type": "collection",
                "default": {},
                "description": "timeout (ms), followRedirects, ignoreSSL, fullResponse",
            },
        ],
        "credentials": [
            {"name": "httpBasicAuth", "required": False},
            {"name": "httpHeaderAuth", "required": False},
            {"name": "bearerToken", "required": False},
            {"name": "apiKey", "required": False},
        ],
    }

    BODY_METHODS = ("POST", "PUT", "PATCH")

    def execute(self) -> OutputChannels:
        results = []

        for i, item in self.iter_items():
            self.context.check_cancelled()
            method = str(self.get_node_parameter("method")).upper()
            url = self.get_node_parameter("url")
            if not url:
                raise NodeOperationError("URL is required", item_index=i)

            request = self._build_request(method, url, i)
            response = self._send(request)
            results.append(copy_item(item, i, self._to_json(response)))

        return [results]

    def _build_request(self, method: str, url: str, item_index: int) -> Dict[str, Any]:
        options = self.get_node_parameter("options") or {}
        headers: Dict[str, str] = {"User-Agent": "kerdar/1.0"}
        request: Dict[str, Any] = {
            "method": method,
            "url": url,
            "headers": headers,
            "followRedirect": bool(options.get("followRedirects", True)),
            "skipSslCertificateValidation": bool(options.get("ignoreSSL", False)),
            "returnFullResponse": bool(options.get("fullResponse", False)),
        }
        if options.get("timeout"):
            request["timeout"] = float(options["timeout"]) / 1000.0

        if self.get_node_parameter("sendHeaders"):
            for param in self._name_values("headerParameters"):
                headers[param["name"]] = str(param.get("value", ""))

        if self.get_node_parameter("sendQuery"):
            request["qs"] = {p["name"]: p.get("value") for p in self._name_values("queryParameters")}

        if self.get_node_parameter("sendBody") and method in self.BODY_METHODS:
            if self.get_node_parameter("bodyContentType") == "raw":
                request["body"] = self.get_node_parameter("rawBody")
                request["json"] = False
            else:
                body = self.get_node_parameter("body")
                if isinstance(body, str):
                    try:
                        body = json.loads(body) if body.strip() else None
                    except json.JSONDecodeError as e:
                        raise NodeOperationError(f"Invalid JSON body: {e}", item_index=item_index) from e
                request["body"] = body
                headers["Content-Type"] = "application/json"

        return request

    def _name_values(self, parameter: str) -> List[Dict[str, Any]]:
        value = self.get_node_parameter(parameter) or {}
        entries = value.get("parameters", []) if isinstance(value, dict) else value
        return [e for e in entries if isinstance(e, dict) and e.get("name")]

    def _send(self, request: Dict[str, Any]) -> Any:
        authentication = self.get_node_parameter("authentication")
        helpers = self.context.helpers
        self.logger.debug(f"Making {request['method']} request to {request['url']}")

        if authentication in (None, "", "none"):
            return helpers.request(request)

        credential_type = self.AUTH_CREDENTIALS.get(authentication)
        if credential_type is None:
            raise NodeOperationError(f"Unsupported authentication: {authentication}")

        if credential_type == "bearerToken" and self.context.node.credential_id("bearerToken") is None:
            token = self.get_node_parameter("bearerToken")
            if token:
                request["headers"]["Authorization"] = f"Bearer {token}"
            return helpers.request(request)

        return helpers.request_with_authentication(credential_type, request)

    @staticmethod
    def _to_json(response: Any) -> Dict[str, Any]:
        if isinstance(response, dict):
            return response
        return {"data": response}


class ErrorHandlerNode(BaseNode):
    """
    Error Handler - Decide what happens to error items.

    Error items are those carrying json.error (as emitted by a node with
    continueOnFail) or arriving on input 1. Other items pass through.

    Modes:
    - stopWorkflow: raise the configured error message
    - continueWithData: pass error items on, flagged
    - useDefault: replace each error item with defaultData
    """

    type = "error-handler"
    version = 1

    description = {
        "displayName": "Error Handler",
        "name": "errorHandler",
        "icon": "fa:exclamation-triangle",
        "group": ["transform"],
        "description": "Handle errors from previous nodes",
        "version": 1,
        "inputs": ["main", "main"],
        "inputNames": ["success", "error"],
        "outputs": ["main"],
    }

    properties = {
        "parameters": [
            {
                "displayName": "Error Handling",
                "name": "errorHandling",
                "type": "options",
                "default": "stopWorkflow",
                "options": [
                    {"name": "Stop Workflow", "value": "stopWorkflow"},
                    {"name": "Continue with Error Data", "value": "continueWithData"},
                    {"name": "Use Default Data", "value": "useDefault"},
                ],
            },
            {
                "displayName": "Error Message",
                "name": "errorMessage",
                "type": "string",
                "default": "",
                "description": "Message of the raised error (default: the item's own error)",
            },
            {
                "displayName": "Default Data",
                "name": "defaultData",
                "type": "json",
                "default": "{}",
            },
        ],
        "credentials": [],
    }

    def execute(self) -> OutputChannels:
        mode = self.get_node_parameter("errorHandling")
        results: List[ExecutionItem] = []

        candidates = [(i, item, False) for i, item in enumerate(self.get_input_data(0))]
        candidates += [(i, item, True) for i, item in enumerate(self.get_input_data(1))]

        for i, item, from_error_input in candidates:
            data = item.get("json") or {}
            if not from_error_input and "error" not in data:
                results.append(copy_item(item, i))
                continue

            error = data.get("error")
            if mode == "stopWorkflow":
                message = self.get_node_parameter("errorMessage", item_index=i) or self._message(error)
                raise NodeOperationError(message, item_index=i)

            if mode == "useDefault":
                default = self.get_node_parameter("defaultData", item_index=i)
                if isinstance(default, str):
                    try:
                        default = json.loads(default)
                    except json.JSONDecodeError as e:
                        raise NodeOperationError(f"Invalid default data: {e}", item_index=i) from e
                results.append(copy_item(item, i, {**(default or {}), "_usedDefaultData": True}))
            elif mode == "continueWithData":
                results.append(copy_item(item, i, {**data, "_errorHandled": True}))
            else:
                raise NodeOperationError(f"Unknown error handling mode: {mode}")

        return [results]

    @staticmethod
    def _message(error: Any) -> str:
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if error:
            return str(error)
        return "Workflow stopped by error handler"


__all__ = [
    "ErrorHandlerNode",
    "FilterNode",
    "HttpRequestNode",
    "IfNode",
    "LimitNode",
    "ManualTriggerNode",
    "NoOpNode",
    "SetVariableNode",
    "SortNode",
    "WaitNode",
    "get_path",
    "set_path",
]
