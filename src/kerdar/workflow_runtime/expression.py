"""
Expression Resolver - Safe evaluation of {{ }} and "=" parameter values.

Expressions are written in the JavaScript-flavoured syntax the canvas
produces and are rewritten to a Python expression, parsed with ast and
walked by SafeExpressionEvaluator. Nothing is ever passed to eval():

- names resolve only to context variables ($json, $input, ...) and a
  fixed set of helper functions (Math, JSON, dateFormat, ...)
- attribute access on data is key access; names starting with "_" are
  rejected
- calls are allowed on helper objects and on a fixed set of string,
  list, number and date methods

Resolution rules:

    "{{ $json.count }}"       -> raw value (int, dict, ...)
    "Hi {{ $json.name }}!"    -> interpolated string
    "=$json.count + 1"        -> raw value
    "=Hi {{ $json.name }}"    -> interpolated string
    "plain"                   -> unchanged
"""

from __future__ import annotations

import ast
import json
import keyword
import math
import operator
import random
import re
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote, unquote

from dateutil import parser as date_parser
from dateutil import tz

from kerdar.node_sdk.errors import EvaluationError

EXPRESSION_PATTERN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)

# Prefix for $-variables once rewritten to Python names
_VAR_PREFIX = "kd_"
_NODE_REF_NAME = "kd_node_ref"
_COALESCE_NAME = "kd_coalesce"

_STRING_LITERAL = re.compile(r"""'(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*\"""", re.DOTALL)
_PLACEHOLDER = re.compile(r"\x00(\d+)\x00")
_OPERAND_HEAD = re.compile(r"\x00\d+\x00|\w+")
_WORD = re.compile(r"\w+")

# Longest string or list an expression may build by repetition or padding
_MAX_SEQUENCE_LENGTH = 100_000
_MAX_EXPONENT = 1_000


# =============================================================================
# JS -> Python rewriting
# =============================================================================

def _mask_literals(expression: str) -> Tuple[str, List[str]]:
    literals: List[str] = []

    def _store(match: re.Match) -> str:
        literals.append(match.group(0))
        return f"\x00{len(literals) - 1}\x00"

    return _STRING_LITERAL.sub(_store, expression), literals


def _unmask_literals(expression: str, literals: List[str]) -> str:
    return _PLACEHOLDER.sub(lambda m: literals[int(m.group(1))], expression)


def _find_top_level(text: str, start: int, targets: str) -> int:
    """Index of the first char in targets at bracket depth 0, or -1."""
    depth = 0
    pending_ternaries = 0
    i = start
    while i < len(text):
        char = text[i]
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif depth == 0:
            if char == "?" and text[i + 1:i + 2] == "?":
                i += 2
                continue
            if char == "?" and ":" in targets:
                pending_ternaries += 1
            elif char == ":" and ":" in targets and pending_ternaries:
                pending_ternaries -= 1
            elif char in targets:
                return i
        i += 1
    return -1


def _match_bracket(text: str, start: int) -> int:
    """Index of the bracket closing the one at start, or -1."""
    depth = 0
    for i in range(start, len(text)):
        if text[i] in "([{":
            depth += 1
        elif text[i] in ")]}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def _split_top_level(text: str, separator: str) -> List[str]:
    parts = []
    depth = 0
    last = 0
    i = 0
    while i < len(text):
        char = text[i]
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif depth == 0 and text.startswith(separator, i):
            parts.append(text[last:i])
            i += len(separator)
            last = i
            continue
        i += 1
    parts.append(text[last:])
    return parts


def _operand_end(text: str, start: int) -> int:
    """End of the primary/member chain starting at start, or -1."""
    i = start
    while i < len(text) and text[i].isspace():
        i += 1
    if i >= len(text):
        return -1

    if text[i] in "([{":
        end = _match_bracket(text, i)
        if end < 0:
            return -1
        i = end + 1
    else:
        match = _OPERAND_HEAD.match(text, i)
        if match is None:
            return -1
        i = match.end()

    while i < len(text):
        if text[i] == ".":
            match = _WORD.match(text, i + 1)
            if match is None:
                break
            i = match.end()
        elif text[i] in "([":
            end = _match_bracket(text, i)
            if end < 0:
                return -1
            i = end + 1
        else:
            break
    return i


def _convert_not(text: str) -> str:
    """!x  ->  (not x), binding to the operand only."""
    i = len(text)
    while True:
        i = text.rfind("!", 0, i)
        if i < 0:
            return text
        if text[i + 1:i + 2] == "=":
            continue
        end = _operand_end(text, i + 1)
        if end < 0:
            text = f"{text[:i]} not {text[i + 1:]}"
        else:
            text = f"{text[:i]}(not {text[i + 1:end].strip()}){text[end:]}"


def _convert_coalesce(text: str) -> str:
    """a ?? b  ->  kd_coalesce(a, b), left-associative."""
    parts = _split_top_level(text, "??")
    if len(parts) == 1:
        return text
    result = parts[0].strip()
    for part in parts[1:]:
        result = f"{_COALESCE_NAME}({result}, {part.strip()})"
    return result


def _convert_ternary(text: str) -> str:
    """cond ? a : b  ->  (a) if (cond) else (b), right-associative."""
    question = _find_top_level(text, 0, "?")
    if question < 0:
        return _convert_coalesce(text)
    colon = _find_top_level(text, question + 1, ":")
    if colon < 0:
        return text

    condition = _convert_coalesce(text[:question].strip())
    when_true = _convert_ternary(text[question + 1:colon].strip())
    when_false = _convert_ternary(text[colon + 1:].strip())
    return f"({when_true}) if ({condition}) else ({when_false})"


def _convert_groups(text: str) -> str:
    """Convert the contents of every bracket group, innermost first."""
    out = []
    i = 0
    while i < len(text):
        char = text[i]
        if char not in "([{":
            out.append(char)
            i += 1
            continue
        end = _match_bracket(text, i)
        if end < 0:
            out.append(text[i:])
            break
        pieces = _split_top_level(text[i + 1:end], ",")
        inner = ",".join(_convert_piece(piece, char == "{") for piece in pieces)
        out.append(f"{char}{inner}{text[end]}")
        i = end + 1
    return "".join(out)


def _convert_piece(piece: str, is_object: bool) -> str:
    if is_object:
        colon = _find_top_level(piece, 0, ":")
        if colon >= 0:
            return piece[:colon + 1] + " " + _convert_operators(piece[colon + 1:])
    return _convert_operators(piece)


def _convert_operators(text: str) -> str:
    return _convert_ternary(_convert_groups(text))


def _fix_reserved_attr(match: re.Match) -> str:
    name = match.group(1)
    return f"['{name}']" if keyword.iskeyword(name) else f".{name}"


@lru_cache(maxsize=512)
def to_python_source(expression: str) -> str:
    """Rewrite a JS-flavoured expression into Python expression syntax."""
    masked, literals = _mask_literals(expression.strip())

    masked = masked.replace("?.[", "[").replace("?.", ".")
    masked = masked.replace("===", "==").replace("!==", "!=")
    masked = masked.replace("&&", " and ").replace("||", " or ")

    masked = re.sub(r"(?<![\w.$])true(?!\w)", "True", masked)
    masked = re.sub(r"(?<![\w.$])false(?!\w)", "False", masked)
    masked = re.sub(r"(?<![\w.$])(?:null|undefined)(?!\w)", "None", masked)

    masked = re.sub(r"\.([A-Za-z_][A-Za-z0-9_]*)", _fix_reserved_attr, masked)

    masked = re.sub(r"\$\s*\(", f"{_NODE_REF_NAME}(", masked)
    masked = re.sub(r"\$([A-Za-z_][A-Za-z0-9_]*)", rf"{_VAR_PREFIX}\1", masked)

    masked = _convert_not(masked)
    masked = _convert_operators(masked)
    return _unmask_literals(masked, literals).strip()


@lru_cache(maxsize=512)
def _compile(expression: str) -> ast.AST:
    return ast.parse(to_python_source(expression), mode="eval").body


def validate_expression(expression: str) -> Tuple[bool, Optional[str]]:
    """Syntax check without evaluating. Returns (valid, error message)."""
    try:
        _compile(extract_expression(expression))
    except SyntaxError as e:
        return False, f"Syntax error in expression: {e.msg}"
    return True, None


# =============================================================================
# Stringification
# =============================================================================

def to_display_string(value: Any) -> str:
    """String form used when an expression is interpolated into text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Helper objects exposed to expressions
# =============================================================================

class ExpressionHelper:
    """
    Base for objects expressions may call methods on.

    Public methods and properties are reachable; anything starting with
    "_" is not.
    """


class InputProxy(ExpressionHelper):
    """$input: the items the current node received."""

    def __init__(self, items: List[Dict[str, Any]], item_index: int = 0):
        self._items = items
        self._item_index = item_index

    def all(self) -> List[Dict[str, Any]]:
        return list(self._items)

    def first(self) -> Optional[Dict[str, Any]]:
        return self._items[0] if self._items else None

    def last(self) -> Optional[Dict[str, Any]]:
        return self._items[-1] if self._items else None

    @property
    def item(self) -> Optional[Dict[str, Any]]:
        if 0 <= self._item_index < len(self._items):
            return self._items[self._item_index]
        return None

    @property
    def length(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> Optional[Dict[str, Any]]:
        if isinstance(index, int) and 0 <= index < len(self._items):
            return self._items[index]
        return None


class NodeReference(ExpressionHelper):
    """$('Node Name'): output of an already executed node."""

    def __init__(self, name: str, node_data: Optional[Dict[str, Any]], item_index: int = 0):
        self._name = name
        self._data = node_data or {}
        self._item_index = item_index

    def _items(self) -> List[Dict[str, Any]]:
        return list(self._data.get("items", []))

    def all(self) -> List[Dict[str, Any]]:
        return self._items()

    def first(self) -> Optional[Dict[str, Any]]:
        items = self._items()
        return items[0] if items else None

    def last(self) -> Optional[Dict[str, Any]]:
        items = self._items()
        return items[-1] if items else None

    @property
    def item(self) -> Optional[Dict[str, Any]]:
        items = self._items()
        if 0 <= self._item_index < len(items):
            return items[self._item_index]
        return items[0] if items else None

    @property
    def json(self) -> Dict[str, Any]:
        return dict(self._data.get("json", {}))

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self._data.get("parameters", {}))


class NodeReferenceFactory(ExpressionHelper):
    """Callable bound to the run's executed-node outputs."""

    def __init__(self, nodes: Dict[str, Dict[str, Any]], item_index: int = 0):
        self._nodes = nodes
        self._item_index = item_index

    def __call__(self, name: str) -> NodeReference:
        if name not in self._nodes:
            raise EvaluationError(f"Referenced node '{name}' has not been executed")
        return NodeReference(name, self._nodes[name], self._item_index)


def _math_floor(value: Any) -> int:
    return math.floor(value)


def _math_ceil(value: Any) -> int:
    return math.ceil(value)


class MathHelper(ExpressionHelper):
    """Math.*"""

    PI = math.pi
    E = math.e

    floor = staticmethod(_math_floor)
    ceil = staticmethod(_math_ceil)

    @staticmethod
    def round(value: Any) -> int:
        # JS rounds halves up, Python rounds to even
        return math.floor(value + 0.5)

    @staticmethod
    def abs(value: Any) -> Any:
        return abs(value)

    @staticmethod
    def min(*values: Any) -> Any:
        return min(values)

    @staticmethod
    def max(*values: Any) -> Any:
        return max(values)

    @staticmethod
    def pow(base: Any, exponent: Any) -> Any:
        return _safe_pow(base, exponent)

    @staticmethod
    def sqrt(value: Any) -> float:
        return math.sqrt(value)

    @staticmethod
    def trunc(value: Any) -> int:
        return math.trunc(value)

    @staticmethod
    def random() -> float:
        return random.random()


class JsonHelper(ExpressionHelper):
    """JSON.parse / JSON.stringify"""

    @staticmethod
    def parse(text: str) -> Any:
        return json.loads(text)

    @staticmethod
    def stringify(value: Any, replacer: Any = None, indent: Any = None) -> str:
        return json.dumps(value, indent=indent, default=str)


class ObjectHelper(ExpressionHelper):
    """Object.keys / values / entries"""

    @staticmethod
    def keys(value: Dict[str, Any]) -> List[str]:
        return list(value.keys()) if isinstance(value, dict) else []

    @staticmethod
    def values(value: Dict[str, Any]) -> List[Any]:
        return list(value.values()) if isinstance(value, dict) else []

    @staticmethod
    def entries(value: Dict[str, Any]) -> List[List[Any]]:
        return [[k, v] for k, v in value.items()] if isinstance(value, dict) else []


def _to_number(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None or value == "":
        return 0
    try:
        number = float(str(value).strip())
    except ValueError:
        return math.nan
    return int(number) if number.is_integer() else number


def _parse_int(value: Any, base: int = 10) -> Any:
    match = re.match(r"\s*([+-]?\w+)", str(value))
    if not match:
        return math.nan
    digits = match.group(1)
    for end in range(len(digits), 0, -1):
        try:
            return int(digits[:end], base)
        except ValueError:
            continue
    return math.nan


def _parse_float(value: Any) -> Any:
    match = re.match(r"\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", str(value))
    return float(match.group(0)) if match else math.nan


def _is_nan(value: Any) -> bool:
    number = _to_number(value)
    return isinstance(number, float) and math.isnan(number)


def _date_format(value: Any, format_str: str = "%Y-%m-%d") -> str:
    """Format a date, datetime, ISO string or unix timestamp."""
    if isinstance(value, str):
        value = date_parser.parse(value)
    elif isinstance(value, (int, float)):
        value = datetime.fromtimestamp(value, tz=timezone.utc)

    if isinstance(value, (datetime, date)):
        return value.strftime(format_str)
    return str(value)


def _safe_pow(base: Any, exponent: Any) -> Any:
    if isinstance(exponent, (int, float)) and abs(exponent) > _MAX_EXPONENT:
        raise ValueError("Exponent too large")
    return operator.pow(base, exponent)


SAFE_FUNCTIONS: Dict[str, Any] = {
    # Helper namespaces
    "Math": MathHelper(),
    "JSON": JsonHelper(),
    "Object": ObjectHelper(),
    # Conversions
    "String": to_display_string,
    "Number": _to_number,
    "Boolean": bool,
    "parseInt": _parse_int,
    "parseFloat": _parse_float,
    "isNaN": _is_nan,
    "encodeURIComponent": lambda s: quote(str(s), safe="~()*!.'"),
    "decodeURIComponent": lambda s: unquote(str(s)),
    # Utility functions
    "dateFormat": _date_format,
    "jsonParse": json.loads,
    "jsonStringify": lambda obj: json.dumps(obj, default=str),
    # Python builtins
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "sum": sum,
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "sorted": sorted,
    "list": list,
}

_SAFE_CALLABLE_IDS = {id(fn) for fn in SAFE_FUNCTIONS.values()}


# =============================================================================
# Methods on plain values
# =============================================================================

def _js_split(s: str, separator: Any = None, limit: Optional[int] = None) -> List[str]:
    if separator is None:
        parts = [s]
    elif separator == "":
        parts = list(s)
    else:
        parts = s.split(separator)
    return parts[:limit] if limit is not None else parts


def _js_substring(s: str, start: int, end: Optional[int] = None) -> str:
    end = len(s) if end is None else end
    start, end = max(0, min(start, len(s))), max(0, min(end, len(s)))
    if start > end:
        start, end = end, start
    return s[start:end]


def _js_slice(value: Any, start: int = 0, end: Optional[int] = None) -> Any:
    return value[start:end]


def _repeat(seq: Any, count: int) -> Any:
    if len(seq) * max(0, count) > _MAX_SEQUENCE_LENGTH:
        raise ValueError("Result too large")
    return seq * count


def _js_pad(s: str, length: int, fill: str, at_start: bool) -> str:
    if len(s) >= length or not fill:
        return s
    if length > _MAX_SEQUENCE_LENGTH:
        raise ValueError("Result too large")
    padding = (fill * length)[:length - len(s)]
    return padding + s if at_start else s + padding


_STRING_METHODS: Dict[str, Callable[..., Any]] = {
    "toUpperCase": lambda s: s.upper(),
    "toLowerCase": lambda s: s.lower(),
    "trim": lambda s: s.strip(),
    "trimStart": lambda s: s.lstrip(),
    "trimEnd": lambda s: s.rstrip(),
    "split": _js_split,
    "includes": lambda s, sub: str(sub) in s,
    "startsWith": lambda s, prefix: s.startswith(prefix),
    "endsWith": lambda s, suffix: s.endswith(suffix),
    "replace": lambda s, old, new: s.replace(old, str(new), 1),
    "replaceAll": lambda s, old, new: s.replace(old, str(new)),
    "slice": _js_slice,
    "substring": _js_substring,
    "indexOf": lambda s, sub: s.find(sub),
    "charAt": lambda s, i: s[i] if 0 <= i < len(s) else "",
    "padStart": lambda s, n, fill=" ": _js_pad(s, n, fill, True),
    "padEnd": lambda s, n, fill=" ": _js_pad(s, n, fill, False),
    "repeat": lambda s, n: _repeat(s, n),
    "toString": lambda s: s,
}

_LIST_METHODS: Dict[str, Callable[..., Any]] = {
    "includes": lambda items, value: value in items,
    "indexOf": lambda items, value: items.index(value) if value in items else -1,
    "join": lambda items, sep=",": sep.join(to_display_string(i) for i in items),
    "slice": _js_slice,
    "concat": lambda items, *others: list(items) + [x for o in others for x in (o if isinstance(o, list) else [o])],
    "reverse": lambda items: list(reversed(items)),
    "at": lambda items, i: items[i] if -len(items) <= i < len(items) else None,
    "toString": lambda items: ",".join(to_display_string(i) for i in items),
}

_NUMBER_METHODS: Dict[str, Callable[..., Any]] = {
    "toFixed": lambda n, digits=0: f"{n:.{int(digits)}f}",
    "toString": lambda n: to_display_string(n),
}

_DICT_METHODS: Dict[str, Callable[..., Any]] = {
    "hasOwnProperty": lambda d, key: key in d,
}

_DATE_METHODS: Dict[str, Callable[..., Any]] = {
    "toISOString": lambda d: d.isoformat(),
    "toISO": lambda d: d.isoformat(),
    "isoformat": lambda d: d.isoformat(),
    "strftime": lambda d, fmt: d.strftime(fmt),
    "format": lambda d, fmt: d.strftime(fmt),
    "getTime": lambda d: int(d.timestamp() * 1000),
    "getFullYear": lambda d: d.year,
    "getMonth": lambda d: d.month - 1,
    "getDate": lambda d: d.day,
    "getDay": lambda d: (d.weekday() + 1) % 7,
    "getHours": lambda d: d.hour,
    "getMinutes": lambda d: d.minute,
    "getSeconds": lambda d: d.second,
    "weekday": lambda d: d.weekday(),
    "timestamp": lambda d: d.timestamp(),
}

_DATE_ATTRIBUTES = {"year", "month", "day", "hour", "minute", "second", "microsecond"}


def _method_table(obj: Any) -> Dict[str, Callable[..., Any]]:
    if isinstance(obj, str):
        return _STRING_METHODS
    if isinstance(obj, (list, tuple)):
        return _LIST_METHODS
    if isinstance(obj, bool):
        return {}
    if isinstance(obj, (int, float)):
        return _NUMBER_METHODS
    if isinstance(obj, dict):
        return _DICT_METHODS
    if isinstance(obj, (datetime, date)):
        return _DATE_METHODS
    return {}


# =============================================================================
# Evaluator
# =============================================================================

class SafeExpressionEvaluator:
    """Walks a parsed expression against a context of Python-safe names."""

    def __init__(self, functions: Optional[Dict[str, Any]] = None):
        self.functions = dict(SAFE_FUNCTIONS)
        if functions:
            self.functions.update(functions)
        self._safe_callable_ids = _SAFE_CALLABLE_IDS | {id(fn) for fn in self.functions.values()}

        self.operators = {
            ast.Add: self._add,
            ast.Sub: operator.sub,
            ast.Mult: self._mult,
            ast.Div: operator.truediv,
            ast.FloorDiv: operator.floordiv,
            ast.Mod: operator.mod,
            ast.Pow: _safe_pow,
        }

        self.comparisons = {
            ast.Eq: operator.eq,
            ast.NotEq: operator.ne,
            ast.Lt: operator.lt,
            ast.LtE: operator.le,
            ast.Gt: operator.gt,
            ast.GtE: operator.ge,
            ast.Is: operator.is_,
            ast.IsNot: operator.is_not,
            ast.In: lambda x, y: x in y,
            ast.NotIn: lambda x, y: x not in y,
        }

        self.unary_ops = {
            ast.UAdd: operator.pos,
            ast.USub: operator.neg,
            ast.Not: operator.not_,
        }

    def evaluate(self, expression: str, context: Dict[str, Any]) -> Any:
        """
        Evaluate one expression (without {{ }} or "=" markers).

        Args:
            expression: Expression text
            context: Variables keyed by their $-name ("$json", "$input", ...)

        Raises:
            EvaluationError: On syntax errors or evaluation failures
        """
        try:
            tree = _compile(expression)
        except SyntaxError as e:
            raise EvaluationError(f"Syntax error in expression: {e.msg}", expression) from e

        names = self._to_python_names(context)
        try:
            return self._eval_node(tree, names)
        except EvaluationError as e:
            if not e.expression:
                e.expression = expression
            raise
        except RecursionError as e:
            raise EvaluationError("Expression too deeply nested", expression) from e
        except Exception as e:
            raise EvaluationError(
                f"Failed to evaluate expression '{expression}': {e}", expression
            ) from e

    def _to_python_names(self, context: Dict[str, Any]) -> Dict[str, Any]:
        names: Dict[str, Any] = {}
        for key, value in context.items():
            if key == "$":
                names[_NODE_REF_NAME] = value
            elif key.startswith("$"):
                names[_VAR_PREFIX + key[1:]] = value
        return names

    def _eval_node(self, node: ast.AST, context: Dict[str, Any]) -> Any:
        """Recursively evaluate AST nodes"""

        if isinstance(node, ast.Constant):
            return node.value

        elif isinstance(node, ast.Name):
            if node.id in context:
                return context[node.id]
            if node.id in self.functions:
                return self.functions[node.id]
            if node.id.startswith(_VAR_PREFIX):
                raise EvaluationError(f"Unknown variable ${node.id[len(_VAR_PREFIX):]}")
            raise EvaluationError(f"Name '{node.id}' is not defined")

        elif isinstance(node, ast.Attribute):
            obj = self._eval_node(node.value, context)
            return self._get_attribute(obj, node.attr)

        elif isinstance(node, ast.Subscript):
            obj = self._eval_node(node.value, context)
            key = self._eval_node(node.slice, context)
            return self._get_item(obj, key)

        elif isinstance(node, ast.BinOp):
            left = self._eval_node(node.left, context)
            right = self._eval_node(node.right, context)
            op = self.operators.get(type(node.op))
            if op is None:
                raise EvaluationError(f"Unsupported operator: {type(node.op).__name__}")
            return op(left, right)

        elif isinstance(node, ast.UnaryOp):
            operand = self._eval_node(node.operand, context)
            op = self.unary_ops.get(type(node.op))
            if op is None:
                raise EvaluationError(f"Unsupported operator: {type(node.op).__name__}")
            return op(operand)

        elif isinstance(node, ast.BoolOp):
            # Returns the deciding operand, as || and && do
            value = None
            for value_node in node.values:
                value = self._eval_node(value_node, context)
                if isinstance(node.op, ast.And) and not value:
                    return value
                if isinstance(node.op, ast.Or) and value:
                    return value
            return value

        elif isinstance(node, ast.Compare):
            left = self._eval_node(node.left, context)
            for op, right_node in zip(node.ops, node.comparators):
                right = self._eval_node(right_node, context)
                comparison = self.comparisons.get(type(op))
                if comparison is None:
                    raise EvaluationError(f"Unsupported comparison: {type(op).__name__}")
                if not comparison(left, right):
                    return False
                left = right
            return True

        elif isinstance(node, ast.IfExp):
            if self._eval_node(node.test, context):
                return self._eval_node(node.body, context)
            return self._eval_node(node.orelse, context)

        elif isinstance(node, ast.Call):
            return self._eval_call(node, context)

        elif isinstance(node, (ast.List, ast.Tuple)):
            return [self._eval_node(item, context) for item in node.elts]

        elif isinstance(node, ast.Dict):
            if any(k is None for k in node.keys):
                raise EvaluationError("Dict unpacking is not supported")
            return {
                self._dict_key(k, context): self._eval_node(v, context)
                for k, v in zip(node.keys, node.values)
            }

        elif isinstance(node, ast.Slice):
            return slice(
                self._eval_node(node.lower, context) if node.lower else None,
                self._eval_node(node.upper, context) if node.upper else None,
                self._eval_node(node.step, context) if node.step else None,
            )

        raise EvaluationError(f"Unsupported syntax: {type(node).__name__}")

    def _dict_key(self, node: ast.AST, context: Dict[str, Any]) -> Any:
        # {a: 1} is an object literal with key "a"
        if isinstance(node, ast.Name) and node.id not in context and node.id not in self.functions:
            return node.id
        return self._eval_node(node, context)

    def _get_attribute(self, obj: Any, name: str) -> Any:
        if name.startswith("_"):
            raise EvaluationError(f"Access to '{name}' is not allowed")

        if obj is None:
            return None

        if isinstance(obj, dict):
            return obj.get(name)

        if name == "length" and isinstance(obj, (str, list, tuple)):
            return len(obj)

        if isinstance(obj, ExpressionHelper):
            return getattr(obj, name, None)

        if isinstance(obj, (datetime, date)) and name in _DATE_ATTRIBUTES:
            return getattr(obj, name)

        return None

    def _get_item(self, obj: Any, key: Any) -> Any:
        if obj is None:
            return None

        if isinstance(key, str) and key.startswith("_") and not isinstance(obj, dict):
            raise EvaluationError(f"Access to '{key}' is not allowed")

        if isinstance(obj, dict):
            return obj.get(key)

        if isinstance(obj, (list, tuple, str)):
            if isinstance(key, slice):
                return obj[key]
            if isinstance(key, bool) or not isinstance(key, int):
                if key == "length":
                    return len(obj)
                return None
            return obj[key] if 0 <= key < len(obj) else None

        if isinstance(obj, InputProxy):
            return obj[key]

        if isinstance(obj, ExpressionHelper) and isinstance(key, str):
            return getattr(obj, key, None)

        return None

    def _eval_call(self, node: ast.Call, context: Dict[str, Any]) -> Any:
        """Evaluate function and method calls"""
        # a ?? b: right side only evaluated when the left is null
        if isinstance(node.func, ast.Name) and node.func.id == _COALESCE_NAME and len(node.args) == 2:
            value = self._eval_node(node.args[0], context)
            return value if value is not None else self._eval_node(node.args[1], context)

        args = [self._eval_node(arg, context) for arg in node.args]
        kwargs = {kw.arg: self._eval_node(kw.value, context) for kw in node.keywords if kw.arg}

        # value.method(...)
        if isinstance(node.func, ast.Attribute):
            obj = self._eval_node(node.func.value, context)
            return self._call_method(obj, node.func.attr, args, kwargs)

        func = self._eval_node(node.func, context)
        if not self._is_safe_callable(func):
            raise EvaluationError(f"Object is not callable: {func!r}")
        return func(*args, **kwargs)

    def _call_method(self, obj: Any, name: str, args: List[Any], kwargs: Dict[str, Any]) -> Any:
        if name.startswith("_"):
            raise EvaluationError(f"Access to '{name}' is not allowed")

        if isinstance(obj, ExpressionHelper):
            method = getattr(obj, name, None)
            if not callable(method):
                raise EvaluationError(f"'{name}' is not a function")
            return method(*args, **kwargs)

        if isinstance(obj, dict) and callable(obj.get(name)) and self._is_safe_callable(obj[name]):
            return obj[name](*args, **kwargs)

        method = _method_table(obj).get(name)
        if method is None:
            raise EvaluationError(f"{type(obj).__name__}.{name} is not a function")
        return method(obj, *args, **kwargs)

    def _is_safe_callable(self, func: Any) -> bool:
        if isinstance(func, ExpressionHelper):
            return callable(func)
        return id(func) in self._safe_callable_ids

    @staticmethod
    def _add(left: Any, right: Any) -> Any:
        # "a" + 1 concatenates like JS
        if isinstance(left, str) or isinstance(right, str):
            return to_display_string(left) + to_display_string(right)
        return operator.add(left, right)

    @staticmethod
    def _mult(left: Any, right: Any) -> Any:
        for seq, count in ((left, right), (right, left)):
            if isinstance(seq, (str, list)) and isinstance(count, int):
                return _repeat(seq, count)
        return operator.mul(left, right)


# =============================================================================
# Resolver
# =============================================================================

def is_expression(value: Any) -> bool:
    """True for strings marked with {{ }} or a leading "="."""
    if not isinstance(value, str):
        return False
    stripped = value.strip()
    return stripped.startswith("=") or EXPRESSION_PATTERN.search(stripped) is not None


def extract_expression(value: str) -> str:
    """Strip the "=" prefix or the first {{ }} wrapper."""
    stripped = value.strip()
    if stripped.startswith("="):
        return stripped[1:].strip()
    match = EXPRESSION_PATTERN.search(stripped)
    if match:
        return match.group(1).strip()
    return stripped


class ExpressionResolver:
    """
    Resolves parameter values against an expression context.

    Usage:
        resolver = ExpressionResolver()
        context = build_expression_context(items=[{"json": {"foo": 42}}])
        resolver.resolve("{{ $json.foo }}", context)   # 42
    """

    def __init__(self, evaluator: Optional[SafeExpressionEvaluator] = None):
        self.evaluator = evaluator or SafeExpressionEvaluator()

    def resolve(self, value: Any, context: Dict[str, Any]) -> Any:
        """Resolve expressions in a value, recursing into lists and dicts."""
        if isinstance(value, str):
            return self._resolve_string(value, context)
        if isinstance(value, list):
            return [self.resolve(item, context) for item in value]
        if isinstance(value, dict):
            return {key: self.resolve(item, context) for key, item in value.items()}
        return value

    def evaluate(self, expression: str, context: Dict[str, Any]) -> Any:
        """Evaluate a bare expression."""
        return self.evaluator.evaluate(expression, context)

    def _resolve_string(self, value: str, context: Dict[str, Any]) -> Any:
        stripped = value.strip()

        if stripped.startswith("="):
            body = stripped[1:]
            if EXPRESSION_PATTERN.search(body):
                return self._interpolate(body.strip(), context)
            return self.evaluate(body.strip(), context)

        if EXPRESSION_PATTERN.search(stripped):
            return self._interpolate(stripped, context)

        return value

    def _interpolate(self, text: str, context: Dict[str, Any]) -> Any:
        matches = list(EXPRESSION_PATTERN.finditer(text))

        # The whole string is one expression: keep the raw value
        if len(matches) == 1 and matches[0].span() == (0, len(text)):
            return self.evaluate(matches[0].group(1).strip(), context)

        parts: List[str] = []
        position = 0
        for match in matches:
            parts.append(text[position:match.start()])
            parts.append(to_display_string(self.evaluate(match.group(1).strip(), context)))
            position = match.end()
        parts.append(text[position:])
        return "".join(parts)


def build_expression_context(
    items: Optional[List[Dict[str, Any]]] = None,
    item_index: int = 0,
    node: Optional[Dict[str, Any]] = None,
    workflow: Optional[Dict[str, Any]] = None,
    execution_id: str = "",
    mode: str = "manual",
    env: Optional[Dict[str, Any]] = None,
    variables: Optional[Dict[str, Any]] = None,
    node_outputs: Optional[Dict[str, Dict[str, Any]]] = None,
    run_index: int = 0,
    timezone_name: str = "UTC",
) -> Dict[str, Any]:
    """
    Build the variables an expression can see.

    Args:
        items: Input items of the current node
        item_index: Index of the item being processed
        node: Plain dict of the current node (copied, so read-only in effect)
        workflow: {"id", "name", "active"}
        node_outputs: Node name -> {"items", "json", "parameters", "type"}
    """
    items = items or []
    current = items[item_index] if 0 <= item_index < len(items) else {"json": {}}
    node_outputs = node_outputs or {}

    now = datetime.now(tz.gettz(timezone_name) or timezone.utc)

    return {
        "$json": current.get("json", {}),
        "$binary": current.get("binary", {}),
        "$input": InputProxy(items, item_index),
        "$item": current,
        "$itemIndex": item_index,
        "$runIndex": run_index,
        "$node": json.loads(json.dumps(node or {}, default=str)),
        "$nodes": {name: dict(data) for name, data in node_outputs.items()},
        "$workflow": dict(workflow or {}),
        "$execution": {"id": execution_id, "mode": mode},
        "$executionId": execution_id,
        "$env": dict(env or {}),
        "$vars": dict(variables or {}),
        "$now": now,
        "$today": now.date().isoformat(),
        "$": NodeReferenceFactory(node_outputs, item_index),
    }


__all__ = [
    "EXPRESSION_PATTERN",
    "ExpressionHelper",
    "ExpressionResolver",
    "InputProxy",
    "NodeReference",
    "SafeExpressionEvaluator",
    "build_expression_context",
    "extract_expression",
    "is_expression",
    "to_display_string",
    "to_python_source",
    "validate_expression",
]
