"""
Tests for expression resolution.
"""

import pytest

from kerdar.node_sdk.errors import EvaluationError
from kerdar.workflow_runtime import (
    ExpressionResolver,
    build_expression_context,
    is_expression,
    validate_expression,
)
from kerdar.workflow_runtime.expression import extract_expression, to_python_source


@pytest.fixture
def resolver():
    return ExpressionResolver()


@pytest.fixture
def context():
    items = [
        {"json": {"foo": 42, "name": "ada", "flag": True, "tags": ["a", "b"], "class": "A", "user": {"age": 36}}},
        {"json": {"foo": 7, "name": "bob"}},
    ]
    return build_expression_context(
        items=items,
        item_index=0,
        node={"id": "n1", "name": "Current", "type": "set-variable", "parameters": {"p": 1}},
        workflow={"id": "wf-1", "name": "Demo", "active": False},
        execution_id="exec-1",
        env={"REGION": "eu"},
        variables={"limit": 3},
        node_outputs={
            "Fetch": {
                "name": "Fetch",
                "type": "http-request",
                "items": [{"json": {"x": 1}}, {"json": {"x": 2}}],
                "json": {"x": 1},
                "parameters": {"url": "https://example.com"},
            },
        },
    )


class TestExpressionDetection:
    """What counts as an expression."""

    def test_markers(self):
        assert is_expression("{{ $json.foo }}")
        assert is_expression("  =$json.foo")
        assert is_expression("Hello {{ $json.name }}")
        assert not is_expression("plain text")
        assert not is_expression(42)

    def test_extract_expression(self):
        assert extract_expression("{{ $json.foo }}") == "$json.foo"
        assert extract_expression("= $json.foo") == "$json.foo"

    def test_validate_expression(self):
        assert validate_expression("{{ $json.foo + 1 }}") == (True, None)
        valid, message = validate_expression("{{ $json.foo + }}")
        assert valid is False
        assert "Syntax error" in message


class TestResolve:
    """Resolution rules for strings and composites."""

    def test_whole_expression_returns_raw_value(self, resolver, context):
        assert resolver.resolve("{{ $json.foo }}", context) == 42

    def test_missing_property_is_none(self, resolver, context):
        assert resolver.resolve("{{ $json.missing }}", context) is None
        assert resolver.resolve("{{ $json.missing.deeper }}", context) is None
        assert resolver.resolve("{{ $json.missing?.deeper }}", context) is None

    def test_interpolation(self, resolver, context):
        assert resolver.resolve("Hi {{ $json.name }}, {{ $json.foo }}!", context) == "Hi ada, 42!"
        assert resolver.resolve("flag={{ $json.flag }} none={{ $json.missing }}", context) == "flag=true none="

    def test_equals_prefix(self, resolver, context):
        assert resolver.resolve("=$json.foo + 1", context) == 43
        assert resolver.resolve("=Name: {{ $json.name }}", context) == "Name: ada"

    def test_plain_string_unchanged(self, resolver, context):
        assert resolver.resolve("just text", context) == "just text"
        assert resolver.resolve(5, context) == 5

    def test_composites_recurse(self, resolver, context):
        value = {"a": "{{ $json.foo }}", "b": ["{{ $json.name }}", "x"], "c": {"d": "=$json.flag"}}
        assert resolver.resolve(value, context) == {"a": 42, "b": ["ada", "x"], "c": {"d": True}}


class TestOperators:
    """JavaScript-flavoured syntax."""

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("$json.foo > 40 && $json.flag", True),
            ("$json.foo < 40 || 'fallback'", "fallback"),
            ("!$json.flag", False),
            ("$json.foo === 42", True),
            ("$json.foo !== 42", False),
            ("$json.foo > 40 ? 'big' : 'small'", "big"),
            ("$json.foo > 50 ? 'big' : $json.foo > 40 ? 'medium' : 'small'", "medium"),
            ("$json.missing === null", True),
            ("$json.missing === undefined", True),
            ("'n=' + $json.foo", "n=42"),
            ("$json.foo * 2 - 4", 80),
            ("$json.tags[1]", "b"),
            ("$json['user']['age']", 36),
            ("$json.class", "A"),
            ("$json.tags.length", 2),
        ],
    )
    def test_evaluates(self, resolver, context, expression, expected):
        assert resolver.resolve("{{ " + expression + " }}", context) == expected

    def test_rewrite_leaves_string_literals_alone(self):
        assert to_python_source("'a && b' + $json.x") == "'a && b' + kd_json.x"

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("!$json.name == 'x'", False),
            ("!$json.foo + 1", 1),
            ("!$json.missing && $json.flag", True),
            ("!!$json.name", True),
            ("!($json.foo > 40) || $json.name", "ada"),
            ("!$json.tags.includes('c')", True),
            ("$json.foo != 42", False),
        ],
    )
    def test_not_binds_to_its_operand(self, resolver, context, expression, expected):
        assert resolver.resolve("{{ " + expression + " }}", context) == expected

    def test_not_rewrite(self):
        assert to_python_source("!$json.a == 1") == "(not kd_json.a) == 1"

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("$json.missing ?? 'dflt'", "dflt"),
            ("$json.foo ?? 'dflt'", 42),
            ("$json.missing ?? $json.nope ?? 3", 3),
            ("($json.missing ?? 1) + 1", 2),
            ("Math.max($json.missing ?? 5, 2)", 5),
            ("$json.flag ? $json.missing ?? 'x' : 'y'", "x"),
            ("$json.foo ?? $('Nope').json", 42),
        ],
    )
    def test_nullish_coalescing(self, resolver, context, expression, expected):
        assert resolver.resolve("{{ " + expression + " }}", context) == expected

    def test_ternary_inside_parentheses(self, resolver, context):
        assert resolver.resolve("{{ ($json.foo > 40 ? 1 : 2) + 10 }}", context) == 11


class TestContextVariables:
    """Variables exposed to expressions."""

    def test_input_helpers(self, resolver, context):
        assert resolver.resolve("{{ $input.first().json.foo }}", context) == 42
        assert resolver.resolve("{{ $input.last().json.name }}", context) == "bob"
        assert resolver.resolve("{{ $input.all().length }}", context) == 2
        assert resolver.resolve("{{ $input.item.json.name }}", context) == "ada"

    def test_run_variables(self, resolver, context):
        assert resolver.resolve("{{ $workflow.name }}", context) == "Demo"
        assert resolver.resolve("{{ $executionId }}", context) == "exec-1"
        assert resolver.resolve("{{ $execution.mode }}", context) == "manual"
        assert resolver.resolve("{{ $env.REGION }}", context) == "eu"
        assert resolver.resolve("{{ $vars.limit }}", context) == 3
        assert resolver.resolve("{{ $node.name }}", context) == "Current"
        assert resolver.resolve("{{ $itemIndex }}", context) == 0

    def test_node_reference(self, resolver, context):
        assert resolver.resolve("{{ $('Fetch').json.x }}", context) == 1
        assert resolver.resolve("{{ $('Fetch').last().json.x }}", context) == 2
        assert resolver.resolve("{{ $('Fetch').params.url }}", context) == "https://example.com"
        assert resolver.resolve("{{ $nodes.Fetch.json.x }}", context) == 1

    def test_unexecuted_node_reference_raises(self, resolver, context):
        with pytest.raises(EvaluationError, match="has not been executed"):
            resolver.resolve("{{ $('Nope').json }}", context)

    def test_now_and_today(self, resolver, context):
        year = resolver.resolve("{{ $now.year }}", context)
        assert isinstance(year, int)
        assert resolver.resolve("{{ $today }}", context).startswith(str(year)[:2])

    def test_node_copy_is_detached(self):
        node = {"name": "Current", "parameters": {"p": 1}}
        built = build_expression_context(node=node)
        built["$node"]["parameters"]["p"] = 2
        assert node["parameters"]["p"] == 1


class TestHelpers:
    """Whitelisted helper calls."""

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("$json.name.toUpperCase()", "ADA"),
            ("$json.name.padStart(5, '*')", "**ada"),
            ("$json.tags.join('-')", "a-b"),
            ("$json.tags.includes('b')", True),
            ("Math.max(1, $json.foo, 3)", 42),
            ("Math.round(2.5)", 3),
            ("JSON.stringify($json.tags)", '["a", "b"]'),
            ("JSON.parse('{\"k\": 1}').k", 1),
            ("Object.keys($json.user)", ["age"]),
            ("parseInt('12px')", 12),
            ("parseFloat('3.5kg')", 3.5),
            ("String($json.flag)", "true"),
            ("Number('4')", 4),
            ("dateFormat('2024-03-05T10:00:00Z', '%d/%m/%Y')", "05/03/2024"),
            ("$json.foo.toFixed(2)", "42.00"),
        ],
    )
    def test_helper_calls(self, resolver, context, expression, expected):
        assert resolver.resolve("{{ " + expression + " }}", context) == expected


class TestSafety:
    """Expressions cannot reach the interpreter."""

    @pytest.mark.parametrize(
        "expression",
        [
            "__import__('os')",
            "$json.__class__",
            "$json.name.__class__",
            "$input._items",
            "open('/etc/passwd')",
            "eval('1')",
            "[x for x in $json.tags]",
            "lambda: 1",
            "$json.name.format()",
            "'a'.repeat(1000000)",
            "'a'.repeat(100000).repeat(100)",
            "('a' * 100000) * 100",
            "[1, 2] * 60000",
            "'ab'.padStart(1000000000, '*')",
            "2 ** 100000",
        ],
    )
    def test_rejected(self, resolver, context, expression):
        with pytest.raises(EvaluationError):
            resolver.resolve("{{ " + expression + " }}", context)

    def test_bounded_repetition_allowed(self, resolver, context):
        assert resolver.resolve("{{ 'ab'.repeat(3) }}", context) == "ababab"
        assert resolver.resolve("{{ 3 * '-' }}", context) == "---"

    def test_error_carries_expression(self, resolver, context):
        with pytest.raises(EvaluationError) as exc_info:
            resolver.resolve("{{ $json.foo + }}", context)
        assert exc_info.value.expression == "$json.foo +"

    def test_unknown_variable(self, resolver, context):
        with pytest.raises(EvaluationError, match=r"Unknown variable \$nope"):
            resolver.resolve("{{ $nope }}", context)
