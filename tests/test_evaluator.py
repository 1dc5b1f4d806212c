"""Server evaluation must agree with the transpiled client code."""

import json
import math
import shutil
import subprocess
from typing import Any

import pytest
from lockstep.rx import semantics as js
from lockstep.rx.evaluator import EvaluationError, evaluate
from lockstep.rx.transpiler import compile_rx


class TestArithmetic:
	def test_scenario_sum_of_product(self):
		assert evaluate("@a + @b * @c", {"a": 1, "b": 2, "c": 3}) == 7

	def test_division_follows_floating_point(self):
		assert evaluate("@a / 0", {"a": 1}) == math.inf
		assert evaluate("@a / 0", {"a": -1}) == -math.inf
		assert math.isnan(evaluate("@a / 0", {"a": 0}))
		assert evaluate("@a / 2", {"a": 3}) == 1.5

	def test_remainder_takes_sign_of_dividend(self):
		assert evaluate("@a % 3", {"a": -7}) == -1
		assert evaluate("@a % 3", {"a": 7}) == 1

	def test_plus_concatenates_strings(self):
		assert evaluate("@a + @b", {"a": "1", "b": 2}) == "12"
		assert evaluate('@name <> "!"', {"name": "hi"}) == "hi!"

	def test_minus_coerces_strings(self):
		assert evaluate('@a - "1"', {"a": "3"}) == 2

	def test_missing_field_reads_as_null(self):
		assert evaluate("@missing", {}) is None
		assert evaluate("@missing + 1", {}) == 1


class TestComparison:
	def test_strict_equality(self):
		assert evaluate('@x == "1"', {"x": 1}) is False
		assert evaluate("@x == 1", {"x": 1.0}) is True
		assert evaluate("@x == true", {"x": 1}) is False
		assert evaluate("@x != nil", {"x": 0}) is True

	def test_missing_key_equals_nil(self):
		assert evaluate("@user.email == nil", {"user": {}}) is True
		assert evaluate("@user.email != nil", {"user": {"email": "a"}}) is True
		assert evaluate("nil == @x", {}) is True

	def test_relational_coercion(self):
		assert evaluate('@a < "10"', {"a": 9}) is True
		assert evaluate('"9" < "10"', {}) is False

	def test_is_nil(self):
		assert evaluate("@x is nil", {"x": None}) is True
		assert evaluate("@x is not nil", {"x": 0}) is True
		assert evaluate("is_nil(@x)", {}) is True

	def test_membership(self):
		assert evaluate('"b" in @tags', {"tags": ["a", "b"]}) is True
		assert evaluate('"c" not in @tags', {"tags": ["a", "b"]}) is True


class TestLogic:
	def test_and_or_return_deciding_operand(self):
		assert evaluate('@s || "default"', {"s": ""}) == "default"
		assert evaluate('@xs || "empty"', {"xs": []}) == []
		assert evaluate("@a && @b", {"a": 0, "b": 1}) == 0
		assert evaluate("@a && @b", {"a": 2, "b": 3}) == 3

	def test_not_uses_js_truthiness(self):
		assert evaluate("!@x", {"x": []}) is False
		assert evaluate("!@x", {"x": ""}) is True
		assert evaluate("!@x", {"x": math.nan}) is True

	def test_short_circuit_skips_failing_read(self):
		assert evaluate("@user && @user.name", {"user": None}) is None

	def test_ternary(self):
		assert evaluate('"yes" if @ok else "no"', {"ok": 1}) == "yes"


class TestAccess:
	def test_member_read(self):
		assert evaluate("@user.name", {"user": {"name": "ada"}}) == "ada"
		assert evaluate("@user.age", {"user": {"name": "ada"}}) is None

	def test_read_through_null_raises(self):
		with pytest.raises(TypeError):
			evaluate("@user.name", {"user": None})

	def test_index_and_length(self):
		assert evaluate("@xs[1]", {"xs": [1, 2]}) == 2
		assert evaluate("@xs[5]", {"xs": [1, 2]}) is None
		assert evaluate("@xs.length", {"xs": [1, 2]}) == 2

	def test_get_tolerates_null(self):
		assert evaluate('get(@user, "name", "anon")', {"user": None}) == "anon"
		assert evaluate('get_in(@m, ["a", "b"])', {"m": {"a": {"b": 3}}}) == 3
		assert evaluate('get_in(@m, ["a", "x", "y"])', {"m": {"a": {}}}) is None

	def test_fstring_uses_js_string_conversion(self):
		assert evaluate('f"Hi {@n}"', {"n": 1.5}) == "Hi 1.5"
		assert evaluate('f"Hi {@n}"', {"n": 2.0}) == "Hi 2"
		assert evaluate('f"{@n}"', {"n": None}) == "null"
		assert evaluate('f"{@ok}"', {"ok": True}) == "true"


class TestBuiltins:
	def test_parse_failures_are_null(self):
		assert evaluate("to_int(@s)", {"s": "abc"}) is None
		assert evaluate("to_int(@s)", {"s": "42px"}) == 42
		assert evaluate("to_float(@s)", {"s": "1.5kg"}) == 1.5
		assert evaluate("to_float(@s)", {"s": ""}) is None

	def test_strings(self):
		assert evaluate("upper(trim(@s))", {"s": "  hi "}) == "HI"
		assert evaluate('replace("a-b-c", "-", "+")', {}) == "a+b+c"
		assert evaluate('slice("hello", 1, 3)', {}) == "ell"
		assert evaluate('slice("hello", -3)', {}) == "llo"
		assert evaluate('humanize("first_name")', {}) == "First name"
		assert evaluate('starts_with(@s, "he")', {"s": "hello"}) is True
		assert evaluate('contains(@s, "ll")', {"s": "hello"}) is True
		assert evaluate('matches(@s, "^h.*o$")', {"s": "hello"}) is True
		assert evaluate('regex_replace(@s, "l+", "L")', {"s": "hello"}) == "heLo"

	def test_lists(self):
		state = {"xs": [1, 2, 3]}
		assert evaluate("map(@xs, lambda x: x * 2)", state) == [2, 4, 6]
		assert evaluate("filter(@xs, lambda x: x > 1)", state) == [2, 3]
		assert evaluate("reject(@xs, lambda x: x > 1)", state) == [1]
		assert evaluate("@xs ++ [4]", state) == [1, 2, 3, 4]
		assert evaluate("count(@xs)", state) == 3
		assert evaluate('join(["a", nil, "b"], "-")', {}) == "a--b"

	def test_lambda_scope_is_restored(self):
		state = {"xs": [[1], [2, 3]]}
		assert evaluate("map(@xs, lambda x: map(x, lambda x: x + 1))", state) == [
			[2],
			[3, 4],
		]

	def test_length_of_null_raises(self):
		with pytest.raises(TypeError):
			evaluate("length(@s)", {"s": None})

	def test_validators(self):
		assert evaluate("valid_card_number(@c)", {"c": "4111111111111111"}) is True
		assert evaluate("valid_card_number(@c)", {"c": "4111111111111112"}) is False
		assert evaluate("valid_card_number(@c)", {"c": "378282246310005"}) is True
		assert evaluate("valid_email(@e)", {"e": "a@b.co"}) is True
		assert evaluate("valid_email(@e)", {"e": "a@b"}) is False

	def test_unknown_function_raises(self):
		with pytest.raises(EvaluationError):
			evaluate("unknown(@x)", {"x": 1})

	def test_unbound_name_raises(self):
		with pytest.raises(EvaluationError):
			evaluate("x + 1", {})


class TestUtf16:
	"""Strings are measured, sliced and ordered by UTF-16 code unit."""

	def test_length_counts_code_units(self):
		assert evaluate("length(@s)", {"s": "a\U0001f600"}) == 3
		assert evaluate("@s.length", {"s": "\U0001f600"}) == 2

	def test_slice_and_index_by_code_unit(self):
		s = "\U0001f600ab"
		assert evaluate("slice(@s, 0, 2)", {"s": s}) == "\U0001f600"
		assert evaluate("slice(@s, 2)", {"s": s}) == "ab"
		assert evaluate("slice(@s, -1)", {"s": s}) == "b"
		assert evaluate("@s[2]", {"s": s}) == "a"
		assert evaluate("@s[0]", {"s": s}) == "\ud83d"

	def test_string_order_uses_code_units(self):
		# U+FF61 sorts after the high surrogate of U+1F600
		assert evaluate("@a < @b", {"a": "\uff61", "b": "\U0001f600"}) is False
		assert evaluate("@a > @b", {"a": "\uff61", "b": "\U0001f600"}) is True

	def test_trim_uses_js_whitespace(self):
		assert evaluate("trim(@s)", {"s": "\ufeff\u00a0hi\u3000"}) == "hi"
		# NEL is not whitespace to String.prototype.trim
		assert evaluate("trim(@s)", {"s": "hi\u0085"}) == "hi\u0085"
		assert evaluate("to_int(@s)", {"s": "\ufeff42"}) == 42

	def test_regex_classes_are_ascii(self):
		assert evaluate(r'matches(@s, "^\\d+$")', {"s": "\u0661\u0662"}) is False
		assert evaluate(r'matches(@s, "^\\d+$")', {"s": "12"}) is True
		assert evaluate(r'regex_replace(@s, "\\w", "_")', {"s": "\u00e91"}) == "\u00e9_"


class TestSlice:
	def test_bounds_coerce_like_js(self):
		assert evaluate('slice(@s, "1", 2)', {"s": "hello"}) == "el"
		assert evaluate("slice(@s, @n, 2)", {"s": "hello", "n": None}) == "he"
		assert evaluate("slice(@s, 1.7, 2)", {"s": "hello"}) == "el"

	def test_nan_bounds_are_zero(self):
		assert evaluate('slice(@s, "x", 2)', {"s": "hello"}) == ""
		assert evaluate('slice(@s, "x")', {"s": "hello"}) == "hello"

	def test_out_of_range_bounds_clamp(self):
		assert evaluate("slice(@s, -10, 12)", {"s": "hello"}) == "he"
		assert evaluate("slice(@s, -2, 0)", {"s": "hello"}) == ""
		assert evaluate("slice(@xs, 1, 10)", {"xs": [1, 2, 3]}) == [2, 3]
		assert evaluate("slice(@xs, 2, -1)", {"xs": [1, 2, 3]}) == []


class TestNumberFormatting:
	def test_large_integral_values_print_as_doubles(self):
		assert evaluate('f"{@n}"', {"n": 1.2345678901234568e20}) == "123456789012345680000"
		assert evaluate('f"{@n}"', {"n": 123456789012345678901}) == "123456789012345680000"
		assert evaluate('f"{@n}"', {"n": 2.0**53}) == "9007199254740992"
		assert evaluate('f"{@n}"', {"n": 1e21}) == "1e+21"

	def test_safe_integers_are_exact(self):
		assert evaluate('f"{@n}"', {"n": 2**53 - 1}) == "9007199254740991"
		assert evaluate('f"{@n}"', {"n": -42.0}) == "-42"


# =============================================================================
# Cross-runtime parity, run under node when it is installed
# =============================================================================

PARITY_CASES: list[tuple[str, dict[str, Any]]] = [
	("@a + @b * @c", {"a": 1, "b": 2, "c": 3}),
	("@a + @b", {"a": "1", "b": 2}),
	("@a / 4", {"a": 3}),
	("@a / 0", {"a": 0}),
	("@a / 0", {"a": -1}),
	("@a % 3", {"a": -7}),
	('@x == "1"', {"x": 1}),
	('@s || "default"', {"s": ""}),
	("@xs || 0", {"xs": []}),
	("!@xs", {"xs": []}),
	('@a < "10"', {"a": 9}),
	('"9" < "10"', {}),
	('f"{@n} items"', {"n": 2.0}),
	('f"{@n}"', {"n": 0.1}),
	('f"{@n}"', {"n": 123456789012345678901}),
	('f"{@n}"', {"n": 1.2345678901234568e20}),
	("to_int(@s)", {"s": "42px"}),
	("to_int(@s)", {"s": "abc"}),
	("to_int(@s)", {"s": "\ufeff42"}),
	("to_float(@s)", {"s": " 1.5e3x"}),
	("upper(trim(@s))", {"s": "  hi "}),
	("trim(@s)", {"s": "\ufeff\u00a0hi\u3000"}),
	("trim(@s)", {"s": "hi\u0085"}),
	('replace(@s, "-", "+")', {"s": "a-b-c"}),
	("slice(@s, 1, 3)", {"s": "hello"}),
	("slice(@s, -3)", {"s": "hello"}),
	('slice(@s, "1", 2)', {"s": "hello"}),
	('slice(@s, "x", 2)', {"s": "hello"}),
	("slice(@s, @n, 2)", {"s": "hello", "n": None}),
	("slice(@s, 0, 2)", {"s": "\U0001f600ab"}),
	("slice(@s, 1, 2)", {"s": "\U0001f600ab"}),
	("length(@s)", {"s": "a\U0001f600"}),
	("@s[1]", {"s": "\U0001f600"}),
	("@a < @b", {"a": "\uff61", "b": "\U0001f600"}),
	(r'matches(@s, "^\\d+$")', {"s": "\u0661\u0662"}),
	(r'regex_replace(@s, "\\w", "_")', {"s": "\u00e91"}),
	('humanize("first_name")', {}),
	("map(@xs, lambda x: x * 2)", {"xs": [1, 2, 3]}),
	("reject(@xs, lambda x: x > 1)", {"xs": [1, 2, 3]}),
	("@xs ++ [4]", {"xs": [1, 2]}),
	('"b" in @tags', {"tags": ["a", "b"]}),
	('get(@user, "name", "anon")', {"user": None}),
	('get_in(@m, ["a", "b"])', {"m": {"a": {"b": 3}}}),
	('join(["a", nil, "b"], "-")', {}),
	("when(@ok, @x)", {"ok": 0, "x": 1}),
	("is_nil(@x)", {}),
	("@user.email == nil", {"user": {}}),
	("@user.email != nil", {"user": {"email": "a@b.co"}}),
	("@user && @user.name", {"user": None}),
	('regex_replace(@s, "l+", "L")', {"s": "hello"}),
	('{"n": length(@xs), "first": @xs[0]}', {"xs": ["a"]}),
]

# Tags undefined and non-finite numbers, which JSON would fold into null
TAG_SCRIPT = """
const tag = (v) => {
	if (v === undefined) return { $undefined: true };
	if (typeof v === "number" && !Number.isFinite(v)) return { $number: String(v) };
	if (Array.isArray(v)) return v.map(tag);
	if (v !== null && typeof v === "object") {
		return Object.fromEntries(Object.entries(v).map(([k, x]) => [k, tag(x)]));
	}
	return v;
};
"""


def tag(value: Any) -> Any:
	if isinstance(value, float) and not math.isfinite(value):
		return {"$number": js.number_to_string(value)}
	if isinstance(value, list):
		return [tag(v) for v in value]
	if isinstance(value, dict):
		return {k: tag(v) for k, v in value.items()}
	return value


def same_js_value(client: Any, server: Any) -> bool:
	"""Equality that keeps JS types apart: 1 vs true vs "1", null vs undefined."""
	if isinstance(client, bool) or isinstance(server, bool):
		return type(client) is type(server) and client == server
	if js.is_number(client) and js.is_number(server):
		return client == server
	if isinstance(client, list) and isinstance(server, list):
		return len(client) == len(server) and all(
			same_js_value(c, s) for c, s in zip(client, server, strict=True)
		)
	if isinstance(client, dict) and isinstance(server, dict):
		return client.keys() == server.keys() and all(
			same_js_value(client[k], server[k]) for k in client
		)
	return type(client) is type(server) and client == server


def test_same_js_value_keeps_types_apart():
	assert same_js_value(2, 2.0)
	assert not same_js_value(1, True)
	assert not same_js_value("1", 1)
	assert not same_js_value({"$undefined": True}, None)
	assert not same_js_value([0], [False])
	assert same_js_value({"a": [1, "x"]}, {"a": [1.0, "x"]})


@pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")
@pytest.mark.parametrize(("source", "state"), PARITY_CASES)
def test_node_parity(source: str, state: dict[str, Any]):
	compiled = compile_rx(source)
	assert compiled.ok, compiled.reason
	script = (
		TAG_SCRIPT
		+ f"const state = {json.dumps(state)};\n"
		+ f"const result = {compiled.code};\n"
		+ "process.stdout.write(JSON.stringify(tag(result)));\n"
	)
	proc = subprocess.run(
		["node", "-e", script], capture_output=True, text=True, check=True, timeout=30
	)
	client = json.loads(proc.stdout)
	server = tag(evaluate(source, state))
	assert same_js_value(client, server), (client, server)
