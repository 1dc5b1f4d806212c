"""Whitelisted expression functions.

Every builtin has two renditions that must agree:
- `emit` builds the client JavaScript from already-transpiled argument nodes
- `run` computes the same result on the server from evaluated argument values

Functions taking an inline function (`map`, `filter`, `reject`) receive an
Arrow node on the client and a Python callable on the server.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from lockstep.rx import semantics as js
from lockstep.rx import validators
from lockstep.rx.nodes import (
	Array,
	Arrow,
	Binary,
	Call,
	ExprNode,
	Identifier,
	Literal,
	Member,
	New,
	Regex,
	Spread,
	Subscript,
	Ternary,
	Unary,
)

# Namespace the artifact imports the shared client validators under
VALIDATORS_NAMESPACE = "validators"


@dataclass(slots=True)
class Builtin:
	name: str
	arity: tuple[int, ...]
	emit: Callable[..., ExprNode]
	run: Callable[..., Any]
	fn_arg: int | None = None
	"""Index of the single-parameter inline function argument, if any."""
	helper: str | None = None
	"""Name of the shared client validator this builtin calls into."""


BUILTINS: dict[str, Builtin] = {}


def builtin(
	*names: str,
	arity: int | tuple[int, ...],
	run: Callable[..., Any],
	fn_arg: int | None = None,
	helper: str | None = None,
) -> Callable[[Callable[..., ExprNode]], Builtin]:
	"""Register an emit function under one or more names.

	Usage:
		@builtin("trim", arity=1, run=_run_trim)
		def emit_trim(s): ...
	"""
	arities = (arity,) if isinstance(arity, int) else arity

	def decorator(emit_fn: Callable[..., ExprNode]) -> Builtin:
		entry = Builtin(
			name=names[0],
			arity=arities,
			emit=emit_fn,
			run=run,
			fn_arg=fn_arg,
			helper=helper,
		)
		for name in names:
			BUILTINS[name] = entry
		return entry

	return decorator


def _method(obj: ExprNode, name: str, *args: ExprNode) -> ExprNode:
	return Call(Member(obj, name), list(args))


def _nan_to_null(call: ExprNode) -> ExprNode:
	"""((v) => Number.isNaN(v) ? null : v)(call)"""
	check = Call(Member(Identifier("Number"), "isNaN"), [Identifier("v")])
	return Call(Arrow(["v"], Ternary(check, Literal(None), Identifier("v"))), [call])


def _require_str(value: Any, fn: str) -> str:
	if not isinstance(value, str):
		raise TypeError(f"{fn} expects a string, got {js.to_js_string(value)!r}")
	return value


def _require_list(value: Any, fn: str) -> list[Any]:
	if not isinstance(value, (list, tuple)):
		raise TypeError(f"{fn} expects a list, got {js.to_js_string(value)!r}")
	return list(value)  # pyright: ignore[reportUnknownArgumentType]


# =============================================================================
# Strings
# =============================================================================


def _run_length(x: Any) -> Any:
	if x is None:
		raise TypeError("Cannot read properties of null (reading 'length')")
	if isinstance(x, str):
		return js.utf16_length(x)
	if isinstance(x, (list, tuple)):
		return len(x)  # pyright: ignore[reportUnknownArgumentType]
	return None


@builtin("length", "len", "count", arity=1, run=_run_length)
def emit_length(x: ExprNode) -> ExprNode:
	"""length(x) -> x.length"""
	return Member(x, "length")


@builtin(
	"trim",
	arity=1,
	run=lambda s: _require_str(s, "trim").strip(js.JS_WHITESPACE),
)
def emit_trim(s: ExprNode) -> ExprNode:
	return _method(s, "trim")


@builtin("upper", arity=1, run=lambda s: _require_str(s, "upper").upper())
def emit_upper(s: ExprNode) -> ExprNode:
	return _method(s, "toUpperCase")


@builtin("lower", arity=1, run=lambda s: _require_str(s, "lower").lower())
def emit_lower(s: ExprNode) -> ExprNode:
	return _method(s, "toLowerCase")


def _run_contains(haystack: Any, needle: Any) -> bool:
	if isinstance(haystack, str):
		return js.to_js_string(needle) in haystack
	items = _require_list(haystack, "contains")
	return any(js.same_value_zero(item, needle) for item in items)


@builtin("contains", arity=2, run=_run_contains)
def emit_contains(haystack: ExprNode, needle: ExprNode) -> ExprNode:
	"""contains(s, sub) -> s.includes(sub)"""
	return _method(haystack, "includes", needle)


@builtin(
	"starts_with",
	arity=2,
	run=lambda s, p: _require_str(s, "starts_with").startswith(js.to_js_string(p)),
)
def emit_starts_with(s: ExprNode, prefix: ExprNode) -> ExprNode:
	return _method(s, "startsWith", prefix)


@builtin(
	"ends_with",
	arity=2,
	run=lambda s, p: _require_str(s, "ends_with").endswith(js.to_js_string(p)),
)
def emit_ends_with(s: ExprNode, suffix: ExprNode) -> ExprNode:
	return _method(s, "endsWith", suffix)


def _relative_index(position: Any, size: int) -> int:
	"""Resolve a slice bound against `size` the way Array/String slice do."""
	n = js.to_integer_or_infinity(position)
	if n < 0:
		return int(max(size + n, 0))
	return int(min(n, size))


def _run_slice(s: Any, start: Any, length: Any = None) -> Any:
	if not isinstance(s, (str, list, tuple)):
		raise TypeError(f"slice expects a string or list, got {js.to_js_string(s)!r}")
	size = js.utf16_length(s) if isinstance(s, str) else len(s)  # pyright: ignore[reportUnknownArgumentType]
	begin = _relative_index(start, size)
	if length is None:
		end = size
	else:
		end = _relative_index(js.to_number(start) + js.to_number(length), size)
	if isinstance(s, str):
		return js.utf16_slice(s, begin, end)
	return s[begin:max(begin, end)]  # pyright: ignore[reportUnknownVariableType]


def _number(x: ExprNode) -> ExprNode:
	return Call(Identifier("Number"), [x])


@builtin("slice", arity=(2, 3), run=_run_slice)
def emit_slice(s: ExprNode, start: ExprNode, length: ExprNode | None = None) -> ExprNode:
	"""slice(s, start, len) -> s.slice(start, Number(start) + Number(len))"""
	if length is None:
		return _method(s, "slice", start)
	return _method(s, "slice", start, Binary(_number(start), "+", _number(length)))


def _run_replace(s: Any, pattern: Any, replacement: Any) -> str:
	text = _require_str(s, "replace")
	pat = js.to_js_string(pattern)
	rep = js.to_js_string(replacement)
	if pat == "":
		return rep.join(text)
	return text.replace(pat, rep)


@builtin("replace", arity=3, run=_run_replace)
def emit_replace(s: ExprNode, pattern: ExprNode, replacement: ExprNode) -> ExprNode:
	"""replace(s, p, r) -> s.split(p).join(r), a literal replace-all"""
	return _method(_method(s, "split", pattern), "join", replacement)


def _run_regex_replace(s: Any, pattern: Any, replacement: Any) -> str:
	text = _require_str(s, "regex_replace")
	rep = js.to_js_string(replacement)
	return re.sub(js.to_js_string(pattern), lambda _m: rep, text, flags=re.ASCII)


@builtin("regex_replace", arity=3, run=_run_regex_replace)
def emit_regex_replace(
	s: ExprNode, pattern: ExprNode, replacement: ExprNode
) -> ExprNode:
	"""regex_replace(s, re, r) -> s.replace(new RegExp(re, "g"), () => r)"""
	regex = New(Identifier("RegExp"), [pattern, Literal("g")])
	return _method(s, "replace", regex, Arrow([], replacement))


def _run_matches(s: Any, pattern: Any) -> bool:
	# \d and \w are ASCII classes in a JS RegExp without the u flag
	found = re.search(js.to_js_string(pattern), js.to_js_string(s), re.ASCII)
	return found is not None


@builtin("matches", arity=2, run=_run_matches)
def emit_matches(s: ExprNode, pattern: ExprNode) -> ExprNode:
	"""matches(s, re) -> new RegExp(re).test(s)"""
	return _method(New(Identifier("RegExp"), [pattern]), "test", s)


@builtin("to_int", arity=1, run=js.parse_int)
def emit_to_int(x: ExprNode) -> ExprNode:
	"""to_int(x) -> parseInt(x, 10), null when not a number"""
	return _nan_to_null(Call(Identifier("parseInt"), [x, Literal(10)]))


@builtin("to_float", arity=1, run=js.parse_float)
def emit_to_float(x: ExprNode) -> ExprNode:
	"""to_float(x) -> parseFloat(x), null when not a number"""
	return _nan_to_null(Call(Identifier("parseFloat"), [x]))


@builtin("to_string", arity=1, run=js.to_js_string)
def emit_to_string(x: ExprNode) -> ExprNode:
	return Call(Identifier("String"), [x])


def _run_humanize(x: Any) -> str:
	text = js.to_js_string(x).replace("_", " ")
	if text and re.match(r"\w", text[0], re.ASCII):
		return text[0].upper() + text[1:]
	return text


@builtin("humanize", arity=1, run=_run_humanize)
def emit_humanize(x: ExprNode) -> ExprNode:
	"""humanize("first_name") -> "First name" """
	spaced = _method(Call(Identifier("String"), [x]), "replace", Regex("_", "g"), Literal(" "))
	upper_first = Arrow(["c"], _method(Identifier("c"), "toUpperCase"))
	return _method(spaced, "replace", Regex("^\\w"), upper_first)


# =============================================================================
# Lists
# =============================================================================


def _run_join(items: Any, sep: Any = ",") -> str:
	values = _require_list(items, "join")
	return js.to_js_string(sep).join("" if v is None else js.to_js_string(v) for v in values)


@builtin("join", arity=(1, 2), run=_run_join)
def emit_join(items: ExprNode, sep: ExprNode | None = None) -> ExprNode:
	if sep is None:
		return _method(items, "join")
	return _method(items, "join", sep)


@builtin(
	"map",
	arity=2,
	fn_arg=1,
	run=lambda items, fn: [fn(v) for v in _require_list(items, "map")],
)
def emit_map(items: ExprNode, fn: ExprNode) -> ExprNode:
	return _method(items, "map", fn)


@builtin(
	"filter",
	arity=2,
	fn_arg=1,
	run=lambda items, fn: [v for v in _require_list(items, "filter") if js.truthy(fn(v))],
)
def emit_filter(items: ExprNode, fn: ExprNode) -> ExprNode:
	return _method(items, "filter", fn)


@builtin(
	"reject",
	arity=2,
	fn_arg=1,
	run=lambda items, fn: [
		v for v in _require_list(items, "reject") if not js.truthy(fn(v))
	],
)
def emit_reject(items: ExprNode, fn: ExprNode) -> ExprNode:
	"""reject(xs, lambda x: c) -> xs.filter((x) => !(c))"""
	from lockstep.rx.transpiler import TranspileError

	if not isinstance(fn, Arrow):
		raise TranspileError("reject expects an inline function")
	return _method(items, "filter", Arrow(fn.params, Unary("!", fn.body)))


def concat_lists(left: Any, right: Any) -> list[Any]:
	return _require_list(left, "concat") + _require_list(right, "concat")


@builtin("concat", arity=2, run=concat_lists)
def emit_concat(left: ExprNode, right: ExprNode) -> ExprNode:
	"""concat(a, b) -> [...a, ...b]"""
	return Array([Spread(left), Spread(right)])


def member_of(items: Any, value: Any) -> bool:
	if isinstance(items, str):
		return js.to_js_string(value) in items
	return any(js.same_value_zero(v, value) for v in _require_list(items, "member"))


@builtin("member", arity=2, run=member_of)
def emit_member(items: ExprNode, value: ExprNode) -> ExprNode:
	"""member(xs, x) -> xs.includes(x)"""
	return _method(items, "includes", value)


# =============================================================================
# Maps and utilities
# =============================================================================


def _run_get(obj: Any, key: Any, default: Any = None) -> Any:
	value = js.read_optional(obj, key)
	return default if value is None else value


@builtin("get", arity=(2, 3), run=_run_get)
def emit_get(obj: ExprNode, key: ExprNode, default: ExprNode | None = None) -> ExprNode:
	"""get(m, k) -> m?.[k] ?? null; get(m, k, d) -> m?.[k] ?? d"""
	fallback = default if default is not None else Literal(None)
	return Binary(Subscript(obj, key, optional=True), "??", fallback)


def _run_get_in(obj: Any, path: Any) -> Any:
	current = obj
	for key in _require_list(path, "get_in"):
		current = js.read_optional(current, key)
	return current


@builtin("get_in", arity=2, run=_run_get_in)
def emit_get_in(obj: ExprNode, path: ExprNode) -> ExprNode:
	"""get_in(m, [a, b]) -> [a, b].reduce((o, k) => o?.[k], m) ?? null"""
	step = Arrow(["o", "k"], Subscript(Identifier("o"), Identifier("k"), optional=True))
	return Binary(_method(path, "reduce", step, obj), "??", Literal(None))


@builtin("is_nil", arity=1, run=lambda x: x is None)
def emit_is_nil(x: ExprNode) -> ExprNode:
	"""is_nil(x) -> x == null (covers undefined)"""
	return Binary(x, "==", Literal(None))


@builtin("when", arity=2, run=lambda cond, value: value if js.truthy(cond) else None)
def emit_when(cond: ExprNode, value: ExprNode) -> ExprNode:
	"""when(c, a) -> c ? a : null"""
	return Ternary(cond, value, Literal(None))


def _validator(name: str) -> ExprNode:
	return Member(Identifier(VALIDATORS_NAMESPACE), name)


@builtin(
	"valid_card_number",
	arity=1,
	run=validators.valid_card_number,
	helper="validCardNumber",
)
def emit_valid_card_number(x: ExprNode) -> ExprNode:
	return Call(_validator("validCardNumber"), [x])


@builtin("valid_email", arity=1, run=validators.valid_email, helper="validEmail")
def emit_valid_email(x: ExprNode) -> ExprNode:
	return Call(_validator("validEmail"), [x])
