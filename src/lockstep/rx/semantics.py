"""
Server-side renditions of the client runtime's value semantics.

The evaluator uses these helpers so an expression computed on the server gives
the same answer as its transpiled form running in the browser: JS string
conversion, truthiness, strict equality, numeric coercion and IEEE division.
"""

from __future__ import annotations

import math
import re
from decimal import Decimal
from typing import Any

_NUMBER_RE = re.compile(
	r"^[+-]?(?:Infinity|\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)$",
	re.ASCII,
)
_HEX_RE = re.compile(r"^0[xX][0-9a-fA-F]+$")
_INT_PREFIX_RE = re.compile(r"^[+-]?\d+", re.ASCII)
_FLOAT_PREFIX_RE = re.compile(
	r"^[+-]?(?:Infinity|\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)",
	re.ASCII,
)

# WhiteSpace and LineTerminator code points, as String.prototype.trim strips them
JS_WHITESPACE = (
	"\t\n\v\f\r \u00a0\u1680\u2000\u2001\u2002\u2003\u2004\u2005\u2006"
	"\u2007\u2008\u2009\u200a\u2028\u2029\u202f\u205f\u3000\ufeff"
)

# Integral doubles past this bound are not all exactly representable
_SAFE_INTEGER = 2**53


def is_number(value: Any) -> bool:
	return isinstance(value, (int, float)) and not isinstance(value, bool)


def number_to_string(value: int | float) -> str:
	"""Format a number the way JS `String(n)` does.

	Large integers print as their shortest round-tripping double, so
	123456789012345678901 reads "123456789012345680000" as it does in JS.
	"""
	if isinstance(value, int):
		if abs(value) < _SAFE_INTEGER:
			return str(value)
		value = float(value)
	if math.isnan(value):
		return "NaN"
	if math.isinf(value):
		return "Infinity" if value > 0 else "-Infinity"
	if value.is_integer() and abs(value) < _SAFE_INTEGER:
		return str(int(value))
	text = repr(value)
	if "e" not in text:
		return text.removesuffix(".0")
	mantissa, exp_text = text.split("e")
	exp = int(exp_text)
	if -7 < exp < 21:
		return format(Decimal(text), "f")
	sign = "+" if exp > 0 else "-"
	return f"{mantissa}e{sign}{abs(exp)}"


def to_js_string(value: Any) -> str:
	"""JS `String(value)` for JSON-like values."""
	if value is None:
		return "null"
	if isinstance(value, bool):
		return "true" if value else "false"
	if isinstance(value, (int, float)):
		return number_to_string(value)
	if isinstance(value, str):
		return value
	if isinstance(value, (list, tuple)):
		return ",".join("" if v is None else to_js_string(v) for v in value)  # pyright: ignore[reportUnknownVariableType]
	if isinstance(value, dict):
		return "[object Object]"
	return str(value)


def truthy(value: Any) -> bool:
	"""JS truthiness: empty collections are truthy, NaN is falsy."""
	if value is None or value is False:
		return False
	if isinstance(value, (int, float)) and not isinstance(value, bool):
		return value != 0 and not math.isnan(value)
	if isinstance(value, str):
		return value != ""
	return True


def to_number(value: Any) -> int | float:
	"""JS `Number(value)`."""
	if value is None:
		return 0
	if isinstance(value, bool):
		return 1 if value else 0
	if isinstance(value, (int, float)):
		return value
	if isinstance(value, str):
		text = value.strip(JS_WHITESPACE)
		if text == "":
			return 0
		if _HEX_RE.match(text):
			return int(text, 16)
		if _NUMBER_RE.match(text):
			return float(text.replace("Infinity", "inf"))
		return math.nan
	if isinstance(value, (list, tuple)):
		return to_number(to_js_string(value))
	return math.nan


def strict_equal(left: Any, right: Any) -> bool:
	"""JS `===` over JSON-like values."""
	if left is None or right is None:
		return left is right
	if isinstance(left, bool) or isinstance(right, bool):
		return isinstance(left, bool) and isinstance(right, bool) and left == right
	if is_number(left) and is_number(right):
		return left == right
	if isinstance(left, str) and isinstance(right, str):
		return left == right
	if isinstance(left, (int, float, str)) or isinstance(right, (int, float, str)):
		return False
	# Arrays and objects compare by reference
	return left is right


def same_value_zero(left: Any, right: Any) -> bool:
	"""Equality used by `Array.prototype.includes` (NaN matches NaN)."""
	if (
		isinstance(left, float)
		and isinstance(right, float)
		and math.isnan(left)
		and math.isnan(right)
	):
		return True
	return strict_equal(left, right)


def _to_primitive(value: Any) -> Any:
	if isinstance(value, (list, tuple, dict)):
		return to_js_string(value)
	return value


def add(left: Any, right: Any) -> Any:
	"""JS `+`: string concatenation when either side is a string."""
	left = _to_primitive(left)
	right = _to_primitive(right)
	if isinstance(left, str) or isinstance(right, str):
		return to_js_string(left) + to_js_string(right)
	return to_number(left) + to_number(right)


def subtract(left: Any, right: Any) -> int | float:
	return to_number(left) - to_number(right)


def multiply(left: Any, right: Any) -> int | float:
	return to_number(left) * to_number(right)


def divide(left: Any, right: Any) -> float:
	"""JS `/`: division by zero gives Infinity, -Infinity or NaN."""
	a = to_number(left)
	b = to_number(right)
	if b == 0:
		if a == 0 or math.isnan(a):
			return math.nan
		return math.copysign(math.inf, a) * math.copysign(1.0, b)
	if math.isinf(a) and math.isinf(b):
		return math.nan
	return a / b


def remainder(left: Any, right: Any) -> int | float:
	"""JS `%`: the result takes the sign of the dividend."""
	a = to_number(left)
	b = to_number(right)
	if b == 0 or math.isnan(a) or math.isnan(b) or math.isinf(a):
		return math.nan
	if math.isinf(b):
		return a
	if isinstance(a, int) and isinstance(b, int):
		r = abs(a) % abs(b)
		return -r if a < 0 else r
	return math.fmod(a, b)


def negate(value: Any) -> int | float:
	return -to_number(value)


def compare(left: Any, op: str, right: Any) -> bool:
	"""JS relational operators `<`, `<=`, `>`, `>=`."""
	if isinstance(left, str) and isinstance(right, str):
		# Strings order by UTF-16 code unit
		a: Any = left.encode("utf-16-be", "surrogatepass")
		b: Any = right.encode("utf-16-be", "surrogatepass")
	else:
		a = to_number(_to_primitive(left))
		b = to_number(_to_primitive(right))
		if math.isnan(a) or math.isnan(b):
			return False
	if op == "<":
		return a < b
	if op == "<=":
		return a <= b
	if op == ">":
		return a > b
	if op == ">=":
		return a >= b
	raise ValueError(f"Unknown comparison operator: {op}")


def to_integer_or_infinity(value: Any) -> int | float:
	"""ToIntegerOrInfinity: NaN becomes 0, fractions truncate toward zero."""
	number = to_number(value)
	if math.isnan(number):
		return 0
	if math.isinf(number):
		return number
	return math.trunc(number)


# JS strings are sequences of UTF-16 code units; astral characters count twice


def utf16_length(text: str) -> int:
	return len(text.encode("utf-16-le", "surrogatepass")) // 2


def utf16_slice(text: str, start: int, end: int) -> str:
	"""Code units `start` up to `end`, both already clamped to the length."""
	if start >= end:
		return ""
	units = text.encode("utf-16-le", "surrogatepass")
	return units[start * 2 : end * 2].decode("utf-16-le", "surrogatepass")


def _index_key(key: Any) -> int | None:
	if is_number(key) and float(key).is_integer() and key >= 0:
		return int(key)
	if isinstance(key, str) and key.isascii() and key.isdigit():
		return int(key)
	return None


def read(obj: Any, key: Any) -> Any:
	"""JS `obj[key]`, with a missing key reading as null.

	Reading through null raises TypeError, as it does on the client.
	"""
	if obj is None:
		raise TypeError(
			f"Cannot read properties of null (reading '{to_js_string(key)}')"
		)
	if isinstance(obj, dict):
		return obj.get(key if isinstance(key, str) else to_js_string(key))  # pyright: ignore[reportUnknownMemberType]
	if isinstance(obj, str):
		size = utf16_length(obj)
		if key == "length":
			return size
		index = _index_key(key)
		if index is None or index >= size:
			return None
		return utf16_slice(obj, index, index + 1)
	if isinstance(obj, (list, tuple)):
		if key == "length":
			return len(obj)  # pyright: ignore[reportUnknownArgumentType]
		index = _index_key(key)
		if index is None or index >= len(obj):  # pyright: ignore[reportUnknownArgumentType]
			return None
		return obj[index]  # pyright: ignore[reportUnknownVariableType]
	return None


def read_optional(obj: Any, key: Any) -> Any:
	"""JS `obj?.[key]`."""
	if obj is None:
		return None
	return read(obj, key)


def parse_int(value: Any) -> int | None:
	"""JS `parseInt(value, 10)`, with NaN reported as None."""
	text = to_js_string(value).lstrip(JS_WHITESPACE)
	match = _INT_PREFIX_RE.match(text)
	if match is None:
		return None
	return int(match.group(0))


def parse_float(value: Any) -> float | None:
	"""JS `parseFloat(value)`, with NaN reported as None."""
	text = to_js_string(value).lstrip(JS_WHITESPACE)
	match = _FLOAT_PREFIX_RE.match(text)
	if match is None:
		return None
	return float(match.group(0).replace("Infinity", "inf"))
