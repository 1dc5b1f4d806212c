"""JavaScript expression nodes produced by the transpiler.

Nodes know how to emit themselves into a list of string chunks and how
tightly they bind, so parent nodes can decide where parentheses are needed.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias, override

Primitive: TypeAlias = bool | int | float | str | None


# =============================================================================
# Base classes
# =============================================================================
class Node(ABC):
	"""Base class for all JS nodes."""

	__slots__: tuple[str, ...] = ()

	@abstractmethod
	def emit(self, out: list[str]) -> None:
		"""Emit this node as JavaScript code into the output buffer."""


class ExprNode(Node, ABC):
	"""Base class for expression nodes."""

	__slots__: tuple[str, ...] = ()

	def precedence(self) -> int:
		"""Operator precedence (higher = binds tighter). Default: primary (20)."""
		return 20

	@staticmethod
	def of(value: Any) -> ExprNode:
		"""Convert a JSON-like Python value to an ExprNode.

		Raises TypeError for values that have no JS literal form.
		"""
		if isinstance(value, ExprNode):
			return value
		# bool before int: bool is a subclass of int
		if isinstance(value, bool):
			return Literal(value)
		if isinstance(value, (int, float, str)) or value is None:
			return Literal(value)
		if isinstance(value, (list, tuple)):
			return Array([ExprNode.of(v) for v in value])  # pyright: ignore[reportUnknownVariableType]
		if isinstance(value, dict):
			props = [(str(k), ExprNode.of(v)) for k, v in value.items()]  # pyright: ignore[reportUnknownArgumentType]
			return Object(props)
		raise TypeError(f"Cannot convert {type(value).__name__} to ExprNode")


# =============================================================================
# Expression Nodes
# =============================================================================


@dataclass(slots=True)
class Identifier(ExprNode):
	"""JS identifier: x, state, validators"""

	name: str

	@override
	def emit(self, out: list[str]) -> None:
		out.append(self.name)


@dataclass(slots=True)
class Literal(ExprNode):
	"""JS literal: 42, "hello", true, null"""

	value: Primitive

	@override
	def precedence(self) -> int:
		# Negative numbers print with a leading minus sign
		if isinstance(self.value, (int, float)) and not isinstance(self.value, bool):
			if self.value < 0:
				return _PRECEDENCE["-u"]
		return 20

	@override
	def emit(self, out: list[str]) -> None:
		value = self.value
		if value is None:
			out.append("null")
		elif isinstance(value, bool):
			out.append("true" if value else "false")
		elif isinstance(value, str):
			out.append('"')
			out.append(_escape_string(value))
			out.append('"')
		elif isinstance(value, float):
			out.append(_format_float(value))
		else:
			out.append(str(value))


@dataclass(slots=True)
class Untranspilable(ExprNode):
	"""Marker for a construct outside the whitelist.

	Evaluates to undefined on the client; the comment names what was rejected.
	"""

	reason: str

	@override
	def emit(self, out: list[str]) -> None:
		out.append("(undefined /* untranspilable: ")
		out.append(self.reason.replace("*/", "* /"))
		out.append(" */)")


@dataclass(slots=True)
class Regex(ExprNode):
	"""JS regex literal: /pattern/flags"""

	pattern: str
	flags: str = ""

	@override
	def emit(self, out: list[str]) -> None:
		out.append("/")
		out.append(self.pattern.replace("/", "\\/"))
		out.append("/")
		out.append(self.flags)


@dataclass(slots=True)
class Array(ExprNode):
	"""JS array: [a, b, c]"""

	elements: Sequence[ExprNode]

	@override
	def emit(self, out: list[str]) -> None:
		out.append("[")
		for i, e in enumerate(self.elements):
			if i > 0:
				out.append(", ")
			e.emit(out)
		out.append("]")


@dataclass(slots=True)
class Object(ExprNode):
	"""JS object: { "key": value }"""

	props: Sequence[tuple[str, ExprNode]]

	@override
	def emit(self, out: list[str]) -> None:
		out.append("{")
		for i, (k, v) in enumerate(self.props):
			if i > 0:
				out.append(", ")
			out.append('"')
			out.append(_escape_string(k))
			out.append('": ')
			v.emit(out)
		out.append("}")


@dataclass(slots=True)
class Member(ExprNode):
	"""JS member access: obj.prop or obj?.prop"""

	obj: ExprNode
	prop: str
	optional: bool = False

	@override
	def emit(self, out: list[str]) -> None:
		_emit_primary(self.obj, out)
		out.append("?." if self.optional else ".")
		out.append(self.prop)


@dataclass(slots=True)
class Subscript(ExprNode):
	"""JS subscript access: obj[key] or obj?.[key]"""

	obj: ExprNode
	key: ExprNode
	optional: bool = False

	@override
	def emit(self, out: list[str]) -> None:
		_emit_primary(self.obj, out)
		out.append("?.[" if self.optional else "[")
		self.key.emit(out)
		out.append("]")


@dataclass(slots=True)
class Call(ExprNode):
	"""JS function call: fn(args)"""

	callee: ExprNode
	args: Sequence[ExprNode]

	@override
	def emit(self, out: list[str]) -> None:
		_emit_primary(self.callee, out)
		out.append("(")
		for i, a in enumerate(self.args):
			if i > 0:
				out.append(", ")
			a.emit(out)
		out.append(")")


@dataclass(slots=True)
class Unary(ExprNode):
	"""JS unary expression: -x, !x, typeof x"""

	op: str
	operand: ExprNode

	@override
	def precedence(self) -> int:
		op = self.op
		tag = "+u" if op == "+" else ("-u" if op == "-" else op)
		return _PRECEDENCE.get(tag, 17)

	@override
	def emit(self, out: list[str]) -> None:
		if self.op in {"typeof", "void"}:
			out.append(self.op)
			out.append(" ")
		else:
			out.append(self.op)
		# Avoid `- -x` collapsing into `--x`
		if self.op in {"-", "+"} and _starts_with_sign(self.operand):
			out.append("(")
			self.operand.emit(out)
			out.append(")")
			return
		_emit_paren(self.operand, self.op, "unary", out)


@dataclass(slots=True)
class Binary(ExprNode):
	"""JS binary expression: x + y, a && b"""

	left: ExprNode
	op: str
	right: ExprNode

	@override
	def precedence(self) -> int:
		return _PRECEDENCE.get(self.op, 0)

	@override
	def emit(self, out: list[str]) -> None:
		_emit_paren(self.left, self.op, "left", out)
		out.append(" ")
		out.append(self.op)
		out.append(" ")
		_emit_paren(self.right, self.op, "right", out)


@dataclass(slots=True)
class Ternary(ExprNode):
	"""JS ternary expression: cond ? a : b"""

	cond: ExprNode
	then: ExprNode
	else_: ExprNode

	@override
	def precedence(self) -> int:
		return _PRECEDENCE["?:"]

	@override
	def emit(self, out: list[str]) -> None:
		_emit_paren(self.cond, "?:", "left", out)
		out.append(" ? ")
		self.then.emit(out)
		out.append(" : ")
		self.else_.emit(out)


@dataclass(slots=True)
class Arrow(ExprNode):
	"""JS arrow function: (x) => expr"""

	params: Sequence[str]
	body: ExprNode

	@override
	def precedence(self) -> int:
		return _PRECEDENCE["=>"]

	@override
	def emit(self, out: list[str]) -> None:
		out.append("(")
		out.append(", ".join(self.params))
		out.append(") => ")
		if isinstance(self.body, Object):
			out.append("(")
			self.body.emit(out)
			out.append(")")
		else:
			self.body.emit(out)


@dataclass(slots=True)
class Template(ExprNode):
	"""JS template literal: `hello ${name}`

	Parts are either raw strings or expressions, in source order.
	"""

	parts: Sequence[str | ExprNode]

	@override
	def emit(self, out: list[str]) -> None:
		out.append("`")
		for p in self.parts:
			if isinstance(p, str):
				out.append(_escape_template(p))
			else:
				out.append("${")
				p.emit(out)
				out.append("}")
		out.append("`")


@dataclass(slots=True)
class Spread(ExprNode):
	"""JS spread: ...expr"""

	expr: ExprNode

	@override
	def emit(self, out: list[str]) -> None:
		out.append("...")
		_emit_paren(self.expr, ",", "unary", out)


@dataclass(slots=True)
class New(ExprNode):
	"""JS new expression: new Ctor(args)"""

	ctor: ExprNode
	args: Sequence[ExprNode]

	@override
	def emit(self, out: list[str]) -> None:
		out.append("new ")
		self.ctor.emit(out)
		out.append("(")
		for i, a in enumerate(self.args):
			if i > 0:
				out.append(", ")
			a.emit(out)
		out.append(")")


# =============================================================================
# Emit logic
# =============================================================================


def emit(node: Node) -> str:
	"""Emit a node as JavaScript code."""
	out: list[str] = []
	node.emit(out)
	return "".join(out)


# Operator precedence table (higher = binds tighter)
_PRECEDENCE: dict[str, int] = {
	# Primary
	".": 20,
	"[]": 20,
	"()": 20,
	# Unary
	"!": 17,
	"+u": 17,
	"-u": 17,
	"typeof": 17,
	"void": 17,
	# Exponentiation (right-assoc)
	"**": 16,
	# Multiplicative
	"*": 15,
	"/": 15,
	"%": 15,
	# Additive
	"+": 14,
	"-": 14,
	# Relational
	"<": 12,
	"<=": 12,
	">": 12,
	">=": 12,
	"instanceof": 12,
	"in": 12,
	# Equality
	"==": 11,
	"!=": 11,
	"===": 11,
	"!==": 11,
	# Logical
	"&&": 7,
	"||": 6,
	"??": 6,
	# Ternary
	"?:": 4,
	# Arrow functions bind looser than everything but the comma
	"=>": 3,
	# Comma
	",": 1,
}

_RIGHT_ASSOC = {"**"}


def _format_float(value: float) -> str:
	if math.isnan(value):
		return "NaN"
	if math.isinf(value):
		return "Infinity" if value > 0 else "-Infinity"
	if value.is_integer() and abs(value) < 1e21:
		return str(int(value))
	return repr(value)


def _starts_with_sign(node: ExprNode) -> bool:
	if isinstance(node, Unary):
		return node.op in {"-", "+"}
	if isinstance(node, Literal) and isinstance(node.value, (int, float)):
		return not isinstance(node.value, bool) and node.value < 0
	return False


def _escape_string(s: str) -> str:
	"""Escape for double-quoted JS string literals."""
	return (
		s.replace("\\", "\\\\")
		.replace('"', '\\"')
		.replace("\n", "\\n")
		.replace("\r", "\\r")
		.replace("\t", "\\t")
		.replace("\b", "\\b")
		.replace("\f", "\\f")
		.replace("\v", "\\v")
		.replace("\x00", "\\x00")
		.replace("\u2028", "\\u2028")
		.replace("\u2029", "\\u2029")
	)


def _escape_template(s: str) -> str:
	"""Escape for template literal strings."""
	return (
		s.replace("\\", "\\\\")
		.replace("`", "\\`")
		.replace("${", "\\${")
		.replace("\n", "\\n")
		.replace("\r", "\\r")
		.replace("\t", "\\t")
		.replace("\x00", "\\x00")
		.replace("\u2028", "\\u2028")
		.replace("\u2029", "\\u2029")
	)


def _emit_paren(node: ExprNode, parent_op: str, side: str, out: list[str]) -> None:
	"""Emit child with parens if needed for precedence."""
	# Ternaries and arrows as operands always get parens
	needs_parens = False
	if isinstance(node, (Ternary, Arrow)):
		needs_parens = True
	else:
		child_prec = node.precedence()
		parent_prec = _PRECEDENCE.get(parent_op, 0)
		if side == "unary":
			needs_parens = child_prec < parent_prec
		elif child_prec < parent_prec:
			needs_parens = True
		elif child_prec == parent_prec and isinstance(node, Binary):
			# Handle associativity
			if parent_op in _RIGHT_ASSOC:
				needs_parens = side == "left"
			else:
				needs_parens = side == "right"
		# `??` cannot be mixed with && / || without parens
		if (
			not needs_parens
			and isinstance(node, Binary)
			and ((node.op == "??") != (parent_op == "??"))
			and {node.op, parent_op} & {"&&", "||"}
		):
			needs_parens = True

	if needs_parens:
		out.append("(")
		node.emit(out)
		out.append(")")
	else:
		node.emit(out)


def _emit_primary(node: ExprNode, out: list[str]) -> None:
	"""Emit with parens if not primary precedence."""
	# `5.length` does not parse; numeric literals need parens as member targets
	is_number = (
		isinstance(node, Literal)
		and isinstance(node.value, (int, float))
		and not isinstance(node.value, bool)
	)
	if node.precedence() < 20 or is_number or isinstance(node, (Ternary, Arrow)):
		out.append("(")
		node.emit(out)
		out.append(")")
	else:
		node.emit(out)
