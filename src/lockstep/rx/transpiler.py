"""
Expression -> JavaScript transpiler.

Transpiles a normalized expression (see `lockstep.rx.expr`) into a JS node
tree. Field references become reads on the client state object; calls resolve
only against the whitelisted builtins. Anything else raises TranspileError,
which `compile_rx` turns into an untranspilable marker so artifact generation
never fails because of an expression.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field

from lockstep.rx.builtins import BUILTINS, Builtin
from lockstep.rx.expr import Rx, ref_name
from lockstep.rx.nodes import (
	Array,
	Arrow,
	Binary,
	ExprNode,
	Identifier,
	Literal,
	Member,
	Object,
	Subscript,
	Template,
	Ternary,
	Unary,
	Untranspilable,
	emit,
)

logger = logging.getLogger(__name__)

ALLOWED_BINOPS: dict[type[ast.operator], str] = {
	ast.Add: "+",
	ast.Sub: "-",
	ast.Mult: "*",
	ast.Div: "/",
	ast.Mod: "%",
}

ALLOWED_UNOPS: dict[type[ast.unaryop], str] = {
	ast.UAdd: "+",
	ast.USub: "-",
	ast.Not: "!",
}

ALLOWED_CMPOPS: dict[type[ast.cmpop], str] = {
	ast.Eq: "===",
	ast.NotEq: "!==",
	ast.Lt: "<",
	ast.LtE: "<=",
	ast.Gt: ">",
	ast.GtE: ">=",
}

# Name of the argument every generated function receives
STATE_PARAM = "state"


class TranspileError(Exception):
	"""Expression construct outside the whitelist."""


class Transpiler:
	"""Transpile a normalized expression AST into a JS ExprNode.

	`locals` holds the parameters of enclosing inline functions. `helpers`
	collects the shared validator functions the expression calls into.
	"""

	state: ExprNode
	locals: set[str]
	helpers: set[str]

	def __init__(self, state: str = STATE_PARAM) -> None:
		self.state = Identifier(state)
		self.locals = set()
		self.helpers = set()

	def emit_expr(self, node: ast.expr) -> ExprNode:
		"""Emit an expression."""
		if isinstance(node, ast.Constant):
			return self._emit_constant(node)

		if isinstance(node, ast.Name):
			return self._emit_name(node)

		if isinstance(node, (ast.List, ast.Tuple)):
			return Array([self._emit_element(e) for e in node.elts])

		if isinstance(node, ast.Dict):
			return self._emit_dict(node)

		if isinstance(node, ast.BinOp):
			return self._emit_binop(node)

		if isinstance(node, ast.UnaryOp):
			return self._emit_unaryop(node)

		if isinstance(node, ast.BoolOp):
			return self._emit_boolop(node)

		if isinstance(node, ast.Compare):
			return self._emit_compare(node)

		if isinstance(node, ast.IfExp):
			return Ternary(
				self.emit_expr(node.test),
				self.emit_expr(node.body),
				self.emit_expr(node.orelse),
			)

		if isinstance(node, ast.Call):
			return self._emit_call(node)

		if isinstance(node, ast.Attribute):
			return Member(self.emit_expr(node.value), node.attr)

		if isinstance(node, ast.Subscript):
			if isinstance(node.slice, ast.Slice):
				raise TranspileError("Slice syntax is not supported; use slice()")
			return Subscript(self.emit_expr(node.value), self.emit_expr(node.slice))

		if isinstance(node, ast.JoinedStr):
			return self._emit_fstring(node)

		if isinstance(node, ast.Lambda):
			raise TranspileError("Inline functions are only allowed in map/filter/reject")

		raise TranspileError(f"Unsupported expression: {type(node).__name__}")

	def _emit_element(self, node: ast.expr) -> ExprNode:
		if isinstance(node, ast.Starred):
			raise TranspileError("Unpacking is not supported")
		return self.emit_expr(node)

	def _emit_constant(self, node: ast.Constant) -> ExprNode:
		v = node.value
		if v is None or isinstance(v, (bool, int, float, str)):
			return Literal(v)
		raise TranspileError(f"Unsupported constant type: {type(v).__name__}")

	def _emit_name(self, node: ast.Name) -> ExprNode:
		field_name = ref_name(node)
		if field_name is not None:
			return Member(self.state, field_name)
		if node.id in self.locals:
			return Identifier(node.id)
		raise TranspileError(f"Unbound name referenced: {node.id}")

	def _emit_dict(self, node: ast.Dict) -> ExprNode:
		props: list[tuple[str, ExprNode]] = []
		for k, v in zip(node.keys, node.values, strict=True):
			if not (isinstance(k, ast.Constant) and isinstance(k.value, str)):
				raise TranspileError("Map literal keys must be string constants")
			props.append((k.value, self.emit_expr(v)))
		return Object(props)

	def _emit_binop(self, node: ast.BinOp) -> ExprNode:
		op = type(node.op)
		if op is ast.MatMult:
			return BUILTINS["concat"].emit(
				self.emit_expr(node.left), self.emit_expr(node.right)
			)
		if op not in ALLOWED_BINOPS:
			raise TranspileError(f"Unsupported binary operator: {op.__name__}")
		left = self.emit_expr(node.left)
		right = self.emit_expr(node.right)
		return Binary(left, ALLOWED_BINOPS[op], right)

	def _emit_unaryop(self, node: ast.UnaryOp) -> ExprNode:
		op = type(node.op)
		if op not in ALLOWED_UNOPS:
			raise TranspileError(f"Unsupported unary operator: {op.__name__}")
		return Unary(ALLOWED_UNOPS[op], self.emit_expr(node.operand))

	def _emit_boolop(self, node: ast.BoolOp) -> ExprNode:
		op = "&&" if isinstance(node.op, ast.And) else "||"
		values = [self.emit_expr(v) for v in node.values]
		result = values[0]
		for v in values[1:]:
			result = Binary(result, op, v)
		return result

	def _emit_compare(self, node: ast.Compare) -> ExprNode:
		operands: list[ast.expr] = [node.left, *node.comparators]
		exprs = [self.emit_expr(e) for e in operands]
		parts: list[ExprNode] = []
		for i, op in enumerate(node.ops):
			parts.append(
				self._build_comparison(
					exprs[i], operands[i], op, exprs[i + 1], operands[i + 1]
				)
			)
		result = parts[0]
		for p in parts[1:]:
			result = Binary(result, "&&", p)
		return result

	def _build_comparison(
		self,
		left_expr: ExprNode,
		left_node: ast.expr,
		op: ast.cmpop,
		right_expr: ExprNode,
		right_node: ast.expr,
	) -> ExprNode:
		# A missing key reads as undefined on the client and None on the server,
		# so comparisons against nil are loose
		if isinstance(op, (ast.Is, ast.IsNot, ast.Eq, ast.NotEq)):
			is_not = isinstance(op, (ast.IsNot, ast.NotEq))
			if _is_none(right_node):
				return Binary(left_expr, "!=" if is_not else "==", Literal(None))
			if _is_none(left_node):
				return Binary(right_expr, "!=" if is_not else "==", Literal(None))
			if isinstance(op, (ast.Is, ast.IsNot)):
				raise TranspileError("Identity comparison is only supported against nil")

		if isinstance(op, (ast.In, ast.NotIn)):
			test = BUILTINS["member"].emit(right_expr, left_expr)
			return Unary("!", test) if isinstance(op, ast.NotIn) else test

		op_type = type(op)
		if op_type not in ALLOWED_CMPOPS:
			raise TranspileError(f"Unsupported comparison operator: {op_type.__name__}")
		return Binary(left_expr, ALLOWED_CMPOPS[op_type], right_expr)

	def _emit_call(self, node: ast.Call) -> ExprNode:
		if not isinstance(node.func, ast.Name):
			raise TranspileError("Only whitelisted functions may be called")
		name = node.func.id
		fn = BUILTINS.get(name)
		if fn is None:
			raise TranspileError(f"Function '{name}' is not whitelisted")
		if node.keywords:
			raise TranspileError(f"Keyword arguments are not supported in '{name}'")
		check_arity(fn, name, len(node.args))

		args: list[ExprNode] = []
		for i, arg in enumerate(node.args):
			if fn.fn_arg == i:
				args.append(self._emit_inline_fn(name, arg))
			else:
				args.append(self._emit_element(arg))
		if fn.helper is not None:
			self.helpers.add(fn.helper)
		return fn.emit(*args)

	def _emit_inline_fn(self, name: str, node: ast.expr) -> ExprNode:
		if not isinstance(node, ast.Lambda):
			raise TranspileError(f"'{name}' expects an inline function")
		params = inline_params(node)
		if len(params) != 1:
			raise TranspileError(f"'{name}' expects a single-parameter function")

		saved = set(self.locals)
		self.locals.update(params)
		try:
			body = self.emit_expr(node.body)
		finally:
			self.locals = saved
		return Arrow(params, body)

	def _emit_fstring(self, node: ast.JoinedStr) -> ExprNode:
		parts: list[str | ExprNode] = []
		for part in node.values:
			if isinstance(part, ast.Constant) and isinstance(part.value, str):
				parts.append(part.value)
			elif isinstance(part, ast.FormattedValue):
				if part.conversion != -1 or part.format_spec is not None:
					raise TranspileError("Format conversions and specs are not supported")
				parts.append(self.emit_expr(part.value))
			else:
				raise TranspileError(
					f"Unsupported f-string component: {type(part).__name__}"
				)
		return Template(parts)


def _is_none(node: ast.expr) -> bool:
	return isinstance(node, ast.Constant) and node.value is None


def check_arity(fn: Builtin, name: str, count: int) -> None:
	if count not in fn.arity:
		expected = " or ".join(str(a) for a in fn.arity)
		raise TranspileError(f"'{name}' expects {expected} arguments, got {count}")


def inline_params(node: ast.Lambda) -> list[str]:
	a = node.args
	if a.vararg or a.kwarg or a.kwonlyargs or a.posonlyargs or a.defaults:
		raise TranspileError("Inline functions take plain positional parameters only")
	return [arg.arg for arg in a.args]


@dataclass(frozen=True, slots=True)
class CompiledExpr:
	"""Result of compiling one expression.

	`code` is always usable JS: the compiled expression, or the untranspilable
	marker when `reason` is set.
	"""

	code: str
	node: ExprNode = field(compare=False, repr=False)
	helpers: frozenset[str] = frozenset()
	reason: str | None = None

	@property
	def ok(self) -> bool:
		return self.reason is None


@dataclass(frozen=True, slots=True)
class ValidationResult:
	reason: str | None = None

	@property
	def ok(self) -> bool:
		return self.reason is None


def _as_ast(expr: Rx | ast.expr | str) -> ast.expr:
	if isinstance(expr, Rx):
		return expr.parsed
	if isinstance(expr, str):
		return Rx.parse(expr).parsed
	return expr


def transpile(expr: Rx | ast.expr | str, state: str = STATE_PARAM) -> ExprNode:
	"""Transpile an expression to a JS node, raising TranspileError when it
	leaves the whitelist."""
	return Transpiler(state).emit_expr(_as_ast(expr))


def compile_rx(expr: Rx | ast.expr | str, state: str = STATE_PARAM) -> CompiledExpr:
	"""Compile an expression to client source text.

	Whitelist violations never raise; they produce the untranspilable marker.
	Inlining happens before compilation, so a remaining call to a non-builtin
	is reported as untranspilable.
	"""
	transpiler = Transpiler(state)
	try:
		node = transpiler.emit_expr(_as_ast(expr))
	except TranspileError as exc:
		reason = str(exc)
		logger.debug("Untranspilable expression %r: %s", _describe(expr), reason)
		marker = Untranspilable(reason)
		return CompiledExpr(code=emit(marker), node=marker, reason=reason)
	return CompiledExpr(
		code=emit(node), node=node, helpers=frozenset(transpiler.helpers)
	)


def validate(expr: Rx | ast.expr | str) -> ValidationResult:
	"""Check whether an expression lies fully within the whitelist."""
	try:
		transpile(expr)
	except TranspileError as exc:
		return ValidationResult(reason=str(exc))
	return ValidationResult()


def _describe(expr: Rx | ast.expr | str) -> str:
	if isinstance(expr, Rx):
		return expr.source
	if isinstance(expr, str):
		return expr
	return ast.unparse(expr)
