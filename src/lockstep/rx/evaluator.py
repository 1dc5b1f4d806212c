"""
Server-side evaluation of expressions.

Walks the same normalized AST the transpiler consumes and computes values with
the client's semantics (`lockstep.rx.semantics`), so a derived field gives the
same answer on both sides. Errors the client would throw (reading through null)
raise here too; parse failures yield None on both sides.
"""

from __future__ import annotations

import ast
from collections.abc import Callable, Mapping
from typing import Any

from lockstep.errors import LockstepError
from lockstep.rx import semantics as js
from lockstep.rx.builtins import BUILTINS, concat_lists, member_of
from lockstep.rx.expr import Rx, ref_name


class EvaluationError(LockstepError):
	"""Expression construct the evaluator does not support."""


_BINOPS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
	ast.Add: js.add,
	ast.Sub: js.subtract,
	ast.Mult: js.multiply,
	ast.Div: js.divide,
	ast.Mod: js.remainder,
	ast.MatMult: concat_lists,
}

_RELATIONAL: dict[type[ast.cmpop], str] = {
	ast.Lt: "<",
	ast.LtE: "<=",
	ast.Gt: ">",
	ast.GtE: ">=",
}


class Evaluator:
	state: Mapping[str, Any]
	scope: dict[str, Any]

	def __init__(self, state: Mapping[str, Any]) -> None:
		self.state = state
		self.scope = {}

	def eval(self, node: ast.expr) -> Any:
		if isinstance(node, ast.Constant):
			v = node.value
			if v is None or isinstance(v, (bool, int, float, str)):
				return v
			raise EvaluationError(f"Unsupported constant type: {type(v).__name__}")

		if isinstance(node, ast.Name):
			return self._eval_name(node)

		if isinstance(node, (ast.List, ast.Tuple)):
			return [self.eval(e) for e in node.elts]

		if isinstance(node, ast.Dict):
			out: dict[str, Any] = {}
			for k, v in zip(node.keys, node.values, strict=True):
				if not (isinstance(k, ast.Constant) and isinstance(k.value, str)):
					raise EvaluationError("Map literal keys must be string constants")
				out[k.value] = self.eval(v)
			return out

		if isinstance(node, ast.BinOp):
			op = _BINOPS.get(type(node.op))
			if op is None:
				raise EvaluationError(
					f"Unsupported binary operator: {type(node.op).__name__}"
				)
			return op(self.eval(node.left), self.eval(node.right))

		if isinstance(node, ast.UnaryOp):
			operand = self.eval(node.operand)
			if isinstance(node.op, ast.Not):
				return not js.truthy(operand)
			if isinstance(node.op, ast.USub):
				return js.negate(operand)
			if isinstance(node.op, ast.UAdd):
				return js.to_number(operand)
			raise EvaluationError(f"Unsupported unary operator: {type(node.op).__name__}")

		if isinstance(node, ast.BoolOp):
			# Short-circuit, returning the deciding operand like JS && and ||
			is_and = isinstance(node.op, ast.And)
			value: Any = None
			for part in node.values:
				value = self.eval(part)
				if js.truthy(value) != is_and:
					return value
			return value

		if isinstance(node, ast.Compare):
			return self._eval_compare(node)

		if isinstance(node, ast.IfExp):
			if js.truthy(self.eval(node.test)):
				return self.eval(node.body)
			return self.eval(node.orelse)

		if isinstance(node, ast.Call):
			return self._eval_call(node)

		if isinstance(node, ast.Attribute):
			return js.read(self.eval(node.value), node.attr)

		if isinstance(node, ast.Subscript):
			if isinstance(node.slice, ast.Slice):
				raise EvaluationError("Slice syntax is not supported; use slice()")
			return js.read(self.eval(node.value), self.eval(node.slice))

		if isinstance(node, ast.JoinedStr):
			return self._eval_fstring(node)

		raise EvaluationError(f"Unsupported expression: {type(node).__name__}")

	def _eval_name(self, node: ast.Name) -> Any:
		field_name = ref_name(node)
		if field_name is not None:
			return self.state.get(field_name)
		if node.id in self.scope:
			return self.scope[node.id]
		raise EvaluationError(f"Unbound name referenced: {node.id}")

	def _eval_compare(self, node: ast.Compare) -> bool:
		left = self.eval(node.left)
		for op, comparator in zip(node.ops, node.comparators, strict=True):
			right = self.eval(comparator)
			if not self._compare(left, op, right):
				return False
			left = right
		return True

	def _compare(self, left: Any, op: ast.cmpop, right: Any) -> bool:
		if isinstance(op, ast.Eq):
			return js.strict_equal(left, right)
		if isinstance(op, ast.NotEq):
			return not js.strict_equal(left, right)
		if isinstance(op, ast.Is):
			return left is None and right is None
		if isinstance(op, ast.IsNot):
			return not (left is None and right is None)
		if isinstance(op, ast.In):
			return member_of(right, left)
		if isinstance(op, ast.NotIn):
			return not member_of(right, left)
		relational = _RELATIONAL.get(type(op))
		if relational is None:
			raise EvaluationError(f"Unsupported comparison operator: {type(op).__name__}")
		return js.compare(left, relational, right)

	def _eval_call(self, node: ast.Call) -> Any:
		if not isinstance(node.func, ast.Name):
			raise EvaluationError("Only whitelisted functions may be called")
		name = node.func.id
		fn = BUILTINS.get(name)
		if fn is None:
			raise EvaluationError(f"Function '{name}' is not whitelisted")
		if node.keywords:
			raise EvaluationError(f"Keyword arguments are not supported in '{name}'")
		if len(node.args) not in fn.arity:
			raise EvaluationError(
				f"'{name}' expects {' or '.join(map(str, fn.arity))} arguments, "
				+ f"got {len(node.args)}"
			)
		args: list[Any] = []
		for i, arg in enumerate(node.args):
			if fn.fn_arg == i:
				args.append(self._make_inline_fn(name, arg))
			else:
				args.append(self.eval(arg))
		return fn.run(*args)

	def _make_inline_fn(self, name: str, node: ast.expr) -> Callable[[Any], Any]:
		if not isinstance(node, ast.Lambda) or len(node.args.args) != 1:
			raise EvaluationError(f"'{name}' expects a single-parameter function")
		param = node.args.args[0].arg
		body = node.body

		def call(value: Any) -> Any:
			saved = self.scope.get(param, _MISSING)
			self.scope[param] = value
			try:
				return self.eval(body)
			finally:
				if saved is _MISSING:
					del self.scope[param]
				else:
					self.scope[param] = saved

		return call

	def _eval_fstring(self, node: ast.JoinedStr) -> str:
		parts: list[str] = []
		for part in node.values:
			if isinstance(part, ast.Constant) and isinstance(part.value, str):
				parts.append(part.value)
			elif isinstance(part, ast.FormattedValue):
				if part.conversion != -1 or part.format_spec is not None:
					raise EvaluationError("Format conversions and specs are not supported")
				parts.append(js.to_js_string(self.eval(part.value)))
			else:
				raise EvaluationError(
					f"Unsupported f-string component: {type(part).__name__}"
				)
		return "".join(parts)


_MISSING = object()


def evaluate(expr: Rx | ast.expr | str, state: Mapping[str, Any]) -> Any:
	"""Evaluate an expression against a mapping of field values.

	Usage:
		evaluate("@a + @b * @c", {"a": 1, "b": 2, "c": 3})  # 7
	"""
	if isinstance(expr, str):
		expr = Rx.parse(expr)
	node = expr.parsed if isinstance(expr, Rx) else expr
	return Evaluator(state).eval(node)
