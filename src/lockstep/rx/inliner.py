"""
Function inliner.

Named expression fragments (`defrx` in a unit) are expanded at their call
sites by syntactic substitution, so neither the server evaluator nor the
client artifact needs a shared function registry.
"""

from __future__ import annotations

import ast
import copy
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from lockstep.errors import ExpressionSyntaxError, InlineRecursionError
from lockstep.rx.builtins import BUILTINS
from lockstep.rx.expr import Rx, parse, to_source

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 32

FunctionKey = tuple[str, int]
Descriptor = tuple[str, int, tuple[str, ...], str, ast.expr]


@dataclass(frozen=True, slots=True)
class InlineFn:
	"""A named expression fragment: `name(params) = body`."""

	name: str
	params: tuple[str, ...]
	body: Rx

	def __post_init__(self) -> None:
		if len(set(self.params)) != len(self.params):
			raise ExpressionSyntaxError(
				f"Duplicate parameter names in inline function '{self.name}'"
			)

	@property
	def arity(self) -> int:
		return len(self.params)

	@property
	def key(self) -> FunctionKey:
		return (self.name, self.arity)

	@property
	def descriptor(self) -> Descriptor:
		"""(name, arity, params, body_source, body_ast) interchange tuple."""
		return (self.name, self.arity, self.params, self.body.source, self.body.parsed)

	@classmethod
	def from_descriptor(cls, descriptor: Descriptor) -> InlineFn:
		name, arity, params, source, body = descriptor
		if arity != len(params):
			raise ExpressionSyntaxError(
				f"Inline function '{name}' declares arity {arity} "
				+ f"but has {len(params)} parameters"
			)
		return cls(name, tuple(params), Rx.from_ast(body, source))

	@classmethod
	def define(cls, name: str, params: Sequence[str], body: str | Rx) -> InlineFn:
		if isinstance(body, str):
			body = Rx.parse(body)
		return cls(name, tuple(params), body)


@dataclass(slots=True)
class FunctionTable:
	"""Inlinable functions visible to a unit.

	Lookups go by (name, arity); local definitions shadow imported ones.
	"""

	local: dict[FunctionKey, InlineFn] = field(default_factory=dict)
	imported: dict[FunctionKey, InlineFn] = field(default_factory=dict)

	@classmethod
	def of(
		cls, local: Iterable[InlineFn] = (), imported: Iterable[InlineFn] = ()
	) -> FunctionTable:
		return cls(
			local={fn.key: fn for fn in local},
			imported={fn.key: fn for fn in imported},
		)

	def define(self, fn: InlineFn) -> None:
		self.local[fn.key] = fn

	def import_fn(self, fn: InlineFn) -> None:
		self.imported[fn.key] = fn

	def lookup(self, name: str, arity: int) -> InlineFn | None:
		key = (name, arity)
		return self.local.get(key) or self.imported.get(key)

	def names(self) -> set[str]:
		return {name for name, _ in self.local} | {name for name, _ in self.imported}

	def __len__(self) -> int:
		return len(self.local.keys() | self.imported.keys())


def _names(*nodes: ast.AST) -> set[str]:
	"""Every identifier used or bound (as a lambda parameter) in the nodes."""
	out: set[str] = set()
	for node in nodes:
		for n in ast.walk(node):
			if isinstance(n, ast.Name):
				out.add(n.id)
			elif isinstance(n, ast.arg):
				out.add(n.arg)
	return out



def _fresh(name: str, taken: set[str]) -> str:
	i = 1
	while f"{name}_{i}" in taken:
		i += 1
	return f"{name}_{i}"


class _Substitute(ast.NodeTransformer):
	"""Replace parameter names with argument expressions.

	Inline-function parameters shadow outer names inside their body, and are
	renamed when an argument mentions the same name, so the argument keeps
	referring to the caller's binding.
	"""

	bindings: Mapping[str, ast.expr]
	taken: set[str]

	def __init__(self, bindings: Mapping[str, ast.expr], taken: set[str]) -> None:
		self.bindings = bindings
		self.taken = taken

	def visit_Name(self, node: ast.Name) -> Any:
		if node.id in self.bindings:
			return copy.deepcopy(self.bindings[node.id])
		return node

	def visit_Lambda(self, node: ast.Lambda) -> Any:
		shadowed = {a.arg for a in node.args.args}
		inner = {k: v for k, v in self.bindings.items() if k not in shadowed}
		free = _names(*inner.values())
		for a in node.args.args:
			if a.arg in free:
				renamed = _fresh(a.arg, self.taken)
				self.taken.add(renamed)
				inner[a.arg] = ast.Name(renamed, ast.Load())
				a.arg = renamed
		node.body = _Substitute(inner, self.taken).visit(node.body)
		return node


class Inliner(ast.NodeTransformer):
	table: FunctionTable
	max_depth: int
	stack: list[FunctionKey]

	def __init__(self, table: FunctionTable, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
		self.table = table
		self.max_depth = max_depth
		self.stack = []

	def visit_Call(self, node: ast.Call) -> Any:
		self.generic_visit(node)
		if not isinstance(node.func, ast.Name) or node.keywords:
			return node
		fn = self.table.lookup(node.func.id, len(node.args))
		if fn is None:
			return node
		if node.func.id in BUILTINS:
			logger.debug("Inline function '%s' shadows a builtin", node.func.id)

		chain = [*(name for name, _ in self.stack), fn.name]
		if fn.key in self.stack:
			raise InlineRecursionError(chain)
		if len(self.stack) >= self.max_depth:
			raise InlineRecursionError(
				chain,
				f"Inline expansion exceeded depth {self.max_depth}: "
				+ " -> ".join(chain),
			)

		body = copy.deepcopy(fn.body.parsed)
		bindings = dict(zip(fn.params, node.args, strict=True))
		substituted = _Substitute(bindings, _names(body, *node.args)).visit(body)
		self.stack.append(fn.key)
		try:
			expanded = self.visit(substituted)
		finally:
			self.stack.pop()
		return ast.copy_location(expanded, node)


def inline(
	node: ast.expr, table: FunctionTable, *, max_depth: int = DEFAULT_MAX_DEPTH
) -> ast.expr:
	"""Expand every inlinable call in a parsed expression. The input is not mutated."""
	if not len(table):
		return node
	result = Inliner(table, max_depth).visit(copy.deepcopy(node))
	return ast.fix_missing_locations(result)


def inline_source(
	source: str, table: FunctionTable, *, max_depth: int = DEFAULT_MAX_DEPTH
) -> str:
	"""Expand inlinable calls in expression source text.

	Equivalent to inlining the parsed form and rendering it back to source.
	"""
	return to_source(inline(parse(source), table, max_depth=max_depth))


def inline_rx(
	expr: Rx, table: FunctionTable, *, max_depth: int = DEFAULT_MAX_DEPTH
) -> Rx:
	if not len(table):
		return expr
	expanded = inline(expr.parsed, table, max_depth=max_depth)
	if ast.dump(expanded) == ast.dump(expr.parsed):
		return expr
	return Rx.from_ast(expanded)
