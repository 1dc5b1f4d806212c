"""
Expression model for reactive fields.

An expression is written in Python expression syntax extended with a few
operators borrowed from templating languages (`@field`, `|>`, `&&`, `||`, `!`,
`<>`, `++`). The source is first desugared into plain Python, parsed with
`ast`, then normalized so that every consumer (transpiler, evaluator, inliner)
sees the same small node vocabulary:

- field references are `ast.Name` nodes whose id starts with STATE_PREFIX
- pipes are already rewritten into calls
- `nil`/`null`/`true`/`false` are constants
"""

from __future__ import annotations

import ast
import re
from dataclasses import dataclass, field

from lockstep.errors import ExpressionSyntaxError

STATE_PREFIX = "__state_"

_STRING_PREFIXES = {"r", "u", "f", "b", "br", "rb", "fr", "rf"}
_NAMED_CONSTANTS: dict[str, bool | None] = {
	"nil": None,
	"null": None,
	"true": True,
	"false": False,
}
_REF_RE = re.compile(rf"\b{STATE_PREFIX}(\w+)")


def _is_ident_start(ch: str) -> bool:
	return ch.isalpha() or ch == "_"


def _is_ident_char(ch: str) -> bool:
	return ch.isalnum() or ch == "_"


def _scan_string(source: str, start: int) -> int:
	"""Return the index just past the string literal whose quote is at `start`."""
	quote = source[start]
	if source.startswith(quote * 3, start):
		delim = quote * 3
	else:
		delim = quote
	i = start + len(delim)
	n = len(source)
	while i < n:
		ch = source[i]
		if ch == "\\":
			i += 2
			continue
		if source.startswith(delim, i):
			return i + len(delim)
		i += 1
	raise ExpressionSyntaxError(f"Unterminated string literal in {source!r}")


def _scan_replacement_field(body: str, start: int) -> int:
	"""Return the index of the `}` closing the f-string field opened before `start`."""
	depth = 0
	i = start
	n = len(body)
	while i < n:
		ch = body[i]
		if ch in "\"'":
			i = _scan_string(body, i)
			continue
		if ch in "([{":
			depth += 1
		elif ch in ")]}":
			if depth == 0:
				return i
			depth -= 1
		i += 1
	raise ExpressionSyntaxError(f"Unterminated f-string replacement field in {body!r}")


def _desugar_fstring(literal: str) -> str:
	"""Desugar the replacement fields of an f-string literal, keeping its text."""
	quote = literal[0]
	delim = quote * 3 if literal.startswith(quote * 3) else quote
	inner = literal[len(delim) : len(literal) - len(delim)]
	out: list[str] = []
	i = 0
	n = len(inner)
	while i < n:
		ch = inner[i]
		if ch == "\\":
			out.append(inner[i : i + 2])
			i += 2
			continue
		if inner.startswith("{{", i) or inner.startswith("}}", i):
			out.append(inner[i : i + 2])
			i += 2
			continue
		if ch == "{":
			end = _scan_replacement_field(inner, i + 1)
			out.append("{")
			out.append(desugar(inner[i + 1 : end]))
			out.append("}")
			i = end + 1
			continue
		out.append(ch)
		i += 1
	return delim + "".join(out) + delim


def desugar(source: str) -> str:
	"""Rewrite the extended operators into plain Python expression syntax.

	String literals are copied untouched, except for the replacement fields of
	f-strings which are desugared recursively.
	"""
	out: list[str] = []
	i = 0
	n = len(source)
	while i < n:
		ch = source[i]

		if _is_ident_start(ch):
			j = i
			while j < n and _is_ident_char(source[j]):
				j += 1
			word = source[i:j]
			if j < n and source[j] in "\"'" and word.lower() in _STRING_PREFIXES:
				end = _scan_string(source, j)
				literal = source[j:end]
				if "f" in word.lower():
					literal = _desugar_fstring(literal)
				out.append(word)
				out.append(literal)
				i = end
				continue
			out.append(word)
			i = j
			continue

		if ch.isdigit():
			j = i
			while j < n and (_is_ident_char(source[j]) or source[j] == "."):
				j += 1
			out.append(source[i:j])
			i = j
			continue

		if ch in "\"'":
			end = _scan_string(source, i)
			out.append(source[i:end])
			i = end
			continue

		if ch == "@" and i + 1 < n and _is_ident_start(source[i + 1]):
			j = i + 1
			while j < n and _is_ident_char(source[j]):
				j += 1
			out.append(STATE_PREFIX + source[i + 1 : j])
			i = j
			continue

		two = source[i : i + 2]
		if two == "|>":
			out.append(" >> ")
			i += 2
			continue
		if two == "&&":
			out.append(" and ")
			i += 2
			continue
		if two == "||":
			out.append(" or ")
			i += 2
			continue
		if two == "<>":
			out.append(" + ")
			i += 2
			continue
		if two == "++":
			out.append(" @ ")
			i += 2
			continue
		if two == "!=":
			out.append("!=")
			i += 2
			continue
		if ch == "!":
			out.append(" not ")
			i += 1
			continue

		out.append(ch)
		i += 1
	return "".join(out)


class _Normalizer(ast.NodeTransformer):
	"""Rewrite pipes into calls and named constants into literals."""

	def visit_Name(self, node: ast.Name) -> ast.expr:
		if node.id in _NAMED_CONSTANTS:
			return ast.copy_location(ast.Constant(_NAMED_CONSTANTS[node.id]), node)
		return node

	def visit_BinOp(self, node: ast.BinOp) -> ast.expr:
		self.generic_visit(node)
		if not isinstance(node.op, ast.RShift):
			return node
		target = node.right
		if isinstance(target, ast.Call):
			call = ast.Call(
				func=target.func,
				args=[node.left, *target.args],
				keywords=target.keywords,
			)
		else:
			call = ast.Call(func=target, args=[node.left], keywords=[])
		return ast.copy_location(call, node)


def parse(source: str) -> ast.expr:
	"""Parse expression source into a normalized `ast.expr`."""
	try:
		tree = ast.parse(desugar(source).strip(), mode="eval")
	except SyntaxError as exc:
		raise ExpressionSyntaxError(
			f"Invalid expression {source!r}: {exc.msg}"
		) from exc
	body = _Normalizer().visit(tree.body)
	return ast.fix_missing_locations(body)


def ref_name(node: ast.AST) -> str | None:
	"""Field name for a field-reference node, None for anything else."""
	if isinstance(node, ast.Name) and node.id.startswith(STATE_PREFIX):
		return node.id[len(STATE_PREFIX) :]
	return None


class _DepCollector(ast.NodeVisitor):
	deps: list[str]

	def __init__(self) -> None:
		self.deps = []

	def visit_Name(self, node: ast.Name) -> None:
		name = ref_name(node)
		if name is not None and name not in self.deps:
			self.deps.append(name)


def collect_deps(node: ast.AST) -> tuple[str, ...]:
	"""Root field names read by `node`, deduplicated in first-seen order."""
	collector = _DepCollector()
	collector.visit(node)
	return tuple(collector.deps)


def to_source(node: ast.AST) -> str:
	"""Render a normalized expression back into expression source."""
	return _REF_RE.sub(r"@\1", ast.unparse(node))


@dataclass(frozen=True, slots=True)
class Rx:
	"""A reactive expression: source text, parsed form and the fields it reads."""

	source: str
	parsed: ast.expr = field(compare=False, repr=False)
	deps: tuple[str, ...] = ()

	@classmethod
	def parse(cls, source: str) -> Rx:
		parsed = parse(source)
		return cls(source=source, parsed=parsed, deps=collect_deps(parsed))

	@classmethod
	def from_ast(cls, node: ast.expr, source: str | None = None) -> Rx:
		node = ast.fix_missing_locations(node)
		return cls(
			source=source if source is not None else to_source(node),
			parsed=node,
			deps=collect_deps(node),
		)


def rx(source: str) -> Rx:
	"""Build an expression from source, e.g. `rx("@count + 1")`."""
	return Rx.parse(source)
