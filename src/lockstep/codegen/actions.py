"""
Actions and their client renditions.

An action is eligible for optimistic generation only when it has no side
effects and every operation is a state assignment or update the client can
replay exactly. Explicit declarations (`from_param=True`, `delta=n`) are used
as given. Plain callables are classified by probing them with sample inputs;
anything that does not match a known pattern makes the action ineligible
rather than being miscompiled.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from lockstep.errors import InvalidFieldError
from lockstep.rx import semantics as js
from lockstep.rx.evaluator import evaluate
from lockstep.rx.expr import Rx
from lockstep.rx.nodes import (
	Array,
	Arrow,
	Binary,
	Call,
	ExprNode,
	Identifier,
	Literal as JsLiteral,
	Member,
	Spread,
	Ternary,
	Unary,
	emit,
)
from lockstep.rx.transpiler import TranspileError, Transpiler

logger = logging.getLogger(__name__)

PARAM_NAME = "value"
PROBE_SENTINEL = "__lockstep_probe__"
PROBE_SAMPLES: tuple[int, ...] = (0, 10, 100)

Coerce = Literal["number"]


class _Unset:
	pass


UNSET: Any = _Unset()


@dataclass(slots=True)
class SetOp:
	"""Assign a field.

	`value` is a constant, an expression over state, or a callable receiving
	`{"params": ..., "state": ...}`. `from_param=True` assigns the action's
	input value directly.
	"""

	field: str
	value: Any = UNSET
	from_param: bool = False
	coerce: Coerce | None = None

	def __post_init__(self) -> None:
		if self.from_param == (self.value is not UNSET):
			raise InvalidFieldError(
				"SetOp needs exactly one of value or from_param", field=self.field
			)


@dataclass(slots=True)
class UpdateOp:
	"""Transform a field from its current value: `fn(old)` or `old + delta`."""

	field: str
	fn: Callable[[Any], Any] | None = None
	delta: int | float | None = None

	def __post_init__(self) -> None:
		if (self.fn is None) == (self.delta is None):
			raise InvalidFieldError(
				"UpdateOp needs exactly one of fn or delta", field=self.field
			)

	def apply(self, current: Any) -> Any:
		if self.delta is not None:
			# Same operator the client emits
			if self.delta < 0:
				return js.subtract(current, -self.delta)
			return js.add(current, self.delta)
		assert self.fn is not None
		return self.fn(current)


@dataclass(slots=True)
class Action:
	name: str
	sets: list[SetOp] = field(default_factory=list)
	updates: list[UpdateOp] = field(default_factory=list)
	params: list[str] = field(default_factory=list)
	submits: list[str] = field(default_factory=list)
	navigates: list[str] = field(default_factory=list)
	effects: list[Callable[..., Any]] = field(default_factory=list)
	invokes: list[str] = field(default_factory=list)
	optimistic: bool = True
	client: Callable[[], CompiledAction] | None = field(default=None, repr=False)
	"""Prebuilt client rendition, used by generated toggle actions."""

	@property
	def has_side_effects(self) -> bool:
		return bool(self.submits or self.navigates or self.effects or self.invokes)

	@property
	def fields(self) -> list[str]:
		out: list[str] = []
		for op in (*self.sets, *self.updates):
			if op.field not in out:
				out.append(op.field)
		return out

	def run(
		self, state: Mapping[str, Any], params: Mapping[str, Any] | None = None
	) -> dict[str, Any]:
		"""Server rendition: the field changes this action makes.

		Every operation reads the state as it was before the action.
		"""
		params = dict(params or {})
		ctx = {"params": params, "state": state}
		changes: dict[str, Any] = {}
		for op in self.sets:
			if op.from_param:
				value = params.get(PARAM_NAME)
			elif isinstance(op.value, Rx):
				value = evaluate(op.value, state)
			elif callable(op.value):
				value = op.value(ctx)
			else:
				value = op.value
			if op.coerce == "number":
				value = js.to_number(value)
			changes[op.field] = value
		for op in self.updates:
			changes[op.field] = op.apply(state.get(op.field))
		return changes


@dataclass(slots=True)
class CompiledAction:
	name: str
	takes_value: bool
	assignments: list[tuple[str, str]]
	helpers: frozenset[str] = frozenset()


@dataclass(slots=True)
class Ineligible:
	name: str
	reason: str


# =============================================================================
# Probing
# =============================================================================


def probe_set_value(fn: Callable[[Any], Any]) -> bool:
	"""True when `fn` passes the action's input value through unchanged."""
	try:
		result = fn({"params": {PARAM_NAME: PROBE_SENTINEL}, "state": {}})
	except Exception:
		return False
	return isinstance(result, str) and result == PROBE_SENTINEL


def probe_delta(fn: Callable[[Any], Any]) -> int | float | None:
	"""The constant offset `fn` adds to a number, or None if it is not one."""
	deltas: list[Any] = []
	try:
		for sample in PROBE_SAMPLES:
			result = fn(sample)
			if isinstance(result, bool) or not isinstance(result, (int, float)):
				return None
			deltas.append(result - sample)
	except Exception:
		return None
	if any(isinstance(d, float) and not math.isfinite(d) for d in deltas):
		return None
	if len(set(deltas)) != 1:
		return None
	return deltas[0]


# =============================================================================
# Compilation
# =============================================================================


def _state(name: str) -> ExprNode:
	return Member(Identifier("state"), name)


def _compile_set(op: SetOp, helpers: set[str]) -> ExprNode:
	value: ExprNode
	if op.from_param:
		value = Identifier(PARAM_NAME)
	elif isinstance(op.value, Rx):
		transpiler = Transpiler()
		value = transpiler.emit_expr(op.value.parsed)
		helpers.update(transpiler.helpers)
	elif callable(op.value):
		if not probe_set_value(op.value):
			raise TranspileError(f"Cannot replay the value function for '{op.field}'")
		value = Identifier(PARAM_NAME)
	else:
		try:
			value = ExprNode.of(op.value)
		except TypeError as exc:
			raise TranspileError(str(exc)) from exc

	if op.coerce == "number":
		value = Call(Identifier("Number"), [value])
	return value


def _uses_param(op: SetOp) -> bool:
	return op.from_param or (callable(op.value) and not isinstance(op.value, Rx))


def _compile_update(op: UpdateOp) -> ExprNode:
	delta = op.delta
	if delta is None:
		assert op.fn is not None
		delta = probe_delta(op.fn)
		if delta is None:
			raise TranspileError(f"Cannot replay the update function for '{op.field}'")
	if delta < 0:
		return Binary(_state(op.field), "-", JsLiteral(-delta))
	return Binary(_state(op.field), "+", JsLiteral(delta))


def compile_action(action: Action) -> CompiledAction | Ineligible:
	if not action.optimistic:
		return Ineligible(action.name, "not optimistic")
	if action.has_side_effects:
		return Ineligible(action.name, "has side effects")
	if action.client is not None:
		return action.client()
	if not action.sets and not action.updates:
		return Ineligible(action.name, "no state operations")

	helpers: set[str] = set()
	assignments: list[tuple[str, str]] = []
	takes_value = bool(action.params)
	try:
		for op in action.sets:
			assignments.append((op.field, emit(_compile_set(op, helpers))))
			takes_value = takes_value or _uses_param(op)
		for op in action.updates:
			assignments.append((op.field, emit(_compile_update(op))))
	except TranspileError as exc:
		logger.debug("Action '%s' is not optimistic: %s", action.name, exc)
		return Ineligible(action.name, str(exc))
	return CompiledAction(
		name=action.name,
		takes_value=takes_value,
		assignments=assignments,
		helpers=frozenset(helpers),
	)


def compile_actions(
	actions: Sequence[Action],
) -> tuple[list[CompiledAction], list[Ineligible]]:
	compiled: list[CompiledAction] = []
	skipped: list[Ineligible] = []
	for action in actions:
		result = compile_action(action)
		if isinstance(result, CompiledAction):
			compiled.append(result)
		else:
			skipped.append(result)
	return compiled, skipped


# =============================================================================
# Generated actions
# =============================================================================


def toggle_action(field_name: str) -> Action:
	"""`toggle_<f>(state)` flips a boolean field."""

	def client() -> CompiledAction:
		flipped = Unary("!", _state(field_name))
		return CompiledAction(
			name=f"toggle_{field_name}",
			takes_value=False,
			assignments=[(field_name, emit(flipped))],
		)

	return Action(
		name=f"toggle_{field_name}",
		updates=[UpdateOp(field_name, fn=lambda v: not js.truthy(v))],
		client=client,
	)


def multi_select_action(field_name: str) -> Action:
	"""`toggle_<f>(state, value)` adds `value` to a list field or removes it."""

	def client() -> CompiledAction:
		current = Binary(_state(field_name), "||", Array([]))
		param = Identifier(PARAM_NAME)
		without = Call(
			Member(current, "filter"),
			[Arrow(["v"], Binary(Identifier("v"), "!==", param))],
		)
		toggled = Ternary(
			Call(Member(current, "includes"), [param]),
			without,
			Array([Spread(current), param]),
		)
		return CompiledAction(
			name=f"toggle_{field_name}",
			takes_value=True,
			assignments=[(field_name, emit(toggled))],
		)

	def toggle(ctx: Any) -> list[Any]:
		current = list(ctx["state"].get(field_name) or [])
		value = ctx["params"][PARAM_NAME]
		if any(js.same_value_zero(v, value) for v in current):
			return [v for v in current if not js.strict_equal(v, value)]
		return [*current, value]

	return Action(
		name=f"toggle_{field_name}",
		sets=[SetOp(field_name, value=toggle)],
		params=[PARAM_NAME],
		client=client,
	)
