"""
Authoring surface: an explicit builder for one unit's reactive declarations.

A unit corresponds to one UI component. It collects state fields, derived
fields, actions and inlinable functions, and hands them to the graph builder
and the artifact generator as ordinary data.

Usage:
	counter = Unit("Counter")
	counter.state("count", 0, optimistic=True)
	counter.calculate("doubled", "@count * 2")
	counter.action("increment", updates=[UpdateOp("count", delta=1)])
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from lockstep.codegen.actions import Action, SetOp, UpdateOp, multi_select_action, toggle_action
from lockstep.errors import BuildError, DanglingReferenceError, InvalidFieldError
from lockstep.graph.builder import DependencyGraph, build_graph
from lockstep.graph.fields import (
	AnimatedConfig,
	ComputeFn,
	FieldKind,
	ReactiveField,
	StorageTier,
	derived,
	state,
)
from lockstep.graph.runtime import GraphRuntime
from lockstep.rx.expr import Rx
from lockstep.rx.inliner import FunctionTable, InlineFn, inline_rx

logger = logging.getLogger(__name__)


class Unit:
	name: str
	fields: list[ReactiveField]
	actions: list[Action]
	functions: FunctionTable

	def __init__(self, name: str) -> None:
		self.name = name
		self.fields = []
		self.actions = []
		self.functions = FunctionTable()

	def __repr__(self) -> str:
		return f"Unit({self.name!r}, fields={len(self.fields)}, actions={len(self.actions)})"

	# --- Fields -------------------------------------------------------------

	def add_field(self, f: ReactiveField) -> ReactiveField:
		self.fields.append(f)
		return f

	def state(
		self,
		name: str,
		default: Any = None,
		*,
		tier: StorageTier | None = "ephemeral",
		optimistic: bool = False,
		animated: AnimatedConfig | bool | None = None,
		**animated_opts: Any,
	) -> ReactiveField:
		"""Declare a state field. `animated=True` (or animated options such as
		`async_field=...`) adds the phase fields at build time."""
		return self.add_field(
			state(
				name,
				default,
				tier=tier,
				optimistic=optimistic,
				animated=animated,
				**animated_opts,
			)
		)

	def derive(
		self,
		name: str,
		expr: Rx | str | None = None,
		*,
		optimistic: bool = False,
		is_async: bool = False,
		compute: ComputeFn | None = None,
		depends_on: Sequence[str] = (),
		default: Any = None,
		kind: FieldKind = "derived",
	) -> ReactiveField:
		return self.add_field(
			derived(
				name,
				expr,
				kind=kind,
				optimistic=optimistic,
				is_async=is_async,
				compute=compute,
				depends_on=tuple(depends_on),
				default=default,
			)
		)

	def calculate(self, name: str, expr: Rx | str) -> ReactiveField:
		"""Derived field computed on both sides from an expression."""
		return self.derive(name, expr, optimistic=True)

	def validity(self, name: str, expr: Rx | str, *, optimistic: bool = True) -> ReactiveField:
		return self.derive(name, expr, optimistic=optimistic, kind="validity")

	def error(self, name: str, expr: Rx | str, *, optimistic: bool = True) -> ReactiveField:
		return self.derive(name, expr, optimistic=optimistic, kind="error")

	def toggle(self, name: str, default: bool = False) -> ReactiveField:
		"""Boolean state field with a generated `toggle_<name>` action."""
		f = self.state(name, default, optimistic=True)
		self.add_action(toggle_action(name))
		return f

	def multi_select(self, name: str, default: Sequence[Any] | None = None) -> ReactiveField:
		"""List state field with a generated `toggle_<name>(value)` action."""
		f = self.state(name, list(default or []), optimistic=True)
		self.add_action(multi_select_action(name))
		return f

	# --- Actions ------------------------------------------------------------

	def add_action(self, action: Action) -> Action:
		if any(a.name == action.name for a in self.actions):
			raise InvalidFieldError(
				f"Duplicate action '{action.name}'", unit=self.name, field=action.name
			)
		self.actions.append(action)
		return action

	def action(
		self,
		name: str,
		*,
		sets: Iterable[SetOp] = (),
		updates: Iterable[UpdateOp] = (),
		params: Iterable[str] = (),
		submits: Iterable[str] = (),
		navigates: Iterable[str] = (),
		effects: Iterable[Any] = (),
		invokes: Iterable[str] = (),
		optimistic: bool = True,
	) -> Action:
		return self.add_action(
			Action(
				name=name,
				sets=list(sets),
				updates=list(updates),
				params=list(params),
				submits=list(submits),
				navigates=list(navigates),
				effects=list(effects),
				invokes=list(invokes),
				optimistic=optimistic,
			)
		)

	# --- Inlinable functions ------------------------------------------------

	def defrx(self, name: str, params: Sequence[str], body: Rx | str) -> InlineFn:
		"""Declare a named expression fragment, e.g. `defrx("double", ["x"], "x * 2")`."""
		fn = InlineFn.define(name, params, body)
		self.functions.define(fn)
		return fn

	def import_rx(self, other: Unit, only: Iterable[str] | None = None) -> list[InlineFn]:
		"""Make another unit's local functions callable here.

		Local definitions keep precedence over imported ones.
		"""
		wanted = set(only) if only is not None else None
		imported: list[InlineFn] = []
		for fn in other.functions.local.values():
			if wanted is not None and fn.name not in wanted:
				continue
			self.functions.import_fn(fn)
			imported.append(fn)
		if wanted is not None:
			missing = wanted - {fn.name for fn in imported}
			if missing:
				raise BuildError(
					f"Unit '{other.name}' does not define {', '.join(sorted(missing))}",
					unit=self.name,
				)
		return imported

	# --- Build --------------------------------------------------------------

	def resolved_fields(self) -> list[ReactiveField]:
		"""Fields with every inlinable call expanded in their expressions."""
		out: list[ReactiveField] = []
		for f in self.fields:
			if f.expr is None:
				out.append(f)
				continue
			try:
				expr = inline_rx(f.expr, self.functions)
			except BuildError as exc:
				exc.field = exc.field or f.name
				raise exc.with_unit(self.name)
			out.append(dataclasses.replace(f, expr=expr))
		return out

	def resolved_actions(self, graph: DependencyGraph | None = None) -> list[Action]:
		"""Actions with inlinable calls expanded in their set expressions.

		Every operation must target a state field of the unit and every
		expression may only read declared fields.
		"""
		if graph is None:
			graph = self.graph()
		out: list[Action] = []
		for action in self.actions:
			sets: list[SetOp] = []
			for op in action.sets:
				self._check_target(action, op.field, graph)
				if isinstance(op.value, Rx):
					expr = self._resolve_action_expr(action, op.value, graph)
					op = dataclasses.replace(op, value=expr)
				sets.append(op)
			for update in action.updates:
				self._check_target(action, update.field, graph)
			out.append(dataclasses.replace(action, sets=sets))
		return out

	def _check_target(self, action: Action, target: str, graph: DependencyGraph) -> None:
		f = graph.fields.get(target)
		if f is None:
			raise InvalidFieldError(
				f"Action '{action.name}' assigns undeclared field '{target}'",
				unit=self.name,
				field=action.name,
			)
		if f.computed:
			raise InvalidFieldError(
				f"Action '{action.name}' assigns computed field '{target}'",
				unit=self.name,
				field=action.name,
			)

	def _resolve_action_expr(self, action: Action, expr: Rx, graph: DependencyGraph) -> Rx:
		try:
			expr = inline_rx(expr, self.functions)
		except BuildError as exc:
			exc.field = exc.field or action.name
			raise exc.with_unit(self.name)
		for dep in expr.deps:
			if dep not in graph:
				raise DanglingReferenceError(dep, field=action.name, unit=self.name)
		return expr

	def graph(self) -> DependencyGraph:
		return build_graph(self.resolved_fields(), unit=self.name)

	def runtime(self, initial: Mapping[str, Any] | None = None) -> GraphRuntime:
		"""A server runtime with every computed field evaluated."""
		rt = GraphRuntime(self.graph(), initial)
		rt.recompute_all()
		return rt

	def run_action(
		self, runtime: GraphRuntime, name: str, value: Any = None
	) -> dict[str, Any]:
		"""Apply an action on the server and recompute dependents."""
		action = next(
			(a for a in self.resolved_actions(runtime.graph) if a.name == name), None
		)
		if action is None:
			raise InvalidFieldError(f"Unknown action '{name}'", unit=self.name, field=name)
		changes = action.run(runtime.snapshot(), {"value": value})
		runtime.update(changes)
		return changes
