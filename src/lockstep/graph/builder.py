"""
Dependency graph construction.

Turns a unit's reactive fields into a validated DAG plus a deterministic
recomputation order: a topological order where ties are broken by declaration
order.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from lockstep.errors import CycleError, DanglingReferenceError, InvalidFieldError
from lockstep.graph.animated import expand_animated
from lockstep.graph.fields import AnimatedConfig, ReactiveField

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DependencyGraph:
	"""Fields by name plus the order to recompute them in."""

	fields: dict[str, ReactiveField]
	order: list[str]
	deps: dict[str, tuple[str, ...]] = field(default_factory=dict)

	def __contains__(self, name: object) -> bool:
		return name in self.fields

	def __iter__(self) -> Iterator[ReactiveField]:
		for name in self.order:
			yield self.fields[name]

	def __len__(self) -> int:
		return len(self.fields)

	def dependents(self, name: str) -> list[str]:
		"""Fields that transitively read `name`, in recomputation order."""
		affected = {name}
		out: list[str] = []
		for candidate in self.order:
			if candidate == name:
				continue
			if any(d in affected for d in self.deps[candidate]):
				affected.add(candidate)
				out.append(candidate)
		return out

	def computed(self) -> list[ReactiveField]:
		return [f for f in self if f.computed]

	def animated(self) -> list[AnimatedConfig]:
		return [f.animated for f in self.fields.values() if f.animated is not None]

	def to_json(self, names: Iterable[str] | None = None) -> dict[str, Any]:
		"""`{name: {"deps": [...]}}` for the given names (all computed fields by default)."""
		selected = (
			list(names) if names is not None else [f.name for f in self.computed()]
		)
		return {name: {"deps": list(self.deps[name])} for name in selected}


def _check_fields(fields: Sequence[ReactiveField], unit: str | None) -> None:
	seen: set[str] = set()
	for f in fields:
		if f.name in seen:
			raise InvalidFieldError(
				f"Duplicate field '{f.name}'", unit=unit, field=f.name
			)
		seen.add(f.name)
		if f.computed and f.expr is None and f.compute is None:
			raise InvalidFieldError(
				f"{f.kind.capitalize()} field '{f.name}' needs an expression "
				+ "or a compute function",
				unit=unit,
				field=f.name,
			)
	for f in fields:
		for dep in f.deps:
			if dep not in seen:
				raise DanglingReferenceError(dep, field=f.name, unit=unit)


def find_cycle(
	names: Sequence[str], deps: dict[str, tuple[str, ...]]
) -> list[str] | None:
	"""First cycle found by a DFS in declaration order, as a closed path."""
	WHITE, GREY, BLACK = 0, 1, 2
	color = dict.fromkeys(names, WHITE)
	path: list[str] = []

	def visit(name: str) -> list[str] | None:
		color[name] = GREY
		path.append(name)
		for dep in deps[name]:
			if color[dep] == GREY:
				return [*path[path.index(dep) :], dep]
			if color[dep] == WHITE:
				found = visit(dep)
				if found is not None:
					return found
		path.pop()
		color[name] = BLACK
		return None

	for name in names:
		if color[name] == WHITE:
			found = visit(name)
			if found is not None:
				return found
	return None


def topological_order(
	names: Sequence[str], deps: dict[str, tuple[str, ...]]
) -> list[str]:
	"""Kahn's algorithm; among ready fields the earliest declared goes first."""
	position = {name: i for i, name in enumerate(names)}
	indegree = {name: len(deps[name]) for name in names}
	readers: dict[str, list[str]] = {name: [] for name in names}
	for name in names:
		for dep in deps[name]:
			readers[dep].append(name)

	ready = [position[name] for name in names if indegree[name] == 0]
	heapq.heapify(ready)
	order: list[str] = []
	while ready:
		name = names[heapq.heappop(ready)]
		order.append(name)
		for reader in readers[name]:
			indegree[reader] -= 1
			if indegree[reader] == 0:
				heapq.heappush(ready, position[reader])
	return order


def build_graph(
	fields: Sequence[ReactiveField],
	*,
	unit: str | None = None,
	expand: bool = True,
) -> DependencyGraph:
	"""Validate fields and compute their recomputation order.

	Raises InvalidFieldError, DanglingReferenceError or CycleError, each
	carrying the unit and the offending field.
	"""
	all_fields = expand_animated(fields) if expand else list(fields)
	_check_fields(all_fields, unit)

	names = [f.name for f in all_fields]
	deps = {f.name: f.deps for f in all_fields}

	cycle = find_cycle(names, deps)
	if cycle is not None:
		raise CycleError(cycle, unit=unit)

	order = topological_order(names, deps)
	logger.debug("Graph for %s: %s", unit or "<anonymous>", " -> ".join(order))
	return DependencyGraph(
		fields={f.name: f for f in all_fields},
		order=order,
		deps=deps,
	)
