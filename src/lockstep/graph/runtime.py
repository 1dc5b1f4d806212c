"""
Server-side recomputation over a dependency graph.

Values of computed fields are recomputed in topological order whenever a
state field changes. Async fields run in tasks and hold an AsyncResult while
loading; a loading or failed dependency propagates to its readers without
running them, and readers of a settled async field get the unwrapped value and
produce an ok result.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from lockstep.errors import InvalidFieldError, errors
from lockstep.graph.builder import DependencyGraph
from lockstep.graph.fields import ReactiveField
from lockstep.rx.evaluator import evaluate
from lockstep.rx.expr import Rx
from lockstep.rx.inliner import FunctionTable, inline_rx
from lockstep.scheduling import TaskRegistry

logger = logging.getLogger(__name__)

AsyncStatus = Literal["loading", "ok", "failed"]


@dataclass(frozen=True, slots=True)
class AsyncResult:
	status: AsyncStatus
	result: Any = None
	error: BaseException | None = None

	@staticmethod
	def loading() -> AsyncResult:
		return AsyncResult("loading")

	@staticmethod
	def ok(result: Any) -> AsyncResult:
		return AsyncResult("ok", result=result)

	@staticmethod
	def failed(error: BaseException) -> AsyncResult:
		return AsyncResult("failed", error=error)

	@property
	def is_ok(self) -> bool:
		return self.status == "ok"


ChangeCallback = Callable[[str, Any], None]


class GraphRuntime:
	"""Holds the current value of every field in a graph."""

	graph: DependencyGraph
	values: dict[str, Any]
	on_change: ChangeCallback | None
	_exprs: dict[str, Rx]
	_tasks: TaskRegistry
	_generation: dict[str, int]

	def __init__(
		self,
		graph: DependencyGraph,
		initial: Mapping[str, Any] | None = None,
		*,
		functions: FunctionTable | None = None,
		on_change: ChangeCallback | None = None,
	) -> None:
		self.graph = graph
		self.on_change = on_change
		self._tasks = TaskRegistry(name="graph")
		self._generation = {}
		self._exprs = {}
		table = functions or FunctionTable()
		for f in graph.fields.values():
			if f.expr is not None:
				self._exprs[f.name] = inline_rx(f.expr, table)

		self.values = {f.name: f.default for f in graph.fields.values()}
		for name, value in (initial or {}).items():
			if name not in graph:
				raise InvalidFieldError(f"Unknown field '{name}'", field=name)
			self.values[name] = value

	def get(self, name: str) -> Any:
		return self.values[name]

	def __getitem__(self, name: str) -> Any:
		return self.values[name]

	def snapshot(self) -> dict[str, Any]:
		return dict(self.values)

	def recompute_all(self) -> None:
		for f in self.graph.computed():
			self._compute(f)

	def set(self, name: str, value: Any) -> list[str]:
		"""Set a state field and recompute what reads it.

		Returns the recomputed field names in order.
		"""
		f = self.graph.fields.get(name)
		if f is None:
			raise InvalidFieldError(f"Unknown field '{name}'", field=name)
		if f.computed:
			raise InvalidFieldError(
				f"Cannot set computed field '{name}'", field=name
			)
		self._store(name, value)
		return self._recompute_dependents(name)

	def update(self, changes: Mapping[str, Any]) -> list[str]:
		"""Set several state fields, recomputing each dependent once."""
		for name, value in changes.items():
			f = self.graph.fields.get(name)
			if f is None or f.computed:
				raise InvalidFieldError(f"Cannot set field '{name}'", field=name)
			self._store(name, value)
		affected: set[str] = set()
		for name in changes:
			affected.update(self.graph.dependents(name))
		recomputed = [n for n in self.graph.order if n in affected]
		for n in recomputed:
			self._compute(self.graph.fields[n])
		return recomputed

	async def settle(self) -> None:
		"""Wait until no async computation is in flight."""
		while pending := self._tasks.pending():
			await asyncio.wait(pending)

	def destroy(self) -> None:
		self._tasks.cancel_all()

	# --- Internals ----------------------------------------------------------

	def _store(self, name: str, value: Any) -> None:
		old = self.values.get(name)
		self.values[name] = value
		if self.on_change is not None and old is not value:
			self.on_change(name, value)

	def _recompute_dependents(self, name: str) -> list[str]:
		dependents = self.graph.dependents(name)
		for n in dependents:
			self._compute(self.graph.fields[n])
		return dependents

	def _inputs(self, f: ReactiveField) -> tuple[dict[str, Any], AsyncResult | None, bool]:
		"""Unwrapped dependency values, a propagating result, and whether any
		dependency was async."""
		inputs: dict[str, Any] = {}
		had_async = False
		for dep in f.deps:
			value = self.values.get(dep)
			if isinstance(value, AsyncResult):
				if value.status == "loading":
					return inputs, AsyncResult.loading(), True
				if value.status == "failed":
					return inputs, value, True
				had_async = True
				value = value.result
			inputs[dep] = value
		return inputs, None, had_async

	def _run(self, f: ReactiveField, inputs: Mapping[str, Any]) -> Any:
		expr = self._exprs.get(f.name)
		if expr is not None:
			return evaluate(expr, inputs)
		assert f.compute is not None
		return f.compute(inputs)

	def _compute(self, f: ReactiveField) -> None:
		inputs, propagate, had_async = self._inputs(f)
		generation = self._generation.get(f.name, 0) + 1
		self._generation[f.name] = generation
		if propagate is not None:
			self._store(f.name, propagate)
			return

		if f.is_async:
			self._store(f.name, AsyncResult.loading())
			self._tasks.create(
				self._compute_async(f, inputs, generation),
				name=f"graph.{f.name}",
			)
			return

		try:
			result = self._run(f, inputs)
		except Exception as exc:
			errors.report(exc, code="graph.compute", details={"field": f.name})
			result = None
		self._store(f.name, AsyncResult.ok(result) if had_async else result)

	async def _compute_async(
		self, f: ReactiveField, inputs: Mapping[str, Any], generation: int
	) -> None:
		try:
			result = self._run(f, inputs)
			if inspect.isawaitable(result):
				result = await result
			outcome = AsyncResult.ok(result)
		except asyncio.CancelledError:
			raise
		except Exception as exc:
			errors.report(exc, code="graph.async", details={"field": f.name})
			outcome = AsyncResult.failed(exc)

		if self._generation.get(f.name) != generation:
			logger.debug("Dropping stale async result for '%s'", f.name)
			return
		self._store(f.name, outcome)
		self._recompute_dependents(f.name)
