from __future__ import annotations

import logging
import traceback
from typing import Any, Literal, override

logger = logging.getLogger(__name__)

ErrorCode = Literal[
	"sync.send",
	"sync.change",
	"phase.delegate",
	"phase.timer",
	"graph.compute",
	"graph.async",
]


class LockstepError(Exception):
	"""Base class for all lockstep errors."""


class BuildError(LockstepError):
	"""A declaration problem that stops artifact generation for a unit.

	`unit` and `field` locate the offending declaration. Either may be unknown
	when the error is raised deep inside the pipeline; the generator fills in the
	unit before the error leaves it.
	"""

	unit: str | None
	field: str | None

	def __init__(
		self, message: str, *, unit: str | None = None, field: str | None = None
	) -> None:
		super().__init__(message)
		self.message = message
		self.unit = unit
		self.field = field

	def with_unit(self, unit: str) -> BuildError:
		if self.unit is None:
			self.unit = unit
		return self

	@override
	def __str__(self) -> str:
		where: list[str] = []
		if self.unit is not None:
			where.append(f"unit={self.unit}")
		if self.field is not None:
			where.append(f"field={self.field}")
		if not where:
			return self.message
		return f"{self.message} ({', '.join(where)})"


class CycleError(BuildError):
	"""Dependency cycle between reactive fields."""

	cycle: list[str]

	def __init__(self, cycle: list[str], *, unit: str | None = None) -> None:
		self.cycle = cycle
		super().__init__(
			f"Dependency cycle: {' -> '.join(cycle)}", unit=unit, field=cycle[0]
		)


class DanglingReferenceError(BuildError):
	"""An expression reads a field that was never declared."""

	reference: str

	def __init__(
		self, reference: str, *, field: str, unit: str | None = None
	) -> None:
		self.reference = reference
		super().__init__(
			f"Reference to undeclared field '@{reference}'", unit=unit, field=field
		)


class InlineRecursionError(BuildError):
	"""An inlinable function calls itself, directly or through other functions."""

	chain: list[str]

	def __init__(self, chain: list[str], message: str | None = None) -> None:
		self.chain = chain
		super().__init__(
			message or f"Recursive inline function: {' -> '.join(chain)}"
		)


class InvalidFieldError(BuildError):
	"""A field declaration is malformed (duplicate name, missing expression, ...)."""


class ExpressionSyntaxError(BuildError):
	"""Expression source that cannot be parsed at all."""


def _format_stack(exc: BaseException) -> str:
	return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


class Errors:
	"""Reports runtime anomalies that must not interrupt the host.

	Every report goes to the module logger. An optional sink receives a
	structured payload so the host can surface the condition to the user
	(for example an unconfirmed field after a failed send).
	"""

	__slots__: tuple[str, ...] = ("_sink",)

	def __init__(self, sink: Any = None) -> None:
		self._sink = sink

	def report(
		self,
		exc: BaseException,
		*,
		code: ErrorCode,
		details: dict[str, Any] | None = None,
		message: str | None = None,
	) -> None:
		payload_details = dict(details) if details is not None else {}
		payload_message = message or str(exc)
		stack = _format_stack(exc)

		if self._sink is not None:
			try:
				self._sink(
					{
						"message": payload_message,
						"code": code,
						"details": payload_details,
						"stack": stack,
					}
				)
			except Exception as sink_exc:
				logger.exception("Failed to forward error to sink", exc_info=sink_exc)

		logger.error(
			"Lockstep error code=%s message=%s details=%s\n%s",
			code,
			payload_message,
			payload_details,
			stack,
		)


errors = Errors()

__all__ = [
	"BuildError",
	"CycleError",
	"DanglingReferenceError",
	"ErrorCode",
	"Errors",
	"ExpressionSyntaxError",
	"InlineRecursionError",
	"InvalidFieldError",
	"LockstepError",
	"errors",
]
