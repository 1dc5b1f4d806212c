"""
Versioned optimistic fields.

A synchronized field always exposes `value`. Local mutations apply
immediately and bump `version`; server confirmations carry the version they
answer and are only applied when no newer local mutation happened since.
Stale confirmations still move `confirmed_value` forward so the field knows
what the server last acknowledged.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Literal

from lockstep.errors import errors
from lockstep.scheduling import TaskRegistry

logger = logging.getLogger(__name__)

ChangeSource = Literal["optimistic", "confirmed", "server"]
OnChange = Callable[[Any, Any, ChangeSource], None]
SendFn = Callable[[Any, int], Awaitable[Any] | Any]
"""Called with `(value, version)`. A reply of None confirms the sent value;
any other reply is taken as the server's value at that version."""
OnSendError = Callable[["SyncedField", BaseException], None]


class SyncedField:
	value: Any
	confirmed_value: Any
	version: int
	confirmed_version: int
	name: str | None
	on_change: OnChange | None
	on_send_error: OnSendError | None
	_tasks: TaskRegistry

	def __init__(
		self,
		initial: Any = None,
		on_change: OnChange | None = None,
		*,
		on_send_error: OnSendError | None = None,
		name: str | None = None,
	) -> None:
		self.value = initial
		self.confirmed_value = initial
		self.version = 0
		self.confirmed_version = 0
		self.name = name
		self.on_change = on_change
		self.on_send_error = on_send_error
		self._tasks = TaskRegistry(name=name)

	def __repr__(self) -> str:
		return (
			f"{type(self).__name__}({self.name or ''!s} value={self.value!r} "
			f"v{self.version}/{self.confirmed_version})"
		)

	@property
	def is_pending(self) -> bool:
		"""Whether a local mutation has not been acknowledged yet."""
		return self.version != self.confirmed_version

	def set_optimistic(self, new_value: Any, send_fn: SendFn | None = None) -> int:
		"""Apply a local mutation now and optionally send it to the server.

		Returns the version assigned to the mutation. The version is bumped
		even when the value is unchanged, so a reply to an older send can never
		overwrite this one.
		"""
		old_value = self.value
		self.version += 1
		version = self.version
		self.value = new_value
		if new_value != old_value:
			self._value_changed(new_value, old_value, "optimistic")
		if send_fn is not None:
			self._tasks.create(
				self._send(send_fn, new_value, version),
				name=f"lockstep.send:{self.name or 'field'}:{version}",
			)
		return version

	async def _send(self, send_fn: SendFn, value: Any, version: int) -> None:
		try:
			reply = send_fn(value, version)
			if inspect.isawaitable(reply):
				reply = await reply
		except Exception as exc:
			logger.warning(
				"Send for %s at version %d failed, field stays unconfirmed",
				self.name or "field",
				version,
			)
			errors.report(
				exc,
				code="sync.send",
				details={"field": self.name, "version": version},
			)
			if self.on_send_error is not None:
				self.on_send_error(self, exc)
			return
		self.confirmed_set(value if reply is None else reply, version)

	def confirmed_set(self, server_value: Any, at_version: int) -> bool:
		"""Apply a server confirmation for `at_version`.

		Returns True when applied. A confirmation older than the current
		version is dropped, but still records the acknowledged value when it
		is newer than the last one seen.
		"""
		if at_version >= self.version:
			old_value = self.value
			self.value = server_value
			self.confirmed_value = server_value
			self.confirmed_version = self.version
			self._value_changed(server_value, old_value, "confirmed")
			return True
		if at_version > self.confirmed_version:
			self.confirmed_value = server_value
			self.confirmed_version = at_version
		logger.debug(
			"Dropped stale confirmation for %s: v%d < v%d",
			self.name or "field",
			at_version,
			self.version,
		)
		return False

	def server_set(self, new_value: Any) -> bool:
		"""Server-initiated change. Rejected while a local mutation is pending."""
		if self.is_pending:
			return False
		old_value = self.value
		if new_value == old_value:
			return False
		self.value = new_value
		self.confirmed_value = new_value
		self._value_changed(new_value, old_value, "server")
		return True

	def confirm(self, server_value: Any) -> None:
		"""The server caught up with every local mutation."""
		old_value = self.value
		self.confirmed_version = self.version
		self.confirmed_value = server_value
		self.value = server_value
		self._value_changed(server_value, old_value, "confirmed")

	async def settle(self) -> None:
		"""Wait for in-flight sends. Mostly useful in tests."""
		for task in self._tasks.pending():
			await task

	def destroy(self) -> None:
		self._tasks.cancel_all()
		self.on_change = None

	def _value_changed(self, new_value: Any, old_value: Any, source: ChangeSource) -> None:
		self._notify(new_value, old_value, source)

	def _notify(self, new_value: Any, old_value: Any, source: ChangeSource) -> None:
		if self.on_change is None:
			return
		try:
			self.on_change(new_value, old_value, source)
		except Exception as exc:
			errors.report(
				exc,
				code="sync.change",
				details={"field": self.name, "source": source},
			)


class SyncedFieldStore:
	"""Synchronized fields addressed by dotted path, e.g. `form.email`."""

	_fields: dict[str, SyncedField]
	on_change: Callable[[str, Any, Any, ChangeSource], None] | None

	def __init__(
		self, on_change: Callable[[str, Any, Any, ChangeSource], None] | None = None
	) -> None:
		self._fields = {}
		self.on_change = on_change

	def __contains__(self, path: str) -> bool:
		return path in self._fields

	def __len__(self) -> int:
		return len(self._fields)

	def field(self, path: str, initial: Any = None) -> SyncedField:
		"""Get the field at `path`, creating it with `initial` if needed."""
		existing = self._fields.get(path)
		if existing is not None:
			return existing

		def changed(new: Any, old: Any, source: ChangeSource) -> None:
			if self.on_change is not None:
				self.on_change(path, new, old, source)

		f = SyncedField(initial, changed, name=path)
		self._fields[path] = f
		return f

	def get(self, path: str) -> SyncedField | None:
		return self._fields.get(path)

	def has(self, path: str) -> bool:
		return path in self._fields

	def value(self, path: str, default: Any = None) -> Any:
		f = self._fields.get(path)
		return default if f is None else f.value

	def set_optimistic(self, path: str, value: Any, send_fn: SendFn | None = None) -> int:
		return self.field(path).set_optimistic(value, send_fn)

	def is_pending(self, path: str) -> bool:
		f = self._fields.get(path)
		return f is not None and f.is_pending

	@property
	def has_pending(self) -> bool:
		return any(f.is_pending for f in self._fields.values())

	def pending_paths(self) -> list[str]:
		return [path for path, f in self._fields.items() if f.is_pending]

	def to_state(self) -> dict[str, Any]:
		"""Current values as a nested mapping."""
		state: dict[str, Any] = {}
		for path, f in self._fields.items():
			_set_nested(state, path.split("."), f.value)
		return state

	def server_update(self, state: Mapping[str, Any]) -> list[str]:
		"""Apply a server-pushed state tree to the fields that exist.

		Fields with pending local mutations reject the change. Returns the
		paths that were updated.
		"""
		updated: list[str] = []
		for path, value in flatten_state(state).items():
			f = self._fields.get(path)
			if f is not None and f.server_set(value):
				updated.append(path)
		return updated

	def destroy(self) -> None:
		for f in self._fields.values():
			f.destroy()
		self._fields.clear()


def flatten_state(state: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
	"""Flatten nested mappings to dotted paths. Lists are leaves."""
	out: dict[str, Any] = {}
	for key, value in state.items():
		path = f"{prefix}.{key}" if prefix else str(key)
		if isinstance(value, Mapping):
			out.update(flatten_state(value, path))
		else:
			out[path] = value
	return out


def _set_nested(target: dict[str, Any], parts: list[str], value: Any) -> None:
	for part in parts[:-1]:
		child = target.get(part)
		if not isinstance(child, dict):
			child = {}
			target[part] = child
		target = child
	target[parts[-1]] = value
