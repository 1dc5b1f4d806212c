"""Task and timer bookkeeping for the client-side runtime.

Synchronized fields send mutations in tasks and animated fields drive their
phase machine with timers. Both are tracked in registries so that destroying a
field cancels everything it still has in flight.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, Protocol, TypeVar, override

from anyio import from_thread

T = TypeVar("T")
P = ParamSpec("P")


class TimerHandleLike(Protocol):
	def cancel(self) -> None: ...
	def cancelled(self) -> bool: ...
	def when(self) -> float: ...


def create_task(
	coroutine: Awaitable[T],
	*,
	name: str | None = None,
	on_done: Callable[[asyncio.Task[T]], None] | None = None,
) -> asyncio.Task[T]:
	"""Create and schedule a coroutine task on the running loop.

	When called from a worker thread (no running loop), the task is created on
	the loop that owns the thread through anyio's portal.
	"""

	try:
		asyncio.get_running_loop()
		task = asyncio.ensure_future(coroutine)
		if name is not None:
			task.set_name(name)
		if on_done:
			task.add_done_callback(on_done)
		return task
	except RuntimeError:

		async def _runner():
			task = asyncio.ensure_future(coroutine)
			if name is not None:
				task.set_name(name)
			if on_done:
				task.add_done_callback(on_done)
			return task

	return from_thread.run(_runner)


def _schedule_later(
	delay: float,
	fn: Callable[P, Any],
	*args: P.args,
	**kwargs: P.kwargs,
) -> asyncio.TimerHandle:
	"""
	Schedule `fn(*args, **kwargs)` to run after `delay` seconds.
	Exceptions raised by the callback go to the loop's exception handler.
	"""

	try:
		loop = asyncio.get_running_loop()
	except RuntimeError as exc:
		raise RuntimeError("later() requires a running event loop") from exc

	def _run():
		try:
			fn(*args, **kwargs)
		except Exception as exc:
			loop.call_exception_handler(
				{
					"message": "Unhandled exception in later() callback",
					"exception": exc,
					"context": {"callback": fn},
				}
			)

	return loop.call_later(delay, _run)


class TaskRegistry:
	_tasks: set[asyncio.Task[Any]]
	name: str | None

	def __init__(self, name: str | None = None) -> None:
		self._tasks = set()
		self.name = name

	def track(self, task: asyncio.Task[T]) -> asyncio.Task[T]:
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		return task

	def create(
		self,
		coroutine: Awaitable[T],
		*,
		name: str | None = None,
		on_done: Callable[[asyncio.Task[T]], None] | None = None,
	) -> asyncio.Task[T]:
		task = create_task(coroutine, name=name, on_done=on_done)
		return self.track(task)

	def pending(self) -> list[asyncio.Task[Any]]:
		return [t for t in self._tasks if not t.done()]

	def __len__(self) -> int:
		return len(self._tasks)

	def cancel_all(self) -> None:
		for task in list(self._tasks):
			if not task.done():
				task.cancel()
		self._tasks.clear()


class TimerRegistry:
	_handles: set[TimerHandleLike]
	name: str | None

	def __init__(self, name: str | None = None) -> None:
		self._handles = set()
		self.name = name

	def discard(self, handle: TimerHandleLike | None) -> None:
		if handle is None:
			return
		self._handles.discard(handle)

	def later(
		self,
		delay: float,
		fn: Callable[P, Any],
		*args: P.args,
		**kwargs: P.kwargs,
	) -> TimerHandleLike:
		tracked_box: list[_TrackedTimerHandle] = []

		def _wrapped():
			try:
				return fn(*args, **kwargs)
			finally:
				self.discard(tracked_box[0] if tracked_box else None)

		handle = _schedule_later(delay, _wrapped)
		tracked = _TrackedTimerHandle(handle, self)
		tracked_box.append(tracked)
		self._handles.add(tracked)
		return tracked

	def __len__(self) -> int:
		return len(self._handles)

	def cancel_all(self) -> None:
		for handle in list(self._handles):
			handle.cancel()
		self._handles.clear()


class _TrackedTimerHandle:
	__slots__: tuple[str, ...] = ("_handle", "_registry")
	_handle: asyncio.TimerHandle
	_registry: "TimerRegistry"

	def __init__(self, handle: asyncio.TimerHandle, registry: "TimerRegistry") -> None:
		self._handle = handle
		self._registry = registry

	def cancel(self) -> None:
		if not self._handle.cancelled():
			self._handle.cancel()
		self._registry.discard(self)

	def cancelled(self) -> bool:
		return self._handle.cancelled()

	def when(self) -> float:
		return self._handle.when()

	@override
	def __hash__(self) -> int:
		return hash(self._handle)

	@override
	def __eq__(self, other: object) -> bool:
		if isinstance(other, _TrackedTimerHandle):
			return self._handle is other._handle
		return self._handle is other
