"""
Animated fields: a synchronized field driving a five phase lifecycle.

	idle -> entering -> (loading) -> visible -> exiting -> idle

Opening (value goes from None to something) enters `entering`; closing
(back to None) enters `exiting`. `loading` is only reachable when an async
companion is configured and its data has not arrived when the enter
animation ends. A re-open during `exiting` goes straight back to `entering`.

Animation timing is owned by the host. It calls `notify_transition_end()`
when the enter animation finishes; every timed phase also arms a fallback
timer of `duration + 50ms` so a lost transition-end event never strands the
field.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol, override

from lockstep.client.synced import ChangeSource, OnChange, OnSendError, SyncedField
from lockstep.errors import errors
from lockstep.graph.fields import AnimatedConfig
from lockstep.scheduling import TimerHandleLike, TimerRegistry

logger = logging.getLogger(__name__)

FALLBACK_MARGIN_MS = 50

OnPhase = Callable[[str], None]


class PhaseDelegate(Protocol):
	"""Lifecycle callbacks. Every method is optional."""

	def on_entering(self, field: AnimatedField) -> None: ...
	def on_loading(self, field: AnimatedField) -> None: ...
	def on_visible(self, field: AnimatedField) -> None: ...
	def on_exiting(self, field: AnimatedField) -> None: ...
	def on_idle(self, field: AnimatedField) -> None: ...
	def on_async_ready(self, field: AnimatedField) -> None: ...
	def on_content_ready_during_enter(self, field: AnimatedField) -> None: ...


class Phase:
	name: str = ""
	field: AnimatedField

	def __init__(self, field: AnimatedField) -> None:
		self.field = field

	def on_enter(self) -> None:
		pass

	def on_exit(self) -> None:
		pass

	def on_open(self) -> None:
		pass

	def on_close(self) -> None:
		pass

	def on_async_ready(self) -> None:
		pass

	def on_transition_end(self) -> None:
		pass


class _TimedPhase(Phase):
	"""A phase with a fallback timer that fires `on_timeout`."""

	_timer: TimerHandleLike | None = None

	@override
	def on_enter(self) -> None:
		delay = (self.field.config.duration + FALLBACK_MARGIN_MS) / 1000
		self._timer = self.field._timers.later(delay, self._fire)

	def _fire(self) -> None:
		try:
			self.on_timeout()
		except Exception as exc:
			errors.report(
				exc,
				code="phase.timer",
				details={"field": self.field.config.field, "phase": self.name},
			)

	@override
	def on_exit(self) -> None:
		if self._timer is not None:
			self._timer.cancel()
			self._timer = None

	def on_timeout(self) -> None:
		self._timer = None


class IdlePhase(Phase):
	name = "idle"

	@override
	def on_enter(self) -> None:
		self.field._ghost = None
		self.field._notify_delegate("on_idle")

	@override
	def on_open(self) -> None:
		self.field._transition_to("entering")


class EnteringPhase(_TimedPhase):
	name = "entering"

	@override
	def on_enter(self) -> None:
		self.field._notify_delegate("on_entering")
		super().on_enter()

	@override
	def on_timeout(self) -> None:
		super().on_timeout()
		self.on_transition_end()

	@override
	def on_transition_end(self) -> None:
		if self.field.has_async and not self.field.is_async_ready:
			self.field._transition_to("loading")
		else:
			self.field._transition_to("visible")

	@override
	def on_async_ready(self) -> None:
		# content swaps in place, the enter animation keeps running
		self.field._notify_delegate("on_content_ready_during_enter")

	@override
	def on_close(self) -> None:
		self.field._transition_to("exiting")


class LoadingPhase(Phase):
	name = "loading"

	@override
	def on_enter(self) -> None:
		self.field._notify_delegate("on_loading")

	@override
	def on_async_ready(self) -> None:
		self.field._notify_delegate("on_async_ready")
		self.field._transition_to("visible")

	@override
	def on_close(self) -> None:
		self.field._transition_to("exiting")


class VisiblePhase(Phase):
	name = "visible"

	@override
	def on_enter(self) -> None:
		self.field._notify_delegate("on_visible")

	@override
	def on_async_ready(self) -> None:
		self.field._notify_delegate("on_async_ready")

	@override
	def on_close(self) -> None:
		self.field._transition_to("exiting")


class ExitingPhase(_TimedPhase):
	name = "exiting"

	@override
	def on_enter(self) -> None:
		self.field._notify_delegate("on_exiting")
		super().on_enter()

	@override
	def on_timeout(self) -> None:
		super().on_timeout()
		self.field._transition_to("idle")

	@override
	def on_open(self) -> None:
		self.field._transition_to("entering")


PHASE_CLASSES: dict[str, type[Phase]] = {
	cls.name: cls
	for cls in (IdlePhase, EnteringPhase, LoadingPhase, VisiblePhase, ExitingPhase)
}


class AnimatedField(SyncedField):
	"""A synchronized field whose open/close changes run through phases.

	Args:
		config: Animation metadata, usually taken from the unit's graph.
		delegate: Receives lifecycle callbacks (see `PhaseDelegate`).
		on_phase: Called with every new phase name. Hosts use it to mirror the
			phase into the `{field}_phase` state field.
	"""

	config: AnimatedConfig
	delegate: Any
	on_phase: OnPhase | None
	is_async_ready: bool
	history: list[str]
	_phases: dict[str, Phase]
	_current: Phase | None
	_ghost: Any
	_timers: TimerRegistry

	def __init__(
		self,
		config: AnimatedConfig,
		initial: Any = None,
		on_change: OnChange | None = None,
		*,
		delegate: PhaseDelegate | None = None,
		on_phase: OnPhase | None = None,
		on_send_error: OnSendError | None = None,
	) -> None:
		super().__init__(
			initial, on_change, on_send_error=on_send_error, name=config.field
		)
		self.config = config
		self.delegate = delegate
		self.on_phase = on_phase
		self.is_async_ready = False
		self.history = []
		self._ghost = None
		self._timers = TimerRegistry(name=config.field)
		self._phases = {name: cls(self) for name, cls in PHASE_CLASSES.items()}
		self._current = None
		# already open fields start visible, there is nothing to animate
		self._transition_to("idle" if initial is None else "visible")

	@property
	def phase(self) -> str:
		return self._current.name if self._current is not None else "idle"

	@property
	def has_async(self) -> bool:
		return self.config.async_field is not None

	@property
	def is_animating(self) -> bool:
		return self.phase in ("entering", "exiting")

	@property
	def ghost(self) -> Any:
		"""Last open value, retained through `exiting` when `preserve_dom` is set."""
		return self._ghost

	@property
	def display_value(self) -> Any:
		"""What the host should render: the value, or the ghost while exiting."""
		return self.value if self.value is not None else self._ghost

	def notify_async_ready(self) -> None:
		"""The async companion's data has arrived."""
		self.is_async_ready = True
		if self._current is not None:
			self._current.on_async_ready()

	def notify_transition_end(self) -> None:
		"""The host's enter animation finished."""
		if self._current is not None:
			self._current.on_transition_end()

	@override
	def destroy(self) -> None:
		if self._current is not None:
			self._current.on_exit()
		self._timers.cancel_all()
		self.delegate = None
		self.on_phase = None
		super().destroy()

	@override
	def _value_changed(self, new_value: Any, old_value: Any, source: ChangeSource) -> None:
		super()._value_changed(new_value, old_value, source)
		was_open = old_value is not None
		is_open = new_value is not None
		if self._current is None:
			return
		if is_open and not was_open:
			self.is_async_ready = False
			self._current.on_open()
		elif was_open and not is_open:
			if self.config.preserve_dom:
				self._ghost = old_value
			self._current.on_close()

	def _transition_to(self, name: str) -> None:
		new_phase = self._phases[name]
		old_name = self._current.name if self._current is not None else "initial"
		logger.debug("[%s] %s -> %s", self.config.field, old_name, name)
		if self._current is not None:
			self._current.on_exit()
		self._current = new_phase
		self.history.append(name)
		if self.on_phase is not None:
			try:
				self.on_phase(name)
			except Exception as exc:
				errors.report(
					exc,
					code="phase.delegate",
					details={"field": self.config.field, "callback": "on_phase"},
				)
		new_phase.on_enter()

	def _notify_delegate(self, method: str) -> None:
		if self.delegate is None:
			return
		callback = getattr(self.delegate, method, None)
		if callback is None:
			return
		try:
			callback(self)
		except Exception as exc:
			errors.report(
				exc,
				code="phase.delegate",
				details={"field": self.config.field, "callback": method},
				message=f"Delegate {method} failed for {self.config.field}: {exc}",
			)
