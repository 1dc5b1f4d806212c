# pyright: reportPrivateUsage=false

import asyncio
from typing import Any

import pytest
from lockstep.client.phases import PHASE_CLASSES, AnimatedField
from lockstep.graph.builder import build_graph
from lockstep.graph.fields import AnimatedConfig, state
from lockstep.graph.runtime import GraphRuntime
from lockstep.test_helpers import wait_for

FAST = 10


class Recorder:
	def __init__(self) -> None:
		self.calls: list[str] = []

	def on_entering(self, field: AnimatedField) -> None:
		self.calls.append("entering")

	def on_loading(self, field: AnimatedField) -> None:
		self.calls.append("loading")

	def on_visible(self, field: AnimatedField) -> None:
		self.calls.append("visible")

	def on_exiting(self, field: AnimatedField) -> None:
		self.calls.append("exiting")

	def on_idle(self, field: AnimatedField) -> None:
		self.calls.append("idle")

	def on_async_ready(self, field: AnimatedField) -> None:
		self.calls.append("async_ready")

	def on_content_ready_during_enter(self, field: AnimatedField) -> None:
		self.calls.append("content_ready_during_enter")


def modal(**opts: Any) -> AnimatedField:
	opts.setdefault("duration", FAST)
	return AnimatedField(AnimatedConfig("modal", **opts))


def test_phase_table():
	assert list(PHASE_CLASSES) == ["idle", "entering", "loading", "visible", "exiting"]


def test_initial_phase():
	assert modal().phase == "idle"
	opened = AnimatedField(AnimatedConfig("modal"), initial={"id": 1})
	assert opened.phase == "visible"
	assert opened.history == ["visible"]


class TestOpening:
	@pytest.mark.asyncio
	async def test_scenario_open_without_async(self):
		f = modal()
		f.set_optimistic({"id": 1})
		assert f.phase == "entering"
		assert f.is_animating
		assert await wait_for(lambda: f.phase == "visible")
		assert f.history == ["idle", "entering", "visible"]
		assert "loading" not in f.history
		assert len(f._timers) == 0

	@pytest.mark.asyncio
	async def test_scenario_open_with_pending_async(self):
		delegate = Recorder()
		f = AnimatedField(
			AnimatedConfig("product_id", async_field="product", duration=FAST),
			delegate=delegate,
		)
		f.set_optimistic(42)
		assert await wait_for(lambda: f.phase == "loading")
		f.notify_async_ready()
		assert f.phase == "visible"
		assert f.history == ["idle", "entering", "loading", "visible"]
		assert delegate.calls == ["idle", "entering", "loading", "async_ready", "visible"]

	@pytest.mark.asyncio
	async def test_content_ready_during_enter_skips_loading(self):
		delegate = Recorder()
		f = AnimatedField(
			AnimatedConfig("product_id", async_field="product", duration=FAST),
			delegate=delegate,
		)
		f.set_optimistic(42)
		f.notify_async_ready()
		assert f.phase == "entering"
		assert await wait_for(lambda: f.phase == "visible")
		assert "loading" not in f.history
		assert "content_ready_during_enter" in delegate.calls

	@pytest.mark.asyncio
	async def test_transition_end_beats_the_fallback_timer(self):
		f = modal(duration=10_000)
		f.set_optimistic("a")
		f.notify_transition_end()
		assert f.phase == "visible"
		assert len(f._timers) == 0

	@pytest.mark.asyncio
	async def test_reopen_resets_async_readiness(self):
		f = modal(async_field="data")
		f.set_optimistic("a")
		f.notify_async_ready()
		f.notify_transition_end()
		f.set_optimistic(None)
		f.set_optimistic("b")
		assert f.phase == "entering"
		assert not f.is_async_ready
		f.notify_transition_end()
		assert f.phase == "loading"

	@pytest.mark.asyncio
	async def test_value_changes_while_open_do_not_transition(self):
		f = modal()
		f.set_optimistic("a")
		f.notify_transition_end()
		f.set_optimistic("b")
		assert f.phase == "visible"
		assert f.history == ["idle", "entering", "visible"]


class TestClosing:
	@pytest.mark.asyncio
	async def test_close_runs_exit_then_idle(self):
		f = modal()
		f.set_optimistic("a")
		f.notify_transition_end()
		f.set_optimistic(None)
		assert f.phase == "exiting"
		assert f.is_animating
		assert await wait_for(lambda: f.phase == "idle")
		assert f.history[-3:] == ["visible", "exiting", "idle"]

	@pytest.mark.asyncio
	async def test_close_while_entering(self):
		f = modal()
		f.set_optimistic("a")
		f.set_optimistic(None)
		assert f.phase == "exiting"
		assert await wait_for(lambda: f.phase == "idle")
		assert "visible" not in f.history

	@pytest.mark.asyncio
	async def test_reopen_during_exit(self):
		f = modal(duration=10_000)
		f.set_optimistic("a")
		f.notify_transition_end()
		f.set_optimistic(None)
		f.set_optimistic("b")
		assert f.phase == "entering"
		assert f.history[-2:] == ["exiting", "entering"]
		assert len(f._timers) == 1

	@pytest.mark.asyncio
	async def test_ghost_is_kept_through_exit(self):
		f = modal(preserve_dom=True)
		f.set_optimistic({"title": "Edit"})
		f.notify_transition_end()
		f.set_optimistic(None)
		assert f.ghost == {"title": "Edit"}
		assert f.display_value == {"title": "Edit"}
		assert await wait_for(lambda: f.phase == "idle")
		assert f.ghost is None
		assert f.display_value is None

	@pytest.mark.asyncio
	async def test_no_ghost_without_preserve_dom(self):
		f = modal()
		f.set_optimistic("a")
		f.set_optimistic(None)
		assert f.ghost is None


class TestRobustness:
	@pytest.mark.asyncio
	async def test_failing_delegate_does_not_block(self, caplog: pytest.LogCaptureFixture):
		class Broken:
			def on_entering(self, field: AnimatedField) -> None:
				raise RuntimeError("animation lib missing")

		f = AnimatedField(AnimatedConfig("modal", duration=FAST), delegate=Broken())
		f.set_optimistic("a")
		assert f.phase == "entering"
		assert "phase.delegate" in caplog.text
		assert await wait_for(lambda: f.phase == "visible")

	@pytest.mark.asyncio
	async def test_destroy_cancels_timers(self):
		f = modal()
		f.set_optimistic("a")
		assert len(f._timers) == 1
		f.destroy()
		assert len(f._timers) == 0
		await asyncio.sleep(0.1)
		assert f.phase == "entering"

	@pytest.mark.asyncio
	async def test_confirmation_does_not_restart_phase(self):
		f = modal()
		v = f.set_optimistic("a")
		f.confirmed_set("a", v)
		assert f.history == ["idle", "entering"]


@pytest.mark.asyncio
async def test_phase_mirrors_into_graph_runtime():
	config = AnimatedConfig("modal", duration=FAST)
	graph = build_graph([state("modal", animated=config)])
	rt = GraphRuntime(graph)
	rt.recompute_all()
	f = AnimatedField(
		config,
		on_phase=lambda phase: rt.set("modal_phase", phase),
	)
	assert rt["modal_visible"] is False

	f.set_optimistic("a")
	assert rt["modal_phase"] == "entering"
	assert rt["modal_visible"] is True
	assert rt["modal_animating"] is True

	assert await wait_for(lambda: rt["modal_phase"] == "visible")
	assert rt["modal_animating"] is False
