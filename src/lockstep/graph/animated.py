"""Expansion of animated state fields into phase tracking fields."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from lockstep.graph.fields import AnimatedConfig, ReactiveField
from lockstep.rx.expr import Rx

logger = logging.getLogger(__name__)

PHASES: tuple[str, ...] = ("idle", "entering", "loading", "visible", "exiting")


def phase_fields(config: AnimatedConfig) -> list[ReactiveField]:
	"""The fields an animated state field expands into.

	- `{f}_phase`: ephemeral state, "idle" by default
	- `{f}_visible`: phase is not idle
	- `{f}_animating`: phase is entering or exiting
	- `{f}_async_ready`: phase is visible or the async companion has data
	"""
	f = config.field
	phase = config.phase_field
	out = [
		ReactiveField(
			name=phase,
			kind="state",
			tier="ephemeral",
			default="idle",
			optimistic=True,
		),
		ReactiveField(
			name=f"{f}_visible",
			kind="derived",
			optimistic=True,
			expr=Rx.parse(f'@{phase} != "idle"'),
		),
		ReactiveField(
			name=f"{f}_animating",
			kind="derived",
			optimistic=True,
			expr=Rx.parse(f'@{phase} == "entering" or @{phase} == "exiting"'),
		),
	]
	if config.async_field is not None:
		out.append(
			ReactiveField(
				name=f"{f}_async_ready",
				kind="derived",
				optimistic=True,
				expr=Rx.parse(f'@{phase} == "visible" or not is_nil(@{config.async_field})'),
			)
		)
	return out


def expand_animated(fields: Sequence[ReactiveField]) -> list[ReactiveField]:
	"""Append the phase fields of every animated state field.

	Names the user already declared are kept as declared.
	"""
	declared = {f.name for f in fields}
	out = list(fields)
	for f in fields:
		if f.animated is None:
			continue
		for extra in phase_fields(f.animated):
			if extra.name in declared:
				logger.debug("Keeping user-declared '%s' for animated '%s'", extra.name, f.name)
				continue
			declared.add(extra.name)
			out.append(extra)
	return out
