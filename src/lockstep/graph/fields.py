from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from lockstep.rx.expr import Rx

FieldKind = Literal["state", "derived", "validity", "error"]
StorageTier = Literal["ephemeral", "persistent-client", "url"]

COMPUTED_KINDS: frozenset[str] = frozenset({"derived", "validity", "error"})

ComputeFn = Callable[[Mapping[str, Any]], Any]


@dataclass(slots=True)
class AnimatedConfig:
	"""Animation metadata for one state field.

	`async_field` names the companion field whose data gates the transition to
	`visible`. `preserve_dom` keeps the last rendered content alive through the
	exit animation.
	"""

	field: str
	async_field: str | None = None
	preserve_dom: bool = False
	duration: int = 200
	type: str | None = None

	@property
	def phase_field(self) -> str:
		return f"{self.field}_phase"

	def to_json(self) -> dict[str, Any]:
		return {
			"field": self.field,
			"phaseField": self.phase_field,
			"async": self.async_field,
			"preserveDom": self.preserve_dom,
			"duration": self.duration,
			"type": self.type,
		}


@dataclass(slots=True)
class ReactiveField:
	"""A named reactive value.

	State fields hold externally mutated values and may lack an expression.
	Derived, validity and error fields are computed, either from `expr` (which
	can also run on the client) or from a server-only `compute` function whose
	reads are declared in `depends_on`.
	"""

	name: str
	kind: FieldKind = "state"
	tier: StorageTier | None = None
	default: Any = None
	optimistic: bool = False
	is_async: bool = False
	expr: Rx | None = None
	compute: ComputeFn | None = None
	depends_on: tuple[str, ...] = ()
	animated: AnimatedConfig | None = None

	@property
	def computed(self) -> bool:
		return self.kind in COMPUTED_KINDS

	@property
	def deps(self) -> tuple[str, ...]:
		"""Fields this one reads, deduplicated in first-seen order."""
		seen: list[str] = []
		sources: tuple[str, ...] = self.expr.deps if self.expr is not None else ()
		for name in (*sources, *self.depends_on):
			if name not in seen:
				seen.append(name)
		return tuple(seen)


def state(
	name: str,
	default: Any = None,
	*,
	tier: StorageTier | None = "ephemeral",
	optimistic: bool = False,
	animated: AnimatedConfig | bool | None = None,
	**animated_opts: Any,
) -> ReactiveField:
	config: AnimatedConfig | None
	if animated is True or (animated is None and animated_opts):
		config = AnimatedConfig(field=name, **animated_opts)
	elif isinstance(animated, AnimatedConfig):
		config = animated
	else:
		config = None
	return ReactiveField(
		name=name,
		kind="state",
		tier=tier,
		default=default,
		optimistic=optimistic or config is not None,
		animated=config,
	)


def derived(
	name: str,
	expr: Rx | str | None = None,
	*,
	kind: FieldKind = "derived",
	optimistic: bool = False,
	is_async: bool = False,
	compute: ComputeFn | None = None,
	depends_on: tuple[str, ...] | list[str] = (),
	default: Any = None,
) -> ReactiveField:
	if isinstance(expr, str):
		expr = Rx.parse(expr)
	return ReactiveField(
		name=name,
		kind=kind,
		default=default,
		optimistic=optimistic,
		is_async=is_async,
		expr=expr,
		compute=compute,
		depends_on=tuple(depends_on),
	)
