"""
Client runtime artifact generation.

One module per unit holding a function per optimistic action and per
optimistic derived field, plus the metadata the client runtime needs to
recompute derived fields incrementally.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from lockstep.codegen.actions import PARAM_NAME, CompiledAction, Ineligible, compile_actions
from lockstep.codegen.templates.artifact import ARTIFACT_TEMPLATE
from lockstep.errors import BuildError
from lockstep.graph.builder import DependencyGraph
from lockstep.rx.builtins import VALIDATORS_NAMESPACE
from lockstep.rx.transpiler import STATE_PARAM, compile_rx

if TYPE_CHECKING:
	from lockstep.unit import Unit

logger = logging.getLogger(__name__)

DEFAULT_VALIDATORS_MODULE = "../validators.js"

_IDENT_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


def js_key(name: str) -> str:
	return name if _IDENT_RE.match(name) else json.dumps(name)


@dataclass(slots=True)
class ArtifactFunction:
	name: str
	params: list[str]
	body: str


@dataclass(slots=True)
class Artifact:
	unit: str
	source: str
	functions: list[str]
	derives: list[str]
	fields: list[str]
	graph: dict[str, Any]
	animated: list[dict[str, Any]]
	helpers: frozenset[str] = frozenset()
	untranspilable: dict[str, str] = field(default_factory=dict)
	"""Derived fields emitted as the untranspilable marker, with the reason."""
	skipped: list[Ineligible] = field(default_factory=list)
	"""Actions and fields left to the server."""

	@property
	def content_hash(self) -> str:
		return content_hash(self.source)


def content_hash(source: str, length: int = 16) -> str:
	return hashlib.sha256(source.encode("utf-8")).hexdigest()[:length]


def _action_function(action: CompiledAction) -> ArtifactFunction:
	pairs = ", ".join(f"{js_key(f)}: {code}" for f, code in action.assignments)
	params = [STATE_PARAM, PARAM_NAME] if action.takes_value else [STATE_PARAM]
	return ArtifactFunction(action.name, params, f"{{ {pairs} }}")


def generate(
	unit: Unit,
	*,
	validators_module: str = DEFAULT_VALIDATORS_MODULE,
	graph: DependencyGraph | None = None,
) -> Artifact | None:
	"""Generate the client artifact for a unit.

	Returns None when nothing in the unit qualifies for optimistic execution.
	Build errors (cycles, dangling references, recursive inline functions)
	propagate with the unit attached.
	"""
	try:
		if graph is None:
			graph = unit.graph()
		return _generate(unit, graph, validators_module)
	except BuildError as exc:
		raise exc.with_unit(unit.name)


def _generate(
	unit: Unit, graph: DependencyGraph, validators_module: str
) -> Artifact | None:
	unit_name = unit.name
	functions: list[ArtifactFunction] = []
	helpers: set[str] = set()
	untranspilable: dict[str, str] = {}

	compiled_actions, skipped = compile_actions(unit.resolved_actions(graph))
	for action in compiled_actions:
		functions.append(_action_function(action))
		helpers.update(action.helpers)

	derives: list[str] = []
	for f in graph.computed():
		if not f.optimistic:
			continue
		if f.expr is None:
			skipped.append(Ineligible(f.name, "computed on the server only"))
			continue
		compiled = compile_rx(f.expr)
		if not compiled.ok:
			assert compiled.reason is not None
			untranspilable[f.name] = compiled.reason
			logger.info(
				"%s.%s is untranspilable, server updates only: %s",
				unit_name,
				f.name,
				compiled.reason,
			)
		helpers.update(compiled.helpers)
		functions.append(ArtifactFunction(f.name, [STATE_PARAM], compiled.code))
		derives.append(f.name)

	if not functions:
		logger.debug("No optimistic artifact for %s", unit_name)
		return None

	names = [fn.name for fn in functions]
	duplicates = sorted({n for n in names if names.count(n) > 1})
	if duplicates:
		raise BuildError(
			f"Action and derived field share the name '{duplicates[0]}'",
			unit=unit_name,
			field=duplicates[0],
		)

	fields = [f.name for f in graph if not f.computed and f.optimistic]
	graph_json = graph.to_json(derives)
	animated = [config.to_json() for config in graph.animated()]
	imports: list[str] = []
	if helpers:
		imports.append(
			f"import * as {VALIDATORS_NAMESPACE} from {json.dumps(validators_module)};"
		)

	source = ARTIFACT_TEMPLATE.render_unicode(
		unit=unit_name,
		imports=imports,
		fns=functions,
		derives=json.dumps(derives),
		fields=json.dumps(fields),
		graph=json.dumps(graph_json, sort_keys=True),
		animated=json.dumps(animated),
	)
	return Artifact(
		unit=unit_name,
		source=source,
		functions=names,
		derives=derives,
		fields=fields,
		graph=graph_json,
		animated=animated,
		helpers=frozenset(helpers),
		untranspilable=untranspilable,
		skipped=skipped,
	)
