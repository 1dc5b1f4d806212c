"""Loading units from a CLI target."""

from __future__ import annotations

import importlib
import importlib.util
import sys
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType

from lockstep.unit import Unit


class TargetError(Exception):
	"""The CLI target cannot be loaded or holds no units."""


@dataclass(slots=True)
class UnitLoadResult:
	target: str
	units: list[Unit]
	app_file: Path | None = None
	app_dir: Path | None = None
	module: ModuleType | None = field(default=None, repr=False)


def parse_target(target: str) -> tuple[str, str | None]:
	"""Split `path.py[:var]` or `module.path:var` into its two parts."""
	# Windows drive letters contain a colon too
	head, sep, tail = target.rpartition(":")
	if not sep or not head or "/" in tail or "\\" in tail:
		return target, None
	return head, tail or None


def _load_file(path: Path) -> ModuleType:
	if not path.exists():
		raise TargetError(f"File not found: {path}")
	module_name = f"lockstep_target_{path.stem}"
	spec = importlib.util.spec_from_file_location(module_name, path)
	if spec is None or spec.loader is None:
		raise TargetError(f"Cannot import {path}")
	# sibling imports of the app file resolve like `python path.py`
	parent = str(path.parent)
	if parent not in sys.path:
		sys.path.insert(0, parent)
	module = importlib.util.module_from_spec(spec)
	sys.modules[module_name] = module
	spec.loader.exec_module(module)
	return module


def _collect(value: object, target: str) -> list[Unit]:
	if isinstance(value, Unit):
		return [value]
	if callable(value):
		return _collect(value(), target)
	if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
		units = list(value)
		bad = [u for u in units if not isinstance(u, Unit)]
		if bad:
			raise TargetError(f"{target} holds non-unit values: {bad[0]!r}")
		return units
	raise TargetError(f"{target} is not a Unit or a collection of units")


def load_units_from_target(target: str) -> UnitLoadResult:
	"""Load the units named by a CLI target.

	Without a variable name every top-level `Unit` of the module is used, in
	definition order. A variable may hold a unit, an iterable of units, or a
	callable returning either.
	"""
	location, var = parse_target(target)
	app_file: Path | None = None
	if location.endswith(".py") or Path(location).is_file():
		app_file = Path(location).resolve()
		module = _load_file(app_file)
	else:
		try:
			module = importlib.import_module(location)
		except ImportError as exc:
			raise TargetError(f"Cannot import module '{location}': {exc}") from exc
		if module.__file__:
			app_file = Path(module.__file__).resolve()

	if var is None:
		units = [v for v in vars(module).values() if isinstance(v, Unit)]
	else:
		if not hasattr(module, var):
			raise TargetError(f"'{location}' has no attribute '{var}'")
		units = _collect(getattr(module, var), target)
	if not units:
		raise TargetError(f"No units found in {target}")
	return UnitLoadResult(
		target=target,
		units=units,
		app_file=app_file,
		app_dir=app_file.parent if app_file else None,
		module=module,
	)
