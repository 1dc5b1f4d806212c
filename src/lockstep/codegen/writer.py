"""
Artifact persistence.

Layout under the output directory:

	<out>/<Unit>/optimistic_<hash>.js   one content-addressed module per unit
	<out>/index.js                      manifest, unit -> current module
	<out>/validators.js                 shared client validators

A module whose hash is already on disk is not rewritten, so file watchers of
the host build do not cascade. Older modules of the same unit are deleted.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from lockstep.codegen.generator import Artifact, content_hash
from lockstep.codegen.templates.manifest import MANIFEST_TEMPLATE
from lockstep.codegen.templates.validators import VALIDATORS_TEMPLATE
from lockstep.env import env
from lockstep.errors import BuildError

logger = logging.getLogger(__name__)

DEFAULT_OUT_DIR = "assets/js/lockstep-optimistic"
DEFAULT_FILE_PREFIX = "optimistic"
MANIFEST_FILE = "index.js"
VALIDATORS_FILE = "validators.js"

_UNIT_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]*$")


@dataclass
class BuildConfig:
	"""
	Configuration for artifact builds.

	Attributes:
	    out_dir: Output directory. Relative paths are anchored at the base dir.
	    base_dir: Directory containing the user's app file. Resolved from env if unset.
	    file_prefix: Prefix of artifact file names.
	    validators_module: Import specifier artifacts use for the shared validators.
	    prune: Remove unit directories that no declared unit produced.
	"""

	out_dir: Path | str | None = None
	base_dir: Path | None = None
	file_prefix: str = DEFAULT_FILE_PREFIX
	validators_module: str | None = None
	prune: bool = False

	@property
	def resolved_base_dir(self) -> Path:
		"""Resolve the base directory where relative paths should be anchored.

		Precedence:
		  1) Explicit `base_dir` if provided
		  2) Env var `LOCKSTEP_APP_FILE` (directory of the file)
		  3) Env var `LOCKSTEP_APP_DIR`
		  4) Current working directory
		"""
		if isinstance(self.base_dir, Path):
			return self.base_dir
		app_file = env.app_file
		if app_file:
			return Path(app_file).parent
		app_dir = env.app_dir
		if app_dir:
			return Path(app_dir)
		return Path.cwd()

	@property
	def resolved_out_dir(self) -> Path:
		out = Path(self.out_dir or env.out_dir or DEFAULT_OUT_DIR)
		if out.is_absolute():
			return out
		return self.resolved_base_dir / out

	@property
	def resolved_validators_module(self) -> str:
		return self.validators_module or env.validators_module or f"../{VALIDATORS_FILE}"


def write_file_if_changed(path: Path, content: str) -> bool:
	"""Write content to file only if it has changed. Returns whether it wrote."""
	if path.exists():
		try:
			if path.read_text() == content:
				return False
		except OSError:
			logger.warning(f"Can't read file {path.absolute()}")
	path.parent.mkdir(exist_ok=True, parents=True)
	path.write_text(content)
	return True


def check_unit_name(unit: str) -> None:
	if not _UNIT_NAME_RE.match(unit):
		raise BuildError(
			f"Unit name {unit!r} cannot be used as a directory name", unit=unit
		)


@dataclass(slots=True)
class WriteResult:
	unit: str
	path: Path | None
	written: bool = False
	removed: list[Path] = field(default_factory=list)


@dataclass(slots=True)
class ManifestEntry:
	unit: str
	filename: str

	@property
	def import_name(self) -> str:
		return "mod_" + hashlib.md5(self.unit.encode("utf-8")).hexdigest()[:8]

	@property
	def unit_literal(self) -> str:
		return json.dumps(self.unit)


class ArtifactWriter:
	out_dir: Path
	file_prefix: str

	def __init__(self, out_dir: Path, file_prefix: str = DEFAULT_FILE_PREFIX) -> None:
		self.out_dir = out_dir
		self.file_prefix = file_prefix

	def filename(self, artifact: Artifact) -> str:
		return f"{self.file_prefix}_{content_hash(artifact.source)}.js"

	def _unit_files(self, unit: str) -> list[Path]:
		unit_dir = self.out_dir / unit
		if not unit_dir.is_dir():
			return []
		return sorted(unit_dir.glob(f"{self.file_prefix}_*.js"))

	def write(self, artifact: Artifact, *, dry_run: bool = False) -> WriteResult:
		"""Persist one unit's artifact and delete its stale versions."""
		check_unit_name(artifact.unit)
		path = self.out_dir / artifact.unit / self.filename(artifact)
		result = WriteResult(unit=artifact.unit, path=path)

		if path.exists():
			logger.debug("Artifact %s unchanged, skipping write", path)
		else:
			result.written = True
			if not dry_run:
				path.parent.mkdir(parents=True, exist_ok=True)
				path.write_text(artifact.source)
				logger.debug("Wrote artifact %s", path)

		for stale in self._unit_files(artifact.unit):
			if stale.name == path.name:
				continue
			result.removed.append(stale)
			if not dry_run:
				stale.unlink(missing_ok=True)
				logger.debug("Removed stale artifact %s", stale)
		return result

	def remove_unit(self, unit: str, *, dry_run: bool = False) -> WriteResult:
		"""Delete every artifact of a unit that no longer produces one."""
		check_unit_name(unit)
		result = WriteResult(unit=unit, path=None)
		result.removed = self._unit_files(unit)
		if dry_run:
			return result
		for stale in result.removed:
			stale.unlink(missing_ok=True)
			logger.debug("Removed artifact %s", stale)
		unit_dir = self.out_dir / unit
		if unit_dir.is_dir() and not any(unit_dir.iterdir()):
			unit_dir.rmdir()
		return result

	def units_on_disk(self) -> list[str]:
		if not self.out_dir.is_dir():
			return []
		return sorted(
			p.name for p in self.out_dir.iterdir() if p.is_dir() and self._unit_files(p.name)
		)

	def prune(self, keep: set[str], *, dry_run: bool = False) -> list[str]:
		"""Remove unit directories holding artifacts of undeclared units."""
		removed: list[str] = []
		for unit in self.units_on_disk():
			if unit in keep:
				continue
			removed.append(unit)
			if not dry_run:
				shutil.rmtree(self.out_dir / unit)
				logger.debug("Pruned undeclared unit %s", unit)
		return removed

	def manifest_entries(self) -> list[ManifestEntry]:
		entries: list[ManifestEntry] = []
		for unit in self.units_on_disk():
			files = self._unit_files(unit)
			if len(files) > 1:
				logger.warning(
					"Unit %s has %d artifacts on disk, using %s",
					unit,
					len(files),
					files[-1].name,
				)
			entries.append(ManifestEntry(unit=unit, filename=files[-1].name))
		return entries

	def render_manifest(self) -> str:
		return MANIFEST_TEMPLATE.render_unicode(entries=self.manifest_entries())

	def write_manifest(self) -> bool:
		return write_file_if_changed(self.out_dir / MANIFEST_FILE, self.render_manifest())

	def write_validators(self) -> bool:
		return write_file_if_changed(
			self.out_dir / VALIDATORS_FILE, VALIDATORS_TEMPLATE.render_unicode()
		)
