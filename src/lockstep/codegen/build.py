"""Build step: current declared units in, current artifact set out."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from lockstep.codegen.generator import Artifact, generate
from lockstep.codegen.writer import ArtifactWriter, BuildConfig, WriteResult
from lockstep.errors import BuildError
from lockstep.unit import Unit

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BuildReport:
	out_dir: Path
	artifacts: dict[str, Artifact] = field(default_factory=dict)
	results: list[WriteResult] = field(default_factory=list)
	errors: list[BuildError] = field(default_factory=list)
	pruned: list[str] = field(default_factory=list)
	manifest_written: bool = False

	@property
	def ok(self) -> bool:
		return not self.errors

	@property
	def written(self) -> list[WriteResult]:
		return [r for r in self.results if r.written]

	@property
	def removed(self) -> list[Path]:
		return [p for r in self.results for p in r.removed]


def build(
	units: Sequence[Unit], config: BuildConfig | None = None, *, dry_run: bool = False
) -> BuildReport:
	"""Generate and write artifacts for every unit, then refresh the manifest.

	A unit with a build error keeps whatever artifact it had on disk; the
	error is collected in the report and the remaining units still build.
	Safe to re-run: unchanged artifacts are not rewritten.
	"""
	config = config or BuildConfig()
	out_dir = config.resolved_out_dir
	writer = ArtifactWriter(out_dir, config.file_prefix)
	report = BuildReport(out_dir=out_dir)
	validators_module = config.resolved_validators_module

	seen: set[str] = set()
	for unit in units:
		if unit.name in seen:
			report.errors.append(BuildError("Unit declared twice", unit=unit.name))
			continue
		seen.add(unit.name)
		try:
			artifact = generate(unit, validators_module=validators_module)
			if artifact is None:
				report.results.append(writer.remove_unit(unit.name, dry_run=dry_run))
				continue
			report.artifacts[unit.name] = artifact
			report.results.append(writer.write(artifact, dry_run=dry_run))
		except BuildError as exc:
			logger.error("Build failed for %s: %s", unit.name, exc)
			report.errors.append(exc.with_unit(unit.name))

	if config.prune:
		report.pruned = writer.prune(seen, dry_run=dry_run)

	if not dry_run:
		if any(a.helpers for a in report.artifacts.values()):
			writer.write_validators()
		report.manifest_written = writer.write_manifest()
	logger.info(
		"Built %d artifacts in %s (%d written, %d removed)",
		len(report.artifacts),
		out_dir,
		len(report.written),
		len(report.removed),
	)
	return report
