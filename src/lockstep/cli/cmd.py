"""
Command-line interface for lockstep.
Builds client artifacts for declared units and inspects their graphs.
"""
# typer relies on function calls used as default values
# pyright: reportCallInDefaultInitializer=false

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from lockstep.cli.helpers import TargetError, UnitLoadResult, load_units_from_target
from lockstep.codegen.build import BuildReport, build
from lockstep.codegen.generator import generate
from lockstep.codegen.writer import BuildConfig
from lockstep.env import env
from lockstep.errors import BuildError
from lockstep.version import __version__ as LOCKSTEP_VERSION

cli = typer.Typer(
	name="lockstep",
	help="lockstep - reactive expressions compiled for optimistic client execution",
	no_args_is_help=True,
)

TARGET_HELP = "Units target: 'path/to/app.py[:var]' or 'module.path:var'"


def _load(console: Console, target: str) -> UnitLoadResult:
	console.log(f"📁 Loading units from: {target}")
	try:
		result = load_units_from_target(target)
	except TargetError as exc:
		console.log(f"❌ {exc}")
		raise typer.Exit(1) from None
	_apply_load_result_to_env(result)
	console.log(f"📋 Found {len(result.units)} units")
	return result


def _apply_load_result_to_env(result: UnitLoadResult) -> None:
	if result.app_file is not None:
		env.app_file = str(result.app_file)
	if result.app_dir is not None:
		env.app_dir = str(result.app_dir)


@cli.command("build")
def build_cmd(
	target: str = typer.Argument(..., help=TARGET_HELP),
	out: Path | None = typer.Option(
		None, "--out", "-o", help="Output directory (default from LOCKSTEP_OUT_DIR)"
	),
	prune: bool = typer.Option(
		False, "--prune/--no-prune", help="Remove artifacts of undeclared units"
	),
	check: bool = typer.Option(
		False, "--check", help="Report what would change without writing"
	),
):
	"""Generate and write the client artifacts of every unit."""
	console = Console()
	result = _load(console, target)
	config = BuildConfig(out_dir=out, prune=prune)
	report = build(result.units, config, dry_run=check)
	_print_report(console, report, dry_run=check)
	if not report.ok:
		raise typer.Exit(1)
	if check and (report.written or report.removed or report.pruned):
		raise typer.Exit(1)


def _print_report(console: Console, report: BuildReport, *, dry_run: bool) -> None:
	verb = "Would write" if dry_run else "Wrote"
	for res in report.results:
		if res.written and res.path is not None:
			console.log(f"✏️  {verb} {res.path}")
		for path in res.removed:
			console.log(f"🗑️  {'Would remove' if dry_run else 'Removed'} {path}")
	for unit in report.pruned:
		console.log(f"🗑️  {'Would prune' if dry_run else 'Pruned'} {unit}")
	for unit, artifact in report.artifacts.items():
		for name, reason in artifact.untranspilable.items():
			console.log(f"⚠️  {unit}.{name} stays on the server: {reason}")
	for err in report.errors:
		console.log(f"❌ {err}")
	if report.ok:
		console.log(
			f"✅ {len(report.artifacts)} artifacts in {report.out_dir} "
			+ f"({len(report.written)} changed)"
		)


@cli.command("check")
def check_cmd(
	target: str = typer.Argument(..., help=TARGET_HELP),
	strict: bool = typer.Option(
		True, "--strict/--no-strict", help="Fail on untranspilable expressions"
	),
):
	"""Validate every optimistic expression without writing anything."""
	console = Console()
	result = _load(console, target)
	failed = False
	for unit in result.units:
		try:
			artifact = generate(unit)
		except BuildError as exc:
			console.log(f"❌ {exc}")
			failed = True
			continue
		if artifact is None:
			console.log(f"➖ {unit.name}: nothing runs on the client")
			continue
		for name, reason in artifact.untranspilable.items():
			console.log(f"⚠️  {unit.name}.{name}: {reason}")
			failed = failed or strict
		for skipped in artifact.skipped:
			console.log(f"[dim]   {unit.name}.{skipped.name}: {skipped.reason}[/dim]")
		console.log(f"✅ {unit.name}: {', '.join(artifact.functions)}")
	if failed:
		raise typer.Exit(1)


@cli.command("graph")
def graph_cmd(
	target: str = typer.Argument(..., help=TARGET_HELP),
):
	"""Print each unit's recomputation order."""
	console = Console()
	result = _load(console, target)
	failed = False
	for unit in result.units:
		try:
			graph = unit.graph()
		except BuildError as exc:
			console.log(f"❌ {exc}")
			failed = True
			continue
		table = Table(title=unit.name)
		table.add_column("#", justify="right")
		table.add_column("field")
		table.add_column("kind")
		table.add_column("deps")
		for i, f in enumerate(graph, start=1):
			kind = f.kind + (" (async)" if f.is_async else "")
			table.add_row(str(i), f.name, kind, ", ".join(graph.deps[f.name]))
		console.print(table)
	if failed:
		raise typer.Exit(1)


@cli.command("version")
def version_cmd():
	"""Print the lockstep version."""
	typer.echo(LOCKSTEP_VERSION)


def main():
	"""Main CLI entry point."""
	try:
		cli()
	except Exception:
		console = Console()
		console.print_exception()
		raise typer.Exit(1) from None


if __name__ == "__main__":
	main()
