"""Artifact generation, persistence and the build step."""

import json
import re
from pathlib import Path

import pytest
from lockstep.codegen.actions import SetOp, UpdateOp
from lockstep.codegen.build import build
from lockstep.codegen.generator import content_hash, generate
from lockstep.codegen.writer import (
	MANIFEST_FILE,
	VALIDATORS_FILE,
	ArtifactWriter,
	BuildConfig,
	write_file_if_changed,
)
from lockstep.env import env
from lockstep.errors import (
	BuildError,
	CycleError,
	DanglingReferenceError,
	InvalidFieldError,
)
from lockstep.rx.expr import rx
from lockstep.unit import Unit


def counter_unit(name: str = "Counter", step: int = 1) -> Unit:
	unit = Unit(name)
	unit.state("count", 0, optimistic=True)
	unit.calculate("doubled", "@count * 2")
	unit.action("increment", updates=[UpdateOp("count", delta=step)])
	return unit


def server_only_unit(name: str = "Report") -> Unit:
	unit = Unit(name)
	unit.state("rows", [])
	unit.derive("total", "count(@rows)")
	unit.action("export", sets=[SetOp("rows", [])], submits=["report"])
	return unit


class TestGenerate:
	def test_artifact_shape(self):
		artifact = generate(counter_unit())
		assert artifact is not None
		assert artifact.functions == ["increment", "doubled"]
		assert artifact.derives == ["doubled"]
		assert artifact.fields == ["count"]
		assert artifact.graph == {"doubled": {"deps": ["count"]}}
		assert artifact.animated == []

		source = artifact.source
		assert source.startswith("// Generated by lockstep for Counter.")
		assert "export default {" in source
		assert "  increment(state) {\n    return { count: state.count + 1 };\n  }," in source
		assert "  doubled(state) {\n    return state.count * 2;\n  }," in source
		assert '  __derives__: ["doubled"],' in source
		assert '  __fields__: ["count"],' in source
		assert '  __graph__: {"doubled": {"deps": ["count"]}},' in source
		assert "  __animated__: []," in source
		assert "import" not in source

	def test_parameterized_action(self):
		unit = Unit("Picker")
		unit.state("choice", None, optimistic=True)
		unit.action("pick", sets=[SetOp("choice", from_param=True)])
		artifact = generate(unit)
		assert artifact is not None
		assert "  pick(state, value) {\n    return { choice: value };\n  }," in artifact.source

	def test_non_identifier_field_names_are_quoted(self):
		unit = Unit("Odd")
		unit.state("first-name", "", optimistic=True)
		unit.action("clear", sets=[SetOp("first-name", "")])
		artifact = generate(unit)
		assert artifact is not None
		assert '{ "first-name": "" }' in artifact.source

	def test_set_expression_in_action(self):
		unit = Unit("Copy")
		unit.state("a", "", optimistic=True)
		unit.state("b", "", optimistic=True)
		unit.action("copy", sets=[SetOp("b", rx("@a"))])
		artifact = generate(unit)
		assert artifact is not None
		assert "copy(state) {\n    return { b: state.a };\n  }," in artifact.source

	def test_nothing_optimistic_means_no_artifact(self):
		assert generate(server_only_unit()) is None
		assert generate(Unit("Empty")) is None

	def test_server_only_derived_fields_are_skipped(self):
		unit = counter_unit()
		unit.derive("server_side", "@count + 1")
		artifact = generate(unit)
		assert artifact is not None
		assert "server_side" not in artifact.functions

	def test_untranspilable_field_keeps_marker(self):
		unit = Unit("Calc")
		unit.state("x", 2, optimistic=True)
		unit.calculate("sq", "@x ** 2")
		artifact = generate(unit)
		assert artifact is not None
		assert "sq" in artifact.untranspilable
		assert "sq(state) {\n    return (undefined /* untranspilable: " in artifact.source

	def test_skipped_actions_are_reported(self):
		unit = counter_unit()
		unit.action("save", sets=[SetOp("count", 0)], submits=["form"])
		artifact = generate(unit)
		assert artifact is not None
		assert [s.name for s in artifact.skipped] == ["save"]

	def test_validator_import_only_when_used(self):
		unit = Unit("Signup")
		unit.state("email", "", optimistic=True)
		unit.validity("email_valid", "valid_email(@email)")
		artifact = generate(unit, validators_module="./shared/validators.js")
		assert artifact is not None
		assert artifact.helpers == frozenset({"validEmail"})
		assert 'import * as validators from "./shared/validators.js";' in artifact.source

	def test_animated_metadata(self):
		unit = Unit("Modal")
		unit.state("product_id", None, async_field="product", preserve_dom=True)
		unit.derive("product", compute=lambda v: None, depends_on=["product_id"], is_async=True)
		artifact = generate(unit)
		assert artifact is not None
		assert artifact.animated == [
			{
				"field": "product_id",
				"phaseField": "product_id_phase",
				"async": "product",
				"preserveDom": True,
				"duration": 200,
				"type": None,
			}
		]
		assert "product_id_visible" in artifact.derives
		assert "product_id_async_ready" in artifact.derives
		assert "product_id_phase" in artifact.fields
		assert "product_id" in artifact.fields

	def test_name_clash_between_action_and_field(self):
		unit = Unit("Clash")
		unit.state("n", 0, optimistic=True)
		unit.calculate("bump", "@n + 1")
		unit.action("bump", updates=[UpdateOp("n", delta=1)])
		with pytest.raises(BuildError) as info:
			generate(unit)
		assert info.value.unit == "Clash"
		assert info.value.field == "bump"

	def test_cycle_error_carries_unit(self):
		unit = Unit("Loop")
		unit.calculate("a", "@b")
		unit.calculate("b", "@a")
		with pytest.raises(CycleError) as info:
			generate(unit)
		assert info.value.unit == "Loop"

	def test_generation_is_deterministic(self):
		a = generate(counter_unit())
		b = generate(counter_unit())
		assert a is not None and b is not None
		assert a.source == b.source
		assert a.content_hash == content_hash(a.source)
		assert re.fullmatch(r"[0-9a-f]{16}", a.content_hash)


class TestActionResolution:
	def test_inline_function_in_set_expression(self):
		unit = Unit("Form")
		unit.state("name", "", optimistic=True)
		unit.state("label", "", optimistic=True)
		unit.defrx("shout", ["s"], 'upper(s) <> "!"')
		unit.action("stamp", sets=[SetOp("label", rx("shout(@name)"))])
		artifact = generate(unit)
		assert artifact is not None
		assert (
			'stamp(state) {\n    return { label: state.name.toUpperCase() + "!" };'
			in artifact.source
		)
		assert artifact.skipped == []

		rt = unit.runtime({"name": "ada"})
		assert unit.run_action(rt, "stamp") == {"label": "ADA!"}
		assert rt["label"] == "ADA!"

	def test_unknown_field_in_set_expression(self):
		unit = Unit("Form")
		unit.state("label", "", optimistic=True)
		unit.action("stamp", sets=[SetOp("label", rx("@missing"))])
		with pytest.raises(DanglingReferenceError) as info:
			generate(unit)
		assert info.value.reference == "missing"
		assert info.value.unit == "Form"
		assert info.value.field == "stamp"

	def test_unknown_target_field(self):
		unit = Unit("Form")
		unit.state("label", "", optimistic=True)
		unit.action("bump", updates=[UpdateOp("count", delta=1)])
		with pytest.raises(InvalidFieldError, match="undeclared field 'count'") as info:
			unit.resolved_actions()
		assert info.value.unit == "Form"
		assert info.value.field == "bump"

	def test_computed_target_field(self):
		unit = counter_unit()
		unit.action("reset_doubled", sets=[SetOp("doubled", 0)])
		with pytest.raises(InvalidFieldError, match="computed field 'doubled'"):
			generate(unit)

	def test_run_action_resolves_actions(self):
		unit = counter_unit()
		rt = unit.runtime()
		unit.action("copy", sets=[SetOp("count", rx("@nope"))])
		with pytest.raises(DanglingReferenceError):
			unit.run_action(rt, "increment")


class TestWriter:
	def test_write_uses_content_hash(self, tmp_path: Path):
		artifact = generate(counter_unit())
		assert artifact is not None
		writer = ArtifactWriter(tmp_path)
		result = writer.write(artifact)
		assert result.written
		assert result.path == tmp_path / "Counter" / f"optimistic_{artifact.content_hash}.js"
		assert result.path.read_text() == artifact.source

	def test_existing_hash_is_not_rewritten(self, tmp_path: Path):
		artifact = generate(counter_unit())
		assert artifact is not None
		writer = ArtifactWriter(tmp_path)
		first = writer.write(artifact)
		assert first.path is not None
		mtime = first.path.stat().st_mtime_ns
		second = writer.write(artifact)
		assert not second.written
		assert second.removed == []
		assert first.path.stat().st_mtime_ns == mtime

	def test_stale_versions_are_removed(self, tmp_path: Path):
		writer = ArtifactWriter(tmp_path)
		old = generate(counter_unit(step=1))
		new = generate(counter_unit(step=2))
		assert old is not None and new is not None
		old_path = writer.write(old).path
		result = writer.write(new)
		assert result.written
		assert result.removed == [old_path]
		assert [p.name for p in (tmp_path / "Counter").iterdir()] == [
			f"optimistic_{new.content_hash}.js"
		]

	def test_dry_run_touches_nothing(self, tmp_path: Path):
		artifact = generate(counter_unit())
		assert artifact is not None
		result = ArtifactWriter(tmp_path).write(artifact, dry_run=True)
		assert result.written
		assert not (tmp_path / "Counter").exists()

	def test_unit_names_must_be_directory_safe(self, tmp_path: Path):
		artifact = generate(counter_unit("../evil"))
		assert artifact is not None
		with pytest.raises(BuildError):
			ArtifactWriter(tmp_path).write(artifact)

	def test_manifest_is_sorted(self, tmp_path: Path):
		writer = ArtifactWriter(tmp_path)
		for name in ("Zeta", "Alpha", "App.Counter"):
			artifact = generate(counter_unit(name))
			assert artifact is not None
			writer.write(artifact)
		assert writer.write_manifest()
		manifest = (tmp_path / MANIFEST_FILE).read_text()
		units = re.findall(r'^registry\[("[^"]+")\]', manifest, re.MULTILINE)
		assert [json.loads(u) for u in units] == ["Alpha", "App.Counter", "Zeta"]
		imports = re.findall(r'^import (mod_[0-9a-f]{8}) from "\./([^/]+)/', manifest, re.MULTILINE)
		assert [unit for _, unit in imports] == ["Alpha", "App.Counter", "Zeta"]
		assert manifest.rstrip().endswith("export default registry;")
		assert not writer.write_manifest()

	def test_write_file_if_changed(self, tmp_path: Path):
		path = tmp_path / "nested" / "file.js"
		assert write_file_if_changed(path, "a")
		assert not write_file_if_changed(path, "a")
		assert write_file_if_changed(path, "b")
		assert path.read_text() == "b"


class TestBuild:
	def test_build_writes_artifacts_and_manifest(self, tmp_path: Path):
		report = build(
			[counter_unit(), server_only_unit()], BuildConfig(out_dir=tmp_path)
		)
		assert report.ok
		assert list(report.artifacts) == ["Counter"]
		assert report.manifest_written
		manifest = (tmp_path / MANIFEST_FILE).read_text()
		assert '"Counter"' in manifest
		assert '"Report"' not in manifest
		assert not (tmp_path / VALIDATORS_FILE).exists()

	def test_rebuild_is_idempotent(self, tmp_path: Path):
		config = BuildConfig(out_dir=tmp_path)
		build([counter_unit()], config)
		report = build([counter_unit()], config)
		assert report.ok
		assert report.written == []
		assert report.removed == []
		assert not report.manifest_written

	def test_unit_without_artifact_is_removed(self, tmp_path: Path):
		config = BuildConfig(out_dir=tmp_path)
		build([counter_unit("Report")], config)
		assert (tmp_path / "Report").is_dir()
		report = build([server_only_unit("Report")], config)
		assert report.ok
		assert not (tmp_path / "Report").exists()
		assert '"Report"' not in (tmp_path / MANIFEST_FILE).read_text()

	def test_prune_removes_undeclared_units(self, tmp_path: Path):
		config = BuildConfig(out_dir=tmp_path)
		build([counter_unit("A"), counter_unit("B")], config)
		report = build([counter_unit("A")], BuildConfig(out_dir=tmp_path, prune=True))
		assert report.pruned == ["B"]
		assert not (tmp_path / "B").exists()
		assert '"B"' not in (tmp_path / MANIFEST_FILE).read_text()

	def test_without_prune_undeclared_units_stay(self, tmp_path: Path):
		config = BuildConfig(out_dir=tmp_path)
		build([counter_unit("A"), counter_unit("B")], config)
		build([counter_unit("A")], config)
		assert (tmp_path / "B").is_dir()

	def test_validators_written_when_used(self, tmp_path: Path):
		unit = Unit("Signup")
		unit.state("email", "", optimistic=True)
		unit.validity("email_valid", "valid_email(@email)")
		report = build([unit], BuildConfig(out_dir=tmp_path))
		assert report.ok
		validators = (tmp_path / VALIDATORS_FILE).read_text()
		assert "export function validEmail" in validators
		assert "export function validCardNumber" in validators
		artifact = report.artifacts["Signup"]
		assert 'from "../validators.js"' in artifact.source

	def test_errors_do_not_stop_other_units(self, tmp_path: Path):
		broken = Unit("Broken")
		broken.calculate("a", "@missing")
		report = build([broken, counter_unit()], BuildConfig(out_dir=tmp_path))
		assert not report.ok
		assert [e.unit for e in report.errors] == ["Broken"]
		assert list(report.artifacts) == ["Counter"]

	def test_duplicate_unit_names(self, tmp_path: Path):
		report = build([counter_unit(), counter_unit()], BuildConfig(out_dir=tmp_path))
		assert not report.ok
		assert len(report.artifacts) == 1

	def test_dry_run(self, tmp_path: Path):
		report = build([counter_unit()], BuildConfig(out_dir=tmp_path), dry_run=True)
		assert len(report.written) == 1
		assert not tmp_path.joinpath(MANIFEST_FILE).exists()
		assert not any(tmp_path.iterdir())


class TestBuildConfig:
	def test_relative_out_dir_is_anchored_at_base_dir(self, tmp_path: Path):
		config = BuildConfig(out_dir="static/js", base_dir=tmp_path)
		assert config.resolved_out_dir == tmp_path / "static/js"

	def test_base_dir_from_app_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
		monkeypatch.delenv("LOCKSTEP_APP_DIR", raising=False)
		monkeypatch.setenv("LOCKSTEP_APP_FILE", str(tmp_path / "app.py"))
		assert BuildConfig().resolved_base_dir == tmp_path

	def test_base_dir_from_app_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
		monkeypatch.delenv("LOCKSTEP_APP_FILE", raising=False)
		monkeypatch.setenv("LOCKSTEP_APP_DIR", str(tmp_path))
		assert BuildConfig().resolved_base_dir == tmp_path

	def test_out_dir_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
		monkeypatch.setenv("LOCKSTEP_OUT_DIR", str(tmp_path / "out"))
		assert env.out_dir == str(tmp_path / "out")
		assert BuildConfig().resolved_out_dir == tmp_path / "out"

	def test_validators_module_override(self, monkeypatch: pytest.MonkeyPatch):
		monkeypatch.delenv("LOCKSTEP_VALIDATORS", raising=False)
		assert BuildConfig().resolved_validators_module == "../validators.js"
		assert BuildConfig(validators_module="x.js").resolved_validators_module == "x.js"
