"""End-to-end CLI tests with the deno evaluator swapped for an in-process double."""

import json
import pytest
from pathlib import Path
from click.testing import CliRunner

from tsmanifests.cli.interface import main_cli
from tsmanifests.config import loader
from tsmanifests.core import pipeline
from tsmanifests.core.evaluation import NO_EXPORT
from tsmanifests.exceptions import EvaluationError


class NameKeyedEvaluator:
    """Looks exports up by file name; an Exception value is raised instead of returned."""

    def __init__(self, values):
        self.values = values
        self.init_kwargs = None

    async def evaluate(self, path):
        value = self.values.get(Path(path).name, NO_EXPORT)
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture(autouse=True)
def no_user_config(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(loader, "USER_CONFIG_FILE", tmp_path / "no-user-config.toml")


@pytest.fixture
def install_evaluator(monkeypatch):
    def install(values):
        evaluator = NameKeyedEvaluator(values)

        def factory(**kwargs):
            evaluator.init_kwargs = kwargs
            return evaluator

        monkeypatch.setattr(pipeline, "DenoEvaluator", factory)
        return evaluator
    return install


def create_project_structure(base: Path, files: dict):
    for rel_path, content in files.items():
        path = base / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


def test_cli_aggregates_in_discovery_order(install_evaluator):
    async def service():
        return [{"kind": "Service"}]

    install_evaluator({
        "a_namespace.ts": {"kind": "Namespace"},
        "deployment.ts": [{"kind": "Deployment"}, {"kind": "PodDisruptionBudget"}],
        "service.ts": service,
    })
    runner = CliRunner()
    with runner.isolated_filesystem() as td:
        create_project_structure(Path(td), {
            "a_namespace.ts": "",
            "apps/web/service.ts": "",
            "apps/deployment.ts": "",
            "node_modules/lib/deployment.ts": "",
            "apps/web/service_test.ts": "",
        })
        result = runner.invoke(main_cli, [], catch_exceptions=False)

    assert result.exit_code == 0
    envelope = json.loads(result.stdout)
    assert envelope["schemaVersion"] == "v1"
    assert envelope["kind"] == "List"
    assert [item["kind"] for item in envelope["items"]] == [
        "Namespace", "Deployment", "PodDisruptionBudget", "Service",
    ]


def test_cli_empty_tree_emits_empty_list(install_evaluator):
    install_evaluator({})
    runner = CliRunner()
    with runner.isolated_filesystem():
        result = runner.invoke(main_cli, [], catch_exceptions=False)

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"schemaVersion": "v1", "kind": "List", "items": []}
    assert "no_matching_files_found" in result.stderr


def test_cli_evaluation_failure_writes_nothing(install_evaluator):
    install_evaluator({
        "a.ts": {"kind": "ConfigMap"},
        "broken.ts": EvaluationError("broken.ts", "deno exited with code 1: SyntaxError"),
    })
    runner = CliRunner()
    with runner.isolated_filesystem() as td:
        create_project_structure(Path(td), {"a.ts": "", "broken.ts": ""})
        result = runner.invoke(main_cli, [], catch_exceptions=False)

    assert result.exit_code == 1
    assert result.stdout == ""
    assert "broken.ts" in result.stderr
    assert "SyntaxError" in result.stderr


def test_cli_failing_callable_exits_nonzero(install_evaluator):
    def explode():
        raise RuntimeError("secret backend unavailable")

    install_evaluator({"secret.ts": explode})
    runner = CliRunner()
    with runner.isolated_filesystem() as td:
        create_project_structure(Path(td), {"secret.ts": ""})
        result = runner.invoke(main_cli, [], catch_exceptions=False)

    assert result.exit_code == 1
    assert result.stdout == ""
    assert "secret.ts" in result.stderr
    assert "secret backend unavailable" in result.stderr


def test_cli_list_files(install_evaluator):
    evaluator = install_evaluator({"a.ts": RuntimeError("must not be evaluated")})
    runner = CliRunner()
    with runner.isolated_filesystem() as td:
        create_project_structure(Path(td), {"a.ts": "", "sub/b.mts": "", "sub/b.d.ts": ""})
        result = runner.invoke(main_cli, ["--list-files"], catch_exceptions=False)

    assert result.exit_code == 0
    assert result.stdout.splitlines() == ["a.ts", "sub/b.mts"]
    assert evaluator.init_kwargs is not None


def test_cli_root_depth_and_exclude_options(install_evaluator, tmp_path: Path):
    install_evaluator({"top.ts": "top", "deep.ts": "deep", "skipped.ts": "skipped"})
    create_project_structure(tmp_path / "proj", {
        "top.ts": "",
        "one/two/deep.ts": "",
        "vendor/skipped.ts": "",
    })
    runner = CliRunner()
    result = runner.invoke(
        main_cli,
        ["--root", str(tmp_path / "proj"), "--max-depth", "1", "--exclude", "vendor/", "--indent", "0"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    assert json.loads(result.stdout)["items"] == ["top"]


def test_cli_output_file_and_summary(install_evaluator):
    install_evaluator({"a.ts": ["x", "y"]})
    runner = CliRunner()
    with runner.isolated_filesystem() as td:
        create_project_structure(Path(td), {"a.ts": "", "b.ts": ""})
        result = runner.invoke(main_cli, ["-o", "out.json", "--summary"], catch_exceptions=False)
        written = json.loads((Path(td) / "out.json").read_text())

    assert result.exit_code == 0
    assert result.stdout == ""
    assert written["items"] == ["x", "y"]
    assert "Module files discovered: 2" in result.stderr
    assert "Files without a default export: 1" in result.stderr
    assert "Entries emitted: 2" in result.stderr


def test_cli_passes_deno_settings_to_evaluator(install_evaluator):
    evaluator = install_evaluator({})
    runner = CliRunner()
    with runner.isolated_filesystem() as td:
        create_project_structure(Path(td), {"a.ts": ""})
        result = runner.invoke(
            main_cli,
            ["--deno", "/opt/deno/bin/deno", "--deno-arg", "--allow-net", "--deno-arg", "--allow-read", "--timeout", "30"],
            catch_exceptions=False,
        )

    assert result.exit_code == 0
    assert evaluator.init_kwargs["deno_path"] == "/opt/deno/bin/deno"
    assert evaluator.init_kwargs["deno_args"] == ["--allow-net", "--allow-read"]
    assert evaluator.init_kwargs["timeout"] == 30.0


def test_cli_config_profile(install_evaluator):
    install_evaluator({"a.ts": "a", "b.ts": "b"})
    runner = CliRunner()
    with runner.isolated_filesystem() as td:
        create_project_structure(Path(td), {
            "a.ts": "",
            "staging/b.ts": "",
            ".tsmanifests.toml": '[profiles.prod]\nexclude_patterns = ["staging/"]\n',
        })
        all_result = runner.invoke(main_cli, [], catch_exceptions=False)
        prod_result = runner.invoke(main_cli, ["--config-profile", "prod"], catch_exceptions=False)

    assert json.loads(all_result.stdout)["items"] == ["a", "b"]
    assert json.loads(prod_result.stdout)["items"] == ["a"]


def test_cli_command_line_beats_config_file(install_evaluator):
    install_evaluator({"deep.ts": "deep"})
    runner = CliRunner()
    with runner.isolated_filesystem() as td:
        create_project_structure(Path(td), {"x/y/deep.ts": "", "tsmanifests.toml": "max_depth = 0\n"})
        from_config = runner.invoke(main_cli, [], catch_exceptions=False)
        from_cli = runner.invoke(main_cli, ["--max-depth", "5"], catch_exceptions=False)

    assert json.loads(from_config.stdout)["items"] == []
    assert json.loads(from_cli.stdout)["items"] == ["deep"]


def test_cli_invalid_config_exits_nonzero(install_evaluator):
    install_evaluator({})
    runner = CliRunner()
    with runner.isolated_filesystem() as td:
        create_project_structure(Path(td), {".tsmanifests.toml": 'max_depth = "deep"\n'})
        result = runner.invoke(main_cli, [], catch_exceptions=False)

    assert result.exit_code == 1
    assert result.stdout == ""
    assert "max_depth" in result.stderr


def test_cli_version():
    result = CliRunner().invoke(main_cli, ["--version"])
    assert result.exit_code == 0
    assert "tsmanifests" in result.stdout
