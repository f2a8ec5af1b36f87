"""Tests for the aks-flex-node CLI."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import base_config_data, write_config
from flexnode import __version__
from flexnode.bootstrapper import (
    ExecutionMode,
    ExecutionResult,
    RunCancelledError,
    StepFailedError,
    StepResult,
)
from flexnode.cli import app
from flexnode.platform import Platform

runner = CliRunner()


def _extract_json(output: str) -> dict[str, object]:
    """Extract the first JSON object embedded in *output*."""
    start = output.find("{")
    end = output.rfind("}")
    assert start != -1 and end != -1, f"No JSON payload found in output: {output}"
    return json.loads(output[start : end + 1])


def _last_operation(tmp_path: Path) -> dict[str, object]:
    lines = (tmp_path / "logs" / "operations.jsonl").read_text(encoding="utf-8").splitlines()
    return json.loads(lines[-1])


def _env(config_file: Path) -> dict[str, str]:
    return {"FLEXNODE_CONFIG_FILE": str(config_file), "FLEXNODE_LOG_LEVEL": "DEBUG"}


class _FakeBootstrapper:
    """Replacement for :class:`Bootstrapper` returning canned results."""

    bootstrap_outcome: ExecutionResult | BaseException
    unbootstrap_outcome: ExecutionResult
    instances: list[_FakeBootstrapper]

    def __init__(self, config: object, platform: Platform, *, templates: object = None) -> None:
        self.config = config
        self.platform = platform
        self.calls: list[str] = []
        type(self).instances.append(self)

    def bootstrap(self, ctx: object) -> ExecutionResult:
        self.calls.append("bootstrap")
        outcome = type(self).bootstrap_outcome
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def unbootstrap(self, ctx: object) -> ExecutionResult:
        self.calls.append("unbootstrap")
        return type(self).unbootstrap_outcome


def _result(mode: ExecutionMode, *steps: StepResult) -> ExecutionResult:
    return ExecutionResult(
        mode=mode,
        success=all(step.success for step in steps),
        duration=0.5,
        step_results=steps,
    )


@pytest.fixture
def fake_bootstrapper(
    monkeypatch: pytest.MonkeyPatch, linux_platform: Platform
) -> type[_FakeBootstrapper]:
    fake = type("FakeBootstrapper", (_FakeBootstrapper,), {"instances": []})
    fake.bootstrap_outcome = _result(
        ExecutionMode.BOOTSTRAP,
        StepResult("ArcInstall", True, 0.1),
        StepResult("RuncInstaller", True, 0.2),
    )
    fake.unbootstrap_outcome = _result(ExecutionMode.UNBOOTSTRAP, StepResult("ArcUninstall", True, 0.1))
    monkeypatch.setattr("flexnode.cli.Bootstrapper", fake)
    monkeypatch.setattr(
        "flexnode.cli.create_platform",
        lambda config, templates, *, dry_run=None: linux_platform,
    )
    return fake


def test_version_option_outputs_package_version(config_file: Path) -> None:
    result = runner.invoke(app, ["--version"], env=_env(config_file))

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_invocation_without_subcommand_shows_help(config_file: Path) -> None:
    result = runner.invoke(app, env=_env(config_file))

    assert result.exit_code == 0
    assert "AKS flex node bootstrapper" in result.stdout


def test_version_command_json(config_file: Path) -> None:
    env = _env(config_file) | {"FLEXNODE_GIT_COMMIT": "abc1234"}

    result = runner.invoke(app, ["version", "--json"], env=env)

    assert result.exit_code == 0
    payload = _extract_json(result.stdout)
    assert payload["version"] == __version__
    assert payload["git_commit"] == "abc1234"


def test_invalid_config_exits_with_validation_code(tmp_path: Path) -> None:
    config_file = write_config(tmp_path / "bad.json", {"unexpected": True})

    result = runner.invoke(app, ["status", "--config", str(config_file)])

    assert result.exit_code == 2
    assert "Unknown top-level" in result.stdout


def test_bootstrap_success_records_steps(
    tmp_path: Path, config_file: Path, fake_bootstrapper: type[_FakeBootstrapper]
) -> None:
    result = runner.invoke(app, ["bootstrap"], env=_env(config_file))

    assert result.exit_code == 0, result.stdout
    assert "Bootstrap complete" in result.stdout
    assert fake_bootstrapper.instances[0].calls == ["bootstrap"]
    operation = _last_operation(tmp_path)
    assert operation["command"] == "bootstrap"
    assert operation["result"]["status"] == "success"  # type: ignore[index]
    assert [step["name"] for step in operation["steps"]] == [  # type: ignore[union-attr]
        "ArcInstall",
        "RuncInstaller",
    ]


def test_bootstrap_json_output(config_file: Path, fake_bootstrapper: type[_FakeBootstrapper]) -> None:
    result = runner.invoke(app, ["bootstrap", "--json"], env=_env(config_file))

    assert result.exit_code == 0
    payload = _extract_json(result.stdout)
    assert payload["mode"] == "bootstrap"
    assert payload["successful_steps"] == 2


def test_bootstrap_requires_azure_settings(
    tmp_path: Path, fake_bootstrapper: type[_FakeBootstrapper]
) -> None:
    data = base_config_data(tmp_path)
    data.pop("azure")
    config_file = write_config(tmp_path / "partial.json", data)

    result = runner.invoke(app, ["bootstrap"], env=_env(config_file))

    assert result.exit_code == 2
    assert "azure.subscription_id" in result.stdout
    assert fake_bootstrapper.instances == []


def test_dry_run_bootstrap_tolerates_missing_settings(
    tmp_path: Path, fake_bootstrapper: type[_FakeBootstrapper]
) -> None:
    data = base_config_data(tmp_path)
    data.pop("azure")
    config_file = write_config(tmp_path / "partial.json", data)

    result = runner.invoke(app, ["bootstrap", "--dry-run"], env=_env(config_file))

    assert result.exit_code == 0, result.stdout
    assert "Dry run" in result.stdout
    assert _last_operation(tmp_path)["args"]["dry_run"] is True  # type: ignore[index]


def test_bootstrap_step_failure_exits_with_provider_code(
    tmp_path: Path, config_file: Path, fake_bootstrapper: type[_FakeBootstrapper]
) -> None:
    partial = _result(
        ExecutionMode.BOOTSTRAP,
        StepResult("ArcInstall", True, 0.1),
        StepResult("RuncInstaller", False, 0.2, "download failed"),
    )
    fake_bootstrapper.bootstrap_outcome = StepFailedError(
        "RuncInstaller", "execute", RuntimeError("download failed"), partial
    )

    result = runner.invoke(app, ["bootstrap"], env=_env(config_file))

    assert result.exit_code == 4
    assert "RuncInstaller" in result.stdout
    operation = _last_operation(tmp_path)
    assert operation["result"]["status"] == "error"  # type: ignore[index]
    assert operation["result"]["rc"] == 4  # type: ignore[index]


def test_cancelled_bootstrap_exits_130(
    config_file: Path, fake_bootstrapper: type[_FakeBootstrapper]
) -> None:
    fake_bootstrapper.bootstrap_outcome = StepFailedError(
        "ArcInstall", "execute", RunCancelledError("received SIGINT")
    )

    result = runner.invoke(app, ["bootstrap"], env=_env(config_file))

    assert result.exit_code == 130


def test_unbootstrap_partial_failure_still_exits_zero(
    tmp_path: Path, config_file: Path, fake_bootstrapper: type[_FakeBootstrapper]
) -> None:
    fake_bootstrapper.unbootstrap_outcome = _result(
        ExecutionMode.UNBOOTSTRAP,
        StepResult("ServicesDisabled", True, 0.1),
        StepResult("ArcUninstall", False, 0.3, "apt-get failed"),
    )

    result = runner.invoke(app, ["unbootstrap"], env=_env(config_file))

    assert result.exit_code == 0
    assert "finished with failures" in result.stdout
    operation = _last_operation(tmp_path)
    assert operation["result"]["status"] == "warning"  # type: ignore[index]
    assert operation["result"]["warnings"] == ["ArcUninstall: apt-get failed"]  # type: ignore[index]


def test_unbootstrap_runs_without_azure_settings(
    tmp_path: Path, fake_bootstrapper: type[_FakeBootstrapper]
) -> None:
    data = base_config_data(tmp_path)
    data.pop("azure")
    config_file = write_config(tmp_path / "partial.json", data)

    result = runner.invoke(app, ["unbootstrap"], env=_env(config_file))

    assert result.exit_code == 0, result.stdout
    assert fake_bootstrapper.instances[0].calls == ["unbootstrap"]


def test_agent_writes_status_file(
    tmp_path: Path, config_file: Path, fake_bootstrapper: type[_FakeBootstrapper]
) -> None:
    result = runner.invoke(app, ["agent", "--iterations", "2"], env=_env(config_file))

    assert result.exit_code == 0, result.stdout
    status = json.loads((tmp_path / "state" / "status.json").read_text(encoding="utf-8"))
    assert status["agent_version"] == __version__
    assert status["kubelet_running"] is False
    assert _last_operation(tmp_path)["result"]["context"]["snapshots"] == 2  # type: ignore[index]


def test_status_json(config_file: Path, fake_bootstrapper: type[_FakeBootstrapper]) -> None:
    result = runner.invoke(app, ["status", "--json"], env=_env(config_file))

    assert result.exit_code == 0
    payload = _extract_json(result.stdout)
    assert payload["kubelet_ready"] == "Unknown"
    assert payload["arc_status"]["registered"] is False  # type: ignore[index]


def test_status_table_mentions_unregistered_machine(
    config_file: Path, fake_bootstrapper: type[_FakeBootstrapper]
) -> None:
    result = runner.invoke(app, ["status"], env=_env(config_file))

    assert result.exit_code == 0
    assert "not registered with Azure Arc" in result.stdout
