"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import dataclasses
import json
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from flexnode.config import AppConfig, load_config
from flexnode.platform import (
    CommandError,
    CommandRunner,
    FileSystem,
    OperatingSystem,
    PathConfig,
    Platform,
    ServiceConfig,
    ServiceError,
    linux_paths,
    windows_paths,
)
from flexnode.templates import TemplateEngine

CLUSTER_ID = (
    "/subscriptions/sub-123/resourceGroups/rg-aks"
    "/providers/Microsoft.ContainerService/managedClusters/aks-one"
)

ADMIN_KUBECONFIG = """\
apiVersion: v1
kind: Config
clusters:
- name: aks-one
  cluster:
    server: https://aks-one.hcp.eastus.azmk8s.io:443
    certificate-authority-data: Q0EtREFUQQ==
contexts: []
users: []
"""


# ----------------------------------------------------------------------
# Fakes


Responder = Callable[[list[str]], "subprocess.CompletedProcess[str] | str | Exception | None"]


@dataclass
class RecordingRunner(CommandRunner):
    """Command runner that records invocations instead of spawning processes."""

    calls: list[list[str]] = field(default_factory=list)
    responders: list[tuple[tuple[str, ...], Responder]] = field(default_factory=list)

    def respond(self, prefix: Sequence[str], reply: object) -> None:
        """Answer commands starting with *prefix* with *reply*.

        *reply* may be stdout text, an exception to raise, a completed process
        or a callable receiving the argv.
        """
        responder = reply if callable(reply) and not isinstance(reply, BaseException) else None
        self.responders.insert(0, (tuple(prefix), responder or (lambda _args: reply)))

    def commands_named(self, name: str) -> list[list[str]]:
        return [call for call in self.calls if call and Path(call[0]).name == name]

    def run(  # type: ignore[override]
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        privileged: bool = False,
        mutating: bool = True,
        timeout: float | None = None,
        ctx: object | None = None,
        error_prefix: str | None = None,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        command = list(args)
        if ctx is not None:
            ctx.check()  # type: ignore[attr-defined]
        self.calls.append(command)
        if self.dry_run and mutating:
            return subprocess.CompletedProcess(command, 0, "", "")
        reply: object = None
        for prefix, responder in self.responders:
            if tuple(command[: len(prefix)]) == prefix:
                reply = responder(command)
                break
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, subprocess.CompletedProcess):
            result = reply
        else:
            result = subprocess.CompletedProcess(command, 0, "" if reply is None else str(reply), "")
        if check and result.returncode != 0:
            raise CommandError(
                f"{error_prefix or ' '.join(command[:2])} failed (exit {result.returncode})",
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


@dataclass
class FakeServices:
    """In-memory service manager."""

    active: set[str] = field(default_factory=set)
    enabled: set[str] = field(default_factory=set)
    installed: dict[str, ServiceConfig] = field(default_factory=dict)
    existing: set[str] = field(default_factory=set)
    failures: dict[tuple[str, str], str] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    reloads: int = 0

    def _record(self, action: str, name: str) -> None:
        self.calls.append((action, name))
        message = self.failures.get((action, name))
        if message is not None:
            raise ServiceError(message)

    def install(self, config: ServiceConfig) -> bool:
        self._record("install", config.name)
        self.installed[config.name] = config
        self.existing.add(config.name)
        return True

    def uninstall(self, name: str) -> None:
        self._record("uninstall", name)
        self.installed.pop(name, None)
        self.existing.discard(name)
        self.active.discard(name)
        self.enabled.discard(name)

    def start(self, name: str) -> None:
        self._record("start", name)
        self.active.add(name)

    def stop(self, name: str) -> None:
        self._record("stop", name)
        self.active.discard(name)

    def restart(self, name: str) -> None:
        self._record("restart", name)
        self.active.add(name)

    def enable(self, name: str) -> None:
        self._record("enable", name)
        self.enabled.add(name)

    def disable(self, name: str) -> None:
        self._record("disable", name)
        self.enabled.discard(name)

    def is_active(self, name: str) -> bool:
        return name in self.active

    def is_enabled(self, name: str) -> bool:
        return name in self.enabled

    def exists(self, name: str) -> bool:
        return name in self.existing or name in self.installed

    def wait_for_service(self, name: str, timeout: float = 30.0, *, ctx: object = None) -> None:
        self._record("wait", name)
        if name not in self.active:
            raise ServiceError(f"timeout waiting for service {name} to start")

    def reload_daemon(self) -> None:
        self.reloads += 1
        self.calls.append(("daemon-reload", ""))


# ----------------------------------------------------------------------
# Fixtures


def relocate_paths(layout: PathConfig, root: Path) -> PathConfig:
    """Return *layout* with every directory moved under *root*."""
    changes: dict[str, str] = {}
    for item in dataclasses.fields(layout):
        value = getattr(layout, item.name)
        if not item.name.endswith("_dir") or not value:
            continue
        relative = value.replace("\\", "/").replace(":", "").lstrip("/.")
        changes[item.name] = str(root / relative)
    return dataclasses.replace(layout, **changes)


def write_config(path: Path, data: dict[str, object]) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def base_config_data(root: Path) -> dict[str, object]:
    return {
        "azure": {
            "subscriptionId": "sub-123",
            "tenantId": "tenant-456",
            "arc": {"machineName": "edge-01", "location": "eastus", "resourceGroup": "rg-arc"},
            "targetCluster": {"resourceId": CLUSTER_ID, "location": "eastus"},
        },
        "kubernetes": {"version": "1.30.4"},
        "paths": {
            "kubernetes": {"configDir": str(root / "etc" / "kubernetes")},
            "logsDir": str(root / "logs"),
            "stateDir": str(root / "state"),
            "templatesDir": str(root / "templates"),
        },
        "agent": {"statusInterval": 0.01},
    }


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    return write_config(tmp_path / "config.json", base_config_data(tmp_path))


@pytest.fixture
def app_config(config_file: Path) -> AppConfig:
    return load_config(config_file, env={})


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner(dry_run=False, escalate=False)


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def templates() -> TemplateEngine:
    return TemplateEngine.with_overrides(None)


@pytest.fixture
def linux_platform(tmp_path: Path, runner: RecordingRunner, services: FakeServices) -> Platform:
    layout = relocate_paths(linux_paths(), tmp_path / "host")
    return Platform(
        os=OperatingSystem.LINUX,
        paths=layout,
        commands=runner,
        files=FileSystem(runner),
        services=services,  # type: ignore[arg-type]
    )


@pytest.fixture
def windows_platform(tmp_path: Path, runner: RecordingRunner, services: FakeServices) -> Platform:
    layout = relocate_paths(windows_paths(), tmp_path / "win")
    return Platform(
        os=OperatingSystem.WINDOWS,
        paths=layout,
        commands=runner,
        files=FileSystem(runner),
        services=services,  # type: ignore[arg-type]
    )
