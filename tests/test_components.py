"""Tests for the node component installers and uninstallers."""
from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path

import pytest
from packaging.version import Version

from conftest import (
    ADMIN_KUBECONFIG,
    CLUSTER_ID,
    FakeServices,
    RecordingRunner,
    base_config_data,
    write_config,
)
from flexnode.azure_cli import ROLE_DEFINITION_IDS, role_definition_id
from flexnode.bootstrapper import RunCancelledError, RunContext
from flexnode.components import ComponentError, StepEnvironment
from flexnode.components.arc import (
    ArcInstaller,
    ArcUninstaller,
    RoleRequirement,
    build_role_requirements,
    missing_roles,
    principal_id,
)
from flexnode.components.cluster_credentials import (
    ClusterCredentialsInstaller,
    ClusterCredentialsUninstaller,
)
from flexnode.components.cni import CNIInstaller, CNIUninstaller, REQUIRED_PLUGINS, cni_plugins_url
from flexnode.components.containerd import (
    WINDOWS_PAUSE_IMAGE,
    ContainerdInstaller,
    binary_paths,
    containerd_download_url,
    pause_image,
)
from flexnode.components.kube_binaries import (
    KubeBinariesInstaller,
    KubeBinariesUninstaller,
    kubernetes_download_url,
    parse_kubernetes_version,
)
from flexnode.components.kubelet import KubeletInstaller, KubeletUninstaller, WindowsKubeletInstaller
from flexnode.components.npd import NPDInstaller, npd_download_url
from flexnode.components.runc import RuncInstaller, runc_download_url
from flexnode.components.runhcs import RunhcsInstaller
from flexnode.components.services import ServicesInstaller, ServicesUninstaller
from flexnode.components.system_configuration import (
    SystemConfigurationInstaller,
    SystemConfigurationUninstaller,
    WindowsSystemConfigurationInstaller,
)
from flexnode.config import AppConfig, load_config
from flexnode.platform import FileSystem, FileSystemError, Platform
from flexnode.templates import TemplateEngine

MACHINE_ID = (
    "/subscriptions/sub-123/resourceGroups/rg-arc/providers/Microsoft.HybridCompute/machines/edge-01"
)


@pytest.fixture
def linux_env(app_config: AppConfig, linux_platform: Platform, templates: TemplateEngine) -> StepEnvironment:
    return StepEnvironment.create(app_config, linux_platform, templates=templates)


@pytest.fixture
def windows_env(
    app_config: AppConfig, windows_platform: Platform, templates: TemplateEngine
) -> StepEnvironment:
    return StepEnvironment.create(app_config, windows_platform, templates=templates)


@pytest.fixture
def dry_run_env(
    app_config: AppConfig, linux_platform: Platform, templates: TemplateEngine
) -> StepEnvironment:
    runner = RecordingRunner(dry_run=True, escalate=False)
    platform = Platform(
        os=linux_platform.os,
        paths=linux_platform.paths,
        commands=runner,
        files=FileSystem(runner),
        services=linux_platform.services,
    )
    return StepEnvironment.create(app_config, platform, templates=templates)


def _touch(path: str, content: str = "x") -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")


# ----------------------------------------------------------------------
# Cluster credentials


def test_cluster_credentials_download_and_removal(
    linux_env: StepEnvironment, runner: RecordingRunner
) -> None:
    runner.respond(["az", "aks", "get-credentials"], ADMIN_KUBECONFIG)
    installer = ClusterCredentialsInstaller(linux_env)
    destination = Path(linux_env.paths.admin_kubeconfig_path())

    assert installer.is_completed(RunContext()) is False
    installer.execute(RunContext())

    assert destination.read_text(encoding="utf-8") == ADMIN_KUBECONFIG
    assert destination.stat().st_mode & 0o777 == 0o600
    assert installer.is_completed(RunContext()) is True
    assert runner.commands_named("az") == [
        [
            "az",
            "aks",
            "get-credentials",
            "--admin",
            "--name",
            "aks-one",
            "--resource-group",
            "rg-aks",
            "--subscription",
            "sub-123",
            "--file",
            "-",
        ]
    ]

    remover = ClusterCredentialsUninstaller(linux_env)
    remover.execute(RunContext())
    assert not destination.exists()
    assert remover.is_completed(RunContext()) is True


def test_cluster_credentials_reject_kubeconfig_without_server(
    linux_env: StepEnvironment, runner: RecordingRunner
) -> None:
    runner.respond(["az", "aks", "get-credentials"], "clusters:\n- cluster: {}\n")

    with pytest.raises(ComponentError, match="invalid cluster credentials"):
        ClusterCredentialsInstaller(linux_env).execute(RunContext())
    assert not Path(linux_env.paths.admin_kubeconfig_path()).exists()


def test_cluster_credentials_az_failure_is_component_error(
    linux_env: StepEnvironment, runner: RecordingRunner
) -> None:
    runner.respond(["az", "aks"], subprocess.CompletedProcess([], 1, "", "AuthorizationFailed"))

    with pytest.raises(ComponentError, match="failed to get cluster credentials"):
        ClusterCredentialsInstaller(linux_env).execute(RunContext())


def test_cluster_credentials_dry_run_calls_nothing(dry_run_env: StepEnvironment) -> None:
    ClusterCredentialsInstaller(dry_run_env).execute(RunContext())

    assert dry_run_env.commands.calls == []  # type: ignore[attr-defined]


def test_service_principal_login_precedes_download(tmp_path: Path, linux_platform: Platform) -> None:
    data = base_config_data(tmp_path)
    data["azure"]["servicePrincipal"] = {"clientId": "app-1", "clientSecret": "s3cret"}  # type: ignore[index]
    config = load_config(write_config(tmp_path / "sp.json", data), env={})
    runner: RecordingRunner = linux_platform.commands  # type: ignore[assignment]
    runner.respond(["az", "aks", "get-credentials"], ADMIN_KUBECONFIG)

    ClusterCredentialsInstaller(StepEnvironment.create(config, linux_platform)).execute(RunContext())

    first = runner.commands_named("az")[0]
    assert first[:3] == ["az", "login", "--service-principal"]
    assert "tenant-456" in first


# ----------------------------------------------------------------------
# Services


def test_services_installer_starts_in_order(linux_env: StepEnvironment, services: FakeServices) -> None:
    ServicesInstaller(linux_env).execute(RunContext())

    assert services.calls == [
        ("daemon-reload", ""),
        ("enable", "containerd"),
        ("start", "containerd"),
        ("restart", "containerd"),
        ("enable", "kubelet"),
        ("start", "kubelet"),
        ("wait", "kubelet"),
        ("enable", "node-problem-detector"),
        ("start", "node-problem-detector"),
    ]


def test_services_installer_tolerates_npd_failure(linux_env: StepEnvironment, services: FakeServices) -> None:
    services.failures[("start", "node-problem-detector")] = "unit not found"

    ServicesInstaller(linux_env).execute(RunContext())

    assert "kubelet" in services.active


def test_services_installer_fails_when_containerd_cannot_start(
    linux_env: StepEnvironment, services: FakeServices
) -> None:
    services.failures[("start", "containerd")] = "exit 1"

    with pytest.raises(ComponentError, match="failed to enable and start containerd"):
        ServicesInstaller(linux_env).execute(RunContext())
    assert ("enable", "kubelet") not in services.calls


def test_windows_services_skip_npd(windows_env: StepEnvironment, services: FakeServices) -> None:
    ServicesInstaller(windows_env).execute(RunContext())

    assert all(name != "node-problem-detector" for _action, name in services.calls)


def test_services_uninstaller_is_best_effort(linux_env: StepEnvironment, services: FakeServices) -> None:
    services.existing.update({"kubelet", "containerd"})
    services.active.update({"kubelet", "containerd"})
    services.failures[("stop", "kubelet")] = "Access denied"
    remover = ServicesUninstaller(linux_env)

    remover.execute(RunContext())

    assert ("stop", "node-problem-detector") not in services.calls
    assert ("disable", "kubelet") in services.calls
    assert ("stop", "containerd") in services.calls
    assert remover.is_completed(RunContext()) is False
    services.active.clear()
    assert remover.is_completed(RunContext()) is True


# ----------------------------------------------------------------------
# System configuration


def test_system_configuration_writes_sysctl_and_runs_commands(
    linux_env: StepEnvironment, runner: RecordingRunner
) -> None:
    runner.respond(["modprobe", "br_netfilter"], subprocess.CompletedProcess([], 1, "", "not found"))
    installer = SystemConfigurationInstaller(linux_env)

    installer.execute(RunContext())

    assert "net.ipv4.ip_forward = 1" in Path(installer.sysctl_path).read_text(encoding="utf-8")
    assert ["modprobe", "overlay"] in runner.calls
    assert ["sysctl", "--system"] in runner.calls
    assert ["swapoff", "-a"] in runner.calls


def test_system_configuration_removal_reloads_sysctl(
    linux_env: StepEnvironment, runner: RecordingRunner
) -> None:
    installer = SystemConfigurationInstaller(linux_env)
    _touch(installer.sysctl_path)
    remover = SystemConfigurationUninstaller(linux_env)

    remover.execute(RunContext())
    remover.execute(RunContext())

    assert remover.is_completed(RunContext()) is True
    assert runner.calls.count(["sysctl", "--system"]) == 1


def test_windows_system_configuration(windows_env: StepEnvironment, runner: RecordingRunner) -> None:
    installer = WindowsSystemConfigurationInstaller(windows_env)

    installer.execute(RunContext())

    assert len(runner.commands_named("netsh")) == 3
    assert installer.is_completed(RunContext()) is True


# ----------------------------------------------------------------------
# Runtime


def test_runc_dry_run_installs_nothing(dry_run_env: StepEnvironment) -> None:
    RuncInstaller(dry_run_env).execute(RunContext())

    runner: RecordingRunner = dry_run_env.commands  # type: ignore[assignment]
    assert runner.commands_named("install")[0][-1] == dry_run_env.paths.runc_binary_path()
    assert not Path(dry_run_env.paths.runc_binary_path()).exists()


def test_runc_completed_when_version_matches(linux_env: StepEnvironment, runner: RecordingRunner) -> None:
    binary = linux_env.paths.runc_binary_path()
    _touch(binary)
    runner.respond([binary, "--version"], "runc version 1.1.12\ncommit: v1.1.12-0-g51d5e946\n")

    assert RuncInstaller(linux_env).is_completed(RunContext()) is True

    runner.respond([binary, "--version"], "runc version 1.1.9\n")
    assert RuncInstaller(linux_env).is_completed(RunContext()) is False


def test_download_urls() -> None:
    assert runc_download_url("v1.1.12", "arm64") == (
        "https://github.com/opencontainers/runc/releases/download/v1.1.12/runc.arm64"
    )
    assert containerd_download_url("1.7.20", "linux-amd64") == (
        "https://github.com/containerd/containerd/releases/download/"
        "v1.7.20/containerd-1.7.20-linux-amd64.tar.gz"
    )
    assert cni_plugins_url("1.5.1", "amd64").endswith("/v1.5.1/cni-plugins-linux-amd64-v1.5.1.tgz")
    assert npd_download_url("0.8.19", "amd64").endswith(
        "/v0.8.19/node-problem-detector-v0.8.19-linux_amd64.tar.gz"
    )


def test_pause_image_swaps_default_on_windows(
    linux_env: StepEnvironment, windows_env: StepEnvironment, tmp_path: Path, windows_platform: Platform
) -> None:
    assert pause_image(linux_env) == "mcr.microsoft.com/oss/kubernetes/pause:3.6"
    assert pause_image(windows_env) == WINDOWS_PAUSE_IMAGE

    data = base_config_data(tmp_path)
    data["containerd"] = {"pauseImage": "registry.local/pause:custom"}
    custom = load_config(write_config(tmp_path / "pause.json", data), env={})
    assert pause_image(StepEnvironment.create(custom, windows_platform)) == "registry.local/pause:custom"


def test_containerd_reuses_matching_binaries(
    linux_env: StepEnvironment, runner: RecordingRunner, services: FakeServices
) -> None:
    for path in binary_paths(linux_env):
        _touch(path)
    runner.respond(
        [linux_env.paths.containerd_binary_path(), "--version"],
        "containerd github.com/containerd/containerd v1.7.20 8fc6bcff51318944179630522a095cc9dbf9f353",
    )
    installer = ContainerdInstaller(linux_env)

    installer.execute(RunContext())

    config = Path(linux_env.paths.containerd_config_path()).read_text(encoding="utf-8")
    assert "pause:3.6" in config
    assert Path(linux_env.paths.containerd_service_path()).exists()
    assert runner.commands_named("pkill") == []
    assert services.reloads == 1
    services.existing.add("containerd")
    assert installer.is_completed(RunContext()) is True


def test_kube_binaries_version_handling(
    linux_env: StepEnvironment, runner: RecordingRunner, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(FileSystem, "get_architecture", lambda self: "arm64")

    assert parse_kubernetes_version("v1.30.4") == Version("1.30.4")
    assert kubernetes_download_url(linux_env) == (
        "https://acs-mirror.azureedge.net/kubernetes/v1.30.4/binaries/kubernetes-node-linux-arm64.tar.gz"
    )
    for value in ("", "  ", "latest"):
        with pytest.raises(ComponentError):
            parse_kubernetes_version(value)

    paths = linux_env.paths
    for binary in (paths.kubelet_binary_path(), paths.kubectl_binary_path(), paths.kubeadm_binary_path()):
        _touch(binary)
    runner.respond([paths.kubelet_binary_path(), "--version"], "Kubernetes v1.30.4")
    assert KubeBinariesInstaller(linux_env).is_completed(RunContext()) is True
    runner.respond([paths.kubelet_binary_path(), "--version"], "Kubernetes v1.29.0")
    assert KubeBinariesInstaller(linux_env).is_completed(RunContext()) is False

    KubeBinariesUninstaller(linux_env).execute(RunContext())
    assert KubeBinariesUninstaller(linux_env).is_completed(RunContext()) is True


def _failing_download(self: FileSystem, url: str, destination: str, **kwargs: object) -> None:
    raise FileSystemError(f"Failed to download {url}: HTTP 404")


def _failing_remove(self: FileSystem, path: str) -> bool:
    raise FileSystemError(f"Failed to remove {path}: read-only file system")


def test_kube_binaries_cleanup_failure_keeps_install_error(
    linux_env: StepEnvironment, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setattr(FileSystem, "download_file", _failing_download)
    monkeypatch.setattr(FileSystem, "remove_file", _failing_remove)
    monkeypatch.setattr(logging.getLogger("flexnode"), "propagate", True)

    with caplog.at_level(logging.WARNING), pytest.raises(ComponentError, match="HTTP 404"):
        KubeBinariesInstaller(linux_env).execute(RunContext())

    assert "read-only file system" in caplog.text


def test_npd_staging_cleanup_failure_keeps_install_error(
    linux_env: StepEnvironment, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(FileSystem, "download_file", _failing_download)
    monkeypatch.setattr(
        FileSystem, "remove_directory", lambda self, path: _failing_remove(self, path)
    )

    with pytest.raises(ComponentError, match="HTTP 404"):
        NPDInstaller(linux_env).execute(RunContext())


def test_windows_kubernetes_url_uses_amd64(windows_env: StepEnvironment) -> None:
    assert kubernetes_download_url(windows_env).endswith("kubernetes-node-windows-amd64.tar.gz")


def test_custom_kubernetes_url_template(tmp_path: Path, linux_platform: Platform) -> None:
    data = base_config_data(tmp_path)
    data["kubernetes"] = {"version": "1.30.4", "urlTemplate": "https://mirror.local/{version}/{arch}.tgz"}
    config = load_config(write_config(tmp_path / "url.json", data), env={})
    env = StepEnvironment.create(config, linux_platform)

    assert kubernetes_download_url(env).startswith("https://mirror.local/1.30.4/")


# ----------------------------------------------------------------------
# Networking


def test_cni_writes_bridge_config_when_plugins_present(linux_env: StepEnvironment) -> None:
    for plugin in REQUIRED_PLUGINS:
        _touch(linux_env.paths.join(linux_env.paths.cni_bin_dir, plugin))
    installer = CNIInstaller(linux_env)

    installer.execute(RunContext())

    config = json.loads(Path(installer.config_path).read_text(encoding="utf-8"))
    assert config["name"] == "bridge"
    assert config["plugins"][0]["bridge"] == "cni0"
    assert installer.is_completed(RunContext()) is True

    remover = CNIUninstaller(linux_env)
    remover.execute(RunContext())
    assert remover.is_completed(RunContext()) is True


# ----------------------------------------------------------------------
# Kubelet


def test_kubelet_defaults_render_node_settings(linux_env: StepEnvironment) -> None:
    defaults = KubeletInstaller(linux_env).render_defaults()

    assert f"--kubeconfig={linux_env.paths.admin_kubeconfig_path()}" in defaults
    assert "--max-pods=110" in defaults
    assert "--kube-reserved=cpu=100m,memory=1843Mi,pid=1000" in defaults
    assert "--eviction-hard=memory.available<100Mi,nodefs.available<10%,nodefs.inodesFree<5%" in defaults
    assert "--pod-infra-container-image=mcr.microsoft.com/oss/kubernetes/pause:3.6" in defaults


def test_kubelet_install_and_remove(linux_env: StepEnvironment, services: FakeServices) -> None:
    installer = KubeletInstaller(linux_env)

    installer.execute(RunContext())

    paths = linux_env.paths
    assert "EnvironmentFile=" in Path(paths.kubelet_service_path()).read_text(encoding="utf-8")
    assert services.reloads == 1
    assert installer.is_completed(RunContext()) is False
    services.active.add("kubelet")
    services.enabled.add("kubelet")
    assert installer.is_completed(RunContext()) is True

    installer.execute(RunContext())
    assert services.reloads == 1

    remover = KubeletUninstaller(linux_env)
    remover.execute(RunContext())
    assert remover.is_completed(RunContext()) is True
    assert not Path(paths.kubelet_service_dir).exists()


def test_windows_kubelet_service_args(windows_env: StepEnvironment) -> None:
    installer = WindowsKubeletInstaller(windows_env)

    args = installer.service_args()

    assert f"--kubeconfig={windows_env.paths.kubelet_kubeconfig_path()}" in args
    assert f"--pod-infra-container-image={WINDOWS_PAUSE_IMAGE}" in args
    assert "--container-runtime-endpoint=npipe:////./pipe/containerd-containerd" in args
    assert "--max-pods=110" in args
    assert not any(item.startswith("--node-labels") for item in args)


def test_windows_kubelet_exec_kubeconfig(windows_env: StepEnvironment) -> None:
    installer = WindowsKubeletInstaller(windows_env)

    rendered = installer.render_kubeconfig(ADMIN_KUBECONFIG)

    assert "server: https://aks-one.hcp.eastus.azmk8s.io:443" in rendered
    assert "certificate-authority-data: Q0EtREFUQQ==" in rendered
    assert "command: powershell.exe" in rendered
    with pytest.raises(ComponentError, match="certificate authority"):
        installer.render_kubeconfig("clusters:\n- cluster:\n    server: https://h:443\n")


def test_windows_kubelet_requires_binary(windows_env: StepEnvironment) -> None:
    with pytest.raises(ComponentError, match="kubelet binary not found"):
        WindowsKubeletInstaller(windows_env).validate(RunContext())


def test_runhcs_requires_containerd_directory(windows_env: StepEnvironment) -> None:
    with pytest.raises(ComponentError, match="install containerd first"):
        RunhcsInstaller(windows_env).validate(RunContext())


def test_npd_api_server_from_admin_kubeconfig(linux_env: StepEnvironment) -> None:
    installer = NPDInstaller(linux_env)
    with pytest.raises(ComponentError, match="cannot determine API server"):
        installer.api_server()

    _touch(linux_env.paths.admin_kubeconfig_path(), ADMIN_KUBECONFIG)
    assert installer.api_server() == "https://aks-one.hcp.eastus.azmk8s.io:443"


# ----------------------------------------------------------------------
# Azure Arc


def _roles() -> list[RoleRequirement]:
    return build_role_requirements(
        MACHINE_ID,
        CLUSTER_ID,
        "/subscriptions/sub-123/resourceGroups/rg-aks",
        "/subscriptions/sub-123/resourceGroups/MC_rg-aks_aks-one_eastus",
    )


def _assignments(roles: list[RoleRequirement]) -> list[dict[str, str]]:
    return [
        {"roleDefinitionId": role_definition_id("sub-123", item.role_guid), "scope": item.scope}
        for item in roles
    ]


def test_build_role_requirements() -> None:
    roles = _roles()

    assert [item.role for item in roles] == [
        "Reader",
        "Reader",
        "Azure Kubernetes Service RBAC Cluster Admin",
        "Azure Kubernetes Service Cluster Admin Role",
        "Network Contributor",
        "Contributor",
    ]
    assert len(build_role_requirements(MACHINE_ID, CLUSTER_ID, "/g", None)) == 5
    assert roles[-1].role_guid == ROLE_DEFINITION_IDS["Contributor"]


def test_missing_roles_matches_case_insensitively() -> None:
    roles = _roles()
    held = _assignments(roles[:3])
    held[0]["scope"] = held[0]["scope"].upper() + "/"

    pending = missing_roles(held, roles)

    assert pending == roles[3:]
    assert missing_roles(_assignments(roles), roles) == []


def test_principal_id() -> None:
    assert principal_id({"identity": {"principalId": "pid-1"}}) == "pid-1"
    assert principal_id({"identity": None}) == ""
    assert principal_id({}) == ""


def test_arc_validate_lists_missing_settings(tmp_path: Path, linux_platform: Platform) -> None:
    config = load_config(write_config(tmp_path / "bare.json", {}), env={})
    installer = ArcInstaller(StepEnvironment.create(config, linux_platform))

    with pytest.raises(ComponentError) as excinfo:
        installer.validate(RunContext())

    assert "azure.subscription_id" in str(excinfo.value)
    assert "azure.target_cluster.name" in str(excinfo.value)


def test_arc_not_completed_without_agent(linux_env: StepEnvironment) -> None:
    assert ArcInstaller(linux_env, which=lambda _name: None).is_completed(RunContext()) is False


def test_arc_install_registers_assigns_and_waits(
    linux_env: StepEnvironment, runner: RecordingRunner
) -> None:
    roles = _roles()
    runner.respond(
        ["az", "connectedmachine", "show"],
        json.dumps({"id": MACHINE_ID, "identity": {"principalId": "pid-1"}}),
    )
    runner.respond(["az", "aks", "show"], json.dumps({"nodeResourceGroup": "MC_rg-aks_aks-one_eastus"}))
    runner.respond(["az", "role", "assignment", "list"], json.dumps(_assignments(roles)))
    installer = ArcInstaller(
        linux_env,
        which=lambda _name: "/usr/bin/azcmagent",
        registration_delay=0.0,
        poll_interval=0.0,
    )

    installer.execute(RunContext())

    creates = [call for call in runner.calls if call[1:4] == ["role", "assignment", "create"]]
    assert len(creates) == len(roles)
    assert all(call[call.index("--assignee-object-id") + 1] == "pid-1" for call in creates)
    assert runner.commands_named("azcmagent") == []


def test_arc_wait_for_permissions_times_out(linux_env: StepEnvironment, runner: RecordingRunner) -> None:
    runner.respond(["az", "role", "assignment", "list"], "[]")
    installer = ArcInstaller(linux_env, poll_interval=0.0, permission_timeout=0.0)

    with pytest.raises(ComponentError, match="waiting for RBAC permissions"):
        installer.wait_for_permissions(RunContext(), "pid-1", _roles())


def test_arc_wait_for_permissions_honours_cancellation(
    linux_env: StepEnvironment, runner: RecordingRunner
) -> None:
    runner.respond(["az", "role", "assignment", "list"], "[]")
    ctx = RunContext()
    ctx.cancel("received SIGTERM")
    installer = ArcInstaller(linux_env, poll_interval=60.0)

    with pytest.raises(RunCancelledError, match="SIGTERM"):
        installer.wait_for_permissions(ctx, "pid-1", _roles())


def test_arc_uninstall_disconnects_then_removes(linux_env: StepEnvironment, runner: RecordingRunner) -> None:
    runner.respond(["az", "account", "get-access-token"], "token-abc\n")

    ArcUninstaller(linux_env, which=lambda _name: "/usr/bin/azcmagent").execute(RunContext())

    assert ["azcmagent", "disconnect", "--access-token", "token-abc"] in runner.calls
    assert runner.calls[-1] == ["apt-get", "remove", "-y", "--purge", "azcmagent"]


def test_arc_uninstall_skips_when_agent_missing(linux_env: StepEnvironment, runner: RecordingRunner) -> None:
    remover = ArcUninstaller(linux_env, which=lambda _name: None)

    remover.execute(RunContext())

    assert runner.calls == []
    assert remover.is_completed(RunContext()) is True
