"""Container networking: bridge plugins on Linux, Calico VXLAN on Windows."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..platform import CommandError, FileSystemError
from ..templates import TemplateRenderError
from .base import ComponentError, ComponentStep, StepEnvironment

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

CNI_SPEC_VERSION = "0.3.1"
BRIDGE_CONFIG_FILE = "10-bridge.conf"
BRIDGE_NETWORK_NAME = "bridge"
BRIDGE_NAME = "cni0"
DEFAULT_POD_SUBNET = "10.244.0.0/16"
REQUIRED_PLUGINS = ("bridge", "host-local", "loopback", "portmap", "bandwidth", "tuning")
CNI_PLUGINS_URL = (
    "https://github.com/containernetworking/plugins/releases/download/"
    "v{version}/cni-plugins-linux-{arch}-v{version}.tgz"
)

CALICO_DIR = "C:\\CalicoWindows"
CALICO_DIRS = (
    "C:\\var\\lib\\cni",
    CALICO_DIR,
    "C:\\var\\lib\\calico",
    "C:\\var\\log\\calico",
    "C:\\etc\\CalicoWindows",
)
CALICO_CONFIG_FILE = "10-calico.conf"
CALICO_NODENAME_FILE = "C:\\var\\lib\\calico\\nodename"
CALICO_REQUIRED_PLUGINS = ("calico.exe", "calico-ipam.exe")
CALICO_OPTIONAL_PLUGINS = ("host-local.exe", "win-bridge.exe", "win-overlay.exe", "flannel.exe")
CALICO_URLS = (
    "https://k8sreleases.blob.core.windows.net/calico-node/v{version}/binaries/calico-windows-v{version}.zip",
    "https://github.com/projectcalico/calico/releases/download/v{version}/calico-windows-v{version}.zip",
)
CALICO_MODE = "vxlan"
SERVICE_CIDR = "10.0.0.0/16"
CLUSTER_CIDR = "10.244.0.0/16"
DNS_SERVICE_IP = "10.0.0.10"


def cni_plugins_url(version: str, arch: str) -> str:
    return CNI_PLUGINS_URL.format(version=version.lstrip("v"), arch=arch)


def _plugin_paths(env: StepEnvironment, names: tuple[str, ...]) -> list[str]:
    return [env.paths.join(env.paths.cni_bin_dir, name) for name in names]


# ----------------------------------------------------------------------
# Linux


@dataclass(slots=True)
class CNIInstaller(ComponentStep):
    """Install the reference CNI plugins and a bridge network config."""

    step_name = "CNISetup"

    @property
    def config_path(self) -> str:
        return self.env.paths.join(self.env.paths.cni_conf_dir, BRIDGE_CONFIG_FILE)

    def validate(self, ctx: RunContext) -> None:
        if not self.env.config.cni.version:
            raise ComponentError("CNI plugins version cannot be empty")

    def execute(self, ctx: RunContext) -> None:
        paths = self.env.paths
        files = self.env.files
        version = self.env.config.cni.version
        try:
            for directory in (
                paths.cni_bin_dir,
                paths.cni_conf_dir,
                paths.join(paths.system_data_dir, "cni"),
            ):
                files.create_directory(directory)
            if self._plugins_present():
                LOGGER.info("CNI plugins already installed; skipping download")
            else:
                archive = paths.join(paths.temp_dir, f"cni-plugins-v{version.lstrip('v')}.tgz")
                try:
                    files.download_file(
                        cni_plugins_url(version, files.get_architecture()), archive, ctx=ctx
                    )
                    files.extract_tar_gz(archive, paths.cni_bin_dir, ctx=ctx)
                finally:
                    self.discard(archive)
            content = self.env.templates.render_to_string(
                "cni/10-bridge.conf.j2",
                {
                    "cni_spec_version": CNI_SPEC_VERSION,
                    "network_name": BRIDGE_NETWORK_NAME,
                    "bridge_name": BRIDGE_NAME,
                    "pod_subnet": DEFAULT_POD_SUBNET,
                },
            )
            files.write_file(self.config_path, content, mode=0o644)
        except (CommandError, FileSystemError, TemplateRenderError) as exc:
            raise ComponentError(f"failed to set up CNI plugins {version}: {exc}") from exc
        LOGGER.info("CNI plugins %s configured", version)

    def is_completed(self, ctx: RunContext) -> bool:
        return self._plugins_present() and self.env.files.file_exists(self.config_path)

    def _plugins_present(self) -> bool:
        return all(self.env.files.file_exists(p) for p in _plugin_paths(self.env, REQUIRED_PLUGINS))


@dataclass(slots=True)
class CNIUninstaller(ComponentStep):
    step_name = "CNIRemoved"

    @property
    def config_path(self) -> str:
        return self.env.paths.join(self.env.paths.cni_conf_dir, BRIDGE_CONFIG_FILE)

    def execute(self, ctx: RunContext) -> None:
        files = self.env.files
        files.remove_file(self.config_path)
        for plugin in _plugin_paths(self.env, REQUIRED_PLUGINS):
            files.remove_file(plugin)

    def is_completed(self, ctx: RunContext) -> bool:
        files = self.env.files
        if files.file_exists(self.config_path):
            return False
        return not any(files.file_exists(p) for p in _plugin_paths(self.env, REQUIRED_PLUGINS))


# ----------------------------------------------------------------------
# Windows


@dataclass(slots=True)
class CalicoInstaller(ComponentStep):
    """Install Calico for Windows with the VXLAN backend."""

    step_name = "CNISetup"

    @property
    def config_path(self) -> str:
        return self.env.paths.join(self.env.paths.cni_conf_dir, CALICO_CONFIG_FILE)

    def directories(self) -> list[str]:
        return [self.env.paths.cni_bin_dir, self.env.paths.cni_conf_dir, *CALICO_DIRS]

    def validate(self, ctx: RunContext) -> None:
        if not self.env.config.calico.version:
            raise ComponentError("Calico version cannot be empty")
        if self.env.dry_run:
            return
        if not self.env.files.file_exists(self.env.paths.containerd_binary_path()):
            raise ComponentError("containerd must be installed before CNI setup")

    def execute(self, ctx: RunContext) -> None:
        version = self.env.config.calico.version
        try:
            for directory in self.directories():
                self.env.files.create_directory(directory)
            if self._plugins_present():
                LOGGER.info("Calico plugins already installed; skipping download")
            else:
                self._install_calico(ctx)
            self._write_configs()
        except (CommandError, FileSystemError, TemplateRenderError) as exc:
            raise ComponentError(f"failed to install Calico {version}: {exc}") from exc
        LOGGER.info("Calico %s configured; HNS networking is created by the Calico service", version)

    def is_completed(self, ctx: RunContext) -> bool:
        files = self.env.files
        if not all(files.directory_exists(d) for d in self.directories()):
            return False
        return self._plugins_present() and files.file_exists(self.config_path)

    def _plugins_present(self) -> bool:
        return all(
            self.env.files.file_exists(p) for p in _plugin_paths(self.env, CALICO_REQUIRED_PLUGINS)
        )

    def _install_calico(self, ctx: RunContext) -> None:
        paths = self.env.paths
        files = self.env.files
        version = self.env.config.calico.version.lstrip("v")
        archive = paths.join(paths.temp_dir, f"calico-windows-v{version}.zip")
        last_error: FileSystemError | None = None
        for template in CALICO_URLS:
            url = template.format(version=version)
            try:
                files.download_file(url, archive, ctx=ctx)
            except FileSystemError as exc:
                LOGGER.warning("Failed to download %s: %s; trying next source", url, exc)
                last_error = exc
                continue
            last_error = None
            break
        if last_error is not None:
            raise FileSystemError(f"failed to download Calico from all sources: {last_error}")
        try:
            files.extract_zip(archive, CALICO_DIR, ctx=ctx)
        finally:
            self.discard(archive)

        source_dir = paths.join(CALICO_DIR, "cni")
        for plugin in (*CALICO_REQUIRED_PLUGINS, *CALICO_OPTIONAL_PLUGINS):
            source = paths.join(source_dir, plugin)
            if not files.dry_run and not files.file_exists(source):
                LOGGER.debug("Plugin %s not in the Calico package", plugin)
                continue
            try:
                files.copy_file(source, paths.join(paths.cni_bin_dir, plugin))
            except FileSystemError as exc:
                if plugin in CALICO_REQUIRED_PLUGINS:
                    raise
                LOGGER.warning("Failed to copy optional plugin %s: %s", plugin, exc)

    def _write_configs(self) -> None:
        paths = self.env.paths
        kubeconfig = paths.kubelet_kubeconfig_path()
        script = self.env.templates.render_to_string(
            "cni/calico-config.ps1.j2",
            {
                "mode": CALICO_MODE,
                "service_cidr": SERVICE_CIDR,
                "cluster_cidr": CLUSTER_CIDR,
                "dns_service_ip": DNS_SERVICE_IP,
                "kubeconfig": kubeconfig,
                "cni_bin_dir": paths.cni_bin_dir,
                "cni_conf_dir": paths.cni_conf_dir,
            },
        )
        self.env.files.write_file(paths.join(CALICO_DIR, "config.ps1"), script)
        conf = self.env.templates.render_to_string(
            "cni/10-calico.conf.j2",
            {
                "cni_spec_version": CNI_SPEC_VERSION,
                "mode": CALICO_MODE,
                "dns_service_ip": DNS_SERVICE_IP,
                "nodename_file": CALICO_NODENAME_FILE,
                "kubeconfig": kubeconfig,
            },
        )
        self.env.files.write_file(self.config_path, conf)


@dataclass(slots=True)
class CalicoUninstaller(ComponentStep):
    step_name = "CNIRemoved"

    @property
    def config_path(self) -> str:
        return self.env.paths.join(self.env.paths.cni_conf_dir, CALICO_CONFIG_FILE)

    def execute(self, ctx: RunContext) -> None:
        files = self.env.files
        files.remove_file(self.config_path)
        for plugin in _plugin_paths(self.env, (*CALICO_REQUIRED_PLUGINS, *CALICO_OPTIONAL_PLUGINS)):
            files.remove_file(plugin)
        files.remove_directory(CALICO_DIR)

    def is_completed(self, ctx: RunContext) -> bool:
        files = self.env.files
        return not files.file_exists(self.config_path) and not files.directory_exists(CALICO_DIR)


__all__ = [
    "CNIInstaller",
    "CNIUninstaller",
    "CalicoInstaller",
    "CalicoUninstaller",
    "cni_plugins_url",
]
