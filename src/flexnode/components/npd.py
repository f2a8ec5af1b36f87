"""Install node-problem-detector with the kernel monitor."""
from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..platform import CommandError, FileSystemError, ServiceError
from ..templates import TemplateRenderError
from ..utils import KubeconfigError, extract_cluster_info, log_cleanup_error
from .base import ComponentError, ComponentStep, StepEnvironment
from .services import NPD_SERVICE

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

NPD_DOWNLOAD_URL = (
    "https://github.com/kubernetes/node-problem-detector/releases/download/"
    "{version}/node-problem-detector-{version}-linux_{arch}.tar.gz"
)
NPD_BINARY = "node-problem-detector"
NPD_CONFIG_DIR = "node-problem-detector"
KERNEL_MONITOR = "kernel-monitor.json"


def npd_download_url(version: str, arch: str) -> str:
    tag = version if version.startswith("v") else f"v{version}"
    return NPD_DOWNLOAD_URL.format(version=tag, arch=arch)


def npd_binary_path(env: StepEnvironment) -> str:
    return env.paths.join(env.paths.system_bin_dir, NPD_BINARY)


def npd_config_path(env: StepEnvironment) -> str:
    paths = env.paths
    return paths.join(paths.system_config_dir, NPD_CONFIG_DIR, KERNEL_MONITOR)


def npd_service_path(env: StepEnvironment) -> str:
    return env.paths.join(env.paths.service_dir, f"{NPD_SERVICE}.service")


@dataclass(slots=True)
class NPDInstaller(ComponentStep):
    step_name = "NPDInstaller"

    def validate(self, ctx: RunContext) -> None:
        if not self.env.config.npd.version:
            raise ComponentError("node-problem-detector version cannot be empty")

    def execute(self, ctx: RunContext) -> None:
        version = self.env.config.npd.version
        try:
            if self._version_matches():
                LOGGER.info("node-problem-detector %s already installed", version)
            else:
                self._install(ctx)
            self._write_unit()
        except (CommandError, FileSystemError, TemplateRenderError, ServiceError) as exc:
            raise ComponentError(f"failed to install node-problem-detector {version}: {exc}") from exc

    def is_completed(self, ctx: RunContext) -> bool:
        files = self.env.files
        if not files.file_exists(npd_config_path(self.env)):
            return False
        if not files.file_exists(npd_service_path(self.env)):
            return False
        return self._version_matches()

    def api_server(self) -> str:
        """Return the API server URL from the admin kubeconfig."""
        path = self.env.paths.admin_kubeconfig_path()
        try:
            server, _ca = extract_cluster_info(self.env.files.read_file(path))
        except (FileSystemError, KubeconfigError) as exc:
            if self.env.dry_run:
                LOGGER.info("[dry-run] admin kubeconfig unavailable (%s)", exc)
                return ""
            raise ComponentError(f"cannot determine API server from {path}: {exc}") from exc
        return server

    # ------------------------------------------------------------------
    def _version_matches(self) -> bool:
        binary = npd_binary_path(self.env)
        if not self.env.files.file_exists(binary):
            return False
        try:
            output = self.env.commands.output([binary, "--version"])
        except CommandError:
            return False
        return self.env.config.npd.version.lstrip("v") in output

    def _install(self, ctx: RunContext) -> None:
        paths = self.env.paths
        files = self.env.files
        version = self.env.config.npd.version
        staging = paths.join(paths.temp_dir, "npd")
        archive = paths.join(staging, f"npd-{version}.tar.gz")
        files.create_directory(staging)
        try:
            files.download_file(npd_download_url(version, files.get_architecture()), archive, ctx=ctx)
            files.extract_tar_gz(archive, staging, ctx=ctx)
            files.create_directory(paths.join(paths.system_config_dir, NPD_CONFIG_DIR))
            self.env.commands.run(
                ["install", "-m", "0755", paths.join(staging, "bin", NPD_BINARY), npd_binary_path(self.env)],
                privileged=True,
                ctx=ctx,
                error_prefix="install node-problem-detector",
            )
            self.env.commands.run(
                [
                    "install",
                    "-m",
                    "0644",
                    paths.join(staging, "config", KERNEL_MONITOR),
                    npd_config_path(self.env),
                ],
                privileged=True,
                ctx=ctx,
                error_prefix="install kernel-monitor.json",
            )
        finally:
            self.discard(staging, directory=True)
        LOGGER.info("node-problem-detector %s installed", version)

    def _write_unit(self) -> None:
        content = self.env.templates.render_to_string(
            "npd/node-problem-detector.service.j2",
            {
                "npd_binary": npd_binary_path(self.env),
                "npd_config": npd_config_path(self.env),
                "api_server": self.api_server(),
                "kubeconfig": self.env.paths.admin_kubeconfig_path(),
                "hostname": socket.gethostname().lower(),
            },
        )
        if self.env.files.write_file(npd_service_path(self.env), content):
            self.env.services.reload_daemon()


@dataclass(slots=True)
class NPDUninstaller(ComponentStep):
    step_name = "NPDRemoved"

    def execute(self, ctx: RunContext) -> None:
        files = self.env.files
        paths = self.env.paths
        removed = files.remove_file(npd_service_path(self.env))
        files.remove_file(npd_binary_path(self.env))
        files.remove_directory(paths.join(paths.system_config_dir, NPD_CONFIG_DIR))
        if removed:
            try:
                self.env.services.reload_daemon()
            except ServiceError as exc:
                log_cleanup_error(LOGGER, "daemon-reload", exc)

    def is_completed(self, ctx: RunContext) -> bool:
        files = self.env.files
        return not (
            files.file_exists(npd_binary_path(self.env)) or files.file_exists(npd_service_path(self.env))
        )


__all__ = ["NPDInstaller", "NPDUninstaller", "npd_download_url"]
