"""Install containerd binaries, configuration and service registration."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..config import ContainerdConfig
from ..platform import CommandError, FileSystemError, ServiceConfig, ServiceError
from ..templates import TemplateRenderError
from ..utils import log_cleanup_error
from .base import ComponentError, ComponentStep, StepEnvironment
from .services import CONTAINERD_SERVICE

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

CONTAINERD_DOWNLOAD_URL = (
    "https://github.com/containerd/containerd/releases/download/"
    "v{version}/containerd-{version}-{platform}.tar.gz"
)
LINUX_BINARIES = (
    "ctr",
    "containerd",
    "containerd-shim",
    "containerd-shim-runc-v1",
    "containerd-shim-runc-v2",
    "containerd-stress",
)
WINDOWS_BINARIES = ("ctr.exe", "containerd.exe", "containerd-shim-runhcs-v1.exe")
WINDOWS_PAUSE_IMAGE = "mcr.microsoft.com/oss/kubernetes/pause:3.10"


def containerd_download_url(version: str, platform: str) -> str:
    """Return the release tarball URL for *platform* (``linux-amd64`` ...)."""
    return CONTAINERD_DOWNLOAD_URL.format(version=version.lstrip("v"), platform=platform)


def pause_image(env: StepEnvironment) -> str:
    """Return the sandbox image, swapping in the Windows image for the stock default."""
    configured = env.config.containerd.pause_image
    if env.is_windows and configured == ContainerdConfig().pause_image:
        return WINDOWS_PAUSE_IMAGE
    return configured


def binary_paths(env: StepEnvironment) -> list[str]:
    names = WINDOWS_BINARIES if env.is_windows else LINUX_BINARIES
    return [env.paths.join(env.paths.containerd_bin_dir, name) for name in names]


def version_matches(env: StepEnvironment) -> bool:
    """Return True when every binary exists and ``containerd --version`` matches."""
    if not all(env.files.file_exists(path) for path in binary_paths(env)):
        return False
    try:
        output = env.commands.output([env.paths.containerd_binary_path(), "--version"])
    except CommandError:
        return False
    return env.config.containerd.version.lstrip("v") in output


@dataclass(slots=True)
class ContainerdInstaller(ComponentStep):
    step_name = "ContainerdInstaller"

    def validate(self, ctx: RunContext) -> None:
        if not self.env.config.containerd.version:
            raise ComponentError("containerd version cannot be empty")

    def execute(self, ctx: RunContext) -> None:
        version = self.env.config.containerd.version
        try:
            if version_matches(self.env):
                LOGGER.info("containerd %s already installed; skipping download", version)
            else:
                self._install_binaries(ctx)
            self._write_config()
            if self.env.is_windows:
                self._register_windows_service(ctx)
            else:
                self._write_unit()
        except (CommandError, FileSystemError, TemplateRenderError, ServiceError) as exc:
            raise ComponentError(f"failed to install containerd {version}: {exc}") from exc
        LOGGER.info("containerd %s installed", version)

    def is_completed(self, ctx: RunContext) -> bool:
        files = self.env.files
        paths = self.env.paths
        if not version_matches(self.env):
            return False
        if not files.file_exists(paths.containerd_config_path()):
            return False
        if not self.env.is_windows and not files.file_exists(paths.containerd_service_path()):
            return False
        return self.env.services.exists(CONTAINERD_SERVICE)

    # ------------------------------------------------------------------
    def _install_binaries(self, ctx: RunContext) -> None:
        paths = self.env.paths
        files = self.env.files
        self._clean_existing()
        if self.env.is_windows:
            platform = "windows-amd64"
        else:
            platform = f"linux-{files.get_architecture()}"
        version = self.env.config.containerd.version.lstrip("v")
        archive = paths.join(paths.temp_dir, f"containerd-{version}-{platform}.tar.gz")
        url = containerd_download_url(version, platform)
        for directory in (paths.containerd_bin_dir, paths.containerd_config_dir):
            files.create_directory(directory)
        try:
            files.download_file(url, archive, ctx=ctx)
            if self.env.is_windows:
                files.extract_tar_gz(archive, paths.containerd_config_dir, ctx=ctx)
            else:
                files.extract_tar_gz(
                    archive,
                    paths.containerd_bin_dir,
                    members=["bin/"],
                    strip_components=1,
                    ctx=ctx,
                )
                for binary in binary_paths(self.env):
                    files.chmod(binary, 0o755)
        finally:
            self.discard(archive)

    def _clean_existing(self) -> None:
        services = self.env.services
        if services.exists(CONTAINERD_SERVICE):
            try:
                services.stop(CONTAINERD_SERVICE)
            except ServiceError as exc:
                log_cleanup_error(LOGGER, "stop containerd", exc)
        if not self.env.is_windows:
            self.env.commands.run(["pkill", "-f", "containerd"], check=False)
        for binary in binary_paths(self.env):
            self.env.files.remove_file(binary)

    def _write_config(self) -> None:
        paths = self.env.paths
        containerd = self.env.config.containerd
        if self.env.is_windows:
            content = self.env.templates.render_to_string(
                "containerd/config-windows.toml.j2",
                {
                    "pause_image": pause_image(self.env),
                    "cni_bin_dir": paths.cni_bin_dir,
                    "cni_conf_dir": paths.cni_conf_dir,
                    "metrics_address": containerd.metrics_address,
                },
            )
        else:
            content = self.env.templates.render_to_string(
                "containerd/config.toml.j2",
                {
                    "pause_image": pause_image(self.env),
                    "runc_binary": paths.runc_binary_path(),
                    "cni_bin_dir": paths.cni_bin_dir,
                    "cni_conf_dir": paths.cni_conf_dir,
                    "containerd_config_dir": paths.containerd_config_dir,
                    "metrics_address": containerd.metrics_address,
                },
            )
        self.env.files.create_directory(paths.containerd_config_dir)
        self.env.files.write_file(paths.containerd_config_path(), content, mode=0o644)

    def _write_unit(self) -> None:
        content = self.env.templates.render_to_string(
            "containerd/containerd.service.j2",
            {"containerd_binary": self.env.paths.containerd_binary_path()},
        )
        if self.env.files.write_file(self.env.paths.containerd_service_path(), content):
            self.env.services.reload_daemon()

    def _register_windows_service(self, ctx: RunContext) -> None:
        paths = self.env.paths
        if self.env.services.exists(CONTAINERD_SERVICE):
            LOGGER.info("containerd service already registered")
            return
        binary = paths.containerd_binary_path()
        config_path = paths.containerd_config_path()
        try:
            self.env.commands.run(
                [binary, "--register-service", "--config", config_path],
                ctx=ctx,
                error_prefix="containerd --register-service",
            )
            return
        except CommandError as exc:
            LOGGER.warning("containerd self-registration failed, using sc.exe: %s", exc)
        self.env.services.install(
            ServiceConfig(
                name=CONTAINERD_SERVICE,
                binary_path=binary,
                display_name="containerd",
                description="containerd container runtime",
                args=("--config", config_path),
            )
        )


@dataclass(slots=True)
class ContainerdUninstaller(ComponentStep):
    step_name = "ContainerdRemoved"

    def execute(self, ctx: RunContext) -> None:
        services = self.env.services
        if services.exists(CONTAINERD_SERVICE):
            try:
                services.uninstall(CONTAINERD_SERVICE)
            except ServiceError as exc:
                log_cleanup_error(LOGGER, "uninstall containerd service", exc)
        files = self.env.files
        for binary in binary_paths(self.env):
            files.remove_file(binary)
        files.remove_file(self.env.paths.containerd_config_path())
        if not self.env.is_windows:
            files.remove_file(self.env.paths.containerd_service_path())

    def is_completed(self, ctx: RunContext) -> bool:
        files = self.env.files
        if any(files.file_exists(path) for path in binary_paths(self.env)):
            return False
        return not files.file_exists(self.env.paths.containerd_config_path())


__all__ = [
    "ContainerdInstaller",
    "ContainerdUninstaller",
    "binary_paths",
    "containerd_download_url",
    "pause_image",
    "version_matches",
]
