"""Download kubelet, kubectl and kubeadm from the Kubernetes node tarball."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from packaging.version import InvalidVersion, Version

from ..platform import CommandError, FileSystemError
from .base import ComponentError, ComponentStep, StepEnvironment

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

LINUX_URL_TEMPLATE = (
    "https://acs-mirror.azureedge.net/kubernetes/v{version}/binaries/"
    "kubernetes-node-linux-{arch}.tar.gz"
)
WINDOWS_URL_TEMPLATE = (
    "https://kubernetesartifacts.azureedge.net/kubernetes/v{version}/binaries/"
    "kubernetes-node-windows-{arch}.tar.gz"
)
ARCHIVE_MEMBER = "kubernetes/node/bin/"
# kubernetes/node/bin/<binary>
STRIP_COMPONENTS = 3


def parse_kubernetes_version(value: str | None) -> Version:
    """Return *value* as a :class:`Version`, accepting a leading ``v``."""
    if not value or not value.strip():
        raise ComponentError("kubernetes version cannot be empty")
    try:
        return Version(value.strip().lstrip("v"))
    except InvalidVersion as exc:
        raise ComponentError(f"invalid kubernetes version {value!r}") from exc


def kubernetes_download_url(env: StepEnvironment) -> str:
    """Render the configured (or default) URL template for this node."""
    version = parse_kubernetes_version(env.config.kubernetes.version)
    template = env.config.kubernetes.url_template
    if not template:
        template = WINDOWS_URL_TEMPLATE if env.is_windows else LINUX_URL_TEMPLATE
    arch = "amd64" if env.is_windows else env.files.get_architecture()
    try:
        return template.format(version=str(version), arch=arch)
    except (KeyError, IndexError) as exc:
        raise ComponentError(f"invalid kubernetes.url_template {template!r}: {exc}") from exc


def binary_paths(env: StepEnvironment) -> list[str]:
    paths = env.paths
    return [
        paths.kubelet_binary_path(),
        paths.kubectl_binary_path(),
        paths.kubeadm_binary_path(),
    ]


@dataclass(slots=True)
class KubeBinariesInstaller(ComponentStep):
    step_name = "KubeBinariesInstaller"

    def validate(self, ctx: RunContext) -> None:
        parse_kubernetes_version(self.env.config.kubernetes.version)

    def execute(self, ctx: RunContext) -> None:
        version = parse_kubernetes_version(self.env.config.kubernetes.version)
        if self._version_matches():
            LOGGER.info("Kubernetes %s binaries already installed", version)
            return
        paths = self.env.paths
        files = self.env.files
        url = kubernetes_download_url(self.env)
        # Both platforms ship the node binaries as a tarball.
        archive = paths.join(paths.temp_dir, f"kubernetes-node-{version}.tar.gz")
        try:
            files.create_directory(paths.kubelet_bin_dir)
            files.download_file(url, archive, ctx=ctx)
            files.extract_tar_gz(
                archive,
                paths.kubelet_bin_dir,
                members=[ARCHIVE_MEMBER],
                strip_components=STRIP_COMPONENTS,
                ctx=ctx,
            )
            if not self.env.is_windows:
                for binary in binary_paths(self.env):
                    files.chmod(binary, 0o755)
        except (CommandError, FileSystemError) as exc:
            raise ComponentError(f"failed to install Kubernetes {version} binaries: {exc}") from exc
        finally:
            self.discard(archive)
        LOGGER.info("Kubernetes %s binaries installed in %s", version, paths.kubelet_bin_dir)

    def is_completed(self, ctx: RunContext) -> bool:
        return self._version_matches()

    def _version_matches(self) -> bool:
        if not all(self.env.files.file_exists(path) for path in binary_paths(self.env)):
            return False
        try:
            output = self.env.commands.output([self.env.paths.kubelet_binary_path(), "--version"])
        except CommandError:
            return False
        # "Kubernetes v1.30.6"
        installed = output.split()[-1] if output else ""
        try:
            return Version(installed.lstrip("v")) == parse_kubernetes_version(
                self.env.config.kubernetes.version
            )
        except InvalidVersion:
            return False


@dataclass(slots=True)
class KubeBinariesUninstaller(ComponentStep):
    step_name = "KubernetesComponentsRemoved"

    def execute(self, ctx: RunContext) -> None:
        for path in binary_paths(self.env):
            if self.env.files.remove_file(path):
                LOGGER.info("Removed %s", path)

    def is_completed(self, ctx: RunContext) -> bool:
        return not any(self.env.files.file_exists(path) for path in binary_paths(self.env))


__all__ = [
    "KubeBinariesInstaller",
    "KubeBinariesUninstaller",
    "kubernetes_download_url",
    "parse_kubernetes_version",
]
