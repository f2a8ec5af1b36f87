"""Download and remove the target cluster's admin kubeconfig."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..azure_cli import AzureCliError
from ..platform import FileSystemError
from ..utils import KubeconfigError, extract_cluster_info
from .base import ComponentError, ComponentStep, StepEnvironment

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

KUBECONFIG_MODE = 0o600


def fetch_admin_kubeconfig(env: StepEnvironment, ctx: RunContext) -> str:
    """Return the admin kubeconfig of the target cluster, validated."""
    cluster = env.config.azure.target_cluster
    if not (cluster.name and cluster.resource_group and cluster.subscription_id):
        raise ComponentError("target cluster name, resource group and subscription are required")
    try:
        kubeconfig = env.azure.get_admin_credentials(
            cluster.name,
            cluster.resource_group,
            cluster.subscription_id,
            ctx=ctx,
        )
    except AzureCliError as exc:
        raise ComponentError(f"failed to get cluster credentials: {exc}") from exc
    try:
        extract_cluster_info(kubeconfig)
    except KubeconfigError as exc:
        raise ComponentError(f"invalid cluster credentials: {exc}") from exc
    return kubeconfig


@dataclass(slots=True)
class ClusterCredentialsInstaller(ComponentStep):
    """Write ``admin.conf`` for the kubelet and node tooling."""

    step_name = "ClusterCredentialsDownloaded"

    def execute(self, ctx: RunContext) -> None:
        destination = self.env.paths.admin_kubeconfig_path()
        if self.env.dry_run:
            LOGGER.info("[dry-run] would download cluster admin credentials to %s", destination)
            return
        self.env.azure_login()
        kubeconfig = fetch_admin_kubeconfig(self.env, ctx)
        try:
            self.env.files.create_directory(self.env.paths.kubelet_config_dir)
            self.env.files.write_file(destination, kubeconfig, mode=KUBECONFIG_MODE)
        except FileSystemError as exc:
            raise ComponentError(f"failed to save cluster credentials: {exc}") from exc
        LOGGER.info("Cluster credentials saved to %s", destination)

    def is_completed(self, ctx: RunContext) -> bool:
        return self.env.files.file_exists_and_valid(self.env.paths.admin_kubeconfig_path())


@dataclass(slots=True)
class ClusterCredentialsUninstaller(ComponentStep):
    step_name = "ClusterCredentialsRemoved"

    def execute(self, ctx: RunContext) -> None:
        path = self.env.paths.admin_kubeconfig_path()
        if self.env.files.remove_file(path):
            LOGGER.info("Removed %s", path)

    def is_completed(self, ctx: RunContext) -> bool:
        return not self.env.files.file_exists(self.env.paths.admin_kubeconfig_path())


__all__ = [
    "ClusterCredentialsInstaller",
    "ClusterCredentialsUninstaller",
    "fetch_admin_kubeconfig",
]
