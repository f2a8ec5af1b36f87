"""Configure and register the kubelet service."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..azure_cli import cluster_resource_id
from ..platform import FileSystemError, ServiceConfig, ServiceError
from ..templates import TemplateRenderError
from ..utils import (
    KubeconfigError,
    extract_cluster_info,
    log_cleanup_error,
    map_to_eviction_thresholds,
    map_to_key_value_pairs,
)
from .base import ComponentError, ComponentStep, StepEnvironment
from .cluster_credentials import fetch_admin_kubeconfig
from .containerd import pause_image
from .services import CONTAINERD_SERVICE, KUBELET_SERVICE

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

CONTAINERD_DROP_IN = "10-containerd.conf"
# Azure Kubernetes Service AAD server application.
AKS_AAD_RESOURCE_ID = "6dae42f8-4368-4678-94ff-3960e28e3630"
WINDOWS_PIPE_ENDPOINT = "npipe:////./pipe/containerd-containerd"
CLUSTER_DNS = "10.0.0.10"
CLUSTER_DOMAIN = "cluster.local"

# Substrings that must be present for an existing configuration to be reused.
DEFAULTS_MARKERS = ("KUBELET_FLAGS=", "KUBELET_CONFIG_FILE_FLAGS=", "--kubeconfig=")
DROP_IN_MARKERS = ("KUBELET_CONTAINERD_FLAGS=", "--container-runtime-endpoint=")
UNIT_MARKERS = ("ExecStart=", "EnvironmentFile=")


def drop_in_path(env: StepEnvironment) -> str:
    return env.paths.join(env.paths.kubelet_service_dir, CONTAINERD_DROP_IN)


def _file_contains(env: StepEnvironment, path: str, markers: tuple[str, ...]) -> bool:
    if not env.files.file_exists(path):
        return False
    try:
        content = env.files.read_text(path)
    except FileSystemError:
        return False
    return all(marker in content for marker in markers)


@dataclass(slots=True)
class KubeletInstaller(ComponentStep):
    """Linux: ``/etc/default/kubelet``, the systemd unit and its drop-in."""

    step_name = "KubeletInstaller"

    def render_defaults(self) -> str:
        node = self.env.config.node
        return self.env.templates.render_to_string(
            "kubelet/kubelet.defaults.j2",
            {
                "node_labels": map_to_key_value_pairs(node.labels),
                "kubeconfig": self.env.paths.admin_kubeconfig_path(),
                "eviction_hard": map_to_eviction_thresholds(node.kubelet.eviction_hard),
                "kube_reserved": map_to_key_value_pairs(node.kubelet.kube_reserved),
                "image_gc_high_threshold": node.kubelet.image_gc_high_threshold,
                "image_gc_low_threshold": node.kubelet.image_gc_low_threshold,
                "max_pods": node.max_pods,
                "pause_image": pause_image(self.env),
            },
        )

    def render_unit(self) -> str:
        paths = self.env.paths
        return self.env.templates.render_to_string(
            "kubelet/kubelet.service.j2",
            {
                "kubelet_binary": paths.kubelet_binary_path(),
                "defaults_file": paths.kubelet_defaults_path(),
                "kubelet_data_dir": paths.kubelet_data_dir,
                "verbosity": self.env.config.node.kubelet.verbosity,
                "volume_plugin_dir": paths.kubelet_volume_dir,
                "manifests_dir": paths.kubelet_manifests_dir,
            },
        )

    def render_drop_in(self) -> str:
        socket = self.env.paths.join(self.env.paths.containerd_socket_dir, "containerd.sock")
        return self.env.templates.render_to_string(
            "kubelet/10-containerd.conf.j2", {"containerd_socket": socket}
        )

    def execute(self, ctx: RunContext) -> None:
        paths = self.env.paths
        files = self.env.files
        try:
            for directory in (
                paths.kubelet_data_dir,
                paths.kubelet_manifests_dir,
                paths.kubelet_volume_dir,
                paths.kubelet_service_dir,
            ):
                files.create_directory(directory)
            changed = files.write_file(paths.kubelet_defaults_path(), self.render_defaults())
            changed |= files.write_file(drop_in_path(self.env), self.render_drop_in())
            changed |= files.write_file(paths.kubelet_service_path(), self.render_unit())
        except (FileSystemError, TemplateRenderError) as exc:
            raise ComponentError(f"failed to configure kubelet: {exc}") from exc
        if changed:
            try:
                self.env.services.reload_daemon()
            except ServiceError as exc:
                raise ComponentError(f"failed to reload systemd: {exc}") from exc
        LOGGER.info("kubelet configured")

    def is_completed(self, ctx: RunContext) -> bool:
        paths = self.env.paths
        if not _file_contains(self.env, paths.kubelet_defaults_path(), DEFAULTS_MARKERS):
            return False
        if not _file_contains(self.env, drop_in_path(self.env), DROP_IN_MARKERS):
            return False
        if not _file_contains(self.env, paths.kubelet_service_path(), UNIT_MARKERS):
            return False
        services = self.env.services
        return services.is_active(KUBELET_SERVICE) and services.is_enabled(KUBELET_SERVICE)


@dataclass(slots=True)
class KubeletUninstaller(ComponentStep):
    step_name = "KubeletRemoved"

    def execute(self, ctx: RunContext) -> None:
        paths = self.env.paths
        files = self.env.files
        removed = files.remove_file(paths.kubelet_service_path())
        removed |= files.remove_directory(paths.kubelet_service_dir)
        files.remove_file(paths.kubelet_defaults_path())
        if removed:
            try:
                self.env.services.reload_daemon()
            except ServiceError as exc:
                log_cleanup_error(LOGGER, "daemon-reload", exc)

    def is_completed(self, ctx: RunContext) -> bool:
        files = self.env.files
        paths = self.env.paths
        return not (
            files.file_exists(paths.kubelet_service_path())
            or files.file_exists(paths.kubelet_defaults_path())
        )


@dataclass(slots=True)
class WindowsKubeletInstaller(ComponentStep):
    """Windows: Arc token script, exec kubeconfig and the kubelet service."""

    step_name = "KubeletInstaller"

    def validate(self, ctx: RunContext) -> None:
        if self.env.dry_run:
            return
        binary = self.env.paths.kubelet_binary_path()
        if not self.env.files.file_exists(binary):
            raise ComponentError(f"kubelet binary not found at {binary}")

    def execute(self, ctx: RunContext) -> None:
        paths = self.env.paths
        files = self.env.files
        try:
            for directory in (
                paths.kubelet_bin_dir,
                paths.kubelet_data_dir,
                paths.join(paths.kubelet_data_dir, "pki"),
                paths.kubelet_config_dir,
                paths.kubelet_manifests_dir,
                paths.kubelet_volume_dir,
            ):
                files.create_directory(directory)
            files.write_file(paths.kubelet_token_script_path(), self.render_token_script())
            self._write_kubeconfig(ctx)
        except (FileSystemError, TemplateRenderError) as exc:
            raise ComponentError(f"failed to configure kubelet: {exc}") from exc
        self._register_service()

    def is_completed(self, ctx: RunContext) -> bool:
        # The exec kubeconfig embeds live cluster data; always refresh it.
        return False

    def render_token_script(self) -> str:
        return self.env.templates.render_to_string(
            "kubelet/token.ps1.j2", {"aks_resource_id": AKS_AAD_RESOURCE_ID}
        )

    def render_kubeconfig(self, admin_kubeconfig: str) -> str:
        try:
            server, ca_data = extract_cluster_info(admin_kubeconfig)
        except KubeconfigError as exc:
            raise ComponentError(f"invalid cluster credentials: {exc}") from exc
        if not ca_data:
            raise ComponentError("cluster credentials carry no certificate authority data")
        cluster = self.env.config.azure.target_cluster
        return self.env.templates.render_to_string(
            "kubelet/kubeconfig-exec.yaml.j2",
            {
                "ca_data": ca_data,
                "server": server,
                "cluster_name": cluster.name or "cluster",
                "token_script": self.env.paths.kubelet_token_script_path(),
            },
        )

    def service_args(self) -> tuple[str, ...]:
        paths = self.env.paths
        node = self.env.config.node
        args = [
            "--enable-server",
            f"--kubeconfig={paths.kubelet_kubeconfig_path()}",
            f"--pod-infra-container-image={pause_image(self.env)}",
            f"--v={node.kubelet.verbosity}",
            "--address=0.0.0.0",
            "--anonymous-auth=false",
            "--authentication-token-webhook=true",
            "--authorization-mode=Webhook",
            f"--cluster-dns={CLUSTER_DNS}",
            f"--cluster-domain={CLUSTER_DOMAIN}",
            f"--cni-bin-dir={paths.cni_bin_dir}",
            f"--cni-conf-dir={paths.cni_conf_dir}",
            f"--container-runtime-endpoint={WINDOWS_PIPE_ENDPOINT}",
            "--event-qps=0",
            f"--eviction-hard={map_to_eviction_thresholds(node.kubelet.eviction_hard)}",
            f"--image-gc-high-threshold={node.kubelet.image_gc_high_threshold}",
            f"--image-gc-low-threshold={node.kubelet.image_gc_low_threshold}",
            f"--kube-reserved={map_to_key_value_pairs(node.kubelet.kube_reserved)}",
            f"--max-pods={node.max_pods}",
            "--network-plugin=cni",
            "--node-status-update-frequency=10s",
            f"--pod-manifest-path={paths.kubelet_manifests_dir}",
            "--protect-kernel-defaults=false",
            "--read-only-port=0",
            "--streaming-connection-idle-timeout=4h",
            f"--volume-plugin-dir={paths.kubelet_volume_dir}",
        ]
        if node.labels:
            args.append(f"--node-labels={map_to_key_value_pairs(node.labels)}")
        return tuple(args)

    def _write_kubeconfig(self, ctx: RunContext) -> None:
        destination = self.env.paths.kubelet_kubeconfig_path()
        if self.env.dry_run:
            LOGGER.info("[dry-run] would write exec kubeconfig to %s", destination)
            return
        self.env.azure_login()
        admin = fetch_admin_kubeconfig(self.env, ctx)
        self.env.files.write_file(destination, self.render_kubeconfig(admin), mode=0o600)
        cluster = self.env.config.azure.target_cluster
        LOGGER.info(
            "kubelet kubeconfig written for %s",
            cluster_resource_id(
                str(cluster.subscription_id), str(cluster.resource_group), str(cluster.name)
            ),
        )

    def _register_service(self) -> None:
        config = ServiceConfig(
            name=KUBELET_SERVICE,
            binary_path=self.env.paths.kubelet_binary_path(),
            display_name="Kubernetes Kubelet",
            description="Kubernetes node agent",
            args=self.service_args(),
            dependencies=(CONTAINERD_SERVICE,),
        )
        services = self.env.services
        try:
            services.install(config)
        except ServiceError as exc:
            LOGGER.warning("Failed to register kubelet service: %s", exc)
            return
        try:
            services.enable(KUBELET_SERVICE)
        except ServiceError as exc:
            LOGGER.warning("Failed to enable kubelet service: %s", exc)


@dataclass(slots=True)
class WindowsKubeletUninstaller(ComponentStep):
    step_name = "KubeletRemoved"

    def execute(self, ctx: RunContext) -> None:
        try:
            self.env.services.uninstall(KUBELET_SERVICE)
        except ServiceError as exc:
            log_cleanup_error(LOGGER, "uninstall kubelet service", exc)
        paths = self.env.paths
        self.env.files.remove_file(paths.kubelet_kubeconfig_path())
        self.env.files.remove_file(paths.kubelet_token_script_path())

    def is_completed(self, ctx: RunContext) -> bool:
        if self.env.services.exists(KUBELET_SERVICE):
            return False
        return not self.env.files.file_exists(self.env.paths.kubelet_kubeconfig_path())


__all__ = [
    "KubeletInstaller",
    "KubeletUninstaller",
    "WindowsKubeletInstaller",
    "WindowsKubeletUninstaller",
]
