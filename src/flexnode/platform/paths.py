"""Per-OS filesystem layout for node components."""
from __future__ import annotations

import tempfile
from dataclasses import dataclass


@dataclass(frozen=True)
class PathConfig:
    """Directories and file-name conventions used by the components.

    Paths are kept as strings because Windows layouts must stay valid when
    rendered or inspected from a Linux host (tests, dry runs).
    """

    containerd_bin_dir: str
    containerd_config_dir: str
    containerd_data_dir: str
    containerd_socket_dir: str
    kubelet_bin_dir: str
    kubelet_config_dir: str
    kubelet_data_dir: str
    kubelet_manifests_dir: str
    kubelet_volume_dir: str
    kubelet_service_dir: str
    cni_bin_dir: str
    cni_conf_dir: str
    system_bin_dir: str
    system_config_dir: str
    system_data_dir: str
    system_log_dir: str
    temp_dir: str
    service_dir: str
    service_conf_dir: str
    arc_agent_bin_dir: str
    arc_agent_data_dir: str
    executable_ext: str = ""
    archive_ext: str = ".tar.gz"
    service_ext: str = ".service"

    @property
    def separator(self) -> str:
        """Return the path separator for this layout."""
        return "\\" if self.executable_ext == ".exe" else "/"

    def join(self, *elements: str) -> str:
        """Join *elements* with the layout's separator."""
        if not elements:
            return ""
        return self.separator.join(elements)

    def containerd_binary_path(self) -> str:
        return self.join(self.containerd_bin_dir, f"containerd{self.executable_ext}")

    def kubelet_binary_path(self) -> str:
        return self.join(self.kubelet_bin_dir, f"kubelet{self.executable_ext}")

    def kubectl_binary_path(self) -> str:
        return self.join(self.kubelet_bin_dir, f"kubectl{self.executable_ext}")

    def kubeadm_binary_path(self) -> str:
        return self.join(self.kubelet_bin_dir, f"kubeadm{self.executable_ext}")

    def runc_binary_path(self) -> str:
        return self.join(self.system_bin_dir, f"runc{self.executable_ext}")

    def containerd_config_path(self) -> str:
        return self.join(self.containerd_config_dir, "config.toml")

    def containerd_service_path(self) -> str:
        return self.join(self.service_dir, f"containerd{self.service_ext or '.service'}")

    def kubelet_service_path(self) -> str:
        return self.join(self.service_dir, f"kubelet{self.service_ext or '.service'}")

    def kubelet_kubeconfig_path(self) -> str:
        return self.join(self.kubelet_data_dir, "kubeconfig")

    def kubelet_token_script_path(self) -> str:
        name = "token.ps1" if self.executable_ext == ".exe" else "token.sh"
        return self.join(self.kubelet_data_dir, name)

    def kubelet_defaults_path(self) -> str:
        return self.join(self.service_conf_dir, "kubelet")

    def admin_kubeconfig_path(self) -> str:
        """Return where the cluster admin kubeconfig is stored."""
        return self.join(self.kubelet_config_dir, "admin.conf")


def linux_paths(*, kubernetes_config_dir: str = "/etc/kubernetes") -> PathConfig:
    """Return the Linux layout."""
    return PathConfig(
        containerd_bin_dir="/usr/bin",
        containerd_config_dir="/etc/containerd",
        containerd_data_dir="/var/lib/containerd",
        containerd_socket_dir="/run/containerd",
        kubelet_bin_dir="/usr/local/bin",
        kubelet_config_dir=kubernetes_config_dir,
        kubelet_data_dir="/var/lib/kubelet",
        kubelet_manifests_dir=f"{kubernetes_config_dir}/manifests",
        kubelet_volume_dir=f"{kubernetes_config_dir}/volumeplugins",
        kubelet_service_dir="/etc/systemd/system/kubelet.service.d",
        cni_bin_dir="/opt/cni/bin",
        cni_conf_dir="/etc/cni/net.d",
        system_bin_dir="/usr/bin",
        system_config_dir="/etc",
        system_data_dir="/var/lib",
        system_log_dir="/var/log",
        temp_dir="/tmp",  # noqa: S108
        service_dir="/etc/systemd/system",
        service_conf_dir="/etc/default",
        arc_agent_bin_dir="/usr/bin",
        arc_agent_data_dir="/var/lib/waagent",
    )


def windows_paths(*, kubernetes_config_dir: str = "C:\\etc\\kubernetes") -> PathConfig:
    """Return the Windows layout."""
    return PathConfig(
        containerd_bin_dir="C:\\Program Files\\containerd\\bin",
        containerd_config_dir="C:\\Program Files\\containerd",
        containerd_data_dir="C:\\ProgramData\\containerd",
        containerd_socket_dir="\\\\.\\pipe",
        kubelet_bin_dir="C:\\k",
        kubelet_config_dir=kubernetes_config_dir,
        kubelet_data_dir="C:\\var\\lib\\kubelet",
        kubelet_manifests_dir=f"{kubernetes_config_dir}\\manifests",
        kubelet_volume_dir=f"{kubernetes_config_dir}\\volumeplugins",
        kubelet_service_dir=f"{kubernetes_config_dir}\\kubelet.conf.d",
        cni_bin_dir="C:\\k\\cni",
        cni_conf_dir="C:\\k\\cni\\config",
        system_bin_dir="C:\\Windows\\System32",
        system_config_dir="C:\\ProgramData",
        system_data_dir="C:\\ProgramData",
        system_log_dir="C:\\var\\log",
        temp_dir=tempfile.gettempdir(),
        service_dir="",
        service_conf_dir="C:\\ProgramData\\aks-flex-node",
        arc_agent_bin_dir="C:\\Program Files\\AzureConnectedMachineAgent",
        arc_agent_data_dir="C:\\ProgramData\\AzureConnectedMachineAgent",
        executable_ext=".exe",
        archive_ext=".zip",
        service_ext="",
    )


__all__ = ["PathConfig", "linux_paths", "windows_paths"]
