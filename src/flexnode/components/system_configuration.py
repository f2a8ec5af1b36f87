"""Kernel, network and directory preparation for a node."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..platform import CommandError, FileSystemError
from .base import ComponentError, ComponentStep

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

SYSCTL_FILE = "999-sysctl-aks.conf"
RESOLV_CONF_SOURCE = "/run/systemd/resolve/resolv.conf"
KERNEL_MODULES = ("overlay", "br_netfilter")

# (rule name, TCP port)
FIREWALL_RULES = (
    ("kubelet", 10250),
    ("kubelet-healthz", 10248),
    ("kubelet-readonly", 10255),
)


@dataclass(slots=True)
class SystemConfigurationInstaller(ComponentStep):
    """Linux: sysctl, kernel modules, swap and resolv.conf."""

    step_name = "SystemConfigured"

    @property
    def sysctl_path(self) -> str:
        paths = self.env.paths
        return paths.join(paths.system_config_dir, "sysctl.d", SYSCTL_FILE)

    @property
    def resolv_conf_path(self) -> str:
        return self.env.paths.join(self.env.paths.system_config_dir, "resolv.conf")

    def execute(self, ctx: RunContext) -> None:
        content = self.env.templates.render_to_string(
            "sysctl/999-sysctl-aks.conf.j2", {"extra_settings": {}}
        )
        try:
            self.env.files.write_file(self.sysctl_path, content, mode=0o644)
        except FileSystemError as exc:
            raise ComponentError(f"failed to write sysctl configuration: {exc}") from exc

        commands = self.env.commands
        for module in KERNEL_MODULES:
            try:
                commands.run(["modprobe", module], privileged=True, ctx=ctx)
            except CommandError as exc:
                LOGGER.warning("Failed to load kernel module %s: %s", module, exc)
        try:
            commands.run(["sysctl", "--system"], privileged=True, ctx=ctx)
            commands.run(["swapoff", "-a"], privileged=True, ctx=ctx)
        except CommandError as exc:
            raise ComponentError(str(exc)) from exc
        self._link_resolv_conf()

    def is_completed(self, ctx: RunContext) -> bool:
        if not self.env.files.file_exists(self.sysctl_path):
            return False
        try:
            return os.path.realpath(self.resolv_conf_path) == RESOLV_CONF_SOURCE
        except OSError:
            return False

    def _link_resolv_conf(self) -> None:
        if not os.path.exists(RESOLV_CONF_SOURCE):
            LOGGER.info("%s not present; leaving resolv.conf untouched", RESOLV_CONF_SOURCE)
            return
        try:
            self.env.files.symlink(RESOLV_CONF_SOURCE, self.resolv_conf_path)
        except CommandError as exc:
            raise ComponentError(f"failed to link resolv.conf: {exc}") from exc


@dataclass(slots=True)
class SystemConfigurationUninstaller(ComponentStep):
    step_name = "SystemConfigurationRemoved"

    @property
    def sysctl_path(self) -> str:
        paths = self.env.paths
        return paths.join(paths.system_config_dir, "sysctl.d", SYSCTL_FILE)

    def execute(self, ctx: RunContext) -> None:
        if not self.env.files.remove_file(self.sysctl_path):
            return
        try:
            self.env.commands.run(["sysctl", "--system"], privileged=True, ctx=ctx)
        except CommandError as exc:
            LOGGER.warning("Failed to reload sysctl settings: %s", exc)

    def is_completed(self, ctx: RunContext) -> bool:
        return not self.env.files.file_exists(self.sysctl_path)


@dataclass(slots=True)
class WindowsSystemConfigurationInstaller(ComponentStep):
    """Windows: IP forwarding, kubelet firewall rules and node directories."""

    step_name = "SystemConfigured"

    def required_directories(self) -> list[str]:
        paths = self.env.paths
        return [
            paths.kubelet_config_dir,
            paths.kubelet_data_dir,
            paths.kubelet_manifests_dir,
            paths.cni_bin_dir,
            paths.cni_conf_dir,
        ]

    def execute(self, ctx: RunContext) -> None:
        commands = self.env.commands
        try:
            commands.run(
                [
                    "powershell",
                    "-Command",
                    "Set-NetIPInterface -Forwarding Enabled -PolicyStore ActiveStore",
                ],
                ctx=ctx,
            )
        except CommandError as exc:
            LOGGER.warning("Failed to enable IP forwarding: %s", exc)

        for rule, port in FIREWALL_RULES:
            try:
                commands.run(
                    [
                        "netsh",
                        "advfirewall",
                        "firewall",
                        "add",
                        "rule",
                        f"name={rule}",
                        "dir=in",
                        "action=allow",
                        "protocol=tcp",
                        f"localport={port}",
                    ],
                    ctx=ctx,
                )
            except CommandError as exc:
                LOGGER.warning("Failed to add firewall rule %s: %s", rule, exc)

        for directory in self.required_directories():
            try:
                self.env.files.create_directory(directory)
            except FileSystemError as exc:
                raise ComponentError(str(exc)) from exc

    def is_completed(self, ctx: RunContext) -> bool:
        paths = self.env.paths
        return self.env.files.directory_exists(
            paths.kubelet_config_dir
        ) and self.env.files.directory_exists(paths.kubelet_data_dir)


@dataclass(slots=True)
class WindowsSystemConfigurationUninstaller(ComponentStep):
    """Remove the kubelet firewall rules."""

    step_name = "SystemConfigurationRemoved"

    def execute(self, ctx: RunContext) -> None:
        for rule, _port in FIREWALL_RULES:
            try:
                self.env.commands.run(
                    ["netsh", "advfirewall", "firewall", "delete", "rule", f"name={rule}"],
                    ctx=ctx,
                )
            except CommandError as exc:
                LOGGER.debug("Firewall rule %s not removed: %s", rule, exc)

    def is_completed(self, ctx: RunContext) -> bool:
        return False


__all__ = [
    "SystemConfigurationInstaller",
    "SystemConfigurationUninstaller",
    "WindowsSystemConfigurationInstaller",
    "WindowsSystemConfigurationUninstaller",
]
