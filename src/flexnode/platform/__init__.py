"""Host abstraction: paths, commands, files and services for Linux and Windows."""
from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .commands import CommandError, CommandRunner, requires_sudo_access
from .filesystem import FileSystem, FileSystemError
from .paths import PathConfig, linux_paths, windows_paths
from .services import RestartPolicy, ServiceConfig, ServiceError, ServiceManager
from .systemd import SystemdServiceManager
from .windows_services import WindowsServiceManager

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..templates import TemplateEngine


class PlatformError(RuntimeError):
    """Raised when the host operating system is not supported."""


class OperatingSystem(str, Enum):
    """Operating systems a flex node can run on."""

    LINUX = "linux"
    WINDOWS = "windows"

    @classmethod
    def parse(cls, value: OperatingSystem | str) -> OperatingSystem:
        if isinstance(value, OperatingSystem):
            return value
        try:
            return cls(value.lower())
        except ValueError:
            raise PlatformError(f"Unsupported operating system: {value!r}.") from None


def detect_os(platform_name: str | None = None) -> OperatingSystem:
    """Return the operating system for *platform_name* (``sys.platform``)."""
    name = platform_name if platform_name is not None else sys.platform
    if name.startswith("linux"):
        return OperatingSystem.LINUX
    if name.startswith("win"):
        return OperatingSystem.WINDOWS
    raise PlatformError(f"Unsupported operating system: {name!r}.")


@dataclass(slots=True)
class Platform:
    """Everything a component needs to act on the host."""

    os: OperatingSystem
    paths: PathConfig
    commands: CommandRunner
    files: FileSystem
    services: ServiceManager

    @property
    def is_windows(self) -> bool:
        return self.os is OperatingSystem.WINDOWS


def create_platform(
    config: AppConfig,
    templates: TemplateEngine,
    *,
    os_name: OperatingSystem | str | None = None,
    dry_run: bool | None = None,
) -> Platform:
    """Build the :class:`Platform` for the running host (or *os_name*)."""
    operating_system = OperatingSystem.parse(os_name) if os_name is not None else detect_os()
    commands = CommandRunner(dry_run=config.dry_run if dry_run is None else dry_run)
    files = FileSystem(commands)
    services: ServiceManager
    if operating_system is OperatingSystem.WINDOWS:
        paths = windows_paths()
        services = WindowsServiceManager(commands)
    else:
        paths = linux_paths(kubernetes_config_dir=str(config.paths.kubernetes_config_dir))
        services = SystemdServiceManager(
            commands=commands,
            files=files,
            templates=templates,
            unit_dir=config.systemd.unit_dir,
            systemctl_bin=config.systemd.systemctl_bin,
        )
    return Platform(
        os=operating_system,
        paths=paths,
        commands=commands,
        files=files,
        services=services,
    )


__all__ = [
    "CommandError",
    "CommandRunner",
    "FileSystem",
    "FileSystemError",
    "OperatingSystem",
    "PathConfig",
    "Platform",
    "PlatformError",
    "RestartPolicy",
    "ServiceConfig",
    "ServiceError",
    "ServiceManager",
    "SystemdServiceManager",
    "WindowsServiceManager",
    "create_platform",
    "detect_os",
    "linux_paths",
    "requires_sudo_access",
    "windows_paths",
]
