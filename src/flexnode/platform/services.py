"""Service definitions and the manager protocol both platforms implement."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext


class ServiceError(RuntimeError):
    """Raised when a service manager operation fails."""


class RestartPolicy(str, Enum):
    """Restart behaviour of an installed service."""

    ALWAYS = "always"
    ON_FAILURE = "on-failure"
    NEVER = "never"

    @property
    def systemd_value(self) -> str:
        """Return the value for systemd's ``Restart=`` directive."""
        return "no" if self is RestartPolicy.NEVER else self.value


@dataclass(frozen=True)
class ServiceConfig:
    """Everything a manager needs to register a long-running service."""

    name: str
    binary_path: str
    description: str = ""
    display_name: str = ""
    args: tuple[str, ...] = ()
    working_dir: str | None = None
    dependencies: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    user: str | None = None
    restart_policy: RestartPolicy = RestartPolicy.ALWAYS
    restart_delay_ms: int = 0

    @property
    def exec_start(self) -> str:
        """Return the binary and arguments as one command line."""
        return " ".join([self.binary_path, *self.args])


class ServiceManager(Protocol):
    """Operations the components need from the host's service manager."""

    def install(self, config: ServiceConfig) -> bool: ...

    def uninstall(self, name: str) -> None: ...

    def start(self, name: str) -> None: ...

    def stop(self, name: str) -> None: ...

    def restart(self, name: str) -> None: ...

    def enable(self, name: str) -> None: ...

    def disable(self, name: str) -> None: ...

    def is_active(self, name: str) -> bool: ...

    def is_enabled(self, name: str) -> bool: ...

    def exists(self, name: str) -> bool: ...

    def wait_for_service(
        self,
        name: str,
        timeout: float = 30.0,
        *,
        ctx: RunContext | None = None,
    ) -> None: ...

    def reload_daemon(self) -> None: ...


__all__ = ["RestartPolicy", "ServiceConfig", "ServiceError", "ServiceManager"]
