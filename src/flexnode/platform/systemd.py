"""Systemd-backed service manager for Linux nodes."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from ..templates import TemplateEngine
from ..utils import log_cleanup_error
from .commands import CommandError, CommandRunner
from .filesystem import FileSystem
from .services import ServiceConfig, ServiceError

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SystemdServiceManager:
    """Render unit files and drive ``systemctl``."""

    commands: CommandRunner
    files: FileSystem
    templates: TemplateEngine
    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    poll_interval: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep)

    def unit_name(self, name: str) -> str:
        """Return the unit name for service *name*."""
        return name if name.endswith(".service") else f"{name}.service"

    def unit_path(self, name: str) -> Path:
        """Return the unit file path for service *name*."""
        return self.unit_dir / self.unit_name(name)

    def drop_in_dir(self, name: str) -> Path:
        return self.unit_dir / f"{self.unit_name(name)}.d"

    def install(self, config: ServiceConfig) -> bool:
        """Render the generic unit for *config*; reload systemd when changed."""
        context = {
            "description": config.description or config.display_name or config.name,
            "dependencies": list(config.dependencies),
            "exec_start": config.exec_start,
            "working_directory": config.working_dir,
            "user": config.user,
            "restart": config.restart_policy.systemd_value,
            "restart_sec": config.restart_delay_ms // 1000,
            "environment": [f"{key}={value}" for key, value in sorted(config.environment.items())],
        }
        return self.install_unit(config.name, "systemd/service.j2", context)

    def install_unit(
        self,
        name: str,
        template: str,
        context: Mapping[str, object],
    ) -> bool:
        """Render a component-specific unit *template* for service *name*."""
        content = self.templates.render_to_string(template, context)
        changed = self.files.write_file(self.unit_path(name), content, mode=0o644)
        if changed:
            self.reload_daemon()
        return changed

    def write_drop_in(self, name: str, file_name: str, content: str) -> bool:
        """Write a drop-in override for service *name*."""
        changed = self.files.write_file(self.drop_in_dir(name) / file_name, content, mode=0o644)
        if changed:
            self.reload_daemon()
        return changed

    def uninstall(self, name: str) -> None:
        """Stop, disable and remove the unit and its drop-ins."""
        for action in (self.stop, self.disable):
            try:
                action(name)
            except ServiceError as exc:
                log_cleanup_error(LOGGER, f"{action.__name__} {name}", exc)
        self.files.remove_file(self.unit_path(name))
        self.files.remove_directory(self.drop_in_dir(name))
        self.reload_daemon()

    def start(self, name: str) -> None:
        self._systemctl("start", self.unit_name(name))

    def stop(self, name: str) -> None:
        self._systemctl("stop", self.unit_name(name))

    def restart(self, name: str) -> None:
        self._systemctl("restart", self.unit_name(name))

    def enable(self, name: str) -> None:
        self._systemctl("enable", self.unit_name(name))

    def disable(self, name: str) -> None:
        self._systemctl("disable", self.unit_name(name))

    def is_active(self, name: str) -> bool:
        return self._query("is-active", name) == "active"

    def is_enabled(self, name: str) -> bool:
        return self._query("is-enabled", name) == "enabled"

    def exists(self, name: str) -> bool:
        output = self._query("list-unit-files", self.unit_name(name))
        return self.unit_name(name) in output

    def wait_for_service(
        self,
        name: str,
        timeout: float = 30.0,
        *,
        ctx: RunContext | None = None,
    ) -> None:
        """Poll until *name* is active or raise :class:`ServiceError`."""
        deadline = time.monotonic() + timeout
        while True:
            if self.is_active(name):
                return
            if time.monotonic() >= deadline:
                raise ServiceError(f"timeout waiting for service {name} to start")
            if ctx is not None:
                ctx.sleep(self.poll_interval)
            else:
                self.sleep(self.poll_interval)

    def reload_daemon(self) -> None:
        try:
            self._systemctl("daemon-reload")
        except ServiceError as exc:
            if "not found" in str(exc).lower():
                return
            raise

    # ------------------------------------------------------------------
    def _systemctl(self, command: str, unit: str | None = None) -> None:
        args = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        try:
            self.commands.run(
                args,
                privileged=True,
                error_prefix=f"{self.systemctl_bin} {command}",
            )
        except CommandError as exc:
            raise ServiceError(str(exc)) from exc

    def _query(self, command: str, name: str) -> str:
        try:
            result = self.commands.run(
                [self.systemctl_bin, command, name],
                check=False,
                mutating=False,
            )
        except CommandError as exc:
            LOGGER.debug("%s", exc)
            return ""
        return (result.stdout or "").strip()


__all__ = ["SystemdServiceManager"]
