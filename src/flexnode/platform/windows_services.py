"""Windows service control through ``sc.exe``."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..utils import log_cleanup_error
from .commands import CommandError, CommandRunner
from .services import RestartPolicy, ServiceConfig, ServiceError

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

# Restart delays (ms) applied after the first, second and later failures.
RECOVERY_DELAYS_MS = (5000, 15000, 30000)
RECOVERY_RESET_SECONDS = 30


def quote_argument(arg: str) -> str:
    """Quote *arg* for a service command line when it contains blanks or quotes."""
    if any(char in arg for char in ' \t"'):
        escaped = arg.replace('"', '\\"')
        return f'"{escaped}"'
    return arg


@dataclass(slots=True)
class WindowsServiceManager:
    """Register and control Windows services."""

    commands: CommandRunner
    sc_bin: str = "sc.exe"
    poll_interval: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep)

    def install(self, config: ServiceConfig) -> bool:
        """Create the service; return False when it already exists."""
        if self.exists(config.name):
            LOGGER.info("Service %s already registered", config.name)
            return False
        bin_path = " ".join(
            [quote_argument(config.binary_path), *(quote_argument(a) for a in config.args)]
        )
        args = [self.sc_bin, "create", config.name, "binPath=", bin_path, "start=", "auto"]
        if config.display_name:
            args.extend(["DisplayName=", config.display_name])
        if config.dependencies:
            args.extend(["depend=", "/".join(config.dependencies)])
        self._sc(args, f"create {config.name}")
        if config.description:
            self._sc([self.sc_bin, "description", config.name, config.description], "description")
        if config.restart_policy in (RestartPolicy.ALWAYS, RestartPolicy.ON_FAILURE):
            actions = "/".join(f"restart/{delay}" for delay in RECOVERY_DELAYS_MS)
            try:
                self._sc(
                    [
                        self.sc_bin,
                        "failure",
                        config.name,
                        "reset=",
                        str(RECOVERY_RESET_SECONDS),
                        "actions=",
                        actions,
                    ],
                    "failure",
                )
            except ServiceError as exc:
                LOGGER.warning("Failed to set recovery actions for %s: %s", config.name, exc)
        return True

    def uninstall(self, name: str) -> None:
        if not self.exists(name):
            return
        try:
            self.stop(name)
        except ServiceError as exc:
            log_cleanup_error(LOGGER, f"stop {name}", exc)
        self._sc([self.sc_bin, "delete", name], f"delete {name}")

    def start(self, name: str) -> None:
        self._sc([self.sc_bin, "start", name], f"start {name}")

    def stop(self, name: str) -> None:
        self._sc([self.sc_bin, "stop", name], f"stop {name}")

    def restart(self, name: str) -> None:
        try:
            self.stop(name)
        except ServiceError as exc:
            LOGGER.debug("Stop before restart of %s failed: %s", name, exc)
        self.sleep(self.poll_interval)
        self.start(name)

    def enable(self, name: str) -> None:
        self._sc([self.sc_bin, "config", name, "start=", "auto"], f"enable {name}")

    def disable(self, name: str) -> None:
        self._sc([self.sc_bin, "config", name, "start=", "disabled"], f"disable {name}")

    def is_active(self, name: str) -> bool:
        return "RUNNING" in self._query("query", name)

    def is_enabled(self, name: str) -> bool:
        return "AUTO_START" in self._query("qc", name)

    def exists(self, name: str) -> bool:
        return self.commands.succeeds([self.sc_bin, "query", name])

    def wait_for_service(
        self,
        name: str,
        timeout: float = 30.0,
        *,
        ctx: RunContext | None = None,
    ) -> None:
        deadline = time.monotonic() + timeout
        while not self.is_active(name):
            if time.monotonic() >= deadline:
                raise ServiceError(f"timeout waiting for service {name} to start")
            if ctx is not None:
                ctx.sleep(self.poll_interval)
            else:
                self.sleep(self.poll_interval)

    def reload_daemon(self) -> None:
        """Nothing to reload: the service control manager has no unit cache."""

    # ------------------------------------------------------------------
    def _sc(self, args: list[str], label: str) -> None:
        try:
            self.commands.run(args, privileged=True, error_prefix=f"{self.sc_bin} {label}")
        except CommandError as exc:
            raise ServiceError(str(exc)) from exc

    def _query(self, command: str, name: str) -> str:
        try:
            result = self.commands.run([self.sc_bin, command, name], check=False, mutating=False)
        except CommandError as exc:
            LOGGER.debug("%s", exc)
            return ""
        return result.stdout or ""


__all__ = ["WindowsServiceManager", "quote_argument"]
