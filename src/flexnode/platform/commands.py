"""Subprocess execution with privilege escalation and dry-run support."""
from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

ALWAYS_NEEDS_SUDO = frozenset(
    {
        "apt",
        "apt-get",
        "dpkg",
        "systemctl",
        "mount",
        "umount",
        "modprobe",
        "sysctl",
        "swapoff",
        "azcmagent",
        "usermod",
        "kubectl",
    }
)
CONDITIONAL_SUDO = frozenset(
    {"mkdir", "cp", "chmod", "chown", "mv", "tar", "rm", "bash", "install", "ln", "cat"}
)
SYSTEM_PATH_PREFIXES = ("/etc/", "/usr/", "/var/", "/opt/", "/boot/", "/sys/")


class CommandError(RuntimeError):
    """Raised when an external command is missing or exits non-zero."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Record the command outcome alongside the message."""
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def requires_sudo_access(command: str, args: Sequence[str]) -> bool:
    """Return True when *command* needs elevated privileges for *args*.

    Package managers, service managers and the Arc agent always do; file
    utilities only when they touch a system path.
    """
    name = os.path.basename(command)
    if name in ALWAYS_NEEDS_SUDO:
        return True
    if name in CONDITIONAL_SUDO:
        return any(str(arg).startswith(SYSTEM_PATH_PREFIXES) for arg in args)
    return False


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is None or geteuid() == 0


@dataclass(slots=True)
class CommandRunner:
    """Run external commands the way every component expects."""

    dry_run: bool = False
    escalate: bool = field(default_factory=lambda: not _is_root())
    default_timeout: float | None = 600.0

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        privileged: bool = False,
        mutating: bool = True,
        timeout: float | None = None,
        ctx: RunContext | None = None,
        error_prefix: str | None = None,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args* and return the completed process.

        ``mutating`` commands are skipped under dry-run; read-only probes
        (``mutating=False``) always run so completion checks stay truthful.
        """
        if not args:
            raise CommandError("No command given.")
        if ctx is not None:
            ctx.check()
        command = list(args)
        if privileged and self.escalate and requires_sudo_access(command[0], command[1:]):
            command = ["sudo", "-E", *command]
        prefix = error_prefix or " ".join(args[:2])

        if self.dry_run and mutating:
            LOGGER.info("[dry-run] %s", " ".join(command))
            return subprocess.CompletedProcess(command, returncode=0, stdout="", stderr="")

        effective_timeout = timeout if timeout is not None else self.default_timeout
        if ctx is not None:
            remaining = ctx.remaining()
            if remaining is not None:
                effective_timeout = (
                    remaining if effective_timeout is None else min(effective_timeout, remaining)
                )

        LOGGER.debug("Running %s", " ".join(command))
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                check=False,
                timeout=effective_timeout,
                input=input_text,
            )
        except FileNotFoundError as exc:
            raise CommandError(f"{command[0]} not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandError(f"{prefix} timed out after {exc.timeout}s") from exc
        if check and result.returncode != 0:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise CommandError(
                f"{prefix} failed (exit {result.returncode}): {message}",
                returncode=result.returncode,
                stdout=stdout,
                stderr=stderr,
            )
        return result

    def output(self, args: Sequence[str], **kwargs: object) -> str:
        """Run a read-only command and return its stripped stdout."""
        kwargs.setdefault("mutating", False)
        result = self.run(args, **kwargs)  # type: ignore[arg-type]
        return (result.stdout or "").strip()

    def succeeds(self, args: Sequence[str], **kwargs: object) -> bool:
        """Return True when a read-only command exits zero."""
        kwargs.setdefault("mutating", False)
        kwargs["check"] = False
        try:
            result = self.run(args, **kwargs)  # type: ignore[arg-type]
        except CommandError as exc:
            LOGGER.debug("%s", exc)
            return False
        return result.returncode == 0


__all__ = ["CommandError", "CommandRunner", "requires_sudo_access"]
