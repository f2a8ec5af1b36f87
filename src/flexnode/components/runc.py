"""Install the runc OCI runtime from its GitHub release."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..platform import CommandError, FileSystemError
from .base import ComponentError, ComponentStep

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

RUNC_DOWNLOAD_URL = "https://github.com/opencontainers/runc/releases/download/v{version}/runc.{arch}"


def runc_download_url(version: str, arch: str) -> str:
    return RUNC_DOWNLOAD_URL.format(version=version.lstrip("v"), arch=arch)


@dataclass(slots=True)
class RuncInstaller(ComponentStep):
    step_name = "RuncInstaller"

    def validate(self, ctx: RunContext) -> None:
        if not self.env.config.runc.version:
            raise ComponentError("runc version cannot be empty")

    def execute(self, ctx: RunContext) -> None:
        version = self.env.config.runc.version
        if self._version_matches():
            LOGGER.info("runc %s already installed; skipping download", version)
            return
        binary = self.env.paths.runc_binary_path()
        url = runc_download_url(version, self.env.files.get_architecture())
        staging = self.env.paths.join(self.env.paths.temp_dir, "runc")
        try:
            self.env.files.download_file(url, staging, ctx=ctx, mode=0o755)
            self.env.commands.run(
                ["install", "-m", "0755", staging, binary],
                privileged=True,
                ctx=ctx,
                error_prefix="install runc",
            )
        except (CommandError, FileSystemError) as exc:
            raise ComponentError(f"failed to install runc {version}: {exc}") from exc
        finally:
            self.discard(staging)
        LOGGER.info("runc %s installed at %s", version, binary)

    def is_completed(self, ctx: RunContext) -> bool:
        return self._version_matches()

    def _version_matches(self) -> bool:
        binary = self.env.paths.runc_binary_path()
        if not self.env.files.file_exists(binary):
            return False
        try:
            output = self.env.commands.output([binary, "--version"])
        except CommandError:
            return False
        return self.env.config.runc.version.lstrip("v") in output


@dataclass(slots=True)
class RuncUninstaller(ComponentStep):
    step_name = "RuncRemoved"

    def execute(self, ctx: RunContext) -> None:
        self.env.files.remove_file(self.env.paths.runc_binary_path())

    def is_completed(self, ctx: RunContext) -> bool:
        return not self.env.files.file_exists(self.env.paths.runc_binary_path())


__all__ = ["RuncInstaller", "RuncUninstaller", "runc_download_url"]
