"""Verify the runhcs shim that ships inside the Windows containerd archive."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..platform import FileSystemError
from .base import ComponentError, ComponentStep

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

RUNHCS_SHIM = "containerd-shim-runhcs-v1.exe"


@dataclass(slots=True)
class RunhcsInstaller(ComponentStep):
    step_name = "RunhcsInstaller"

    @property
    def shim_path(self) -> str:
        return self.env.paths.join(self.env.paths.containerd_bin_dir, RUNHCS_SHIM)

    def validate(self, ctx: RunContext) -> None:
        if self.env.dry_run:
            return
        bin_dir = self.env.paths.containerd_bin_dir
        if not self.env.files.directory_exists(bin_dir):
            raise ComponentError(
                f"containerd bin directory does not exist at {bin_dir}; install containerd first"
            )

    def execute(self, ctx: RunContext) -> None:
        if not self.env.files.file_exists(self.shim_path):
            raise ComponentError(
                f"runhcs shim not found at {self.shim_path}; ensure containerd is properly installed"
            )
        LOGGER.info("runhcs shim verified at %s", self.shim_path)

    def is_completed(self, ctx: RunContext) -> bool:
        return self.env.files.file_exists(self.shim_path)


@dataclass(slots=True)
class RunhcsUninstaller(ComponentStep):
    step_name = "RunhcsRemoved"

    @property
    def shim_path(self) -> str:
        return self.env.paths.join(self.env.paths.containerd_bin_dir, RUNHCS_SHIM)

    def execute(self, ctx: RunContext) -> None:
        try:
            self.env.files.remove_file(self.shim_path)
        except FileSystemError as exc:
            LOGGER.debug("Failed to remove runhcs shim at %s: %s", self.shim_path, exc)

    def is_completed(self, ctx: RunContext) -> bool:
        return not self.env.files.file_exists(self.shim_path)


__all__ = ["RUNHCS_SHIM", "RunhcsInstaller", "RunhcsUninstaller"]
