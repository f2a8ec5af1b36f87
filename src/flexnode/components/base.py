"""Shared wiring for node components (installers and uninstallers)."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

from ..azure_cli import AzureCli, AzureCliError
from ..platform import CommandError, FileSystemError
from ..templates import TemplateEngine
from ..utils import log_cleanup_error

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..platform import CommandRunner, FileSystem, PathConfig, Platform, ServiceManager

LOGGER = logging.getLogger(__name__)


class ComponentError(RuntimeError):
    """Raised when a component cannot reach its desired state."""


@dataclass(slots=True)
class StepEnvironment:
    """Dependencies injected into every component step."""

    config: AppConfig
    platform: Platform
    templates: TemplateEngine
    azure: AzureCli

    @classmethod
    def create(
        cls,
        config: AppConfig,
        platform: Platform,
        *,
        templates: TemplateEngine | None = None,
        azure: AzureCli | None = None,
    ) -> StepEnvironment:
        """Build an environment, filling in the default engine and ``az`` wrapper."""
        return cls(
            config=config,
            platform=platform,
            templates=templates or TemplateEngine.with_overrides(config.paths.templates_dir),
            azure=azure or AzureCli(platform.commands),
        )

    @property
    def dry_run(self) -> bool:
        return self.platform.commands.dry_run

    @property
    def paths(self) -> PathConfig:
        return self.platform.paths

    @property
    def commands(self) -> CommandRunner:
        return self.platform.commands

    @property
    def files(self) -> FileSystem:
        return self.platform.files

    @property
    def services(self) -> ServiceManager:
        return self.platform.services

    @property
    def is_windows(self) -> bool:
        return self.platform.is_windows

    def azure_login(self) -> None:
        """Log the Azure CLI in with the configured service principal.

        Without a service principal the caller's existing ``az login`` session
        is used as-is.
        """
        azure = self.config.azure
        principal = azure.service_principal
        if not principal.is_configured:
            LOGGER.debug("No service principal configured; using the current az login")
            return
        if not azure.tenant_id:
            raise ComponentError("azure.tenant_id is required for service principal login")
        try:
            self.azure.login_service_principal(
                str(principal.client_id), str(principal.client_secret), azure.tenant_id
            )
        except AzureCliError as exc:
            raise ComponentError(f"Azure login failed: {exc}") from exc


@dataclass(slots=True)
class ComponentStep:
    """Base class giving each step its stable ``name`` and environment.

    Subclasses implement ``execute`` and ``is_completed`` to satisfy the
    :class:`~flexnode.bootstrapper.steps.Step` protocol.
    """

    env: StepEnvironment

    step_name: ClassVar[str] = ""

    @property
    def name(self) -> str:
        return self.step_name

    def discard(self, path: str, *, directory: bool = False) -> None:
        """Remove a staging artifact, logging rather than raising on failure."""
        files = self.env.files
        try:
            if directory:
                files.remove_directory(path)
            else:
                files.remove_file(path)
        except (CommandError, FileSystemError) as exc:
            log_cleanup_error(LOGGER, f"remove {path}", exc)


__all__ = ["ComponentError", "ComponentStep", "StepEnvironment"]
