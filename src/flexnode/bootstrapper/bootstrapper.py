"""High-level bootstrap/unbootstrap entry points."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..azure_cli import AzureCli
from ..components.base import StepEnvironment
from ..config import AppConfig
from ..platform import OperatingSystem, Platform
from ..templates import TemplateEngine
from .executor import BaseExecutor
from .linux import LINUX_PLAN
from .models import ExecutionResult
from .phases import PhasePlan
from .steps import ExecutionMode, RunContext, Step
from .windows import WINDOWS_PLAN

LOGGER = logging.getLogger(__name__)


def plan_for(operating_system: OperatingSystem | str) -> PhasePlan:
    """Return the phase plan for *operating_system*."""
    if OperatingSystem.parse(operating_system) is OperatingSystem.WINDOWS:
        return WINDOWS_PLAN
    return LINUX_PLAN


@dataclass(slots=True)
class Bootstrapper:
    """Build the platform step lists and run them through the executor."""

    config: AppConfig
    platform: Platform
    executor: BaseExecutor = field(default_factory=BaseExecutor)
    plan: PhasePlan | None = None
    templates: TemplateEngine | None = None
    azure: AzureCli | None = None

    def environment(self) -> StepEnvironment:
        return StepEnvironment.create(
            self.config,
            self.platform,
            templates=self.templates,
            azure=self.azure,
        )

    def active_plan(self) -> PhasePlan:
        return self.plan if self.plan is not None else plan_for(self.platform.os)

    def bootstrap_steps(self) -> list[Step]:
        """Return fresh installer steps in bootstrap order."""
        return self.active_plan().bootstrap_steps(self.environment())

    def unbootstrap_steps(self) -> list[Step]:
        """Return fresh uninstaller steps in unbootstrap order."""
        return self.active_plan().unbootstrap_steps(self.environment())

    def bootstrap(self, ctx: RunContext) -> ExecutionResult:
        """Provision the node; raises :class:`StepFailedError` on the first failure."""
        LOGGER.info("Bootstrapping %s node", self.platform.os.value)
        return self.executor.execute_steps(ctx, self.bootstrap_steps(), ExecutionMode.BOOTSTRAP)

    def unbootstrap(self, ctx: RunContext) -> ExecutionResult:
        """Tear the node down, attempting every step."""
        LOGGER.info("Unbootstrapping %s node", self.platform.os.value)
        return self.executor.execute_steps(
            ctx, self.unbootstrap_steps(), ExecutionMode.UNBOOTSTRAP
        )


__all__ = ["Bootstrapper", "plan_for"]
