"""Ordered provisioning and teardown of flex node components."""
from __future__ import annotations

from .bootstrapper import Bootstrapper, plan_for
from .executor import BaseExecutor
from .models import ExecutionResult, StepResult
from .phases import Phase, PhasePlan
from .steps import (
    ExecutionMode,
    RunCancelledError,
    RunContext,
    Step,
    StepError,
    StepExecutionError,
    StepFailedError,
    StepValidationError,
    ValidatingStep,
)

__all__ = [
    "BaseExecutor",
    "Bootstrapper",
    "ExecutionMode",
    "ExecutionResult",
    "Phase",
    "PhasePlan",
    "RunCancelledError",
    "RunContext",
    "Step",
    "StepError",
    "StepExecutionError",
    "StepFailedError",
    "StepResult",
    "StepValidationError",
    "ValidatingStep",
    "plan_for",
]
