"""Step contract, execution modes and the cancellable run context.

A step is the unit of provisioning or cleanup work. Every step exposes a stable
``name``, an ``execute`` action and a read-only ``is_completed`` probe. Steps
that need pre-flight checks additionally expose ``validate``; the orchestrator
detects that capability at runtime rather than forcing every step to carry a
no-op implementation.
"""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Protocol, assert_never, runtime_checkable

LOGGER = logging.getLogger(__name__)


class StepError(RuntimeError):
    """Base class for failures raised while running steps."""


class StepValidationError(StepError):
    """Raised by ``validate`` when a step's pre-conditions are not met."""


class StepExecutionError(StepError):
    """Raised by ``execute`` when a step's main action fails."""


class RunCancelledError(StepExecutionError):
    """Raised when the run context is cancelled or its deadline has passed."""


class StepFailedError(StepError):
    """Raised by bootstrap runs when a step fails validation or execution."""

    def __init__(
        self,
        step_name: str,
        phase: str,
        cause: BaseException,
        result: object | None = None,
    ) -> None:
        """Record which step failed, in which phase, and why."""
        super().__init__(f"step {step_name} failed during {phase}: {cause}")
        self.step_name = step_name
        self.phase = phase
        self.cause = cause
        self.result = result


class RunContext:
    """Cooperative cancellation handle passed into every step call."""

    def __init__(
        self,
        *,
        timeout: float | None = None,
        event: threading.Event | None = None,
    ) -> None:
        """Create a context, optionally bounded by *timeout* seconds."""
        self._event = event if event is not None else threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._reason = "run cancelled"

    def cancel(self, reason: str = "run cancelled") -> None:
        """Request cancellation; steps observe it on their next check."""
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Return True once cancelled or once the deadline has passed."""
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Return seconds left before the deadline (``None`` when unbounded)."""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def check(self) -> None:
        """Raise :class:`RunCancelledError` if the run should stop."""
        if self._event.is_set():
            raise RunCancelledError(self._reason)
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise RunCancelledError("run deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Wait up to *seconds*, returning early (and raising) on cancellation."""
        self.check()
        wait = max(seconds, 0.0)
        remaining = self.remaining()
        if remaining is not None:
            wait = min(wait, remaining)
        self._event.wait(wait)
        self.check()


@runtime_checkable
class Step(Protocol):
    """Minimal capability set every installer/uninstaller provides."""

    @property
    def name(self) -> str:
        """Stable identifier used for logs and results."""
        ...

    def execute(self, ctx: RunContext) -> None:
        """Perform the work; raise on failure."""
        ...

    def is_completed(self, ctx: RunContext) -> bool:
        """Return True when the end state is already satisfied."""
        ...


@runtime_checkable
class ValidatingStep(Step, Protocol):
    """A step that also exposes a pre-flight ``validate`` check."""

    def validate(self, ctx: RunContext) -> None:
        """Raise when the step must not execute."""
        ...


def supports_validation(step: object) -> bool:
    """Return True when *step* exposes a callable ``validate``."""
    return callable(getattr(step, "validate", None))


class ExecutionMode(str, Enum):
    """Direction of a run; each direction carries its own failure policy."""

    BOOTSTRAP = "bootstrap"
    UNBOOTSTRAP = "unbootstrap"

    @property
    def fail_fast(self) -> bool:
        """Return True when the first failure must halt the run."""
        if self is ExecutionMode.BOOTSTRAP:
            return True
        if self is ExecutionMode.UNBOOTSTRAP:
            return False
        assert_never(self)

    @classmethod
    def parse(cls, value: ExecutionMode | str) -> ExecutionMode:
        """Return the mode for *value*.

        Only the two literals are recognised; anything else gets the
        continue-on-error policy of :attr:`UNBOOTSTRAP`.
        """
        if isinstance(value, ExecutionMode):
            return value
        try:
            return cls(value)
        except ValueError:
            LOGGER.warning("Unknown execution mode %r; continuing past failures", value)
            return cls.UNBOOTSTRAP


__all__ = [
    "ExecutionMode",
    "RunCancelledError",
    "RunContext",
    "Step",
    "StepError",
    "StepExecutionError",
    "StepFailedError",
    "StepValidationError",
    "ValidatingStep",
    "supports_validation",
]
