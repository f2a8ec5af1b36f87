"""Result records produced by the step orchestrator."""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .steps import ExecutionMode


@dataclass(slots=True, frozen=True)
class StepResult:
    """Outcome of one attempted step (validation failure or execution)."""

    step_name: str
    success: bool
    duration: float
    error: str = ""

    def __post_init__(self) -> None:
        """Enforce the duration and error invariants."""
        if self.duration < 0:
            object.__setattr__(self, "duration", 0.0)
        if self.success and self.error:
            raise ValueError("Successful step results must not carry an error.")
        if not self.success and not self.error:
            raise ValueError("Failed step results must describe the error.")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "step": self.step_name,
            "success": self.success,
            "duration_seconds": round(self.duration, 6),
            "error": self.error,
        }


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    """Aggregate outcome of one ``execute_steps`` call."""

    mode: ExecutionMode
    success: bool
    duration: float
    error: str = ""
    step_results: tuple[StepResult, ...] = ()
    skipped: tuple[str, ...] = ()

    @property
    def step_count(self) -> int:
        """Number of steps for which an attempt was recorded."""
        return len(self.step_results)

    @property
    def failed_steps(self) -> tuple[StepResult, ...]:
        """Return the failed step results in execution order."""
        return tuple(result for result in self.step_results if not result.success)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "mode": self.mode.value,
            "success": self.success,
            "step_count": self.step_count,
            "successful_steps": count_successful_steps(self.step_results),
            "duration_seconds": round(self.duration, 6),
            "error": self.error,
            "skipped": list(self.skipped),
            "steps": [result.to_dict() for result in self.step_results],
        }


def count_successful_steps(results: Iterable[StepResult]) -> int:
    """Return how many *results* succeeded."""
    return sum(1 for result in results if result.success)


def create_step_result(
    name: str,
    start: float,
    success: bool,
    error: str = "",
) -> StepResult:
    """Build a :class:`StepResult` timed from the ``perf_counter`` value *start*."""
    duration = time.perf_counter() - start
    return StepResult(step_name=name, success=success, duration=duration, error=error)


def build_execution_result(
    mode: ExecutionMode,
    start: float,
    step_results: Sequence[StepResult],
    *,
    skipped: Sequence[str] = (),
    error: str = "",
) -> ExecutionResult:
    """Aggregate *step_results* so that success reflects every attempt."""
    all_succeeded = count_successful_steps(step_results) == len(step_results)
    return ExecutionResult(
        mode=mode,
        success=all_succeeded and not error,
        duration=time.perf_counter() - start,
        error=error,
        step_results=tuple(step_results),
        skipped=tuple(skipped),
    )


__all__ = [
    "ExecutionResult",
    "StepResult",
    "build_execution_result",
    "count_successful_steps",
    "create_step_result",
]
