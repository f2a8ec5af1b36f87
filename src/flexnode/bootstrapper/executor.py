"""Sequential step orchestrator shared by bootstrap and unbootstrap runs.

Each step passes through validate (when supported), the completion check and
execute, strictly in list order. Bootstrap halts on the first failure and
raises :class:`StepFailedError`; unbootstrap attempts every step and reports
failures only through the returned :class:`ExecutionResult`.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from .models import (
    ExecutionResult,
    StepResult,
    build_execution_result,
    count_successful_steps,
    create_step_result,
)
from .steps import ExecutionMode, RunContext, Step, StepFailedError, supports_validation

LOGGER = logging.getLogger(__name__)

StepObserver = Callable[[StepResult | None, str], None]


def _describe(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or type(exc).__name__


@dataclass(slots=True)
class BaseExecutor:
    """Run ordered steps under an :class:`ExecutionMode`."""

    logger: logging.Logger = field(default=LOGGER)
    observer: StepObserver | None = None

    def execute_steps(
        self,
        ctx: RunContext,
        steps: Sequence[Step],
        mode: ExecutionMode | str,
    ) -> ExecutionResult:
        """Execute *steps* in order and aggregate their outcomes.

        Raises :class:`StepFailedError` only in bootstrap mode, carrying the
        partial result collected up to and including the failing step.
        """
        run_mode = ExecutionMode.parse(mode)
        run_start = time.perf_counter()
        results: list[StepResult] = []
        skipped: list[str] = []

        self.logger.info("Starting %s of %d step(s)", run_mode.value, len(steps))
        for index, step in enumerate(steps, start=1):
            name = step.name
            self.logger.info("[%d/%d] %s", index, len(steps), name)
            step_start = time.perf_counter()

            phase, failure = self._preflight(ctx, step)
            if failure is None:
                if self._is_completed(ctx, step):
                    self.logger.info("%s already completed; skipping", name)
                    skipped.append(name)
                    self._notify(None, name)
                    continue
                phase = "execute"
                step_start = time.perf_counter()
                failure = self._run(ctx, step)

            if failure is None:
                result = create_step_result(name, step_start, True)
                results.append(result)
                self.logger.info("%s completed in %.2fs", name, result.duration)
                self._notify(result, name)
                continue

            result = create_step_result(name, step_start, False, _describe(failure))
            results.append(result)
            self._notify(result, name)

            if run_mode.fail_fast:
                self.logger.error("%s failed during %s: %s", name, phase, result.error)
                error = StepFailedError(name, phase, failure)
                summary = build_execution_result(
                    run_mode,
                    run_start,
                    results,
                    skipped=skipped,
                    error=str(error),
                )
                error.result = summary
                self._log_summary(summary)
                raise error from failure

            self.logger.warning(
                "%s failed during %s: %s (continuing)", name, phase, result.error
            )

        summary = build_execution_result(run_mode, run_start, results, skipped=skipped)
        self._log_summary(summary)
        return summary

    # ------------------------------------------------------------------
    def _preflight(self, ctx: RunContext, step: Step) -> tuple[str, Exception | None]:
        try:
            ctx.check()
        except Exception as exc:
            return "execute", exc
        if not supports_validation(step):
            return "validate", None
        try:
            step.validate(ctx)  # type: ignore[attr-defined]
        except Exception as exc:
            return "validate", exc
        return "validate", None

    def _is_completed(self, ctx: RunContext, step: Step) -> bool:
        try:
            return bool(step.is_completed(ctx))
        except Exception as exc:
            self.logger.debug("Completion check for %s raised %s", step.name, exc)
            return False

    def _run(self, ctx: RunContext, step: Step) -> Exception | None:
        try:
            step.execute(ctx)
        except Exception as exc:
            return exc
        return None

    def _notify(self, result: StepResult | None, name: str) -> None:
        if self.observer is not None:
            self.observer(result, name)

    def _log_summary(self, result: ExecutionResult) -> None:
        successful = count_successful_steps(result.step_results)
        self.logger.info(
            "%s finished: %d/%d attempted step(s) succeeded, %d skipped, %.2fs",
            result.mode.value,
            successful,
            result.step_count,
            len(result.skipped),
            result.duration,
        )


__all__ = ["BaseExecutor", "StepObserver"]
