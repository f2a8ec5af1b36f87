"""Declarative phase plans from which both step orderings are derived.

A plan is an ordered tuple of phases (identity, runtime, network, node agent,
services, ...). Bootstrap reads phases and their installers forward;
unbootstrap reads phases and their uninstallers backwards, so the two lists
always unwind each other.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .steps import Step

if TYPE_CHECKING:
    from ..components.base import StepEnvironment

StepFactory = Callable[["StepEnvironment"], Step]


@dataclass(slots=True, frozen=True)
class Phase:
    """A named group of steps sharing one dependency layer."""

    name: str
    installers: tuple[StepFactory, ...] = ()
    uninstallers: tuple[StepFactory, ...] = ()


@dataclass(slots=True, frozen=True)
class PhasePlan:
    """Ordered phases for one platform."""

    platform: str
    phases: tuple[Phase, ...]

    def __post_init__(self) -> None:
        """Reject duplicate phase names."""
        names = [phase.name for phase in self.phases]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate phase names in {self.platform} plan: {duplicates}")

    def phase_names(self) -> list[str]:
        """Return the phase names in bootstrap order."""
        return [phase.name for phase in self.phases]

    def bootstrap_steps(self, env: StepEnvironment) -> list[Step]:
        """Build fresh installer steps, phases forward."""
        return _build(env, (factory for phase in self.phases for factory in phase.installers))

    def unbootstrap_steps(self, env: StepEnvironment) -> list[Step]:
        """Build fresh uninstaller steps, phases and entries reversed."""
        factories = (
            factory
            for phase in reversed(self.phases)
            for factory in reversed(phase.uninstallers)
        )
        return _build(env, factories)


def _build(env: StepEnvironment, factories: Iterable[StepFactory]) -> list[Step]:
    steps: list[Step] = []
    seen: set[str] = set()
    for factory in factories:
        step = factory(env)
        if step.name in seen:
            raise ValueError(f"Step name {step.name!r} appears more than once in one run.")
        seen.add(step.name)
        steps.append(step)
    return steps


__all__ = ["Phase", "PhasePlan", "StepFactory"]
