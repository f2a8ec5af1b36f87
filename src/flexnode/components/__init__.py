"""Installers and uninstallers for each node component."""
from __future__ import annotations

from .base import ComponentError, ComponentStep, StepEnvironment

__all__ = ["ComponentError", "ComponentStep", "StepEnvironment"]
