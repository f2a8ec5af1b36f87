"""Enable/start and stop/disable the node services as a group."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..platform import ServiceError
from ..utils import log_cleanup_error
from .base import ComponentError, ComponentStep

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

CONTAINERD_SERVICE = "containerd"
KUBELET_SERVICE = "kubelet"
NPD_SERVICE = "node-problem-detector"

SERVICE_STARTUP_TIMEOUT = 30.0


@dataclass(slots=True)
class ServicesInstaller(ComponentStep):
    """Bring containerd, kubelet and (optionally) NPD up in order."""

    step_name = "ServicesEnabled"

    def execute(self, ctx: RunContext) -> None:
        services = self.env.services
        try:
            services.reload_daemon()
        except ServiceError as exc:
            raise ComponentError(f"failed to reload service daemon: {exc}") from exc

        self._enable_and_start(CONTAINERD_SERVICE)
        LOGGER.info("Restarting containerd to pick up the CNI configuration")
        try:
            services.restart(CONTAINERD_SERVICE)
        except ServiceError as exc:
            raise ComponentError(f"failed to restart containerd: {exc}") from exc

        self._enable_and_start(KUBELET_SERVICE)
        if not self.env.dry_run:
            LOGGER.info("Waiting for kubelet to start")
            try:
                services.wait_for_service(KUBELET_SERVICE, SERVICE_STARTUP_TIMEOUT, ctx=ctx)
            except ServiceError as exc:
                raise ComponentError(f"kubelet failed to start: {exc}") from exc

        if self.env.is_windows:
            return
        try:
            services.enable(NPD_SERVICE)
            services.start(NPD_SERVICE)
        except ServiceError as exc:
            LOGGER.warning("Failed to enable and start %s: %s (continuing)", NPD_SERVICE, exc)

    def is_completed(self, ctx: RunContext) -> bool:
        return False

    def _enable_and_start(self, name: str) -> None:
        LOGGER.info("Enabling and starting %s", name)
        try:
            self.env.services.enable(name)
            self.env.services.start(name)
        except ServiceError as exc:
            raise ComponentError(f"failed to enable and start {name}: {exc}") from exc


@dataclass(slots=True)
class ServicesUninstaller(ComponentStep):
    """Stop and disable node services; failures are logged, never raised."""

    step_name = "ServicesDisabled"

    def execute(self, ctx: RunContext) -> None:
        names = [KUBELET_SERVICE, CONTAINERD_SERVICE]
        if not self.env.is_windows:
            names.insert(0, NPD_SERVICE)
        for name in names:
            if not self.env.services.exists(name):
                LOGGER.debug("Service %s not present; nothing to stop", name)
                continue
            for action, verb in ((self.env.services.stop, "stop"), (self.env.services.disable, "disable")):
                try:
                    action(name)
                except ServiceError as exc:
                    log_cleanup_error(LOGGER, f"{verb} {name}", exc)

    def is_completed(self, ctx: RunContext) -> bool:
        services = self.env.services
        return not (services.is_active(CONTAINERD_SERVICE) or services.is_active(KUBELET_SERVICE))


__all__ = [
    "CONTAINERD_SERVICE",
    "KUBELET_SERVICE",
    "NPD_SERVICE",
    "ServicesInstaller",
    "ServicesUninstaller",
]
