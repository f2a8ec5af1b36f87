"""Azure Arc enrolment: agent install, machine registration and RBAC.

The Arc managed identity is what the node later uses to talk to the target
cluster, so bootstrap does not finish until its role assignments are visible.
Roles are either assigned here (``azure.arc.auto_role_assignment``) or by an
operator while the installer polls.
"""
from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..azure_cli import (
    ROLE_DEFINITION_IDS,
    AzureCliError,
    cluster_resource_id,
    resource_group_id,
)
from ..platform import CommandError, FileSystemError
from .base import ComponentError, ComponentStep, StepEnvironment

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

ARC_SCRIPT_URL = "https://aka.ms/azcmagent"
ARC_WINDOWS_SCRIPT_URL = "https://aka.ms/azcmagent-windows"
ARC_SCRIPT_NAME = "install_linux_azcmagent.sh"
ARC_PACKAGE = "azcmagent"
ARC_SYMLINK = "/usr/local/bin/azcmagent"
ARC_BINARY_CANDIDATES = (
    "/usr/bin/azcmagent",
    "/usr/local/bin/azcmagent",
    "/opt/azcmagent/bin/azcmagent",
)
ARC_PREREQUISITES = ("curl", "wget", "gnupg", "lsb-release", "jq", "net-tools")
LINUX_ARC_SERVICES = ("himdsd", "gcarcservice", "extd")
WINDOWS_ARC_SERVICES = ("himds", "GCArcService", "ExtensionService")

REGISTRATION_DELAY = 10.0
PERMISSION_POLL_INTERVAL = 30.0
PERMISSION_TIMEOUT = 30 * 60.0


@dataclass(frozen=True)
class RoleRequirement:
    """One role the Arc identity must hold on one scope."""

    role: str
    scope: str

    @property
    def role_guid(self) -> str:
        return ROLE_DEFINITION_IDS[self.role]


def build_role_requirements(
    machine_id: str,
    cluster_id: str,
    cluster_group_id: str,
    node_group_id: str | None,
) -> list[RoleRequirement]:
    """Return the role assignments the Arc identity needs, in assignment order."""
    roles = [
        RoleRequirement("Reader", machine_id),
        RoleRequirement("Reader", cluster_id),
        RoleRequirement("Azure Kubernetes Service RBAC Cluster Admin", cluster_id),
        RoleRequirement("Azure Kubernetes Service Cluster Admin Role", cluster_id),
        RoleRequirement("Network Contributor", cluster_group_id),
    ]
    if node_group_id:
        roles.append(RoleRequirement("Contributor", node_group_id))
    return roles


def missing_roles(
    assignments: Iterable[Mapping[str, object]],
    required: Iterable[RoleRequirement],
) -> list[RoleRequirement]:
    """Return the requirements not covered by *assignments* (``az role assignment list``)."""
    held = set()
    for item in assignments:
        role_id = str(item.get("roleDefinitionId") or "").rsplit("/", 1)[-1].lower()
        scope = str(item.get("scope") or "").rstrip("/").lower()
        held.add((role_id, scope))
    return [
        requirement
        for requirement in required
        if (requirement.role_guid.lower(), requirement.scope.rstrip("/").lower()) not in held
    ]


def principal_id(machine: Mapping[str, object]) -> str:
    identity = machine.get("identity")
    if isinstance(identity, Mapping):
        value = identity.get("principalId")
        if value:
            return str(value)
    return ""


def arc_agent_installed(which: Callable[[str], str | None] = shutil.which) -> bool:
    return which("azcmagent") is not None


def arc_services(env: StepEnvironment) -> tuple[str, ...]:
    return WINDOWS_ARC_SERVICES if env.is_windows else LINUX_ARC_SERVICES


def arc_services_running(env: StepEnvironment, which: Callable[[str], str | None] = shutil.which) -> bool:
    """Return True when the agent is on PATH and all of its services are active."""
    if not arc_agent_installed(which):
        return False
    if not all(env.services.is_active(name) for name in arc_services(env)):
        return False
    if env.is_windows:
        return True
    return env.commands.succeeds(["pgrep", "-f", "azcmagent"])


@dataclass(slots=True)
class ArcInstaller(ComponentStep):
    """Install the Arc agent, register the machine and wait for RBAC."""

    which: Callable[[str], str | None] = field(default=shutil.which)
    registration_delay: float = REGISTRATION_DELAY
    poll_interval: float = PERMISSION_POLL_INTERVAL
    permission_timeout: float = PERMISSION_TIMEOUT

    step_name = "ArcInstall"

    def validate(self, ctx: RunContext) -> None:
        azure = self.env.config.azure
        missing = [
            label
            for label, value in (
                ("azure.subscription_id", azure.subscription_id),
                ("azure.tenant_id", azure.tenant_id),
                ("azure.arc.location", azure.arc.location),
                ("azure.arc.resource_group", azure.arc.resource_group),
                ("azure.target_cluster.name", azure.target_cluster.name),
                ("azure.target_cluster.resource_group", azure.target_cluster.resource_group),
            )
            if not value
        ]
        if missing:
            raise ComponentError(f"Arc registration requires: {', '.join(missing)}")

    def execute(self, ctx: RunContext) -> None:
        LOGGER.info("Step 1: installing the Azure Arc agent")
        try:
            self.install_agent(ctx)
        except (CommandError, FileSystemError) as exc:
            raise ComponentError(f"failed to install Arc agent: {exc}") from exc

        arc = self.env.config.azure.arc
        if self.env.dry_run:
            LOGGER.info(
                "[dry-run] would register %s in %s and wait for RBAC permissions",
                arc.machine_name,
                arc.resource_group,
            )
            return

        self.env.azure_login()
        LOGGER.info("Step 2: registering %s with Azure Arc", arc.machine_name)
        machine = self.register(ctx)
        identity = principal_id(machine)
        if not identity:
            raise ComponentError("Arc machine has no managed identity principal id")

        roles = self.required_roles(machine)
        if arc.auto_role_assignment:
            LOGGER.info("Step 3: assigning RBAC roles to the Arc identity")
            ctx.sleep(self.registration_delay)
            self.assign_roles(identity, roles)
        else:
            LOGGER.info("Step 3: skipped; azure.arc.auto_role_assignment is disabled")

        LOGGER.info("Step 4: waiting for RBAC permissions to become effective")
        self.wait_for_permissions(ctx, identity, roles)
        LOGGER.info("Azure Arc setup complete")

    def is_completed(self, ctx: RunContext) -> bool:
        if not arc_services_running(self.env, self.which):
            return False
        try:
            return self._show_machine() is not None
        except AzureCliError as exc:
            LOGGER.debug("Arc machine lookup failed: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Agent installation

    def install_agent(self, ctx: RunContext) -> None:
        if arc_agent_installed(self.which):
            LOGGER.info("Azure Arc agent already installed")
            return
        if self.env.is_windows:
            self._install_windows_agent(ctx)
            return
        if self.package_corrupted():
            LOGGER.warning("Arc agent package installed but binary missing; reinstalling")
            self._remove_package(ctx)
        self._install_linux_agent(ctx)

    def package_corrupted(self) -> bool:
        """Return True when dpkg knows the package but no binary is on disk."""
        if not self.env.commands.succeeds(["dpkg", "-l", ARC_PACKAGE]):
            return False
        return self._find_binary() is None

    def _install_linux_agent(self, ctx: RunContext) -> None:
        commands = self.env.commands
        script = self.env.paths.join(self.env.paths.temp_dir, ARC_SCRIPT_NAME)
        commands.run(["wget", ARC_SCRIPT_URL, "-O", script], ctx=ctx, error_prefix="download Arc script")
        try:
            commands.run(["chmod", "755", script], ctx=ctx)
            self._install_prerequisites(ctx)
            LOGGER.info("Running the Arc agent installation script")
            commands.run(["bash", script], privileged=True, ctx=ctx, error_prefix="Arc agent installation")
        finally:
            self.discard(script)
        if self.env.dry_run or arc_agent_installed(self.which):
            return
        found = self._find_binary()
        if found is None:
            raise ComponentError(
                "Arc installation finished but azcmagent is not on PATH or in "
                f"{', '.join(ARC_BINARY_CANDIDATES)}"
            )
        LOGGER.info("Linking %s to %s", found, ARC_SYMLINK)
        self.env.files.symlink(found, ARC_SYMLINK)

    def _install_prerequisites(self, ctx: RunContext) -> None:
        commands = self.env.commands
        commands.run(["apt-get", "update"], privileged=True, ctx=ctx, error_prefix="apt-get update")
        for package in ARC_PREREQUISITES:
            try:
                commands.run(["apt-get", "install", "-y", package], privileged=True, ctx=ctx)
            except CommandError as exc:
                LOGGER.warning("Failed to install prerequisite %s: %s", package, exc)

    def _remove_package(self, ctx: RunContext) -> None:
        commands = self.env.commands
        try:
            commands.run(
                ["dpkg", "--remove", "--force-remove-reinstreq", ARC_PACKAGE],
                privileged=True,
                ctx=ctx,
            )
        except CommandError as exc:
            LOGGER.warning("dpkg removal failed, purging with apt-get: %s", exc)
            commands.run(["apt-get", "remove", "-y", "--purge", ARC_PACKAGE], privileged=True, ctx=ctx)

    def _install_windows_agent(self, ctx: RunContext) -> None:
        script = self.env.paths.join(self.env.paths.temp_dir, "install_windows_azcmagent.ps1")
        self.env.commands.run(
            [
                "powershell",
                "-NoProfile",
                "-ExecutionPolicy",
                "Bypass",
                "-Command",
                f"Invoke-WebRequest -UseBasicParsing -Uri {ARC_WINDOWS_SCRIPT_URL} "
                f"-OutFile '{script}'; & '{script}'",
            ],
            ctx=ctx,
            error_prefix="Arc agent installation",
        )
        self.env.files.remove_file(script)

    def _find_binary(self) -> str | None:
        if self.env.is_windows:
            candidates: tuple[str, ...] = (
                self.env.paths.join(self.env.paths.arc_agent_bin_dir, "azcmagent.exe"),
            )
        else:
            candidates = ARC_BINARY_CANDIDATES
        for candidate in candidates:
            if self.env.files.file_exists(candidate):
                return candidate
        return None

    # ------------------------------------------------------------------
    # Registration and RBAC

    def register(self, ctx: RunContext) -> Mapping[str, object]:
        """Connect the machine to Arc unless it is already registered."""
        machine = self._show_machine()
        if machine is not None:
            LOGGER.info("Machine already registered with Azure Arc")
            return machine
        azure = self.env.config.azure
        try:
            token = self.env.azure.access_token()
        except AzureCliError as exc:
            raise ComponentError(f"failed to get an access token for Arc: {exc}") from exc
        args = [
            "azcmagent",
            "connect",
            "--resource-group",
            str(azure.arc.resource_group),
            "--tenant-id",
            str(azure.tenant_id),
            "--location",
            str(azure.arc.location),
            "--subscription-id",
            str(azure.subscription_id),
            "--resource-name",
            azure.arc.machine_name,
            "--cloud",
            azure.cloud,
        ]
        if azure.arc.tags:
            args.extend(["--tags", ",".join(f"{k}={v}" for k, v in sorted(azure.arc.tags.items()))])
        args.extend(["--access-token", token])
        try:
            self.env.commands.run(args, privileged=True, ctx=ctx, error_prefix="azcmagent connect")
        except CommandError as exc:
            raise ComponentError(str(exc)) from exc
        ctx.sleep(self.registration_delay)
        machine = self._show_machine()
        if machine is None:
            raise ComponentError("Arc machine not found after azcmagent connect")
        return machine

    def required_roles(self, machine: Mapping[str, object]) -> list[RoleRequirement]:
        azure = self.env.config.azure
        cluster = azure.target_cluster
        subscription = str(cluster.subscription_id or azure.subscription_id)
        cluster_id = cluster_resource_id(subscription, str(cluster.resource_group), str(cluster.name))
        try:
            details = self.env.azure.show_cluster(
                str(cluster.name), str(cluster.resource_group), subscription
            )
        except AzureCliError as exc:
            raise ComponentError(f"failed to read target cluster: {exc}") from exc
        node_group = details.get("nodeResourceGroup")
        return build_role_requirements(
            machine_id=str(machine.get("id") or ""),
            cluster_id=cluster_id,
            cluster_group_id=resource_group_id(subscription, str(cluster.resource_group)),
            node_group_id=resource_group_id(subscription, str(node_group)) if node_group else None,
        )

    def assign_roles(self, identity: str, roles: Iterable[RoleRequirement]) -> None:
        subscription = str(self.env.config.azure.subscription_id)
        for requirement in roles:
            try:
                created = self.env.azure.create_role_assignment(
                    identity, requirement.role_guid, requirement.scope, subscription
                )
            except AzureCliError as exc:
                raise ComponentError(
                    f"failed to assign {requirement.role} on {requirement.scope}: {exc}"
                ) from exc
            if created:
                LOGGER.info("Assigned %s on %s", requirement.role, requirement.scope)
            else:
                LOGGER.info("%s on %s already assigned", requirement.role, requirement.scope)

    def wait_for_permissions(self, ctx: RunContext, identity: str, roles: list[RoleRequirement]) -> None:
        """Poll until every role is visible, honouring *ctx* cancellation."""
        deadline = time.monotonic() + self.permission_timeout
        for requirement in roles:
            LOGGER.info("Required: %s on %s", requirement.role, requirement.scope)
        while True:
            pending = self._pending_roles(identity, roles)
            if not pending:
                LOGGER.info("All required RBAC permissions are available")
                return
            if time.monotonic() >= deadline:
                names = ", ".join(f"{r.role} on {r.scope}" for r in pending)
                raise ComponentError(
                    f"timeout after {self.permission_timeout:.0f}s waiting for RBAC permissions: {names}"
                )
            LOGGER.info(
                "%d permission(s) still missing; checking again in %.0fs",
                len(pending),
                self.poll_interval,
            )
            ctx.sleep(self.poll_interval)

    def _pending_roles(self, identity: str, roles: list[RoleRequirement]) -> list[RoleRequirement]:
        subscription = str(self.env.config.azure.subscription_id)
        try:
            assignments = self.env.azure.list_role_assignments(identity, subscription)
        except AzureCliError as exc:
            LOGGER.warning("Error checking permissions (will retry): %s", exc)
            return roles
        return missing_roles(assignments, roles)

    def _show_machine(self) -> Mapping[str, object] | None:
        azure = self.env.config.azure
        return self.env.azure.show_connected_machine(
            azure.arc.machine_name,
            str(azure.arc.resource_group),
            str(azure.subscription_id),
        )


@dataclass(slots=True)
class ArcUninstaller(ComponentStep):
    """Disconnect from Arc and remove the agent package."""

    which: Callable[[str], str | None] = field(default=shutil.which)

    step_name = "ArcUninstall"

    def execute(self, ctx: RunContext) -> None:
        if not arc_agent_installed(self.which):
            LOGGER.info("Azure Arc agent not installed; nothing to remove")
            return
        self._disconnect(ctx)
        commands = self.env.commands
        try:
            if self.env.is_windows:
                commands.run(
                    [
                        "powershell",
                        "-NoProfile",
                        "-Command",
                        "Get-Package -Name 'Azure Connected Machine Agent' | Uninstall-Package -Force",
                    ],
                    ctx=ctx,
                    error_prefix="Arc agent removal",
                )
            else:
                commands.run(
                    ["apt-get", "remove", "-y", "--purge", ARC_PACKAGE],
                    privileged=True,
                    ctx=ctx,
                    error_prefix="Arc agent removal",
                )
        except CommandError as exc:
            raise ComponentError(str(exc)) from exc

    def is_completed(self, ctx: RunContext) -> bool:
        return not arc_agent_installed(self.which)

    def _disconnect(self, ctx: RunContext) -> None:
        try:
            self.env.azure_login()
            token = self.env.azure.access_token()
            self.env.commands.run(
                ["azcmagent", "disconnect", "--access-token", token],
                privileged=True,
                ctx=ctx,
                error_prefix="azcmagent disconnect",
            )
        except (AzureCliError, CommandError, ComponentError) as exc:
            LOGGER.warning("Arc disconnect failed; removing the agent anyway: %s", exc)


__all__ = [
    "ArcInstaller",
    "ArcUninstaller",
    "RoleRequirement",
    "arc_agent_installed",
    "arc_services_running",
    "build_role_requirements",
    "missing_roles",
    "principal_id",
]
