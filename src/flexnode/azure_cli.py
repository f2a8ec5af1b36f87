"""Thin wrapper around the Azure CLI (``az``) used by the identity components."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .platform.commands import CommandError, CommandRunner

if TYPE_CHECKING:
    from .bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

MANAGEMENT_RESOURCE = "https://management.azure.com/"

# Built-in role definition GUIDs.
ROLE_DEFINITION_IDS = {
    "Reader": "acdd72a7-3385-48ef-bd42-f606fba81ae7",
    "Network Contributor": "4d97b98b-1d4f-4787-a291-c67834d212e7",
    "Contributor": "b24988ac-6180-42a0-ab88-20f7382dd24c",
    "Azure Kubernetes Service RBAC Cluster Admin": "b1ff04bb-8a4e-4dc4-8eb5-8693973ce19b",
    "Azure Kubernetes Service Cluster Admin Role": "0ab0b1a8-8aac-4efd-b8c2-3ee1fb270be8",
}


class AzureCliError(RuntimeError):
    """Raised when an ``az`` invocation fails or returns unusable output."""


def cluster_resource_id(subscription_id: str, resource_group: str, name: str) -> str:
    return (
        f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"
        f"/providers/Microsoft.ContainerService/managedClusters/{name}"
    )


def resource_group_id(subscription_id: str, resource_group: str) -> str:
    return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"


def role_definition_id(subscription_id: str, role_guid: str) -> str:
    return (
        f"/subscriptions/{subscription_id}/providers/Microsoft.Authorization"
        f"/roleDefinitions/{role_guid}"
    )


@dataclass(slots=True)
class AzureCli:
    """Run ``az`` commands and decode their JSON output."""

    commands: CommandRunner
    az_bin: str = "az"

    def login_service_principal(self, client_id: str, client_secret: str, tenant_id: str) -> None:
        self._run(
            [
                "login",
                "--service-principal",
                "--username",
                client_id,
                "--password",
                client_secret,
                "--tenant",
                tenant_id,
                "--output",
                "none",
            ],
            label="login --service-principal",
        )

    def login_identity(self) -> None:
        """Log in with the machine's managed identity (Arc HIMDS)."""
        self._run(["login", "--identity", "--output", "none"], label="login --identity")

    def access_token(self, resource: str = MANAGEMENT_RESOURCE) -> str:
        """Return a bearer token for *resource* from the current login."""
        token = self._run(
            [
                "account",
                "get-access-token",
                "--resource",
                resource,
                "--query",
                "accessToken",
                "--output",
                "tsv",
            ],
            label="account get-access-token",
        )
        return token.strip()

    def show_connected_machine(
        self,
        name: str,
        resource_group: str,
        subscription_id: str,
    ) -> dict[str, object] | None:
        """Return the Arc machine resource, or None when it does not exist."""
        try:
            payload = self._json(
                [
                    "connectedmachine",
                    "show",
                    "--name",
                    name,
                    "--resource-group",
                    resource_group,
                    "--subscription",
                    subscription_id,
                ],
                label="connectedmachine show",
            )
        except AzureCliError as exc:
            if "not found" in str(exc).lower() or "resourcenotfound" in str(exc).lower():
                return None
            raise
        return payload if isinstance(payload, dict) else None

    def show_cluster(self, name: str, resource_group: str, subscription_id: str) -> dict[str, object]:
        payload = self._json(
            [
                "aks",
                "show",
                "--name",
                name,
                "--resource-group",
                resource_group,
                "--subscription",
                subscription_id,
            ],
            label="aks show",
        )
        if not isinstance(payload, dict):
            raise AzureCliError(f"aks show returned no cluster for {name}")
        return payload

    def get_admin_credentials(
        self,
        name: str,
        resource_group: str,
        subscription_id: str,
        *,
        ctx: RunContext | None = None,
    ) -> str:
        """Return the admin kubeconfig for the cluster as text."""
        return self._run(
            [
                "aks",
                "get-credentials",
                "--admin",
                "--name",
                name,
                "--resource-group",
                resource_group,
                "--subscription",
                subscription_id,
                "--file",
                "-",
            ],
            label="aks get-credentials",
            ctx=ctx,
        )

    def list_role_assignments(self, assignee_object_id: str, subscription_id: str) -> list[dict[str, object]]:
        payload = self._json(
            [
                "role",
                "assignment",
                "list",
                "--assignee",
                assignee_object_id,
                "--all",
                "--subscription",
                subscription_id,
            ],
            label="role assignment list",
        )
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    def create_role_assignment(
        self,
        assignee_object_id: str,
        role_guid: str,
        scope: str,
        subscription_id: str,
    ) -> bool:
        """Assign a role; return False when the assignment already exists."""
        try:
            self._run(
                [
                    "role",
                    "assignment",
                    "create",
                    "--assignee-object-id",
                    assignee_object_id,
                    "--assignee-principal-type",
                    "ServicePrincipal",
                    "--role",
                    role_guid,
                    "--scope",
                    scope,
                    "--subscription",
                    subscription_id,
                    "--output",
                    "none",
                ],
                label="role assignment create",
            )
        except AzureCliError as exc:
            if "RoleAssignmentExists" in str(exc):
                return False
            raise
        return True

    # ------------------------------------------------------------------
    def _json(self, args: list[str], *, label: str) -> object:
        output = self._run([*args, "--output", "json"], label=label)
        if not output.strip():
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise AzureCliError(f"az {label} returned invalid JSON: {exc}") from exc

    def _run(self, args: list[str], *, label: str, ctx: RunContext | None = None) -> str:
        try:
            result = self.commands.run(
                [self.az_bin, *args],
                ctx=ctx,
                error_prefix=f"az {label}",
            )
        except CommandError as exc:
            raise AzureCliError(str(exc)) from exc
        return result.stdout or ""


__all__ = [
    "AzureCli",
    "AzureCliError",
    "MANAGEMENT_RESOURCE",
    "ROLE_DEFINITION_IDS",
    "cluster_resource_id",
    "resource_group_id",
    "role_definition_id",
]
