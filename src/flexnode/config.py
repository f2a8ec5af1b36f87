"""Configuration loader for aks-flex-node.

Configuration values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/aks-flex-node/config.json`` (or the ``--config`` path).
3. Environment variables prefixed with ``FLEXNODE_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

The config file is JSON in practice; it is parsed with PyYAML's ``safe_load``
(JSON is a YAML subset) so hand-written YAML works as well. Keys may use the
camelCase spelling of the JSON schema (``subscriptionId``) or snake_case.

Environment keys use double underscores to express nesting, e.g.::

    export FLEXNODE_AZURE__TENANT_ID=00000000-0000-0000-0000-000000000000
    export FLEXNODE_NODE__MAX_PODS=50

The resulting configuration is exposed as immutable ``dataclasses``.
"""
from __future__ import annotations

import os
import re
import socket
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load aks-flex-node configuration. Install with "
        "`pip install aks-flex-node` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "FLEXNODE_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {
    CONFIG_ENV_VAR,
    f"{ENV_PREFIX}GIT_COMMIT",
    f"{ENV_PREFIX}BUILD_TIME",
    f"{ENV_PREFIX}LOG_LEVEL",
}

_CLUSTER_RESOURCE_ID = re.compile(
    r"^/subscriptions/(?P<subscription>[^/]+)"
    r"/resourceGroups/(?P<group>[^/]+)"
    r"/providers/Microsoft\.ContainerService/managedClusters/(?P<name>[^/]+)/?$",
    re.IGNORECASE,
)

# camelCase spellings used by the JSON config schema.
_KEY_ALIASES = {
    "subscriptionId": "subscription_id",
    "tenantId": "tenant_id",
    "servicePrincipal": "service_principal",
    "clientId": "client_id",
    "clientSecret": "client_secret",
    "targetCluster": "target_cluster",
    "resourceId": "resource_id",
    "resourceGroup": "resource_group",
    "machineName": "machine_name",
    "autoRoleAssignment": "auto_role_assignment",
    "pauseImage": "pause_image",
    "metricsAddress": "metrics_address",
    "urlTemplate": "url_template",
    "maxPods": "max_pods",
    "kubeReserved": "kube_reserved",
    "evictionHard": "eviction_hard",
    "imageGCHighThreshold": "image_gc_high_threshold",
    "imageGCLowThreshold": "image_gc_low_threshold",
    "configDir": "config_dir",
    "logsDir": "logs_dir",
    "stateDir": "state_dir",
    "templatesDir": "templates_dir",
    "statusInterval": "status_interval",
    "unitDir": "unit_dir",
    "systemctlBin": "systemctl_bin",
    "dryRun": "dry_run",
}

# Mappings whose keys are user data rather than schema keys.
_FREEFORM_PATHS = {
    ("azure", "arc", "tags"),
    ("node", "labels"),
    ("node", "kubelet", "kube_reserved"),
    ("node", "kubelet", "eviction_hard"),
}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ServicePrincipalConfig:
    """Optional service principal used instead of the Azure CLI login."""

    client_id: str | None = None
    client_secret: str | None = None

    @property
    def is_configured(self) -> bool:
        """Return True when both the client id and secret are present."""
        return bool(self.client_id and self.client_secret)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation with the secret masked."""
        return {
            "client_id": self.client_id,
            "client_secret": "***" if self.client_secret else None,
        }


@dataclass(frozen=True)
class ArcConfig:
    """Azure Arc registration settings."""

    machine_name: str
    location: str | None = None
    resource_group: str | None = None
    tags: Mapping[str, str] = field(default_factory=dict)
    auto_role_assignment: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "machine_name": self.machine_name,
            "location": self.location,
            "resource_group": self.resource_group,
            "tags": dict(self.tags),
            "auto_role_assignment": self.auto_role_assignment,
        }


@dataclass(frozen=True)
class TargetClusterConfig:
    """The AKS cluster this node joins."""

    resource_id: str | None = None
    name: str | None = None
    resource_group: str | None = None
    location: str | None = None
    subscription_id: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "resource_id": self.resource_id,
            "name": self.name,
            "resource_group": self.resource_group,
            "location": self.location,
            "subscription_id": self.subscription_id,
        }


@dataclass(frozen=True)
class AzureConfig:
    """Azure identity and resource placement."""

    subscription_id: str | None
    tenant_id: str | None
    cloud: str
    service_principal: ServicePrincipalConfig
    arc: ArcConfig
    target_cluster: TargetClusterConfig

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "subscription_id": self.subscription_id,
            "tenant_id": self.tenant_id,
            "cloud": self.cloud,
            "service_principal": self.service_principal.to_dict(),
            "arc": self.arc.to_dict(),
            "target_cluster": self.target_cluster.to_dict(),
        }


@dataclass(frozen=True)
class KubernetesConfig:
    """Kubernetes node binaries."""

    version: str | None = None
    url_template: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"version": self.version, "url_template": self.url_template}


@dataclass(frozen=True)
class ContainerdConfig:
    """containerd runtime settings."""

    version: str = "1.7.20"
    pause_image: str = "mcr.microsoft.com/oss/kubernetes/pause:3.6"
    metrics_address: str = "0.0.0.0:10257"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "version": self.version,
            "pause_image": self.pause_image,
            "metrics_address": self.metrics_address,
        }


@dataclass(frozen=True)
class ComponentConfig:
    """Version pin for a downloaded component (runc, CNI, NPD, Calico)."""

    version: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"version": self.version}


@dataclass(frozen=True)
class KubeletConfig:
    """Kubelet resource reservation and garbage collection tuning."""

    kube_reserved: Mapping[str, str] = field(default_factory=dict)
    eviction_hard: Mapping[str, str] = field(default_factory=dict)
    image_gc_high_threshold: int = 85
    image_gc_low_threshold: int = 80
    verbosity: int = 2

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "kube_reserved": dict(self.kube_reserved),
            "eviction_hard": dict(self.eviction_hard),
            "image_gc_high_threshold": self.image_gc_high_threshold,
            "image_gc_low_threshold": self.image_gc_low_threshold,
            "verbosity": self.verbosity,
        }


@dataclass(frozen=True)
class NodeConfig:
    """Node registration settings."""

    labels: Mapping[str, str]
    max_pods: int
    kubelet: KubeletConfig

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "labels": dict(self.labels),
            "max_pods": self.max_pods,
            "kubelet": self.kubelet.to_dict(),
        }


@dataclass(frozen=True)
class PathsConfig:
    """Filesystem locations owned by aks-flex-node."""

    kubernetes_config_dir: Path
    logs_dir: Path
    state_dir: Path
    templates_dir: Path

    @property
    def admin_kubeconfig(self) -> Path:
        """Return the path of the downloaded cluster admin kubeconfig."""
        return self.kubernetes_config_dir / "admin.conf"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "kubernetes": {"config_dir": str(self.kubernetes_config_dir)},
            "logs_dir": str(self.logs_dir),
            "state_dir": str(self.state_dir),
            "templates_dir": str(self.templates_dir),
        }


@dataclass(frozen=True)
class AgentConfig:
    """Long-running agent settings."""

    status_interval: float = 60.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"status_interval": self.status_interval}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"unit_dir": str(self.unit_dir), "systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for aks-flex-node."""

    config_file: Path
    dry_run: bool
    azure: AzureConfig
    kubernetes: KubernetesConfig
    containerd: ContainerdConfig
    runc: ComponentConfig
    cni: ComponentConfig
    npd: ComponentConfig
    calico: ComponentConfig
    node: NodeConfig
    paths: PathsConfig
    agent: AgentConfig
    systemd: SystemdConfig

    def require_bootstrap_fields(self) -> list[str]:
        """Return the dotted names of settings a bootstrap cannot run without."""
        missing: list[str] = []
        if not self.azure.subscription_id:
            missing.append("azure.subscription_id")
        if not self.azure.tenant_id:
            missing.append("azure.tenant_id")
        if not self.azure.arc.location:
            missing.append("azure.arc.location")
        if not self.azure.arc.resource_group:
            missing.append("azure.arc.resource_group")
        if not self.azure.target_cluster.name:
            missing.append("azure.target_cluster.name")
        if not self.azure.target_cluster.resource_group:
            missing.append("azure.target_cluster.resource_group")
        if not self.kubernetes.version:
            missing.append("kubernetes.version")
        return missing

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "dry_run": self.dry_run,
            "azure": self.azure.to_dict(),
            "kubernetes": self.kubernetes.to_dict(),
            "containerd": self.containerd.to_dict(),
            "runc": self.runc.to_dict(),
            "cni": self.cni.to_dict(),
            "npd": self.npd.to_dict(),
            "calico": self.calico.to_dict(),
            "node": self.node.to_dict(),
            "paths": self.paths.to_dict(),
            "agent": self.agent.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/aks-flex-node/config.json",
    "dry_run": False,
    "azure": {
        "subscription_id": None,
        "tenant_id": None,
        "cloud": "AzurePublicCloud",
        "service_principal": {"client_id": None, "client_secret": None},
        "arc": {
            "machine_name": None,  # derived from the hostname when absent
            "location": None,  # derived from the target cluster when absent
            "resource_group": None,  # derived from the target cluster when absent
            "tags": {},
            "auto_role_assignment": True,
        },
        "target_cluster": {
            "resource_id": None,
            "name": None,
            "resource_group": None,
            "location": None,
            "subscription_id": None,
        },
    },
    "kubernetes": {"version": None, "url_template": None},
    "containerd": {
        "version": "1.7.20",
        "pause_image": "mcr.microsoft.com/oss/kubernetes/pause:3.6",
        "metrics_address": "0.0.0.0:10257",
    },
    "runc": {"version": "1.1.12"},
    "cni": {"version": "1.5.1"},
    "npd": {"version": "v0.8.19"},
    "calico": {"version": "3.28.2"},
    "node": {
        "labels": {},
        "max_pods": 110,
        "kubelet": {
            "kube_reserved": {"cpu": "100m", "memory": "1843Mi", "pid": "1000"},
            "eviction_hard": {
                "memory.available": "100Mi",
                "nodefs.available": "10%",
                "nodefs.inodesFree": "5%",
            },
            "image_gc_high_threshold": 85,
            "image_gc_low_threshold": 80,
            "verbosity": 2,
        },
    },
    "paths": {
        "kubernetes": {"config_dir": "/etc/kubernetes"},
        "logs_dir": "/var/log/aks-flex-node",
        "state_dir": "/var/lib/aks-flex-node",
        "templates_dir": "/etc/aks-flex-node/templates",
    },
    "agent": {"status_interval": 60.0},
    "systemd": {"unit_dir": "/etc/systemd/system", "systemctl_bin": "systemctl"},
}

ALLOWED_CLOUDS = {"AzurePublicCloud", "AzureUSGovernmentCloud", "AzureChinaCloud"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path, explicit = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_config_file(config_path, required=explicit)
    if file_values:
        _deep_merge(merged, _normalise_keys(file_values, ()))

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, _normalise_keys(dict(overrides), ()))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> tuple[Path, bool]:
    if cli_override:
        return Path(cli_override), True
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]), True
    return Path(default_path), False


def _load_config_file(path: Path, *, required: bool) -> dict[str, object]:
    if not path.exists():
        if required:
            raise ConfigError(f"Config file {path} does not exist.")
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _normalise_keys(raw: Mapping[str, object], path: tuple[str, ...]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in _as_dict(raw, ".".join(path) or "config").items():
        name = _KEY_ALIASES.get(key, key)
        child_path = (*path, name)
        if isinstance(value, Mapping) and child_path not in _FREEFORM_PATHS:
            result[name] = _normalise_keys(value, child_path)
        else:
            result[name] = value
    return result


def _reject_unknown(mapping: Mapping[str, object], allowed: set[str], label: str) -> None:
    unknown = set(mapping.keys()) - allowed
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown {label} configuration keys: {joined}.")


def _validate_structure(raw: Mapping[str, object]) -> None:
    _reject_unknown(raw, set(DEFAULTS.keys()), "top-level")

    azure = _as_dict(raw.get("azure"), "azure")
    _reject_unknown(
        azure,
        {"subscription_id", "tenant_id", "cloud", "service_principal", "arc", "target_cluster"},
        "azure",
    )
    cloud = azure.get("cloud")
    if cloud is not None and str(cloud) not in ALLOWED_CLOUDS:
        allowed = ", ".join(sorted(ALLOWED_CLOUDS))
        raise ConfigError(f"Unsupported Azure cloud '{cloud}'. Allowed: {allowed}.")
    _reject_unknown(
        _as_dict(azure.get("service_principal"), "azure.service_principal"),
        {"client_id", "client_secret"},
        "azure.service_principal",
    )
    arc = _as_dict(azure.get("arc"), "azure.arc")
    _reject_unknown(
        arc,
        {"machine_name", "location", "resource_group", "tags", "auto_role_assignment"},
        "azure.arc",
    )
    _expect_str_mapping(arc.get("tags"), "azure.arc.tags")
    target = _as_dict(azure.get("target_cluster"), "azure.target_cluster")
    _reject_unknown(
        target,
        {"resource_id", "name", "resource_group", "location", "subscription_id"},
        "azure.target_cluster",
    )
    resource_id = target.get("resource_id")
    if resource_id and not _CLUSTER_RESOURCE_ID.match(str(resource_id)):
        raise ConfigError(
            "azure.target_cluster.resource_id must look like /subscriptions/<id>/"
            "resourceGroups/<group>/providers/Microsoft.ContainerService/managedClusters/<name>."
        )

    _reject_unknown(
        _as_dict(raw.get("kubernetes"), "kubernetes"), {"version", "url_template"}, "kubernetes"
    )
    _reject_unknown(
        _as_dict(raw.get("containerd"), "containerd"),
        {"version", "pause_image", "metrics_address"},
        "containerd",
    )
    for section in ("runc", "cni", "npd", "calico"):
        _reject_unknown(_as_dict(raw.get(section), section), {"version"}, section)

    node = _as_dict(raw.get("node"), "node")
    _reject_unknown(node, {"labels", "max_pods", "kubelet"}, "node")
    _expect_str_mapping(node.get("labels"), "node.labels")
    max_pods = _expect_int(node.get("max_pods"), "node.max_pods", default=110)
    if max_pods <= 0:
        raise ConfigError("node.max_pods must be greater than zero.")
    kubelet = _as_dict(node.get("kubelet"), "node.kubelet")
    _reject_unknown(
        kubelet,
        {
            "kube_reserved",
            "eviction_hard",
            "image_gc_high_threshold",
            "image_gc_low_threshold",
            "verbosity",
        },
        "node.kubelet",
    )
    _expect_str_mapping(kubelet.get("kube_reserved"), "node.kubelet.kube_reserved")
    _expect_str_mapping(kubelet.get("eviction_hard"), "node.kubelet.eviction_hard")
    high = _expect_percentage(kubelet.get("image_gc_high_threshold"), "high", default=85)
    low = _expect_percentage(kubelet.get("image_gc_low_threshold"), "low", default=80)
    if low >= high:
        raise ConfigError(
            "node.kubelet.image_gc_low_threshold must be lower than image_gc_high_threshold."
        )

    paths = _as_dict(raw.get("paths"), "paths")
    _reject_unknown(paths, {"kubernetes", "logs_dir", "state_dir", "templates_dir"}, "paths")
    _reject_unknown(
        _as_dict(paths.get("kubernetes"), "paths.kubernetes"), {"config_dir"}, "paths.kubernetes"
    )

    agent = _as_dict(raw.get("agent"), "agent")
    _reject_unknown(agent, {"status_interval"}, "agent")
    _expect_positive_float(agent.get("status_interval"), "agent.status_interval", default=60.0)

    _reject_unknown(
        _as_dict(raw.get("systemd"), "systemd"), {"unit_dir", "systemctl_bin"}, "systemd"
    )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    azure_mapping = _as_dict(raw.get("azure"), "azure")
    subscription_id = _optional_str(azure_mapping.get("subscription_id"))

    target_mapping = _as_dict(azure_mapping.get("target_cluster"), "azure.target_cluster")
    resource_id = _optional_str(target_mapping.get("resource_id"))
    parsed = _CLUSTER_RESOURCE_ID.match(resource_id) if resource_id else None
    target_cluster = TargetClusterConfig(
        resource_id=resource_id,
        name=_optional_str(target_mapping.get("name")) or (parsed["name"] if parsed else None),
        resource_group=_optional_str(target_mapping.get("resource_group"))
        or (parsed["group"] if parsed else None),
        location=_optional_str(target_mapping.get("location")),
        subscription_id=_optional_str(target_mapping.get("subscription_id"))
        or (parsed["subscription"] if parsed else None)
        or subscription_id,
    )

    sp_mapping = _as_dict(azure_mapping.get("service_principal"), "azure.service_principal")
    arc_mapping = _as_dict(azure_mapping.get("arc"), "azure.arc")
    arc = ArcConfig(
        machine_name=_optional_str(arc_mapping.get("machine_name")) or socket.gethostname(),
        location=_optional_str(arc_mapping.get("location")) or target_cluster.location,
        resource_group=_optional_str(arc_mapping.get("resource_group"))
        or target_cluster.resource_group,
        tags=_expect_str_mapping(arc_mapping.get("tags"), "azure.arc.tags"),
        auto_role_assignment=_expect_bool(
            arc_mapping.get("auto_role_assignment"), "azure.arc.auto_role_assignment", True
        ),
    )
    azure = AzureConfig(
        subscription_id=subscription_id,
        tenant_id=_optional_str(azure_mapping.get("tenant_id")),
        cloud=str(azure_mapping.get("cloud") or "AzurePublicCloud"),
        service_principal=ServicePrincipalConfig(
            client_id=_optional_str(sp_mapping.get("client_id")),
            client_secret=_optional_str(sp_mapping.get("client_secret")),
        ),
        arc=arc,
        target_cluster=target_cluster,
    )

    kubernetes_mapping = _as_dict(raw.get("kubernetes"), "kubernetes")
    kubernetes = KubernetesConfig(
        version=_optional_str(kubernetes_mapping.get("version")),
        url_template=_optional_str(kubernetes_mapping.get("url_template")),
    )

    containerd_mapping = _as_dict(raw.get("containerd"), "containerd")
    default_containerd = ContainerdConfig()
    containerd = ContainerdConfig(
        version=_optional_str(containerd_mapping.get("version")) or default_containerd.version,
        pause_image=_optional_str(containerd_mapping.get("pause_image"))
        or default_containerd.pause_image,
        metrics_address=_optional_str(containerd_mapping.get("metrics_address"))
        or default_containerd.metrics_address,
    )

    node_mapping = _as_dict(raw.get("node"), "node")
    kubelet_mapping = _as_dict(node_mapping.get("kubelet"), "node.kubelet")
    kubelet = KubeletConfig(
        kube_reserved=_expect_str_mapping(
            kubelet_mapping.get("kube_reserved"), "node.kubelet.kube_reserved"
        ),
        eviction_hard=_expect_str_mapping(
            kubelet_mapping.get("eviction_hard"), "node.kubelet.eviction_hard"
        ),
        image_gc_high_threshold=_expect_percentage(
            kubelet_mapping.get("image_gc_high_threshold"), "high", default=85
        ),
        image_gc_low_threshold=_expect_percentage(
            kubelet_mapping.get("image_gc_low_threshold"), "low", default=80
        ),
        verbosity=_expect_int(kubelet_mapping.get("verbosity"), "node.kubelet.verbosity", default=2),
    )
    node = NodeConfig(
        labels=_expect_str_mapping(node_mapping.get("labels"), "node.labels"),
        max_pods=_expect_int(node_mapping.get("max_pods"), "node.max_pods", default=110),
        kubelet=kubelet,
    )

    paths_mapping = _as_dict(raw.get("paths"), "paths")
    kube_paths = _as_dict(paths_mapping.get("kubernetes"), "paths.kubernetes")
    paths = PathsConfig(
        kubernetes_config_dir=_to_path(kube_paths.get("config_dir", "/etc/kubernetes")),
        logs_dir=_to_path(paths_mapping.get("logs_dir")),
        state_dir=_to_path(paths_mapping.get("state_dir")),
        templates_dir=_to_path(paths_mapping.get("templates_dir")),
    )

    agent_mapping = _as_dict(raw.get("agent"), "agent")
    agent = AgentConfig(
        status_interval=_expect_positive_float(
            agent_mapping.get("status_interval"), "agent.status_interval", default=60.0
        )
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_mapping.get("unit_dir", "/etc/systemd/system")),
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        dry_run=_expect_bool(raw.get("dry_run"), "dry_run", False),
        azure=azure,
        kubernetes=kubernetes,
        containerd=containerd,
        runc=_component(raw, "runc", "1.1.12"),
        cni=_component(raw, "cni", "1.5.1"),
        npd=_component(raw, "npd", "v0.8.19"),
        calico=_component(raw, "calico", "3.28.2"),
        node=node,
        paths=paths,
        agent=agent,
        systemd=systemd,
    )


def _component(raw: Mapping[str, object], section: str, default: str) -> ComponentConfig:
    mapping = _as_dict(raw.get(section), section)
    return ComponentConfig(version=_optional_str(mapping.get("version")) or default)


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _optional_str(value: object | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _expect_bool(value: object | None, label: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_percentage(value: object | None, which: str, *, default: int) -> int:
    label = f"node.kubelet.image_gc_{which}_threshold"
    number = _expect_int(value, label, default=default)
    if not 0 <= number <= 100:
        raise ConfigError(f"{label} must be between 0 and 100. Got {number}.")
    return number


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_str_mapping(value: object | None, label: str) -> dict[str, str]:
    mapping = _as_dict(value, label)
    result: dict[str, str] = {}
    for key, item in mapping.items():
        if isinstance(item, (Mapping, list, tuple)) or item is None:
            raise ConfigError(f"{label}.{key} must be a scalar value.")
        result[key] = str(item).lower() if isinstance(item, bool) else str(item)
    return result


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AgentConfig",
    "AppConfig",
    "ArcConfig",
    "AzureConfig",
    "ComponentConfig",
    "ConfigError",
    "ContainerdConfig",
    "KubeletConfig",
    "KubernetesConfig",
    "NodeConfig",
    "PathsConfig",
    "ServicePrincipalConfig",
    "SystemdConfig",
    "TargetClusterConfig",
    "load_config",
]
