"""Node status snapshots written by the agent loop."""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from . import get_version
from .components.services import CONTAINERD_SERVICE, KUBELET_SERVICE
from .platform import CommandError, FileSystemError, Platform
from .templates import write_atomic

LOGGER = logging.getLogger(__name__)

ARC_CONNECTED = "connected"
_VERSION_PATTERN = re.compile(r"v?(\d+\.\d+\.\d+(?:[-+.][0-9A-Za-z.-]+)?)")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_time(value: object) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        LOGGER.debug("Ignoring unparsable timestamp %r", value)
        return None


def _str(value: object) -> str:
    return value if isinstance(value, str) else ""


def parse_version(output: str) -> str:
    """Return the first semantic version found in *output* (``""`` if none)."""
    match = _VERSION_PATTERN.search(output)
    return match.group(1) if match else ""


@dataclass(frozen=True)
class ArcStatus:
    """Azure Arc registration state of the machine."""

    registered: bool = False
    connected: bool = False
    machine_name: str = ""
    resource_id: str = ""
    location: str = ""
    resource_group: str = ""
    last_heartbeat: datetime | None = None
    agent_version: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "registered": self.registered,
            "connected": self.connected,
            "machine_name": self.machine_name,
            "resource_id": self.resource_id,
            "location": self.location,
            "resource_group": self.resource_group,
            "last_heartbeat": _format_time(self.last_heartbeat),
            "agent_version": self.agent_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ArcStatus:
        return cls(
            registered=bool(data.get("registered", False)),
            connected=bool(data.get("connected", False)),
            machine_name=_str(data.get("machine_name")),
            resource_id=_str(data.get("resource_id")),
            location=_str(data.get("location")),
            resource_group=_str(data.get("resource_group")),
            last_heartbeat=_parse_time(data.get("last_heartbeat")),
            agent_version=_str(data.get("agent_version")),
        )

    @classmethod
    def from_agent_show(cls, data: Mapping[str, object]) -> ArcStatus:
        """Build the status from ``azcmagent show -j`` output."""
        state = _str(data.get("status"))
        resource_id = _str(data.get("resourceId"))
        return cls(
            registered=bool(resource_id) or bool(_str(data.get("resourceName"))),
            connected=state.lower() == ARC_CONNECTED,
            machine_name=_str(data.get("resourceName")),
            resource_id=resource_id,
            location=_str(data.get("location")),
            resource_group=_str(data.get("resourceGroup")),
            last_heartbeat=_parse_time(data.get("lastHeartbeat")),
            agent_version=_str(data.get("agentVersion")),
        )


@dataclass(frozen=True)
class NodeStatus:
    """Point-in-time view of the node components."""

    kubelet_version: str = ""
    runc_version: str = ""
    containerd_version: str = ""
    kubelet_running: bool = False
    kubelet_ready: str = ""
    containerd_running: bool = False
    arc_status: ArcStatus = field(default_factory=ArcStatus)
    last_updated: datetime | None = None
    agent_version: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "kubelet_version": self.kubelet_version,
            "runc_version": self.runc_version,
            "containerd_version": self.containerd_version,
            "kubelet_running": self.kubelet_running,
            "kubelet_ready": self.kubelet_ready,
            "containerd_running": self.containerd_running,
            "arc_status": self.arc_status.to_dict(),
            "last_updated": _format_time(self.last_updated),
            "agent_version": self.agent_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> NodeStatus:
        arc = data.get("arc_status")
        return cls(
            kubelet_version=_str(data.get("kubelet_version")),
            runc_version=_str(data.get("runc_version")),
            containerd_version=_str(data.get("containerd_version")),
            kubelet_running=bool(data.get("kubelet_running", False)),
            kubelet_ready=_str(data.get("kubelet_ready")),
            containerd_running=bool(data.get("containerd_running", False)),
            arc_status=ArcStatus.from_dict(arc) if isinstance(arc, Mapping) else ArcStatus(),
            last_updated=_parse_time(data.get("last_updated")),
            agent_version=_str(data.get("agent_version")),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)


@dataclass(slots=True)
class StatusCollector:
    """Collect a :class:`NodeStatus` by probing the host.

    Every probe is read-only, so collection also works under dry-run. A
    failing probe leaves its field at the default instead of aborting.
    """

    platform: Platform
    clock: Callable[[], datetime] = _now
    arc_binary: str = "azcmagent"

    def collect(self) -> NodeStatus:
        paths = self.platform.paths
        services = self.platform.services
        kubelet_running = services.is_active(KUBELET_SERVICE)
        return NodeStatus(
            kubelet_version=self._binary_version(paths.kubelet_binary_path()),
            runc_version=self._binary_version(paths.runc_binary_path()),
            containerd_version=self._binary_version(paths.containerd_binary_path()),
            kubelet_running=kubelet_running,
            kubelet_ready="Ready" if kubelet_running else "Unknown",
            containerd_running=services.is_active(CONTAINERD_SERVICE),
            arc_status=self.arc_status(),
            last_updated=self.clock(),
            agent_version=get_version(),
        )

    def arc_status(self) -> ArcStatus:
        try:
            output = self.platform.commands.output([self.arc_binary, "show", "-j"])
        except CommandError as exc:
            LOGGER.debug("Arc status unavailable: %s", exc)
            return ArcStatus()
        if not output:
            return ArcStatus()
        try:
            data = json.loads(output)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Unexpected azcmagent output: %s", exc)
            return ArcStatus()
        if not isinstance(data, Mapping):
            return ArcStatus()
        return ArcStatus.from_agent_show(data)

    def _binary_version(self, binary: str) -> str:
        if not self.platform.files.file_exists(binary):
            return ""
        try:
            return parse_version(self.platform.commands.output([binary, "--version"]))
        except CommandError as exc:
            LOGGER.debug("Version probe for %s failed: %s", binary, exc)
            return ""


def write_status(path: str | Path, status: NodeStatus, *, platform: Platform | None = None) -> bool:
    """Atomically write *status* as JSON to *path*.

    With *platform* the write goes through its :class:`FileSystem` (honouring
    dry-run); otherwise the file is replaced directly.
    """
    content = status.to_json() + "\n"
    if platform is not None:
        return platform.files.write_file(path, content, mode=0o644)
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    write_atomic(target, content)
    return True


def read_status(path: str | Path) -> NodeStatus:
    """Load a status file previously produced by :func:`write_status`."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise FileSystemError(f"Failed to read status file {path}: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise FileSystemError(f"Status file {path} does not contain an object.")
    return NodeStatus.from_dict(raw)


__all__ = [
    "ArcStatus",
    "NodeStatus",
    "StatusCollector",
    "parse_version",
    "read_status",
    "write_status",
]
