"""Small helpers shared by components."""
from __future__ import annotations

import logging
from collections.abc import Mapping

import yaml

LOGGER = logging.getLogger(__name__)

_IGNORABLE_CLEANUP_MARKERS = ("not loaded", "does not exist", "no such file", "not found")


class KubeconfigError(RuntimeError):
    """Raised when a kubeconfig cannot be parsed or lacks cluster details."""


def should_ignore_cleanup_error(error: BaseException | None) -> bool:
    """Return True for errors that only say the target is already gone."""
    if error is None:
        return False
    message = str(error).lower()
    return any(marker in message for marker in _IGNORABLE_CLEANUP_MARKERS)


def log_cleanup_error(logger: logging.Logger, action: str, error: BaseException) -> None:
    """Log a cleanup failure at debug when ignorable, warning otherwise."""
    if should_ignore_cleanup_error(error):
        logger.debug("%s: %s (ignored)", action, error)
    else:
        logger.warning("%s: %s", action, error)


def extract_cluster_info(kubeconfig: bytes | str) -> tuple[str, str]:
    """Return ``(server, certificate_authority_data)`` of the first cluster."""
    text = kubeconfig.decode("utf-8") if isinstance(kubeconfig, bytes) else kubeconfig
    if not text.strip():
        raise KubeconfigError("kubeconfig is empty")
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise KubeconfigError(f"failed to parse kubeconfig: {exc}") from exc
    if not isinstance(document, Mapping):
        raise KubeconfigError("kubeconfig must be a mapping")
    clusters = document.get("clusters") or []
    if not isinstance(clusters, list) or not clusters:
        raise KubeconfigError("no clusters found in kubeconfig")
    first = clusters[0] if isinstance(clusters[0], Mapping) else {}
    cluster = first.get("cluster") or {}
    if not isinstance(cluster, Mapping):
        raise KubeconfigError("kubeconfig cluster entry is malformed")
    server = str(cluster.get("server") or "").strip()
    if not server:
        raise KubeconfigError("server URL not found in kubeconfig")
    ca_data = str(cluster.get("certificate-authority-data") or "").strip()
    return server, ca_data


def map_to_eviction_thresholds(values: Mapping[str, str], separator: str = ",") -> str:
    """Format ``{"memory.available": "100Mi"}`` as ``memory.available<100Mi``."""
    return separator.join(f"{key}<{value}" for key, value in sorted(values.items()))


def map_to_key_value_pairs(values: Mapping[str, str], separator: str = ",") -> str:
    """Format a mapping as ``k=v`` pairs."""
    return separator.join(f"{key}={value}" for key, value in sorted(values.items()))


__all__ = [
    "KubeconfigError",
    "extract_cluster_info",
    "log_cleanup_error",
    "map_to_eviction_thresholds",
    "map_to_key_value_pairs",
    "should_ignore_cleanup_error",
]
