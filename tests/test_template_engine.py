"""Tests for the template rendering engine."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from flexnode.templates import TemplateEngine, TemplateRenderError, write_atomic

SERVICE_CONTEXT: dict[str, object] = {
    "description": "Kubernetes Kubelet",
    "dependencies": ["containerd.service"],
    "exec_start": "/usr/local/bin/kubelet --v=2",
    "working_directory": None,
    "user": None,
    "restart": "always",
    "restart_sec": 5,
    "environment": ["KUBELET_EXTRA=1"],
}


def test_render_to_string_uses_builtin_templates() -> None:
    """Built-in templates render with strict variables."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("systemd/service.j2", SERVICE_CONTEXT)

    assert "Description=Kubernetes Kubelet" in output
    assert "After=containerd.service" in output
    assert "Requires=containerd.service" in output
    assert "Environment=KUBELET_EXTRA=1" in output
    assert "RestartSec=5" in output
    assert "WorkingDirectory" not in output
    assert "User=" not in output


def test_missing_variable_raises_render_error() -> None:
    engine = TemplateEngine.with_overrides(None)
    context = dict(SERVICE_CONTEXT)
    del context["exec_start"]

    with pytest.raises(TemplateRenderError, match="systemd/service.j2"):
        engine.render_to_string("systemd/service.j2", context)


def test_unknown_template_raises_render_error() -> None:
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(TemplateRenderError):
        engine.render_to_string("nope/missing.j2", {})


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "units" / "kubelet.service"

    changed = engine.render_to_path("systemd/service.j2", destination, SERVICE_CONTEXT, mode=0o600)

    assert changed is True
    assert destination.exists()
    assert oct(destination.stat().st_mode & 0o777) == "0o600"

    # Second render with same content should be a no-op.
    changed_again = engine.render_to_path(
        "systemd/service.j2", destination, SERVICE_CONTEXT, mode=0o600
    )
    assert changed_again is False


def test_write_atomic_fixes_mode_on_unchanged_content(tmp_path: Path) -> None:
    destination = tmp_path / "admin.conf"
    destination.write_text("data", encoding="utf-8")
    destination.chmod(0o644)

    assert write_atomic(destination, "data", mode=0o600) is False
    assert destination.stat().st_mode & 0o777 == 0o600
    assert [item.name for item in tmp_path.iterdir()] == ["admin.conf"]


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_dir = tmp_path / "templates"
    override_template = override_dir / "systemd" / "service.j2"
    override_template.parent.mkdir(parents=True, exist_ok=True)
    override_template.write_text("override {{ description }}", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    assert engine.render_to_string("systemd/service.j2", SERVICE_CONTEXT) == "override Kubernetes Kubelet"
    # Templates not overridden still come from the package.
    assert "net.ipv4.ip_forward = 1" in engine.render_to_string(
        "sysctl/999-sysctl-aks.conf.j2", {"extra_settings": {}}
    )


def test_missing_override_directory_is_ignored(tmp_path: Path) -> None:
    engine = TemplateEngine.with_overrides(tmp_path / "absent")

    assert "Description=Kubernetes Kubelet" in engine.render_to_string(
        "systemd/service.j2", SERVICE_CONTEXT
    )


def test_sysctl_template_appends_sorted_extra_settings() -> None:
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(
        "sysctl/999-sysctl-aks.conf.j2",
        {"extra_settings": {"vm.swappiness": 0, "kernel.pid_max": 4194304}},
    )

    lines = output.splitlines()
    assert lines[-2:] == ["kernel.pid_max = 4194304", "vm.swappiness = 0"]


def test_bridge_cni_template_is_valid_json() -> None:
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(
        "cni/10-bridge.conf.j2",
        {
            "cni_spec_version": "0.3.1",
            "network_name": "bridge",
            "bridge_name": "cni0",
            "pod_subnet": "10.244.0.0/16",
        },
    )

    document = json.loads(output)
    assert document["plugins"][0]["ipam"]["ranges"] == [[{"subnet": "10.244.0.0/16"}]]


def test_exec_kubeconfig_escapes_windows_script_path() -> None:
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(
        "kubelet/kubeconfig-exec.yaml.j2",
        {
            "ca_data": "Q0E=",
            "server": "https://aks-one.hcp.eastus.azmk8s.io:443",
            "cluster_name": "aks-one",
            "token_script": "C:\\k\\token.ps1",
        },
    )

    assert '"C:\\\\k\\\\token.ps1"' in output
    assert "current-context: arc-context" in output
