"""Jinja2 template rendering for unit files and component configuration.

Built-in templates ship inside the package under ``flexnode/templates``. An
optional override directory (``paths.templates_dir``) is searched first so
operators can replace any file without patching the package.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
)


class TemplateRenderError(RuntimeError):
    """Raised when a template cannot be rendered or written."""


@dataclass(slots=True)
class TemplateEngine:
    """Render templates to strings or files."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Build an engine that prefers templates from *override_dir*."""
        loaders = []
        if override_dir is not None and Path(override_dir).is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("flexnode", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,  # noqa: S701 - renders config files, not HTML
        )
        return cls(environment=environment)

    def render_to_string(self, name: str, context: Mapping[str, object]) -> str:
        """Render template *name* with *context*."""
        try:
            template = self.environment.get_template(name)
            return template.render(**dict(context))
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render {name}: {exc}") from exc

    def render_to_path(
        self,
        name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render *name* into *destination*; return False when unchanged."""
        content = self.render_to_string(name, context)
        return write_atomic(destination, content, mode=mode)


def write_atomic(destination: Path, content: str, *, mode: int = 0o644) -> bool:
    """Atomically replace *destination* with *content* when it differs."""
    destination = Path(destination)
    try:
        if destination.exists() and destination.read_text(encoding="utf-8") == content:
            if (destination.stat().st_mode & 0o777) != mode:
                os.chmod(destination, mode)
            return False
    except OSError as exc:
        raise TemplateRenderError(f"Failed to read {destination}: {exc}") from exc

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(destination.parent),
            prefix=f".{destination.name}.",
        )
    except OSError as exc:
        raise TemplateRenderError(f"Failed to prepare {destination}: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, destination)
    except OSError as exc:
        raise TemplateRenderError(f"Failed to write {destination}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)
    return True


__all__ = ["TemplateEngine", "TemplateRenderError", "write_atomic"]
