"""Filesystem operations with privilege fallback and dry-run awareness."""
from __future__ import annotations

import logging
import os
import platform
import shutil
import tempfile
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .commands import CommandError, CommandRunner

if TYPE_CHECKING:
    from ..bootstrapper.steps import RunContext

LOGGER = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 600.0
CHUNK_SIZE = 1024 * 1024

_MACHINE_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv7": "arm",
    "x86": "386",
}


class FileSystemError(RuntimeError):
    """Raised when a filesystem operation fails."""


def normalise_architecture(machine: str) -> str:
    """Map a machine string (``uname -m`` style) to a release-artifact arch."""
    return _MACHINE_ARCH.get(machine.strip().lower(), machine.strip().lower())


@dataclass(slots=True)
class FileSystem:
    """File helpers used by components; writes honour the runner's dry-run."""

    commands: CommandRunner

    @property
    def dry_run(self) -> bool:
        return self.commands.dry_run

    def file_exists(self, path: str | Path) -> bool:
        return Path(path).is_file()

    def file_exists_and_valid(self, path: str | Path) -> bool:
        """Return True for an existing, non-empty file."""
        candidate = Path(path)
        try:
            return candidate.is_file() and candidate.stat().st_size > 0
        except OSError:
            return False

    def directory_exists(self, path: str | Path) -> bool:
        return Path(path).is_dir()

    def create_directory(self, path: str | Path, *, mode: int = 0o755) -> None:
        """Create *path* and its parents."""
        target = Path(path)
        if self.dry_run:
            LOGGER.info("[dry-run] mkdir -p %s", target)
            return
        try:
            target.mkdir(parents=True, exist_ok=True, mode=mode)
        except PermissionError:
            self._privileged(["mkdir", "-p", str(target)])
        except OSError as exc:
            raise FileSystemError(f"Failed to create directory {target}: {exc}") from exc

    def write_file(self, path: str | Path, content: str | bytes, *, mode: int = 0o644) -> bool:
        """Atomically write *content*; return False when it is unchanged."""
        target = Path(path)
        data = content.encode("utf-8") if isinstance(content, str) else content
        try:
            if target.is_file() and target.read_bytes() == data:
                return False
        except PermissionError:
            LOGGER.debug("Cannot read %s for comparison; rewriting", target)
        if self.dry_run:
            LOGGER.info("[dry-run] write %s (%d bytes, mode %o)", target, len(data), mode)
            return True
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            self._write_atomic(target, data, mode)
        except PermissionError:
            self._write_privileged(target, data, mode)
        except OSError as exc:
            raise FileSystemError(f"Failed to write {target}: {exc}") from exc
        return True

    def read_file(self, path: str | Path) -> bytes:
        target = Path(path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise FileSystemError(f"Failed to read {target}: {exc}") from exc

    def read_text(self, path: str | Path) -> str:
        return self.read_file(path).decode("utf-8")

    def remove_file(self, path: str | Path) -> bool:
        """Remove *path*; return False when it was already absent."""
        target = Path(path)
        if not target.exists() and not target.is_symlink():
            return False
        if self.dry_run:
            LOGGER.info("[dry-run] rm -f %s", target)
            return True
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except PermissionError:
            self._privileged(["rm", "-f", str(target)])
        except OSError as exc:
            raise FileSystemError(f"Failed to remove {target}: {exc}") from exc
        return True

    def remove_directory(self, path: str | Path) -> bool:
        """Remove *path* recursively; return False when it was already absent."""
        target = Path(path)
        if not target.exists():
            return False
        if self.dry_run:
            LOGGER.info("[dry-run] rm -rf %s", target)
            return True
        try:
            shutil.rmtree(target)
        except FileNotFoundError:
            return False
        except PermissionError:
            self._privileged(["rm", "-rf", str(target)])
        except OSError as exc:
            raise FileSystemError(f"Failed to remove {target}: {exc}") from exc
        return True

    def chmod(self, path: str | Path, mode: int) -> None:
        target = Path(path)
        if self.dry_run:
            return
        try:
            os.chmod(target, mode)
        except PermissionError:
            self._privileged(["chmod", f"{mode:o}", str(target)])
        except OSError as exc:
            raise FileSystemError(f"Failed to chmod {target}: {exc}") from exc

    def copy_file(self, source: str | Path, destination: str | Path, *, mode: int = 0o755) -> None:
        """Copy *source* over *destination* and set *mode*."""
        if self.dry_run:
            LOGGER.info("[dry-run] cp %s %s", source, destination)
            return
        try:
            shutil.copyfile(source, destination)
            os.chmod(destination, mode)
        except PermissionError:
            self._privileged(["install", "-m", f"{mode:o}", str(source), str(destination)])
        except OSError as exc:
            raise FileSystemError(f"Failed to copy {source} to {destination}: {exc}") from exc

    def symlink(self, source: str | Path, link: str | Path) -> None:
        """Point *link* at *source*, replacing an existing link."""
        self.commands.run(["ln", "-sf", str(source), str(link)], privileged=True)

    def download_file(
        self,
        url: str,
        destination: str | Path,
        *,
        ctx: RunContext | None = None,
        timeout: float = DOWNLOAD_TIMEOUT,
        mode: int = 0o644,
    ) -> Path:
        """Stream *url* into *destination*, checking *ctx* between chunks."""
        target = Path(destination)
        if self.dry_run:
            LOGGER.info("[dry-run] download %s -> %s", url, target)
            return target
        if ctx is not None:
            ctx.check()
        LOGGER.info("Downloading %s", url)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.")
        tmp_path = Path(tmp_name)
        try:
            request = urllib.request.Request(url, headers={"User-Agent": "aks-flex-node"})  # noqa: S310
            with os.fdopen(fd, "wb") as handle:
                with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
                    status = getattr(response, "status", 200)
                    if status != 200:
                        raise FileSystemError(f"download failed with status {status} for {url}")
                    for chunk in iter(lambda: response.read(CHUNK_SIZE), b""):
                        if ctx is not None:
                            ctx.check()
                        handle.write(chunk)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, target)
        except urllib.error.HTTPError as exc:
            raise FileSystemError(
                f"download failed with status {exc.code} for {url}"
            ) from exc
        except urllib.error.URLError as exc:
            raise FileSystemError(f"failed to download from {url}: {exc.reason}") from exc
        except OSError as exc:
            raise FileSystemError(f"failed to write file {target}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)
        return target

    def extract_tar_gz(
        self,
        archive: str | Path,
        destination: str | Path,
        *,
        members: list[str] | None = None,
        strip_components: int = 0,
        ctx: RunContext | None = None,
    ) -> None:
        """Extract *archive* into *destination* through ``tar``."""
        args = ["tar", "-C", str(destination)]
        if strip_components:
            args.append(f"--strip-components={strip_components}")
        args.extend(["-xzf", str(archive)])
        args.extend(members or [])
        self.commands.run(args, privileged=True, ctx=ctx, error_prefix="tar extract")

    def extract_zip(
        self,
        archive: str | Path,
        destination: str | Path,
        *,
        ctx: RunContext | None = None,
    ) -> None:
        """Extract a zip archive through ``tar`` (bsdtar reads zip files)."""
        self.commands.run(
            ["tar", "-C", str(destination), "-xf", str(archive)],
            privileged=True,
            ctx=ctx,
            error_prefix="tar extract",
        )

    def get_architecture(self) -> str:
        """Return ``amd64``, ``arm64`` or ``arm`` (or the raw machine string)."""
        if os.name == "nt":
            return normalise_architecture(os.environ.get("PROCESSOR_ARCHITECTURE", ""))
        return normalise_architecture(platform.machine())

    # ------------------------------------------------------------------
    def _write_atomic(self, target: Path, data: bytes, mode: int) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, target)
        finally:
            tmp_path.unlink(missing_ok=True)

    def _write_privileged(self, target: Path, data: bytes, mode: int) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix="aks-flex-node-")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            self._privileged(["mkdir", "-p", str(target.parent)])
            self._privileged(["install", "-m", f"{mode:o}", str(tmp_path), str(target)])
        finally:
            tmp_path.unlink(missing_ok=True)

    def _privileged(self, args: list[str]) -> None:
        try:
            self.commands.run(args, privileged=True)
        except CommandError as exc:
            raise FileSystemError(str(exc)) from exc


__all__ = ["FileSystem", "FileSystemError", "normalise_architecture"]
