"""
Local host — provision the machine the provisioner runs on.

File primitives run in-process (pathlib, shutil, tarfile, urllib).
Commands go through the shared subprocess runner; ``sudo=True``
commands are prefixed with ``sudo -n`` unless already root. In-process
file writes to privileged paths need the provisioner itself to run as
root.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import tempfile
import time
import urllib.error
import urllib.request
from pathlib import Path, PurePosixPath
from typing import Any, Callable

from provisioner import __version__
from provisioner.core.errors import CommandFailure, NetworkFailure, PathUnreadable
from provisioner.core.hosts.base import HostConnection
from provisioner.core.hosts.subprocess_runner import run_subprocess
from provisioner.core.services.source_install.checksum import (
    compute_file_checksum,
    compute_tree_checksum,
)

logger = logging.getLogger(__name__)

_USER_AGENT = f"roestbak-provisioner/{__version__}"
_CHUNK_SIZE = 1 << 16


def _strip_filter(
    member_prefix: str,
    strip_components: int,
) -> Callable[[tarfile.TarInfo, str], tarfile.TarInfo | None]:
    """Tar extraction filter equivalent to ``tar --strip-components=N PREFIX``.

    Members outside ``member_prefix`` are skipped, the remaining names
    lose their first ``strip_components`` segments, and the result is
    passed through the stdlib ``data`` filter (no absolute paths, no
    escaping links, no setuid bits).
    """
    prefix = PurePosixPath(member_prefix).parts

    def _filter(member: tarfile.TarInfo, dest_path: str) -> tarfile.TarInfo | None:
        parts = PurePosixPath(member.name).parts
        if parts[: len(prefix)] != prefix:
            return None
        stripped = parts[strip_components:]
        if not stripped:
            return None

        changes: dict[str, Any] = {"name": "/".join(stripped)}
        if member.islnk():
            link_parts = PurePosixPath(member.linkname).parts[strip_components:]
            if not link_parts:
                return None
            changes["linkname"] = "/".join(link_parts)

        return tarfile.data_filter(member.replace(**changes, deep=False), dest_path)

    return _filter


class LocalHost(HostConnection):
    """The machine the provisioner is running on."""

    def run(
        self,
        cmd: list[str],
        *,
        sudo: bool = False,
        timeout: int | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        input_text: str | None = None,
    ) -> dict[str, Any]:
        if sudo and self.config.become and os.geteuid() != 0:
            # sudo resets the environment, so pass overrides on its command line
            env_args = [f"{k}={v}" for k, v in (env or {}).items()]
            cmd = ["sudo", "-n", *(["env", *env_args] if env_args else []), *cmd]
            env = None
        return run_subprocess(
            cmd,
            timeout=timeout or self.command_timeout,
            env_overrides=env,
            cwd=cwd,
            input_text=input_text,
        )

    # ── Observers ───────────────────────────────────────────────

    def exists(self, path: str) -> bool:
        return Path(path).exists()

    def _lookup_home(self) -> str:
        return str(Path.home())

    def tree_checksum(self, root: str, algorithm: str) -> str:
        return compute_tree_checksum(root, algorithm)

    def file_checksum(self, path: str, algorithm: str) -> str:
        return compute_file_checksum(path, algorithm)

    def read_text(self, path: str) -> str:
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise PathUnreadable(path) from e

    # ── Mutators ────────────────────────────────────────────────

    def download(self, url: str, dest: str, *, timeout: int, mode: int = 0o700) -> None:
        target = Path(dest)
        target.parent.mkdir(parents=True, exist_ok=True)
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})

        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
        tmp = Path(tmp_path)
        try:
            # urlopen's timeout is per socket read; ``timeout`` bounds the whole transfer
            deadline = time.monotonic() + timeout
            with os.fdopen(fd, "wb") as out, urllib.request.urlopen(request, timeout=timeout) as resp:
                while chunk := resp.read(_CHUNK_SIZE):
                    out.write(chunk)
                    if time.monotonic() > deadline:
                        raise TimeoutError(f"transfer exceeded {timeout}s")
            tmp.chmod(mode)
            os.replace(tmp, target)
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            tmp.unlink(missing_ok=True)
            raise NetworkFailure(f"Download of {url} failed: {e}") from e
        logger.debug("Downloaded %s → %s", url, dest)

    def remove_tree(self, path: str, *, sudo: bool = False) -> None:
        target = Path(path)
        try:
            if target.is_symlink() or target.is_file():
                target.unlink()
            elif target.exists():
                shutil.rmtree(target)
        except OSError as e:
            raise CommandFailure("remove", f"{path}: {e}") from e

    def make_dir(self, path: str, *, mode: int = 0o755, sudo: bool = False) -> None:
        target = Path(path)
        try:
            target.mkdir(parents=True, exist_ok=True)
            target.chmod(mode)
        except OSError as e:
            raise CommandFailure("mkdir", f"{path}: {e}") from e

    def rename(self, src: str, dst: str, *, sudo: bool = False) -> None:
        try:
            os.rename(src, dst)
        except OSError as e:
            raise CommandFailure("rename", f"{src} → {dst}: {e}") from e

    def extract_tar(
        self,
        archive: str,
        dest: str,
        *,
        member: str,
        strip_components: int,
        sudo: bool = False,
    ) -> None:
        try:
            with tarfile.open(archive, "r:*") as tar:
                tar.extractall(dest, filter=_strip_filter(member, strip_components))
        except (tarfile.TarError, OSError) as e:
            raise CommandFailure("extract", f"{archive}: {e}") from e

    def write_text(
        self,
        path: str,
        content: str,
        *,
        mode: int | None = None,
        owner: str | None = None,
        group: str | None = None,
        sudo: bool = False,
    ) -> None:
        target = Path(path)
        if mode is None:
            mode = (target.stat().st_mode & 0o7777) if target.exists() else 0o644
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
            tmp = Path(tmp_path)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                tmp.chmod(mode)
                if owner or group:
                    shutil.chown(tmp, user=owner, group=group)
                os.replace(tmp, target)
            except Exception:
                tmp.unlink(missing_ok=True)
                raise
        except (OSError, LookupError) as e:
            raise CommandFailure("write", f"{path}: {e}") from e

    def copy_file(self, src: str, dst: str, *, sudo: bool = False) -> None:
        target = Path(dst)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
            os.close(fd)
            tmp = Path(tmp_path)
            try:
                shutil.copy(src, tmp)
                # Replace rather than overwrite: the target may be a running binary
                os.replace(tmp, target)
            except Exception:
                tmp.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CommandFailure("copy", f"{src} → {dst}: {e}") from e
