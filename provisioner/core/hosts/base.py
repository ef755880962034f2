"""
Host connection — the protocol contract between services and a target.

Every byte the provisioner reads from or writes to a host goes through
a HostConnection. The provisioning workflow only talks to this
interface, so the same code drives the local machine and remote SSH
targets.

Primitives are split in two groups:
    - Observers (``exists``, ``tree_checksum``, ``file_checksum``,
      ``read_text``, ``home_dir``) never modify the host.
    - Mutators (everything else) do. Converge helpers (``ensure_*``)
      observe first and only mutate when the host differs from the
      requested state, returning whether they changed anything.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import Any

from provisioner.core.errors import CommandFailure, PathUnreadable
from provisioner.core.models.config import HostConfig


class HostConnection(ABC):
    """Abstract base class for host transports."""

    def __init__(self, config: HostConfig, command_timeout: int = 120):
        self.config = config
        self.command_timeout = command_timeout
        self._home: str | None = None

    @property
    def name(self) -> str:
        return self.config.name

    # ── Commands ────────────────────────────────────────────────

    @abstractmethod
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
        """Run a command on the host. Returns the runner's result dict."""

    # ── Observers ───────────────────────────────────────────────

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Whether ``path`` exists on the host (following symlinks)."""

    @abstractmethod
    def _lookup_home(self) -> str:
        """Home directory of the connecting user."""

    @abstractmethod
    def tree_checksum(self, root: str, algorithm: str) -> str:
        """Hex digest over every file's content under ``root``.

        Raises:
            PathUnreadable: root does not exist.
        """

    @abstractmethod
    def file_checksum(self, path: str, algorithm: str) -> str:
        """Hex digest of one file.

        Raises:
            PathUnreadable: file does not exist.
        """

    @abstractmethod
    def read_text(self, path: str) -> str:
        """Read a UTF-8 text file."""

    # ── Mutators ────────────────────────────────────────────────

    @abstractmethod
    def download(self, url: str, dest: str, *, timeout: int, mode: int = 0o700) -> None:
        """Fetch ``url`` to ``dest``, replacing it.

        Raises:
            NetworkFailure: the transfer did not complete.
        """

    @abstractmethod
    def remove_tree(self, path: str, *, sudo: bool = False) -> None:
        """Recursively delete ``path``. Missing paths are not an error."""

    @abstractmethod
    def make_dir(self, path: str, *, mode: int = 0o755, sudo: bool = False) -> None:
        """Create ``path`` (and parents) and set its mode."""

    @abstractmethod
    def rename(self, src: str, dst: str, *, sudo: bool = False) -> None:
        """Atomically rename ``src`` to ``dst`` on the same filesystem."""

    @abstractmethod
    def extract_tar(
        self,
        archive: str,
        dest: str,
        *,
        member: str,
        strip_components: int,
        sudo: bool = False,
    ) -> None:
        """Unpack ``member`` (and everything below it) from ``archive`` into
        ``dest``, dropping ``strip_components`` leading path segments."""

    @abstractmethod
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
        """Write a text file. ``mode=None`` keeps an existing file's mode."""

    @abstractmethod
    def copy_file(self, src: str, dst: str, *, sudo: bool = False) -> None:
        """Copy a file that already lives on the host, preserving its mode."""

    # ── Helpers ─────────────────────────────────────────────────

    def sync_target(self, path: str) -> tuple[str, list[str]]:
        """rsync destination for ``path`` plus the transport arguments
        (``-e ...``) needed to reach it from the controller."""
        return path, []

    def home_dir(self) -> str:
        """Home directory of the connecting user (cached)."""
        if self._home is None:
            self._home = self._lookup_home()
        return self._home

    def username(self) -> str:
        """Login name of the connecting user."""
        if self.config.user:
            return self.config.user
        result = self.run(["id", "-un"], timeout=15)
        if not result["ok"]:
            raise CommandFailure(f"user lookup on {self.name}", result.get("error", "failed"))
        return result["stdout"].strip()

    def expand_path(self, path: str) -> str:
        """Expand a leading ``~`` against the host's home directory."""
        if path == "~":
            return self.home_dir()
        if path.startswith("~/"):
            return f"{self.home_dir().rstrip('/')}/{path[2:]}"
        return path

    def ensure_dir(self, path: str, *, mode: int = 0o755, sudo: bool = False) -> bool:
        """Create a directory if missing. Returns True if it was created."""
        if self.exists(path):
            return False
        self.make_dir(path, mode=mode, sudo=sudo)
        return True

    def ensure_file(
        self,
        path: str,
        content: str,
        *,
        mode: int | None = 0o644,
        owner: str | None = None,
        group: str | None = None,
        sudo: bool = False,
    ) -> bool:
        """Write ``content`` only if the file differs. Returns True if written."""
        wanted = hashlib.sha1(content.encode("utf-8")).hexdigest()
        try:
            if self.file_checksum(path, "sha1") == wanted:
                return False
        except PathUnreadable:
            pass
        self.write_text(path, content, mode=mode, owner=owner, group=group, sudo=sudo)
        return True

    def ensure_copy(self, src: str, dst: str, *, sudo: bool = False) -> bool:
        """Copy ``src`` over ``dst`` only if contents differ. Returns True if copied."""
        source_sum = self.file_checksum(src, "sha1")
        try:
            if self.file_checksum(dst, "sha1") == source_sum:
                return False
        except PathUnreadable:
            pass
        self.copy_file(src, dst, sudo=sudo)
        return True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
