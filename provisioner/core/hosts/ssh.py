"""
SSH host — provision a remote machine over OpenSSH.

Every primitive is a remote command sent through the system ``ssh``
client in batch mode (key-based auth, no prompts). Privileged steps
are wrapped in ``sudo -n`` unless the remote user is root.

The remote tree checksum is the shell pipeline the in-process
verifier mirrors, so local and remote hosts agree on pinned digests.
"""

from __future__ import annotations

import logging
import shlex
from typing import Any

from provisioner.core.errors import CommandFailure, NetworkFailure, PathUnreadable
from provisioner.core.hosts.base import HostConnection
from provisioner.core.hosts.subprocess_runner import run_subprocess

logger = logging.getLogger(__name__)

# Exit code the checksum script uses for "root is not a directory"
_EXIT_NO_ROOT = 3

_TREE_CHECKSUM_SCRIPT = (
    '[ -d "$1" ] || exit 3; '
    'cd "$1" && LC_ALL=C find . -xtype f -print0 '
    "| LC_ALL=C sort -z | xargs -0 -r cat "
    '| "$2"sum | cut -d" " -f1'
)

_WRITE_STDIN_SCRIPT = 'cat > "$1"'


class SshHost(HostConnection):
    """A remote machine reached with ``ssh``."""

    @property
    def target(self) -> str:
        if self.config.user:
            return f"{self.config.user}@{self.config.address}"
        return self.config.address

    def ssh_command(self, remote: str) -> list[str]:
        """Build the local argv that runs ``remote`` (a shell string) on the host."""
        cmd = [
            "ssh",
            "-o", "BatchMode=yes",
            "-o", "ConnectTimeout=10",
            "-p", str(self.config.port),
        ]
        if self.config.identity_file:
            cmd += ["-i", self.config.identity_file]
        cmd += [self.target, "--", remote]
        return cmd

    def sync_target(self, path: str) -> tuple[str, list[str]]:
        transport = self.ssh_command("")[:-3]
        return f"{self.target}:{path}", ["-e", shlex.join(transport)]

    def _remote_string(
        self,
        cmd: list[str],
        sudo: bool,
        cwd: str | None,
        env: dict[str, str] | None,
    ) -> str:
        argv = list(cmd)
        if env:
            argv = ["env", *(f"{k}={v}" for k, v in env.items()), *argv]
        if sudo and self.config.become and self.config.user != "root":
            argv = ["sudo", "-n", *argv]
        remote = shlex.join(argv)
        if cwd:
            remote = f"cd {shlex.quote(cwd)} && {remote}"
        return remote

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
        remote = self._remote_string(cmd, sudo, cwd, env)
        return run_subprocess(
            self.ssh_command(remote),
            timeout=timeout or self.command_timeout,
            input_text=input_text,
        )

    def _check(self, step: str, result: dict[str, Any]) -> dict[str, Any]:
        if not result["ok"]:
            detail = (result.get("stderr") or "").strip() or result.get("error", "failed")
            raise CommandFailure(f"{step} on {self.name}", detail)
        return result

    # ── Observers ───────────────────────────────────────────────

    def exists(self, path: str) -> bool:
        return self.run(["test", "-e", path])["ok"]

    def _lookup_home(self) -> str:
        result = self._check("home lookup", self.run(["sh", "-c", 'printf %s "$HOME"']))
        return result["stdout"].strip()

    def tree_checksum(self, root: str, algorithm: str) -> str:
        result = self.run(["sh", "-c", _TREE_CHECKSUM_SCRIPT, "sh", root, algorithm])
        if result.get("returncode") == _EXIT_NO_ROOT:
            raise PathUnreadable(root)
        return self._check("tree checksum", result)["stdout"].strip()

    def file_checksum(self, path: str, algorithm: str) -> str:
        result = self.run([f"{algorithm}sum", path])
        if not result["ok"]:
            raise PathUnreadable(path)
        return result["stdout"].split(" ", 1)[0].strip()

    def read_text(self, path: str) -> str:
        result = self.run(["cat", path])
        if not result["ok"]:
            raise PathUnreadable(path)
        return result["stdout"]

    # ── Mutators ────────────────────────────────────────────────

    def download(self, url: str, dest: str, *, timeout: int, mode: int = 0o700) -> None:
        part = f"{dest}.part"
        result = self.run(
            ["curl", "-fsSL", "--max-time", str(timeout), "-o", part, url],
            timeout=timeout + 10,
        )
        if not result["ok"]:
            self.run(["rm", "-f", part])
            detail = (result.get("stderr") or "").strip() or result.get("error", "")
            raise NetworkFailure(f"Download of {url} on {self.name} failed: {detail}")
        self._check("chmod", self.run(["chmod", f"{mode:o}", part]))
        self._check("rename", self.run(["mv", "-f", part, dest]))

    def remove_tree(self, path: str, *, sudo: bool = False) -> None:
        self._check("remove", self.run(["rm", "-rf", "--", path], sudo=sudo))

    def make_dir(self, path: str, *, mode: int = 0o755, sudo: bool = False) -> None:
        self._check("mkdir", self.run(["install", "-d", "-m", f"{mode:o}", path], sudo=sudo))

    def rename(self, src: str, dst: str, *, sudo: bool = False) -> None:
        self._check("rename", self.run(["mv", "-T", src, dst], sudo=sudo))

    def extract_tar(
        self,
        archive: str,
        dest: str,
        *,
        member: str,
        strip_components: int,
        sudo: bool = False,
    ) -> None:
        self._check(
            "extract",
            self.run(
                [
                    "tar", "-xf", archive,
                    "-C", dest,
                    "--no-same-owner",
                    f"--strip-components={strip_components}",
                    member,
                ],
                sudo=sudo,
            ),
        )

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
        if mode is None and not (owner or group):
            # In-place write keeps the existing file's mode
            self._check(
                "write",
                self.run(["sh", "-c", _WRITE_STDIN_SCRIPT, "sh", path], sudo=sudo, input_text=content),
            )
            return

        tmp = f"{path}.provisioner-tmp"
        self._check(
            "write",
            self.run(["sh", "-c", _WRITE_STDIN_SCRIPT, "sh", tmp], sudo=sudo, input_text=content),
        )
        self._check("chmod", self.run(["chmod", f"{mode if mode is not None else 0o644:o}", tmp], sudo=sudo))
        if owner or group:
            spec = f"{owner or ''}:{group or ''}" if group else owner
            self._check("chown", self.run(["chown", spec or "", tmp], sudo=sudo))
        self._check("rename", self.run(["mv", "-f", tmp, path], sudo=sudo))

    def copy_file(self, src: str, dst: str, *, sudo: bool = False) -> None:
        tmp = f"{dst}.provisioner-tmp"
        self._check("copy", self.run(["cp", "-p", src, tmp], sudo=sudo))
        self._check("rename", self.run(["mv", "-f", tmp, dst], sudo=sudo))
