"""
Rsync adapter — mirror controller-side project files onto a host.

rsync always runs on the controller. The host connection supplies the
destination spec and, for SSH hosts, the ``-e`` transport. Ownership
and permission bits are never transferred; deletion mirrors the
source exactly inside each synced path.
"""

from __future__ import annotations

import logging
from pathlib import Path

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.hosts.subprocess_runner import run_subprocess
from provisioner.core.models.action import Receipt

logger = logging.getLogger(__name__)

_BASE_ARGS = [
    "rsync",
    "--archive",
    "--relative",
    "--delete",
    "--no-perms",
    "--no-owner",
    "--no-group",
    "--itemize-changes",
]

# Itemized lines that mean content was transferred, created or deleted.
# Lines starting with "." only report attribute refreshes.
_CHANGE_PREFIXES = (">", "<", "c", "h", "*deleting")


def itemized_changes(output: str) -> list[str]:
    """Filter ``--itemize-changes`` output down to real changes."""
    return [line for line in output.splitlines() if line.startswith(_CHANGE_PREFIXES)]


class RsyncAdapter(Adapter):
    """Push a set of paths from a local project root to a host directory.

    Action params:
        operation (str): 'push'.
        source_root (str): Local directory the paths are relative to.
        paths (list[str]): Relative paths under ``source_root``.
        dest (str): Destination directory on the host (``~`` expands).
        timeout (int): Seconds allowed for the transfer.
    """

    @property
    def name(self) -> str:
        return "rsync"

    def is_available(self) -> bool:
        return run_subprocess(["rsync", "--version"], timeout=10)["ok"]

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = self._require_operation(context, {"push"})
        if not ok:
            return ok, msg
        for key in ("source_root", "paths", "dest"):
            if not context.params.get(key):
                return False, f"Missing required param: '{key}'"
        root = Path(context.params["source_root"])
        if not root.is_dir():
            return False, f"Source root is not a directory: {root}"
        missing = [p for p in context.params["paths"] if not (root / p).exists()]
        if missing:
            return False, f"Source paths not found under {root}: {', '.join(missing)}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        assert self.connection is not None
        dest = self.connection.expand_path(context.params["dest"]).rstrip("/") + "/"
        target, transport = self.connection.sync_target(dest)
        paths = [f"./{p.strip('/')}" for p in context.params["paths"]]
        cmd = [*_BASE_ARGS, *transport, *paths, target]

        logger.info("[%s] rsync %s → %s", context.host, ", ".join(context.params["paths"]), dest)
        result = run_subprocess(
            cmd,
            timeout=context.params.get("timeout", 300),
            cwd=context.params["source_root"],
        )
        if not result["ok"]:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=(result.get("stderr") or "").strip() or result.get("error", "rsync failed"),
                metadata={"dest": dest},
            )

        changes = itemized_changes(result.get("stdout", ""))
        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output="\n".join(changes),
            changed=bool(changes),
            metadata={"dest": dest, "changes": len(changes)},
        )
