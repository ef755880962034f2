"""
Rust toolchain adapter — rustup bootstrap, update, and cargo builds.

Operations:
    status   read-only; whether rustup and cargo are present
    install  download the rustup installer and run it, unless rustup
             already exists; the optional sha256 pins the installer
    update   ``rustup update``; ``changed`` when a toolchain moved
    build    ``cargo ARGS`` in a project directory
"""

from __future__ import annotations

import logging
import re

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.errors import NetworkFailure, PathUnreadable
from provisioner.core.models.action import Receipt

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 4000

# "stable-x86_64-unknown-linux-gnu updated - rustc 1.79.0 (from rustc 1.78.0)"
_UPDATED_RE = re.compile(r"\b(updated|installed)\b")

# cargo reports every crate it actually rebuilt
_COMPILING_RE = re.compile(r"^\s*Compiling\s", re.MULTILINE)


class RustupAdapter(Adapter):
    """Manage a per-user Rust toolchain installed by rustup.

    Action params:
        operation (str): 'status', 'install', 'update' or 'build'.
        rustup_bin (str): Path to rustup (``~`` expands on the host).
        cargo_bin (str): Path to cargo.
        installer_url (str): rustup-init script URL ('install').
        installer_path (str): Where to stage the installer ('install').
        installer_args (list[str]): Installer arguments ('install').
        installer_sha256 (str): Expected installer digest ('install', optional).
        args (list[str]): cargo arguments ('build').
        cwd (str): Project directory ('build').
        timeout (int): Seconds allowed for the step.
    """

    @property
    def name(self) -> str:
        return "toolchain"

    def is_available(self) -> bool:
        return self._which("sh")

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = self._require_operation(context, {"status", "install", "update", "build"})
        if not ok:
            return ok, msg
        required = {
            "status": ("rustup_bin", "cargo_bin"),
            "install": ("rustup_bin", "installer_url", "installer_path"),
            "update": ("rustup_bin",),
            "build": ("cargo_bin", "cwd"),
        }[context.operation]
        for key in required:
            if not context.params.get(key):
                return False, f"Missing required param: '{key}'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        op = context.operation
        if op == "status":
            return self._status(context)
        if op == "install":
            return self._install(context)
        if op == "update":
            return self._update(context)
        return self._build(context)

    # ── Operations ──────────────────────────────────────────────

    def _status(self, ctx: ExecutionContext) -> Receipt:
        assert self.connection is not None
        rustup = self.connection.expand_path(ctx.params["rustup_bin"])
        cargo = self.connection.expand_path(ctx.params["cargo_bin"])
        rustup_present = self.connection.exists(rustup)
        cargo_present = self.connection.exists(cargo)
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output="present" if rustup_present and cargo_present else "absent",
            metadata={
                "rustup": rustup,
                "cargo": cargo,
                "rustup_present": rustup_present,
                "cargo_present": cargo_present,
            },
        )

    def _install(self, ctx: ExecutionContext) -> Receipt:
        assert self.connection is not None
        rustup = self.connection.expand_path(ctx.params["rustup_bin"])
        if self.connection.exists(rustup):
            return Receipt.skip(
                adapter=self.name,
                action_id=ctx.action.id,
                reason=f"rustup already installed at {rustup}",
                metadata={"rustup": rustup},
            )

        url = ctx.params["installer_url"]
        installer = ctx.params["installer_path"]
        timeout = ctx.params.get("timeout", 600)
        logger.info("[%s] Bootstrapping rustup from %s", ctx.host, url)

        try:
            self.connection.download(url, installer, timeout=timeout, mode=0o700)
        except NetworkFailure as e:
            return Receipt.failure(adapter=self.name, action_id=ctx.action.id, error=str(e))

        expected = (ctx.params.get("installer_sha256") or "").strip().lower()
        if expected:
            try:
                actual = self.connection.file_checksum(installer, "sha256")
            except PathUnreadable as e:
                return Receipt.failure(adapter=self.name, action_id=ctx.action.id, error=str(e))
            if actual != expected:
                self.connection.remove_tree(installer)
                return Receipt.failure(
                    adapter=self.name,
                    action_id=ctx.action.id,
                    error=f"Installer checksum mismatch: expected {expected}, got {actual}",
                    metadata={"expected": expected, "actual": actual},
                )

        result = self.connection.run(
            [installer, *ctx.params.get("installer_args", ["-y"])],
            timeout=timeout,
        )
        if not result["ok"]:
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=(result.get("stderr") or "").strip()[-_OUTPUT_TAIL:] or result.get("error", "installer failed"),
            )

        if not self.connection.exists(rustup):
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=f"Installer finished but {rustup} does not exist",
            )

        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"rustup installed at {rustup}",
            changed=True,
            metadata={"rustup": rustup},
        )

    def _update(self, ctx: ExecutionContext) -> Receipt:
        assert self.connection is not None
        rustup = self.connection.expand_path(ctx.params["rustup_bin"])
        result = self.connection.run([rustup, "update"], timeout=ctx.params.get("timeout", 600))
        # rustup writes its progress to stderr
        output = "\n".join(s for s in (result.get("stdout", ""), result.get("stderr", "")) if s).strip()
        if not result["ok"]:
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=output[-_OUTPUT_TAIL:] or result.get("error", "rustup update failed"),
            )
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=output[-_OUTPUT_TAIL:],
            changed=bool(_UPDATED_RE.search(output)),
        )

    def _build(self, ctx: ExecutionContext) -> Receipt:
        assert self.connection is not None
        cargo = self.connection.expand_path(ctx.params["cargo_bin"])
        cwd = self.connection.expand_path(ctx.params["cwd"])
        args = ctx.params.get("args", ["build", "--release"])
        logger.info("[%s] cargo %s in %s", ctx.host, " ".join(args), cwd)

        result = self.connection.run([cargo, *args], cwd=cwd, timeout=ctx.params.get("timeout", 1800))
        output = "\n".join(s for s in (result.get("stdout", ""), result.get("stderr", "")) if s).strip()
        if not result["ok"]:
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=output or result.get("error", "cargo failed"),
                metadata={"cwd": cwd, "timed_out": result.get("timed_out", False)},
            )
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=output[-_OUTPUT_TAIL:],
            changed=bool(_COMPILING_RE.search(output)),
            metadata={"cwd": cwd},
        )
