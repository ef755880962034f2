"""
DKMS adapter — module registration with the kernel build subsystem.

Operations:
    status   read-only; reports the registration state for the running kernel
    remove   ``dkms remove MODULE/VERSION --all``; "not in the DKMS tree"
             is reported as ``not_found`` and counts as success
    install  ``dkms install MODULE/VERSION`` (add + build + install)
"""

from __future__ import annotations

import logging
import re

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.models.action import Receipt

logger = logging.getLogger(__name__)

# dkms wording differs between releases
_NOT_FOUND_MARKERS = (
    "is not located in the DKMS tree",
    "There is no instance of",
)

# "hid-xpadneo/abc, 6.1.0-13-amd64, x86_64: installed"
_STATUS_RE = re.compile(r":\s*(installed|built|added)\b")

_DKMS = "/usr/sbin/dkms"


class DkmsAdapter(Adapter):
    """Register, build and deregister out-of-tree kernel modules.

    Action params:
        operation (str): 'status', 'remove' or 'install'.
        module (str): DKMS module name (e.g. 'hid-xpadneo').
        version (str): Module version identifier.
        timeout (int): Seconds allowed for the build ('install').
    """

    @property
    def name(self) -> str:
        return "dkms"

    def is_available(self) -> bool:
        return self._which("dkms")

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = self._require_operation(context, {"status", "remove", "install"})
        if not ok:
            return ok, msg
        for key in ("module", "version"):
            if not context.params.get(key):
                return False, f"Missing required param: '{key}'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        key = f"{context.params['module']}/{context.params['version']}"
        if context.operation == "status":
            return self._status(context, key)
        if context.operation == "remove":
            return self._remove(context, key)
        return self._install(context, key)

    def _status(self, ctx: ExecutionContext, key: str) -> Receipt:
        assert self.connection is not None
        kernel = self.connection.run(["uname", "-r"], timeout=15)
        if not kernel["ok"]:
            return Receipt.failure(adapter=self.name, action_id=ctx.action.id, error="Cannot determine running kernel")
        kernel_release = kernel["stdout"].strip()

        result = self.connection.run(
            [_DKMS, "status", "-m", ctx.params["module"], "-v", ctx.params["version"], "-k", kernel_release],
            timeout=30,
        )
        if not result["ok"]:
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=(result.get("stderr") or "").strip() or result.get("error", "dkms status failed"),
            )

        match = _STATUS_RE.search(result.get("stdout", ""))
        state = match.group(1) if match else "absent"
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=state,
            metadata={"registration": key, "kernel": kernel_release, "state": state},
        )

    def _remove(self, ctx: ExecutionContext, key: str) -> Receipt:
        assert self.connection is not None
        result = self.connection.run([_DKMS, "remove", key, "--all"], sudo=True, timeout=300)
        if result["ok"]:
            logger.info("[%s] Removed DKMS registration %s", ctx.host, key)
            return Receipt.success(
                adapter=self.name,
                action_id=ctx.action.id,
                output="removed",
                changed=True,
                metadata={"registration": key, "result": "removed"},
            )

        stderr = result.get("stderr") or ""
        combined = stderr + (result.get("stdout") or "")
        if any(marker in combined for marker in _NOT_FOUND_MARKERS):
            return Receipt.success(
                adapter=self.name,
                action_id=ctx.action.id,
                output="not_found",
                metadata={"registration": key, "result": "not_found"},
            )

        return Receipt.failure(
            adapter=self.name,
            action_id=ctx.action.id,
            error=stderr.strip() or result.get("error", "dkms remove failed"),
            metadata={"registration": key},
        )

    def _install(self, ctx: ExecutionContext, key: str) -> Receipt:
        assert self.connection is not None
        timeout = ctx.params.get("timeout", 1800)
        logger.info("[%s] Building DKMS module %s", ctx.host, key)
        result = self.connection.run([_DKMS, "install", key], sudo=True, timeout=timeout)
        if result["ok"]:
            return Receipt.success(
                adapter=self.name,
                action_id=ctx.action.id,
                output=result.get("stdout", "").strip()[-4000:],
                changed=True,
                metadata={"registration": key},
            )

        # dkms prints build errors on both streams; keep them verbatim
        detail = "\n".join(
            s for s in ((result.get("stdout") or "").strip(), (result.get("stderr") or "").strip()) if s
        )
        return Receipt.failure(
            adapter=self.name,
            action_id=ctx.action.id,
            error=detail or result.get("error", "dkms install failed"),
            metadata={"registration": key, "timed_out": result.get("timed_out", False)},
        )
