"""
Package adapter — ensure OS packages are present or absent.

Observes first, converges second: a package already in the requested
state yields a ``skipped`` receipt and no package-manager write.

Supported package managers:
    apt  → dpkg-query -W -f='${Status}' PKG / apt-get install|remove
    dnf  → rpm -q PKG                       / dnf install|remove
"""

from __future__ import annotations

import logging

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.models.action import Receipt

logger = logging.getLogger(__name__)

_MANAGERS = ("apt", "dnf")

_INSTALL = {
    "apt": ["apt-get", "install", "-y", "-q"],
    "dnf": ["dnf", "install", "-y", "-q"],
}
_REMOVE = {
    "apt": ["apt-get", "remove", "-y", "-q"],
    "dnf": ["dnf", "remove", "-y", "-q"],
}
_ENV = {
    "apt": {"DEBIAN_FRONTEND": "noninteractive"},
    "dnf": {},
}


class PackageAdapter(Adapter):
    """Converge OS packages.

    Action params:
        operation (str): 'status' or 'ensure'.
        package (str): Package name (distro naming).
        state (str): 'present' (default) or 'absent'.
        manager (str): Force a package manager (default: auto-detect).
        timeout (int): Install timeout in seconds.
    """

    def __init__(self, connection=None):
        super().__init__(connection)
        self._manager: str | None = None

    @property
    def name(self) -> str:
        return "packages"

    def is_available(self) -> bool:
        return self._detect_manager() is not None

    def _detect_manager(self) -> str | None:
        if self._manager is None:
            if self._which("apt-get"):
                self._manager = "apt"
            elif self._which("dnf"):
                self._manager = "dnf"
        return self._manager

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = self._require_operation(context, {"status", "ensure"})
        if not ok:
            return ok, msg
        if not context.params.get("package"):
            return False, "Missing required param: 'package'"
        state = context.params.get("state", "present")
        if state not in ("present", "absent"):
            return False, f"Invalid state '{state}'. Valid: absent, present"
        manager = context.params.get("manager")
        if manager and manager not in _MANAGERS:
            return False, f"Unsupported package manager '{manager}'"
        return True, ""

    def is_installed(self, package: str, manager: str) -> bool:
        """Query the package database. Never raises."""
        assert self.connection is not None
        if manager == "apt":
            result = self.connection.run(["dpkg-query", "-W", "-f=${Status}", package], timeout=30)
            return result["ok"] and "install ok installed" in result.get("stdout", "")
        result = self.connection.run(["rpm", "-q", package], timeout=30)
        return result["ok"]

    def execute(self, context: ExecutionContext) -> Receipt:
        package = context.params["package"]
        state = context.params.get("state", "present")
        manager = context.params.get("manager") or self._detect_manager()
        action_id = context.action.id

        if manager is None:
            return Receipt.failure(
                adapter=self.name,
                action_id=action_id,
                error="No supported package manager found (apt-get, dnf)",
            )

        installed = self.is_installed(package, manager)
        metadata = {"package": package, "manager": manager, "installed": installed}

        if context.operation == "status":
            return Receipt.success(
                adapter=self.name,
                action_id=action_id,
                output="present" if installed else "absent",
                metadata=metadata,
            )

        if installed == (state == "present"):
            return Receipt.skip(
                adapter=self.name,
                action_id=action_id,
                reason=f"{package} already {state}",
                metadata=metadata,
            )

        assert self.connection is not None
        cmd = (_INSTALL if state == "present" else _REMOVE)[manager] + [package]
        logger.info("[%s] %s %s", context.host, "Installing" if state == "present" else "Removing", package)
        result = self.connection.run(
            cmd,
            sudo=True,
            timeout=context.params.get("timeout", 600),
            env=_ENV[manager] or None,
        )
        if not result["ok"]:
            return Receipt.failure(
                adapter=self.name,
                action_id=action_id,
                error=(result.get("stderr") or "").strip() or result.get("error", "failed"),
                metadata=metadata,
            )
        return Receipt.success(
            adapter=self.name,
            action_id=action_id,
            output=f"{package} {state}",
            changed=True,
            metadata={**metadata, "installed": state == "present"},
        )
