"""
Adapter registry — per-host dispatch of actions to adapters.

Services hand an ``Action`` to the registry and get a ``Receipt`` back;
they never call adapters themselves. ``build_registry`` creates one
registry per host run with every adapter bound to that host's
connection, so hosts provisioned side by side share nothing.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.models.action import Action, Receipt

if TYPE_CHECKING:
    from provisioner.core.hosts.base import HostConnection

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Adapters of one host, looked up by name."""

    def __init__(self, host: str = "localhost"):
        self._host = host
        self._adapters: dict[str, Adapter] = {}

    @property
    def host(self) -> str:
        return self._host

    def register(self, adapter: Adapter) -> None:
        if adapter.name in self._adapters:
            logger.warning("[%s] Replacing adapter %s", self._host, adapter.name)
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        return list(self._adapters)

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Whether each adapter's tool exists on the host."""
        report: dict[str, dict[str, Any]] = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                logger.debug("[%s] %s availability check raised", self._host, name, exc_info=True)
                available = False
            report[name] = {"name": name, "available": available, "type": type(adapter).__name__}
        return report

    def execute_action(self, action: Action) -> Receipt:
        """Validate and run ``action`` on its adapter. Never raises.

        Failures of any kind (unknown adapter, rejected params, an
        adapter that raised) come back as a failed Receipt.
        """
        started = time.monotonic()

        adapter = self._adapters.get(action.adapter)
        if adapter is None:
            return self._failed(action, f"No adapter registered for '{action.adapter}'")

        context = ExecutionContext(
            action=action,
            host=action.for_host or self._host,
            params=action.params,
        )

        try:
            valid, reason = adapter.validate(context)
        except Exception as e:
            return self._failed(action, f"Validation error: {e}")
        if not valid:
            return self._failed(action, f"Validation failed: {reason}")

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            logger.error("[%s] Adapter %s raised on %s: %s", context.host, action.adapter, action.id, e)
            receipt = self._failed(action, f"Unexpected error: {e}")

        receipt.duration_ms = int((time.monotonic() - started) * 1000)
        return receipt

    @staticmethod
    def _failed(action: Action, error: str) -> Receipt:
        return Receipt.failure(adapter=action.adapter, action_id=action.id, error=error)


def build_registry(connection: HostConnection) -> AdapterRegistry:
    """Registry with every provisioning adapter bound to ``connection``."""
    from provisioner.adapters.shell.command import ShellCommandAdapter
    from provisioner.adapters.sync.rsync import RsyncAdapter
    from provisioner.adapters.system.dkms import DkmsAdapter
    from provisioner.adapters.system.packages import PackageAdapter
    from provisioner.adapters.system.systemd import SystemdAdapter
    from provisioner.adapters.system.toolchain import RustupAdapter

    registry = AdapterRegistry(host=connection.name)
    for adapter_cls in (
        ShellCommandAdapter,
        PackageAdapter,
        DkmsAdapter,
        RustupAdapter,
        SystemdAdapter,
        RsyncAdapter,
    ):
        registry.register(adapter_cls(connection))
    return registry
