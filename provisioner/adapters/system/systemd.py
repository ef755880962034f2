"""
Systemd adapter — converge unit enablement and run state.

``enable``, ``disable`` and ``start`` observe the unit first and skip
when it is already in the requested state. ``restart``, ``reenable``
and ``daemon-reload`` always act (they are only issued when something
changed).
"""

from __future__ import annotations

import logging

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.models.action import Receipt

logger = logging.getLogger(__name__)

_OPERATIONS = {
    "is-active", "is-enabled",
    "enable", "disable", "reenable",
    "start", "stop", "restart",
    "daemon-reload",
}

# operation → (query, value that means "already converged")
_CONVERGED = {
    "enable": ("is-enabled", "enabled"),
    "disable": ("is-enabled", "disabled"),
    "start": ("is-active", "active"),
    "stop": ("is-active", "inactive"),
}


class SystemdAdapter(Adapter):
    """Manage systemd units.

    Action params:
        operation (str): see ``_OPERATIONS``.
        unit (str): Unit name (e.g. 'roestbak.service'); not needed
            for 'daemon-reload'.
    """

    @property
    def name(self) -> str:
        return "systemd"

    def is_available(self) -> bool:
        return self._which("systemctl")

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = self._require_operation(context, _OPERATIONS)
        if not ok:
            return ok, msg
        if context.operation != "daemon-reload" and not context.params.get("unit"):
            return False, "Missing required param: 'unit'"
        return True, ""

    def query(self, verb: str, unit: str) -> str:
        """``systemctl is-active|is-enabled UNIT`` → its one-word answer."""
        assert self.connection is not None
        result = self.connection.run(["systemctl", verb, unit], timeout=30)
        return (result.get("stdout") or "").strip() or "unknown"

    def execute(self, context: ExecutionContext) -> Receipt:
        assert self.connection is not None
        operation = context.operation
        unit = context.params.get("unit", "")
        action_id = context.action.id

        if operation in ("is-active", "is-enabled"):
            value = self.query(operation, unit)
            return Receipt.success(
                adapter=self.name,
                action_id=action_id,
                output=value,
                metadata={"unit": unit, operation: value},
            )

        if operation in _CONVERGED:
            verb, wanted = _CONVERGED[operation]
            current = self.query(verb, unit)
            if current == wanted:
                return Receipt.skip(
                    adapter=self.name,
                    action_id=action_id,
                    reason=f"{unit} already {wanted}",
                    metadata={"unit": unit, verb: current},
                )

        cmd = ["systemctl", operation] if operation == "daemon-reload" else ["systemctl", operation, unit]
        logger.info("[%s] systemctl %s %s", context.host, operation, unit)
        result = self.connection.run(cmd, sudo=True, timeout=90)
        if not result["ok"]:
            return Receipt.failure(
                adapter=self.name,
                action_id=action_id,
                error=(result.get("stderr") or "").strip() or result.get("error", "systemctl failed"),
                metadata={"unit": unit},
            )
        return Receipt.success(
            adapter=self.name,
            action_id=action_id,
            output=f"{operation} {unit}".strip(),
            changed=True,
            metadata={"unit": unit},
        )
