"""
Step runner — the services layer's handle on one host.

Bundles the host connection, its adapter registry and the receipts
collected so far. Services issue adapter actions through ``call()``
and turn failed receipts into ``CommandFailure`` with ``require()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from provisioner.core.errors import CommandFailure
from provisioner.core.models.action import Action, Receipt

if TYPE_CHECKING:
    from provisioner.adapters.registry import AdapterRegistry
    from provisioner.core.hosts.base import HostConnection

logger = logging.getLogger(__name__)


@dataclass
class PhaseResult:
    """Outcome of one provisioning phase on one host."""

    phase: str
    changed: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"phase": self.phase, "changed": self.changed, "details": self.details}


class StepRunner:
    """Executes and records actions against one host."""

    def __init__(
        self,
        connection: HostConnection,
        registry: AdapterRegistry,
    ):
        self.connection = connection
        self.registry = registry
        self.receipts: list[Receipt] = []

    @property
    def host(self) -> str:
        return self.connection.name

    @property
    def changed(self) -> bool:
        return any(r.changed for r in self.receipts)

    def call(self, action_id: str, adapter: str, **params: Any) -> Receipt:
        """Run one adapter operation and record its receipt. Never raises."""
        action = Action(
            id=action_id,
            name=action_id,
            adapter=adapter,
            params=params,
            for_host=self.host,
        )
        receipt = self.registry.execute_action(action)
        self.receipts.append(receipt)

        marker = "✓" if receipt.ok else "✗" if receipt.failed else "⊘"
        logger.info(
            "[%s] %s %s → %s%s",
            self.host, marker, action_id, receipt.status,
            " (changed)" if receipt.changed else "",
        )
        return receipt

    def require(self, action_id: str, adapter: str, **params: Any) -> Receipt:
        """Like ``call()`` but a failed receipt raises ``CommandFailure``."""
        receipt = self.call(action_id, adapter, **params)
        if receipt.failed:
            raise CommandFailure(action_id, receipt.error or "failed")
        return receipt

    def record(self, action_id: str, *, changed: bool, output: str = "", adapter: str = "host") -> Receipt:
        """Record a step performed directly through the host connection."""
        receipt = Receipt.success(adapter=adapter, action_id=action_id, output=output, changed=changed)
        self.receipts.append(receipt)
        if changed:
            logger.info("[%s] ✓ %s → changed", self.host, action_id)
        return receipt
