"""
Adapter base — the protocol contract between services and collaborators.

This defines the abstract interface that every adapter must implement.
Services only talk to external subsystems (package manager, DKMS,
rustup, systemd, rsync) through this protocol, never directly.

Each adapter instance is bound to one host connection, so adapters of
different hosts never share state.
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from provisioner.core.models.action import Action, Receipt

if TYPE_CHECKING:
    from provisioner.core.hosts.base import HostConnection


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action."""

    action: Action
    host: str = "localhost"
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def operation(self) -> str:
        return self.action.operation


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform external side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name, is_available, validate, execute
        3. Register it in the AdapterRegistry (see ``build_registry``)
    """

    def __init__(self, connection: HostConnection | None = None):
        self.connection = connection

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'packages', 'dkms', 'systemd')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available on the host.

        Should be fast and never raise.
        """

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt.

        MUST never raise exceptions. All failures are captured
        in the Receipt with status='failed'.
        """

    def _which(self, binary: str) -> bool:
        """Whether ``binary`` is on the host's PATH."""
        if self.connection is None:
            return False
        try:
            return self.connection.run(["sh", "-c", f"command -v {shlex.quote(binary)}"], timeout=15)["ok"]
        except Exception:
            return False

    def _require_operation(
        self, context: ExecutionContext, valid_ops: set[str],
    ) -> tuple[bool, str]:
        operation = context.operation
        if not operation:
            return False, "Missing required param: 'operation'"
        if operation not in valid_ops:
            return False, f"Unknown operation '{operation}'. Valid: {', '.join(sorted(valid_ops))}"
        return True, ""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
