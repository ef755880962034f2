"""
Mock adapter — stands in for any collaborator in tests.

Every action succeeds unless a canned receipt was set for its ID.
Received contexts are recorded so tests can assert on the exact
sequence of operations a service issued.
"""

from __future__ import annotations

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.models.action import Receipt


class MockAdapter(Adapter):
    """Records calls; answers with canned receipts or a generic success."""

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        super().__init__(connection=None)
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._canned: dict[str, Receipt] = {}
        self.call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_count(self) -> int:
        return len(self.call_log)

    @property
    def operations(self) -> list[str]:
        """``operation`` param of every call, in order."""
        return [ctx.operation for ctx in self.call_log]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, action_id: str, receipt: Receipt) -> None:
        self._canned[action_id] = receipt

    def set_failure(self, action_id: str, error: str = "Mock failure") -> None:
        self.set_response(action_id, Receipt.failure(adapter=self._name, action_id=action_id, error=error))

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self.call_log.append(context)
        canned = self._canned.get(context.action.id)
        if canned is not None:
            return canned
        return Receipt.success(
            adapter=self._name,
            action_id=context.action.id,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Forget calls and canned receipts."""
        self.call_log.clear()
        self._canned.clear()
