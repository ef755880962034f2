"""
ProvisionState — what the provisioner last observed on each host.

Serialized to .state/current.json after every run. It's disposable:
delete it and the next run re-detects everything from the hosts
themselves, since the hosts (not this file) are the source of truth.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class HostState(BaseModel):
    """Last known state of one host."""

    name: str
    last_run_at: str | None = None
    last_status: str | None = None          # ok, failed
    changed: bool = False
    module_version: str | None = None
    module_state: str | None = None         # final orchestrator state
    tree_checksum: str | None = None
    error: str | None = None


class OperationRecord(BaseModel):
    """Summary of the last run."""

    operation_id: str = ""
    phases: list[str] = Field(default_factory=list)
    started_at: str = ""
    ended_at: str = ""
    status: str = ""  # ok, partial, failed
    hosts_total: int = 0
    hosts_succeeded: int = 0
    hosts_failed: int = 0


class ProvisionState(BaseModel):
    """Root state model — serialized to .state/current.json."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Identity ─────────────────────────────────────────────────
    config_name: str = ""

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Component state ──────────────────────────────────────────
    hosts: dict[str, HostState] = Field(default_factory=dict)

    # ── Last operation ───────────────────────────────────────────
    last_operation: OperationRecord = Field(default_factory=OperationRecord)

    # ── Extensible metadata ──────────────────────────────────────
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def set_host_state(self, name: str, **kwargs: Any) -> None:
        """Update or create a host state entry."""
        if name in self.hosts:
            for key, value in kwargs.items():
                setattr(self.hosts[name], key, value)
        else:
            self.hosts[name] = HostState(name=name, **kwargs)
