"""
Engine executor — the central provisioning loop.

Takes a validated config, a host selection and a phase selection,
provisions every host through its own connection and adapter registry,
and collects one HostReport per host.

Flow:
    hosts → (thread pool, ``forks`` wide) → connect → phases in order → HostReport

Hosts are independent: a ``ProvisionError`` (or any unexpected
exception) stops only the host it happened on.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from provisioner.adapters.registry import AdapterRegistry, build_registry
from provisioner.core.errors import ProvisionError
from provisioner.core.hosts.base import HostConnection
from provisioner.core.hosts.factory import connect
from provisioner.core.models.action import Receipt
from provisioner.core.models.config import PHASES, HostConfig, ProvisionConfig
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.services.package_ops import ensure_packages
from provisioner.core.services.service_deploy import deploy_service
from provisioner.core.services.source_install import SourceInstallOrchestrator, SourceInstallResult
from provisioner.core.services.steps import PhaseResult, StepRunner
from provisioner.core.services.toolchain_ops import ensure_toolchain
from provisioner.core.services.udev_ops import install_udev_rules

logger = logging.getLogger(__name__)

ConnectFn = Callable[[HostConfig, int], HostConnection]
RegistryFactory = Callable[[HostConnection], AdapterRegistry]


@dataclass
class HostReport:
    """Result of provisioning one host."""

    host: str
    status: str = "ok"                      # ok, failed
    phases: list[PhaseResult] = field(default_factory=list)
    receipts: list[Receipt] = field(default_factory=list)
    source_install: SourceInstallResult | None = None
    error: str = ""
    error_type: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def changed(self) -> bool:
        return any(p.changed for p in self.phases)

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "status": self.status,
            "changed": self.changed,
            "phases": [p.to_dict() for p in self.phases],
            "source_install": self.source_install.to_dict() if self.source_install else None,
            "error": self.error,
            "error_type": self.error_type,
            "duration_ms": self.duration_ms,
            "receipts": [r.model_dump(mode="json") for r in self.receipts],
        }


@dataclass
class ProvisionReport:
    """Result of one run across all selected hosts."""

    operation_id: str = ""
    phases: list[str] = field(default_factory=list)
    hosts: list[HostReport] = field(default_factory=list)
    started_at: str = ""
    ended_at: str = ""
    duration_ms: int = 0

    @property
    def succeeded(self) -> int:
        return sum(1 for h in self.hosts if h.ok)

    @property
    def failed(self) -> int:
        return sum(1 for h in self.hosts if not h.ok)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    def get(self, host: str) -> HostReport | None:
        for report in self.hosts:
            if report.host == host:
                return report
        return None

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "status": self.status,
            "phases": self.phases,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_ms": self.duration_ms,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "hosts": [h.to_dict() for h in self.hosts],
        }


# ── Phases ──────────────────────────────────────────────────────


def _run_phase(
    phase: str,
    steps: StepRunner,
    config: ProvisionConfig,
    config_dir: Path,
    report: HostReport,
) -> PhaseResult:
    timeouts = config.timeouts

    if phase == "packages":
        return ensure_packages(steps, config.packages, timeout=timeouts.build)

    if phase == "kernel_module":
        orchestrator = SourceInstallOrchestrator(
            steps,
            config.kernel_module,
            fetch_timeout=timeouts.fetch,
            build_timeout=timeouts.build,
        )
        report.source_install = orchestrator.result
        result = orchestrator.converge()
        return PhaseResult(phase=phase, changed=result.changed, details=result.to_dict())

    if phase == "toolchain":
        return ensure_toolchain(steps, config.toolchain, timeout=timeouts.build)

    if phase == "udev":
        return install_udev_rules(steps, config.udev, config_dir)

    if phase == "service":
        return deploy_service(
            steps,
            config.service,
            config.toolchain,
            config_dir,
            build_timeout=timeouts.build,
            sync_timeout=timeouts.fetch,
        )

    raise ValueError(f"Unknown phase '{phase}'. Valid: {', '.join(PHASES)}")


def provision_host(
    config: ProvisionConfig,
    host: HostConfig,
    phases: list[str],
    config_dir: Path,
    *,
    connect_fn: ConnectFn = connect,
    registry_factory: RegistryFactory = build_registry,
) -> HostReport:
    """Run ``phases`` in order against one host. Never raises ``Exception``."""
    report = HostReport(host=host.name)
    start = time.monotonic()
    steps: StepRunner | None = None

    try:
        connection = connect_fn(host, config.timeouts.command)
        steps = StepRunner(connection, registry_factory(connection))
        for phase in phases:
            logger.info("[%s] ── %s", host.name, phase)
            report.phases.append(_run_phase(phase, steps, config, config_dir, report))
    except ProvisionError as e:
        report.status = "failed"
        report.error = str(e)
        report.error_type = type(e).__name__
        logger.error("[%s] %s: %s", host.name, report.error_type, e)
    except Exception as e:
        report.status = "failed"
        report.error = f"Unexpected error: {e}"
        report.error_type = type(e).__name__
        logger.exception("[%s] Unexpected error", host.name)

    if steps is not None:
        report.receipts = steps.receipts
    report.duration_ms = int((time.monotonic() - start) * 1000)
    return report


def run_hosts(
    config: ProvisionConfig,
    hosts: list[HostConfig],
    phases: list[str],
    config_dir: Path,
    *,
    forks: int | None = None,
    operation_id: str | None = None,
    connect_fn: ConnectFn = connect,
    registry_factory: RegistryFactory = build_registry,
) -> ProvisionReport:
    """Provision ``hosts`` concurrently, at most ``forks`` at a time.

    Host reports come back in the order ``hosts`` was given.
    """
    report = ProvisionReport(
        operation_id=operation_id or generate_operation_id(),
        phases=list(phases),
        started_at=datetime.now(UTC).isoformat(),
    )
    start = time.monotonic()
    workers = max(1, min(forks or config.forks, len(hosts) or 1))

    logger.info(
        "Operation %s: %d host(s), phases %s, %d worker(s)",
        report.operation_id, len(hosts), ", ".join(phases), workers,
    )

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="host") as pool:
        futures = [
            pool.submit(
                provision_host,
                config, host, phases, config_dir,
                connect_fn=connect_fn,
                registry_factory=registry_factory,
            )
            for host in hosts
        ]
        report.hosts = [f.result() for f in futures]

    report.ended_at = datetime.now(UTC).isoformat()
    report.duration_ms = int((time.monotonic() - start) * 1000)
    return report


def write_audit_entry(report: ProvisionReport, audit_writer: AuditWriter) -> None:
    """Append the run to the audit ledger."""
    entry = AuditEntry(
        operation_id=report.operation_id,
        operation_type="provision",
        phases=report.phases,
        hosts=[h.host for h in report.hosts],
        hosts_changed=[h.host for h in report.hosts if h.changed],
        status=report.status,
        hosts_succeeded=report.succeeded,
        hosts_failed=report.failed,
        duration_ms=report.duration_ms,
        errors={h.host: h.error for h in report.hosts if h.error},
    )
    audit_writer.write(entry)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
