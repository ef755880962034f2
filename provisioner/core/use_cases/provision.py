"""
Provision use case — converge the selected hosts onto the config.

This is the top-level orchestrator: it loads config, selects hosts and
phases, runs the engine, and persists results (state file + audit
ledger). The full vertical slice from user intent to audited execution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from provisioner.adapters.registry import build_registry
from provisioner.core.config.loader import ConfigError, config_dir, find_config_file, load_config
from provisioner.core.engine.executor import (
    ConnectFn,
    ProvisionReport,
    RegistryFactory,
    run_hosts,
    write_audit_entry,
)
from provisioner.core.hosts.factory import connect
from provisioner.core.models.config import PHASES, HostConfig, ProvisionConfig
from provisioner.core.models.state import OperationRecord
from provisioner.core.persistence.audit import AuditWriter
from provisioner.core.persistence.state_file import default_state_path, load_state, save_state

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Result of a provisioning run."""

    report: ProvisionReport | None = None
    config: ProvisionConfig | None = None
    config_dir: Path | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.all_ok

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["config_name"] = self.config.name if self.config else ""
        result["config_dir"] = str(self.config_dir)
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def select_hosts(config: ProvisionConfig, names: list[str] | None) -> list[HostConfig]:
    """Resolve ``--host`` names (None/empty = every host).

    Raises:
        ConfigError: a name is not declared in the config.
    """
    hosts = config.target_hosts
    if not names:
        return list(hosts)

    by_name = {h.name: h for h in hosts}
    unknown = [n for n in names if n not in by_name]
    if unknown:
        raise ConfigError(
            f"Unknown host(s): {', '.join(unknown)}. Known: {', '.join(by_name)}"
        )
    return [by_name[n] for n in dict.fromkeys(names)]


def select_phases(names: list[str] | None) -> list[str]:
    """Resolve ``--phase`` names into canonical run order.

    Raises:
        ConfigError: an unknown phase was named.
    """
    if not names:
        return list(PHASES)
    unknown = [n for n in names if n not in PHASES]
    if unknown:
        raise ConfigError(f"Unknown phase(s): {', '.join(unknown)}. Valid: {', '.join(PHASES)}")
    return [p for p in PHASES if p in names]


def run_provision(
    config_path: Path | None = None,
    hosts: list[str] | None = None,
    phases: list[str] | None = None,
    forks: int | None = None,
    *,
    connect_fn: ConnectFn = connect,
    registry_factory: RegistryFactory = build_registry,
) -> ProvisionResult:
    """Provision hosts and record the outcome.

    Args:
        config_path: Optional explicit path to provision.yml.
        hosts: Host names to target. None = all.
        phases: Phase names to run. None = all, in canonical order.
        forks: Max hosts provisioned concurrently (default: config.forks).

    Returns:
        ProvisionResult with the per-host report.
    """
    result = ProvisionResult()

    # ── Load config ──────────────────────────────────────────────
    try:
        if config_path is None:
            config_path = find_config_file()
        if config_path is None:
            result.error = "No provision.yml found."
            return result

        config = load_config(config_path)
        result.config = config
        result.config_dir = config_dir(config_path)

        targets = select_hosts(config, hosts)
        selected_phases = select_phases(phases)
    except ConfigError as e:
        result.error = str(e)
        return result

    root = result.config_dir
    assert root is not None

    # ── Execute ──────────────────────────────────────────────────
    report = run_hosts(
        config,
        targets,
        selected_phases,
        root,
        forks=forks,
        connect_fn=connect_fn,
        registry_factory=registry_factory,
    )
    result.report = report

    # ── Persist ──────────────────────────────────────────────────
    write_audit_entry(report, AuditWriter(config_dir=root))

    state_path = default_state_path(root)
    state = load_state(state_path)
    state.config_name = config.name
    for host_report in report.hosts:
        source = host_report.source_install
        fields: dict = {
            "last_run_at": report.ended_at,
            "last_status": host_report.status,
            "changed": host_report.changed,
            "error": host_report.error or None,
        }
        if source is not None:
            fields["module_version"] = source.version
            fields["module_state"] = source.state.value
            if source.state.value == "done":
                fields["tree_checksum"] = config.kernel_module.release.tree_checksum
        state.set_host_state(host_report.host, **fields)

    state.last_operation = OperationRecord(
        operation_id=report.operation_id,
        phases=report.phases,
        started_at=report.started_at,
        ended_at=report.ended_at,
        status=report.status,
        hosts_total=len(report.hosts),
        hosts_succeeded=report.succeeded,
        hosts_failed=report.failed,
    )
    save_state(state, state_path)

    logger.info(
        "Operation %s: %s (%d ok, %d failed)",
        report.operation_id, report.status, report.succeeded, report.failed,
    )
    return result
