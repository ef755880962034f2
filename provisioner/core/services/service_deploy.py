"""
Service deploy phase — sync sources, build, install, and (re)start.

Flow:
    ensure remote dir → rsync allow-listed paths → cargo build
    → install binary ──┐ (notify restart)
    → install unit ────┤ (notify restart + daemon-reload)
    → enablement → handlers → ensure started

Restarts are deferred like handlers: any step that changed what the
running service would execute notifies, and a single restart is issued
after every step succeeded.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from provisioner.core.errors import BuildFailure
from provisioner.core.services.generators.systemd_unit import generate_unit
from provisioner.core.services.steps import PhaseResult

if TYPE_CHECKING:
    from provisioner.core.models.config import ServiceConfig, ToolchainConfig
    from provisioner.core.services.steps import StepRunner

logger = logging.getLogger(__name__)


def deploy_service(
    steps: StepRunner,
    service: ServiceConfig,
    toolchain: ToolchainConfig,
    config_dir: Path,
    *,
    build_timeout: int = 1800,
    sync_timeout: int = 300,
) -> PhaseResult:
    """Deploy ``service`` onto the host behind ``steps``.

    Args:
        steps: Step runner bound to the target host.
        service: Service section of the config.
        toolchain: Toolchain section (provides the cargo path).
        config_dir: Directory holding provision.yml; ``service.project_root``
            is resolved against it.

    Raises:
        BuildFailure: cargo rejected the sources.
        CommandFailure: any sync, copy, or systemd step failed.
    """
    host = steps.connection
    result = PhaseResult(phase="service")
    notify_restart = False

    remote_root = host.expand_path(service.remote_root)
    bin_dir = host.expand_path(service.bin_dir)
    binary = f"{bin_dir}/{service.binary}"
    unit_action = f"service:{service.unit_name}"

    # ── Sources ─────────────────────────────────────────────────

    steps.record("service:source_dir", changed=host.ensure_dir(remote_root, mode=0o755), output=remote_root)

    source_root = (config_dir / service.project_root).resolve()
    steps.require(
        "service:sync", "rsync",
        operation="push",
        source_root=str(source_root),
        paths=service.sync_paths,
        dest=remote_root,
        timeout=sync_timeout,
    )

    build = steps.call(
        "service:build", "toolchain",
        operation="build",
        cargo_bin=toolchain.cargo_bin,
        cwd=remote_root,
        args=service.build_args,
        timeout=build_timeout,
    )
    if build.failed:
        raise BuildFailure(service.name, build.error or "")

    # ── Install ─────────────────────────────────────────────────

    steps.record("service:bin_dir", changed=host.ensure_dir(bin_dir, mode=0o755), output=bin_dir)

    built_binary = f"{remote_root}/target/release/{service.binary}"
    if steps.record("service:binary", changed=host.ensure_copy(built_binary, binary), output=binary).changed:
        notify_restart = True

    unit = generate_unit(
        service,
        exec_start=binary,
        user=host.username(),
        working_dir=host.home_dir(),
    )
    unit_changed = host.ensure_file(
        unit.path, unit.content,
        mode=unit.mode, owner=unit.owner, group=unit.group, sudo=True,
    )
    steps.record("service:unit", changed=unit_changed, output=unit.path)

    # ── Enablement ──────────────────────────────────────────────

    if unit_changed:
        notify_restart = True
        steps.require("service:daemon-reload", "systemd", operation="daemon-reload")
        # Drop and recreate the install symlinks for the new [Install] section
        steps.require(f"{unit_action}:reenable", "systemd", operation="reenable", unit=service.unit_name)
    else:
        steps.require(f"{unit_action}:enable", "systemd", operation="enable", unit=service.unit_name)

    # ── Handlers ────────────────────────────────────────────────

    if notify_restart:
        logger.info("[%s] Restarting %s", steps.host, service.unit_name)
        steps.require(f"{unit_action}:restart", "systemd", operation="restart", unit=service.unit_name)

    steps.require(f"{unit_action}:start", "systemd", operation="start", unit=service.unit_name)

    result.changed = notify_restart or build.changed
    result.details = {
        "remote_root": remote_root,
        "binary": binary,
        "unit": unit.path,
        "restarted": notify_restart,
    }
    return result
