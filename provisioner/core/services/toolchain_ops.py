"""
Toolchain phase — make sure rustup and cargo exist for the service build.

Flow:
    install (skipped when rustup exists) → update (optional) → check cargo
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from provisioner.core.errors import CommandFailure
from provisioner.core.services.steps import PhaseResult

if TYPE_CHECKING:
    from provisioner.core.models.config import ToolchainConfig
    from provisioner.core.services.steps import StepRunner


def ensure_toolchain(steps: StepRunner, toolchain: ToolchainConfig, *, timeout: int = 600) -> PhaseResult:
    """Bootstrap and refresh the toolchain.

    Returns:
        PhaseResult whose ``details["cargo"]`` is the resolved cargo path
        on the host.

    Raises:
        CommandFailure: the installer failed, or rustup/cargo are missing
            afterwards.
    """
    result = PhaseResult(phase="toolchain")

    install = steps.require(
        "toolchain:install", "toolchain",
        operation="install",
        rustup_bin=toolchain.rustup_bin,
        installer_url=toolchain.installer_url,
        installer_path=toolchain.installer_path,
        installer_args=toolchain.installer_args,
        installer_sha256=toolchain.installer_sha256,
        timeout=timeout,
    )
    result.changed = install.changed

    if toolchain.update:
        update = steps.require(
            "toolchain:update", "toolchain",
            operation="update", rustup_bin=toolchain.rustup_bin, timeout=timeout,
        )
        result.changed = result.changed or update.changed

    status = steps.require(
        "toolchain:status", "toolchain",
        operation="status", rustup_bin=toolchain.rustup_bin, cargo_bin=toolchain.cargo_bin,
    )
    if not status.metadata.get("cargo_present"):
        raise CommandFailure("toolchain:status", f"cargo not found at {status.metadata.get('cargo')}")

    result.details = {
        "rustup": status.metadata.get("rustup"),
        "cargo": status.metadata.get("cargo"),
        "installed": install.changed,
    }
    return result
