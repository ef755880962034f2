"""
Package phase — ensure the OS packages the module build needs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from provisioner.core.services.steps import PhaseResult

if TYPE_CHECKING:
    from provisioner.core.services.steps import StepRunner


def ensure_packages(steps: StepRunner, packages: list[str], *, timeout: int = 600) -> PhaseResult:
    """Converge every package in ``packages`` to ``present``.

    Raises:
        CommandFailure: the package manager failed for a package.
    """
    result = PhaseResult(phase="packages")
    installed: list[str] = []
    for package in packages:
        receipt = steps.require(
            f"packages:{package}", "packages",
            operation="ensure", package=package, state="present", timeout=timeout,
        )
        if receipt.changed:
            installed.append(package)

    result.changed = bool(installed)
    result.details = {"packages": list(packages), "installed": installed}
    return result
