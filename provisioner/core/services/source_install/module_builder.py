"""
Module Builder client — the build subsystem as the orchestrator sees it.

Wraps the ``dkms`` adapter and maps its receipts onto the error
taxonomy: an unknown registration becomes ``SubsystemNotFound``, a
rejected build becomes ``BuildFailure`` carrying the tool's output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from provisioner.core.errors import BuildFailure, SubsystemNotFound

if TYPE_CHECKING:
    from provisioner.core.services.steps import StepRunner


class ModuleBuilder:
    def __init__(self, steps: StepRunner, module: str, version: str, build_timeout: int = 1800):
        self.steps = steps
        self.module = module
        self.version = version
        self.build_timeout = build_timeout

    @property
    def registration(self) -> str:
        return f"{self.module}/{self.version}"

    def status(self) -> str:
        """Registration state for the running kernel: installed, built, added or absent."""
        receipt = self.steps.require(
            "module:status", "dkms",
            operation="status", module=self.module, version=self.version,
        )
        return receipt.metadata.get("state", receipt.output or "absent")

    def remove(self) -> str:
        """Deregister every build of this version.

        Raises:
            SubsystemNotFound: nothing was registered.
        """
        receipt = self.steps.require(
            "module:remove", "dkms",
            operation="remove", module=self.module, version=self.version,
        )
        if receipt.output == "not_found":
            raise SubsystemNotFound(f"{self.registration} is not registered")
        return receipt.output

    def install(self) -> None:
        """Add, build and install against the running kernel.

        Raises:
            BuildFailure: the build subsystem rejected the source.
        """
        receipt = self.steps.call(
            "module:install", "dkms",
            operation="install", module=self.module, version=self.version,
            timeout=self.build_timeout,
        )
        if receipt.failed:
            raise BuildFailure(self.registration, receipt.error or "")
