"""
Domain models — Pydantic types for the provisioner.

All models are re-exported here for convenient access:

    from provisioner.core.models import ProvisionConfig, PinnedRelease, Receipt
"""

from provisioner.core.models.action import Action, Receipt
from provisioner.core.models.config import (
    PHASES,
    HostConfig,
    ProvisionConfig,
    ServiceConfig,
    Timeouts,
    ToolchainConfig,
    UdevConfig,
    UdevRule,
)
from provisioner.core.models.release import (
    KernelModuleConfig,
    PinnedRelease,
    split_checksum,
)
from provisioner.core.models.state import HostState, OperationRecord, ProvisionState

__all__ = [
    # action.py
    "Action",
    # config.py
    "HostConfig",
    # state.py
    "HostState",
    # release.py
    "KernelModuleConfig",
    "OperationRecord",
    "PHASES",
    "PinnedRelease",
    "ProvisionConfig",
    "ProvisionState",
    "Receipt",
    "ServiceConfig",
    "Timeouts",
    "ToolchainConfig",
    "UdevConfig",
    "UdevRule",
    "split_checksum",
]
