"""
Source install — checksum-gated installation of pinned module source.

    from provisioner.core.services.source_install import SourceInstallOrchestrator
"""

from provisioner.core.services.source_install.checksum import (
    checksum_matches,
    compute_file_checksum,
    compute_tree_checksum,
    parse_checksum,
)
from provisioner.core.services.source_install.descriptor import replace_field_line, stamp_descriptor
from provisioner.core.services.source_install.detection import DetectionResult, detect
from provisioner.core.services.source_install.fetch import FetchResult, fetch
from provisioner.core.services.source_install.module_builder import ModuleBuilder
from provisioner.core.services.source_install.orchestrator import (
    SourceInstallOrchestrator,
    SourceInstallResult,
    SourceInstallState,
)

__all__ = [
    "DetectionResult",
    "FetchResult",
    "ModuleBuilder",
    "SourceInstallOrchestrator",
    "SourceInstallResult",
    "SourceInstallState",
    "checksum_matches",
    "compute_file_checksum",
    "compute_tree_checksum",
    "detect",
    "fetch",
    "parse_checksum",
    "replace_field_line",
    "stamp_descriptor",
]
