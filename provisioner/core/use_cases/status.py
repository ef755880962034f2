"""
Status use case — aggregate provisioning status from config + state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config.loader import ConfigError, config_dir, find_config_file, load_config
from provisioner.core.models.config import ProvisionConfig
from provisioner.core.models.state import ProvisionState
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.state_file import default_state_path, load_state


@dataclass
class StatusResult:
    """Aggregated provisioning status."""

    config: ProvisionConfig | None = None
    state: ProvisionState | None = None
    config_path: Path | None = None
    recent: list[AuditEntry] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary."""
        if self.error:
            return {"error": self.error}

        result: dict = {}
        if self.config:
            release = self.config.kernel_module.release
            result["config"] = {
                "name": self.config.name,
                "description": self.config.description,
                "hosts": [h.name for h in self.config.target_hosts],
                "module": self.config.kernel_module.registration,
                "tree_checksum": release.tree_checksum,
            }
        if self.state:
            result["state"] = self.state.model_dump(mode="json")
        result["recent"] = [e.model_dump(mode="json") for e in self.recent]
        return result


def get_status(config_path: Path | None = None, recent: int = 5) -> StatusResult:
    """Get config summary, last known host state and recent runs.

    Args:
        config_path: Optional explicit path to provision.yml.
        recent: How many audit entries to include.
    """
    result = StatusResult()

    try:
        if config_path is None:
            config_path = find_config_file()
        if config_path is None:
            result.error = "No provision.yml found."
            return result

        result.config = load_config(config_path)
        result.config_path = config_path
    except ConfigError as e:
        result.error = str(e)
        return result

    root = config_dir(config_path)
    result.state = load_state(default_state_path(root))
    result.recent = AuditWriter(config_dir=root).read_recent(recent)
    return result
