"""
Config check use case — validate provision.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config.loader import ConfigError, config_dir, find_config_file, load_config
from provisioner.core.errors import CommandFailure
from provisioner.core.models.config import ProvisionConfig
from provisioner.core.services.udev_ops import load_rule


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: ProvisionConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "config_name": self.config.name if self.config else None,
            "host_count": len(self.config.hosts) if self.config else 0,
            "module_version": self.config.kernel_module.release.version if self.config else None,
        }


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate provisioning configuration and report issues.

    Args:
        config_path: Optional explicit path to provision.yml.

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult()

    if config_path is None:
        config_path = find_config_file()
    if config_path is None:
        result.errors.append("No provision.yml found.")
        return result
    result.config_path = config_path

    try:
        config = load_config(config_path)
        result.config = config
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    root = config_dir(config_path)

    # Semantic checks
    if not config.hosts:
        result.warnings.append("No hosts defined. Runs will target the local machine.")

    if not config.toolchain.installer_sha256:
        result.warnings.append(
            "toolchain.installer_sha256 is not set; the rustup installer is run unverified."
        )

    service_root = root / config.service.project_root
    if not service_root.is_dir():
        result.warnings.append(f"service.project_root does not exist: {service_root}")
    else:
        for path in config.service.sync_paths:
            if not (service_root / path).exists():
                result.warnings.append(f"Sync path not found: {service_root / path}")

    for rule in config.udev.rules:
        try:
            load_rule(rule, root)
        except CommandFailure as e:
            result.errors.append(f"udev rule '{rule.name}': {e}")

    result.valid = len(result.errors) == 0
    return result
