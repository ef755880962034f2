"""
Detect use case — report, without changing anything, whether each host
already carries the pinned module source and registration.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from provisioner.adapters.registry import build_registry
from provisioner.core.config.loader import ConfigError, find_config_file, load_config
from provisioner.core.engine.executor import ConnectFn, RegistryFactory
from provisioner.core.errors import ProvisionError
from provisioner.core.hosts.factory import connect
from provisioner.core.models.config import HostConfig, ProvisionConfig
from provisioner.core.services.source_install import ModuleBuilder, detect
from provisioner.core.services.steps import StepRunner
from provisioner.core.use_cases.provision import select_hosts

logger = logging.getLogger(__name__)


@dataclass
class HostDetection:
    host: str
    tree: str = ""
    status: str = ""                # match, mismatch, error
    reason: str = ""
    actual: str | None = None
    registration: str = ""          # installed, built, added, absent
    error: str = ""

    @property
    def converged(self) -> bool:
        return self.status == "match" and self.registration == "installed"

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "tree": self.tree,
            "status": self.status,
            "reason": self.reason,
            "actual": self.actual,
            "registration": self.registration,
            "converged": self.converged,
            "error": self.error,
        }


@dataclass
class DetectResult:
    expected: str = ""
    version: str = ""
    hosts: list[HostDetection] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "version": self.version,
            "expected": self.expected,
            "hosts": [h.to_dict() for h in self.hosts],
        }


def detect_host(
    config: ProvisionConfig,
    host: HostConfig,
    *,
    connect_fn: ConnectFn = connect,
    registry_factory: RegistryFactory = build_registry,
) -> HostDetection:
    """Observe one host. Never raises ``Exception``."""
    module = config.kernel_module
    found = HostDetection(host=host.name, tree=module.source_dir)
    try:
        connection = connect_fn(host, config.timeouts.command)
        detection = detect(connection, module.source_dir, module.release.tree_checksum)
        found.status = detection.status
        found.reason = detection.reason
        found.actual = detection.actual

        steps = StepRunner(connection, registry_factory(connection))
        found.registration = ModuleBuilder(steps, module.name, module.release.version).status()
    except ProvisionError as e:
        found.status = found.status or "error"
        found.error = str(e)
    except Exception as e:
        logger.exception("[%s] Detection failed", host.name)
        found.status = found.status or "error"
        found.error = f"Unexpected error: {e}"
    return found


def detect_hosts(
    config_path: Path | None = None,
    hosts: list[str] | None = None,
    *,
    connect_fn: ConnectFn = connect,
    registry_factory: RegistryFactory = build_registry,
) -> DetectResult:
    """Run detection on the selected hosts concurrently."""
    result = DetectResult()
    try:
        if config_path is None:
            config_path = find_config_file()
        if config_path is None:
            result.error = "No provision.yml found."
            return result
        config = load_config(config_path)
        targets = select_hosts(config, hosts)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.version = config.kernel_module.release.version
    result.expected = config.kernel_module.release.tree_checksum

    workers = max(1, min(config.forks, len(targets)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="host") as pool:
        futures = [
            pool.submit(detect_host, config, host, connect_fn=connect_fn, registry_factory=registry_factory)
            for host in targets
        ]
        result.hosts = [f.result() for f in futures]
    return result
