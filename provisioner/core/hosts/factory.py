"""
Host factory — pick the transport declared for a host.
"""

from __future__ import annotations

from provisioner.core.hosts.base import HostConnection
from provisioner.core.models.config import HostConfig


def connect(config: HostConfig, command_timeout: int = 120) -> HostConnection:
    """Return a connection for ``config`` (no network I/O happens here)."""
    if config.connection == "local":
        from provisioner.core.hosts.local import LocalHost

        return LocalHost(config, command_timeout=command_timeout)

    from provisioner.core.hosts.ssh import SshHost

    return SshHost(config, command_timeout=command_timeout)
