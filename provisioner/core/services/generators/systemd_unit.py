"""
systemd unit generator — produce the service unit for a deployed binary.
"""

from __future__ import annotations

from provisioner.core.models.config import ServiceConfig
from provisioner.core.models.template import GeneratedFile


_UNIT_TEMPLATE = """\
[Unit]
Description={description}
{after}
[Service]
Type=simple
User={user}
WorkingDirectory={working_dir}
ExecStart={exec_start}
Restart={restart}
RestartSec={restart_sec}

[Install]
WantedBy={wanted_by}
"""


def render_unit(service: ServiceConfig, *, exec_start: str, user: str, working_dir: str) -> str:
    """Render the unit file text."""
    after = ""
    if service.after:
        joined = " ".join(service.after)
        after = f"After={joined}\nWants={joined}\n"
    return _UNIT_TEMPLATE.format(
        description=service.description,
        after=after,
        user=user,
        working_dir=working_dir,
        exec_start=exec_start,
        restart=service.restart,
        restart_sec=service.restart_sec,
        wanted_by=service.wanted_by,
    )


def generate_unit(
    service: ServiceConfig,
    *,
    exec_start: str,
    user: str,
    working_dir: str,
) -> GeneratedFile:
    """Generate the systemd unit for ``service``.

    Args:
        service: Service section of the config.
        exec_start: Absolute path of the installed binary on the host.
        user: Account the service runs as.
        working_dir: Working directory of the service process.

    Returns:
        GeneratedFile destined for ``service.unit_dir``, root:root 0644.
    """
    return GeneratedFile(
        path=f"{service.unit_dir.rstrip('/')}/{service.unit_name}",
        content=render_unit(service, exec_start=exec_start, user=user, working_dir=working_dir),
        mode=0o644,
        owner="root",
        group="root",
        reason=f"systemd unit for {service.name}",
    )
