"""
udev phase — install static rules files and reload udev when they change.

Rules are plain assets: either the file bundled with the provisioner
(``provisioner/data``) or a controller-side file named in the config.
"""

from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING

from provisioner.core.errors import CommandFailure
from provisioner.core.services.steps import PhaseResult

if TYPE_CHECKING:
    from provisioner.core.models.config import UdevConfig, UdevRule
    from provisioner.core.services.steps import StepRunner

logger = logging.getLogger(__name__)


def load_rule(rule: UdevRule, config_dir: Path) -> str:
    """Return the rule file's text from the config dir or the bundled data.

    Raises:
        CommandFailure: the rule file cannot be found.
    """
    if rule.source:
        path = Path(rule.source)
        if not path.is_absolute():
            path = config_dir / path
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise CommandFailure(f"udev:{rule.name}", f"cannot read {path}: {e}") from e

    bundled = resources.files("provisioner.data").joinpath(rule.name)
    if not bundled.is_file():
        raise CommandFailure(f"udev:{rule.name}", "no bundled rules file with that name")
    return bundled.read_text(encoding="utf-8")


def install_udev_rules(steps: StepRunner, udev: UdevConfig, config_dir: Path) -> PhaseResult:
    """Write each rules file as root:root 0644 when its content differs."""
    result = PhaseResult(phase="udev")
    written: list[str] = []

    for rule in udev.rules:
        content = load_rule(rule, config_dir)
        target = f"{udev.rules_dir.rstrip('/')}/{rule.name}"
        changed = steps.connection.ensure_file(
            target, content, mode=0o644, owner="root", group="root", sudo=True,
        )
        steps.record(f"udev:{rule.name}", changed=changed, output=target)
        if changed:
            written.append(target)

    if written and udev.reload:
        steps.require("udev:reload", "shell", command=["udevadm", "control", "--reload-rules"], sudo=True)
        steps.require(
            "udev:trigger", "shell",
            command=["udevadm", "trigger", "--subsystem-match=input"], sudo=True,
        )

    result.changed = bool(written)
    result.details = {"written": written}
    return result
