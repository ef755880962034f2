"""
Shell command adapter — execute arbitrary commands on a host.

This is the most fundamental adapter: it runs commands and captures
their output. A command is always assumed to have changed the host.
"""

from __future__ import annotations

import logging

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.models.action import Receipt

logger = logging.getLogger(__name__)

# How much command output a receipt keeps
_OUTPUT_TAIL = 4000


class ShellCommandAdapter(Adapter):
    """Execute commands and capture output.

    Action params:
        command (list[str]): argv to execute.
        cwd (str): Working directory on the host.
        sudo (bool): Escalate with sudo (default: False).
        timeout (int): Timeout in seconds (default: connection default).
        env (dict): Extra environment variables.
    """

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return self._which("sh")

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        command = context.params.get("command")
        if not command:
            return False, "Missing required param: 'command'"
        if not isinstance(command, list) or not all(isinstance(c, str) for c in command):
            return False, "Param 'command' must be a list of strings"
        if self.connection is None:
            return False, "Adapter is not bound to a host"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        assert self.connection is not None
        command = context.params["command"]
        cwd = context.params.get("cwd")

        logger.debug("[%s] Executing: %s (cwd=%s)", context.host, command, cwd)
        result = self.connection.run(
            command,
            sudo=context.params.get("sudo", False),
            timeout=context.params.get("timeout"),
            cwd=cwd,
            env=context.params.get("env"),
        )

        metadata = {
            "command": command,
            "return_code": result.get("returncode"),
            "timed_out": result.get("timed_out", False),
        }
        if result["ok"]:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=result.get("stdout", "").strip()[-_OUTPUT_TAIL:],
                changed=True,
                metadata={**metadata, "stderr": result.get("stderr", "").strip()[-_OUTPUT_TAIL:]},
            )

        stderr = (result.get("stderr") or "").strip()
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=stderr or result.get("error") or "Command failed",
            metadata={**metadata, "stdout": (result.get("stdout") or "").strip()[-_OUTPUT_TAIL:]},
        )
