"""
Core subprocess runner.

The SINGLE PLACE where ``subprocess.run`` is called. Local and SSH
hosts both funnel their commands through here so that logging,
timeouts and error shapes are identical regardless of transport.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Any

logger = logging.getLogger(__name__)

# How much of stdout/stderr is kept in error payloads
_TAIL_CHARS = 2000


def run_subprocess(
    cmd: list[str],
    *,
    timeout: int = 120,
    env_overrides: dict[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
) -> dict[str, Any]:
    """Run a command and capture its output.

    Args:
        cmd: Command list for ``subprocess.run()``.
        timeout: Seconds before the command is killed.
        env_overrides: Extra env vars merged over the current environment.
        cwd: Working directory for the command.
        input_text: Text fed to the command's stdin.

    Returns:
        ``{"ok": True, "stdout": "...", "stderr": "...", "returncode": 0,
        "elapsed_ms": N}`` on success,
        ``{"ok": False, "error": "...", "returncode": N, ...}`` on failure.
        ``timed_out`` is set when the timeout fired.
    """
    env = None
    if env_overrides:
        env = os.environ.copy()
        for key, value in env_overrides.items():
            env[key] = os.path.expandvars(value)

    logger.debug("Executing: %s (cwd=%s)", cmd, cwd)
    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input_text,
            env=env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return {
            "ok": False,
            "timed_out": True,
            "returncode": None,
            "error": f"Command timed out ({timeout}s)",
        }
    except FileNotFoundError as e:
        return {
            "ok": False,
            "returncode": 127,
            "error": f"Command not found: {e.filename or cmd[0]}",
        }
    except OSError as e:
        logger.exception("Subprocess error: %s", cmd)
        return {"ok": False, "returncode": None, "error": str(e)}

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stdout = result.stdout or ""
    stderr = result.stderr or ""

    if result.returncode == 0:
        return {
            "ok": True,
            "stdout": stdout,
            "stderr": stderr,
            "returncode": 0,
            "elapsed_ms": elapsed_ms,
        }

    return {
        "ok": False,
        "error": f"Command failed (exit {result.returncode})",
        "stdout": stdout[-_TAIL_CHARS:],
        "stderr": stderr[-_TAIL_CHARS:],
        "returncode": result.returncode,
        "elapsed_ms": elapsed_ms,
    }
