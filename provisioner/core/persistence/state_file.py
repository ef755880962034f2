"""
State file persistence — atomic read/write for ProvisionState.

State is stored as JSON in .state/current.json next to provision.yml.
Writes go to a temp file that is then renamed over the target, so a
crash mid-write never leaves a truncated file behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from provisioner.core.models.state import ProvisionState

logger = logging.getLogger(__name__)

# Default state file path (relative to the config directory)
DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "current.json"


def default_state_path(config_dir: Path) -> Path:
    """Get the default state file path for a config directory."""
    return config_dir / DEFAULT_STATE_DIR / DEFAULT_STATE_FILE


def load_state(path: Path) -> ProvisionState:
    """Load provisioning state from a JSON file.

    Returns:
        ProvisionState model. Missing or unreadable files yield a fresh
        state; the hosts themselves are the source of truth.
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return ProvisionState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = ProvisionState.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return ProvisionState()

    logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
    return state


def save_state(state: ProvisionState, path: Path) -> None:
    """Save provisioning state to a JSON file (atomic write)."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise
    logger.debug("State saved to %s", path)
