"""
Generated file model — used by all generators.
"""

from __future__ import annotations

from pydantic import BaseModel


class GeneratedFile(BaseModel):
    """A file rendered for installation on a host.

    Attributes:
        path:    Absolute destination path on the host.
        content: Full file content.
        mode:    Permission bits to install with.
        owner:   Owning user (None keeps the writer's).
        group:   Owning group (None keeps the writer's).
        reason:  Why this file was generated.
    """

    path: str
    content: str
    mode: int = 0o644
    owner: str | None = None
    group: str | None = None
    reason: str = ""
