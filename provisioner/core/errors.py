"""
Provisioning error taxonomy.

Adapters never raise — they return receipts. The services layer turns
failed receipts and integrity checks into these exceptions, and the
engine catches ``ProvisionError`` per host so that one host's failure
never touches its siblings.

Hierarchy:
    ProvisionError
    ├── IntegrityMismatch   download or tree checksum disagreement (fatal)
    ├── PathUnreadable      checksum root does not exist
    ├── SubsystemNotFound   deregistering a module that was never registered
    ├── BuildFailure        module / service build rejected (fatal)
    ├── NetworkFailure      fetch could not complete (re-run to retry)
    └── CommandFailure      any other collaborator step failed
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for every failure that aborts a host's run."""


class IntegrityMismatch(ProvisionError):
    """A computed checksum disagrees with the pinned value.

    ``stage`` is ``"download"`` for gate #1 (raw archive bytes) and
    ``"tree"`` for gate #2 (extracted and stamped source tree).
    """

    def __init__(self, stage: str, expected: str, actual: str, target: str = ""):
        self.stage = stage
        self.expected = expected
        self.actual = actual
        self.target = target
        where = f" for {target}" if target else ""
        super().__init__(
            f"{stage} checksum mismatch{where}: expected {expected}, got {actual}"
        )


class PathUnreadable(ProvisionError):
    """The root handed to the checksum verifier does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path does not exist or is unreadable: {path}")


class SubsystemNotFound(ProvisionError):
    """The build subsystem has no registration for the requested module."""


class BuildFailure(ProvisionError):
    """An external build rejected the source. Message carries stderr verbatim."""

    def __init__(self, target: str, detail: str):
        self.target = target
        self.detail = detail
        super().__init__(f"Build of {target} failed:\n{detail}")


class NetworkFailure(ProvisionError):
    """A download could not complete."""


class CommandFailure(ProvisionError):
    """A collaborator step (package, service, sync, ...) failed."""

    def __init__(self, step: str, detail: str):
        self.step = step
        self.detail = detail
        super().__init__(f"{step}: {detail}")
