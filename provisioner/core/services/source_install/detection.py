"""
Source State Detector — is the pinned tree already correctly installed?

``detect()`` only observes: it computes the tree digest on the host
and compares it against the pinned value. An absent tree is a normal
prior state and reports ``mismatch`` rather than raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from provisioner.core.errors import PathUnreadable
from provisioner.core.services.source_install.checksum import checksum_matches, parse_checksum

if TYPE_CHECKING:
    from provisioner.core.hosts.base import HostConnection


@dataclass
class DetectionResult:
    """Outcome of one detection pass."""

    root: str
    status: Literal["match", "mismatch"]
    expected: str
    actual: str | None = None
    reason: str = ""            # "", "absent" or "checksum"

    @property
    def matched(self) -> bool:
        return self.status == "match"

    def to_dict(self) -> dict:
        return {
            "root": self.root,
            "status": self.status,
            "expected": self.expected,
            "actual": self.actual,
            "reason": self.reason,
        }


def detect(host: HostConnection, root: str, expected: str) -> DetectionResult:
    """Compare the tree at ``root`` on ``host`` against ``expected`` (``algo:hex``)."""
    algorithm, _digest = parse_checksum(expected)
    try:
        actual = host.tree_checksum(root, algorithm)
    except PathUnreadable:
        return DetectionResult(root=root, status="mismatch", expected=expected, reason="absent")

    if checksum_matches(actual, expected):
        return DetectionResult(root=root, status="match", expected=expected, actual=f"{algorithm}:{actual}")
    return DetectionResult(
        root=root,
        status="mismatch",
        expected=expected,
        actual=f"{algorithm}:{actual}",
        reason="checksum",
    )
