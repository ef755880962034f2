"""
Artifact Fetcher — download an archive and prove its bytes before use.

Integrity gate #1. The downloaded file is hashed with the algorithm
named by the pinned value; on disagreement the file is deleted and
``IntegrityMismatch(stage="download")`` is raised, so nothing ever
extracts an unverified archive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from provisioner.core.errors import IntegrityMismatch
from provisioner.core.services.source_install.checksum import checksum_matches, parse_checksum

if TYPE_CHECKING:
    from provisioner.core.hosts.base import HostConnection

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    url: str
    path: str
    checksum: str               # "algo:hex" of the verified bytes

    def to_dict(self) -> dict:
        return {"url": self.url, "path": self.path, "checksum": self.checksum}


def fetch(
    host: HostConnection,
    url: str,
    dest: str,
    expected: str,
    *,
    timeout: int = 300,
) -> FetchResult:
    """Download ``url`` to ``dest`` on ``host`` and verify it.

    Raises:
        NetworkFailure: the download did not complete.
        IntegrityMismatch: the bytes do not hash to ``expected``.
    """
    algorithm, _digest = parse_checksum(expected)

    logger.info("[%s] Fetching %s", host.name, url)
    host.download(url, dest, timeout=timeout, mode=0o644)

    actual = host.file_checksum(dest, algorithm)
    if not checksum_matches(actual, expected):
        host.remove_tree(dest)
        raise IntegrityMismatch(
            stage="download",
            expected=expected,
            actual=f"{algorithm}:{actual}",
            target=url,
        )

    logger.debug("[%s] %s verified (%s)", host.name, dest, expected)
    return FetchResult(url=url, path=dest, checksum=f"{algorithm}:{actual}")
