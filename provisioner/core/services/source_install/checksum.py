"""
Checksum Verifier — deterministic digests over files and directory trees.

A tree digest is one hash over the concatenated contents of every
regular file under a root, in byte-wise order of relative path. It is
the in-process equivalent of::

    cd ROOT && LC_ALL=C find . -xtype f -print0 | LC_ALL=C sort -z \\
        | xargs -0 -r cat | sha1sum

which is exactly how SSH hosts compute it (see ``hosts/ssh.py``), so
both sides agree on the same pinned value.

Properties:
    - Independent of directory-listing order (paths are sorted).
    - Content only: mode, owner and mtime never enter the stream.
    - Symlinks that resolve to regular files contribute their target's
      content. Directories, dangling links and special files contribute
      nothing.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path

from provisioner.core.errors import PathUnreadable
from provisioner.core.models.release import DEFAULT_CHECKSUM_ALGORITHM, split_checksum

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 20


def parse_checksum(spec: str) -> tuple[str, str]:
    """Parse ``algo:hex`` (bare hex means sha1) into ``(algorithm, hex)``."""
    return split_checksum(spec)


def checksum_matches(actual_hex: str, expected_spec: str) -> bool:
    """Compare a computed hex digest against an ``algo:hex`` spec."""
    _algo, expected_hex = parse_checksum(expected_spec)
    return actual_hex.strip().lower() == expected_hex


def list_tree_files(root: Path) -> list[tuple[bytes, Path]]:
    """Return ``(relative_path_bytes, absolute_path)`` for every hashed file.

    Sorted by the raw bytes of the relative path, i.e. ``LC_ALL=C``
    ordering regardless of platform locale or filesystem.

    Raises:
        PathUnreadable: root is missing, not a directory, or a
            subdirectory cannot be listed.
    """
    if not root.is_dir():
        raise PathUnreadable(str(root))

    def _raise(err: OSError) -> None:
        raise PathUnreadable(err.filename or str(root)) from err

    entries: list[tuple[bytes, Path]] = []
    for dirpath, _dirnames, filenames in os.walk(root, onerror=_raise):
        for name in filenames:
            full = Path(dirpath) / name
            # is_file() follows symlinks: links to files count, dangling
            # links and FIFOs/sockets do not.
            if not full.is_file():
                continue
            rel = os.fsencode(full.relative_to(root).as_posix())
            entries.append((rel, full))

    entries.sort(key=lambda entry: entry[0])
    return entries


def compute_tree_checksum(
    root: str | Path,
    algorithm: str = DEFAULT_CHECKSUM_ALGORITHM,
) -> str:
    """Hex digest over every file's content under ``root``.

    Args:
        root: Directory to digest.
        algorithm: Any ``hashlib`` algorithm name (sha1 by default).

    Returns:
        Lowercase hex digest.

    Raises:
        PathUnreadable: root does not exist or cannot be read.
    """
    root = Path(root)
    h = hashlib.new(algorithm)
    files = list_tree_files(root)

    for _rel, path in files:
        try:
            with open(path, "rb") as f:
                for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                    h.update(chunk)
        except OSError as e:
            raise PathUnreadable(str(path)) from e

    digest = h.hexdigest()
    logger.debug("Tree %s: %d files, %s=%s", root, len(files), algorithm, digest)
    return digest


def compute_file_checksum(
    path: str | Path,
    algorithm: str = DEFAULT_CHECKSUM_ALGORITHM,
) -> str:
    """Hex digest of one file's raw bytes.

    Raises:
        PathUnreadable: the file does not exist or cannot be read.
    """
    h = hashlib.new(algorithm)
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                h.update(chunk)
    except OSError as e:
        raise PathUnreadable(str(path)) from e
    return h.hexdigest()
