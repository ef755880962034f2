"""
Release models — what "correctly installed" means for one run.

A PinnedRelease fixes an audited snapshot of external source by its
version identifier and two independent checksums: one over the raw
downloaded archive, one over the extracted and stamped source tree.
"""

from __future__ import annotations

import hashlib
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Algorithm assumed when a checksum is given as bare hex
DEFAULT_CHECKSUM_ALGORITHM = "sha1"

SUPPORTED_ALGORITHMS = ("md5", "sha1", "sha256", "sha512")

_HEX_RE = re.compile(r"^[0-9a-f]+$")

# Audited xpadneo snapshot the roestbak host runs
XPADNEO_VERSION = "9b3b6968304d75faca00d1cead63f89e8895195f"
XPADNEO_ARCHIVE_URL = "https://github.com/atar-axis/xpadneo/archive/{version}.tar.gz"
XPADNEO_DOWNLOAD_CHECKSUM = "sha1:a943ea17d7565a2392fff3c0b5ec2ee6c13e85ea"
XPADNEO_TREE_CHECKSUM = "sha1:8c6738f428c31c48ec5a3799cb8cc28947d29b93"


def split_checksum(spec: str) -> tuple[str, str]:
    """Split ``algo:hex`` (or bare hex) into ``(algorithm, hexdigest)``.

    Raises:
        ValueError: unknown algorithm, non-hex digest, or wrong length.
    """
    spec = spec.strip().lower()
    if ":" in spec:
        algorithm, digest = spec.split(":", 1)
    else:
        algorithm, digest = DEFAULT_CHECKSUM_ALGORITHM, spec

    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(
            f"Unsupported checksum algorithm '{algorithm}'. "
            f"Valid: {', '.join(SUPPORTED_ALGORITHMS)}"
        )
    if not _HEX_RE.match(digest):
        raise ValueError(f"Checksum is not hex: {digest!r}")

    expected_len = hashlib.new(algorithm).digest_size * 2
    if len(digest) != expected_len:
        raise ValueError(
            f"{algorithm} checksum must be {expected_len} hex chars, got {len(digest)}"
        )
    return algorithm, digest


class PinnedRelease(BaseModel):
    """An audited source snapshot. Immutable for the lifetime of a run."""

    model_config = ConfigDict(frozen=True)

    version: str = XPADNEO_VERSION
    archive_url: str = XPADNEO_ARCHIVE_URL      # may contain {version}
    download_checksum: str = XPADNEO_DOWNLOAD_CHECKSUM
    tree_checksum: str = XPADNEO_TREE_CHECKSUM

    @field_validator("version")
    @classmethod
    def _version_is_path_safe(cls, v: str) -> str:
        if not v or "/" in v or v.strip() != v:
            raise ValueError(f"Invalid version identifier: {v!r}")
        return v

    @field_validator("download_checksum", "tree_checksum")
    @classmethod
    def _checksum_is_well_formed(cls, v: str) -> str:
        algorithm, digest = split_checksum(v)
        return f"{algorithm}:{digest}"

    @property
    def resolved_url(self) -> str:
        return self.archive_url.format(version=self.version)


class KernelModuleConfig(BaseModel):
    """Where and how the pinned module source is laid out on a host."""

    name: str = "hid-xpadneo"
    source_root: str = "/usr/src"
    archive_member: str = "xpadneo-{version}/hid-xpadneo"
    strip_components: int = Field(default=2, ge=0)
    staging_archive: str = "/tmp/xpadneo.tar.gz"
    descriptor_template: str = "dkms.conf.in"
    descriptor: str = "dkms.conf"
    version_field: str = "PACKAGE_VERSION"
    release: PinnedRelease = Field(default_factory=PinnedRelease)

    @property
    def source_dir(self) -> str:
        """Installed tree path, e.g. ``/usr/src/hid-xpadneo-<version>``."""
        return f"{self.source_root.rstrip('/')}/{self.name}-{self.release.version}"

    @property
    def member(self) -> str:
        return self.archive_member.format(version=self.release.version)

    @property
    def registration(self) -> str:
        """DKMS ``module/version`` key."""
        return f"{self.name}/{self.release.version}"
