"""
Provisioning config — the root description of a fleet and its target state.

Loaded from provision.yml. If something isn't declared here, the
provisioner doesn't touch it. Defaults reproduce the roestbak robot
host: build tools + DKMS, the audited xpadneo driver, a rustup
toolchain, joystick udev links, and the roestbak service.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from provisioner.core.models.release import KernelModuleConfig

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


class HostConfig(BaseModel):
    """A provisioning target."""

    name: str
    connection: Literal["local", "ssh"] = "ssh"
    address: str = ""               # defaults to name for ssh
    user: str | None = None
    port: int = 22
    identity_file: str | None = None
    become: bool = True             # escalate privileged steps with sudo

    @model_validator(mode="after")
    def _default_address(self) -> HostConfig:
        if self.connection == "ssh" and not self.address:
            self.address = self.name
        return self


# Target used when the config declares no hosts
LOCAL_HOST = HostConfig(name="localhost", connection="local")


class ToolchainConfig(BaseModel):
    """rustup bootstrap and the binaries it must leave behind."""

    installer_url: str = "https://sh.rustup.rs"
    installer_path: str = "/tmp/rust_installer.sh"
    installer_args: list[str] = Field(default_factory=lambda: ["-y"])
    installer_sha256: str | None = None
    rustup_bin: str = "~/.cargo/bin/rustup"
    cargo_bin: str = "~/.cargo/bin/cargo"
    update: bool = True

    @field_validator("installer_sha256", mode="before")
    @classmethod
    def _sha256_hex(cls, v: object) -> object:
        if v is None:
            return v
        if not isinstance(v, str):
            raise ValueError(
                "installer_sha256 must be a quoted string (an unquoted all-digit digest is read as a number)"
            )
        digest = v.strip().lower()
        if not _SHA256_RE.match(digest):
            raise ValueError(f"installer_sha256 must be 64 hex characters, got {v!r}")
        return digest


class UdevRule(BaseModel):
    """A rules file to install.

    ``source`` is a local path relative to the config file; when unset
    the rules file bundled with the provisioner is used.
    """

    name: str = "99-joystick-links.rules"
    source: str | None = None


class UdevConfig(BaseModel):
    rules_dir: str = "/etc/udev/rules.d"
    rules: list[UdevRule] = Field(default_factory=lambda: [UdevRule()])
    reload: bool = True


class ServiceConfig(BaseModel):
    """The long-running service built from synced sources."""

    name: str = "roestbak"
    description: str = "roestbak robot control service"
    project_root: str = "."         # local, relative to the config file
    sync_paths: list[str] = Field(
        default_factory=lambda: ["Cargo.toml", "Cargo.lock", "src"],
    )
    remote_root: str = "~/src/roestbak"
    bin_dir: str = "~/bin"
    binary: str = "roestbak"
    build_args: list[str] = Field(default_factory=lambda: ["build", "--release"])
    restart: Literal["no", "always", "on-success", "on-failure", "on-abnormal"] = "on-failure"
    restart_sec: int = Field(default=2, ge=0)
    unit_dir: str = "/etc/systemd/system"
    after: list[str] = Field(default_factory=lambda: ["bluetooth.target"])
    wanted_by: str = "multi-user.target"

    @field_validator("sync_paths")
    @classmethod
    def _relative_paths(cls, v: list[str]) -> list[str]:
        for p in v:
            if not p or p.startswith("/") or ".." in p.split("/"):
                raise ValueError(f"sync path must be relative and inside project_root: {p!r}")
        return v

    @property
    def unit_name(self) -> str:
        return f"{self.name}.service"


class Timeouts(BaseModel):
    """Seconds. Fetch and build are the only meaningfully unbounded stages."""

    fetch: int = Field(default=300, gt=0)
    build: int = Field(default=1800, gt=0)
    command: int = Field(default=120, gt=0)


PHASES = ("packages", "kernel_module", "toolchain", "udev", "service")


class ProvisionConfig(BaseModel):
    """Root config — loaded from provision.yml."""

    version: int = 1

    name: str = "roestbak"
    description: str = ""

    hosts: list[HostConfig] = Field(default_factory=list)
    packages: list[str] = Field(default_factory=lambda: ["build-essential", "dkms"])
    kernel_module: KernelModuleConfig = Field(default_factory=KernelModuleConfig)
    toolchain: ToolchainConfig = Field(default_factory=ToolchainConfig)
    udev: UdevConfig = Field(default_factory=UdevConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    timeouts: Timeouts = Field(default_factory=Timeouts)
    forks: int = Field(default=4, ge=1)

    @field_validator("hosts")
    @classmethod
    def _unique_host_names(cls, v: list[HostConfig]) -> list[HostConfig]:
        seen: set[str] = set()
        for host in v:
            if host.name in seen:
                raise ValueError(f"Duplicate host name: {host.name}")
            seen.add(host.name)
        return v

    def get_host(self, name: str) -> HostConfig | None:
        """Look up a host by name."""
        for host in self.hosts:
            if host.name == name:
                return host
        return None

    @property
    def host_names(self) -> list[str]:
        return [h.name for h in self.hosts]

    @property
    def target_hosts(self) -> list[HostConfig]:
        """Hosts a run addresses; the local machine when none are declared."""
        return self.hosts or [LOCAL_HOST]
