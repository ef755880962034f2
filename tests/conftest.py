"""
Shared test fixtures and configuration.
"""

import io
import tarfile
import threading
from dataclasses import dataclass
from pathlib import Path

import pytest

from provisioner.adapters.mock import MockAdapter
from provisioner.adapters.registry import AdapterRegistry
from provisioner.core.errors import NetworkFailure
from provisioner.core.hosts.local import LocalHost
from provisioner.core.models.config import HostConfig
from provisioner.core.models.release import KernelModuleConfig, PinnedRelease
from provisioner.core.services.source_install.checksum import (
    compute_file_checksum,
    compute_tree_checksum,
)
from provisioner.core.services.source_install.descriptor import replace_field_line
from provisioner.core.services.steps import StepRunner

MODULE_VERSION = "5a1b3c7d9e"
ARCHIVE_URL = "https://downloads.example.invalid/xpadneo/{version}.tar.gz"

# The hid-xpadneo/ subtree of the upstream archive
MODULE_FILES = {
    "Makefile": "obj-m += hid-xpadneo.o\n",
    "dkms.conf.in": (
        'PACKAGE_NAME="hid-xpadneo"\n'
        'PACKAGE_VERSION="@DO_NOT_CHANGE@"\n'
        'BUILT_MODULE_NAME[0]="hid-xpadneo"\n'
        'AUTOINSTALL="yes"\n'
    ),
    "src/hid-xpadneo.c": "/* xpadneo */\nstatic int rumble = 1;\n",
    "src/xpadneo.h": "#define XPADNEO_VERSION 1\n",
}

ADAPTER_NAMES = ("shell", "packages", "dkms", "toolchain", "systemd", "rsync")


class FakeHost(LocalHost):
    """A LocalHost for tests.

    Commands are answered from a script instead of being executed,
    downloads are served from ``served``, and every mutating primitive
    is logged in ``mutations`` before it runs against the real
    filesystem. Ownership changes are recorded but not applied.
    """

    def __init__(self, name: str = "robot", home: Path | None = None, **config):
        super().__init__(HostConfig(name=name, connection="local", **config))
        self.calls: list[dict] = []
        self.mutations: list[tuple] = []
        self.served: dict[str, bytes] = {}
        self._script: list[tuple[list[str], dict]] = []
        self._home_path = home

    # ── Commands ────────────────────────────────────────────────

    def on(self, *prefix: str, ok: bool = True, stdout: str = "", stderr: str = "", returncode=None):
        """Answer commands starting with ``prefix``. Later rules win."""
        code = returncode if returncode is not None else (0 if ok else 1)
        result = {"ok": ok, "stdout": stdout, "stderr": stderr, "returncode": code}
        if not ok:
            result["error"] = f"Command failed (exit {code})"
        self._script.append((list(prefix), result))

    def run(self, cmd, *, sudo=False, timeout=None, cwd=None, env=None, input_text=None):
        self.calls.append({"cmd": list(cmd), "sudo": sudo, "cwd": cwd, "env": env, "timeout": timeout})
        for prefix, result in reversed(self._script):
            if list(cmd[: len(prefix)]) == prefix:
                return dict(result)
        return {"ok": True, "stdout": "", "stderr": "", "returncode": 0}

    @property
    def commands(self) -> list[list[str]]:
        return [c["cmd"] for c in self.calls]

    def _lookup_home(self) -> str:
        if self._home_path is not None:
            return str(self._home_path)
        return super()._lookup_home()

    # ── Mutators ────────────────────────────────────────────────

    def download(self, url, dest, *, timeout, mode=0o700):
        self.mutations.append(("download", url, dest))
        if url not in self.served:
            raise NetworkFailure(f"Download of {url} failed: HTTP Error 404: Not Found")
        target = Path(dest)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.served[url])
        target.chmod(mode)

    def remove_tree(self, path, *, sudo=False):
        self.mutations.append(("remove_tree", path))
        super().remove_tree(path, sudo=sudo)

    def make_dir(self, path, *, mode=0o755, sudo=False):
        self.mutations.append(("make_dir", path))
        super().make_dir(path, mode=mode, sudo=sudo)

    def rename(self, src, dst, *, sudo=False):
        self.mutations.append(("rename", src, dst))
        super().rename(src, dst, sudo=sudo)

    def extract_tar(self, archive, dest, *, member, strip_components, sudo=False):
        self.mutations.append(("extract_tar", archive, dest))
        super().extract_tar(archive, dest, member=member, strip_components=strip_components, sudo=sudo)

    def write_text(self, path, content, *, mode=None, owner=None, group=None, sudo=False):
        self.mutations.append(("write_text", path, owner, group))
        super().write_text(path, content, mode=mode, sudo=sudo)

    def copy_file(self, src, dst, *, sudo=False):
        self.mutations.append(("copy_file", src, dst))
        super().copy_file(src, dst, sudo=sudo)


@dataclass
class ModuleRelease:
    """An archive served to FakeHost plus the checksums that pin it."""

    version: str
    url: str
    archive: bytes
    download_checksum: str
    tree_checksum: str

    def pinned(self, **overrides) -> PinnedRelease:
        fields = {
            "version": self.version,
            "archive_url": ARCHIVE_URL,
            "download_checksum": self.download_checksum,
            "tree_checksum": self.tree_checksum,
        }
        fields.update(overrides)
        return PinnedRelease(**fields)


def build_archive(files: dict[str, str], version: str) -> bytes:
    """Gzipped tarball laid out like the upstream xpadneo snapshot."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        entries = {f"xpadneo-{version}/README.md": "# xpadneo\n"}
        entries.update({f"xpadneo-{version}/hid-xpadneo/{rel}": text for rel, text in files.items()})
        for name, text in sorted(entries.items()):
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def write_tree(root: Path, files: dict[str, str]) -> Path:
    for rel, text in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return root


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def fake_host(tmp_path: Path) -> FakeHost:
    home = tmp_path / "home" / "pi"
    home.mkdir(parents=True)
    return FakeHost(home=home, user="pi")


@pytest.fixture
def mock_registry() -> AdapterRegistry:
    """Registry with a MockAdapter standing in for every collaborator."""
    registry = AdapterRegistry(host="robot")
    for name in ADAPTER_NAMES:
        registry.register(MockAdapter(adapter_name=name))
    return registry


@pytest.fixture
def steps(fake_host: FakeHost, mock_registry: AdapterRegistry) -> StepRunner:
    return StepRunner(fake_host, mock_registry)


@pytest.fixture
def module_release(tmp_path_factory: pytest.TempPathFactory) -> ModuleRelease:
    archive = build_archive(MODULE_FILES, MODULE_VERSION)
    archive_path = tmp_path_factory.mktemp("archive") / "xpadneo.tar.gz"
    archive_path.write_bytes(archive)

    expected = dict(MODULE_FILES)
    expected["dkms.conf"] = replace_field_line(MODULE_FILES["dkms.conf.in"], "PACKAGE_VERSION", MODULE_VERSION)
    tree = write_tree(tmp_path_factory.mktemp("expected"), expected)

    return ModuleRelease(
        version=MODULE_VERSION,
        url=ARCHIVE_URL.format(version=MODULE_VERSION),
        archive=archive,
        download_checksum=f"sha1:{compute_file_checksum(archive_path)}",
        tree_checksum=f"sha1:{compute_tree_checksum(tree)}",
    )


@pytest.fixture
def module_config(tmp_path: Path, module_release: ModuleRelease) -> KernelModuleConfig:
    return KernelModuleConfig(
        source_root=str(tmp_path / "usr" / "src"),
        staging_archive=str(tmp_path / "tmp" / "xpadneo.tar.gz"),
        release=module_release.pinned(),
    )


@pytest.fixture
def make_host(tmp_path: Path):
    """Build FakeHosts with their own home directory under tmp_path."""

    def _make(name: str = "robot", **config) -> FakeHost:
        home = tmp_path / "home" / name
        home.mkdir(parents=True, exist_ok=True)
        return FakeHost(name=name, home=home, **config)

    return _make


@pytest.fixture
def registry_factory():
    """Build registry factories for the engine.

    Each host gets its own set of MockAdapters; ``failing`` maps a host
    name to a packages action that fails on it. Built registries are
    kept in ``factory.registries`` by host name.
    """

    def _build(failing: dict[str, str] | None = None):
        failing = failing or {}
        registries: dict[str, AdapterRegistry] = {}
        lock = threading.Lock()

        def factory(connection):
            registry = AdapterRegistry(host=connection.name)
            for name in ADAPTER_NAMES:
                registry.register(MockAdapter(adapter_name=name))
            if connection.name in failing:
                registry.get("packages").set_failure(failing[connection.name], "E: Unable to locate package dkms")
            with lock:
                registries[connection.name] = registry
            return registry

        factory.registries = registries
        return factory

    return _build
