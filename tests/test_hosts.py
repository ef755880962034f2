"""
Tests for host connections — local primitives and SSH command building.
"""

import io
import tarfile
import types
from pathlib import Path

import pytest

from provisioner.core.errors import CommandFailure, NetworkFailure, PathUnreadable
from provisioner.core.hosts.factory import connect
from provisioner.core.hosts.local import LocalHost
from provisioner.core.hosts.ssh import SshHost
from provisioner.core.models.config import HostConfig


def _ssh(**overrides) -> SshHost:
    fields = {"name": "robot", "address": "10.0.0.5", "user": "pi"}
    fields.update(overrides)
    return SshHost(HostConfig(**fields))


class _Recorder:
    """Stands in for run_subprocess and answers with canned results."""

    def __init__(self, *results: dict):
        self.calls: list[dict] = []
        self._results = list(results)

    def __call__(self, cmd, **kwargs):
        self.calls.append({"cmd": cmd, **kwargs})
        if self._results:
            return self._results.pop(0)
        return {"ok": True, "stdout": "", "stderr": "", "returncode": 0}


class _TrickleResponse:
    """urlopen stand-in serving ``chunks`` one read at a time."""

    def __init__(self, chunks: list[bytes]):
        self._chunks = list(chunks)
        self.reads = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def read(self, size: int = -1) -> bytes:
        self.reads += 1
        return self._chunks.pop(0) if self._chunks else b""


# ── Factory ──────────────────────────────────────────────────────────


class TestConnect:
    def test_local(self):
        assert isinstance(connect(HostConfig(name="bench", connection="local")), LocalHost)

    def test_ssh_default(self):
        host = connect(HostConfig(name="robot.lan"), command_timeout=30)
        assert isinstance(host, SshHost)
        assert host.target == "robot.lan"
        assert host.command_timeout == 30


# ── SSH ──────────────────────────────────────────────────────────────


class TestSshHost:
    def test_ssh_command(self):
        cmd = _ssh(port=2222, identity_file="~/.ssh/robot").ssh_command("true")
        assert cmd == [
            "ssh", "-o", "BatchMode=yes", "-o", "ConnectTimeout=10", "-p", "2222",
            "-i", "~/.ssh/robot", "pi@10.0.0.5", "--", "true",
        ]

    def test_remote_string_quotes_and_escalates(self):
        remote = _ssh()._remote_string(["rm", "-rf", "--", "/usr/src/a b"], True, None, None)
        assert remote == "sudo -n rm -rf -- '/usr/src/a b'"

    def test_remote_string_env_inside_sudo(self):
        remote = _ssh()._remote_string(
            ["apt-get", "install", "dkms"], True, "/tmp", {"DEBIAN_FRONTEND": "noninteractive"},
        )
        assert remote == "cd /tmp && sudo -n env DEBIAN_FRONTEND=noninteractive apt-get install dkms"

    def test_no_sudo_for_root_or_without_become(self):
        assert _ssh(user="root")._remote_string(["id"], True, None, None) == "id"
        assert _ssh(become=False)._remote_string(["id"], True, None, None) == "id"

    def test_sync_target(self):
        dest, transport = _ssh(port=2200).sync_target("/home/pi/src/")
        assert dest == "pi@10.0.0.5:/home/pi/src/"
        assert transport == ["-e", "ssh -o BatchMode=yes -o ConnectTimeout=10 -p 2200"]

    def test_tree_checksum_absent_root(self, monkeypatch):
        recorder = _Recorder({"ok": False, "returncode": 3, "stdout": "", "stderr": "", "error": "exit 3"})
        monkeypatch.setattr("provisioner.core.hosts.ssh.run_subprocess", recorder)
        with pytest.raises(PathUnreadable):
            _ssh().tree_checksum("/usr/src/hid-xpadneo-x", "sha1")

    def test_tree_checksum_pipeline(self, monkeypatch):
        recorder = _Recorder({"ok": True, "returncode": 0, "stdout": "ab" * 20 + "\n", "stderr": ""})
        monkeypatch.setattr("provisioner.core.hosts.ssh.run_subprocess", recorder)
        assert _ssh().tree_checksum("/usr/src/t", "sha1") == "ab" * 20
        remote = recorder.calls[0]["cmd"][-1]
        assert "LC_ALL=C sort -z" in remote
        assert remote.endswith("sh /usr/src/t sha1")

    def test_failed_mutator_raises(self, monkeypatch):
        recorder = _Recorder({"ok": False, "returncode": 1, "stdout": "", "stderr": "Permission denied\n"})
        monkeypatch.setattr("provisioner.core.hosts.ssh.run_subprocess", recorder)
        with pytest.raises(CommandFailure, match="Permission denied"):
            _ssh().make_dir("/usr/src/x", sudo=True)

    def test_write_text_stdin(self, monkeypatch):
        recorder = _Recorder()
        monkeypatch.setattr("provisioner.core.hosts.ssh.run_subprocess", recorder)
        _ssh().write_text("/etc/udev/rules.d/99.rules", "RULE\n", mode=0o644, owner="root", group="root", sudo=True)
        remotes = [c["cmd"][-1] for c in recorder.calls]
        assert recorder.calls[0]["input_text"] == "RULE\n"
        assert remotes[1] == "sudo -n chmod 644 /etc/udev/rules.d/99.rules.provisioner-tmp"
        assert remotes[2] == "sudo -n chown root:root /etc/udev/rules.d/99.rules.provisioner-tmp"
        assert remotes[3].endswith("mv -f /etc/udev/rules.d/99.rules.provisioner-tmp /etc/udev/rules.d/99.rules")

    def test_username_from_config(self):
        assert _ssh().username() == "pi"


# ── Local ────────────────────────────────────────────────────────────


class TestLocalHost:
    def _host(self, **overrides) -> LocalHost:
        return LocalHost(HostConfig(name="bench", connection="local", **overrides))

    def test_sudo_prefix_carries_env(self, monkeypatch):
        recorder = _Recorder()
        monkeypatch.setattr("provisioner.core.hosts.local.run_subprocess", recorder)
        monkeypatch.setattr("provisioner.core.hosts.local.os.geteuid", lambda: 1000)
        self._host().run(["apt-get", "install", "dkms"], sudo=True, env={"DEBIAN_FRONTEND": "noninteractive"})
        call = recorder.calls[0]
        assert call["cmd"] == ["sudo", "-n", "env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install", "dkms"]
        assert call["env_overrides"] is None

    def test_no_sudo_when_root(self, monkeypatch):
        recorder = _Recorder()
        monkeypatch.setattr("provisioner.core.hosts.local.run_subprocess", recorder)
        monkeypatch.setattr("provisioner.core.hosts.local.os.geteuid", lambda: 0)
        self._host().run(["dkms", "status"], sudo=True)
        assert recorder.calls[0]["cmd"] == ["dkms", "status"]

    def test_extract_strips_components(self, tmp_path: Path):
        archive = tmp_path / "a.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            for name, data in (("pkg-1/mod/a.c", b"a"), ("pkg-1/mod/sub/b.h", b"b"), ("pkg-1/docs/x", b"x")):
                info = tarfile.TarInfo(name)
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
        dest = tmp_path / "out"
        dest.mkdir()

        self._host().extract_tar(str(archive), str(dest), member="pkg-1/mod", strip_components=2)

        assert sorted(p.relative_to(dest).as_posix() for p in dest.rglob("*") if p.is_file()) == ["a.c", "sub/b.h"]

    def test_extract_corrupt_archive(self, tmp_path: Path):
        archive = tmp_path / "bad.tar.gz"
        archive.write_bytes(b"not a tarball")
        with pytest.raises(CommandFailure):
            self._host().extract_tar(str(archive), str(tmp_path), member="x", strip_components=1)

    def test_download_writes_target(self, monkeypatch, tmp_path: Path):
        monkeypatch.setattr(
            "provisioner.core.hosts.local.urllib.request.urlopen",
            lambda request, timeout: _TrickleResponse([b"abc", b"def"]),
        )
        dest = tmp_path / "xpadneo.tar.gz"
        self._host().download("https://example.invalid/a.tar.gz", str(dest), timeout=30, mode=0o600)
        assert dest.read_bytes() == b"abcdef"
        assert dest.stat().st_mode & 0o777 == 0o600

    def test_download_deadline_covers_whole_transfer(self, monkeypatch, tmp_path: Path):
        # Every chunk arrives inside the per-read timeout, the total does not
        clock = iter(range(0, 1000, 10))
        monkeypatch.setattr(
            "provisioner.core.hosts.local.time",
            types.SimpleNamespace(monotonic=lambda: next(clock)),
        )
        response = _TrickleResponse([b"x"] * 100)
        monkeypatch.setattr(
            "provisioner.core.hosts.local.urllib.request.urlopen",
            lambda request, timeout: response,
        )
        dest = tmp_path / "xpadneo.tar.gz"

        with pytest.raises(NetworkFailure, match="exceeded 30s"):
            self._host().download("https://example.invalid/a.tar.gz", str(dest), timeout=30)

        assert response.reads < 100
        assert not dest.exists()
        assert list(tmp_path.iterdir()) == []

    def test_write_text_keeps_mode(self, tmp_path: Path):
        path = tmp_path / "dkms.conf"
        path.write_text("old")
        path.chmod(0o600)
        self._host().write_text(str(path), "new")
        assert path.read_text() == "new"
        assert path.stat().st_mode & 0o777 == 0o600

    def test_ensure_file(self, tmp_path: Path):
        host = self._host()
        path = str(tmp_path / "etc" / "rule")
        assert host.ensure_file(path, "A\n") is True
        assert host.ensure_file(path, "A\n") is False
        assert host.ensure_file(path, "B\n") is True

    def test_ensure_copy(self, tmp_path: Path):
        host = self._host()
        src = tmp_path / "built"
        src.write_bytes(b"\x7fELF")
        src.chmod(0o755)
        dst = tmp_path / "bin" / "roestbak"
        assert host.ensure_copy(str(src), str(dst)) is True
        assert dst.stat().st_mode & 0o777 == 0o755
        assert host.ensure_copy(str(src), str(dst)) is False

    def test_ensure_dir(self, tmp_path: Path):
        host = self._host()
        path = tmp_path / "src" / "roestbak"
        assert host.ensure_dir(str(path)) is True
        assert host.ensure_dir(str(path)) is False

    def test_remove_tree_missing_is_fine(self, tmp_path: Path):
        self._host().remove_tree(str(tmp_path / "missing"))

    def test_read_missing(self, tmp_path: Path):
        with pytest.raises(PathUnreadable):
            self._host().read_text(str(tmp_path / "missing"))

    def test_expand_path(self, monkeypatch, tmp_path: Path):
        monkeypatch.setattr(LocalHost, "_lookup_home", lambda self: "/home/pi")
        host = self._host()
        assert host.expand_path("~/bin") == "/home/pi/bin"
        assert host.expand_path("~") == "/home/pi"
        assert host.expand_path("/usr/src") == "/usr/src"

    def test_username_lookup_failure(self, monkeypatch):
        monkeypatch.setattr(
            "provisioner.core.hosts.local.run_subprocess",
            _Recorder({"ok": False, "error": "Command not found: id", "returncode": 127}),
        )
        with pytest.raises(CommandFailure):
            self._host().username()
