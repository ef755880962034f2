"""
Tests for adapter protocol, registry, mock, and the collaborator adapters.
"""

from pathlib import Path

from provisioner.adapters.base import ExecutionContext
from provisioner.adapters.mock import MockAdapter
from provisioner.adapters.registry import AdapterRegistry, build_registry
from provisioner.adapters.shell.command import ShellCommandAdapter
from provisioner.adapters.sync.rsync import RsyncAdapter, itemized_changes
from provisioner.adapters.system.dkms import DkmsAdapter
from provisioner.adapters.system.packages import PackageAdapter
from provisioner.adapters.system.systemd import SystemdAdapter
from provisioner.adapters.system.toolchain import RustupAdapter
from provisioner.core.hosts.ssh import SshHost
from provisioner.core.models.action import Action, Receipt
from provisioner.core.models.config import HostConfig


def _execute(adapter, action_id: str = "op", **params) -> Receipt:
    registry = AdapterRegistry(host="robot")
    registry.register(adapter)
    return registry.execute_action(Action(id=action_id, adapter=adapter.name, params=params))


# ── Mock Adapter Tests ───────────────────────────────────────────────


class TestMockAdapter:
    def test_default_success(self):
        mock = MockAdapter(adapter_name="test-mock")
        ctx = ExecutionContext(action=Action(id="op-1", adapter="test-mock"))
        receipt = mock.execute(ctx)
        assert receipt.ok
        assert mock.call_count == 1

    def test_custom_response(self):
        mock = MockAdapter()
        mock.set_response(
            "op-1",
            Receipt.success(adapter="mock", action_id="op-1", output="custom"),
        )
        ctx = ExecutionContext(action=Action(id="op-1", adapter="mock"))
        assert mock.execute(ctx).output == "custom"

    def test_set_failure(self):
        mock = MockAdapter()
        mock.set_failure("op-fail", error="Intentional failure")
        receipt = mock.execute(ExecutionContext(action=Action(id="op-fail", adapter="mock")))
        assert receipt.failed
        assert receipt.error == "Intentional failure"

    def test_operations_and_reset(self):
        mock = MockAdapter(adapter_name="dkms")
        mock.execute(ExecutionContext(action=Action(id="a", adapter="dkms", params={"operation": "status"})))
        assert mock.operations == ["status"]
        mock.reset()
        assert mock.call_count == 0


# ── Registry Tests ───────────────────────────────────────────────────


class TestAdapterRegistry:
    def test_unknown_adapter_fails(self):
        receipt = AdapterRegistry().execute_action(Action(id="x", adapter="nope"))
        assert receipt.failed
        assert "No adapter registered" in receipt.error

    def test_validation_failure(self, fake_host):
        receipt = _execute(SystemdAdapter(fake_host), operation="explode", unit="x.service")
        assert receipt.failed
        assert receipt.error.startswith("Validation failed: Unknown operation 'explode'")

    def test_context_carries_target_host(self):
        registry = AdapterRegistry(host="robot")
        registry.register(MockAdapter(adapter_name="dkms"))
        registry.execute_action(Action(id="x", adapter="dkms"))
        registry.execute_action(Action(id="y", adapter="dkms", for_host="bench"))
        assert [ctx.host for ctx in registry.get("dkms").call_log] == ["robot", "bench"]

    def test_adapter_raising_is_captured(self):
        class Exploding(MockAdapter):
            def execute(self, context):
                raise RuntimeError("boom")

        receipt = _execute(Exploding(adapter_name="boom"))
        assert receipt.failed
        assert "boom" in receipt.error

    def test_build_registry(self, fake_host):
        registry = build_registry(fake_host)
        assert sorted(registry.list_adapters()) == ["dkms", "packages", "rsync", "shell", "systemd", "toolchain"]
        assert registry.host == "robot"

    def test_adapter_status(self, fake_host):
        registry = AdapterRegistry()
        registry.register(ShellCommandAdapter(fake_host))
        registry.register(MockAdapter(adapter_name="off", available=False))
        status = registry.adapter_status()
        assert status["shell"]["available"] is True
        assert status["off"]["available"] is False


# ── Shell ────────────────────────────────────────────────────────────


class TestShellCommandAdapter:
    def test_success_is_changed(self, fake_host):
        fake_host.on("udevadm", stdout="ok\n")
        receipt = _execute(ShellCommandAdapter(fake_host), command=["udevadm", "trigger"], sudo=True)
        assert receipt.ok and receipt.changed
        assert receipt.output == "ok"
        assert fake_host.calls[-1]["sudo"] is True

    def test_failure_keeps_stderr(self, fake_host):
        fake_host.on("false", ok=False, stderr="nope\n")
        receipt = _execute(ShellCommandAdapter(fake_host), command=["false"])
        assert receipt.failed
        assert receipt.error == "nope"

    def test_command_must_be_list(self, fake_host):
        receipt = _execute(ShellCommandAdapter(fake_host), command="rm -rf /")
        assert receipt.failed
        assert "list of strings" in receipt.error


# ── Packages ─────────────────────────────────────────────────────────


class TestPackageAdapter:
    def test_installed_package_is_skipped(self, fake_host):
        fake_host.on("dpkg-query", stdout="install ok installed")
        receipt = _execute(PackageAdapter(fake_host), operation="ensure", package="dkms")
        assert receipt.status == "skipped"
        assert not receipt.changed
        assert not any(c[0] == "apt-get" for c in fake_host.commands)

    def test_missing_package_is_installed(self, fake_host):
        fake_host.on("dpkg-query", ok=False, stderr="no packages found matching dkms")
        receipt = _execute(PackageAdapter(fake_host), operation="ensure", package="dkms")
        assert receipt.ok and receipt.changed
        call = fake_host.calls[-1]
        assert call["cmd"] == ["apt-get", "install", "-y", "-q", "dkms"]
        assert call["sudo"] is True
        assert call["env"] == {"DEBIAN_FRONTEND": "noninteractive"}

    def test_dnf_fallback(self, fake_host):
        fake_host.on("sh", "-c", "command -v apt-get", ok=False)
        fake_host.on("rpm", "-q", ok=False)
        receipt = _execute(PackageAdapter(fake_host), operation="ensure", package="dkms")
        assert receipt.metadata["manager"] == "dnf"
        assert fake_host.commands[-1] == ["dnf", "install", "-y", "-q", "dkms"]

    def test_install_failure(self, fake_host):
        fake_host.on("dpkg-query", ok=False)
        fake_host.on("apt-get", ok=False, stderr="E: Unable to locate package dkms")
        receipt = _execute(PackageAdapter(fake_host), operation="ensure", package="dkms")
        assert receipt.failed
        assert "Unable to locate" in receipt.error

    def test_status(self, fake_host):
        fake_host.on("dpkg-query", stdout="install ok installed")
        receipt = _execute(PackageAdapter(fake_host), operation="status", package="dkms")
        assert receipt.output == "present"

    def test_invalid_state(self, fake_host):
        receipt = _execute(PackageAdapter(fake_host), operation="ensure", package="dkms", state="latest")
        assert receipt.failed


# ── DKMS ─────────────────────────────────────────────────────────────


class TestDkmsAdapter:
    def _params(self, op: str) -> dict:
        return {"operation": op, "module": "hid-xpadneo", "version": "abc"}

    def test_status_installed(self, fake_host):
        fake_host.on("uname", "-r", stdout="6.1.0-13-amd64\n")
        fake_host.on("/usr/sbin/dkms", "status", stdout="hid-xpadneo/abc, 6.1.0-13-amd64, x86_64: installed\n")
        receipt = _execute(DkmsAdapter(fake_host), **self._params("status"))
        assert receipt.metadata["state"] == "installed"
        assert receipt.metadata["kernel"] == "6.1.0-13-amd64"
        assert not receipt.changed
        assert fake_host.commands[-1][-2:] == ["-k", "6.1.0-13-amd64"]

    def test_status_absent(self, fake_host):
        fake_host.on("uname", "-r", stdout="6.1.0\n")
        receipt = _execute(DkmsAdapter(fake_host), **self._params("status"))
        assert receipt.metadata["state"] == "absent"

    def test_remove(self, fake_host):
        receipt = _execute(DkmsAdapter(fake_host), **self._params("remove"))
        assert receipt.output == "removed" and receipt.changed
        assert fake_host.calls[-1]["cmd"] == ["/usr/sbin/dkms", "remove", "hid-xpadneo/abc", "--all"]
        assert fake_host.calls[-1]["sudo"] is True

    def test_remove_not_found_is_success(self, fake_host):
        fake_host.on(
            "/usr/sbin/dkms", "remove", ok=False,
            stderr="Error! The module/version combo: hid-xpadneo-abc\nis not located in the DKMS tree.\n",
        )
        receipt = _execute(DkmsAdapter(fake_host), **self._params("remove"))
        assert receipt.ok
        assert receipt.output == "not_found"
        assert not receipt.changed

    def test_remove_other_failure(self, fake_host):
        fake_host.on("/usr/sbin/dkms", "remove", ok=False, stderr="permission denied")
        receipt = _execute(DkmsAdapter(fake_host), **self._params("remove"))
        assert receipt.failed

    def test_install_failure_keeps_both_streams(self, fake_host):
        fake_host.on(
            "/usr/sbin/dkms", "install", ok=False,
            stdout="Building module:\nmake -j4 KERNELRELEASE=6.1.0...(bad exit status: 2)",
            stderr="Error! Bad return status for module build on kernel: 6.1.0",
        )
        receipt = _execute(DkmsAdapter(fake_host), **self._params("install"), timeout=60)
        assert receipt.failed
        assert "bad exit status: 2" in receipt.error
        assert "Bad return status" in receipt.error
        assert fake_host.calls[-1]["timeout"] == 60

    def test_requires_version(self, fake_host):
        receipt = _execute(DkmsAdapter(fake_host), operation="status", module="hid-xpadneo")
        assert receipt.failed
        assert "'version'" in receipt.error


# ── systemd ──────────────────────────────────────────────────────────


class TestSystemdAdapter:
    def test_enable_already_enabled_skips(self, fake_host):
        fake_host.on("systemctl", "is-enabled", stdout="enabled\n")
        receipt = _execute(SystemdAdapter(fake_host), operation="enable", unit="roestbak.service")
        assert receipt.status == "skipped"
        assert fake_host.commands == [["systemctl", "is-enabled", "roestbak.service"]]

    def test_enable_when_disabled(self, fake_host):
        fake_host.on("systemctl", "is-enabled", ok=False, stdout="disabled\n")
        receipt = _execute(SystemdAdapter(fake_host), operation="enable", unit="roestbak.service")
        assert receipt.ok and receipt.changed
        assert fake_host.calls[-1]["cmd"] == ["systemctl", "enable", "roestbak.service"]
        assert fake_host.calls[-1]["sudo"] is True

    def test_start_when_active_skips(self, fake_host):
        fake_host.on("systemctl", "is-active", stdout="active\n")
        receipt = _execute(SystemdAdapter(fake_host), operation="start", unit="roestbak.service")
        assert receipt.status == "skipped"

    def test_restart_always_acts(self, fake_host):
        receipt = _execute(SystemdAdapter(fake_host), operation="restart", unit="roestbak.service")
        assert receipt.changed
        assert fake_host.commands == [["systemctl", "restart", "roestbak.service"]]

    def test_daemon_reload_needs_no_unit(self, fake_host):
        receipt = _execute(SystemdAdapter(fake_host), operation="daemon-reload")
        assert receipt.ok
        assert fake_host.commands == [["systemctl", "daemon-reload"]]

    def test_query(self, fake_host):
        fake_host.on("systemctl", "is-active", ok=False, stdout="inactive\n")
        receipt = _execute(SystemdAdapter(fake_host), operation="is-active", unit="roestbak.service")
        assert receipt.output == "inactive"
        assert not receipt.changed


# ── Toolchain ────────────────────────────────────────────────────────


class TestRustupAdapter:
    def _bins(self) -> dict:
        return {"rustup_bin": "~/.cargo/bin/rustup", "cargo_bin": "~/.cargo/bin/cargo"}

    def test_status(self, fake_host):
        home = Path(fake_host.home_dir())
        (home / ".cargo" / "bin").mkdir(parents=True)
        (home / ".cargo" / "bin" / "rustup").write_text("")
        receipt = _execute(RustupAdapter(fake_host), operation="status", **self._bins())
        assert receipt.metadata["rustup_present"] is True
        assert receipt.metadata["cargo_present"] is False
        assert receipt.metadata["cargo"] == str(home / ".cargo" / "bin" / "cargo")

    def test_install_skipped_when_present(self, fake_host):
        home = Path(fake_host.home_dir())
        (home / ".cargo" / "bin").mkdir(parents=True)
        (home / ".cargo" / "bin" / "rustup").write_text("")
        receipt = _execute(
            RustupAdapter(fake_host),
            operation="install",
            rustup_bin="~/.cargo/bin/rustup",
            installer_url="https://sh.rustup.rs",
            installer_path=str(home / "rust_installer.sh"),
        )
        assert receipt.status == "skipped"
        assert fake_host.mutations == []

    def test_install_checksum_mismatch(self, fake_host, tmp_path: Path):
        fake_host.served["https://sh.rustup.rs"] = b"#!/bin/sh\necho tampered\n"
        installer = tmp_path / "rust_installer.sh"
        receipt = _execute(
            RustupAdapter(fake_host),
            operation="install",
            rustup_bin="~/.cargo/bin/rustup",
            installer_url="https://sh.rustup.rs",
            installer_path=str(installer),
            installer_sha256="0" * 64,
        )
        assert receipt.failed
        assert "checksum mismatch" in receipt.error
        assert not installer.exists()
        assert fake_host.calls == []

    def test_install_fails_if_rustup_still_missing(self, fake_host, tmp_path: Path):
        fake_host.served["https://sh.rustup.rs"] = b"#!/bin/sh\n"
        installer = tmp_path / "rust_installer.sh"
        receipt = _execute(
            RustupAdapter(fake_host),
            operation="install",
            rustup_bin="~/.cargo/bin/rustup",
            installer_url="https://sh.rustup.rs",
            installer_path=str(installer),
            installer_args=["-y", "--no-modify-path"],
        )
        assert receipt.failed
        assert "does not exist" in receipt.error
        assert fake_host.commands == [[str(installer), "-y", "--no-modify-path"]]
        assert installer.stat().st_mode & 0o777 == 0o700

    def test_update_changed(self, fake_host):
        home = fake_host.home_dir()
        fake_host.on(f"{home}/.cargo/bin/rustup", stderr="  stable-x86_64-unknown-linux-gnu updated - rustc 1.80.0\n")
        receipt = _execute(RustupAdapter(fake_host), operation="update", rustup_bin="~/.cargo/bin/rustup")
        assert receipt.changed

    def test_update_unchanged(self, fake_host):
        home = fake_host.home_dir()
        fake_host.on(f"{home}/.cargo/bin/rustup", stderr="  stable-x86_64-unknown-linux-gnu unchanged - rustc 1.80.0\n")
        receipt = _execute(RustupAdapter(fake_host), operation="update", rustup_bin="~/.cargo/bin/rustup")
        assert receipt.ok and not receipt.changed

    def test_build(self, fake_host):
        home = fake_host.home_dir()
        fake_host.on(f"{home}/.cargo/bin/cargo", stderr="   Compiling roestbak v0.1.0\n    Finished release\n")
        receipt = _execute(
            RustupAdapter(fake_host),
            operation="build", cargo_bin="~/.cargo/bin/cargo", cwd="~/src/roestbak",
            args=["build", "--release"],
        )
        assert receipt.changed
        assert fake_host.calls[-1]["cwd"] == f"{home}/src/roestbak"
        assert fake_host.calls[-1]["cmd"][1:] == ["build", "--release"]

    def test_build_up_to_date(self, fake_host):
        home = fake_host.home_dir()
        fake_host.on(f"{home}/.cargo/bin/cargo", stderr="    Finished release [optimized] target(s)\n")
        receipt = _execute(
            RustupAdapter(fake_host), operation="build", cargo_bin="~/.cargo/bin/cargo", cwd="/srv/roestbak",
        )
        assert receipt.ok and not receipt.changed

    def test_build_failure_keeps_full_output(self, fake_host):
        home = fake_host.home_dir()
        fake_host.on(
            f"{home}/.cargo/bin/cargo", ok=False,
            stderr="error[E0425]: cannot find value `x` in this scope\n",
        )
        receipt = _execute(
            RustupAdapter(fake_host), operation="build", cargo_bin="~/.cargo/bin/cargo", cwd="/srv/roestbak",
        )
        assert receipt.failed
        assert "E0425" in receipt.error


# ── rsync ────────────────────────────────────────────────────────────


class TestItemizedChanges:
    def test_filters_attribute_only_lines(self):
        output = "\n".join([
            ".d..t...... ./",
            ">f.st...... src/main.rs",
            "cd+++++++++ src/bin/",
            "*deleting   src/old.rs",
            ".f...p..... Cargo.toml",
        ])
        assert itemized_changes(output) == [
            ">f.st...... src/main.rs",
            "cd+++++++++ src/bin/",
            "*deleting   src/old.rs",
        ]

    def test_empty(self):
        assert itemized_changes("") == []


class TestRsyncAdapter:
    def _project(self, tmp_path: Path) -> Path:
        root = tmp_path / "project"
        (root / "src").mkdir(parents=True)
        (root / "Cargo.toml").write_text("[package]\n")
        return root

    def test_push_to_ssh_host(self, tmp_path: Path, monkeypatch):
        captured = {}

        def fake_run(cmd, **kwargs):
            captured["cmd"] = cmd
            captured.update(kwargs)
            return {"ok": True, "stdout": ">f+++++++++ ./Cargo.toml\n", "stderr": "", "returncode": 0}

        monkeypatch.setattr("provisioner.adapters.sync.rsync.run_subprocess", fake_run)
        host = SshHost(HostConfig(name="robot", address="10.0.0.5", user="pi", port=2222))
        root = self._project(tmp_path)

        receipt = _execute(
            RsyncAdapter(host), operation="push",
            source_root=str(root), paths=["Cargo.toml", "src"], dest="/home/pi/src/roestbak",
        )

        assert receipt.ok and receipt.changed
        cmd = captured["cmd"]
        assert cmd[0] == "rsync"
        assert "--delete" in cmd and "--no-perms" in cmd and "--no-owner" in cmd
        assert cmd[cmd.index("-e") + 1] == "ssh -o BatchMode=yes -o ConnectTimeout=10 -p 2222"
        assert cmd[-3:] == ["./Cargo.toml", "./src", "pi@10.0.0.5:/home/pi/src/roestbak/"]
        assert captured["cwd"] == str(root)

    def test_nothing_transferred(self, fake_host, tmp_path: Path, monkeypatch):
        monkeypatch.setattr(
            "provisioner.adapters.sync.rsync.run_subprocess",
            lambda cmd, **kw: {"ok": True, "stdout": ".d..t...... ./\n", "stderr": "", "returncode": 0},
        )
        receipt = _execute(
            RsyncAdapter(fake_host), operation="push",
            source_root=str(self._project(tmp_path)), paths=["src"], dest="/srv/roestbak",
        )
        assert receipt.ok and not receipt.changed

    def test_missing_source_path(self, fake_host, tmp_path: Path):
        receipt = _execute(
            RsyncAdapter(fake_host), operation="push",
            source_root=str(self._project(tmp_path)), paths=["Cargo.lock"], dest="/srv/roestbak",
        )
        assert receipt.failed
        assert "Cargo.lock" in receipt.error
