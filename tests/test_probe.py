"""
Tests for the capability probe.
"""

from pathlib import Path

from conftest import FakeHost, make_context

from wsmigrate.core.engine.probe import parse_os_release, probe


class TestProbe:
    def test_basic_fedora_host(self, tmp_path: Path):
        host = FakeHost()
        host.tools |= {"flatpak", "git", "firewall-cmd"}
        caps = probe(make_context(tmp_path, host))

        assert caps.package_manager == "dnf"
        assert caps.flatpak is True
        assert caps.snap is False
        assert caps.systemd is True
        assert caps.firewalld is True
        assert "git" in caps.tools
        assert caps.os_version == "40"
        assert caps.kernel == "6.8.9-300.fc40.x86_64"
        assert caps.arch == "x86_64"
        assert caps.hostname == "workstation"
        assert caps.display_server == "wayland"

    def test_dnf5_detected_from_version(self, tmp_path: Path):
        from wsmigrate.adapters.shell.command import CommandResult

        host = FakeHost()
        host.responses["dnf --version"] = CommandResult(
            argv=["dnf", "--version"], returncode=0, stdout="dnf5 version 5.1.17\n",
        )
        assert probe(make_context(tmp_path, host)).package_manager == "dnf5"

    def test_absent_capabilities_are_not_errors(self, tmp_path: Path):
        host = FakeHost()
        host.tools = set()
        caps = probe(make_context(tmp_path, host))
        assert caps.package_manager == "none"
        assert caps.desktop_shell is None
        assert caps.audio_stack is None
        assert caps.can_escalate is False

    def test_privilege(self, tmp_path: Path):
        assert probe(make_context(tmp_path, FakeHost(sudo_ok=True))).can_escalate is True
        assert probe(make_context(tmp_path, FakeHost(sudo_ok=False))).can_escalate is False
        assert probe(make_context(tmp_path, FakeHost(is_root=True))).is_root is True

    def test_plasma(self, tmp_path: Path):
        from wsmigrate.adapters.shell.command import CommandResult

        host = FakeHost()
        host.tools.add("plasmashell")
        host.responses["plasmashell --version"] = CommandResult(
            argv=["plasmashell", "--version"], returncode=0, stdout="plasmashell 6.1.4\n",
        )
        caps = probe(make_context(tmp_path, host))
        assert caps.desktop_shell == "plasma"
        assert caps.desktop_shell_version == "6.1.4"
        assert caps.desktop_shell_major == 6

    def test_version_manager_marker(self, tmp_path: Path):
        host = FakeHost()
        ctx = make_context(tmp_path, host)
        (ctx.home / ".nvm").mkdir()
        assert probe(ctx).version_managers == ["nvm"]

    def test_audio_stack(self, tmp_path: Path):
        host = FakeHost()
        host.tools |= {"pipewire", "pulseaudio"}
        assert probe(make_context(tmp_path, host)).audio_stack == "pipewire"

    def test_broken_probe_step_is_contained(self, tmp_path: Path, monkeypatch):
        from wsmigrate.core.engine import probe as probe_module

        def boom(ctx):
            raise RuntimeError("no /proc")

        monkeypatch.setattr(probe_module, "_identity", boom)
        caps = probe(make_context(tmp_path, FakeHost()))
        assert caps.hostname == "unknown"
        assert caps.package_manager == "dnf"


class TestParseOsRelease:
    def test_quotes_and_comments(self):
        fields = parse_os_release('# comment\nNAME="Fedora Linux"\nVERSION_ID=40\nID=\'fedora\'\n')
        assert fields == {"NAME": "Fedora Linux", "VERSION_ID": "40", "ID": "fedora"}
