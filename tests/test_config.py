"""
Tests for configuration loading — wsmigrate.yml parsing and validation.
"""

import textwrap
from pathlib import Path

import pytest

from wsmigrate.core.config.loader import SETTINGS_FILE, find_settings_file, load_settings
from wsmigrate.core.errors import ConfigError
from wsmigrate.core.models.settings import Settings
from wsmigrate.core.models.snapshot import CaptureUnit
from wsmigrate.core.models.target import Role


@pytest.fixture
def valid_settings_yml(tmp_path: Path) -> Path:
    """Create a valid wsmigrate.yml in a temp directory."""
    content = textwrap.dedent("""\
        state_dir: state
        capture:
          units: [package, repo, shell]
          timeout_seconds: 30
          extra_excludes:
            - "~/.cache/**"
        normalize:
          require_repo_for_packages: true
        reconcile:
          roles: [repos, packages]
    """)
    path = tmp_path / SETTINGS_FILE
    path.write_text(content)
    return path


class TestLoadSettings:
    def test_valid_file(self, valid_settings_yml: Path):
        settings = load_settings(valid_settings_yml)
        assert settings.capture.units == [CaptureUnit.PACKAGE, CaptureUnit.REPO, CaptureUnit.SHELL]
        assert settings.capture.timeout_seconds == 30
        assert settings.capture.extra_excludes == ["~/.cache/**"]
        assert settings.normalize.require_repo_for_packages is True
        assert settings.reconcile.roles == [Role.REPOS, Role.PACKAGES]

    def test_relative_state_dir_resolves_next_to_file(self, valid_settings_yml: Path):
        settings = load_settings(valid_settings_yml)
        assert Path(settings.state_dir) == valid_settings_yml.parent.resolve() / "state"

    def test_absolute_state_dir_kept(self, tmp_path: Path):
        path = tmp_path / SETTINGS_FILE
        path.write_text("state_dir: /var/lib/wsmigrate\n")
        assert load_settings(path).state_dir == "/var/lib/wsmigrate"

    def test_defaults_when_nothing_found(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = load_settings()
        assert settings == Settings()
        assert settings.capture.units == list(CaptureUnit)
        assert settings.capture.workers == 4
        assert settings.reconcile.roles == list(Role)

    def test_search_disabled(self, valid_settings_yml: Path, monkeypatch):
        monkeypatch.chdir(valid_settings_yml.parent)
        assert load_settings(search=False) == Settings()

    def test_explicit_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yml")

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / SETTINGS_FILE
        path.write_text("")
        assert load_settings(path) == Settings()

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / SETTINGS_FILE
        path.write_text("capture: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path)

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / SETTINGS_FILE
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            load_settings(path)

    def test_unknown_unit(self, tmp_path: Path):
        path = tmp_path / SETTINGS_FILE
        path.write_text("capture:\n  units: [browsers]\n")
        with pytest.raises(ConfigError, match="Invalid settings"):
            load_settings(path)

    def test_role_dependency_override(self, tmp_path: Path):
        path = tmp_path / SETTINGS_FILE
        path.write_text("normalize:\n  role_dependencies:\n    hardware: []\n")
        settings = load_settings(path)
        assert settings.normalize.role_dependencies == {Role.HARDWARE: []}


class TestFindSettingsFile:
    def test_found_in_start_dir(self, valid_settings_yml: Path):
        assert find_settings_file(valid_settings_yml.parent) == valid_settings_yml.resolve()

    def test_found_walking_up(self, valid_settings_yml: Path):
        nested = valid_settings_yml.parent / "a" / "b"
        nested.mkdir(parents=True)
        assert find_settings_file(nested) == valid_settings_yml.resolve()

    def test_not_found(self, tmp_path: Path):
        assert find_settings_file(tmp_path) is None
