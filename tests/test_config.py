"""Tests for configuration loading and validation."""

from pathlib import Path
from typing import Any

import pytest
import yaml
from pydantic import ValidationError

from mailfilter.config import (
    get_config,
    load_config,
    reset_config,
    rules_from_config,
    validate_config_file,
)
from mailfilter.config_schema import AppConfig, MailboxConfig, SpoolConfig
from mailfilter.core.errors import ConfigLoadError, ConfigValidationError


def _write(path: Path, data: Any) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadConfig:
    """Tests for load_config()."""

    def test_loads_valid_file(self, config_file: Path) -> None:
        config = load_config(config_file)
        assert config.schema_version == 1
        assert config.mailbox.enabled is False
        assert config.spool.extension == ".msg"
        assert config.processing.workers == 1

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("rules: [unclosed\n")
        with pytest.raises(ConfigLoadError, match="Failed to parse YAML"):
            load_config(path)

    def test_non_mapping_rejected(self, temp_config_dir: Path) -> None:
        path = _write(temp_config_dir / "config.yaml", ["a", "b"])
        with pytest.raises(ConfigLoadError, match="mapping"):
            load_config(path)

    def test_empty_file_uses_defaults(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("")
        config = load_config(path)
        assert config.rules.text is None
        assert config.mailbox.enabled is False

    def test_validation_error_names_field(
        self, temp_config_dir: Path, sample_config_dict: dict[str, Any]
    ) -> None:
        sample_config_dict["processing"] = {"workers": 0}
        path = _write(temp_config_dir / "config.yaml", sample_config_dict)
        with pytest.raises(ConfigValidationError, match="processing.workers"):
            load_config(path)

    def test_newer_schema_version_rejected(
        self, temp_config_dir: Path, sample_config_dict: dict[str, Any]
    ) -> None:
        sample_config_dict["schema_version"] = 99
        path = _write(temp_config_dir / "config.yaml", sample_config_dict)
        with pytest.raises(ConfigValidationError, match="newer"):
            load_config(path)

    def test_password_from_environment(
        self,
        temp_config_dir: Path,
        sample_config_dict: dict[str, Any],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        sample_config_dict["mailbox"] = {"server": "imap.example.com", "user": "bob"}
        path = _write(temp_config_dir / "config.yaml", sample_config_dict)
        monkeypatch.setenv("MAILFILTER_IMAP_PASSWORD", "s3cret")

        config = load_config(path)
        assert config.mailbox.password == "s3cret"

    def test_file_password_wins_over_environment(
        self,
        temp_config_dir: Path,
        sample_config_dict: dict[str, Any],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        sample_config_dict["mailbox"] = {"server": "imap.example.com", "password": "file"}
        path = _write(temp_config_dir / "config.yaml", sample_config_dict)
        monkeypatch.setenv("MAILFILTER_IMAP_PASSWORD", "env")

        assert load_config(path).mailbox.password == "file"


class TestGetConfig:
    """Tests for the config singleton."""

    def test_uses_environment_path_and_caches(self, set_config_env: None) -> None:
        first = get_config()
        assert get_config() is first

    def test_reset_reloads(self, set_config_env: None) -> None:
        first = get_config()
        reset_config()
        assert get_config() is not first


class TestSchema:
    """Tests for schema-level validation."""

    def test_ssl_and_starttls_conflict(self) -> None:
        with pytest.raises(ValidationError, match="cannot both be enabled"):
            MailboxConfig(server="imap.example.com", ssl=True, starttls=True)

    def test_server_required_when_enabled(self) -> None:
        with pytest.raises(ValidationError, match="'server' is required"):
            MailboxConfig(enabled=True)

    def test_disabled_mailbox_needs_no_server(self) -> None:
        assert MailboxConfig(enabled=False).server is None

    @pytest.mark.parametrize(
        "server,expected",
        [
            ("imap.example.com", ("imap.example.com", 993)),
            ("imap.example.com:143", ("imap.example.com", 143)),
            (" mail.local:1993 ", ("mail.local", 1993)),
        ],
    )
    def test_split_server(self, server: str, expected: tuple[str, int]) -> None:
        assert MailboxConfig(server=server).split_server() == expected

    def test_rule_path_traversal_rejected(self) -> None:
        with pytest.raises(ValidationError, match="path traversal"):
            AppConfig(rules={"text": "../etc/passwd"})

    def test_extension_needs_dot(self) -> None:
        with pytest.raises(ValidationError, match="must start with"):
            SpoolConfig(extension="msg")

    def test_regex_timeout_bounds(self) -> None:
        with pytest.raises(ValidationError):
            AppConfig(rules={"regex_timeout": 0})


class TestRulesFromConfig:
    """Tests for rules_from_config()."""

    def test_compiles_all_rule_files(self, sample_config: AppConfig) -> None:
        rules = rules_from_config(sample_config)
        assert [rule.text for rule in rules.selectors] == [".sig"]
        assert len(rules.text_patterns) == 1
        assert len(rules.markup_patterns) == 1

    def test_unset_files_give_empty_rules(self) -> None:
        assert rules_from_config(AppConfig()).is_empty


class TestValidateConfigFile:
    """Tests for validate_config_file()."""

    def test_valid(self, config_file: Path) -> None:
        is_valid, message = validate_config_file(config_file)
        assert is_valid
        assert "1 dom selectors" in message
        assert "mailbox: disabled" in message

    def test_missing_file(self, tmp_path: Path) -> None:
        is_valid, message = validate_config_file(tmp_path / "missing.yaml")
        assert not is_valid
        assert message.startswith("Load error:")

    def test_invalid_schema(self, temp_config_dir: Path) -> None:
        path = _write(temp_config_dir / "config.yaml", {"spool": {"extension": "msg"}})
        is_valid, message = validate_config_file(path)
        assert not is_valid
        assert message.startswith("Validation error:")

    def test_bad_rule_file(
        self, temp_config_dir: Path, sample_config_dict: dict[str, Any], rules_dir: Path
    ) -> None:
        (rules_dir / "html.txt").write_text("(unclosed\n")
        path = _write(temp_config_dir / "config.yaml", sample_config_dict)
        is_valid, message = validate_config_file(path)
        assert not is_valid
        assert message.startswith("Rule error:")
