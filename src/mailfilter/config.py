"""Configuration loader.

This module provides configuration loading from YAML with validation against
the Pydantic schema, plus a cached singleton for the CLI.

Usage:
    from mailfilter.config import get_config, load_config

    # Get current config (singleton)
    config = get_config()

    # Or load a specific file
    config = load_config(Path("config/config.yaml"))
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from mailfilter.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from mailfilter.core.errors import ConfigLoadError, ConfigValidationError, RuleError
from mailfilter.core.logging import get_logger
from mailfilter.engine.rules import FilterRules, load_filter_rules

logger = get_logger(__name__)

# Default config path - can be overridden via environment variable
DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "MAILFILTER_CONFIG_PATH"
IMAP_PASSWORD_ENV = "MAILFILTER_IMAP_PASSWORD"

_config_lock = threading.Lock()
_current_config: AppConfig | None = None


def _get_config_path() -> Path:
    """Get the config file path from environment or default."""
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into actionable messages.

    Args:
        error: Pydantic ValidationError

    Returns:
        Formatted error message with specific field errors
    """
    messages = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"])
        msg = err["msg"]
        err_type = err["type"]

        if err_type == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        elif err_type == "string_type":
            messages.append(f"  - Field '{field_path}' must be a string")
        elif err_type == "int_type":
            messages.append(f"  - Field '{field_path}' must be an integer")
        elif err_type == "bool_type":
            messages.append(f"  - Field '{field_path}' must be true or false")
        elif field_path:
            messages.append(f"  - Field '{field_path}': {msg}")
        else:
            messages.append(f"  - {msg}")

    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse YAML file.

    Raises:
        ConfigLoadError: If file not found or YAML parse error
    """
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Create it by copying config/config.yaml.example to {path}"
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            if data is None:
                return {}
            if not isinstance(data, dict):
                raise ConfigLoadError(
                    f"Configuration file must be a YAML mapping, got {type(data).__name__}"
                )
            return data
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Fill the IMAP password from the environment when the file leaves it out."""
    password = os.environ.get(IMAP_PASSWORD_ENV)
    mailbox = data.get("mailbox")
    if password and isinstance(mailbox, dict) and not mailbox.get("password"):
        data = {**data, "mailbox": {**mailbox, "password": password}}
    return data


def _validate_config(data: dict[str, Any], path: Path) -> AppConfig:
    """Validate config data against Pydantic schema.

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        error_details = _format_validation_errors(e)
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{error_details}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Please upgrade mailfilter or downgrade the config."
        )
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate configuration from YAML file.

    This function always loads fresh from disk. For cached access use
    get_config() instead.

    Args:
        path: Optional path to config file. If not provided, uses
              MAILFILTER_CONFIG_PATH env var or default.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    config_path = path or _get_config_path()

    logger.debug("Loading configuration", path=str(config_path))

    data = _apply_env_overrides(_load_yaml(config_path))
    config = _validate_config(data, config_path)

    logger.info(
        "Configuration loaded successfully",
        path=str(config_path),
        schema_version=config.schema_version,
        mailbox_enabled=config.mailbox.enabled,
    )

    return config


def get_config() -> AppConfig:
    """Get the current configuration singleton, loading it on first call.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    global _current_config

    with _config_lock:
        if _current_config is None:
            _current_config = load_config(_get_config_path())
        return _current_config


def rules_from_config(config: AppConfig) -> FilterRules:
    """Load and compile the rule files named in the configuration.

    Raises:
        RuleError: If a rule file is unreadable or holds an invalid rule
    """
    return load_filter_rules(
        text=config.rules.text,
        html=config.rules.html,
        dom=config.rules.dom,
        regex_timeout=config.rules.regex_timeout,
    )


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file and the rule files it names.

    Args:
        path: Path to config file. If not provided, uses default.

    Returns:
        Tuple of (is_valid, message)
    """
    config_path = path or _get_config_path()

    try:
        config = load_config(config_path)
        rules = rules_from_config(config)
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")
    except RuleError as e:
        return (False, f"Rule error: {e}")

    mailbox = (
        f"{config.mailbox.user}@{config.mailbox.server}/{config.mailbox.folder}"
        if config.mailbox.enabled
        else "disabled"
    )
    return (
        True,
        f"Configuration valid (schema version {config.schema_version})\n"
        f"  - {len(rules.text_patterns)} text patterns\n"
        f"  - {len(rules.markup_patterns)} html patterns\n"
        f"  - {len(rules.selectors)} dom selectors\n"
        f"  - mailbox: {mailbox}",
    )


def reset_config() -> None:
    """Reset the config singleton. Primarily for testing."""
    global _current_config
    with _config_lock:
        _current_config = None
