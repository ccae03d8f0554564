"""Pydantic configuration schema for the reply mail filter.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup.

Usage:
    from mailfilter.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

DEFAULT_IMAP_PORT = 993


def _check_path(v: str | None, what: str) -> str | None:
    if v is None:
        return v
    if not v.strip():
        raise ValueError(f"{what} cannot be empty")
    if ".." in v:
        raise ValueError(f"{what} cannot contain '..' (path traversal)")
    return v.strip()


class RulesConfig(BaseModel):
    """Rule file locations. Each file is optional."""

    text: str | None = Field(
        default=None,
        description="Regexes removed from text/plain parts, one per line",
    )
    html: str | None = Field(
        default=None,
        description="Regexes removed from text/html parts, one per line",
    )
    dom: str | None = Field(
        default=None,
        description="CSS selectors whose elements are removed from text/html parts",
    )
    regex_timeout: float = Field(
        default=1.0,
        gt=0,
        le=60,
        description="Seconds allowed per pattern substitution",
    )

    @field_validator("text", "html", "dom")
    @classmethod
    def validate_rule_path(cls, v: str | None) -> str | None:
        """Ensure rule file paths are non-empty and don't contain path traversal."""
        return _check_path(v, "Rule file path")


class MailboxConfig(BaseModel):
    """IMAP mailbox the messages are fetched from."""

    enabled: bool = Field(default=True, description="Fetch from IMAP before filtering")
    server: str | None = Field(
        default=None,
        description="IMAP server as host or host:port (port defaults to 993)",
    )
    user: str | None = Field(default=None, description="IMAP user")
    password: str | None = Field(
        default=None,
        description="IMAP password (or set MAILFILTER_IMAP_PASSWORD)",
    )
    folder: str = Field(default="INBOX", description="Folder messages are fetched from")
    ssl: bool = Field(default=False, description="Connect with implicit TLS")
    starttls: bool = Field(default=False, description="Upgrade the connection with STARTTLS")
    verify_certificate: bool = Field(
        default=True,
        description="Verify the server certificate and hostname",
    )
    delete_after_fetch: bool = Field(
        default=True,
        description="Delete messages from the server once fetched",
    )

    @field_validator("folder")
    @classmethod
    def validate_folder(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Mailbox folder cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_connection(self) -> "MailboxConfig":
        """Require a server when enabled and forbid conflicting TLS modes."""
        if self.ssl and self.starttls:
            raise ValueError("'ssl' and 'starttls' cannot both be enabled")
        if self.enabled and not self.server:
            raise ValueError("'server' is required when the mailbox is enabled")
        return self

    def split_server(self) -> tuple[str, int]:
        """Return (host, port) from `server`, defaulting the port to 993."""
        server = (self.server or "").strip()
        host, sep, port = server.rpartition(":")
        if sep and port.isdigit():
            return host, int(port)
        return server, DEFAULT_IMAP_PORT


class SpoolConfig(BaseModel):
    """Folders holding fetched and filtered message files."""

    tmp_dir: str = Field(
        default="data/tmp",
        description="Folder fetched messages are written to before filtering",
    )
    dst_dir: str = Field(
        default="data/filtered",
        description="Folder filtered messages are written to",
    )
    extension: str = Field(default=".msg", description="Extension of message files")
    keep_source_files: bool = Field(
        default=False,
        description="Keep fetched message files after filtering",
    )

    @field_validator("tmp_dir", "dst_dir")
    @classmethod
    def validate_dir(cls, v: str) -> str:
        return _check_path(v, "Spool directory")

    @field_validator("extension")
    @classmethod
    def validate_extension(cls, v: str) -> str:
        if not v.startswith(".") or len(v) < 2:
            raise ValueError("Extension must start with '.' (e.g. '.msg')")
        return v


class ProcessingConfig(BaseModel):
    """Batch processing configuration."""

    workers: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Messages filtered concurrently",
    )


class LoggingConfig(BaseModel):
    """Log output configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=False,
        description="Emit JSON log lines instead of console output",
    )


class AppConfig(BaseModel):
    """Root configuration schema for the reply mail filter.

    This model validates the entire config.yaml structure. If validation
    fails on startup, the application exits with a clear error.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )
    rules: RulesConfig = Field(default_factory=RulesConfig)
    mailbox: MailboxConfig = Field(default_factory=lambda: MailboxConfig(enabled=False))
    spool: SpoolConfig = Field(default_factory=SpoolConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
