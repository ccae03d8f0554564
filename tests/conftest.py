"""Pytest fixtures and configuration for reply mail filter tests.

Provides sample messages, rule files, spool folders and configuration.
"""

import os
from pathlib import Path
from typing import Any, Generator

import pytest

from mailfilter.config import reset_config
from mailfilter.config_schema import AppConfig

# ---------------------------------------------------------------------------
# Sample messages
# ---------------------------------------------------------------------------

PLAIN_MESSAGE = b"""\
From: alice@example.com
To: bob@example.com
Subject: Re: status
Content-Type: text/plain; charset=utf-8

Hi Bob,

All green on our side.

Disclaimer: this message is
confidential.

Regards
Alice
"""

RELATED_MESSAGE = b"""\
From: alice@example.com
To: bob@example.com
Subject: Re: Hello
MIME-Version: 1.0
Content-Type: multipart/related; boundary="REL"

--REL
Content-Type: multipart/alternative; boundary="ALT"

--ALT
Content-Type: text/plain; charset="utf-8"

Hello Bob

Disclaimer: this message
is confidential.

Thanks
--ALT
Content-Type: text/html; charset="utf-8"

<html><body><p>Hello&nbsp;Bob</p><div class="sig"><img src="cid:LOGO"></div></body></html>
--ALT--

--REL
Content-Type: image/png
Content-ID: <LOGO>
Content-Disposition: inline; filename="logo.png"
Content-Transfer-Encoding: base64

iVBORw0KGgo=
--REL
Content-Type: image/png
Content-ID: <XYZ>
Content-Transfer-Encoding: base64

iVBORw0KGgo=
--REL--
"""

ATTACHMENT_MESSAGE = b"""\
From: alice@example.com
To: bob@example.com
Subject: Report
MIME-Version: 1.0
Content-Type: multipart/mixed; boundary="MIX"

--MIX
Content-Type: text/plain; charset=utf-8

See attached.

Disclaimer: body copy.

Bye
--MIX
Content-Type: text/plain; charset=utf-8
Content-Disposition: attachment; filename="notes.txt"

Notes

Disclaimer: attachment copy.

End
--MIX--
"""


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def plain_message() -> bytes:
    return PLAIN_MESSAGE


@pytest.fixture
def related_message() -> bytes:
    """multipart/related message with an HTML signature referencing an inline logo."""
    return RELATED_MESSAGE


@pytest.fixture
def attachment_message() -> bytes:
    return ATTACHMENT_MESSAGE


# ---------------------------------------------------------------------------
# Rule files
# ---------------------------------------------------------------------------


@pytest.fixture
def rules_dir(tmp_path: Path) -> Path:
    """Create a rules directory with one file of each kind."""
    d = tmp_path / "rules"
    d.mkdir()
    (d / "text.txt").write_text("Disclaimer:.*?\\n\\n\n\n")
    (d / "html.txt").write_text("<!-- sig -->(.*?)<!-- /sig -->\n")
    (d / "dom.txt").write_text("  .sig  \n\n")
    return d


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_dict(tmp_path: Path, rules_dir: Path) -> dict[str, Any]:
    """Return a minimal valid config as a dictionary (mailbox disabled)."""
    return {
        "schema_version": 1,
        "rules": {
            "text": str(rules_dir / "text.txt"),
            "html": str(rules_dir / "html.txt"),
            "dom": str(rules_dir / "dom.txt"),
        },
        "mailbox": {"enabled": False},
        "spool": {
            "tmp_dir": str(tmp_path / "spool" / "tmp"),
            "dst_dir": str(tmp_path / "spool" / "dst"),
        },
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_dict: dict[str, Any]) -> Path:
    """Create a temporary config file with valid content."""
    import yaml

    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(yaml.safe_dump(sample_config_dict))
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the MAILFILTER_CONFIG_PATH environment variable."""
    old_value = os.environ.get("MAILFILTER_CONFIG_PATH")
    os.environ["MAILFILTER_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["MAILFILTER_CONFIG_PATH"]
    else:
        os.environ["MAILFILTER_CONFIG_PATH"] = old_value
