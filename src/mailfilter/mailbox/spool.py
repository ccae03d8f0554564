"""Spool folders for message files.

Fetched messages land in the temporary folder as ``<id>.msg``; filtered
messages are written under the same name to the destination folder. Writes
go through a temp file and rename, so a failed message never leaves a
partial output file behind.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from mailfilter.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_EXTENSION = ".msg"


def write_atomic(path: Path, data: bytes) -> Path:
    """Write bytes to path via a temp file in the same folder and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    return path


class Spool:
    """Source and destination folders for message files.

    Attributes:
        tmp_dir: Folder holding messages waiting to be filtered
        dst_dir: Folder receiving filtered messages
        extension: File extension of message files (with leading dot)
    """

    def __init__(self, tmp_dir: str | Path, dst_dir: str | Path, extension: str = DEFAULT_EXTENSION):
        self.tmp_dir = Path(tmp_dir)
        self.dst_dir = Path(dst_dir)
        self.extension = extension

    def ensure_dirs(self) -> None:
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        self.dst_dir.mkdir(parents=True, exist_ok=True)

    def incoming_path(self, message_id: str) -> Path:
        return self.tmp_dir / f"{message_id}{self.extension}"

    def write_incoming(self, message_id: str, raw: bytes) -> Path:
        """Store a fetched message in the temporary folder."""
        return write_atomic(self.incoming_path(message_id), raw)

    def list_incoming(self) -> list[Path]:
        """List message files waiting in the temporary folder, sorted by name.

        Hidden files and files without the spool extension are ignored.
        """
        if not self.tmp_dir.is_dir():
            return []

        paths = []
        for path in sorted(self.tmp_dir.iterdir()):
            if not path.is_file():
                continue
            if path.name.startswith(".") or path.suffix != self.extension:
                logger.debug("Ignoring spool file", file=path.name, reason="wrong extension")
                continue
            paths.append(path)
        return paths

    def output_path(self, source: Path) -> Path:
        return self.dst_dir / source.name

    def write_output(self, source: Path, data: bytes) -> Path:
        """Write a filtered message under the source file's name."""
        path = write_atomic(self.output_path(source), data)
        logger.debug("Filtered message written", path=str(path))
        return path

    def remove_source(self, source: Path) -> None:
        source.unlink(missing_ok=True)
        logger.debug("Spool file removed", path=str(source))
