"""IMAP mailbox source.

Fetches every message of one folder into the spool and, unless disabled,
flags each fetched message as deleted. Closing the folder expunges the
flagged messages.

Usage:
    from mailfilter.mailbox import ImapMailbox, Spool

    with ImapMailbox(config.mailbox) as mailbox:
        paths = mailbox.fetch_to_spool(spool)
"""

from __future__ import annotations

import imaplib
import ssl
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from mailfilter.config_schema import MailboxConfig
from mailfilter.core.errors import MailboxError
from mailfilter.core.logging import get_logger
from mailfilter.mailbox.spool import Spool

logger = get_logger(__name__)

IMAP_OK = "OK"


def decode_imap_response(data: object) -> str:
    if not isinstance(data, list):
        return ""
    parts: list[str] = []
    for item in data:
        if item is None:
            continue
        if isinstance(item, bytes):
            parts.append(item.decode("utf-8", errors="replace"))
        else:
            parts.append(str(item))
    return " | ".join(parts).strip()


def parse_search_data(data: object) -> list[str]:
    """Extract message sequence numbers from a SEARCH response."""
    if not isinstance(data, list) or not data or not data[0]:
        return []
    raw = data[0]
    if isinstance(raw, bytes):
        return [num.decode("ascii", errors="ignore") for num in raw.split()]
    if isinstance(raw, str):
        return [num for num in raw.split() if num]
    return []


def parse_fetch_message(fetch_data: Iterable[object]) -> bytes | None:
    """Return the message literal from a FETCH (RFC822) response."""
    for part in fetch_data:
        if not isinstance(part, tuple) or len(part) < 2:
            continue
        _meta, body = part
        if isinstance(body, bytes):
            return body
    return None


def build_ssl_context(verify_certificate: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not verify_certificate:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class ImapMailbox:
    """Connection to one IMAP folder.

    Attributes:
        config: Mailbox configuration
    """

    def __init__(
        self,
        config: MailboxConfig,
        imap_factory: Callable[..., Any] | None = None,
        ssl_factory: Callable[..., Any] | None = None,
    ):
        self.config = config
        self._imap_factory = imap_factory or imaplib.IMAP4
        self._ssl_factory = ssl_factory or imaplib.IMAP4_SSL
        self._imap: Any = None
        self._selected = False

    def _check(self, command: str, status: str, data: object) -> None:
        if status != IMAP_OK:
            detail = decode_imap_response(data) or "no details"
            raise MailboxError(f"IMAP {command} failed: {detail}", command=command)

    def connect(self) -> None:
        """Connect, authenticate and select the configured folder.

        Raises:
            MailboxError: If the server cannot be reached or rejects a command
        """
        host, port = self.config.split_server()
        context = build_ssl_context(self.config.verify_certificate)

        logger.info(
            "Connecting to IMAP server",
            host=host,
            port=port,
            user=self.config.user,
            ssl=self.config.ssl,
            starttls=self.config.starttls,
        )

        try:
            if self.config.ssl:
                imap = self._ssl_factory(host, port, ssl_context=context)
            else:
                imap = self._imap_factory(host, port)
                if self.config.starttls:
                    self._check("STARTTLS", *imap.starttls(ssl_context=context))
            self._imap = imap
            self._check("LOGIN", *imap.login(self.config.user or "", self.config.password or ""))

            logger.info("Opening IMAP folder", folder=self.config.folder)
            self._check("SELECT", *imap.select(self.config.folder))
            self._selected = True
        except imaplib.IMAP4.error as e:
            raise MailboxError(
                f"IMAP error on {host}:{port}: {e}\n"
                "Check the user, password and folder in the mailbox configuration.",
            ) from e
        except OSError as e:
            raise MailboxError(
                f"Cannot connect to IMAP server {host}:{port}: {e}\n"
                "Check the server address, port and ssl/starttls settings.",
                command="CONNECT",
            ) from e

    def message_numbers(self) -> list[str]:
        status, data = self._imap.search(None, "ALL")
        self._check("SEARCH", status, data)
        return parse_search_data(data)

    def fetch(self, number: str) -> bytes:
        status, data = self._imap.fetch(number, "(RFC822)")
        self._check("FETCH", status, data)
        raw = parse_fetch_message(data or [])
        if raw is None:
            raise MailboxError(f"IMAP FETCH returned no message for {number}", command="FETCH")
        return raw

    def delete(self, number: str) -> None:
        status, data = self._imap.store(number, "+FLAGS", "\\Deleted")
        self._check("STORE", status, data)

    def fetch_to_spool(self, spool: Spool) -> list[Path]:
        """Fetch every message of the folder into the spool's temporary folder.

        Returns:
            Paths of the written spool files

        Raises:
            MailboxError: If a command fails; messages fetched so far stay in the spool
        """
        if self._imap is None:
            self.connect()

        try:
            numbers = self.message_numbers()
            paths = []
            for number in numbers:
                path = spool.incoming_path(number)
                logger.debug("Fetching message", number=number, path=str(path))
                spool.write_incoming(number, self.fetch(number))
                paths.append(path)

                if self.config.delete_after_fetch:
                    logger.debug("Deleting message", number=number)
                    self.delete(number)
        except imaplib.IMAP4.error as e:
            raise MailboxError(f"IMAP error while fetching: {e}") from e

        logger.info(
            "Messages fetched",
            folder=self.config.folder,
            count=len(paths),
            deleted=self.config.delete_after_fetch,
        )
        return paths

    def close(self) -> None:
        """Close the folder (expunging deleted messages) and log out."""
        if self._imap is None:
            return
        imap, self._imap = self._imap, None
        try:
            if self._selected:
                logger.debug("Closing IMAP folder", folder=self.config.folder)
                self._check("CLOSE", *imap.close())
            logger.debug("Disconnecting from IMAP")
            imap.logout()
        except imaplib.IMAP4.error as e:
            raise MailboxError(f"IMAP error while closing: {e}", command="CLOSE") from e
        finally:
            self._selected = False

    def __enter__(self) -> ImapMailbox:
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is None:
            self.close()
            return
        # keep the original error; only try to release the connection
        try:
            self.close()
        except MailboxError as close_error:
            logger.warning("IMAP close failed after error", error=str(close_error))
