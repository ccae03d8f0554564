"""Message sources and sinks around the filtering engine.

- ImapMailbox: fetches messages from an IMAP folder into the spool
- Spool: temporary and destination folders of message files
"""

from mailfilter.mailbox.imap import ImapMailbox
from mailfilter.mailbox.spool import Spool, write_atomic

__all__ = ["ImapMailbox", "Spool", "write_atomic"]
