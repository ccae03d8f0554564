"""In-memory part tree for one MIME message.

The tree wraps the standard library `email` object model. Messages are
parsed with the compat32 policy so that headers and parts the filters do not
touch are written back the way they were read.

Every node is a Part with a PartKind:
- COMPOSITE: multipart (or message/*) container, has `children`
- PLAIN_TEXT: text/plain leaf
- MARKUP: text/html leaf
- OTHER_LEAF: any other leaf (images, calendars, unknown types...)
- ATTACHMENT: any part carrying a Content-Disposition header; treated as a
  leaf and never descended into, whatever its declared type

Usage:
    from mailfilter.engine.parts import parse_message, serialize_message

    tree = parse_message(raw_bytes)
    for part in tree.iter_leaves():
        ...
    output = serialize_message(tree)
"""

from __future__ import annotations

import base64
import codecs
import quopri
from collections.abc import Iterator
from dataclasses import dataclass, field
from email import policy
from email.generator import BytesGenerator
from email.message import Message
from email.parser import BytesParser
from enum import Enum
from io import BytesIO

from mailfilter.core.errors import ParseError, SerializationError
from mailfilter.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CHARSET = "utf-8"

# compat32 keeps header values as parsed; max_line_length=0 disables refolding
MESSAGE_POLICY = policy.compat32.clone(max_line_length=0)


class PartKind(Enum):
    """Filter dispatch variants for a part."""

    PLAIN_TEXT = "plain_text"
    MARKUP = "markup"
    OTHER_LEAF = "other_leaf"
    COMPOSITE = "composite"
    ATTACHMENT = "attachment"


def is_attachment(message: Message) -> bool:
    """Return True if the part declares at least one Content-Disposition header.

    The header value is irrelevant: `inline` parts count as attachments too.
    """
    return bool(message.get_all("Content-Disposition"))


def normalize_content_id(value: str | None) -> str | None:
    """Normalize a Content-ID value or cid: reference.

    Trims surrounding whitespace and one pair of angle brackets, so
    ``" <logo@example.com> "`` and ``"logo@example.com"`` compare equal.
    """
    if value is None:
        return None
    normalized = str(value).strip()
    if normalized.startswith("<") and normalized.endswith(">"):
        normalized = normalized[1:-1].strip()
    return normalized or None


def classify(message: Message) -> PartKind:
    """Map a parsed message node to its PartKind."""
    if is_attachment(message):
        return PartKind.ATTACHMENT
    if message.is_multipart():
        return PartKind.COMPOSITE
    content_type = message.get_content_type()
    if content_type == "text/plain":
        return PartKind.PLAIN_TEXT
    if content_type == "text/html":
        return PartKind.MARKUP
    return PartKind.OTHER_LEAF


def _resolve_codec(charset: str | None) -> str:
    if not charset:
        return DEFAULT_CHARSET
    try:
        return codecs.lookup(charset).name
    except LookupError:
        logger.warning(
            "Unknown charset, decoding as UTF-8",
            charset=charset,
        )
        return DEFAULT_CHARSET


@dataclass(eq=False)
class Part:
    """One node of the message tree.

    A part is either a leaf (`children` is None) or composite (`children`
    is a list, possibly empty after pruning), never both.

    Attributes:
        message: Underlying email.message.Message node
        kind: Dispatch variant, fixed at parse time
        children: Child parts in declared order (composite parts only)
    """

    message: Message
    kind: PartKind
    children: list[Part] | None = None
    is_attachment: bool = field(init=False)

    def __post_init__(self) -> None:
        self.is_attachment = self.kind is PartKind.ATTACHMENT
        if self.kind is PartKind.COMPOSITE and self.children is None:
            self.children = []

    @property
    def is_leaf(self) -> bool:
        return self.children is None

    @property
    def content_type(self) -> str:
        return self.message.get_content_type()

    @property
    def headers(self) -> list[tuple[str, str]]:
        """Header fields in declared order."""
        return list(self.message.items())

    def header(self, name: str) -> str | None:
        """Case-insensitive lookup of the first occurrence of a header."""
        return self.message.get(name)

    @property
    def content_id(self) -> str | None:
        return normalize_content_id(self.message.get("Content-ID"))

    @property
    def charset(self) -> str | None:
        """Declared charset parameter of the content type, lower-cased."""
        return self.message.get_content_charset()

    @property
    def codec(self) -> str:
        """Python codec name used to decode the body."""
        return _resolve_codec(self.charset)

    def get_text(self) -> str:
        """Return the leaf body decoded from its transfer encoding and charset.

        Undecodable bytes are kept as surrogate escapes so that set_text()
        writes them back unchanged.
        """
        if not self.is_leaf:
            raise TypeError("get_text() called on a composite part")
        data = self.message.get_payload(decode=True)
        if data is None:
            return ""
        return data.decode(self.codec, errors="surrogateescape")

    def set_text(self, text: str) -> None:
        """Replace the leaf body, keeping the declared charset and transfer encoding.

        Raises:
            SerializationError: If the text cannot be encoded in the declared charset
        """
        if not self.is_leaf:
            raise TypeError("set_text() called on a composite part")
        try:
            data = text.encode(self.codec, errors="surrogateescape")
        except UnicodeEncodeError as e:
            raise SerializationError(
                f"Rewritten {self.content_type} body cannot be encoded as {self.codec}: {e}"
            ) from e

        transfer_encoding = (self.message.get("Content-Transfer-Encoding") or "").strip().lower()
        if transfer_encoding == "base64":
            payload = base64.encodebytes(data).decode("ascii")
        elif transfer_encoding == "quoted-printable":
            # line breaks are re-emitted by the generator; a bare CR would become =0D
            payload = quopri.encodestring(data.replace(b"\r\n", b"\n")).decode("ascii")
        else:
            payload = data.decode("ascii", errors="surrogateescape")
        self.message.set_payload(payload)

    def replace_children(self, children: list[Part]) -> None:
        """Replace the child list of a composite part, keeping it composite."""
        if self.children is None:
            raise TypeError("replace_children() called on a leaf part")
        self.children = list(children)
        if self.message.get_content_maintype() == "message" and not self.children:
            # message/* containers serialize their single child; an empty body stands in
            self.message.set_payload("")
        else:
            self.message.set_payload([child.message for child in self.children])


def build_part(message: Message) -> Part:
    """Recursively wrap a parsed message node and its subparts."""
    kind = classify(message)
    if kind is not PartKind.COMPOSITE:
        return Part(message=message, kind=kind)
    subparts = message.get_payload()
    if not isinstance(subparts, list):
        subparts = [subparts]
    return Part(
        message=message,
        kind=kind,
        children=[build_part(sub) for sub in subparts],
    )


@dataclass(eq=False)
class PartTree:
    """A parsed message: the root part plus the line separator it was read with."""

    root: Part
    linesep: str = "\n"

    def iter_leaves(self) -> Iterator[Part]:
        """Yield every leaf exactly once, in document order.

        Attachments are yielded as leaves; their contents are never visited.
        """
        stack = [self.root]
        while stack:
            part = stack.pop()
            if part.is_leaf:
                yield part
            else:
                stack.extend(reversed(part.children))

    def iter_parts(self) -> Iterator[Part]:
        stack = [self.root]
        while stack:
            part = stack.pop()
            yield part
            if not part.is_leaf:
                stack.extend(reversed(part.children))


def _detect_linesep(raw: bytes) -> str:
    first_newline = raw.find(b"\n")
    if first_newline > 0 and raw[first_newline - 1 : first_newline] == b"\r":
        return "\r\n"
    return "\n"


def parse_message(raw: bytes, message_id: str | None = None) -> PartTree:
    """Parse raw message bytes into a PartTree.

    Args:
        raw: Complete message (header block, blank line, body)
        message_id: Identifier used in error messages

    Returns:
        PartTree preserving header and child order

    Raises:
        ParseError: If the bytes cannot be interpreted as a message
    """
    if not isinstance(raw, (bytes, bytearray)):
        raise ParseError(
            f"Message input must be bytes, got {type(raw).__name__}",
            message_id=message_id,
        )
    if not raw.strip():
        raise ParseError("Message is empty", message_id=message_id)

    try:
        message = BytesParser(policy=MESSAGE_POLICY).parsebytes(bytes(raw))
    except Exception as e:
        raise ParseError(f"Message could not be parsed: {e}", message_id=message_id) from e

    if not message.keys():
        raise ParseError(
            "Message has no header block; expected 'Name: value' lines before the body",
            message_id=message_id,
        )

    tree = PartTree(root=build_part(message), linesep=_detect_linesep(bytes(raw)))

    defects = [type(d).__name__ for part in tree.iter_parts() for d in part.message.defects]
    if defects:
        logger.debug("Message parsed with defects", defects=defects)

    return tree


def serialize_message(tree: PartTree, message_id: str | None = None) -> bytes:
    """Write a PartTree back to message bytes.

    Raises:
        SerializationError: If the tree cannot be encoded
    """
    buffer = BytesIO()
    generator = BytesGenerator(
        buffer,
        mangle_from_=False,
        policy=MESSAGE_POLICY.clone(linesep=tree.linesep),
    )
    try:
        generator.flatten(tree.root.message, unixfrom=tree.root.message.get_unixfrom() is not None)
    except Exception as e:
        raise SerializationError(
            f"Message could not be serialized: {e}", message_id=message_id
        ) from e
    return buffer.getvalue()
