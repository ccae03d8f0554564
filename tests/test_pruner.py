"""Tests for the attachment pruning pass."""

from mailfilter.engine.parts import PartKind, parse_message, serialize_message
from mailfilter.engine.pruner import AttachmentPruner

IMAGES_ONLY = b"""\
Content-Type: multipart/related; boundary="REL"

--REL
Content-Type: image/png
Content-ID: <A>

aaaa
--REL
Content-Type: image/png
Content-ID: <B>

bbbb
--REL--
"""

NESTED = b"""\
Content-Type: multipart/mixed; boundary="OUT"

--OUT
Content-Type: multipart/related; boundary="IN"

--IN
Content-Type: text/html

<p>hi</p>
--IN
Content-Type: image/gif
Content-ID: <DEEP>

gif
--IN--

--OUT
Content-Type: image/gif
Content-ID: <TOP>

gif
--OUT--
"""


class TestAttachmentPruner:
    """Tests for AttachmentPruner."""

    def test_removes_referenced_part_and_keeps_others(self, related_message: bytes) -> None:
        tree = parse_message(related_message)
        removed = AttachmentPruner({"LOGO"}).prune(tree)

        assert [part.content_id for part in removed] == ["LOGO"]
        assert [child.content_id for child in tree.root.children] == [None, "XYZ"]

    def test_nested_removal(self) -> None:
        tree = parse_message(NESTED)
        removed = AttachmentPruner({"DEEP"}).prune(tree)

        assert [part.content_id for part in removed] == ["DEEP"]
        inner = tree.root.children[0]
        assert [child.content_type for child in inner.children] == ["text/html"]
        assert tree.root.children[1].content_id == "TOP"

    def test_parts_without_content_id_always_kept(self, related_message: bytes) -> None:
        tree = parse_message(related_message)
        AttachmentPruner({"LOGO", "XYZ"}).prune(tree)
        alternative = tree.root.children[0]
        assert len(alternative.children) == 2

    def test_empty_removal_set_is_noop(self, related_message: bytes) -> None:
        tree = parse_message(related_message)
        assert AttachmentPruner(set()).prune(tree) == []
        assert serialize_message(tree) == serialize_message(parse_message(related_message))

    def test_fully_pruned_composite_stays_composite(self) -> None:
        tree = parse_message(IMAGES_ONLY)
        removed = AttachmentPruner({"A", "B"}).prune(tree)

        assert len(removed) == 2
        assert tree.root.kind is PartKind.COMPOSITE
        assert not tree.root.is_leaf
        assert tree.root.children == []

        reparsed = parse_message(serialize_message(tree))
        assert reparsed.root.content_type == "multipart/related"
        assert b"aaaa" not in serialize_message(tree)

    def test_pruning_is_idempotent(self, related_message: bytes) -> None:
        tree = parse_message(related_message)
        pruner = AttachmentPruner({"LOGO"})

        pruner.prune(tree)
        first = serialize_message(tree)
        assert pruner.prune(tree) == []
        assert serialize_message(tree) == first

    def test_composite_children_never_removed_by_content_id(self) -> None:
        raw = (
            b"Content-Type: multipart/mixed; boundary=OUT\n\n"
            b"--OUT\n"
            b"Content-Type: multipart/related; boundary=IN\n"
            b"Content-ID: <GROUP>\n\n"
            b"--IN\nContent-Type: text/plain\n\nx\n--IN--\n"
            b"--OUT--\n"
        )
        tree = parse_message(raw)
        assert AttachmentPruner({"GROUP"}).prune(tree) == []
        assert len(tree.root.children) == 1
