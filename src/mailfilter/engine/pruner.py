"""Second tree pass: drop parts whose content-id was harvested during filtering."""

from __future__ import annotations

from collections.abc import Set

from mailfilter.core.logging import get_logger
from mailfilter.engine.parts import Part, PartTree

logger = get_logger(__name__)


class AttachmentPruner:
    """Removes leaf parts named in a removal set from every composite part.

    Composite children are always kept and pruned recursively. Leaves
    without a content-id are always kept. A composite part left without
    children stays composite with an empty child list.
    """

    def __init__(self, removal_set: Set[str]):
        self.removal_set = removal_set

    def _should_remove(self, child: Part) -> bool:
        if not child.is_leaf:
            return False
        content_id = child.content_id
        return content_id is not None and content_id in self.removal_set

    def prune_part(self, part: Part) -> list[Part]:
        """Prune one composite part and, depth-first, its composite children.

        Returns:
            Removed parts, in document order
        """
        if part.is_leaf:
            return []

        removed: list[Part] = []
        kept: list[Part] = []
        for child in part.children:
            if self._should_remove(child):
                removed.append(child)
                continue
            removed.extend(self.prune_part(child))
            kept.append(child)

        if len(kept) != len(part.children):
            part.replace_children(kept)
        return removed

    def prune(self, tree: PartTree) -> list[Part]:
        if not self.removal_set:
            return []

        removed = self.prune_part(tree.root)
        for part in removed:
            logger.info(
                "Attachment pruned",
                content_id=part.content_id,
                content_type=part.content_type,
            )
        return removed
