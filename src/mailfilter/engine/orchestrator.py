"""End-to-end filtering of one message.

Processing stages per message:
1. parse: raw bytes -> PartTree
2. filter: visit every leaf once; rewrite text/plain and text/html bodies and
   collect the content-ids referenced by removed markup (the removal set)
3. prune: drop the parts named in the removal set from every composite part
4. serialize: PartTree -> raw bytes

Pruning starts only after every leaf has been filtered, because a reference
found in one part decides the fate of another. A failure at any stage raises
a MessageProcessingError subclass carrying the message id and stage; the
caller decides whether to skip the message or stop the run.

Usage:
    from mailfilter.engine import FilterRules, MessageFilter

    message_filter = MessageFilter(FilterRules.from_strings(dom=[".sig"]))
    outcome = message_filter.process(raw_bytes, message_id="42.msg")
    sink.write(outcome.output)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mailfilter.core.errors import FilterError, MessageProcessingError, SerializationError
from mailfilter.core.logging import get_logger
from mailfilter.engine.markup_filter import MarkupPartFilter
from mailfilter.engine.parts import PartKind, PartTree, parse_message, serialize_message
from mailfilter.engine.pruner import AttachmentPruner
from mailfilter.engine.rules import FilterRules
from mailfilter.engine.text_filter import TextPartFilter

_module_logger = get_logger(__name__)


class FilterStage(str, Enum):
    """Last stage a message reached."""

    PARSED = "parsed"
    FILTERED = "filtered"
    PRUNED = "pruned"
    SERIALIZED = "serialized"


@dataclass
class FilterOutcome:
    """Result of filtering one message.

    Attributes:
        message_id: Identifier passed by the caller
        output: Rewritten message bytes (the input bytes if nothing changed)
        stage: Last stage reached (SERIALIZED on success)
        rewritten_parts: Number of leaf bodies rewritten
        removal_set: Content-ids harvested during filtering
        pruned_content_ids: Content-ids of the parts actually removed
        duration_ms: Processing time
    """

    message_id: str | None
    output: bytes
    stage: FilterStage
    rewritten_parts: int = 0
    removal_set: frozenset[str] = frozenset()
    pruned_content_ids: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def changed(self) -> bool:
        return self.rewritten_parts > 0 or bool(self.pruned_content_ids)


class MessageFilter:
    """Filters messages against a fixed set of rules.

    A MessageFilter holds no per-message state, so one instance can serve
    several threads at once.

    Attributes:
        rules: Rule sets applied to every message
    """

    def __init__(self, rules: FilterRules, logger: Any = None):
        self.rules = rules
        self._logger = logger if logger is not None else _module_logger
        self._text_filter = TextPartFilter(rules.text_patterns, regex_timeout=rules.regex_timeout)
        self._markup_filter = MarkupPartFilter(
            rules.selectors,
            rules.markup_patterns,
            regex_timeout=rules.regex_timeout,
        )
        self._active = not rules.is_empty

    def filter_tree(self, tree: PartTree, removal_set: set[str]) -> int:
        """First pass: filter every leaf, collecting content-ids into removal_set.

        Returns:
            Number of rewritten leaf bodies
        """
        rewritten = 0
        for part in tree.iter_leaves():
            if part.kind is PartKind.PLAIN_TEXT:
                changed = self._text_filter.apply(part)
            elif part.kind is PartKind.MARKUP:
                changed = self._markup_filter.apply(part, removal_set)
            else:
                # attachments and any other leaf type are left untouched
                changed = False
            if changed:
                rewritten += 1
        return rewritten

    def process(self, raw: bytes, message_id: str | None = None) -> FilterOutcome:
        """Filter one message.

        Args:
            raw: Raw message bytes
            message_id: Identifier used in logs and errors

        Returns:
            FilterOutcome with the rewritten bytes

        Raises:
            ParseError: If the input is not a message
            FilterError: If a rule could not be applied
            SerializationError: If the rewritten message cannot be encoded
        """
        log = self._logger.bind(message_id=message_id) if message_id else self._logger
        start = time.monotonic()

        try:
            tree = parse_message(raw, message_id=message_id)
            stage = FilterStage.PARSED

            if not self._active:
                log.debug("No filter rules configured, message left unchanged")
                return FilterOutcome(
                    message_id=message_id,
                    output=bytes(raw),
                    stage=FilterStage.SERIALIZED,
                )

            removal_set: set[str] = set()
            try:
                rewritten = self.filter_tree(tree, removal_set)
            except SerializationError as e:
                # a rewritten body that cannot be re-encoded fails the filter stage
                e.stage = "filter"
                raise
            except MessageProcessingError:
                raise
            except Exception as e:
                raise FilterError(
                    f"Filtering failed: {e}", message_id=message_id
                ) from e
            stage = FilterStage.FILTERED

            removed = AttachmentPruner(removal_set).prune(tree)
            stage = FilterStage.PRUNED

            if rewritten or removed:
                output = serialize_message(tree, message_id=message_id)
            else:
                output = bytes(raw)
            stage = FilterStage.SERIALIZED

        except MessageProcessingError as e:
            if e.message_id is None:
                e.message_id = message_id
            log.warning(
                "Message processing failed",
                stage=e.stage,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        outcome = FilterOutcome(
            message_id=message_id,
            output=output,
            stage=stage,
            rewritten_parts=rewritten,
            removal_set=frozenset(removal_set),
            pruned_content_ids=[part.content_id for part in removed],
            duration_ms=int((time.monotonic() - start) * 1000),
        )

        log.info(
            "Message filtered",
            rewritten_parts=outcome.rewritten_parts,
            harvested_ids=len(outcome.removal_set),
            pruned_parts=len(outcome.pruned_content_ids),
            duration_ms=outcome.duration_ms,
        )
        return outcome
