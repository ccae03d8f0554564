"""MIME part filtering engine.

This package provides the message filtering pipeline:
- Rule sets loaded from line-oriented rule files
- Part tree construction, traversal and serialization
- Text and markup part filters that harvest inline image references
- Attachment pruner for parts whose references were removed
- Message filter driving parse -> filter -> prune -> serialize
"""

from mailfilter.engine.markup_filter import MarkupPartFilter, find_cid_references
from mailfilter.engine.orchestrator import FilterOutcome, FilterStage, MessageFilter
from mailfilter.engine.parts import (
    Part,
    PartKind,
    PartTree,
    is_attachment,
    normalize_content_id,
    parse_message,
    serialize_message,
)
from mailfilter.engine.pruner import AttachmentPruner
from mailfilter.engine.rules import (
    FilterRules,
    Rule,
    RuleKind,
    RuleSet,
    load_filter_rules,
    load_rule_file,
)
from mailfilter.engine.text_filter import TextPartFilter, remove_matches

__all__ = [
    # Rules
    "FilterRules",
    "Rule",
    "RuleKind",
    "RuleSet",
    "load_filter_rules",
    "load_rule_file",
    # Part tree
    "Part",
    "PartKind",
    "PartTree",
    "is_attachment",
    "normalize_content_id",
    "parse_message",
    "serialize_message",
    # Filters
    "MarkupPartFilter",
    "TextPartFilter",
    "find_cid_references",
    "remove_matches",
    # Pruning
    "AttachmentPruner",
    # Orchestration
    "FilterOutcome",
    "FilterStage",
    "MessageFilter",
]
