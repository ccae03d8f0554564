"""Rule sets: ordered patterns and selectors loaded from line-oriented files.

A rule file holds one rule per line. Lines are trimmed and blank lines are
dropped. Every rule is compiled when the rule set is built, so a malformed
pattern or selector fails the whole run before any message is processed.

Three independent rule sets drive the filters:
- text patterns, applied to text/plain parts
- markup patterns, applied to text/html parts
- markup selectors (CSS), applied to text/html parts before markup patterns

Patterns are compiled with the `regex` library using DOTALL, so `.` also
matches line breaks and a single rule may span several lines. Matching is
always done with a timeout (see FilterRules.regex_timeout).

Usage:
    from mailfilter.engine.rules import FilterRules, load_filter_rules

    rules = load_filter_rules(text="rules/text.txt", dom="rules/dom.txt")
    if rules.has_markup_rules:
        ...
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import regex
import soupsieve

from mailfilter.core.errors import RuleError
from mailfilter.core.logging import get_logger

logger = get_logger(__name__)

# Regex timeout in seconds for every substitution
DEFAULT_REGEX_TIMEOUT = 1.0

PATTERN_FLAGS = regex.DOTALL


class RuleKind(str, Enum):
    """What a rule set contains and which part type it applies to."""

    TEXT_PATTERN = "text"
    MARKUP_PATTERN = "html"
    SELECTOR = "dom"

    @property
    def is_pattern(self) -> bool:
        return self is not RuleKind.SELECTOR


@dataclass(frozen=True)
class Rule:
    """A single compiled rule.

    Attributes:
        text: Rule source as written in the rule file (trimmed)
        matcher: Compiled regex.Pattern or soupsieve.SoupSieve
        line_number: 1-based line in the rule file, if loaded from one
    """

    text: str
    matcher: Any = field(repr=False, compare=False)
    line_number: int | None = None


def _compile_rule(text: str, kind: RuleKind, source: str, line_number: int | None) -> Rule:
    where = f"{source}:{line_number}" if line_number is not None else source
    if kind.is_pattern:
        try:
            matcher = regex.compile(text, PATTERN_FLAGS)
        except regex.error as e:
            raise RuleError(
                f"Invalid {kind.value} pattern {text!r} at {where}: {e}\n"
                "Fix or remove the line in the rule file.",
                source=source,
                line_number=line_number,
            ) from e
    else:
        try:
            matcher = soupsieve.compile(text)
        except soupsieve.SelectorSyntaxError as e:
            raise RuleError(
                f"Invalid CSS selector {text!r} at {where}: {e}\n"
                "Fix or remove the line in the rule file.",
                source=source,
                line_number=line_number,
            ) from e
    return Rule(text=text, matcher=matcher, line_number=line_number)


@dataclass(frozen=True)
class RuleSet:
    """Ordered, read-only collection of compiled rules of one kind.

    Entries that are empty after trimming are kept in `entries` (so the
    set mirrors its source) but never compiled or applied.

    Attributes:
        kind: Which filter the rules belong to
        entries: Trimmed rule texts in file order
        source: Where the rules came from (file path or label)
    """

    kind: RuleKind
    entries: tuple[str, ...] = ()
    source: str = "<inline>"
    _rules: tuple[Rule, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        compiled = []
        for index, raw in enumerate(self.entries, start=1):
            text = raw.strip()
            if not text:
                continue
            line = index if self.source != "<inline>" else None
            compiled.append(_compile_rule(text, self.kind, self.source, line))
        object.__setattr__(self, "_rules", tuple(compiled))

    @classmethod
    def from_lines(
        cls,
        lines: Iterable[str],
        kind: RuleKind,
        source: str = "<inline>",
    ) -> RuleSet:
        """Build a rule set from raw lines, trimming each one."""
        return cls(kind=kind, entries=tuple(line.strip() for line in lines), source=source)

    @classmethod
    def empty(cls, kind: RuleKind) -> RuleSet:
        return cls(kind=kind)

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __bool__(self) -> bool:
        return bool(self._rules)


def load_rule_file(path: str | Path, kind: RuleKind) -> RuleSet:
    """Load a rule file into a compiled rule set.

    Args:
        path: Path to a UTF-8 text file with one rule per line
        kind: Kind of rules the file contains

    Returns:
        Compiled RuleSet

    Raises:
        RuleError: If the file cannot be read or a rule does not compile
    """
    rule_path = Path(path)
    try:
        content = rule_path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise RuleError(f"Rule file not found: {rule_path}", source=str(rule_path)) from e
    except (OSError, UnicodeDecodeError) as e:
        raise RuleError(
            f"Rule file {rule_path} is not readable: {e}", source=str(rule_path)
        ) from e

    rule_set = RuleSet.from_lines(content.splitlines(), kind, source=str(rule_path))

    logger.debug(
        "Rule file loaded",
        path=str(rule_path),
        kind=kind.value,
        rules=len(rule_set),
    )
    return rule_set


@dataclass(frozen=True)
class FilterRules:
    """The three optional rule sets applied to every message of a run.

    Attributes:
        text_patterns: Patterns removed from text/plain parts
        markup_patterns: Patterns removed from text/html parts
        selectors: CSS selectors whose elements are removed from text/html parts
        regex_timeout: Seconds allowed per pattern substitution (None disables)
    """

    text_patterns: RuleSet = field(default_factory=lambda: RuleSet.empty(RuleKind.TEXT_PATTERN))
    markup_patterns: RuleSet = field(
        default_factory=lambda: RuleSet.empty(RuleKind.MARKUP_PATTERN)
    )
    selectors: RuleSet = field(default_factory=lambda: RuleSet.empty(RuleKind.SELECTOR))
    regex_timeout: float | None = DEFAULT_REGEX_TIMEOUT

    def __post_init__(self) -> None:
        expected = (
            ("text_patterns", RuleKind.TEXT_PATTERN),
            ("markup_patterns", RuleKind.MARKUP_PATTERN),
            ("selectors", RuleKind.SELECTOR),
        )
        for name, kind in expected:
            if getattr(self, name).kind is not kind:
                raise RuleError(f"FilterRules.{name} must hold {kind.value} rules")

    @property
    def has_text_rules(self) -> bool:
        return bool(self.text_patterns)

    @property
    def has_markup_rules(self) -> bool:
        return bool(self.markup_patterns) or bool(self.selectors)

    @property
    def is_empty(self) -> bool:
        return not (self.has_text_rules or self.has_markup_rules)

    @classmethod
    def from_strings(
        cls,
        text: Iterable[str] = (),
        html: Iterable[str] = (),
        dom: Iterable[str] = (),
        regex_timeout: float | None = DEFAULT_REGEX_TIMEOUT,
    ) -> FilterRules:
        """Build rules from in-memory lists (tests, library use)."""
        return cls(
            text_patterns=RuleSet.from_lines(text, RuleKind.TEXT_PATTERN),
            markup_patterns=RuleSet.from_lines(html, RuleKind.MARKUP_PATTERN),
            selectors=RuleSet.from_lines(dom, RuleKind.SELECTOR),
            regex_timeout=regex_timeout,
        )


def load_filter_rules(
    text: str | Path | None = None,
    html: str | Path | None = None,
    dom: str | Path | None = None,
    regex_timeout: float | None = DEFAULT_REGEX_TIMEOUT,
) -> FilterRules:
    """Load the three optional rule files.

    Args:
        text: Rule file with patterns for text/plain parts
        html: Rule file with patterns for text/html parts
        dom: Rule file with CSS selectors for text/html parts
        regex_timeout: Seconds allowed per pattern substitution

    Returns:
        FilterRules with an empty rule set for every file not given

    Raises:
        RuleError: If any given file is unreadable or holds an invalid rule
    """
    rules = FilterRules(
        text_patterns=(
            load_rule_file(text, RuleKind.TEXT_PATTERN)
            if text
            else RuleSet.empty(RuleKind.TEXT_PATTERN)
        ),
        markup_patterns=(
            load_rule_file(html, RuleKind.MARKUP_PATTERN)
            if html
            else RuleSet.empty(RuleKind.MARKUP_PATTERN)
        ),
        selectors=(
            load_rule_file(dom, RuleKind.SELECTOR) if dom else RuleSet.empty(RuleKind.SELECTOR)
        ),
        regex_timeout=regex_timeout,
    )

    logger.info(
        "Filter rules loaded",
        text_patterns=len(rules.text_patterns),
        markup_patterns=len(rules.markup_patterns),
        selectors=len(rules.selectors),
    )
    return rules
