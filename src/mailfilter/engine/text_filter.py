"""Pattern removal for text/plain parts.

Each configured pattern, in rule file order, has every non-overlapping match
removed from the whole decoded body. Patterns are compiled with DOTALL, so
a match may run across line breaks (e.g. ``Disclaimer:.*?\\n\\n``).

All regex operations use the `regex` library with a timeout to bound the
cost of pathological patterns against hostile message bodies.
"""

from __future__ import annotations

from collections.abc import Callable

import regex

from mailfilter.core.errors import FilterError
from mailfilter.core.logging import get_logger
from mailfilter.engine.parts import Part, PartKind
from mailfilter.engine.rules import DEFAULT_REGEX_TIMEOUT, Rule, RuleSet

logger = get_logger(__name__)


def remove_matches(
    rule: Rule,
    text: str,
    timeout: float | None = DEFAULT_REGEX_TIMEOUT,
    on_capture: Callable[[str], None] | None = None,
) -> str:
    """Remove every match of a pattern rule from text.

    Args:
        rule: Compiled pattern rule
        text: Text to process
        timeout: Seconds allowed for the substitution (None disables)
        on_capture: Called with the text of group 1 for every match where the
            group matched something

    Returns:
        Text with all matches removed

    Raises:
        FilterError: If the substitution exceeded the timeout
    """
    pattern: regex.Pattern = rule.matcher

    if on_capture is not None and pattern.groups >= 1:

        def _replace(match: regex.Match) -> str:
            captured = match.group(1)
            if captured:
                on_capture(captured)
            return ""

        replacement: str | Callable[[regex.Match], str] = _replace
    else:
        replacement = ""

    try:
        return pattern.sub(replacement, text, timeout=timeout)
    except TimeoutError as e:
        logger.warning(
            "Regex timeout during substitution",
            pattern=rule.text[:50],
            line_number=rule.line_number,
        )
        raise FilterError(
            f"Pattern {rule.text[:50]!r} timed out after {timeout}s",
            rule=rule.text,
        ) from e


class TextPartFilter:
    """Removes text pattern matches from text/plain leaves.

    Attributes:
        patterns: Text pattern rule set, applied in order
        regex_timeout: Seconds allowed per substitution
    """

    def __init__(self, patterns: RuleSet, regex_timeout: float | None = DEFAULT_REGEX_TIMEOUT):
        self.patterns = patterns
        self.regex_timeout = regex_timeout

    @property
    def active(self) -> bool:
        return bool(self.patterns)

    def filter_text(self, text: str) -> str:
        for rule in self.patterns:
            if not rule.text:
                continue
            text = remove_matches(rule, text, timeout=self.regex_timeout)
        return text

    def apply(self, part: Part) -> bool:
        """Filter one part in place.

        Returns:
            True if the body was rewritten
        """
        if part.kind is not PartKind.PLAIN_TEXT or not self.active:
            return False

        original = part.get_text()
        filtered = self.filter_text(original)
        if filtered == original:
            return False

        part.set_text(filtered)
        logger.debug(
            "Text part rewritten",
            removed_chars=len(original) - len(filtered),
        )
        return True
