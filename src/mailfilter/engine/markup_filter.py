"""Selector and pattern removal for text/html parts.

Processing steps for one HTML body:
1. Replace every ``&nbsp;`` entity with a plain space
2. Remove every element matched by the configured CSS selectors (in rule
   order), harvesting ``src="cid:..."`` references found inside each removed
   element, then re-serialize the document
3. Remove every match of the configured markup patterns (in rule order),
   harvesting ``src="cid:..."`` references found in group 1 of each match

Harvested content-ids go to the message's removal set; the pruner later drops
the inline image parts they name. References must be collected from the
removed fragment while it is being removed, since they are gone from the
surviving document afterwards.
"""

from __future__ import annotations

import regex
from bs4 import BeautifulSoup

from mailfilter.core.errors import FilterError
from mailfilter.core.logging import get_logger
from mailfilter.engine.parts import Part, PartKind, normalize_content_id
from mailfilter.engine.rules import DEFAULT_REGEX_TIMEOUT, RuleSet
from mailfilter.engine.text_filter import remove_matches

logger = get_logger(__name__)

NBSP_ENTITY = "&nbsp;"

CID_REFERENCE_PATTERN = regex.compile(r'src="cid:([^"]+)"', regex.DOTALL)

# Stdlib-backed parser: keeps fragments as fragments (no added <html>/<body>)
HTML_PARSER = "html.parser"


def find_cid_references(
    fragment: str, timeout: float | None = DEFAULT_REGEX_TIMEOUT
) -> list[str]:
    """Return the normalized content-ids referenced by ``src="cid:..."`` in a fragment.

    Raises:
        FilterError: If the scan exceeded the timeout
    """
    found = []
    try:
        for match in CID_REFERENCE_PATTERN.finditer(fragment, timeout=timeout):
            content_id = normalize_content_id(match.group(1))
            if content_id:
                found.append(content_id)
    except TimeoutError as e:
        logger.warning("Regex timeout while collecting cid references", length=len(fragment))
        raise FilterError(
            f"Collecting cid references timed out after {timeout}s",
            rule=CID_REFERENCE_PATTERN.pattern,
        ) from e
    return found


def normalize_to_charset(text: str, charset: str) -> str:
    """Round-trip text through a charset.

    Characters the charset cannot represent become numeric character
    references, so the result always encodes cleanly in the declared charset.
    """
    try:
        return text.encode(charset, errors="surrogateescape").decode(
            charset, errors="surrogateescape"
        )
    except UnicodeEncodeError:
        return text.encode(charset, errors="xmlcharrefreplace").decode(
            charset, errors="surrogateescape"
        )


class MarkupPartFilter:
    """Removes selected elements and pattern matches from text/html leaves.

    Selectors run before patterns, and patterns see the selector-filtered
    markup.

    Attributes:
        selectors: CSS selector rule set
        patterns: Markup pattern rule set
        regex_timeout: Seconds allowed per substitution
    """

    def __init__(
        self,
        selectors: RuleSet,
        patterns: RuleSet,
        regex_timeout: float | None = DEFAULT_REGEX_TIMEOUT,
    ):
        self.selectors = selectors
        self.patterns = patterns
        self.regex_timeout = regex_timeout

    def _harvest(self, fragment: str, removal_set: set[str]) -> None:
        for content_id in find_cid_references(fragment, timeout=self.regex_timeout):
            if content_id not in removal_set:
                logger.debug("Found attachment to remove", content_id=content_id)
            removal_set.add(content_id)

    def _remove_selected(self, markup: str, removal_set: set[str]) -> str:
        soup = BeautifulSoup(markup, HTML_PARSER)

        for rule in self.selectors:
            if not rule.text:
                continue
            for element in rule.matcher.select(soup):
                # nested matches go away with their removed ancestor
                if element.decomposed:
                    continue
                self._harvest(element.decode(), removal_set)
                element.decompose()

        return soup.decode()

    def filter_markup(self, markup: str, charset: str | None, removal_set: set[str]) -> str:
        """Run all markup steps over decoded HTML text.

        Args:
            markup: Decoded HTML body
            charset: Declared charset of the part (None if undeclared)
            removal_set: Message-scoped set receiving harvested content-ids

        Returns:
            Filtered HTML text
        """
        markup = markup.replace(NBSP_ENTITY, " ")

        if self.selectors:
            markup = self._remove_selected(markup, removal_set)
            if charset:
                markup = normalize_to_charset(markup, charset)

        if self.patterns:
            for rule in self.patterns:
                if not rule.text:
                    continue
                markup = remove_matches(
                    rule,
                    markup,
                    timeout=self.regex_timeout,
                    on_capture=lambda captured: self._harvest(captured, removal_set),
                )

        return markup

    def apply(self, part: Part, removal_set: set[str]) -> bool:
        """Filter one part in place.

        ``&nbsp;`` entities are replaced in every text/html leaf, even when
        no selector or markup pattern is configured.

        Returns:
            True if the body was rewritten
        """
        if part.kind is not PartKind.MARKUP:
            return False

        original = part.get_text()
        filtered = self.filter_markup(original, part.codec if part.charset else None, removal_set)
        if filtered == original:
            return False

        part.set_text(filtered)
        logger.debug(
            "Markup part rewritten",
            removed_chars=len(original) - len(filtered),
        )
        return True
