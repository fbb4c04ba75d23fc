"""
Match highlighting - wraps reported match spans of the scanned text in markup.

Offsets from the scanning service refer to the original text. Matches are
applied from the highest start offset down, so every insertion point lies to
the left of text that has already been rewritten and the original offsets stay
valid for the matches still to come.

Overlapping spans are NOT merged. A lower-start span processed later slices
the already-annotated string at its original offsets, which may nest or split
markup inserted for a higher-start span. Existing consumers depend on this
output, so it is kept as is.
"""

import logging
import re
from collections.abc import Iterable

from .models import MatchSpan

logger = logging.getLogger(__name__)

HIGHLIGHT_TAG = "highlight"

_MARKUP_RE = re.compile(rf'<{HIGHLIGHT_TAG} severity="[a-z]+">|</{HIGHLIGHT_TAG}>')


def wrap(fragment: str, severity: str) -> str:
    return f'<{HIGHLIGHT_TAG} severity="{severity.lower()}">{fragment}</{HIGHLIGHT_TAG}>'


def render(source_text: str, matches: Iterable[MatchSpan]) -> str:
    """Return `source_text` with every located match wrapped in highlight markup."""
    if not source_text:
        return source_text

    located = []
    for match in matches:
        if match.position is None:
            continue
        if match.position.end > len(source_text):
            logger.debug(
                f"Skipping {match.allergen_name} match at "
                f"{match.position.start}:{match.position.end}, "
                f"text is only {len(source_text)} chars"
            )
            continue
        located.append(match)
    if not located:
        return source_text

    highlighted = source_text
    for match in sorted(located, key=lambda m: m.position.start, reverse=True):
        start, end = match.position.start, match.position.end
        highlighted = (
            highlighted[:start]
            + wrap(highlighted[start:end], match.severity.value)
            + highlighted[end:]
        )
    return highlighted


def strip_markup(annotated: str) -> str:
    """Remove highlight tags, leaving the plain text."""
    return _MARKUP_RE.sub("", annotated)
