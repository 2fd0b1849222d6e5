"""
Stanza Parser for the IndexProof engine.

Reads a stanza-delimited index (Debian `Packages` style) into records.

Design principles:
- Line endings are normalized before any comparison (CR stripped)
- A line `<Key>:<spaces><value>` sets fields[Key] = value, verbatim
- A blank line (or end of input) closes the current stanza
- Duplicate keys inside one stanza: last write wins
- A line that cannot be read is skipped, never fatal (fail-soft)

The parser is lazy and restartable: parsing the same text twice yields
identical stanzas.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterable, Iterator, Mapping, Optional

from ..domain import MalformedStanza, Stanza


logger = logging.getLogger(__name__)


# =============================================================================
# LINE GRAMMAR
# =============================================================================

# Key, colon, one or more spaces/tabs, then the value up to end of line.
# Only the key shape is constrained; the value is taken as-is.
FIELD_LINE = re.compile(r"^([^\s:]+):[ \t]+(.*)$")

# Multi-line field bodies (e.g. Description) continue with leading whitespace
CONTINUATION_PREFIXES = (" ", "\t")


def normalize_line(line: str) -> str:
    """Strip trailing carriage returns (tolerates CRLF input)."""
    return line.rstrip("\r")


def parse_field_line(line: str) -> Optional[tuple[str, str]]:
    """
    Split a field line into (key, value).

    Returns None if the line is not a field line.
    """
    match = FIELD_LINE.match(line)
    if match is None:
        return None
    return match.group(1), match.group(2)


# =============================================================================
# PARSING
# =============================================================================

def parse_stanzas(
    text: str,
    keys: Optional[Iterable[str]] = None,
    on_malformed: Optional[Callable[[MalformedStanza], None]] = None,
) -> Iterator[Stanza]:
    """
    Parse index text and lazily yield Stanza objects in line order.

    Args:
        text: Decoded index text
        keys: If given, only these field keys are retained
        on_malformed: Called once per skipped line

    Yields:
        Stanza for each record that set at least one field
    """
    wanted = frozenset(keys) if keys is not None else None

    fields: dict[str, str] = {}
    start_line: Optional[int] = None
    has_content = False

    for line_number, raw_line in enumerate(text.split("\n"), start=1):
        line = normalize_line(raw_line)

        if line == "":
            if has_content and fields:
                yield Stanza(start_line=start_line, fields=fields)
            fields = {}
            start_line = None
            has_content = False
            continue

        if not has_content:
            start_line = line_number
            has_content = True

        if line.startswith(CONTINUATION_PREFIXES):
            continue

        parsed = parse_field_line(line)
        if parsed is None:
            problem = MalformedStanza(line_number, line)
            logger.debug("Skipping malformed index line %s", problem)
            if on_malformed is not None:
                on_malformed(problem)
            continue

        key, value = parsed
        if wanted is None or key in wanted:
            fields[key] = value

    if has_content and fields:
        yield Stanza(start_line=start_line, fields=fields)


# =============================================================================
# FORMATTING
# =============================================================================

def format_stanza(fields: Mapping[str, str]) -> str:
    """
    Render fields as one stanza (no trailing blank line).

    Values must be single-line; parse_stanzas reads the output back
    to the same fields.
    """
    lines = []
    for key, value in fields.items():
        if "\n" in value or "\r" in value:
            raise ValueError(f"field {key!r} must be a single line")
        if not value:
            raise ValueError(f"field {key!r} must not be empty")
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


def format_index(stanzas: Iterable[Mapping[str, str]]) -> str:
    """Render a whole index: stanzas separated by one blank line."""
    rendered = [format_stanza(fields) for fields in stanzas]
    if not rendered:
        return ""
    return "\n\n".join(rendered) + "\n"
