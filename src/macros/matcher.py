"""TXT and REGEXP pattern matching used by SEARCH and related commands.

Search sources are written as ``TYPE:pattern``:

    - ``TXT:`` / ``TEXT:`` wildcard text. ``*`` matches anything (including
      newlines, as little as possible) and a space matches any run of
      whitespace. Everything else is literal.
    - ``REGEXP:`` / ``REGEX:`` a regular expression compiled as is.

Not finding a match is a normal result, never an exception. An invalid
regular expression is reported through MatchResult.error.

Example:
    Extracting a price::

        result = search_regexp('Price: $42.99', r'\\$(\\d+\\.\\d+)')
        result.found   # True
        result.match   # '42.99'
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Pattern, Tuple

TEXT_PREFIXES = ('TXT', 'TEXT')
REGEXP_PREFIXES = ('REGEXP', 'REGEX')

_GROUP_REF_RE = re.compile(r"\$([1-9])")


class PatternFormatError(ValueError):
    """Raised when a search source lacks a TXT:/REGEXP: prefix."""


@dataclass(frozen=True)
class MatchResult:
    """Result of a pattern search.

    Attributes:
        found: Whether the pattern matched.
        match: Matched text, the first capture group, or the expanded
            extract template.
        index: Offset of the match in the searched content, -1 if not found.
        groups: All capture groups, with unmatched groups as empty strings.
        error: Compile error text for an invalid regular expression.
    """

    found: bool
    match: Optional[str] = None
    index: int = -1
    groups: Tuple[str, ...] = field(default_factory=tuple)
    error: Optional[str] = None


def parse_source(source: str) -> Tuple[str, str]:
    """Split ``TYPE:pattern`` into a normalized mode and the pattern.

    Args:
        source: Search source such as ``TXT:Hello*`` or ``REGEXP:\\d+``.

    Returns:
        Tuple of (mode, pattern) where mode is ``TXT`` or ``REGEXP``.

    Raises:
        PatternFormatError: If the prefix is missing or unknown.
    """
    prefix, sep, pattern = (source or '').partition(':')
    if not sep:
        raise PatternFormatError(
            f'Invalid SOURCE format: {source}. Expected TXT:<pattern> or REGEXP:<pattern>'
        )
    kind = prefix.strip().upper()
    if len(pattern) >= 2 and pattern[0] == pattern[-1] == '"':
        pattern = pattern[1:-1].replace('\\"', '"')
    if kind in TEXT_PREFIXES:
        return 'TXT', pattern
    if kind in REGEXP_PREFIXES:
        return 'REGEXP', pattern
    raise PatternFormatError(f'Unknown search type {prefix!r}; use TXT: or REGEXP:')


def compile_text_pattern(pattern: str, ignore_case: bool = False) -> Pattern[str]:
    """Compile a TXT wildcard pattern into a regular expression."""
    parts = []
    for ch in pattern:
        if ch == '*':
            parts.append(r'[\s\S]*?')
        elif ch == ' ':
            parts.append(r'\s+')
        else:
            parts.append(re.escape(ch))
    flags = re.IGNORECASE if ignore_case else 0
    return re.compile(''.join(parts), flags)


def search_text(content: str, pattern: str, ignore_case: bool = False) -> MatchResult:
    """Search content for a TXT wildcard pattern."""
    regex = compile_text_pattern(pattern, ignore_case)
    match = regex.search(content or '')
    if match is None:
        return MatchResult(False)
    return MatchResult(True, match.group(0), match.start())


def search_regexp(
    content: str,
    pattern: str,
    ignore_case: bool = False,
    extract_pattern: Optional[str] = None,
) -> MatchResult:
    """Search content with a regular expression.

    Args:
        content: Text to search.
        pattern: Regular expression source.
        ignore_case: Compile with re.IGNORECASE.
        extract_pattern: Optional template with ``$1``..``$9`` placeholders.

    Returns:
        MatchResult whose ``match`` is the template expansion when a
        template is given, the first group when the pattern has groups,
        or the whole match otherwise.
    """
    try:
        regex = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    except re.error as e:
        return MatchResult(False, error=f'Invalid regular expression: {e}')

    match = regex.search(content or '')
    if match is None:
        return MatchResult(False)

    groups = tuple(g if g is not None else '' for g in match.groups())
    if extract_pattern:
        value = _GROUP_REF_RE.sub(
            lambda m: groups[int(m.group(1)) - 1] if int(m.group(1)) <= len(groups) else '',
            extract_pattern,
        )
    elif groups:
        value = groups[0]
    else:
        value = match.group(0)
    return MatchResult(True, value, match.start(), groups)


def search(
    content: str,
    source: str,
    ignore_case: bool = False,
    extract_pattern: Optional[str] = None,
) -> MatchResult:
    """Search using a ``TYPE:pattern`` source string.

    Raises:
        PatternFormatError: If the source prefix is not recognized.
    """
    mode, pattern = parse_source(source)
    if mode == 'TXT':
        return search_text(content, pattern, ignore_case)
    return search_regexp(content, pattern, ignore_case, extract_pattern)

