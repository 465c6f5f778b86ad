"""
Search expression translator.

Rewrites a free-form, user-authored search string into the remote log
search syntax. The rewrite is a normalization pass, not a parser: it
never raises, never returns an empty expression, and applying it twice
gives the same result as applying it once.

Pipeline (each step works on the output of the previous one):
- severity normalization (``level:`` becomes ``status:``, levels upper-cased)
- facet value quoting and custom attribute ``@`` prefixing
- boolean operator upper-casing
- wildcard run collapsing
- whitespace cleanup
- inline time filter advisories (reported, never rewritten)
"""

import re
from dataclasses import dataclass, field
from typing import Callable, List, Tuple

import structlog

logger = structlog.get_logger(__name__)

MATCH_ALL = "*"

SEVERITY_TOKENS = ("debug", "info", "warn", "warning", "error", "fatal", "trace")
BOOLEAN_WORDS = frozenset({"and", "or", "not"})

# Reserved attributes are used as-is, custom ones need the "@" marker.
RESERVED_FACETS = ("service", "source", "host")
CUSTOM_FACETS = ("env", "version", "container_name", "container_id", "image_name")

# A facet name must not be glued to a word, an attribute path or a hyphenated word.
_FACET_BOUNDARY = r"(?<![\w@.:])(?<![\w.]-)"

_QUOTED_SPAN = re.compile(r'"[^"]*"?')
_LEVEL_FILTER = re.compile(
    _FACET_BOUNDARY + r"(status|level):\s*(\([^)]*\)|[^\s()\"]+)",
    re.IGNORECASE,
)
_SEVERITY_WORD = re.compile(r"\b(" + "|".join(SEVERITY_TOKENS) + r")\b", re.IGNORECASE)
_FACET_FILTER = re.compile(
    _FACET_BOUNDARY + r"(@?)(" + "|".join(RESERVED_FACETS + CUSTOM_FACETS) + r"):"
)
_BOOLEAN_WORD = re.compile(r"(?<![:\-.@/])\b(and|or|not)\b(?![:\-.])", re.IGNORECASE)
_WILDCARD_RUN = re.compile(r"(?<=[\w\-.@:])\*{2,}")
_WHITESPACE = re.compile(r"\s+")
_TIME_FILTER = re.compile(r"(?<![\w.@])@?(timestamp|time|date):", re.IGNORECASE)
_RELATIVE_TIME_FILTER = re.compile(r"@timestamp:\s*[<>]=?\s*now[-+]\w+", re.IGNORECASE)
_STRUCTURAL_CHARS = frozenset("()[]{}")

_FACET_TERM = re.compile(r"\b\w+:\s*(?:\"[^\"]*\"|\S+)")
_QUOTED_PHRASE = re.compile(r'"([^"]*)"')


@dataclass(frozen=True)
class TranslationResult:
    """Translated expression plus advisories for the caller."""
    expression: str
    advisories: Tuple[str, ...] = field(default_factory=tuple)


def _map_unquoted(text: str, transform: Callable[[str], str]) -> str:
    """Apply ``transform`` to every span outside double quotes."""
    parts: List[str] = []
    position = 0
    for match in _QUOTED_SPAN.finditer(text):
        parts.append(transform(text[position:match.start()]))
        parts.append(match.group(0))
        position = match.end()
    parts.append(transform(text[position:]))
    return "".join(parts)


def _normalize_level_filter(match: "re.Match[str]") -> str:
    attribute = match.group(1).lower()
    value = match.group(2)

    if value.startswith("("):
        inner = _SEVERITY_WORD.sub(lambda m: m.group(1).upper(), value[1:-1])
        return f"status:({inner})"

    if value.lower() in SEVERITY_TOKENS:
        return f"status:{value.upper()}"

    if attribute == "level":
        return f"status:{value}"

    return match.group(0)


def normalize_levels(query: str) -> str:
    """Rewrite ``level:`` to ``status:`` and upper-case known severities."""
    return _map_unquoted(query, lambda span: _LEVEL_FILTER.sub(_normalize_level_filter, span))


def _token_end(query: str, position: int) -> int:
    while position < len(query) and not query[position].isspace():
        position += 1
    return position


def _strip_unbalanced_parens(token: str) -> str:
    while token.endswith(")") and token.count(")") > token.count("("):
        token = token[:-1]
    return token


def _ends_value(word: str) -> bool:
    return (
        word.lower() in BOOLEAN_WORDS
        or ":" in word
        or word[0] in '-()"'
    )


def _value_end(query: str, start: int, multi_word: bool) -> int:
    """
    Find where a facet value ends.

    Values are a single token unless ``multi_word`` is set, in which case
    they keep extending across whitespace until a boolean operator, another
    facet, a negation, a group delimiter or a quote.
    """
    end = _token_end(query, start)
    token = query[start:end]
    trimmed = _strip_unbalanced_parens(token)
    if trimmed != token or not multi_word:
        return start + len(trimmed)

    while True:
        word_start = end
        while word_start < len(query) and query[word_start].isspace():
            word_start += 1
        if word_start >= len(query):
            return end

        word_end = _token_end(query, word_start)
        word = query[word_start:word_end]
        if _ends_value(word):
            return end

        trimmed = _strip_unbalanced_parens(word)
        if trimmed != word:
            return word_start + len(trimmed) if trimmed else end
        end = word_end


def _needs_quotes(value: str) -> bool:
    return any(ch.isspace() or ch in _STRUCTURAL_CHARS for ch in value)


def quote_facet_values(query: str) -> str:
    """Quote facet values with whitespace or structural characters."""
    out: List[str] = []
    position = 0
    length = len(query)

    while position < length:
        char = query[position]

        if char == '"':
            closing = query.find('"', position + 1)
            end = length if closing == -1 else closing + 1
            out.append(query[position:end])
            position = end
            continue

        match = _FACET_FILTER.match(query, position)
        if match is None:
            out.append(char)
            position += 1
            continue

        marker, name = match.group(1), match.group(2)
        start = match.end()
        facet = f"@{name}" if name in CUSTOM_FACETS else f"{marker}{name}"

        # Malformed "facet:" with nothing after it passes through untouched
        if start >= length or query[start].isspace():
            out.append(match.group(0))
            position = start
            continue

        # Quoted values and groups are copied by the main loop
        if query[start] in '"(':
            out.append(f"{facet}:")
            position = start
            continue

        end = _value_end(query, start, multi_word=(name == "service"))
        value = query[start:end]
        if not value:
            out.append(match.group(0))
            position = start
            continue
        if '"' in value:
            out.append(f"{facet}:")
            position = start
            continue

        if _needs_quotes(value):
            value = f'"{value}"'
        out.append(f"{facet}:{value}")
        position = end

    return "".join(out)


def normalize_boolean_operators(query: str) -> str:
    """Upper-case whole-word and/or/not outside quoted phrases."""
    return _map_unquoted(query, lambda span: _BOOLEAN_WORD.sub(lambda m: m.group(1).upper(), span))


def collapse_wildcards(query: str) -> str:
    """Collapse runs of trailing wildcards to a single ``*``."""
    return _map_unquoted(query, lambda span: _WILDCARD_RUN.sub("*", span))


def collapse_whitespace(query: str) -> str:
    return _WHITESPACE.sub(" ", query).strip()


def time_filter_advisories(query: str) -> List[str]:
    """
    Report inline time filters.

    The remote service receives the time window out-of-band, so inline
    filters are combined with it rather than replacing it.
    """
    found: List[str] = []

    def collect(span: str) -> str:
        for match in _TIME_FILTER.finditer(span):
            found.append(match.group(0).lower())
        return span

    _map_unquoted(query, collect)

    advisories: List[str] = []
    for term in dict.fromkeys(found):
        advisories.append(
            f"Inline time filter '{term}' detected; use the dashboard time range instead"
        )
    if _RELATIVE_TIME_FILTER.search(query):
        advisories.append(
            "Relative time filter will be combined with the selected time range"
        )
    return advisories


def translate_with_advisories(raw_query: str) -> TranslationResult:
    """Translate a raw query and collect advisories for the caller."""
    query = (raw_query or "").strip()
    if not query:
        return TranslationResult(expression=MATCH_ALL)

    query = normalize_levels(query)
    query = quote_facet_values(query)
    query = normalize_boolean_operators(query)
    query = collapse_wildcards(query)
    query = collapse_whitespace(query) or MATCH_ALL

    advisories = tuple(time_filter_advisories(query))
    for advisory in advisories:
        logger.warning("Inline time filter in search expression", query=query, advisory=advisory)

    logger.debug("Translated search expression", original=raw_query, translated=query)
    return TranslationResult(expression=query, advisories=advisories)


def translate(raw_query: str) -> str:
    """Translate a raw query into the remote search syntax."""
    return translate_with_advisories(raw_query).expression


def extract_search_terms(expression: str) -> List[str]:
    """
    Extract free-text terms for highlighting.

    Facet filters, boolean operators, grouping and negated terms are
    dropped; quoted phrases are kept whole and wildcards are stripped.
    """
    text = (expression or "").strip()
    if not text or text == MATCH_ALL:
        return []

    text = _FACET_TERM.sub(" ", text)
    text = _BOOLEAN_WORD.sub(" ", text)
    text = text.replace("(", " ").replace(")", " ")

    terms: List[str] = []
    for phrase in _QUOTED_PHRASE.findall(text):
        if phrase.strip():
            terms.append(phrase.strip())

    for word in _QUOTED_PHRASE.sub(" ", text).split():
        word = word.strip("\"'")
        if not word or word.startswith("-"):
            continue
        word = word.replace("*", "")
        if word:
            terms.append(word)

    return list(dict.fromkeys(terms))
