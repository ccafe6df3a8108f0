# File: dalgen/utils.py
"""
dalgen - Naming, Inflection & Metrics
=====================================
Helpers that turn database identifiers into Python names, plus the
checksum and timing bits the pipeline reports with.

Table and column names are converted once per artifact but looked up many
times while rendering, so the naming functions are memoised with
``functools.lru_cache``. Every helper is a pure function of its input;
alias derivation built on them is therefore stable between runs.
"""

from __future__ import annotations

import functools
import hashlib
import json
import logging
import re
import time
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.utils")

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

# Zero-width positions where a new word starts inside a mixed-case name:
# "postTags" -> post|Tags, "HTTPStatus" -> HTTP|Status, "line2Id" -> line2|Id
_CASE_BOUNDARY_RE: re.Pattern[str] = re.compile(
    r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])"
)
_SEPARATORS_RE: re.Pattern[str] = re.compile(r"[^A-Za-z0-9]+")

_RESERVED: FrozenSet[str] = frozenset({
    "False", "None", "True", "and", "as", "assert", "async", "await",
    "break", "class", "continue", "def", "del", "elif", "else",
    "except", "finally", "for", "from", "global", "if", "import",
    "in", "is", "lambda", "nonlocal", "not", "or", "pass", "raise",
    "return", "try", "while", "with", "yield",
})

# ---------------------------------------------------------------------------
# English inflection tables
# ---------------------------------------------------------------------------

_UNCOUNTABLES: FrozenSet[str] = frozenset({
    "equipment", "fish", "information", "jeans", "money", "news",
    "police", "rice", "series", "sheep", "species",
})

_IRREGULARS: Tuple[Tuple[str, str], ...] = (
    ("child", "children"),
    ("foot", "feet"),
    ("goose", "geese"),
    ("man", "men"),
    ("move", "moves"),
    ("person", "people"),
    ("sex", "sexes"),
    ("tooth", "teeth"),
    ("woman", "women"),
    ("zombie", "zombies"),
)

_IRREGULAR_PLURALS: Dict[str, str] = dict(_IRREGULARS)
_IRREGULAR_SINGULARS: Dict[str, str] = {p: s for s, p in _IRREGULARS}

# First matching rule wins, so the most specific rules come first.
_PLURAL_RULES: Tuple[Tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), replacement)
    for pattern, replacement in (
        (r"(quiz)$", r"\1zes"),
        (r"^(oxen)$", r"\1"),
        (r"^(ox)$", r"\1en"),
        (r"^(m|l)ice$", r"\1ice"),
        (r"^(m|l)ouse$", r"\1ice"),
        (r"(matr|vert|ind)(?:ix|ex)$", r"\1ices"),
        (r"(x|ch|ss|sh)$", r"\1es"),
        (r"([^aeiouy]|qu)y$", r"\1ies"),
        (r"(hive)$", r"\1s"),
        (r"(?:([^f])fe|([lr])f)$", r"\1\2ves"),
        (r"sis$", "ses"),
        (r"([ti])a$", r"\1a"),
        (r"([ti])um$", r"\1a"),
        (r"(buffal|tomat|potat|her)o$", r"\1oes"),
        (r"(bu)s$", r"\1ses"),
        (r"(alias|status|campus|census)$", r"\1es"),
        (r"(octop|vir)i$", r"\1i"),
        (r"(octop|vir)us$", r"\1i"),
        (r"^(ax|test)is$", r"\1es"),
        (r"s$", "s"),
        (r"$", "s"),
    )
)

_SINGULAR_RULES: Tuple[Tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), replacement)
    for pattern, replacement in (
        (r"(database)s$", r"\1"),
        (r"(quiz)zes$", r"\1"),
        (r"(matr)ices$", r"\1ix"),
        (r"(vert|ind)ices$", r"\1ex"),
        (r"^(ox)en$", r"\1"),
        (r"(alias|status|campus|census)(es)?$", r"\1"),
        (r"(octop|vir)(us|i)$", r"\1us"),
        (r"^(a)x[ie]s$", r"\1xis"),
        (r"(cris|test)(is|es)$", r"\1is"),
        (r"(shoe)s$", r"\1"),
        (r"(buffal|tomat|potat|her)oes$", r"\1o"),
        (r"(bus)(es)?$", r"\1"),
        (r"^(m|l)ice$", r"\1ouse"),
        (r"(x|ch|ss|sh)es$", r"\1"),
        (r"(m)ovies$", r"\1ovie"),
        (r"([^aeiouy]|qu)ies$", r"\1y"),
        (r"([lr])ves$", r"\1f"),
        (r"(tive)s$", r"\1"),
        (r"(hive)s$", r"\1"),
        (r"([^f])ves$", r"\1fe"),
        (r"(t)he(sis|ses)$", r"\1hesis"),
        (r"(s)ynop(sis|ses)$", r"\1ynopsis"),
        (r"(p)rogno(sis|ses)$", r"\1rognosis"),
        (r"(p)arenthe(sis|ses)$", r"\1arenthesis"),
        (r"(d)iagno(sis|ses)$", r"\1iagnosis"),
        (r"(b)a(sis|ses)$", r"\1asis"),
        (r"(a)naly(sis|ses)$", r"\1nalysis"),
        (r"([ti])a$", r"\1um"),
        (r"(ss|us)$", r"\1"),
        (r"s$", ""),
    )
)



# ---------------------------------------------------------------------------
# Casing
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=None)
def _words(name: str) -> Tuple[str, ...]:
    """Lower-cased words of *name*, whatever casing style it uses."""
    marked: str = _CASE_BOUNDARY_RE.sub("_", name)
    return tuple(part.lower() for part in _SEPARATORS_RE.split(marked) if part)


@functools.lru_cache(maxsize=None)
def to_snake_case(name: str) -> str:
    """
    snake_case form of a table or column name.

        >>> to_snake_case("OrderLines")
        'order_lines'
        >>> to_snake_case("externalHTTPId")
        'external_http_id'
    """
    return "_".join(_words(name))


@functools.lru_cache(maxsize=None)
def to_pascal_case(name: str) -> str:
    """PascalCase form, used for entity class names."""
    return "".join(word.capitalize() for word in _words(name))


@functools.lru_cache(maxsize=None)
def to_camel_case(name: str) -> str:
    """camelCase form, used for ``tag_casing="camel"`` field tags."""
    head, *tail = _words(name) or ("",)
    return head + "".join(word.capitalize() for word in tail)


# ---------------------------------------------------------------------------
# Inflection
# ---------------------------------------------------------------------------


def _apply_rules(
    word: str,
    lookup: Dict[str, str],
    already: Dict[str, str],
    rules: Tuple[Tuple[re.Pattern[str], str], ...],
) -> str:
    if word in _UNCOUNTABLES or word in already:
        return word
    if word in lookup:
        return lookup[word]
    for pattern, replacement in rules:
        if pattern.search(word):
            return pattern.sub(replacement, word, count=1)
    return word


@functools.lru_cache(maxsize=None)
def _plural_word(word: str) -> str:
    return _apply_rules(word, _IRREGULAR_PLURALS, _IRREGULAR_SINGULARS, _PLURAL_RULES)


@functools.lru_cache(maxsize=None)
def _singular_word(word: str) -> str:
    return _apply_rules(word, _IRREGULAR_SINGULARS, _IRREGULAR_PLURALS, _SINGULAR_RULES)


def _inflect_tail(name: str, inflect: Callable[[str], str]) -> str:
    # Only the final word changes number: "order_line" -> "order_lines".
    words: Tuple[str, ...] = _words(name)
    if not words or words[-1].isdigit():
        return "_".join(words)
    return "_".join(words[:-1] + (inflect(words[-1]),))


@functools.lru_cache(maxsize=None)
def to_plural(name: str) -> str:
    """
    Plural snake_case form of a table name.

        >>> to_plural("order_line")
        'order_lines'
        >>> to_plural("Category")
        'categories'
    """
    return _inflect_tail(name, _plural_word)


@functools.lru_cache(maxsize=None)
def to_singular(name: str) -> str:
    """
    Singular snake_case form of a table name.

        >>> to_singular("people")
        'person'
        >>> to_singular("addresses")
        'address'
    """
    return _inflect_tail(name, _singular_word)


@functools.lru_cache(maxsize=None)
def safe_identifier(name: str) -> str:
    """snake_case *name* made usable as a Python attribute or module name."""
    result: str = to_snake_case(name)
    if not result:
        return "_unnamed"
    if result[0].isdigit():
        result = "_" + result
    return result + "_" if result in _RESERVED else result


def format_tuple_literal(items: Sequence[str]) -> str:
    """Source text for a tuple of string literals: ``("id",)``."""
    if not items:
        return "()"
    return "(" + ", ".join(json.dumps(item) for item in items) + ",)"


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def sha256_hex(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def count_lines(content: str) -> int:
    """Number of lines, counting an unterminated last line."""
    if not content:
        return 0
    return content.count("\n") + (0 if content.endswith("\n") else 1)


class Timer:
    """
    Wall-clock timer for one pipeline step.

        with Timer("Render") as step:
            files = render(...)
        report.add_step(step.label, step.elapsed)
    """

    __slots__ = ("label", "started", "elapsed")

    def __init__(self, label: str) -> None:
        self.label: str = label
        self.started: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> "Timer":
        self.started = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        self.elapsed = time.perf_counter() - self.started
        logger.debug("Step %r finished in %.1f ms", self.label, self.elapsed * 1000)

    def __repr__(self) -> str:
        return f"<Timer {self.label}: {self.elapsed:.4f}s>"


__all__: List[str] = [
    "to_snake_case",
    "to_pascal_case",
    "to_camel_case",
    "to_plural",
    "to_singular",
    "safe_identifier",
    "format_tuple_literal",
    "sha256_hex",
    "count_lines",
    "Timer",
]

logger.debug("dalgen.utils loaded (%d symbols).", len(__all__))
