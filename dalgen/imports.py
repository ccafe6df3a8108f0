# File: dalgen/imports.py
"""
dalgen - Import Aggregator
============================
Computes the exact import block of every generated file.

Each artifact template declares ``ImportRequirement`` entries: a target
block (standard / third-party / local), an identifier, the feature flags it
depends on and, optionally, a per-table predicate mirroring the condition
under which the template emits the code that uses the import.  Column types
add their own imports, but only for tables that actually contain them.

Identifier syntax:
    "os"                          → import os
    "dataclasses:field"           → from dataclasses import field
    "sqlalchemy:Enum as SAEnum"   → from sqlalchemy import Enum as SAEnum

Blocks are sorted lexicographically by identifier and de-duplicated, so the
output is byte-identical across runs.  User overrides are merged *after*
automatic derivation and only ever add entries.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from dalgen.errors import ConfigurationError
from dalgen.models import ColumnType, FeatureFlags, ImportOverrides, ImportSpec

if TYPE_CHECKING:
    from dalgen.templates import ArtifactTemplate, GenerationContext

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.imports")

STANDARD: str = "standard"
THIRD_PARTY: str = "third_party"
LOCAL: str = "local"
_TARGETS: Tuple[str, ...] = (STANDARD, THIRD_PARTY, LOCAL)

_MAX_LINE: int = 79

_DOTTED: str = r"[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*"
_FROM_MODULE_RE: re.Pattern[str] = re.compile(rf"^(?:\.*{_DOTTED}|\.+)$")
_PLAIN_MODULE_RE: re.Pattern[str] = re.compile(rf"^{_DOTTED}(?: as [A-Za-z_]\w*)?$")
_NAME_RE: re.Pattern[str] = re.compile(r"^[A-Za-z_]\w*(?: as [A-Za-z_]\w*)?$")


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def parse_identifier(identifier: str) -> Tuple[str, Optional[str]]:
    """
    Split an identifier into ``(module, name)``; *name* is ``None`` for a
    plain module import and may carry an ``as`` alias.

    Raises:
        ValueError: for blank parts or anything that is not a dotted module
            path (relative paths allowed).
    """
    module, sep, name = identifier.partition(":")
    module = module.strip()
    name = name.strip()
    if sep:
        if not _FROM_MODULE_RE.match(module) or not _NAME_RE.match(name):
            raise ValueError(f"invalid import identifier {identifier!r}")
        return module, name
    if not _PLAIN_MODULE_RE.match(module):
        raise ValueError(f"invalid import identifier {identifier!r}")
    return module, None


def _normalise(identifiers: Iterable[str]) -> Tuple[str, ...]:
    return tuple(sorted({i.strip() for i in identifiers if i and i.strip()}))


# ---------------------------------------------------------------------------
# ImportSet
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImportSet:
    """Three sorted, de-duplicated identifier tuples."""

    standard: Tuple[str, ...] = ()
    third_party: Tuple[str, ...] = ()
    local: Tuple[str, ...] = ()

    @classmethod
    def of(
        cls,
        standard: Iterable[str] = (),
        third_party: Iterable[str] = (),
        local: Iterable[str] = (),
    ) -> "ImportSet":
        return cls(_normalise(standard), _normalise(third_party), _normalise(local))

    def merge(self, *others: "ImportSet") -> "ImportSet":
        return ImportSet.of(
            [i for s in (self, *others) for i in s.standard],
            [i for s in (self, *others) for i in s.third_party],
            [i for s in (self, *others) for i in s.local],
        )

    def is_empty(self) -> bool:
        return not (self.standard or self.third_party or self.local)

    def identifiers(self) -> Tuple[str, ...]:
        return self.standard + self.third_party + self.local

    def __contains__(self, identifier: object) -> bool:
        return identifier in self.identifiers()


EMPTY: ImportSet = ImportSet()


def import_set_from_spec(spec: ImportSpec, origin: str) -> ImportSet:
    """Validate a user ``ImportSpec`` and turn it into an ``ImportSet``."""
    for identifier in (*spec.standard, *spec.third_party):
        try:
            parse_identifier(identifier)
        except ValueError as exc:
            raise ConfigurationError(f"imports.{origin}: {exc}", origin=origin) from exc
    return ImportSet.of(spec.standard, spec.third_party)


# ---------------------------------------------------------------------------
# Template import declarations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImportRequirement:
    """
    One conditional import of one template.

    Applies when every flag in ``features`` is on, every flag in
    ``without`` is off and, if given, ``when(context)`` holds.
    """

    target: str
    identifier: str
    features: Tuple[str, ...] = ()
    without: Tuple[str, ...] = ()
    when: Optional[Callable[[Any], bool]] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.target not in _TARGETS:
            raise ValueError(f"unknown import target {self.target!r}")
        parse_identifier(self.identifier)

    def enabled_for(self, features: FeatureFlags) -> bool:
        return all(features.enabled(f) for f in self.features) and not any(
            features.enabled(f) for f in self.without
        )

    def applies(self, ctx: "GenerationContext") -> bool:
        if not self.enabled_for(ctx.features):
            return False
        return self.when is None or bool(self.when(ctx))


def std(identifier: str, **kwargs: Any) -> ImportRequirement:
    return ImportRequirement(STANDARD, identifier, **kwargs)


def third(identifier: str, **kwargs: Any) -> ImportRequirement:
    return ImportRequirement(THIRD_PARTY, identifier, **kwargs)


def local(identifier: str, **kwargs: Any) -> ImportRequirement:
    return ImportRequirement(LOCAL, identifier, **kwargs)


# ---------------------------------------------------------------------------
# Type-triggered imports
# ---------------------------------------------------------------------------

# Main modules: the entity annotation plus the SQLAlchemy column type.
TYPE_IMPORTS: Dict[str, ImportSet] = {
    ColumnType.INT.value: ImportSet.of(third_party=["sqlalchemy:Integer"]),
    ColumnType.FLOAT.value: ImportSet.of(third_party=["sqlalchemy:Float"]),
    ColumnType.DECIMAL.value: ImportSet.of(["decimal:Decimal"], ["sqlalchemy:Numeric"]),
    ColumnType.BOOL.value: ImportSet.of(third_party=["sqlalchemy:Boolean"]),
    ColumnType.STR.value: ImportSet.of(third_party=["sqlalchemy:String"]),
    ColumnType.BYTES.value: ImportSet.of(third_party=["sqlalchemy:LargeBinary"]),
    ColumnType.DATE.value: ImportSet.of(["datetime:date"], ["sqlalchemy:Date"]),
    ColumnType.TIME.value: ImportSet.of(["datetime:time"], ["sqlalchemy:Time"]),
    ColumnType.DATETIME.value: ImportSet.of(["datetime:datetime"], ["sqlalchemy:DateTime"]),
    ColumnType.INTERVAL.value: ImportSet.of(["datetime:timedelta"], ["sqlalchemy:Interval"]),
    ColumnType.UUID.value: ImportSet.of(["uuid:UUID"], ["sqlalchemy:Uuid"]),
    ColumnType.JSON.value: ImportSet.of(["typing:Any"], ["sqlalchemy:JSON"]),
    ColumnType.ARRAY.value: ImportSet.of(
        third_party=["sqlalchemy:ARRAY", "sqlalchemy.types:NullType"]
    ),
    ColumnType.ENUM.value: ImportSet.of(third_party=["sqlalchemy:Enum"]),
    ColumnType.OPAQUE.value: ImportSet.of(["typing:Any"], ["sqlalchemy.types:NullType"]),
}

# Test modules: whatever the sample-value literals need.
TEST_TYPE_IMPORTS: Dict[str, ImportSet] = {
    ColumnType.DECIMAL.value: ImportSet.of(["decimal:Decimal"]),
    ColumnType.DATE.value: ImportSet.of(["datetime:date"]),
    ColumnType.TIME.value: ImportSet.of(["datetime:time"]),
    ColumnType.DATETIME.value: ImportSet.of(["datetime:datetime"]),
    ColumnType.INTERVAL.value: ImportSet.of(["datetime:timedelta"]),
    ColumnType.UUID.value: ImportSet.of(["uuid:UUID"]),
}


def type_imports(column_types: Iterable[str], test: bool = False) -> ImportSet:
    """Union of the type-triggered imports for the given semantic types."""
    table: Dict[str, ImportSet] = TEST_TYPE_IMPORTS if test else TYPE_IMPORTS
    result: ImportSet = EMPTY
    for column_type in sorted(set(column_types)):
        result = result.merge(table.get(column_type, EMPTY))
    return result


def _type_key(value: Any) -> str:
    return str(getattr(value, "value", value))


# ---------------------------------------------------------------------------
# Per-file derivation
# ---------------------------------------------------------------------------


def template_imports(template: "ArtifactTemplate", ctx: "GenerationContext") -> ImportSet:
    """Imports one template needs for one context."""
    buckets: Dict[str, List[str]] = {STANDARD: [], THIRD_PARTY: [], LOCAL: []}
    for requirement in template.imports:
        if requirement.applies(ctx):
            buckets[requirement.target].append(requirement.identifier)
    if template.local_imports is not None:
        buckets[LOCAL].extend(template.local_imports(ctx))
    if template.column_types is not None:
        # Column constructors only; annotation imports belong to entity modules.
        buckets[THIRD_PARTY].extend(type_imports(template.column_types(ctx)).third_party)
    return ImportSet.of(buckets[STANDARD], buckets[THIRD_PARTY], buckets[LOCAL])


def for_table(
    templates: Sequence["ArtifactTemplate"],
    ctx: "GenerationContext",
    overrides: Optional[ImportOverrides] = None,
    test: bool = False,
) -> ImportSet:
    """
    Imports of one table's main (or test) module.

    Merge order: template requirements, the table's type imports, then the
    ``all`` (or ``test``) override, then ``based_on_type`` for main modules.
    """
    result: ImportSet = EMPTY
    for template in templates:
        if template.test == test and template.enabled_for(ctx.features):
            result = result.merge(template_imports(template, ctx))

    column_types: List[str] = sorted({c.type for c in ctx.table.columns})
    result = result.merge(type_imports(column_types, test=test))

    if overrides is None:
        return result
    if test:
        return result.merge(import_set_from_spec(overrides.test, "test"))

    result = result.merge(import_set_from_spec(overrides.all, "all"))
    for key, spec in sorted(overrides.based_on_type.items(), key=lambda kv: _type_key(kv[0])):
        if _type_key(key) in column_types:
            result = result.merge(import_set_from_spec(spec, f"based_on_type.{_type_key(key)}"))
    return result


def for_singleton(
    template: "ArtifactTemplate",
    ctx: "GenerationContext",
    overrides: Optional[ImportOverrides] = None,
) -> ImportSet:
    """
    Imports of one singleton artifact.

    Merge order: template requirements, ``singleton[name]`` (or
    ``test_singleton[name]``), then ``test_main`` for the test-support
    singleton.
    """
    result: ImportSet = template_imports(template, ctx)
    if overrides is None:
        return result

    bucket: Mapping[str, ImportSpec] = overrides.test_singleton if template.test else overrides.singleton
    if template.name in bucket:
        origin: str = f"{'test_singleton' if template.test else 'singleton'}.{template.name}"
        result = result.merge(import_set_from_spec(bucket[template.name], origin))
    if template.test:
        result = result.merge(import_set_from_spec(overrides.test_main, "test_main"))
    return result


def check_override_targets(
    overrides: ImportOverrides,
    singleton_names: Sequence[str],
    test_singleton_names: Sequence[str],
) -> None:
    """Reject singleton overrides naming artifacts that do not exist."""
    for origin, keys, known in (
        ("singleton", overrides.singleton, singleton_names),
        ("test_singleton", overrides.test_singleton, test_singleton_names),
    ):
        for key in sorted(keys):
            if key not in known:
                raise ConfigurationError(
                    f"imports.{origin} names unknown artifact '{key}' "
                    f"(known: {', '.join(sorted(known)) or 'none'}).",
                    origin=origin,
                )


# ---------------------------------------------------------------------------
# Run-wide aggregation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AggregatedImports:
    """
    The finalised imports of one run.

    ``main`` / ``test`` are the run-wide unions over all generated table
    modules; ``tables`` / ``table_tests`` hold the per-file sets actually
    written; ``singletons`` is keyed by artifact name.
    """

    main: ImportSet
    test: ImportSet
    tables: Dict[str, ImportSet]
    table_tests: Dict[str, ImportSet]
    singletons: Dict[str, ImportSet]

    @property
    def main_standard(self) -> Tuple[str, ...]:
        return self.main.standard

    @property
    def main_third_party(self) -> Tuple[str, ...]:
        return self.main.third_party

    @property
    def test_standard(self) -> Tuple[str, ...]:
        return self.test.standard

    @property
    def test_third_party(self) -> Tuple[str, ...]:
        return self.test.third_party


class ImportAccumulator:
    """
    Collects per-table import sets from rendering workers.

    ``add`` is called concurrently; ``finalize`` is called once, after every
    worker has finished, and freezes the result.
    """

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._tables: Dict[str, ImportSet] = {}
        self._tests: Dict[str, ImportSet] = {}
        self._singletons: Dict[str, ImportSet] = {}
        self._finalized: bool = False

    def add_table(self, table: str, main: ImportSet, test: Optional[ImportSet] = None) -> None:
        with self._lock:
            if self._finalized:
                raise RuntimeError("import accumulator already finalized")
            self._tables[table] = self._tables.get(table, EMPTY).merge(main)
            if test is not None:
                self._tests[table] = self._tests.get(table, EMPTY).merge(test)

    def add_singleton(self, name: str, imports: ImportSet) -> None:
        with self._lock:
            if self._finalized:
                raise RuntimeError("import accumulator already finalized")
            self._singletons[name] = self._singletons.get(name, EMPTY).merge(imports)

    def finalize(self) -> AggregatedImports:
        with self._lock:
            self._finalized = True
            tables: Dict[str, ImportSet] = {k: self._tables[k] for k in sorted(self._tables)}
            tests: Dict[str, ImportSet] = {k: self._tests[k] for k in sorted(self._tests)}
            singletons: Dict[str, ImportSet] = {
                k: self._singletons[k] for k in sorted(self._singletons)
            }
        main: ImportSet = EMPTY.merge(*tables.values()) if tables else EMPTY
        test: ImportSet = EMPTY.merge(*tests.values()) if tests else EMPTY
        logger.debug(
            "Finalized imports: %d main, %d test identifier(s) run-wide.",
            len(main.identifiers()),
            len(test.identifiers()),
        )
        return AggregatedImports(
            main=main, test=test, tables=tables, table_tests=tests, singletons=singletons
        )


def aggregate(
    templates: Sequence["ArtifactTemplate"],
    contexts: Sequence["GenerationContext"],
    singleton_context: "GenerationContext",
    overrides: Optional[ImportOverrides] = None,
) -> AggregatedImports:
    """
    Sequential aggregation over every generated table and singleton.

    The rendering pipeline performs the same computation concurrently
    through an ``ImportAccumulator``.
    """
    accumulator: ImportAccumulator = ImportAccumulator()
    table_templates = [t for t in templates if t.scope == "table"]
    tests_on: bool = singleton_context.features.tests

    for ctx in contexts:
        accumulator.add_table(
            ctx.table.name,
            for_table(table_templates, ctx, overrides),
            for_table(table_templates, ctx, overrides, test=True) if tests_on else None,
        )
    for template in templates:
        if template.scope == "singleton" and template.enabled_for(singleton_context.features):
            accumulator.add_singleton(
                template.name, for_singleton(template, singleton_context, overrides)
            )
    return accumulator.finalize()


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render_group(identifiers: Sequence[str]) -> List[str]:
    order: List[str] = []
    from_names: Dict[str, List[str]] = {}
    plain: Dict[str, str] = {}

    for identifier in identifiers:
        module, name = parse_identifier(identifier)
        if name is None:
            key: str = f"import:{module}"
            plain[key] = module
        else:
            key = f"from:{module}"
            bucket: List[str] = from_names.setdefault(key, [])
            if name not in bucket:
                bucket.append(name)
        if key not in order:
            order.append(key)

    lines: List[str] = []
    for key in order:
        if key in plain:
            lines.append(f"import {plain[key]}")
            continue
        module = key[len("from:"):]
        names: List[str] = from_names[key]
        line: str = f"from {module} import {', '.join(names)}"
        if len(line) <= _MAX_LINE:
            lines.append(line)
        else:
            lines.append(f"from {module} import (")
            lines.extend(f"    {n}," for n in names)
            lines.append(")")
    return lines


def render_import_block(imports: ImportSet) -> str:
    """
    Render an ``ImportSet`` as Python source.

    Standard-library, third-party and local imports form separate blocks
    separated by one blank line; ``from`` imports of one module share a
    line (wrapped in parentheses past 79 columns).
    """
    blocks: List[str] = []
    for group in (imports.standard, imports.third_party, imports.local):
        lines: List[str] = _render_group(group)
        if lines:
            blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "STANDARD",
    "THIRD_PARTY",
    "LOCAL",
    "parse_identifier",
    "ImportSet",
    "EMPTY",
    "import_set_from_spec",
    "ImportRequirement",
    "std",
    "third",
    "local",
    "TYPE_IMPORTS",
    "TEST_TYPE_IMPORTS",
    "type_imports",
    "template_imports",
    "for_table",
    "for_singleton",
    "check_override_targets",
    "AggregatedImports",
    "ImportAccumulator",
    "aggregate",
    "render_import_block",
]

logger.debug("dalgen.imports loaded (%d public symbols).", len(__all__))
