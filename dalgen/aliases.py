# File: dalgen/aliases.py
"""
dalgen - Alias Resolver
=========================
Derives the identifiers every artifact uses to refer to a table, a column
or a relationship:

    up_singular    User        entity class
    up_plural      Users       docstrings, collection names
    down_singular  user        function-name fragment (``find_user``)
    down_plural    users       module name (``users.py``)

Resolution is deterministic: tables are visited in sorted order, columns in
declaration order, and nothing is derived from set iteration order.  Two
tables resolving to the same ``up_singular`` (or to the same module name),
or two columns of one table resolving to the same field, abort the run
with ``AliasCollisionError`` before anything is rendered.
"""

from __future__ import annotations

import keyword
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from dalgen.errors import AliasCollisionError, ConfigurationError
from dalgen.models import (
    AliasOverrides,
    ColumnInfo,
    RelationshipDirection,
    RelationshipInfo,
    SchemaDefinition,
    TableAliasOverride,
    TableInfo,
    TagCasing,
)
from dalgen.utils import (
    safe_identifier,
    to_camel_case,
    to_pascal_case,
    to_plural,
    to_singular,
    to_snake_case,
)

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.aliases")

# Module names the singleton artifacts occupy in the output package.
RESERVED_MODULES: Tuple[str, ...] = ("__init__", "boil", "conftest")

# Names a column field may not take in the generated entity or its functions.
ENTITY_ATTRIBUTES: Tuple[str, ...] = (
    "classmethod",
    "cls",
    "conn",
    "field",
    "from_dict",
    "from_row",
    "self",
    "to_dict",
    "to_row",
)

_FORM_ORDER: Tuple[str, ...] = ("up_singular", "up_plural", "down_singular", "down_plural")


# ---------------------------------------------------------------------------
# Alias records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ColumnAlias:
    """Naming for one column: the entity attribute and the serialised key."""

    name: str
    field: str
    tag: str


@dataclass(frozen=True)
class TableAlias:
    """The four naming forms of one table plus its column aliases."""

    name: str
    up_singular: str
    up_plural: str
    down_singular: str
    down_plural: str
    columns: Dict[str, ColumnAlias] = field(default_factory=dict)

    def column(self, name: str) -> ColumnAlias:
        return self.columns[name]

    def field_for(self, column_name: str) -> str:
        return self.columns[column_name].field


@dataclass(frozen=True)
class RelationshipAlias:
    """Accessor names for one foreign key, on each side of it."""

    local: str
    foreign: str


@dataclass(frozen=True)
class AliasSet:
    """
    All aliases of one run.  Read-only once built.

    ``accessors`` maps a table name to its relationships paired with the
    final accessor name, in ``SchemaDefinition.relationships_for`` order.
    """

    tables: Dict[str, TableAlias]
    relationships: Dict[Tuple[str, str], RelationshipAlias]
    accessors: Dict[str, Tuple[Tuple[RelationshipInfo, str], ...]]

    def table(self, name: str) -> TableAlias:
        return self.tables[name]

    def accessors_for(self, name: str) -> Tuple[Tuple[RelationshipInfo, str], ...]:
        return self.accessors.get(name, ())


# ---------------------------------------------------------------------------
# Table forms
# ---------------------------------------------------------------------------


def _up(name: str) -> str:
    result: str = to_pascal_case(name)
    if not result:
        return "_Unnamed"
    return f"_{result}" if result[0].isdigit() else result


def _down(name: str) -> str:
    return safe_identifier(name)


def derive_table_forms(name: str) -> Dict[str, str]:
    """Default derivation from the raw table name."""
    singular: str = to_singular(name)
    plural: str = to_plural(name)
    return {
        "up_singular": _up(singular),
        "up_plural": _up(plural),
        "down_singular": _down(singular),
        "down_plural": _down(plural),
    }


def _derive_from(form: str, value: str) -> Dict[str, str]:
    if form in ("up_singular", "down_singular"):
        singular: str = to_snake_case(value)
        plural: str = to_plural(singular)
    else:
        plural = to_snake_case(value)
        singular = to_singular(plural)
    return {
        "up_singular": _up(singular),
        "up_plural": _up(plural),
        "down_singular": _down(singular),
        "down_plural": _down(plural),
    }


def apply_table_override(name: str, override: Optional[TableAliasOverride]) -> Dict[str, str]:
    """
    Resolve the four forms for one table.

    Supplied forms always win.  Missing forms are derived from the first
    supplied form in ``up_singular, up_plural, down_singular, down_plural``
    order, never from the raw table name.
    """
    if override is None:
        return derive_table_forms(name)

    supplied: Dict[str, str] = {
        form: getattr(override, form)
        for form in _FORM_ORDER
        if getattr(override, form) is not None
    }
    if not supplied:
        return derive_table_forms(name)

    first: str = next(form for form in _FORM_ORDER if form in supplied)
    forms: Dict[str, str] = _derive_from(first, supplied[first])
    forms.update(supplied)

    for form, value in forms.items():
        if not value.isidentifier() or keyword.iskeyword(value):
            raise ConfigurationError(
                f"Alias override {form}={value!r} for table '{name}' is not a valid identifier.",
                table=name,
            )
    return forms


# ---------------------------------------------------------------------------
# Column forms
# ---------------------------------------------------------------------------


def _field_name(column: ColumnInfo, override: Optional[str]) -> str:
    if override is not None:
        if not override.isidentifier() or keyword.iskeyword(override):
            raise ConfigurationError(
                f"Field override {override!r} for column '{column.name}' is not a valid identifier.",
                column=column.name,
            )
        return override
    name: str = safe_identifier(column.name)
    if name in ENTITY_ATTRIBUTES:
        name = f"{name}_"
    return name


def _tag_name(column: ColumnInfo, casing: str) -> str:
    if casing == TagCasing.CAMEL:
        return to_camel_case(column.name) or column.name
    return column.name


def resolve_columns(
    table: TableInfo,
    overrides: Mapping[str, str],
    tag_casing: str,
) -> Dict[str, ColumnAlias]:
    """Column aliases for one table; raises on field collisions."""
    for name in sorted(overrides):
        if not table.has_column(name):
            raise ConfigurationError(
                f"Alias override names unknown column '{table.name}.{name}'.",
                table=table.name,
                column=name,
            )

    columns: Dict[str, ColumnAlias] = {}
    owners: Dict[str, str] = {}
    for column in table.columns:
        field_name: str = _field_name(column, overrides.get(column.name))
        if field_name in owners:
            raise AliasCollisionError(
                field_name, owners[field_name], column.name, table=table.name
            )
        owners[field_name] = column.name
        columns[column.name] = ColumnAlias(
            name=column.name,
            field=field_name,
            tag=_tag_name(column, tag_casing),
        )
    return columns


# ---------------------------------------------------------------------------
# Relationship accessors
# ---------------------------------------------------------------------------


def _stem(column: str) -> Optional[str]:
    """``author_id`` → ``author``; ``None`` when the column has no ``_id`` suffix."""
    lowered: str = column.lower()
    if lowered.endswith("_id") and len(lowered) > 3:
        return safe_identifier(column[:-3])
    return None


def _foreign_key_aliases(
    schema: SchemaDefinition,
    tables: Dict[str, TableAlias],
) -> Dict[Tuple[str, str], RelationshipAlias]:
    result: Dict[Tuple[str, str], RelationshipAlias] = {}
    for table in schema.tables:
        for fk in table.foreign_keys:
            target: TableAlias = tables[fk.foreign_table]
            referencing: TableAlias = tables[table.name]
            stem: Optional[str] = _stem(fk.columns[0]) if len(fk.columns) == 1 else None

            local: str = stem or target.down_singular
            unique: bool = table.is_unique_key(fk.columns)
            base: str = referencing.down_singular if unique else referencing.down_plural
            foreign: str = base if stem in (None, target.down_singular) else f"{stem}_{base}"
            result[(table.name, fk.name)] = RelationshipAlias(local=local, foreign=foreign)
    return result


def _accessor_name(
    rel: RelationshipInfo,
    tables: Dict[str, TableAlias],
    fk_aliases: Dict[Tuple[str, str], RelationshipAlias],
) -> str:
    if rel.is_many_to_many:
        return tables[rel.foreign_table].down_plural
    if rel.direction == RelationshipDirection.REFERENCING:
        return fk_aliases[(rel.local_table, rel.foreign_key)].local
    return fk_aliases[(rel.foreign_table, rel.foreign_key)].foreign


def resolve_accessors(
    schema: SchemaDefinition,
    tables: Dict[str, TableAlias],
    fk_aliases: Dict[Tuple[str, str], RelationshipAlias],
) -> Dict[str, Tuple[Tuple[RelationshipInfo, str], ...]]:
    """
    Accessor names per generated table.

    Names that would repeat within one table are qualified with the
    underlying foreign-key name, e.g. ``users_via_friendships_friend_id_fkey``.
    """
    result: Dict[str, Tuple[Tuple[RelationshipInfo, str], ...]] = {}
    for table in schema.generated_tables:
        relationships: List[RelationshipInfo] = schema.relationships_for(table.name)
        names: List[str] = [_accessor_name(r, tables, fk_aliases) for r in relationships]
        counts: Dict[str, int] = {}
        for name in names:
            counts[name] = counts.get(name, 0) + 1
        final: List[str] = [
            name if counts[name] == 1 else f"{name}_via_{safe_identifier(rel.foreign_key)}"
            for rel, name in zip(relationships, names)
        ]
        result[table.name] = tuple(zip(relationships, final))
    return result


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class AliasResolver:
    """
    Builds the ``AliasSet`` for a schema.

    Usage:
        aliases = AliasResolver(config.aliases, config.tag_casing).resolve(schema)
    """

    def __init__(
        self,
        overrides: Optional[AliasOverrides] = None,
        tag_casing: str = TagCasing.SNAKE,
    ) -> None:
        self.overrides: AliasOverrides = overrides or AliasOverrides()
        self.tag_casing: str = getattr(tag_casing, "value", tag_casing)

    def resolve(self, schema: SchemaDefinition) -> AliasSet:
        for name in sorted(self.overrides.tables):
            if schema.get_table(name) is None:
                raise ConfigurationError(
                    f"Alias override names unknown table '{name}'.", table=name
                )

        tables: Dict[str, TableAlias] = {}
        by_up_singular: Dict[str, str] = {}
        by_module: Dict[str, str] = {}

        for table in schema.tables:
            override: Optional[TableAliasOverride] = self.overrides.tables.get(table.name)
            forms: Dict[str, str] = apply_table_override(table.name, override)

            owner: Optional[str] = by_up_singular.get(forms["up_singular"])
            if owner is not None:
                raise AliasCollisionError(forms["up_singular"], owner, table.name)
            by_up_singular[forms["up_singular"]] = table.name

            if not table.is_join_table:
                module: str = forms["down_plural"]
                if module in RESERVED_MODULES or module.startswith("test_"):
                    raise ConfigurationError(
                        f"Table '{table.name}' would be written as module '{module}', "
                        f"which is reserved.",
                        table=table.name,
                    )
                owner = by_module.get(module)
                if owner is not None:
                    raise AliasCollisionError(module, owner, table.name)
                by_module[module] = table.name

            columns: Dict[str, ColumnAlias] = resolve_columns(
                table,
                override.columns if override else {},
                self.tag_casing,
            )
            tables[table.name] = TableAlias(name=table.name, columns=columns, **forms)
            logger.debug(
                "Alias %s -> %s/%s (%s/%s)",
                table.name,
                forms["up_singular"],
                forms["up_plural"],
                forms["down_singular"],
                forms["down_plural"],
            )

        fk_aliases = _foreign_key_aliases(schema, tables)
        accessors = resolve_accessors(schema, tables, fk_aliases)
        logger.info("Resolved aliases for %d table(s).", len(tables))
        return AliasSet(tables=tables, relationships=fk_aliases, accessors=accessors)


def resolve_aliases(
    schema: SchemaDefinition,
    overrides: Optional[AliasOverrides] = None,
    tag_casing: str = TagCasing.SNAKE,
) -> AliasSet:
    """Convenience wrapper around ``AliasResolver``."""
    return AliasResolver(overrides, tag_casing).resolve(schema)


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "RESERVED_MODULES",
    "ENTITY_ATTRIBUTES",
    "ColumnAlias",
    "TableAlias",
    "RelationshipAlias",
    "AliasSet",
    "derive_table_forms",
    "apply_table_override",
    "resolve_columns",
    "resolve_accessors",
    "AliasResolver",
    "resolve_aliases",
]

logger.debug("dalgen.aliases loaded (%d public symbols).", len(__all__))
