# File: dalgen/models.py
"""
dalgen - Core Data Models
==========================
Pydantic V2 models representing the introspected database schema and the
generation request.  These models are the single source of truth for the
whole pipeline: Driver → Consistency Checks → Aliases → Rendering → Export.

Schema models are frozen: once a driver response has been decoded nothing
in the pipeline may change it, so rendering workers can share them without
locks.  Relationships are never stored; ``SchemaDefinition.relationships_for``
derives them from foreign keys on demand.
"""

from __future__ import annotations

import keyword
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    computed_field,
    field_validator,
    model_validator,
)

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.models")

# ---------------------------------------------------------------------------
# Enums: fixed sets used across the entire project
# ---------------------------------------------------------------------------


class ColumnType(str, Enum):
    """Semantic column types a driver may report."""

    INT = "int"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOL = "bool"
    STR = "str"
    BYTES = "bytes"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    INTERVAL = "interval"
    UUID = "uuid"
    JSON = "json"
    ARRAY = "array"
    ENUM = "enum"
    OPAQUE = "opaque"


class ForeignKeyAction(str, Enum):
    """Foreign-key ON DELETE / ON UPDATE behaviour."""

    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    SET_DEFAULT = "SET DEFAULT"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"


class RelationshipKind(str, Enum):
    """How many related rows an accessor returns."""

    TO_ONE = "to_one"
    TO_MANY = "to_many"


class RelationshipDirection(str, Enum):
    """Which side of the foreign key the relationship was computed from."""

    REFERENCING = "referencing"
    REFERENCED = "referenced"


class TagCasing(str, Enum):
    """Casing used for serialised field names (``to_dict`` keys, tags)."""

    SNAKE = "snake"
    CAMEL = "camel"


# Python annotation and SQLAlchemy type expression for each semantic type.
_PYTHON_TYPES: Dict[str, str] = {
    "int": "int",
    "float": "float",
    "decimal": "Decimal",
    "bool": "bool",
    "str": "str",
    "bytes": "bytes",
    "date": "date",
    "time": "time",
    "datetime": "datetime",
    "interval": "timedelta",
    "uuid": "UUID",
    "json": "Any",
    "array": "list",
    "enum": "str",
    "opaque": "Any",
}

_SQLALCHEMY_TYPES: Dict[str, str] = {
    "int": "Integer",
    "float": "Float",
    "decimal": "Numeric",
    "bool": "Boolean",
    "str": "String",
    "bytes": "LargeBinary",
    "date": "Date",
    "time": "Time",
    "datetime": "DateTime",
    "interval": "Interval",
    "uuid": "Uuid",
    "json": "JSON",
    "array": "ARRAY(NullType())",
    "opaque": "NullType()",
}

# ---------------------------------------------------------------------------
# Shared model configuration
# ---------------------------------------------------------------------------

# Schema documents come from independently versioned drivers; unknown keys
# are ignored so newer drivers keep working with older cores.
_SCHEMA_CONFIG: ConfigDict = ConfigDict(
    strict=False,
    populate_by_name=True,
    use_enum_values=True,
    frozen=True,
    extra="ignore",
)

_CONFIG_CONFIG: ConfigDict = ConfigDict(
    strict=False,
    populate_by_name=True,
    use_enum_values=True,
    frozen=True,
    extra="forbid",
)


# ---------------------------------------------------------------------------
# Schema primitives
# ---------------------------------------------------------------------------


class ColumnInfo(BaseModel):
    """
    Complete description of a single database column.

    Every column in every table reported by the driver becomes exactly one
    ``ColumnInfo`` instance.
    """

    model_config = _SCHEMA_CONFIG

    name: str = Field(..., min_length=1, description="Column name.")
    db_type: str = Field(..., min_length=1, description="Declared database type.")
    type: ColumnType = Field(..., description="Semantic type.")
    nullable: bool = Field(default=False, description="Whether the column allows NULL.")
    default: Optional[str] = Field(
        default=None, description="Default-value expression, verbatim."
    )
    unique: bool = Field(default=False, description="Has a single-column UNIQUE constraint?")
    auto_generated: bool = Field(
        default=False, description="Identity / serial / computed by the database."
    )
    enum_values: Tuple[str, ...] = Field(
        default=(), description="Allowed values (only when type == 'enum')."
    )
    comment: Optional[str] = Field(default=None, description="Column comment.")

    @field_validator("type", mode="before")
    @classmethod
    def _unknown_types_are_opaque(cls, v: Any) -> Any:
        if isinstance(v, str):
            lowered: str = v.strip().lower()
            if lowered not in ColumnType._value2member_map_:
                logger.debug("Unknown semantic type %r mapped to 'opaque'.", v)
                return ColumnType.OPAQUE
            return lowered
        return v

    @model_validator(mode="after")
    def _validate_enum_values(self) -> "ColumnInfo":
        if self.type == ColumnType.ENUM and not self.enum_values:
            raise ValueError(
                f"Column '{self.name}' is of type enum but 'enum_values' is empty."
            )
        if len(set(self.enum_values)) != len(self.enum_values):
            raise ValueError(f"Column '{self.name}' has duplicate enum values.")
        return self

    # -- Derived helpers ---------------------------------------------------

    @property
    def is_optional(self) -> bool:
        """True when the value may legitimately be absent before insert."""
        return self.nullable or self.auto_generated or self.default is not None

    @property
    def python_type(self) -> str:
        """Bare Python annotation for the semantic type."""
        return _PYTHON_TYPES[self.type]

    @property
    def python_annotation(self) -> str:
        """Annotation used for the generated entity field."""
        base: str = self.python_type
        if base == "Any" or not self.is_optional:
            return base
        return f"{base} | None"

    @property
    def sqlalchemy_type(self) -> str:
        """SQLAlchemy type expression for the generated ``Column``."""
        if self.type == ColumnType.ENUM:
            values: str = ", ".join(repr(v) for v in self.enum_values)
            return f"Enum({values}, native_enum=False)"
        return _SQLALCHEMY_TYPES[self.type]

    def __repr__(self) -> str:
        null_flag: str = " NULL" if self.nullable else " NOT NULL"
        return f"<Column {self.name} {self.db_type} ({self.type}){null_flag}>"


class PrimaryKeyInfo(BaseModel):
    """Primary-key constraint: an ordered, non-empty list of columns."""

    model_config = _SCHEMA_CONFIG

    name: Optional[str] = Field(default=None, description="Constraint name.")
    columns: Tuple[str, ...] = Field(..., min_length=1, description="Key columns.")

    @field_validator("columns")
    @classmethod
    def _no_duplicate_columns(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if len(v) != len(set(v)):
            raise ValueError(f"Duplicate columns in primary key: {list(v)}")
        return v


class ForeignKeyInfo(BaseModel):
    """Describes a (possibly composite) foreign-key reference."""

    model_config = _SCHEMA_CONFIG

    name: str = Field(..., min_length=1, description="FK constraint name.")
    columns: Tuple[str, ...] = Field(..., min_length=1, description="Local columns.")
    foreign_table: str = Field(..., min_length=1, description="Referenced table.")
    foreign_columns: Tuple[str, ...] = Field(
        ..., min_length=1, description="Referenced columns."
    )
    on_delete: ForeignKeyAction = Field(
        default=ForeignKeyAction.NO_ACTION, description="ON DELETE action."
    )
    on_update: ForeignKeyAction = Field(
        default=ForeignKeyAction.NO_ACTION, description="ON UPDATE action."
    )

    @field_validator("on_delete", "on_update", mode="before")
    @classmethod
    def _normalise_action(cls, v: Any) -> Any:
        if isinstance(v, str):
            return " ".join(v.replace("_", " ").upper().split())
        return v

    @model_validator(mode="after")
    def _validate_column_arity(self) -> "ForeignKeyInfo":
        if len(self.columns) != len(self.foreign_columns):
            raise ValueError(
                f"Foreign key '{self.name}' maps {len(self.columns)} column(s) "
                f"onto {len(self.foreign_columns)} referenced column(s)."
            )
        return self

    def __repr__(self) -> str:
        return (
            f"<FK {self.name}: {','.join(self.columns)} → "
            f"{self.foreign_table}.{','.join(self.foreign_columns)}>"
        )


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------


class TableInfo(BaseModel):
    """
    Complete representation of a single table or view.

    One ``TableInfo`` drives one data-access module and, when tests are
    enabled, one test module.  Join tables drive neither; they only
    contribute many-to-many accessors to the two tables they associate.
    """

    model_config = _SCHEMA_CONFIG

    name: str = Field(..., min_length=1, description="Table name.")
    schema_name: Optional[str] = Field(
        default=None, description="Database schema (e.g. 'public')."
    )
    columns: Tuple[ColumnInfo, ...] = Field(
        ..., min_length=1, description="Columns in declaration order."
    )
    primary_key: Optional[PrimaryKeyInfo] = Field(
        default=None, description="Primary key, if any."
    )
    foreign_keys: Tuple[ForeignKeyInfo, ...] = Field(
        default=(), description="Foreign keys in declaration order."
    )
    is_view: bool = Field(default=False, description="Reported as a view by the driver.")

    _column_map: Dict[str, ColumnInfo] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._column_map = {c.name: c for c in self.columns}

    # -- Computed helpers ---------------------------------------------------

    @computed_field  # type: ignore[misc]
    @property
    def is_join_table(self) -> bool:
        """
        Structural many-to-many detection.

        True iff the table is not a view, has exactly two columns, a
        two-column primary key, exactly two single-column foreign keys, and
        the primary-key columns are exactly the foreign-key columns.
        """
        if self.is_view or self.primary_key is None:
            return False
        if len(self.columns) != 2 or len(self.primary_key.columns) != 2:
            return False
        if len(self.foreign_keys) != 2:
            return False
        if any(len(fk.columns) != 1 for fk in self.foreign_keys):
            return False
        fk_columns = {fk.columns[0] for fk in self.foreign_keys}
        return fk_columns == set(self.primary_key.columns)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def primary_key_columns(self) -> Tuple[str, ...]:
        return self.primary_key.columns if self.primary_key else ()

    @property
    def qualified_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.name}"
        return self.name

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        """O(1) column lookup by name."""
        return self._column_map.get(name)

    def has_column(self, name: str) -> bool:
        return name in self._column_map

    def is_unique_key(self, columns: Tuple[str, ...]) -> bool:
        """True when *columns* identify at most one row of this table."""
        if self.primary_key and set(columns) == set(self.primary_key.columns):
            return True
        if len(columns) == 1:
            column: Optional[ColumnInfo] = self.get_column(columns[0])
            return bool(column and column.unique)
        return False

    def __repr__(self) -> str:
        kind: str = "View" if self.is_view else "Table"
        return (
            f"<{kind} {self.name} "
            f"({len(self.columns)} cols, {len(self.foreign_keys)} FKs)>"
        )


# ---------------------------------------------------------------------------
# Relationships: derived, never stored
# ---------------------------------------------------------------------------


class RelationshipInfo(BaseModel):
    """
    One navigable association as seen from ``local_table``.

    For many-to-many associations ``join_table`` is set and
    ``join_local_column`` / ``join_foreign_column`` name the join-table
    columns pointing at the local and foreign tables respectively.
    """

    model_config = _SCHEMA_CONFIG

    kind: RelationshipKind
    direction: RelationshipDirection
    local_table: str
    local_columns: Tuple[str, ...]
    foreign_table: str
    foreign_columns: Tuple[str, ...]
    foreign_key: str = Field(..., description="Name of the underlying FK.")
    unique: bool = Field(default=False, description="One-to-one association.")
    join_table: Optional[str] = None
    join_local_column: Optional[str] = None
    join_foreign_column: Optional[str] = None

    @property
    def is_many_to_many(self) -> bool:
        return self.join_table is not None

    @property
    def is_inverse(self) -> bool:
        return self.direction == RelationshipDirection.REFERENCED

    @property
    def cardinality(self) -> str:
        """Human-readable cardinality as seen from the local table."""
        if self.is_many_to_many:
            return "many_to_many"
        if self.unique:
            return "one_to_one"
        if self.kind == RelationshipKind.TO_ONE:
            return "many_to_one"
        return "one_to_many"

    def __repr__(self) -> str:
        via: str = f" via {self.join_table}" if self.join_table else ""
        return (
            f"<Relationship {self.local_table} → {self.foreign_table} "
            f"({self.cardinality}{via})>"
        )


# ---------------------------------------------------------------------------
# Schema Definition: top-level container
# ---------------------------------------------------------------------------


class SchemaDefinition(BaseModel):
    """
    The root model: the entire schema reported by one driver run.

    Invariant: ``tables`` is sorted by name on construction and the O(1)
    lookup cache is built from it.  Referential consistency is checked by
    ``dalgen.validators``, not here, so that an inconsistent schema is
    reported as such rather than as a malformed driver response.
    """

    model_config = _SCHEMA_CONFIG

    tables: Tuple[TableInfo, ...] = Field(default=(), description="All tables and views.")
    driver_name: str = Field(default="", description="Driver that produced the schema.")
    dialect: str = Field(default="", description="Free-text dialect name from the driver.")

    _table_map: Dict[str, TableInfo] = PrivateAttr(default_factory=dict)

    @field_validator("tables")
    @classmethod
    def _sort_tables(cls, v: Tuple[TableInfo, ...]) -> Tuple[TableInfo, ...]:
        return tuple(sorted(v, key=lambda t: t.name))

    def model_post_init(self, __context: Any) -> None:
        self._table_map = {t.name: t for t in self.tables}

    def get_table(self, name: str) -> Optional[TableInfo]:
        """O(1) table lookup."""
        return self._table_map.get(name)

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    @property
    def generated_tables(self) -> List[TableInfo]:
        """Tables that receive their own artifacts (everything but join tables)."""
        return [t for t in self.tables if not t.is_join_table]

    def column_types(self, tables: Optional[List[TableInfo]] = None) -> List[str]:
        """Sorted semantic types present in *tables* (default: generated tables)."""
        source: List[TableInfo] = self.generated_tables if tables is None else tables
        return sorted({c.type for t in source for c in t.columns})

    def relationships_for(self, name: str) -> List[RelationshipInfo]:
        """
        Derive every relationship visible from table *name*.

        Order is deterministic: first the table's own foreign keys in
        declaration order, then inverse and many-to-many relationships in
        referencing-table name order.
        """
        table: Optional[TableInfo] = self.get_table(name)
        if table is None:
            raise KeyError(name)

        result: List[RelationshipInfo] = []
        for fk in table.foreign_keys:
            result.append(
                RelationshipInfo(
                    kind=RelationshipKind.TO_ONE,
                    direction=RelationshipDirection.REFERENCING,
                    local_table=table.name,
                    local_columns=fk.columns,
                    foreign_table=fk.foreign_table,
                    foreign_columns=fk.foreign_columns,
                    foreign_key=fk.name,
                    unique=table.is_unique_key(fk.columns),
                )
            )

        for other in self.tables:
            for fk in other.foreign_keys:
                if fk.foreign_table != name:
                    continue
                if other.is_join_table:
                    far: ForeignKeyInfo = next(
                        f for f in other.foreign_keys if f is not fk
                    )
                    result.append(
                        RelationshipInfo(
                            kind=RelationshipKind.TO_MANY,
                            direction=RelationshipDirection.REFERENCED,
                            local_table=table.name,
                            local_columns=fk.foreign_columns,
                            foreign_table=far.foreign_table,
                            foreign_columns=far.foreign_columns,
                            foreign_key=fk.name,
                            join_table=other.name,
                            join_local_column=fk.columns[0],
                            join_foreign_column=far.columns[0],
                        )
                    )
                    continue
                unique: bool = other.is_unique_key(fk.columns)
                result.append(
                    RelationshipInfo(
                        kind=RelationshipKind.TO_ONE if unique else RelationshipKind.TO_MANY,
                        direction=RelationshipDirection.REFERENCED,
                        local_table=table.name,
                        local_columns=fk.foreign_columns,
                        foreign_table=other.name,
                        foreign_columns=fk.columns,
                        foreign_key=fk.name,
                        unique=unique,
                    )
                )
        return result

    def __repr__(self) -> str:
        return (
            f"<SchemaDefinition {len(self.tables)} tables "
            f"({self.dialect or 'unknown dialect'})>"
        )


# ---------------------------------------------------------------------------
# Generation configuration
# ---------------------------------------------------------------------------


class FeatureFlags(BaseModel):
    """Switches that change which artifact sections are emitted."""

    model_config = _CONFIG_CONFIG

    tests: bool = Field(default=True, description="Generate test modules.")
    hooks: bool = Field(default=True, description="Generate lifecycle hook registries.")
    auto_timestamps: bool = Field(
        default=True, description="Stamp created_at / updated_at automatically."
    )
    context: bool = Field(
        default=True,
        description="Pass the connection explicitly instead of using a global one.",
    )

    def enabled(self, name: str) -> bool:
        try:
            return bool(getattr(self, name))
        except AttributeError:
            raise KeyError(f"Unknown feature flag: {name!r}") from None

    def __repr__(self) -> str:
        on: List[str] = [n for n in ("tests", "hooks", "auto_timestamps", "context") if getattr(self, n)]
        return f"<FeatureFlags {','.join(on) or 'none'}>"


class TableAliasOverride(BaseModel):
    """User-supplied naming for one table (any subset of the four forms)."""

    model_config = _CONFIG_CONFIG

    up_singular: Optional[str] = None
    up_plural: Optional[str] = None
    down_singular: Optional[str] = None
    down_plural: Optional[str] = None
    columns: Dict[str, str] = Field(
        default_factory=dict, description="Column name → field name."
    )

    @field_validator("up_singular", "up_plural", "down_singular", "down_plural", mode="after")
    @classmethod
    def _non_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("alias forms must not be blank")
        return v


class AliasOverrides(BaseModel):
    """All user alias overrides keyed by raw table name."""

    model_config = _CONFIG_CONFIG

    tables: Dict[str, TableAliasOverride] = Field(default_factory=dict)


class ImportSpec(BaseModel):
    """A user-supplied addition to one import block."""

    model_config = _CONFIG_CONFIG

    standard: List[str] = Field(default_factory=list)
    third_party: List[str] = Field(default_factory=list)


class ImportOverrides(BaseModel):
    """
    User import additions, one key per target.

    ``all`` → every table module, ``test`` → every table test module,
    ``singleton`` / ``test_singleton`` → named singleton artifacts,
    ``test_main`` → the test-support singleton, ``based_on_type`` → table
    modules whose table uses that semantic type.
    """

    model_config = _CONFIG_CONFIG

    all: ImportSpec = Field(default_factory=ImportSpec)
    test: ImportSpec = Field(default_factory=ImportSpec)
    singleton: Dict[str, ImportSpec] = Field(default_factory=dict)
    test_singleton: Dict[str, ImportSpec] = Field(default_factory=dict)
    test_main: ImportSpec = Field(default_factory=ImportSpec)
    based_on_type: Dict[ColumnType, ImportSpec] = Field(default_factory=dict)


class GenerationConfig(BaseModel):
    """
    Master configuration that controls every aspect of generation.

    A single instance of this model (combined with a ``SchemaDefinition``)
    is all the generator needs to produce the full output tree.
    """

    model_config = _CONFIG_CONFIG

    driver_name: str = Field(..., min_length=1, description="Driver identifier.")
    output_dir: str = Field(default="models", min_length=1, description="Output directory.")
    package_name: str = Field(default="models", description="Generated package name.")
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    tag_casing: TagCasing = Field(default=TagCasing.SNAKE)
    tags: List[str] = Field(
        default_factory=list, description="Extra field-metadata keys per column."
    )
    aliases: AliasOverrides = Field(default_factory=AliasOverrides)
    imports: ImportOverrides = Field(default_factory=ImportOverrides)
    replacements: Dict[str, str] = Field(
        default_factory=dict, description="Artifact name → 'module:function'."
    )
    wipe: bool = Field(default=False, description="Delete output_dir before writing.")
    debug: bool = Field(default=False, description="Report the full cause chain.")
    workers: Optional[int] = Field(default=None, ge=1, description="Render pool size.")
    driver_timeout: Optional[float] = Field(
        default=None, gt=0, description="Seconds before the driver is killed."
    )
    write_manifest: bool = Field(default=False, description="Write dalgen-manifest.json.")

    @field_validator("package_name")
    @classmethod
    def _valid_package_name(cls, v: str) -> str:
        if not v.isidentifier() or keyword.iskeyword(v):
            raise ValueError(f"package_name {v!r} is not a valid Python identifier")
        return v

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: List[str]) -> List[str]:
        seen: List[str] = []
        for tag in v:
            if not tag or not tag.strip():
                raise ValueError("tags must not be blank")
            if tag in ("db", "tag"):
                raise ValueError(f"tag {tag!r} is reserved")
            if tag not in seen:
                seen.append(tag)
        return seen

    @field_validator("replacements")
    @classmethod
    def _valid_replacements(cls, v: Dict[str, str]) -> Dict[str, str]:
        for name, target in v.items():
            module, sep, func = target.partition(":")
            if not sep or not module or not func.isidentifier():
                raise ValueError(
                    f"replacement for {name!r} must look like 'module:function', got {target!r}"
                )
        return v

    def __repr__(self) -> str:
        return (
            f"<GenerationConfig driver={self.driver_name} "
            f"out={self.output_dir} pkg={self.package_name}>"
        )


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "ColumnType",
    "ForeignKeyAction",
    "RelationshipKind",
    "RelationshipDirection",
    "TagCasing",
    "ColumnInfo",
    "PrimaryKeyInfo",
    "ForeignKeyInfo",
    "TableInfo",
    "RelationshipInfo",
    "SchemaDefinition",
    "FeatureFlags",
    "TableAliasOverride",
    "AliasOverrides",
    "ImportSpec",
    "ImportOverrides",
    "GenerationConfig",
]

logger.debug("dalgen.models loaded (%d public symbols).", len(__all__))
