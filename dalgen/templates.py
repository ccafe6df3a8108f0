# File: dalgen/templates.py
"""
dalgen - Artifact Templates
=============================
Pure functions from a ``GenerationContext`` to Python source text.

Every table that is not a join table yields one data-access module
``<down_plural>.py`` assembled from *sections* (entity, hooks, timestamps,
query, relationships) and, when tests are enabled, one test module
``test_<down_plural>.py`` (entity_test, query_test).  The singleton
artifacts ``__init__.py``, ``boil.py`` and ``conftest.py`` are rendered
once per run.

The generated code targets SQLAlchemy Core (``Table`` + ``select`` /
``insert`` / ``update`` / ``delete``) with dataclass entities.

**Contracts:**
    - All string assembly uses the ``List[str]`` + ``"\\n".join()`` pattern.
    - Render functions are stateless and deterministic: same context, same
      text, byte for byte.
    - Each template declares the imports its output uses through
      ``ImportRequirement`` predicates that mirror its own emission
      conditions, so files never import anything they do not use.
"""

from __future__ import annotations

import dataclasses
import importlib
import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from dalgen.aliases import AliasSet, TableAlias
from dalgen.errors import ConfigurationError
from dalgen.imports import (
    ImportRequirement,
    ImportSet,
    local,
    render_import_block,
    std,
    third,
)
from dalgen.models import (
    ColumnInfo,
    ColumnType,
    FeatureFlags,
    ForeignKeyAction,
    ForeignKeyInfo,
    GenerationConfig,
    RelationshipInfo,
    RelationshipKind,
    SchemaDefinition,
    TableInfo,
)
from dalgen.utils import format_tuple_literal

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.templates")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

GENERATED_HEADER: str = "# Code generated by dalgen. DO NOT EDIT."
TEST_DATABASE_ENV: str = "DALGEN_TEST_DATABASE_URL"

TABLE_SCOPE: str = "table"
SINGLETON_SCOPE: str = "singleton"

_INDENT: str = "    "
_MAX_LINE: int = 79
_SECTION_GAP: str = "\n\n\n"

HOOK_POINTS: Tuple[str, ...] = (
    "after_delete",
    "after_insert",
    "after_select",
    "after_update",
    "before_delete",
    "before_insert",
    "before_update",
)

_CREATED_COLUMN: str = "created_at"
_UPDATED_COLUMN: str = "updated_at"

_SAMPLE_LITERALS: Dict[str, str] = {
    "int": "1",
    "float": "1.5",
    "decimal": 'Decimal("1.5")',
    "bool": "True",
    "str": '"x"',
    "bytes": 'b"x"',
    "date": "date(2000, 1, 1)",
    "time": "time(12, 0)",
    "datetime": "datetime(2000, 1, 1, 12, 0)",
    "interval": "timedelta(seconds=1)",
    "uuid": "UUID(int=1)",
    "json": '{"k": 1}',
    "array": "[1]",
    "opaque": "None",
}


# ---------------------------------------------------------------------------
# Generation context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationContext:
    """
    The immutable bundle handed to one template invocation.

    ``table`` is ``None`` for singleton artifacts.  ``relationships`` holds
    the table's relationships paired with their accessor names.
    """

    table: Optional[TableInfo]
    schema: SchemaDefinition
    aliases: AliasSet
    config: GenerationConfig
    features: FeatureFlags
    package_name: str
    tag_casing: str
    tags: Tuple[str, ...] = ()
    relationships: Tuple[Tuple[RelationshipInfo, str], ...] = ()

    @classmethod
    def build(
        cls,
        schema: SchemaDefinition,
        aliases: AliasSet,
        config: GenerationConfig,
        table: Optional[TableInfo] = None,
    ) -> "GenerationContext":
        return cls(
            table=table,
            schema=schema,
            aliases=aliases,
            config=config,
            features=config.features,
            package_name=config.package_name,
            tag_casing=getattr(config.tag_casing, "value", config.tag_casing),
            tags=tuple(config.tags),
            relationships=aliases.accessors_for(table.name) if table is not None else (),
        )

    @property
    def alias(self) -> TableAlias:
        if self.table is None:
            raise RuntimeError("singleton context has no table")
        return self.aliases.table(self.table.name)

    def field(self, column: str, table: Optional[str] = None) -> str:
        name: str = table or (self.table.name if self.table else "")
        return self.aliases.table(name).field_for(column)

    def ref(self, table_name: str) -> str:
        """Prefix that reaches *table_name*'s module from the current one."""
        if self.table is not None and table_name == self.table.name:
            return ""
        return f"{self.aliases.table(table_name).down_plural}."


# ---------------------------------------------------------------------------
# Artifact templates & registry
# ---------------------------------------------------------------------------

RenderFn = Callable[[GenerationContext], str]


@dataclass(frozen=True)
class ArtifactTemplate:
    """
    One named artifact or section.

    ``scope`` is ``"table"`` (a section of a per-table module; ``test``
    selects the test module) or ``"singleton"`` (a whole file named by
    ``filename``).  ``features`` must all be enabled for the template to
    run.  ``summary`` becomes the module docstring of singleton files, with
    ``{package}`` and ``{filename}`` substituted.
    ``column_types`` lists the semantic types whose SQLAlchemy column types
    the output constructs; their imports are added to the file.
    """

    name: str
    scope: str
    render: RenderFn
    test: bool = False
    order: int = 0
    features: Tuple[str, ...] = ()
    filename: str = ""
    summary: str = ""
    imports: Tuple[ImportRequirement, ...] = ()
    local_imports: Optional[Callable[[GenerationContext], Sequence[str]]] = None
    column_types: Optional[Callable[[GenerationContext], Sequence[str]]] = None

    def enabled_for(self, features: FeatureFlags) -> bool:
        return all(features.enabled(f) for f in self.features)

    def output_path(self, ctx: GenerationContext) -> str:
        if self.scope == SINGLETON_SCOPE:
            return self.filename
        module: str = ctx.alias.down_plural
        return f"test_{module}.py" if self.test else f"{module}.py"


class TemplateRegistry:
    """
    Named artifact templates with replacement support.

    Replacing keeps a template's scope, order, feature gating and import
    declarations and swaps only its render function.
    """

    def __init__(self, templates: Iterable[ArtifactTemplate] = ()) -> None:
        self._templates: Dict[str, ArtifactTemplate] = {}
        for template in templates:
            self.register(template)

    def register(self, template: ArtifactTemplate) -> None:
        if template.name in self._templates:
            raise ValueError(f"Template '{template.name}' is already registered.")
        if template.scope not in (TABLE_SCOPE, SINGLETON_SCOPE):
            raise ValueError(f"Template '{template.name}' has unknown scope {template.scope!r}.")
        self._templates[template.name] = template

    def get(self, name: str) -> ArtifactTemplate:
        try:
            return self._templates[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown template '{name}' (known: {', '.join(self.names())}).",
                template=name,
            ) from None

    def names(self) -> List[str]:
        return sorted(self._templates)

    def replace(self, name: str, render: RenderFn) -> None:
        """Substitute the render function of the template called *name*."""
        template: ArtifactTemplate = self.get(name)
        if not callable(render):
            raise ConfigurationError(f"Replacement for '{name}' is not callable.", template=name)
        self._templates[name] = dataclasses.replace(template, render=render)
        logger.info("Template '%s' replaced by %s", name, getattr(render, "__qualname__", render))

    def apply_replacements(self, replacements: Dict[str, str]) -> None:
        """Load ``module:function`` replacements with importlib."""
        for name in sorted(replacements):
            target: str = replacements[name]
            module_name, _, func_name = target.partition(":")
            self.get(name)
            try:
                module = importlib.import_module(module_name)
            except ImportError as exc:
                raise ConfigurationError(
                    f"Cannot import replacement module '{module_name}' for '{name}': {exc}",
                    template=name,
                ) from exc
            render = getattr(module, func_name, None)
            if render is None:
                raise ConfigurationError(
                    f"Replacement '{target}' for '{name}' does not exist.", template=name
                )
            self.replace(name, render)

    def templates(self) -> List[ArtifactTemplate]:
        return sorted(
            self._templates.values(),
            key=lambda t: (t.scope, t.test, t.order, t.name),
        )

    def table_templates(self, features: Optional[FeatureFlags] = None) -> List[ArtifactTemplate]:
        return [
            t
            for t in self.templates()
            if t.scope == TABLE_SCOPE and (features is None or t.enabled_for(features))
        ]

    def singleton_templates(self, features: Optional[FeatureFlags] = None) -> List[ArtifactTemplate]:
        return [
            t
            for t in self.templates()
            if t.scope == SINGLETON_SCOPE and (features is None or t.enabled_for(features))
        ]

    def __len__(self) -> int:
        return len(self._templates)

    def __repr__(self) -> str:
        return f"<TemplateRegistry {len(self._templates)} templates>"


# ---------------------------------------------------------------------------
# Predicates shared by render functions and import declarations
# ---------------------------------------------------------------------------


def _pk(ctx: GenerationContext) -> Tuple[str, ...]:
    return ctx.table.primary_key_columns if ctx.table else ()


def is_writable(ctx: GenerationContext) -> bool:
    return ctx.table is not None and not ctx.table.is_view


def has_single_column_fk(ctx: GenerationContext) -> bool:
    return any(len(fk.columns) == 1 for fk in ctx.table.foreign_keys)


def has_composite_fk(ctx: GenerationContext) -> bool:
    return any(len(fk.columns) > 1 for fk in ctx.table.foreign_keys)


def many_to_many(ctx: GenerationContext) -> List[Tuple[RelationshipInfo, str]]:
    return [(rel, name) for rel, name in ctx.relationships if rel.is_many_to_many]


def generates_update(ctx: GenerationContext) -> bool:
    pk: Tuple[str, ...] = _pk(ctx)
    return is_writable(ctx) and bool(pk) and len(ctx.table.columns) > len(pk)


def stamped_columns(ctx: GenerationContext) -> Tuple[Optional[str], Optional[str]]:
    """``(created, updated)`` timestamp column names present on the table."""
    found: List[Optional[str]] = []
    for name in (_CREATED_COLUMN, _UPDATED_COLUMN):
        column: Optional[ColumnInfo] = ctx.table.get_column(name)
        found.append(name if column is not None and column.type == ColumnType.DATETIME else None)
    return found[0], found[1]


def uses_timestamps(ctx: GenerationContext) -> bool:
    return (
        ctx.features.auto_timestamps
        and is_writable(ctx)
        and any(c is not None for c in stamped_columns(ctx))
    )


def related_modules(ctx: GenerationContext) -> List[str]:
    """Local imports of the modules this table's accessors reach into."""
    modules: List[str] = []
    for rel, _ in ctx.relationships:
        if rel.foreign_table == ctx.table.name:
            continue
        identifier: str = f".:{ctx.aliases.table(rel.foreign_table).down_plural}"
        if identifier not in modules:
            modules.append(identifier)
    return modules


def join_tables(ctx: GenerationContext) -> List[TableInfo]:
    """Join tables; each is defined once in ``boil`` and shared by both ends."""
    return sorted((t for t in ctx.schema.tables if t.is_join_table), key=lambda t: t.name)


def has_join_tables(ctx: GenerationContext) -> bool:
    return bool(join_tables(ctx))


def join_column_types(ctx: GenerationContext) -> List[str]:
    return sorted({c.type for t in join_tables(ctx) for c in t.columns})


# ---------------------------------------------------------------------------
# Emission helpers
# ---------------------------------------------------------------------------


def _q(value: str) -> str:
    """Double-quoted Python string literal."""
    return json.dumps(value)


def _def(
    ctx: GenerationContext,
    name: str,
    params: Sequence[str],
    returns: str,
) -> List[str]:
    all_params: List[str] = (["conn: boil.Executor"] if ctx.features.context else []) + list(params)
    one_line: str = f"def {name}({', '.join(all_params)}) -> {returns}:"
    if len(one_line) <= _MAX_LINE:
        return [one_line]
    return [f"def {name}(", *[f"{_INDENT}{p}," for p in all_params], f") -> {returns}:"]


def _conn(ctx: GenerationContext) -> List[str]:
    return [] if ctx.features.context else [f"{_INDENT}conn = boil.get_db()"]


def _call(ctx: GenerationContext, func: str, *args: str) -> str:
    all_args: List[str] = (["conn"] if ctx.features.context else []) + list(args)
    return f"{func}({', '.join(all_args)})"


def _hook(ctx: GenerationContext, point: str, target: str = "obj") -> List[str]:
    if not ctx.features.hooks:
        return []
    return [f'{_INDENT}_run_hooks("{point}", conn, {target})']


def _doc(text: str, level: int = 1) -> str:
    return f'{_INDENT * level}"""{text}"""'


def _foreign_target(ctx: GenerationContext, table_name: str, column: str) -> str:
    target: Optional[TableInfo] = ctx.schema.get_table(table_name)
    qualified: str = target.qualified_name if target is not None else table_name
    return f"{qualified}.{column}"


def _fk_options(fk: ForeignKeyInfo) -> List[str]:
    options: List[str] = []
    if fk.on_delete != ForeignKeyAction.NO_ACTION:
        options.append(f"ondelete={_q(fk.on_delete)}")
    if fk.on_update != ForeignKeyAction.NO_ACTION:
        options.append(f"onupdate={_q(fk.on_update)}")
    options.append(f"name={_q(fk.name)}")
    return options


def _pk_where(ctx: GenerationContext, source: str) -> str:
    """``TABLE.c["a"] == <source>.a, ...`` for the primary key."""
    parts: List[str] = []
    for column in _pk(ctx):
        value: str = f"{source}.{ctx.field(column)}" if source else ctx.field(column)
        parts.append(f'TABLE.c[{_q(column)}] == {value}')
    return ", ".join(parts)


def _sample_literal(column: ColumnInfo) -> str:
    if column.type == ColumnType.ENUM:
        return _q(column.enum_values[0])
    return _SAMPLE_LITERALS[column.type]


def _join(blocks: Iterable[Sequence[str]]) -> str:
    return _SECTION_GAP.join("\n".join(block) for block in blocks if block)


# ---------------------------------------------------------------------------
# Table module sections
# ---------------------------------------------------------------------------


def _table_definition(
    ctx: GenerationContext, table: TableInfo, constant: str, metadata: str
) -> List[str]:
    """``<constant> = Table(...)`` registered on *metadata*."""
    pk: Tuple[str, ...] = table.primary_key_columns
    fks_by_column: Dict[str, List[ForeignKeyInfo]] = {}
    for fk in table.foreign_keys:
        if len(fk.columns) == 1:
            fks_by_column.setdefault(fk.columns[0], []).append(fk)

    table_lines: List[str] = [
        f"{constant} = Table(",
        f"{_INDENT}{_q(table.name)},",
        f"{_INDENT}{metadata},",
    ]
    for column in table.columns:
        args: List[str] = [_q(column.name), column.sqlalchemy_type]
        for fk in fks_by_column.get(column.name, []):
            target: str = _foreign_target(ctx, fk.foreign_table, fk.foreign_columns[0])
            args.append(f"ForeignKey({', '.join([_q(target), *_fk_options(fk)])})")
        if column.name in pk:
            args.append("primary_key=True")
            if column.auto_generated:
                args.append("autoincrement=True")
        args.append(f"nullable={column.nullable}")
        if column.unique and column.name not in pk:
            args.append("unique=True")
        if column.comment:
            args.append(f"comment={_q(column.comment)}")
        table_lines.append(f"{_INDENT}Column({', '.join(args)}),")
    for fk in table.foreign_keys:
        if len(fk.columns) > 1:
            local_cols: str = ", ".join(_q(c) for c in fk.columns)
            targets: str = ", ".join(
                _q(_foreign_target(ctx, fk.foreign_table, c)) for c in fk.foreign_columns
            )
            options: str = ", ".join(_fk_options(fk))
            table_lines.append(
                f"{_INDENT}ForeignKeyConstraint([{local_cols}], [{targets}], {options}),"
            )
    if table.schema_name:
        table_lines.append(f"{_INDENT}schema={_q(table.schema_name)},")
    table_lines.append(")")
    return table_lines


def render_entity(ctx: GenerationContext) -> str:
    """``TABLE`` definition, column-name constants and the entity dataclass."""
    table: TableInfo = ctx.table
    alias: TableAlias = ctx.alias
    pk: Tuple[str, ...] = _pk(ctx)
    entity: str = alias.up_singular

    table_lines: List[str] = _table_definition(ctx, table, "TABLE", "boil.metadata")

    pk_literal: str = format_tuple_literal(pk)
    generated: List[str] = [c.name for c in table.columns if c.auto_generated or c.default is not None]
    generated_literal: str = format_tuple_literal(generated)
    constant_lines: List[str] = [
        f"PRIMARY_KEY: tuple[str, ...] = {pk_literal}",
        f"_DB_GENERATED: tuple[str, ...] = {generated_literal}",
        "_FIELDS: dict[str, str] = {",
        *[f"{_INDENT}{_q(c.name)}: {_q(alias.field_for(c.name))}," for c in table.columns],
        "}",
    ]

    columns_lines: List[str] = [
        f"class {entity}Columns:",
        _doc(f"Column names of ``{table.name}``."),
        "",
        *[f"{_INDENT}{alias.field_for(c.name)} = {_q(c.name)}" for c in table.columns],
    ]

    entity_lines: List[str] = [
        "@dataclass(kw_only=True)",
        f"class {entity}:",
        _doc(f"One row of ``{table.qualified_name}``."),
        "",
    ]
    for column in table.columns:
        column_alias = alias.column(column.name)
        metadata: List[str] = [f'"db": {_q(column.name)}', f'"tag": {_q(column_alias.tag)}']
        metadata.extend(f"{_q(tag)}: {_q(column_alias.tag)}" for tag in ctx.tags)
        default: str = "default=None, " if column.is_optional else ""
        entity_lines.append(
            f"{_INDENT}{column_alias.field}: {column.python_annotation} = "
            f"field({default}metadata={{{', '.join(metadata)}}})"
        )
    entity_lines.extend([
        "",
        f"{_INDENT}def to_dict(self) -> dict[str, Any]:",
        _doc("Field values keyed by tag name.", 2),
        f'{_INDENT * 2}return {{f.metadata["tag"]: getattr(self, f.name) for f in fields(self)}}',
        "",
        f"{_INDENT}def to_row(self) -> dict[str, Any]:",
        _doc("Field values keyed by column name.", 2),
        f'{_INDENT * 2}return {{f.metadata["db"]: getattr(self, f.name) for f in fields(self)}}',
        "",
        f"{_INDENT}@classmethod",
        f"{_INDENT}def from_dict(cls, data: dict[str, Any]) -> {entity}:",
        f"{_INDENT * 2}return cls(",
        f"{_INDENT * 3}**{{",
        f'{_INDENT * 4}f.name: data[f.metadata["tag"]]',
        f"{_INDENT * 4}for f in fields(cls)",
        f'{_INDENT * 4}if f.metadata["tag"] in data',
        f"{_INDENT * 3}}}",
        f"{_INDENT * 2})",
        "",
        f"{_INDENT}@classmethod",
        f"{_INDENT}def from_row(cls, row: Any) -> {entity}:",
        f"{_INDENT * 2}mapping = row._mapping",
        f'{_INDENT * 2}return cls(**{{f.name: mapping[f.metadata["db"]] for f in fields(cls)}})',
    ])

    return _join([table_lines, constant_lines, columns_lines, entity_lines])


def render_hooks(ctx: GenerationContext) -> str:
    """Per-table hook registry backed by ``boil``."""
    alias: TableAlias = ctx.alias
    return _join([
        ["_hooks = boil.new_hook_registry()"],
        [
            f"def add_{alias.down_singular}_hook(point: str, hook: Callable[..., None]) -> None:",
            _doc(f"Run ``hook(conn, obj)`` at ``point`` for every ``{alias.up_singular}``."),
            f"{_INDENT}boil.add_hook(_hooks, point, hook)",
        ],
        [
            f"def _run_hooks(point: str, conn: Any, obj: {alias.up_singular}) -> None:",
            f"{_INDENT}boil.run_hooks(_hooks, point, conn, obj)",
        ],
    ])


def render_timestamps(ctx: GenerationContext) -> str:
    """``_stamp`` helper; empty when the table has nothing to stamp."""
    if not uses_timestamps(ctx):
        return ""
    created, updated = stamped_columns(ctx)
    alias: TableAlias = ctx.alias
    lines: List[str] = [
        f"def _stamp(obj: {alias.up_singular}, *, creating: bool) -> None:",
        _doc("Set automatic timestamps before a write."),
        f"{_INDENT}now = datetime.now(timezone.utc)",
    ]
    if created is not None:
        field_name: str = alias.field_for(created)
        lines.append(f"{_INDENT}if creating and obj.{field_name} is None:")
        lines.append(f"{_INDENT * 2}obj.{field_name} = now")
    if updated is not None:
        lines.append(f"{_INDENT}obj.{alias.field_for(updated)} = now")
    return "\n".join(lines)


def render_query(ctx: GenerationContext) -> str:
    """Finders, listing, counting and (for tables) insert / update / delete."""
    table: TableInfo = ctx.table
    alias: TableAlias = ctx.alias
    entity: str = alias.up_singular
    single: str = alias.down_singular
    plural: str = alias.down_plural
    pk: Tuple[str, ...] = _pk(ctx)
    pk_params: List[str] = [
        f"{alias.field_for(c)}: {table.get_column(c).python_type}" for c in pk
    ]
    stamp: bool = uses_timestamps(ctx)
    blocks: List[List[str]] = []

    if pk:
        blocks.append([
            *_def(ctx, f"find_{single}", pk_params, f"{entity} | None"),
            _doc(f"Fetch one ``{entity}`` by primary key."),
            *_conn(ctx),
            f"{_INDENT}stmt = select(TABLE).where({_pk_where(ctx, '')})",
            f"{_INDENT}row = conn.execute(stmt).first()",
            f"{_INDENT}if row is None:",
            f"{_INDENT * 2}return None",
            f"{_INDENT}obj = {entity}.from_row(row)",
            *_hook(ctx, "after_select"),
            f"{_INDENT}return obj",
        ])
        blocks.append([
            *_def(ctx, f"{single}_exists", pk_params, "bool"),
            *_conn(ctx),
            f"{_INDENT}stmt = select(func.count()).select_from(TABLE).where({_pk_where(ctx, '')})",
            f"{_INDENT}return conn.execute(stmt).scalar_one() > 0",
        ])

    all_lines: List[str] = [
        *_def(
            ctx,
            f"all_{plural}",
            ["*where: Any", "limit: int | None = None", "offset: int | None = None"],
            f"list[{entity}]",
        ),
        _doc(f"Every ``{entity}`` matching ``where``."),
        *_conn(ctx),
        f"{_INDENT}stmt = select(TABLE).where(*where)",
        f"{_INDENT}if limit is not None:",
        f"{_INDENT * 2}stmt = stmt.limit(limit)",
        f"{_INDENT}if offset is not None:",
        f"{_INDENT * 2}stmt = stmt.offset(offset)",
        f"{_INDENT}result = [{entity}.from_row(row) for row in conn.execute(stmt)]",
    ]
    if ctx.features.hooks:
        all_lines.extend([
            f"{_INDENT}for obj in result:",
            f'{_INDENT * 2}_run_hooks("after_select", conn, obj)',
        ])
    all_lines.append(f"{_INDENT}return result")
    blocks.append(all_lines)

    blocks.append([
        *_def(ctx, f"count_{plural}", ["*where: Any"], "int"),
        *_conn(ctx),
        f"{_INDENT}stmt = select(func.count()).select_from(TABLE).where(*where)",
        f"{_INDENT}return conn.execute(stmt).scalar_one()",
    ])

    if is_writable(ctx):
        insert_lines: List[str] = [
            *_def(ctx, f"insert_{single}", [f"obj: {entity}"], entity),
            _doc("Insert ``obj``; database-generated key values are copied back."),
            *_conn(ctx),
            *_hook(ctx, "before_insert"),
        ]
        if stamp:
            insert_lines.append(f"{_INDENT}_stamp(obj, creating=True)")
        insert_lines.extend([
            f"{_INDENT}values = {{",
            f"{_INDENT * 2}k: v for k, v in obj.to_row().items()",
            f"{_INDENT * 2}if v is not None or k not in _DB_GENERATED",
            f"{_INDENT}}}",
            f"{_INDENT}result = conn.execute(insert(TABLE).values(values))",
        ])
        if pk:
            insert_lines.extend([
                f"{_INDENT}for name, value in zip(PRIMARY_KEY, result.inserted_primary_key or ()):",
                f"{_INDENT * 2}if value is not None:",
                f"{_INDENT * 3}setattr(obj, _FIELDS[name], value)",
            ])
        insert_lines.extend([*_hook(ctx, "after_insert"), f"{_INDENT}return obj"])
        blocks.append(insert_lines)

    if generates_update(ctx):
        update_lines: List[str] = [
            *_def(ctx, f"update_{single}", [f"obj: {entity}"], "int"),
            _doc("Write every non-key field of ``obj``; returns the affected row count."),
            *_conn(ctx),
            *_hook(ctx, "before_update"),
        ]
        if stamp:
            update_lines.append(f"{_INDENT}_stamp(obj, creating=False)")
        update_lines.extend([
            f"{_INDENT}values = {{k: v for k, v in obj.to_row().items() if k not in PRIMARY_KEY}}",
            f"{_INDENT}stmt = update(TABLE).where({_pk_where(ctx, 'obj')}).values(values)",
            f"{_INDENT}count = conn.execute(stmt).rowcount",
            *_hook(ctx, "after_update"),
            f"{_INDENT}return count",
        ])
        blocks.append(update_lines)

    if is_writable(ctx) and pk:
        blocks.append([
            *_def(ctx, f"delete_{single}", [f"obj: {entity}"], "int"),
            *_conn(ctx),
            *_hook(ctx, "before_delete"),
            f"{_INDENT}stmt = delete(TABLE).where({_pk_where(ctx, 'obj')})",
            f"{_INDENT}count = conn.execute(stmt).rowcount",
            *_hook(ctx, "after_delete"),
            f"{_INDENT}return count",
        ])

    if is_writable(ctx):
        blocks.append([
            *_def(ctx, f"delete_all_{plural}", ["*where: Any"], "int"),
            _doc("Delete every row matching ``where``; hooks are not run."),
            *_conn(ctx),
            f"{_INDENT}return conn.execute(delete(TABLE).where(*where)).rowcount",
        ])

    return _join(blocks)


def join_table_constant(aliases: AliasSet, join_table: str) -> str:
    """Name of the join table's ``Table`` in ``boil``: ``user_roles`` -> ``USER_ROLES_TABLE``."""
    return f"{aliases.table(join_table).down_plural.upper()}_TABLE"


def _to_one(ctx: GenerationContext, rel: RelationshipInfo, accessor: str) -> List[str]:
    alias: TableAlias = ctx.alias
    ref: str = ctx.ref(rel.foreign_table)
    target: str = f"{ref}{ctx.aliases.table(rel.foreign_table).up_singular}"
    local_fields: List[str] = [alias.field_for(c) for c in rel.local_columns]
    where: str = ", ".join(
        f"{ref}TABLE.c[{_q(fc)}] == obj.{lf}"
        for lf, fc in zip(local_fields, rel.foreign_columns)
    )
    return [
        *_def(ctx, f"{alias.down_singular}_{accessor}", [f"obj: {alias.up_singular}"], f"{target} | None"),
        _doc(f"The related ``{rel.foreign_table}`` row, if any."),
        f"{_INDENT}if {' or '.join(f'obj.{f} is None' for f in local_fields)}:",
        f"{_INDENT * 2}return None",
        *_conn(ctx),
        f"{_INDENT}stmt = select({ref}TABLE).where({where})",
        f"{_INDENT}row = conn.execute(stmt).first()",
        f"{_INDENT}return {target}.from_row(row) if row is not None else None",
    ]


def _to_many(ctx: GenerationContext, rel: RelationshipInfo, accessor: str) -> List[str]:
    alias: TableAlias = ctx.alias
    ref: str = ctx.ref(rel.foreign_table)
    target: str = f"{ref}{ctx.aliases.table(rel.foreign_table).up_singular}"
    where: str = ", ".join(
        f"{ref}TABLE.c[{_q(fc)}] == obj.{alias.field_for(lc)}"
        for lc, fc in zip(rel.local_columns, rel.foreign_columns)
    )
    return [
        *_def(
            ctx,
            f"{alias.down_singular}_{accessor}",
            [f"obj: {alias.up_singular}", "*where: Any"],
            f"list[{target}]",
        ),
        _doc(f"``{rel.foreign_table}`` rows referencing ``obj``."),
        *_conn(ctx),
        f"{_INDENT}stmt = select({ref}TABLE).where({where}, *where)",
        f"{_INDENT}return [{target}.from_row(row) for row in conn.execute(stmt)]",
    ]


def _many_to_many(ctx: GenerationContext, rel: RelationshipInfo, accessor: str) -> List[List[str]]:
    alias: TableAlias = ctx.alias
    ref: str = ctx.ref(rel.foreign_table)
    far: TableAlias = ctx.aliases.table(rel.foreign_table)
    target: str = f"{ref}{far.up_singular}"
    join: str = f"boil.{join_table_constant(ctx.aliases, rel.join_table)}"
    local_field: str = alias.field_for(rel.local_columns[0])
    far_field: str = far.field_for(rel.foreign_columns[0])
    jl: str = _q(rel.join_local_column)
    jf: str = _q(rel.join_foreign_column)
    name: str = f"{alias.down_singular}_{accessor}"

    reader: List[str] = [
        *_def(ctx, name, [f"obj: {alias.up_singular}", "*where: Any"], f"list[{target}]"),
        _doc(f"``{rel.foreign_table}`` rows associated through ``{rel.join_table}``."),
        *_conn(ctx),
        f"{_INDENT}stmt = (",
        f"{_INDENT * 2}select({ref}TABLE)",
        f"{_INDENT * 2}.join({join}, {join}.c[{jf}] == {ref}TABLE.c[{_q(rel.foreign_columns[0])}])",
        f"{_INDENT * 2}.where({join}.c[{jl}] == obj.{local_field}, *where)",
        f"{_INDENT})",
        f"{_INDENT}return [{target}.from_row(row) for row in conn.execute(stmt)]",
    ]
    adder: List[str] = [
        *_def(ctx, f"add_{name}", [f"obj: {alias.up_singular}", f"*related: {target}"], "None"),
        _doc(f"Associate ``obj`` with each of ``related`` in ``{rel.join_table}``."),
        f"{_INDENT}if not related:",
        f"{_INDENT * 2}return",
        *_conn(ctx),
        f"{_INDENT}rows = [{{{jl}: obj.{local_field}, {jf}: other.{far_field}}} for other in related]",
        f"{_INDENT}conn.execute(insert({join}), rows)",
    ]
    remover: List[str] = [
        *_def(ctx, f"remove_{name}", [f"obj: {alias.up_singular}", f"*related: {target}"], "int"),
        *_conn(ctx),
        f"{_INDENT}stmt = delete({join}).where(",
        f"{_INDENT * 2}{join}.c[{jl}] == obj.{local_field},",
        f"{_INDENT * 2}{join}.c[{jf}].in_([other.{far_field} for other in related]),",
        f"{_INDENT})",
        f"{_INDENT}return conn.execute(stmt).rowcount",
    ]
    return [reader, adder, remover]


def render_relationships(ctx: GenerationContext) -> str:
    """Accessors for every to-one, to-many and many-to-many relationship."""
    blocks: List[List[str]] = []
    for rel, accessor in ctx.relationships:
        if rel.is_many_to_many:
            blocks.extend(_many_to_many(ctx, rel, accessor))
        elif rel.kind == RelationshipKind.TO_ONE:
            blocks.append(_to_one(ctx, rel, accessor))
        else:
            blocks.append(_to_many(ctx, rel, accessor))
    return _join(blocks)


# ---------------------------------------------------------------------------
# Table test module sections
# ---------------------------------------------------------------------------


def _module(ctx: GenerationContext) -> str:
    return ctx.alias.down_plural


def render_entity_test(ctx: GenerationContext) -> str:
    table: TableInfo = ctx.table
    alias: TableAlias = ctx.alias
    entity: str = f"{_module(ctx)}.{alias.up_singular}"
    single: str = alias.down_singular
    sample_args: List[str] = [
        f"{_INDENT * 2}{alias.field_for(c.name)}={_sample_literal(c)}," for c in table.columns
    ]
    return _join([
        [
            f"def _sample_{single}() -> {entity}:",
            f"{_INDENT}return {entity}(",
            *sample_args,
            f"{_INDENT})",
        ],
        [
            f"def test_{single}_dict_round_trip() -> None:",
            f"{_INDENT}obj = _sample_{single}()",
            f"{_INDENT}assert {entity}.from_dict(obj.to_dict()) == obj",
        ],
        [
            f"def test_{single}_columns_match_table() -> None:",
            f"{_INDENT}names = [c.name for c in {_module(ctx)}.TABLE.columns]",
            f"{_INDENT}assert names == [{', '.join(_q(c.name) for c in table.columns)}]",
        ],
    ])


def render_query_test(ctx: GenerationContext) -> str:
    alias: TableAlias = ctx.alias
    module: str = _module(ctx)
    single: str = alias.down_singular
    plural: str = alias.down_plural

    def call(func: str, *args: str) -> str:
        return f"{module}.{_call(ctx, func, *args)}"

    if not is_writable(ctx):
        return "\n".join([
            f"def test_{plural}_start_empty(conn) -> None:",
            f"{_INDENT}assert {call(f'count_{plural}')} == 0",
        ])

    blocks: List[List[str]] = [[
        f"def test_{plural}_insert_and_count(conn) -> None:",
        f"{_INDENT}{call(f'insert_{single}', f'_sample_{single}()')}",
        f"{_INDENT}assert {call(f'count_{plural}')} == 1",
    ]]
    pk: Tuple[str, ...] = _pk(ctx)
    if pk:
        values: List[str] = [_sample_literal(ctx.table.get_column(c)) for c in pk]
        blocks.append([
            f"def test_{single}_find_after_insert(conn) -> None:",
            f"{_INDENT}{call(f'insert_{single}', f'_sample_{single}()')}",
            f"{_INDENT}assert {call(f'find_{single}', *values)} is not None",
        ])
    return _join(blocks)


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------


def _init_imports(ctx: GenerationContext) -> List[str]:
    identifiers: List[str] = [".boil:metadata"]
    for table in ctx.schema.generated_tables:
        alias: TableAlias = ctx.aliases.table(table.name)
        identifiers.append(f".{alias.down_plural}:{alias.up_singular}")
    return identifiers


def render_init(ctx: GenerationContext) -> str:
    names: List[str] = sorted(
        [ctx.aliases.table(t.name).up_singular for t in ctx.schema.generated_tables] + ["metadata"]
    )
    return "\n".join(["__all__ = [", *[f"{_INDENT}{_q(n)}," for n in names], "]"])


def render_boil(ctx: GenerationContext) -> str:
    blocks: List[List[str]] = [["metadata = MetaData()"]]

    blocks.append([
        "class Executor(Protocol):",
        _doc("Runs Core statements: a ``Connection`` or an ORM ``Session``."),
        "",
        f"{_INDENT}def execute(self, statement: Any, parameters: Any = None, /) -> Any: ...",
    ])

    for table in join_tables(ctx):
        blocks.append(
            _table_definition(ctx, table, join_table_constant(ctx.aliases, table.name), "metadata")
        )

    if not ctx.features.context:
        blocks.append(["_db: Executor | None = None"])
        blocks.append([
            "def set_db(conn: Executor | None) -> None:",
            _doc("Install the connection every generated function uses."),
            f"{_INDENT}global _db",
            f"{_INDENT}_db = conn",
        ])
        blocks.append([
            "def get_db() -> Executor:",
            f"{_INDENT}if _db is None:",
            f'{_INDENT * 2}raise RuntimeError("No connection installed; call boil.set_db() first.")',
            f"{_INDENT}return _db",
        ])

    if ctx.features.hooks:
        blocks.append([
            "HOOK_POINTS: tuple[str, ...] = (",
            *[f"{_INDENT}{_q(p)}," for p in HOOK_POINTS],
            ")",
            "",
            "HookRegistry = dict[str, list[Callable[..., None]]]",
        ])
        blocks.append([
            "def new_hook_registry() -> HookRegistry:",
            f"{_INDENT}return {{point: [] for point in HOOK_POINTS}}",
        ])
        blocks.append([
            "def add_hook(registry: HookRegistry, point: str, hook: Callable[..., None]) -> None:",
            f"{_INDENT}if point not in registry:",
            f'{_INDENT * 2}raise ValueError(f"Unknown hook point {{point!r}}; expected one of {{HOOK_POINTS}}.")',
            f"{_INDENT}registry[point].append(hook)",
        ])
        blocks.append([
            "def run_hooks(registry: HookRegistry, point: str, conn: Any, obj: Any) -> None:",
            f"{_INDENT}for hook in registry[point]:",
            f"{_INDENT * 2}hook(conn, obj)",
        ])
    return _join(blocks)


def render_conftest(ctx: GenerationContext) -> str:
    body: List[str] = [
        "@pytest.fixture()",
        "def conn():",
        _doc("A connection to a freshly created schema, rolled back afterwards."),
        f"{_INDENT}engine = create_engine(os.environ.get({_q(TEST_DATABASE_ENV)}, \"sqlite://\"))",
        f"{_INDENT}boil.metadata.create_all(engine)",
        f"{_INDENT}try:",
        f"{_INDENT * 2}with engine.connect() as connection:",
    ]
    if not ctx.features.context:
        body.append(f"{_INDENT * 3}boil.set_db(connection)")
    body.extend([
        f"{_INDENT * 3}yield connection",
        f"{_INDENT * 3}connection.rollback()",
    ])
    if not ctx.features.context:
        body.append(f"{_INDENT * 3}boil.set_db(None)")
    body.extend([
        f"{_INDENT}finally:",
        f"{_INDENT * 2}boil.metadata.drop_all(engine)",
        f"{_INDENT * 2}engine.dispose()",
    ])
    return "\n".join(body)


# ---------------------------------------------------------------------------
# File assembly
# ---------------------------------------------------------------------------


def module_docstring(ctx: GenerationContext, test: bool) -> str:
    if test:
        return f"Tests for the generated ``{ctx.alias.down_plural}`` module."
    kind: str = "view" if ctx.table.is_view else "table"
    return f"Data access for the ``{ctx.table.qualified_name}`` {kind}."


def assemble_module(docstring: str, imports: ImportSet, sections: Sequence[str]) -> str:
    """
    Header, docstring, ``from __future__`` import, import block, sections.

    Empty sections are skipped; the file always ends with one newline.
    """
    parts: List[str] = [
        f'{GENERATED_HEADER}\n"""{docstring}"""\n\nfrom __future__ import annotations'
    ]
    block: str = render_import_block(imports)
    if block:
        parts.append(block)
    body: List[str] = [s.strip("\n") for s in sections if s and s.strip()]
    content: str = "\n\n".join(parts)
    if body:
        content += _SECTION_GAP + _SECTION_GAP.join(body)
    return content + "\n"


# ---------------------------------------------------------------------------
# Built-in templates
# ---------------------------------------------------------------------------


def _table_imports() -> Tuple[ImportRequirement, ...]:
    return (
        std("dataclasses:dataclass"),
        std("dataclasses:field"),
        std("dataclasses:fields"),
        std("typing:Any"),
        third("sqlalchemy:Column"),
        third("sqlalchemy:Table"),
        third("sqlalchemy:ForeignKey", when=has_single_column_fk),
        third("sqlalchemy:ForeignKeyConstraint", when=has_composite_fk),
        local(".:boil"),
    )


def _query_imports() -> Tuple[ImportRequirement, ...]:
    return (
        std("typing:Any"),
        third("sqlalchemy:select"),
        third("sqlalchemy:func"),
        third("sqlalchemy:insert", when=is_writable),
        third("sqlalchemy:update", when=generates_update),
        third("sqlalchemy:delete", when=is_writable),
        local(".:boil"),
    )


def _relationship_imports() -> Tuple[ImportRequirement, ...]:
    def any_relationship(ctx: GenerationContext) -> bool:
        return bool(ctx.relationships)

    def any_m2m(ctx: GenerationContext) -> bool:
        return bool(many_to_many(ctx))

    return (
        std("typing:Any", when=any_relationship),
        third("sqlalchemy:select", when=any_relationship),
        third("sqlalchemy:insert", when=any_m2m),
        third("sqlalchemy:delete", when=any_m2m),
        local(".:boil", when=any_relationship),
    )


def _test_module_imports(ctx: GenerationContext) -> List[str]:
    return [f".:{ctx.alias.down_plural}"]


def default_templates() -> List[ArtifactTemplate]:
    """The built-in artifact set."""
    return [
        ArtifactTemplate(
            name="entity",
            scope=TABLE_SCOPE,
            render=render_entity,
            order=10,
            imports=_table_imports(),
        ),
        ArtifactTemplate(
            name="hooks",
            scope=TABLE_SCOPE,
            render=render_hooks,
            order=20,
            features=("hooks",),
            imports=(std("collections.abc:Callable"), std("typing:Any"), local(".:boil")),
        ),
        ArtifactTemplate(
            name="timestamps",
            scope=TABLE_SCOPE,
            render=render_timestamps,
            order=30,
            features=("auto_timestamps",),
            imports=(
                std("datetime:datetime", when=uses_timestamps),
                std("datetime:timezone", when=uses_timestamps),
            ),
        ),
        ArtifactTemplate(
            name="query",
            scope=TABLE_SCOPE,
            render=render_query,
            order=40,
            imports=_query_imports(),
        ),
        ArtifactTemplate(
            name="relationships",
            scope=TABLE_SCOPE,
            render=render_relationships,
            order=50,
            imports=_relationship_imports(),
            local_imports=related_modules,
        ),
        ArtifactTemplate(
            name="entity_test",
            scope=TABLE_SCOPE,
            render=render_entity_test,
            test=True,
            order=10,
            features=("tests",),
            local_imports=_test_module_imports,
        ),
        ArtifactTemplate(
            name="query_test",
            scope=TABLE_SCOPE,
            render=render_query_test,
            test=True,
            order=20,
            features=("tests",),
            local_imports=_test_module_imports,
        ),
        ArtifactTemplate(
            name="init",
            scope=SINGLETON_SCOPE,
            render=render_init,
            order=10,
            filename="__init__.py",
            summary="Generated data access package ``{package}``.",
            local_imports=_init_imports,
        ),
        ArtifactTemplate(
            name="boil",
            scope=SINGLETON_SCOPE,
            render=render_boil,
            order=20,
            filename="boil.py",
            summary="Shared runtime support for the generated modules.",
            imports=(
                third("sqlalchemy:MetaData"),
                third("sqlalchemy:Table", when=has_join_tables),
                third("sqlalchemy:Column", when=has_join_tables),
                third("sqlalchemy:ForeignKey", when=has_join_tables),
                std("collections.abc:Callable", features=("hooks",)),
                std("typing:Any"),
                std("typing:Protocol"),
            ),
            column_types=join_column_types,
        ),
        ArtifactTemplate(
            name="conftest",
            scope=SINGLETON_SCOPE,
            render=render_conftest,
            test=True,
            order=30,
            features=("tests",),
            filename="conftest.py",
            summary="Pytest fixtures for the generated tests.",
            imports=(
                std("os"),
                third("pytest"),
                third("sqlalchemy:create_engine"),
                local(".:boil"),
            ),
        ),
    ]


def default_registry() -> TemplateRegistry:
    return TemplateRegistry(default_templates())


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "GENERATED_HEADER",
    "TEST_DATABASE_ENV",
    "TABLE_SCOPE",
    "SINGLETON_SCOPE",
    "HOOK_POINTS",
    "GenerationContext",
    "RenderFn",
    "ArtifactTemplate",
    "TemplateRegistry",
    "is_writable",
    "generates_update",
    "many_to_many",
    "stamped_columns",
    "uses_timestamps",
    "related_modules",
    "join_tables",
    "has_join_tables",
    "join_column_types",
    "join_table_constant",
    "render_entity",
    "render_hooks",
    "render_timestamps",
    "render_query",
    "render_relationships",
    "render_entity_test",
    "render_query_test",
    "render_init",
    "render_boil",
    "render_conftest",
    "module_docstring",
    "assemble_module",
    "default_templates",
    "default_registry",
]

logger.debug("dalgen.templates loaded (%d public symbols).", len(__all__))
