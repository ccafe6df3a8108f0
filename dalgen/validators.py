# File: dalgen/validators.py
"""
dalgen - Schema Consistency Validators
========================================
Introspected schemas are checked here before any alias is derived.

Pydantic already enforces the shape of a driver response; these are the
**cross-entity checks** it cannot express: every key column exists, every
foreign key resolves to an existing table and columns, no duplicate tables
or columns.  Each check yields ``SchemaIssue`` records; any fatal issue makes
the schema unusable and ``ensure_consistent`` turns them into a
``SchemaConsistencyError`` naming the tables at fault.

Each check makes one pass over the schema.

    from dalgen.validators import ensure_consistent
    ensure_consistent(schema)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Set

from dalgen.errors import SchemaConsistencyError
from dalgen.models import SchemaDefinition, TableInfo

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.validators")

# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SchemaIssue:
    """One problem found in an introspected schema."""

    code: str
    message: str
    table: Optional[str] = None
    column: Optional[str] = None
    fatal: bool = True


def _error(
    code: str, message: str, table: Optional[str] = None, column: Optional[str] = None
) -> SchemaIssue:
    return SchemaIssue(code, message, table, column)


def _warning(
    code: str, message: str, table: Optional[str] = None, column: Optional[str] = None
) -> SchemaIssue:
    return SchemaIssue(code, message, table, column, fatal=False)


@dataclass(frozen=True)
class ConsistencyReport:
    """Every issue found in one schema, in validator order."""

    issues: List[SchemaIssue]

    @property
    def errors(self) -> List[SchemaIssue]:
        return [i for i in self.issues if i.fatal]

    @property
    def warnings(self) -> List[SchemaIssue]:
        return [i for i in self.issues if not i.fatal]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def errors_by_table(self) -> Dict[str, List[str]]:
        """Error messages keyed by table; schema-wide errors are keyed ``""``."""
        grouped: Dict[str, List[str]] = {}
        for issue in self.errors:
            grouped.setdefault(issue.table or "", []).append(issue.message)
        return {table: grouped[table] for table in sorted(grouped)}

    def summary(self) -> str:
        return f"{len(self.errors)} error(s), {len(self.warnings)} warning(s)"


# ---------------------------------------------------------------------------
# Individual validation functions
# ---------------------------------------------------------------------------


def validate_table_names(schema: SchemaDefinition) -> Iterator[SchemaIssue]:
    """No table may be reported twice."""
    seen: Set[str] = set()

    for table in schema.tables:
        if table.name in seen:
            yield _error(
                "DUPLICATE_TABLE",
                f"Table '{table.name}' is defined more than once.",
                table.name,
            )
        seen.add(table.name)

    if not schema.tables:
        yield _warning(
            "EMPTY_SCHEMA",
            "The driver reported no tables; only support modules will be generated.",
        )


def validate_column_names(schema: SchemaDefinition) -> Iterator[SchemaIssue]:
    for table in schema.tables:
        seen: Set[str] = set()
        for col in table.columns:
            if col.name in seen:
                yield _error(
                    "DUPLICATE_COLUMN",
                    f"Column '{col.name}' is duplicated in table '{table.name}'.",
                    table.name,
                    col.name,
                )
            seen.add(col.name)


def validate_primary_keys(schema: SchemaDefinition) -> Iterator[SchemaIssue]:
    """
    Primary-key columns must exist.

    A missing primary key is only a warning: such tables get no
    single-row finders, updates or deletes.
    """
    for table in schema.tables:
        if table.primary_key is None:
            if not table.is_view:
                yield _warning(
                    "MISSING_PRIMARY_KEY",
                    f"Table '{table.name}' has no primary key; "
                    f"no single-row accessors will be generated.",
                    table.name,
                )
            continue

        for pk in table.primary_key.columns:
            column = table.get_column(pk)
            if column is None:
                yield _error(
                    "PK_COLUMN_NOT_FOUND",
                    f"Primary key column '{pk}' of table '{table.name}' "
                    f"does not exist.",
                    table.name,
                    pk,
                )
            elif column.nullable:
                yield _warning(
                    "NULLABLE_PRIMARY_KEY",
                    f"Primary key column '{table.name}.{pk}' is nullable.",
                    table.name,
                    pk,
                )


def validate_foreign_keys(schema: SchemaDefinition) -> Iterator[SchemaIssue]:
    """
    Every foreign key must point somewhere real:
    - Local columns exist
    - Referenced table exists
    - Referenced columns exist in the referenced table
    - Local and referenced columns share a semantic type (warning only)
    """
    for table in schema.tables:
        for fk in table.foreign_keys:
            missing_local: List[str] = [c for c in fk.columns if not table.has_column(c)]
            if missing_local:
                yield _error(
                    "FK_COLUMN_NOT_FOUND",
                    f"Foreign key '{fk.name}' on '{table.name}' uses missing "
                    f"column(s): {missing_local}.",
                    table.name,
                    missing_local[0],
                )
                continue

            target: Optional[TableInfo] = schema.get_table(fk.foreign_table)
            if target is None:
                yield _error(
                    "FK_TARGET_TABLE_MISSING",
                    f"Foreign key '{fk.name}' on '{table.name}' references "
                    f"table '{fk.foreign_table}' which does not exist.",
                    table.name,
                )
                continue

            missing_remote: List[str] = [
                c for c in fk.foreign_columns if not target.has_column(c)
            ]
            if missing_remote:
                yield _error(
                    "FK_TARGET_COLUMN_MISSING",
                    f"Foreign key '{fk.name}' on '{table.name}' references "
                    f"missing column(s) {missing_remote} of '{target.name}'.",
                    table.name,
                )
                continue

            for local_name, remote_name in zip(fk.columns, fk.foreign_columns):
                local = table.get_column(local_name)
                remote = target.get_column(remote_name)
                if local is not None and remote is not None and local.type != remote.type:
                    yield _warning(
                        "FK_TYPE_MISMATCH",
                        f"'{table.name}.{local_name}' ({local.type}) references "
                        f"'{target.name}.{remote_name}' ({remote.type}).",
                        table.name,
                        local_name,
                    )


# ---------------------------------------------------------------------------
# Composite validation orchestrators
# ---------------------------------------------------------------------------

SCHEMA_VALIDATORS: List[Callable[[SchemaDefinition], Iterator[SchemaIssue]]] = [
    validate_table_names,
    validate_column_names,
    validate_primary_keys,
    validate_foreign_keys,
]


def validate_schema(schema: SchemaDefinition) -> ConsistencyReport:
    """Run all schema-level validators."""
    issues: List[SchemaIssue] = []
    for validator_fn in SCHEMA_VALIDATORS:
        logger.debug("Running validator: %s", validator_fn.__name__)
        issues.extend(validator_fn(schema))

    report: ConsistencyReport = ConsistencyReport(issues)
    logger.info("Schema validation complete: %s.", report.summary())
    return report


def ensure_consistent(schema: SchemaDefinition) -> ConsistencyReport:
    """
    **Gate between introspection and alias resolution.**

    Logs every warning and raises ``SchemaConsistencyError`` carrying all
    error messages when the schema is inconsistent.  The error's context
    names the first issue's code, table and column plus every table with
    errors.
    """
    report: ConsistencyReport = validate_schema(schema)

    for warning in report.warnings:
        logger.warning("%s", warning.message)

    if not report.is_valid:
        first: SchemaIssue = report.errors[0]
        by_table: Dict[str, List[str]] = report.errors_by_table()
        logger.error("Schema is inconsistent: %s in %s.", report.summary(), sorted(by_table))
        context: Dict[str, object] = {"code": first.code, "tables": tuple(t for t in by_table if t)}
        if first.table is not None:
            context["table"] = first.table
        if first.column is not None:
            context["column"] = first.column
        raise SchemaConsistencyError([e.message for e in report.errors], **context)
    return report


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "SchemaIssue",
    "ConsistencyReport",
    "validate_table_names",
    "validate_column_names",
    "validate_primary_keys",
    "validate_foreign_keys",
    "validate_schema",
    "ensure_consistent",
]

logger.debug("dalgen.validators loaded (%d public symbols).", len(__all__))
