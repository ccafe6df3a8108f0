# File: dalgen/drivers.py
"""
dalgen - Driver Plugin Client
===============================
Schema introspection is delegated to an external *driver* program, one per
database engine, so the generator never links against engine client
libraries.  The exchange is a single versioned JSON document in each
direction:

    request  (stdin)  {"protocol_version": 1, "driver": "psql",
                       "config": {...}, "whitelist": [...], "blacklist": [...]}
    response (stdout) {"protocol_version": 1, "schema": {"dialect": ...,
                       "tables": [...]}}
                   or {"protocol_version": N, "error": {"kind": ..., "message": ...}}

Engine options are validated into a typed model *before* the driver is
started.  Drivers are resolved either from an explicit path or as
``dalgen-<name>`` on ``PATH``.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from dalgen.errors import (
    ConfigurationError,
    DriverExecutionError,
    DriverNotFound,
    DriverProtocolError,
)
from dalgen.models import SchemaDefinition, TableInfo

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.drivers")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PROTOCOL_VERSION: int = 1
DRIVER_PREFIX: str = "dalgen-"
_SCALAR_TYPES: Tuple[type, ...] = (str, int, float, bool, type(None))

# ---------------------------------------------------------------------------
# Typed engine options
# ---------------------------------------------------------------------------

_OPTIONS_CONFIG: ConfigDict = ConfigDict(
    strict=False,
    populate_by_name=True,
    frozen=True,
    extra="forbid",
)


class DriverOptions(BaseModel):
    """Options every driver understands: the table filters."""

    model_config = _OPTIONS_CONFIG

    whitelist: List[str] = Field(default_factory=list, description="Only these tables.")
    blacklist: List[str] = Field(default_factory=list, description="Never these tables.")

    def connection_config(self) -> Dict[str, Any]:
        """Engine settings sent as the request's ``config`` object."""
        return self.model_dump(
            by_alias=True,
            exclude={"whitelist", "blacklist"},
            exclude_none=True,
        )


class _ServerOptions(DriverOptions):
    user: str = Field(..., min_length=1)
    password: str = Field(default="")
    host: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    dbname: str = Field(..., min_length=1)
    sslmode: str = Field(..., min_length=1)
    schema_name: Optional[str] = Field(default=None, alias="schema")


class PsqlOptions(_ServerOptions):
    """PostgreSQL (``dalgen-psql``)."""

    port: int = Field(default=5432, ge=1, le=65535)
    sslmode: str = Field(default="require")
    schema_name: str = Field(default="public", alias="schema", min_length=1)


class MysqlOptions(_ServerOptions):
    """MySQL / MariaDB (``dalgen-mysql``); the schema is the database."""

    port: int = Field(default=3306, ge=1, le=65535)
    sslmode: str = Field(default="true")

    @model_validator(mode="before")
    @classmethod
    def _schema_defaults_to_dbname(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "dbname" not in data:
            return data
        if data.get("schema", data.get("schema_name")) is None:
            data = {k: v for k, v in data.items() if k != "schema_name"}
            data["schema"] = data["dbname"]
        return data


class MssqlOptions(_ServerOptions):
    """Microsoft SQL Server (``dalgen-mssql``)."""

    port: int = Field(default=1433, ge=1, le=65535)
    sslmode: str = Field(default="true")
    schema_name: str = Field(default="dbo", alias="schema", min_length=1)


class CrdbOptions(_ServerOptions):
    """CockroachDB (``dalgen-crdb``)."""

    port: int = Field(default=26257, ge=1, le=65535)
    sslmode: str = Field(default="require")
    schema_name: str = Field(default="public", alias="schema", min_length=1)


class SqliteOptions(DriverOptions):
    """SQLite (``dalgen-sqlite3``); ``dbname`` is the database file path."""

    dbname: str = Field(..., min_length=1)


class GenericDriverOptions(DriverOptions):
    """
    Options for engines without a typed model.

    Any key is accepted, but values must be JSON scalars or lists of
    scalars so that nothing unserialisable reaches the driver.
    """

    model_config = ConfigDict(
        strict=False,
        populate_by_name=True,
        frozen=True,
        extra="allow",
    )

    @model_validator(mode="after")
    def _extras_are_scalars(self) -> "GenericDriverOptions":
        for key, value in (self.model_extra or {}).items():
            values: Sequence[Any] = value if isinstance(value, list) else [value]
            if not all(isinstance(v, _SCALAR_TYPES) for v in values):
                raise ValueError(
                    f"option {key!r} must be a scalar or a list of scalars"
                )
        return self


DRIVER_OPTIONS: Dict[str, Type[DriverOptions]] = {
    "crdb": CrdbOptions,
    "mssql": MssqlOptions,
    "mysql": MysqlOptions,
    "psql": PsqlOptions,
    "sqlite3": SqliteOptions,
}


def build_driver_options(driver_name: str, raw: Mapping[str, Any]) -> DriverOptions:
    """
    Validate *raw* settings into the typed options for *driver_name*.

    Raises:
        ConfigurationError: when a required option is missing, an option is
            unknown for the engine, or a value has the wrong type.
    """
    model: Type[DriverOptions] = DRIVER_OPTIONS.get(driver_name, GenericDriverOptions)
    try:
        options: DriverOptions = model.model_validate(dict(raw))
    except ValidationError as exc:
        problems: List[str] = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ConfigurationError(
            f"Invalid options for driver '{driver_name}': {'; '.join(problems)}",
            driver=driver_name,
        ) from exc
    logger.debug("Validated %s for driver '%s'.", type(options).__name__, driver_name)
    return options


# ---------------------------------------------------------------------------
# Driver resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolvedDriver:
    """A runnable driver: its short name and the argv that starts it."""

    name: str
    command: Tuple[str, ...]


def _is_explicit_path(name_or_path: str) -> bool:
    if os.sep in name_or_path:
        return True
    return bool(os.altsep and os.altsep in name_or_path)


def resolve_driver(name_or_path: str) -> ResolvedDriver:
    """
    Resolve a driver executable.

    An argument containing a path separator is an explicit path and must
    name an existing executable file; the driver name is its file name with
    the ``dalgen-`` prefix removed.  Anything else is looked up as
    ``dalgen-<name>`` on ``PATH``.
    """
    if not name_or_path:
        raise DriverNotFound("", [])

    if _is_explicit_path(name_or_path):
        path: Path = Path(name_or_path).expanduser()
        if not path.is_file() or not os.access(path, os.X_OK):
            raise DriverNotFound(name_or_path, [str(path)])
        name: str = path.name
        if name.endswith(".exe"):
            name = name[: -len(".exe")]
        if name.startswith(DRIVER_PREFIX):
            name = name[len(DRIVER_PREFIX):]
        logger.info("Using driver '%s' at explicit path %s", name, path)
        return ResolvedDriver(name=name, command=(str(path.resolve()),))

    executable: str = f"{DRIVER_PREFIX}{name_or_path}"
    found: Optional[str] = shutil.which(executable)
    if found is None:
        raise DriverNotFound(name_or_path, [f"{executable} on PATH"])
    logger.info("Resolved driver '%s' -> %s", name_or_path, found)
    return ResolvedDriver(name=name_or_path, command=(found,))


# ---------------------------------------------------------------------------
# Wire documents
# ---------------------------------------------------------------------------


class DriverRequest(BaseModel):
    """The single document written to the driver's stdin."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    protocol_version: int = PROTOCOL_VERSION
    driver: str
    config: Dict[str, Any] = Field(default_factory=dict)
    whitelist: List[str] = Field(default_factory=list)
    blacklist: List[str] = Field(default_factory=list)

    @classmethod
    def for_options(cls, driver: str, options: DriverOptions) -> "DriverRequest":
        return cls(
            driver=driver,
            config=options.connection_config(),
            whitelist=list(options.whitelist),
            blacklist=list(options.blacklist),
        )


def _format_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location: str = ".".join(str(p) for p in first["loc"]) or "<root>"
    extra: int = exc.error_count() - 1
    suffix: str = f" (and {extra} more)" if extra > 0 else ""
    return f"schema.{location}: {first['msg']}{suffix}"


def decode_document(driver: str, document: Any) -> SchemaDefinition:
    """
    Decode an already-parsed driver response into a ``SchemaDefinition``.

    Raises:
        DriverProtocolError: wrong shape, missing fields, missing or
            mismatched protocol version, or an explicit version refusal.
        DriverExecutionError: the driver reported any other error.
    """
    if not isinstance(document, dict):
        raise DriverProtocolError(
            driver, f"Driver response must be a JSON object, got {type(document).__name__}."
        )

    if "error" in document:
        error: Any = document["error"]
        if not isinstance(error, dict):
            raise DriverProtocolError(driver, "Driver error document must be an object.")
        kind: str = str(error.get("kind") or "unknown")
        message: str = str(error.get("message") or "no message")
        if kind == "protocol_version":
            raise DriverProtocolError(
                driver,
                f"Driver refused protocol version {PROTOCOL_VERSION}: {message}",
            )
        raise DriverExecutionError(driver, f"Driver reported {kind}: {message}", error_kind=kind)

    version: Any = document.get("protocol_version")
    if version is None:
        raise DriverProtocolError(driver, "Driver response has no protocol_version.")
    if version != PROTOCOL_VERSION:
        raise DriverProtocolError(
            driver,
            f"Driver speaks protocol version {version!r}, expected {PROTOCOL_VERSION}.",
        )

    schema_doc: Any = document.get("schema")
    if not isinstance(schema_doc, dict):
        raise DriverProtocolError(driver, "Driver response has no 'schema' object.")
    if "tables" not in schema_doc:
        raise DriverProtocolError(driver, "Driver schema has no 'tables' list.")

    try:
        schema: SchemaDefinition = SchemaDefinition.model_validate(
            {**schema_doc, "driver_name": driver}
        )
    except ValidationError as exc:
        raise DriverProtocolError(driver, _format_validation_error(exc)) from exc

    logger.info(
        "Decoded schema from driver '%s': %d table(s), dialect=%s",
        driver,
        len(schema.tables),
        schema.dialect or "unknown",
    )
    return schema


def decode_response(driver: str, raw: str) -> SchemaDefinition:
    """Decode the raw text a driver wrote to stdout."""
    text: str = raw.strip()
    if not text:
        raise DriverProtocolError(driver, "Driver produced no output.")
    try:
        document: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DriverProtocolError(driver, f"Driver output is not valid JSON: {exc}") from exc
    return decode_document(driver, document)


def load_schema_document(path: Union[str, Path], driver: str = "file") -> SchemaDefinition:
    """
    Decode a captured driver response from disk (JSON, or YAML by extension).

    Useful to regenerate without database access.
    """
    file_path: Path = Path(path)
    try:
        text: str = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(
            f"Cannot read schema file '{file_path}': {exc}", path=str(file_path)
        ) from exc

    if file_path.suffix.lower() in (".yaml", ".yml"):
        try:
            document: Any = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise DriverProtocolError(driver, f"Schema file is not valid YAML: {exc}") from exc
        return decode_document(driver, document)
    return decode_response(driver, text)


def filter_tables(
    schema: SchemaDefinition,
    whitelist: Sequence[str] = (),
    blacklist: Sequence[str] = (),
) -> SchemaDefinition:
    """
    Apply the table filters on our side as well.

    Blacklisted tables are dropped; tables outside a non-empty whitelist are
    kept but logged, since the driver is the authority on filtering.
    """
    if not whitelist and not blacklist:
        return schema

    kept: List[TableInfo] = []
    for table in schema.tables:
        if table.name in blacklist:
            logger.warning("Driver returned blacklisted table '%s'; dropping it.", table.name)
            continue
        if whitelist and table.name not in whitelist:
            logger.warning("Driver returned table '%s' which is not whitelisted.", table.name)
        kept.append(table)

    if len(kept) == len(schema.tables):
        return schema
    return SchemaDefinition(
        tables=tuple(kept), driver_name=schema.driver_name, dialect=schema.dialect
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class DriverClient:
    """
    Runs one driver for one introspection.

    The call is blocking; an optional *timeout* (seconds) kills a driver
    that takes too long.
    """

    def __init__(self, driver: ResolvedDriver, timeout: Optional[float] = None) -> None:
        self.driver: ResolvedDriver = driver
        self.timeout: Optional[float] = timeout

    def introspect(self, options: DriverOptions) -> SchemaDefinition:
        """Send the request, wait for the response, return the decoded schema."""
        request: DriverRequest = DriverRequest.for_options(self.driver.name, options)
        argv: List[str] = list(self.driver.command)
        logger.debug("Executing driver: %s", " ".join(argv))

        try:
            completed = subprocess.run(
                argv,
                input=request.model_dump_json(),
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            stderr: Any = exc.stderr or ""
            if isinstance(stderr, bytes):
                stderr = stderr.decode("utf-8", errors="replace")
            raise DriverExecutionError(
                self.driver.name,
                f"Driver did not finish within {self.timeout} second(s).",
                stderr=stderr,
            ) from exc
        except OSError as exc:
            raise DriverExecutionError(
                self.driver.name, f"Could not start driver: {exc}"
            ) from exc

        if completed.returncode != 0:
            stderr_text: str = completed.stderr.strip()
            raise DriverExecutionError(
                self.driver.name,
                f"Driver failed (exit {completed.returncode}): "
                f"{stderr_text or 'no error output'}",
                returncode=completed.returncode,
                stderr=completed.stderr,
            )

        if completed.stderr.strip():
            logger.debug("Driver stderr: %s", completed.stderr.strip())

        schema: SchemaDefinition = decode_response(self.driver.name, completed.stdout)
        return filter_tables(schema, options.whitelist, options.blacklist)


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "PROTOCOL_VERSION",
    "DRIVER_PREFIX",
    "DriverOptions",
    "PsqlOptions",
    "MysqlOptions",
    "MssqlOptions",
    "CrdbOptions",
    "SqliteOptions",
    "GenericDriverOptions",
    "DRIVER_OPTIONS",
    "build_driver_options",
    "ResolvedDriver",
    "resolve_driver",
    "DriverRequest",
    "decode_document",
    "decode_response",
    "load_schema_document",
    "filter_tables",
    "DriverClient",
]

logger.debug("dalgen.drivers loaded (%d public symbols).", len(__all__))
