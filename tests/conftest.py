"""
tests/conftest.py
Shared fixtures for the dalgen test suite.

Schemas are written in the driver response format and decoded through
``dalgen.drivers`` exactly as a real run would.  Driver programs are small
Python scripts written into ``tmp_path`` and started with the current
interpreter, so no database or external binary is needed.
"""

from __future__ import annotations

import copy
import json
import pathlib
import sys
import textwrap
from typing import Any, Callable, Dict, List, Optional

import pytest
import yaml

from dalgen.aliases import AliasSet, resolve_aliases
from dalgen.drivers import ResolvedDriver, decode_document
from dalgen.models import GenerationConfig, SchemaDefinition


# ---------------------------------------------------------------------------
# Document builders
# ---------------------------------------------------------------------------

_DB_TYPES: Dict[str, str] = {
    "int": "integer",
    "float": "double precision",
    "decimal": "numeric",
    "bool": "boolean",
    "str": "text",
    "bytes": "bytea",
    "date": "date",
    "time": "time",
    "datetime": "timestamp",
    "interval": "interval",
    "uuid": "uuid",
    "json": "jsonb",
    "array": "integer[]",
    "enum": "user_status",
    "opaque": "tsvector",
}


def column(name: str, type_: str, **extra: Any) -> Dict[str, Any]:
    """One column entry as a driver reports it."""
    data: Dict[str, Any] = {"name": name, "db_type": _DB_TYPES.get(type_, type_), "type": type_}
    data.update(extra)
    return data


def response(tables: List[Dict[str, Any]], dialect: str = "postgresql") -> Dict[str, Any]:
    """Wrap table entries in a protocol-version-1 driver response."""
    return {"protocol_version": 1, "schema": {"dialect": dialect, "tables": tables}}


# ---------------------------------------------------------------------------
# Raw schema data fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def raw_blog_document() -> Dict[str, Any]:
    """
    users / posts / roles, the ``user_roles`` join table and a view.

    Shaped so that every relationship kind appears: posts → users is
    many-to-one, users → posts one-to-many, users ↔ roles many-to-many.
    """
    return response([
        {
            "name": "users",
            "columns": [
                column("id", "int", auto_generated=True),
                column("email", "str", unique=True),
                column("name", "str", nullable=True),
                column("created_at", "datetime", default="now()"),
                column("updated_at", "datetime", nullable=True),
            ],
            "primary_key": {"name": "users_pkey", "columns": ["id"]},
        },
        {
            "name": "posts",
            "columns": [
                column("id", "int", auto_generated=True),
                column("user_id", "int"),
                column("title", "str"),
                column("body", "str", nullable=True),
            ],
            "primary_key": {"name": "posts_pkey", "columns": ["id"]},
            "foreign_keys": [
                {
                    "name": "posts_user_id_fkey",
                    "columns": ["user_id"],
                    "foreign_table": "users",
                    "foreign_columns": ["id"],
                    "on_delete": "cascade",
                },
            ],
        },
        {
            "name": "roles",
            "columns": [
                column("id", "int", auto_generated=True),
                column("name", "str", unique=True),
            ],
            "primary_key": {"name": "roles_pkey", "columns": ["id"]},
        },
        {
            "name": "user_roles",
            "columns": [column("user_id", "int"), column("role_id", "int")],
            "primary_key": {"name": "user_roles_pkey", "columns": ["user_id", "role_id"]},
            "foreign_keys": [
                {
                    "name": "user_roles_user_id_fkey",
                    "columns": ["user_id"],
                    "foreign_table": "users",
                    "foreign_columns": ["id"],
                },
                {
                    "name": "user_roles_role_id_fkey",
                    "columns": ["role_id"],
                    "foreign_table": "roles",
                    "foreign_columns": ["id"],
                },
            ],
        },
        {
            "name": "active_users",
            "is_view": True,
            "columns": [column("id", "int"), column("email", "str")],
        },
    ])


@pytest.fixture()
def blog_document(raw_blog_document: Dict[str, Any]) -> Dict[str, Any]:
    """Return a deep copy so each test can mutate freely."""
    return copy.deepcopy(raw_blog_document)


@pytest.fixture()
def blog_schema(blog_document: Dict[str, Any]) -> SchemaDefinition:
    return decode_document("psql", blog_document)


@pytest.fixture()
def blog_aliases(blog_schema: SchemaDefinition) -> AliasSet:
    return resolve_aliases(blog_schema)


@pytest.fixture()
def all_types_document() -> Dict[str, Any]:
    """A single table holding one column of every semantic type."""
    return response([
        {
            "name": "samples",
            "schema_name": "public",
            "columns": [
                column("id", "int", auto_generated=True),
                column("ratio", "float"),
                column("price", "decimal"),
                column("active", "bool"),
                column("label", "str", comment="Display label"),
                column("payload", "bytes", nullable=True),
                column("born_on", "date"),
                column("opens_at", "time"),
                column("seen_at", "datetime"),
                column("ttl", "interval"),
                column("token", "uuid"),
                column("extra", "json"),
                column("scores", "array"),
                column("status", "enum", enum_values=["active", "banned"]),
                column("search", "opaque"),
            ],
            "primary_key": {"name": "samples_pkey", "columns": ["id"]},
        },
    ])


@pytest.fixture()
def all_types_schema(all_types_document: Dict[str, Any]) -> SchemaDefinition:
    return decode_document("psql", all_types_document)


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def output_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "models"


@pytest.fixture()
def config(output_dir: pathlib.Path) -> GenerationConfig:
    """Default configuration writing into ``tmp_path/models``."""
    return GenerationConfig(driver_name="psql", output_dir=str(output_dir))


@pytest.fixture()
def make_config(output_dir: pathlib.Path) -> Callable[..., GenerationConfig]:
    """Factory for configurations with overrides."""

    def _make(**overrides: Any) -> GenerationConfig:
        data: Dict[str, Any] = {"driver_name": "psql", "output_dir": str(output_dir)}
        data.update(overrides)
        return GenerationConfig.model_validate(data)

    return _make


@pytest.fixture()
def schema_json_path(blog_document: Dict[str, Any], tmp_path: pathlib.Path) -> pathlib.Path:
    """The blog response captured as a JSON schema file."""
    path = tmp_path / "schema.json"
    path.write_text(json.dumps(blog_document, indent=2), encoding="utf-8")
    return path


@pytest.fixture()
def schema_yaml_path(blog_document: Dict[str, Any], tmp_path: pathlib.Path) -> pathlib.Path:
    """The blog response captured as a YAML schema file."""
    path = tmp_path / "schema.yaml"
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(blog_document, fh, default_flow_style=False, allow_unicode=True)
    return path


# ---------------------------------------------------------------------------
# Fake driver programs
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_driver(tmp_path: pathlib.Path) -> Callable[..., ResolvedDriver]:
    """
    Factory writing a driver script and returning it as a ``ResolvedDriver``.

    *body* runs after the request was read into ``request`` and saved to
    ``request.json`` next to the script.  Without a body the script answers
    with *document*.
    """
    counter: List[int] = [0]

    def _make(
        document: Optional[Dict[str, Any]] = None,
        body: Optional[str] = None,
        name: str = "psql",
    ) -> ResolvedDriver:
        counter[0] += 1
        directory = tmp_path / f"driver{counter[0]}"
        directory.mkdir()
        script = directory / f"dalgen-{name}.py"
        request_path = directory / "request.json"
        if body is None:
            body = f"sys.stdout.write({json.dumps(json.dumps(document or {}))})"
        script.write_text(
            textwrap.dedent(
                """\
                import json
                import sys
                import time

                request = json.load(sys.stdin)
                with open({request_path!r}, "w", encoding="utf-8") as fh:
                    json.dump(request, fh)
                """
            ).format(request_path=str(request_path))
            + textwrap.dedent(body)
            + "\n",
            encoding="utf-8",
        )
        return ResolvedDriver(name=name, command=(sys.executable, str(script)))

    return _make


@pytest.fixture()
def read_request() -> Callable[[ResolvedDriver], Dict[str, Any]]:
    """Load the request document a fake driver received."""

    def _read(driver: ResolvedDriver) -> Dict[str, Any]:
        path = pathlib.Path(driver.command[-1]).parent / "request.json"
        return json.loads(path.read_text(encoding="utf-8"))

    return _read
