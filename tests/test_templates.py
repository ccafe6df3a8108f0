"""
tests/test_templates.py
Unit tests for dalgen.templates.

Tests cover:
- TemplateRegistry registration, lookup and replacement
- Entity, query, hook, timestamp and relationship sections
- Test-module sections and singleton artifacts
- Module assembly (header, docstring, imports, sections)
- Code correctness (valid Python syntax via compile())
"""

from __future__ import annotations

import pathlib
import sys
import textwrap
from typing import Any, Callable, Dict, Iterator, Optional

import pytest

from dalgen.aliases import resolve_aliases
from dalgen.errors import ConfigurationError
from dalgen.generator import DalgenGenerator
from dalgen.imports import ImportSet
from dalgen.models import GenerationConfig, SchemaDefinition
from dalgen.templates import (
    GENERATED_HEADER,
    TEST_DATABASE_ENV,
    ArtifactTemplate,
    GenerationContext,
    TemplateRegistry,
    assemble_module,
    default_registry,
    render_boil,
    render_conftest,
    render_entity,
    render_entity_test,
    render_hooks,
    render_init,
    render_query,
    render_query_test,
    render_relationships,
    render_timestamps,
)


# ===========================================================================
# Helpers
# ===========================================================================


def _ctx(schema: SchemaDefinition, config: GenerationConfig, table: Optional[str] = None) -> GenerationContext:
    aliases = resolve_aliases(schema, config.aliases, config.tag_casing)
    return GenerationContext.build(
        schema, aliases, config, schema.get_table(table) if table else None
    )


def _int(name: str) -> Dict[str, Any]:
    return {"name": name, "db_type": "integer", "type": "int"}


@pytest.fixture()
def ctx_for(
    blog_schema: SchemaDefinition, make_config: Callable[..., GenerationConfig]
) -> Callable[..., GenerationContext]:
    """``ctx_for("users", hooks=False)`` → context with those feature flags."""

    def _make(table: Optional[str] = None, **features: bool) -> GenerationContext:
        return _ctx(blog_schema, make_config(features=features), table)

    return _make


@pytest.fixture()
def custom_module(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> Iterator[str]:
    """An importable module providing replacement render functions."""
    name = "dalgen_custom_render"
    (tmp_path / f"{name}.py").write_text(
        textwrap.dedent(
            """\
            def entity(ctx):
                return f"CUSTOM_{ctx.table.name.upper()} = True"

            NOT_CALLABLE = 42
            """
        ),
        encoding="utf-8",
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    yield name
    sys.modules.pop(name, None)


# ===========================================================================
# TemplateRegistry
# ===========================================================================


class TestTemplateRegistry:

    def test_default_templates(self) -> None:
        registry = default_registry()
        assert registry.names() == [
            "boil",
            "conftest",
            "entity",
            "entity_test",
            "hooks",
            "init",
            "query",
            "query_test",
            "relationships",
            "timestamps",
        ]
        assert len(registry) == 10

    def test_table_templates_in_section_order(self, config: GenerationConfig) -> None:
        names = [t.name for t in default_registry().table_templates(config.features)]
        assert names == [
            "entity", "hooks", "timestamps", "query", "relationships",
            "entity_test", "query_test",
        ]

    def test_feature_gating(self, make_config: Callable[..., GenerationConfig]) -> None:
        config = make_config(features={"hooks": False, "tests": False})
        registry = default_registry()
        table_names = [t.name for t in registry.table_templates(config.features)]
        singleton_names = [t.name for t in registry.singleton_templates(config.features)]
        assert "hooks" not in table_names
        assert "entity_test" not in table_names
        assert singleton_names == ["init", "boil"]

    def test_duplicate_registration(self) -> None:
        registry = default_registry()
        with pytest.raises(ValueError, match="already registered"):
            registry.register(registry.get("entity"))

    def test_unknown_scope(self) -> None:
        with pytest.raises(ValueError, match="scope"):
            TemplateRegistry([ArtifactTemplate(name="x", scope="project", render=str)])

    def test_unknown_template(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown template 'model'"):
            default_registry().get("model")

    def test_replace_keeps_everything_but_render(self) -> None:
        registry = default_registry()
        before = registry.get("hooks")
        registry.replace("hooks", lambda ctx: "# hooks")
        after = registry.get("hooks")
        assert after.render(None) == "# hooks"
        assert (after.scope, after.order, after.features, after.imports) == (
            before.scope, before.order, before.features, before.imports,
        )

    def test_replace_requires_callable(self) -> None:
        with pytest.raises(ConfigurationError, match="not callable"):
            default_registry().replace("entity", "render")

    def test_apply_replacements(self, custom_module: str, ctx_for: Callable[..., GenerationContext]) -> None:
        registry = default_registry()
        registry.apply_replacements({"entity": f"{custom_module}:entity"})
        assert registry.get("entity").render(ctx_for("users")) == "CUSTOM_USERS = True"

    def test_replacement_module_missing(self) -> None:
        with pytest.raises(ConfigurationError, match="Cannot import"):
            default_registry().apply_replacements({"entity": "no_such_module_xyz:render"})

    def test_replacement_function_missing(self, custom_module: str) -> None:
        with pytest.raises(ConfigurationError, match="does not exist"):
            default_registry().apply_replacements({"entity": f"{custom_module}:missing"})

    def test_replacement_not_callable(self, custom_module: str) -> None:
        with pytest.raises(ConfigurationError, match="not callable"):
            default_registry().apply_replacements({"entity": f"{custom_module}:NOT_CALLABLE"})

    def test_replacement_for_unknown_template(self, custom_module: str) -> None:
        with pytest.raises(ConfigurationError, match="Unknown template"):
            default_registry().apply_replacements({"schemas": f"{custom_module}:entity"})


# ===========================================================================
# GenerationContext
# ===========================================================================


class TestGenerationContext:

    def test_ref(self, ctx_for: Callable[..., GenerationContext]) -> None:
        ctx = ctx_for("posts")
        assert ctx.ref("posts") == ""
        assert ctx.ref("users") == "users."

    def test_singleton_has_no_alias(self, ctx_for: Callable[..., GenerationContext]) -> None:
        with pytest.raises(RuntimeError):
            ctx_for().alias

    def test_relationships_attached(self, ctx_for: Callable[..., GenerationContext]) -> None:
        assert [name for _, name in ctx_for("users").relationships] == ["posts", "roles"]
        assert ctx_for().relationships == ()


# ===========================================================================
# Entity section
# ===========================================================================


class TestRenderEntity:

    def test_table_definition(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_entity(ctx_for("users"))
        assert "TABLE = Table(\n    \"users\",\n    boil.metadata," in text
        assert 'Column("id", Integer, primary_key=True, autoincrement=True, nullable=False),' in text
        assert 'Column("email", String, nullable=False, unique=True),' in text
        assert 'Column("name", String, nullable=True),' in text

    def test_constants(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_entity(ctx_for("users"))
        assert 'PRIMARY_KEY: tuple[str, ...] = ("id",)' in text
        assert '_DB_GENERATED: tuple[str, ...] = ("id", "created_at",)' in text
        assert '    "created_at": "created_at",' in text
        assert "class UserColumns:" in text
        assert '    email = "email"' in text

    def test_dataclass_fields(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_entity(ctx_for("users"))
        assert "@dataclass(kw_only=True)\nclass User:" in text
        assert '    email: str = field(metadata={"db": "email", "tag": "email"})' in text
        assert (
            '    name: str | None = field(default=None, metadata={"db": "name", "tag": "name"})'
            in text
        )
        for method in ("to_dict", "to_row", "from_dict", "from_row"):
            assert f"def {method}(" in text

    def test_foreign_key(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_entity(ctx_for("posts"))
        assert (
            'Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE", '
            'name="posts_user_id_fkey"), nullable=False),'
        ) in text

    def test_extra_tags_and_camel_casing(
        self, blog_schema: SchemaDefinition, make_config: Callable[..., GenerationConfig]
    ) -> None:
        ctx = _ctx(blog_schema, make_config(tags=["json"], tag_casing="camel"), "users")
        text = render_entity(ctx)
        assert '"db": "created_at", "tag": "createdAt", "json": "createdAt"' in text

    def test_every_column_type(
        self, all_types_schema: SchemaDefinition, config: GenerationConfig
    ) -> None:
        text = render_entity(_ctx(all_types_schema, config, "samples"))
        assert '    schema="public",' in text
        assert "Column(\"status\", Enum('active', 'banned', native_enum=False), nullable=False)" in text
        assert 'Column("scores", ARRAY(NullType()), nullable=False)' in text
        assert 'comment="Display label"' in text
        assert "    price: Decimal = field(" in text
        assert "    extra: Any = field(" in text
        assert "    payload: bytes | None = field(default=None, " in text

    def test_composite_foreign_key(self, config: GenerationConfig) -> None:
        schema = SchemaDefinition.model_validate({"tables": [
            {
                "name": "orders",
                "columns": [_int("tenant_id"), _int("id")],
                "primary_key": {"columns": ["tenant_id", "id"]},
            },
            {
                "name": "order_lines",
                "columns": [_int("id"), _int("tenant_id"), _int("order_id")],
                "primary_key": {"columns": ["id"]},
                "foreign_keys": [{
                    "name": "order_lines_order_fkey",
                    "columns": ["tenant_id", "order_id"],
                    "foreign_table": "orders",
                    "foreign_columns": ["tenant_id", "id"],
                }],
            },
        ]})
        text = render_entity(_ctx(schema, config, "order_lines"))
        assert (
            '    ForeignKeyConstraint(["tenant_id", "order_id"], '
            '["orders.tenant_id", "orders.id"], name="order_lines_order_fkey"),'
        ) in text
        assert "ForeignKey(" not in text.replace("ForeignKeyConstraint(", "")


# ===========================================================================
# Query, hooks & timestamps
# ===========================================================================


class TestRenderQuery:

    def test_table_functions(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_query(ctx_for("users"))
        for signature in (
            "def find_user(conn: boil.Executor, id: int) -> User | None:",
            "def user_exists(conn: boil.Executor, id: int) -> bool:",
            "def count_users(conn: boil.Executor, *where: Any) -> int:",
            "def insert_user(conn: boil.Executor, obj: User) -> User:",
            "def update_user(conn: boil.Executor, obj: User) -> int:",
            "def delete_user(conn: boil.Executor, obj: User) -> int:",
            "def delete_all_users(conn: boil.Executor, *where: Any) -> int:",
        ):
            assert signature in text
        assert "def all_users(\n    conn: boil.Executor,\n    *where: Any," in text
        assert '    stmt = select(TABLE).where(TABLE.c["id"] == id)' in text
        assert "    _stamp(obj, creating=True)" in text
        assert "    _stamp(obj, creating=False)" in text
        assert '    _run_hooks("before_insert", conn, obj)' in text

    def test_view_is_read_only(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_query(ctx_for("active_users"))
        assert "def all_active_users(" in text
        assert "def count_active_users(" in text
        for absent in ("find_", "insert_", "update_", "delete_"):
            assert f"def {absent}" not in text

    def test_without_context(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_query(ctx_for("users", context=False))
        assert "def find_user(id: int) -> User | None:" in text
        assert "    conn = boil.get_db()" in text
        assert "boil.Executor" not in text

    def test_without_hooks(self, ctx_for: Callable[..., GenerationContext]) -> None:
        assert "_run_hooks" not in render_query(ctx_for("users", hooks=False))

    def test_without_timestamps(self, ctx_for: Callable[..., GenerationContext]) -> None:
        assert "_stamp" not in render_query(ctx_for("users", auto_timestamps=False))

    def test_key_only_table_has_no_update(self, config: GenerationConfig) -> None:
        schema = SchemaDefinition.model_validate({"tables": [{
            "name": "tags",
            "columns": [{"name": "label", "db_type": "text", "type": "str"}],
            "primary_key": {"columns": ["label"]},
        }]})
        text = render_query(_ctx(schema, config, "tags"))
        assert "def insert_tag(" in text
        assert "def delete_tag(" in text
        assert "def update_tag(" not in text

    def test_table_without_key(self, config: GenerationConfig) -> None:
        schema = SchemaDefinition.model_validate({"tables": [{
            "name": "events",
            "columns": [{"name": "payload", "db_type": "jsonb", "type": "json"}],
        }]})
        text = render_query(_ctx(schema, config, "events"))
        assert "def insert_event(" in text
        assert "def delete_all_events(" in text
        assert "inserted_primary_key" not in text
        for absent in ("find_event", "event_exists", "update_event", "delete_event("):
            assert absent not in text


class TestRenderHooksAndTimestamps:

    def test_hooks(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_hooks(ctx_for("posts"))
        assert "_hooks = boil.new_hook_registry()" in text
        assert "def add_post_hook(point: str, hook: Callable[..., None]) -> None:" in text
        assert "def _run_hooks(point: str, conn: Any, obj: Post) -> None:" in text

    def test_timestamps(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_timestamps(ctx_for("users"))
        assert "def _stamp(obj: User, *, creating: bool) -> None:" in text
        assert "    now = datetime.now(timezone.utc)" in text
        assert "    if creating and obj.created_at is None:" in text
        assert "    obj.updated_at = now" in text

    def test_nothing_to_stamp(self, ctx_for: Callable[..., GenerationContext]) -> None:
        assert render_timestamps(ctx_for("posts")) == ""
        assert render_timestamps(ctx_for("active_users")) == ""
        assert render_timestamps(ctx_for("users", auto_timestamps=False)) == ""


# ===========================================================================
# Relationships
# ===========================================================================


class TestRenderRelationships:

    def test_to_one(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_relationships(ctx_for("posts"))
        assert "def post_user(conn: boil.Executor, obj: Post) -> users.User | None:" in text
        assert "    if obj.user_id is None:" in text
        assert '    stmt = select(users.TABLE).where(users.TABLE.c["id"] == obj.user_id)' in text

    def test_to_many(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_relationships(ctx_for("users"))
        assert "def user_posts(" in text
        assert 'posts.TABLE.c["user_id"] == obj.id, *where' in text
        assert "    return [posts.Post.from_row(row) for row in conn.execute(stmt)]" in text

    def test_many_to_many(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_relationships(ctx_for("users"))
        assert "def user_roles(" in text
        assert "def add_user_roles(" in text
        assert "def remove_user_roles(" in text
        assert '.join(boil.USER_ROLES_TABLE, boil.USER_ROLES_TABLE.c["role_id"] == roles.TABLE.c["id"])' in text
        assert '.where(boil.USER_ROLES_TABLE.c["user_id"] == obj.id, *where)' in text

    def test_other_side_of_many_to_many(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_relationships(ctx_for("roles"))
        assert "def role_users(" in text
        assert "def add_role_users(" in text

    def test_no_relationships(self, ctx_for: Callable[..., GenerationContext]) -> None:
        assert render_relationships(ctx_for("active_users")) == ""

    def test_self_reference(self, config: GenerationConfig) -> None:
        schema = SchemaDefinition.model_validate({"tables": [{
            "name": "employees",
            "columns": [_int("id"), {**_int("manager_id"), "nullable": True}],
            "primary_key": {"columns": ["id"]},
            "foreign_keys": [{
                "name": "employees_manager_fkey",
                "columns": ["manager_id"],
                "foreign_table": "employees",
                "foreign_columns": ["id"],
            }],
        }]})
        text = render_relationships(_ctx(schema, config, "employees"))
        assert "def employee_manager(conn: boil.Executor, obj: Employee) -> Employee | None:" in text
        assert "def employee_manager_employees(" in text
        assert "employees." not in text


# ===========================================================================
# Test-module sections
# ===========================================================================


class TestRenderTestSections:

    def test_entity_test(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_entity_test(ctx_for("users"))
        assert "def _sample_user() -> users.User:" in text
        assert "        created_at=datetime(2000, 1, 1, 12, 0)," in text
        assert "def test_user_dict_round_trip() -> None:" in text
        assert '    assert names == ["id", "email", "name", "created_at", "updated_at"]' in text

    def test_query_test(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_query_test(ctx_for("users"))
        assert "def test_users_insert_and_count(conn) -> None:" in text
        assert "    users.insert_user(conn, _sample_user())" in text
        assert "    assert users.find_user(conn, 1) is not None" in text

    def test_query_test_without_context(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_query_test(ctx_for("users", context=False))
        assert "    users.insert_user(_sample_user())" in text
        assert "    assert users.count_users() == 1" in text

    def test_view_query_test(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_query_test(ctx_for("active_users"))
        assert "def test_active_users_start_empty(conn) -> None:" in text
        assert "insert_" not in text


# ===========================================================================
# Singletons
# ===========================================================================


class TestRenderSingletons:

    def test_init(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_init(ctx_for())
        assert text == (
            '__all__ = [\n    "ActiveUser",\n    "Post",\n    "Role",\n'
            '    "User",\n    "metadata",\n]'
        )

    def test_boil_with_context(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_boil(ctx_for())
        assert text.startswith("metadata = MetaData()")
        assert "def new_hook_registry() -> HookRegistry:" in text
        assert '    "before_insert",' in text
        assert "def set_db(" not in text

    def test_boil_executor_protocol(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_boil(ctx_for())
        assert "class Executor(Protocol):" in text
        assert "    def execute(self, statement: Any, parameters: Any = None, /) -> Any: ..." in text

    def test_boil_join_tables(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_boil(ctx_for())
        assert 'USER_ROLES_TABLE = Table(\n    "user_roles",\n    metadata,' in text
        assert (
            'Column("user_id", Integer, ForeignKey("users.id", name="user_roles_user_id_fkey"), '
            "primary_key=True"
        ) in text
        assert 'ForeignKey("roles.id", name="user_roles_role_id_fkey")' in text
        assert "POSTS_TABLE" not in text

    def test_boil_without_join_tables(self, config: GenerationConfig) -> None:
        schema = SchemaDefinition.model_validate({"tables": [{
            "name": "tags",
            "columns": [{"name": "label", "db_type": "text", "type": "str"}],
            "primary_key": {"columns": ["label"]},
        }]})
        text = DalgenGenerator().render(schema, config)["boil.py"]
        assert "Table(" not in text
        assert "from sqlalchemy import MetaData\n" in text

    def test_boil_imports(self, blog_schema: SchemaDefinition, config: GenerationConfig) -> None:
        text = DalgenGenerator().render(blog_schema, config)["boil.py"]
        assert "from typing import Any, Protocol" in text
        assert "from sqlalchemy import Column, ForeignKey, Integer, MetaData, Table" in text
        assert "datetime" not in text

    def test_boil_without_context_or_hooks(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_boil(ctx_for(context=False, hooks=False))
        assert "def set_db(conn: Executor | None) -> None:" in text
        assert "def get_db() -> Executor:" in text
        assert "HOOK_POINTS" not in text

    def test_conftest(self, ctx_for: Callable[..., GenerationContext]) -> None:
        text = render_conftest(ctx_for())
        assert f'os.environ.get("{TEST_DATABASE_ENV}", "sqlite://")' in text
        assert "boil.metadata.create_all(engine)" in text
        assert "set_db" not in text
        assert "boil.set_db(connection)" in render_conftest(ctx_for(context=False))


# ===========================================================================
# Assembly
# ===========================================================================


class TestAssembleModule:

    def test_layout(self) -> None:
        text = assemble_module(
            "Docs.",
            ImportSet.of(["os"], ["yaml"]),
            ["A = 1\n", "", "\nB = 2"],
        )
        assert text == (
            f"{GENERATED_HEADER}\n"
            '"""Docs."""\n'
            "\n"
            "from __future__ import annotations\n"
            "\n"
            "import os\n"
            "\n"
            "import yaml\n"
            "\n"
            "\n"
            "A = 1\n"
            "\n"
            "\n"
            "B = 2\n"
        )

    def test_no_imports_or_sections(self) -> None:
        text = assemble_module("Docs.", ImportSet(), [])
        assert text.endswith("from __future__ import annotations\n")


# ===========================================================================
# Code correctness
# ===========================================================================


class TestGeneratedCodeCompiles:

    @pytest.mark.parametrize(
        "features",
        [{}, {"context": False, "hooks": False, "auto_timestamps": False}],
    )
    def test_blog(
        self,
        blog_schema: SchemaDefinition,
        make_config: Callable[..., GenerationConfig],
        features: Dict[str, bool],
    ) -> None:
        files = DalgenGenerator().render(blog_schema, make_config(features=features))
        for path, content in files.items():
            compile(content, path, "exec")

    def test_all_types(self, all_types_schema: SchemaDefinition, config: GenerationConfig) -> None:
        files = DalgenGenerator().render(all_types_schema, config)
        assert sorted(files) == [
            "__init__.py", "boil.py", "conftest.py", "samples.py", "test_samples.py",
        ]
        for path, content in files.items():
            compile(content, path, "exec")
            assert content.startswith(GENERATED_HEADER + "\n")
