"""
tests/test_aliases.py
Unit tests for dalgen.aliases: table forms, overrides, column fields,
relationship accessor names and collision detection.
"""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from dalgen.aliases import (
    AliasSet,
    apply_table_override,
    derive_table_forms,
    resolve_aliases,
)
from dalgen.errors import AliasCollisionError, ConfigurationError
from dalgen.models import AliasOverrides, SchemaDefinition, TableAliasOverride


def _schema(document: Dict[str, Any]) -> SchemaDefinition:
    return SchemaDefinition.model_validate(document["schema"])


def _table(name: str, *columns: str) -> Dict[str, Any]:
    return {
        "name": name,
        "columns": [{"name": c, "db_type": "text", "type": "str"} for c in columns or ("id",)],
    }


def _overrides(**tables: Dict[str, Any]) -> AliasOverrides:
    return AliasOverrides.model_validate({"tables": tables})


# ===========================================================================
# Table forms
# ===========================================================================


class TestTableForms:

    def test_derived_from_plural_name(self) -> None:
        assert derive_table_forms("users") == {
            "up_singular": "User",
            "up_plural": "Users",
            "down_singular": "user",
            "down_plural": "users",
        }

    def test_derived_from_singular_name(self) -> None:
        forms = derive_table_forms("person")
        assert forms["up_plural"] == "People"
        assert forms["down_plural"] == "people"

    def test_multi_word(self) -> None:
        forms = derive_table_forms("user_roles")
        assert forms["up_singular"] == "UserRole"
        assert forms["down_singular"] == "user_role"

    def test_keyword_table_name(self) -> None:
        forms = derive_table_forms("class")
        assert forms["down_singular"] == "class_"
        assert forms["up_singular"] == "Class"

    def test_supplied_form_wins(self) -> None:
        forms = apply_table_override("people", TableAliasOverride(up_singular="Human"))
        assert forms == {
            "up_singular": "Human",
            "up_plural": "Humans",
            "down_singular": "human",
            "down_plural": "humans",
        }

    def test_missing_forms_derive_from_first_supplied(self) -> None:
        override = TableAliasOverride(down_plural="staff_members", up_singular="Employee")
        forms = apply_table_override("staff", override)
        assert forms["up_singular"] == "Employee"
        assert forms["down_plural"] == "staff_members"
        assert forms["up_plural"] == "Employees"
        assert forms["down_singular"] == "employee"

    def test_invalid_override_identifier(self) -> None:
        with pytest.raises(ConfigurationError):
            apply_table_override("users", TableAliasOverride(down_plural="my-users"))

    def test_blank_override_rejected(self) -> None:
        with pytest.raises(ValueError):
            TableAliasOverride(up_singular="  ")


# ===========================================================================
# Resolver
# ===========================================================================


class TestResolveAliases:

    def test_blog_tables(self, blog_aliases: AliasSet) -> None:
        assert blog_aliases.table("users").up_singular == "User"
        assert blog_aliases.table("active_users").down_plural == "active_users"
        assert blog_aliases.table("user_roles").up_singular == "UserRole"

    def test_override_applied(self, blog_schema: SchemaDefinition) -> None:
        aliases = resolve_aliases(blog_schema, _overrides(users={"up_singular": "Member"}))
        assert aliases.table("users").up_singular == "Member"
        assert aliases.table("users").down_plural == "members"

    def test_override_for_unknown_table(self, blog_schema: SchemaDefinition) -> None:
        with pytest.raises(ConfigurationError, match="unknown table"):
            resolve_aliases(blog_schema, _overrides(members={"up_singular": "Member"}))

    def test_up_singular_collision(self) -> None:
        schema = _schema({"schema": {"tables": [_table("person"), _table("people")]}})
        with pytest.raises(AliasCollisionError) as excinfo:
            resolve_aliases(schema)
        error = excinfo.value
        assert error.kind == "alias_collision"
        assert error.identifier == "Person"
        assert set(error.names) == {"person", "people"}

    def test_override_collision(self, blog_schema: SchemaDefinition) -> None:
        with pytest.raises(AliasCollisionError):
            resolve_aliases(blog_schema, _overrides(roles={"up_singular": "User"}))

    def test_collision_resolved_by_override(self) -> None:
        schema = _schema({"schema": {"tables": [_table("person"), _table("people")]}})
        aliases = resolve_aliases(schema, _overrides(person={"up_singular": "Individual"}))
        assert aliases.table("person").up_singular == "Individual"
        assert aliases.table("people").up_singular == "Person"

    def test_reserved_module_name(self, blog_schema: SchemaDefinition) -> None:
        with pytest.raises(ConfigurationError, match="reserved"):
            resolve_aliases(blog_schema, _overrides(users={"down_plural": "boil"}))

    def test_test_prefixed_module_name(self) -> None:
        schema = _schema({"schema": {"tables": [_table("test_runs")]}})
        with pytest.raises(ConfigurationError, match="reserved"):
            resolve_aliases(schema)

    def test_resolution_is_deterministic(self, blog_schema: SchemaDefinition) -> None:
        assert resolve_aliases(blog_schema) == resolve_aliases(blog_schema)


# ===========================================================================
# Columns
# ===========================================================================


class TestColumnAliases:

    def test_field_and_tag(self, blog_aliases: AliasSet) -> None:
        column = blog_aliases.table("users").column("created_at")
        assert column.field == "created_at"
        assert column.tag == "created_at"

    def test_camel_tags(self, blog_schema: SchemaDefinition) -> None:
        aliases = resolve_aliases(blog_schema, tag_casing="camel")
        assert aliases.table("users").column("created_at").tag == "createdAt"
        assert aliases.table("users").column("created_at").field == "created_at"

    def test_keyword_and_entity_attribute_columns(self) -> None:
        schema = _schema({"schema": {"tables": [_table("widgets", "class", "to_dict", "self")]}})
        table = resolve_aliases(schema).table("widgets")
        assert table.field_for("class") == "class_"
        assert table.field_for("to_dict") == "to_dict_"
        assert table.field_for("self") == "self_"

    def test_column_collision(self) -> None:
        schema = _schema({"schema": {"tables": [_table("widgets", "UserName", "user_name")]}})
        with pytest.raises(AliasCollisionError) as excinfo:
            resolve_aliases(schema)
        assert excinfo.value.context["table"] == "widgets"
        assert excinfo.value.identifier == "user_name"

    def test_column_override(self) -> None:
        schema = _schema({"schema": {"tables": [_table("widgets", "UserName", "user_name")]}})
        aliases = resolve_aliases(
            schema, _overrides(widgets={"columns": {"UserName": "display_name"}})
        )
        assert aliases.table("widgets").field_for("UserName") == "display_name"

    def test_column_override_unknown_column(self, blog_schema: SchemaDefinition) -> None:
        with pytest.raises(ConfigurationError, match="unknown column"):
            resolve_aliases(blog_schema, _overrides(users={"columns": {"nick": "nickname"}}))


# ===========================================================================
# Relationship accessors
# ===========================================================================


class TestAccessors:

    def _names(self, aliases: AliasSet, table: str) -> List[str]:
        return [name for _, name in aliases.accessors_for(table)]

    def test_blog_accessors(self, blog_aliases: AliasSet) -> None:
        assert self._names(blog_aliases, "posts") == ["user"]
        assert self._names(blog_aliases, "users") == ["posts", "roles"]
        assert self._names(blog_aliases, "roles") == ["users"]
        assert self._names(blog_aliases, "active_users") == []

    def test_join_tables_have_no_accessors(self, blog_aliases: AliasSet) -> None:
        assert blog_aliases.accessors_for("user_roles") == ()

    def test_stemmed_foreign_names(self) -> None:
        document = {"schema": {"tables": [
            {
                "name": "users",
                "columns": [{"name": "id", "db_type": "int", "type": "int"}],
                "primary_key": {"columns": ["id"]},
            },
            {
                "name": "posts",
                "columns": [
                    {"name": "id", "db_type": "int", "type": "int"},
                    {"name": "author_id", "db_type": "int", "type": "int"},
                    {"name": "editor_id", "db_type": "int", "type": "int"},
                ],
                "primary_key": {"columns": ["id"]},
                "foreign_keys": [
                    {"name": "posts_author_fkey", "columns": ["author_id"],
                     "foreign_table": "users", "foreign_columns": ["id"]},
                    {"name": "posts_editor_fkey", "columns": ["editor_id"],
                     "foreign_table": "users", "foreign_columns": ["id"]},
                ],
            },
        ]}}
        aliases = resolve_aliases(_schema(document))
        assert self._names(aliases, "posts") == ["author", "editor"]
        assert self._names(aliases, "users") == ["author_posts", "editor_posts"]

    def test_repeated_accessor_is_qualified(self) -> None:
        document = {"schema": {"tables": [
            {
                "name": "users",
                "columns": [{"name": "id", "db_type": "int", "type": "int"}],
                "primary_key": {"columns": ["id"]},
            },
            {
                "name": "friendships",
                "columns": [
                    {"name": "id", "db_type": "int", "type": "int"},
                    {"name": "a", "db_type": "int", "type": "int"},
                    {"name": "b", "db_type": "int", "type": "int"},
                ],
                "primary_key": {"columns": ["id"]},
                "foreign_keys": [
                    {"name": "friendships_a_fkey", "columns": ["a"],
                     "foreign_table": "users", "foreign_columns": ["id"]},
                    {"name": "friendships_b_fkey", "columns": ["b"],
                     "foreign_table": "users", "foreign_columns": ["id"]},
                ],
            },
        ]}}
        aliases = resolve_aliases(_schema(document))
        assert self._names(aliases, "friendships") == [
            "user_via_friendships_a_fkey",
            "user_via_friendships_b_fkey",
        ]
        assert self._names(aliases, "users") == [
            "friendships_via_friendships_a_fkey",
            "friendships_via_friendships_b_fkey",
        ]
