"""
tests/test_models.py
Unit tests for dalgen.models: schema decoding rules, derived relationships
and the generation configuration.
"""

from __future__ import annotations

from typing import Any, Dict, List

import pytest
from pydantic import ValidationError

from dalgen.models import (
    ColumnInfo,
    FeatureFlags,
    ForeignKeyInfo,
    GenerationConfig,
    RelationshipInfo,
    SchemaDefinition,
    TableInfo,
)


def _col(name: str, type_: str = "int", **extra: Any) -> Dict[str, Any]:
    return {"name": name, "db_type": type_, "type": type_, **extra}


# ===========================================================================
# ColumnInfo
# ===========================================================================


class TestColumnInfo:

    def test_unknown_type_becomes_opaque(self) -> None:
        column = ColumnInfo.model_validate(_col("geom", "geometry"))
        assert column.type == "opaque"
        assert column.python_type == "Any"

    def test_type_is_case_insensitive(self) -> None:
        assert ColumnInfo.model_validate(_col("a", "INT")).type == "int"

    def test_enum_requires_values(self) -> None:
        with pytest.raises(ValidationError, match="enum_values"):
            ColumnInfo.model_validate(_col("status", "enum"))

    def test_enum_values_must_be_unique(self) -> None:
        with pytest.raises(ValidationError, match="duplicate"):
            ColumnInfo.model_validate(_col("status", "enum", enum_values=["a", "a"]))

    def test_optional_annotation(self) -> None:
        assert ColumnInfo.model_validate(_col("a", nullable=True)).python_annotation == "int | None"
        assert ColumnInfo.model_validate(_col("a", auto_generated=True)).is_optional
        assert ColumnInfo.model_validate(_col("a", default="0")).is_optional
        assert ColumnInfo.model_validate(_col("a")).python_annotation == "int"

    def test_enum_sqlalchemy_type_lists_values(self) -> None:
        column = ColumnInfo.model_validate(_col("s", "enum", enum_values=["on", "off"]))
        assert column.sqlalchemy_type == "Enum('on', 'off', native_enum=False)"

    def test_unknown_keys_are_ignored(self) -> None:
        column = ColumnInfo.model_validate(_col("a", collation="C"))
        assert column.name == "a"

    def test_models_are_frozen(self) -> None:
        column = ColumnInfo.model_validate(_col("a"))
        with pytest.raises(ValidationError):
            column.name = "b"


# ===========================================================================
# Keys
# ===========================================================================


class TestKeys:

    def test_foreign_key_arity_must_match(self) -> None:
        with pytest.raises(ValidationError, match="maps 2 column"):
            ForeignKeyInfo(
                name="fk",
                columns=("a", "b"),
                foreign_table="t",
                foreign_columns=("id",),
            )

    def test_foreign_key_action_is_normalised(self) -> None:
        fk = ForeignKeyInfo(
            name="fk",
            columns=("a",),
            foreign_table="t",
            foreign_columns=("id",),
            on_delete="set_null",
        )
        assert fk.on_delete == "SET NULL"
        assert fk.on_update == "NO ACTION"

    def test_primary_key_rejects_duplicate_columns(self) -> None:
        with pytest.raises(ValidationError):
            TableInfo.model_validate({
                "name": "t",
                "columns": [_col("id")],
                "primary_key": {"columns": ["id", "id"]},
            })


# ===========================================================================
# TableInfo
# ===========================================================================


class TestTableInfo:

    def test_join_table_detection(self, blog_schema: SchemaDefinition) -> None:
        assert blog_schema.get_table("user_roles").is_join_table
        assert not blog_schema.get_table("posts").is_join_table
        assert not blog_schema.get_table("active_users").is_join_table

    def test_extra_column_disqualifies_join_table(self, blog_document: Dict[str, Any]) -> None:
        join = next(t for t in blog_document["schema"]["tables"] if t["name"] == "user_roles")
        join["columns"].append(_col("granted_at", "datetime"))
        schema = SchemaDefinition.model_validate(blog_document["schema"])
        assert not schema.get_table("user_roles").is_join_table

    def test_unique_key(self, blog_schema: SchemaDefinition) -> None:
        users = blog_schema.get_table("users")
        assert users.is_unique_key(("id",))
        assert users.is_unique_key(("email",))
        assert not users.is_unique_key(("name",))

    def test_qualified_name(self, all_types_schema: SchemaDefinition) -> None:
        assert all_types_schema.get_table("samples").qualified_name == "public.samples"


# ===========================================================================
# SchemaDefinition
# ===========================================================================


class TestSchemaDefinition:

    def test_tables_sorted_by_name(self, blog_schema: SchemaDefinition) -> None:
        assert blog_schema.table_names == sorted(blog_schema.table_names)

    def test_generated_tables_exclude_join_tables(self, blog_schema: SchemaDefinition) -> None:
        names: List[str] = [t.name for t in blog_schema.generated_tables]
        assert names == ["active_users", "posts", "roles", "users"]

    def test_relationships_for_referencing_side(self, blog_schema: SchemaDefinition) -> None:
        rels: List[RelationshipInfo] = blog_schema.relationships_for("posts")
        assert len(rels) == 1
        assert rels[0].cardinality == "many_to_one"
        assert rels[0].foreign_table == "users"
        assert rels[0].local_columns == ("user_id",)

    def test_relationships_for_referenced_side(self, blog_schema: SchemaDefinition) -> None:
        rels: List[RelationshipInfo] = blog_schema.relationships_for("users")
        assert [r.cardinality for r in rels] == ["one_to_many", "many_to_many"]
        posts, roles = rels
        assert posts.foreign_table == "posts"
        assert posts.foreign_columns == ("user_id",)
        assert roles.foreign_table == "roles"
        assert roles.join_table == "user_roles"
        assert roles.join_local_column == "user_id"
        assert roles.join_foreign_column == "role_id"

    def test_relationships_unknown_table(self, blog_schema: SchemaDefinition) -> None:
        with pytest.raises(KeyError):
            blog_schema.relationships_for("missing")

    def test_column_types(self, blog_schema: SchemaDefinition) -> None:
        assert blog_schema.column_types() == ["datetime", "int", "str"]


# ===========================================================================
# GenerationConfig
# ===========================================================================


class TestGenerationConfig:

    def test_defaults(self) -> None:
        config = GenerationConfig(driver_name="psql")
        assert config.output_dir == "models"
        assert config.package_name == "models"
        assert config.features == FeatureFlags()
        assert config.tag_casing == "snake"

    def test_invalid_package_name(self) -> None:
        with pytest.raises(ValidationError):
            GenerationConfig(driver_name="psql", package_name="class")

    def test_tags_deduplicated_and_reserved(self) -> None:
        config = GenerationConfig(driver_name="psql", tags=["json", "json", "yaml"])
        assert config.tags == ["json", "yaml"]
        with pytest.raises(ValidationError, match="reserved"):
            GenerationConfig(driver_name="psql", tags=["db"])

    def test_replacement_format(self) -> None:
        with pytest.raises(ValidationError, match="module:function"):
            GenerationConfig(driver_name="psql", replacements={"entity": "nocolon"})

    def test_unknown_keys_rejected(self) -> None:
        with pytest.raises(ValidationError):
            GenerationConfig.model_validate({"driver_name": "psql", "colour": "blue"})

    def test_feature_lookup(self) -> None:
        flags = FeatureFlags(hooks=False)
        assert not flags.enabled("hooks")
        assert flags.enabled("tests")
        with pytest.raises(KeyError):
            flags.enabled("telepathy")
