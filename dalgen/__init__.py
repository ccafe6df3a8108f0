# File: dalgen/__init__.py
"""
dalgen - Data-Access-Layer Generator
======================================

Introspects a relational database through a separate driver program and
generates a package of SQLAlchemy Core data-access modules (entities,
queries, relationship accessors, hooks and pytest tests) for its tables.

Architecture overview::

    ┌──────────────┐     ┌────────────────┐     ┌─────────────────┐
    │  CLI / Entry │────▶│ DalgenGenerator│────▶│ TemplateRegistry│
    │   (cli.py)   │     │ (generator.py) │     │  (templates.py) │
    └──────┬───────┘     └───────┬────────┘     └─────────────────┘
           │                     │
      ┌────▼─────┐   ┌───────────┼────────────┬────────────┐
      │  config  │   ▼           ▼            ▼            ▼
      │  (.py)   │ ┌───────┐ ┌──────────┐ ┌─────────┐ ┌───────────┐
      └──────────┘ │drivers│ │validators│ │ aliases │ │ exporters │
                   └───────┘ └──────────┘ │ imports │ └───────────┘
                                          └─────────┘

Usage::

    # As a library
    from dalgen import DalgenGenerator, GenerationConfig, GenerationRequest
    config = GenerationConfig(driver_name="psql", output_dir="models")
    DalgenGenerator().run(GenerationRequest(config=config, schema_file="schema.json"))

    # From the command line
    dalgen psql -o models --wipe

Public API:
    - DalgenGenerator    - Master orchestrator
    - GenerationRequest  - Config + driver options for one run
    - GenerationConfig   - Generation settings model
    - SchemaDefinition   - Introspected schema model
    - TemplateRegistry   - Artifact templates with replacement support
    - ProjectExporter    - File-system writer
"""

from __future__ import annotations

__version__: str = "0.1.0"
__license__: str = "MIT"

from dalgen.errors import (
    AliasCollisionError,
    ConfigurationError,
    DalgenError,
    DriverExecutionError,
    DriverNotFound,
    DriverProtocolError,
    RenderingError,
    SchemaConsistencyError,
    WriteError,
)
from dalgen.models import (
    ColumnInfo,
    ColumnType,
    FeatureFlags,
    ForeignKeyInfo,
    GenerationConfig,
    PrimaryKeyInfo,
    RelationshipInfo,
    SchemaDefinition,
    TableInfo,
)
from dalgen.drivers import DriverClient, resolve_driver, load_schema_document
from dalgen.aliases import AliasSet, resolve_aliases
from dalgen.imports import ImportSet
from dalgen.templates import ArtifactTemplate, GenerationContext, TemplateRegistry
from dalgen.exporters import ExportManifest, ProjectExporter
from dalgen.generator import DalgenGenerator, GenerationReport, GenerationRequest

# ---------------------------------------------------------------------------
# Public API surface
# ---------------------------------------------------------------------------

__all__: list[str] = [
    "__version__",
    "__license__",
    # Orchestrator
    "DalgenGenerator",
    "GenerationReport",
    "GenerationRequest",
    # Models
    "ColumnInfo",
    "ColumnType",
    "FeatureFlags",
    "ForeignKeyInfo",
    "GenerationConfig",
    "PrimaryKeyInfo",
    "RelationshipInfo",
    "SchemaDefinition",
    "TableInfo",
    # Pipeline pieces
    "DriverClient",
    "resolve_driver",
    "load_schema_document",
    "AliasSet",
    "resolve_aliases",
    "ImportSet",
    "ArtifactTemplate",
    "GenerationContext",
    "TemplateRegistry",
    "ExportManifest",
    "ProjectExporter",
    # Errors
    "DalgenError",
    "ConfigurationError",
    "DriverNotFound",
    "DriverProtocolError",
    "DriverExecutionError",
    "SchemaConsistencyError",
    "AliasCollisionError",
    "RenderingError",
    "WriteError",
]
