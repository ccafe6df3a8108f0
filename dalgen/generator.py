# File: dalgen/generator.py
"""
dalgen - Master Generation Pipeline (Orchestrator)
====================================================

Connects every phase of a run:

    Driver / schema file → Consistency checks → Aliases → Rendering → Export

Workflow::

    1. Obtain the schema from the driver process (or a captured response).
    2. Reject inconsistent schemas (validators.py).
    3. Resolve every table, column and relationship alias (aliases.py).
    4. Render the per-table sections on a bounded thread pool; workers feed
       their import needs into a lock-protected accumulator.
    5. After every worker has finished, render the singletons, finalise the
       imports and assemble complete files in memory.
    6. Hand the file map to ``ProjectExporter`` (wipe, collision checks,
       atomic writes).

Error handling strategy:
    - Every failure is fatal and raised as a ``DalgenError`` subclass.
    - The first rendering failure sets a cancellation event; workers that
      have not started yet do nothing and queued tasks are cancelled.
    - Nothing is written (and nothing is wiped) unless rendering succeeded.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from dalgen.aliases import AliasSet, resolve_aliases
from dalgen.drivers import (
    DriverClient,
    DriverOptions,
    ResolvedDriver,
    build_driver_options,
    filter_tables,
    load_schema_document,
    resolve_driver,
)
from dalgen.errors import DalgenError, RenderingError
from dalgen.exporters import ExportManifest, ExportResult, ProjectExporter
from dalgen.imports import (
    AggregatedImports,
    ImportAccumulator,
    check_override_targets,
    for_singleton,
    for_table,
)
from dalgen.models import GenerationConfig, SchemaDefinition
from dalgen.templates import (
    ArtifactTemplate,
    GenerationContext,
    TemplateRegistry,
    assemble_module,
    default_registry,
    module_docstring,
)
from dalgen.utils import Timer, count_lines
from dalgen.validators import ConsistencyReport, ensure_consistent

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.generator")


# ---------------------------------------------------------------------------
# Request & report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationRequest:
    """
    Everything one run needs.

    ``schema_file`` replaces the driver process with a captured response.
    ``driver`` may be pre-resolved (tests run a script through the current
    interpreter this way); otherwise ``config.driver_name`` is resolved.
    """

    config: GenerationConfig
    options: Optional[DriverOptions] = None
    schema_file: Optional[Union[str, Path]] = None
    driver: Optional[ResolvedDriver] = None


@dataclass(frozen=False, slots=True)
class GenerationStepMetric:
    """Timing for a single pipeline step."""

    step_name: str = ""
    elapsed_seconds: float = 0.0
    detail: str = ""


@dataclass(frozen=False, slots=True)
class GenerationReport:
    """Summary of a successful run, produced by ``DalgenGenerator.run()``."""

    driver: str = ""
    output_directory: str = ""
    tables_generated: int = 0
    join_tables: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    total_bytes: int = 0
    total_lines: int = 0
    total_elapsed_seconds: float = 0.0
    step_metrics: List[GenerationStepMetric] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    manifest: Optional[ExportManifest] = None

    def summary(self) -> str:
        """Return a human-readable summary string."""
        lines: List[str] = [
            f"{'=' * 60}",
            "  dalgen: Generation Report",
            f"{'=' * 60}",
            f"  Driver:           {self.driver}",
            f"  Output:           {self.output_directory}",
            f"  Tables generated: {self.tables_generated}",
            f"  Files written:    {len(self.files)}",
            f"  Total lines:      {self.total_lines:,}",
            f"  Total bytes:      {self.total_bytes:,}",
            f"  Total time:       {self.total_elapsed_seconds:.3f}s",
            f"{'─' * 60}",
        ]
        if self.step_metrics:
            lines.append("  Pipeline Steps:")
            for step in self.step_metrics:
                lines.append(
                    f"    ✓ {step.step_name:<24s} {step.elapsed_seconds:>7.3f}s  {step.detail}"
                )
        if self.join_tables:
            lines.append(f"{'─' * 60}")
            lines.append(f"  Join tables (no module): {', '.join(self.join_tables)}")
        if self.warnings:
            lines.append(f"{'─' * 60}")
            lines.append(f"  Warnings ({len(self.warnings)}):")
            for warning in self.warnings:
                lines.append(f"    ⚠ {warning}")
        lines.append(f"{'=' * 60}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Rendering internals
# ---------------------------------------------------------------------------


class _Cancelled(Exception):
    """Raised inside a worker that observed the cancellation event."""


@dataclass(frozen=True)
class _TableOutput:
    ctx: GenerationContext
    main: List[str]
    test: List[str]


def _render_template(template: ArtifactTemplate, ctx: GenerationContext) -> str:
    table: Optional[str] = ctx.table.name if ctx.table is not None else None
    try:
        text = template.render(ctx)
    except DalgenError:
        raise
    except Exception as exc:
        raise RenderingError(template.name, table, exc) from exc
    if not isinstance(text, str):
        raise RenderingError(
            template.name, table, TypeError(f"render returned {type(text).__name__}, not str")
        )
    return text


# ---------------------------------------------------------------------------
# DalgenGenerator: master orchestrator
# ---------------------------------------------------------------------------


class DalgenGenerator:
    """
    Master pipeline orchestrator.

    Usage::

        generator = DalgenGenerator()
        report = generator.run(GenerationRequest(config=config, options=options))
        print(report.summary())

        # Or render without touching the filesystem:
        files = generator.render(schema, config)

    The generator is reusable; every call builds its own registry copy, so
    replacements of one run never leak into the next.
    """

    def __init__(self, registry: Optional[TemplateRegistry] = None) -> None:
        self._base_registry: TemplateRegistry = registry or default_registry()

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def run(self, request: GenerationRequest) -> GenerationReport:
        """Full pipeline: introspect → validate → alias → render → export."""
        config: GenerationConfig = request.config
        report: GenerationReport = GenerationReport(driver=config.driver_name)
        pipeline_start: float = time.perf_counter()

        with Timer("introspect") as t:
            schema: SchemaDefinition = self.introspect(request)
        report.step_metrics.append(
            GenerationStepMetric("Introspect", t.elapsed, f"{len(schema.tables)} table(s)")
        )

        files: Dict[str, str] = self._render(schema, config, report)

        with Timer("export") as t:
            exporter: ProjectExporter = ProjectExporter(
                Path(config.output_dir),
                wipe=config.wipe,
                write_manifest=config.write_manifest,
                package_name=config.package_name,
            )
            result: ExportResult = exporter.export(files)
        report.step_metrics.append(
            GenerationStepMetric("Export", t.elapsed, f"{len(result.written)} file(s)")
        )

        report.output_directory = result.output_directory
        report.files = list(result.written)
        report.manifest = result.manifest
        report.total_bytes = result.manifest.total_bytes
        report.total_lines = result.manifest.total_lines
        report.total_elapsed_seconds = time.perf_counter() - pipeline_start
        logger.info(
            "Generated %d file(s) for %d table(s) in %.3fs.",
            len(report.files),
            report.tables_generated,
            report.total_elapsed_seconds,
        )
        return report

    def introspect(self, request: GenerationRequest) -> SchemaDefinition:
        """Obtain the schema from a captured response or the driver process."""
        config: GenerationConfig = request.config
        if request.schema_file is not None:
            schema: SchemaDefinition = load_schema_document(
                request.schema_file, driver=config.driver_name
            )
            if request.options is not None:
                schema = filter_tables(
                    schema, request.options.whitelist, request.options.blacklist
                )
            return schema

        driver: ResolvedDriver = request.driver or resolve_driver(config.driver_name)
        options: DriverOptions = request.options or build_driver_options(driver.name, {})
        return DriverClient(driver, timeout=config.driver_timeout).introspect(options)

    def render(self, schema: SchemaDefinition, config: GenerationConfig) -> Dict[str, str]:
        """Validate, alias and render *schema*; returns relative path → content."""
        return self._render(schema, config, GenerationReport(driver=config.driver_name))

    # -----------------------------------------------------------------
    # Internal: pipeline steps
    # -----------------------------------------------------------------

    def _render(
        self,
        schema: SchemaDefinition,
        config: GenerationConfig,
        report: GenerationReport,
    ) -> Dict[str, str]:
        with Timer("validate") as t:
            consistency: ConsistencyReport = ensure_consistent(schema)
        report.warnings.extend(w.message for w in consistency.warnings)
        report.step_metrics.append(GenerationStepMetric("Validate", t.elapsed, consistency.summary()))

        with Timer("aliases") as t:
            aliases: AliasSet = resolve_aliases(schema, config.aliases, config.tag_casing)
        report.step_metrics.append(
            GenerationStepMetric("Resolve aliases", t.elapsed, f"{len(aliases.tables)} table(s)")
        )

        registry: TemplateRegistry = self.prepare_registry(config)

        with Timer("render") as t:
            files: Dict[str, str] = self._render_files(schema, aliases, config, registry)
        report.tables_generated = len(schema.generated_tables)
        report.join_tables = [tbl.name for tbl in schema.tables if tbl.is_join_table]
        report.step_metrics.append(
            GenerationStepMetric(
                "Render",
                t.elapsed,
                f"{len(files)} file(s), ~{sum(count_lines(c) for c in files.values()):,} lines",
            )
        )
        return files

    def prepare_registry(self, config: GenerationConfig) -> TemplateRegistry:
        """Copy of the base registry with the configured replacements applied."""
        registry: TemplateRegistry = TemplateRegistry(self._base_registry.templates())
        registry.apply_replacements(config.replacements)
        singletons: List[ArtifactTemplate] = registry.singleton_templates()
        check_override_targets(
            config.imports,
            [t.name for t in singletons if not t.test],
            [t.name for t in singletons if t.test],
        )
        return registry

    def _render_files(
        self,
        schema: SchemaDefinition,
        aliases: AliasSet,
        config: GenerationConfig,
        registry: TemplateRegistry,
    ) -> Dict[str, str]:
        table_templates: List[ArtifactTemplate] = registry.table_templates(config.features)
        contexts: List[GenerationContext] = [
            GenerationContext.build(schema, aliases, config, table)
            for table in schema.generated_tables
        ]
        accumulator: ImportAccumulator = ImportAccumulator()
        outputs: List[_TableOutput] = self._render_tables(contexts, table_templates, accumulator)

        singleton_ctx: GenerationContext = GenerationContext.build(schema, aliases, config)
        singleton_texts: Dict[str, str] = {}
        singleton_templates: List[ArtifactTemplate] = registry.singleton_templates(config.features)
        for template in singleton_templates:
            singleton_texts[template.name] = _render_template(template, singleton_ctx)
            accumulator.add_singleton(
                template.name, for_singleton(template, singleton_ctx, config.imports)
            )

        imports: AggregatedImports = accumulator.finalize()
        return self._assemble(outputs, singleton_templates, singleton_texts, imports, singleton_ctx)

    def _render_tables(
        self,
        contexts: Sequence[GenerationContext],
        templates: Sequence[ArtifactTemplate],
        accumulator: ImportAccumulator,
    ) -> List[_TableOutput]:
        """
        Render every table on a bounded pool.

        Returns outputs in table-name order regardless of completion order.
        """
        if not contexts:
            return []

        cancel: threading.Event = threading.Event()
        config: GenerationConfig = contexts[0].config
        workers: int = min(config.workers or os.cpu_count() or 1, len(contexts))
        logger.debug("Rendering %d table(s) on %d worker(s).", len(contexts), workers)

        def task(ctx: GenerationContext) -> _TableOutput:
            main: List[str] = []
            test: List[str] = []
            for template in templates:
                if cancel.is_set():
                    raise _Cancelled()
                (test if template.test else main).append(_render_template(template, ctx))
            try:
                accumulator.add_table(
                    ctx.table.name,
                    for_table(templates, ctx, config.imports),
                    for_table(templates, ctx, config.imports, test=True)
                    if ctx.features.tests
                    else None,
                )
            except DalgenError:
                raise
            except Exception as exc:
                raise RenderingError("imports", ctx.table.name, exc) from exc
            return _TableOutput(ctx=ctx, main=main, test=test)

        results: Dict[str, _TableOutput] = {}
        first_error: Optional[Exception] = None
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dalgen-render") as pool:
            futures: Dict[Future, str] = {pool.submit(task, ctx): ctx.table.name for ctx in contexts}
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                try:
                    results[futures[future]] = future.result()
                except _Cancelled:
                    continue
                except Exception as exc:
                    if first_error is None:
                        first_error = exc
                        cancel.set()
                        for pending in futures:
                            pending.cancel()
                        logger.error("Rendering failed for table '%s'; cancelling.", futures[future])

        if first_error is not None:
            raise first_error
        return [results[name] for name in sorted(results)]

    def _assemble(
        self,
        outputs: Sequence[_TableOutput],
        singleton_templates: Sequence[ArtifactTemplate],
        singleton_texts: Dict[str, str],
        imports: AggregatedImports,
        singleton_ctx: GenerationContext,
    ) -> Dict[str, str]:
        files: Dict[str, str] = {}
        for output in outputs:
            ctx: GenerationContext = output.ctx
            name: str = ctx.table.name
            module: str = ctx.alias.down_plural
            files[f"{module}.py"] = assemble_module(
                module_docstring(ctx, test=False), imports.tables[name], output.main
            )
            if ctx.features.tests and name in imports.table_tests:
                files[f"test_{module}.py"] = assemble_module(
                    module_docstring(ctx, test=True), imports.table_tests[name], output.test
                )
        for template in singleton_templates:
            summary: str = (template.summary or "Generated ``{filename}``.").format(
                filename=template.filename, package=singleton_ctx.package_name
            )
            files[template.filename] = assemble_module(
                summary,
                imports.singletons[template.name],
                [singleton_texts[template.name]],
            )
        return {path: files[path] for path in sorted(files)}


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "GenerationContext",
    "GenerationRequest",
    "GenerationStepMetric",
    "GenerationReport",
    "DalgenGenerator",
]

logger.debug("dalgen.generator loaded (%d public symbols).", len(__all__))
