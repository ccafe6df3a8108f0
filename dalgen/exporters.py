# File: dalgen/exporters.py
"""
dalgen - Output Writer
========================

Responsible for:
    1. Wiping the destination directory (only when asked, and only once the
       whole output has been rendered in memory).
    2. Refusing to overwrite files dalgen did not generate.
    3. Writing every file atomically (temp file in the same directory, then
       ``os.replace``), in sorted path order.
    4. Producing a deterministic manifest with checksums, optionally written
       as ``dalgen-manifest.json``.

Failures are fatal: the first one raises ``WriteError`` listing the files
already written.  Nothing is rolled back.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from dalgen.errors import WriteError
from dalgen.templates import GENERATED_HEADER
from dalgen.utils import Timer, count_lines, sha256_hex

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.exporters")

MANIFEST_NAME: str = "dalgen-manifest.json"


# ---------------------------------------------------------------------------
# Data classes for export results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FileRecord:
    """One written file as listed in the manifest."""

    relative_path: str
    size_bytes: int
    line_count: int
    sha256: str


@dataclass(frozen=False, slots=True)
class ExportManifest:
    """
    Manifest of one export.

    Contains no timestamps or absolute paths, so two runs over the same
    schema and configuration produce identical manifests.
    """

    generator_version: str = ""
    package_name: str = ""
    total_files: int = 0
    total_bytes: int = 0
    total_lines: int = 0
    files: List[FileRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generator": "dalgen",
            "generator_version": self.generator_version,
            "package_name": self.package_name,
            "total_files": self.total_files,
            "total_bytes": self.total_bytes,
            "total_lines": self.total_lines,
            "files": [
                {
                    "relative_path": f.relative_path,
                    "size_bytes": f.size_bytes,
                    "line_count": f.line_count,
                    "sha256": f.sha256,
                }
                for f in self.files
            ],
        }

    def to_json(self, indent_size: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent_size, ensure_ascii=False) + "\n"


@dataclass(frozen=True, slots=True)
class ExportResult:
    """What ``ProjectExporter.export()`` did."""

    output_directory: str
    manifest: ExportManifest
    written: Tuple[str, ...]
    wiped: bool
    elapsed_seconds: float


# ---------------------------------------------------------------------------
# ProjectExporter class
# ---------------------------------------------------------------------------


class ProjectExporter:
    """
    Writes a rendered file map to the filesystem.

    Usage::

        exporter = ProjectExporter(Path("models"), wipe=True)
        result = exporter.export({"users.py": "...", "boil.py": "..."})

    One exporter owns one output directory for the duration of a run.
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        *,
        wipe: bool = False,
        write_manifest: bool = False,
        package_name: str = "",
    ) -> None:
        self._output_dir: Path = Path(output_dir)
        self._wipe: bool = wipe
        self._write_manifest: bool = write_manifest
        self._package_name: str = package_name
        self._written: List[str] = []
        self._records: List[FileRecord] = []

        logger.debug(
            "ProjectExporter initialised: output_dir=%s, wipe=%s, manifest=%s.",
            self._output_dir,
            wipe,
            write_manifest,
        )

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def export(self, files: Dict[str, str]) -> ExportResult:
        """
        Write every file of *files* (relative path → content).

        Raises:
            WriteError: on a collision with a non-generated file or any
                I/O failure.  ``written`` lists the files already on disk.
        """
        self._written = []
        self._records = []
        ordered: List[str] = sorted(files)

        with Timer("export") as timer:
            wiped: bool = self._wipe_destination()
            self._ensure_directory(self._output_dir)
            for rel_path in ordered:
                self._check_collision(rel_path)
            for rel_path in ordered:
                self._records.append(self._write_file(rel_path, files[rel_path]))

            manifest: ExportManifest = self.build_manifest()
            if self._write_manifest:
                self._write_file(MANIFEST_NAME, manifest.to_json(), check=False)

        logger.info(
            "Export complete: %d file(s), %d bytes to %s in %.3fs.",
            manifest.total_files,
            manifest.total_bytes,
            self._output_dir,
            timer.elapsed,
        )
        return ExportResult(
            output_directory=str(self._output_dir),
            manifest=manifest,
            written=tuple(self._written),
            wiped=wiped,
            elapsed_seconds=timer.elapsed,
        )

    def build_manifest(self) -> ExportManifest:
        """Manifest of the files written by the last ``export`` call."""
        import dalgen

        records: List[FileRecord] = sorted(self._records, key=lambda r: r.relative_path)
        return ExportManifest(
            generator_version=dalgen.__version__,
            package_name=self._package_name,
            total_files=len(records),
            total_bytes=sum(r.size_bytes for r in records),
            total_lines=sum(r.line_count for r in records),
            files=records,
        )

    # -----------------------------------------------------------------
    # Internal: directory management
    # -----------------------------------------------------------------

    def _wipe_destination(self) -> bool:
        if not self._wipe or not self._output_dir.exists():
            return False
        if not self._output_dir.is_dir():
            raise WriteError(
                str(self._output_dir),
                reason="output path exists and is not a directory",
            )
        logger.info("Wiping output directory: %s", self._output_dir)
        try:
            shutil.rmtree(self._output_dir)
        except OSError as exc:
            raise WriteError(str(self._output_dir), exc) from exc
        return True

    def _ensure_directory(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WriteError(str(path), exc, written=self._written) from exc

    # -----------------------------------------------------------------
    # Internal: file writing
    # -----------------------------------------------------------------

    def _check_collision(self, rel_path: str) -> None:
        """An existing target must be a file carrying the generated header."""
        target: Path = self._output_dir / rel_path
        if not os.path.lexists(target):
            return
        if target.is_dir():
            raise WriteError(
                rel_path,
                reason="a directory exists at this path",
                written=self._written,
            )
        first_line: Optional[str] = _read_first_line(target)
        if first_line != GENERATED_HEADER:
            raise WriteError(
                rel_path,
                reason="refusing to overwrite a file dalgen did not generate",
                written=self._written,
            )

    def _write_file(self, rel_path: str, content: str, check: bool = True) -> FileRecord:
        target: Path = self._output_dir / rel_path
        if check:
            self._check_collision(rel_path)
        self._ensure_directory(target.parent)

        encoded: bytes = content.encode("utf-8")
        try:
            _atomic_write(target, encoded)
        except OSError as exc:
            raise WriteError(rel_path, exc, written=self._written) from exc

        self._written.append(rel_path)
        logger.debug("Wrote %s (%d bytes).", rel_path, len(encoded))
        return FileRecord(
            relative_path=rel_path,
            size_bytes=len(encoded),
            line_count=count_lines(content),
            sha256=sha256_hex(content),
        )


def _read_first_line(path: Path) -> Optional[str]:
    try:
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            return handle.readline().rstrip("\r\n")
    except OSError:
        return None


def _atomic_write(target_path: Path, data: bytes) -> None:
    """
    Write *data* to *target_path* through a temp file in the same directory.

    ``os.replace`` is atomic on POSIX when source and destination share a
    filesystem.  The temp file is removed if anything fails.
    """
    fd, tmp_path = tempfile.mkstemp(
        dir=str(target_path.parent),
        prefix=f".{target_path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, str(target_path))
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "MANIFEST_NAME",
    "FileRecord",
    "ExportManifest",
    "ExportResult",
    "ProjectExporter",
]

logger.debug("dalgen.exporters loaded (%d public symbols).", len(__all__))
