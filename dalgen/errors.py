# File: dalgen/errors.py
"""
dalgen - Error Taxonomy
=========================
Every fatal condition the generation pipeline can hit is one of the
exception classes below.  Each stage raises as soon as it fails; nothing in
the core retries or continues with a partial result.

Every error carries:
    - ``kind``: a stable machine-readable classification (used by the CLI
      to select the exit code).
    - ``context``: the offending identifiers (driver, table, column, path).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.errors")


class DalgenError(Exception):
    """Base class for all fatal generation errors."""

    kind: str = "generation"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message: str = message
        self.context: Dict[str, Any] = context

    def describe(self) -> str:
        """Return ``kind: message`` followed by the sorted context items."""
        if not self.context:
            return f"{self.kind}: {self.message}"
        details: str = ", ".join(
            f"{key}={self.context[key]!r}" for key in sorted(self.context)
        )
        return f"{self.kind}: {self.message} ({details})"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.describe()}>"


class ConfigurationError(DalgenError):
    """Invalid generation request, driver options, overrides or replacements."""

    kind = "configuration"


class DriverNotFound(DalgenError):
    """No driver executable could be resolved."""

    kind = "driver_not_found"

    def __init__(self, driver: str, searched: Sequence[str] = ()) -> None:
        where: str = ", ".join(searched) if searched else "PATH"
        super().__init__(
            f"Could not find driver '{driver}' (searched: {where}).",
            driver=driver,
        )
        self.driver: str = driver
        self.searched: List[str] = list(searched)


class DriverProtocolError(DalgenError):
    """The driver's response does not decode into the expected schema shape."""

    kind = "driver_protocol"

    def __init__(self, driver: str, message: str) -> None:
        super().__init__(message, driver=driver)
        self.driver: str = driver


class DriverExecutionError(DalgenError):
    """
    The driver process failed.

    ``stderr`` is the driver's diagnostic text, kept verbatim.
    """

    kind = "driver_execution"

    def __init__(
        self,
        driver: str,
        message: str,
        *,
        returncode: Optional[int] = None,
        stderr: str = "",
        error_kind: Optional[str] = None,
    ) -> None:
        context: Dict[str, Any] = {"driver": driver}
        if returncode is not None:
            context["returncode"] = returncode
        if error_kind is not None:
            context["error_kind"] = error_kind
        super().__init__(message, **context)
        self.driver: str = driver
        self.returncode: Optional[int] = returncode
        self.stderr: str = stderr
        self.error_kind: Optional[str] = error_kind


class SchemaConsistencyError(DalgenError):
    """Dangling foreign keys, malformed keys or duplicate definitions."""

    kind = "schema_consistency"

    def __init__(self, problems: Sequence[str], **context: Any) -> None:
        self.problems: List[str] = list(problems)
        first: str = self.problems[0] if self.problems else "inconsistent schema"
        extra: int = len(self.problems) - 1
        message: str = first if extra <= 0 else f"{first} (and {extra} more)"
        super().__init__(message, **context)


class AliasCollisionError(DalgenError):
    """Two distinct tables (or columns) resolve to the same identifier."""

    kind = "alias_collision"

    def __init__(
        self,
        identifier: str,
        first: str,
        second: str,
        *,
        table: Optional[str] = None,
    ) -> None:
        if table is None:
            message = (
                f"Tables '{first}' and '{second}' both resolve to '{identifier}'."
            )
            super().__init__(message, identifier=identifier, tables=(first, second))
        else:
            message = (
                f"Columns '{first}' and '{second}' of table '{table}' both "
                f"resolve to '{identifier}'."
            )
            super().__init__(
                message, identifier=identifier, table=table, columns=(first, second)
            )
        self.identifier: str = identifier
        self.names: tuple = (first, second)
        self.table: Optional[str] = table


class RenderingError(DalgenError):
    """A template failed for one table (or singleton) artifact."""

    kind = "rendering"

    def __init__(self, artifact: str, table: Optional[str], cause: BaseException) -> None:
        target: str = f"table '{table}'" if table else "singleton"
        super().__init__(
            f"Template '{artifact}' failed for {target}: "
            f"{type(cause).__name__}: {cause}",
            artifact=artifact,
            table=table,
        )
        self.artifact: str = artifact
        self.table: Optional[str] = table


class WriteError(DalgenError):
    """Writing the output tree failed; already written files are listed."""

    kind = "write"

    def __init__(
        self,
        path: str,
        cause: Optional[BaseException] = None,
        *,
        written: Sequence[str] = (),
        reason: Optional[str] = None,
    ) -> None:
        detail: str = reason or (
            f"{type(cause).__name__}: {cause}" if cause else "unknown error"
        )
        super().__init__(
            f"Could not write '{path}': {detail} "
            f"({len(written)} file(s) written before the failure).",
            path=path,
        )
        self.path: str = path
        self.written: List[str] = list(written)


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
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
