# File: dalgen/cli.py
"""
dalgen - Command-Line Interface
=================================

CLI built with the standard-library ``argparse`` module.

Usage examples::

    # Generate from a PostgreSQL database (settings from dalgen.yaml / env)
    dalgen psql

    # Explicit driver binary, wipe the output first, no tests
    dalgen ./bin/dalgen-psql -o app/models --wipe --no-tests

    # Regenerate from a captured driver response
    dalgen psql --schema-file schema.json -o models

    # Show version
    dalgen --version

Exit codes:
    0 - success
    1 - configuration error
    2 - driver not found
    3 - driver protocol error
    4 - driver execution error
    5 - schema consistency error
    6 - alias collision
    7 - rendering error
    8 - write error
"""

from __future__ import annotations

import argparse
import logging
import sys
import traceback
from typing import Any, Dict, List, NoReturn, Optional, Sequence

from dalgen.errors import DalgenError, DriverExecutionError

# ---------------------------------------------------------------------------
# Logger (configured in _setup_logging)
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen")


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_SUCCESS: int = 0
EXIT_CONFIGURATION_ERROR: int = 1
EXIT_DRIVER_NOT_FOUND: int = 2
EXIT_DRIVER_PROTOCOL_ERROR: int = 3
EXIT_DRIVER_EXECUTION_ERROR: int = 4
EXIT_SCHEMA_CONSISTENCY_ERROR: int = 5
EXIT_ALIAS_COLLISION: int = 6
EXIT_RENDERING_ERROR: int = 7
EXIT_WRITE_ERROR: int = 8

EXIT_CODES: Dict[str, int] = {
    "configuration": EXIT_CONFIGURATION_ERROR,
    "driver_not_found": EXIT_DRIVER_NOT_FOUND,
    "driver_protocol": EXIT_DRIVER_PROTOCOL_ERROR,
    "driver_execution": EXIT_DRIVER_EXECUTION_ERROR,
    "schema_consistency": EXIT_SCHEMA_CONSISTENCY_ERROR,
    "alias_collision": EXIT_ALIAS_COLLISION,
    "rendering": EXIT_RENDERING_ERROR,
    "write": EXIT_WRITE_ERROR,
}


def exit_code_for(error: DalgenError) -> int:
    return EXIT_CODES.get(error.kind, EXIT_CONFIGURATION_ERROR)


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(verbosity: int) -> None:
    """
    Configure the ``dalgen`` logger.

    Args:
        verbosity: -1 = ERROR, 0 = WARNING, 1 = INFO, 2+ = DEBUG.
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    elif verbosity == 0:
        level = logging.WARNING
    else:
        level = logging.ERROR

    handler: logging.StreamHandler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    fmt: str = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"
    handler.setFormatter(logging.Formatter(fmt, datefmt="%H:%M:%S"))

    root_logger: logging.Logger = logging.getLogger("dalgen")
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.propagate = False


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _parse_replacement(value: str) -> List[str]:
    name, sep, target = value.partition("=")
    if not sep or not name.strip() or not target.strip():
        raise argparse.ArgumentTypeError(
            f"expected NAME=module:function, got {value!r}"
        )
    return [name.strip(), target.strip()]


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    from dalgen import __version__

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="dalgen",
        description=(
            "dalgen: data-access-layer generator.\n\n"
            "Introspects a database through a driver program and generates a "
            "package of SQLAlchemy Core data-access modules for its tables."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s psql\n"
            "  %(prog)s ./bin/dalgen-psql -o app/models --wipe\n"
            "  %(prog)s psql --schema-file schema.json --no-tests\n"
        ),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"dalgen v{__version__}",
    )
    parser.add_argument(
        "driver",
        metavar="DRIVER",
        help="Driver name (looked up as dalgen-DRIVER on PATH) or path to a driver executable.",
    )

    # --- Input & output ---
    io_group = parser.add_argument_group("input and output")
    io_group.add_argument(
        "-c", "--config",
        default=None,
        metavar="PATH",
        help="Config file (default: dalgen.yaml/.yml/.json in . or the user config dir).",
    )
    io_group.add_argument(
        "--schema-file",
        default=None,
        metavar="PATH",
        help="Use a captured driver response (JSON/YAML) instead of running the driver.",
    )
    io_group.add_argument(
        "-o", "--output",
        dest="output_dir",
        default=None,
        metavar="DIR",
        help="Output directory (default: models).",
    )
    io_group.add_argument(
        "-p", "--pkgname",
        dest="package_name",
        default=None,
        metavar="NAME",
        help="Generated package name (default: models).",
    )
    io_group.add_argument(
        "--wipe",
        action="store_true",
        default=None,
        help="Delete the output directory before writing (only after rendering succeeded).",
    )
    io_group.add_argument(
        "--manifest",
        dest="write_manifest",
        action="store_true",
        default=None,
        help="Also write dalgen-manifest.json.",
    )

    # --- Features ---
    feature_group = parser.add_argument_group("features")
    feature_group.add_argument("--no-tests", action="store_true", default=False,
                               help="Do not generate tests.")
    feature_group.add_argument("--no-hooks", action="store_true", default=False,
                               help="Do not generate lifecycle hooks.")
    feature_group.add_argument("--no-auto-timestamps", action="store_true", default=False,
                               help="Do not stamp created_at / updated_at automatically.")
    feature_group.add_argument("--no-context", action="store_true", default=False,
                               help="Generated functions use a global connection instead of a parameter.")

    # --- Naming ---
    naming_group = parser.add_argument_group("naming")
    naming_group.add_argument(
        "--tag-casing",
        choices=["snake", "camel"],
        default=None,
        help="Casing of the serialised field names (default: snake).",
    )
    naming_group.add_argument(
        "-t", "--tag",
        dest="tags",
        action="append",
        default=None,
        metavar="KEY",
        help="Extra field-metadata key carrying the serialised name (repeatable).",
    )
    naming_group.add_argument(
        "--replace",
        dest="replacements",
        action="append",
        type=_parse_replacement,
        default=None,
        metavar="NAME=MODULE:FUNC",
        help="Replace an artifact template's render function (repeatable).",
    )

    # --- Execution ---
    exec_group = parser.add_argument_group("execution")
    exec_group.add_argument("--workers", type=int, default=None, metavar="N",
                            help="Rendering threads (default: CPU count).")
    exec_group.add_argument("--timeout", dest="driver_timeout", type=float, default=None,
                            metavar="SECONDS", help="Kill the driver after this many seconds.")
    exec_group.add_argument("-d", "--debug", action="store_true", default=None,
                            help="Debug logging and the full cause chain on errors.")

    # --- Verbosity ---
    verbosity_group = parser.add_argument_group("verbosity")
    verbosity_group.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for INFO, -vv for DEBUG).",
    )
    verbosity_group.add_argument(
        "-q", "--quiet",
        action="store_true",
        default=False,
        help="Suppress all output except errors.",
    )
    return parser


# ---------------------------------------------------------------------------
# Config override builder
# ---------------------------------------------------------------------------


def _build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Command-line values keyed by ``GenerationConfig`` field; ``None`` = unset."""
    overrides: Dict[str, Any] = {
        "output_dir": args.output_dir,
        "package_name": args.package_name,
        "wipe": args.wipe,
        "write_manifest": args.write_manifest,
        "tag_casing": args.tag_casing,
        "tags": args.tags,
        "workers": args.workers,
        "driver_timeout": args.driver_timeout,
        "debug": args.debug,
    }
    if args.replacements:
        overrides["replacements"] = {name: target for name, target in args.replacements}

    features: Dict[str, bool] = {}
    for flag, feature in (
        ("no_tests", "tests"),
        ("no_hooks", "hooks"),
        ("no_auto_timestamps", "auto_timestamps"),
        ("no_context", "context"),
    ):
        if getattr(args, flag):
            features[feature] = False
    if features:
        overrides["features"] = features
    return overrides


# ---------------------------------------------------------------------------
# Error reporting
# ---------------------------------------------------------------------------


def _report_error(error: DalgenError, debug: bool) -> None:
    print(f"Error: {error.message}", file=sys.stderr)
    if not debug:
        return
    print(f"  kind: {error.kind}", file=sys.stderr)
    for key in sorted(error.context):
        print(f"  {key}: {error.context[key]}", file=sys.stderr)
    if isinstance(error, DriverExecutionError) and error.stderr:
        print("  driver stderr:", file=sys.stderr)
        for line in error.stderr.rstrip().splitlines():
            print(f"    {line}", file=sys.stderr)
    print("".join(traceback.format_exception(type(error), error, error.__traceback__)),
          file=sys.stderr, end="")


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Parse *argv*, run the pipeline and return the exit code."""
    from dalgen.config import build_request
    from dalgen.generator import DalgenGenerator, GenerationReport

    parser: argparse.ArgumentParser = _build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    debug: bool = bool(args.debug)
    if args.quiet:
        verbosity: int = -1
    else:
        verbosity = 2 if debug else args.verbose
    _setup_logging(verbosity)

    try:
        request = build_request(
            args.driver,
            config_path=args.config,
            overrides=_build_overrides(args),
            schema_file=args.schema_file,
        )
        debug = debug or request.config.debug
        report: GenerationReport = DalgenGenerator().run(request)
    except DalgenError as exc:
        logger.debug("Run failed: %s", exc.describe())
        _report_error(exc, debug)
        return exit_code_for(exc)

    if not args.quiet:
        print(report.summary())
    return EXIT_SUCCESS


def cli_main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """
    Console-script entry point.

    Can be called from ``__main__.py`` or directly for testing.
    """
    sys.exit(run(argv))


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "run",
    "cli_main",
    "exit_code_for",
    "EXIT_CODES",
    "EXIT_SUCCESS",
    "EXIT_CONFIGURATION_ERROR",
    "EXIT_DRIVER_NOT_FOUND",
    "EXIT_DRIVER_PROTOCOL_ERROR",
    "EXIT_DRIVER_EXECUTION_ERROR",
    "EXIT_SCHEMA_CONSISTENCY_ERROR",
    "EXIT_ALIAS_COLLISION",
    "EXIT_RENDERING_ERROR",
    "EXIT_WRITE_ERROR",
]

logger.debug("dalgen.cli loaded (%d public symbols).", len(__all__))
