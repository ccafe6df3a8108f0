# File: dalgen/config.py
"""
dalgen - Configuration Loading
================================
Turns a config file, the environment and command-line overrides into a
``GenerationRequest``.

Config file
    ``dalgen.yaml`` / ``dalgen.yml`` / ``dalgen.json`` in the working
    directory, then in ``$XDG_CONFIG_HOME/dalgen`` (``~/.config/dalgen``
    when unset).  ``--config`` names a file explicitly.  Top-level keys
    mirror the long command-line flags (``output``, ``pkgname``,
    ``no-tests``, ``tag``, ...); underscores and hyphens are equivalent.
    The section named after the driver (``psql:``, ``mysql:``, ...) holds
    its connection settings.

Environment
    ``<DRIVER>_<KEY>`` overrides a driver setting, e.g. ``PSQL_DBNAME`` or
    ``PSQL_WHITELIST=users,posts`` (lists are comma separated).

Precedence: command line > environment > config file > defaults.

Example::

    output: app/models
    pkgname: models
    no-hooks: true
    tag: [json]
    psql:
      user: app
      host: localhost
      dbname: app
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, Union

import yaml
from pydantic import ValidationError

from dalgen.drivers import (
    DRIVER_OPTIONS,
    DRIVER_PREFIX,
    DriverOptions,
    GenericDriverOptions,
    ResolvedDriver,
    build_driver_options,
    resolve_driver,
)
from dalgen.errors import ConfigurationError
from dalgen.generator import GenerationRequest
from dalgen.models import GenerationConfig

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.config")

CONFIG_FILENAMES: Tuple[str, ...] = ("dalgen.yaml", "dalgen.yml", "dalgen.json")

# File key → GenerationConfig field.
_FILE_KEYS: Dict[str, str] = {
    "output": "output_dir",
    "pkgname": "package_name",
    "wipe": "wipe",
    "debug": "debug",
    "tag": "tags",
    "tag-casing": "tag_casing",
    "struct-tag-casing": "tag_casing",
    "workers": "workers",
    "timeout": "driver_timeout",
    "manifest": "write_manifest",
    "replace": "replacements",
    "aliases": "aliases",
    "imports": "imports",
}

# Negated file keys → feature flag.
_FEATURE_KEYS: Dict[str, str] = {
    "no-tests": "tests",
    "no-hooks": "hooks",
    "no-auto-timestamps": "auto_timestamps",
    "no-context": "context",
}

_LIST_SETTINGS: Tuple[str, ...] = ("whitelist", "blacklist")


# ---------------------------------------------------------------------------
# Config file discovery & loading
# ---------------------------------------------------------------------------


def config_search_paths(
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> List[Path]:
    """Candidate config files in lookup order."""
    environ: Mapping[str, str] = os.environ if env is None else env
    base: Path = Path.cwd() if cwd is None else Path(cwd)
    xdg: str = environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        config_home: Path = Path(xdg)
    else:
        config_home = Path(environ.get("HOME", str(Path.home()))) / ".config"
    directories: List[Path] = [base, config_home / "dalgen"]
    return [d / name for d in directories for name in CONFIG_FILENAMES]


def find_config_file(
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[Path]:
    for candidate in config_search_paths(cwd, env):
        if candidate.is_file():
            logger.info("Using config file %s", candidate)
            return candidate
    logger.debug("No config file found.")
    return None


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Parse a config file (YAML by default, JSON for ``.json``).

    Raises:
        ConfigurationError: when the file cannot be read or parsed, or does
            not contain a mapping.
    """
    file_path: Path = Path(path)
    try:
        text: str = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(
            f"Cannot read config file '{file_path}': {exc}", path=str(file_path)
        ) from exc

    try:
        if file_path.suffix.lower() == ".json":
            data: Any = json.loads(text) if text.strip() else {}
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(
            f"Invalid config file '{file_path}': {exc}", path=str(file_path)
        ) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file '{file_path}' must contain a mapping, got {type(data).__name__}.",
            path=str(file_path),
        )
    return data


def _normalise_key(key: Any) -> str:
    return str(key).strip().replace("_", "-")


def config_from_file(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Map config-file keys onto ``GenerationConfig`` fields.

    Mapping-valued keys that are not settings are driver sections and are
    ignored here; any other unknown key is an error.
    """
    result: Dict[str, Any] = {}
    features: Dict[str, bool] = {}
    for raw_key in sorted(data, key=str):
        value: Any = data[raw_key]
        key: str = _normalise_key(raw_key)
        if key in _FILE_KEYS:
            result[_FILE_KEYS[key]] = value
        elif key in _FEATURE_KEYS:
            if not isinstance(value, bool):
                raise ConfigurationError(f"Config key '{raw_key}' must be true or false.")
            features[_FEATURE_KEYS[key]] = not value
        elif isinstance(value, dict):
            continue
        else:
            raise ConfigurationError(f"Unknown config key '{raw_key}'.", key=str(raw_key))
    if features:
        result["features"] = features
    return result


# ---------------------------------------------------------------------------
# Driver settings
# ---------------------------------------------------------------------------


def _env_prefix(driver_name: str) -> str:
    return driver_name.upper().replace("-", "_") + "_"


def _setting_keys(model: Type[DriverOptions]) -> List[str]:
    return sorted(info.alias or name for name, info in model.model_fields.items())


def driver_settings_from_env(
    driver_name: str,
    env: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    ``<DRIVER>_<KEY>`` variables for *driver_name*.

    Typed engines read only their known keys; other engines take every
    variable with the prefix.
    """
    environ: Mapping[str, str] = os.environ if env is None else env
    prefix: str = _env_prefix(driver_name)
    model: Type[DriverOptions] = DRIVER_OPTIONS.get(driver_name, GenericDriverOptions)
    settings: Dict[str, Any] = {}

    if model is GenericDriverOptions:
        for name in sorted(environ):
            if name.startswith(prefix) and len(name) > len(prefix):
                settings[name[len(prefix):].lower()] = environ[name]
    else:
        for key in _setting_keys(model):
            name = prefix + key.upper()
            if name in environ:
                settings[key] = environ[name]

    for key in _LIST_SETTINGS:
        if isinstance(settings.get(key), str):
            settings[key] = [t.strip() for t in settings[key].split(",") if t.strip()]
    if settings:
        logger.debug("Driver settings from environment: %s", ", ".join(sorted(settings)))
    return settings


def driver_settings(
    driver_name: str,
    file_data: Mapping[str, Any],
    env: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """The driver's config-file section overlaid by the environment."""
    section: Any = file_data.get(driver_name, {})
    if section is None:
        section = {}
    if not isinstance(section, dict):
        raise ConfigurationError(
            f"Config section '{driver_name}' must be a mapping.", driver=driver_name
        )
    merged: Dict[str, Any] = dict(section)
    for key in _LIST_SETTINGS:
        if isinstance(merged.get(key), str):
            merged[key] = [t.strip() for t in merged[key].split(",") if t.strip()]
    merged.update(driver_settings_from_env(driver_name, env))
    return merged


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


def _driver_name(argument: str) -> str:
    name: str = Path(argument).name
    if name.endswith(".exe"):
        name = name[: -len(".exe")]
    if name.startswith(DRIVER_PREFIX):
        name = name[len(DRIVER_PREFIX):]
    return name


def _merge_overrides(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Apply command-line overrides; ``None`` means "not given"."""
    merged: Dict[str, Any] = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "features":
            features: Dict[str, Any] = dict(merged.get("features") or {})
            features.update({k: v for k, v in value.items() if v is not None})
            merged["features"] = features
        else:
            merged[key] = value
    return merged


def build_request(
    driver: str,
    *,
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    schema_file: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
) -> GenerationRequest:
    """
    Build a ``GenerationRequest`` for *driver* (a name or a path).

    *overrides* holds command-line values keyed by ``GenerationConfig``
    field, with ``features`` as a nested mapping.

    Raises:
        ConfigurationError: for unreadable or invalid configuration.
        DriverNotFound: when *driver* is a path that is not executable.
    """
    resolved: Optional[ResolvedDriver] = None
    is_path: bool = os.sep in driver or bool(os.altsep and os.altsep in driver)
    if is_path and schema_file is None:
        resolved = resolve_driver(driver)
        driver_name: str = resolved.name
    else:
        driver_name = _driver_name(driver) if is_path else driver

    if config_path is not None:
        path: Optional[Path] = Path(config_path)
        if not path.is_file():
            raise ConfigurationError(f"Config file '{path}' does not exist.", path=str(path))
    else:
        path = find_config_file(cwd, env)
    file_data: Dict[str, Any] = load_config_file(path) if path is not None else {}

    raw: Dict[str, Any] = _merge_overrides(config_from_file(file_data), overrides or {})
    raw["driver_name"] = driver_name
    try:
        config: GenerationConfig = GenerationConfig.model_validate(raw)
    except ValidationError as exc:
        problems: List[str] = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ConfigurationError(f"Invalid configuration: {'; '.join(problems)}") from exc

    if schema_file is None:
        options: DriverOptions = build_driver_options(
            driver_name, driver_settings(driver_name, file_data, env)
        )
    else:
        options = _optional_filters(driver_name, file_data, env)

    logger.info(
        "Configuration ready: driver=%s output=%s package=%s",
        config.driver_name,
        config.output_dir,
        config.package_name,
    )
    return GenerationRequest(
        config=config,
        options=options,
        schema_file=schema_file,
        driver=resolved,
    )


def _optional_filters(
    driver_name: str,
    file_data: Mapping[str, Any],
    env: Optional[Mapping[str, str]],
) -> DriverOptions:
    """Table filters only; used when reading a captured schema file."""
    settings: Dict[str, Any] = driver_settings(driver_name, file_data, env)
    return DriverOptions(
        whitelist=settings.get("whitelist") or [],
        blacklist=settings.get("blacklist") or [],
    )


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "CONFIG_FILENAMES",
    "config_search_paths",
    "find_config_file",
    "load_config_file",
    "config_from_file",
    "driver_settings_from_env",
    "driver_settings",
    "build_request",
]

logger.debug("dalgen.config loaded (%d public symbols).", len(__all__))
