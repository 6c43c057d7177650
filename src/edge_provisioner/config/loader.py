"""Read ``edge-provisioner.yaml`` into a validated :class:`Config`."""

from __future__ import annotations

import logging
import os
import re
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from edge_provisioner.config.modules import ModuleExpansionError, expand_modules
from edge_provisioner.config.schema import Config

if TYPE_CHECKING:
    from edge_provisioner.resources.base import Resource

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    pass


# Provider fields that may come from the environment instead of the YAML.
_PROVIDER_ENV_MAP: dict[str, str] = {
    "stack": "EDGE_STACK",
    "backend": "EDGE_BACKEND",
    "data_dir": "EDGE_DATA_DIR",
}

# Sections left untouched by ``${local.*}`` substitution.
_NON_RESOURCE_KEYS = frozenset({"provider", "engine", "state_path", "locals"})

_LOCAL_RE = re.compile(r"\$\{local\.([A-Za-z_][A-Za-z0-9_-]*)\}")


def _resolve_provider(raw_provider: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Fill provider fields from YAML, then the process environment, then ``<config_dir>/.env``."""
    unknown = sorted(set(raw_provider) - set(_PROVIDER_ENV_MAP))
    if unknown:
        raise ConfigError(f"Unknown provider field(s): {', '.join(unknown)}")

    env_file = config_dir / ".env"
    sources = [raw_provider, {f: os.environ.get(v) for f, v in _PROVIDER_ENV_MAP.items()}]
    if env_file.is_file():
        dotenv = dotenv_values(env_file, encoding="utf-8-sig")
        sources.append({f: dotenv.get(v) for f, v in _PROVIDER_ENV_MAP.items()})

    resolved: dict[str, Any] = {}
    for field in _PROVIDER_ENV_MAP:
        value = next((s[field] for s in sources if s.get(field) is not None), None)
        if value is not None:
            resolved[field] = value
    return resolved


def _substitute_locals(value: Any, local_values: dict[str, Any]) -> Any:
    """Replace ``${local.<name>}`` anywhere inside *value*.

    A string that is nothing but one reference becomes the local itself, so
    numbers and lists keep their type. Otherwise the local is interpolated.
    """
    match value:
        case dict():
            return {k: _substitute_locals(v, local_values) for k, v in value.items()}
        case list():
            return [_substitute_locals(v, local_values) for v in value]
        case str() if "${local." in value:
            pass
        case _:
            return value

    def lookup(m: re.Match[str]) -> Any:
        name = m.group(1)
        if name not in local_values:
            raise ConfigError(f"Unknown local '{name}' in {value!r}")
        return local_values[name]

    whole = _LOCAL_RE.fullmatch(value)
    if whole is not None:
        return lookup(whole)
    return _LOCAL_RE.sub(lambda m: str(lookup(m)), value)


def _validate_unique_addresses(resources: list[Resource]) -> list[str]:
    counts = Counter(r.address for r in resources)
    return [f"Duplicate resource address '{addr}'" for addr, n in counts.items() if n > 1]


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    return raw


def _anchor(path: Path, base: Path) -> Path:
    return path if path.is_absolute() else base / path


def load_config(path: Path | str) -> Config:
    """Parse, substitute locals, validate and expand modules.

    Every failure surfaces as :class:`ConfigError`. Relative ``state_path``
    and ``provider.data_dir`` are taken relative to the config file.
    """
    path = Path(path)
    raw = _read_yaml(path)

    local_values = raw.get("locals") or {}
    if not isinstance(local_values, dict):
        raise ConfigError(f"{path}: 'locals' must be a mapping")
    raw = {
        key: section if key in _NON_RESOURCE_KEYS else _substitute_locals(section, local_values)
        for key, section in raw.items()
    }

    try:
        raw["provider"] = _resolve_provider(raw.get("provider") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    config.state_path = _anchor(config.state_path, config.config_dir)
    config.provider.data_dir = _anchor(config.provider.data_dir, config.config_dir)

    if config.modules:
        logger.debug("Expanding %d module(s)", len(config.modules))
        try:
            config._module_resources = expand_modules(config.modules, config.config_dir)
        except ModuleExpansionError as exc:
            raise ConfigError(str(exc)) from exc

    duplicates = _validate_unique_addresses(config.resources)
    if duplicates:
        raise ConfigError("\n".join(duplicates))

    logger.info("Loaded config from %s (%d resources)", path, len(config.resources))
    return config
