"""Locating, loading and layering xcpilot configuration."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping
import json
import os
import tomllib

import yaml

from .errors import ConfigError


ConfigLoader = Callable[[Any], Mapping[str, Any]]

ENV_PREFIX = "XCPILOT_"
SETTINGS_DIR = ".xcpilot"
SETTINGS_STEM = "settings"

KNOWN_KEYS = (
    "build.configuration",
    "build.arch",
    "build.args",
    "build.env",
    "build.launchArgs",
    "build.launchEnv",
    "build.rosettaDestination",
    "build.allowProvisioningUpdates",
    "build.xcbeautifyEnabled",
    "build.derivedDataPath",
    "build.xcodeWorkspacePath",
    "build.bringSimulatorToForeground",
)


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomllib.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream) or {},
    ".yml": lambda stream: yaml.safe_load(stream) or {},
}
"""Mapping of file suffixes to loader callables."""


def register_loader(suffix: str, loader: ConfigLoader) -> None:
    """Register ``loader`` for files ending with ``suffix``."""

    normalized = suffix.lower()
    if not normalized.startswith("."):
        raise ValueError("Suffix must start with '.'")
    FILE_LOADERS[normalized] = loader


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Load and decode a configuration mapping from ``path``."""

    suffix = path.suffix.lower()
    loader = FILE_LOADERS.get(suffix)
    if loader is None:
        supported = ", ".join(sorted(FILE_LOADERS)) or "<none>"
        raise ValueError(
            f"Unsupported configuration file extension: {suffix}. Supported: {supported}"
        )

    mode = "rb" if suffix == ".toml" else "r"
    kwargs: Dict[str, Any] = {}
    if mode == "r":
        kwargs["encoding"] = "utf-8"

    with path.open(mode, **kwargs) as handle:
        data = loader(handle)

    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file '{path}' must contain a mapping at the root")

    return data


def find_settings_file(workspace: Path) -> Path | None:
    """Return the single ``.xcpilot/settings.*`` file in ``workspace``, if any."""

    directory = workspace / SETTINGS_DIR
    if not directory.is_dir():
        return None

    found: Path | None = None
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.stem != SETTINGS_STEM:
            continue
        if path.suffix.lower() not in FILE_LOADERS:
            continue
        if found is not None:
            raise ValueError(
                f"Multiple configuration files found for '{SETTINGS_STEM}': '{found.name}' and '{path.name}'. "
                "Only one format per configuration entry is allowed."
            )
        found = path
    return found


def flatten_mapping(data: Mapping[str, Any], *, prefix: str = "") -> Dict[str, Any]:
    """Flatten nested tables into dotted keys.

    ``build.env`` and ``build.launchEnv`` hold mappings as values, so a
    table is only descended into when its dotted name is not a known key.
    """

    flat: Dict[str, Any] = {}
    for raw_key, value in data.items():
        key = f"{prefix}{raw_key}"
        if isinstance(value, Mapping) and key not in KNOWN_KEYS:
            flat.update(flatten_mapping(value, prefix=f"{key}."))
        else:
            flat[key] = value
    return flat


def env_key_for(key: str) -> str:
    return f"{ENV_PREFIX}{key.upper().replace('.', '_')}"


def parse_env_value(raw: str) -> Any:
    trimmed = raw.strip()
    if trimmed == "true":
        return True
    if trimmed == "false":
        return False
    if trimmed.startswith("{") or trimmed.startswith("["):
        try:
            return json.loads(trimmed)
        except ValueError:
            return trimmed
    return trimmed


class ConfigStore:
    """Resolved configuration: environment overrides on top of the settings file."""

    def __init__(self, values: Mapping[str, Any] | None = None, *, source: Path | None = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})
        self.source = source

    @classmethod
    def load(
        cls,
        workspace: Path,
        *,
        environ: Mapping[str, str] | None = None,
        extra_keys: Iterable[str] = (),
    ) -> "ConfigStore":
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        try:
            source = find_settings_file(workspace)
            if source is not None:
                values.update(flatten_mapping(load_config_file(source)))
        except (OSError, ValueError, TypeError, yaml.YAMLError) as exc:
            raise ConfigError(f"Failed to load settings: {exc}") from exc

        apply_env_overrides(values, environ, keys=[*values.keys(), *KNOWN_KEYS, *extra_keys])
        return cls(values, source=source)

    def get(self, key: str) -> Any:
        return self._values.get(key)

    def get_or_default(self, key: str, fallback: Any) -> Any:
        value = self._values.get(key)
        return fallback if value is None else value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)


def apply_env_overrides(
    values: MutableMapping[str, Any],
    environ: Mapping[str, str],
    *,
    keys: Iterable[str],
) -> None:
    for key in dict.fromkeys(keys):
        raw = environ.get(env_key_for(key))
        if raw is not None:
            values[key] = parse_env_value(raw)


def resolve_workspace_relative(workspace: Path, value: str | None) -> Path | None:
    if not value:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else workspace / path


__all__ = [
    "ConfigLoader",
    "ConfigStore",
    "ENV_PREFIX",
    "FILE_LOADERS",
    "KNOWN_KEYS",
    "apply_env_overrides",
    "env_key_for",
    "find_settings_file",
    "flatten_mapping",
    "load_config_file",
    "parse_env_value",
    "register_loader",
    "resolve_workspace_relative",
]
