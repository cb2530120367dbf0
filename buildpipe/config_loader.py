"""Configuration loading for build definitions."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence
import copy
import json
import tomllib

import yaml


ConfigLoader = Callable[[Any], Any]

CONFIG_FILENAMES = ("buildpipe.yaml", "buildpipe.yml", "buildpipe.toml", "buildpipe.json")


class ConfigurationError(ValueError):
    """Raised when the build configuration is missing or invalid."""


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomllib.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream),
    ".yml": lambda stream: yaml.safe_load(stream),
}
"""Mapping of file suffixes to loader callables."""


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Load and decode a configuration mapping from ``path``."""

    suffix = path.suffix.lower()
    loader = FILE_LOADERS.get(suffix)
    if loader is None:
        supported = ", ".join(sorted(FILE_LOADERS))
        raise ConfigurationError(
            f"Unsupported configuration file extension: {suffix}. Supported: {supported}"
        )

    mode = "rb" if suffix == ".toml" else "r"
    kwargs: Dict[str, Any] = {}
    if mode == "r":
        kwargs["encoding"] = "utf-8"

    with path.open(mode, **kwargs) as handle:
        data = loader(handle)

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Configuration file '{path}' must contain a mapping at the root")
    return data


def find_config(directory: Path) -> Path:
    for name in CONFIG_FILENAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    raise ConfigurationError(
        f"No configuration file found in {directory}. Expected one of: {', '.join(CONFIG_FILENAMES)}"
    )


def normalize_string_list(value: Any, *, field_name: str) -> List[str]:
    """Coerce ``value`` into a list of trimmed strings."""

    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        text = str(value).strip()
        return [text] if text else []
    if isinstance(value, Sequence):
        items: List[str] = []
        for item in value:
            if not isinstance(item, (str, bytes, int, float)) or isinstance(item, bool):
                raise ConfigurationError(f"{field_name} entries must be strings")
            text = str(item).strip()
            if text:
                items.append(text)
        return items
    raise ConfigurationError(f"{field_name} must be a string or sequence of strings")


def normalize_env(value: Any, *, field_name: str) -> Dict[str, str]:
    """Accept either a mapping or a list of ``KEY=VALUE`` strings."""

    if value is None:
        return {}
    if isinstance(value, Mapping):
        return {str(key): "" if val is None else str(val) for key, val in value.items()}
    env: Dict[str, str] = {}
    for entry in normalize_string_list(value, field_name=field_name):
        key, sep, val = entry.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"{field_name} entries must look like KEY=VALUE, got '{entry}'")
        env[key] = val
    return env


def _optional_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def _optional_bool(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigurationError(f"{key} must be true or false, got {value!r}")
    return value


@dataclass(slots=True)
class Hook:
    cmd: str
    dir: str = ""
    env: List[str] = field(default_factory=list)

    @classmethod
    def from_value(cls, value: Any, *, field_name: str) -> "Hook":
        if isinstance(value, str):
            return cls(cmd=value)
        if isinstance(value, Mapping):
            cmd = value.get("cmd")
            if not cmd or not str(cmd).strip():
                raise ConfigurationError(f"{field_name} entries must include a non-empty 'cmd'")
            return cls(
                cmd=str(cmd),
                dir=_optional_str(value, "dir"),
                env=normalize_string_list(value.get("env"), field_name=f"{field_name}.env"),
            )
        raise ConfigurationError(f"{field_name} entries must be strings or mappings")


def _parse_hook_list(value: Any, *, field_name: str) -> List[Hook]:
    if value is None:
        return []
    if isinstance(value, (str, Mapping)):
        return [Hook.from_value(value, field_name=field_name)]
    if isinstance(value, Sequence):
        return [Hook.from_value(item, field_name=field_name) for item in value]
    raise ConfigurationError(f"{field_name} must be a string, a mapping or a list")


@dataclass(slots=True)
class BuildHooks:
    pre: List[Hook] = field(default_factory=list)
    post: List[Hook] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Any) -> "BuildHooks":
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigurationError("hooks must be a mapping with 'pre' and/or 'post'")
        return cls(
            pre=_parse_hook_list(data.get("pre"), field_name="hooks.pre"),
            post=_parse_hook_list(data.get("post"), field_name="hooks.post"),
        )


@dataclass(slots=True)
class ProxyConfig:
    path: str
    version: str

    @classmethod
    def from_mapping(cls, data: Any) -> "ProxyConfig | None":
        if data is None:
            return None
        if not isinstance(data, Mapping):
            raise ConfigurationError("proxy must be a mapping with 'path' and 'version'")
        path = data.get("path")
        if not path:
            raise ConfigurationError("proxy.path is required when proxy is set")
        return cls(path=str(path), version=_optional_str(data, "version"))


@dataclass(slots=True)
class BuildDefinition:
    id: str = ""
    lang: str = ""
    binary: str = ""
    targets: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    hooks: BuildHooks = field(default_factory=BuildHooks)
    proxy: ProxyConfig | None = None
    dir: str = ""
    main: str = ""
    skip: bool = False
    flags: List[str] = field(default_factory=list)
    ldflags: List[str] = field(default_factory=list)
    goos: List[str] = field(default_factory=list)
    goarch: List[str] = field(default_factory=list)
    goarm: List[str] = field(default_factory=list)
    ignore: List[Dict[str, str]] = field(default_factory=list)
    # set once env values have had $VAR references expanded
    env_expanded: bool = field(default=False, repr=False, compare=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BuildDefinition":
        if not isinstance(data, Mapping):
            raise ConfigurationError("build entries must be mappings")
        ignore: List[Dict[str, str]] = []
        for entry in data.get("ignore") or []:
            if not isinstance(entry, Mapping):
                raise ConfigurationError("ignore entries must be mappings of goos/goarch/goarm")
            ignore.append({str(key): str(val) for key, val in entry.items()})
        return cls(
            id=_optional_str(data, "id"),
            lang=_optional_str(data, "lang"),
            binary=_optional_str(data, "binary"),
            targets=normalize_string_list(data.get("targets"), field_name="targets"),
            env=normalize_env(data.get("env"), field_name="env"),
            hooks=BuildHooks.from_mapping(data.get("hooks")),
            proxy=ProxyConfig.from_mapping(data.get("proxy")),
            dir=_optional_str(data, "dir"),
            main=_optional_str(data, "main"),
            skip=_optional_bool(data, "skip"),
            flags=normalize_string_list(data.get("flags"), field_name="flags"),
            ldflags=normalize_string_list(data.get("ldflags"), field_name="ldflags"),
            goos=normalize_string_list(data.get("goos"), field_name="goos"),
            goarch=normalize_string_list(data.get("goarch"), field_name="goarch"),
            goarm=normalize_string_list(data.get("goarm"), field_name="goarm"),
            ignore=ignore,
        )

    def is_proxied(self) -> bool:
        return self.proxy is not None and bool(self.proxy.path)

    def copy(self, **changes: Any) -> "BuildDefinition":
        """Return a private deep copy, optionally with ``changes`` applied."""
        return replace(copy.deepcopy(self), **changes)


@dataclass(slots=True)
class ProjectConfig:
    project_name: str = ""
    dist: str = "dist"
    env: List[str] = field(default_factory=list)
    builds: List[BuildDefinition] = field(default_factory=list)
    build: BuildDefinition | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProjectConfig":
        builds_section = data.get("builds")
        builds: List[BuildDefinition] = []
        if builds_section is not None:
            if isinstance(builds_section, (str, bytes)) or not isinstance(builds_section, Sequence):
                raise ConfigurationError("builds must be a list of build definitions")
            builds = [BuildDefinition.from_mapping(entry) for entry in builds_section]

        single = data.get("build")
        return cls(
            project_name=_optional_str(data, "project_name"),
            dist=_optional_str(data, "dist") or "dist",
            env=normalize_string_list(data.get("env"), field_name="env"),
            builds=builds,
            build=BuildDefinition.from_mapping(single) if single is not None else None,
        )


def load_project_config(path: Path) -> ProjectConfig:
    config = ProjectConfig.from_mapping(load_config_file(path))
    if not config.project_name:
        # the directory holding the config names the project by default
        config.project_name = path.resolve().parent.name
    return config


__all__ = [
    "BuildDefinition",
    "BuildHooks",
    "CONFIG_FILENAMES",
    "ConfigurationError",
    "FILE_LOADERS",
    "Hook",
    "ProjectConfig",
    "ProxyConfig",
    "find_config",
    "load_config_file",
    "load_project_config",
    "normalize_env",
    "normalize_string_list",
]
