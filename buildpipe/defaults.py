"""Defaulting of build definitions before anything is built."""
from __future__ import annotations

from typing import Mapping
import logging
import os
import re

from .builders import BuilderRegistry
from .config_loader import BuildDefinition, ConfigurationError, ProjectConfig
from .ids import IdentifierRegistry

logger = logging.getLogger(__name__)

DEFAULT_LANG = "go"

_ENV_REFERENCE = re.compile(r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))")


def expand_env(value: str, environ: Mapping[str, str] | None = None) -> str:
    """Replace ``$VAR`` and ``${VAR}`` references; unset variables become empty."""
    source = os.environ if environ is None else environ

    def replacement(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        return source.get(name, "")

    return _ENV_REFERENCE.sub(replacement, value)


def build_with_defaults(
    build: BuildDefinition,
    *,
    project_name: str,
    registry: BuilderRegistry,
    environ: Mapping[str, str] | None = None,
) -> BuildDefinition:
    if not build.lang:
        build.lang = DEFAULT_LANG
    if not build.binary:
        build.binary = project_name
    if not build.id:
        build.id = project_name
    if not build.env_expanded:
        for key, value in build.env.items():
            build.env[key] = expand_env(value, environ)
        build.env_expanded = True
    return registry.for_language(build.lang).with_defaults(build)


def apply_defaults(
    config: ProjectConfig,
    registry: BuilderRegistry,
    *,
    environ: Mapping[str, str] | None = None,
) -> None:
    """Default every build of ``config`` in place and validate their IDs."""

    ids = IdentifierRegistry("builds")
    for index, build in enumerate(config.builds):
        build = build_with_defaults(
            build, project_name=config.project_name, registry=registry, environ=environ
        )
        config.builds[index] = build
        ids.inc(build.id)

    if not config.builds:
        if config.build is None:
            raise ConfigurationError("no builds configured: set either 'builds' or 'build'")
        build = build_with_defaults(
            config.build, project_name=config.project_name, registry=registry, environ=environ
        )
        config.builds = [build]
        ids.inc(build.id)

    ids.validate()

    for build in config.builds:
        if not build.id:
            raise ConfigurationError("build ID is empty: set 'id' or 'project_name'")
        if not build.skip and not build.targets:
            raise ConfigurationError(f"build '{build.id}' has no targets")
        logger.debug("defaulted build id=%s lang=%s targets=%s", build.id, build.lang, build.targets)


__all__ = ["DEFAULT_LANG", "apply_defaults", "build_with_defaults", "expand_env"]
