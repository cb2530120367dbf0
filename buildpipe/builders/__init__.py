"""Language builders.

A builder knows how to fill in language-specific defaults for a build
definition and how to compile one target. The pipe looks builders up by the
definition's ``lang`` tag through a :class:`BuilderRegistry`.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, Protocol, runtime_checkable

from ..config_loader import BuildDefinition, ConfigurationError

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext
    from ..options import TargetOptions


@runtime_checkable
class Builder(Protocol):
    def with_defaults(self, build: BuildDefinition) -> BuildDefinition:
        ...

    def build(self, ctx: "RunContext", build: BuildDefinition, options: "TargetOptions") -> None:
        ...


class BuilderRegistry:
    def __init__(self) -> None:
        self._builders: Dict[str, Builder] = {}

    def register(self, lang: str, builder: Builder) -> None:
        if not isinstance(builder, Builder):
            raise TypeError(f"{builder!r} does not implement with_defaults() and build()")
        self._builders[lang] = builder

    def for_language(self, lang: str) -> Builder:
        try:
            return self._builders[lang]
        except KeyError:
            available = ", ".join(sorted(self._builders)) or "<none>"
            raise ConfigurationError(f"no builder for language '{lang}'. Available: {available}") from None

    def languages(self) -> Iterable[str]:
        return self._builders.keys()


def default_registry() -> BuilderRegistry:
    from .golang import GoBuilder

    registry = BuilderRegistry()
    registry.register("go", GoBuilder())
    return registry


__all__ = ["Builder", "BuilderRegistry", "default_registry"]
