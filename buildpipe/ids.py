"""Tracking of build identifiers within one defaulting pass."""
from __future__ import annotations

from typing import Dict

from .config_loader import ConfigurationError


class IdentifierRegistry:
    """Counts identifiers of one kind of entry and reports duplicates."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._counts: Dict[str, int] = {}

    def inc(self, identifier: str) -> None:
        self._counts[identifier] = self._counts.get(identifier, 0) + 1

    def validate(self) -> None:
        for identifier, count in self._counts.items():
            if count > 1:
                raise ConfigurationError(
                    f"found {count} {self.kind} with the ID '{identifier}', please fix your config"
                )


__all__ = ["IdentifierRegistry"]
