"""Per-target build options."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
import logging
import os

from .config_loader import BuildDefinition
from .context import RunContext
from .template import Template

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TargetOptions:
    target: str
    os: str
    arch: str
    ext: str
    name: str = ""
    path: str = ""


def split_target(target: str) -> tuple[str, str]:
    """Split ``os_arch`` at the first underscore; other identifiers give empty parts."""
    goos, sep, goarch = target.partition("_")
    if not sep:
        return "", ""
    return goos, goarch


def ext_for(target: str, flags: Sequence[str]) -> str:
    if "windows" in target:
        for flag in flags:
            if flag == "-buildmode=c-shared":
                return ".dll"
            if flag == "-buildmode=c-archive":
                return ".lib"
        return ".exe"
    if target == "js_wasm":
        return ".wasm"
    return ""


def options_for_target(ctx: RunContext, build: BuildDefinition, target: str) -> TargetOptions:
    goos, goarch = split_target(target)
    ext = ext_for(target, build.flags)
    partial = TargetOptions(target=target, os=goos, arch=goarch, ext=ext)

    binary = Template.for_context(ctx).with_build_options(partial).apply(build.binary)
    name = binary + ext
    path = os.path.abspath(os.path.join(ctx.dist, f"{build.id}_{target}", name))

    logger.info("building binary=%s", path)
    return TargetOptions(target=target, os=goos, arch=goarch, ext=ext, name=name, path=path)


__all__ = ["TargetOptions", "ext_for", "options_for_target", "split_target"]
