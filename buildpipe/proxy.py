"""Proxying: build an external module through a synthetic wrapper module.

The wrapper lives in ``<dist>/build_<id>/`` and holds a ``main.go`` that
blank-imports the proxied package, a ``go.mod`` requiring it at the requested
version and a copy of the project's ``go.sum``. ``go mod tidy`` reconciles the
lock before the build definition is pointed at the wrapper.
"""
from __future__ import annotations

from pathlib import Path
import logging
import shutil

from .config_loader import BuildDefinition
from .context import RunContext
from .template import Template

logger = logging.getLogger(__name__)

GO_MOD_TEMPLATE = """
module {{ .ProjectName }}

require {{ .Proxy }} {{ .Version }}

"""

MAIN_TEMPLATE = """
// +build main
package main

import _ "{{ .Proxy }}"
"""

LOCK_FILE = "go.sum"


class ProxyError(RuntimeError):
    """Raised when the proxy module cannot be prepared."""


def scratch_dir(ctx: RunContext, build: BuildDefinition) -> Path:
    return ctx.dist / f"build_{build.id}"


def proxy(ctx: RunContext, build: BuildDefinition) -> BuildDefinition:
    """Return ``build`` rewritten to compile the proxy module, or unchanged."""
    config = build.proxy
    if config is None or not build.is_proxied():
        return build

    template = Template.for_context(ctx)
    try:
        path = template.apply(config.path)
        version = template.apply(config.version)
    except ValueError as exc:
        raise ProxyError(f"failed to proxy module: {exc}") from exc

    logger.info("proxying %s@%s id=%s", path, version, build.id)
    template = template.with_extra_fields({"Proxy": path, "Version": version})
    try:
        mod = template.apply(GO_MOD_TEMPLATE)
        main = template.apply(MAIN_TEMPLATE)
    except ValueError as exc:
        raise ProxyError(f"failed to proxy module: {exc}") from exc

    directory = scratch_dir(ctx, build)
    logger.debug("creating needed files in %s", directory)
    steps = (
        ("create directory", lambda: directory.mkdir(parents=True, exist_ok=True)),
        ("write main.go", lambda: (directory / "main.go").write_text(main, encoding="utf-8")),
        ("write go.mod", lambda: (directory / "go.mod").write_text(mod, encoding="utf-8")),
        ("copy go.sum", lambda: shutil.copyfile(ctx.root / LOCK_FILE, directory / LOCK_FILE)),
    )
    for step, action in steps:
        try:
            action()
        except OSError as exc:
            raise ProxyError(f"failed to proxy module: {step}: {exc}") from exc

    logger.debug("tidying")
    try:
        ctx.runner.run(["go", "mod", "tidy"], cwd=directory, env=ctx.env, cancel=ctx.cancel_event)
    except RuntimeError as exc:
        raise ProxyError(f"failed to proxy module: go mod tidy: {exc}") from exc

    return build.copy(main=path, dir=str(directory))


__all__ = ["GO_MOD_TEMPLATE", "LOCK_FILE", "MAIN_TEMPLATE", "ProxyError", "proxy", "scratch_dir"]
