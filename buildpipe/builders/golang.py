"""Go builder: target matrix defaults and ``go build`` invocation."""
from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Mapping
import logging

from ..config_loader import BuildDefinition
from ..context import Artifact
from ..template import Template

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext
    from ..options import TargetOptions

logger = logging.getLogger(__name__)

DEFAULT_GOOS = ["linux", "darwin", "windows"]
DEFAULT_GOARCH = ["amd64", "arm64", "386"]
DEFAULT_GOARM = ["6"]
DEFAULT_LDFLAGS = [
    "-s -w -X main.version={{.Version}} -X main.commit={{.Commit}} "
    "-X main.date={{.Date}} -X main.builtBy=buildpipe"
]

# Subset of `go tool dist list`.
_VALID_TARGETS = {
    "aix_ppc64",
    "android_386", "android_amd64", "android_arm", "android_arm64",
    "darwin_amd64", "darwin_arm64",
    "dragonfly_amd64",
    "freebsd_386", "freebsd_amd64", "freebsd_arm", "freebsd_arm64",
    "illumos_amd64",
    "js_wasm",
    "linux_386", "linux_amd64", "linux_arm", "linux_arm64", "linux_loong64",
    "linux_mips", "linux_mips64", "linux_mips64le", "linux_mipsle",
    "linux_ppc64", "linux_ppc64le", "linux_riscv64", "linux_s390x",
    "netbsd_386", "netbsd_amd64", "netbsd_arm", "netbsd_arm64",
    "openbsd_386", "openbsd_amd64", "openbsd_arm", "openbsd_arm64",
    "plan9_386", "plan9_amd64", "plan9_arm",
    "solaris_amd64",
    "wasip1_wasm",
    "windows_386", "windows_amd64", "windows_arm", "windows_arm64",
}


def _ignored(ignore: List[Mapping[str, str]], goos: str, goarch: str, goarm: str) -> bool:
    for rule in ignore:
        if rule.get("goos", goos) != goos:
            continue
        if rule.get("goarch", goarch) != goarch:
            continue
        if goarm and rule.get("goarm", goarm) != goarm:
            continue
        return True
    return False


def matrix(build: BuildDefinition) -> List[str]:
    """Expand goos x goarch (x goarm) into target identifiers."""
    targets: List[str] = []
    for goos in build.goos:
        for goarch in build.goarch:
            if f"{goos}_{goarch}" not in _VALID_TARGETS:
                logger.debug("skipping invalid target %s_%s", goos, goarch)
                continue
            if goarch == "arm":
                for goarm in build.goarm:
                    if not _ignored(build.ignore, goos, goarch, goarm):
                        targets.append(f"{goos}_{goarch}_{goarm}")
                continue
            if not _ignored(build.ignore, goos, goarch, ""):
                targets.append(f"{goos}_{goarch}")
    return targets


class GoBuilder:
    def with_defaults(self, build: BuildDefinition) -> BuildDefinition:
        if not build.dir:
            build.dir = "."
        if not build.main:
            build.main = "."
        if not build.ldflags:
            build.ldflags = list(DEFAULT_LDFLAGS)
        if not build.goos:
            build.goos = list(DEFAULT_GOOS)
        if not build.goarch:
            build.goarch = list(DEFAULT_GOARCH)
        if not build.goarm:
            build.goarm = list(DEFAULT_GOARM)
        if not build.targets:
            build.targets = matrix(build)
        return build

    def build(self, ctx: "RunContext", build: BuildDefinition, options: "TargetOptions") -> None:
        template = Template.for_context(ctx).with_build_options(options)

        env: Dict[str, str] = dict(ctx.env)
        for key, value in build.env.items():
            env[key] = template.with_env(env).apply(value)
        goarch, _, goarm = options.arch.partition("_")
        env["GOOS"] = options.os
        env["GOARCH"] = goarch
        if goarm:
            env["GOARM"] = goarm

        command = ["go", "build"]
        command.extend(template.apply(flag) for flag in build.flags)
        if build.ldflags:
            ldflags = " ".join(template.apply(flag) for flag in build.ldflags)
            command.append(f"-ldflags={ldflags}")
        command.extend(["-o", options.path, build.main])

        ctx.runner.run(command, cwd=ctx.resolve_path(build.dir), env=env, cancel=ctx.cancel_event)
        ctx.artifacts.add(
            Artifact(
                name=options.name,
                path=options.path,
                build_id=build.id,
                target=options.target,
                os=options.os,
                arch=options.arch,
            )
        )


__all__ = ["DEFAULT_GOARCH", "DEFAULT_GOARM", "DEFAULT_GOOS", "DEFAULT_LDFLAGS", "GoBuilder", "matrix"]
