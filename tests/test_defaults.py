from __future__ import annotations

import copy
import unittest

from buildpipe.builders import BuilderRegistry
from buildpipe.builders.golang import GoBuilder
from buildpipe.config_loader import BuildDefinition, ConfigurationError, ProjectConfig
from buildpipe.defaults import apply_defaults, build_with_defaults, expand_env
from buildpipe.ids import IdentifierRegistry
from tests.support import FakeBuilder


def _registry() -> BuilderRegistry:
    registry = BuilderRegistry()
    registry.register("go", GoBuilder())
    registry.register("fake", FakeBuilder())
    return registry


class ExpandEnvTests(unittest.TestCase):
    def test_braced_and_bare_references(self) -> None:
        environ = {"HOME": "/home/me", "USER": "me"}
        self.assertEqual(expand_env("${HOME}/bin:$USER", environ), "/home/me/bin:me")

    def test_unknown_variables_expand_to_empty(self) -> None:
        self.assertEqual(expand_env("a${NOPE}b", {}), "ab")


class DefaultingTests(unittest.TestCase):
    def test_fills_unset_fields(self) -> None:
        build = build_with_defaults(
            BuildDefinition(env={"GOPATH": "${HOME}/go"}),
            project_name="demo",
            registry=_registry(),
            environ={"HOME": "/home/me"},
        )
        self.assertEqual(build.lang, "go")
        self.assertEqual(build.id, "demo")
        self.assertEqual(build.binary, "demo")
        self.assertEqual(build.env, {"GOPATH": "/home/me/go"})
        self.assertIn("linux_amd64", build.targets)

    def test_keeps_explicit_values(self) -> None:
        build = build_with_defaults(
            BuildDefinition(id="cli", lang="fake", binary="tool", targets=["native"]),
            project_name="demo",
            registry=_registry(),
        )
        self.assertEqual((build.id, build.lang, build.binary, build.targets), ("cli", "fake", "tool", ["native"]))

    def test_unknown_language(self) -> None:
        with self.assertRaises(ConfigurationError):
            build_with_defaults(BuildDefinition(lang="cobol"), project_name="demo", registry=_registry())

    def test_duplicate_ids_are_rejected(self) -> None:
        config = ProjectConfig(
            project_name="demo",
            builds=[BuildDefinition(lang="fake"), BuildDefinition(lang="fake")],
        )
        with self.assertRaises(ConfigurationError) as raised:
            apply_defaults(config, _registry())
        self.assertIn("found 2 builds with the ID 'demo'", str(raised.exception))

    def test_single_build_shorthand(self) -> None:
        config = ProjectConfig(project_name="demo", build=BuildDefinition(lang="fake"))
        apply_defaults(config, _registry())
        self.assertEqual(len(config.builds), 1)
        self.assertEqual(config.builds[0].id, "demo")
        self.assertEqual(config.builds[0].targets, ["linux_amd64", "darwin_arm64"])

    def test_missing_builds_is_an_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            apply_defaults(ProjectConfig(project_name="demo"), _registry())

    def test_defaulting_is_idempotent(self) -> None:
        config = ProjectConfig(
            project_name="demo",
            builds=[
                BuildDefinition(id="a", env={"X": "$HOME"}),
                BuildDefinition(id="b", lang="fake"),
            ],
        )
        apply_defaults(config, _registry(), environ={"HOME": "/h"})
        once = copy.deepcopy(config.builds)
        apply_defaults(config, _registry(), environ={"HOME": "/h"})
        self.assertEqual(config.builds, once)

    def test_expanded_values_are_not_expanded_again(self) -> None:
        environ = {"PRICE": "$AMOUNT", "AMOUNT": "42"}
        config = ProjectConfig(project_name="demo", builds=[BuildDefinition(id="a", env={"P": "${PRICE}"})])
        apply_defaults(config, _registry(), environ=environ)
        self.assertEqual(config.builds[0].env, {"P": "$AMOUNT"})
        apply_defaults(config, _registry(), environ=environ)
        self.assertEqual(config.builds[0].env, {"P": "$AMOUNT"})


class IdentifierRegistryTests(unittest.TestCase):
    def test_registries_are_independent(self) -> None:
        first = IdentifierRegistry("builds")
        second = IdentifierRegistry("builds")
        first.inc("a")
        second.inc("a")
        first.validate()
        second.validate()
        second.inc("a")
        with self.assertRaises(ConfigurationError):
            second.validate()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
