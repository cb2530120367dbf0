from __future__ import annotations

import unittest

from buildpipe.options import TargetOptions
from buildpipe.template import Template, TemplateError, TemplateResolver


class TemplateResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.fields = {
            "ProjectName": "demo",
            "Version": "1.2.3",
            "Os": "linux",
            "Env": {"CC": "clang", "JOBS": "4"},
        }
        self.resolver = TemplateResolver(self.fields)

    def test_resolve_placeholder(self) -> None:
        self.assertEqual(self.resolver.resolve("{{ .ProjectName }}-{{ .Version }}"), "demo-1.2.3")

    def test_leading_dot_is_optional(self) -> None:
        self.assertEqual(self.resolver.resolve("{{ProjectName}}"), "demo")

    def test_nested_env_lookup(self) -> None:
        self.assertEqual(self.resolver.resolve("cc={{ .Env.CC }}"), "cc=clang")

    def test_plain_text_untouched(self) -> None:
        self.assertEqual(self.resolver.resolve("no placeholders here"), "no placeholders here")
        self.assertEqual(self.resolver.resolve(""), "")

    def test_resolve_expression(self) -> None:
        self.assertEqual(self.resolver.resolve("[[ int({{ .Env.JOBS }}) * 2 ]]"), "8")

    def test_condition_expression(self) -> None:
        self.assertEqual(self.resolver.resolve("[[ {{ .Os }} == 'linux' ]]"), "true")
        self.assertEqual(self.resolver.resolve("[[ 'x' if {{ .Os }} == 'windows' else 'y' ]]"), "y")

    def test_unknown_field(self) -> None:
        with self.assertRaises(TemplateError):
            self.resolver.resolve("{{ .Missing }}")

    def test_malformed_placeholder(self) -> None:
        with self.assertRaises(TemplateError):
            self.resolver.resolve("{{ .ProjectName ")
        with self.assertRaises(TemplateError):
            self.resolver.resolve("{{ .Project Name }}")

    def test_disallowed_expression(self) -> None:
        with self.assertRaises(TemplateError):
            self.resolver.resolve("[[ __import__('os') ]]")


class TemplateBuilderTests(unittest.TestCase):
    def test_with_build_options_and_env(self) -> None:
        options = TargetOptions(target="linux_amd64", os="linux", arch="amd64", ext="", name="demo", path="/d/demo")
        template = (
            Template({"ProjectName": "demo", "Env": {"A": "1"}})
            .with_build_options(options)
            .with_env({"B": "2"})
        )
        self.assertEqual(template.apply("{{ .Target }}/{{ .Name }} {{ .Env.A }}{{ .Env.B }}"), "linux_amd64/demo 12")

    def test_builders_do_not_mutate_source(self) -> None:
        base = Template({"Env": {"A": "1"}})
        base.with_env({"A": "2"}).with_extra_fields({"Proxy": "x"})
        self.assertEqual(base.apply("{{ .Env.A }}"), "1")
        with self.assertRaises(TemplateError):
            base.apply("{{ .Proxy }}")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
