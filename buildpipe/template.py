"""Template and expression resolution for build configuration values.

Placeholders take the form ``{{ .Field }}`` (the leading dot is optional) and
may walk nested mappings, e.g. ``{{ .Env.HOME }}``. A value that is entirely
wrapped in ``[[ ... ]]`` is evaluated as a restricted Python expression after
placeholder substitution::

    >>> Template({"Os": "windows"}).apply("[[ {{ .Os }} == 'windows' ]]")
    'true'
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional
import ast
import operator
import re

if TYPE_CHECKING:  # pragma: no cover
    from .context import RunContext
    from .options import TargetOptions


_PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]*)\}\}")
_EXPRESSION_PATTERN = re.compile(r"^\s*\[\[(?P<expr>.*)\]\]\s*$", re.DOTALL)
_FIELD_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)*$")

_ALLOWED_BIN_OPS: dict[type[ast.AST], Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_ALLOWED_UNARY_OPS: dict[type[ast.AST], Any] = {
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_ALLOWED_COMPARISONS: dict[type[ast.AST], Any] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


@dataclass(frozen=True)
class _AllowedCallSpec:
    func: Callable[..., Any]
    min_args: int = 1
    max_args: Optional[int] = 1


_ALLOWED_CALLS: dict[str, _AllowedCallSpec] = {
    "str": _AllowedCallSpec(str),
    "int": _AllowedCallSpec(int),
    "lower": _AllowedCallSpec(lambda value: str(value).lower()),
    "upper": _AllowedCallSpec(lambda value: str(value).upper()),
    "replace": _AllowedCallSpec(lambda value, old, new: str(value).replace(old, new), 3, 3),
    "trim_prefix": _AllowedCallSpec(lambda value, prefix: str(value).removeprefix(prefix), 2, 2),
}


class TemplateError(ValueError):
    """Raised when template resolution fails."""


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class TemplateResolver:
    """Resolves placeholders and expressions against a flat field mapping."""

    def __init__(self, fields: Mapping[str, Any]) -> None:
        self.fields = fields

    def resolve(self, value: str) -> str:
        if not value:
            return value
        expression_match = _EXPRESSION_PATTERN.match(value)
        if expression_match:
            expr = self._substitute(expression_match.group("expr"), for_expression=True)
            return _format_value(self._evaluate_expression(expr.strip()))
        return self._substitute(value, for_expression=False)

    def _substitute(self, text: str, *, for_expression: bool) -> str:
        def replacement(match: re.Match[str]) -> str:
            result = self._lookup(match.group(1))
            if for_expression:
                return repr(result)
            return _format_value(result)

        substituted = _PLACEHOLDER_PATTERN.sub(replacement, text)
        leftover = _PLACEHOLDER_PATTERN.sub("", text)
        if "{{" in leftover or "}}" in leftover:
            raise TemplateError(f"Malformed placeholder in template '{text}'")
        return substituted

    def _lookup(self, raw_path: str) -> Any:
        path = raw_path.strip().removeprefix(".")
        if not _FIELD_PATTERN.match(path):
            raise TemplateError(f"Malformed placeholder '{{{{{raw_path}}}}}'")
        current: Any = self.fields
        for part in path.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
                continue
            raise TemplateError(f"Cannot resolve '{path}' in template context")
        return current

    def _evaluate_expression(self, expression: str) -> Any:
        try:
            node = ast.parse(expression, mode="eval")
        except SyntaxError as exc:
            raise TemplateError(f"Invalid expression syntax: {exc.msg}") from exc
        return _ExpressionEvaluator().visit(node)


class _ExpressionEvaluator(ast.NodeVisitor):
    def visit(self, node: ast.AST) -> Any:  # type: ignore[override]
        if isinstance(node, ast.Expression):
            return self.visit(node.body)
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in {"True", "False", "None"}:
                return {"True": True, "False": False, "None": None}[node.id]
            raise TemplateError(f"Name '{node.id}' is not allowed in expressions")
        if isinstance(node, ast.BinOp):
            op_type = type(node.op)
            if op_type not in _ALLOWED_BIN_OPS:
                raise TemplateError(f"Operator '{op_type.__name__}' is not allowed")
            return _ALLOWED_BIN_OPS[op_type](self.visit(node.left), self.visit(node.right))
        if isinstance(node, ast.UnaryOp):
            op_type = type(node.op)
            if op_type not in _ALLOWED_UNARY_OPS:
                raise TemplateError(f"Unary operator '{op_type.__name__}' is not allowed")
            return _ALLOWED_UNARY_OPS[op_type](self.visit(node.operand))
        if isinstance(node, ast.BoolOp):
            values = [bool(self.visit(value)) for value in node.values]
            return all(values) if isinstance(node.op, ast.And) else any(values)
        if isinstance(node, ast.Compare):
            left = self.visit(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                op_type = type(op)
                if op_type not in _ALLOWED_COMPARISONS:
                    raise TemplateError(f"Comparison operator '{op_type.__name__}' is not allowed")
                right = self.visit(comparator)
                if not _ALLOWED_COMPARISONS[op_type](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.IfExp):
            return self.visit(node.body if self.visit(node.test) else node.orelse)
        if isinstance(node, (ast.List, ast.Tuple)):
            return [self.visit(element) for element in node.elts]
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name):
                raise TemplateError("Only simple function names are allowed in expressions")
            func_name = node.func.id
            if func_name not in _ALLOWED_CALLS:
                raise TemplateError(f"Function '{func_name}' is not allowed in expressions")
            if node.keywords:
                raise TemplateError(f"Keyword arguments are not allowed for function '{func_name}'")
            spec = _ALLOWED_CALLS[func_name]
            args = [self.visit(arg) for arg in node.args]
            if len(args) < spec.min_args or (spec.max_args is not None and len(args) > spec.max_args):
                raise TemplateError(f"Function '{func_name}' called with {len(args)} arguments")
            try:
                return spec.func(*args)
            except (TypeError, ValueError) as exc:
                raise TemplateError(f"Function '{func_name}' failed: {exc}") from exc
        raise TemplateError(f"Expression node '{type(node).__name__}' is not allowed")


class Template:
    """Immutable field set with fluent builders, one per resolution site."""

    def __init__(self, fields: Mapping[str, Any]) -> None:
        self._fields: Dict[str, Any] = dict(fields)

    @classmethod
    def for_context(cls, ctx: "RunContext") -> "Template":
        return cls(ctx.template_fields())

    @property
    def fields(self) -> Mapping[str, Any]:
        return self._fields

    def with_build_options(self, options: "TargetOptions") -> "Template":
        return self.with_extra_fields(
            {
                "Target": options.target,
                "Os": options.os,
                "Arch": options.arch,
                "Ext": options.ext,
                "Name": options.name,
                "Path": options.path,
            }
        )

    def with_env(self, env: Mapping[str, str]) -> "Template":
        merged = dict(self._fields.get("Env") or {})
        merged.update(env)
        return self.with_extra_fields({"Env": merged})

    def with_extra_fields(self, extra: Mapping[str, Any]) -> "Template":
        fields = dict(self._fields)
        fields.update(extra)
        return Template(fields)

    def apply(self, value: str) -> str:
        return TemplateResolver(self._fields).resolve(value)


__all__ = ["Template", "TemplateError", "TemplateResolver"]
