# conditions.py
"""
Step conditions.

A condition is a pure predicate over the running step context: the instance's
matrix assignment, the pipeline/job environment and the outcomes of steps that
already ran in the same instance.

Conditions can be given as Python callables (DSL) or as expressions:

    matrix.os == 'windows-2019'
    matrix.python != '3.10' && env.CI == 'true'
    !(steps.setup.outcome == 'skipped') || always()

Expressions are parsed once, up front, so a typo fails the pipeline load
instead of the middle of a run.
"""
from __future__ import annotations

import re
from typing import Any, Callable, List, Optional, Tuple

from .errors import GraphError

Predicate = Callable[[Any], bool]

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<op>==|!=|&&|\|\||!|\(|\))
      | (?P<str>'(?:[^']|'')*'|"[^"]*")
      | (?P<num>-?\d+(?:\.\d+)?)
      | (?P<name>[A-Za-z_][A-Za-z0-9_\-]*(?:\.[A-Za-z_][A-Za-z0-9_\-]*)*)
    )
    """,
    re.VERBOSE,
)
_WRAPPED_RE = re.compile(r"^\s*\$\{\{(.*)\}\}\s*$", re.DOTALL)
_INTERPOLATE_RE = re.compile(r"\$\{\{(.*?)\}\}")

_LITERALS = {"true": True, "false": False, "null": None}
_FUNCTIONS = ("always", "success")


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ValueError(f"unexpected character at offset {pos}: {text[pos:pos + 10]!r}")
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: str) -> Optional[float]:
    try:
        return float(value.strip())
    except ValueError:
        return None


def _coerce_eq(left: Any, right: Any) -> bool:
    """
    Loose equality: a number matches a string that parses to the same number
    ("3.10" == 3.1), strings compare case-insensitively.
    """
    if _is_number(left) and isinstance(right, str):
        left, right = right, left
    if isinstance(left, str) and _is_number(right):
        number = _as_number(left)
        return number is not None and number == right
    if isinstance(left, str) and isinstance(right, str):
        return left.casefold() == right.casefold()
    return left == right


def _lookup(ref: str, ctx: Any) -> Any:
    head, _, rest = ref.partition(".")
    if head == "matrix":
        return (ctx.matrix or {}).get(rest)
    if head == "env":
        return (ctx.env or {}).get(rest)
    if head == "steps":
        step, _, attr = rest.partition(".")
        outcome = (ctx.outcomes or {}).get(step)
        if outcome is None or attr not in ("outcome", "conclusion"):
            return None
        return getattr(outcome, "value", outcome)
    return None


class _Parser:
    """Recursive-descent parser producing closures over the step context."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise ValueError("unexpected end of expression")
        self.pos += 1
        return tok

    def _expect(self, value: str) -> None:
        kind, tok = self._take()
        if kind != "op" or tok != value:
            raise ValueError(f"expected {value!r}, got {tok!r}")

    def parse(self) -> Callable[[Any], Any]:
        node = self._or()
        if self._peek() is not None:
            raise ValueError(f"unexpected token {self._peek()[1]!r}")
        return node

    def _or(self):
        left = self._and()
        while self._peek() == ("op", "||"):
            self._take()
            right = self._and()
            left = (lambda a, b: lambda ctx: a(ctx) or b(ctx))(left, right)
        return left

    def _and(self):
        left = self._unary()
        while self._peek() == ("op", "&&"):
            self._take()
            right = self._unary()
            left = (lambda a, b: lambda ctx: a(ctx) and b(ctx))(left, right)
        return left

    def _unary(self):
        if self._peek() == ("op", "!"):
            self._take()
            inner = self._unary()
            return lambda ctx: not inner(ctx)
        return self._compare()

    def _compare(self):
        left = self._primary()
        tok = self._peek()
        if tok in (("op", "=="), ("op", "!=")):
            self._take()
            right = self._primary()
            if tok[1] == "==":
                return lambda ctx: _coerce_eq(left(ctx), right(ctx))
            return lambda ctx: not _coerce_eq(left(ctx), right(ctx))
        return left

    def _primary(self):
        kind, tok = self._take()
        if kind == "op" and tok == "(":
            node = self._or()
            self._expect(")")
            return node
        if kind == "str":
            if tok.startswith("'"):
                value = tok[1:-1].replace("''", "'")
            else:
                value = tok[1:-1]
            return lambda ctx: value
        if kind == "num":
            number = float(tok) if "." in tok else int(tok)
            return lambda ctx: number
        if kind == "name":
            if tok in _LITERALS:
                literal = _LITERALS[tok]
                return lambda ctx: literal
            if tok in _FUNCTIONS:
                self._expect("(")
                self._expect(")")
                if tok == "always":
                    return lambda ctx: True
                return lambda ctx: all(o.ok for o in (ctx.outcomes or {}).values())
            if "." not in tok:
                raise ValueError(f"unknown name {tok!r}")
            return lambda ctx: _lookup(tok, ctx)
        raise ValueError(f"unexpected token {tok!r}")


def parse_expression(text: str) -> Callable[[Any], Any]:
    """Parse an expression into a callable returning its raw value."""
    m = _WRAPPED_RE.match(text)
    if m:
        text = m.group(1)
    if not text.strip():
        raise ValueError("empty expression")
    return _Parser(text).parse()


def compile_condition(condition: Any, *, where: str = "") -> Optional[Predicate]:
    """
    Turn a step condition into a predicate.

    None stays None (step always runs), callables pass through, strings are
    parsed. Raises GraphError for expressions that do not parse.
    """
    if condition is None:
        return None
    if callable(condition):
        return condition
    if isinstance(condition, bool):
        return lambda ctx: condition
    if not isinstance(condition, str):
        raise GraphError(
            kind="invalid_condition",
            message=f"condition must be a string or callable, got {type(condition).__name__}",
            details={"where": where} if where else {},
        )
    try:
        node = parse_expression(condition)
    except ValueError as e:
        details = {"expression": condition}
        if where:
            details["where"] = where
        raise GraphError(kind="invalid_condition", message=str(e), details=details) from e
    return lambda ctx: bool(node(ctx))


def interpolate(text: str, ctx: Any) -> str:
    """Replace `${{ expr }}` placeholders with their value in the step context."""

    def _sub(m: "re.Match[str]") -> str:
        value = parse_expression(m.group(1))(ctx)
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    return _INTERPOLATE_RE.sub(_sub, text)
