"""Sandboxed expression evaluation for sync-rule mappings and matching rules.

Expressions use Python expression syntax over two read-only accessors,
``mv["attribute"]`` and ``cs["attribute"]``, plus a fixed library of helper
functions (``Upper(cs["givenName"])``, ``IIF(...)`` and so on). The parsed tree
is validated against a whitelist of node types before it is compiled: no
attribute access, no comprehensions, no lambdas, no builtins, and calls only to
registered helpers. Validation happens at rule-save time via ``compile_expression``;
compiled expressions are cached by source text.
"""

from __future__ import annotations

import ast
import secrets
import string
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Final

from idsync.domain.errors import ExpressionEvaluationError, ExpressionSyntaxError

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Iterator
    from types import CodeType

    from idsync.domain.model import AttributeValueHolder


MAX_EXPRESSION_LENGTH: Final[int] = 4096
MAX_REPEATED_LENGTH: Final[int] = 4096
ACCESSOR_NAMES: Final[frozenset[str]] = frozenset({"mv", "cs"})
_ACCOUNT_DISABLE: Final[int] = 0x0002
_FILETIME_EPOCH: Final[datetime] = datetime(1601, 1, 1, tzinfo=UTC)
_FILETIME_NEVER: Final[int] = 0x7FFFFFFFFFFFFFFF


class AttributeAccessor:
    """Read-only, string-keyed view over an object's attribute values.

    Missing attributes read as ``None``; multi-valued attributes (or attributes
    holding several values) read as a tuple.
    """

    __slots__ = ("_holder", "_multi_valued")

    def __init__(
        self, holder: AttributeValueHolder | None, multi_valued: Collection[str] = ()
    ) -> None:
        self._holder = holder
        self._multi_valued = frozenset(multi_valued)

    def __getitem__(self, attribute: str) -> object:
        if self._holder is None:
            return None
        values = self._holder.raw_values(attribute)
        if attribute in self._multi_valued or len(values) > 1:
            return values
        return values[0] if values else None

    def __contains__(self, attribute: object) -> bool:
        if self._holder is None or not isinstance(attribute, str):
            return False
        return bool(self._holder.raw_values(attribute))

    def __iter__(self) -> Iterator[str]:
        if self._holder is None:
            return iter(())
        return iter(sorted(self._holder.attribute_names()))

    def get(self, attribute: str, default: object = None) -> object:
        value = self[attribute]
        return default if value is None else value


# Helper library ---------------------------------------------------------------


def _as_str(value: object) -> str | None:
    return None if value is None else str(value)


def _as_int(value: object) -> int:
    if value is None or isinstance(value, bool):
        return int(bool(value))
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return 0


def _capitalise(value: object) -> str | None:
    text = _as_str(value)
    if not text:
        return text
    result: list[str] = []
    capitalise_next = True
    for char in text:
        if char.isspace() or char in "-'":
            result.append(char)
            capitalise_next = True
        elif capitalise_next:
            result.append(char.upper())
            capitalise_next = False
        else:
            result.append(char.lower())
    return "".join(result)


def _left(value: object, count: int) -> str | None:
    text = _as_str(value)
    if text is None:
        return None
    return text[:count] if count > 0 else ""


def _right(value: object, count: int) -> str | None:
    text = _as_str(value)
    if text is None:
        return None
    return text[-count:] if count > 0 else ""


def _substring(value: object, start: int, length: int | None = None) -> str | None:
    text = _as_str(value)
    if text is None:
        return None
    start = max(start, 0)
    if length is None:
        return text[start:]
    if length <= 0:
        return ""
    return text[start : start + length]


def _replace(value: object, old: object, new: object) -> str | None:
    text = _as_str(value)
    if text is None:
        return None
    return text.replace(_as_str(old) or "", _as_str(new) or "")


def _starts_with(value: object, prefix: object) -> bool:
    text = _as_str(value)
    return text is not None and text.startswith(_as_str(prefix) or "")


def _ends_with(value: object, suffix: object) -> bool:
    text = _as_str(value)
    return text is not None and text.endswith(_as_str(suffix) or "")


def _contains(value: object, fragment: object) -> bool:
    text = _as_str(value)
    return text is not None and (_as_str(fragment) or "") in text


def _collection_contains(collection: object, value: object) -> bool:
    if collection is None:
        return False
    if isinstance(collection, str):
        return collection == _as_str(value)
    if isinstance(collection, (tuple, list, set, frozenset)):
        needle = _as_str(value)
        return any(_as_str(item) == needle for item in collection)
    return False


def _coalesce(*values: object) -> object:
    return next((v for v in values if v is not None), None)


def _iif(condition: object, when_true: object, when_false: object) -> object:
    return when_true if condition else when_false


def _now() -> datetime:
    return datetime.now(UTC)


def _today() -> datetime:
    return _now().replace(hour=0, minute=0, second=0, microsecond=0)


def _format_date(value: object, fmt: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise TypeError(f"FormatDate expects a datetime, got {type(value).__name__}")
    return value.strftime(fmt)


def _to_string(value: object) -> str | None:
    return _as_str(value)


def _to_int(value: object) -> int:
    return _as_int(value)


def _escape_dn(value: object) -> str | None:
    text = _as_str(value)
    if not text:
        return text
    escaped: list[str] = []
    last = len(text) - 1
    for index, char in enumerate(text):
        if char in ',+"\\<>;=':
            escaped.append("\\" + char)
        elif index == 0 and char in " #":
            escaped.append("\\" + char)
        elif index == last and char == " ":
            escaped.append("\\ ")
        elif char == "\r":
            escaped.append("\\0D")
        elif char == "\n":
            escaped.append("\\0A")
        else:
            escaped.append(char)
    return "".join(escaped)


def _set_bit(value: object, bit: int) -> int:
    return _as_int(value) | bit


def _clear_bit(value: object, bit: int) -> int:
    return _as_int(value) & ~bit


def _has_bit(value: object, bit: int) -> bool:
    return (_as_int(value) & bit) == bit


def _enable_user(value: object) -> int:
    return _clear_bit(value, _ACCOUNT_DISABLE)


def _disable_user(value: object) -> int:
    return _set_bit(value, _ACCOUNT_DISABLE)


def _to_file_time(value: object) -> int | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    delta = value.astimezone(UTC) - _FILETIME_EPOCH
    return (delta.days * 86_400 + delta.seconds) * 10_000_000 + delta.microseconds * 10


def _from_file_time(value: object) -> datetime | None:
    ticks = _as_int(value)
    if ticks <= 0 or ticks == _FILETIME_NEVER:
        return None
    return _FILETIME_EPOCH + timedelta(microseconds=ticks // 10)


def _random_password(length: int, extended_chars: bool) -> str:
    length = max(8, min(128, length))
    alphabet = string.ascii_letters + string.digits + ("!@#$%^&*" if extended_chars else "")
    return "".join(secrets.choice(alphabet) for _ in range(length))


FUNCTIONS: Final[dict[str, Callable[..., Any]]] = {
    "Trim": lambda v: None if v is None else str(v).strip(),
    "Upper": lambda v: None if v is None else str(v).upper(),
    "Lower": lambda v: None if v is None else str(v).lower(),
    "Capitalise": _capitalise,
    "Left": _left,
    "Right": _right,
    "Substring": _substring,
    "Replace": _replace,
    "StartsWith": _starts_with,
    "EndsWith": _ends_with,
    "Length": lambda v: 0 if v is None else len(str(v)),
    "IsNullOrEmpty": lambda v: v is None or str(v) == "",
    "IsNullOrWhitespace": lambda v: v is None or str(v).strip() == "",
    "Contains": _contains,
    "CollectionContains": _collection_contains,
    "Coalesce": _coalesce,
    "IIF": _iif,
    "Now": _now,
    "Today": _today,
    "FormatDate": _format_date,
    "ToFileTime": _to_file_time,
    "FromFileTime": _from_file_time,
    "ToString": _to_string,
    "ToInt": _to_int,
    "EscapeDN": _escape_dn,
    "RandomPassword": _random_password,
    "EnableUser": _enable_user,
    "DisableUser": _disable_user,
    "SetBit": _set_bit,
    "ClearBit": _clear_bit,
    "HasBit": _has_bit,
}


# Validation -------------------------------------------------------------------

_ALLOWED_NODES: Final[tuple[type[ast.AST], ...]] = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Subscript,
    ast.Call,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.FloorDiv,
    ast.Mod,
    ast.BitAnd,
    ast.BitOr,
    ast.Compare,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.Is,
    ast.IsNot,
    ast.IfExp,
    ast.Tuple,
    ast.List,
)


class _SandboxValidator(ast.NodeVisitor):
    """Reject any construct outside the expression whitelist."""

    def __init__(self, source: str) -> None:
        self.source = source

    def generic_visit(self, node: ast.AST) -> None:
        if not isinstance(node, _ALLOWED_NODES):
            self._reject(f"'{type(node).__name__}' is not allowed in expressions", node)
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id not in ACCESSOR_NAMES:
            self._reject(f"unknown name '{node.id}'", node)

    def visit_Call(self, node: ast.Call) -> None:
        if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
            name = node.func.id if isinstance(node.func, ast.Name) else ast.unparse(node.func)
            self._reject(f"unknown function '{name}'", node)
        if node.keywords:
            self._reject("keyword arguments are not supported", node)
        for argument in node.args:
            self.visit(argument)

    def visit_Subscript(self, node: ast.Subscript) -> None:
        if not (isinstance(node.value, ast.Name) and node.value.id in ACCESSOR_NAMES):
            self._reject("only mv[...] and cs[...] may be indexed", node)
        if not (isinstance(node.slice, ast.Constant) and isinstance(node.slice.value, str)):
            self._reject("attribute names must be string literals", node)

    def visit_Constant(self, node: ast.Constant) -> None:
        if not isinstance(node.value, (str, int, float, bool, type(None))):
            self._reject(f"unsupported literal {node.value!r}", node)

    def _reject(self, message: str, node: ast.AST) -> None:
        column = getattr(node, "col_offset", None)
        where = f" at column {column + 1}" if column is not None else ""
        raise ExpressionSyntaxError(f"{message}{where}", self.source)


def _multiply(left: Any, right: Any) -> Any:
    sequence, count = (right, left) if isinstance(left, int) else (left, right)
    if isinstance(sequence, str | tuple | list) and isinstance(count, int):
        if len(sequence) * count > MAX_REPEATED_LENGTH:
            raise ValueError(f"repetition longer than {MAX_REPEATED_LENGTH} items")
    return left * right


class _GuardMultiplication(ast.NodeTransformer):
    """Route every ``*`` through ``_multiply`` so repetition stays bounded."""

    def visit_BinOp(self, node: ast.BinOp) -> ast.AST:
        self.generic_visit(node)
        if not isinstance(node.op, ast.Mult):
            return node
        call = ast.Call(
            func=ast.Name(id="_multiply", ctx=ast.Load()),
            args=[node.left, node.right],
            keywords=[],
        )
        return ast.copy_location(call, node)


@dataclass(frozen=True, slots=True)
class CompiledExpression:
    source: str
    code: CodeType
    referenced_attributes: frozenset[tuple[str, str]]

    def evaluate(
        self,
        *,
        mv: AttributeAccessor | None = None,
        cs: AttributeAccessor | None = None,
    ) -> object:
        namespace: dict[str, object] = {
            "__builtins__": {},
            **FUNCTIONS,
            "_multiply": _multiply,
            "mv": mv or AttributeAccessor(None),
            "cs": cs or AttributeAccessor(None),
        }
        try:
            return eval(self.code, namespace)  # noqa: S307
        except Exception as exc:
            raise ExpressionEvaluationError(
                f"expression failed: {type(exc).__name__}: {exc}", self.source
            ) from exc


def _referenced_attributes(tree: ast.AST) -> frozenset[tuple[str, str]]:
    found: set[tuple[str, str]] = set()
    for node in ast.walk(tree):
        if (
            isinstance(node, ast.Subscript)
            and isinstance(node.value, ast.Name)
            and isinstance(node.slice, ast.Constant)
        ):
            found.add((node.value.id, str(node.slice.value)))
    return frozenset(found)


@lru_cache(maxsize=1024)
def compile_expression(source: str) -> CompiledExpression:
    """Parse, validate and compile ``source``; raise ``ExpressionSyntaxError`` if invalid."""

    text = source.strip()
    if not text:
        raise ExpressionSyntaxError("expression cannot be empty", source)
    if len(text) > MAX_EXPRESSION_LENGTH:
        raise ExpressionSyntaxError(
            f"expression longer than {MAX_EXPRESSION_LENGTH} characters", source
        )
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as exc:
        raise ExpressionSyntaxError(f"invalid syntax: {exc.msg}", source) from exc
    _SandboxValidator(source).visit(tree)
    guarded = ast.fix_missing_locations(_GuardMultiplication().visit(tree))
    code = compile(guarded, "<expression>", "eval")
    return CompiledExpression(
        source=source, code=code, referenced_attributes=_referenced_attributes(tree)
    )


def evaluate_expression(
    source: str,
    *,
    mv: AttributeAccessor | None = None,
    cs: AttributeAccessor | None = None,
) -> object:
    return compile_expression(source).evaluate(mv=mv, cs=cs)
