from __future__ import annotations

from datetime import UTC, datetime

import pytest

from idsync.domain.errors import ExpressionEvaluationError, ExpressionSyntaxError
from idsync.domain.model import AttributeDataType, MetaverseObject
from idsync.domain.sync.expressions import (
    AttributeAccessor,
    compile_expression,
    evaluate_expression,
)
from tests.helpers.identity import make_hr_cso, make_hr_system, make_person


def _cs(**values: object) -> AttributeAccessor:
    return AttributeAccessor(make_hr_cso(make_hr_system(), "42", **values), multi_valued={"groups"})


@pytest.mark.parametrize(
    ("source", "expected"),
    [
        ('Trim("  ada  ")', "ada"),
        ('Upper("ada")', "ADA"),
        ('Capitalise("ada lovelace")', "Ada Lovelace"),
        ('Capitalise("o\'neil smith-jones")', "O'Neil Smith-Jones"),
        ('Left("lovelace", 4)', "love"),
        ('Right("lovelace", 4)', "lace"),
        ('Substring("lovelace", 2, 3)', "vel"),
        ('Replace("a.b.c", ".", "-")', "a-b-c"),
        ('Length("ada")', 3),
        ("IsNullOrEmpty(None)", True),
        ('IsNullOrWhitespace("  ")', True),
        ('Coalesce(None, "", "x")', ""),
        ('IIF(1 > 2, "yes", "no")', "no"),
        ('ToInt("12")', 12),
        ('ToInt("twelve")', 0),
        ("ToString(12)", "12"),
        ('EscapeDN("Smith, John")', "Smith\\, John"),
        ('EscapeDN(" #lead")', "\\ #lead"),
        ("DisableUser(512)", 514),
        ("EnableUser(514)", 512),
        ("SetBit(0, 4)", 4),
        ("ClearBit(7, 2)", 5),
        ("HasBit(6, 2)", True),
        ("FromFileTime(0)", None),
    ],
)
def test_helper_functions(source: str, expected: object) -> None:
    assert evaluate_expression(source) == expected


def test_file_time_round_trip() -> None:
    moment = datetime(2024, 5, 1, 12, 30, tzinfo=UTC)
    mv = AttributeAccessor(_person_with_start(moment))

    ticks = evaluate_expression('ToFileTime(mv["start"])', mv=mv)

    assert ticks == 133590402000000000
    assert evaluate_expression(f"FromFileTime({ticks})") == moment


def _person_with_start(moment: datetime) -> MetaverseObject:
    mvo = make_person("42")
    mvo.set_values("start", AttributeDataType.DATETIME, [moment])
    return mvo


def test_format_date_formats_datetimes() -> None:
    mv = AttributeAccessor(_person_with_start(datetime(2024, 5, 1, tzinfo=UTC)))

    assert evaluate_expression('FormatDate(mv["start"], "%Y%m%d")', mv=mv) == "20240501"


def test_format_date_rejects_text() -> None:
    with pytest.raises(ExpressionEvaluationError, match="TypeError"):
        evaluate_expression('FormatDate("2024-05-01", "%Y")')


def test_random_password_is_clamped_to_minimum_length() -> None:
    password = evaluate_expression("RandomPassword(3, False)")

    assert isinstance(password, str)
    assert len(password) == 8
    assert password.isalnum()


def test_accessor_reads_missing_attribute_as_none() -> None:
    cs = _cs(firstName="Ada")

    assert evaluate_expression('cs["firstName"]', cs=cs) == "Ada"
    assert evaluate_expression('cs["middleName"]', cs=cs) is None
    assert evaluate_expression('Coalesce(cs["middleName"], "-")', cs=cs) == "-"
    assert evaluate_expression('mv["anything"]') is None


def test_accessor_reads_multi_valued_attribute_as_tuple() -> None:
    cs = _cs(groups=["staff"])

    assert evaluate_expression('cs["groups"]', cs=cs) == ("staff",)
    assert evaluate_expression('CollectionContains(cs["groups"], "staff")', cs=cs) is True
    assert evaluate_expression('CollectionContains(cs["groups"], "admin")', cs=cs) is False


def test_expression_combines_attributes() -> None:
    cs = _cs(firstName="ada", lastName="lovelace")

    result = evaluate_expression('Capitalise(cs["firstName"] + " " + cs["lastName"])', cs=cs)

    assert result == "Ada Lovelace"


@pytest.mark.parametrize(
    "source",
    [
        "",
        "cs[",
        "open('/etc/passwd')",
        "__import__('os')",
        'cs.get("firstName")',
        '[x for x in cs["groups"]]',
        "lambda: 1",
        "value",
        'Upper(value="x")',
        "cs[0]",
        'Upper("x")["y"]',
        'b"bytes"',
    ],
)
def test_sandbox_rejects_unsafe_constructs(source: str) -> None:
    with pytest.raises(ExpressionSyntaxError):
        compile_expression(source)


def test_runtime_failure_is_wrapped() -> None:
    cs = _cs(firstName="Ada")

    with pytest.raises(ExpressionEvaluationError) as excinfo:
        evaluate_expression('cs["firstName"] + 1', cs=cs)

    assert excinfo.value.expression == 'cs["firstName"] + 1'


def test_compiled_expression_lists_referenced_attributes() -> None:
    compiled = compile_expression('Lower("u" + mv["employeeId"]) + cs["suffix"]')

    assert compiled.referenced_attributes == {("mv", "employeeId"), ("cs", "suffix")}
    assert compile_expression('Lower("u" + mv["employeeId"]) + cs["suffix"]') is compiled


def test_multiplication_keeps_working_within_bounds() -> None:
    assert evaluate_expression("6 * 7") == 42
    assert evaluate_expression('"ab" * 3') == "ababab"
    assert evaluate_expression('2 * cs["firstName"]', cs=_cs(firstName="Ada")) == "AdaAda"


@pytest.mark.parametrize(
    "source", ['"a" * 2000000000', 'cs["firstName"] * 5000', '5000 * cs["firstName"]']
)
def test_oversized_repetition_is_refused(source: str) -> None:
    with pytest.raises(ExpressionEvaluationError, match="repetition longer than"):
        evaluate_expression(source, cs=_cs(firstName="Ada"))


def test_internal_helpers_are_not_callable_from_expressions() -> None:
    with pytest.raises(ExpressionSyntaxError, match="unknown function '_multiply'"):
        compile_expression('_multiply("a", 3)')
