import pytest

from expr_ast import (Binary, Call, Identifier, Number, String, Unary, check_constant, identifiers,
                      parse_macro_replacement, render_constant, tokenize)


def test_tokenize_keeps_number_suffixes():
    assert [(t.kind, t.text) for t in tokenize("1ULL<<40")] == [
        ("number", "1ULL"), ("op", "<<"), ("number", "40"),
    ]
    assert [t.text for t in tokenize("1.5e-3f")] == ["1.5e-3f"]


def test_precedence():
    expr = parse_macro_replacement("1 + 2 * 3")
    assert expr == Binary(Number("1"), "+", Binary(Number("2"), "*", Number("3")))


def test_parentheses_and_unary():
    assert parse_macro_replacement("(-(1))") == Unary("-", Number("1"))


def test_adjacent_strings_concatenate():
    assert parse_macro_replacement('"ab" "cd"') == String('"abcd"')


@pytest.mark.parametrize("text", ["(int)5", "x y", "1 +", "a = 1", ""])
def test_not_an_expression(text):
    assert parse_macro_replacement(text) is None


def test_calls_are_parsed_but_rejected():
    expr = parse_macro_replacement("FOO(1, 2)")
    assert isinstance(expr, Call)
    ok, reason = check_constant(expr, ["FOO"])
    assert not ok
    assert "calls" in reason


def test_identifiers_must_be_known():
    expr = parse_macro_replacement("BASE + OFFSET")
    assert identifiers(expr) == ["BASE", "OFFSET"]
    assert check_constant(expr, ["BASE", "OFFSET"]) == (True, "")
    ok, reason = check_constant(expr, ["BASE"])
    assert not ok
    assert "'OFFSET'" in reason


def test_strings_do_not_mix_with_operators():
    ok, _ = check_constant(parse_macro_replacement('"a" + 1'), [])
    assert not ok
    assert check_constant(parse_macro_replacement('"a"'), []) == (True, "")


def test_render_literals():
    assert render_constant(parse_macro_replacement("16"), "int") == "16"
    assert render_constant(parse_macro_replacement("0xFFu"), "uint") == "0xFF"
    assert render_constant(parse_macro_replacement("010"), "int") == "8"
    assert render_constant(parse_macro_replacement("1.5f"), "float") == "1.5f"
    assert render_constant(parse_macro_replacement("2.0L"), "double") == "2.0"
    assert render_constant(parse_macro_replacement('"lib"'), "string") == '"lib"'
    assert render_constant(parse_macro_replacement("'a'"), "int") == "'a'"


def test_render_expressions():
    assert render_constant(parse_macro_replacement("1ULL << 40"), "ulong") == "unchecked((ulong)((1UL<<40)))"
    assert render_constant(parse_macro_replacement("(1 << 4)"), "int") == "unchecked((int)((1<<4)))"
    assert render_constant(parse_macro_replacement("-1"), "int") == "unchecked((int)(-1))"
    assert render_constant(parse_macro_replacement("1.0 / 3"), "double") == "(double)((1.0/3))"
    assert render_constant(parse_macro_replacement("BASE | 2"), "int") == "unchecked((int)((BASE|2)))"


def test_identifier_expression():
    assert parse_macro_replacement("FOO") == Identifier("FOO")
