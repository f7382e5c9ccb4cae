"""Tests for the query lexer, parser and validator."""

import pytest

from td.errors import ParseError, QueryValidationError
from td.query import parse, parse_and_validate
from td.query.ast import (
    BinaryExpr, DateValue, FieldExpr, FunctionCall, ListValue, SpecialValue,
    TextSearch, UnaryExpr,
)
from td.query.lexer import TokenType, tokenize
from td.query.parser import MAX_QUERY_DEPTH


def _types(text: str) -> list[str]:
    return [t.type for t in tokenize(text)]


class TestLexer:
    def test_operators(self):
        assert _types("a != b") == [TokenType.IDENT, TokenType.NEQ, TokenType.IDENT, TokenType.EOF]
        assert _types("a !~ b")[1] == TokenType.NOT_CONTAINS
        assert _types("a <= 1")[1] == TokenType.LTE
        assert _types("a && b || c")[1::2] == [TokenType.AND, TokenType.OR, TokenType.EOF]

    def test_colon_is_equals(self):
        assert _types("status:open")[1] == TokenType.EQ

    def test_shell_escaped_operator(self):
        toks = tokenize(r"status \!= closed")
        assert toks[1].type == TokenType.NEQ

    def test_dash_is_not_unless_relative_date(self):
        assert _types("-bug")[0] == TokenType.NOT
        toks = tokenize("created > -7d")
        assert toks[2].type == TokenType.DATE
        assert toks[2].value == "-7d"

    def test_plus_requires_unit(self):
        assert tokenize("+3d")[0].type == TokenType.DATE
        with pytest.raises(ParseError):
            tokenize("+3")

    def test_dates_and_keywords(self):
        toks = tokenize("2024-01-15 today this_week")
        assert [t.type for t in toks[:3]] == [TokenType.DATE] * 3
        assert toks[1].value == "today"

    def test_strings_with_escapes(self):
        tok = tokenize(r'"say \"hi\"\n"')[0]
        assert tok.type == TokenType.STRING
        assert tok.value == 'say "hi"\n'

    def test_unterminated_string(self):
        with pytest.raises(ParseError) as exc:
            tokenize('"oops')
        assert "unterminated" in exc.value.message

    def test_at_me_and_unknown_special(self):
        assert tokenize("@me")[0].type == TokenType.AT_ME
        with pytest.raises(ParseError):
            tokenize("@you")

    def test_sort_clause(self):
        tok = tokenize("sort:-priority")[0]
        assert tok.type == TokenType.SORT
        assert tok.value == "-priority"
        with pytest.raises(ParseError):
            tokenize("sort:bogus")

    def test_keywords_case_insensitive(self):
        assert _types("a and b")[1] == TokenType.AND
        assert _types("null")[0] == TokenType.NULL

    def test_positions(self):
        toks = tokenize("a\n  = b")
        assert (toks[1].line, toks[1].column) == (2, 3)

    def test_unexpected_character(self):
        with pytest.raises(ParseError) as exc:
            tokenize("status = #")
        assert exc.value.column == 10


class TestParser:
    def test_empty_query(self):
        q = parse("   ")
        assert q.root is None
        assert q.sort is None

    def test_field_expr(self):
        q = parse("status = open")
        assert q.root == FieldExpr("status", "=", "open")

    def test_precedence(self):
        q = parse("a = 1 OR b = 2 AND c = 3")
        assert isinstance(q.root, BinaryExpr)
        assert q.root.op == "OR"
        assert q.root.right.op == "AND"

    def test_implicit_and(self):
        q = parse("status = open type = bug")
        assert q.root.op == "AND"

    def test_not_and_parens(self):
        q = parse("NOT (status = open OR status = closed)")
        assert isinstance(q.root, UnaryExpr)
        assert q.root.expr.op == "OR"

    def test_bare_word_is_text_search(self):
        q = parse('login "error page"')
        assert q.root.left == TextSearch("login")
        assert q.root.right == TextSearch("error page")

    def test_dotted_field(self):
        q = parse('log.message ~ "flaky"')
        assert q.root == FieldExpr("log.message", "~", "flaky")

    def test_function_call(self):
        q = parse("any(type, bug, feature)")
        assert q.root == FunctionCall("any", ["type", "bug", "feature"])
        assert parse("rework()").root == FunctionCall("rework", [])

    def test_list_value(self):
        q = parse("status = (open, in_progress)")
        assert q.root.value == ListValue(["open", "in_progress"])

    def test_values(self):
        assert parse("assignee = @me").root.value == SpecialValue("me")
        assert parse("description = EMPTY").root.value == SpecialValue("empty")
        assert parse("created > -7d").root.value == DateValue("-7d", relative=True)
        assert parse("created = 2024-01-15").root.value == DateValue("2024-01-15")
        assert parse("priority < 3").root.value == 3

    def test_invalid_absolute_date(self):
        with pytest.raises(ParseError):
            parse("created = 2024-13-45")

    def test_sort_clause_extracted(self):
        q = parse("status = open sort:-updated")
        assert q.sort.field == "updated_at"
        assert q.sort.descending
        assert isinstance(q.root, FieldExpr)

    def test_sort_only(self):
        q = parse("sort:priority")
        assert q.root is None
        assert q.sort.field == "priority"

    def test_multiple_sort_clauses(self):
        with pytest.raises(ParseError):
            parse("sort:priority sort:created")

    def test_missing_paren(self):
        with pytest.raises(ParseError) as exc:
            parse("(status = open")
        assert exc.value.expected == ")"

    def test_trailing_garbage(self):
        with pytest.raises(ParseError):
            parse("status = open )")

    def test_missing_value(self):
        with pytest.raises(ParseError):
            parse("status =")

    def test_depth_limit(self):
        deep = "(" * (MAX_QUERY_DEPTH + 1) + "a" + ")" * (MAX_QUERY_DEPTH + 1)
        with pytest.raises(ParseError) as exc:
            parse(deep)
        assert "depth" in exc.value.message
        ok = "(" * MAX_QUERY_DEPTH + "a" + ")" * MAX_QUERY_DEPTH
        assert parse(ok).root == TextSearch("a")


class TestValidation:
    def test_unknown_field(self):
        with pytest.raises(QueryValidationError) as exc:
            parse_and_validate("colour = red")
        assert "unknown field" in str(exc.value)

    def test_prefix_needs_sub_field(self):
        with pytest.raises(QueryValidationError):
            parse_and_validate('log ~ "x"')

    def test_unknown_sub_field(self):
        with pytest.raises(QueryValidationError):
            parse_and_validate('log.colour ~ "x"')

    def test_enum_normalized(self):
        q = parse_and_validate("status = OPEN")
        assert q.root.value == "open"
        q = parse_and_validate("priority <= 1")
        assert q.root.value == "P1"
        q = parse_and_validate("type = (BUG, feature)")
        assert q.root.value == ListValue(["bug", "feature"])

    def test_invalid_enum(self):
        with pytest.raises(QueryValidationError) as exc:
            parse_and_validate("status = done")
        assert "expected one of" in str(exc.value)

    def test_unknown_function(self):
        with pytest.raises(QueryValidationError):
            parse_and_validate("frobnicate(x)")

    def test_arity(self):
        with pytest.raises(QueryValidationError):
            parse_and_validate("child_of()")
        with pytest.raises(QueryValidationError):
            parse_and_validate("rework(x)")
        with pytest.raises(QueryValidationError):
            parse_and_validate("any(type)")

    def test_validation_error_is_parse_error(self):
        with pytest.raises(ParseError):
            parse_and_validate("nope = 1")

    def test_is_normalizes_status(self):
        q = parse_and_validate("is(IN_PROGRESS)")
        assert q.root.args == ["in_progress"]
