"""Recursive-descent parser and validator for the td query language.

Grammar, lowest precedence first::

    query   := or_expr sort?
    or_expr := and_expr (OR and_expr)*
    and_expr:= unary ((AND)? unary)*          adjacent atoms are ANDed
    unary   := NOT unary | primary
    primary := "(" or_expr ")" | call | field op value | IDENT | STRING
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from td.errors import ParseError, QueryValidationError
from td.models import Priority
from td.query.ast import (
    CROSS_ENTITY_FIELDS, ENUM_VALUES, KNOWN_FIELDS, KNOWN_FUNCTIONS,
    OP_AND, OP_NOT, OP_OR, RELATIVE_DATE_KEYWORDS, SORT_FIELD_TO_COLUMN,
    BinaryExpr, DateValue, FieldExpr, FunctionCall, ListValue, Node, Query,
    SortClause, SpecialValue, TextSearch, UnaryExpr,
)
from td.query.lexer import Token, TokenType, tokenize

MAX_QUERY_DEPTH = 50

_SPECIAL_TOKENS = {
    TokenType.AT_ME: "me",
    TokenType.EMPTY: "empty",
    TokenType.NULL: "null",
}


def is_relative_date(raw: str) -> bool:
    if raw in RELATIVE_DATE_KEYWORDS:
        return True
    return len(raw) >= 2 and (raw[0] in "+-" or raw[-1] in "dwmh")


def _error(message: str, tok: Token, expected: str = "") -> ParseError:
    return ParseError(message, pos=tok.pos, line=tok.line, column=tok.column,
                      expected=expected, token=str(tok))


class Parser:
    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    # --- Cursor ---

    def current(self) -> Token:
        if self.pos >= len(self.tokens):
            return Token(TokenType.EOF)
        return self.tokens[self.pos]

    def advance(self) -> Token:
        tok = self.current()
        if not self.at_end():
            self.pos += 1
        return tok

    def check(self, type_: str) -> bool:
        return self.current().type == type_

    def match(self, type_: str) -> bool:
        if self.check(type_):
            self.advance()
            return True
        return False

    def at_end(self) -> bool:
        return self.current().type == TokenType.EOF

    def _starts_expression(self) -> bool:
        return self.current().type in (
            TokenType.IDENT, TokenType.STRING, TokenType.LPAREN, TokenType.NOT,
        )

    # --- Grammar ---

    def parse_or(self) -> Node:
        left = self.parse_and()
        while self.match(TokenType.OR):
            left = BinaryExpr(OP_OR, left, self.parse_and())
        return left

    def parse_and(self) -> Node:
        left = self.parse_unary()
        while True:
            if self.match(TokenType.AND):
                left = BinaryExpr(OP_AND, left, self.parse_unary())
            elif not self.at_end() and self._starts_expression():
                left = BinaryExpr(OP_AND, left, self.parse_unary())
            else:
                return left

    def parse_unary(self) -> Node:
        if self.match(TokenType.NOT):
            return UnaryExpr(OP_NOT, self.parse_unary())
        return self.parse_primary()

    def parse_primary(self) -> Node:
        if self.match(TokenType.LPAREN):
            self.depth += 1
            if self.depth > MAX_QUERY_DEPTH:
                raise _error(
                    f"query exceeds maximum nesting depth of {MAX_QUERY_DEPTH}",
                    self.current(),
                )
            expr = self.parse_or()
            self.depth -= 1
            if not self.match(TokenType.RPAREN):
                raise _error("missing closing parenthesis", self.current(), ")")
            return expr

        if self.check(TokenType.IDENT):
            return self.parse_ident_expr()

        if self.check(TokenType.STRING):
            return TextSearch(self.advance().value)

        raise _error("unexpected token", self.current(),
                     "field, function, or quoted text")

    def parse_ident_expr(self) -> Node:
        name = self.advance().value
        if self.check(TokenType.LPAREN):
            return self.parse_function_call(name)

        field = name
        while self.match(TokenType.DOT):
            if not self.check(TokenType.IDENT):
                raise _error("expected field name after '.'", self.current(), "identifier")
            field += "." + self.advance().value

        if self.current().type not in TokenType.OPERATORS:
            # A bare word is a text search
            return TextSearch(field)
        op = self.advance().type
        return FieldExpr(field, op, self.parse_value())

    def parse_function_call(self, name: str) -> FunctionCall:
        self.advance()
        args: list[Any] = []
        if self.match(TokenType.RPAREN):
            return FunctionCall(name, args)
        while True:
            args.append(self.parse_function_arg())
            if not self.match(TokenType.COMMA):
                break
        if not self.match(TokenType.RPAREN):
            raise _error("missing closing parenthesis in function call", self.current(), ")")
        return FunctionCall(name, args)

    def parse_function_arg(self) -> Any:
        tok = self.current()
        if tok.type == TokenType.IDENT:
            self.advance()
            value = tok.value
            while self.check(TokenType.DOT):
                self.advance()
                if not self.check(TokenType.IDENT):
                    break
                value += "." + self.advance().value
            return value
        if tok.type in (TokenType.STRING, TokenType.NUMBER, TokenType.DATE) or \
                tok.type in _SPECIAL_TOKENS:
            return self._literal()
        raise _error("invalid function argument", tok,
                     "identifier, string, number, or special value")

    def parse_value(self) -> Any:
        tok = self.current()
        if tok.type == TokenType.LPAREN:
            return self.parse_list_value()
        if tok.type in (TokenType.IDENT, TokenType.STRING, TokenType.NUMBER,
                        TokenType.DATE) or tok.type in _SPECIAL_TOKENS:
            return self._literal()
        raise _error("expected value", tok,
                     "identifier, string, number, date, or special value")

    def parse_list_value(self) -> ListValue:
        self.advance()
        values: list[Any] = []
        if self.match(TokenType.RPAREN):
            return ListValue(values)
        while True:
            values.append(self.parse_value())
            if not self.match(TokenType.COMMA):
                break
        if not self.match(TokenType.RPAREN):
            raise _error("missing closing parenthesis in list", self.current(), ")")
        return ListValue(values)

    def _literal(self) -> Any:
        tok = self.advance()
        if tok.type in (TokenType.IDENT, TokenType.STRING):
            return tok.value
        if tok.type == TokenType.NUMBER:
            try:
                return int(tok.value)
            except ValueError:
                raise _error(f"invalid number: {tok.value}", tok, "valid integer") from None
        if tok.type == TokenType.DATE:
            relative = is_relative_date(tok.value)
            if not relative:
                try:
                    datetime.strptime(tok.value, "%Y-%m-%d")
                except ValueError:
                    raise _error(f"invalid date: {tok.value}", tok, "YYYY-MM-DD") from None
            return DateValue(tok.value, relative)
        return SpecialValue(_SPECIAL_TOKENS[tok.type])


def _parse_sort_token(value: str) -> SortClause:
    descending = value.startswith("-")
    name = value.lstrip("-")
    return SortClause(SORT_FIELD_TO_COLUMN.get(name, name), descending)


def parse(text: str) -> Query:
    """Parse query text. An empty query has no root and matches everything."""
    text = text.strip()
    if not text:
        return Query(raw=text)

    sort = None
    tokens = []
    for tok in tokenize(text):
        if tok.type == TokenType.SORT:
            if sort is not None:
                raise _error("multiple sort clauses not allowed", tok)
            sort = _parse_sort_token(tok.value)
        else:
            tokens.append(tok)

    parser = Parser(tokens)
    if parser.at_end():
        return Query(raw=text, sort=sort)

    root = parser.parse_or()
    if not parser.at_end():
        raise _error("unexpected token after expression", parser.current())
    return Query(root=root, raw=text, sort=sort)


# --- Validation ---

def _canonical(value: Any, allowed: tuple[str, ...]) -> Any:
    """Case-insensitive match against allowed; None when no match."""
    if isinstance(value, int) and allowed == ENUM_VALUES["priority"]:
        value = str(value)
    if not isinstance(value, str):
        return value
    for v in allowed:
        if v.lower() == value.lower():
            return v
    if allowed == ENUM_VALUES["priority"]:
        return Priority.normalize(value)
    return None


def _validate_field_expr(node: FieldExpr, errors: list[str]) -> None:
    parts = node.field.split(".")
    base = parts[0]
    if base not in KNOWN_FIELDS:
        errors.append(f"unknown field: {node.field}")
        return
    if len(parts) > 1:
        sub_fields = CROSS_ENTITY_FIELDS.get(base)
        if sub_fields is None:
            errors.append(f"unknown field: {node.field}")
            return
        if len(parts) > 2 or parts[1] not in sub_fields:
            errors.append(f"unknown field: {node.field}")
            return
    elif KNOWN_FIELDS[base] == "prefix":
        errors.append(f"field {base} requires a sub-field, e.g. {base}.{next(iter(CROSS_ENTITY_FIELDS[base]))}")
        return

    allowed = ENUM_VALUES.get(node.field)
    if allowed is None:
        return

    values = node.value.values if isinstance(node.value, ListValue) else [node.value]
    normalized = []
    for value in values:
        if isinstance(value, (SpecialValue, DateValue)):
            normalized.append(value)
            continue
        canonical = _canonical(value, allowed)
        if canonical is None:
            errors.append(
                f'invalid value for {node.field}: "{value}" '
                f"(expected one of: {', '.join(allowed)})"
            )
            return
        normalized.append(canonical)

    if isinstance(node.value, ListValue):
        node.value = ListValue(normalized)
    else:
        node.value = normalized[0]


def _validate_function_call(node: FunctionCall, errors: list[str]) -> None:
    signature = KNOWN_FUNCTIONS.get(node.name)
    if signature is None:
        errors.append(f"unknown function: {node.name}")
        return

    min_args, max_args, _ = signature
    argc = len(node.args)
    if argc < min_args:
        errors.append(
            f"function {node.name} requires at least {min_args} argument(s), got {argc}"
        )
    if max_args >= 0 and argc > max_args:
        errors.append(
            f"function {node.name} accepts at most {max_args} argument(s), got {argc}"
        )

    if node.name == "is" and node.args:
        canonical = _canonical(node.args[0], ENUM_VALUES["status"])
        if canonical is not None:
            node.args[0] = canonical
    elif node.name in ("any", "all", "none") and len(node.args) >= 2:
        allowed = ENUM_VALUES.get(str(node.args[0]))
        if allowed:
            for i in range(1, len(node.args)):
                canonical = _canonical(node.args[i], allowed)
                if canonical is not None:
                    node.args[i] = canonical


def validate_node(node: Node, errors: list[str]) -> None:
    if isinstance(node, BinaryExpr):
        validate_node(node.left, errors)
        validate_node(node.right, errors)
    elif isinstance(node, UnaryExpr):
        validate_node(node.expr, errors)
    elif isinstance(node, FieldExpr):
        _validate_field_expr(node, errors)
    elif isinstance(node, FunctionCall):
        _validate_function_call(node, errors)


def parse_and_validate(text: str) -> Query:
    """Parse and validate; raises ParseError or QueryValidationError."""
    query = parse(text)
    errors = query.validate()
    if errors:
        raise QueryValidationError(errors[0])
    return query
