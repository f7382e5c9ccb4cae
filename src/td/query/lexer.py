"""Tokenizer for the td query language."""

from __future__ import annotations

from dataclasses import dataclass

from td.errors import ParseError
from td.query.ast import RELATIVE_DATE_KEYWORDS, SORT_FIELD_TO_COLUMN


class TokenType:
    EOF = "EOF"
    ERROR = "ERROR"

    IDENT = "IDENT"
    STRING = "STRING"
    NUMBER = "NUMBER"
    DATE = "DATE"

    EQ = "="
    NEQ = "!="
    LT = "<"
    GT = ">"
    LTE = "<="
    GTE = ">="
    CONTAINS = "~"
    NOT_CONTAINS = "!~"

    AND = "AND"
    OR = "OR"
    NOT = "NOT"

    LPAREN = "("
    RPAREN = ")"
    COMMA = ","
    DOT = "."

    AT_ME = "@me"
    EMPTY = "EMPTY"
    NULL = "NULL"

    SORT = "SORT"

    OPERATORS = (EQ, NEQ, LT, GT, LTE, GTE, CONTAINS, NOT_CONTAINS)


@dataclass
class Token:
    type: str
    value: str = ""
    pos: int = 0
    line: int = 1
    column: int = 1

    def __str__(self) -> str:
        if self.value:
            return f'{self.type}("{self.value}")'
        return self.type


_SINGLE = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    ",": TokenType.COMMA,
    ".": TokenType.DOT,
    "~": TokenType.CONTAINS,
    "=": TokenType.EQ,
}

_DOUBLE = {
    "!=": TokenType.NEQ,
    "!~": TokenType.NOT_CONTAINS,
    "<=": TokenType.LTE,
    ">=": TokenType.GTE,
    "&&": TokenType.AND,
    "||": TokenType.OR,
}

_KEYWORDS = {
    "AND": TokenType.AND,
    "OR": TokenType.OR,
    "NOT": TokenType.NOT,
    "EMPTY": TokenType.EMPTY,
    "NULL": TokenType.NULL,
}

_ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", '"': '"', "'": "'"}

_DATE_UNITS = "dwmh"


def is_ident_start(ch: str) -> bool:
    return ch.isascii() and (ch.isalpha() or ch == "_")


def is_ident_char(ch: str) -> bool:
    return is_ident_start(ch) or (ch.isascii() and ch.isdigit()) or ch == "-"


class Lexer:
    """Turns query text into tokens. Positions are 0-based, lines/columns 1-based."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> list[Token]:
        """All tokens through EOF. Raises ParseError on the first bad token."""
        tokens = []
        while True:
            tok = self.next_token()
            if tok.type == TokenType.ERROR:
                raise ParseError(tok.value, pos=tok.pos, line=tok.line, column=tok.column)
            tokens.append(tok)
            if tok.type == TokenType.EOF:
                return tokens

    # --- Cursor ---

    def _peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.text[i] if i < len(self.text) else ""

    def _advance(self) -> str:
        ch = self._peek()
        if ch:
            if ch == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
            self.pos += 1
        return ch

    def _skip_whitespace(self) -> None:
        while self._peek() and self._peek().isspace():
            self._advance()

    def _token(self, type_: str, value: str, start: tuple[int, int, int]) -> Token:
        pos, line, col = start
        return Token(type_, value, pos, line, col)

    # --- Scanning ---

    def next_token(self) -> Token:
        self._skip_whitespace()
        start = (self.pos, self.line, self.column)
        if self.pos >= len(self.text):
            return self._token(TokenType.EOF, "", start)

        # Shell-escaped operator characters, e.g. \! from agents avoiding history expansion
        if self._peek() == "\\" and self._peek(1) in ("!", "<", ">", "=", "~"):
            self._advance()
            start = (self.pos, self.line, self.column)

        ch = self._peek()

        if ch in _SINGLE:
            self._advance()
            return self._token(_SINGLE[ch], ch, start)

        two = ch + self._peek(1)
        if two in _DOUBLE:
            self._advance()
            self._advance()
            return self._token(_DOUBLE[two], two, start)

        if ch == "<":
            self._advance()
            return self._token(TokenType.LT, ch, start)
        if ch == ">":
            self._advance()
            return self._token(TokenType.GT, ch, start)
        if ch == "!":
            self._advance()
            return self._token(TokenType.NOT, ch, start)
        if ch == ":":
            # field:value is field = value
            self._advance()
            return self._token(TokenType.EQ, ch, start)

        if ch in ("'", '"'):
            return self._scan_string(ch, start)
        if ch == "@":
            return self._scan_at_value(start)
        if ch == "-":
            if self._peek(1).isdigit():
                return self._scan_relative_date("-", start)
            self._advance()
            return self._token(TokenType.NOT, ch, start)
        if ch == "+":
            return self._scan_relative_date("+", start)
        if ch.isdigit():
            return self._scan_number_or_date(start)
        if is_ident_start(ch):
            return self._scan_ident_or_keyword(start)

        self._advance()
        return self._token(TokenType.ERROR, f"unexpected character: {ch!r}", start)

    def _scan_string(self, quote: str, start: tuple[int, int, int]) -> Token:
        self._advance()
        chars = []
        while self.pos < len(self.text):
            ch = self._peek()
            if ch == quote:
                self._advance()
                return self._token(TokenType.STRING, "".join(chars), start)
            if ch == "\\" and self.pos + 1 < len(self.text):
                self._advance()
                esc = self._advance()
                chars.append(_ESCAPES.get(esc, esc))
                continue
            chars.append(self._advance())
        return self._token(TokenType.ERROR, "unterminated string", start)

    def _scan_at_value(self, start: tuple[int, int, int]) -> Token:
        self._advance()
        value = "@"
        while self._peek() and is_ident_char(self._peek()):
            value += self._advance()
        if value == "@me":
            return self._token(TokenType.AT_ME, value, start)
        return self._token(TokenType.ERROR, f"unknown special value: {value}", start)

    def _scan_relative_date(self, sign: str, start: tuple[int, int, int]) -> Token:
        self._advance()
        value = sign
        while self._peek().isdigit():
            value += self._advance()
        if self._peek() and self._peek() in _DATE_UNITS:
            value += self._advance()
            return self._token(TokenType.DATE, value, start)
        if sign == "+":
            return self._token(
                TokenType.ERROR,
                f"invalid relative date: {value} (expected d, w, m, or h suffix)",
                start,
            )
        return self._token(TokenType.NUMBER, value, start)

    def _scan_number_or_date(self, start: tuple[int, int, int]) -> Token:
        value = ""
        while self._peek() and (self._peek().isdigit() or self._peek() == "-"):
            value += self._advance()

        if len(value) == 10 and value[4] == "-" and value[7] == "-":
            return self._token(TokenType.DATE, value, start)

        if self._peek() and self._peek() in _DATE_UNITS:
            value += self._advance()
            return self._token(TokenType.DATE, value, start)

        return self._token(TokenType.NUMBER, value, start)

    def _scan_ident_or_keyword(self, start: tuple[int, int, int]) -> Token:
        value = ""
        while self._peek() and is_ident_char(self._peek()):
            value += self._advance()

        if value.lower() == "sort" and self._peek() == ":":
            return self._scan_sort_clause(start)

        keyword = _KEYWORDS.get(value.upper())
        if keyword:
            return self._token(keyword, value, start)

        if value.lower() in RELATIVE_DATE_KEYWORDS:
            return self._token(TokenType.DATE, value.lower(), start)

        return self._token(TokenType.IDENT, value, start)

    def _scan_sort_clause(self, start: tuple[int, int, int]) -> Token:
        """sort:field or sort:-field; the value keeps the '-' prefix."""
        self._advance()
        value = ""
        if self._peek() == "-":
            value += self._advance()

        if not self._peek() or not is_ident_start(self._peek()):
            return self._token(TokenType.ERROR, "sort: requires a field name", start)

        while self._peek() and is_ident_char(self._peek()):
            value += self._advance()

        name = value.lstrip("-")
        if name not in SORT_FIELD_TO_COLUMN:
            valid = ", ".join(SORT_FIELD_TO_COLUMN)
            return self._token(
                TokenType.ERROR, f"invalid sort field: {name} (valid: {valid})", start
            )
        return self._token(TokenType.SORT, value, start)


def tokenize(text: str) -> list[Token]:
    return Lexer(text).tokenize()
