"""The td query language: lexer, parser, set-valued evaluator and executor."""

from td.query.ast import Query
from td.query.evaluator import EvalContext, Evaluator
from td.query.execute import DEFAULT_MAX_RESULTS, execute, quick_search
from td.query.parser import parse, parse_and_validate

__all__ = [
    "DEFAULT_MAX_RESULTS",
    "EvalContext",
    "Evaluator",
    "Query",
    "execute",
    "parse",
    "parse_and_validate",
    "quick_search",
]
