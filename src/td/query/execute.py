"""Run queries against a store and materialize the matching issues."""

from __future__ import annotations

import logging
from datetime import datetime

from td.models import Issue
from td.query.ast import OP_CONTAINS, OP_EQ, OP_OR, BinaryExpr, FieldExpr
from td.query.evaluator import EvalContext, Evaluator
from td.query.parser import parse_and_validate
from td.storage.interface import Storage

logger = logging.getLogger(__name__)

# Upper bound on rows materialized per query
DEFAULT_MAX_RESULTS = 10000


def execute(store: Storage, text: str, session_id: str = "", limit: int = 0,
            max_results: int = DEFAULT_MAX_RESULTS, sort_by: str | None = None,
            descending: bool = False, now: datetime | None = None) -> list[Issue]:
    """Parse, validate and evaluate a query.

    At most ``max_results`` rows are fetched from the store; ``limit`` then
    truncates the fetched rows. A ``sort:`` clause in the query overrides
    ``sort_by``/``descending``.
    """
    query = parse_and_validate(text)

    if max_results <= 0:
        max_results = DEFAULT_MAX_RESULTS
    if query.sort is not None:
        sort_by = query.sort.field
        descending = query.sort.descending

    ctx = EvalContext(session_id=session_id)
    if now is not None:
        ctx.now = now
    matched = Evaluator(store, ctx).evaluate(query.root)
    if len(matched) > max_results:
        logger.debug("query matched %d issues, fetching first %d",
                     len(matched), max_results)

    issues = store.list_issues(limit=max_results, sort_by=sort_by or "created_at",
                               descending=descending, ids=matched)
    if limit > 0:
        issues = issues[:limit]
    return issues


def quick_search(store: Storage, term: str, limit: int = 0) -> list[Issue]:
    """Issues whose id equals term, or whose title or labels contain it."""
    term = term.strip()
    if not term:
        return []
    node = BinaryExpr(
        OP_OR,
        BinaryExpr(OP_OR, FieldExpr("id", OP_EQ, term), FieldExpr("title", OP_CONTAINS, term)),
        FieldExpr("labels", OP_CONTAINS, term),
    )
    matched = Evaluator(store).evaluate(node)
    return store.list_issues(limit=limit, ids=matched)
