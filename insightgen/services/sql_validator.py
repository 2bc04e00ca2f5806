"""Heuristic checks that generated SQL honours the snippets and filters it was built from.

The structural parse is regex based and sits behind :class:`SqlStructureParser`
so a real SQL parser can be swapped in without touching the verdict logic.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, Sequence

from insightgen.services.composition_validator import ComposableSnippet

logger = logging.getLogger(__name__)

Verdict = Literal["pass", "clarify", "reject"]

_CTE_PATTERN = re.compile(r"\bWITH\s+(\w+)\s+AS\s*\(|,\s*(\w+)\s+AS\s*\(", re.IGNORECASE)
_CLAUSE_PATTERN = re.compile(r"\b(WHERE|ORDER\s+BY|GROUP\s+BY|HAVING|LIMIT)\b", re.IGNORECASE)
_FILTER_OPERATOR = (
    r"\s*(?:=|<>|!=|>=|<=|>|<"
    r"|\b(?:not\s+)?in\s*\(|\b(?:not\s+)?like\b|\bbetween\b|\bis\s+(?:not\s+)?null\b)"
)


@dataclass(frozen=True)
class ResidualFilter:
    field: str
    operator: str
    value: Any
    required: bool = True
    confidence: float = 1.0
    original_text: str = ""
    source: str | None = None


@dataclass(frozen=True)
class SqlStructure:
    cte_names: tuple[str, ...]
    has_where_clause: bool
    where_clause_content: str | None = None


class SqlStructureParser(Protocol):
    def parse(self, sql: str) -> SqlStructure:
        ...


class RegexSqlStructureParser:
    """Pull CTE names and the top-level WHERE clause out of SQL text.

    WHERE clauses inside CTE bodies and subqueries sit inside parentheses and
    are ignored; when several top-level clauses exist the last one wins.
    """

    def parse(self, sql: str) -> SqlStructure:
        names: list[str] = []
        for match in _CTE_PATTERN.finditer(sql):
            name = match.group(1) or match.group(2)
            if name and name not in names:
                names.append(name)

        content = _top_level_where(sql)
        if not content:
            return SqlStructure(cte_names=tuple(names), has_where_clause=False)
        return SqlStructure(cte_names=tuple(names), has_where_clause=True, where_clause_content=content)


def _paren_depths(sql: str) -> list[int]:
    depths: list[int] = []
    depth = 0
    quote: str | None = None
    for char in sql:
        if quote is not None:
            depths.append(depth + 1)
            if char == quote:
                quote = None
            continue
        if char in "'\"":
            quote = char
            depths.append(depth + 1)
        elif char == "(":
            depths.append(depth)
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
            depths.append(depth)
        else:
            depths.append(depth)
    return depths


def _top_level_where(sql: str) -> str:
    depths = _paren_depths(sql)
    clauses = [match for match in _CLAUSE_PATTERN.finditer(sql) if depths[match.start()] == 0]
    wheres = [match for match in clauses if match.group(1).upper() == "WHERE"]
    if not wheres:
        return ""
    start = wheres[-1].end()
    end = next((match.start() for match in clauses if match.start() >= start), len(sql))
    return sql[start:end].strip().rstrip(";").strip()


@dataclass
class SQLValidationResult:
    verdict: Verdict = "pass"
    used_snippets: list[str] = field(default_factory=list)
    missing_snippets: list[str] = field(default_factory=list)
    applied_filters: list[ResidualFilter] = field(default_factory=list)
    dropped_filters: list[ResidualFilter] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    details: SqlStructure = field(default_factory=lambda: SqlStructure(cte_names=(), has_where_clause=False))


class SQLValidator:
    def __init__(self, parser: SqlStructureParser | None = None) -> None:
        self.parser = parser or RegexSqlStructureParser()

    def validate(
        self,
        sql: str | None,
        expected_snippets: Sequence[ComposableSnippet],
        expected_filters: Sequence[ResidualFilter],
    ) -> SQLValidationResult:
        result = SQLValidationResult()
        if not sql or not sql.strip():
            result.errors.append("SQL is empty or null")
            result.verdict = "reject"
            return result

        structure = self.parser.parse(sql)
        result.details = structure
        logger.debug(
            "Validating SQL against %d snippet(s) and %d filter(s); CTEs: %s",
            len(expected_snippets),
            len(expected_filters),
            ", ".join(structure.cte_names) or "none",
        )

        for snippet in expected_snippets:
            if self._snippet_used(sql, structure, snippet):
                result.used_snippets.append(snippet.id)
            else:
                result.missing_snippets.append(snippet.id)

        for residual in expected_filters:
            if self._filter_present(structure, residual):
                result.applied_filters.append(residual)
            elif residual.required:
                result.dropped_filters.append(residual)
                result.errors.append(f'Required filter missing: {residual.field} (from "{residual.original_text}")')
            else:
                result.warnings.append(f'Optional filter not found: {residual.field} (from "{residual.original_text}")')

        if result.dropped_filters:
            result.verdict = "reject"
        elif result.missing_snippets:
            result.verdict = "clarify"
            result.warnings.append(f"{len(result.missing_snippets)} snippet(s) not detected in SQL")
        else:
            result.verdict = "pass"

        logger.info("SQL validation verdict: %s", result.verdict)
        return result

    @staticmethod
    def _snippet_used(sql: str, structure: SqlStructure, snippet: ComposableSnippet) -> bool:
        sql_lower = sql.lower()
        cte_names = {name.lower() for name in structure.cte_names}

        for output in snippet.outputs:
            name = output.lower()
            if name in cte_names or (not output.startswith("@") and name in sql_lower):
                return True

        if any(token.lower() in sql_lower for token in snippet.required_context if token):
            return True

        # area reduction snippets are usually inlined rather than named
        if "reduction" in snippet.id.lower() and "area" in sql_lower:
            return True
        return False

    @staticmethod
    def _filter_present(structure: SqlStructure, residual: ResidualFilter) -> bool:
        if not structure.where_clause_content or not residual.field:
            return False
        pattern = re.compile(rf"\b{re.escape(residual.field)}{_FILTER_OPERATOR}", re.IGNORECASE)
        return pattern.search(structure.where_clause_content) is not None


_default_validator = SQLValidator()


def validate_generated_sql(
    sql: str | None,
    expected_snippets: Sequence[ComposableSnippet],
    expected_filters: Sequence[ResidualFilter],
) -> SQLValidationResult:
    return _default_validator.validate(sql, expected_snippets, expected_filters)


__all__ = [
    "RegexSqlStructureParser",
    "ResidualFilter",
    "SQLValidationResult",
    "SQLValidator",
    "SqlStructure",
    "SqlStructureParser",
    "Verdict",
    "validate_generated_sql",
]
