"""
SQL Protection
Static read-only and table allow-list checks for generated SQL
"""
import re
from typing import List, Optional, Sequence, Set, Tuple

from insight.dtos import TableSchema, ValidationResult

DEFAULT_SCHEMA = "public"

# Write/DDL statements, matched anywhere in the raw SQL
DANGEROUS_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"DROP\s+TABLE", re.I), "DROP TABLE is not allowed (read-only queries only)"),
    (re.compile(r"TRUNCATE", re.I), "TRUNCATE is not allowed (read-only queries only)"),
    (re.compile(r"DELETE\s+FROM", re.I), "DELETE is not allowed (read-only queries only)"),
    (re.compile(r"\bUPDATE\s+[\"`\w]", re.I), "UPDATE is not allowed (read-only queries only)"),
    (re.compile(r"INSERT\s+INTO", re.I), "INSERT is not allowed (read-only queries only)"),
    (re.compile(r"ALTER\s+TABLE", re.I), "ALTER TABLE is not allowed (read-only queries only)"),
]

_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.S)
_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
# Parenthesised group with no nested parens and no subquery
_PLAIN_GROUP = re.compile(r"\((?:(?!\bSELECT\b)[^()])*\)", re.I)

_IDENT = r'(?:"[^"]+"|[A-Za-z_][A-Za-z0-9_$]*)'
_TABLE_REF = rf"{_IDENT}(?:\s*\.\s*{_IDENT})?"
_ALIAS = rf"(?:\s+(?:AS\s+)?{_IDENT})?"
_FROM_LIST = re.compile(
    rf"\bFROM\s+({_TABLE_REF}{_ALIAS}(?:\s*,\s*{_TABLE_REF}{_ALIAS})*)",
    re.I
)
_JOIN_REF = re.compile(rf"\bJOIN\s+({_TABLE_REF})", re.I)
_CTE_NAME = re.compile(
    rf"(?:\bWITH\s+(?:RECURSIVE\s+)?|,\s*)({_IDENT})\s*(?:\([^()]*\)\s*)?AS\s*(?:NOT\s+)?(?:MATERIALIZED\s+)?\(",
    re.I
)

_LIMIT = re.compile(r"\bLIMIT\s+\d+", re.I)
_SMALL_TRAILING_LIMIT = re.compile(r"\bLIMIT\s+[1-9]\d?\s*;?\s*$", re.I)
_SELECT_STAR = re.compile(r"\bSELECT\s+\*", re.I)


def _unquote(identifier: str) -> str:
    return identifier.strip().strip('"`')


def _split_ref(ref: str) -> Tuple[Optional[str], str]:
    """(schema or None, table) of a possibly schema-qualified reference"""
    parts = [_unquote(p) for p in re.findall(_IDENT, ref)]
    if len(parts) > 1:
        return parts[-2], parts[-1]
    return None, parts[-1]


def _strip_noise(sql: str) -> str:
    """Remove comments and string literals so they cannot look like clauses"""
    sql = _BLOCK_COMMENT.sub(" ", sql)
    sql = _LINE_COMMENT.sub(" ", sql)
    return _STRING_LITERAL.sub("''", sql)


def _collapse_plain_groups(sql: str) -> str:
    """
    Collapse function-call arguments and other non-subquery groups

    EXTRACT(MONTH FROM created_at) and TRIM(BOTH FROM name) would otherwise
    be read as table references.
    """
    while True:
        collapsed = _PLAIN_GROUP.sub(" NULL ", sql)
        if collapsed == sql:
            return collapsed
        sql = collapsed


def extract_cte_names(sql: str) -> Set[str]:
    return {_unquote(name).lower() for name in _CTE_NAME.findall(_strip_noise(sql))}


def extract_table_refs(sql: str) -> List[Tuple[Optional[str], str]]:
    """
    (schema, table) pairs referenced via FROM/JOIN (simple regex scan, not a parser)

    schema is None for unqualified references. Unique pairs in order of
    first appearance; unqualified CTE names are excluded.
    """
    cleaned = _strip_noise(sql)
    ctes = extract_cte_names(sql)
    scanned = _collapse_plain_groups(cleaned)

    refs: List[Tuple[int, str]] = []
    for match in _FROM_LIST.finditer(scanned):
        offset = match.start(1)
        for item in match.group(1).split(","):
            ref = re.match(_TABLE_REF, item.strip())
            if ref:
                refs.append((offset, ref.group(0)))
            offset += len(item) + 1
    for match in _JOIN_REF.finditer(scanned):
        refs.append((match.start(1), match.group(1)))

    pairs: List[Tuple[Optional[str], str]] = []
    seen: Set[Tuple[str, str]] = set()
    # Textual order keeps error messages deterministic
    for _, ref in sorted(refs, key=lambda r: r[0]):
        schema, name = _split_ref(ref)
        if schema is None and name.lower() in ctes:
            continue
        key = ((schema or "").lower(), name.lower())
        if key in seen:
            continue
        seen.add(key)
        pairs.append((schema, name))

    return pairs


def extract_tables(sql: str) -> List[str]:
    """Unique table names referenced via FROM/JOIN, schema qualifiers dropped"""
    tables: List[str] = []
    for _, name in extract_table_refs(sql):
        if name.lower() not in {t.lower() for t in tables}:
            tables.append(name)
    return tables


def check_read_only(sql: str) -> List[str]:
    """One error per matched write/DDL pattern"""
    return [error for pattern, error in DANGEROUS_PATTERNS if pattern.search(sql)]


def check_tables(sql: str, schemas: Sequence[TableSchema], schema: str = DEFAULT_SCHEMA) -> List[str]:
    """
    Unknown-table errors

    A reference qualified with any schema other than the introspected one
    is unknown even when a table of that name was introspected.
    """
    known = {s.table_name.lower() for s in schemas}
    errors: List[str] = []
    for qualifier, table in extract_table_refs(sql):
        if qualifier is not None and qualifier.lower() != schema.lower():
            errors.append(f"Table '{qualifier}.{table}' does not exist in schema")
        elif table.lower() not in known:
            errors.append(f"Table '{table}' does not exist in schema")
    return errors


def advisory_warnings(sql: str) -> List[str]:
    """Performance hints; never block execution"""
    warnings: List[str] = []
    if not _LIMIT.search(sql):
        warnings.append("Query should include LIMIT clause for performance")
    if _SELECT_STAR.search(sql) and not _SMALL_TRAILING_LIMIT.search(sql.strip()):
        warnings.append("SELECT * without LIMIT can return too many rows")
    return warnings


def check_sql(sql: str, schemas: Sequence[TableSchema], schema: str = DEFAULT_SCHEMA) -> ValidationResult:
    """
    Static validation (no database access)

    Accumulates unknown-table errors first, then read-only violations.
    schema is the catalog schema the known tables were introspected from.
    """
    errors = check_tables(sql, schemas, schema)
    errors.extend(check_read_only(sql))
    return ValidationResult(errors=errors, warnings=advisory_warnings(sql))
