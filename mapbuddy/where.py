# mapbuddy/where.py
# ArcGIS SQL-92 where clauses for ID lookups
import re
from typing import Iterable, List

from .errors import InvalidRequest

EXACT = "exact"
FUZZY = "fuzzy"
MATCH_MODES = (EXACT, FUZZY)

_RE_FIELD = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_RE_SEPARATORS = re.compile(r"[\s\-_]+")
_RE_LIKE_SPECIAL = re.compile(r"([\\%_])")


def sql_literal(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def _check_field(name: str) -> str:
    if not _RE_FIELD.match(name or ""):
        raise InvalidRequest(f"Invalid field name: {name!r}")
    return name


def like_clause(field: str, text: str) -> str:
    """Case-insensitive "contains" test; % and _ inside ``text`` match literally."""
    escaped = _RE_LIKE_SPECIAL.sub(r"\\\1", text)
    clause = f"UPPER({field}) LIKE UPPER({sql_literal('%' + escaped + '%')})"
    if escaped != text:
        clause += " ESCAPE '\\'"
    return clause


def fuzzy_forms(variant: str) -> List[str]:
    forms = [variant, _RE_SEPARATORS.sub(" ", variant), _RE_SEPARATORS.sub("-", variant)]
    seen = set()
    out: List[str] = []
    for f in forms:
        if f not in seen:
            seen.add(f)
            out.append(f)
    return out


def build_where(fields: Iterable[str], variants: Iterable[str], mode: str = EXACT) -> str:
    fields = [_check_field(f) for f in fields]
    variants = [v for v in variants if v]
    if not fields or not variants:
        raise InvalidRequest("At least one field and one ID variant are required.")

    clauses: List[str] = []
    if mode == EXACT:
        for f in fields:
            for v in variants:
                clauses.append(f"UPPER({f}) = UPPER({sql_literal(v)})")
    elif mode == FUZZY:
        patterns: List[str] = []
        for v in variants:
            for form in fuzzy_forms(v):
                if form not in patterns:
                    patterns.append(form)
        for f in fields:
            for p in patterns:
                clauses.append(like_clause(f, p))
    else:
        raise InvalidRequest(f"Unknown match mode: {mode!r}")
    return " OR ".join(clauses)
