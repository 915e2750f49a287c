"""Safe SQL assembly for tool handlers.

Handlers never concatenate values into SQL text. WhereBuilder accumulates an
ordered list of predicates and allocates ``$n`` placeholders as values are
added, so the parameter list and the placeholders can never drift apart.

Identifiers cannot be parameterized; table names are checked against
ALLOWED_TABLES and column names against a strict identifier pattern.

Example:
    where = WhereBuilder()
    where.add("c.active = {}", 1)
    where.add_if(search, "(c.company ILIKE {0} OR c.vat ILIKE {0})", like(search))
    sql = f"SELECT * FROM tblclients c {where.clause} ORDER BY c.userid"
    rows = await db.query(sql, where.params)
"""

import logging
import re
from typing import Any, Iterable, Optional

from ..exceptions import ValidationError

logger = logging.getLogger(__name__)


# ============================================
# Identifier whitelists
# ============================================

ALLOWED_TABLES = frozenset({
    "tblclients",
    "tblcontacts",
    "tblinvoices",
    "tblitemable",
    "tblinvoicepaymentrecords",
    "tblprojects",
    "tblproject_members",
    "tbltasks",
    "tbltask_assigned",
    "tbltaskstimers",
    "tblmilestones",
    "tblstaff",
    "tbldepartments",
    "tblleads",
    "tblleads_status",
    "tblleads_sources",
    "tblestimates",
    "tblcontracts",
    "tblexpenses",
    "tbltaxes",
    "tblcurrencies",
    "tblpayment_modes",
    "tbltickets",
})

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def validate_table(table: str) -> str:
    """Return ``table`` if it is whitelisted, else raise ValidationError."""
    if table not in ALLOWED_TABLES:
        raise ValidationError(f"Table '{table}' is not allowed", field="table")
    return table


def validate_identifier(name: str, field: str = "column") -> str:
    if not _IDENTIFIER_RE.match(name or ""):
        raise ValidationError(f"Invalid identifier: {name!r}", field=field)
    return name


def like(value: str, prefix: bool = True, suffix: bool = True) -> str:
    """Build an ILIKE pattern, escaping the caller's own wildcards."""
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{'%' if prefix else ''}{escaped}{'%' if suffix else ''}"


# ============================================
# WhereBuilder
# ============================================

class WhereBuilder:
    """Accumulates AND-ed predicates with aligned positional parameters.

    Templates use ``str.format`` fields for values: ``{}`` for the next value
    or ``{0}``/``{1}`` to reuse one value more than once.
    """

    def __init__(self, params: Optional[Iterable[Any]] = None):
        self._params: list[Any] = list(params or [])
        self._predicates: list[str] = []

    def param(self, value: Any) -> str:
        """Append ``value`` and return its placeholder (``$n``)."""
        self._params.append(value)
        return f"${len(self._params)}"

    def add(self, template: str, *values: Any) -> "WhereBuilder":
        placeholders = [self.param(value) for value in values]
        self._predicates.append(template.format(*placeholders))
        return self

    def add_if(self, condition: Any, template: str, *values: Any) -> "WhereBuilder":
        """Add the predicate only when ``condition`` is set.

        ``0`` and ``False`` count as set; only ``None`` and ``""`` skip.
        """
        if condition is None or condition == "":
            return self
        return self.add(template, *values)

    def add_raw(self, predicate: str) -> "WhereBuilder":
        """Add a predicate that carries no values (e.g. ``x IS NULL``)."""
        self._predicates.append(predicate)
        return self

    @property
    def clause(self) -> str:
        if not self._predicates:
            return ""
        return "WHERE " + " AND ".join(self._predicates)

    @property
    def params(self) -> list[Any]:
        return list(self._params)

    def paginate(self, limit: int, offset: int = 0) -> str:
        """Return ``LIMIT $n OFFSET $m`` and append both values."""
        return f"LIMIT {self.param(int(limit))} OFFSET {self.param(int(offset))}"

    def __len__(self) -> int:
        return len(self._predicates)

    def __repr__(self) -> str:
        return f"WhereBuilder(clause={self.clause!r}, params={self._params!r})"


def order_by(column: str, direction: str = "ASC", allowed: Optional[Iterable[str]] = None) -> str:
    """Build an ORDER BY clause from a validated column and direction."""
    validate_identifier(column.split(".")[-1])
    if allowed is not None and column not in set(allowed):
        raise ValidationError(f"Cannot sort by '{column}'", field="sort_by")
    direction = direction.upper()
    if direction not in ("ASC", "DESC"):
        raise ValidationError(f"Invalid sort direction: {direction}", field="sort_order")
    return f"ORDER BY {column} {direction}"


__all__ = [
    "ALLOWED_TABLES",
    "WhereBuilder",
    "like",
    "order_by",
    "validate_identifier",
    "validate_table",
]
