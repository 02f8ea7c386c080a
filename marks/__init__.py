"""Mark resolution, allocation and reclaim.

Re-exports the core operations so callers can write
`from marks import resolve_prefix, MarkPool`.
"""
from .errors import ConcurrencyConflict, Exhausted, InputError, MarkError, NoMatch, NotFound  # noqa: F401
from .normalize import normalize, require_cm  # noqa: F401
from .rules import RuleTable, load_rule_table, rules_from_db  # noqa: F401
from .resolver import resolve_prefix, resolve_series  # noqa: F401
from .allocator import MarkPool  # noqa: F401
from .reclaimer import reclaim_eligible, release_book_mark  # noqa: F401

__all__ = [
    "ConcurrencyConflict", "Exhausted", "InputError", "MarkError", "NoMatch", "NotFound",
    "normalize", "require_cm",
    "RuleTable", "load_rule_table", "rules_from_db",
    "resolve_prefix", "resolve_series",
    "MarkPool",
    "reclaim_eligible", "release_book_mark",
]
