"""Error taxonomy for mark resolution, allocation and reclaim."""
from __future__ import annotations

from typing import Optional, Sequence


class MarkError(Exception):
    pass


class InputError(MarkError):
    """Malformed or missing client input; `field` names the offending field."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"invalid value for {field}")


class NoMatch(MarkError):
    """No size rule covers the given dimensions."""

    def __init__(self, width: float, height: float):
        self.width = width
        self.height = height
        super().__init__(f"no size rule for width={width} height={height}")


class Exhausted(MarkError):
    """No free code left for a resolved prefix, fallbacks included."""

    def __init__(self, prefix: str, tried: Sequence[str] = ()):
        self.prefix = prefix
        self.tried = list(tried) or [prefix]
        super().__init__(f"no codes available for prefix {prefix!r} (tried {', '.join(self.tried)})")


class ConcurrencyConflict(MarkError):
    pass


class NotFound(MarkError):
    pass
