"""Invoice/payment matching."""

from .engine import ReconciliationEngine, fuzzy_match

__all__ = ["ReconciliationEngine", "fuzzy_match"]
