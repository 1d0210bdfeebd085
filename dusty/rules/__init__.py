"""
Policy rules for the notification daemon.

Modules:
- matcher: evaluate ordered rules into policy overrides
- markup: strip body markup for the strip_markup override
"""

from .markup import strip_markup
from .matcher import evaluate, predicate_matches, rule_matches

__all__ = [
    "evaluate",
    "predicate_matches",
    "rule_matches",
    "strip_markup",
]
