"""
Rule matcher for notification policy.

Evaluates the ordered rule set against a request and produces the
policy overrides to apply. Pure: no state, no I/O besides debug logging.
"""

import logging
from typing import Any, Dict, List, Sequence

from ..models import (
    AppNamePredicate,
    BodyPredicate,
    CategoryPredicate,
    NotificationRequest,
    PolicyOverrides,
    Predicate,
    Override,
    Rule,
    SetGroup,
    SetTimeout,
    SetUrgency,
    StripMarkup,
    SummaryPredicate,
    Suppress,
    UrgencyPredicate,
)

logger = logging.getLogger(__name__)


def predicate_matches(predicate: Predicate, request: NotificationRequest) -> bool:
    """Check a single predicate against the request fields."""
    match predicate:
        case AppNamePredicate():
            return predicate.test(request.app_name)
        case SummaryPredicate():
            return predicate.test(request.summary)
        case BodyPredicate():
            return predicate.test(request.body)
        case CategoryPredicate():
            return predicate.test(request.category)
        case UrgencyPredicate(levels=levels):
            return request.urgency in levels
        case _:
            raise TypeError(f"Unknown predicate kind: {predicate!r}")


def rule_matches(rule: Rule, request: NotificationRequest) -> bool:
    """A rule matches when every one of its predicates matches."""
    return all(predicate_matches(predicate, request) for predicate in rule.match)


def _apply_override(override: Override, fields: Dict[str, Any]) -> None:
    match override:
        case SetTimeout(timeout_ms=timeout_ms):
            fields["timeout_ms"] = timeout_ms
        case SetUrgency(urgency=urgency):
            fields["urgency"] = urgency
        case Suppress():
            fields["suppress"] = True
        case StripMarkup():
            fields["strip_markup"] = True
        case SetGroup(key=key):
            fields["group_key"] = key
        case _:
            raise TypeError(f"Unknown override kind: {override!r}")


def evaluate(request: NotificationRequest, rules: Sequence[Rule]) -> PolicyOverrides:
    """
    Evaluate rules in declared order against a request.

    Overrides accumulate across matching rules with later rules winning
    for scalar fields; suppression is sticky once set. A matching rule
    with ``stop`` ends evaluation after its own overrides are applied.

    Args:
        request: Normalized Notify request
        rules: Ordered rule set

    Returns:
        PolicyOverrides (empty when no rule matches)
    """
    fields: Dict[str, Any] = {}
    matched: List[str] = []

    for rule in rules:
        if not rule_matches(rule, request):
            continue

        matched.append(rule.name)
        for override in rule.overrides:
            _apply_override(override, fields)

        if rule.stop:
            logger.debug(f"Rule '{rule.name}' stopped evaluation")
            break

    if matched:
        logger.debug(f"Rules matched for {request.app_name or '<unknown>'}: {matched}")

    return PolicyOverrides(matched_rules=tuple(matched), **fields)
