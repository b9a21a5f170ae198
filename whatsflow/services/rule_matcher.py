# whatsflow/services/rule_matcher.py
"""
Trigger evaluation for chatbot rules.

Rules are tried in the order given; the first one whose trigger matches wins.
Comparison is case-insensitive on both sides.
"""
from typing import Callable, Dict, Iterable, Optional, Protocol

from whatsflow.models.rule import TriggerType


class Triggerable(Protocol):
    trigger_type: TriggerType
    trigger_value: str


_PREDICATES: Dict[TriggerType, Callable[[str, str], bool]] = {
    TriggerType.EXACT_MATCH: lambda text, value: text == value,
    TriggerType.CONTAINS: lambda text, value: value in text,
    TriggerType.STARTS_WITH: lambda text, value: text.startswith(value),
}


def _trigger_type(raw) -> Optional[TriggerType]:
    try:
        return TriggerType(raw)
    except ValueError:
        return None


def rule_matches(text: str, rule: Triggerable) -> bool:
    """True if rule's trigger accepts text (text must already be lower-cased)"""
    trigger_type = _trigger_type(rule.trigger_type)
    if trigger_type is None or rule.trigger_value is None:
        return False
    return _PREDICATES[trigger_type](text, rule.trigger_value.lower())


def match_rule(text: str, rules: Iterable[Triggerable]):
    """Return the first rule whose trigger matches text, else None"""
    lowered = (text or "").lower()
    for rule in rules:
        if rule_matches(lowered, rule):
            return rule
    return None
