"""
Rule evaluation: enabled check plus AND over all conditions
"""
import logging
from typing import Any, Dict, Iterable, List

from ..errors import MalformedRule
from .conditions import evaluate_condition
from .schema import Message, Rule

logger = logging.getLogger(__name__)


def coerce_rule(rule) -> Rule:
    """Accept a Rule, a stored row or a dict; raises MalformedRule"""
    if isinstance(rule, Rule):
        return rule
    return Rule.from_record(rule)


def evaluate_rule(rule, message: Message) -> bool:
    """Check if a message matches every condition of an enabled rule"""
    try:
        rule = coerce_rule(rule)
    except MalformedRule as e:
        logger.error(f"Skipping malformed rule: {e}")
        return False

    if not rule.enabled:
        return False

    if not rule.conditions:
        logger.debug(f"Rule '{rule.name}' has no conditions to evaluate")
        return False

    for condition in rule.conditions:
        result = evaluate_condition(condition, message)
        logger.debug(f"Rule '{rule.name}': {condition.type} {condition.operator} "
                     f"'{condition.value}' -> {result}")
        if not result:
            return False
    return True


def select_matching_rules(rules: Iterable, message: Message) -> List[Rule]:
    """Return the rules that match, keeping the given (priority) order"""
    matching = []
    for rule in rules:
        try:
            rule = coerce_rule(rule)
        except MalformedRule as e:
            logger.error(f"Skipping malformed rule: {e}")
            continue
        if evaluate_rule(rule, message):
            matching.append(rule)
    return matching


def test_rule(rule, sample) -> Dict[str, Any]:
    """Evaluate a rule against a sample email and report each condition"""
    rule = coerce_rule(rule)
    message = Message.from_record(sample)
    return {
        'matches': evaluate_rule(rule, message),
        'evaluated_conditions': [
            {'condition': condition.model_dump(), 'result': evaluate_condition(condition, message)}
            for condition in rule.conditions
        ],
    }


# Not a test case
test_rule.__test__ = False
