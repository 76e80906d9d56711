"""
Condition evaluation against a normalized message
"""
import logging
import re

from .schema import Condition, ConditionType, Message, Operator

logger = logging.getLogger(__name__)

# Their "false" is a real value, not missing data
BOOLEAN_CONDITION_TYPES = {ConditionType.HAS_CONTACT.value, ConditionType.IS_FLAGGED.value}


def get_value(message: Message, condition_type: str) -> str:
    """Extract the message field a condition type inspects; unknown types give ''"""
    if condition_type in (ConditionType.SUBJECT_CONTAINS, ConditionType.SUBJECT_MATCHES):
        return message.subject or ''
    if condition_type == ConditionType.FROM_CONTAINS:
        return message.from_email or ''
    if condition_type == ConditionType.TO_CONTAINS:
        return message.to_email or ''
    if condition_type == ConditionType.BODY_CONTAINS:
        return message.body or ''
    if condition_type == ConditionType.HAS_CATEGORY:
        return ', '.join(message.categories)
    if condition_type == ConditionType.IS_FLAGGED:
        return 'true' if message.is_flagged else 'false'
    if condition_type == ConditionType.IN_FOLDER:
        return message.folder_id or ''
    if condition_type == ConditionType.DIRECTION:
        # Direction is decided by the sync layer
        return message.direction or 'inbound'
    if condition_type == ConditionType.HAS_CONTACT:
        return 'true' if message.contact_id is not None else 'false'

    logger.debug(f"Unknown condition type '{condition_type}', extracting empty value")
    return ''


def evaluate_condition(condition: Condition, message: Message) -> bool:
    """Evaluate a single condition against a message"""
    email_value = get_value(message, condition.type)

    if not email_value and condition.type not in BOOLEAN_CONDITION_TYPES:
        return False

    actual = email_value.lower()
    expected = condition.value.lower()
    operator = condition.operator

    if operator == Operator.CONTAINS:
        return expected in actual
    if operator == Operator.EQUALS:
        return actual == expected
    if operator == Operator.STARTS_WITH:
        return actual.startswith(expected)
    if operator == Operator.ENDS_WITH:
        return actual.endswith(expected)
    if operator == Operator.MATCHES:
        try:
            return re.search(condition.value, email_value, re.IGNORECASE) is not None
        except re.error as e:
            logger.error(f"Invalid regex pattern '{condition.value}': {e}")
            return False

    logger.debug(f"Unknown operator '{operator}' in condition {condition.type}")
    return False
