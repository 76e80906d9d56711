"""
Rules engine: runs every enabled rule against a message, in priority order
"""
import logging
from typing import List, Tuple

from ..database.store import CRMStore
from ..errors import MalformedRule
from .actions import ActionExecutor
from .evaluator import coerce_rule, evaluate_rule
from .schema import ActionResult, Message, Rule, RuleResult

logger = logging.getLogger(__name__)


def apply_result(message: Message, result: ActionResult) -> Message:
    """Return the message as later rules should see it after an action ran"""
    if not result.success:
        return message
    updates = {}
    if result.contact_id is not None and message.contact_id is None:
        updates['contact_id'] = result.contact_id
    if result.opportunity_id is not None and message.opportunity_id is None:
        updates['opportunity_id'] = result.opportunity_id
    if not updates:
        return message
    return message.model_copy(update=updates)


class RulesEngine:
    """Engine for processing emails based on stored rules"""

    def __init__(self, store: CRMStore, executor: ActionExecutor = None):
        self.store = store
        self.executor = executor or ActionExecutor(store)

    def load_rules(self) -> List:
        """Enabled rules ordered by priority DESC, id ASC; a query failure propagates"""
        return self.store.list_enabled_rules()

    def process_email(self, message: Message) -> List[RuleResult]:
        """Process a message through all enabled rules"""
        results, _ = self.run(message)
        return results

    def run(self, message: Message) -> Tuple[List[RuleResult], Message]:
        """Process a message and also return the final message state"""
        records = self.load_rules()
        logger.info(f"Processing email {message.email_id} through {len(records)} enabled rules")

        results: List[RuleResult] = []
        for record in records:
            name = getattr(record, 'name', None) or '(unnamed rule)'
            try:
                rule = coerce_rule(record)
            except MalformedRule as e:
                logger.error(f"Skipping malformed rule '{name}': {e}")
                results.append(RuleResult(rule=name, error=str(e)))
                continue

            try:
                message = self._run_rule(rule, message, results)
            except Exception as e:
                logger.exception(f"Error processing rule '{rule.name}'")
                results.append(RuleResult(rule=rule.name, error=str(e)))

        if not results:
            logger.debug(f"No rules matched for email {message.email_id}")
        return results, message

    def _run_rule(self, rule: Rule, message: Message, results: List[RuleResult]) -> Message:
        if not evaluate_rule(rule, message):
            return message

        logger.info(f"Rule '{rule.name}' matched for email: {message.subject or message.email_id}")
        for action in rule.actions:
            logger.debug(f"Executing action: {action.type} for rule '{rule.name}'")
            result = self.executor.execute(action, message)
            if not result.success:
                logger.debug(f"Action {action.type} failed: {result.error}")
            results.append(RuleResult(rule=rule.name, action=action, result=result))
            message = apply_result(message, result)
        return message
