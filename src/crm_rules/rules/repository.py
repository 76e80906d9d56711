"""
Rule administration: CRUD over stored rules plus default and file-based loading
"""
import json
import logging
from typing import List, Optional

from sqlalchemy import func, select

from ..database.models import EmailRule
from ..database.store import CRMStore
from ..errors import MalformedRule
from .defaults import DEFAULT_RULES, ENSURED_RULES
from .schema import Rule, RulesConfig

logger = logging.getLogger(__name__)


def validate_definition(definition) -> Rule:
    """Parse a rule definition; usable rules need conditions and actions"""
    rule = definition if isinstance(definition, Rule) else Rule.from_record(definition)
    if not rule.conditions or not rule.actions:
        raise MalformedRule(f'Rule "{rule.name}" needs at least one condition and one action')
    return rule


def _apply(row: EmailRule, rule: Rule) -> EmailRule:
    row.name = rule.name
    row.description = rule.description
    row.priority = rule.priority
    row.enabled = rule.enabled
    row.conditions = json.dumps([c.model_dump() for c in rule.conditions])
    row.actions = json.dumps([a.model_dump() for a in rule.actions])
    return row


class RuleRepository:
    """Stores rules as JSON blobs in the email_rules table"""

    def __init__(self, store: CRMStore):
        self.store = store
        self.db = store.db

    def list_rules(self) -> List[EmailRule]:
        return self.db.scalars(
            select(EmailRule).order_by(EmailRule.priority.desc(), EmailRule.id.asc())
        ).all()

    def get_rule(self, rule_id: int) -> Optional[EmailRule]:
        return self.db.get(EmailRule, rule_id)

    def get_rule_by_name(self, name: str) -> Optional[EmailRule]:
        return self.db.scalars(select(EmailRule).where(EmailRule.name == name)).first()

    def create_rule(self, definition) -> EmailRule:
        rule = validate_definition(definition)
        row = _apply(EmailRule(), rule)
        self.db.add(row)
        self.db.commit()
        logger.info(f"Created rule '{row.name}' (id={row.id}, priority={row.priority})")
        return row

    def update_rule(self, rule_id: int, definition) -> Optional[EmailRule]:
        rule = validate_definition(definition)
        row = self.get_rule(rule_id)
        if row is None:
            return None
        _apply(row, rule)
        self.db.commit()
        return row

    def set_enabled(self, rule_id: int, enabled: bool) -> Optional[EmailRule]:
        row = self.get_rule(rule_id)
        if row is None:
            return None
        row.enabled = enabled
        self.db.commit()
        return row

    def delete_rule(self, rule_id: int) -> bool:
        row = self.get_rule(rule_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        return True

    def upsert_rule(self, definition) -> EmailRule:
        """Insert a rule or overwrite the stored rule with the same name"""
        rule = validate_definition(definition)
        row = self.get_rule_by_name(rule.name)
        if row is None:
            row = EmailRule()
            self.db.add(row)
        _apply(row, rule)
        self.db.commit()
        return row

    def initialize_default_rules(self) -> int:
        """Insert all defaults into an empty table, else refresh the ensured ones"""
        count = self.db.scalar(select(func.count()).select_from(EmailRule))
        if count:
            logger.info("Rules already exist, ensuring important rules exist")
            definitions = [r for r in DEFAULT_RULES if r['name'] in ENSURED_RULES]
        else:
            definitions = DEFAULT_RULES

        for definition in definitions:
            self.upsert_rule(definition)
        logger.info(f"Initialized {len(definitions)} default rules")
        return len(definitions)

    def load_rules_file(self, path: str) -> RulesConfig:
        """Upsert every rule from a JSON rules file"""
        with open(path, 'r') as f:
            rules_data = json.load(f)
        rules_config = RulesConfig(**rules_data)
        for rule in rules_config.rules:
            self.upsert_rule(rule)
        logger.info(f"Synced {len(rules_config.rules)} rules from {path}")
        return rules_config
