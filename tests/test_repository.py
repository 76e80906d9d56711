"""
Tests for rule storage: CRUD, defaults and rules files
"""

import json
import tempfile
import unittest

import os
import sys
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from crm_rules.database import EmailRule
from crm_rules.errors import MalformedRule
from crm_rules.rules import RuleRepository
from crm_rules.rules.defaults import DEFAULT_RULES, ENSURED_RULES

from db_support import add_rule, close_store, count, make_store

LEAD_RULE = {
    'name': 'Webform Lead',
    'priority': 3,
    'conditions': [{'type': 'subject_contains', 'value': 'Web Enquiry'}],
    'actions': [{'type': 'create_lead', 'params': {'source': 'webform'}}],
}


class TestRuleRepository(unittest.TestCase):
    def setUp(self):
        self.engine_db, self.store = make_store()
        self.repository = RuleRepository(self.store)

    def tearDown(self):
        close_store(self.engine_db, self.store)

    def test_create_stores_json(self):
        row = self.repository.create_rule(LEAD_RULE)

        self.assertIsNotNone(row.id)
        self.assertTrue(row.enabled)
        self.assertEqual(json.loads(row.conditions),
                         [{'type': 'subject_contains', 'operator': 'contains', 'value': 'Web Enquiry'}])
        self.assertEqual(json.loads(row.actions), [{'type': 'create_lead', 'params': {'source': 'webform'}}])

    def test_rules_need_conditions_and_actions(self):
        test_cases = [
            dict(LEAD_RULE, conditions=[]),
            dict(LEAD_RULE, actions=[]),
            dict(LEAD_RULE, conditions='{"type": "subject_contains"}'),
        ]
        for definition in test_cases:
            with self.subTest(definition=definition):
                with self.assertRaises(MalformedRule):
                    self.repository.create_rule(definition)
        self.assertEqual(count(self.store, EmailRule), 0)

    def test_update_toggle_delete(self):
        row = self.repository.create_rule(LEAD_RULE)

        updated = self.repository.update_rule(row.id, dict(LEAD_RULE, priority=20))
        self.assertEqual(updated.priority, 20)

        self.repository.set_enabled(row.id, False)
        self.assertEqual(self.store.list_enabled_rules(), [])

        self.assertTrue(self.repository.delete_rule(row.id))
        self.assertFalse(self.repository.delete_rule(row.id))
        self.assertIsNone(self.repository.update_rule(row.id, LEAD_RULE))
        self.assertIsNone(self.repository.set_enabled(row.id, True))

    def test_list_orders_by_priority(self):
        self.repository.create_rule(dict(LEAD_RULE, name='low', priority=1))
        self.repository.create_rule(dict(LEAD_RULE, name='high', priority=9))
        self.assertEqual([r.name for r in self.repository.list_rules()], ['high', 'low'])

    def test_initialize_defaults_on_empty_table(self):
        self.assertEqual(self.repository.initialize_default_rules(), len(DEFAULT_RULES))
        self.assertEqual(count(self.store, EmailRule), len(DEFAULT_RULES))

    def test_initialize_defaults_refreshes_ensured_rules_only(self):
        add_rule(self.store, 'Auto-Create Contact for New Senders', [{'type': 'direction', 'value': 'x'}],
                 [{'type': 'create_contact'}], enabled=False)

        self.assertEqual(self.repository.initialize_default_rules(), len(ENSURED_RULES))

        self.assertEqual(count(self.store, EmailRule), len(ENSURED_RULES))
        refreshed = self.repository.get_rule_by_name('Auto-Create Contact for New Senders')
        self.assertTrue(refreshed.enabled)
        self.assertEqual(refreshed.priority, 15)
        self.assertIsNone(self.repository.get_rule_by_name('Webform Detection'))

    def test_load_rules_file_upserts_by_name(self):
        self.repository.create_rule(dict(LEAD_RULE, priority=1))
        with tempfile.NamedTemporaryFile('w', suffix='.json', delete=False) as f:
            json.dump({'rules': [dict(LEAD_RULE, priority=7), dict(LEAD_RULE, name='Second')]}, f)
        self.addCleanup(os.remove, f.name)

        config = self.repository.load_rules_file(f.name)

        self.assertEqual(len(config.rules), 2)
        self.assertEqual(count(self.store, EmailRule), 2)
        self.assertEqual(self.repository.get_rule_by_name('Webform Lead').priority, 7)


if __name__ == '__main__':
    unittest.main()
