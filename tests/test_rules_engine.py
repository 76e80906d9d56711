"""
Tests for rule evaluation and the rules engine loop.

1. Rule Evaluation:
   - AND semantics over conditions
   - Disabled, empty and malformed rules never match
   - test_rule reports each condition

2. Engine Processing:
   - Priority order, ties broken by id
   - Later rules see contacts linked by earlier rules
   - A failing action or rule does not stop the others
   - A failing rules query propagates
"""

import unittest
from unittest.mock import MagicMock

import os
import sys
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from sqlalchemy.exc import OperationalError

from crm_rules.rules import RulesEngine, evaluate_rule, select_matching_rules, test_rule as run_rule_test
from crm_rules.rules.engine import apply_result
from crm_rules.rules.schema import ActionResult, Message, Rule

from db_support import add_email, add_rule, close_store, make_store


class TestRuleEvaluation(unittest.TestCase):
    def setUp(self):
        self.message = Message(
            id=1,
            subject='Web General Enquiry from site',
            from_email='jane@example.com',
            direction='inbound',
        )

    def test_all_conditions_must_match(self):
        test_cases = [
            ([{'type': 'subject_contains', 'value': 'enquiry'},
              {'type': 'from_contains', 'value': '@example.com', 'operator': 'ends_with'}], True),
            ([{'type': 'subject_contains', 'value': 'enquiry'},
              {'type': 'from_contains', 'value': '@other.com', 'operator': 'ends_with'}], False),
            ([{'type': 'subject_contains', 'value': 'nothing'},
              {'type': 'from_contains', 'value': 'jane'}], False),
        ]
        for conditions, expected in test_cases:
            with self.subTest(conditions=conditions):
                rule = Rule(name='r', conditions=conditions,
                            actions=[{'type': 'create_contact'}])
                self.assertEqual(evaluate_rule(rule, self.message), expected)

    def test_disabled_rule_never_matches(self):
        rule = Rule(name='off', enabled=False,
                    conditions=[{'type': 'subject_contains', 'value': 'enquiry'}],
                    actions=[{'type': 'create_contact'}])
        self.assertFalse(evaluate_rule(rule, self.message))

    def test_rule_without_conditions_never_matches(self):
        rule = Rule(name='empty', conditions=[], actions=[{'type': 'create_contact'}])
        self.assertFalse(evaluate_rule(rule, self.message))

    def test_malformed_rule_is_skipped(self):
        record = {'name': 'broken', 'conditions': 'not json', 'actions': '[]'}
        self.assertFalse(evaluate_rule(record, self.message))

        good = {'name': 'good', 'conditions': '[{"type": "subject_contains", "value": "web"}]',
                'actions': '[{"type": "create_contact"}]'}
        matching = select_matching_rules([record, good], self.message)
        self.assertEqual([r.name for r in matching], ['good'])

    def test_rule_test_reports_each_condition(self):
        rule = {
            'name': 'probe',
            'conditions': [
                {'type': 'subject_contains', 'value': 'web'},
                {'type': 'has_contact', 'value': 'true', 'operator': 'equals'},
            ],
            'actions': [{'type': 'create_contact'}],
        }
        report = run_rule_test(rule, {'subject': 'Web form', 'from_email': 'x@y.com'})

        self.assertFalse(report['matches'])
        self.assertEqual([c['result'] for c in report['evaluated_conditions']], [True, False])
        self.assertEqual(report['evaluated_conditions'][0]['condition']['type'], 'subject_contains')


class TestApplyResult(unittest.TestCase):
    def test_successful_result_links_contact_and_opportunity(self):
        message = Message(id=1)
        updated = apply_result(message, ActionResult(success=True, action='create_opportunity',
                                                     contact_id=3, opportunity_id=9))
        self.assertEqual((updated.contact_id, updated.opportunity_id), (3, 9))
        self.assertIsNone(message.contact_id)

    def test_failed_result_leaves_message(self):
        message = Message(id=1)
        self.assertIs(apply_result(message, ActionResult.failure('create_lead', 'boom')), message)

    def test_existing_links_are_kept(self):
        message = Message(id=1, contact_id=2)
        updated = apply_result(message, ActionResult(success=True, action='create_contact', contact_id=5))
        self.assertEqual(updated.contact_id, 2)


class TestRulesEngine(unittest.TestCase):
    def setUp(self):
        self.engine_db, self.store = make_store()
        self.engine = RulesEngine(self.store)

    def tearDown(self):
        close_store(self.engine_db, self.store)

    def _message(self, **fields):
        return Message.from_record(add_email(self.store, **fields))

    def test_rules_load_by_priority_then_id(self):
        add_rule(self.store, 'low', [{'type': 'direction', 'value': 'inbound'}], [{'type': 'create_contact'}],
                 priority=1)
        add_rule(self.store, 'high-first', [{'type': 'direction', 'value': 'inbound'}],
                 [{'type': 'create_contact'}], priority=5)
        add_rule(self.store, 'high-second', [{'type': 'direction', 'value': 'inbound'}],
                 [{'type': 'create_contact'}], priority=5)
        add_rule(self.store, 'disabled', [{'type': 'direction', 'value': 'inbound'}],
                 [{'type': 'create_contact'}], priority=9, enabled=False)

        self.assertEqual([r.name for r in self.engine.load_rules()], ['high-first', 'high-second', 'low'])

        results = self.engine.process_email(self._message())
        self.assertEqual([r.rule for r in results], ['high-first', 'high-second', 'low'])

    def test_later_rule_sees_contact_from_earlier_rule(self):
        add_rule(self.store, 'Auto-Create Contact',
                 [{'type': 'has_contact', 'value': 'false', 'operator': 'equals'}],
                 [{'type': 'create_contact'}], priority=15)
        add_rule(self.store, 'Also Without Contact',
                 [{'type': 'has_contact', 'value': 'false', 'operator': 'equals'}],
                 [{'type': 'create_contact'}], priority=14)
        add_rule(self.store, 'Known Sender Activity',
                 [{'type': 'has_contact', 'value': 'true', 'operator': 'equals'}],
                 [{'type': 'create_activity'}], priority=1)

        results, final = self.engine.run(self._message(from_email='New Person <new@x.com>'))

        self.assertEqual([r.rule for r in results], ['Auto-Create Contact', 'Known Sender Activity'])
        self.assertTrue(results[0].result.created)
        self.assertTrue(results[1].result.success)
        self.assertEqual(final.contact_id, results[0].result.contact_id)

    def test_failing_action_does_not_stop_remaining_actions(self):
        add_rule(self.store, 'mixed', [{'type': 'direction', 'value': 'inbound'}], [
            {'type': 'send_sms'},
            {'type': 'update_opportunity_stage', 'params': {'stage_name': 'Qualified'}},
            {'type': 'create_contact'},
        ])

        results = self.engine.process_email(self._message())

        self.assertEqual(len(results), 3)
        self.assertFalse(results[0].result.success)
        self.assertIn('Unknown action type', results[0].result.error)
        self.assertFalse(results[1].result.success)
        self.assertTrue(results[2].result.success)

    def test_malformed_stored_rule_is_reported_and_skipped(self):
        add_rule(self.store, 'broken', 'not json', '[]', priority=5)
        add_rule(self.store, 'fine', [{'type': 'direction', 'value': 'inbound'}], [{'type': 'create_contact'}])

        results = self.engine.process_email(self._message())

        self.assertEqual(results[0].rule, 'broken')
        self.assertIsNotNone(results[0].error)
        self.assertEqual(results[1].rule, 'fine')
        self.assertTrue(results[1].result.success)

    def test_unexpected_rule_error_is_isolated(self):
        add_rule(self.store, 'first', [{'type': 'direction', 'value': 'inbound'}], [{'type': 'create_contact'}],
                 priority=2)
        add_rule(self.store, 'second', [{'type': 'direction', 'value': 'inbound'}],
                 [{'type': 'create_activity'}], priority=1)
        executor = MagicMock()
        executor.execute.side_effect = [RuntimeError('boom'),
                                        ActionResult(success=True, action='create_activity')]
        engine = RulesEngine(self.store, executor=executor)

        results = engine.process_email(self._message())

        self.assertEqual(results[0].rule, 'first')
        self.assertEqual(results[0].error, 'boom')
        self.assertTrue(results[1].result.success)

    def test_rules_query_failure_propagates(self):
        store = MagicMock()
        store.list_enabled_rules.side_effect = OperationalError('SELECT', {}, Exception('db down'))
        engine = RulesEngine(store, executor=MagicMock())

        with self.assertRaises(OperationalError):
            engine.process_email(Message(id=1))

    def test_no_rules_gives_empty_results(self):
        self.assertEqual(self.engine.process_email(self._message()), [])


if __name__ == '__main__':
    unittest.main()
