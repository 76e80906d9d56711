"""
Tests for the category mapper and its administration
"""

import unittest

import os
import sys
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from pydantic import ValidationError

from crm_rules.database import CategoryMapping
from crm_rules.rules.categories import DEFAULT_MAPPINGS, CategoryMapper
from crm_rules.rules.schema import Message

from db_support import add_mapping, close_store, count, make_store


class TestCategoryMapping(unittest.TestCase):
    def setUp(self):
        self.engine_db, self.store = make_store()
        self.mapper = CategoryMapper(self.store)

    def tearDown(self):
        close_store(self.engine_db, self.store)

    def test_maps_known_categories(self):
        self.mapper.initialize_default_mappings()
        message = Message(categories=['Source – Webform', 'Sub-source – Instagram', 'Stage – Follow-up', 'VIP'])

        result = self.mapper.map_categories_to_crm_fields(message)

        self.assertEqual((result.source, result.sub_source, result.stage),
                         ('webform', 'Instagram DM', 'follow_up'))
        self.assertEqual(result.categories, message.categories)

    def test_last_matching_category_wins(self):
        self.mapper.initialize_default_mappings()
        result = self.mapper.map_categories_to_crm_fields(
            {'categories': '["Source – Social", "Source – Webform"]'})
        self.assertEqual(result.source, 'webform')

    def test_accepts_stored_category_formats(self):
        add_mapping(self.store, 'Web', 'source', 'webform')
        test_cases = [
            '["Web"]',
            'Web, Other',
            ['Other', 'Web'],
        ]
        for categories in test_cases:
            with self.subTest(categories=categories):
                result = self.mapper.map_categories_to_crm_fields({'categories': categories})
                self.assertEqual(result.source, 'webform')

    def test_unmapped_and_empty_categories(self):
        self.assertIsNone(self.mapper.map_categories_to_crm_fields({'categories': None}).source)
        result = self.mapper.map_categories_to_crm_fields(Message(categories=['Unknown']))
        self.assertEqual((result.source, result.sub_source, result.stage), (None, None, None))

    def test_other_field_types_are_kept(self):
        add_mapping(self.store, 'Priority – High', 'priority', 'high')
        result = self.mapper.map_categories_to_crm_fields(Message(categories=['Priority – High']))
        self.assertEqual(result.mapped_fields, {'priority': 'high'})


class TestCategoryMappingAdmin(unittest.TestCase):
    def setUp(self):
        self.engine_db, self.store = make_store()
        self.mapper = CategoryMapper(self.store)

    def tearDown(self):
        close_store(self.engine_db, self.store)

    def test_initialize_defaults_is_repeatable(self):
        self.assertEqual(self.mapper.initialize_default_mappings(), len(DEFAULT_MAPPINGS))
        self.mapper.initialize_default_mappings()
        self.assertEqual(count(self.store, CategoryMapping), len(DEFAULT_MAPPINGS))
        self.assertEqual(self.mapper.get_category_mapping('Source – Cold Call').crm_field_value,
                         'cold_outreach')

    def test_save_upserts_by_category_name(self):
        first = self.mapper.save_category_mapping(
            {'category_name': 'Web', 'crm_field_type': 'source', 'crm_field_value': 'webform'})
        second = self.mapper.save_category_mapping(
            {'category_name': 'Web', 'crm_field_type': 'source', 'crm_field_value': 'website'})

        self.assertEqual(first.id, second.id)
        self.assertEqual(second.crm_field_value, 'website')
        self.assertEqual(len(self.mapper.get_category_mappings()), 1)

    def test_update_and_delete(self):
        row = add_mapping(self.store, 'Web', 'source', 'webform')

        updated = self.mapper.update_category_mapping(
            row.id, {'category_name': 'Website', 'crm_field_type': 'sub_source', 'crm_field_value': 'Form'})

        self.assertEqual((updated.category_name, updated.crm_field_type), ('Website', 'sub_source'))
        self.assertIsNone(self.mapper.update_category_mapping(
            999, {'category_name': 'X', 'crm_field_type': 'source', 'crm_field_value': 'x'}))
        self.assertTrue(self.mapper.delete_category_mapping(row.id))
        self.assertFalse(self.mapper.delete_category_mapping(row.id))
        self.assertIsNone(self.mapper.get_category_mapping('Website'))

    def test_blank_fields_are_rejected(self):
        with self.assertRaises(ValidationError):
            self.mapper.save_category_mapping(
                {'category_name': '', 'crm_field_type': 'source', 'crm_field_value': 'webform'})


if __name__ == '__main__':
    unittest.main()
