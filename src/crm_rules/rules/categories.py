"""
Category mapper: provider categories to CRM source, sub_source and stage
"""
import logging
from typing import List, Optional, Union

from sqlalchemy import select

from ..database.models import CategoryMapping
from ..database.store import CRMStore
from .schema import CategoryMappingIn, CategoryMappingResult, Message, parse_categories

logger = logging.getLogger(__name__)

DEFAULT_MAPPINGS = [
    # Source categories
    ('Source – Webform', 'source', 'webform'),
    ('Source – Social', 'source', 'social'),
    ('Source – Cold Call', 'source', 'cold_outreach'),
    ('Source – Previous Enquiry', 'source', 'previous_enquiry'),
    ('Source – Previous Client', 'source', 'previous_client'),
    ('Source – Forwarded', 'source', 'forwarded'),
    # Stage categories
    ('Stage – Follow-up', 'stage', 'follow_up'),
    ('Stage – Proposal/Quote', 'stage', 'proposal'),
    ('Stage – Booking/Confirmation', 'stage', 'booking'),
    # Sub-source categories
    ('Sub-source – Instagram', 'sub_source', 'Instagram DM'),
    ('Sub-source – Facebook', 'sub_source', 'Facebook Message'),
    ('Sub-source – LinkedIn', 'sub_source', 'LinkedIn InMail'),
    # Finance categories
    ('Finance – Payment', 'sub_source', 'Payment Received'),
]


class CategoryMapper:
    """Reads and maintains the category mapping table"""

    def __init__(self, store: CRMStore):
        self.store = store

    def map_categories_to_crm_fields(self, message: Union[Message, dict]) -> CategoryMappingResult:
        """Map a message's categories to CRM fields.

        When several categories map to the same field type the last one in the
        message's category order wins. Categories without a mapping are ignored.
        """
        if isinstance(message, Message):
            categories = list(message.categories)
        else:
            categories = parse_categories(message.get('categories'))

        mappings = {m.category_name: m for m in self.store.list_category_mappings()}
        result = CategoryMappingResult(categories=categories)

        for category in categories:
            mapping = mappings.get(category)
            if mapping is None:
                continue
            if mapping.crm_field_type == 'source':
                result.source = mapping.crm_field_value
            elif mapping.crm_field_type == 'sub_source':
                result.sub_source = mapping.crm_field_value
            elif mapping.crm_field_type == 'stage':
                result.stage = mapping.crm_field_value
            else:
                result.mapped_fields[mapping.crm_field_type] = mapping.crm_field_value

        logger.debug(f"Mapped categories {categories} -> source={result.source}, "
                     f"sub_source={result.sub_source}, stage={result.stage}")
        return result

    # Administration

    def get_category_mappings(self) -> List[CategoryMapping]:
        return self.store.list_category_mappings()

    def get_category_mapping(self, category_name: str) -> Optional[CategoryMapping]:
        return self.store.db.scalars(
            select(CategoryMapping).where(CategoryMapping.category_name == category_name)
        ).first()

    def save_category_mapping(self, mapping) -> CategoryMapping:
        """Create or update the mapping for a category name"""
        data = CategoryMappingIn.model_validate(mapping)
        row = self.get_category_mapping(data.category_name)
        if row is None:
            row = CategoryMapping(category_name=data.category_name)
            self.store.db.add(row)
        row.crm_field_type = data.crm_field_type
        row.crm_field_value = data.crm_field_value
        self.store.db.commit()
        return row

    def update_category_mapping(self, mapping_id: int, mapping) -> Optional[CategoryMapping]:
        data = CategoryMappingIn.model_validate(mapping)
        row = self.store.db.get(CategoryMapping, mapping_id)
        if row is None:
            return None
        row.category_name = data.category_name
        row.crm_field_type = data.crm_field_type
        row.crm_field_value = data.crm_field_value
        self.store.db.commit()
        return row

    def delete_category_mapping(self, mapping_id: int) -> bool:
        row = self.store.db.get(CategoryMapping, mapping_id)
        if row is None:
            return False
        self.store.db.delete(row)
        self.store.db.commit()
        return True

    def initialize_default_mappings(self) -> int:
        """Upsert the default category mappings; returns how many were saved"""
        saved = 0
        for category_name, field_type, field_value in DEFAULT_MAPPINGS:
            self.save_category_mapping({
                'category_name': category_name,
                'crm_field_type': field_type,
                'crm_field_value': field_value,
            })
            saved += 1
        logger.info(f"Initialized {saved} default category mappings")
        return saved
