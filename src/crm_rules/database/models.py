"""
Database models for the CRM email rules engine
"""
from datetime import datetime

from sqlalchemy import (Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text,
                        UniqueConstraint)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def normalize_email(address) -> str:
    """Lower-case and trim an email address for duplicate checks"""
    return (address or '').strip().lower()


class Contact(Base):
    """Contact keyed by normalized email address"""
    __tablename__ = 'contacts'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    email_normalized = Column(String(255), unique=True)  # Dedup key for rule-created contacts
    phone = Column(String(50))
    company = Column(String(255))
    contact_type = Column(String(50), default='Other')  # Agent, Direct, Other, Spam, Internal
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PipelineStage(Base):
    """Named stage an opportunity can sit in"""
    __tablename__ = 'pipeline_stages'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    order_index = Column(Integer, nullable=False)
    color = Column(String(20), default='#6B7280')
    created_at = Column(DateTime, default=datetime.utcnow)


class Opportunity(Base):
    """Discrete sales enquiry"""
    __tablename__ = 'opportunities'

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    contact_id = Column(Integer, ForeignKey('contacts.id'), nullable=False)
    stage_id = Column(Integer, ForeignKey('pipeline_stages.id'))
    source = Column(String(50), nullable=False)
    sub_source = Column(String(255), nullable=False)
    assigned_to = Column(String(255), nullable=False, default='me')
    value = Column(Float)
    currency = Column(String(10), default='USD')
    description = Column(Text)
    status = Column(String(20), default='open')  # open, won, lost, reversed
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    closed_at = Column(DateTime)

    contact = relationship('Contact')
    stage = relationship('PipelineStage')


class Communication(Base):
    """Synced email message the rules engine processes"""
    __tablename__ = 'communications'

    id = Column(Integer, primary_key=True)
    type = Column(String(20), nullable=False, default='email')
    subject = Column(String(998))
    body = Column(Text)
    from_email = Column(String(255))
    to_email = Column(Text)
    contact_id = Column(Integer, ForeignKey('contacts.id'))
    opportunity_id = Column(Integer, ForeignKey('opportunities.id'))
    external_id = Column(String(255))
    source = Column(String(50))  # Provider the message was synced from
    conversation_id = Column(String(255))
    direction = Column(String(20))  # inbound, outbound
    deep_link = Column(Text)
    categories = Column(Text)  # JSON array of provider categories
    is_flagged = Column(Boolean, default=False)
    flag_due_date = Column(DateTime)
    folder_id = Column(String(255))
    processed_by_rules = Column(Boolean, default=False)
    occurred_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)


class Lead(Base):
    """Lead raised from an email, at most one per contact and conversation"""
    __tablename__ = 'leads'

    id = Column(Integer, primary_key=True)
    contact_id = Column(Integer, ForeignKey('contacts.id'), nullable=False)
    source = Column(String(50), nullable=False)
    status = Column(String(50), nullable=False, default='new')
    assigned_to = Column(String(255), default='me')
    notes = Column(Text)
    value = Column(Float)
    conversation_id = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('contact_id', 'conversation_id', name='uix_lead_contact_conversation'),
    )


class Activity(Base):
    """Audit-style record of an interaction with a contact"""
    __tablename__ = 'activities'

    id = Column(Integer, primary_key=True)
    opportunity_id = Column(Integer, ForeignKey('opportunities.id'))
    contact_id = Column(Integer, ForeignKey('contacts.id'), nullable=False)
    type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    direction = Column(String(20))
    user = Column(String(255), nullable=False)
    conversation_id = Column(String(255))
    message_id = Column(String(255))
    deep_link = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


class FollowUp(Base):
    """Scheduled follow-up, usually raised from a flagged email"""
    __tablename__ = 'follow_ups'

    id = Column(Integer, primary_key=True)
    lead_id = Column(Integer, ForeignKey('leads.id'))
    contact_id = Column(Integer, ForeignKey('contacts.id'), nullable=False)
    scheduled_date = Column(DateTime, nullable=False)
    type = Column(String(50), nullable=False)
    notes = Column(Text)
    completed = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class CommissionSnapshot(Base):
    """Immutable copy of a won opportunity's commission figures"""
    __tablename__ = 'commission_snapshots'

    id = Column(Integer, primary_key=True)
    opportunity_id = Column(Integer, ForeignKey('opportunities.id'), nullable=False)
    final_value = Column(Float, nullable=False)
    currency = Column(String(10), default='USD')
    products = Column(Text)
    commissionable_amount = Column(Float, nullable=False)
    owner = Column(String(255), nullable=False)
    source = Column(String(50), nullable=False)
    sub_source = Column(String(255), nullable=False)
    closed_at = Column(DateTime, nullable=False)
    locked_by = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class EmailRule(Base):
    """Stored rule; conditions and actions are JSON arrays"""
    __tablename__ = 'email_rules'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    priority = Column(Integer, default=0)
    enabled = Column(Boolean, default=True)
    conditions = Column(Text, nullable=False)
    actions = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CategoryMapping(Base):
    """Maps a provider category name onto a CRM field value"""
    __tablename__ = 'email_categories'

    id = Column(Integer, primary_key=True)
    category_name = Column(String(255), nullable=False, unique=True)
    crm_field_type = Column(String(50), nullable=False)  # source, sub_source, stage, ...
    crm_field_value = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
