"""
Data access used by the rules engine

All reads and writes the engine performs go through CRMStore so the rule
pipeline never builds queries itself. Inserts that can race with another
processing pass run inside a savepoint; the IntegrityError is left for the
caller to recover from.
"""
import json
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from .models import (Activity, CategoryMapping, CommissionSnapshot, Communication, Contact,
                     EmailRule, FollowUp, Lead, Opportunity, PipelineStage)


class CRMStore:
    """Thin data-access layer over a SQLAlchemy session"""

    def __init__(self, db: Session):
        self.db = db

    # Rules and mappings

    def list_enabled_rules(self) -> List[EmailRule]:
        return self.db.scalars(
            select(EmailRule)
            .where(EmailRule.enabled.is_(True))
            .order_by(EmailRule.priority.desc(), EmailRule.id.asc())
        ).all()

    def list_category_mappings(self) -> List[CategoryMapping]:
        return self.db.scalars(select(CategoryMapping).order_by(CategoryMapping.category_name)).all()

    # Contacts

    def find_contact_by_email(self, normalized_email: str) -> Optional[Contact]:
        return self.db.scalars(
            select(Contact).where(Contact.email_normalized == normalized_email)
        ).first()

    def get_contact(self, contact_id) -> Optional[Contact]:
        return self.db.get(Contact, contact_id)

    def insert_contact(self, name: str, email: str, normalized_email: str, contact_type: str) -> Contact:
        contact = Contact(name=name, email=email, email_normalized=normalized_email,
                          contact_type=contact_type)
        with self.db.begin_nested():
            self.db.add(contact)
        return contact

    # Messages

    def get_communication(self, message_id=None, external_id=None) -> Optional[Communication]:
        clauses = []
        if message_id is not None:
            clauses.append(Communication.id == message_id)
        if external_id:
            clauses.append(Communication.external_id == external_id)
        if not clauses:
            return None
        return self.db.scalars(select(Communication).where(or_(*clauses))).first()

    def link_message_contact(self, message_id, contact_id) -> bool:
        communication = self.db.get(Communication, message_id)
        if communication is None:
            return False
        communication.contact_id = contact_id
        self.db.flush()
        return True

    def link_message_opportunity(self, message_id, opportunity_id) -> bool:
        communication = self.db.get(Communication, message_id)
        if communication is None:
            return False
        communication.opportunity_id = opportunity_id
        self.db.flush()
        return True

    def mark_message_processed(self, message_id, external_id, categories: List[str],
                               is_flagged: bool, flag_due_date: Optional[datetime]) -> bool:
        communication = self.get_communication(message_id, external_id)
        if communication is None:
            return False
        communication.categories = json.dumps(categories or [])
        communication.is_flagged = bool(is_flagged)
        communication.flag_due_date = flag_due_date
        communication.processed_by_rules = True
        self.db.flush()
        return True

    def select_unprocessed_emails(self, limit: int) -> List[Communication]:
        return self.db.scalars(
            select(Communication)
            .where(Communication.type == 'email')
            .where(or_(Communication.processed_by_rules.is_(False),
                       Communication.processed_by_rules.is_(None)))
            .order_by(Communication.occurred_at.desc())
            .limit(limit)
        ).all()

    def select_provider_emails(self, source: str, limit: int) -> List[Communication]:
        return self.db.scalars(
            select(Communication)
            .where(Communication.type == 'email', Communication.source == source)
            .order_by(Communication.occurred_at.desc())
            .limit(limit)
        ).all()

    def select_new_provider_emails(self, source: str, limit: int) -> List[Communication]:
        return self.db.scalars(
            select(Communication)
            .where(Communication.type == 'email', Communication.source == source)
            .where(or_(Communication.processed_by_rules.is_(False),
                       Communication.processed_by_rules.is_(None)))
            .order_by(Communication.created_at.desc())
            .limit(limit)
        ).all()

    # Opportunities and stages

    def insert_opportunity(self, **fields) -> Opportunity:
        opportunity = Opportunity(status='open', **fields)
        self.db.add(opportunity)
        self.db.flush()
        return opportunity

    def get_opportunity(self, opportunity_id) -> Optional[Opportunity]:
        return self.db.get(Opportunity, opportunity_id)

    def find_stage_by_name(self, name: str) -> Optional[PipelineStage]:
        return self.db.scalars(select(PipelineStage).where(PipelineStage.name == name)).first()

    # Leads

    def find_lead_for_conversation(self, contact_id, conversation_id) -> Optional[Lead]:
        return self.db.scalars(
            select(Lead).where(Lead.contact_id == contact_id, Lead.conversation_id == conversation_id)
        ).first()

    def find_recent_lead(self, contact_id, source: str, since: datetime) -> Optional[Lead]:
        return self.db.scalars(
            select(Lead)
            .where(Lead.contact_id == contact_id, Lead.source == source, Lead.created_at > since)
            .order_by(Lead.created_at.desc())
        ).first()

    def find_latest_lead(self, contact_id) -> Optional[Lead]:
        return self.db.scalars(
            select(Lead).where(Lead.contact_id == contact_id)
            .order_by(Lead.created_at.desc(), Lead.id.desc())
        ).first()

    def insert_lead(self, **fields) -> Lead:
        lead = Lead(**fields)
        with self.db.begin_nested():
            self.db.add(lead)
        return lead

    # Audit-style records

    def insert_activity(self, **fields) -> Activity:
        activity = Activity(**fields)
        self.db.add(activity)
        self.db.flush()
        return activity

    def insert_followup(self, **fields) -> FollowUp:
        followup = FollowUp(completed=False, **fields)
        self.db.add(followup)
        self.db.flush()
        return followup

    def insert_commission_snapshot(self, **fields) -> CommissionSnapshot:
        snapshot = CommissionSnapshot(**fields)
        self.db.add(snapshot)
        self.db.flush()
        return snapshot
