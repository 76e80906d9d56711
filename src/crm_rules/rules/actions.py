"""
Action execution for matched rules

Each ActionType maps to exactly one handler. Handlers raise RulesEngineError
subclasses for missing data; ActionExecutor.execute turns those (and database
errors) into failed ActionResults so the caller can move on to the next action.
"""
import json
import logging
import os
import re
from datetime import datetime, timedelta
from email.utils import parseaddr
from typing import Any, Callable, Dict, Optional, Tuple

from dateutil import parser as date_parser
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..database.models import Contact, normalize_email
from ..database.store import CRMStore
from ..errors import (ConflictOnInsert, ContactNotFound, MissingRequiredField, OpportunityNotFound,
                      RulesEngineError, StageNotFound, UnknownActionType)
from .schema import Action, ActionResult, ActionType, Message

logger = logging.getLogger(__name__)

DEFAULT_ASSIGNEE = os.getenv('CRM_DEFAULT_ASSIGNEE', 'me')
DEFAULT_CURRENCY = os.getenv('CRM_DEFAULT_CURRENCY', 'USD')
LEAD_DEDUP_WINDOW_DAYS = int(os.getenv('LEAD_DEDUP_WINDOW_DAYS', '7'))

PLACEHOLDER = re.compile(r'\{\{\s*(\w+)\s*\}\}')

Handler = Callable[['ActionExecutor', Message, Dict[str, Any]], ActionResult]
ACTION_HANDLERS: Dict[ActionType, Handler] = {}


def handles(action_type: ActionType):
    """Register a handler for an action type"""
    def register(func):
        ACTION_HANDLERS[action_type] = func
        return func
    return register


def render_template(template: Optional[str], message: Message) -> str:
    """Fill {{field}} placeholders from the message"""
    if not template:
        return ''
    return PLACEHOLDER.sub(lambda m: str(getattr(message, m.group(1), '') or ''), template)


def sender(message: Message) -> Tuple[str, str]:
    """Return (display name, address) of the message sender"""
    name, address = parseaddr(message.from_email or '')
    address = address.strip()
    if not name and address:
        name = address.split('@')[0]
    return name or 'Unknown', address


class ActionExecutor:
    """Executes rule actions against the CRM store"""

    def __init__(self, store: CRMStore, default_assignee: str = None,
                 lead_dedup_window_days: int = None, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.default_assignee = default_assignee or DEFAULT_ASSIGNEE
        self.lead_dedup_window = timedelta(
            days=LEAD_DEDUP_WINDOW_DAYS if lead_dedup_window_days is None else lead_dedup_window_days
        )
        self.clock = clock

    def execute(self, action: Action, message: Message) -> ActionResult:
        """Run one action; never raises for per-action failures"""
        try:
            action_type = ActionType(action.type)
        except ValueError:
            logger.warning(f"Unknown action type: {action.type}")
            return ActionResult.failure(action.type, UnknownActionType(f'Unknown action type: {action.type}'))

        handler = ACTION_HANDLERS[action_type]
        try:
            # Savepoint: a failing action only undoes its own writes
            with self.store.db.begin_nested():
                return handler(self, message, action.params)
        except RulesEngineError as e:
            logger.info(f"Action {action_type.value} not applied to email {message.email_id}: {e}")
            return ActionResult.failure(action_type.value, e)
        except SQLAlchemyError as e:
            logger.error(f"Database error executing action {action_type.value}: {e}")
            return ActionResult.failure(action_type.value, e)

    # Helpers

    def _link_contact(self, message: Message, contact_id) -> bool:
        if message.id is None:
            return False
        return self.store.link_message_contact(message.id, contact_id)

    def _find_contact(self, message: Message) -> Contact:
        """Contact already linked to the message, else the one matching the sender"""
        if message.contact_id is not None:
            contact = self.store.get_contact(message.contact_id)
            if contact is not None:
                return contact
        _, address = sender(message)
        if not address:
            raise MissingRequiredField('No email address found')
        contact = self.store.find_contact_by_email(normalize_email(address))
        if contact is None:
            raise ContactNotFound()
        return contact

    def _find_or_create_contact(self, message: Message, contact_type: str = 'Other') -> int:
        try:
            return self._find_contact(message).id
        except ContactNotFound:
            result = create_contact(self, message, {'contact_type': contact_type})
            return result.contact_id

    def _opportunity_id(self, message: Message, params: Dict[str, Any]):
        opportunity_id = params.get('opportunity_id') or message.opportunity_id
        if not opportunity_id:
            raise MissingRequiredField('No opportunity ID specified')
        return opportunity_id

    def _get_opportunity(self, message: Message, params: Dict[str, Any]):
        opportunity_id = self._opportunity_id(message, params)
        opportunity = self.store.get_opportunity(opportunity_id)
        if opportunity is None:
            raise OpportunityNotFound(opportunity_id)
        return opportunity


@handles(ActionType.ASSIGN_CATEGORY)
def assign_category(executor: ActionExecutor, message: Message, params: Dict[str, Any]) -> ActionResult:
    """Tagging the message at the provider needs write access we do not request"""
    category = params.get('category')
    logger.info(f"Category '{category}' not assigned to email {message.email_id}: provider writes unsupported")
    return ActionResult(
        success=False,
        action=ActionType.ASSIGN_CATEGORY.value,
        error='assign_category is not implemented: provider category writes are not supported',
        not_implemented=True,
        category=category,
    )


@handles(ActionType.CREATE_CONTACT)
def create_contact(executor: ActionExecutor, message: Message, params: Dict[str, Any]) -> ActionResult:
    """Create a contact for the sender unless one exists for the normalized address"""
    store = executor.store
    name, address = sender(message)
    if not address:
        raise MissingRequiredField('No email address found')

    normalized = normalize_email(address)
    existing = store.find_contact_by_email(normalized)
    if existing is not None:
        logger.debug(f"Contact {existing.id} already exists for {normalized}")
        linked = executor._link_contact(message, existing.id) if message.contact_id is None else False
        return ActionResult(success=True, action=ActionType.CREATE_CONTACT.value,
                            contact_id=existing.id, created=False, linked=linked)

    contact_type = params.get('contact_type') or 'Other'
    try:
        contact = store.insert_contact(name=name, email=address, normalized_email=normalized,
                                       contact_type=contact_type)
    except IntegrityError:
        # Another pass inserted the same address first; link to its row
        logger.info(f"Contact for {normalized} created concurrently, linking to existing contact")
        winner = store.find_contact_by_email(normalized)
        if winner is None:
            raise ConflictOnInsert(f'Contact insert for {normalized} conflicted but no contact found')
        linked = executor._link_contact(message, winner.id) if message.contact_id is None else False
        return ActionResult(success=True, action=ActionType.CREATE_CONTACT.value,
                            contact_id=winner.id, created=False, linked=linked)

    logger.info(f"Created contact {contact.id} for {normalized} (type: {contact_type})")
    linked = executor._link_contact(message, contact.id)
    return ActionResult(success=True, action=ActionType.CREATE_CONTACT.value,
                        contact_id=contact.id, created=True, linked=linked)


@handles(ActionType.CREATE_OPPORTUNITY)
def create_opportunity(executor: ActionExecutor, message: Message, params: Dict[str, Any]) -> ActionResult:
    """Open a new opportunity; every match is a discrete enquiry"""
    _, address = sender(message)
    if not address and message.contact_id is None:
        raise MissingRequiredField('No email address found')

    contact_id = executor._find_or_create_contact(message, params.get('contact_type') or 'Other')
    source = params.get('source') or message.source or 'forwarded'
    sub_source = params.get('sub_source') or message.sub_source or 'Email'
    title = render_template(params.get('title'), message) or message.subject or 'New Opportunity'

    opportunity = executor.store.insert_opportunity(
        title=title,
        contact_id=contact_id,
        source=source,
        sub_source=sub_source,
        assigned_to=params.get('assigned_to') or executor.default_assignee,
        description=message.body or '',
        currency=DEFAULT_CURRENCY,
    )
    logger.info(f"Created opportunity {opportunity.id} ({source}/{sub_source}) for contact {contact_id}")
    return ActionResult(success=True, action=ActionType.CREATE_OPPORTUNITY.value,
                        opportunity_id=opportunity.id, contact_id=contact_id,
                        source=source, sub_source=sub_source, status='open')


@handles(ActionType.CREATE_LEAD)
def create_lead(executor: ActionExecutor, message: Message, params: Dict[str, Any]) -> ActionResult:
    """Create a lead, at most one per conversation or per source within the recency window"""
    store = executor.store
    _, address = sender(message)
    if not address and message.contact_id is None:
        raise MissingRequiredField('No email address found')

    contact_id = executor._find_or_create_contact(message, params.get('contact_type') or 'Other')
    source = params.get('source') or message.source or 'webform'
    status = params.get('status') or 'new'
    conversation_id = message.conversation_id

    def duplicate(lead, reason):
        logger.info(f"Lead {lead.id} already exists for contact {contact_id}, skipping: {reason}")
        return ActionResult(success=True, action=ActionType.CREATE_LEAD.value, lead_id=lead.id,
                            contact_id=contact_id, source=source, status=status,
                            conversation_id=conversation_id, skipped=True, reason=reason)

    if conversation_id:
        existing = store.find_lead_for_conversation(contact_id, conversation_id)
        if existing is not None:
            return duplicate(existing, 'Lead already exists for this conversation')

    since = executor.clock() - executor.lead_dedup_window
    recent = store.find_recent_lead(contact_id, source, since)
    if recent is not None:
        return duplicate(recent, 'Recent lead already exists for this contact and source')

    try:
        lead = store.insert_lead(
            contact_id=contact_id,
            source=source,
            status=status,
            assigned_to=params.get('assigned_to') or executor.default_assignee,
            notes=params.get('notes') or f"Lead created from email: {message.subject or '(No Subject)'}",
            value=params.get('value'),
            conversation_id=conversation_id,
            created_at=executor.clock(),
        )
    except IntegrityError:
        if not conversation_id:
            raise
        winner = store.find_lead_for_conversation(contact_id, conversation_id)
        if winner is None:
            raise ConflictOnInsert(f'Lead insert for conversation {conversation_id} conflicted but no lead found')
        return duplicate(winner, 'Lead already exists for this conversation')

    logger.info(f"Created lead {lead.id} for contact {contact_id} from email {message.email_id}")
    return ActionResult(success=True, action=ActionType.CREATE_LEAD.value, lead_id=lead.id,
                        contact_id=contact_id, source=source, status=status,
                        conversation_id=conversation_id)


@handles(ActionType.CREATE_ACTIVITY)
def create_activity(executor: ActionExecutor, message: Message, params: Dict[str, Any]) -> ActionResult:
    contact = executor._find_contact(message)
    activity = executor.store.insert_activity(
        contact_id=contact.id,
        opportunity_id=message.opportunity_id,
        type=params.get('type') or 'email_received',
        description=params.get('description') or f"Email: {message.subject or '(No Subject)'}",
        direction=message.direction or 'inbound',
        user=params.get('user') or 'system',
        conversation_id=message.conversation_id,
        message_id=message.external_id or (str(message.id) if message.id is not None else None),
        deep_link=message.deep_link,
    )
    return ActionResult(success=True, action=ActionType.CREATE_ACTIVITY.value,
                        activity_id=activity.id, contact_id=contact.id)


def _due_date(message: Message, params: Dict[str, Any]) -> datetime:
    if message.flag_due_date is not None:
        return message.flag_due_date
    due_date = params.get('due_date')
    if not due_date:
        raise MissingRequiredField('No follow-up date specified')
    if isinstance(due_date, datetime):
        return due_date
    try:
        return date_parser.parse(str(due_date))
    except (ValueError, OverflowError) as e:
        raise MissingRequiredField(f'Invalid follow-up date {due_date!r}') from e


@handles(ActionType.CREATE_FOLLOWUP)
def create_followup(executor: ActionExecutor, message: Message, params: Dict[str, Any]) -> ActionResult:
    """Schedule a follow-up, attached to the contact's latest lead when there is one"""
    _, address = sender(message)
    if not address and message.contact_id is None:
        raise MissingRequiredField('No email address found')
    scheduled_date = _due_date(message, params)
    contact = executor._find_contact(message)
    lead = executor.store.find_latest_lead(contact.id)

    followup = executor.store.insert_followup(
        lead_id=lead.id if lead is not None else None,
        contact_id=contact.id,
        scheduled_date=scheduled_date,
        type=params.get('type') or 'email',
        notes=params.get('notes') or f"Follow-up: {message.subject or ''}",
    )
    return ActionResult(success=True, action=ActionType.CREATE_FOLLOWUP.value,
                        followup_id=followup.id, contact_id=contact.id,
                        lead_id=lead.id if lead is not None else None)


@handles(ActionType.UPDATE_OPPORTUNITY_STAGE)
def update_opportunity_stage(executor: ActionExecutor, message: Message, params: Dict[str, Any]) -> ActionResult:
    opportunity_id = executor._opportunity_id(message, params)
    stage_name = params.get('stage_name')
    if not stage_name:
        raise MissingRequiredField('No stage name specified')
    stage = executor.store.find_stage_by_name(stage_name)
    if stage is None:
        raise StageNotFound(stage_name)

    opportunity = executor._get_opportunity(message, params)
    opportunity.stage_id = stage.id
    opportunity.updated_at = executor.clock()
    executor.store.db.flush()
    return ActionResult(success=True, action=ActionType.UPDATE_OPPORTUNITY_STAGE.value,
                        opportunity_id=opportunity_id, stage_id=stage.id)


@handles(ActionType.LINK_TO_OPPORTUNITY)
def link_to_opportunity(executor: ActionExecutor, message: Message, params: Dict[str, Any]) -> ActionResult:
    opportunity_id = params.get('opportunity_id') or message.opportunity_id
    communication_id = message.id if message.id is not None else params.get('communication_id')
    if not opportunity_id or communication_id is None:
        raise MissingRequiredField('Missing opportunity ID or communication ID')
    if executor.store.get_opportunity(opportunity_id) is None:
        raise OpportunityNotFound(opportunity_id)
    if not executor.store.link_message_opportunity(communication_id, opportunity_id):
        raise MissingRequiredField(f'Communication {communication_id} not found')
    return ActionResult(success=True, action=ActionType.LINK_TO_OPPORTUNITY.value,
                        opportunity_id=opportunity_id, communication_id=communication_id)


@handles(ActionType.MARK_OPPORTUNITY_WON)
def mark_opportunity_won(executor: ActionExecutor, message: Message, params: Dict[str, Any]) -> ActionResult:
    """Close the opportunity as won; current status is not checked here"""
    opportunity = executor._get_opportunity(message, params)
    now = executor.clock()
    opportunity.status = 'won'
    opportunity.closed_at = now
    opportunity.updated_at = now
    executor.store.db.flush()
    logger.info(f"Marked opportunity {opportunity.id} as won")
    return ActionResult(success=True, action=ActionType.MARK_OPPORTUNITY_WON.value,
                        opportunity_id=opportunity.id, status='won')


@handles(ActionType.CREATE_COMMISSION_SNAPSHOT)
def create_commission_snapshot(executor: ActionExecutor, message: Message, params: Dict[str, Any]) -> ActionResult:
    """Freeze the opportunity's commission figures; repeated runs add more snapshots"""
    opportunity = executor._get_opportunity(message, params)
    final_value = params.get('final_value') or opportunity.value or 0
    owner = params.get('owner') or opportunity.assigned_to or executor.default_assignee
    products = params.get('products')
    if products is not None and not isinstance(products, str):
        products = json.dumps(products)

    snapshot = executor.store.insert_commission_snapshot(
        opportunity_id=opportunity.id,
        final_value=final_value,
        currency=opportunity.currency or DEFAULT_CURRENCY,
        products=products,
        commissionable_amount=params.get('commissionable_amount') or final_value,
        owner=owner,
        source=opportunity.source,
        sub_source=opportunity.sub_source,
        closed_at=opportunity.closed_at or executor.clock(),
        locked_by=params.get('locked_by') or owner,
    )
    return ActionResult(success=True, action=ActionType.CREATE_COMMISSION_SNAPSHOT.value,
                        snapshot_id=snapshot.id, opportunity_id=opportunity.id)


_missing = set(ActionType) - set(ACTION_HANDLERS)
if _missing:
    raise RuntimeError(f"No handler registered for action types: {sorted(t.value for t in _missing)}")
