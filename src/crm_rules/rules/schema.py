"""
Schemas for rule definitions, normalized messages and processing results
"""
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import MalformedRule


class ConditionType(str, Enum):
    """Message field a condition inspects"""
    SUBJECT_CONTAINS = 'subject_contains'
    SUBJECT_MATCHES = 'subject_matches'
    FROM_CONTAINS = 'from_contains'
    TO_CONTAINS = 'to_contains'
    BODY_CONTAINS = 'body_contains'
    HAS_CATEGORY = 'has_category'
    IS_FLAGGED = 'is_flagged'
    IN_FOLDER = 'in_folder'
    DIRECTION = 'direction'
    HAS_CONTACT = 'has_contact'


class Operator(str, Enum):
    CONTAINS = 'contains'
    EQUALS = 'equals'
    STARTS_WITH = 'starts_with'
    ENDS_WITH = 'ends_with'
    MATCHES = 'matches'


class ActionType(str, Enum):
    """Side effect a matched rule performs"""
    ASSIGN_CATEGORY = 'assign_category'
    CREATE_CONTACT = 'create_contact'
    CREATE_OPPORTUNITY = 'create_opportunity'
    CREATE_LEAD = 'create_lead'
    CREATE_ACTIVITY = 'create_activity'
    CREATE_FOLLOWUP = 'create_followup'
    UPDATE_OPPORTUNITY_STAGE = 'update_opportunity_stage'
    LINK_TO_OPPORTUNITY = 'link_to_opportunity'
    MARK_OPPORTUNITY_WON = 'mark_opportunity_won'
    CREATE_COMMISSION_SNAPSHOT = 'create_commission_snapshot'


def parse_json_list(value: Any) -> Any:
    """Accept an already-parsed list or a JSON-encoded list"""
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value or '[]')
        except ValueError as e:
            raise ValueError(f'not valid JSON: {e}') from e
    if not isinstance(value, list):
        raise ValueError('expected a JSON array')
    return value


def parse_categories(value: Any) -> List[str]:
    """Parse categories stored as a list, a JSON array or a comma-separated string"""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(c) for c in value]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            # Not JSON, treat as comma-separated
            return [c.strip() for c in value.split(',') if c.strip()]
        if isinstance(parsed, list):
            return [str(c) for c in parsed]
        if isinstance(parsed, str) and parsed.strip():
            return [parsed.strip()]
    return []


class Condition(BaseModel):
    """Single predicate over an extracted message field"""
    type: str
    operator: str = Operator.CONTAINS.value
    value: str = ''

    @field_validator('type', 'operator', mode='before')
    @classmethod
    def _enum_to_str(cls, v):
        return v.value if isinstance(v, Enum) else v

    @field_validator('value', mode='before')
    @classmethod
    def _coerce_value(cls, v):
        # Stored JSON may hold booleans or numbers, e.g. {"type": "is_flagged", "value": true}
        if v is None:
            return ''
        if isinstance(v, bool):
            return 'true' if v else 'false'
        return str(v)


class Action(BaseModel):
    """Side-effecting operation; params shape depends on the type"""
    type: str
    params: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('type', mode='before')
    @classmethod
    def _enum_to_str(cls, v):
        return v.value if isinstance(v, Enum) else v

    @field_validator('params', mode='before')
    @classmethod
    def _default_params(cls, v):
        return v or {}


class Rule(BaseModel):
    """Named, prioritized set of conditions (AND) and actions"""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    name: str
    description: Optional[str] = None
    priority: int = 0
    enabled: bool = True
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)

    @field_validator('conditions', 'actions', mode='before')
    @classmethod
    def _parse_json(cls, v):
        return parse_json_list(v)

    @field_validator('priority', mode='before')
    @classmethod
    def _default_priority(cls, v):
        return 0 if v is None else v

    @field_validator('enabled', mode='before')
    @classmethod
    def _default_enabled(cls, v):
        return True if v is None else v

    @classmethod
    def from_record(cls, record) -> 'Rule':
        """Build a rule from a stored row or dict, raising MalformedRule on bad JSON"""
        try:
            return cls.model_validate(record)
        except ValidationError as e:
            name = record.get('name') if isinstance(record, dict) else getattr(record, 'name', None)
            raise MalformedRule(f'Rule "{name}" is malformed: {e}') from e


class RulesConfig(BaseModel):
    """Schema for a rules file"""
    rules: List[Rule]


class Message(BaseModel):
    """Normalized email the engine evaluates"""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    external_id: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    from_email: Optional[str] = None
    to_email: Optional[str] = None
    contact_id: Optional[int] = None
    opportunity_id: Optional[int] = None
    conversation_id: Optional[str] = None
    direction: Optional[str] = None
    deep_link: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    is_flagged: bool = False
    flag_due_date: Optional[datetime] = None
    folder_id: Optional[str] = None
    processed_by_rules: bool = False

    # Filled in by the category mapper
    source: Optional[str] = None
    sub_source: Optional[str] = None
    stage: Optional[str] = None
    mapped_fields: Dict[str, str] = Field(default_factory=dict)

    @field_validator('categories', mode='before')
    @classmethod
    def _parse_categories(cls, v):
        return parse_categories(v)

    @field_validator('is_flagged', 'processed_by_rules', mode='before')
    @classmethod
    def _default_false(cls, v):
        return False if v is None else v

    @classmethod
    def from_record(cls, record) -> 'Message':
        if isinstance(record, cls):
            return record
        if isinstance(record, dict):
            return cls.model_validate(record)
        # A stored row's `source` is the provider it was synced from, not a category hint
        return cls.model_validate(record).model_copy(update={'source': None})

    @property
    def email_id(self):
        return self.id if self.id is not None else self.external_id


class CategoryMappingIn(BaseModel):
    """Category mapping as submitted by the admin surface"""
    category_name: str = Field(min_length=1)
    crm_field_type: str = Field(min_length=1)
    crm_field_value: str = Field(min_length=1)


class CategoryMappingResult(BaseModel):
    source: Optional[str] = None
    sub_source: Optional[str] = None
    stage: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    mapped_fields: Dict[str, str] = Field(default_factory=dict)


class ActionResult(BaseModel):
    """Outcome of one action; failures carry an error instead of raising"""
    success: bool
    action: str
    error: Optional[str] = None
    created: Optional[bool] = None
    linked: Optional[bool] = None
    skipped: Optional[bool] = None
    reason: Optional[str] = None
    not_implemented: Optional[bool] = None
    contact_id: Optional[int] = None
    opportunity_id: Optional[int] = None
    lead_id: Optional[int] = None
    activity_id: Optional[int] = None
    followup_id: Optional[int] = None
    snapshot_id: Optional[int] = None
    stage_id: Optional[int] = None
    communication_id: Optional[int] = None
    source: Optional[str] = None
    sub_source: Optional[str] = None
    status: Optional[str] = None
    conversation_id: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def failure(cls, action, error) -> 'ActionResult':
        return cls(success=False, action=str(action), error=str(error))


class RuleResult(BaseModel):
    """One action outcome, or an error for the whole rule"""
    rule: str
    action: Optional[Action] = None
    result: Optional[ActionResult] = None
    error: Optional[str] = None


class ProcessingResult(BaseModel):
    success: bool
    email_id: Optional[Any] = None
    skipped: bool = False
    processed: bool = False
    category_mapping: Optional[CategoryMappingResult] = None
    rule_results: List[RuleResult] = Field(default_factory=list)
    error: Optional[str] = None

    def created_contact(self) -> bool:
        """True if a create_contact action made a new contact for this message"""
        return any(
            rr.result is not None
            and rr.result.action == ActionType.CREATE_CONTACT.value
            and rr.result.created
            for rr in self.rule_results
        )


class BatchSummary(BaseModel):
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    contacts_created: int = 0
    results: List[ProcessingResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: List[ProcessingResult]) -> 'BatchSummary':
        return cls(
            processed=len(results),
            succeeded=sum(1 for r in results if r.success and not r.skipped),
            skipped=sum(1 for r in results if r.skipped),
            failed=sum(1 for r in results if not r.success),
            contacts_created=sum(1 for r in results if r.created_contact()),
            results=results,
        )
