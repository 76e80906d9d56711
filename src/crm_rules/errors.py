"""
Exceptions raised inside the rules engine

Action handlers raise these; the action executor turns them into failed
results so one bad rule or action never stops a batch.
"""


class RulesEngineError(Exception):
    """Base class for rules engine errors"""


class MalformedRule(RulesEngineError):
    """Rule conditions or actions could not be parsed as arrays"""


class MissingRequiredField(RulesEngineError):
    """An action is missing a sender address, contact or required parameter"""


class ContactNotFound(MissingRequiredField):
    """No contact exists for the message sender"""

    def __init__(self, message: str = 'Contact not found'):
        super().__init__(message)


class StageNotFound(MissingRequiredField):
    """Named pipeline stage does not exist"""

    def __init__(self, stage_name):
        super().__init__(f'Stage "{stage_name}" not found')
        self.stage_name = stage_name


class OpportunityNotFound(MissingRequiredField):
    """Referenced opportunity does not exist"""

    def __init__(self, opportunity_id):
        super().__init__(f'Opportunity {opportunity_id} not found')
        self.opportunity_id = opportunity_id


class ConflictOnInsert(RulesEngineError):
    """Unique constraint hit on insert and the winning row could not be re-read"""


class UnknownActionType(RulesEngineError):
    """Action type has no handler"""


class ProviderFetchFailure(RulesEngineError):
    """Mail provider call failed"""
