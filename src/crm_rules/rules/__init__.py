"""
Rules engine package for the CRM email rules engine
"""
from .actions import ActionExecutor
from .categories import CategoryMapper
from .conditions import evaluate_condition, get_value
from .engine import RulesEngine
from .evaluator import evaluate_rule, select_matching_rules, test_rule
from .repository import RuleRepository
from .schema import (Action, ActionResult, ActionType, BatchSummary, CategoryMappingResult, Condition,
                     ConditionType, Message, Operator, ProcessingResult, Rule, RuleResult, RulesConfig)

__all__ = [
    'ActionExecutor',
    'CategoryMapper',
    'RuleRepository',
    'RulesEngine',
    'evaluate_condition',
    'evaluate_rule',
    'get_value',
    'select_matching_rules',
    'test_rule',
    'Action',
    'ActionResult',
    'ActionType',
    'BatchSummary',
    'CategoryMappingResult',
    'Condition',
    'ConditionType',
    'Message',
    'Operator',
    'ProcessingResult',
    'Rule',
    'RuleResult',
    'RulesConfig',
]
