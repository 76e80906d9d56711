"""
Database package for the CRM email rules engine
"""
from .connection import create_db_engine, get_db_session, init_db, seed_pipeline_stages
from .models import (Activity, Base, CategoryMapping, CommissionSnapshot, Communication, Contact,
                     EmailRule, FollowUp, Lead, Opportunity, PipelineStage, normalize_email)
from .store import CRMStore

__all__ = [
    'Base',
    'Activity',
    'CategoryMapping',
    'CommissionSnapshot',
    'Communication',
    'Contact',
    'EmailRule',
    'FollowUp',
    'Lead',
    'Opportunity',
    'PipelineStage',
    'CRMStore',
    'normalize_email',
    'create_db_engine',
    'init_db',
    'get_db_session',
    'seed_pipeline_stages',
]
