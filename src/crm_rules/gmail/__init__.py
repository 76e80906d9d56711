"""
Gmail API integration package
"""
from .auth import build_service, get_access_token
from .client import GmailClient, fetch_email_categories

__all__ = ['build_service', 'get_access_token', 'GmailClient', 'fetch_email_categories']
