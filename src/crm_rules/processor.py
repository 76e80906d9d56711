"""
Email processor: runs synced emails through category mapping and the rules engine
"""
import logging
import os
from typing import Callable, Iterable, List, Optional

from .database.store import CRMStore
from .errors import ProviderFetchFailure
from .gmail.client import fetch_email_categories
from .rules.categories import CategoryMapper
from .rules.engine import RulesEngine
from .rules.schema import BatchSummary, Message, ProcessingResult

logger = logging.getLogger(__name__)

PROVIDER_SOURCE = os.getenv('EMAIL_PROVIDER_SOURCE', 'gmail')
REPROCESS_BATCH_LIMIT = int(os.getenv('REPROCESS_BATCH_LIMIT', '100'))
INBOX_BATCH_LIMIT = int(os.getenv('INBOX_BATCH_LIMIT', '500'))
NEW_EMAIL_BATCH_LIMIT = int(os.getenv('NEW_EMAIL_BATCH_LIMIT', '50'))

CategoryFetcher = Callable[[str, str], List[str]]


class EmailProcessor:
    """Orchestrates processing of single emails and batches"""

    def __init__(self, store: CRMStore, engine: RulesEngine = None, mapper: CategoryMapper = None,
                 category_fetcher: CategoryFetcher = None):
        self.store = store
        self.engine = engine or RulesEngine(store)
        self.mapper = mapper or CategoryMapper(store)
        self.category_fetcher = category_fetcher or fetch_email_categories

    def _fetch_categories(self, message: Message, access_token: Optional[str]) -> Message:
        if not access_token or not message.external_id or message.categories:
            return message
        try:
            categories = self.category_fetcher(message.external_id, access_token)
        except ProviderFetchFailure as e:
            logger.warning(f"Could not fetch categories for email {message.external_id}: {e}")
            return message
        return message.model_copy(update={'categories': list(categories or [])})

    def process_email(self, email, access_token: Optional[str] = None,
                      force_reprocess: bool = False) -> ProcessingResult:
        """Process a single email through category mapping and rules.

        Already processed emails are skipped unless force_reprocess is set.
        Failures inside a rule or action are recorded in rule_results; an
        error loading the rules rolls back and propagates.
        """
        message = Message.from_record(email)

        if message.processed_by_rules and not force_reprocess:
            logger.debug(f"Email {message.email_id} already processed, skipping")
            return ProcessingResult(success=True, email_id=message.email_id, skipped=True)

        message = self._fetch_categories(message, access_token)

        category_mapping = self.mapper.map_categories_to_crm_fields(message)
        message = message.model_copy(update={
            'categories': category_mapping.categories,
            'source': category_mapping.source,
            'sub_source': category_mapping.sub_source,
            'stage': category_mapping.stage,
            'mapped_fields': dict(category_mapping.mapped_fields),
            'direction': message.direction or 'inbound',
        })

        logger.debug(f"Processing email {message.email_id}: from={message.from_email}, "
                     f"contact_id={message.contact_id}, direction={message.direction}")

        try:
            rule_results, final = self.engine.run(message)
            self.store.mark_message_processed(
                message.id,
                message.external_id,
                final.categories,
                final.is_flagged,
                final.flag_due_date,
            )
            self.store.db.commit()
        except Exception:
            self.store.db.rollback()
            raise

        return ProcessingResult(
            success=True,
            email_id=message.email_id,
            category_mapping=category_mapping,
            rule_results=rule_results,
            processed=True,
        )

    def process_emails(self, emails: Iterable, access_token: Optional[str] = None,
                       force_reprocess: bool = False) -> List[ProcessingResult]:
        """Process emails one after another so each sees the previous one's writes"""
        results = []
        for email in emails:
            try:
                results.append(self.process_email(email, access_token, force_reprocess))
            except Exception as e:
                email_id = getattr(email, 'id', None) if not isinstance(email, dict) else email.get('id')
                logger.error(f"Error processing email {email_id} in batch: {e}")
                results.append(ProcessingResult(success=False, email_id=email_id, error=str(e)))
        return results

    def reprocess_all_emails(self, access_token: Optional[str] = None,
                             limit: int = REPROCESS_BATCH_LIMIT) -> BatchSummary:
        """Process the most recent emails not yet handled by the rules"""
        emails = self.store.select_unprocessed_emails(limit)
        logger.info(f"Reprocessing {len(emails)} emails")
        return BatchSummary.from_results(self.process_emails(emails, access_token, True))

    def process_all_inbox_emails(self, access_token: Optional[str] = None,
                                 limit: int = INBOX_BATCH_LIMIT) -> BatchSummary:
        """Re-run current rules over all provider emails, processed or not"""
        emails = self.store.select_provider_emails(PROVIDER_SOURCE, limit)
        logger.info(f"Processing all {len(emails)} inbox emails through rules")
        without_contact = sum(1 for e in emails if e.contact_id is None)
        logger.info(f"Found {without_contact} emails without contacts")

        summary = BatchSummary.from_results(self.process_emails(emails, access_token, True))
        logger.info(f"Summary: {summary.succeeded} successful, {summary.skipped} skipped, "
                    f"{summary.failed} failed")
        logger.info(f"Contacts created by rules: {summary.contacts_created}")
        return summary

    def process_new_emails(self, access_token: Optional[str] = None,
                           limit: int = NEW_EMAIL_BATCH_LIMIT) -> BatchSummary:
        """Process provider emails synced since the last pass"""
        emails = self.store.select_new_provider_emails(PROVIDER_SOURCE, limit)
        if not emails:
            return BatchSummary()
        logger.info(f"Processing {len(emails)} new emails")
        summary = BatchSummary.from_results(self.process_emails(emails, access_token))
        logger.info(f"Processed {summary.succeeded}/{len(emails)} emails successfully")
        return summary
