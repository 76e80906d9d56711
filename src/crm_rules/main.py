#!/usr/bin/env python3
"""
CRM email rules engine - command line entry point
"""
import argparse
import json
import logging
import os

import structlog
from dotenv import load_dotenv

from crm_rules.database import CRMStore, get_db_session, init_db
from crm_rules.gmail import get_access_token
from crm_rules.processor import EmailProcessor
from crm_rules.rules import CategoryMapper, RuleRepository, test_rule

# Configure logging
logging.basicConfig(level=logging.INFO)  # Only show important info
logger = structlog.get_logger()

# Disable debug logging for specific modules
logging.getLogger('googleapiclient.discovery').setLevel(logging.WARNING)
logging.getLogger('googleapiclient.discovery_cache').setLevel(logging.ERROR)


def load_rules(store: CRMStore) -> int:
    """Load rules from RULES_FILE if set, otherwise make sure the defaults exist"""
    repository = RuleRepository(store)
    rules_file = os.getenv('RULES_FILE')
    try:
        if rules_file:
            rules_config = repository.load_rules_file(rules_file)
            logger.info("Rules synced to database", count=len(rules_config.rules), file=rules_file)
            return len(rules_config.rules)
        count = repository.initialize_default_rules()
        logger.info("Default rules initialized", count=count)
        return count
    except Exception as e:
        logger.error("Error loading rules", error=str(e))
        raise


def load_category_mappings(store: CRMStore) -> int:
    """Load category mappings from CATEGORY_MAPPINGS_FILE if set, otherwise the defaults"""
    mapper = CategoryMapper(store)
    mappings_file = os.getenv('CATEGORY_MAPPINGS_FILE')
    if not mappings_file:
        return mapper.initialize_default_mappings()
    with open(mappings_file, 'r') as f:
        mappings = json.load(f)
    for mapping in mappings:
        mapper.save_category_mapping(mapping)
    logger.info("Category mappings synced", count=len(mappings), file=mappings_file)
    return len(mappings)


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description='CRM Email Rules Engine')
    parser.add_argument('--no-token', action='store_true',
                        help='Do not fetch categories from Gmail')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('init', help='Create tables and load rules and category mappings')

    process = subparsers.add_parser('process', help='Process a single email')
    process.add_argument('email_id', help='Email id or provider message id')
    process.add_argument('--force', action='store_true', help='Reprocess even if already processed')

    reprocess = subparsers.add_parser('reprocess', help='Process emails not yet handled by the rules')
    reprocess.add_argument('--limit', type=int, default=None)

    process_all = subparsers.add_parser('process-all', help='Re-run rules over all synced emails')
    process_all.add_argument('--limit', type=int, default=None)

    process_new = subparsers.add_parser('process-new', help='Process newly synced emails')
    process_new.add_argument('--limit', type=int, default=None)

    test = subparsers.add_parser('test-rule', help='Evaluate a stored rule against a sample email')
    test.add_argument('rule_id', type=int)
    test.add_argument('sample', help='Path to a JSON file holding the sample email')

    return parser.parse_args(argv)


def _summary_fields(summary):
    return dict(
        processed=summary.processed,
        succeeded=summary.succeeded,
        skipped=summary.skipped,
        failed=summary.failed,
        contacts_created=summary.contacts_created,
    )


def main(argv=None):
    """Main entry point for the CRM email rules engine"""
    args = parse_args(argv)

    # Load environment variables
    load_dotenv()

    init_db()

    with get_db_session() as db:
        store = CRMStore(db)

        if args.command == 'init':
            load_rules(store)
            load_category_mappings(store)
            return 0

        if args.command == 'test-rule':
            rule = RuleRepository(store).get_rule(args.rule_id)
            if rule is None:
                logger.error("Rule not found", rule_id=args.rule_id)
                return 1
            with open(args.sample, 'r') as f:
                sample = json.load(f)
            print(json.dumps(test_rule(rule, sample), indent=2))
            return 0

        access_token = None if args.no_token else get_access_token()
        processor = EmailProcessor(store)

        if args.command == 'process':
            email_id = int(args.email_id) if args.email_id.isdigit() else None
            email = store.get_communication(email_id, args.email_id)
            if email is None:
                logger.error("Email not found", email_id=args.email_id)
                return 1
            result = processor.process_email(email, access_token, args.force)
            print(result.model_dump_json(indent=2, exclude_none=True))
            return 0

        limit_kwargs = {'limit': args.limit} if args.limit else {}
        if args.command == 'reprocess':
            summary = processor.reprocess_all_emails(access_token, **limit_kwargs)
        elif args.command == 'process-all':
            summary = processor.process_all_inbox_emails(access_token, **limit_kwargs)
        else:
            summary = processor.process_new_emails(access_token, **limit_kwargs)

        logger.info("Email processing completed", command=args.command, **_summary_fields(summary))
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
