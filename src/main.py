#!/usr/bin/env python3
"""
Inbound Guard - command line entry point
"""
import argparse
import json
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor

import structlog
from dotenv import load_dotenv

# DATABASE_URL is read when the database package is imported
load_dotenv()

from src.ai import OpenAIGuardClient, get_model_name
from src.database import get_db_session, init_db
from src.guard import (
    GuardError,
    GuardService,
    RulesConfig,
    StructuredEmail,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = structlog.get_logger()

# Quiet the HTTP stack under the OpenAI client
logging.getLogger('openai').setLevel(logging.WARNING)
logging.getLogger('httpx').setLevel(logging.WARNING)
logging.getLogger('src.guard.matcher').setLevel(logging.INFO)


def make_ai_client():
    if not os.getenv('OPENAI_API_KEY'):
        logger.warning("OPENAI_API_KEY not set, AI prompt rules will not match")
        return None
    return OpenAIGuardClient()


def load_rules(service: GuardService, rules_file: str) -> int:
    """Load rules from a configuration file and sync them into the database"""
    try:
        with open(rules_file, 'r') as f:
            rules_data = json.load(f)
        rules_config = RulesConfig(**rules_data)
        count = service.sync_rules(rules_config)
        logger.info("Rules synced to database", count=count, file=rules_file)
        return count
    except Exception as e:
        logger.error("Error loading rules", error=str(e))
        raise


def load_email_file(path: str) -> StructuredEmail:
    with open(path, 'r') as f:
        return StructuredEmail.model_validate(json.load(f))


def evaluate_one(user_id: str, ai_client, email):
    """Evaluate one email in its own session"""
    with get_db_session() as db:
        service = GuardService(db, user_id, ai_client)
        return service.evaluate_email(email)


def cmd_init_db(args):
    init_db()
    logger.info("Database initialized")


def cmd_sync_rules(args, service):
    load_rules(service, args.file)


def cmd_list(args, service):
    page = service.list_rules(
        search=args.search,
        rule_type=args.type,
        is_active=args.active,
        limit=args.limit,
        offset=args.offset,
    )
    print(page.model_dump_json(indent=2, by_alias=True))


def cmd_evaluate(args):
    emails = list(args.email_id or [])
    emails.extend(load_email_file(path) for path in args.files or [])
    if not emails:
        logger.error("Nothing to evaluate, pass email files or --email-id")
        return 1

    ai_client = make_ai_client()
    logger.info("Evaluating emails", count=len(emails), workers=args.workers, model=get_model_name())
    with ThreadPoolExecutor(max_workers=args.workers) as pool:
        results = list(pool.map(lambda email: evaluate_one(args.user, ai_client, email), emails))

    for result in results:
        print(result.model_dump_json(indent=2))
    return 0


def cmd_check(args, service):
    email = args.email_id or load_email_file(args.email_file)
    result = service.check_rule(args.rule_id, email)
    print(result.model_dump_json(indent=2))


def cmd_generate(args, service):
    result = service.generate_rule(args.description)
    if not result.ok:
        logger.error("Rule generation failed", error=result.error)
        return 1
    print(result.config.to_json())
    return 0


def cmd_delete(args, service):
    service.delete_rule(args.rule_id)
    logger.info("Rule deleted", rule_id=args.rule_id)


def cmd_add_endpoint(args, service):
    endpoint = service.endpoints.create_endpoint(args.name, args.type, is_active=not args.inactive)
    print(endpoint.model_dump_json(indent=2))


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description='Inbound Guard rule engine')
    parser.add_argument('--user', default=os.getenv('GUARD_USER_ID', 'default'),
                        help='User whose rules are used')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('init-db', help='Create database tables')

    sync = sub.add_parser('sync-rules', help='Upsert rules from a JSON rules file')
    sync.add_argument('--file', default=os.getenv('RULES_FILE', 'config/rules.json'))

    lst = sub.add_parser('list', help='List rules')
    lst.add_argument('--search')
    lst.add_argument('--type', choices=['explicit', 'ai_prompt'])
    active = lst.add_mutually_exclusive_group()
    active.add_argument('--active', dest='active', action='store_const', const=True)
    active.add_argument('--inactive', dest='active', action='store_const', const=False)
    lst.add_argument('--limit', type=int)
    lst.add_argument('--offset', type=int)

    evaluate = sub.add_parser('evaluate', help='Evaluate emails against active rules')
    evaluate.add_argument('files', nargs='*', help='Structured email JSON files')
    evaluate.add_argument('--email-id', action='append', help='Id of a stored email (repeatable)')
    evaluate.add_argument('--workers', type=int, default=4)

    check = sub.add_parser('check', help='Test one rule against one email without recording stats')
    check.add_argument('rule_id')
    target = check.add_mutually_exclusive_group(required=True)
    target.add_argument('--email-id')
    target.add_argument('--email-file')

    generate = sub.add_parser('generate', help='Draft an explicit rule config from a description')
    generate.add_argument('description')

    delete = sub.add_parser('delete', help='Delete a rule')
    delete.add_argument('rule_id')

    endpoint = sub.add_parser('add-endpoint', help='Register a delivery endpoint')
    endpoint.add_argument('name')
    endpoint.add_argument('--type', default='webhook', choices=['webhook', 'email', 'email_group'])
    endpoint.add_argument('--inactive', action='store_true')

    return parser.parse_args(argv)


SERVICE_COMMANDS = {
    'sync-rules': cmd_sync_rules,
    'list': cmd_list,
    'check': cmd_check,
    'generate': cmd_generate,
    'delete': cmd_delete,
    'add-endpoint': cmd_add_endpoint,
}


def main(argv=None):
    """Main entry point for the Inbound Guard CLI"""
    args = parse_args(argv)
    try:
        if args.command == 'init-db':
            return cmd_init_db(args)
        if args.command == 'evaluate':
            return cmd_evaluate(args)

        ai_client = make_ai_client() if args.command in ('check', 'generate') else None
        with get_db_session() as db:
            service = GuardService(db, args.user, ai_client)
            return SERVICE_COMMANDS[args.command](args, service)
    except GuardError as e:
        logger.error("Guard command failed", command=args.command, error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
