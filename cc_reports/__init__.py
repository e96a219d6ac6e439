#!/usr/bin/env python3

import argparse
import json
import sys

import singer
from singer import utils

from cc_reports.client import SourceClient, DEFAULT_API_HOST, DEFAULT_PAGE_SIZE, DEFAULT_MAX_PAGES, \
    DEFAULT_REQUEST_TIMEOUT, DEFAULT_RETRY_COUNT
from cc_reports.llm import build_completion
from cc_reports.nl_query import NLQueryPlanner
from cc_reports.reports import ReportEngine, BUCKETS, DAILY, DEFAULT_PAGE_SIZE as DEFAULT_REPORT_COUNT, ORDERS
from cc_reports.store import RecordStore, KINDS, QUEUE, AGENT
from cc_reports.sync import SyncManager
from cc_reports.tokens import build_token_provider
from cc_reports.util import safe_json_serialize_deserialize

logger = singer.get_logger()

REQUIRED_CONFIG_KEYS = [
    'database_url',
]

REPORT_VARIANTS = ('queue', 'flow', 'rows', 'abandoned', 'agent-abandoned', 'login', 'team')
DEFAULT_CALLER_ID = 'cli'


def load_config(path: str) -> dict:
    config = utils.load_json(path)
    utils.check_config(config, REQUIRED_CONFIG_KEYS)
    return config


def build_store(config: dict) -> RecordStore:
    store = RecordStore(config['database_url'])
    store.create_all()
    return store


def build_sync_manager(config: dict, store: RecordStore) -> SyncManager:
    client = SourceClient(
        api_host=config.get('api_host', DEFAULT_API_HOST),
        page_size=int(config.get('page_size', DEFAULT_PAGE_SIZE)),
        max_pages=int(config.get('max_pages', DEFAULT_MAX_PAGES)),
        timeout=float(config.get('request_timeout', DEFAULT_REQUEST_TIMEOUT)),
        retry_count=int(config.get('api_retry_count', DEFAULT_RETRY_COUNT)),
    )
    return SyncManager(store, client, build_token_provider(config))


def do_sync(args, config: dict):
    store = build_store(config)
    sync_manager = build_sync_manager(config, store)

    if args.kind == AGENT:
        result = sync_manager.force_refresh(AGENT, None, None, args.user_id) if args.refresh \
            else sync_manager.ensure_directory(args.user_id)
    elif args.refresh:
        result = sync_manager.force_refresh(args.kind, args.from_date, args.to_date, args.user_id)
    else:
        result = sync_manager.ensure_range(args.kind, args.from_date, args.to_date, args.user_id)

    if result is None:
        logger.info("Cached {} data already covers the requested range, nothing to sync".format(args.kind))
        return {'kind': args.kind, 'synced': False}
    return dict(result._asdict(), synced=True)


def do_report(args, config: dict):
    store = build_store(config)
    engine = ReportEngine(store, build_sync_manager(config, store))
    common = {'page': args.page, 'count': args.count, 'caller_id': args.user_id}

    if args.variant == 'queue':
        return engine.queue_report(args.from_date, args.to_date, args.bucket, queues=args.queue, **common)
    if args.variant == 'flow':
        return engine.flow_report(args.from_date, args.to_date, args.bucket, flows=args.flow, **common)
    if args.variant == 'abandoned':
        return engine.abandoned_calls(args.from_date, args.to_date, queues=args.queue, agents=args.agent, **common)
    if args.variant == 'agent-abandoned':
        return engine.agent_abandoned(args.from_date, args.to_date, queues=args.queue,
                                      directions=args.direction, **common)
    if args.variant == 'login':
        return engine.agent_login_report(args.from_date, args.to_date, agents=args.agent, order=args.order, **common)
    if args.variant == 'team':
        return engine.team_summary(args.from_date, args.to_date, team_name=args.team, channel=args.channel,
                                   caller_id=args.user_id)

    filters = {
        'queues': args.queue,
        'agents': args.agent,
        'channels': args.channel,
        'directions': args.direction,
    }
    return engine.rows(args.kind, args.from_date, args.to_date,
                       {name: value for name, value in filters.items() if value}, order=args.order, **common)


def do_ask(args, config: dict):
    store = build_store(config)
    complete = build_completion(
        api_key=config.get('openai_api_key'),
        model=config.get('llm_model'),
        timeout=config.get('llm_timeout'),
    )
    return NLQueryPlanner(store, complete).process(args.text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='cc-report-cache')
    parser.add_argument('-c', '--config', required=True, help='Config file')
    parser.add_argument('--user-id', default=DEFAULT_CALLER_ID, help='Caller identity used to look up a token')
    commands = parser.add_subparsers(dest='command')
    commands.required = True

    sync = commands.add_parser('sync', help='Make sure a date range is cached, or re-ingest it')
    sync.add_argument('--kind', choices=sorted(KINDS), required=True)
    sync.add_argument('--from', dest='from_date')
    sync.add_argument('--to', dest='to_date')
    sync.add_argument('--refresh', action='store_true', help='Always re-ingest the range')
    sync.set_defaults(handler=do_sync)

    report = commands.add_parser('report', help='Build a report over cached data')
    report.add_argument('--variant', choices=REPORT_VARIANTS, default='queue')
    report.add_argument('--kind', choices=sorted(k for k in KINDS if k != AGENT), default=QUEUE,
                        help='Record kind for row-level reports')
    report.add_argument('--from', dest='from_date', required=True)
    report.add_argument('--to', dest='to_date', required=True)
    report.add_argument('--bucket', choices=BUCKETS, default=DAILY)
    report.add_argument('--page', type=int, default=1)
    report.add_argument('--count', type=int, default=DEFAULT_REPORT_COUNT)
    report.add_argument('--order', choices=ORDERS, default='asc')
    report.add_argument('--queue', action='append')
    report.add_argument('--agent', action='append')
    report.add_argument('--channel')
    report.add_argument('--direction', action='append')
    report.add_argument('--flow', action='append')
    report.add_argument('--team')
    report.set_defaults(handler=do_report)

    ask = commands.add_parser('ask', help='Answer a free-text reporting question')
    ask.add_argument('text')
    ask.set_defaults(handler=do_ask)

    return parser


@utils.handle_top_exception(logger)
def main(argv=None):
    args = build_parser().parse_args(argv)
    config = load_config(args.config)

    result = args.handler(args, config)
    json.dump(safe_json_serialize_deserialize(result), sys.stdout, indent=2)
    sys.stdout.write('\n')


if __name__ == '__main__':
    main()
