import collections

import singer
from sqlalchemy.exc import IntegrityError

from cc_reports.errors import AuthorizationMissing, UpstreamShapeError, ValidationError
from cc_reports.store import (
    KINDS, QUEUE, PERFORMANCE, TIMECARD, ENGAGEMENT, AGENT, CALL_LOG,
)
from cc_reports.util import normalize_timestamp, first_item, join_values

logger = singer.get_logger()

MILLISECONDS_PER_SECOND = 1000

IngestSpec = collections.namedtuple('IngestSpec', ['path', 'records_key', 'transform'])
IngestResult = collections.namedtuple('IngestResult', ['kind', 'pages', 'records', 'inserted', 'stop_reason'])


def project_record(schema: dict, item: dict, seconds_to_ms=False) -> dict:
    """
    Keeps only the schema's columns. Numeric fields default to 0 and text
    fields to ''. With seconds_to_ms, millisecond columns are scaled from
    upstream seconds.
    """
    record = {}
    for column, prop in schema['properties'].items():
        value = item.get(column)
        types = prop['type']

        if prop.get('format') == 'date-time':
            record[column] = normalize_timestamp(value)
        elif 'integer' in types:
            value = value or 0
            if seconds_to_ms and prop.get('description') == 'milliseconds':
                value = round(value * MILLISECONDS_PER_SECOND)
            record[column] = value
        elif 'boolean' in types:
            record[column] = None if value is None else bool(value)
        else:
            record[column] = '' if value is None else str(value)
    return record


def handle_queue_interaction(item: dict) -> dict:
    consumer = first_item(item.get('consumers'))
    flow = first_item(item.get('flows'))
    queue = first_item(item.get('queues'))
    agent = first_item(item.get('agents'))
    channel = first_item(item.get('channels'))

    channel_types = item.get('channel_types')
    if isinstance(channel_types, list):
        channel_types = ','.join(channel_types)

    flattened = dict(item)
    flattened.update({
        'channel_types': channel_types,
        'consumer_number': consumer.get('consumer_number'),
        'consumer_id': consumer.get('consumer_id'),
        'consumer_display_name': consumer.get('consumer_display_name'),
        'flow_id': flow.get('flow_id'),
        'flow_name': flow.get('flow_name'),
        'cc_queue_id': queue.get('cc_queue_id'),
        'queue_name': queue.get('queue_name'),
        'user_id': agent.get('user_id'),
        'display_name': agent.get('display_name'),
        'channel': channel.get('channel'),
        'channel_source': channel.get('channel_source'),
        'transfer_count': item.get('transferCount', item.get('transfer_count')),
    })
    return project_record(KINDS[QUEUE].schema, flattened, seconds_to_ms=True)


def handle_performance(item: dict) -> dict:
    return project_record(KINDS[PERFORMANCE].schema, item)


def handle_timecard(item: dict) -> dict:
    flattened = dict(item)
    flattened['duration'] = (
        item.get('ready_duration')
        or item.get('occupied_duration')
        or item.get('not_ready_duration')
        or item.get('work_session_duration')
        or 0
    )
    return project_record(KINDS[TIMECARD].schema, flattened)


def handle_engagement(item: dict) -> dict:
    channel = first_item(item.get('channels'))
    queues = item.get('queues')
    users = item.get('users')

    flattened = dict(item)
    flattened.update({
        'channel': channel.get('channel'),
        'channel_source': channel.get('channel_source'),
        'queue_id': join_values(queues, 'queue_id'),
        'queue_name': join_values(queues, 'queue_name'),
        'user_id': join_values(users, 'user_id'),
        'user_name': join_values(users, 'user_name'),
    })
    return project_record(KINDS[ENGAGEMENT].schema, flattened)


def handle_agent(item: dict) -> dict:
    return project_record(KINDS[AGENT].schema, {
        'user_id': item.get('user_id'),
        'user_name': item.get('display_name'),
    })


def handle_call_log(item: dict) -> dict:
    return project_record(KINDS[CALL_LOG].schema, item)


INGEST_SPECS = {
    QUEUE: IngestSpec('/contact_center/engagements', 'engagements', handle_queue_interaction),
    PERFORMANCE: IngestSpec('/contact_center/analytics/dataset/historical/agent_performance', 'users',
                            handle_performance),
    TIMECARD: IngestSpec('/contact_center/analytics/dataset/historical/agent_timecard', 'users',
                         handle_timecard),
    ENGAGEMENT: IngestSpec('/contact_center/analytics/dataset/historical/engagement', 'engagements',
                           handle_engagement),
    AGENT: IngestSpec('/contact_center/users', 'users', handle_agent),
    CALL_LOG: IngestSpec('/phone/call_history', 'call_logs', handle_call_log),
}

# kinds whose forced refresh purges the range before re-ingesting
PURGE_ON_REFRESH = (TIMECARD, )


class SyncManager(object):
    """
    Cache-on-demand policy shared by every record kind: a range is fetched
    from upstream only when the store holds no row of that kind in it.

    Concurrent callers are not coalesced. Two requests for the same empty
    range both ingest it and the natural-key duplicate skip keeps the
    result correct.
    """

    def __init__(self, store, client, get_token):
        self.store = store
        self.client = client
        self.get_token = get_token

    def _spec(self, kind: str) -> IngestSpec:
        if kind not in INGEST_SPECS:
            raise ValidationError("Unknown record kind: {}".format(kind))
        return INGEST_SPECS[kind]

    def _range(self, kind, from_date, to_date):
        if not KINDS[kind].ranged:
            return None, None
        if not from_date or not to_date:
            raise ValidationError("Date is required")
        try:
            return normalize_timestamp(from_date), normalize_timestamp(to_date)
        except (TypeError, ValueError, OverflowError):
            raise ValidationError("Invalid date range: {} - {}".format(from_date, to_date))

    def _token(self, caller_id):
        token = self.get_token(caller_id)
        if not token:
            raise AuthorizationMissing()
        return token

    def ensure_range(self, kind, from_date, to_date, caller_id):
        """Ingests [from_date, to_date] unless at least one row of kind already lies in it."""
        self._spec(kind)
        from_ts, to_ts = self._range(kind, from_date, to_date)

        if self.store.has_rows(kind, from_ts, to_ts):
            logger.debug("Found cached {} records between {} and {}".format(kind, from_ts, to_ts))
            return None

        return self.ingest(kind, from_date, to_date, caller_id)

    def ensure_directory(self, caller_id):
        return self.ensure_range(AGENT, None, None, caller_id)

    def force_refresh(self, kind, from_date, to_date, caller_id, cancel_event=None):
        self._spec(kind)
        from_ts, to_ts = self._range(kind, from_date, to_date)
        token = self._token(caller_id)

        if kind in PURGE_ON_REFRESH:
            self.store.delete_range(kind, from_ts, to_ts)

        return self._ingest(kind, from_date, to_date, token, cancel_event)

    def ingest(self, kind, from_date, to_date, caller_id, cancel_event=None):
        self._spec(kind)
        self._range(kind, from_date, to_date)
        token = self._token(caller_id)
        return self._ingest(kind, from_date, to_date, token, cancel_event)

    def _transform_page(self, kind, spec, records) -> list:
        """Flattens one page; unparseable items and items without a full natural key are skipped."""
        natural_key = KINDS[kind].natural_key
        rows = []
        for item in records:
            if not isinstance(item, dict):
                continue

            try:
                row = spec.transform(item)
            except (ValueError, TypeError, OverflowError) as error:
                logger.error("Skipping unparseable {} record {}: {}".format(kind, item, error))
                continue

            missing = [column for column in natural_key if row.get(column) is None]
            if missing:
                logger.warning("Skipping {} record without {}: {}".format(kind, ', '.join(missing), item))
                continue

            rows.append(row)
        return rows

    def _ingest(self, kind, from_date, to_date, token, cancel_event=None) -> IngestResult:
        spec = INGEST_SPECS[kind]
        params = {}
        if KINDS[kind].ranged:
            params = {'from': from_date, 'to': to_date}
            logger.info("Syncing {} records between {} and {}".format(kind, from_date, to_date))
        else:
            logger.info("Syncing {} records".format(kind))

        pages = self.client.pages(spec.path, spec.records_key, token, params=params, cancel_event=cancel_event)
        total_records = 0
        total_inserted = 0

        try:
            for records in pages:
                rows = self._transform_page(kind, spec, records)
                total_records += len(rows)

                if not rows:
                    logger.info("No {} data fetched on page {}".format(kind, pages.pages_fetched))
                    continue

                try:
                    total_inserted += self.store.insert_ignore(kind, rows)
                except IntegrityError as error:
                    logger.error("Failed to insert {} batch on page {}: {}".format(kind, pages.pages_fetched, error))
        except UpstreamShapeError as error:
            logger.warning("Stopping {} sync: {}".format(kind, error))

        logger.info("Finished syncing {}: {} pages, {} records, {} new".format(
            kind, pages.pages_fetched, total_records, total_inserted))
        return IngestResult(kind, pages.pages_fetched, total_records, total_inserted, pages.stop_reason)
