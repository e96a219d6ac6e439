"""
Time-bucketed reporting over the record store.

Stored timestamps are 'YYYY-MM-DD HH:MM:SS' text, so bucket labels are built
from fixed substrings: the date (chars 1-10), the hour prefix (1-13) and the
minute (15-16). Interval buckets floor the minute to a multiple of N measured
from the top of the hour.
"""
import collections

import singer
import sqlalchemy as sa

from cc_reports.errors import ValidationError
from cc_reports.store import KINDS, QUEUE, PERFORMANCE, TIMECARD, ENGAGEMENT, CALL_LOG
from cc_reports.util import normalize_timestamp, safe_json_serialize_deserialize

logger = singer.get_logger()

ROW = 'row'
DAILY = 'daily'
INTERVAL_15 = 'interval-15'
INTERVAL_30 = 'interval-30'
INTERVAL_60 = 'interval-60'

INTERVAL_MINUTES = {
    INTERVAL_15: 15,
    INTERVAL_30: 30,
    INTERVAL_60: 60,
}
BUCKETS = (ROW, DAILY, INTERVAL_15, INTERVAL_30, INTERVAL_60)

DEFAULT_PAGE_SIZE = 50
ORDERS = ('asc', 'desc')

QUEUE_DIMENSION = 'queue'
FLOW_DIMENSION = 'flow'

# (id column, name column, id label, name label)
DIMENSIONS = {
    QUEUE_DIMENSION: ('cc_queue_id', 'queue_name', 'queueId', 'queueName'),
    FLOW_DIMENSION: ('flow_id', 'flow_name', 'flowId', 'flowName'),
}

FILTER_COLUMNS = {
    QUEUE: {
        'queues': 'queue_name',
        'agents': 'display_name',
        'channels': 'channel',
        'directions': 'direction',
        'flows': 'flow_name',
    },
    PERFORMANCE: {
        'queues': 'queue_name',
        'agents': 'user_name',
        'channels': 'channel',
        'directions': 'direction',
        'teams': 'team_name',
    },
    TIMECARD: {
        'agents': 'user_name',
        'statuses': 'user_status',
    },
    ENGAGEMENT: {
        'queues': 'queue_name',
        'agents': 'user_name',
        'channels': 'enter_channel',
        'directions': 'direction',
    },
    CALL_LOG: {
        'directions': 'direction',
        'channels': 'connect_type',
    },
}


def bucket_expression(column, bucket: str):
    if bucket == DAILY:
        return sa.func.substr(column, 1, 10, type_=sa.String)

    if bucket not in INTERVAL_MINUTES:
        raise ValidationError("Invalid grouping or interval: {}".format(bucket))

    minutes = INTERVAL_MINUTES[bucket]
    hour = sa.func.substr(column, 1, 13, type_=sa.String)
    if minutes == 60:
        return hour.concat(':00')

    minute = sa.func.substr(column, 15, 2, type_=sa.String)
    starts = list(range(0, 60, minutes))
    # zero-padded minutes compare correctly as text
    whens = [(minute < '{:02d}'.format(upper), '{:02d}'.format(lower)) for lower, upper in zip(starts, starts[1:])]
    return hour.concat(':').concat(sa.case(*whens, else_='{:02d}'.format(starts[-1])))


def percentage(part, whole) -> str:
    if not whole:
        return '0.0'
    return '{:.1f}'.format(part / whole * 100)


def _number(value):
    return value if value is not None else 0


class ReportEngine(object):
    def __init__(self, store, sync_manager):
        self.store = store
        self.sync = sync_manager

    def _validate_paging(self, page, count):
        if not isinstance(count, int) or isinstance(count, bool) or count < 1:
            raise ValidationError("count must be a positive integer")
        if not isinstance(page, int) or isinstance(page, bool) or page < 1:
            raise ValidationError("page must be 1 or greater")
        return (page - 1) * count

    def _scope(self, kind, from_date, to_date, filters, caller_id):
        """Validates the range, makes sure the store holds it and returns the WHERE clauses."""
        if kind not in FILTER_COLUMNS:
            raise ValidationError("Reports are not available for {}".format(kind))
        if not from_date or not to_date:
            raise ValidationError("Date is required")
        try:
            from_ts, to_ts = normalize_timestamp(from_date), normalize_timestamp(to_date)
        except (TypeError, ValueError, OverflowError):
            raise ValidationError("Invalid date range: {} - {}".format(from_date, to_date))

        self.sync.ensure_range(kind, from_date, to_date, caller_id)

        table = self.store.table(kind)
        clauses = [self.store.range_clause(kind, from_ts, to_ts)]
        for name, value in (filters or {}).items():
            if value is None or value == [] or value == '':
                continue
            column_name = FILTER_COLUMNS[kind].get(name)
            if column_name is None:
                raise ValidationError("Unsupported filter '{}' for {}".format(name, kind))
            column = table.c[column_name]
            if isinstance(value, (list, tuple, set)):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        return table, clauses

    def report(self, kind, from_date, to_date, bucket, filters=None, page=1, count=DEFAULT_PAGE_SIZE,
               caller_id=None, dimension=QUEUE_DIMENSION, order='asc'):
        """
        Row-level or bucketed report. Bucketed reports group queue
        interactions by (bucket, dimension id, dimension name) and their
        totalRecords is the number of groups.
        """
        if bucket not in BUCKETS:
            raise ValidationError("Invalid grouping or interval: {}".format(bucket))
        if bucket == ROW:
            return self.rows(kind, from_date, to_date, filters, page, count, caller_id, order)
        if kind != QUEUE:
            raise ValidationError("Bucketed reports are only available for {}".format(QUEUE))
        if dimension not in DIMENSIONS:
            raise ValidationError("Unknown report dimension: {}".format(dimension))

        offset = self._validate_paging(page, count)
        table, clauses = self._scope(kind, from_date, to_date, filters, caller_id)
        id_column, name_column, id_label, name_label = DIMENSIONS[dimension]

        scoped = sa.select(
            bucket_expression(table.c.start_time, bucket).label('date'),
            *[column for column in table.c if column.name != 'id'],
        ).where(*clauses).subquery('scoped')

        handling = scoped.c.handling_duration
        wrap_up = scoped.c.wrap_up_duration
        group_by = (scoped.c.date, scoped.c[id_column], scoped.c[name_column])

        columns = [
            scoped.c.date,
            scoped.c[id_column].label(id_label),
            scoped.c[name_column].label(name_label),
            sa.func.count(scoped.c.engagement_id).label('totalOffered'),
            sa.func.sum(sa.case((handling > 0, 1), else_=0)).label('totalAnswered'),
            sa.func.sum(sa.case((handling == 0, 1), else_=0)).label('abandonedCalls'),
            sa.func.sum(handling).label('acdTime'),
            sa.func.sum(wrap_up).label('acwTime'),
            sa.func.sum(scoped.c.waiting_duration).label('agentRingTime'),
            sa.func.avg(sa.case((handling > 0, handling + wrap_up), else_=None)).label('avgHandleTime'),
            sa.func.avg(sa.case((wrap_up > 0, wrap_up), else_=None)).label('avgAcwTime'),
            sa.func.max(handling + wrap_up).label('maxHandleTime'),
            sa.func.sum(scoped.c.transfer_count).label('transferCount'),
            sa.func.sum(sa.case((scoped.c.channel == 'voice', 1), else_=0)).label('voiceCalls'),
            sa.func.sum(sa.case((scoped.c.channel != 'voice', 1), else_=0)).label('digitalInteractions'),
        ]
        if dimension == FLOW_DIMENSION:
            columns += [
                sa.func.sum(sa.case((scoped.c.direction == 'inbound', 1), else_=0)).label('inboundCalls'),
                sa.func.sum(sa.case((scoped.c.direction == 'outbound', 1), else_=0)).label('outboundCalls'),
            ]

        query = (
            sa.select(*columns)
            .group_by(*group_by)
            .order_by(scoped.c.date, scoped.c[name_column], scoped.c[id_column])
            .limit(count)
            .offset(offset)
        )
        groups = sa.select(*group_by).group_by(*group_by).subquery('groups')
        total = self.store.scalar(sa.select(sa.func.count()).select_from(groups))

        report = []
        for row in self.store.read(query):
            formatted = {
                'date': row['date'],
                id_label: row[id_label],
                name_label: row[name_label],
                'totalOffered': int(_number(row['totalOffered'])),
                'totalAnswered': int(_number(row['totalAnswered'])),
                'abandonedCalls': int(_number(row['abandonedCalls'])),
                'acdTime': int(_number(row['acdTime'])),
                'acwTime': int(_number(row['acwTime'])),
                'agentRingTime': int(_number(row['agentRingTime'])),
                'avgHandleTime': float(_number(row['avgHandleTime'])),
                'avgAcwTime': float(_number(row['avgAcwTime'])),
                'maxHandleTime': int(_number(row['maxHandleTime'])),
                'transferCount': int(_number(row['transferCount'])),
                'voiceCalls': int(_number(row['voiceCalls'])),
                'digitalInteractions': int(_number(row['digitalInteractions'])),
            }
            if dimension == FLOW_DIMENSION:
                formatted['inboundCalls'] = int(_number(row['inboundCalls']))
                formatted['outboundCalls'] = int(_number(row['outboundCalls']))
                formatted['successPercentage'] = percentage(formatted['totalAnswered'], formatted['totalOffered'])
                formatted['abandonPercentage'] = percentage(formatted['abandonedCalls'], formatted['totalOffered'])
            report.append(formatted)

        return {
            'success': True,
            'report': report,
            'totalRecords': total,
        }

    def queue_report(self, from_date, to_date, bucket, queues=None, page=1, count=DEFAULT_PAGE_SIZE, caller_id=None):
        return self.report(QUEUE, from_date, to_date, bucket, {'queues': queues}, page, count,
                           caller_id=caller_id, dimension=QUEUE_DIMENSION)

    def flow_report(self, from_date, to_date, bucket, flows=None, page=1, count=DEFAULT_PAGE_SIZE, caller_id=None):
        return self.report(QUEUE, from_date, to_date, bucket, {'flows': flows}, page, count,
                           caller_id=caller_id, dimension=FLOW_DIMENSION)

    def rows(self, kind, from_date, to_date, filters=None, page=1, count=DEFAULT_PAGE_SIZE, caller_id=None,
             order='asc', extra_clauses=()):
        if order not in ORDERS:
            raise ValidationError("order must be one of {}".format(', '.join(ORDERS)))

        offset = self._validate_paging(page, count)
        table, clauses = self._scope(kind, from_date, to_date, filters, caller_id)
        clauses += [clause(table) for clause in extra_clauses]

        start_time = table.c.start_time.asc() if order == 'asc' else table.c.start_time.desc()
        query = (
            sa.select(*[column for column in table.c if column.name != 'id'])
            .where(*clauses)
            .order_by(start_time, table.c.id)
            .limit(count)
            .offset(offset)
        )
        total = self.store.scalar(sa.select(sa.func.count()).select_from(table).where(*clauses))

        return {
            'success': True,
            'report': safe_json_serialize_deserialize(self.store.read(query)),
            'totalRecords': total,
        }

    def abandoned_calls(self, from_date, to_date, queues=None, agents=None, page=1, count=DEFAULT_PAGE_SIZE,
                        caller_id=None):
        result = self.rows(QUEUE, from_date, to_date, {'queues': queues, 'agents': agents}, page, count,
                           caller_id, extra_clauses=[lambda table: table.c.handling_duration == 0])
        result['report'] = [format_abandoned(row) for row in result['report']]
        return result

    def agent_abandoned(self, from_date, to_date, queues=None, directions=None, page=1, count=DEFAULT_PAGE_SIZE,
                        caller_id=None):
        clauses = [
            lambda table: table.c.handling_duration == 0,
            lambda table: table.c.waiting_duration > 0,
        ]
        result = self.rows(QUEUE, from_date, to_date, {'queues': queues, 'directions': directions}, page, count,
                           caller_id, extra_clauses=clauses)
        result['report'] = [format_abandoned(row) for row in result['report']]
        return result

    def agent_login_report(self, from_date, to_date, agents=None, page=1, count=DEFAULT_PAGE_SIZE, caller_id=None,
                           order='asc'):
        """One row per (agent, work session): first start, last end and summed status duration."""
        if order not in ORDERS:
            raise ValidationError("order must be one of {}".format(', '.join(ORDERS)))

        offset = self._validate_paging(page, count)
        table, clauses = self._scope(TIMECARD, from_date, to_date, {'agents': agents}, caller_id)
        group_by = (table.c.user_name, table.c.work_session_id)

        start_time = sa.func.min(table.c.start_time).label('start_time')
        query = (
            sa.select(
                table.c.user_name,
                table.c.work_session_id,
                start_time,
                sa.func.max(table.c.end_time).label('end_time'),
                sa.func.sum(table.c.duration).label('duration'),
            )
            .where(*clauses)
            .group_by(*group_by)
            .order_by(start_time.asc() if order == 'asc' else start_time.desc(), *group_by)
            .limit(count)
            .offset(offset)
        )
        sessions = sa.select(*group_by).where(*clauses).group_by(*group_by).subquery('sessions')
        total = self.store.scalar(sa.select(sa.func.count()).select_from(sessions))

        report = [
            {
                'work_session_id': row['work_session_id'],
                'start_time': row['start_time'],
                'end_time': row['end_time'],
                'user_name': row['user_name'],
                'duration': int(_number(row['duration'])),
            }
            for row in self.store.read(query)
        ]
        return {
            'success': True,
            'report': report,
            'totalRecords': total,
        }

    def team_summary(self, from_date, to_date, team_name=None, channel=None, caller_id=None):
        table, clauses = self._scope(PERFORMANCE, from_date, to_date,
                                     {'teams': team_name, 'channels': channel}, caller_id)
        query = sa.select(
            table.c.team_name,
            table.c.channel,
            table.c.direction,
            table.c.queue_name,
            table.c.handle_duration,
            table.c.hold_count,
            table.c.wrap_up_duration,
            table.c.transfer_initiated_count,
            table.c.transfer_completed_count,
        ).where(*clauses).order_by(table.c.team_name, table.c.id)

        by_team = collections.OrderedDict()
        for row in self.store.read(query):
            if row['team_name']:
                by_team.setdefault(row['team_name'], []).append(row)

        return {
            'success': True,
            'report': [summarize_team(team, rows) for team, rows in by_team.items()],
            'totalRecords': len(by_team),
        }


def _distinct(rows, key):
    values = []
    for row in rows:
        if row[key] and row[key] not in values:
            values.append(row[key])
    return values


def summarize_team(team_name, rows):
    interactions = len(rows)

    def total(key):
        return sum(_number(row[key]) for row in rows)

    return {
        'team_name': team_name,
        'total_interactions': interactions,
        'avg_handle_duration': round(total('handle_duration') / interactions) if interactions else 0,
        'total_hold_count': total('hold_count'),
        'avg_wrap_up_duration': round(total('wrap_up_duration') / interactions) if interactions else 0,
        'channels': _distinct(rows, 'channel'),
        'directions': _distinct(rows, 'direction'),
        'transfer_initiated': total('transfer_initiated_count'),
        'transfer_completed': total('transfer_completed_count'),
        'queues': _distinct(rows, 'queue_name'),
    }


def format_abandoned(row):
    return {
        'startTime': row['start_time'] or 'N/A',
        'engagementId': row['engagement_id'] or 'N/A',
        'direction': row['direction'] or 'N/A',
        'consumerNumber': row['consumer_number'] or 'N/A',
        'consumerId': row['consumer_id'] or 'N/A',
        'consumerDisplayName': row['consumer_display_name'] or 'N/A',
        'queueId': row['cc_queue_id'] or 'N/A',
        'queueName': row['queue_name'] or 'N/A',
        'agentId': row['user_id'] or 'N/A',
        'agentName': row['display_name'] or 'N/A',
        'channel': row['channel'] or 'N/A',
        'queueWaitType': row['queue_wait_type'] or 'N/A',
        'waitingDuration': int(_number(row['waiting_duration'])),
        'voiceMail': int(_number(row['voice_mail'])),
        'transferCount': int(_number(row['transfer_count'])),
    }
