import pytest
import sqlalchemy as sa

from cc_reports.errors import ValidationError
from cc_reports.reports import ReportEngine, percentage, DAILY, INTERVAL_15, INTERVAL_30, INTERVAL_60, ROW
from cc_reports.store import QUEUE, PERFORMANCE, TIMECARD
from cc_reports.sync import INGEST_SPECS, handle_queue_interaction, handle_performance, handle_timecard

FROM = '2024-01-01'
TO = '2024-01-02'


@pytest.fixture
def engine(store, sync_manager):
    return ReportEngine(store, sync_manager)


@pytest.fixture
def seed(store, engagement):
    def insert(*items):
        store.insert_ignore(QUEUE, [handle_queue_interaction(engagement(*args, **kwargs)) for args, kwargs in items])
    return insert


def item(engagement_id, start_time, **kwargs):
    return (engagement_id, start_time), kwargs


class TestBuckets:
    @pytest.mark.parametrize('bucket, expected', [
        (INTERVAL_15, '2024-01-01 10:45'),
        (INTERVAL_30, '2024-01-01 10:30'),
        (INTERVAL_60, '2024-01-01 10:00'),
        (DAILY, '2024-01-01'),
    ])
    def test_minute_47(self, engine, seed, bucket, expected):
        seed(item('e-1', '2024-01-01T10:47:12Z'))

        result = engine.queue_report(FROM, TO, bucket, caller_id='alice')

        assert [row['date'] for row in result['report']] == [expected]

    @pytest.mark.parametrize('minute, expected', [
        ('00', '10:00'), ('14', '10:00'), ('15', '10:15'), ('29', '10:15'), ('30', '10:30'), ('59', '10:45'),
    ])
    def test_quarter_hour_boundaries(self, engine, seed, minute, expected):
        seed(item('e-1', '2024-01-01T10:{}:00Z'.format(minute)))

        result = engine.queue_report(FROM, TO, INTERVAL_15, caller_id='alice')

        assert result['report'][0]['date'] == '2024-01-01 ' + expected

    def test_same_bucket_rows_are_grouped(self, engine, seed):
        seed(item('e-1', '2024-01-01T10:31:00Z'), item('e-2', '2024-01-01T10:59:59Z'),
             item('e-3', '2024-01-01T11:00:00Z'))

        result = engine.queue_report(FROM, TO, INTERVAL_30, caller_id='alice')

        assert [(row['date'], row['totalOffered']) for row in result['report']] == [
            ('2024-01-01 10:30', 2),
            ('2024-01-01 11:00', 1),
        ]


class TestQueueReport:
    def test_daily_report_after_two_page_ingest(self, engine, store, upstream, engagement):
        upstream.add_pages(
            INGEST_SPECS[QUEUE].path,
            {'engagements': [
                engagement('e-1', '2024-01-01T08:00:00Z', queue='Sales', queue_id='q-sales', handling=60),
                engagement('e-2', '2024-01-01T09:00:00Z', queue='Support', queue_id='q-support'),
            ]},
            {'engagements': [
                engagement('e-3', '2024-01-01T15:00:00Z', queue='Sales', queue_id='q-sales'),
            ]},
        )

        result = engine.queue_report(FROM, TO, DAILY, caller_id='alice')

        assert len(upstream.calls) == 2
        raw = store.read(sa.select(store.table(QUEUE).c.queue_name))
        assert [(row['date'], row['queueName'], row['totalOffered']) for row in result['report']] == [
            ('2024-01-01', 'Sales', sum(1 for r in raw if r['queue_name'] == 'Sales')),
            ('2024-01-01', 'Support', sum(1 for r in raw if r['queue_name'] == 'Support')),
        ]
        assert result['report'][0]['queueId'] == 'q-sales'
        assert result['totalRecords'] == 2

    def test_metrics(self, engine, seed):
        seed(
            item('e-1', '2024-01-01T08:00:00Z', handling=60, wrap_up=10, transfers=1),
            item('e-2', '2024-01-01T08:10:00Z', waiting=5),
            item('e-3', '2024-01-01T08:20:00Z', handling=120, channel='chat'),
        )

        row = engine.queue_report(FROM, TO, DAILY, caller_id='alice')['report'][0]

        assert row['totalOffered'] == 3
        assert row['totalAnswered'] == 2
        assert row['abandonedCalls'] == 1
        assert row['acdTime'] == 180000
        assert row['acwTime'] == 10000
        assert row['agentRingTime'] == 5000
        assert row['avgHandleTime'] == 95000.0
        assert row['avgAcwTime'] == 10000.0
        assert row['maxHandleTime'] == 120000
        assert row['transferCount'] == 1
        assert row['voiceCalls'] == 2
        assert row['digitalInteractions'] == 1

    def test_rows_outside_range_are_ignored(self, engine, seed):
        seed(item('e-1', '2024-01-01T08:00:00Z'), item('e-2', '2024-01-03T08:00:00Z'))

        result = engine.queue_report(FROM, TO, DAILY, caller_id='alice')

        assert [row['totalOffered'] for row in result['report']] == [1]

    def test_queue_filter(self, engine, seed):
        seed(item('e-1', '2024-01-01T08:00:00Z', queue='Sales'), item('e-2', '2024-01-01T08:00:00Z', queue='Support'))

        result = engine.queue_report(FROM, TO, DAILY, queues=['Support'], caller_id='alice')

        assert [row['queueName'] for row in result['report']] == ['Support']

    def test_total_records_counts_groups_across_pages(self, engine, seed):
        seed(
            item('e-1', '2024-01-01T08:00:00Z', queue='Billing', queue_id='q-1'),
            item('e-2', '2024-01-01T08:00:00Z', queue='Sales', queue_id='q-2'),
            item('e-3', '2024-01-01T09:00:00Z', queue='Sales', queue_id='q-2'),
            item('e-4', '2024-01-01T08:00:00Z', queue='Support', queue_id='q-3'),
        )

        first = engine.queue_report(FROM, TO, DAILY, page=1, count=2, caller_id='alice')
        second = engine.queue_report(FROM, TO, DAILY, page=2, count=2, caller_id='alice')

        assert [row['queueName'] for row in first['report']] == ['Billing', 'Sales']
        assert [row['queueName'] for row in second['report']] == ['Support']
        assert first['totalRecords'] == second['totalRecords'] == 3

    def test_empty_range_returns_no_rows(self, engine):
        result = engine.queue_report(FROM, TO, DAILY, caller_id='alice')

        assert result == {'success': True, 'report': [], 'totalRecords': 0}


class TestFlowReport:
    def test_percentages(self, engine, seed):
        seed(
            item('e-1', '2024-01-01T08:00:00Z', handling=30),
            item('e-2', '2024-01-01T08:05:00Z', handling=40, direction='outbound'),
            item('e-3', '2024-01-01T08:10:00Z'),
        )

        row = engine.flow_report(FROM, TO, DAILY, flows=['Main IVR'], caller_id='alice')['report'][0]

        assert row['flowName'] == 'Main IVR'
        assert row['flowId'] == 'f-main'
        assert row['inboundCalls'] == 2
        assert row['outboundCalls'] == 1
        assert row['successPercentage'] == '66.7'
        assert row['abandonPercentage'] == '33.3'

    def test_percentage_of_nothing(self):
        assert percentage(0, 0) == '0.0'
        assert percentage(1, 4) == '25.0'


class TestRows:
    def test_row_level_report_desc(self, engine, seed):
        seed(item('e-1', '2024-01-01T08:00:00Z'), item('e-2', '2024-01-01T09:00:00Z'))

        result = engine.rows(QUEUE, FROM, TO, order='desc', caller_id='alice')

        assert [row['engagement_id'] for row in result['report']] == ['e-2', 'e-1']
        assert result['totalRecords'] == 2
        assert 'id' not in result['report'][0]

    def test_report_with_row_bucket(self, engine, seed):
        seed(item('e-1', '2024-01-01T08:00:00Z'))

        result = engine.report(QUEUE, FROM, TO, ROW, filters={'agents': ['Melissa']}, caller_id='alice')

        assert [row['display_name'] for row in result['report']] == ['Melissa']

    def test_abandoned_calls(self, engine, seed):
        seed(item('e-1', '2024-01-01T08:00:00Z', handling=30), item('e-2', '2024-01-01T08:05:00Z', waiting=7))

        result = engine.abandoned_calls(FROM, TO, caller_id='alice')

        assert result['totalRecords'] == 1
        row = result['report'][0]
        assert row['engagementId'] == 'e-2'
        assert row['waitingDuration'] == 7000
        assert row['queueName'] == 'Sales'
        assert row['startTime'] == '2024-01-01 08:05:00'

    def test_agent_abandoned_needs_waiting_time(self, engine, seed):
        seed(
            item('e-1', '2024-01-01T08:00:00Z'),
            item('e-2', '2024-01-01T08:05:00Z', waiting=7),
            item('e-3', '2024-01-01T08:10:00Z', waiting=3, direction='outbound'),
        )

        result = engine.agent_abandoned(FROM, TO, directions=['inbound'], caller_id='alice')

        assert [row['engagementId'] for row in result['report']] == ['e-2']

    def test_missing_fields_default_to_na(self, engine, store):
        store.insert_ignore(QUEUE, [handle_queue_interaction({'engagement_id': 'e-1',
                                                              'start_time': '2024-01-01T08:00:00Z'})])

        row = engine.abandoned_calls(FROM, TO, caller_id='alice')['report'][0]

        assert row['queueName'] == 'N/A'
        assert row['agentName'] == 'N/A'
        assert row['voiceMail'] == 0


class TestAgentReports:
    def test_login_report_groups_work_sessions(self, engine, store):
        def segment(session, user, status, start, end, duration):
            return handle_timecard({
                'work_session_id': session, 'user_name': user, 'user_status': status,
                'start_time': start, 'end_time': end, 'ready_duration': duration,
            })

        store.insert_ignore(TIMECARD, [
            segment('ws-1', 'Melissa', 'Ready', '2024-01-01T09:00:00Z', '2024-01-01T09:30:00Z', 1800),
            segment('ws-1', 'Melissa', 'Occupied', '2024-01-01T09:30:00Z', '2024-01-01T10:00:00Z', 1800),
            segment('ws-2', 'Omar', 'Ready', '2024-01-01T08:00:00Z', '2024-01-01T08:15:00Z', 900),
        ])

        result = engine.agent_login_report(FROM, TO, caller_id='alice')

        assert result['totalRecords'] == 2
        assert result['report'] == [
            {'work_session_id': 'ws-2', 'start_time': '2024-01-01 08:00:00', 'end_time': '2024-01-01 08:15:00',
             'user_name': 'Omar', 'duration': 900},
            {'work_session_id': 'ws-1', 'start_time': '2024-01-01 09:00:00', 'end_time': '2024-01-01 10:00:00',
             'user_name': 'Melissa', 'duration': 3600},
        ]

        only_melissa = engine.agent_login_report(FROM, TO, agents=['Melissa'], caller_id='alice')
        assert [row['user_name'] for row in only_melissa['report']] == ['Melissa']

    def test_team_summary(self, engine, store):
        def performance(engagement_id, team, channel, handle, hold, wrap_up):
            return handle_performance({
                'engagement_id': engagement_id, 'start_time': '2024-01-01T08:00:00Z', 'team_name': team,
                'channel': channel, 'direction': 'inbound', 'queue_name': 'Sales', 'handle_duration': handle,
                'hold_count': hold, 'wrap_up_duration': wrap_up, 'transfer_initiated_count': 1,
            })

        store.insert_ignore(PERFORMANCE, [
            performance('e-1', 'Blue', 'voice', 100, 1, 10),
            performance('e-2', 'Blue', 'chat', 200, 2, 20),
            performance('e-3', 'Green', 'voice', 50, 0, 0),
            performance('e-4', '', 'voice', 50, 0, 0),
        ])

        result = engine.team_summary(FROM, TO, caller_id='alice')

        assert result['totalRecords'] == 2
        blue = result['report'][0]
        assert blue['team_name'] == 'Blue'
        assert blue['total_interactions'] == 2
        assert blue['avg_handle_duration'] == 150
        assert blue['avg_wrap_up_duration'] == 15
        assert blue['total_hold_count'] == 3
        assert blue['transfer_initiated'] == 2
        assert blue['channels'] == ['voice', 'chat']
        assert blue['queues'] == ['Sales']

        green_only = engine.team_summary(FROM, TO, team_name='Green', caller_id='alice')
        assert [team['team_name'] for team in green_only['report']] == ['Green']


class TestValidation:
    @pytest.mark.parametrize('kwargs, message', [
        ({'count': 0}, 'count'),
        ({'count': '10'}, 'count'),
        ({'page': 0}, 'page'),
    ])
    def test_paging(self, engine, kwargs, message):
        with pytest.raises(ValidationError, match=message):
            engine.queue_report(FROM, TO, DAILY, caller_id='alice', **kwargs)

    def test_unknown_bucket(self, engine):
        with pytest.raises(ValidationError, match="Invalid grouping or interval"):
            engine.queue_report(FROM, TO, 'weekly', caller_id='alice')

    def test_dates_required(self, engine, upstream):
        with pytest.raises(ValidationError, match="Date is required"):
            engine.queue_report(None, TO, DAILY, caller_id='alice')
        assert upstream.calls == []

    def test_bucketed_reports_need_queue_kind(self, engine):
        with pytest.raises(ValidationError):
            engine.report(TIMECARD, FROM, TO, DAILY, caller_id='alice')

    def test_unsupported_filter(self, engine, seed):
        seed(item('e-1', '2024-01-01T08:00:00Z'))

        with pytest.raises(ValidationError, match="Unsupported filter"):
            engine.rows(QUEUE, FROM, TO, filters={'teams': ['Blue']}, caller_id='alice')

    def test_unknown_order(self, engine):
        with pytest.raises(ValidationError, match="order"):
            engine.rows(QUEUE, FROM, TO, order='sideways', caller_id='alice')
