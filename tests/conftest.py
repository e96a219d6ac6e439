"""Shared fixtures for the cc_reports test suite.

* ``store``          -- RecordStore on a fresh SQLite file under tmp_path
* ``upstream``       -- scripted fake of the contact center API (a requests.Session stand-in)
* ``client``         -- real SourceClient talking to ``upstream``
* ``sync_manager``   -- SyncManager with a token for caller "alice" only
* ``engagement``     -- factory for upstream queue-interaction payload items (durations in seconds)
"""

import pytest

from cc_reports.client import SourceClient
from cc_reports.store import RecordStore
from cc_reports.sync import SyncManager
from cc_reports.tokens import StaticTokenProvider

from tests.fakes import API_HOST, FakeUpstream


@pytest.fixture
def store(tmp_path):
    store = RecordStore('sqlite:///{}'.format(tmp_path / 'reports.db'))
    store.create_all()
    return store


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def client(upstream):
    return SourceClient(api_host=API_HOST, session=upstream, page_size=300, max_pages=50)


@pytest.fixture
def sync_manager(store, client):
    return SyncManager(store, client, StaticTokenProvider({'alice': 'token-a'}))


@pytest.fixture
def engagement():
    def make(engagement_id, start_time, queue='Sales', queue_id='q-sales', flow='Main IVR', flow_id='f-main',
             handling=0, wrap_up=0, waiting=0, channel='voice', direction='inbound', transfers=0, agent='Melissa'):
        return {
            'engagement_id': engagement_id,
            'direction': direction,
            'start_time': start_time,
            'end_time': start_time,
            'channel_types': [channel],
            'consumers': [{'consumer_number': '+15550100', 'consumer_id': 'c-1', 'consumer_display_name': 'Pat'}],
            'flows': [{'flow_id': flow_id, 'flow_name': flow}],
            'queues': [{'cc_queue_id': queue_id, 'queue_name': queue}],
            'agents': [{'user_id': 'u-' + agent.lower(), 'display_name': agent}],
            'channels': [{'channel': channel, 'channel_source': 'web' if channel != 'voice' else 'pstn'}],
            'queue_wait_type': 'normal',
            'waiting_duration': waiting,
            'handling_duration': handling,
            'wrap_up_duration': wrap_up,
            'transferCount': transfers,
        }
    return make
