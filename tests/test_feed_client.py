import pytest
import requests

from src.live_auction.auction_event import EventType
from src.live_auction.errors import FeedUnavailable
from src.live_auction.feed_client import MFLFeedClient


class FakeResponse:
    def __init__(self, payload=None, status_code=200, body_error=None):
        self.payload = payload
        self.status_code = status_code
        self.body_error = body_error

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        if self.body_error:
            raise self.body_error
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params, timeout))
        if self.error:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


EXPORT = {
    'transactions': {
        'transaction': [
            {'type': 'AUCTION_INIT', 'franchise': '0001', 'transaction': '14835|425000|', 'timestamp': '1700000000'},
            {'type': 'FREE_AGENT', 'franchise': '0002', 'transaction': '|13000,|', 'timestamp': '1700000001'},
            {'type': 'AUCTION_BID', 'franchise': '0002', 'transaction': '14835|1000000|', 'timestamp': '1700000002'},
            {'type': 'AUCTION_WON', 'franchise': '0002', 'transaction': '14835|1000000|', 'timestamp': '1700000003'},
        ]
    }
}


def test_fetch_builds_export_request():
    session = FakeSession(FakeResponse(EXPORT))
    client = MFLFeedClient(2026, league_id='13522', host='https://api.myfantasyleague.com/', timeout=7, session=session)

    client.fetch_transactions()

    url, params, timeout = session.requests[0]
    assert url == 'https://api.myfantasyleague.com/2026/export'
    assert params == {'TYPE': 'transactions', 'L': '13522', 'JSON': 1}
    assert timeout == 7
    assert 'User-Agent' in session.headers


def test_session_id_overrides_league():
    session = FakeSession(FakeResponse(EXPORT))
    client = MFLFeedClient(2026, league_id='13522', session=session)

    client.fetch_transactions(session_id='99999')

    assert session.requests[0][1]['L'] == '99999'


def test_only_auction_transactions_are_kept():
    client = MFLFeedClient(2026, session=FakeSession(FakeResponse(EXPORT)))

    records = client.fetch_transactions()

    assert [r.event_type for r in records] == [EventType.INIT, EventType.BID, EventType.WON]
    assert records[0].actor_id == '0001'
    assert records[0].payload == '14835|425000|'
    assert records[0].timestamp == 1700000000


def test_since_is_inclusive():
    client = MFLFeedClient(2026, session=FakeSession(FakeResponse(EXPORT)))

    records = client.fetch_transactions(since=1700000002)

    assert [r.timestamp for r in records] == [1700000002, 1700000003]


def test_single_transaction_object():
    export = {'transactions': {'transaction': EXPORT['transactions']['transaction'][0]}}
    client = MFLFeedClient(2026, session=FakeSession(FakeResponse(export)))

    assert len(client.fetch_transactions()) == 1


def test_empty_export():
    client = MFLFeedClient(2026, session=FakeSession(FakeResponse({'transactions': {}})))
    assert client.fetch_transactions() == []


def test_unreadable_entries_are_skipped():
    export = {'transactions': {'transaction': [
        {'type': 'AUCTION_BID', 'franchise': '0002', 'timestamp': '1700000002'},
        {'type': 'AUCTION_BID', 'franchise': '0002', 'transaction': '1|2|', 'timestamp': 'soon'},
        {'type': 'AUCTION_BID', 'franchise': '0002', 'transaction': '1|2|', 'timestamp': '5'},
    ]}}
    client = MFLFeedClient(2026, session=FakeSession(FakeResponse(export)))

    assert [r.timestamp for r in client.fetch_transactions()] == [5]


@pytest.mark.parametrize('session', [
    FakeSession(error=requests.ConnectionError("no route to host")),
    FakeSession(FakeResponse(status_code=503)),
    FakeSession(FakeResponse(body_error=ValueError("Expecting value"))),
])
def test_failures_become_feed_unavailable(session):
    client = MFLFeedClient(2026, session=session)
    with pytest.raises(FeedUnavailable):
        client.fetch_transactions()


def test_close_releases_session():
    session = FakeSession()
    MFLFeedClient(2026, session=session).close()
    assert session.closed
