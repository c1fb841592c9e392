import pytest
import requests

from core.errors import TranscriptSourceError
from sources.diet_api import DietAPIClient, group_speeches_by_issue


class FakeResponse:
    def __init__(self, payload=None, status=200, bad_json=False):
        self.payload = payload
        self.status = status
        self.bad_json = bad_json

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        if self.bad_json:
            raise ValueError('Expecting value')
        return self.payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append(params)
        return self.responses.pop(0)


def meeting(issue_id, *texts):
    return {
        'issueID': issue_id,
        'imageKind': '会議録',
        'session': 213,
        'nameOfHouse': '衆議院',
        'nameOfMeeting': '本会議',
        'date': '2024-03-01',
        'speechRecord': [
            {'speechID': f"{issue_id}_{i}", 'speechOrder': i, 'speaker': 'A', 'speech': t}
            for i, t in enumerate(texts, start=1)
        ],
    }


def client(responses):
    return DietAPIClient(endpoint='https://example.test/api/meeting', sleep_interval=0,
                         session=FakeSession(responses))


def test_fetch_follows_pagination():
    api = client([
        FakeResponse({'numberOfRecords': 2, 'nextRecordPosition': 2, 'meetingRecord': [meeting('M1', 'a')]}),
        FakeResponse({'numberOfRecords': 2, 'meetingRecord': [meeting('M2', 'b', 'c')]}),
    ])
    data = api.fetch('2024-03-01', '2024-03-31')

    assert data.number_of_records == 2
    assert [m.issue_id for m in data.meeting_record] == ['M1', 'M2']
    assert data.meeting_record[1].speech_record[1].speech == 'c'

    first, second = api.session.calls
    assert first['from'] == '2024-03-01' and first['until'] == '2024-03-31'
    assert first['recordPacking'] == 'json'
    assert first['startRecord'] == 1
    assert second['startRecord'] == 2


def test_speech_endpoint_results_are_grouped_into_meetings():
    speeches = [
        {'speechID': 'M1_1', 'issueID': 'M1', 'date': '2024-03-01', 'speech': 'a'},
        {'speechID': 'M2_1', 'issueID': 'M2', 'date': '2024-03-02', 'speech': 'b'},
        {'speechID': 'M1_2', 'issueID': 'M1', 'date': '2024-03-01', 'speech': 'c'},
    ]
    grouped = group_speeches_by_issue(speeches)

    assert [g['issueID'] for g in grouped] == ['M1', 'M2']
    assert [s['speech'] for s in grouped[0]['speechRecord']] == ['a', 'c']
    assert grouped[1]['date'] == '2024-03-02'


def test_api_error_message_is_raised():
    api = client([FakeResponse({'message': '検索条件の入力に誤りがあります。', 'details': ['from']})])
    with pytest.raises(TranscriptSourceError):
        api.fetch('2024-13-01', '2024-03-31')


@pytest.mark.parametrize('response', [FakeResponse(status=503), FakeResponse(bad_json=True)])
def test_transport_failures_become_source_errors(response):
    with pytest.raises(TranscriptSourceError):
        client([response]).fetch_page('2024-03-01', '2024-03-31')


def test_missing_start_date_leaves_range_open():
    api = client([FakeResponse({'numberOfRecords': 1, 'meetingRecord': [meeting('M1', 'a')]})])
    api.fetch(None, '2024-03-31')

    (params,) = api.session.calls
    assert 'from' not in params
    assert params['until'] == '2024-03-31'
