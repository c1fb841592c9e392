"""
National Diet minutes API client (transcript source).
"""
import time
import logging
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from core.errors import TranscriptSourceError
from core.models import RawMeetingData

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://kokkai.ndl.go.jp/api/meeting"

MEETING_FIELDS = ('issueID', 'imageKind', 'searchObject', 'session', 'nameOfHouse',
                  'nameOfMeeting', 'issue', 'date', 'closing', 'meetingURL', 'pdfURL')


class DietAPIClient:
    """Fetches meeting records for a date range, following result pages."""

    def __init__(self,
                 endpoint: str = DEFAULT_ENDPOINT,
                 request_timeout: int = 30,
                 sleep_interval: float = 1.0,
                 maximum_records: int = 10,
                 session: Optional[requests.Session] = None):
        self.endpoint = endpoint
        self.timeout = request_timeout
        self.sleep = sleep_interval
        self.maximum_records = maximum_records
        self.session = session or requests.Session()

    def fetch_page(self, from_date: Optional[str], until_date: str, start_record: int = 1,
                   **params) -> Dict[str, Any]:
        query = {
            **({'from': from_date} if from_date else {}),
            'until': until_date,
            'recordPacking': 'json',
            'maximumRecords': self.maximum_records,
            'startRecord': start_record,
            **params,
        }
        try:
            response = self.session.get(self.endpoint, params=query, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise TranscriptSourceError(f"API request failed: {e}") from e
        except ValueError as e:
            raise TranscriptSourceError(f"API returned invalid JSON: {e}") from e

        if 'message' in data and 'meetingRecord' not in data and 'speechRecord' not in data:
            raise TranscriptSourceError(f"API error: {data.get('message')} {data.get('details', '')}")
        return data

    def fetch(self, from_date: Optional[str] = None, until_date: Optional[str] = None,
              max_pages: int = 100, **params) -> RawMeetingData:
        """All meeting records between the two dates (inclusive). Without `from_date` there is no lower bound."""
        until_date = until_date or date.today().isoformat()

        meetings: List[Dict[str, Any]] = []
        start = 1
        total = 0
        for page in range(max_pages):
            data = self.fetch_page(from_date, until_date, start, **params)
            total = data.get('numberOfRecords', total)
            if 'meetingRecord' in data:
                meetings.extend(data.get('meetingRecord') or [])
            else:
                meetings.extend(group_speeches_by_issue(data.get('speechRecord') or []))

            next_position = data.get('nextRecordPosition')
            logger.info(f"Fetched page {page + 1} ({len(meetings)}/{total} records)")
            if not next_position:
                break
            start = next_position
            time.sleep(self.sleep)
        else:
            logger.warning(f"Stopped after {max_pages} pages; results may be incomplete")

        return RawMeetingData.model_validate({
            'numberOfRecords': total,
            'numberOfReturn': len(meetings),
            'startRecord': 1,
            'nextRecordPosition': None,
            'meetingRecord': meetings,
        })


def group_speeches_by_issue(speeches: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Regroup flat speech records (speech endpoint) into meeting records, first-seen order."""
    grouped: Dict[str, Dict[str, Any]] = {}
    for speech in speeches:
        issue_id = speech.get('issueID') or str(speech.get('speechID', '')).split('_')[0]
        if issue_id not in grouped:
            meeting = {k: speech[k] for k in MEETING_FIELDS if k in speech}
            meeting['issueID'] = issue_id
            meeting['speechRecord'] = []
            grouped[issue_id] = meeting
        grouped[issue_id]['speechRecord'].append(speech)
    return list(grouped.values())
