"""
Shared fixtures: a scripted LLM backend and raw meeting builders.
"""
import json
import inspect
from typing import Callable, List, Optional

import pytest

from core.api_client import GenerateResult, LLMClient, Usage
from core.models import ChunkResult, RawMeetingRecord, RawSpeechRecord


async def no_sleep(_seconds):
    return None


class ScriptedLLM(LLMClient):
    """Backend whose answers come from `handler(messages, schema)`.

    The handler may return a dict (sent as JSON), a string (sent verbatim),
    an exception (raised) or an awaitable of any of these.
    """

    name = 'fake'

    def __init__(self, handler: Callable, **kwargs):
        kwargs.setdefault('sleep', no_sleep)
        super().__init__(**kwargs)
        self.handler = handler
        self.calls: List[tuple] = []

    async def _complete(self, messages, options, schema=None):
        self.calls.append((messages, schema))
        out = self.handler(messages, schema)
        if inspect.isawaitable(out):
            out = await out
        if isinstance(out, BaseException):
            raise out
        if not isinstance(out, str):
            out = json.dumps(out, ensure_ascii=False)
        return GenerateResult(text=out, usage=Usage(input_tokens=10, output_tokens=5, total_tokens=15))


def chunk_info(messages) -> dict:
    text = messages[-1]['content']
    return json.loads(text.split('Chunk info:\n', 1)[1].split('\n', 1)[0])


def middle_summaries(messages) -> list:
    text = messages[-1]['content']
    return json.loads(text.split('Middle summaries:\n', 1)[1].strip())


def meeting_handler(messages, schema):
    """Deterministic answers for both pipeline stages."""
    if schema is ChunkResult:
        info = chunk_info(messages)
        orders = info['based_on_orders']
        return {
            'middle_summary': {'based_on_orders': orders, 'summary': f"chunk {info['index']}"},
            'categories': ['財政', f"topic-{info['index'] % 2}"],
            'dialogs': [{'order': o, 'summary': f"s{o}", 'soft_language': f"soft{o}"} for o in orders],
            'participants': [{'name': '山田 太郎', 'summary': f"from chunk {info['index']}"}],
            'terms': [{'term': '補正予算', 'definition': f"def {info['index']}"}],
            'keywords': [{'keyword': '予算', 'priority': 'high'},
                         {'keyword': f"kw{info['index']}", 'priority': 'low'}],
        }
    inputs = middle_summaries(messages)
    return {
        'title': '予算委員会の審議',
        'categories': ['reduce-category'],
        # Deliberately wrong coverage: the reducer must compute its own.
        'summary': {'based_on_orders': [9999], 'summary': ' / '.join(s['summary'] for s in inputs)},
        'soft_summary': {'based_on_orders': [], 'summary': 'やさしい要約'},
        'description': '説明',
        'keywords': [],
    }


def make_meeting(issue_id: str = '121405261X00120240301', texts: Optional[List[str]] = None,
                 **fields) -> RawMeetingRecord:
    texts = ['発言'] * 3 if texts is None else texts
    speeches = [
        RawSpeechRecord(speech_id=f"{issue_id}_{i + 1}", speaker=f"話者{i + 1}", speech=text)
        for i, text in enumerate(texts)
    ]
    data = {
        'issue_id': issue_id,
        'date': '2024-03-01',
        'session': 214,
        'name_of_house': '衆議院',
        'name_of_meeting': '予算委員会',
        'speech_record': speeches,
    }
    data.update(fields)
    return RawMeetingRecord(**data)


@pytest.fixture
def scripted_llm():
    return ScriptedLLM(meeting_handler)


@pytest.fixture
def meeting():
    return make_meeting(texts=['あ' * 40, 'い' * 40, 'う' * 40, 'え' * 40, 'お' * 40])
