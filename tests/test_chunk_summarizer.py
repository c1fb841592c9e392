import asyncio

from core.models import ChunkResult, Dialog, DialogUpdate, MeetingMeta
from core.settings import ParseErrorPolicy
from processing.chunk_summarizer import ChunkSummarizer, merge_dialog_updates, normalize_orders

from conftest import ScriptedLLM, chunk_info, meeting_handler

META = MeetingMeta(id='M1', date='2024-03-01', month='2024-03', name_of_meeting='予算委員会')


def dialogs(*orders):
    return [Dialog(order=o, original_text=f"text {o}") for o in orders]


def test_merge_applies_updates_by_order_and_ignores_unknown_orders():
    chunk = dialogs(1, 2, 3)
    merged = merge_dialog_updates(chunk, [
        DialogUpdate(order=2, summary='要約2', soft_language='やさしく2'),
        DialogUpdate(order=99, summary='ghost'),
        DialogUpdate(order=3, soft_language='やさしく3'),
    ])

    assert [d.summary for d in merged] == ['', '要約2', '']
    assert [d.soft_language for d in merged] == ['', 'やさしく2', 'やさしく3']


def test_normalize_orders_keeps_only_chunk_orders():
    assert normalize_orders([3, 1, 42, 3], [1, 2, 3]) == [1, 3]
    assert normalize_orders([], [5, 4]) == [4, 5]
    assert normalize_orders([42], [5, 4]) == [4, 5]


async def test_chunk_summary_merges_dialogs_and_fixes_coverage():
    def handler(messages, schema):
        out = meeting_handler(messages, schema)
        out['middle_summary']['based_on_orders'].append(1000)
        return out

    summarizer = ChunkSummarizer(ScriptedLLM(handler))
    outcome = await summarizer.summarize_chunk(META, dialogs(4, 5), 0, 1)

    assert outcome.index == 0
    assert outcome.result.middle_summary.based_on_orders == [4, 5]
    assert [d.summary for d in outcome.dialogs] == ['s4', 's5']
    assert outcome.raw_text is None


async def test_unparseable_chunk_becomes_placeholder_under_return_raw():
    llm = ScriptedLLM(lambda m, s: 'not json at all', parse_error_policy=ParseErrorPolicy.RETURN_RAW)
    outcome = await ChunkSummarizer(llm).summarize_chunk(META, dialogs(7, 8), 2, 3)

    assert outcome.result.middle_summary.summary == ''
    assert outcome.result.middle_summary.based_on_orders == [7, 8]
    assert outcome.raw_text == 'not json at all'
    assert all(d.summary == '' for d in outcome.dialogs)


async def test_outcomes_follow_chunk_order_not_completion_order():
    async def handler(messages, schema):
        info = chunk_info(messages)
        # Later chunks finish first
        await asyncio.sleep(0.001 * (5 - info['index']))
        return meeting_handler(messages, schema)

    chunks = [dialogs(i * 10 + 1, i * 10 + 2) for i in range(5)]
    outcomes = await ChunkSummarizer(ScriptedLLM(handler), concurrency=5).summarize_all(META, chunks)

    assert [o.index for o in outcomes] == [0, 1, 2, 3, 4]
    assert [o.result.middle_summary.summary for o in outcomes] == [f"chunk {i}" for i in range(5)]
    assert isinstance(outcomes[0].result, ChunkResult)
