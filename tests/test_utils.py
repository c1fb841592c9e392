import json
import os
import time

from core.models import ChunkResult, MiddleSummary, ReduceResult
from utils.error_sink import LocalErrorSink, NullErrorSink, save_quietly, serialize_error, truncate
from utils.llm_cache import LLMCache, cache_enabled_from_env


def test_local_error_sink_writes_payload_and_metadata(tmp_path):
    sink = LocalErrorSink(tmp_path)
    try:
        raise ValueError('no json')
    except ValueError as e:
        locator = sink.save(e, 'raw model text', hint='openai-nonjson', meta={'schema': 'ChunkResult'})

    body = json.loads(open(locator, encoding='utf-8').read())
    assert 'openai-nonjson' in os.path.basename(locator)
    assert os.path.dirname(locator) == str(tmp_path / 'error')
    assert body['payload'] == 'raw model text'
    assert body['meta'] == {'schema': 'ChunkResult'}
    assert body['error']['name'] == 'ValueError'
    assert 'no json' in body['error']['stack']


def test_run_logs_are_grouped_by_kind(tmp_path):
    path = LocalErrorSink(tmp_path).log('success', {'runId': 'r1'})
    assert os.path.dirname(path) == str(tmp_path / 'success')
    assert json.loads(open(path, encoding='utf-8').read()) == {'runId': 'r1'}


def test_save_quietly_swallows_sink_failures(tmp_path):
    class Broken(LocalErrorSink):
        def save(self, *args, **kwargs):
            raise OSError('read-only file system')

    assert save_quietly(Broken(tmp_path), ValueError('x'), 'payload') is None
    assert save_quietly(None, ValueError('x'), 'payload') is None
    assert save_quietly(NullErrorSink(), ValueError('x'), 'payload') is None


def test_truncate_and_serialize():
    assert truncate('abcdef', 3) == 'abc\n/* truncated */'
    assert truncate('abc', 3) == 'abc'
    assert serialize_error('plain') == {'message': 'plain'}


def test_cache_flag_from_environment(monkeypatch):
    monkeypatch.delenv('LLM_CACHE_ENABLED', raising=False)
    monkeypatch.setenv('APP_ENV', 'local')
    assert cache_enabled_from_env()

    monkeypatch.setenv('LLM_CACHE_ENABLED', 'false')
    assert not cache_enabled_from_env()

    monkeypatch.setenv('APP_ENV', 'production')
    monkeypatch.setenv('LLM_CACHE_ENABLED', '1')
    assert cache_enabled_from_env()


def test_disabled_cache_writes_nothing(tmp_path):
    cache = LLMCache(tmp_path, enabled=False)
    cache.save_chunk('M1', 0, 1, [1], result=ChunkResult(middle_summary=MiddleSummary()))
    cache.save_reduce('M1', ReduceResult())
    cache.write_combined('M1', 1)
    assert not (tmp_path / 'cache').exists()


def test_cache_snapshots_and_combined_file(tmp_path):
    cache = LLMCache(tmp_path, enabled=True)
    part = ChunkResult(middle_summary=MiddleSummary(based_on_orders=[1, 2], summary='s'))
    cache.save_chunk('M1', 0, 2, [1, 2], result=part)
    cache.save_chunk('M1', 1, 2, [3], raw_text='x' * 500, locator='err.json')
    cache.save_reduce('M1', ReduceResult(title='T'), [{'phase': 'chunk', 'index': 1, 'text': 'x' * 500}])
    cache.write_combined('M1', 2)

    combined = json.loads((tmp_path / 'cache' / 'M1' / 'llm_cache.json').read_text(encoding='utf-8'))
    assert combined['chunkCount'] == 2
    assert [c['index'] for c in combined['chunks']] == [0, 1]
    assert combined['chunks'][0]['result']['middle_summary']['summary'] == 's'
    assert combined['chunks'][1]['nonJson']['locator'] == 'err.json'
    assert combined['chunks'][1]['nonJson']['preview'].endswith('…')
    assert combined['reduce']['reduce']['title'] == 'T'


def test_cleanup_removes_only_old_files(tmp_path):
    cache = LLMCache(tmp_path, enabled=True)
    cache.save_reduce('old', ReduceResult())
    cache.save_reduce('new', ReduceResult())
    old_file = tmp_path / 'cache' / 'old' / 'reduce.json'
    stale = time.time() - 10 * 24 * 3600
    os.utime(old_file, (stale, stale))

    assert cache.cleanup(7) == 1
    assert not old_file.exists()
    assert (tmp_path / 'cache' / 'new' / 'reduce.json').exists()


def test_combined_file_ignores_chunks_from_an_earlier_run(tmp_path):
    cache = LLMCache(tmp_path, enabled=True)
    for i in range(3):
        cache.save_chunk('M1', i, 3, [i + 1], result=ChunkResult(middle_summary=MiddleSummary(summary=f"old {i}")))
    cache.save_chunk('M1', 0, 2, [1], result=ChunkResult(middle_summary=MiddleSummary(summary='new 0')))
    cache.save_chunk('M1', 1, 2, [2], result=ChunkResult(middle_summary=MiddleSummary(summary='new 1')))
    cache.write_combined('M1', 2)

    combined = json.loads((tmp_path / 'cache' / 'M1' / 'llm_cache.json').read_text(encoding='utf-8'))
    assert [c['result']['middle_summary']['summary'] for c in combined['chunks']] == ['new 0', 'new 1']
