import pytest

from core.errors import ConfigurationError, NonJsonLLMError
from core.models import MeetingMeta, MiddleSummary, ReduceResult
from core.settings import ParseErrorPolicy
from processing.tree_reducer import TreeReducer, union_orders

from conftest import ScriptedLLM, meeting_handler

META = MeetingMeta(id='M1', date='2024-03-01', month='2024-03')


def leaves(n):
    return [MiddleSummary(based_on_orders=[i * 3, i * 3 + 1], summary=f"leaf {i}") for i in range(n)]


async def test_empty_input_gives_empty_result_without_calls():
    llm = ScriptedLLM(meeting_handler)
    result = await TreeReducer(llm).reduce(META, [])

    assert result == ReduceResult.empty()
    assert result.summary.summary == '' and result.soft_summary.summary == ''
    assert result.categories == []
    assert llm.calls == []


async def test_small_input_is_reduced_in_one_call():
    llm = ScriptedLLM(meeting_handler)
    result = await TreeReducer(llm, group_size=8).reduce(META, leaves(3))

    assert len(llm.calls) == 1
    assert result.title == '予算委員会の審議'
    assert result.summary.summary == 'leaf 0 / leaf 1 / leaf 2'


@pytest.mark.parametrize('group_size', [2, 3, 7])
async def test_root_coverage_is_union_of_leaves_for_any_grouping(group_size):
    inputs = leaves(20)
    llm = ScriptedLLM(meeting_handler)
    result = await TreeReducer(llm, group_size=group_size, concurrency=3).reduce(META, inputs)

    expected = sorted({o for leaf in inputs for o in leaf.based_on_orders})
    assert result.summary.based_on_orders == expected
    assert result.soft_summary.based_on_orders == expected
    assert 9999 not in result.summary.based_on_orders


async def test_layers_shrink_by_group_size():
    llm = ScriptedLLM(meeting_handler)
    await TreeReducer(llm, group_size=3).reduce(META, leaves(10))
    # 10 -> 4 groups -> 2 groups -> final
    assert len(llm.calls) == 4 + 2 + 1


async def test_intermediate_text_flows_into_the_root():
    llm = ScriptedLLM(meeting_handler)
    result = await TreeReducer(llm, group_size=2).reduce(META, leaves(4))
    assert result.summary.summary == 'leaf 0 / leaf 1 / leaf 2 / leaf 3'


async def test_unparseable_group_keeps_inputs_under_return_raw():
    llm = ScriptedLLM(lambda m, s: 'oops', parse_error_policy=ParseErrorPolicy.RETURN_RAW)
    non_json = []
    result = await TreeReducer(llm).reduce(META, leaves(2), non_json)

    assert result.summary.summary == 'leaf 0\nleaf 1'
    assert result.summary.based_on_orders == [0, 1, 3, 4]
    assert non_json == [{'phase': 'reduce', 'text': 'oops', 'locator': None}]


async def test_unparseable_group_raises_under_throw():
    llm = ScriptedLLM(lambda m, s: 'oops')
    with pytest.raises(NonJsonLLMError):
        await TreeReducer(llm).reduce(META, leaves(2))


@pytest.mark.parametrize('kwargs', [{'group_size': 1}, {'concurrency': 0}])
def test_invalid_configuration_is_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        TreeReducer(ScriptedLLM(meeting_handler), **kwargs)


def test_union_orders_dedupes_and_sorts():
    assert union_orders([MiddleSummary(based_on_orders=[3, 1]), MiddleSummary(based_on_orders=[1, 2])]) == [1, 2, 3]
