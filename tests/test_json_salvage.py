import pytest

from core.json_salvage import find_json_blocks, parse_json_lenient, salvage_json


def test_strict_json_parses_directly():
    assert parse_json_lenient('{"a": 1}') == {'a': 1}


def test_json_inside_prose_and_code_fence_is_salvaged():
    text = 'Here is the result:\n```json\n{"title": "予算", "categories": ["財政"]}\n```\nThanks!'
    assert parse_json_lenient(text) == {'title': '予算', 'categories': ['財政']}


def test_largest_block_wins():
    text = 'note {"x": 1} and then {"middle_summary": {"summary": "s", "based_on_orders": [1, 2]}}'
    assert salvage_json(text) == {'middle_summary': {'summary': 's', 'based_on_orders': [1, 2]}}


def test_brackets_inside_strings_do_not_confuse_the_scanner():
    text = 'prefix {"summary": "a } tricky ] \\"quoted\\" {", "n": [1, 2]} suffix'
    assert salvage_json(text) == {'summary': 'a } tricky ] "quoted" {', 'n': [1, 2]}


def test_top_level_blocks_are_found_in_order_of_size():
    blocks = find_json_blocks('[1] {"a": [2, 3]}')
    assert blocks[0] == '[1] {"a": [2, 3]}'
    assert '{"a": [2, 3]}' in blocks
    assert '[1]' in blocks


@pytest.mark.parametrize('text', ['no json here', '{"unterminated": ', '', None])
def test_unrecoverable_text_raises_value_error(text):
    with pytest.raises(ValueError):
        parse_json_lenient(text)
