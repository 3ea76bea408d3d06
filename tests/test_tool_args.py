"""
Unit Tests for tool argument repair
"""

import json

from protocol_transformer.tool_args import dump_arguments, parse_arguments, repair_arguments


def test_valid_arguments_unchanged():
    arguments = '{"location": "Paris"}'
    assert repair_arguments(arguments) == arguments


def test_invalid_arguments_repaired():
    assert repair_arguments('{"invalid": json}') == '{"invalid":"json"}'


def test_truncated_arguments_repaired():
    assert json.loads(repair_arguments('{"location": "Par')) == {"location": "Par"}


def test_empty_arguments_become_empty_object():
    assert repair_arguments("") == "{}"
    assert repair_arguments("   ") == "{}"


def test_parse_arguments():
    assert parse_arguments('{"a": 1}') == {"a": 1}
    assert parse_arguments("") == {}
    assert parse_arguments("[1, 2]") == {}


def test_dump_arguments():
    assert dump_arguments({"a": "é"}) == '{"a":"é"}'
    assert dump_arguments(None) == "{}"
