# tests/test_response_parser.py
import pytest

from po_drafter.llm_client.base import EmptyUpstreamResponse, UnparsableUpstreamResponse
from po_drafter.llm_client.response_parser import extract_json_object


def test_strict_json():
    assert extract_json_object('{"draft_po": {"items": []}}') == {"draft_po": {"items": []}}


def test_json_wrapped_in_markdown_fence():
    text = 'Here is the draft:\n```json\n{"draft_po": {"supplier_name": "EverFloor"}}\n```'

    assert extract_json_object(text) == {"draft_po": {"supplier_name": "EverFloor"}}


@pytest.mark.parametrize("text", [None, "", "   \n"])
def test_empty_output(text):
    with pytest.raises(EmptyUpstreamResponse):
        extract_json_object(text)


@pytest.mark.parametrize("text", ["not json at all", "[1, 2, 3]", '{"a": 1', "prefix {broken: json} suffix"])
def test_unparsable_output(text):
    with pytest.raises(UnparsableUpstreamResponse) as exc_info:
        extract_json_object(text)

    assert exc_info.value.error_type == "json_parse_error"
