import logging

from response_parser import TurnResult, parse_turn_response, strip_code_fence


def test_plain_json():
    result = parse_turn_response('{"sceneDescription": "A quiet inn.", "imagePrompt": "cozy tavern, firelight"}')
    assert result == TurnResult(scene_text="A quiet inn.", image_prompt="cozy tavern, firelight")


def test_fenced_json_with_language_tag():
    raw = '```json\n{"sceneText":"a","imagePrompt":"b"}\n```'
    assert parse_turn_response(raw) == TurnResult("a", "b")


def test_fence_without_language_tag_and_padding():
    raw = '  \n```\n  {"sceneDescription": "a", "imagePrompt": "b"}  \n```\n\n'
    assert parse_turn_response(raw) == TurnResult("a", "b")


def test_strip_code_fence_leaves_bare_text_alone():
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'


def test_malformed_payload_returns_none_and_logs(caplog):
    with caplog.at_level(logging.ERROR, logger="simulated_souls"):
        assert parse_turn_response("not json at all") is None
    assert "not json at all" in caplog.text


def test_missing_field_returns_none():
    assert parse_turn_response('{"sceneText":"a"}') is None


def test_empty_field_returns_none():
    assert parse_turn_response('{"sceneDescription": "   ", "imagePrompt": "b"}') is None


def test_non_string_field_returns_none():
    assert parse_turn_response('{"sceneDescription": 5, "imagePrompt": "b"}') is None


def test_non_object_returns_none():
    assert parse_turn_response('["sceneDescription", "imagePrompt"]') is None


def test_blank_payload_returns_none():
    assert parse_turn_response("") is None
    assert parse_turn_response("   \n") is None


def test_parsing_twice_gives_same_result():
    raw = '```json\n{"sceneDescription": "x", "imagePrompt": "y"}\n```'
    assert parse_turn_response(raw) == parse_turn_response(raw)
    assert parse_turn_response("{oops") == parse_turn_response("{oops") is None


def test_deeply_nested_payload_returns_none():
    assert parse_turn_response("[" * 200000) is None
    assert parse_turn_response('{"sceneDescription": ' + "[" * 200000 + '}') is None
