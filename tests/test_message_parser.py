"""
消息解析器测试
"""

import json

import pytest
from pydantic import ValidationError

from skyfi_mcp.protocols.message_parser import (
    SENTINEL_ID, MCPError, MCPErrorCodes, MCPErrorObject, MCPResponse, MessageParser
)


@pytest.fixture
def parser():
    return MessageParser()


class TestParseMessage:

    def test_parses_decoded_object(self, parser):
        request = parser.parse_message(
            {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": {"name": "echo"}}
        )
        assert request.id == 3
        assert request.method == "tools/call"
        assert request.params == {"name": "echo"}

    def test_parses_text_and_bytes(self, parser):
        text = '{"jsonrpc": "2.0", "id": "abc", "method": "ping"}'
        assert parser.parse_message(text).id == "abc"
        assert parser.parse_message(text.encode("utf-8")).method == "ping"

    @pytest.mark.parametrize("request_id", [1, "1", 2.5, "req-α"])
    def test_id_type_survives_round_trip(self, parser, request_id):
        raw = json.dumps({"jsonrpc": "2.0", "id": request_id, "method": "tools/list"})
        request = parser.parse_message(raw)
        echoed = json.loads(parser.serialize_message(
            parser.create_success_response(request.id, {"method": request.method})
        ))

        assert echoed["id"] == request_id
        assert type(echoed["id"]) is type(request_id)
        assert echoed["result"]["method"] == "tools/list"

    def test_params_are_optional(self, parser):
        request = parser.parse_message({"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert request.params is None

    def test_invalid_json_is_parse_error(self, parser):
        with pytest.raises(MCPError) as exc_info:
            parser.parse_message('{"jsonrpc": "2.0", ')
        assert exc_info.value.code == MCPErrorCodes.PARSE_ERROR

    @pytest.mark.parametrize("message", [
        {"jsonrpc": "1.0", "id": 1, "method": "ping"},
        {"id": 1, "method": "ping"},
        {"jsonrpc": "2.0", "method": "ping"},
        {"jsonrpc": "2.0", "id": None, "method": "ping"},
        {"jsonrpc": "2.0", "id": True, "method": "ping"},
        {"jsonrpc": "2.0", "id": {"nested": 1}, "method": "ping"},
        {"jsonrpc": "2.0", "id": 1},
        {"jsonrpc": "2.0", "id": 1, "method": ""},
        {"jsonrpc": "2.0", "id": 1, "method": 42},
        [{"jsonrpc": "2.0", "id": 1, "method": "ping"}],
        "ping",
    ])
    def test_malformed_envelope_is_parse_error(self, parser, message):
        with pytest.raises(MCPError) as exc_info:
            parser.parse_message(message)
        assert exc_info.value.code == MCPErrorCodes.PARSE_ERROR

    def test_decoded_string_is_not_decoded_again(self, parser):
        encoded = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "ping"})
        with pytest.raises(MCPError) as exc_info:
            parser.parse_decoded(encoded)
        assert exc_info.value.code == MCPErrorCodes.PARSE_ERROR

    @pytest.mark.parametrize("request_id", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_id_is_rejected(self, parser, request_id):
        with pytest.raises(MCPError) as exc_info:
            parser.parse_decoded({"jsonrpc": "2.0", "id": request_id, "method": "ping"})
        assert exc_info.value.code == MCPErrorCodes.PARSE_ERROR
        assert "id: must be a finite number" in exc_info.value.data

    @pytest.mark.parametrize("text", [
        '{"jsonrpc": "2.0", "id": NaN, "method": "ping"}',
        '{"jsonrpc": "2.0", "id": 1e400, "method": "ping"}',
        '{"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {"x": Infinity}}',
    ])
    def test_text_with_non_finite_numbers(self, parser, text):
        with pytest.raises(MCPError) as exc_info:
            parser.parse_message(text)
        assert exc_info.value.code == MCPErrorCodes.PARSE_ERROR

    def test_envelope_error_lists_every_violation(self, parser):
        with pytest.raises(MCPError) as exc_info:
            parser.parse_message({"jsonrpc": "1.0", "id": 1})
        violations = exc_info.value.data
        assert len(violations) == 2
        assert any("method" in v for v in violations)
        assert any(v.startswith("jsonrpc") for v in violations)


class TestParseResponse:

    def test_success_response(self, parser):
        response = parser.parse_response('{"jsonrpc": "2.0", "id": 1, "result": {"ok": true}}')
        assert response.result == {"ok": True}
        assert not response.is_error

    def test_error_response(self, parser):
        response = parser.parse_response({
            "jsonrpc": "2.0", "id": "x",
            "error": {"code": -32601, "message": "Method not found: foo"}
        })
        assert response.is_error
        assert response.error.code == MCPErrorCodes.METHOD_NOT_FOUND

    def test_result_and_error_together_is_rejected(self, parser):
        with pytest.raises(MCPError):
            parser.parse_response({
                "jsonrpc": "2.0", "id": 1, "result": 1,
                "error": {"code": -32603, "message": "x"}
            })


class TestResponses:

    def test_result_xor_error(self):
        with pytest.raises(ValidationError):
            MCPResponse(id=1, result={"a": 1}, error=MCPErrorObject(code=-32603, message="x"))

    def test_error_response_without_id_uses_sentinel(self, parser):
        response = parser.create_error_response(None, MCPErrorCodes.PARSE_ERROR, "bad")
        assert response.id == SENTINEL_ID == 0

    def test_null_result_is_serialized(self, parser):
        text = parser.serialize_message(parser.create_success_response("a", None))
        assert json.loads(text) == {"jsonrpc": "2.0", "id": "a", "result": None}

    def test_error_data_is_omitted_when_absent(self, parser):
        text = parser.serialize_message(
            parser.create_error_response(5, MCPErrorCodes.INTERNAL_ERROR, "oops")
        )
        assert json.loads(text) == {
            "jsonrpc": "2.0", "id": 5,
            "error": {"code": -32603, "message": "oops"}
        }

    def test_serialization_is_compact_and_keeps_unicode(self, parser):
        text = parser.serialize_message(parser.create_success_response(1, {"城市": "北京"}))
        assert text == '{"jsonrpc":"2.0","id":1,"result":{"城市":"北京"}}'

    @pytest.mark.parametrize("result", [{"v": object()}, {"v": float("nan")}])
    def test_unserializable_result_is_internal_error(self, parser, result):
        with pytest.raises(MCPError) as exc_info:
            parser.serialize_message(parser.create_success_response(1, result))
        assert exc_info.value.code == MCPErrorCodes.INTERNAL_ERROR


class TestExtractRequestId:

    @pytest.mark.parametrize("body, expected", [
        ({"id": 7}, 7),
        ({"id": "req-1"}, "req-1"),
        ({"id": 1.5}, 1.5),
        ({"id": None}, None),
        ({"id": True}, None),
        ({"id": float("inf")}, None),
        ({"id": float("nan")}, None),
        ({"id": [1]}, None),
        ({}, None),
        ([{"id": 1}], None),
        ("text", None),
        (None, None),
    ])
    def test_recovers_only_valid_ids(self, body, expected):
        assert MessageParser.extract_request_id(body) == expected


def test_known_error_codes():
    assert MCPErrorCodes.is_known(-32600)
    assert not MCPErrorCodes.is_known(-32000)
    assert not MCPErrorCodes.is_known("-32600")
    assert not MCPErrorCodes.is_known(None)
