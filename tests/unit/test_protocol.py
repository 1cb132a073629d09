"""Tests for JSON-RPC 2.0 parsing and serialization."""

import json

import pytest

from ethrelay.rpc.protocol import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    PARSE_ERROR,
    InvalidRequestShapeError,
    ParseError,
    make_error_response,
    make_notification,
    make_parse_error_response,
    make_success_response,
    parse_request,
    serialize_response,
)


class TestParseRequest:
    def test_valid_request(self) -> None:
        request = parse_request('{"jsonrpc":"2.0","method":"tools/list","params":{},"id":1}')
        assert request.method == "tools/list"
        assert request.params == {}
        assert request.id == 1
        assert not request.is_notification

    def test_notification_has_no_id(self) -> None:
        request = parse_request('{"jsonrpc":"2.0","method":"notifications/initialized"}')
        assert request.is_notification

    def test_string_id(self) -> None:
        assert parse_request('{"jsonrpc":"2.0","method":"ping","id":"abc"}').id == "abc"

    def test_invalid_json_is_a_parse_error(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse_request("{not json")

        error = exc_info.value
        assert not isinstance(error, InvalidRequestShapeError)
        assert error.code == PARSE_ERROR
        assert error.request_id is None
        assert "Invalid JSON" in error.message

    @pytest.mark.parametrize(
        ("body", "fragment"),
        [
            ('[{"jsonrpc":"2.0","method":"ping","id":1}]', "Batch requests are not supported"),
            ('"ping"', "must be a JSON object"),
            ('{"jsonrpc":"1.0","method":"ping","id":1}', "jsonrpc must be '2.0'"),
            ('{"jsonrpc":"2.0","id":1}', "method must be a string"),
            ('{"jsonrpc":"2.0","method":"ping","params":[1],"id":1}', "Positional params"),
            ('{"jsonrpc":"2.0","method":"ping","params":5,"id":1}', "params must be object"),
            ('{"jsonrpc":"2.0","method":"ping","id":true}', "id must be"),
            ('{"jsonrpc":"2.0","method":"ping","id":{"x":1}}', "id must be"),
        ],
    )
    def test_well_formed_but_invalid_is_invalid_request(self, body: str, fragment: str) -> None:
        with pytest.raises(InvalidRequestShapeError) as exc_info:
            parse_request(body)
        assert exc_info.value.code == INVALID_REQUEST
        assert fragment in exc_info.value.message

    def test_invalid_request_keeps_readable_id(self) -> None:
        with pytest.raises(InvalidRequestShapeError) as exc_info:
            parse_request('{"jsonrpc":"2.0","method":42,"id":9}')

        response = make_parse_error_response(exc_info.value)

        assert response.id == 9
        assert response.error["code"] == INVALID_REQUEST

    def test_unreadable_id_is_null(self) -> None:
        with pytest.raises(InvalidRequestShapeError) as exc_info:
            parse_request('{"jsonrpc":"2.0","method":"ping","id":[1]}')
        assert make_parse_error_response(exc_info.value).id is None


class TestSerialize:
    def test_success(self) -> None:
        data = json.loads(serialize_response(make_success_response(7, {"ok": True})))
        assert data == {"jsonrpc": "2.0", "id": 7, "result": {"ok": True}}

    def test_null_result_is_kept(self) -> None:
        data = json.loads(serialize_response(make_success_response(1, None)))
        assert "result" in data
        assert data["result"] is None

    def test_error_with_data(self) -> None:
        response = make_error_response(3, INVALID_PARAMS, "bad", {"field": "x"})
        data = json.loads(serialize_response(response))
        assert data["error"] == {"code": INVALID_PARAMS, "message": "bad", "data": {"field": "x"}}
        assert "result" not in data

    def test_single_line(self) -> None:
        assert "\n" not in serialize_response(make_success_response(1, {"a": [1, 2]}))

    def test_notification(self) -> None:
        assert make_notification("notifications/message", {"level": "warning"}) == {
            "jsonrpc": "2.0",
            "method": "notifications/message",
            "params": {"level": "warning"},
        }
        assert "params" not in make_notification("ping")
