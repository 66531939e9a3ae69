"""Tests for the request/response line codec."""

import pytest

from common.errors import MalformedResponse
from common.wire import Command, Request, Response, ResponseCode, parse_request, parse_response


class TestRequest:
    def test_command_with_argument(self) -> None:
        assert Request(Command.RETRIEVE, "7").serialize() == "RETRIEVE 7"

    def test_command_without_argument(self) -> None:
        assert Request(Command.LIST).serialize() == "LIST"

    def test_raw_line_is_written_verbatim(self) -> None:
        assert Request.raw("Dear Bob, see you at 10").serialize() == "Dear Bob, see you at 10"

    def test_is_command_ignores_case(self) -> None:
        assert Request("data").is_command(Command.DATA)

    def test_requests_are_immutable(self) -> None:
        req = Request(Command.LIST)
        with pytest.raises(AttributeError):
            req.command = "QUIT"  # type: ignore[misc]


class TestParseRequest:
    def test_known_command_is_upper_cased(self) -> None:
        req = parse_request("retrieve 12\r\n")
        assert req == Request(Command.RETRIEVE, "12")

    def test_argument_keeps_inner_spaces(self) -> None:
        assert parse_request("MAIL Alice Smith").argument == "Alice Smith"

    def test_unknown_command_kept_as_typed(self) -> None:
        assert parse_request("Frobnicate x").command == "Frobnicate"


class TestResponse:
    def test_serialize_all_fields(self) -> None:
        assert Response.success("Mail list follows", notice=3).serialize() == "SUCCESS 3 Mail list follows"

    def test_serialize_writes_zero_notice(self) -> None:
        assert Response.failure().serialize() == "FAILURE 0"

    def test_parse_full_line(self) -> None:
        resp = parse_response("SUCCESS 41 Mail 2 from alice\n")
        assert resp.code is ResponseCode.SUCCESS
        assert resp.notice == "41"
        assert resp.message == "Mail 2 from alice"
        assert resp.ok

    def test_parse_is_case_insensitive(self) -> None:
        assert parse_response("failure 0 nope").code is ResponseCode.FAILURE

    def test_parse_code_only(self) -> None:
        resp = parse_response("SUCCESS")
        assert resp.notice == "0"
        assert resp.message == ""

    @pytest.mark.parametrize("line", ["", "\n", "OK 1 fine", " SUCCESS 1"])
    def test_parse_rejects_missing_or_unknown_code(self, line: str) -> None:
        with pytest.raises(MalformedResponse):
            parse_response(line)

    def test_notice_is_not_validated_at_parse_time(self) -> None:
        resp = parse_response("SUCCESS many things")
        assert resp.notice == "many"
        with pytest.raises(MalformedResponse):
            resp.count()

    def test_count(self) -> None:
        assert parse_response("SUCCESS 3 x").count() == 3
