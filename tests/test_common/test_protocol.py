"""Tests for Channel: framing over an in-memory socket."""

import pytest

from common.errors import ConnectionClosed, MalformedResponse
from common.protocol import Channel
from common.wire import Command, Request, Response, ResponseCode


class TestSend:
    def test_request_is_newline_terminated(self, make_socket) -> None:
        sock = make_socket()
        Channel(sock).send(Request(Command.RETRIEVE, "3"))
        assert bytes(sock.sent) == b"RETRIEVE 3\n"

    def test_response_line(self, make_socket) -> None:
        sock = make_socket()
        Channel(sock).send_response(Response.success("Bye"))
        assert bytes(sock.sent) == b"SUCCESS 0 Bye\n"

    def test_utf8_body_line(self, make_socket) -> None:
        sock = make_socket()
        Channel(sock).send_line("héllo")
        assert bytes(sock.sent) == "héllo\n".encode("utf-8")


class TestReceive:
    def test_receive_line_keeps_terminator(self, make_socket) -> None:
        ch = Channel(make_socket(b"first\nsecond\n"))
        assert ch.receive_line() == "first\n"
        assert ch.receive_line() == "second\n"

    def test_receive_line_never_reads_ahead(self, make_socket) -> None:
        sock = make_socket(b"one\ntwo\n")
        Channel(sock).receive_line()
        assert bytes(sock.incoming) == b"two\n"

    def test_receive_parses_response(self, make_socket) -> None:
        resp = Channel(make_socket(b"SUCCESS 2 Mail list follows\n")).receive()
        assert resp.code is ResponseCode.SUCCESS
        assert resp.count() == 2

    def test_receive_malformed(self, make_socket) -> None:
        with pytest.raises(MalformedResponse):
            Channel(make_socket(b"HELLO there\n")).receive()

    def test_receive_request(self, make_socket) -> None:
        req = Channel(make_socket(b"helo bob\r\n")).receive_request()
        assert req == Request(Command.HELO, "bob")

    def test_closed_without_data(self, make_socket) -> None:
        ch = Channel(make_socket())
        with pytest.raises(ConnectionClosed):
            ch.receive_line()
        assert ch.closed

    def test_fragment_before_close_is_returned(self, make_socket) -> None:
        ch = Channel(make_socket(b"partial"))
        assert ch.receive_line() == "partial"
        with pytest.raises(ConnectionClosed):
            ch.receive_line()

    def test_multibyte_characters(self, make_socket) -> None:
        ch = Channel(make_socket("grüße\n".encode("utf-8")))
        assert ch.receive_line() == "grüße\n"


def test_close_closes_socket(make_socket) -> None:
    sock = make_socket()
    ch = Channel(sock)
    ch.close()
    assert sock.closed
    assert ch.closed
