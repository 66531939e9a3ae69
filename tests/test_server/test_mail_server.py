"""End-to-end tests: SessionEngine talking to the server over a socket pair."""

import socket
import threading

import pytest

from client.session import MailKind, OpenKeys, SessionEngine
from common.keys import KeySource
from common.protocol import Channel
from common.wire import Command, Request
from server.main import handle_client
from server.store import MailStore


@pytest.fixture
def store() -> MailStore:
    s = MailStore()
    yield s
    s.close()


@pytest.fixture
def connect(store):
    """Start a server handler on one end of a socket pair; return engines for the other end."""
    threads = []
    engines = []

    def _connect() -> SessionEngine:
        client_sock, server_sock = socket.socketpair()
        client_sock.settimeout(10)
        t = threading.Thread(target=handle_client, args=(server_sock, ("test", 0), store), daemon=True)
        t.start()
        threads.append(t)
        engine = SessionEngine(Channel(client_sock, "server"))
        engines.append(engine)
        return engine

    yield _connect
    for engine in engines:
        engine.close()
    for t in threads:
        t.join(timeout=5)


def send_as(engine: SessionEngine, sender: str, recipients) -> None:
    assert engine.helo(sender).ok
    assert engine.mail_from(sender).ok
    for r in recipients:
        assert engine.rcpt_to(r).ok


class TestPlainMail:
    def test_send_list_retrieve_delete(self, connect) -> None:
        alice = connect()
        send_as(alice, "alice", ["bob"])
        outcome = alice.send_plain(["Hi Bob,", "", "lunch at 12?", "."])
        assert outcome.sent
        assert outcome.response.count() == 1
        assert alice.quit().ok

        bob = connect()
        assert bob.helo("bob").ok
        listing = bob.list_mail()
        assert listing.response.count() == 1
        mail_id = int(listing.entries[0].split()[0])
        assert listing.entries[0].rstrip("\n").endswith("alice")

        mail = bob.retrieve(mail_id)
        assert mail.kind is MailKind.PLAIN
        assert mail.text == "Hi Bob,\n\nlunch at 12?\n"

        assert bob.delete(mail_id).ok
        assert bob.list_mail().entries == []

    def test_connection_usable_after_each_command(self, connect) -> None:
        bob = connect()
        bob.helo("bob")
        assert not bob.retrieve(12345).response.ok
        assert bob.list_mail().response.ok
        assert bob.quit().ok

    def test_multiple_recipients(self, connect, store) -> None:
        alice = connect()
        send_as(alice, "alice", ["bob", "carol"])
        assert alice.send_plain(["team update", "."]).response.count() == 2
        assert len(store.retrieve_mail_list("bob")) == 1
        assert len(store.retrieve_mail_list("carol")) == 1


class TestSecureMail:
    def test_sealed_mail_round_trip(self, connect, store, key_dir) -> None:
        alice = connect()
        send_as(alice, "alice", ["bob"])
        assert alice.send_secure(["Meet me at the docks.", "."], key_dir.bob.cert, key_dir.alice.key).sent

        stored = store.retrieve_mail_list("bob")[0]
        assert "docks" not in store.retrieve_mail("bob", stored.id).body

        bob = connect()
        bob.helo("bob")
        mail = bob.retrieve(stored.id, lambda: OpenKeys(key_dir.alice.cert, key_dir.bob.key))
        assert mail.kind is MailKind.DECRYPTED
        assert mail.text == "Meet me at the docks.\n"

    def test_key_failure_leaves_server_untouched(self, connect, store, key_dir, tmp_path) -> None:
        alice = connect()
        send_as(alice, "alice", ["bob"])
        outcome = alice.send_secure(["secret", "."], KeySource(str(tmp_path / "none.crt")), key_dir.alice.key)
        assert not outcome.sent
        # the session is still in step: the next exchange works
        assert alice.quit().ok
        assert store.retrieve_mail_list("bob") == []


class TestServerRules:
    def test_data_requires_mail_and_rcpt(self, connect) -> None:
        engine = connect()
        engine.helo("alice")
        outcome = engine.send_plain(["x", "."])
        assert not outcome.sent
        assert outcome.response.message == "Send MAIL and RCPT first"
        assert engine.quit().ok

    def test_rcpt_requires_mail(self, connect) -> None:
        assert not connect().rcpt_to("bob").ok

    def test_list_requires_helo(self, connect) -> None:
        assert not connect().list_mail().response.ok

    def test_unknown_command(self, connect) -> None:
        resp = connect().command(Request("FETCH", "1"))
        assert not resp.ok
        assert "Unknown command" in resp.message

    def test_non_numeric_id(self, connect) -> None:
        engine = connect()
        engine.helo("bob")
        assert not engine.command(Request(Command.RETRIEVE, "abc")).ok
