"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
from cryptography.hazmat.primitives import serialization

from common.crypto import rsa_generate
from common.keys import KeySource, private_key_pem, self_signed_certificate


class FakeSocket:
    """In-memory stand-in for a connected socket.

    ``incoming`` is what the peer has already sent; ``sent`` records every byte
    written. recv() hands out at most n bytes so over-reads are observable.
    """

    def __init__(self, incoming: bytes = b"") -> None:
        self.incoming = bytearray(incoming)
        self.sent = bytearray()
        self.closed = False

    def recv(self, n: int) -> bytes:
        chunk = bytes(self.incoming[:n])
        del self.incoming[:n]
        return chunk

    def sendall(self, data: bytes) -> None:
        self.sent.extend(data)

    def close(self) -> None:
        self.closed = True

    @property
    def sent_lines(self) -> list[str]:
        return self.sent.decode("utf-8").splitlines()


@pytest.fixture
def make_socket():
    """Factory for FakeSocket objects pre-loaded with peer data."""
    return FakeSocket


@pytest.fixture(scope="session")
def alice_key():
    return rsa_generate()


@pytest.fixture(scope="session")
def bob_key():
    return rsa_generate()


@pytest.fixture(scope="session")
def mallory_key():
    return rsa_generate()


def _write_identity(directory: Path, name: str, priv, password: str | None) -> SimpleNamespace:
    key_path = directory / f"{name}.key"
    cert_path = directory / f"{name}.crt"
    key_path.write_bytes(private_key_pem(priv, password))
    cert_path.write_bytes(self_signed_certificate(priv, name).public_bytes(serialization.Encoding.PEM))
    return SimpleNamespace(
        key=KeySource(str(key_path), password),
        cert=KeySource(str(cert_path)),
    )


@pytest.fixture(scope="session")
def key_dir(tmp_path_factory, alice_key, bob_key, mallory_key) -> SimpleNamespace:
    """Key files on disk: alice and bob use passwords, mallory does not."""
    d = tmp_path_factory.mktemp("keys")
    return SimpleNamespace(
        alice=_write_identity(d, "alice", alice_key, "alice-pw"),
        bob=_write_identity(d, "bob", bob_key, "bob-pw"),
        mallory=_write_identity(d, "mallory", mallory_key, None),
        path=d,
    )
