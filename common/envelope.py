"""
Secure envelope: hybrid encryption plus detached signature for a mail body.

A sealed body travels as four labelled lines, always in this order::

    Signature:<base64>
    IV:<base64>
    Key:<base64>
    Content:<base64>

The labels are the sentinel. A body is treated as sealed only when it has
exactly these four lines with non-empty base64 values; every other body is
plain mail.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from cryptography.exceptions import InvalidTag

from common.crypto import (aes_decrypt, aes_encrypt, aes_key, b64, b64d, is_b64, new_iv,
                           rsa_sign, rsa_unwrap_key, rsa_verify, rsa_wrap_key)
from common.errors import FormatError

logger = logging.getLogger(__name__)

SEP = ":"
LABELS = ("Signature", "IV", "Key", "Content")   # field order on the wire


@dataclass(frozen=True)
class SecureEnvelope:
    signature: bytes
    iv: bytes
    wrapped_key: bytes
    ciphertext: bytes

    def fields(self):
        return (self.signature, self.iv, self.wrapped_key, self.ciphertext)


# Result variants. Callers branch on the type instead of catching exceptions.

@dataclass(frozen=True)
class Sealed:
    envelope: SecureEnvelope


@dataclass(frozen=True)
class SealFailure:
    reason: str


@dataclass(frozen=True)
class Opened:
    plaintext: bytes


@dataclass(frozen=True)
class VerificationFailure:
    reason: str = "signature invalid"


@dataclass(frozen=True)
class DecryptionFailure:
    reason: str = "decryption failed"


SealResult = Union[Sealed, SealFailure]
OpenResult = Union[Opened, VerificationFailure, DecryptionFailure]


def seal(plaintext: bytes, recipient_public_key, sender_private_key) -> SealResult:
    '''
    Encrypt plaintext for the recipient and sign the ciphertext as the sender.
    Input:
        - plaintext: message body bytes
        - recipient_public_key: RSA public key used to wrap the content key
        - sender_private_key: RSA private key used to sign
    Output: Sealed(envelope) or SealFailure(reason); never a partial envelope
    '''
    try:
        key = aes_key()   # single use, dropped when this call returns
        iv = new_iv()
        ciphertext = aes_encrypt(key, iv, plaintext)
        wrapped = rsa_wrap_key(recipient_public_key, key)
        # the signature covers the ciphertext so a receiver can reject tampering
        # before spending a private-key operation on it
        signature = rsa_sign(sender_private_key, ciphertext)
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning("sealing failed: %s", e)
        return SealFailure(f"cannot seal message: {e}")
    return Sealed(SecureEnvelope(signature, iv, wrapped, ciphertext))


def verify_envelope(envelope: SecureEnvelope, sender_public_key) -> Optional[VerificationFailure]:
    ''' None when the signature over the ciphertext is the sender's '''
    try:
        valid = rsa_verify(sender_public_key, envelope.signature, envelope.ciphertext)
    except (ValueError, TypeError, AttributeError) as e:
        return VerificationFailure(f"signature invalid: {e}")
    return None if valid else VerificationFailure()


def open_envelope(envelope: SecureEnvelope, sender_public_key, recipient_private_key) -> OpenResult:
    '''
    Verify the signature, then unwrap the content key and decrypt.
    Decryption is never attempted on a ciphertext whose signature does not verify.
    '''
    failure = verify_envelope(envelope, sender_public_key)
    if failure is not None:
        return failure

    try:
        key = rsa_unwrap_key(recipient_private_key, envelope.wrapped_key)
        return Opened(aes_decrypt(key, envelope.iv, envelope.ciphertext))
    except InvalidTag:
        return DecryptionFailure("decryption failed: integrity check rejected the content")
    except (ValueError, TypeError, AttributeError) as e:
        return DecryptionFailure(f"decryption failed: {e}")


def to_lines(envelope: SecureEnvelope) -> List[str]:
    ''' The four body lines for an envelope, in wire order '''
    return [f"{label}{SEP}{b64(value)}" for label, value in zip(LABELS, envelope.fields())]


def _split(body: str) -> List[str]:
    if body.endswith("\n"):
        body = body[:-1]
    return [line.rstrip("\r") for line in body.split("\n")]


def _value(line: str, label: str):
    ''' Decoded field value, or None if the label, encoding or content is wrong '''
    prefix = label + SEP
    if not line.startswith(prefix):
        return None
    value = line[len(prefix):]
    if not is_b64(value):
        return None
    return b64d(value) or None


def is_envelope(body: str) -> bool:
    '''
    Exact shape check: one optional trailing newline, then exactly four lines
    carrying the labels in order, each with a non-empty base64 value.
    '''
    lines = _split(body)
    if len(lines) != len(LABELS):
        return False
    return all(_value(line, label) is not None for line, label in zip(lines, LABELS))


def from_lines(body: str) -> SecureEnvelope:
    ''' Parse a sealed body; raises FormatError if it is not exactly an envelope '''
    if not is_envelope(body):
        raise FormatError("body is not a secure envelope")
    values = [_value(line, label) for line, label in zip(_split(body), LABELS)]
    return SecureEnvelope(*values)
