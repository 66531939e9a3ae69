"""Client side session engine: one logical mail operation at a time over a Channel.

Outbound secure mail follows IDLE -> AWAITING_BODY -> SECURING -> TRANSMITTING
-> AWAITING_ACK -> IDLE. Nothing reaches the network until the body is sealed.
LIST and RETRIEVE follow IDLE -> REQUESTING -> AWAITING_BODY -> PRESENTING -> IDLE.
"""
import logging
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Union

from common.envelope import (DecryptionFailure, Opened, SealFailure, VerificationFailure,
                             from_lines, is_envelope, open_envelope, seal, to_lines,
                             verify_envelope)
from common.errors import KeyResolutionError
from common.keys import KeyLoader, KeySource
from common.protocol import ENC, Channel
from common.wire import END_MAIL, Command, Request, Response

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    AWAITING_BODY = "awaiting body"
    SECURING = "securing"
    TRANSMITTING = "transmitting"
    AWAITING_ACK = "awaiting ack"
    REQUESTING = "requesting"
    PRESENTING = "presenting"


class MailKind(Enum):
    PLAIN = "plain"
    DECRYPTED = "decrypted"
    SIGNATURE_INVALID = "signature invalid"
    DECRYPTION_FAILED = "decryption failed"


@dataclass(frozen=True)
class SendOutcome:
    ''' sent is True only when the server acknowledged the body with SUCCESS '''
    sent: bool
    response: Optional[Response] = None
    reason: str = ""


@dataclass(frozen=True)
class MailListing:
    response: Response
    entries: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.entries)


@dataclass(frozen=True)
class RetrievedMail:
    '''
    What RETRIEVE produced. For a failed request kind is None. When a secure mail
    could not be authenticated or decrypted, text is the raw envelope body.
    '''
    response: Response
    kind: Optional[MailKind] = None
    text: str = ""
    raw: str = ""
    reason: str = ""

    @property
    def label(self) -> str:
        return self.kind.value if self.kind else ""


@dataclass(frozen=True)
class OpenKeys:
    '''
    Keys needed to open a received envelope. recipient_private may be a callable
    returning the KeySource; it is called only after the signature verifies.
    '''
    sender_public: KeySource
    recipient_private: Union[KeySource, Callable[[], KeySource]]

    def private_source(self) -> KeySource:
        if callable(self.recipient_private):
            return self.recipient_private()
        return self.recipient_private


def collect_body(lines: Iterable[str]) -> str:
    '''
    Gather body lines up to the terminator line, which is not part of the body.
    Every collected line ends with a newline.
    '''
    body = []
    for line in lines:
        line = line.rstrip("\r\n")
        if line == END_MAIL:
            break
        body.append(line + "\n")
    return "".join(body)


class SessionEngine:
    '''
    Drives the mail protocol over a Channel it owns exclusively.
    Key files are resolved through key_loader, so callers can plug in their own.
    '''

    def __init__(self, channel: Channel, key_loader=None):
        self.channel = channel
        self.keys = key_loader or KeyLoader()
        self.state = SessionState.IDLE

    @classmethod
    def connect(cls, host: str, port: int, key_loader=None) -> "SessionEngine":
        sock = socket.create_connection((host, port))
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)  # send each line immediately
        return cls(Channel(sock, f"{host}:{port}"), key_loader)

    def close(self):
        self.channel.close()

    def _reset(self):
        self.state = SessionState.IDLE

    # ---- simple exchanges ----

    def command(self, request: Request) -> Response:
        ''' One request, one response '''
        self.state = SessionState.REQUESTING
        try:
            self.channel.send(request)
            return self.channel.receive()
        finally:
            self._reset()

    def helo(self, user: str) -> Response:
        return self.command(Request(Command.HELO, user))

    def mail_from(self, sender: str) -> Response:
        return self.command(Request(Command.MAIL, sender))

    def rcpt_to(self, recipient: str) -> Response:
        return self.command(Request(Command.RCPT, recipient))

    def delete(self, mail_id) -> Response:
        return self.command(Request(Command.DELETE, str(mail_id)))

    def quit(self) -> Response:
        return self.command(Request(Command.QUIT))

    # ---- sending ----

    def send_secure(self, body_lines: Iterable[str], recipient_key: KeySource,
                    sender_key: KeySource) -> SendOutcome:
        '''
        Seal the body for the recipient and sign it as the sender, then transmit it.
        Input:
            - body_lines: lines of the message, ending with the "." terminator
            - recipient_key: where the recipient's certificate or public key lives
            - sender_key: the sender's private key file and its password
        Output: SendOutcome; when keys or sealing fail nothing has been written
        '''
        try:
            self.state = SessionState.AWAITING_BODY
            body = collect_body(body_lines)

            self.state = SessionState.SECURING
            try:
                recipient_public = self.keys.load_public_key(recipient_key.path)
                sender_private = self.keys.load_private_key(sender_key.path, sender_key.password)
            except KeyResolutionError as e:
                logger.warning("mail not sent: %s", e)
                return SendOutcome(False, reason=str(e))

            result = seal(body.encode(ENC), recipient_public, sender_private)
            if isinstance(result, SealFailure):
                return SendOutcome(False, reason=result.reason)

            return self._transmit(to_lines(result.envelope))
        finally:
            self._reset()

    def send_plain(self, body_lines: Iterable[str]) -> SendOutcome:
        ''' Send an unencrypted body '''
        try:
            self.state = SessionState.AWAITING_BODY
            body = collect_body(body_lines)
            # collect_body ends every line with "\n"; split on that alone
            return self._transmit(body.split("\n")[:-1])
        finally:
            self._reset()

    def _transmit(self, lines: List[str]) -> SendOutcome:
        self.state = SessionState.TRANSMITTING
        response = self._exchange(Request(Command.DATA))
        if not response.ok:
            return SendOutcome(False, response, reason=f"server refused DATA: {response.message}")
        # from here the body exchange runs to completion
        for line in lines:
            self.channel.send(Request.raw(line))
        self.channel.send(Request.raw(END_MAIL))

        self.state = SessionState.AWAITING_ACK
        ack = self.channel.receive()
        return SendOutcome(ack.ok, ack, reason="" if ack.ok else ack.message)

    def _exchange(self, request: Request) -> Response:
        ''' Like command(), but leaves the state alone for multi-step operations '''
        self.channel.send(request)
        return self.channel.receive()

    # ---- listing and retrieval ----

    def list_mail(self) -> MailListing:
        ''' LIST: the notice says how many summary lines follow '''
        try:
            self.state = SessionState.REQUESTING
            response = self._exchange(Request(Command.LIST))
            if not response.ok:
                return MailListing(response)
            self.state = SessionState.AWAITING_BODY
            entries = [self.channel.receive_line() for _ in range(response.count())]
            self.state = SessionState.PRESENTING
            return MailListing(response, entries)
        finally:
            self._reset()

    def _read_body(self, size: int) -> str:
        '''
        Read lines until size bytes have been consumed. The last line may overshoot
        the count, so the loop stops at <= 0 rather than == 0.
        '''
        parts = []
        remaining = size
        while remaining > 0:
            line = self.channel.receive_line()
            parts.append(line)
            remaining -= len(line.encode(ENC))
        return "".join(parts)

    def retrieve(self, mail_id, resolve_keys: Optional[Callable[[], OpenKeys]] = None) -> RetrievedMail:
        '''
        RETRIEVE one mail and present it.
        Input:
            - mail_id: id from the LIST output
            - resolve_keys: called only when the body is a secure envelope
        Output: RetrievedMail; secure mail that cannot be opened is returned raw
        with a label saying why
        '''
        try:
            self.state = SessionState.REQUESTING
            response = self._exchange(Request(Command.RETRIEVE, str(mail_id)))
            if not response.ok:
                return RetrievedMail(response)

            self.state = SessionState.AWAITING_BODY
            raw = self._read_body(response.count())

            self.state = SessionState.PRESENTING
            return self._present(response, raw, resolve_keys)
        finally:
            self._reset()

    def _present(self, response: Response, raw: str,
                 resolve_keys: Optional[Callable[[], OpenKeys]]) -> RetrievedMail:
        if not is_envelope(raw):
            return RetrievedMail(response, MailKind.PLAIN, raw, raw)

        envelope = from_lines(raw)
        failed = MailKind.DECRYPTION_FAILED
        if resolve_keys is None:
            return RetrievedMail(response, failed, raw, raw, "no keys supplied")
        try:
            keys = resolve_keys()
            sender_public = self.keys.load_public_key(keys.sender_public.path)
        except KeyResolutionError as e:
            logger.warning("cannot open secure mail: %s", e)
            return RetrievedMail(response, failed, raw, raw, str(e))

        # the private key is only asked for once the sender is authenticated
        rejected = verify_envelope(envelope, sender_public)
        if rejected is not None:
            return RetrievedMail(response, MailKind.SIGNATURE_INVALID, raw, raw, rejected.reason)

        try:
            private = keys.private_source()
            recipient_private = self.keys.load_private_key(private.path, private.password)
        except KeyResolutionError as e:
            logger.warning("cannot open secure mail: %s", e)
            return RetrievedMail(response, failed, raw, raw, str(e))

        result = open_envelope(envelope, sender_public, recipient_private)
        if isinstance(result, Opened):
            return RetrievedMail(response, MailKind.DECRYPTED,
                                 result.plaintext.decode(ENC, errors="replace"), raw)
        if isinstance(result, VerificationFailure):
            return RetrievedMail(response, MailKind.SIGNATURE_INVALID, raw, raw, result.reason)
        if isinstance(result, DecryptionFailure):
            return RetrievedMail(response, failed, raw, raw, result.reason)
        raise TypeError(f"unexpected open result {result!r}")
