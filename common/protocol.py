import logging
import socket
from typing import Optional

from common.errors import ConnectionClosed, ProtocolError
from common.wire import Request, Response, parse_request, parse_response

ENC = "utf-8"   # encoding for protocol text
DELIM = b"\n"   # line delimiter

logger = logging.getLogger(__name__)


class Channel:
    '''
    Sole owner of one stream socket. Sends one request per call and receives one
    response or one raw line per call.

    Reads are done one byte at a time so nothing past the current line is ever
    pulled off the socket: RETRIEVE bodies are framed by a byte count the caller
    decrements, and an over-read would leave the next command out of sync.
    '''

    def __init__(self, sock: socket.socket, peer: Optional[str] = None):
        self.sock = sock
        self.peer = peer or "peer"
        self.closed = False

    def send(self, request: Request) -> None:
        ''' Send one request line '''
        self.send_line(request.serialize())

    def send_response(self, response: Response) -> None:
        self.send_line(response.serialize())

    def send_line(self, text: str) -> None:
        '''
        The function sends one line of text over the socket, adding the \n delimiter.
        Input:
            - text: the line without its terminator
        '''
        logger.debug("%s <- %r", self.peer, text)
        self.sock.sendall(text.encode(ENC) + DELIM)

    def receive(self) -> Response:
        ''' Receive one response line and parse it '''
        return parse_response(self.receive_line())

    def receive_request(self) -> Request:
        return parse_request(self.receive_line())

    def receive_line(self) -> str:
        '''
        The function reads exactly one line from the socket, blocking until the \n arrives.
        The returned text keeps its terminator so callers can count bytes exactly.
        A trailing fragment without \n is returned as-is when the peer closes.
        Output:
            - str - the received line
        Raises ConnectionClosed if the stream ends before any byte of the line arrives.
        '''
        buf = bytearray()
        while True:
            b = self.sock.recv(1)   # never read past the current line
            if not b:
                if not buf:
                    self.closed = True
                    raise ConnectionClosed(f"{self.peer} closed the connection")
                break
            buf.extend(b)
            if b == DELIM:
                break
        try:
            line = buf.decode(ENC)
        except UnicodeDecodeError:
            raise ProtocolError(f"{self.peer} sent a line that is not {ENC}") from None
        logger.debug("%s -> %r", self.peer, line)
        return line

    def close(self) -> None:
        self.closed = True
        try:
            self.sock.close()
        except OSError:
            logger.debug("error closing socket for %s", self.peer, exc_info=True)
