from dataclasses import dataclass
from enum import Enum
from typing import Optional

from common.errors import MalformedResponse

DELIM = " "          # single space between fields on every line
END_MAIL = "."       # body-terminator line


class Command:
    ''' Protocol verbs understood by the mail server '''
    HELO = "HELO"
    MAIL = "MAIL"
    RCPT = "RCPT"
    DATA = "DATA"
    LIST = "LIST"
    RETRIEVE = "RETRIEVE"
    DELETE = "DELETE"
    QUIT = "QUIT"

    ALL = (HELO, MAIL, RCPT, DATA, LIST, RETRIEVE, DELETE, QUIT)


class ResponseCode(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


@dataclass(frozen=True)
class Request:
    command: str
    argument: str = ""

    @classmethod
    def raw(cls, line: str) -> "Request":
        ''' A content line sent during a body transfer; written to the wire verbatim '''
        return cls(command=line)

    def is_command(self, name: str) -> bool:
        ''' Command names compare case-insensitively '''
        return self.command.upper() == name.upper()

    def serialize(self) -> str:
        if self.argument:
            return f"{self.command}{DELIM}{self.argument}"
        return self.command


@dataclass(frozen=True)
class Response:
    code: ResponseCode
    notice: str = "0"
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.code is ResponseCode.SUCCESS

    def count(self) -> int:
        '''
        The notice interpreted as a number (LIST count, RETRIEVE byte length).
        Validation is left to the consumer so a bad notice surfaces where it is used.
        '''
        try:
            return int(self.notice)
        except ValueError:
            raise MalformedResponse(f"notice is not a number: {self.notice!r}") from None

    def serialize(self) -> str:
        line = f"{self.code.value}{DELIM}{self.notice or '0'}"
        if self.message:
            line += DELIM + self.message
        return line

    @classmethod
    def success(cls, message: str = "", notice: int = 0) -> "Response":
        return cls(ResponseCode.SUCCESS, str(notice), message)

    @classmethod
    def failure(cls, message: str = "", notice: int = 0) -> "Response":
        return cls(ResponseCode.FAILURE, str(notice), message)


def parse_request(line: str) -> Request:
    '''
    Split a request line into command and argument.
    Known command names are normalized to upper case; anything else is kept as typed.
    '''
    line = line.rstrip("\r\n")
    command, _, argument = line.partition(DELIM)
    if command.upper() in Command.ALL:
        command = command.upper()
    return Request(command=command, argument=argument.strip())


def parse_response(line: str) -> Response:
    '''
    Parse "CODE[ notice][ message]".
    Raises MalformedResponse when the code field is missing or unknown.
    '''
    line = line.rstrip("\r\n")
    parts = line.split(DELIM, 2)
    code: Optional[ResponseCode] = None
    if parts and parts[0]:
        try:
            code = ResponseCode(parts[0].upper())
        except ValueError:
            code = None
    if code is None:
        raise MalformedResponse(f"unrecognized response: {line!r}")
    notice = parts[1] if len(parts) > 1 else "0"
    message = parts[2] if len(parts) > 2 else ""
    return Response(code=code, notice=notice, message=message)
