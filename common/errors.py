class MailError(Exception):
    """Base class for every failure the mail stack reports to its caller."""
    pass


class ConnectionClosed(MailError):
    """Raised when the peer closed the stream before a full line arrived."""
    pass


class ProtocolError(MailError):
    """The two ends disagree about the wire format; the stream is out of sync."""
    pass


class MalformedResponse(ProtocolError):
    """Raised when a response line has no recognizable status code."""
    pass


class FormatError(ProtocolError):
    """Raised when a body that claims to be a secure envelope cannot be parsed."""
    pass


class KeyResolutionError(MailError):
    """Key material could not be loaded. Recoverable: fix the input and retry."""
    pass


class KeyNotFound(KeyResolutionError):
    pass


class WrongPassword(KeyResolutionError):
    pass


class KeyParseError(KeyResolutionError):
    pass
