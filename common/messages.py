from dataclasses import dataclass
import datetime

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# A stored mail. The body is opaque to the server: plain text or a sealed envelope.
@dataclass(frozen=True)
class Mail:
    id: int
    sender: str
    recipient: str
    received: datetime.datetime
    body: str = ""


@dataclass(frozen=True)
class MailSummary:
    id: int
    sender: str
    recipient: str
    received: datetime.datetime

    def to_line(self) -> str:
        ''' One LIST entry: "<id> <date> <time> <sender>" '''
        return f"{self.id} {self.received.strftime(DATE_FORMAT)} {self.sender}"
