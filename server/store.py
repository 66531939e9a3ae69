import datetime
import logging
import sqlite3
from pathlib import Path
from threading import Lock
from typing import List, Optional, Union

from common.messages import DATE_FORMAT, Mail, MailSummary

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS mails (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    received  TEXT NOT NULL,
    sender    TEXT NOT NULL,
    recipient TEXT NOT NULL,
    body      TEXT NOT NULL
)
"""


def _row_time(value: str) -> datetime.datetime:
    return datetime.datetime.strptime(value, DATE_FORMAT)


class MailStore:
    '''
    SQLite mail storage keyed by recipient and message id.
    One instance is shared by every connection handler; the lock serializes access.
    '''

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.lock = Lock()   # guards the shared connection
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        with self.conn:
            self.conn.execute(_SCHEMA)

    def close(self):
        with self.lock:
            self.conn.close()

    def insert_mail(self, sender: str, recipient: str, body: str,
                    received: Optional[datetime.datetime] = None) -> int:
        ''' Store one mail and return its id '''
        received = received or datetime.datetime.now()
        with self.lock, self.conn:
            cur = self.conn.execute(
                "INSERT INTO mails (received, sender, recipient, body) VALUES (?, ?, ?, ?)",
                (received.strftime(DATE_FORMAT), sender, recipient, body),
            )
            return cur.lastrowid

    def retrieve_mail(self, recipient: str, mail_id: int) -> Optional[Mail]:
        with self.lock:
            row = self.conn.execute(
                "SELECT * FROM mails WHERE recipient = ? AND id = ?", (recipient, mail_id)
            ).fetchone()
        if row is None:
            logger.info("no mail %s for %s", mail_id, recipient)
            return None
        return Mail(row["id"], row["sender"], row["recipient"], _row_time(row["received"]), row["body"])

    def retrieve_mail_list(self, recipient: str) -> List[MailSummary]:
        with self.lock:
            rows = self.conn.execute(
                "SELECT id, received, sender, recipient FROM mails WHERE recipient = ? ORDER BY id",
                (recipient,),
            ).fetchall()
        return [MailSummary(r["id"], r["sender"], r["recipient"], _row_time(r["received"])) for r in rows]

    def delete_mail(self, recipient: str, mail_id: int) -> bool:
        ''' True if a mail was removed '''
        with self.lock, self.conn:
            cur = self.conn.execute(
                "DELETE FROM mails WHERE recipient = ? AND id = ?", (recipient, mail_id)
            )
            return cur.rowcount > 0
