"""Runtime settings shared by the client and server entry points.

Defaults live here as module constants; environment variables (optionally
from a .env file) override them, and command line flags override both.
"""
import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

HOST = "127.0.0.1"
PORT = 6688
DB_PATH = "data/maildb.sqlite3"
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


@dataclass(frozen=True)
class Settings:
    host: str = HOST
    port: int = PORT
    db_path: str = DB_PATH
    log_level: str = LOG_LEVEL


def load_settings(env_file: bool = True) -> Settings:
    ''' Build Settings from MAIL_* environment variables '''
    if env_file:
        load_dotenv()
    port = os.environ.get("MAIL_PORT", str(PORT))
    try:
        port_num = int(port)
    except ValueError:
        raise ValueError(f"MAIL_PORT must be a number, got {port!r}") from None
    return Settings(
        host=os.environ.get("MAIL_HOST", HOST),
        port=port_num,
        db_path=os.environ.get("MAIL_DB", DB_PATH),
        log_level=os.environ.get("MAIL_LOG_LEVEL", LOG_LEVEL).upper(),
    )


def setup_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
