"""
Console client for the simple mail server.
Reads protocol commands from the keyboard; DATA and RETRIEVE prompt for key files.
"""
import argparse
import getpass
import logging
import sys
from typing import Callable, List

from common.config import load_settings, setup_logging
from common.errors import ConnectionClosed, MailError
from common.keys import KeySource, generate_identity
from common.wire import END_MAIL, Command, Response, parse_request
from .session import MailKind, OpenKeys, RetrievedMail, SessionEngine

logger = logging.getLogger(__name__)

HELP = "Commands: HELO <user>, MAIL <sender>, RCPT <recipient>, DATA, LIST, RETRIEVE <id>, DELETE <id>, QUIT"


class ConsoleClient:
    ''' Glue between the keyboard and a SessionEngine '''

    def __init__(self, session: SessionEngine, ask: Callable[[str], str] = input,
                 ask_secret: Callable[[str], str] = getpass.getpass, out=sys.stdout):
        self.session = session
        self.ask = ask
        self.ask_secret = ask_secret
        self.out = out

    def say(self, text: str = ""):
        print(text, file=self.out)

    def show(self, response: Response):
        self.say("Receive: " + response.serialize())

    def read_body(self) -> List[str]:
        self.say(f'Enter email content, end with "{END_MAIL}" on a line by itself:')
        lines = []
        while True:
            line = self.ask("")
            if line == END_MAIL:
                break
            lines.append(line)
        return lines

    def do_data(self):
        lines = self.read_body()
        secure = self.ask("Send as secure mail? [Y/n] ").strip().lower() not in ("n", "no")
        if secure:
            recipient = KeySource(self.ask("Enter path to recipient's certificate: ").strip())
            sender_key = self.ask_private_key()
            self.say("Encrypting and signing email...")
            outcome = self.session.send_secure(lines, recipient, sender_key)
        else:
            outcome = self.session.send_plain(lines)
        if outcome.response is not None:
            self.show(outcome.response)
        if not outcome.sent:
            self.say(f"Email was not sent: {outcome.reason}")

    def ask_private_key(self) -> KeySource:
        key_path = self.ask("Enter path to your private key: ").strip()
        password = self.ask_secret("Enter password for your private key: ")
        return KeySource(key_path, password or None)

    def resolve_open_keys(self) -> OpenKeys:
        sender = KeySource(self.ask("Enter path to sender's certificate: ").strip())
        return OpenKeys(sender, self.ask_private_key)

    def present(self, mail: RetrievedMail):
        self.show(mail.response)
        if mail.kind is None:
            return
        if mail.kind is MailKind.PLAIN:
            title = "Regular (unencrypted) email received:"
        elif mail.kind is MailKind.DECRYPTED:
            title = "Signature verified. Decrypted Email:"
        else:
            self.say(f"Warning: {mail.reason or mail.label}")
            title = f"Raw Email ({mail.label}):"
        self.say(title)
        self.say("-" * len(title))
        self.say(mail.text.rstrip("\n"))

    def run_command(self, line: str) -> bool:
        ''' Execute one typed command; False when the session is over '''
        req = parse_request(line)
        if req.command == Command.DATA:
            self.do_data()
        elif req.command == Command.LIST:
            listing = self.session.list_mail()
            self.show(listing.response)
            if listing.entries:
                self.say(listing.text.rstrip("\n"))
        elif req.command == Command.RETRIEVE:
            self.present(self.session.retrieve(req.argument, self.resolve_open_keys))
        else:
            self.show(self.session.command(req))
            if req.command == Command.QUIT:
                return False
        return True

    def loop(self):
        self.say(HELP)
        while True:
            try:
                line = self.ask("> ").strip()
            except EOFError:
                break
            if not line:
                continue
            try:
                if not self.run_command(line):
                    break
            except ConnectionClosed:
                self.say("Server closed the connection.")
                break
            except EOFError:
                break
            except MailError as e:
                # protocol desync or bad server reply: this command is abandoned
                logger.error("%s failed: %s", line, e)
                self.say(f"Error: {e}")


def run(args):
    try:
        session = SessionEngine.connect(args.host, args.port)
    except OSError as e:
        print(f"Cannot connect to {args.host}:{args.port}: {e}", file=sys.stderr)
        return 1
    try:
        ConsoleClient(session).loop()
    finally:
        session.close()
    return 0


def keygen(args):
    password = getpass.getpass("Password for the new private key (empty for none): ")
    key_path, cert_path = generate_identity(args.dir, args.name, password or None, args.bits)
    print(f"Private key: {key_path}\nCertificate: {cert_path}")
    return 0


def main(argv=None):
    settings = load_settings()
    ap = argparse.ArgumentParser(description="Simple mail client with secure mail support")
    ap.add_argument("--host", default=settings.host, help="Server host address")
    ap.add_argument("--port", type=int, default=settings.port, help="Server port")
    ap.add_argument("--log-level", default="WARNING")
    sub = ap.add_subparsers(dest="cmd")
    kg = sub.add_parser("keygen", help="Create a private key and certificate")
    kg.add_argument("name", help="User name for the certificate")
    kg.add_argument("--dir", default="keys", help="Output directory")
    kg.add_argument("--bits", type=int, default=2048)
    args = ap.parse_args(argv)
    setup_logging(args.log_level.upper())

    if args.cmd == "keygen":
        return keygen(args)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
