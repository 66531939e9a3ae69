import argparse, logging, socket, threading
from typing import Callable, Dict, List, Optional

from common.config import load_settings, setup_logging
from common.errors import ConnectionClosed, ProtocolError
from common.protocol import Channel
from common.wire import END_MAIL, Command, Request, Response
from server.store import MailStore

logger = logging.getLogger(__name__)


class MailSession:
    '''
    Server side of one connection. Owns the connection's Channel and the
    HELO/MAIL/RCPT state; the store is the only thing shared with other sessions.
    '''

    def __init__(self, channel: Channel, store: MailStore):
        self.channel = channel
        self.store = store
        self.user: Optional[str] = None
        self.sender: Optional[str] = None
        self.recipients: List[str] = []
        self.handlers: Dict[str, Callable[[Request], bool]] = {
            Command.HELO: self.do_helo,
            Command.MAIL: self.do_mail,
            Command.RCPT: self.do_rcpt,
            Command.DATA: self.do_data,
            Command.LIST: self.do_list,
            Command.RETRIEVE: self.do_retrieve,
            Command.DELETE: self.do_delete,
            Command.QUIT: self.do_quit,
        }

    def reply(self, response: Response):
        self.channel.send_response(response)

    def serve(self):
        ''' Answer requests until QUIT or until the client goes away '''
        while True:
            req = self.channel.receive_request()
            handler = self.handlers.get(req.command)
            if handler is None:
                self.reply(Response.failure(f"Unknown command {req.command}"))
                continue
            if not handler(req):
                break

    def do_helo(self, req: Request) -> bool:
        if not req.argument:
            self.reply(Response.failure("HELO needs a user name"))
            return True
        self.user = req.argument
        self.reply(Response.success(f"Hello {self.user}"))
        return True

    def do_mail(self, req: Request) -> bool:
        if not req.argument:
            self.reply(Response.failure("MAIL needs a sender"))
            return True
        self.sender = req.argument
        self.recipients = []
        self.reply(Response.success(f"Sender {self.sender} OK"))
        return True

    def do_rcpt(self, req: Request) -> bool:
        if self.sender is None:
            self.reply(Response.failure("Send MAIL first"))
        elif not req.argument:
            self.reply(Response.failure("RCPT needs a recipient"))
        else:
            self.recipients.append(req.argument)
            self.reply(Response.success(f"Recipient {req.argument} OK"))
        return True

    def do_data(self, req: Request) -> bool:
        if self.sender is None or not self.recipients:
            self.reply(Response.failure("Send MAIL and RCPT first"))
            return True
        self.reply(Response.success(f'Send mail body, end with "{END_MAIL}"'))
        lines = []
        while True:
            line = self.channel.receive_line().rstrip("\r\n")
            if line == END_MAIL:
                break
            lines.append(line)
        body = "\n".join(lines)
        for rcpt in self.recipients:
            mail_id = self.store.insert_mail(self.sender, rcpt, body)
            logger.info("stored mail %s from %s to %s", mail_id, self.sender, rcpt)
        count = len(self.recipients)
        self.sender, self.recipients = None, []
        self.reply(Response.success("Mail stored", notice=count))
        return True

    def _mailbox(self) -> Optional[str]:
        if self.user is None:
            self.reply(Response.failure("Send HELO first"))
        return self.user

    def _mail_id(self, req: Request) -> Optional[int]:
        try:
            return int(req.argument)
        except ValueError:
            self.reply(Response.failure(f"{req.command} needs a numeric mail id"))
            return None

    def do_list(self, req: Request) -> bool:
        user = self._mailbox()
        if user is None:
            return True
        summaries = self.store.retrieve_mail_list(user)
        self.reply(Response.success("Mail list follows", notice=len(summaries)))
        for s in summaries:
            self.channel.send_line(s.to_line())
        return True

    def do_retrieve(self, req: Request) -> bool:
        user = self._mailbox()
        if user is None:
            return True
        mail_id = self._mail_id(req)
        if mail_id is None:
            return True
        mail = self.store.retrieve_mail(user, mail_id)
        if mail is None:
            self.reply(Response.failure("No such mail"))
            return True
        # notice counts the body plus the newline that ends it on the wire
        size = len(mail.body.encode("utf-8")) + 1
        self.reply(Response.success(f"Mail {mail_id} from {mail.sender}", notice=size))
        self.channel.send_line(mail.body)
        return True

    def do_delete(self, req: Request) -> bool:
        user = self._mailbox()
        if user is None:
            return True
        mail_id = self._mail_id(req)
        if mail_id is None:
            return True
        if self.store.delete_mail(user, mail_id):
            self.reply(Response.success(f"Mail {mail_id} deleted"))
        else:
            self.reply(Response.failure("No such mail"))
        return True

    def do_quit(self, req: Request) -> bool:
        self.reply(Response.success("Bye"))
        return False


def handle_client(conn: socket.socket, addr, store: MailStore):
    ''' This function handles communication with a connected client
        Inputs:
        - conn: socket object representing the client connection
        - addr: address of the connected client
        - store: mail storage shared by all connections
    '''
    peer = f"{addr[0]}:{addr[1]}" if isinstance(addr, tuple) else str(addr)
    channel = Channel(conn, peer)
    logger.info("connection from %s", peer)
    try:
        MailSession(channel, store).serve()
    except ConnectionClosed:
        logger.info("%s disconnected", peer)
    except ProtocolError as e:
        logger.warning("dropping %s: %s", peer, e)
    except OSError:
        logger.exception("socket error with %s", peer)
    finally:
        channel.close()


def serve_forever(host: str, port: int, store: MailStore):
    with socket.create_server((host, port)) as srv:
        logger.info("mail server listening on %s:%s", host, port)
        while True:
            conn, addr = srv.accept()
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            threading.Thread(target=handle_client, args=(conn, addr, store), daemon=True).start()


def main(argv=None):
    settings = load_settings()
    ap = argparse.ArgumentParser(description="Simple mail server")
    ap.add_argument("--host", default=settings.host, help="Address to listen on")
    ap.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    ap.add_argument("--db", default=settings.db_path, help="SQLite database file")
    ap.add_argument("--log-level", default=settings.log_level)
    args = ap.parse_args(argv)
    setup_logging(args.log_level.upper())

    store = MailStore(args.db)
    try:
        serve_forever(args.host, args.port, store)
    except KeyboardInterrupt:
        logger.info("shutting down")
    finally:
        store.close()


if __name__ == "__main__":
    main()
