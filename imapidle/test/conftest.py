"""
pytest fixtures for testing `imapidle`
"""
# System imports
#
import socket
import ssl
import threading
from typing import Callable, List, Optional, Tuple

# 3rd party imports
#
import pytest
import trustme

# project imports
#
from ..session import Session
from ..transport import StreamTransport, TCPTransport

# How long a test is willing to wait on a socket before deciding something
# is broken.
#
SOCKET_TIMEOUT = 5.0


##################################################################
##################################################################
#
class ScriptedServer:
    """
    A very small IMAP server that runs in a thread and answers commands
    from a script. Every line it receives is recorded in `received`.

    IDLE is answered with `+ idling` unless something has been put on
    `idle_responses`. Entries there are used up one per IDLE and may contain
    `{tag}` which is replaced with the IDLE command's tag.
    """

    ##################################################################
    #
    def __init__(
        self,
        sock: Optional[socket.socket] = None,
        listener: Optional[socket.socket] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
        greeting: Optional[bytes] = None,
    ):
        self.sock = sock
        self.listener = listener
        self.ssl_context = ssl_context
        self.greeting = greeting
        self.received: List[str] = []
        self.idle_responses: List[bytes] = []
        self.idle_count = 0
        self.idle_tag: Optional[str] = None
        self.connected = threading.Event()
        self.lock = threading.Lock()
        self.thread = threading.Thread(target=self.run, daemon=True)

    ####################################################################
    #
    def start(self) -> "ScriptedServer":
        self.thread.start()
        return self

    ####################################################################
    #
    def push(self, data: bytes) -> None:
        """
        Send `data` to the client unprompted.
        """
        self.connected.wait(SOCKET_TIMEOUT)
        with self.lock:
            self.sock.sendall(data)

    ####################################################################
    #
    def count(self, line: str) -> int:
        return self.received.count(line)

    ####################################################################
    #
    def hang_up(self) -> None:
        self.sock.shutdown(socket.SHUT_RDWR)

    ####################################################################
    #
    def stop(self) -> None:
        for s in (self.sock, self.listener):
            if s is None:
                continue
            try:
                s.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            s.close()
        self.thread.join(SOCKET_TIMEOUT)

    ####################################################################
    #
    def respond(self, line: str) -> Optional[bytes]:
        """
        Return what to send back for the client's `line`.
        """
        if line == "DONE":
            return f"{self.idle_tag} OK IDLE terminated\r\n".encode()

        tag, _, rest = line.partition(" ")
        cmd = rest.split(" ", 1)[0].upper()
        ok = f"{tag} OK {cmd} completed\r\n".encode()
        if cmd == "IDLE":
            self.idle_tag = tag
            self.idle_count += 1
            if self.idle_responses:
                resp = self.idle_responses.pop(0)
                return resp.replace(b"{tag}", tag.encode())
            return b"+ idling\r\n"
        elif cmd == "CAPABILITY":
            return b"* CAPABILITY IMAP4rev1 IDLE UIDPLUS\r\n" + ok
        elif cmd == "SELECT":
            return b"* 3 EXISTS\r\n* 1 RECENT\r\n" + ok
        elif cmd == "LOGOUT":
            return b"* BYE Logging out\r\n" + ok
        elif cmd in ("LOGIN", "NOOP"):
            return ok
        return f"{tag} BAD Unknown command\r\n".encode()

    ####################################################################
    #
    def run(self) -> None:
        try:
            if self.listener is not None:
                conn, _ = self.listener.accept()
                if self.ssl_context is not None:
                    conn = self.ssl_context.wrap_socket(conn, server_side=True)
                self.sock = conn
            self.connected.set()
            if self.greeting:
                self.push(self.greeting)

            buf = b""
            while True:
                data = self.sock.recv(4096)
                if not data:
                    return
                buf += data
                while b"\r\n" in buf:
                    raw, buf = buf.split(b"\r\n", 1)
                    line = raw.decode("utf-8")
                    self.received.append(line)
                    resp = self.respond(line)
                    if resp:
                        with self.lock:
                            self.sock.sendall(resp)
        except OSError:
            # The client went away or the test closed our socket.
            return


####################################################################
#
@pytest.fixture
def socket_pair():
    """
    A connected pair of sockets: (client side, server side).
    """
    client, server = socket.socketpair()
    server.settimeout(SOCKET_TIMEOUT)
    yield (client, server)
    client.close()
    server.close()


####################################################################
#
@pytest.fixture
def raw_session(socket_pair) -> Tuple[Session, socket.socket]:
    """
    A session over a plain transport and the server end of its socket, for
    tests that script the server's bytes up front.
    """
    client, server = socket_pair
    return (Session(TCPTransport(client)), server)


####################################################################
#
@pytest.fixture
def scripted_server(socket_pair):
    """
    A `ScriptedServer` answering on the server end of `socket_pair`.
    """
    _, server_sock = socket_pair
    server = ScriptedServer(sock=server_sock).start()
    yield server
    server.stop()


####################################################################
#
@pytest.fixture
def session(socket_pair, scripted_server) -> Session:
    """
    A session over a TCP transport talking to `scripted_server`. The
    greeting has already been dealt with.
    """
    client, _ = socket_pair
    return Session(TCPTransport(client))


####################################################################
#
@pytest.fixture
def stream_session(socket_pair, scripted_server) -> Session:
    """
    A session over a transport that has no read timeout.
    """
    client, _ = socket_pair
    return Session(StreamTransport(client))


####################################################################
#
@pytest.fixture(scope="session")
def ssl_certs():
    """
    Creates certificates using `trustme`. What is returned is a tuple of a
    `trustme.CA()` instance, and the `trustme` issued server cert.
    """
    ca = trustme.CA()
    server_cert = ca.issue_cert("127.0.0.1", "localhost", "::1")
    return (ca, server_cert)


####################################################################
#
@pytest.fixture
def listening_server() -> Callable[..., Tuple[ScriptedServer, int]]:
    """
    Returns a function that starts a `ScriptedServer` listening on a free
    port on 127.0.0.1. The function returns the server and the port.
    """
    servers: List[ScriptedServer] = []

    def start_server(ssl_context: Optional[ssl.SSLContext] = None):
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        listener.settimeout(SOCKET_TIMEOUT)
        server = ScriptedServer(
            listener=listener,
            ssl_context=ssl_context,
            greeting=b"* OK [CAPABILITY IMAP4rev1 IDLE] ready\r\n",
        ).start()
        servers.append(server)
        return (server, listener.getsockname()[1])

    yield start_server
    for server in servers:
        server.stop()
