#!/usr/bin/env python
#
# File: $Id$
#
"""
A small synchronous IMAP session. It knows how to tag commands, read raw
lines from the server and find the tagged completion of a command. That is
what the IDLE support in `imapidle.idle` needs, along with the few commands
needed to get a session logged in with a mailbox selected.

Responses are not parsed beyond telling the tagged `OK`, `NO` and `BAD`
completions apart (and picking out CAPABILITY and EXISTS/RECENT counts.)
"""

# system imports
#
import logging
import re
import ssl
import weakref
from itertools import count
from typing import Dict, List, Optional

# Project imports
#
from .exceptions import (
    Bad,
    ConnectionLost,
    No,
    ProtocolException,
    SessionBusy,
)
from .idle import Handle
from .trace import trace
from .transport import (
    IMAP_PORT,
    IMAPS_PORT,
    RECV_SIZE,
    StreamTransport,
    connect,
    connect_tls,
)


logger = logging.getLogger("imapidle.session")

CRLF = b"\r\n"
TAG_PREFIX = "a"

# A line that ends with a literal announcement, ie: `{123}\r\n` or the
# non-synchronizing `{123+}\r\n`
#
RE_LITERAL = re.compile(rb"\{(\d+)\+?\}\r\n$")

# Untagged responses we pick counts out of: `* 12 EXISTS`
#
RE_UNTAGGED_COUNT = re.compile(rb"^\* (\d+) ([A-Za-z]+)")


####################################################################
#
def quote(s: str) -> str:
    """
    Return `s` as an IMAP quoted string.
    """
    s = s.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{s}"'


##################################################################
##################################################################
#
class Session:
    """
    One connection to an IMAP server.

    While an idle handle exists (`idle_handle` is not None) the session
    belongs to it and every command method raises `SessionBusy`. The raw
    line primitives (`run_command`, `readline`, `read_response`,
    `write_line`) are what the handle itself uses and are not guarded.
    """

    ##################################################################
    #
    def __init__(self, transport: StreamTransport, debug: bool = False):
        """
        Arguments:
        - `transport`: a connected transport. The server's greeting has not
                       been read yet (see `read_greeting()`.)
        - `debug`: log every line sent and received at debug level
        """
        self.transport = transport
        self.debug = debug
        self.tag_counter = count(1)
        self.tag: Optional[str] = None
        self.rbuf = bytearray()
        self._idle_handle: Optional[weakref.ref] = None
        self.greeting: Optional[bytes] = None
        self.capabilities: List[str] = []

    ####################################################################
    #
    @classmethod
    def connect(
        cls,
        host: str,
        port: Optional[int] = None,
        tls: bool = True,
        ssl_context: Optional[ssl.SSLContext] = None,
        timeout: Optional[float] = None,
        debug: bool = False,
    ) -> "Session":
        """
        Connect to `host` and read the server greeting.

        Arguments:
        - `host`: the IMAP server
        - `port`: defaults to 993 with TLS and 143 without
        - `tls`: connect with TLS
        - `ssl_context`: context used when `tls` is set
        - `timeout`: seconds allowed for connecting
        - `debug`: passed on to the session
        """
        transport: StreamTransport
        if tls:
            port = IMAPS_PORT if port is None else port
            transport = connect_tls(host, port, ssl_context, timeout=timeout)
        else:
            port = IMAP_PORT if port is None else port
            transport = connect(host, port, timeout=timeout)
        session = cls(transport, debug=debug)
        trace("CONNECT", {"host": host, "port": port, "tls": tls})
        try:
            session.read_greeting()
        except Exception:
            transport.close()
            raise
        return session

    ####################################################################
    #
    def __enter__(self) -> "Session":
        return self

    ####################################################################
    #
    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    ####################################################################
    #
    def __str__(self):
        return f"{type(self).__name__}:{self.transport}"

    ####################################################################
    #
    @property
    def idle_handle(self) -> Optional[Handle]:
        """
        The idle handle that owns this session, if any. Only a weak
        reference is kept so a handle that is simply dropped gets garbage
        collected, which releases it.
        """
        if self._idle_handle is None:
            return None
        return self._idle_handle()

    ####################################################################
    #
    @idle_handle.setter
    def idle_handle(self, handle: Optional[Handle]) -> None:
        self._idle_handle = weakref.ref(handle) if handle is not None else None

    ####################################################################
    #
    def next_tag(self) -> str:
        self.tag = f"{TAG_PREFIX}{next(self.tag_counter)}"
        return self.tag

    ####################################################################
    #
    def write_line(self, data: bytes) -> None:
        """
        Queue `data` followed by CRLF on the transport. Nothing is sent
        until the transport is flushed.
        """
        if self.debug:
            logger.debug("C: %r", data)
        trace("SEND", {"data": data.decode("utf-8", "replace")})
        self.transport.write(data + CRLF)

    ####################################################################
    #
    def run_command(self, command: str) -> str:
        """
        Send a new tagged command and return the tag it was sent with.

        Arguments:
        - `command`: the command and its arguments, without tag or CRLF
        """
        tag = self.next_tag()
        self.write_line(f"{tag} {command}".encode("utf-8"))
        self.transport.flush()
        return tag

    ####################################################################
    #
    def readline(self) -> bytes:
        """
        Read one raw line, CRLF included, from the server. This blocks
        subject to the transport's read deadline. If the deadline passes the
        transport's timeout exception is raised and whatever part of a line we
        had received stays buffered for the next call.

        Raises `ConnectionLost` if the server closes the connection.
        """
        while True:
            idx = self.rbuf.find(b"\n")
            if idx >= 0:
                line = bytes(self.rbuf[: idx + 1])
                del self.rbuf[: idx + 1]
                break
            data = self.transport.recv(RECV_SIZE)
            if not data:
                raise ConnectionLost("Connection closed by server")
            self.rbuf.extend(data)

        if self.debug:
            logger.debug("S: %r", line)
        trace("RECEIVED", {"data": line.decode("utf-8", "replace")})
        return line

    ####################################################################
    #
    def read_exactly(self, size: int) -> bytes:
        """
        Read `size` bytes, used for the contents of a literal.
        """
        while len(self.rbuf) < size:
            data = self.transport.recv(RECV_SIZE)
            if not data:
                raise ConnectionLost("Connection closed by server")
            self.rbuf.extend(data)
        data = bytes(self.rbuf[:size])
        del self.rbuf[:size]
        return data

    ####################################################################
    #
    def read_response(self) -> List[bytes]:
        """
        Read lines up to and including the tagged completion of the last
        command sent. See `read_response_onto()`.
        """
        return self.read_response_onto([])

    ####################################################################
    #
    def read_response_onto(self, lines: List[bytes]) -> List[bytes]:
        """
        Keep reading lines, appending them to `lines`, until the tagged
        completion of the last command sent has been read. If the last line
        in `lines` already is that completion nothing more is read.

        A line that announces a literal is joined with the literal and the
        rest of the line after it, so every entry in `lines` is one complete
        response.

        Returns `lines`. Raises `No` or `Bad` if the command completed with
        that status.
        """
        if self.tag is None:
            raise ProtocolException("No command has been sent")
        tag = self.tag.encode("ascii")

        while not lines or not self._is_tagged(lines[-1], tag):
            line = self.readline()
            m = RE_LITERAL.search(line)
            while m:
                line += self.read_exactly(int(m.group(1)))
                line += self.readline()
                m = RE_LITERAL.search(line)
            lines.append(line)

        parts = lines[-1].rstrip(CRLF).split(b" ", 2)
        status = parts[1].upper() if len(parts) > 1 else b""
        text = parts[2].decode("utf-8", "replace") if len(parts) > 2 else ""
        if status == b"OK":
            return lines
        if status == b"NO":
            raise No(text or "no")
        if status == b"BAD":
            raise Bad(text or "bad")
        raise ProtocolException(
            f"Unknown completion status: {lines[-1]!r}"
        )

    ####################################################################
    #
    @staticmethod
    def _is_tagged(line: bytes, tag: bytes) -> bool:
        return line.startswith(tag + b" ")

    ####################################################################
    #
    def _check_not_idling(self) -> None:
        if self.idle_handle is not None:
            raise SessionBusy()

    ####################################################################
    #
    def read_greeting(self) -> bytes:
        """
        Read the untagged greeting the server sends when we connect.
        """
        line = self.readline()
        if line.startswith(b"* BYE"):
            raise ConnectionLost(line.decode("utf-8", "replace").strip())
        if not (line.startswith(b"* OK") or line.startswith(b"* PREAUTH")):
            raise ProtocolException(f"Unexpected greeting: {line!r}")
        self.greeting = line
        return line

    ####################################################################
    #
    def command(self, command: str) -> List[bytes]:
        """
        Run `command` and return all of its response lines.
        """
        self._check_not_idling()
        self.run_command(command)
        return self.read_response()

    ####################################################################
    #
    def capability(self) -> List[str]:
        lines = self.command("CAPABILITY")
        caps: List[str] = []
        for line in lines:
            if line.upper().startswith(b"* CAPABILITY "):
                caps.extend(line[13:].decode("ascii").split())
        self.capabilities = [x.upper() for x in caps]
        return self.capabilities

    ####################################################################
    #
    def has_capability(self, name: str) -> bool:
        if not self.capabilities:
            self.capability()
        return name.upper() in self.capabilities

    ####################################################################
    #
    def login(self, username: str, password: str) -> None:
        logger.debug("Logging in as %s", username)
        self.command(f"LOGIN {quote(username)} {quote(password)}")

    ####################################################################
    #
    def select(self, mailbox: str = "INBOX") -> Dict[str, int]:
        """
        Select `mailbox`. Returns the counts the server sent with it, ie:
        {'EXISTS': 12, 'RECENT': 0}
        """
        lines = self.command(f"SELECT {quote(mailbox)}")
        counts: Dict[str, int] = {}
        for line in lines:
            m = RE_UNTAGGED_COUNT.match(line)
            if m:
                counts[m.group(2).decode("ascii").upper()] = int(m.group(1))
        logger.debug("Selected '%s': %s", mailbox, counts)
        return counts

    ####################################################################
    #
    def noop(self) -> List[bytes]:
        """
        NOOP gives the server a chance to tell us about pending changes.
        Returns the untagged responses it sent.
        """
        return self.command("NOOP")[:-1]

    ####################################################################
    #
    def idle(self) -> Handle:
        """
        Start IDLE on the selected mailbox. The returned handle owns this
        session until it is released.
        """
        return Handle.make(self)

    ####################################################################
    #
    def logout(self) -> None:
        """
        Log out and close the connection.
        """
        self._check_not_idling()
        try:
            self.run_command("LOGOUT")
            self.read_response()
        finally:
            self.close()

    ####################################################################
    #
    def close(self) -> None:
        trace("CLOSE", {})
        self.transport.close()
