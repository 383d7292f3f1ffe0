#!/usr/bin/env python
#
# File: $Id$
#
"""
The byte streams a `Session` talks to the IMAP server over.

There are two kinds of sockets we connect with: a plain TCP socket and a TLS
wrapped TCP socket. Both support read deadlines and so both implement the
`SetReadTimeout` interface. The idle handle only offers bounded waits
(`wait_timeout`, `wait_keepalive`) on transports that implement it.

`StreamTransport` can wrap anything that has `sendall()` and `recv()`. It has
no deadline so only an unbounded `wait()` can be done with it.
"""

# system imports
#
import errno
import logging
import socket
import ssl
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger("imapidle.transport")

IMAP_PORT = 143
IMAPS_PORT = 993

# How much we ask for on each `recv()`
#
RECV_SIZE = 65536

TIMEOUT_ERRNOS = frozenset(
    (errno.EAGAIN, errno.EWOULDBLOCK, errno.ETIMEDOUT)
)


##################################################################
##################################################################
#
class SetReadTimeout(ABC):
    """
    Must be implemented by a transport in order for a session using that
    transport to support operations with timeouts, like
    `Handle.wait_keepalive()` and `Handle.wait_timeout()`.
    """

    ####################################################################
    #
    @abstractmethod
    def set_read_timeout(self, timeout: Optional[float]) -> None:
        """
        Set the timeout for subsequent reads to `timeout` seconds. If
        `timeout` is None the read timeout is removed and reads block.
        """
        ...

    ####################################################################
    #
    @abstractmethod
    def read_timeout(self) -> Optional[float]:
        """
        Returns the current read timeout in seconds, or None.
        """
        ...


##################################################################
##################################################################
#
class StreamTransport:
    """
    Buffered writes and raw reads over a connected stream. Writes are held
    until `flush()`.
    """

    ##################################################################
    #
    def __init__(self, sock):
        """
        Arguments:
        - `sock`: a connected object with `sendall()`, `recv()` and `close()`
        """
        self.sock = sock
        self.wbuf = bytearray()

    ####################################################################
    #
    def __str__(self):
        return f"{type(self).__name__}:{self.sock}"

    ####################################################################
    #
    def write(self, data: bytes) -> None:
        self.wbuf.extend(data)

    ####################################################################
    #
    def flush(self) -> None:
        """
        Send everything written since the last flush.
        """
        if not self.wbuf:
            return
        data = bytes(self.wbuf)
        self.wbuf.clear()
        self.sock.sendall(data)

    ####################################################################
    #
    def recv(self, size: int = RECV_SIZE) -> bytes:
        return self.sock.recv(size)

    ####################################################################
    #
    def close(self) -> None:
        self.wbuf.clear()
        self.sock.close()


##################################################################
##################################################################
#
class TCPTransport(StreamTransport, SetReadTimeout):
    """
    A plain TCP socket. The read deadline is the socket's timeout.
    """

    ####################################################################
    #
    def set_read_timeout(self, timeout: Optional[float]) -> None:
        self.sock.settimeout(timeout)

    ####################################################################
    #
    def read_timeout(self) -> Optional[float]:
        return self.sock.gettimeout()


##################################################################
##################################################################
#
class TLSTransport(TCPTransport):
    """
    A TLS wrapped TCP socket. `ssl.SSLSocket` carries the timeout of the
    TCP socket it wraps so we delegate exactly as the plain transport does.
    """

    ####################################################################
    #
    def __init__(self, sock: ssl.SSLSocket):
        super().__init__(sock)

    ####################################################################
    #
    @property
    def tls_version(self) -> Optional[str]:
        return self.sock.version()

    ####################################################################
    #
    @property
    def cipher(self) -> Optional[str]:
        cipher_info = self.sock.cipher()
        return cipher_info[0] if cipher_info else None


####################################################################
#
def is_timeout(exc: BaseException) -> bool:
    """
    Returns True if `exc` means "nothing arrived before the read deadline"
    as opposed to a real failure of the connection.
    """
    if isinstance(exc, (TimeoutError, BlockingIOError, ssl.SSLWantReadError)):
        return True
    return isinstance(exc, OSError) and exc.errno in TIMEOUT_ERRNOS


####################################################################
#
def connect(
    host: str, port: int = IMAP_PORT, timeout: Optional[float] = None
) -> TCPTransport:
    """
    Open a plain TCP connection to the IMAP server.

    Arguments:
    - `host`: host name or address of the IMAP server
    - `port`: port to connect to
    - `timeout`: seconds to wait for the connection to be established. Reads
                 on the returned transport have no deadline.
    """
    logger.debug("Connecting to %s:%d", host, port)
    sock = socket.create_connection((host, port), timeout=timeout)
    sock.settimeout(None)
    return TCPTransport(sock)


####################################################################
#
def connect_tls(
    host: str,
    port: int = IMAPS_PORT,
    ssl_context: Optional[ssl.SSLContext] = None,
    timeout: Optional[float] = None,
) -> TLSTransport:
    """
    Open a TLS connection to the IMAP server. The host name is checked
    against the server's certificate.

    Arguments:
    - `host`: host name or address of the IMAP server
    - `port`: port to connect to
    - `ssl_context`: the context to wrap the socket with. If not given
                     `ssl.create_default_context()` is used.
    - `timeout`: seconds to wait for the connection and TLS handshake.
    """
    if ssl_context is None:
        ssl_context = ssl.create_default_context()
    logger.debug("Connecting to %s:%d with TLS", host, port)
    sock = socket.create_connection((host, port), timeout=timeout)
    try:
        tls_sock = ssl_context.wrap_socket(sock, server_hostname=host)
    except Exception:
        sock.close()
        raise
    tls_sock.settimeout(None)
    transport = TLSTransport(tls_sock)
    logger.debug(
        "TLS established: %s, cipher: %s",
        transport.tls_version,
        transport.cipher,
    )
    return transport
