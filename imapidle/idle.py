#!/usr/bin/env python
#
# File: $Id$
#
"""
Support for the IMAP IDLE command (RFC 2177).

A `Handle` lets a client block until the selected mailbox changes on the
server. We do not look at what changed: any line the server sends while we
are idling means "something happened" and the caller should go look.

The server MAY consider a client inactive if it has an IDLE command running,
and if such a server has an inactivity timeout it MAY log the client off
implicitly at the end of its timeout period. Because of that, clients using
IDLE are advised to terminate the IDLE and re-issue it at least every 29
minutes to avoid being logged off. `Handle.wait_keepalive()` does this: when
it returns False nothing happened, IDLE has been terminated and the caller
starts a new handle to keep waiting.

As long as a `Handle` exists the session can not be used for anything else.
"""

# system imports
#
import logging
from typing import TYPE_CHECKING, Optional

# Project imports
#
from .exceptions import (
    Bad,
    HandleReleased,
    IdleRejected,
    No,
    ProtocolException,
    ProtocolViolation,
    SessionBusy,
    TimeoutNotSupported,
)
from .transport import SetReadTimeout, is_timeout

# Allow circular imports for annotations
#
if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger("imapidle.idle")

# RFC 2177 recommends re-issuing IDLE at least every 29 minutes.
#
DEFAULT_KEEPALIVE = 29 * 60

# After a timed out wait we send DONE and need the server's tagged response.
# Give it this long so a dead connection is noticed eventually.
#
DONE_TIMEOUT = 60


##################################################################
##################################################################
#
class Handle:
    """
    An IDLE command in progress on a session.

    Handles are made by `Session.idle()`, which sends IDLE before returning
    the handle. A handle is good for one wait (`wait()`, `wait_timeout()` or
    `wait_keepalive()`.) Whichever way the wait finishes the handle is
    released: DONE is sent if IDLE is still running and the session is given
    back. A handle that is never waited on is released by `release()`, by
    leaving its `with` block, or when it is garbage collected.
    """

    ##################################################################
    #
    def __init__(self, session: "Session"):
        """
        Use `Session.idle()`, not this.

        Arguments:
        - `session`: the session this handle takes over
        """
        self.session = session
        self.keepalive: float = DEFAULT_KEEPALIVE

        # `done` is True when there is no IDLE to terminate: before the
        # server has accepted IDLE and after we have sent DONE.
        #
        self.done = True
        self.saved_timeout: Optional[float] = None
        self.released = False

    ####################################################################
    #
    @classmethod
    def make(cls, session: "Session") -> "Handle":
        """
        Take over `session` and start IDLE on it. If the server does not
        accept IDLE the session is handed back untouched and the error is
        raised.
        """
        if session.idle_handle is not None:
            raise SessionBusy("session already has an idle handle")
        handle = cls(session)
        session.idle_handle = handle
        try:
            handle.init()
        except BaseException:
            handle.released = True
            session.idle_handle = None
            raise
        return handle

    ####################################################################
    #
    def __enter__(self) -> "Handle":
        return self

    ####################################################################
    #
    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    ####################################################################
    #
    def __del__(self):
        if not getattr(self, "released", True):
            self.release()

    ####################################################################
    #
    def init(self) -> None:
        """
        Send IDLE and wait for the server's continuation request.

        IDLE takes no arguments. The server answers with a `+` continuation,
        or with a tagged NO or BAD if it will not idle. A tagged response is
        otherwise only sent *after* we send DONE. Any other first line fails
        the handshake without reading anything further.
        """
        self.session.run_command("IDLE")
        line = self.session.readline()
        if line.startswith(b"+"):
            self.done = False
            logger.debug("%s: idling", self.session)
            return

        # Nothing more is read unless the line is our tagged completion. A
        # server that idles anyway would never send one.
        #
        lines = [line]
        tag = self.session.tag.encode("ascii")
        if not self.session._is_tagged(line, tag):
            raise ProtocolViolation(
                "IDLE was not answered with a continuation", lines
            )
        try:
            self.session.read_response_onto(lines)
        except (No, Bad) as exc:
            raise IdleRejected(f"IDLE rejected: {exc}", lines) from exc
        except ProtocolException as exc:
            raise ProtocolViolation(str(exc), lines) from exc
        raise ProtocolViolation(
            "IDLE was not answered with a continuation", lines
        )

    ####################################################################
    #
    def terminate(self) -> None:
        """
        Send DONE and read the tagged response that completes the IDLE
        command. Does nothing if that has already happened.
        """
        if self.done:
            return
        self.session.write_line(b"DONE")
        self.done = True
        self.session.transport.flush()
        self.session.read_response()

    ####################################################################
    #
    def release(self) -> None:
        """
        Terminate IDLE if it is still running and give the session back.
        Errors while terminating are logged and dropped: there is nobody to
        report them to.
        """
        if self.released:
            return
        self.released = True
        try:
            self.terminate()
        except Exception as exc:
            logger.debug("%s: error terminating IDLE: %r", self.session, exc)
        finally:
            if self.session.idle_handle is self:
                self.session.idle_handle = None

    ####################################################################
    #
    def set_keepalive(self, interval: float) -> None:
        """
        Set how long, in seconds, `wait_keepalive()` waits before it
        re-issues IDLE. Many mail apps use 23 minutes, RFC 2177 says at most
        29.
        """
        self.keepalive = interval

    ####################################################################
    #
    def _check_released(self) -> None:
        if self.released:
            raise HandleReleased()

    ####################################################################
    #
    def wait(self) -> bool:
        """
        Block until the selected mailbox changes. There is no deadline so
        this can block for as long as the connection lasts.

        Always returns True. Any error reading from the server is raised.
        """
        self._check_released()
        try:
            self.session.readline()
            return True
        finally:
            self.release()

    ####################################################################
    #
    def wait_keepalive(self) -> bool:
        """
        Block until the selected mailbox changes or `keepalive` seconds
        pass. This is the wait to use normally: see `wait_timeout()`.
        """
        return self.wait_timeout(self.keepalive)

    ####################################################################
    #
    def wait_timeout(self, timeout: float) -> bool:
        """
        Block until the selected mailbox changes or `timeout` seconds pass.

        Returns True if the server sent us something, False if the timeout
        passed. When False is returned IDLE has already been terminated; to
        keep waiting get a new handle from the session.

        Raises `TimeoutNotSupported`, without touching the connection, if the
        session's transport has no read timeout.

        Arguments:
        - `timeout`: seconds to wait
        """
        self._check_released()
        transport = self.session.transport
        if not isinstance(transport, SetReadTimeout):
            raise TimeoutNotSupported()
        try:
            return self._wait_inner(transport, timeout)
        finally:
            self.release()

    ####################################################################
    #
    def _wait_inner(self, transport: SetReadTimeout, timeout: float) -> bool:
        self.saved_timeout = transport.read_timeout()
        transport.set_read_timeout(timeout)
        try:
            self.session.readline()
        except OSError as exc:
            if not is_timeout(exc):
                raise
            if self.session.debug:
                logger.debug("%s: wait got %r", self.session, exc)
            # The saved timeout is not put back. IDLE is over and the caller
            # has to start a new one.
            #
            transport.set_read_timeout(DONE_TIMEOUT)
            self.terminate()
            return False

        transport.set_read_timeout(self.saved_timeout)
        return True
