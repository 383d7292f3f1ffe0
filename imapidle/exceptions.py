#!/usr/bin/env python
#
# File: $Id$
#
"""
Exceptions raised by the session and the idle handle. They are kept in this
module to avoid circular dependencies between `session` and `idle`.

Transport failures are not wrapped: they surface as the `OSError` subclasses
the socket layer raises.
"""


#######################################################################
#
# Basic exceptions raised while talking to the IMAP server.
#
class ProtocolException(Exception):
    def __init__(self, value="protocol exception"):
        self.value = value

    def __str__(self):
        return self.value


##################################################################
##################################################################
#
class No(ProtocolException):
    """
    The server completed our command with a tagged `NO`.
    """

    def __init__(self, value="no"):
        self.value = value

    def __str__(self):
        return self.value


##################################################################
##################################################################
#
class Bad(ProtocolException):
    """
    The server completed our command with a tagged `BAD`.
    """

    def __init__(self, value="bad"):
        self.value = value

    def __str__(self):
        return self.value


##################################################################
##################################################################
#
class ProtocolViolation(ProtocolException):
    """
    The server answered the IDLE command with something other than a
    continuation request. The session should be considered suspect. This is
    never retried.
    """

    def __init__(self, value="protocol violation", response=None):
        """
        Arguments:
        - `value`: description of what went wrong
        - `response`: the raw lines the server sent us, if any
        """
        self.value = value
        self.response = response if response is not None else []

    def __str__(self):
        if not self.response:
            return self.value
        last = self.response[-1].decode("latin-1").strip()
        return f"{self.value}: '{last}'"


##################################################################
##################################################################
#
class IdleRejected(ProtocolViolation):
    """
    The server refused the IDLE command outright with a tagged `NO` or `BAD`.
    """

    def __init__(self, value="IDLE rejected", response=None):
        super().__init__(value, response)


##################################################################
##################################################################
#
class SessionBusy(ProtocolException):
    """
    Raised when something tries to use a session while an idle handle owns
    it.
    """

    def __init__(self, value="session is idling"):
        self.value = value

    def __str__(self):
        return self.value


##################################################################
##################################################################
#
class HandleReleased(ProtocolException):
    """
    An idle handle can be waited on once. After that it has been released
    and its session given back.
    """

    def __init__(self, value="idle handle already released"):
        self.value = value

    def __str__(self):
        return self.value


##################################################################
##################################################################
#
class TimeoutNotSupported(ProtocolException):
    """
    The session's transport has no read deadline so we can not do a bounded
    wait on it.
    """

    def __init__(self, value="transport does not support read timeouts"):
        self.value = value

    def __str__(self):
        return self.value


############################################################################
#
# The server hung up on us (EOF on the socket or a BYE greeting.)
#
class ConnectionLost(ConnectionError):
    pass
