#!/usr/bin/env python
#
# File: $Id$
#
"""
Support for writing trace records of everything a session sends to and
receives from the IMAP server.

Trace records are dicts logged to the `imapidle.trace` logger. Where they
end up is decided by the logging configuration (see `utils.setup_logging()`,
which attaches a rotating file handler with a JSON formatter when a trace
directory is given.)
"""

# system imports
#
import logging
import time
from typing import Any, Dict

trace_logger = logging.getLogger("imapidle.trace")
TRACE_ENABLED = False


####################################################################
#
def enable_tracing(enabled: bool = True) -> None:
    """
    Turn trace records on (or off.)
    """
    global TRACE_ENABLED
    TRACE_ENABLED = enabled
    if enabled:
        trace_logger.setLevel(logging.INFO)


####################################################################
#
def toggle_trace() -> None:
    """
    Flip tracing on or off. Handy as a signal handler.
    """
    enable_tracing(not TRACE_ENABLED)


####################################################################
#
def trace(msg_type: str, msg: Dict[str, Any]) -> None:
    """
    Write a trace record if tracing is enabled.

    Keyword Arguments:
    msg_type -- what kind of record this is: SEND, RECEIVED, CONNECT, ..
    msg      -- the rest of the record
    """
    if not TRACE_ENABLED:
        return
    record = {"time": time.time(), "msg_type": msg_type}
    record.update(msg)
    trace_logger.info(record)
