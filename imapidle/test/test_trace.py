"""
Test writing trace records.
"""

# system imports
#
import logging

# 3rd party imports
#
import pytest

# Project imports
#
from .. import trace


####################################################################
#
@pytest.fixture
def tracing():
    """
    Make sure tracing is turned back off when the test is done.
    """
    yield trace
    trace.enable_tracing(False)
    trace.trace_logger.setLevel(logging.NOTSET)


####################################################################
#
def test_trace_disabled(tracing, caplog):
    caplog.set_level(logging.DEBUG, logger="imapidle.trace")
    tracing.trace("SEND", {"data": "a1 NOOP"})
    assert caplog.records == []


####################################################################
#
def test_trace_enabled(tracing, caplog):
    caplog.set_level(logging.DEBUG, logger="imapidle.trace")
    tracing.enable_tracing()
    tracing.trace("RECEIVED", {"data": "* 1 EXISTS"})

    assert len(caplog.records) == 1
    record = caplog.records[0].msg
    assert record["msg_type"] == "RECEIVED"
    assert record["data"] == "* 1 EXISTS"
    assert isinstance(record["time"], float)


####################################################################
#
def test_toggle_trace(tracing):
    assert tracing.TRACE_ENABLED is False
    tracing.toggle_trace()
    assert tracing.TRACE_ENABLED is True
    assert tracing.trace_logger.level == logging.INFO
    tracing.toggle_trace()
    assert tracing.TRACE_ENABLED is False
