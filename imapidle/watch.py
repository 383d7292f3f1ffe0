#!/usr/bin/env python
#
# File: $Id$
#
"""
Watch an IMAP mailbox with IDLE. Connects, logs in, selects the mailbox and
waits until the server tells us something changed, re-issuing IDLE every
keepalive interval while nothing happens.

NOTE: For all command line options that can also be specified via an env. var:
      the command line option will override the env. var if set.

Usage:
  imapidle-watch [--host=<h>] [--port=<p>] [--user=<u>] [--mailbox=<m>]
                 [--keepalive=<k>] [--no-tls] [--once] [--debug]
                 [--log-config=<lc>] [--trace-dir=<td>]
  imapidle-watch -h | --help
  imapidle-watch --version

Options:
  --version
  -h, --help          Show this text and exit
  --host=<h>          The IMAP server. The env. var is `IMAP_HOST`.
  --port=<p>          Port to connect to. Defaults to 993, or 143 with
                      `--no-tls`. The env. var is `IMAP_PORT`.
  --user=<u>          User to log in as. The env. var is `IMAP_USER`. The
                      password is always read from the env. var
                      `IMAP_PASSWORD`.
  --mailbox=<m>       Mailbox to watch. Defaults to `INBOX`. The env. var is
                      `IMAP_MAILBOX`.
  --keepalive=<k>     Seconds between re-issuing IDLE. Defaults to 1740 (29
                      minutes). The env. var is `IMAP_KEEPALIVE`.
  --no-tls            Connect without TLS.
  --once              Exit after the first change instead of watching
                      forever.
  --debug             Will set the default logging level to `DEBUG` and log
                      every line sent to and received from the server. The
                      env. var is `DEBUG`.
  --log-config=<lc>   The log config file, either a JSON file following the
                      python logging configuration dictionary schema or a
                      python logging configuration file. The env. var is
                      `LOG_CONFIG`.
  --trace-dir=<td>    Write trace records of every line sent and received to
                      `<user>-imapidle.trace` in this directory. The env. var
                      is `TRACE_DIR`.
"""
# system imports
#
import logging
import os
import sys
from typing import Optional

# 3rd party imports
#
from docopt import docopt
from dotenv import dotenv_values
from rich.traceback import install as rich_install

# Application imports
#
from imapidle import __version__ as VERSION
from imapidle.exceptions import ProtocolException, TimeoutNotSupported
from imapidle.idle import DEFAULT_KEEPALIVE
from imapidle.session import Session
from imapidle.trace import enable_tracing
from imapidle.transport import SetReadTimeout
from imapidle.utils import setup_logging

logger = logging.getLogger("imapidle.watch")


####################################################################
#
def wait_for_change(
    session: Session, keepalive: float = DEFAULT_KEEPALIVE
) -> int:
    """
    Idle on the session's selected mailbox until the server sends us
    something. Every time `keepalive` seconds pass with nothing from the
    server IDLE is terminated and re-issued.

    Returns how many times IDLE was re-issued before something happened.
    The session's read timeout is the same on return as it was on entry.

    Arguments:
    - `session`: a logged in session with a mailbox selected
    - `keepalive`: seconds to wait before re-issuing IDLE
    """
    transport = session.transport
    if not isinstance(transport, SetReadTimeout):
        raise TimeoutNotSupported()

    # A timed out wait leaves the DONE drain timeout on the transport.
    #
    saved_timeout = transport.read_timeout()
    refreshes = 0
    try:
        while True:
            handle = session.idle()
            handle.set_keepalive(keepalive)
            logger.debug("Entering IDLE, keepalive: %s seconds", keepalive)
            if handle.wait_keepalive():
                logger.debug(
                    "IDLE returned data after %d refreshes", refreshes
                )
                return refreshes
            refreshes += 1
            logger.debug("No activity, re-entering IDLE")
    finally:
        transport.set_read_timeout(saved_timeout)


####################################################################
#
def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


####################################################################
#
def watch(
    session: Session,
    mailbox: str,
    keepalive: float,
    once: bool = False,
) -> None:
    """
    Select `mailbox` and report every change to it until `once` is set and
    one change has been seen.
    """
    counts = session.select(mailbox)
    num_msgs = counts.get("EXISTS", 0)
    logger.info("Watching '%s', %d messages", mailbox, num_msgs)
    while True:
        wait_for_change(session, keepalive)
        for line in session.noop():
            msg = line.decode("utf-8", "replace").strip()
            logger.info("%s: %s", mailbox, msg)
        print(f"Mailbox '{mailbox}' changed")
        if once:
            return


#############################################################################
#
def main(argv: Optional[list] = None) -> int:
    """
    Parse the options, set up logging, connect and watch.
    """
    args = docopt(__doc__, argv=argv, version=VERSION)
    config = {**dotenv_values(), **os.environ}

    # If docopt did not get an option, see if it is set in the config. If it
    # is not set there either use the default value.
    #
    host = args["--host"] or config.get("IMAP_HOST")
    port = args["--port"] or config.get("IMAP_PORT")
    user = args["--user"] or config.get("IMAP_USER")
    password = config.get("IMAP_PASSWORD")
    mailbox = args["--mailbox"] or config.get("IMAP_MAILBOX") or "INBOX"
    keepalive = args["--keepalive"] or config.get("IMAP_KEEPALIVE")
    debug = args["--debug"] or _truthy(config.get("DEBUG", False))
    log_config = args["--log-config"] or config.get("LOG_CONFIG")
    trace_dir = args["--trace-dir"] or config.get("TRACE_DIR")
    tls = not args["--no-tls"]

    rich_install(show_locals=debug)
    setup_logging(log_config, debug, username=user, trace_dir=trace_dir)
    if trace_dir:
        enable_tracing()

    if not host or not user or password is None:
        logger.error("IMAP host, user and IMAP_PASSWORD must all be set")
        return 2

    try:
        port = int(port) if port else None
        keepalive = float(keepalive) if keepalive else DEFAULT_KEEPALIVE
    except ValueError as exc:
        logger.error("Bad port or keepalive: %s", exc)
        return 2

    try:
        session = Session.connect(host, port, tls=tls, debug=debug)
    except (ProtocolException, OSError) as exc:
        logger.error("Unable to connect to %s: %s", host, exc)
        return 1

    try:
        session.login(user, password)
        watch(session, mailbox, keepalive, once=args["--once"])
    except KeyboardInterrupt:
        logger.warning("Keyboard interrupt, exiting")
    except (ProtocolException, OSError) as exc:
        logger.error("Watching '%s' failed: %s", mailbox, exc)
        session.close()
        return 1

    try:
        session.logout()
    except (ProtocolException, OSError) as exc:
        logger.debug("Error logging out: %s", exc)
    finally:
        logging.shutdown()
    return 0


############################################################################
############################################################################
#
# Here is where it all starts
#
if __name__ == "__main__":
    sys.exit(main())
#
############################################################################
############################################################################
