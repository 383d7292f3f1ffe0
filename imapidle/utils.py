"""
Utility functions that do not properly belong to any class or module.
Mostly this is setting up logging for `imapidle-watch`.
"""

# system imports
#
import json
import logging
import logging.config
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from _typeshed import StrPath

logger = logging.getLogger("imapidle.utils")

DEFAULT_LOG_CONFIG_FILES = [
    Path.home() / ".config" / "imapidle" / "imapidle_log.json",
    Path.home() / ".config" / "imapidle" / "imapidle_log.cfg",
    Path("/etc/imapidle_log.json"),
    Path("/etc/imapidle_log.cfg"),
    Path("/usr/local/etc/imapidle_log.json"),
    Path("/usr/local/etc/imapidle_log.cfg"),
]

TRACE_MAX_BYTES = 20 * 1024 * 1024
TRACE_BACKUP_COUNT = 5


####################################################################
#
def _load_log_config(log_config: Path) -> bool:
    """
    Configure logging from `log_config` if it exists. JSON files are a
    logging config dictionary, anything else is a logging config file.
    Returns True if logging was configured.
    """
    if not log_config.exists():
        return False
    if log_config.suffix == ".json":
        cfg = json.loads(log_config.read_text())
        logging.config.dictConfig(cfg)
    else:
        logging.config.fileConfig(str(log_config))
    return True


####################################################################
#
def _default_log_config(
    debug: bool, trace_file: Optional[Path]
) -> Dict[str, Any]:
    """
    The logging config dict used when there is no log config file: the
    `imapidle` loggers go to stderr and, if `trace_file` is given, trace
    records go to it as JSON, one per line.
    """
    cfg: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "basic": {
                "format": "[{asctime}] {username:<20} {levelname}:{module}.{funcName}: {message}",
                "style": "{",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "basic",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "imapidle": {
                "handlers": ["console"],
                "level": "DEBUG" if debug else "INFO",
                "propagate": True,
            },
        },
    }
    if trace_file is None:
        return cfg

    cfg["formatters"]["trace"] = {
        "()": "pythonjsonlogger.json.JsonFormatter",
        "format": "%(message)s",
    }
    cfg["handlers"]["trace_file"] = {
        "class": "logging.handlers.RotatingFileHandler",
        "formatter": "trace",
        "filename": str(trace_file),
        "maxBytes": TRACE_MAX_BYTES,
        "backupCount": TRACE_BACKUP_COUNT,
    }
    cfg["loggers"]["imapidle.trace"] = {
        "handlers": ["trace_file"],
        "level": "INFO",
        "propagate": False,
    }
    return cfg


####################################################################
#
def setup_logging(
    log_config: Optional["StrPath"],
    debug: bool,
    username: Optional[str] = None,
    trace_dir: Optional["StrPath"] = None,
):
    """
    Set up logging for a watcher.

    `log_config`, if it exists, is used. Otherwise the first of
    `DEFAULT_LOG_CONFIG_FILES` that exists is used, and if there is none we
    log to stderr. Every log record gets a `username` field so output from
    several watchers can be told apart.

    Arguments:
    - `log_config`: path to a logging config file, or None
    - `debug`: log at DEBUG instead of INFO
    - `username`: the IMAP user we are logging in as
    - `trace_dir`: if this is a directory, and no log config file was found,
                   trace records are written to `<username>-imapidle.trace`
                   in it.
    """
    user = username if username else "no_user"
    old_factory = logging.getLogRecordFactory()

    def log_record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.username = user
        return record

    logging.setLogRecordFactory(log_record_factory)
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)

    candidates = list(DEFAULT_LOG_CONFIG_FILES)
    if log_config is not None:
        candidates.insert(0, Path(log_config))
    for cfg_file in candidates:
        if _load_log_config(cfg_file):
            logger.debug("Logging configured from '%s'", cfg_file)
            break
    else:
        trace_file = None
        if trace_dir and Path(trace_dir).is_dir():
            trace_file = Path(trace_dir) / f"{user}-imapidle.trace"
        logging.config.dictConfig(_default_log_config(debug, trace_file))
        if trace_dir and trace_file is None:
            logger.warning(
                "Unable to set up tracing: '%s' is not a directory",
                trace_dir,
            )

    if log_config is not None and not Path(log_config).exists():
        logger.warning("Logging config '%s' does not exist", log_config)
    logger.info("Logging initialized")
    logger.debug("Debug enabled")
