import logging
import os
import sys
from logging import Logger
from logging.handlers import RotatingFileHandler
from typing import Optional

FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def _has_handler(logger: Logger, cls, filename: Optional[str] = None) -> bool:
    for h in logger.handlers:
        if type(h) is not cls:
            continue
        if filename is None:
            return True
        if str(getattr(h, "baseFilename", "")).endswith(str(filename)):
            return True
    return False


def setup_logging(log_level=None, logfile: Optional[str] = None) -> Logger:
    """
    Configure root logging to stream to stdout AND write to a rotating file.
    Idempotent: Streamlit re-runs the app script on every interaction.
    """
    if log_level is None:
        log_level = os.environ.get("LOG_LEVEL", "INFO")
    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)
    if logfile is None:
        logfile = os.environ.get("LOG_FILE", "cuebook.log")

    logger = logging.getLogger()
    logger.setLevel(log_level)
    fmt = logging.Formatter(FORMAT)

    if not _has_handler(logger, logging.StreamHandler):
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(log_level)
        ch.setFormatter(fmt)
        logger.addHandler(ch)

    if logfile and not _has_handler(logger, RotatingFileHandler, filename=logfile):
        fh = RotatingFileHandler(logfile, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
        fh.setLevel(log_level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    # httpx logs every Supabase request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logger
