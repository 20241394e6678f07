# sanrun/logger.py

import logging
import sys
from logging.handlers import RotatingFileHandler

import colorlog

from sanrun.paths import ensure_base_dir, get_log_file


def setup_sanrun_logger(
    log_level=logging.INFO,
    log_to_file=True,
    log_to_console=False,
    max_bytes=5 * 1024 * 1024,
    backup_count=5,
    use_color=True
):
    logger = logging.getLogger("sanrun")
    logger.setLevel(log_level)

    # Clear existing handlers if rerun
    if logger.hasHandlers():
        logger.handlers.clear()

    if log_to_console:
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(log_level)
        if use_color:
            ch.setFormatter(colorlog.ColoredFormatter(
                fmt="%(log_color)s[%(levelname)s]%(reset)s %(name)s - %(message)s",
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "bold_red",
                },
            ))
        else:
            ch.setFormatter(logging.Formatter("[%(levelname)s] %(name)s - %(message)s"))
        logger.addHandler(ch)

    # file handler (rotating), one file shared by all invocations
    if log_to_file:
        ensure_base_dir()
        fh = RotatingFileHandler(
            str(get_log_file()),
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        fh.setLevel(log_level)
        fh.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(fh)

    logger.debug("sanrun logger configured. log_to_file: %s, log_to_console: %s", log_to_file, log_to_console)
    return logger
