# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
import logging as builtin_logging
import sys

root_name = "gangsched"

levels: dict[str, int] = {
    "CRITICAL": builtin_logging.CRITICAL,
    "ERROR": builtin_logging.ERROR,
    "WARN": builtin_logging.WARNING,
    "WARNING": builtin_logging.WARNING,
    "INFO": builtin_logging.INFO,
    "DEBUG": builtin_logging.DEBUG,
    "NOTSET": builtin_logging.NOTSET,
}


def get_logger(name: str) -> builtin_logging.Logger:
    """Logger ``name`` below the ``gangsched`` logger, ``podgroup`` -> ``gangsched.podgroup``"""
    if name != root_name and not name.startswith(f"{root_name}."):
        name = f"{root_name}.{name}"
    return builtin_logging.getLogger(name)


def levelno(levelname: str | int) -> int:
    if isinstance(levelname, int):
        return levelname
    try:
        return levels[levelname.upper()]
    except KeyError:
        raise ValueError(f"Unknown logging level {levelname!r}") from None


def set_logging_level(levelname: str | int) -> None:
    level = levelno(levelname)
    logger = builtin_logging.getLogger(root_name)
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def configure_logging(levelname: str | int = "WARNING") -> None:
    """Send records of the ``gangsched`` loggers to stderr.  Safe to call more than once."""
    logger = builtin_logging.getLogger(root_name)
    if not logger.handlers:
        handler = builtin_logging.StreamHandler(sys.stderr)
        handler.setFormatter(builtin_logging.Formatter("==> %(levelname)s: %(name)s: %(message)s"))
        logger.addHandler(handler)
    set_logging_level(levelname)
