"""Structured logging setup shared by the operator components."""

import logging
import sys

# ANSI color codes
BLUE = "\033[94m"
RED = "\033[91m"
WHITE = "\033[97m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RESET = "\033[0m"

LOGGER_NAME = "pg-operator"

LOG_FORMAT = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'


def configure_logging(level: str = "INFO"):
    """Configure structured logging on stdout"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def get_logger(component: str = "") -> logging.Logger:
    if component:
        return logging.getLogger(f"{LOGGER_NAME}.{component}")
    return logging.getLogger(LOGGER_NAME)


def mask_dsn(dsn: str) -> str:
    """Replace the password value in a libpq key/value DSN"""
    parts = []
    for part in dsn.split(" "):
        if part.startswith("password="):
            part = "password=****"
        parts.append(part)
    return " ".join(parts)
