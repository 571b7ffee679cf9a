"""Structured logger setup shared across the engine services."""

import logging
from pythonjsonlogger.json import JsonFormatter


def get_logger(name: str) -> logging.Logger:
    """
    Configure a JSON logger once and reuse it.

    Every service logs flat key/value context through ``extra`` so purchase and
    redemption traces can be correlated by tier, booking or voucher id.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    formatter = JsonFormatter(
        "%(levelname)s %(name)s %(message)s %(asctime)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


def redact_signature(signature: str) -> str:
    """Keep only a short prefix of a signature for log lines."""
    return f"{signature[:8]}..." if signature else ""
