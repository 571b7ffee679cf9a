"""Ticket reservation and voucher engine."""

__version__ = "0.1.0"
