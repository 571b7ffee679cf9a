"""Shared helpers: logging, errors and input guards."""
