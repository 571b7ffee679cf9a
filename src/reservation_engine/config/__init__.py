"""Environment-driven configuration."""

from reservation_engine.config.settings import Settings  # noqa: F401
