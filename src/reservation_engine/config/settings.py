"""
Environment-specific configuration settings.

Defaults suit local development; production refuses to start without a
voucher secret.
"""

from dataclasses import dataclass
import os

from reservation_engine.utils.error_handling import ValidationError


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer") from exc


@dataclass
class Settings:
    """Engine settings with local-friendly defaults."""

    # Environment
    environment: str = "dev"
    store_backend: str = "postgres"  # postgres | dynamodb
    aws_region: str = "eu-west-2"

    # Relational store
    database_url: str = "sqlite:///reservation_engine.db"

    # Vouchers
    voucher_secret: str = ""
    voucher_ttl_hours: int = 24

    # Purchase retry policy
    purchase_max_attempts: int = 5
    purchase_backoff_base_ms: int = 100
    atomic_path_timeout_ms: int = 3000

    # DynamoDB tables
    tickets_table: str = "tickets"
    bookings_table: str = "bookings"
    transactions_table: str = "transactions"
    events_table: str = "events"
    reservations_table: str = "ticket-reservations"
    restocks_table: str = "ticket-restocks"

    @classmethod
    def from_environment(cls) -> "Settings":
        """Load settings from environment variables."""
        env = os.environ.get("ENVIRONMENT", "dev")
        secret = os.environ.get("VOUCHER_SECRET") or os.environ.get("JWT_SECRET", "")
        backend = os.environ.get("STORE_BACKEND", "postgres").lower()

        if backend not in ("postgres", "dynamodb"):
            raise ValidationError(f"Unsupported STORE_BACKEND: {backend}")

        # Production overrides
        if env == "prod" and not secret:
            raise ValidationError("VOUCHER_SECRET must be set in prod")

        return cls(
            environment=env,
            store_backend=backend,
            aws_region=os.environ.get("AWS_REGION", cls.aws_region),
            database_url=os.environ.get("DATABASE_URL", cls.database_url),
            voucher_secret=secret,
            voucher_ttl_hours=_int_env("VOUCHER_TTL_HOURS", cls.voucher_ttl_hours),
            purchase_max_attempts=_int_env("PURCHASE_MAX_ATTEMPTS", cls.purchase_max_attempts),
            purchase_backoff_base_ms=_int_env(
                "PURCHASE_BACKOFF_BASE_MS", cls.purchase_backoff_base_ms
            ),
            atomic_path_timeout_ms=_int_env("ATOMIC_PATH_TIMEOUT_MS", cls.atomic_path_timeout_ms),
            tickets_table=os.environ.get("TICKETS_TABLE", cls.tickets_table),
            bookings_table=os.environ.get("BOOKINGS_TABLE", cls.bookings_table),
            transactions_table=os.environ.get("TRANSACTIONS_TABLE", cls.transactions_table),
            events_table=os.environ.get("EVENTS_TABLE", cls.events_table),
            reservations_table=os.environ.get("RESERVATIONS_TABLE", cls.reservations_table),
            restocks_table=os.environ.get("RESTOCKS_TABLE", cls.restocks_table),
        )
