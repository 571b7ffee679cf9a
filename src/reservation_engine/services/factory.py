"""Explicit wiring of the engine from settings."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from reservation_engine.config.settings import Settings
from reservation_engine.repositories.base import RowStore
from reservation_engine.services.inventory_service import InventoryService
from reservation_engine.services.payment_service import (
    PaymentGateway,
    PaymentService,
    SimulatedGateway,
)
from reservation_engine.services.reservation_service import ReservationService
from reservation_engine.services.validation_service import ValidationService
from reservation_engine.services.voucher_service import VoucherCodec


@dataclass
class Services:
    store: RowStore
    inventory: InventoryService
    codec: VoucherCodec
    reservations: ReservationService
    validation: ValidationService
    payments: PaymentService


def build_store(settings: Settings) -> RowStore:
    """Create the configured row store; backends are imported on demand."""
    if settings.store_backend == "dynamodb":
        import boto3
        from botocore.config import Config

        from reservation_engine.repositories.dynamodb_repo import DynamoDbRepository, TableNames

        read_timeout = settings.atomic_path_timeout_ms / 1000
        dynamodb = boto3.resource(
            "dynamodb",
            region_name=settings.aws_region,
            config=Config(read_timeout=read_timeout, retries={"max_attempts": 2}),
        )
        return DynamoDbRepository(
            dynamodb,
            TableNames(
                tickets=settings.tickets_table,
                bookings=settings.bookings_table,
                transactions=settings.transactions_table,
                events=settings.events_table,
                reservations=settings.reservations_table,
                restocks=settings.restocks_table,
            ),
        )

    from reservation_engine.repositories.postgres_repo import PostgresRepository, create_db_engine

    return PostgresRepository(create_db_engine(settings.database_url))


def build_services(
    settings: Settings,
    store: Optional[RowStore] = None,
    gateway: Optional[PaymentGateway] = None,
) -> Services:
    """Wire every service around one store and one voucher codec."""
    store = store or build_store(settings)
    inventory = InventoryService(store)
    codec = VoucherCodec(settings.voucher_secret, ttl=timedelta(hours=settings.voucher_ttl_hours))
    return Services(
        store=store,
        inventory=inventory,
        codec=codec,
        reservations=ReservationService(
            store,
            inventory,
            codec,
            max_attempts=settings.purchase_max_attempts,
            backoff_base=settings.purchase_backoff_base_ms / 1000,
            atomic_timeout_ms=settings.atomic_path_timeout_ms,
        ),
        validation=ValidationService(store, codec),
        payments=PaymentService(store, inventory, gateway or SimulatedGateway()),
    )
