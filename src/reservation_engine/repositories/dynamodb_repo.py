"""DynamoDB row store.

Conditional writes use ``ConditionExpression``; the atomic reserve path and the
idempotent restock use ``TransactWriteItems`` so the inventory change and its
marker row commit together.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError, ReadTimeoutError

from reservation_engine.models.booking import Booking, BookingDetails, BookingStatus
from reservation_engine.models.tier import TicketTier
from reservation_engine.models.transaction import PaymentStatus, Transaction
from reservation_engine.repositories.base import (
    AtomicPathTimeout,
    AtomicPathUnavailable,
    RowStore,
    RowStoreError,
)
from reservation_engine.utils.error_handling import (
    InsufficientInventoryError,
    TierNotFoundError,
)

CONDITION_FAILED = "ConditionalCheckFailedException"
RESERVE_REJECTED = ("TransactionCanceledException", "IdempotentParameterMismatchException")


@dataclass(frozen=True)
class TableNames:
    """Physical table names, overridable per environment."""

    tickets: str = "tickets"
    bookings: str = "bookings"
    transactions: str = "transactions"
    events: str = "events"
    reservations: str = "ticket-reservations"
    restocks: str = "ticket-restocks"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _without_nulls(item: Dict[str, Any]) -> Dict[str, Any]:
    """Index key attributes may not be NULL, so absent values are omitted."""
    return {key: value for key, value in item.items() if value is not None}


def _item_to_tier(item: dict) -> TicketTier:
    return TicketTier(
        id=item["id"],
        event_id=item["event_id"],
        type=item.get("type", "general"),
        price=Decimal(str(item["price"])),
        quantity=int(item["quantity"]),
    )


def _item_to_booking(item: dict) -> Booking:
    return Booking(
        id=item["id"],
        user_id=item["user_id"],
        event_id=item["event_id"],
        ticket_id=item["ticket_id"],
        quantity=int(item["quantity"]),
        total_price=Decimal(str(item["total_price"])),
        status=BookingStatus(item["status"]),
        qr_code=item["qr_code"],
        created_at=item["created_at"],
    )


def _item_to_transaction(item: dict) -> Transaction:
    return Transaction(
        id=item["id"],
        user_id=item["user_id"],
        event_id=item["event_id"],
        ticket_id=item["ticket_id"],
        booking_id=item.get("booking_id"),
        amount=Decimal(str(item["amount"])),
        status=PaymentStatus(item["status"]),
        type=item["type"],
        reference_id=item.get("reference_id"),
        created_at=item["created_at"],
    )


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class DynamoDbRepository(RowStore):
    """Row store backed by DynamoDB tables."""

    def __init__(self, dynamodb=None, table_names: Optional[TableNames] = None):
        self.dynamodb = dynamodb or boto3.resource("dynamodb")
        self.names = table_names or TableNames()
        self.client = self.dynamodb.meta.client
        self.tickets = self.dynamodb.Table(self.names.tickets)
        self.bookings = self.dynamodb.Table(self.names.bookings)
        self.transactions = self.dynamodb.Table(self.names.transactions)
        self.events = self.dynamodb.Table(self.names.events)
        self.reservations = self.dynamodb.Table(self.names.reservations)
        self.restocks = self.dynamodb.Table(self.names.restocks)

    def _get(self, table, key: dict) -> Optional[dict]:
        try:
            return table.get_item(Key=key, ConsistentRead=True).get("Item")
        except (ClientError, BotoCoreError) as exc:
            raise RowStoreError(str(exc)) from exc

    def _put(self, table, item: dict, condition: Optional[str] = None) -> None:
        kwargs: Dict[str, Any] = {"Item": _without_nulls(item)}
        if condition:
            kwargs["ConditionExpression"] = condition
        try:
            table.put_item(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise RowStoreError(str(exc)) from exc

    def _conditional_update(self, table, key: dict, **kwargs) -> bool:
        try:
            table.update_item(Key=key, **kwargs)
            return True
        except ClientError as exc:
            if _error_code(exc) == CONDITION_FAILED:
                return False
            raise RowStoreError(str(exc)) from exc
        except BotoCoreError as exc:
            raise RowStoreError(str(exc)) from exc

    def _query_all(self, table, **kwargs) -> List[dict]:
        items: List[dict] = []
        try:
            while True:
                resp = table.query(**kwargs)
                items.extend(resp.get("Items", []))
                last_key = resp.get("LastEvaluatedKey")
                if not last_key:
                    return items
                kwargs["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as exc:
            raise RowStoreError(str(exc)) from exc

    # Tiers

    def get_tier(self, tier_id: str) -> Optional[TicketTier]:
        item = self._get(self.tickets, {"id": tier_id})
        return _item_to_tier(item) if item else None

    def compare_and_set_tier_quantity(self, tier_id: str, expected: int, new: int) -> bool:
        return self._conditional_update(
            self.tickets,
            {"id": tier_id},
            UpdateExpression="SET #qty = :new",
            ConditionExpression="#qty = :expected",
            ExpressionAttributeNames={"#qty": "quantity"},
            ExpressionAttributeValues={":new": new, ":expected": expected},
        )

    def reserve_tier_atomic(
        self, tier_id: str, quantity: int, reservation_id: str, timeout_ms: int
    ) -> TicketTier:
        # The request deadline is the botocore read_timeout configured on the resource.
        try:
            self.client.transact_write_items(
                ClientRequestToken=reservation_id,
                TransactItems=[
                    {
                        "Update": {
                            "TableName": self.names.tickets,
                            "Key": {"id": tier_id},
                            "UpdateExpression": "SET #qty = #qty - :q",
                            "ConditionExpression": "attribute_exists(id) AND #qty >= :q",
                            "ExpressionAttributeNames": {"#qty": "quantity"},
                            "ExpressionAttributeValues": {":q": quantity},
                        }
                    },
                    {
                        "Put": {
                            "TableName": self.names.reservations,
                            "Item": {
                                "reservation_id": reservation_id,
                                "ticket_id": tier_id,
                                "quantity": quantity,
                                "created_at": _now(),
                            },
                            "ConditionExpression": "attribute_not_exists(reservation_id)",
                        }
                    },
                ]
            )
        except ReadTimeoutError as exc:
            raise AtomicPathTimeout(str(exc)) from exc
        except ClientError as exc:
            if _error_code(exc) in RESERVE_REJECTED:
                try:
                    if self.reservation_exists(reservation_id):
                        # A retried request whose first attempt already committed.
                        return self._tier_after_reserve(tier_id)
                    tier = self.get_tier(tier_id)
                except RowStoreError as read_exc:
                    raise AtomicPathTimeout(str(read_exc)) from exc
                if tier is None:
                    raise TierNotFoundError(tier_id) from exc
                if tier.quantity < quantity:
                    raise InsufficientInventoryError(tier_id, quantity, tier.quantity) from exc
            raise AtomicPathUnavailable(str(exc)) from exc
        except BotoCoreError as exc:
            raise AtomicPathUnavailable(str(exc)) from exc

        return self._tier_after_reserve(tier_id)

    def _tier_after_reserve(self, tier_id: str) -> TicketTier:
        try:
            tier = self.get_tier(tier_id)
        except RowStoreError as exc:
            # The reserve committed; the caller resolves it like a timeout.
            raise AtomicPathTimeout(str(exc)) from exc
        if tier is None:
            raise AtomicPathUnavailable("tier disappeared after reserve")
        return tier

    def reservation_exists(self, reservation_id: str) -> bool:
        return self._get(self.reservations, {"reservation_id": reservation_id}) is not None

    def restock_tier(self, tier_id: str, quantity: int, booking_id: str) -> bool:
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        "Put": {
                            "TableName": self.names.restocks,
                            "Item": {
                                "booking_id": booking_id,
                                "ticket_id": tier_id,
                                "quantity": quantity,
                                "created_at": _now(),
                            },
                            "ConditionExpression": "attribute_not_exists(booking_id)",
                        }
                    },
                    {
                        "Update": {
                            "TableName": self.names.tickets,
                            "Key": {"id": tier_id},
                            "UpdateExpression": "SET #qty = #qty + :q",
                            "ConditionExpression": "attribute_exists(id)",
                            "ExpressionAttributeNames": {"#qty": "quantity"},
                            "ExpressionAttributeValues": {":q": quantity},
                        }
                    },
                ]
            )
            return True
        except ClientError as exc:
            if _error_code(exc) == "TransactionCanceledException":
                if self._get(self.restocks, {"booking_id": booking_id}) is not None:
                    return False
            raise RowStoreError(str(exc)) from exc
        except BotoCoreError as exc:
            raise RowStoreError(str(exc)) from exc

    # Bookings

    def insert_booking(self, booking: Booking) -> Booking:
        item = booking.model_dump(mode="json")
        item["total_price"] = booking.total_price
        self._put(self.bookings, item, condition="attribute_not_exists(id)")
        return booking

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        item = self._get(self.bookings, {"id": booking_id})
        return _item_to_booking(item) if item else None

    def _details(self, item: dict) -> BookingDetails:
        booking = _item_to_booking(item)
        event = self._get(self.events, {"id": booking.event_id}) or {}
        tier = self._get(self.tickets, {"id": booking.ticket_id}) or {}
        return BookingDetails(
            booking=booking,
            event_title=event.get("title"),
            event_date=event.get("start_date"),
            tier_label=tier.get("type"),
        )

    def find_booking_by_voucher(self, voucher: str) -> Optional[BookingDetails]:
        items = self._query_all(
            self.bookings,
            IndexName="qr_code-index",
            KeyConditionExpression=Key("qr_code").eq(voucher),
        )
        if not items:
            return None
        # Index reads are eventually consistent; re-read the base item.
        item = self._get(self.bookings, {"id": items[0]["id"]}) or items[0]
        return self._details(item)

    def list_bookings_for_user(self, user_id: str) -> List[BookingDetails]:
        items = self._query_all(
            self.bookings,
            IndexName="user_id-index",
            KeyConditionExpression=Key("user_id").eq(user_id),
            ScanIndexForward=False,
        )
        return [self._details(item) for item in items]

    def update_booking_status(
        self, booking_id: str, expected: BookingStatus, new: BookingStatus
    ) -> bool:
        return self._conditional_update(
            self.bookings,
            {"id": booking_id},
            UpdateExpression="SET #status = :new",
            ConditionExpression="#status = :expected",
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues={":new": new.value, ":expected": expected.value},
        )

    # Transactions

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        item = transaction.model_dump(mode="json")
        item["amount"] = transaction.amount
        self._put(self.transactions, item, condition="attribute_not_exists(id)")
        return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        item = self._get(self.transactions, {"id": transaction_id})
        return _item_to_transaction(item) if item else None

    def find_payment_for_booking(self, booking_id: str) -> Optional[Transaction]:
        items = self._query_all(
            self.transactions,
            IndexName="booking_id-index",
            KeyConditionExpression=Key("booking_id").eq(booking_id),
        )
        payments = [
            _item_to_transaction(item)
            for item in items
            if item.get("type") == "payment" and item.get("status") == "completed"
        ]
        payments.sort(key=lambda tx: tx.created_at, reverse=True)
        return payments[0] if payments else None

    def update_transaction_status(
        self, transaction_id: str, expected: PaymentStatus, new: PaymentStatus
    ) -> bool:
        return self._conditional_update(
            self.transactions,
            {"id": transaction_id},
            UpdateExpression="SET #status = :new",
            ConditionExpression="#status = :expected",
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues={":new": new.value, ":expected": expected.value},
        )

    def list_transactions(self, user_id: str) -> List[Transaction]:
        items = self._query_all(
            self.transactions,
            IndexName="user_id-index",
            KeyConditionExpression=Key("user_id").eq(user_id),
            ScanIndexForward=False,
        )
        return [_item_to_transaction(item) for item in items]


def create_tables(dynamodb, names: Optional[TableNames] = None) -> None:
    """Create every table and index the repository expects (local/dev use)."""
    names = names or TableNames()

    def _string_attrs(*attrs: str) -> List[dict]:
        return [{"AttributeName": a, "AttributeType": "S"} for a in attrs]

    def _index(name: str, partition: str, sort: Optional[str] = None) -> dict:
        schema = [{"AttributeName": partition, "KeyType": "HASH"}]
        if sort:
            schema.append({"AttributeName": sort, "KeyType": "RANGE"})
        return {"IndexName": name, "KeySchema": schema, "Projection": {"ProjectionType": "ALL"}}

    simple = (
        (names.tickets, "id"),
        (names.events, "id"),
        (names.reservations, "reservation_id"),
        (names.restocks, "booking_id"),
    )
    for table_name, key in simple:
        dynamodb.create_table(
            TableName=table_name,
            KeySchema=[{"AttributeName": key, "KeyType": "HASH"}],
            AttributeDefinitions=_string_attrs(key),
            BillingMode="PAY_PER_REQUEST",
        )

    dynamodb.create_table(
        TableName=names.bookings,
        KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
        AttributeDefinitions=_string_attrs("id", "qr_code", "user_id", "created_at"),
        GlobalSecondaryIndexes=[
            _index("qr_code-index", "qr_code"),
            _index("user_id-index", "user_id", "created_at"),
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    dynamodb.create_table(
        TableName=names.transactions,
        KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
        AttributeDefinitions=_string_attrs("id", "user_id", "created_at", "booking_id"),
        GlobalSecondaryIndexes=[
            _index("user_id-index", "user_id", "created_at"),
            _index("booking_id-index", "booking_id"),
        ],
        BillingMode="PAY_PER_REQUEST",
    )
