"""DDL for the relational row store.

The table statements are portable between PostgreSQL and SQLite (used by the
test suite). The atomic reserve function is PostgreSQL only; without it the
engine falls back to compare-and-swap retries.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

TABLE_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS events (
        id VARCHAR(64) PRIMARY KEY,
        title VARCHAR(255) NOT NULL,
        start_date TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id VARCHAR(64) PRIMARY KEY,
        event_id VARCHAR(64) NOT NULL,
        type VARCHAR(100) NOT NULL DEFAULT 'general',
        price NUMERIC(10, 2) NOT NULL CHECK (price >= 0),
        quantity INTEGER NOT NULL CHECK (quantity >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bookings (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        event_id VARCHAR(64) NOT NULL,
        ticket_id VARCHAR(64) NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        total_price NUMERIC(12, 2) NOT NULL,
        status VARCHAR(16) NOT NULL,
        qr_code TEXT NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_bookings_user_created ON bookings (user_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        event_id VARCHAR(64) NOT NULL,
        ticket_id VARCHAR(64) NOT NULL,
        booking_id VARCHAR(64),
        amount NUMERIC(12, 2) NOT NULL,
        status VARCHAR(16) NOT NULL,
        type VARCHAR(16) NOT NULL,
        reference_id VARCHAR(64),
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_transactions_user_created ON transactions (user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS ix_transactions_booking ON transactions (booking_id)",
    """
    CREATE TABLE IF NOT EXISTS ticket_reservations (
        reservation_id VARCHAR(64) PRIMARY KEY,
        ticket_id VARCHAR(64) NOT NULL,
        quantity INTEGER NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ticket_restocks (
        booking_id VARCHAR(64) PRIMARY KEY,
        ticket_id VARCHAR(64) NOT NULL,
        quantity INTEGER NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
)

# SQLSTATE TK404 = unknown tier, TK409 = not enough units.
RESERVE_FUNCTION = """
CREATE OR REPLACE FUNCTION reserve_ticket_tier(
    p_ticket_id VARCHAR,
    p_quantity INTEGER,
    p_reservation_id VARCHAR
)
RETURNS TABLE (id VARCHAR, event_id VARCHAR, type VARCHAR, price NUMERIC, quantity INTEGER)
LANGUAGE plpgsql
AS $$
#variable_conflict use_column
BEGIN
    PERFORM 1 FROM tickets t WHERE t.id = p_ticket_id;
    IF NOT FOUND THEN
        RAISE EXCEPTION 'ticket tier % not found', p_ticket_id USING ERRCODE = 'TK404';
    END IF;

    UPDATE tickets t
       SET quantity = t.quantity - p_quantity
     WHERE t.id = p_ticket_id
       AND t.quantity >= p_quantity;
    IF NOT FOUND THEN
        RAISE EXCEPTION 'insufficient inventory for %', p_ticket_id USING ERRCODE = 'TK409';
    END IF;

    INSERT INTO ticket_reservations (reservation_id, ticket_id, quantity, created_at)
    VALUES (p_reservation_id, p_ticket_id, p_quantity, now());

    RETURN QUERY
        SELECT t.id, t.event_id, t.type, t.price, t.quantity
          FROM tickets t
         WHERE t.id = p_ticket_id;
END;
$$
"""


def create_schema(engine: Engine) -> None:
    """Create tables (and the reserve function on PostgreSQL) if missing."""
    with engine.begin() as conn:
        for statement in TABLE_STATEMENTS:
            conn.execute(text(statement))
        if engine.dialect.name == "postgresql":
            conn.execute(text(RESERVE_FUNCTION))
