"""Row-store implementations.

Backends are imported from their own modules so the SQLAlchemy and boto3
stacks only load when the configured store needs them.
"""

from reservation_engine.repositories.base import (  # noqa: F401
    AtomicPathTimeout,
    AtomicPathUnavailable,
    RowStore,
    RowStoreError,
)
