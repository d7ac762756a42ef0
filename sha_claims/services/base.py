"""
Transaction helper shared by the services.

Each state-changing operation runs in exactly one `async_sessionmaker.begin()`
block. Database errors leave the block as domain errors; the transaction has
already been rolled back by then.
"""

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sha_claims.core.exceptions import ClaimsWorkflowError, PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UniqueKey:
    """
    A unique constraint as the database drivers report it.

    PostgreSQL names the constraint or index (`uq_...`, `<table>_<column>_key`,
    `ix_<table>_<column>`); SQLite lists `table.column` pairs.
    """

    table: str
    columns: tuple[str, ...]
    name: Optional[str] = None

    def matches(self, error: IntegrityError) -> bool:
        message = str(error.orig)
        if self.name and self.name in message:
            return True
        if ", ".join(f"{self.table}.{column}" for column in self.columns) in message:
            return True
        return f"{self.table}_{'_'.join(self.columns)}" in message


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
    conflicts: Sequence[tuple[UniqueKey, ClaimsWorkflowError]] = (),
) -> AsyncIterator[AsyncSession]:
    """
    Open a session and a transaction, committing on success.

    Args:
        session_factory: Session factory bound to the engine
        conflicts: Domain error raised for a violation of each unique key;
            any other constraint violation is a PersistenceError
    """
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except ClaimsWorkflowError:
        raise
    except IntegrityError as e:
        for key, conflict in conflicts:
            if key.matches(e):
                raise conflict from e
        logger.error(f"Integrity error, transaction rolled back: {e.orig}")
        raise PersistenceError(
            "Transaction rejected by a database constraint", {"error": str(e.orig)}
        ) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error, transaction rolled back: {e}")
        raise PersistenceError("Database operation failed", {"error": str(e)}) from e
