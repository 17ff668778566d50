"""Optimistic-concurrency transaction runner.

Per-key records (progress, word mastery, confidence) carry a ``version``
column mapped as SQLAlchemy's ``version_id_col``. An UPDATE whose version no
longer matches raises ``StaleDataError``; two racing first INSERTs for the
same key trip a unique constraint and raise ``IntegrityError``. Either way
the whole read-modify-write is rolled back and replayed against fresh rows.
"""
import logging
from typing import Callable, Optional, TypeVar
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from app.config import settings
from app.errors import ConcurrentUpdateConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_optimistic(
    db: Session,
    operation: Callable[[Session], T],
    key: str,
    max_retries: Optional[int] = None
) -> T:
    """
    Run a read-modify-write operation and commit it, retrying on conflict.

    The operation must do all of its reads inside the call so a replay
    observes the rows the competing writer committed. Anything other than a
    version or uniqueness conflict is rolled back and re-raised untouched.

    Args:
        db: Database session (must not hold uncommitted work)
        operation: Callable performing the reads and writes; its return
            value is returned after a successful commit
        key: Record key used in log lines and the conflict error
        max_retries: Retries after the first try (default UPDATE_RETRY_LIMIT)

    Returns:
        Whatever ``operation`` returned

    Raises:
        ConcurrentUpdateConflict: Every try hit a conflict
    """
    if max_retries is None:
        max_retries = settings.UPDATE_RETRY_LIMIT

    tries = max_retries + 1
    for attempt in range(1, tries + 1):
        try:
            result = operation(db)
            db.commit()
            return result
        except (StaleDataError, IntegrityError) as e:
            db.rollback()
            logger.warning(
                f"Concurrent update on {key} (try {attempt}/{tries}): {type(e).__name__}"
            )
        except Exception:
            db.rollback()
            raise

    logger.error(f"Giving up on {key} after {tries} conflicting tries")
    raise ConcurrentUpdateConflict(
        f"Record {key} kept changing underneath this update; retry the submission",
        key=key,
        attempts=tries
    )
