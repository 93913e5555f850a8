"""Unit-of-work helper: commit once, roll back on any failure, retry storage faults"""

import asyncio
import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..config import STORAGE_RETRY_ATTEMPTS, STORAGE_RETRY_BASE_DELAY
from ..exceptions import StorageFault

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _attempt(db: Session, work: Callable[[], T], operation: str, attempt: int, max_retries: int):
    """
    One try of `work` plus commit. Returns (True, result) on success and
    (False, None) when a transient storage error should be retried.
    """
    try:
        result = work()
        db.commit()
        return True, result
    except IntegrityError:
        db.rollback()
        raise
    except (OperationalError, DBAPIError) as e:
        db.rollback()
        logger.warning(f"🔄 Storage error on {operation}, attempt {attempt + 1}/{max_retries}: {e}")
        if attempt == max_retries - 1:
            logger.error(f"❌ {operation} failed after {max_retries} attempts")
            raise StorageFault(
                f"Storage unavailable while processing {operation}",
                details={"attempts": max_retries},
            ) from e
        return False, None
    except Exception:
        db.rollback()
        raise


def run_in_transaction(
    db: Session,
    work: Callable[[], T],
    operation: str = "operation",
    max_retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
) -> T:
    """
    Run `work` and commit it as a single transaction.

    Domain errors and integrity violations roll back and propagate unchanged.
    Transient storage errors roll back and re-run `work` with exponential
    backoff; once attempts are exhausted a StorageFault is raised.

    `work` must be safe to re-run from scratch: it re-reads everything it needs.
    Blocks while backing off, so call it from sync routes or worker threads.
    """
    max_retries = max_retries or STORAGE_RETRY_ATTEMPTS
    retry_delay = STORAGE_RETRY_BASE_DELAY if retry_delay is None else retry_delay

    for attempt in range(max_retries):
        done, result = _attempt(db, work, operation, attempt, max_retries)
        if done:
            return result
        time.sleep(retry_delay * (2**attempt))

    # Unreachable: the last attempt either returns or raises
    raise StorageFault(f"Storage unavailable while processing {operation}")


async def run_in_transaction_async(
    db: Session,
    work: Callable[[], T],
    operation: str = "operation",
    max_retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
) -> T:
    """Same contract as run_in_transaction, backing off with asyncio.sleep"""
    max_retries = max_retries or STORAGE_RETRY_ATTEMPTS
    retry_delay = STORAGE_RETRY_BASE_DELAY if retry_delay is None else retry_delay

    for attempt in range(max_retries):
        done, result = _attempt(db, work, operation, attempt, max_retries)
        if done:
            return result
        await asyncio.sleep(retry_delay * (2**attempt))

    raise StorageFault(f"Storage unavailable while processing {operation}")
