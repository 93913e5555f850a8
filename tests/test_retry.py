from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from practicehub.exceptions import ConflictError, StorageFault
from practicehub.shared import retry
from practicehub.shared.retry import run_in_transaction, run_in_transaction_async


def storage_error():
    return OperationalError("UPDATE memberships", {}, Exception("connection reset"))


def test_commits_once_on_success():
    db = MagicMock()
    assert run_in_transaction(db, lambda: 42) == 42
    db.commit.assert_called_once()
    db.rollback.assert_not_called()


def test_transient_error_is_retried():
    db = MagicMock()
    db.commit.side_effect = [storage_error(), None]
    work = MagicMock(return_value="ok")

    assert run_in_transaction(db, work, "debit", retry_delay=0) == "ok"
    assert work.call_count == 2
    db.rollback.assert_called_once()


def test_exhausted_retries_raise_storage_fault():
    db = MagicMock()
    db.commit.side_effect = storage_error()

    with pytest.raises(StorageFault) as exc_info:
        run_in_transaction(db, lambda: None, "debit", max_retries=3, retry_delay=0)
    assert exc_info.value.details == {"attempts": 3}
    assert db.rollback.call_count == 3


def test_integrity_error_not_retried():
    db = MagicMock()
    db.commit.side_effect = IntegrityError("INSERT", {}, Exception("duplicate"))

    with pytest.raises(IntegrityError):
        run_in_transaction(db, lambda: None, retry_delay=0)
    db.commit.assert_called_once()
    db.rollback.assert_called_once()


def test_domain_error_rolls_back_and_propagates():
    db = MagicMock()

    def work():
        raise ConflictError("taken")

    with pytest.raises(ConflictError):
        run_in_transaction(db, work, retry_delay=0)
    db.commit.assert_not_called()
    db.rollback.assert_called_once()


def test_async_backoff_awaits_instead_of_blocking(monkeypatch):
    db = MagicMock()
    db.commit.side_effect = [storage_error(), storage_error(), None]
    blocking_sleep = MagicMock()
    async_sleep = AsyncMock()
    monkeypatch.setattr(retry.time, "sleep", blocking_sleep)
    monkeypatch.setattr(retry.asyncio, "sleep", async_sleep)

    result = asyncio.run(run_in_transaction_async(db, lambda: "ok", "subscribe", retry_delay=0.5))

    assert result == "ok"
    assert [c.args[0] for c in async_sleep.await_args_list] == [0.5, 1.0]
    blocking_sleep.assert_not_called()


def test_async_exhausted_retries_raise_storage_fault():
    db = MagicMock()
    db.commit.side_effect = storage_error()

    with pytest.raises(StorageFault):
        asyncio.run(run_in_transaction_async(db, lambda: None, max_retries=2, retry_delay=0))
    assert db.rollback.call_count == 2
