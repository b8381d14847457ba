"""Tests for database helpers."""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from alertframe.utils.db_utils import retry_on_lock


def locked():
    return OperationalError("COMMIT", {}, Exception("database is locked"))


async def test_retries_transient_errors():
    commit = AsyncMock(side_effect=[locked(), locked(), "ok"])

    assert await retry_on_lock(commit, base_delay=0) == "ok"
    assert commit.await_count == 3


async def test_gives_up_after_max_retries():
    commit = AsyncMock(side_effect=locked())

    with pytest.raises(OperationalError):
        await retry_on_lock(commit, max_retries=2, base_delay=0)
    assert commit.await_count == 2


async def test_other_errors_are_not_retried():
    commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("no such table: alerts")))

    with pytest.raises(OperationalError):
        await retry_on_lock(commit, base_delay=0)
    assert commit.await_count == 1
