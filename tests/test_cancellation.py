"""
Tests for the cooperative cancellation token.
"""

import os
import sys
import asyncio
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from directory_import.cancellation import CancellationToken, ImportCancelled, ensure_token
from directory_import.main import ImportFailure, UserImportService

from fakes import FakeDirectory, org_unit


def test_new_token_is_not_cancelled():
    token = CancellationToken()

    assert not token.cancelled
    token.raise_if_cancelled()


def test_cancel_is_observed():
    token = CancellationToken()
    token.cancel()

    assert token.cancelled
    with pytest.raises(ImportCancelled):
        token.raise_if_cancelled()


def test_cancel_from_another_thread():
    token = CancellationToken()
    worker = threading.Thread(target=token.cancel)
    worker.start()
    worker.join()

    assert token.cancelled


def test_ensure_token_keeps_given_token():
    token = CancellationToken()

    assert ensure_token(token) is token
    assert not ensure_token(None).cancelled


def test_cancelled_before_start_touches_nothing(mocker):
    token = CancellationToken()
    token.cancel()
    store = mocker.Mock()
    store.find_org_unit = mocker.AsyncMock()
    store.commit = mocker.AsyncMock()
    directory = FakeDirectory([org_unit('/Engineering')])

    result = asyncio.run(UserImportService(directory, store).import_users(token))

    assert isinstance(result, ImportFailure)
    assert isinstance(result.cause, ImportCancelled)
    assert directory.org_units_read == 0
    store.find_org_unit.assert_not_called()
    store.commit.assert_not_called()
    store.rollback.assert_called_once()
