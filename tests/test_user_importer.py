#!/usr/bin/env python3
"""
Unit tests for the user import phase.
"""

import os
import sys
import unittest
from unittest.mock import AsyncMock, Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from directory_import.cancellation import CancellationToken, ImportCancelled
from directory_import.importers import UserImporter
from directory_import.models import User

from fakes import FakeDirectory, sqlite_session_factory, sqlite_store, user


def mock_store(existing=None, commit_count=0):
    existing = existing or {}
    store = Mock()
    store.find_user = AsyncMock(side_effect=lambda user_id, token=None: existing.get(user_id))
    store.commit = AsyncMock(return_value=commit_count)
    return store


class TestUserImporterInteractions(unittest.IsolatedAsyncioTestCase):
    """Filtering and field mapping of UserImporter."""

    async def test_users_without_org_unit_are_skipped(self):
        directory = FakeDirectory(users=[user('1', org_unit_path=''), user('2', org_unit_path=None)])
        store = mock_store()

        with self.assertLogs('directory_import.importers', level='DEBUG') as logs:
            await UserImporter(directory, store).import_users()

        store.find_user.assert_not_called()
        store.add.assert_not_called()
        self.assertTrue(any('missing organization unit' in line for line in logs.output))

    async def test_users_in_ignored_units_are_skipped(self):
        directory = FakeDirectory(users=[
            user('1', org_unit_path='/Sluttet'),
            user('2', org_unit_path='/sluttet'),
            user('3', org_unit_path='/'),
        ])
        store = mock_store()

        await UserImporter(directory, store).import_users()

        store.find_user.assert_not_called()
        store.add.assert_not_called()

    async def test_new_user_fields_are_mirrored(self):
        directory = FakeDirectory(users=[
            user('42', org_unit_path='/Engineering', email='kari@example.com',
                 phones=[('998 87 766', True)]),
        ])
        store = mock_store(commit_count=1)

        count = await UserImporter(directory, store).import_users()

        self.assertEqual(count, 1)
        added = store.add.call_args[0][0]
        self.assertEqual(added.id, '42')
        self.assertEqual(added.email, 'kari@example.com')
        self.assertEqual(added.given_name, 'Kari')
        self.assertEqual(added.family_name, 'Nordmann')
        self.assertEqual(added.full_name, 'Kari Nordmann')
        self.assertEqual(added.picture_url, 'https://example.com/photos/42.jpg')
        self.assertEqual(added.organization_unit_path, '/Engineering')
        self.assertEqual(added.phone_number, '+4799887766')

    async def test_existing_user_is_updated_in_place(self):
        existing = User(id='42', email='old@example.com', organization_unit_path='/Old',
                        phone_number='+4711111111')
        directory = FakeDirectory(users=[user('42', org_unit_path='/Engineering', phones=[])])
        store = mock_store(existing={'42': existing})

        await UserImporter(directory, store).import_users()

        store.add.assert_not_called()
        self.assertEqual(existing.email, '42@example.com')
        self.assertEqual(existing.organization_unit_path, '/Engineering')
        self.assertIsNone(existing.phone_number)

    async def test_remote_errors_propagate(self):
        directory = FakeDirectory(users=[user('1')], user_error=ConnectionError("reset"))
        store = mock_store()

        with self.assertRaises(ConnectionError):
            await UserImporter(directory, store).import_users()

        store.commit.assert_not_called()

    async def test_cancellation_stops_reading_and_lookups(self):
        token = CancellationToken()
        directory = FakeDirectory(
            users=[user('1'), user('2'), user('3')],
            on_user=lambda record: token.cancel(),
        )
        store = mock_store()

        with self.assertRaises(ImportCancelled):
            await UserImporter(directory, store).import_users(token)

        self.assertEqual(directory.users_read, 1)
        self.assertEqual(store.find_user.await_count, 1)
        store.commit.assert_not_called()

    async def test_cancelled_token_prevents_any_store_access(self):
        token = CancellationToken()
        token.cancel()
        store = mock_store()

        with self.assertRaises(ImportCancelled):
            await UserImporter(FakeDirectory(users=[user('1')]), store).import_users(token)

        store.find_user.assert_not_called()


class TestUserImporterDatabase(unittest.IsolatedAsyncioTestCase):
    """UserImporter against a real SQLAlchemy session."""

    def setUp(self):
        self.session_factory = sqlite_session_factory()

    def users(self):
        with self.session_factory() as session:
            return {
                u.id: (u.email, u.full_name, u.organization_unit_path, u.phone_number)
                for u in session.scalars(select(User))
            }

    async def run_import(self, records):
        with sqlite_store(self.session_factory) as store:
            return await UserImporter(FakeDirectory(users=records), store).import_users()

    async def test_user_without_org_unit_never_stored(self):
        await self.run_import([user('1', org_unit_path=''), user('2')])

        self.assertEqual(set(self.users()), {'2'})

    async def test_second_run_is_idempotent(self):
        records = [user('1', phones=[('99887766', True)]), user('2', org_unit_path='/Sales')]

        first_count = await self.run_import(records)
        first = self.users()
        second_count = await self.run_import(records)

        self.assertEqual(first_count, 2)
        self.assertEqual(self.users(), first)
        self.assertEqual(second_count, 0)

    async def test_moved_user_is_updated(self):
        await self.run_import([user('1', org_unit_path='/Sales')])

        count = await self.run_import([user('1', org_unit_path='/Engineering')])

        self.assertEqual(count, 1)
        self.assertEqual(self.users()['1'][2], '/Engineering')

    async def test_user_moved_to_ignored_unit_keeps_last_import(self):
        await self.run_import([user('1', org_unit_path='/Sales')])

        await self.run_import([user('1', org_unit_path='/Sluttet')])

        self.assertEqual(self.users()['1'][2], '/Sales')


if __name__ == '__main__':
    unittest.main()
