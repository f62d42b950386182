#!/usr/bin/env python3
"""
Unit tests for the SQLAlchemy unit-of-work store.
"""

import os
import sys
import unittest
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import inspect

from directory_import.cancellation import CancellationToken, ImportCancelled
from directory_import.models import OrganizationUnit, User
from directory_import.store import DirectoryStore, create_db_engine, create_schema, create_session_factory

from fakes import sqlite_session_factory


class UnscannableSet:
    def __iter__(self):
        raise AssertionError('pending objects must be looked up by key')


class TestDirectoryStore(unittest.IsolatedAsyncioTestCase):
    """Test cases for DirectoryStore."""

    def setUp(self):
        self.session_factory = sqlite_session_factory()
        self.store = DirectoryStore(self.session_factory())

    def tearDown(self):
        self.store.close()

    async def test_find_missing_returns_none(self):
        self.assertIsNone(await self.store.find_org_unit('/nowhere'))
        self.assertIsNone(await self.store.find_user('missing'))

    async def test_commit_counts_new_rows(self):
        self.store.add(OrganizationUnit(path='/', name='Miles'))
        self.store.add(User(id='1', email='a@example.com'))

        self.assertEqual(await self.store.commit(), 2)

        with self.session_factory() as session:
            self.assertEqual(session.get(User, '1').email, 'a@example.com')

    async def test_commit_counts_only_real_modifications(self):
        self.store.add(User(id='1', email='a@example.com'))
        self.store.add(User(id='2', email='b@example.com'))
        await self.store.commit()

        first = await self.store.find_user('1')
        second = await self.store.find_user('2')
        first.email = 'changed@example.com'
        second.email = 'b@example.com'

        self.assertEqual(await self.store.commit(), 1)

    async def test_find_sees_staged_objects(self):
        staged = OrganizationUnit(path='/Sales', name='Sales')
        self.store.add(staged)

        self.assertIs(await self.store.find_org_unit('/Sales'), staged)
        self.assertIsNone(await self.store.find_user('/Sales'))

    async def test_lookups_are_exact_match(self):
        self.store.add(OrganizationUnit(path='/Sales', name='Sales'))
        await self.store.commit()

        self.assertIsNone(await self.store.find_org_unit('/sales'))
        self.assertIsNotNone(await self.store.find_org_unit('/Sales'))

    async def test_cancelled_token_blocks_lookup_and_commit(self):
        token = CancellationToken()
        token.cancel()
        self.store.add(User(id='1'))

        with self.assertRaises(ImportCancelled):
            await self.store.find_user('1', token)
        with self.assertRaises(ImportCancelled):
            await self.store.commit(token)

        self.assertEqual(self.store.pending_changes(), 1)

    async def test_rollback_discards_staged_objects(self):
        self.store.add(User(id='1'))
        self.store.rollback()

        self.assertEqual(self.store.pending_changes(), 0)
        self.assertEqual(await self.store.commit(), 0)

    async def test_staged_lookup_does_not_scan_the_session(self):
        session = Mock()
        store = DirectoryStore(session)
        units = [OrganizationUnit(path=f'/Unit{i}', name=str(i)) for i in range(3)]
        for unit in units:
            store.add(unit)
        session.new = UnscannableSet()

        self.assertIs(await store.find_org_unit('/Unit2'), units[2])
        session.get.assert_not_called()

    async def test_staged_objects_are_forgotten_after_rollback(self):
        self.store.add(OrganizationUnit(path='/Sales', name='Sales'))
        self.store.rollback()

        self.assertIsNone(await self.store.find_org_unit('/Sales'))

    async def test_committed_objects_are_found_through_the_session(self):
        staged = OrganizationUnit(path='/Sales', name='Sales')
        self.store.add(staged)
        await self.store.commit()

        found = await self.store.find_org_unit('/Sales')

        self.assertIs(found, staged)
        self.assertFalse(self.store._pending)

    def test_ping(self):
        self.assertTrue(self.store.ping())


class TestSchema(unittest.TestCase):
    """Test cases for engine and schema helpers."""

    def test_create_schema_creates_tables(self):
        engine = create_db_engine({'url': 'sqlite://'})
        create_schema(engine)

        tables = set(inspect(engine).get_table_names())
        self.assertEqual(tables, {'organization_units', 'users'})

    def test_session_factory_does_not_autoflush(self):
        engine = create_db_engine({'url': 'sqlite://', 'echo': False})
        session = create_session_factory(engine)()
        try:
            self.assertFalse(session.autoflush)
        finally:
            session.close()


if __name__ == '__main__':
    unittest.main()
