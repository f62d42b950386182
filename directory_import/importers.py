"""
Import phases for organization units and users.

Each importer streams one record type from the directory, skips ignored
records, upserts the rest into the store and commits once at the end.
Errors are not handled here; they propagate to the import service.
"""

import logging
from typing import Optional

from directory_import.cancellation import CancellationToken, ensure_token
from directory_import.config import ImportSettings
from directory_import.models import ROOT_ORG_UNIT_PATH, OrganizationUnit, User
from directory_import.phone import normalize_phone_number

logger = logging.getLogger(__name__)


class OrgUnitImporter:
    """Mirrors the directory's organization unit tree."""

    def __init__(self, directory, store, settings: Optional[ImportSettings] = None):
        self.directory = directory
        self.store = store
        self.settings = settings or ImportSettings()

    async def import_org_units(self, token: Optional[CancellationToken] = None) -> int:
        """
        Upsert all organization units and guarantee the root unit.

        Returns:
            Number of rows changed by the commit
        """
        token = ensure_token(token)

        async for remote in self.directory.stream_org_units(token):
            token.raise_if_cancelled()

            if self.settings.is_ignored(remote.org_unit_path):
                logger.debug("Skipping organization unit %s.", remote.org_unit_path)
                continue

            org_unit = await self.store.find_org_unit(remote.org_unit_path, token)

            if org_unit is None:
                org_unit = OrganizationUnit(path=remote.org_unit_path)
                self.store.add(org_unit)

            org_unit.name = remote.name.lstrip('_') if remote.name is not None else None
            org_unit.parent_path = remote.parent_org_unit_path

        # "/" is never imported from the directory but must always exist locally.
        if await self.store.find_org_unit(ROOT_ORG_UNIT_PATH, token) is None:
            self.store.add(OrganizationUnit(path=ROOT_ORG_UNIT_PATH, name=self.settings.root_org_unit_name))

        count = await self.store.commit(token)

        logger.info("Imported %d org units from Google.", count)
        return count


class UserImporter:
    """Mirrors directory users that belong to an imported organization unit."""

    def __init__(self, directory, store, settings: Optional[ImportSettings] = None):
        self.directory = directory
        self.store = store
        self.settings = settings or ImportSettings()

    async def import_users(self, token: Optional[CancellationToken] = None) -> int:
        """
        Upsert all users with a usable organization unit.

        Returns:
            Number of rows changed by the commit
        """
        token = ensure_token(token)

        async for remote in self.directory.stream_users(token):
            token.raise_if_cancelled()

            if not remote.org_unit_path:
                logger.debug("Skipping user '%s' with missing organization unit.", remote.id)
                continue

            if self.settings.is_ignored(remote.org_unit_path):
                logger.debug("Skipping user '%s' in %s organization unit.", remote.id, remote.org_unit_path)
                continue

            user = await self.store.find_user(remote.id, token)

            if user is None:
                user = User(id=remote.id)
                self.store.add(user)

            user.email = remote.primary_email
            user.given_name = remote.name.given_name
            user.family_name = remote.name.family_name
            user.full_name = remote.name.full_name
            user.picture_url = remote.thumbnail_photo_url
            user.organization_unit_path = remote.org_unit_path
            user.phone_number = normalize_phone_number(remote.phones, self.settings.default_country_code)

        count = await self.store.commit(token)

        logger.info("Imported %d user(s) from Google.", count)
        return count
