"""
Unit-of-work over the local relational store.

Wraps one SQLAlchemy session. Importers look records up by natural key,
mutate the returned objects in place, stage new objects with ``add`` and
flush everything with a single ``commit`` per phase.
"""

import logging
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from sqlalchemy import create_engine, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from directory_import.cancellation import CancellationToken, ensure_token
from directory_import.models import Base, OrganizationUnit, User

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=Base)


def create_db_engine(database_config: Dict[str, Any]) -> Engine:
    """Create the engine described by the ``database`` config section."""
    return create_engine(
        database_config['url'],
        echo=database_config.get('echo', False),
        future=True,
        pool_pre_ping=True,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def create_schema(engine: Engine) -> None:
    """Create any missing tables."""
    Base.metadata.create_all(engine)
    logger.info("Database schema is up to date")


class DirectoryStore:
    """
    Find/add/commit operations for organization units and users.

    In-place changes to objects returned by the ``find_*`` methods are tracked
    by the session; there is no explicit update call.
    """

    def __init__(self, session: Session):
        self.session = session
        # Objects staged since the last commit, keyed by (model, primary key)
        self._pending: Dict[Tuple[type, Any], Base] = {}

    async def find_org_unit(self, path: str,
                            token: Optional[CancellationToken] = None) -> Optional[OrganizationUnit]:
        return self._find(OrganizationUnit, path, token)

    async def find_user(self, user_id: str,
                        token: Optional[CancellationToken] = None) -> Optional[User]:
        return self._find(User, user_id, token)

    def _find(self, model: Type[T], key: str, token: Optional[CancellationToken]) -> Optional[T]:
        ensure_token(token).raise_if_cancelled()

        pending = self._pending.get((model, key))
        if pending is not None:
            return pending

        return self.session.get(model, key)

    @staticmethod
    def _primary_key(entity: Base) -> Any:
        mapper = inspect(entity).mapper
        return getattr(entity, mapper.get_property_by_column(mapper.primary_key[0]).key)

    def add(self, entity: Base) -> None:
        """Stage a new entity for insertion on the next commit."""
        self.session.add(entity)
        self._pending[(type(entity), self._primary_key(entity))] = entity

    def pending_changes(self) -> int:
        """Number of rows the next commit would insert or update."""
        inserted = len(self.session.new)
        updated = sum(1 for entity in self.session.dirty if self.session.is_modified(entity))
        return inserted + updated

    async def commit(self, token: Optional[CancellationToken] = None) -> int:
        """
        Flush all staged changes in one transaction.

        Returns:
            Number of inserted plus actually modified rows
        """
        ensure_token(token).raise_if_cancelled()

        count = self.pending_changes()
        self.session.commit()
        self._pending.clear()
        return count

    def rollback(self) -> None:
        self.session.rollback()
        self._pending.clear()

    def ping(self) -> bool:
        """Run a trivial query to verify connectivity."""
        self.session.execute(select(1))
        return True

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
