"""
Local relational model for imported directory records.

Both tables are keyed by the remote natural key, so an import run can match
remote records against existing rows without any id mapping table.
"""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

ROOT_ORG_UNIT_PATH = '/'


class Base(DeclarativeBase):
    pass


class OrganizationUnit(Base):
    __tablename__ = 'organization_units'

    path: Mapped[str] = mapped_column(String(1024), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    # Implicit tree; the parent is not enforced as a foreign key.
    parent_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True, index=True)

    def __repr__(self):
        return f"<OrganizationUnit {self.path} ({self.name})>"


class User(Base):
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(256), nullable=True, index=True)
    given_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    family_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    picture_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    organization_unit_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True, index=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    def __repr__(self):
        return f"<User {self.id} ({self.email})>"
