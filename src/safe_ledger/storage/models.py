"""SQLAlchemy models for persistent storage.

This module defines the database schema for organizations, tracked Safes,
synced transfers, and the category annotations admins attach to them.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from safe_ledger.chains import Chain
from safe_ledger.ingestor.models import TransferType

CHAIN_ENUM = Enum(Chain, name="chain")
TRANSFER_TYPE_ENUM = Enum(TransferType, name="transfer_type")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class OrganizationModel(Base):
    """SQLAlchemy model for organizations owning Safes and categories."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    slug: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )


class SafeModel(Base):
    """SQLAlchemy model for tracked Safes.

    Removal is a soft delete: re-adding the same (address, chain,
    organization) restores the existing row.
    """

    __tablename__ = "safes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(42), nullable=False)
    chain: Mapped[Chain] = mapped_column(CHAIN_ENUM, nullable=False)
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False
    )
    removed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        UniqueConstraint("address", "chain", "organization_id", name="uq_safe_per_org"),
        Index("idx_safes_organization", "organization_id"),
    )


class TransferModel(Base):
    """SQLAlchemy model for synced transfers.

    Rows are keyed by the service's transfer id and never updated.
    """

    __tablename__ = "transfers"

    transfer_id: Mapped[str] = mapped_column(Text, primary_key=True)
    safe_address: Mapped[str] = mapped_column(String(42), nullable=False)
    chain: Mapped[Chain] = mapped_column(CHAIN_ENUM, nullable=False)
    type: Mapped[TransferType] = mapped_column(TRANSFER_TYPE_ENUM, nullable=False)
    execution_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    block_number: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    from_address: Mapped[str] = mapped_column(String(42), nullable=False)
    to_address: Mapped[str] = mapped_column(String(42), nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    token_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_symbol: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_decimals: Mapped[int | None] = mapped_column(Integer, nullable=True)
    token_logo_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        Index("idx_transfers_safe_chain", "safe_address", "chain"),
        Index("idx_transfers_execution_date", "execution_date"),
    )


class CategoryModel(Base):
    """SQLAlchemy model for organization-scoped transfer categories."""

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_org_category_name"),
    )


class TransferCategoryModel(Base):
    """SQLAlchemy model mapping a transfer to its category and description."""

    __tablename__ = "transfer_categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    transfer_id: Mapped[str] = mapped_column(
        Text, ForeignKey("transfers.transfer_id"), nullable=False
    )
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_transfer_categories_transfer", "transfer_id", unique=True),)
