"""Repository pattern implementations for data access.

This module provides data access abstractions for tracked Safes, synced
transfers, and transfer categories.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from safe_ledger.chains import Chain
from safe_ledger.errors import ConflictError, ValidationError, WriteError
from safe_ledger.identity import to_checksum_address
from safe_ledger.ingestor.models import NATIVE_DECIMALS, SafeTransfer, TransferType
from safe_ledger.storage.models import (
    CategoryModel,
    OrganizationModel,
    SafeModel,
    TransferCategoryModel,
    TransferModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass
class OrganizationDTO:
    """Data transfer object for organizations."""

    id: str
    name: str
    slug: str
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: OrganizationModel) -> OrganizationDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(id=model.id, name=model.name, slug=model.slug, created_at=model.created_at)


@dataclass
class SafeDTO:
    """Data transfer object for tracked Safes."""

    address: str
    chain: Chain
    organization_id: str
    removed: bool = False
    removed_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: SafeModel) -> SafeDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            address=model.address,
            chain=model.chain,
            organization_id=model.organization_id,
            removed=model.removed,
            removed_at=model.removed_at,
            created_at=model.created_at,
        )


@dataclass
class TransferDTO:
    """Data transfer object for stored transfers."""

    transfer_id: str
    safe_address: str
    chain: Chain
    type: TransferType
    execution_date: datetime
    block_number: int
    transaction_hash: str
    from_address: str
    to_address: str
    value: str | None
    token_address: str | None = None
    token_name: str | None = None
    token_symbol: str | None = None
    token_decimals: int | None = None
    token_logo_uri: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TransferModel) -> TransferDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            transfer_id=model.transfer_id,
            safe_address=model.safe_address,
            chain=model.chain,
            type=model.type,
            execution_date=model.execution_date,
            block_number=model.block_number,
            transaction_hash=model.transaction_hash,
            from_address=model.from_address,
            to_address=model.to_address,
            value=model.value,
            token_address=model.token_address,
            token_name=model.token_name,
            token_symbol=model.token_symbol,
            token_decimals=model.token_decimals,
            token_logo_uri=model.token_logo_uri,
            created_at=model.created_at,
        )

    @classmethod
    def from_transfer(cls, transfer: SafeTransfer) -> TransferDTO:
        """Flatten a fetched transfer into its stored shape."""
        token = transfer.token_info
        return cls(
            transfer_id=transfer.transfer_id,
            safe_address=transfer.safe_address,
            chain=transfer.chain,
            type=transfer.type,
            execution_date=transfer.execution_date,
            block_number=transfer.block_number,
            transaction_hash=transfer.transaction_hash,
            from_address=transfer.from_address,
            to_address=transfer.to_address,
            value=transfer.value,
            token_address=transfer.token_address,
            token_name=token.name if token else None,
            token_symbol=token.symbol if token else None,
            token_decimals=token.decimals if token else None,
            token_logo_uri=token.logo_uri if token else None,
        )

    @property
    def decimals(self) -> int:
        """Token decimals, defaulting to the native 18 when unset or zero."""
        return self.token_decimals or NATIVE_DECIMALS


@dataclass
class CategoryDTO:
    """Data transfer object for categories."""

    id: str
    name: str
    organization_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: CategoryModel) -> CategoryDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            name=model.name,
            organization_id=model.organization_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


@dataclass
class TransferCategoryDTO:
    """Data transfer object for a transfer's category annotation."""

    transfer_id: str
    category_id: str | None
    description: str | None

    @classmethod
    def from_model(cls, model: TransferCategoryModel) -> TransferCategoryDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            transfer_id=model.transfer_id,
            category_id=model.category_id,
            description=model.description,
        )


class OrganizationRepository:
    """Minimal organization access used to own Safes and categories."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, name: str, slug: str) -> OrganizationDTO:
        model = OrganizationModel(name=name, slug=slug)
        self.session.add(model)
        await self.session.flush()
        return OrganizationDTO.from_model(model)

    async def get(self, organization_id: str) -> OrganizationDTO | None:
        model = await self.session.get(OrganizationModel, organization_id)
        return OrganizationDTO.from_model(model) if model else None


class SafeRepository:
    """Repository for tracked Safes.

    Safes move between two states, active and removed. Every transition
    goes through ``add``, ``soft_delete``, ``restore`` or ``delete``.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    @staticmethod
    def _match(address: str, chain: Chain, organization_id: str) -> list:
        return [
            func.lower(SafeModel.address) == address.lower(),
            SafeModel.chain == chain,
            SafeModel.organization_id == organization_id,
        ]

    async def _get_model(
        self, address: str, chain: Chain, organization_id: str
    ) -> SafeModel | None:
        result = await self.session.execute(
            select(SafeModel).where(*self._match(address, chain, organization_id)).limit(1)
        )
        return result.scalar_one_or_none()

    async def get(self, address: str, chain: Chain, organization_id: str) -> SafeDTO | None:
        """Get a Safe by (address, chain, organization), removed or not."""
        model = await self._get_model(address, chain, organization_id)
        return SafeDTO.from_model(model) if model else None

    async def add(self, address: str, chain: Chain, organization_id: str) -> SafeDTO:
        """Start tracking a Safe, restoring it if it was soft-deleted.

        Args:
            address: Safe address in any casing.
            chain: Chain the Safe lives on.
            organization_id: Owning organization.

        Returns:
            The active SafeDTO.

        Raises:
            ValidationError: If the address is malformed.
            ConflictError: If the Safe is already actively tracked.
        """
        checksummed = to_checksum_address(address)
        existing = await self._get_model(checksummed, chain, organization_id)

        if existing is not None and not existing.removed:
            raise ConflictError(f"Safe '{address}' already exists for this organization")

        if existing is not None:
            existing.removed = False
            existing.removed_at = None
            await self.session.flush()
            logger.info("Restored safe %s on %s", checksummed, chain.value)
            return SafeDTO.from_model(existing)

        model = SafeModel(address=checksummed, chain=chain, organization_id=organization_id)
        self.session.add(model)
        await self.session.flush()
        logger.info("Added safe %s on %s", checksummed, chain.value)
        return SafeDTO.from_model(model)

    async def soft_delete(self, address: str, chain: Chain, organization_id: str) -> bool:
        """Mark a Safe as removed.

        Returns:
            True if updated, False if not found.
        """
        model = await self._get_model(address, chain, organization_id)
        if model is None:
            return False
        model.removed = True
        model.removed_at = datetime.now(UTC)
        await self.session.flush()
        logger.info("Removed safe %s on %s", model.address, chain.value)
        return True

    async def restore(self, address: str, chain: Chain, organization_id: str) -> bool:
        """Clear a Safe's removed flag.

        Returns:
            True if updated, False if not found.
        """
        model = await self._get_model(address, chain, organization_id)
        if model is None:
            return False
        model.removed = False
        model.removed_at = None
        await self.session.flush()
        return True

    async def delete(self, address: str, chain: Chain, organization_id: str) -> bool:
        """Hard delete a Safe. Admin-only; authorization is the caller's job.

        Returns:
            True if deleted, False if not found.
        """
        model = await self._get_model(address, chain, organization_id)
        if model is None:
            return False
        await self.session.delete(model)
        await self.session.flush()
        return True

    async def list_for_organization(
        self, organization_id: str, *, include_removed: bool = False
    ) -> list[SafeDTO]:
        """List an organization's Safes in creation order.

        Args:
            organization_id: Owning organization.
            include_removed: Include soft-deleted Safes.

        Returns:
            List of SafeDTOs.
        """
        stmt = select(SafeModel).where(SafeModel.organization_id == organization_id)
        if not include_removed:
            stmt = stmt.where(SafeModel.removed.is_(False))
        stmt = stmt.order_by(SafeModel.created_at.asc(), SafeModel.id.asc())
        result = await self.session.execute(stmt)
        return [SafeDTO.from_model(m) for m in result.scalars().all()]


class TransferRepository:
    """Repository for the transfer ledger.

    Inserts are idempotent on ``transfer_id``; rows are never updated.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def existing_ids(self, safe_address: str, chain: Chain) -> set[str]:
        """Get ids of transfers already stored for a Safe on a chain.

        Args:
            safe_address: Safe address in any casing.
            chain: Chain the Safe lives on.

        Returns:
            Set of stored transfer ids.
        """
        result = await self.session.execute(
            select(TransferModel.transfer_id).where(
                func.lower(TransferModel.safe_address) == safe_address.lower(),
                TransferModel.chain == chain,
            )
        )
        return set(result.scalars().all())

    async def insert_if_absent(self, transfer: SafeTransfer) -> bool:
        """Insert a transfer unless its id is already stored.

        A duplicate id is a silent no-op.

        Args:
            transfer: Fetched transfer.

        Returns:
            True if a row was inserted, False if it already existed.

        Raises:
            WriteError: If the insert fails for any other reason.
        """
        dto = TransferDTO.from_transfer(transfer)
        values = {
            "transfer_id": dto.transfer_id,
            "safe_address": dto.safe_address,
            "chain": dto.chain,
            "type": dto.type,
            "execution_date": dto.execution_date,
            "block_number": dto.block_number,
            "transaction_hash": dto.transaction_hash,
            "from_address": dto.from_address,
            "to_address": dto.to_address,
            "value": dto.value,
            "token_address": dto.token_address,
            "token_name": dto.token_name,
            "token_symbol": dto.token_symbol,
            "token_decimals": dto.token_decimals,
            "token_logo_uri": dto.token_logo_uri,
            "created_at": datetime.now(UTC),
        }

        # PostgreSQL in production, SQLite for testing
        dialect = self.session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(TransferModel).values(**values).on_conflict_do_nothing(
            index_elements=["transfer_id"]
        )

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Failed to write transfer %s: %s", dto.transfer_id, e)
            raise WriteError(
                f"Failed to write transfer {dto.transfer_id}: {e}", transfer_id=dto.transfer_id
            ) from e

        inserted = result.rowcount > 0
        if not inserted:
            logger.debug("Transfer %s already stored", dto.transfer_id)
        return inserted

    async def get(self, transfer_id: str) -> TransferDTO | None:
        """Get a transfer by id."""
        model = await self.session.get(TransferModel, transfer_id)
        return TransferDTO.from_model(model) if model else None

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(TransferModel))
        return int(result.scalar_one())

    async def list_transfers(
        self, safe_address: str | None = None, chain: Chain | None = None
    ) -> list[TransferDTO]:
        """List stored transfers, newest first.

        Args:
            safe_address: Only transfers where this address is sender or
                receiver.
            chain: Only transfers on this chain.

        Returns:
            List of TransferDTOs ordered by execution date descending.
        """
        stmt = select(TransferModel)
        if safe_address:
            address = safe_address.lower()
            stmt = stmt.where(
                or_(
                    func.lower(TransferModel.from_address) == address,
                    func.lower(TransferModel.to_address) == address,
                )
            )
        if chain is not None:
            stmt = stmt.where(TransferModel.chain == chain)
        stmt = stmt.order_by(TransferModel.execution_date.desc())
        result = await self.session.execute(stmt)
        return [TransferDTO.from_model(m) for m in result.scalars().all()]

    async def list_for_safes(self, safes: Iterable[SafeDTO]) -> list[TransferDTO]:
        """List transfers fetched for any of the given Safes, newest first."""
        conditions = [
            and_(
                func.lower(TransferModel.safe_address) == safe.address.lower(),
                TransferModel.chain == safe.chain,
            )
            for safe in safes
        ]
        if not conditions:
            return []
        result = await self.session.execute(
            select(TransferModel)
            .where(or_(*conditions))
            .order_by(TransferModel.execution_date.desc())
        )
        return [TransferDTO.from_model(m) for m in result.scalars().all()]


class CategoryRepository:
    """Repository for categories and the transfer annotations using them."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def _name_taken(
        self, organization_id: str, name: str, exclude_id: str | None = None
    ) -> bool:
        stmt = select(CategoryModel.id).where(
            CategoryModel.organization_id == organization_id,
            func.lower(CategoryModel.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(CategoryModel.id != exclude_id)
        result = await self.session.execute(stmt.limit(1))
        return result.scalar_one_or_none() is not None

    async def list_for_organization(self, organization_id: str) -> list[CategoryDTO]:
        result = await self.session.execute(
            select(CategoryModel)
            .where(CategoryModel.organization_id == organization_id)
            .order_by(CategoryModel.name.asc())
        )
        return [CategoryDTO.from_model(m) for m in result.scalars().all()]

    async def create(self, organization_id: str, name: str) -> CategoryDTO:
        """Create a category.

        Raises:
            ValidationError: If the name is blank.
            ConflictError: If the name exists in the organization, ignoring case.
        """
        name = name.strip()
        if not name:
            raise ValidationError("Category name is required")
        if await self._name_taken(organization_id, name):
            raise ConflictError(f"Category '{name}' already exists for this organization")

        model = CategoryModel(name=name, organization_id=organization_id)
        self.session.add(model)
        await self.session.flush()
        return CategoryDTO.from_model(model)

    async def rename(self, category_id: str, name: str) -> CategoryDTO | None:
        """Rename a category.

        Returns:
            Updated CategoryDTO, or None if the category does not exist.

        Raises:
            ValidationError: If the name is blank.
            ConflictError: If another category in the organization has the name.
        """
        name = name.strip()
        if not name:
            raise ValidationError("Category name is required")
        model = await self.session.get(CategoryModel, category_id)
        if model is None:
            return None
        if await self._name_taken(model.organization_id, name, exclude_id=category_id):
            raise ConflictError(f"Category '{name}' already exists for this organization")

        model.name = name
        model.updated_at = datetime.now(UTC)
        await self.session.flush()
        return CategoryDTO.from_model(model)

    async def delete(self, category_id: str) -> bool:
        """Delete an unused category.

        Returns:
            True if deleted, False if not found.

        Raises:
            ConflictError: If any transfer is annotated with the category.
        """
        in_use = await self.session.execute(
            select(TransferCategoryModel.id)
            .where(TransferCategoryModel.category_id == category_id)
            .limit(1)
        )
        if in_use.scalar_one_or_none() is not None:
            raise ConflictError("Cannot delete category that is associated with transfers")

        model = await self.session.get(CategoryModel, category_id)
        if model is None:
            return False
        await self.session.delete(model)
        await self.session.flush()
        return True

    async def set_transfer_category(
        self, transfer_id: str, category_id: str | None, description: str | None
    ) -> TransferCategoryDTO:
        """Replace a transfer's category annotation.

        Any previous mapping is deleted first so at most one row exists per
        transfer. A None category means "none".

        Args:
            transfer_id: Annotated transfer.
            category_id: Category to assign, or None.
            description: Free-text description, or None.

        Returns:
            The new TransferCategoryDTO.
        """
        await self.session.execute(
            delete(TransferCategoryModel).where(TransferCategoryModel.transfer_id == transfer_id)
        )
        model = TransferCategoryModel(
            transfer_id=transfer_id, category_id=category_id, description=description
        )
        self.session.add(model)
        await self.session.flush()
        return TransferCategoryDTO.from_model(model)

    async def list_transfer_categories(
        self, transfer_ids: Iterable[str] | None = None
    ) -> list[TransferCategoryDTO]:
        """List transfer annotations, optionally for specific transfers."""
        stmt = select(TransferCategoryModel)
        if transfer_ids is not None:
            stmt = stmt.where(TransferCategoryModel.transfer_id.in_(list(transfer_ids)))
        result = await self.session.execute(stmt)
        return [TransferCategoryDTO.from_model(m) for m in result.scalars().all()]
