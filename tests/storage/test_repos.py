"""Tests for storage repositories against SQLite."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from web3 import AsyncWeb3

from safe_ledger.chains import Chain
from safe_ledger.errors import ConflictError, ValidationError
from safe_ledger.ingestor.models import SafeTransfer, TokenInfo, TransferType
from safe_ledger.storage import (
    CategoryRepository,
    OrganizationRepository,
    SafeRepository,
    TransferDTO,
    TransferRepository,
    create_engine,
    create_session_factory,
    init_models,
    session_scope,
)
from safe_ledger.storage.models import TransferCategoryModel

SAFE_LOWER = "0x" + "ab" * 20
SAFE_CHECKSUM = AsyncWeb3.to_checksum_address(SAFE_LOWER)
OTHER_SAFE = "0x" + "2" * 40
COUNTERPARTY = "0x" + "9" * 40


def make_transfer(
    transfer_id: str,
    *,
    safe_address: str = OTHER_SAFE,
    chain: Chain = Chain.ETH,
    from_address: str = COUNTERPARTY,
    to_address: str = OTHER_SAFE,
    day: int = 1,
    token_info: TokenInfo | None = None,
) -> SafeTransfer:
    """Build a fetched transfer."""
    return SafeTransfer(
        transfer_id=transfer_id,
        safe_address=safe_address,
        chain=chain,
        type=TransferType.ERC20_TRANSFER if token_info else TransferType.ETHER_TRANSFER,
        execution_date=datetime(2025, 1, day, 12, 0, tzinfo=UTC),
        block_number=1000 + day,
        transaction_hash="0x" + "e" * 64,
        from_address=from_address,
        to_address=to_address,
        value="1000000000000000000",
        token_address=token_info.address if token_info else None,
        token_info=token_info,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Create a ledger in a temporary SQLite file."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_models(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def org_id(session_factory: async_sessionmaker[AsyncSession]) -> str:
    """Create an organization."""
    async with session_scope(session_factory) as session:
        org = await OrganizationRepository(session).create("Acme DAO", "acme")
    return org.id


class TestSessionScope:
    """Tests for session_scope."""

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test that nothing is committed when the block raises."""
        with pytest.raises(RuntimeError):
            async with session_scope(session_factory) as session:
                await TransferRepository(session).insert_if_absent(make_transfer("t1"))
                raise RuntimeError("boom")

        async with session_scope(session_factory) as session:
            assert await TransferRepository(session).count() == 0


class TestSafeRepository:
    """Tests for SafeRepository."""

    @pytest.mark.asyncio
    async def test_add_checksums_address(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that added Safes are stored in checksum form."""
        async with session_scope(session_factory) as session:
            safe = await SafeRepository(session).add(SAFE_LOWER, Chain.ETH, org_id)

        assert safe.address == SAFE_CHECKSUM
        assert safe.removed is False

    @pytest.mark.asyncio
    async def test_add_invalid_address_raises(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that malformed addresses are rejected."""
        async with session_scope(session_factory) as session:
            with pytest.raises(ValidationError):
                await SafeRepository(session).add("0x123", Chain.ETH, org_id)

    @pytest.mark.asyncio
    async def test_add_duplicate_raises(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that an active Safe cannot be added twice, in any casing."""
        async with session_scope(session_factory) as session:
            repo = SafeRepository(session)
            await repo.add(SAFE_CHECKSUM, Chain.ETH, org_id)
            with pytest.raises(ConflictError, match="already exists"):
                await repo.add(SAFE_LOWER, Chain.ETH, org_id)

    @pytest.mark.asyncio
    async def test_same_address_on_another_chain_is_allowed(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that (address, chain) pairs are distinct Safes."""
        async with session_scope(session_factory) as session:
            repo = SafeRepository(session)
            await repo.add(SAFE_LOWER, Chain.ETH, org_id)
            await repo.add(SAFE_LOWER, Chain.ARB, org_id)
            safes = await repo.list_for_organization(org_id)

        assert [s.chain for s in safes] == [Chain.ETH, Chain.ARB]

    @pytest.mark.asyncio
    async def test_soft_delete_hides_safe(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that removed Safes drop out of the active list."""
        async with session_scope(session_factory) as session:
            repo = SafeRepository(session)
            await repo.add(SAFE_LOWER, Chain.ETH, org_id)
            assert await repo.soft_delete(SAFE_LOWER, Chain.ETH, org_id) is True

            assert await repo.list_for_organization(org_id) == []
            removed = await repo.list_for_organization(org_id, include_removed=True)

        assert len(removed) == 1
        assert removed[0].removed is True
        assert removed[0].removed_at is not None

    @pytest.mark.asyncio
    async def test_add_restores_removed_safe(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that re-adding a removed Safe reuses its row."""
        async with session_scope(session_factory) as session:
            repo = SafeRepository(session)
            await repo.add(SAFE_LOWER, Chain.ETH, org_id)
            await repo.soft_delete(SAFE_LOWER, Chain.ETH, org_id)

        async with session_scope(session_factory) as session:
            repo = SafeRepository(session)
            restored = await repo.add(SAFE_LOWER, Chain.ETH, org_id)
            all_safes = await repo.list_for_organization(org_id, include_removed=True)

        assert restored.removed is False
        assert restored.removed_at is None
        assert len(all_safes) == 1

    @pytest.mark.asyncio
    async def test_restore_and_delete(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test explicit restore and hard delete."""
        async with session_scope(session_factory) as session:
            repo = SafeRepository(session)
            await repo.add(SAFE_LOWER, Chain.BASE, org_id)
            await repo.soft_delete(SAFE_LOWER, Chain.BASE, org_id)
            assert await repo.restore(SAFE_LOWER, Chain.BASE, org_id) is True
            assert len(await repo.list_for_organization(org_id)) == 1

            assert await repo.delete(SAFE_LOWER, Chain.BASE, org_id) is True
            assert await repo.get(SAFE_LOWER, Chain.BASE, org_id) is None
            assert await repo.delete(SAFE_LOWER, Chain.BASE, org_id) is False


class TestTransferRepository:
    """Tests for TransferRepository."""

    @pytest.mark.asyncio
    async def test_insert_is_idempotent(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test that a second insert of the same id is a no-op."""
        transfer = make_transfer("t1")

        async with session_scope(session_factory) as session:
            assert await TransferRepository(session).insert_if_absent(transfer) is True

        async with session_scope(session_factory) as session:
            repo = TransferRepository(session)
            assert await repo.insert_if_absent(transfer) is False
            assert await repo.count() == 1

    @pytest.mark.asyncio
    async def test_insert_flattens_token_info(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test that token metadata is stored in the token columns."""
        token = TokenInfo(
            name="USD Coin", symbol="USDC", decimals=6, trusted=True, address="0x" + "5" * 40
        )

        async with session_scope(session_factory) as session:
            repo = TransferRepository(session)
            await repo.insert_if_absent(make_transfer("t1", token_info=token))
            stored = await repo.get("t1")

        assert stored is not None
        assert stored.token_symbol == "USDC"
        assert stored.token_decimals == 6
        assert stored.decimals == 6
        assert stored.type is TransferType.ERC20_TRANSFER

    @pytest.mark.asyncio
    async def test_existing_ids_scoped_by_safe_and_chain(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test that existing_ids only returns the pair's transfers."""
        async with session_scope(session_factory) as session:
            repo = TransferRepository(session)
            await repo.insert_if_absent(make_transfer("eth-1", safe_address=SAFE_CHECKSUM))
            await repo.insert_if_absent(
                make_transfer("arb-1", safe_address=SAFE_CHECKSUM, chain=Chain.ARB)
            )
            await repo.insert_if_absent(make_transfer("other", safe_address=COUNTERPARTY))

            ids = await repo.existing_ids(SAFE_LOWER, Chain.ETH)

        assert ids == {"eth-1"}

    @pytest.mark.asyncio
    async def test_list_transfers_filters_and_orders(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test address/chain filters and newest-first order."""
        async with session_scope(session_factory) as session:
            repo = TransferRepository(session)
            await repo.insert_if_absent(make_transfer("old", day=1))
            await repo.insert_if_absent(make_transfer("new", day=9))
            await repo.insert_if_absent(
                make_transfer("out", day=5, from_address=OTHER_SAFE, to_address=COUNTERPARTY)
            )
            await repo.insert_if_absent(make_transfer("arb", chain=Chain.ARB, day=3))

            eth = await repo.list_transfers(OTHER_SAFE, Chain.ETH)
            everything = await repo.list_transfers()

        assert [t.transfer_id for t in eth] == ["new", "out", "old"]
        assert len(everything) == 4

    @pytest.mark.asyncio
    async def test_list_for_safes(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test listing transfers fetched for a set of Safes."""
        async with session_scope(session_factory) as session:
            safe = await SafeRepository(session).add(OTHER_SAFE, Chain.ETH, org_id)
            repo = TransferRepository(session)
            await repo.insert_if_absent(make_transfer("mine"))
            await repo.insert_if_absent(make_transfer("theirs", safe_address=COUNTERPARTY))

            listed = await repo.list_for_safes([safe])
            assert await repo.list_for_safes([]) == []

        assert [t.transfer_id for t in listed] == ["mine"]
        assert isinstance(listed[0], TransferDTO)


class TestCategoryRepository:
    """Tests for CategoryRepository."""

    @pytest.mark.asyncio
    async def test_create_and_list(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test creating categories, trimmed and sorted by name."""
        async with session_scope(session_factory) as session:
            repo = CategoryRepository(session)
            await repo.create(org_id, "  Payroll ")
            await repo.create(org_id, "Grants")
            categories = await repo.list_for_organization(org_id)

        assert [c.name for c in categories] == ["Grants", "Payroll"]

    @pytest.mark.asyncio
    async def test_duplicate_name_is_case_insensitive(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that names are unique per organization ignoring case."""
        async with session_scope(session_factory) as session:
            repo = CategoryRepository(session)
            await repo.create(org_id, "Payroll")
            with pytest.raises(ConflictError):
                await repo.create(org_id, "PAYROLL")

    @pytest.mark.asyncio
    async def test_blank_name_raises(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that blank names are rejected."""
        async with session_scope(session_factory) as session:
            with pytest.raises(ValidationError):
                await CategoryRepository(session).create(org_id, "   ")

    @pytest.mark.asyncio
    async def test_rename(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test renaming, including a case-only change of the same category."""
        async with session_scope(session_factory) as session:
            repo = CategoryRepository(session)
            payroll = await repo.create(org_id, "Payroll")
            await repo.create(org_id, "Grants")

            renamed = await repo.rename(payroll.id, "PAYROLL")
            assert renamed is not None
            assert renamed.name == "PAYROLL"

            with pytest.raises(ConflictError):
                await repo.rename(payroll.id, "grants")
            assert await repo.rename("missing", "Ops") is None

    @pytest.mark.asyncio
    async def test_delete_blocked_while_referenced(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that a category in use cannot be deleted."""
        async with session_scope(session_factory) as session:
            await TransferRepository(session).insert_if_absent(make_transfer("t1"))
            repo = CategoryRepository(session)
            category = await repo.create(org_id, "Payroll")
            unused = await repo.create(org_id, "Unused")
            await repo.set_transfer_category("t1", category.id, "January salaries")

            with pytest.raises(ConflictError, match="associated with transfers"):
                await repo.delete(category.id)
            assert await repo.delete(unused.id) is True
            assert await repo.delete(unused.id) is False

    @pytest.mark.asyncio
    async def test_set_transfer_category_replaces(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that at most one mapping exists per transfer."""
        async with session_scope(session_factory) as session:
            await TransferRepository(session).insert_if_absent(make_transfer("t1"))
            repo = CategoryRepository(session)
            category = await repo.create(org_id, "Payroll")

            await repo.set_transfer_category("t1", category.id, "first")
            await repo.set_transfer_category("t1", None, "second")
            mappings = await repo.list_transfer_categories(["t1"])

        assert len(mappings) == 1
        assert mappings[0].category_id is None
        assert mappings[0].description == "second"

    @pytest.mark.asyncio
    async def test_second_mapping_row_rejected(
        self, session_factory: async_sessionmaker[AsyncSession], org_id: str
    ) -> None:
        """Test that the schema refuses two mappings for one transfer."""
        async with session_scope(session_factory) as session:
            await TransferRepository(session).insert_if_absent(make_transfer("t1"))
            await CategoryRepository(session).set_transfer_category("t1", None, "first")

        with pytest.raises(IntegrityError):
            async with session_scope(session_factory) as session:
                session.add(TransferCategoryModel(transfer_id="t1", description="second"))
                await session.flush()
