"""Shared fixtures: in-memory database and seeded organizations."""

import os

# Must be set before governance_ledger.core builds its module-level engine
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from governance_ledger.core import build_engine, build_session_factory, init_db
from governance_ledger.models import (
    Chain,
    InternalStatus,
    Organization,
    OrganizationMember,
    PendingTransaction,
    Referendum,
    TransactionStatus,
    VoteDirection,
    VotingDecision,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Well-known development accounts (generic SS58 prefix 42)
ALICE = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
BOB = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"
CHARLIE = "5FLSigC9HGRKVhB9FiEo4Y3koPsNmBmLJbpXg2mp1hXcS59Y"
DAVE = "5DAAnrj7VHTznn2AWBemMuyBwZWs6FNFjdyVXUeYum3PTXFy"

ALICE_PUBLIC_KEY = "0xd43593c715fdd31c61141abd04a99fd6822c8558854ccde39a5684e7a56da27d"


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine() -> AsyncEngine:
    eng = build_engine(TEST_DATABASE_URL)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# SEED HELPERS
# =============================================================================


class Seeder:
    """Creates committed rows through short-lived sessions."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def add(self, *objects):
        async with self._session_factory() as session:
            session.add_all(objects)
            await session.commit()
        return objects[0] if len(objects) == 1 else objects

    async def organization(
        self,
        slug: str = "alpha",
        polkadot_multisig: str | None = DAVE,
        kusama_multisig: str | None = None,
        members: tuple[str, ...] = (ALICE, BOB, CHARLIE),
    ) -> Organization:
        organization = Organization(
            slug=slug,
            name=slug.title(),
            polkadot_multisig=polkadot_multisig,
            kusama_multisig=kusama_multisig,
        )
        await self.add(organization)
        for index, address in enumerate(members):
            await self.add(OrganizationMember(
                organization_id=organization.id,
                wallet_address=address,
                name=f"Member {index + 1}",
                network=Chain.POLKADOT,
            ))
        return organization

    async def referendum(
        self,
        organization: Organization,
        post_id: int = 42,
        chain: Chain = Chain.POLKADOT,
        status: InternalStatus = InternalStatus.NOT_STARTED,
        timeline: str | None = "Deciding",
    ) -> Referendum:
        return await self.add(Referendum(
            post_id=post_id,
            chain=chain,
            organization_id=organization.id,
            title=f"Referendum {post_id}",
            internal_status=status,
            referendum_timeline=timeline,
        ))

    async def pending(
        self,
        referendum: Referendum,
        suggested_vote: VoteDirection | None = None,
        created_at: datetime | None = None,
    ) -> PendingTransaction:
        if suggested_vote is not None:
            await self.add(VotingDecision(
                referendum_id=referendum.id,
                organization_id=referendum.organization_id,
                suggested_vote=suggested_vote,
            ))
        return await self.add(PendingTransaction(
            organization_id=referendum.organization_id,
            referendum_id=referendum.id,
            calldata="0x1403",
            timestamp=1_700_000_000_000,
            status=TransactionStatus.PENDING,
            created_at=created_at or datetime.now(timezone.utc),
        ))


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)
