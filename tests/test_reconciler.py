"""
Tests for the Vote Reconciler.

These tests verify:
1. A pending vote found on-chain is settled: referendum status, audit link,
   voting decision and transaction are all updated
2. Resolution priority is chain > indexer > suggested vote
3. Passes are idempotent and never overlap
4. One referendum failing to update leaves the others settled
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from governance_ledger.core.config import Settings
from governance_ledger.core.pass_guard import PassGuard
from governance_ledger.models import (
    Chain,
    InternalStatus,
    PendingTransaction,
    Referendum,
    TransactionStatus,
    VoteDirection,
    VotingDecision,
)
from governance_ledger.services.chain_votes import ChainVoteSource
from governance_ledger.services.indexer_votes import IndexerVote, IndexerVoteSource
from governance_ledger.services.reconciler import (
    VoteEvidence,
    VoteReconciler,
    build_audit_link,
    resolve_vote,
)


# =============================================================================
# FIXTURES
# =============================================================================


class FakeChainClient:
    def __init__(self, votes):
        self.votes = votes

    def query(self, module, storage_function, params):
        _, track = params
        return {"Casting": {"votes": self.votes if track == 0 else []}}

    def close(self):
        pass


def standard(aye: bool):
    return {"Standard": {"vote": {"aye": aye, "conviction": "Locked1x"}, "balance": 100}}


def vote_extrinsic(referendum, extrinsic_hash, aye=True):
    return {
        "extrinsic_hash": extrinsic_hash,
        "call_module": "ConvictionVoting",
        "call_module_function": "vote",
        "params": [
            {"name": "poll_index", "value": referendum},
            {"name": "vote", "value": {"Standard": {"vote": {"aye": aye}}}},
        ],
    }


@pytest.fixture
def settings() -> Settings:
    return Settings(SUBSCAN_API_KEY="test-key")


@pytest.fixture
def guard() -> PassGuard:
    return PassGuard("test-reconciliation")


@pytest.fixture
def make_reconciler(session_factory, settings, guard):
    def factory(chain_votes, extrinsics=(), reconciler_class=VoteReconciler):
        def handler(request):
            return httpx.Response(200, json={"code": 0, "data": {"extrinsics": list(extrinsics)}})

        return reconciler_class(
            session_factory=session_factory,
            chain_source=ChainVoteSource(
                settings,
                client_factory=lambda chain: FakeChainClient(chain_votes),
                tracks=[0, 1],
            ),
            indexer_source=IndexerVoteSource(
                settings,
                client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            ),
            settings=settings,
            guard=guard,
        )
    return factory


async def load(session_factory, model, id_):
    async with session_factory() as session:
        return await session.get(model, id_)


async def load_decision(session_factory, referendum):
    async with session_factory() as session:
        return (await session.execute(
            select(VotingDecision).where(VotingDecision.referendum_id == referendum.id)
        )).scalar_one_or_none()


# =============================================================================
# TEST: END TO END
# =============================================================================


class TestReconciliationPass:
    async def test_settles_voted_referendum(self, seed, session_factory, make_reconciler):
        organization = await seed.organization()
        referendum = await seed.referendum(organization, post_id=42, status=InternalStatus.READY_TO_VOTE)
        transaction = await seed.pending(referendum, suggested_vote=VoteDirection.AYE)

        reconciler = make_reconciler([[42, standard(True)]], [vote_extrinsic(42, "0xabc")])
        result = await reconciler.run_pass()

        assert result.executed_count == 1
        assert result.failed_count == 0

        settled = await load(session_factory, Referendum, referendum.id)
        assert settled.internal_status == InternalStatus.VOTED_AYE
        assert settled.voted_link == "https://assethub-polkadot.subscan.io/extrinsic/0xabc"

        decision = await load_decision(session_factory, referendum)
        assert decision.final_vote == VoteDirection.AYE
        assert decision.vote_executed is True
        assert decision.vote_executed_date is not None
        assert decision.suggested_vote == VoteDirection.AYE

        row = await load(session_factory, PendingTransaction, transaction.id)
        assert row.status == TransactionStatus.EXECUTED
        assert row.extrinsic_hash == "0xabc"

    async def test_chain_vote_overrides_indexer_and_suggestion(
        self, seed, session_factory, make_reconciler
    ):
        organization = await seed.organization()
        referendum = await seed.referendum(organization, post_id=42)
        await seed.pending(referendum, suggested_vote=VoteDirection.AYE)

        reconciler = make_reconciler([[42, standard(False)]], [vote_extrinsic(42, "0xabc", aye=True)])
        await reconciler.run_pass()

        settled = await load(session_factory, Referendum, referendum.id)
        assert settled.internal_status == InternalStatus.VOTED_NAY
        assert (await load_decision(session_factory, referendum)).final_vote == VoteDirection.NAY

    async def test_not_yet_voted_stays_pending(self, seed, session_factory, make_reconciler):
        organization = await seed.organization()
        referendum = await seed.referendum(organization, post_id=44, status=InternalStatus.READY_TO_VOTE)
        transaction = await seed.pending(referendum)

        result = await make_reconciler([[42, standard(True)]]).run_pass()

        assert result.not_yet_voted_count == 1
        assert result.executed_count == 0
        assert (await load(session_factory, PendingTransaction, transaction.id)).status == TransactionStatus.PENDING
        assert (await load(session_factory, Referendum, referendum.id)).internal_status == InternalStatus.READY_TO_VOTE

    async def test_same_index_other_network_not_matched(self, seed, session_factory, make_reconciler):
        """A Polkadot vote on 42 does not settle Kusama referendum 42."""
        organization = await seed.organization(kusama_multisig=None)
        kusama = await seed.referendum(organization, post_id=42, chain=Chain.KUSAMA)
        transaction = await seed.pending(kusama)

        result = await make_reconciler([[42, standard(True)]]).run_pass()

        assert result.executed_count == 0
        assert (await load(session_factory, PendingTransaction, transaction.id)).status == TransactionStatus.PENDING

    async def test_without_indexer_key_no_link(self, seed, session_factory, make_reconciler, settings):
        settings.subscan_api_key = None
        organization = await seed.organization()
        referendum = await seed.referendum(organization, post_id=42)
        await seed.pending(referendum)

        result = await make_reconciler([[42, standard(True)]], [vote_extrinsic(42, "0xabc")]).run_pass()

        settled = await load(session_factory, Referendum, referendum.id)
        assert result.executed_count == 1
        assert settled.internal_status == InternalStatus.VOTED_AYE
        assert settled.voted_link is None

    async def test_stale_pending_marked_failed(self, seed, session_factory, make_reconciler):
        organization = await seed.organization()
        referendum = await seed.referendum(organization, post_id=42)
        transaction = await seed.pending(
            referendum, created_at=datetime.now(timezone.utc) - timedelta(days=8)
        )

        result = await make_reconciler([[42, standard(True)]]).run_pass()

        assert result.stale_marked_failed == 1
        assert result.pending_count == 0
        assert (await load(session_factory, PendingTransaction, transaction.id)).status == TransactionStatus.FAILED


# =============================================================================
# TEST: PASS GUARANTEES
# =============================================================================


class TestPassGuarantees:
    async def test_second_pass_is_noop(self, seed, session_factory, make_reconciler):
        organization = await seed.organization()
        referendum = await seed.referendum(organization, post_id=42)
        await seed.pending(referendum)
        reconciler = make_reconciler([[42, standard(True)]], [vote_extrinsic(42, "0xabc")])

        first = await reconciler.run_pass()
        second = await reconciler.run_pass()

        assert first.executed_count == 1
        assert second.pending_count == 0
        assert second.executed_count == 0

    async def test_overlapping_pass_skipped(self, make_reconciler, guard):
        assert guard.try_acquire()
        try:
            result = await make_reconciler([]).run_pass()
        finally:
            guard.release()

        assert result.skipped
        assert not guard.running

    async def test_failed_update_isolated(self, seed, session_factory, make_reconciler):
        class FlakyReconciler(VoteReconciler):
            async def _apply(self, item, resolved):
                if item.post_id == 43:
                    raise RuntimeError("database unavailable")
                await super()._apply(item, resolved)

        organization = await seed.organization()
        good = await seed.referendum(organization, post_id=42)
        bad = await seed.referendum(organization, post_id=43)
        await seed.pending(good)
        bad_transaction = await seed.pending(bad)

        reconciler = make_reconciler(
            [[42, standard(True)], [43, standard(True)]],
            reconciler_class=FlakyReconciler,
        )
        result = await reconciler.run_pass()

        assert result.executed_count == 1
        assert result.failed_count == 1
        assert "43" in result.errors[0]
        assert (await load(session_factory, Referendum, good.id)).internal_status == InternalStatus.VOTED_AYE
        assert (await load(session_factory, PendingTransaction, bad_transaction.id)).status == TransactionStatus.PENDING


# =============================================================================
# TEST: RESOLUTION
# =============================================================================


class TestResolveVote:
    def test_indexer_then_suggestion(self):
        resolved = resolve_vote(VoteEvidence(
            chain_vote=None,
            indexer_vote=IndexerVote("0xabc", VoteDirection.NAY),
            suggested_vote=VoteDirection.AYE,
        ))
        assert (resolved.direction, resolved.source, resolved.extrinsic_hash) == (
            VoteDirection.NAY, "indexer", "0xabc",
        )

        resolved = resolve_vote(VoteEvidence(None, IndexerVote("0xabc", None), VoteDirection.ABSTAIN))
        assert (resolved.direction, resolved.source) == (VoteDirection.ABSTAIN, "suggestion")

    def test_nothing_known(self):
        assert resolve_vote(VoteEvidence(None, None, None)) is None

    def test_audit_link_per_network(self, settings):
        assert build_audit_link("0x1", Chain.KUSAMA, settings) == "https://assethub-kusama.subscan.io/extrinsic/0x1"
        assert build_audit_link(None, Chain.POLKADOT, settings) is None
