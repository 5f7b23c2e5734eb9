"""
Tests for the Chain Vote Source.

These tests verify:
1. VotingFor results are decoded per track into referendum -> direction
2. A failing or slow account yields an empty map without affecting others
3. Organizations expand into per-network account targets
"""

import time
from uuid import uuid4

from conftest import BOB, DAVE

from governance_ledger.core.addresses import KUSAMA_SS58_FORMAT, POLKADOT_SS58_FORMAT, to_network_address
from governance_ledger.core.config import Settings
from governance_ledger.models import Chain, Organization, VoteDirection
from governance_ledger.services.chain_votes import (
    AccountTarget,
    ChainVoteSource,
    VoteKey,
    collect_accounts,
    parse_referendum_index,
)


# =============================================================================
# FAKES
# =============================================================================


class FakeChainClient:
    """Answers ConvictionVoting.VotingFor from a per-track table."""

    def __init__(self, votes_by_track=None, fail=False, delay=0.0):
        self.votes_by_track = votes_by_track or {}
        self.fail = fail
        self.delay = delay
        self.queries = []
        self.closed = False

    def query(self, module, storage_function, params):
        self.queries.append((module, storage_function, tuple(params)))
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ConnectionError("RPC unavailable")
        _, track = params
        return {"Casting": {"votes": self.votes_by_track.get(track, []), "prior": [0, 0]}}

    def close(self):
        self.closed = True


def aye(conviction="Locked1x"):
    return {"Standard": {"vote": {"aye": True, "conviction": conviction}, "balance": 100}}


def nay():
    return {"Standard": {"vote": {"aye": False, "conviction": "None"}, "balance": 100}}


def make_source(clients, tracks=(0, 1), **settings):
    return ChainVoteSource(
        settings=Settings(**settings),
        client_factory=lambda chain: clients[chain],
        tracks=list(tracks),
    )


# =============================================================================
# TEST: SINGLE ACCOUNT
# =============================================================================


class TestFetchVotes:
    async def test_decodes_votes_across_tracks(self):
        client = FakeChainClient({
            0: [[42, aye()]],
            1: [["1,234", nay()], [7, {"SplitAbstain": {"aye": 0, "nay": 0, "abstain": 5}}]],
        })
        source = make_source({Chain.POLKADOT: client})

        votes = await source.fetch_votes(DAVE, Chain.POLKADOT)

        assert votes == {42: VoteDirection.AYE, 1234: VoteDirection.NAY, 7: VoteDirection.ABSTAIN}
        polkadot_dave = to_network_address(DAVE, POLKADOT_SS58_FORMAT)
        assert client.queries == [
            ("ConvictionVoting", "VotingFor", (polkadot_dave, 0)),
            ("ConvictionVoting", "VotingFor", (polkadot_dave, 1)),
        ]
        assert client.closed

    async def test_compact_vote_byte(self):
        """0x80 is the aye flag; low bits are conviction."""
        client = FakeChainClient({0: [[5, {"Standard": {"vote": 0x81, "balance": 1}}],
                                      [6, {"Standard": {"vote": 0x01, "balance": 1}}]]})
        source = make_source({Chain.POLKADOT: client}, tracks=[0])

        assert await source.fetch_votes(DAVE, Chain.POLKADOT) == {
            5: VoteDirection.AYE,
            6: VoteDirection.NAY,
        }

    async def test_unresolved_records_skipped(self):
        client = FakeChainClient({0: [
            [8, {"Split": {"aye": 3, "nay": 1, "abstain": 0}}],
            ["not-a-number", aye()],
            [9, aye()],
        ]})
        source = make_source({Chain.POLKADOT: client}, tracks=[0])

        assert await source.fetch_votes(DAVE, Chain.POLKADOT) == {9: VoteDirection.AYE}

    async def test_delegating_account_has_no_votes(self):
        class DelegatingClient(FakeChainClient):
            def query(self, module, storage_function, params):
                return {"Delegating": {"target": BOB, "conviction": "Locked1x"}}

        source = make_source({Chain.POLKADOT: DelegatingClient()})
        assert await source.fetch_votes(DAVE, Chain.POLKADOT) == {}

    async def test_failure_returns_empty(self):
        client = FakeChainClient(fail=True)
        source = make_source({Chain.POLKADOT: client})

        assert await source.fetch_votes(DAVE, Chain.POLKADOT) == {}
        assert client.closed

    async def test_timeout_returns_empty_and_closes_client(self):
        """The slow query's client is closed without waiting for the query."""
        client = FakeChainClient({0: [[42, aye()]], 1: [[43, aye()]]}, delay=0.5)
        source = make_source({Chain.POLKADOT: client}, chain_query_timeout_seconds=0.05)

        assert await source.fetch_votes(DAVE, Chain.POLKADOT) == {}
        assert client.closed

    async def test_queries_use_network_address_format(self):
        client = FakeChainClient()
        source = make_source({Chain.KUSAMA: client}, tracks=[0])

        await source.fetch_votes(DAVE, Chain.KUSAMA)

        assert client.queries == [
            ("ConvictionVoting", "VotingFor", (to_network_address(DAVE, KUSAMA_SS58_FORMAT), 0)),
        ]


# =============================================================================
# TEST: ALL ACCOUNTS
# =============================================================================


class TestFetchAll:
    async def test_keys_by_organization_and_network(self):
        """The same referendum index on two networks never collides."""
        org_id = uuid4()
        source = make_source({
            Chain.POLKADOT: FakeChainClient({0: [[42, aye()]]}),
            Chain.KUSAMA: FakeChainClient({0: [[42, nay()]]}),
        }, tracks=[0])
        targets = [
            AccountTarget(org_id, "Alpha", Chain.POLKADOT, DAVE),
            AccountTarget(org_id, "Alpha", Chain.KUSAMA, DAVE),
        ]

        votes = await source.fetch_all(targets)

        assert votes == {
            VoteKey(org_id, Chain.POLKADOT, 42): VoteDirection.AYE,
            VoteKey(org_id, Chain.KUSAMA, 42): VoteDirection.NAY,
        }

    async def test_one_failing_pair_isolated(self):
        org_id = uuid4()
        source = make_source({
            Chain.POLKADOT: FakeChainClient({0: [[42, aye()]]}),
            Chain.KUSAMA: FakeChainClient(fail=True),
        }, tracks=[0])
        targets = [
            AccountTarget(org_id, "Alpha", Chain.POLKADOT, DAVE),
            AccountTarget(org_id, "Alpha", Chain.KUSAMA, DAVE),
        ]

        assert await source.fetch_all(targets) == {
            VoteKey(org_id, Chain.POLKADOT, 42): VoteDirection.AYE,
        }


class TestCollectAccounts:
    def test_expands_configured_networks(self):
        both = Organization(id=uuid4(), slug="a", name="A", polkadot_multisig=DAVE, kusama_multisig=BOB)
        polkadot_only = Organization(id=uuid4(), slug="b", name="B", polkadot_multisig=DAVE)
        unconfigured = Organization(id=uuid4(), slug="c", name="C")

        targets = collect_accounts([both, polkadot_only, unconfigured])

        assert [(t.organization_id, t.chain, t.account) for t in targets] == [
            (both.id, Chain.POLKADOT, DAVE),
            (both.id, Chain.KUSAMA, BOB),
            (polkadot_only.id, Chain.POLKADOT, DAVE),
        ]


def test_parse_referendum_index():
    assert parse_referendum_index(12) == 12
    assert parse_referendum_index("1,234") == 1234
    assert parse_referendum_index("abc") is None
    assert parse_referendum_index(True) is None
