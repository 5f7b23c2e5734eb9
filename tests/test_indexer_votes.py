"""
Tests for the Indexer Vote Source.

These tests verify:
1. Only convictionVoting.vote extrinsics for chain-voted referendums match
2. The newest extrinsic per referendum wins
3. HTTP errors, rate limits and a missing API key degrade to no results
"""

import json
from uuid import uuid4

import httpx

from conftest import DAVE

from governance_ledger.core.config import Settings
from governance_ledger.models import Chain, VoteDirection
from governance_ledger.services.chain_votes import AccountTarget, VoteKey
from governance_ledger.services.indexer_votes import (
    IndexerBatch,
    IndexerVote,
    IndexerVoteSource,
    extract_votes,
    is_vote_extrinsic,
    parse_referendum_id,
    parse_vote_direction,
)


# =============================================================================
# FIXTURES
# =============================================================================


def vote_extrinsic(referendum, extrinsic_hash, vote=None, param_name="poll_index", module="ConvictionVoting"):
    return {
        "extrinsic_hash": extrinsic_hash,
        "call_module": module,
        "call_module_function": "vote",
        "params": [
            {"name": param_name, "type": "compact<U32>", "value": referendum},
            {"name": "vote", "type": "AccountVote", "value": vote or {"Standard": {"vote": {"aye": True}}}},
        ],
    }


def indexer_response(extrinsics):
    return {"code": 0, "message": "Success", "data": {"count": len(extrinsics), "extrinsics": extrinsics}}


def make_source(handler, api_key="test-key"):
    settings = Settings(SUBSCAN_API_KEY=api_key)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IndexerVoteSource(settings=settings, client=client)


# =============================================================================
# TEST: PARSING
# =============================================================================


class TestParsing:
    def test_vote_extrinsic_match_is_case_insensitive(self):
        assert is_vote_extrinsic({"call_module": "convictionVoting", "call_module_function": "Vote"})
        assert not is_vote_extrinsic({"call_module": "Balances", "call_module_function": "transfer"})
        assert not is_vote_extrinsic({"call_module": "ConvictionVoting", "call_module_function": "delegate"})

    def test_legacy_ref_index(self):
        assert parse_referendum_id(vote_extrinsic(17, "0x1", param_name="ref_index")) == 17

    def test_missing_referendum_param(self):
        assert parse_referendum_id({"params": [{"name": "vote", "value": {}}]}) is None

    def test_string_vote_heuristic(self):
        extrinsic = {"params": [{"name": "vote", "value": "Standard(nay)"}]}
        assert parse_vote_direction(extrinsic) == VoteDirection.NAY

    def test_lowercase_standard_vote(self):
        extrinsic = vote_extrinsic(1, "0x1", vote={"standard": {"vote": {"aye": "false"}}})
        assert parse_vote_direction(extrinsic) == VoteDirection.NAY


class TestExtractVotes:
    def test_newest_first_wins(self):
        extrinsics = [
            vote_extrinsic(42, "0xnew"),
            vote_extrinsic(42, "0xold"),
        ]
        votes = extract_votes(extrinsics, {42})
        assert votes == {42: IndexerVote("0xnew", VoteDirection.AYE)}

    def test_filters_to_voted_ids(self):
        extrinsics = [vote_extrinsic(42, "0xa"), vote_extrinsic(43, "0xb")]
        assert set(extract_votes(extrinsics, {43})) == {43}

    def test_skips_non_votes_and_missing_hash(self):
        extrinsics = [
            vote_extrinsic(42, "0xa", module="Utility"),
            vote_extrinsic(42, ""),
            vote_extrinsic(42, "0xc"),
        ]
        assert extract_votes(extrinsics, {42})[42].extrinsic_hash == "0xc"


# =============================================================================
# TEST: HTTP
# =============================================================================


class TestFetch:
    async def test_request_shape(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=indexer_response([vote_extrinsic(42, "0xabc")]))

        source = make_source(handler)
        target = AccountTarget(uuid4(), "Alpha", Chain.KUSAMA, DAVE)

        batch = await source.fetch_extrinsics(source._client, target)

        assert len(batch.extrinsics) == 1
        request = requests[0]
        assert str(request.url) == "https://assethub-kusama.api.subscan.io/api/scan/proxy/extrinsics"
        assert request.headers["x-api-key"] == "test-key"
        assert json.loads(request.content) == {"account": DAVE, "row": 20, "page": 0, "order": "desc"}

    async def test_rate_limit_returns_empty(self):
        source = make_source(lambda request: httpx.Response(429, json={"message": "slow down"}))
        target = AccountTarget(uuid4(), "Alpha", Chain.POLKADOT, DAVE)

        batch = await source.fetch_extrinsics(source._client, target)
        assert batch.extrinsics == []

    async def test_invalid_structure_returns_empty(self):
        source = make_source(lambda request: httpx.Response(200, json={"code": 10004, "data": None}))
        target = AccountTarget(uuid4(), "Alpha", Chain.POLKADOT, DAVE)

        batch = await source.fetch_extrinsics(source._client, target)
        assert batch.extrinsics == []

    async def test_missing_api_key_skips_indexer(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=indexer_response([]))

        source = make_source(handler, api_key="")
        target = AccountTarget(uuid4(), "Alpha", Chain.POLKADOT, DAVE)

        assert await source.fetch_all_extrinsics([target]) == []
        assert calls == []

    async def test_one_failing_account_keeps_other_matches(self):
        """One account's failure leaves the other's matches intact."""
        org_id = uuid4()

        def handler(request: httpx.Request) -> httpx.Response:
            if "kusama" in request.url.host:
                return httpx.Response(500)
            return httpx.Response(200, json=indexer_response([vote_extrinsic(42, "0xabc")]))

        source = make_source(handler)
        targets = [
            AccountTarget(org_id, "Alpha", Chain.POLKADOT, DAVE),
            AccountTarget(org_id, "Alpha", Chain.KUSAMA, DAVE),
        ]
        voted = {VoteKey(org_id, Chain.POLKADOT, 42), VoteKey(org_id, Chain.KUSAMA, 42)}

        batches = await source.fetch_all_extrinsics(targets)
        votes = IndexerVoteSource.match_votes(batches, voted)

        assert votes == {
            VoteKey(org_id, Chain.POLKADOT, 42): IndexerVote("0xabc", VoteDirection.AYE),
        }


def test_match_votes_ignores_other_organizations():
    target = AccountTarget(uuid4(), "Alpha", Chain.POLKADOT, DAVE)
    batch = IndexerBatch(target=target, extrinsics=[vote_extrinsic(42, "0xabc")])

    assert IndexerVoteSource.match_votes([batch], {VoteKey(uuid4(), Chain.POLKADOT, 42)}) == {}
