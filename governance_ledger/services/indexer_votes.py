"""
Indexer Vote Source: vote extrinsics from the Subscan transaction history.

The indexer corroborates chain votes and, more importantly, supplies the
extrinsic hash used for the audit link. Each account/network pair is queried
independently; HTTP failures and rate limits degrade to an empty result for
that pair only.
"""

import asyncio
import logging
from collections.abc import Collection, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from ..core.config import Settings, get_settings
from ..models import Chain, VoteDirection
from .chain_votes import AccountTarget, VoteKey, parse_referendum_index
from .vote_decoding import decode_vote_record, decode_vote_string


logger = logging.getLogger(__name__)

VOTE_CALL_MODULE = "convictionvoting"
VOTE_CALL_FUNCTION = "vote"
REFERENDUM_PARAM_NAMES = ("poll_index", "ref_index")


@dataclass(frozen=True)
class IndexerVote:
    """A vote extrinsic as reported by the indexer."""
    extrinsic_hash: str
    direction: VoteDirection | None


@dataclass
class IndexerBatch:
    """Raw extrinsics fetched for one account/network pair."""
    target: AccountTarget
    extrinsics: list[dict]


# =============================================================================
# EXTRINSIC PARSING
# =============================================================================


def is_vote_extrinsic(extrinsic: dict) -> bool:
    return (
        str(extrinsic.get("call_module", "")).lower() == VOTE_CALL_MODULE
        and str(extrinsic.get("call_module_function", "")).lower() == VOTE_CALL_FUNCTION
    )


def _params(extrinsic: dict) -> list[dict]:
    params = extrinsic.get("params")
    if not isinstance(params, list):
        return []
    return [p for p in params if isinstance(p, dict)]


def parse_referendum_id(extrinsic: dict) -> int | None:
    """Read the referendum id from `poll_index` (or legacy `ref_index`)."""
    for param in _params(extrinsic):
        if param.get("name") in REFERENDUM_PARAM_NAMES:
            referendum_index = parse_referendum_index(param.get("value"))
            if referendum_index is not None:
                return referendum_index
    return None


def parse_vote_direction(extrinsic: dict) -> VoteDirection | None:
    """Decode the `vote` parameter, falling back to string heuristics."""
    for param in _params(extrinsic):
        if param.get("name") != "vote":
            continue
        value = param.get("value")
        if isinstance(value, dict):
            direction = decode_vote_record(value)
            if direction is not None:
                return direction
        elif isinstance(value, str):
            return decode_vote_string(value)
    return None


def extract_votes(
    extrinsics: Sequence[dict],
    voted_ids: Collection[int],
) -> dict[int, IndexerVote]:
    """
    Map referendum id to the newest matching vote extrinsic.

    Extrinsics arrive newest first, so the first match for an id wins.
    Only ids in `voted_ids` are kept.
    """
    votes: dict[int, IndexerVote] = {}
    for extrinsic in extrinsics:
        if not isinstance(extrinsic, dict) or not is_vote_extrinsic(extrinsic):
            continue
        referendum_index = parse_referendum_id(extrinsic)
        if referendum_index is None or referendum_index not in voted_ids:
            continue
        if referendum_index in votes:
            continue

        extrinsic_hash = extrinsic.get("extrinsic_hash")
        if not extrinsic_hash:
            logger.debug(f"Vote extrinsic for referendum {referendum_index} has no hash, skipping")
            continue
        votes[referendum_index] = IndexerVote(
            extrinsic_hash=extrinsic_hash,
            direction=parse_vote_direction(extrinsic),
        )
    return votes


# =============================================================================
# INDEXER SOURCE
# =============================================================================


class IndexerVoteSource:
    """Queries the indexer's extrinsic history for each multisig account."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings or get_settings()
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._settings.indexer_enabled

    def _endpoint(self, chain: Chain) -> str:
        base = (
            self._settings.kusama_indexer_url
            if chain == Chain.KUSAMA
            else self._settings.polkadot_indexer_url
        )
        return f"{base.rstrip('/')}/api/scan/proxy/extrinsics"

    async def fetch_extrinsics(
        self,
        client: httpx.AsyncClient,
        target: AccountTarget,
    ) -> IndexerBatch:
        """Fetch the newest extrinsics for one account; empty on any failure."""
        context = f"account {target.account} on {target.chain.value} ({target.organization_name})"
        try:
            response = await client.post(
                self._endpoint(target.chain),
                json={
                    "account": target.account,
                    "row": self._settings.indexer_row_count,
                    "page": 0,
                    "order": "desc",
                },
                headers={
                    "Content-Type": "application/json",
                    "x-api-key": self._settings.subscan_api_key or "",
                },
                timeout=self._settings.indexer_timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                logger.warning(f"Indexer rate limit exceeded for {context}")
            else:
                logger.error(f"Indexer returned HTTP {e.response.status_code} for {context}")
            return IndexerBatch(target=target, extrinsics=[])
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching extrinsics from indexer for {context}: {e}")
            return IndexerBatch(target=target, extrinsics=[])

        data = payload.get("data") if isinstance(payload, dict) else None
        extrinsics = data.get("extrinsics") if isinstance(data, dict) else None
        if not isinstance(extrinsics, list):
            logger.warning(f"Invalid indexer response structure for {context}")
            return IndexerBatch(target=target, extrinsics=[])

        logger.debug(f"Fetched {len(extrinsics)} extrinsics for {context}")
        return IndexerBatch(target=target, extrinsics=extrinsics)

    async def fetch_all_extrinsics(self, targets: Sequence[AccountTarget]) -> list[IndexerBatch]:
        """Fetch every target concurrently. Returns nothing when no API key is set."""
        if not self.enabled:
            logger.warning("SUBSCAN_API_KEY is not set, skipping indexer lookups")
            return []
        if not targets:
            return []

        if self._client is not None:
            return list(await asyncio.gather(
                *(self.fetch_extrinsics(self._client, target) for target in targets)
            ))

        async with httpx.AsyncClient() as client:
            return list(await asyncio.gather(
                *(self.fetch_extrinsics(client, target) for target in targets)
            ))

    @staticmethod
    def match_votes(
        batches: Sequence[IndexerBatch],
        voted: Collection[VoteKey],
    ) -> dict[VoteKey, IndexerVote]:
        """Keep only extrinsics for referendums the chain reports as voted."""
        matched: dict[VoteKey, IndexerVote] = {}
        for batch in batches:
            target = batch.target
            voted_ids = {
                key.referendum_index
                for key in voted
                if key.organization_id == target.organization_id and key.chain == target.chain
            }
            if not voted_ids:
                continue
            for referendum_index, vote in extract_votes(batch.extrinsics, voted_ids).items():
                matched[VoteKey(target.organization_id, target.chain, referendum_index)] = vote

        logger.info(f"Completed extrinsic hash and vote mapping: {len(matched)} matched")
        return matched
