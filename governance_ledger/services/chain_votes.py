"""
Chain Vote Source: live conviction-voting state for multisig accounts.

For every governance track the account's `ConvictionVoting.VotingFor`
record is read; its `Casting.votes` list pairs referendum indexes with vote
records, which are decoded with the shared Standard/Split rules.

A failure for one account/network pair yields an empty map for that pair
and never affects the others.
"""

import asyncio
import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, NamedTuple, Protocol
from uuid import UUID

from substrateinterface import SubstrateInterface

from ..core.addresses import KUSAMA_SS58_FORMAT, POLKADOT_SS58_FORMAT, to_network_address
from ..core.config import Settings, get_settings
from ..models import Chain, Organization, VoteDirection
from .vote_decoding import decode_vote_record


logger = logging.getLogger(__name__)

SS58_FORMATS = {Chain.POLKADOT: POLKADOT_SS58_FORMAT, Chain.KUSAMA: KUSAMA_SS58_FORMAT}


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


class VoteKey(NamedTuple):
    """Identifies one organization's vote on one chain's referendum."""
    organization_id: UUID
    chain: Chain
    referendum_index: int


@dataclass(frozen=True)
class AccountTarget:
    """A multisig account to query on one network."""
    organization_id: UUID
    organization_name: str
    chain: Chain
    account: str


def collect_accounts(organizations: Iterable[Organization]) -> list[AccountTarget]:
    """
    Expand organizations into (account, network) query targets.

    Organizations without a multisig on a network are skipped for that
    network; an organization with none at all is logged as misconfigured.
    """
    targets = []
    for organization in organizations:
        found = False
        for chain in (Chain.POLKADOT, Chain.KUSAMA):
            account = organization.multisig_for(chain)
            if not account:
                logger.debug(f"Organization {organization.name} has no {chain.value} multisig")
                continue
            found = True
            targets.append(AccountTarget(
                organization_id=organization.id,
                organization_name=organization.name,
                chain=chain,
                account=account,
            ))
        if not found:
            logger.warning(
                f"Organization {organization.name} ({organization.id}) has no multisig "
                "configured, skipping it for this pass"
            )
    return targets


# =============================================================================
# CHAIN CLIENT
# =============================================================================


class ChainClient(Protocol):
    def query(self, module: str, storage_function: str, params: list) -> Any: ...

    def close(self) -> None: ...


ChainClientFactory = Callable[[Chain], ChainClient]


def parse_referendum_index(raw: Any) -> int | None:
    """Referendum indexes may arrive human-formatted, e.g. "1,234"."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).replace(",", "").strip())
    except ValueError:
        return None


def _normalize_standard_vote(record: Any) -> Any:
    """
    Expand a compact Standard vote byte into {"aye", "conviction"}.

    Some decoders expose the vote as the raw byte: the high bit is the aye
    flag and the low bits the conviction.
    """
    if not isinstance(record, dict):
        return record
    standard = record.get("Standard")
    if not isinstance(standard, dict):
        return record
    vote = standard.get("vote")
    if isinstance(vote, int) and not isinstance(vote, bool):
        return {"Standard": {
            **standard,
            "vote": {"aye": bool(vote & 0x80), "conviction": vote & 0x7F},
        }}
    return record


class ChainVoteSource:
    """Reads the votes a multisig account currently has cast on-chain."""

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: ChainClientFactory | None = None,
        tracks: Sequence[int] | None = None,
    ):
        self._settings = settings or get_settings()
        self._client_factory = client_factory or self._default_client
        self._tracks = list(tracks if tracks is not None else self._settings.governance_tracks)

    def _default_client(self, chain: Chain) -> ChainClient:
        url = (
            self._settings.kusama_rpc_url
            if chain == Chain.KUSAMA
            else self._settings.polkadot_rpc_url
        )
        # Socket timeout bounds every connect and recv, not just the whole query
        return SubstrateInterface(
            url=url,
            ss58_format=SS58_FORMATS[chain],
            ws_options={"timeout": self._settings.chain_query_timeout_seconds},
        )

    # =========================================================================
    # SINGLE ACCOUNT
    # =========================================================================

    async def fetch_votes(self, account: str, chain: Chain) -> dict[int, VoteDirection]:
        """
        Fetch resolved votes for one account on one network.

        Returns an empty map on any failure (logged with account/network).
        On timeout the client is closed from here so the worker thread's
        blocking read fails instead of holding the socket open.
        """
        cancelled = threading.Event()
        clients: list[ChainClient] = []
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._fetch_votes_blocking, account, chain, cancelled, clients),
                timeout=self._settings.chain_query_timeout_seconds,
            )
        except asyncio.TimeoutError:
            cancelled.set()
            logger.error(
                f"Timed out after {self._settings.chain_query_timeout_seconds}s fetching "
                f"votes for account {account} on {chain.value}"
            )
            for client in clients:
                await asyncio.to_thread(self._close_client, client, chain)
        except Exception as e:
            logger.error(f"Error fetching votes for account {account} on {chain.value}: {e}")
        return {}

    @staticmethod
    def _close_client(client: ChainClient, chain: Chain) -> None:
        try:
            client.close()
        except Exception as e:
            logger.warning(f"Error closing {chain.value} chain client: {e}")

    def _fetch_votes_blocking(
        self,
        account: str,
        chain: Chain,
        cancelled: threading.Event,
        clients: list[ChainClient],
    ) -> dict[int, VoteDirection]:
        address = to_network_address(account, SS58_FORMATS[chain])
        logger.info(f"Fetching votes for account {address} on {chain.value}")
        client = self._client_factory(chain)
        clients.append(client)
        vote_map: dict[int, VoteDirection] = {}
        try:
            for track_id in self._tracks:
                if cancelled.is_set():
                    logger.debug(f"Vote fetch for {address} on {chain.value} cancelled")
                    return {}
                result = client.query("ConvictionVoting", "VotingFor", [address, track_id])
                for raw_index, record in self._casting_votes(result):
                    referendum_index = parse_referendum_index(raw_index)
                    if referendum_index is None:
                        logger.debug(f"Skipping invalid referendum id {raw_index!r} on {chain.value}")
                        continue

                    direction = decode_vote_record(_normalize_standard_vote(record))
                    if direction is None:
                        logger.debug(
                            f"Unresolved vote record for referendum {referendum_index} "
                            f"on {chain.value}: {record!r}"
                        )
                        continue
                    vote_map[referendum_index] = direction
        finally:
            self._close_client(client, chain)

        logger.info(
            f"Completed fetching votes for account {address} on {chain.value}: "
            f"{len(vote_map)} resolved ({sorted(vote_map)})"
        )
        return vote_map

    @staticmethod
    def _casting_votes(result: Any) -> list:
        """Pull the (referendum, vote) pairs out of a VotingFor result."""
        value = getattr(result, "value", result)
        if not isinstance(value, dict):
            return []
        casting = value.get("Casting") or value.get("casting")
        if not isinstance(casting, dict):
            # Delegating accounts have no direct votes
            return []
        votes = casting.get("votes") or []
        return [tuple(pair) for pair in votes if isinstance(pair, (list, tuple)) and len(pair) == 2]

    # =========================================================================
    # ALL ORGANIZATIONS
    # =========================================================================

    async def fetch_all(self, targets: Sequence[AccountTarget]) -> dict[VoteKey, VoteDirection]:
        """Query every target concurrently and combine into one map."""
        results = await asyncio.gather(
            *(self.fetch_votes(target.account, target.chain) for target in targets)
        )

        combined: dict[VoteKey, VoteDirection] = {}
        for target, votes in zip(targets, results):
            for referendum_index, direction in votes.items():
                combined[VoteKey(target.organization_id, target.chain, referendum_index)] = direction

        logger.info(
            f"Total voted referendums found across {len(targets)} account(s): {len(combined)}"
        )
        return combined
