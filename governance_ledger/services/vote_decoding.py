"""
Vote decoding shared by the chain and indexer sources.

Both sources report conviction votes in one of two shapes:

- Standard: {"aye": ..., "conviction": ..., "balance": ...}, where the
  aye flag may be nested as {"vote": {"aye": ...}, "balance": ...}
- Split: {"aye": <balance>, "nay": <balance>, "abstain": <balance>}

Either shape may arrive wrapped as {"Standard": {...}} / {"Split": {...}}
(chain, human-readable form) or lowercase {"standard": ...} (indexer).
Anything ambiguous is unresolved (None) rather than guessed.
"""

from typing import Any

from ..models import VoteDirection


AYE_VALUES = (True, "true", 1, "1")
NAY_VALUES = (False, "false", 0, "0")

_STANDARD_KEYS = ("Standard", "standard")
_SPLIT_KEYS = ("Split", "split", "SplitAbstain", "split_abstain")


def _unwrap(vote: dict, keys: tuple[str, ...]) -> dict | None:
    for key in keys:
        inner = vote.get(key)
        if isinstance(inner, dict):
            return inner
    return None


def _to_number(value: Any) -> float | None:
    """Parse balances, including human-readable strings like "1,000"."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def _is_one_of(value: Any, candidates: tuple) -> bool:
    # bool is an int subclass: compare types too so True never equals 1
    return any(type(value) is type(c) and value == c for c in candidates)


def decode_standard(vote: dict) -> VoteDirection | None:
    """Aye for {true, "true", 1}; Nay for {false, "false", 0}; otherwise None."""
    if "aye" in vote:
        aye = vote["aye"]
    else:
        nested = vote.get("vote")
        if not isinstance(nested, dict):
            return None
        aye = nested.get("aye")

    if _is_one_of(aye, AYE_VALUES):
        return VoteDirection.AYE
    if _is_one_of(aye, NAY_VALUES):
        return VoteDirection.NAY
    return None


def decode_split(vote: dict) -> VoteDirection | None:
    """Abstain only for a pure abstain split; partial splits are unresolved."""
    aye = _to_number(vote.get("aye", 0))
    nay = _to_number(vote.get("nay", 0))
    abstain = _to_number(vote.get("abstain", 0))

    if aye is None or nay is None or abstain is None:
        return None
    if abstain != 0 and aye == 0 and nay == 0:
        return VoteDirection.ABSTAIN
    return None


def decode_vote_record(vote: Any) -> VoteDirection | None:
    """Decode a vote record in either wrapped or bare form."""
    if not isinstance(vote, dict):
        return None

    standard = _unwrap(vote, _STANDARD_KEYS)
    if standard is not None:
        return decode_standard(standard)

    split = _unwrap(vote, _SPLIT_KEYS)
    if split is not None:
        return decode_split(split)

    # Bare records: the split shape is recognised by its abstain balance
    if "abstain" in vote or "nay" in vote:
        return decode_split(vote)
    if "aye" in vote or "vote" in vote:
        return decode_standard(vote)
    return None


def decode_vote_string(raw: str) -> VoteDirection | None:
    """Legacy heuristic for indexers that render the vote as a string."""
    lowered = raw.lower()
    if "aye" in lowered or "true" in lowered:
        return VoteDirection.AYE
    if "nay" in lowered or "false" in lowered:
        return VoteDirection.NAY
    if "abstain" in lowered or "split" in lowered:
        return VoteDirection.ABSTAIN
    return None
