from __future__ import annotations

from typing import Callable, Dict, List, Optional

from core.models import InterestingTransaction, SpamFilterLevel, TransactionKind, outranks

# Kinds that are only trusted when the watched account authored them.
_ASSET_KINDS = {
    TransactionKind.TRANSFER,
    TransactionKind.TRANSFER_1155,
    TransactionKind.APPROVAL,
}


def is_spam(
    tx: InterestingTransaction,
    level: SpamFilterLevel,
    is_known_asset: Optional[Callable[[str], bool]] = None,
) -> bool:
    """
    Asset events (transfers, approvals) only pass when the watched account is
    the source and, for KnownAssets, the contract is a recognised token.
    Sends and Other never count as spam.
    """
    if level == SpamFilterLevel.NONE:
        return False
    if tx.kind not in _ASSET_KINDS:
        return False

    self_submitted = tx.involved_account == tx.from_address

    if level == SpamFilterLevel.SELF_SUBMITTED_TXS:
        return not self_submitted

    known = bool(tx.contract) and is_known_asset is not None and is_known_asset(tx.contract)
    return not known or not self_submitted


def resolve_priority(candidates: List[InterestingTransaction]) -> List[InterestingTransaction]:
    """One candidate per transaction hash: highest priority kind, first seen on ties."""
    best: Dict[str, InterestingTransaction] = {}
    for tx in candidates:
        current = best.get(tx.hash)
        if current is None or outranks(tx.kind, current.kind):
            best[tx.hash] = tx
    # dicts keep first insertion order even when a value is replaced
    return list(best.values())
