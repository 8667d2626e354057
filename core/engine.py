from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional

from core.addressbook import Addressbook
from core.filters import is_spam, resolve_priority
from core.models import Chain, InterestingTransaction, Notification, TransactionKind
from enrich.tokens import TokenStore
from links import explorer_tx_link

logger = logging.getLogger(__name__)

NULL_ADDRESS = "0x0000000000000000000000000000000000000000"
WELL_KNOWN_NAMES = {
    NULL_ADDRESS: "NULL",
    "0x4822521e6135cd2599199c83ea35179229a172ee": "Gnosis Pay Spender",
}

MAX_UINT256 = 2 ** 256 - 1
NATIVE_DECIMALS = 18


def address_name(names: Mapping[str, str], address: Optional[str]) -> str:
    if not address:
        return "Unknown"
    a = address.lower()
    if a in names:
        return names[a]
    return WELL_KNOWN_NAMES.get(a, a)


def scale_amount(amount: int, decimals: int) -> str:
    """amount / 10**decimals as a plain decimal string, trailing zeros trimmed."""
    if decimals <= 0:
        return str(amount)
    whole, frac = divmod(amount, 10 ** decimals)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    if not frac_str:
        return str(whole)
    return f"{whole}.{frac_str}"


class NotificationEngine:
    """
    Turns one cycle's candidates into notifications for a single chain:
    spam filter, then one candidate per hash, then message formatting.
    """

    def __init__(self, chain: Chain, addressbook: Addressbook, tokens: TokenStore):
        self.chain = chain
        self.addressbook = addressbook
        self.tokens = tokens

        self.summary = {
            "candidates": 0,
            "spam": 0,
            "notifications": 0,
        }

    def _is_known_asset(self, contract: str) -> bool:
        return self.tokens.is_known(self.chain.id, contract)

    def build_notifications(self, candidates: List[InterestingTransaction]) -> List[Notification]:
        self.summary["candidates"] += len(candidates)

        kept = []
        for tx in candidates:
            if is_spam(tx, self.chain.spam_filter_level, self._is_known_asset):
                logger.info(f"Spam tx {tx.hash} on {self.chain.name}")
                self.summary["spam"] += 1
                continue
            kept.append(tx)

        resolved = resolve_priority(kept)
        if not resolved:
            return []

        names = self.addressbook.snapshot()
        notifications = [self.build_notification(tx, names) for tx in resolved]
        self.summary["notifications"] += len(notifications)
        return notifications

    def build_notification(self, tx: InterestingTransaction, names: Optional[Dict[str, str]] = None) -> Notification:
        if names is None:
            names = self.addressbook.snapshot()
        logger.debug(f"Interesting tx: {tx.hash}")

        return Notification(
            message=self._format_message(tx, names),
            url=explorer_tx_link(self.chain.explorer, tx.hash),
        )

    def _format_message(self, tx: InterestingTransaction, names: Mapping[str, str]) -> str:
        chain = self.chain.name
        sender = address_name(names, tx.from_address)
        recipient = address_name(names, tx.to_address)

        if tx.kind == TransactionKind.SEND:
            if tx.amount is None:
                return f"Sending native from {sender} to {recipient} on {chain}"
            amount = scale_amount(tx.amount, NATIVE_DECIMALS)
            return f"Sending {amount} native from {sender} to {recipient} on {chain}"

        if tx.kind == TransactionKind.TRANSFER:
            token = self.tokens.lookup(self.chain.id, tx.contract or "")
            amount = scale_amount(tx.amount or 0, token.decimals)
            return f"Transfering {amount} {token.symbol} from {sender} to {recipient} on {chain}"

        if tx.kind == TransactionKind.TRANSFER_1155:
            token = self.tokens.lookup(self.chain.id, tx.contract or "")
            return f"Transfering ERC1155 {token.symbol} from {sender} to {recipient} on {chain}"

        if tx.kind == TransactionKind.APPROVAL:
            token = self.tokens.lookup(self.chain.id, tx.contract or "")
            if tx.amount == MAX_UINT256:
                amount = "Infinite"
            else:
                amount = scale_amount(tx.amount or 0, token.decimals)
            return f"Approving {recipient} to spend {amount} {token.symbol} from {sender} on {chain}"

        involved = address_name(names, tx.involved_account)
        return f"Unknown operation involving {involved} on {chain}"
