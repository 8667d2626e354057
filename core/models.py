from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ChainMode(str, Enum):
    BLOCKS = "Blocks"
    EVENTS = "Events"


class SpamFilterLevel(str, Enum):
    NONE = "None"
    KNOWN_ASSETS = "KnownAssets"
    SELF_SUBMITTED_TXS = "SelfSubmittedTxs"


class TransactionKind(str, Enum):
    SEND = "Send"
    TRANSFER = "Transfer"
    TRANSFER_1155 = "Transfer1155"
    APPROVAL = "Approval"
    OTHER = "Other"


# Higher wins when several signals share one transaction hash.
KIND_PRIORITY = {
    TransactionKind.SEND: 100,
    TransactionKind.TRANSFER: 50,
    TransactionKind.TRANSFER_1155: 49,
    TransactionKind.APPROVAL: 25,
    TransactionKind.OTHER: 0,
}


def kind_priority(kind: TransactionKind) -> int:
    return KIND_PRIORITY[kind]


def outranks(kind: TransactionKind, other: TransactionKind) -> bool:
    """True when `kind` should replace `other` for the same transaction."""
    return kind_priority(kind) > kind_priority(other)


@dataclass(frozen=True)
class Chain:
    """One configured network. Built once at startup."""
    name: str
    rpc: str
    blocktime: float                        # seconds between polls
    id: Optional[int] = None                # verified against eth_chainId on connect
    explorer: Optional[str] = None          # e.g. "https://etherscan.io"
    mode: ChainMode = ChainMode.BLOCKS
    spam_filter_level: SpamFilterLevel = SpamFilterLevel.KNOWN_ASSETS


@dataclass(frozen=True)
class InterestingTransaction:
    """A single signal that a watched account was touched by a transaction."""
    hash: str
    kind: TransactionKind
    involved_account: str                   # the watched address that matched
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[int] = None            # raw integer units
    contract: Optional[str] = None          # token contract, None for native


@dataclass(frozen=True)
class Notification:
    message: str
    url: Optional[str] = None


@dataclass(frozen=True)
class Token:
    symbol: str
    decimals: int


UNKNOWN_TOKEN = Token(symbol="UNK", decimals=18)


class WatchedAccount(BaseModel):
    address: str
    label: str
