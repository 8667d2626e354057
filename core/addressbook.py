from __future__ import annotations

import logging
import re
import threading
from typing import Dict, Iterable, List, Optional

import yaml

from core.models import WatchedAccount

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^(0x)?[0-9a-fA-F]{40}$")


def normalize_address(address: str) -> Optional[str]:
    """Lowercase 0x-prefixed form, or None when `address` is not 20 hex bytes."""
    a = (address or "").strip()
    if not _ADDRESS_RE.match(a):
        return None
    if not a.lower().startswith("0x"):
        a = "0x" + a
    return a.lower()


class Addressbook:
    """
    Watched address -> label, shared by every chain loop and the HTTP API.

    Every access takes the lock for a single dict operation. Readers that need
    a consistent view across many lookups should take a snapshot().
    """

    def __init__(self, entries: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self._entries: Dict[str, str] = {}
        for address, label in (entries or {}).items():
            self._entries[address.lower()] = label

    def watch(self, address: str, label: str) -> int:
        """Insert (or relabel) an address and return the number of watched accounts."""
        with self._lock:
            self._entries[address.lower()] = label
            return len(self._entries)

    def watch_all(self, accounts: Iterable[WatchedAccount]) -> int:
        count = len(self)
        for account in accounts:
            count = self.watch(account.address, account.label)
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._entries)


def load_accounts_file(path: str) -> List[WatchedAccount]:
    """
    Reads a YAML list of {address, label} mappings.

    Raises OSError / yaml.YAMLError / ValueError; the caller decides how fatal
    that is.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or []

    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a list of accounts")

    accounts: List[WatchedAccount] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError(f"{path}: invalid account entry {item!r}")
        account = WatchedAccount(**item)
        address = normalize_address(account.address)
        if address is None:
            raise ValueError(f"{path}: invalid account address {account.address!r}")
        accounts.append(WatchedAccount(address=address, label=account.label))

    logger.info(f"Loaded {len(accounts)} accounts from {path}")
    return accounts
