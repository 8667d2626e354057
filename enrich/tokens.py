from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import closing
from typing import Any, Dict, Optional

from core.models import UNKNOWN_TOKEN, Token

logger = logging.getLogger(__name__)


class TokenStore:
    """
    Token symbol/decimals from a rotki global asset database.

    Only the evm_tokens and common_asset_details tables are read. Lookups
    never raise: a missing file, a missing row or a broken schema all resolve
    to UNK/18.
    """
    QUERY = """
        SELECT decimals, symbol
        FROM evm_tokens
        JOIN common_asset_details ON evm_tokens.identifier = common_asset_details.identifier
        WHERE lower(address) = lower(:address) AND chain = :chain
    """

    def __init__(self, db_path: str = "rotki_db.db", ttl_seconds: int = 300):
        self.db_path = db_path
        self.ttl = ttl_seconds
        self.cache: Dict[str, tuple[float, Any]] = {}

    def _cache_get(self, key: str) -> Optional[Any]:
        item = self.cache.get(key)
        if not item:
            return None
        ts, val = item
        if (time.time() - ts) > self.ttl:
            self.cache.pop(key, None)
            return None
        return val

    def _cache_set(self, key: str, val: Any) -> None:
        self.cache[key] = (time.time(), val)

    def _connect(self) -> sqlite3.Connection:
        # read-only so a missing file is an error instead of a new empty db
        return sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)

    def _query(self, chain_id: int, address: str) -> Optional[Token]:
        with closing(self._connect()) as conn:
            row = conn.execute(self.QUERY, {"address": address, "chain": chain_id}).fetchone()
        if row is None:
            return None
        decimals, symbol = row
        return Token(symbol=str(symbol), decimals=int(decimals if decimals is not None else 18))

    def available(self) -> bool:
        """True when the database opens and has the token tables."""
        try:
            with closing(self._connect()) as conn:
                conn.execute("SELECT 1 FROM evm_tokens JOIN common_asset_details LIMIT 1").fetchone()
        except sqlite3.Error as e:
            logger.debug(f"Token database {self.db_path} unavailable: {e}")
            return False
        return True

    def find(self, chain_id: Optional[int], address: str) -> Optional[Token]:
        """Token for (chain, contract) or None when it is not in the database."""
        if chain_id is None or not address:
            return None

        key = f"{chain_id}:{address.lower()}"
        cached = self._cache_get(key)
        if cached is not None:
            return cached or None

        try:
            token = self._query(chain_id, address)
        except (sqlite3.Error, ValueError, TypeError) as e:
            logger.debug(f"Token lookup failed for {address} on chain {chain_id}: {e}")
            return None

        # False marks a cached miss
        self._cache_set(key, token or False)
        return token

    def lookup(self, chain_id: Optional[int], address: str) -> Token:
        return self.find(chain_id, address) or UNKNOWN_TOKEN

    def is_known(self, chain_id: Optional[int], address: str) -> bool:
        return self.find(chain_id, address) is not None
