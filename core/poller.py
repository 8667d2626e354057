"""
Per-chain polling loop.

Each configured chain gets one ChainPoller running as its own asyncio task.
Blocking RPC, sqlite and push calls go through asyncio.to_thread so a slow
provider on one chain never stalls the others.

Cycle:  fetch head -> process new range -> sleep rest of blocktime
        head/log fetch error -> retry (with a blocktime pause once the
        consecutive failure count exceeds START_BACKOFF_RETRY_COUNT)

Processing is at-least-once. A block only counts as done once its receipts
were fetched and its notifications handed to the transport; a receipts error
leaves the pointer on that block for the next cycle. No idempotency key goes
out with a push, so any reprocessing shows up as a duplicate notification.
Nothing is persisted; a restart resumes from the live head.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from chains.evm_logs import parse_logs, process_block
from core.addressbook import Addressbook
from core.config import ChainIdMismatch
from core.engine import NotificationEngine
from core.metrics import Metrics
from core.models import Chain, ChainMode, InterestingTransaction
from core.ntfy_client import NotificationError, NtfyClient
from core.rpc_client import JsonRpcClient, ReceiptFetcher, RpcError, receipt_fetcher_for
from enrich.tokens import TokenStore

logger = logging.getLogger(__name__)

MAX_BLOCK_RANGE = 100
START_BACKOFF_RETRY_COUNT = 3


class ChainPoller:
    def __init__(
        self,
        chain: Chain,
        client: JsonRpcClient,
        addressbook: Addressbook,
        notifier: NtfyClient,
        tokens: TokenStore,
        metrics: Optional[Metrics] = None,
        receipts: Optional[ReceiptFetcher] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.chain = chain
        self.client = client
        self.addressbook = addressbook
        self.notifier = notifier
        self.metrics = metrics
        self.receipts = receipts or receipt_fetcher_for(chain.rpc)
        self.engine = NotificationEngine(chain, addressbook, tokens)

        self._sleep = sleep
        self._clock = clock

        self.next_block_number: Optional[int] = None
        self.retry_count = 0

    # =========================================================================
    # Startup
    # =========================================================================

    async def connect(self) -> Chain:
        """Check the endpoint serves the configured chain; adopt its id if none was set."""
        while True:
            try:
                live_id = await asyncio.to_thread(self.client.chain_id)
                break
            except RpcError as e:
                await self._on_rpc_failure("chain id", e)

        if self.chain.id is None:
            self.chain = replace(self.chain, id=live_id)
            self.engine.chain = self.chain
        elif live_id != self.chain.id:
            raise ChainIdMismatch(
                f"Configured for {self.chain.name} ({self.chain.id}) but connected to {live_id}"
            )

        self.retry_count = 0
        return self.chain

    async def start(self) -> None:
        await self.connect()

        while self.next_block_number is None:
            self.next_block_number = await self._fetch_head()
        self.retry_count = 0

        logger.info(f"Starting Account Watcher for {self.chain.name} in {self.chain.mode.value} mode")

    async def run(self) -> None:
        await self.start()
        while True:
            await self.run_cycle()

    # =========================================================================
    # Cycles
    # =========================================================================

    async def run_cycle(self) -> None:
        if self.chain.mode == ChainMode.EVENTS:
            await self._events_cycle()
        else:
            await self._blocks_cycle()

    async def _blocks_cycle(self) -> None:
        started = self._clock()

        head = await self._fetch_head()
        if head is None:
            return

        logger.debug(f"Current block number on {self.chain.name}: {head}")

        while self.next_block_number <= head:
            block_number = self.next_block_number
            logger.debug(f"Processing {self.chain.name} block {block_number}")
            try:
                receipts = await asyncio.to_thread(self.receipts.fetch, self.client, block_number)
            except RpcError as e:
                logger.error(
                    f"Error while getting {self.chain.name} block receipts "
                    f"via {self.receipts.name}, retrying: {e}"
                )
                break

            candidates = process_block(receipts, self.addressbook.snapshot())
            await self._notify(candidates)
            self.next_block_number = block_number + 1

        self._record_head(head)
        self.retry_count = 0
        await self._sleep_remaining(started)

    async def _events_cycle(self) -> None:
        started = self._clock()

        head = await self._fetch_head()
        if head is None:
            return

        logger.debug(f"Current block number on {self.chain.name}: {head}")
        self._record_head(head)

        # one block of confirmation
        target = head - 1

        if self.next_block_number <= target:
            from_block = self.next_block_number
            to_block = min(target, from_block + MAX_BLOCK_RANGE - 1)

            logger.debug(f"Processing {self.chain.name} from block {from_block} to block {to_block}")
            try:
                logs = await asyncio.to_thread(self.client.get_logs, from_block, to_block)
            except RpcError as e:
                await self._on_rpc_failure("events", e)
                return

            candidates = parse_logs(logs, self.addressbook.snapshot())
            await self._notify(candidates)
            self.next_block_number = to_block + 1

        self.retry_count = 0
        await self._sleep_remaining(started)

    # =========================================================================
    # Debug replay
    # =========================================================================

    async def replay(self, block_number: int) -> int:
        """
        Reprocess a single block until it yields at least one notification,
        send them and return how many were sent.
        """
        await self.connect()

        data: List[Dict[str, Any]]
        while True:
            try:
                if self.chain.mode == ChainMode.EVENTS:
                    data = await asyncio.to_thread(self.client.get_logs, block_number, block_number)
                else:
                    data = await asyncio.to_thread(self.receipts.fetch, self.client, block_number)
                break
            except RpcError as e:
                await self._on_rpc_failure(f"block {block_number}", e)

        while True:
            started = self._clock()
            watched = self.addressbook.snapshot()
            if self.chain.mode == ChainMode.EVENTS:
                candidates = parse_logs(data, watched)
            else:
                candidates = process_block(data, watched)

            notifications = await asyncio.to_thread(self.engine.build_notifications, candidates)
            if notifications:
                for notification in notifications:
                    await asyncio.to_thread(self.notifier.send, notification)
                logger.info(f"Notification sent for {self.chain.name} block {block_number}")
                return len(notifications)

            logger.warning("No transaction by monitored accounts found, have the accounts been setup?")
            await self._sleep_remaining(started)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _fetch_head(self) -> Optional[int]:
        try:
            return await asyncio.to_thread(self.client.block_number)
        except RpcError as e:
            await self._on_rpc_failure("block number", e)
            return None

    async def _on_rpc_failure(self, what: str, error: Exception) -> None:
        logger.error(f"Error while getting {self.chain.name} {what} from RPC, retrying: {error}")
        if self.retry_count > START_BACKOFF_RETRY_COUNT:
            logger.error(
                f"{self.chain.name} retry count {self.retry_count}, "
                f"waiting {self.chain.blocktime} seconds before next retry"
            )
            await self._sleep(self.chain.blocktime)
        self.retry_count += 1

    async def _notify(self, candidates: List[InterestingTransaction]) -> int:
        if not candidates:
            return 0

        notifications = await asyncio.to_thread(self.engine.build_notifications, candidates)
        sent = 0
        for notification in notifications:
            try:
                await asyncio.to_thread(self.notifier.send, notification)
                sent += 1
            except NotificationError as e:
                # no retry: a lost notification must not hold back later blocks
                logger.error(f"Error while sending notification on {self.chain.name}: {e}")
        return sent

    def _record_head(self, head: int) -> None:
        if self.metrics is not None:
            self.metrics.set_current_block(self.chain.name, head)

    async def _sleep_remaining(self, started: float) -> None:
        elapsed = self._clock() - started
        if elapsed < self.chain.blocktime:
            sleep_time = self.chain.blocktime - elapsed
            logger.debug(f"Sleeping {self.chain.name} for: {int(sleep_time * 1000)} ms")
            await self._sleep(sleep_time)
