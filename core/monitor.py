from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Optional

import yaml

from core.addressbook import Addressbook, load_accounts_file
from core.config import ConfigError, Settings
from core.metrics import Metrics
from core.models import Chain, Notification, SpamFilterLevel, WatchedAccount
from core.ntfy_client import NotificationError, NtfyClient
from core.poller import ChainPoller
from core.rpc_client import JsonRpcClient
from enrich.tokens import TokenStore

logger = logging.getLogger(__name__)


class AccountMonitor:
    """
    Owns the shared state (addressbook, gauges, transport, token store) and one
    poller task per configured chain.
    """

    def __init__(
        self,
        settings: Settings,
        addressbook: Optional[Addressbook] = None,
        metrics: Optional[Metrics] = None,
        notifier: Optional[NtfyClient] = None,
        tokens: Optional[TokenStore] = None,
    ):
        self.settings = settings
        self.addressbook = addressbook or Addressbook()
        self.metrics = metrics or Metrics()
        self.notifier = notifier or NtfyClient(
            settings.ntfy_url,
            settings.ntfy_topic,
            settings.ntfy_token,
            timeout=settings.ntfy_timeout,
        )
        self.tokens = tokens or TokenStore(settings.token_db_path)

        self._tasks: Dict[str, asyncio.Task] = {}
        self._on_replay_done: Optional[Callable[[], None]] = None

    @property
    def debug(self) -> bool:
        return self.settings.debug_block is not None

    def load_static_accounts(self) -> int:
        path = self.settings.static_accounts_path
        if path:
            try:
                accounts = load_accounts_file(path)
            except (OSError, yaml.YAMLError, ValueError) as e:
                raise ConfigError(f"Could not read accounts from {path}: {e}") from e
            self.addressbook.watch_all(accounts)

        count = len(self.addressbook)
        self.metrics.set_monitored_accounts(count)
        return count

    def register(self, account: WatchedAccount) -> int:
        count = self.addressbook.watch(account.address, account.label)
        self.metrics.set_monitored_accounts(count)
        logger.info(f"Watched Accounts: {count}")
        return count

    async def announce(self) -> None:
        count = len(self.addressbook)
        notification = Notification(message=f"Account Monitor Started, {count} accounts configured")
        try:
            await asyncio.to_thread(self.notifier.send, notification)
        except NotificationError as e:
            logger.error(f"Could not send startup notification: {e}")

    def check_token_db(self) -> bool:
        """
        Without the token database no contract is a known asset, so chains on
        KnownAssets drop every transfer and approval. Warn once at startup.
        """
        if self.tokens.available():
            return True
        strict = [c.name for c in self.settings.chains if c.spam_filter_level == SpamFilterLevel.KNOWN_ASSETS]
        if strict:
            logger.warning(
                f"Token database {self.settings.token_db_path} cannot be read; "
                f"token transfers and approvals on {', '.join(strict)} will all be filtered as spam"
            )
        return False

    def build_poller(self, chain: Chain) -> ChainPoller:
        return ChainPoller(
            chain=chain,
            client=JsonRpcClient(chain.rpc, timeout=self.settings.rpc_timeout),
            addressbook=self.addressbook,
            notifier=self.notifier,
            tokens=self.tokens,
            metrics=self.metrics,
        )

    def start(self, on_replay_done: Optional[Callable[[], None]] = None) -> None:
        self._on_replay_done = on_replay_done
        self.check_token_db()

        if self.debug:
            logger.warning(f"Running in debug mode, getting single block {self.settings.debug_block}")

        for chain in self.settings.chains:
            poller = self.build_poller(chain)
            if self.debug:
                coro = poller.replay(self.settings.debug_block)
            else:
                coro = poller.run()
            task = asyncio.create_task(coro, name=f"monitor-{chain.name}")
            task.add_done_callback(lambda t, c=chain: self._task_done(c, t))
            self._tasks[chain.name] = task

    def _task_done(self, chain: Chain, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{chain.name} monitor stopped: {exc}", exc_info=exc)
            return
        if self.debug:
            logger.info("Notification sent, exiting")
            if self._on_replay_done is not None:
                self._on_replay_done()

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
