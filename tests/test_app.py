import asyncio
import logging
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from prometheus_client.parser import text_string_to_metric_families

from app import MAX_BODY_BYTES, create_app
from core.addressbook import Addressbook
from core.config import ConfigError, Settings
from core.models import Chain, SpamFilterLevel, WatchedAccount
from core.monitor import AccountMonitor
from core.ntfy_client import NotificationError, NtfyClient
from enrich.tokens import TokenStore

ALICE = "0x" + "a11ce".rjust(40, "0")


def make_settings(**kwargs):
    defaults = dict(
        chains=[Chain(name="Gnosis", rpc="https://rpc.gnosischain.com", blocktime=5.0, id=100)],
        ntfy_url="https://ntfy.sh",
        ntfy_topic="accounts",
        ntfy_token="tk_secret",
    )
    defaults.update(kwargs)
    return Settings(**defaults)


def make_monitor(**settings_kwargs):
    return AccountMonitor(
        make_settings(**settings_kwargs),
        notifier=Mock(spec=NtfyClient),
        tokens=Mock(spec=TokenStore),
    )


@pytest.fixture
def monitor():
    return make_monitor()


@pytest.fixture
def client(monitor):
    # no context manager: the lifespan (and the chain loops) stay off
    return TestClient(create_app(monitor))


class TestAccountsEndpoint:

    def test_register(self, client, monitor):
        r = client.post("/accounts", json={"address": ALICE.upper().replace("0X", "0x"), "label": "Alice"})

        assert r.status_code == 202
        assert r.text == "Watching 1 accounts\n"
        assert monitor.addressbook.snapshot() == {ALICE: "Alice"}
        assert monitor.metrics.registry.get_sample_value("monitored_accounts") == 1

    def test_count_grows_and_relabel_does_not(self, client):
        bob = "0x" + "b0b".rjust(40, "0")
        client.post("/accounts", json={"address": ALICE, "label": "Alice"})
        client.post("/accounts", json={"address": bob, "label": "Bob"})
        r = client.post("/accounts", json={"address": ALICE, "label": "Treasury"})

        assert r.text == "Watching 2 accounts\n"

    @pytest.mark.parametrize("address", ["0x1234", "not-an-address", "0x" + "gg" * 20])
    def test_invalid_address(self, client, monitor, address):
        r = client.post("/accounts", json={"address": address, "label": "Nope"})

        assert r.status_code == 422
        assert r.text == "Invalid account address"
        assert len(monitor.addressbook) == 0

    def test_missing_fields(self, client):
        r = client.post("/accounts", json={"address": ALICE})
        assert r.status_code == 422

    def test_oversized_body(self, client, monitor):
        r = client.post("/accounts", json={"address": ALICE, "label": "x" * (MAX_BODY_BYTES + 1)})

        assert r.status_code == 413
        assert len(monitor.addressbook) == 0


class TestReadEndpoints:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"ok": True}

    def test_metrics(self, client, monitor):
        monitor.metrics.set_current_block("Gnosis", 123)
        client.post("/accounts", json={"address": ALICE, "label": "Alice"})

        r = client.get("/metrics")

        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/plain")
        samples = {
            (s.name, tuple(sorted(s.labels.items()))): s.value
            for family in text_string_to_metric_families(r.text)
            for s in family.samples
        }
        assert samples[("current_block", (("chain", "Gnosis"),))] == 123
        assert samples[("monitored_accounts", ())] == 1

    def test_metrics_help_text(self, client):
        body = client.get("/metrics").text

        assert "# HELP current_block Current Block on each chain" in body
        assert "# TYPE monitored_accounts gauge" in body


class TestAccountMonitor:

    def test_static_accounts(self, tmp_path):
        path = tmp_path / "accounts.yaml"
        path.write_text(f'- address: "{ALICE}"\n  label: Alice\n')
        monitor = make_monitor(static_accounts_path=str(path))

        assert monitor.load_static_accounts() == 1
        assert monitor.metrics.registry.get_sample_value("monitored_accounts") == 1

    def test_bad_static_accounts_are_fatal(self, tmp_path):
        path = tmp_path / "accounts.yaml"
        path.write_text("- address: nope\n  label: Broken\n")
        monitor = make_monitor(static_accounts_path=str(path))

        with pytest.raises(ConfigError):
            monitor.load_static_accounts()

    def test_no_static_accounts(self):
        assert make_monitor().load_static_accounts() == 0

    @pytest.mark.asyncio
    async def test_announce(self):
        monitor = AccountMonitor(
            make_settings(),
            addressbook=Addressbook({ALICE: "Alice"}),
            notifier=Mock(spec=NtfyClient),
            tokens=Mock(spec=TokenStore),
        )
        await monitor.announce()

        [notification] = monitor.notifier.send.call_args.args
        assert notification.message == "Account Monitor Started, 1 accounts configured"

    @pytest.mark.asyncio
    async def test_announce_failure_is_not_fatal(self, monitor):
        monitor.notifier.send.side_effect = NotificationError("down")
        await monitor.announce()

    @pytest.mark.asyncio
    async def test_debug_replay_calls_back_when_done(self):
        monitor = make_monitor(debug_block=42)
        poller = Mock()
        poller.replay = AsyncMock(return_value=1)
        monitor.build_poller = Mock(return_value=poller)
        done = Mock()

        monitor.start(on_replay_done=done)
        await asyncio.gather(*monitor._tasks.values())
        await asyncio.sleep(0)

        poller.replay.assert_awaited_once_with(42)
        done.assert_called_once()

    def test_register_updates_gauge(self, monitor):
        monitor.register(WatchedAccount(address=ALICE, label="Alice"))
        assert monitor.metrics.registry.get_sample_value("monitored_accounts") == 1

    def test_missing_token_db_warns_for_known_assets_chains(self, monitor, caplog):
        monitor.tokens.available.return_value = False

        with caplog.at_level(logging.WARNING, logger="core.monitor"):
            assert monitor.check_token_db() is False

        assert "Gnosis" in caplog.text
        assert "filtered as spam" in caplog.text

    def test_missing_token_db_is_quiet_without_known_assets(self, caplog):
        chain = Chain(name="Arb", rpc="https://arb1.arbitrum.io/rpc", blocktime=0.25, spam_filter_level=SpamFilterLevel.NONE)
        monitor = make_monitor(chains=[chain])
        monitor.tokens.available.return_value = False

        with caplog.at_level(logging.WARNING, logger="core.monitor"):
            monitor.check_token_db()

        assert caplog.records == []

    def test_start_checks_token_db(self):
        monitor = make_monitor()
        monitor.build_poller = Mock()
        monitor.check_token_db = Mock(return_value=True)

        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(asyncio, "create_task", Mock())
            monitor.start()

        monitor.check_token_db.assert_called_once()
