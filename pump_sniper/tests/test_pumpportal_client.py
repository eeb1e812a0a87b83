"""
Tests for the PumpPortal stream and the trigger plumbing built on it

Message parsing and routing, trade subscriptions, the venue event adapter
and the interval ticker.
"""
import asyncio
import json

import pytest

from pump_sniper.core.models import DirectFill
from pump_sniper.core.position_monitor import PositionMonitor
from pump_sniper.core.pumpportal_client import PumpPortalClient
from pump_sniper.core.triggers import IntervalTicker, VenueEventAdapter

from .conftest import MINT_A, MINT_B

CREATE_MESSAGE = {
    "txType": "create",
    "mint": MINT_A,
    "name": "Pepe Coin",
    "symbol": "PEPE",
    "traderPublicKey": "Creator1111111111111111111111111111111111",
    "bondingCurveKey": "Curve11111111111111111111111111111111111",
    "uri": "https://ipfs.io/ipfs/abc",
    "solAmount": 1.5,
    "initialBuy": 52_000_000.0,
    "vSolInBondingCurve": 31.5,
    "vTokensInBondingCurve": 1_021_000_000.0,
    "marketCapSol": 30.8,
}


class FakeSocket:
    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        pass


@pytest.fixture
def client(settings):
    return PumpPortalClient(settings)


class TestParsing:
    def test_parse_new_token(self):
        candidate = PumpPortalClient.parse_new_token(CREATE_MESSAGE)
        assert candidate.mint == MINT_A
        assert candidate.symbol == "PEPE"
        assert candidate.creator.startswith("Creator")
        assert candidate.dev_buy_sol == 1.5
        assert candidate.market_cap_sol == 30.8

    def test_missing_mint(self):
        assert PumpPortalClient.parse_new_token({"txType": "create"}) is None

    def test_bad_numbers_default_to_zero(self):
        data = dict(CREATE_MESSAGE, solAmount="lots", marketCapSol=None)
        candidate = PumpPortalClient.parse_new_token(data)
        assert candidate.dev_buy_sol == 0.0
        assert candidate.market_cap_sol == 0.0


class TestRouting:
    """handle_message dispatch"""

    async def test_create_goes_to_token_callback(self, client):
        seen = []

        async def on_token(candidate):
            seen.append(candidate.mint)

        client.set_token_callback(on_token)
        await client.handle_message(json.dumps(CREATE_MESSAGE))
        assert seen == [MINT_A]

    async def test_token_callback_errors_are_contained(self, client):
        async def on_token(candidate):
            raise RuntimeError("boom")

        client.set_token_callback(on_token)
        await client.handle_message(json.dumps(CREATE_MESSAGE))

    async def test_trade_goes_to_subscriber(self, client):
        trades = []
        await client.subscribe_trades(MINT_A, lambda mint, data: trades.append((mint, data["txType"])))
        await client.handle_message(json.dumps({"txType": "sell", "mint": MINT_A}))
        await client.handle_message(json.dumps({"txType": "buy", "mint": MINT_B}))
        assert trades == [(MINT_A, "sell")]

    async def test_garbage_is_ignored(self, client):
        await client.handle_message("not json")
        await client.handle_message(json.dumps([1, 2, 3]))
        await client.handle_message(json.dumps({"message": "Successfully subscribed"}))


class TestSubscriptions:
    async def test_subscribe_sends_once(self, client):
        client._ws = FakeSocket()
        await client.subscribe_trades(MINT_A, lambda *_: None)
        await client.subscribe_trades(MINT_A, lambda *_: None)
        assert client._ws.sent == [{"method": "subscribeTokenTrade", "keys": [MINT_A]}]
        assert client.is_subscribed(MINT_A)

    async def test_offline_subscribe_is_remembered(self, client):
        """Without a connection the mint is subscribed on the next connect"""
        await client.subscribe_trades(MINT_A, lambda *_: None)
        assert client.is_subscribed(MINT_A)
        assert not client.connected

    async def test_unsubscribe(self, client):
        socket = FakeSocket()
        client._ws = socket
        await client.subscribe_trades(MINT_A, lambda *_: None)
        await client.unsubscribe_trades(MINT_A)
        await client.unsubscribe_trades(MINT_A)
        assert socket.sent[-1] == {"method": "unsubscribeTokenTrade", "keys": [MINT_A]}
        assert len(socket.sent) == 2
        assert not client.is_subscribed(MINT_A)


class TestVenueEvents:
    """Trades for a watched token reach the monitor as debounced events"""

    async def test_trade_triggers_evaluation(self, client, settings, store, oracle, executor, ledger,
                                             wallet_cache, settings_manager, clock):
        monitor = PositionMonitor(
            settings, store, oracle, executor, ledger, wallet_cache, settings_manager, clock,
            event_source=VenueEventAdapter(client),
        )
        oracle.prices[MINT_A] = 1.0
        await monitor.watch(MINT_A, DirectFill(1.0, 1000, clock.now()))
        assert client.is_subscribed(MINT_A)

        oracle.prices[MINT_A] = 1.06
        await client.handle_message(json.dumps({"txType": "buy", "mint": MINT_A}))
        await asyncio.sleep(0.15)
        assert len(executor.requests) == 1

    async def test_retire_unsubscribes(self, client, settings, store, oracle, executor, ledger,
                                       wallet_cache, settings_manager, clock):
        monitor = PositionMonitor(
            settings, store, oracle, executor, ledger, wallet_cache, settings_manager, clock,
            event_source=VenueEventAdapter(client),
        )
        oracle.prices[MINT_A] = 1.0
        await monitor.watch(MINT_A, DirectFill(1.0, 1000, clock.now()))
        monitor.retire(MINT_A, "test")
        await asyncio.sleep(0)
        assert not client.is_subscribed(MINT_A)


class TestIntervalTicker:
    async def test_runs_until_stopped(self):
        calls = []

        async def work():
            calls.append(1)

        ticker = IntervalTicker(0.1, work, "test")
        ticker.start()
        await asyncio.sleep(0.25)
        await ticker.stop()
        assert 2 <= len(calls) <= 4
        assert not ticker.running

    async def test_callback_errors_do_not_stop_ticker(self):
        calls = []

        async def flaky():
            calls.append(1)
            raise ValueError("bad tick")

        ticker = IntervalTicker(lambda: 0.1, flaky, "flaky")
        ticker.start()
        await asyncio.sleep(0.25)
        await ticker.stop()
        assert len(calls) >= 2
