"""Tests for the swap executor fallback chain"""
import pytest

from pump_sniper.constants import TOKEN_UNIT
from pump_sniper.core.models import Fill, Side, SwapRequest, Venue
from pump_sniper.core.swap_executor import SwapExecutor
from pump_sniper.exceptions import ExecutionFailure

MINT = "MintSwapaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaapump"


class ScriptedVenue:
    """Venue that fails `failures` times before filling (or forever when None).

    Setting `error` makes every call raise it instead.
    """

    def __init__(self, venue: Venue, failures: int | None = 0):
        self.venue = venue
        self.failures = failures
        self.calls = 0
        self.error: Exception | None = None

    async def swap(self, request: SwapRequest) -> Fill:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.failures is None or self.calls <= self.failures:
            raise ExecutionFailure(f"{self.venue.value} rejected", attempt=self.calls)
        return Fill(
            token_id=request.token_id,
            side=request.side,
            price_usd=0.001,
            amount_raw=request.amount_raw,
            tx_hash=f"{self.venue.value}-{self.calls}",
            venue=self.venue,
            burned=self.venue == Venue.BURN,
        )


def sell(amount_ui: float) -> SwapRequest:
    return SwapRequest(MINT, Side.SELL, amount_raw=int(amount_ui * TOKEN_UNIT))


@pytest.fixture
def venues():
    return (
        ScriptedVenue(Venue.PUMPFUN),
        ScriptedVenue(Venue.RAYDIUM),
        ScriptedVenue(Venue.BURN),
    )


class TestSellChain:
    """Primary, secondary and burn fallbacks for sells"""

    async def test_primary_fills(self, venues):
        """A healthy primary venue is the only one called"""
        primary, secondary, burner = venues
        fill = await SwapExecutor(primary, secondary, burner).execute(sell(100))
        assert fill.success
        assert fill.venue == Venue.PUMPFUN
        assert secondary.calls == 0

    async def test_falls_back_to_secondary(self, venues):
        """Primary failure tries the aggregator in the same round"""
        primary, secondary, burner = venues
        primary.failures = None
        fill = await SwapExecutor(primary, secondary, burner).execute(sell(100))
        assert fill.venue == Venue.RAYDIUM
        assert primary.calls == 1
        assert burner.calls == 0

    async def test_second_round_retries_primary(self, venues):
        """A transient primary failure recovers on the next round"""
        primary, _, _ = venues
        primary.failures = 1
        fill = await SwapExecutor(primary, max_rounds=2).execute(sell(100))
        assert fill.success
        assert fill.tx_hash == "Pumpfun-2"

    async def test_dust_is_burned(self, venues):
        """Amounts under the dust threshold go straight to the burner"""
        primary, secondary, burner = venues
        fill = await SwapExecutor(primary, secondary, burner).execute(sell(0.00005))
        assert fill.burned
        assert primary.calls == 0

    async def test_small_amount_burned_after_venues_fail(self, venues):
        """A small remainder is burned once both venues fail"""
        primary, secondary, burner = venues
        primary.failures = None
        secondary.failures = None
        fill = await SwapExecutor(primary, secondary, burner).execute(sell(0.0005))
        assert fill.burned
        assert burner.calls == 1

    async def test_everything_fails(self, venues):
        """Exhausted fallbacks return a failed Fill instead of raising"""
        primary, secondary, burner = venues
        primary.failures = None
        secondary.failures = None
        fill = await SwapExecutor(primary, secondary, burner, max_rounds=2).execute(sell(100))
        assert not fill.success
        assert fill.reason == "Raydium failed"
        assert primary.calls == 2
        assert burner.calls == 0


class TestBuys:
    """Buys never leave the primary venue"""

    async def test_buy_does_not_use_secondary(self, venues):
        """A failed buy is retried on the primary only"""
        primary, secondary, burner = venues
        primary.failures = None
        request = SwapRequest(MINT, Side.BUY, amount_sol=0.01)
        fill = await SwapExecutor(primary, secondary, burner, max_rounds=3).execute(request)
        assert not fill.success
        assert primary.calls == 3
        assert secondary.calls == 0
        assert burner.calls == 0


class TestUnexpectedErrors:
    """Venue errors outside ExecutionFailure still walk the fallback chain"""

    async def test_primary_crash_falls_back_to_secondary(self, venues):
        primary, secondary, burner = venues
        primary.error = RuntimeError("unexpected decode error")
        fill = await SwapExecutor(primary, secondary, burner).execute(sell(100))
        assert fill.success
        assert fill.venue == Venue.RAYDIUM

    async def test_burner_crash_falls_back_to_swap(self, venues):
        """A burner that blows up on dust leaves the normal sell path open"""
        primary, secondary, burner = venues
        burner.error = ValueError("Invalid Base58 string")
        fill = await SwapExecutor(primary, secondary, burner).execute(sell(0.00005))
        assert fill.success
        assert fill.venue == Venue.PUMPFUN

    async def test_every_venue_crashing_returns_failed_fill(self, venues):
        primary, secondary, burner = venues
        primary.error = RuntimeError("boom")
        secondary.error = RuntimeError("boom")
        fill = await SwapExecutor(primary, secondary, burner, max_rounds=1).execute(sell(100))
        assert not fill.success
