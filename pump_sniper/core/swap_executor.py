from __future__ import annotations

import logging
import time
from typing import Protocol

from pump_sniper.constants import DUST_BURN_THRESHOLD, FALLBACK_BURN_THRESHOLD, MAX_SWAP_RETRIES
from pump_sniper.core.models import Fill, Side, SwapRequest, Venue
from pump_sniper.exceptions import ExecutionFailure


class SwapVenue(Protocol):
    venue: Venue

    async def swap(self, request: SwapRequest) -> Fill: ...


class SwapExecutor:
    """Runs a swap through the primary venue, the secondary venue for sells,
    and burn-and-close for dust. Always returns a Fill; never raises for a
    failed trade.
    """

    def __init__(
        self,
        primary: SwapVenue,
        secondary: SwapVenue | None = None,
        burner: SwapVenue | None = None,
        max_rounds: int = MAX_SWAP_RETRIES,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.burner = burner
        self.max_rounds = max(1, max_rounds)
        self.logger = logging.getLogger("pump_sniper.executor")

    async def execute(self, request: SwapRequest) -> Fill:
        mint = request.token_id[:12]
        is_sell = request.side == Side.SELL
        self.logger.info(
            "🔄 SWAP %s %s | tokens=%.6f sol=%.6f sell_all=%s",
            request.side.value, mint, request.amount_ui, request.amount_sol, request.sell_all,
        )

        if is_sell and request.amount_ui < DUST_BURN_THRESHOLD:
            self.logger.info("🔥 %s amount %.6f below dust threshold, burning", mint, request.amount_ui)
            fill = await self._attempt(self.burner, request)
            if fill is not None:
                return fill
            self.logger.warning("Burn failed for %s, falling back to swap", mint)

        last_reason = "no venue attempted"
        for attempt in range(1, self.max_rounds + 1):
            self.logger.debug("Attempt %d/%d for %s via %s", attempt, self.max_rounds, mint, self.primary.venue.value)
            fill = await self._attempt(self.primary, request)
            if fill is not None:
                return fill
            last_reason = f"{self.primary.venue.value} failed"

            if not is_sell:
                continue

            fill = await self._attempt(self.secondary, request)
            if fill is not None:
                return fill
            if self.secondary is not None:
                last_reason = f"{self.secondary.venue.value} failed"

            if request.amount_ui < FALLBACK_BURN_THRESHOLD:
                self.logger.info("🔥 Both venues failed for %s, burning %.6f", mint, request.amount_ui)
                fill = await self._attempt(self.burner, request)
                if fill is not None:
                    return fill
                last_reason = "burn failed"

        self.logger.error("❌ All swap methods failed for %s after %d rounds", mint, self.max_rounds)
        return Fill(
            token_id=request.token_id,
            side=request.side,
            success=False,
            reason=last_reason,
            timestamp=time.time(),
        )

    async def _attempt(self, venue: SwapVenue | None, request: SwapRequest) -> Fill | None:
        if venue is None:
            return None
        try:
            fill = await venue.swap(request)
        except ExecutionFailure as e:
            self.logger.warning("⚠️ %s %s failed: %s", venue.venue.value, request.token_id[:12], e)
            return None
        except Exception as e:
            self.logger.error(
                "⚠️ %s %s raised unexpectedly: %s", venue.venue.value, request.token_id[:12], e, exc_info=True
            )
            return None
        self.logger.info(
            "✅ %s %s via %s | tx=%s price=$%.10f",
            request.side.value, request.token_id[:12], venue.venue.value, fill.tx_hash[:16], fill.price_usd,
        )
        return fill
