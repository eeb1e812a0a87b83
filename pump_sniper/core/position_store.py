"""Position store: the single owner of every per-token piece of state.

Each tracked token has one slot holding its Position plus the auxiliary
state the monitor needs (pending executions, cooldown deadline, single-flight
claim, debounce timer, subscription teardown callbacks). Creating and
evicting a slot is the only way that state appears or disappears.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, TYPE_CHECKING

from pump_sniper.constants import MAX_SELLING_STEP
from pump_sniper.core.models import (
    DirectFill,
    LedgerLookup,
    PendingExecution,
    Position,
    SeedSource,
    SellKind,
    Side,
    SingleFlightClaim,
    StagnationWindow,
    to_ui_amount,
)
from pump_sniper.exceptions import InvalidPositionState, NoPositionFound, TransientLookupFailure

if TYPE_CHECKING:
    from pump_sniper.config.bot_settings import BotSettingsManager
    from pump_sniper.core.clock import SystemClock
    from pump_sniper.core.price_oracle import PriceOracle
    from pump_sniper.db.ledger import TransactionLedger


@dataclass
class TokenSlot:
    position: Position
    pending: list[PendingExecution] = field(default_factory=list)
    cooldown_until: float = 0.0
    claim: SingleFlightClaim | None = None
    debounce: asyncio.TimerHandle | None = None
    teardown: list[Callable[[], None]] = field(default_factory=list)


class PositionStore:
    def __init__(
        self,
        ledger: "TransactionLedger",
        price_oracle: "PriceOracle",
        settings_manager: "BotSettingsManager",
        clock: "SystemClock",
    ) -> None:
        self.ledger = ledger
        self.price_oracle = price_oracle
        self.settings_manager = settings_manager
        self.clock = clock
        self.logger = logging.getLogger("pump_sniper.positions")
        self._slots: dict[str, TokenSlot] = {}
        self._claim_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __contains__(self, token_id: str) -> bool:
        return token_id in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def get(self, token_id: str) -> Position | None:
        slot = self._slots.get(token_id)
        return slot.position if slot else None

    def token_ids(self) -> list[str]:
        return list(self._slots)

    def positions(self) -> list[Position]:
        return [slot.position for slot in self._slots.values()]

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    async def seed(self, token_id: str, source: SeedSource) -> Position:
        """Create the slot for a token from a fresh fill or from the ledger."""
        if token_id in self._slots:
            raise InvalidPositionState("position already tracked", token=token_id)

        if isinstance(source, DirectFill):
            position = await self._from_fill(token_id, source)
        elif isinstance(source, LedgerLookup):
            position = await self._from_ledger(token_id)
        else:
            raise TypeError(f"unknown seed source {source!r}")

        # Another seed may have landed while we were waiting on I/O
        if token_id in self._slots:
            raise InvalidPositionState("position already tracked", token=token_id)

        self._slots[token_id] = TokenSlot(position)
        self.logger.info(
            "📍 Tracking %s (%s) step=%d amount=%.2f invested=$%.10f",
            token_id[:12], position.token_symbol or "?", position.selling_step,
            position.current_amount_ui, position.invested_price_usd,
        )
        return position

    async def seed_from_fill(
        self, token_id: str, fill_price: float, fill_amount_raw: int, timestamp: float, **details
    ) -> Position:
        return await self.seed(token_id, DirectFill(fill_price, fill_amount_raw, timestamp, **details))

    async def rebuild_from_ledger(self, token_id: str) -> Position:
        return await self.seed(token_id, LedgerLookup())

    async def _from_fill(self, token_id: str, fill: DirectFill) -> Position:
        window = await self._fresh_window(token_id)
        invested_usd = fill.invested_usd or fill.price_usd * to_ui_amount(fill.amount_raw)
        return Position(
            token_id=token_id,
            invested_price_usd=fill.price_usd,
            invested_amount_raw=int(fill.amount_raw),
            invested_usd=invested_usd,
            current_amount_raw=int(fill.amount_raw),
            created_at=fill.timestamp,
            stagnation_window=window,
            token_name=fill.token_name,
            token_symbol=fill.token_symbol,
            venue=fill.venue,
            fee_paid_usd=fill.fee_usd,
        )

    async def _from_ledger(self, token_id: str) -> Position:
        fills = await self.ledger.find_by_token(token_id)
        buy = next((f for f in fills if f.swap == Side.BUY), None)
        if buy is None:
            raise NoPositionFound("no buy fill in ledger", token=token_id)
        if buy.swap_price_usd <= 0:
            raise InvalidPositionState("invalid invested price", token=token_id, price=buy.swap_price_usd)

        sells = [f for f in fills if f.swap == Side.SELL]
        invested_raw = buy.amount_raw
        sold_raw = sum(f.amount_raw for f in sells)
        window = await self._fresh_window(token_id)

        return Position(
            token_id=token_id,
            invested_price_usd=buy.swap_price_usd,
            invested_amount_raw=invested_raw,
            invested_usd=buy.swap_price_usd * buy.swap_amount,
            current_amount_raw=max(invested_raw - sold_raw, 0),
            created_at=buy.tx_time,
            stagnation_window=window,
            selling_step=min(max(len(fills) - 1, 0), MAX_SELLING_STEP),
            realized_profit_usd=sum(f.swap_profit_usd for f in sells),
            token_name=buy.token_name,
            token_symbol=buy.token_symbol,
            fee_paid_usd=sum(f.swap_fee_usd for f in fills),
        )

    async def _fresh_window(self, token_id: str) -> StagnationWindow:
        policy = self.settings_manager.get().sell.stagnation
        try:
            quote = await self.price_oracle.get_price(token_id)
            reference = quote.price_usd
        except TransientLookupFailure as exc:
            # Zero reference is reset by the decision guard on the first due pass
            self.logger.warning("No market price for %s at seed time: %s", token_id[:12], exc)
            reference = 0.0
        return StagnationWindow(
            reference_price=reference,
            threshold_fraction=policy.threshold_fraction,
            duration_sec=policy.duration_sec,
            started_at=self.clock.now(),
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply_sell_fill(
        self,
        token_id: str,
        sold_amount_raw: int,
        realized_delta_usd: float,
        step_index: int | None = None,
    ) -> Position | None:
        """Book a confirmed sell. Only staged sells (step_index given) move the step."""
        slot = self._slots.get(token_id)
        if slot is None:
            self.logger.debug("Sell fill for untracked %s ignored", token_id[:12])
            return None

        position = slot.position
        sold = max(int(round(sold_amount_raw)), 0)
        position.current_amount_raw = max(position.current_amount_raw - sold, 0)
        position.realized_profit_usd += realized_delta_usd
        if step_index is not None:
            next_step = max(position.selling_step + 1, step_index + 1)
            position.selling_step = min(next_step, MAX_SELLING_STEP)
        return position

    def replace_window(self, token_id: str, window: StagnationWindow) -> None:
        slot = self._slots.get(token_id)
        if slot is not None:
            slot.position.stagnation_window = window

    def sync_balance(self, token_id: str, amount_raw: int) -> None:
        slot = self._slots.get(token_id)
        if slot is not None and slot.position.current_amount_raw != amount_raw:
            self.logger.debug(
                "Balance sync %s: %d -> %d", token_id[:12], slot.position.current_amount_raw, amount_raw
            )
            slot.position.current_amount_raw = max(int(amount_raw), 0)

    def add_fee(self, token_id: str, fee_usd: float) -> None:
        slot = self._slots.get(token_id)
        if slot is not None:
            slot.position.fee_paid_usd += fee_usd

    def evict(self, token_id: str) -> bool:
        """Drop every piece of state for the token. Safe to call repeatedly."""
        slot = self._slots.pop(token_id, None)
        if slot is None:
            return False

        if slot.debounce is not None:
            slot.debounce.cancel()
        for callback in slot.teardown:
            try:
                callback()
            except Exception as e:
                self.logger.warning("Teardown for %s failed: %s", token_id[:12], e)

        self.logger.info("🗑️ Stopped tracking %s", token_id[:12])
        return True

    def clear(self) -> None:
        for token_id in list(self._slots):
            self.evict(token_id)

    # ------------------------------------------------------------------
    # Single-flight claims
    # ------------------------------------------------------------------

    def try_claim(self, token_id: str, now: float) -> SingleFlightClaim | None:
        slot = self._slots.get(token_id)
        if slot is None or slot.claim is not None:
            return None
        slot.claim = SingleFlightClaim(token_id, next(self._claim_ids), now)
        return slot.claim

    def is_claimed(self, token_id: str) -> bool:
        slot = self._slots.get(token_id)
        return slot is not None and slot.claim is not None

    def release_claim(self, claim: SingleFlightClaim) -> bool:
        """Release once; later calls for the same claim are no-ops and return False."""
        if claim.released:
            return False
        claim.released = True
        slot = self._slots.get(claim.token_id)
        if slot is not None and slot.claim is claim:
            slot.claim = None
        return True

    # ------------------------------------------------------------------
    # Cooldowns and pending executions
    # ------------------------------------------------------------------

    def set_cooldown(self, token_id: str, until: float) -> None:
        slot = self._slots.get(token_id)
        if slot is not None:
            slot.cooldown_until = max(slot.cooldown_until, until)

    def in_cooldown(self, token_id: str, now: float) -> bool:
        slot = self._slots.get(token_id)
        return slot is not None and now < slot.cooldown_until

    def add_pending(
        self,
        token_id: str,
        kind: SellKind,
        now: float,
        ttl: float,
        step_index: int | None = None,
        failed: bool = False,
    ) -> PendingExecution | None:
        slot = self._slots.get(token_id)
        if slot is None:
            return None
        marker = PendingExecution(token_id, kind, now, now + ttl, step_index, failed)
        slot.pending.append(marker)
        return marker

    def has_pending(self, token_id: str, now: float) -> bool:
        slot = self._slots.get(token_id)
        if slot is None:
            return False
        slot.pending = [p for p in slot.pending if p.expires_at > now]
        return bool(slot.pending)

    def has_in_flight(self, token_id: str, now: float) -> bool:
        """A swap for the token was submitted and has not returned yet."""
        return self.has_pending(token_id, now) and any(
            not p.failed for p in self._slots[token_id].pending
        )

    def remove_pending(self, marker: PendingExecution) -> None:
        slot = self._slots.get(marker.token_id)
        if slot is not None:
            slot.pending = [p for p in slot.pending if p is not marker]

    def clear_pending(self, token_id: str) -> None:
        slot = self._slots.get(token_id)
        if slot is not None:
            slot.pending.clear()

    # ------------------------------------------------------------------
    # Timers and subscriptions
    # ------------------------------------------------------------------

    def set_debounce(self, token_id: str, handle: asyncio.TimerHandle) -> bool:
        slot = self._slots.get(token_id)
        if slot is None:
            handle.cancel()
            return False
        if slot.debounce is not None:
            slot.debounce.cancel()
        slot.debounce = handle
        return True

    def clear_debounce(self, token_id: str) -> None:
        slot = self._slots.get(token_id)
        if slot is not None:
            slot.debounce = None

    def add_teardown(self, token_id: str, callback: Callable[[], None]) -> None:
        slot = self._slots.get(token_id)
        if slot is None:
            callback()
            return
        slot.teardown.append(callback)
