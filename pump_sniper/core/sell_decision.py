"""Sell decision engine.

`decide` looks at one position, the current price and the active sell policy
and returns what to do. It never mutates the position: a stagnation window
reset comes back inside the Decision and the caller stores it.

Priority, first match wins:
    1. stagnation window expired without enough growth
    2. low market cap on an old position
    3. age limit (only when the policy sets max_hold_seconds)
    4. stop loss
    5. staged profit-take
"""
from __future__ import annotations

import math

from pump_sniper.config.bot_settings import SellPolicy
from pump_sniper.constants import (
    LOW_MC_MAX_AGE_SEC,
    LOW_MC_THRESHOLD_USD,
    MAX_SELLING_STEP,
    TOTAL_SUPPLY,
)
from pump_sniper.core.models import (
    Decision,
    ForceExitReason,
    NoAction,
    Position,
    SellForceExit,
    SellStagnation,
    SellStep,
    SellStopLoss,
    StagnationWindow,
)

GROWTH_PRECISION = 9


def decide(position: Position, price_usd: float, policy: SellPolicy, now: float) -> Decision:
    if position.invested_price_usd <= 0:
        return Decision(NoAction("invested price unavailable"))

    current = position.current_amount_raw
    window = position.stagnation_window
    new_window: StagnationWindow | None = None

    if window.is_due(now):
        if window.reference_price <= 0:
            return Decision(NoAction("stagnation reference reset"), window.reset(price_usd, now))
        growth = (price_usd - window.reference_price) / window.reference_price
        if growth < window.threshold_fraction:
            return Decision(SellStagnation(current))
        new_window = window.reset(price_usd, now)

    age = now - position.created_at

    if price_usd * TOTAL_SUPPLY < LOW_MC_THRESHOLD_USD and age > LOW_MC_MAX_AGE_SEC:
        return Decision(SellForceExit(current, ForceExitReason.LOW_MARKET_CAP), new_window)

    if policy.max_hold_seconds > 0 and age > policy.max_hold_seconds:
        return Decision(SellForceExit(current, ForceExitReason.AGE_LIMIT), new_window)

    # Rounded so $1.40 on a $1 entry is exactly +40%
    growth_percent = round((price_usd / position.invested_price_usd - 1) * 100, GROWTH_PRECISION)

    if growth_percent < 0 and abs(growth_percent) > policy.loss_exit_percent:
        return Decision(SellStopLoss(current), new_window)

    step = pick_sale_step(position, growth_percent, policy)
    if step is not None:
        return Decision(step, new_window)

    return Decision(NoAction(), new_window)


def pick_sale_step(position: Position, growth_percent: float, policy: SellPolicy) -> SellStep | None:
    """Highest not-yet-executed sale rule whose growth threshold has been reached.

    When the price jumps past several thresholds at once only the highest rule
    sells; the rules in between are skipped. Reaching the final rule of a
    100% plan always sells the whole remaining balance.
    """
    rules = policy.sale_rules
    last_index = min(len(rules), MAX_SELLING_STEP) - 1
    if position.selling_step > last_index:
        return None

    for index in range(last_index, position.selling_step - 1, -1):
        rule = rules[index]
        if rule.min_growth_percent > growth_percent:
            continue
        if index == last_index and policy.rules_liquidate_fully:
            amount = position.current_amount_raw
        else:
            planned = math.floor(position.invested_amount_raw * rule.sell_percent_of_invested / 100)
            amount = min(planned, position.current_amount_raw)
        if amount <= 0:
            return None
        return SellStep(index, amount)

    return None
