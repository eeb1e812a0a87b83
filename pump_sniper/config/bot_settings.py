"""
Bot Settings Manager

Operator policy for the sniper: main switches, buy criteria and sell rules.
Persisted to a YAML or JSON file, cached in memory and replaced whole on
every update so readers never see a half-written policy.
"""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from ..constants import MAX_SELLING_STEP, STAGNATION_MS_CUTOFF
from ..exceptions import ConfigurationError
from ..utils.helpers import is_working_time, parse_hhmm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkingHours:
    """UTC trading window, HH:MM inclusive on both ends"""
    start: str = "05:00"
    end: str = "21:30"
    enabled: bool = True


@dataclass(frozen=True)
class MainConfig:
    is_running: bool = False
    working_hours: WorkingHours = field(default_factory=WorkingHours)
    buy_interval_time: float = 30.0   # seconds between candidate re-checks
    sell_interval_time: float = 2.0   # seconds between monitor sweeps

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MainConfig":
        data = dict(data or {})
        hours = WorkingHours(**data.pop("working_hours", {}))
        return cls(working_hours=hours, **data)


@dataclass(frozen=True)
class ToggleCriterion:
    enabled: bool = False


@dataclass(frozen=True)
class RangeCriterion:
    min: float = 0.0
    max: float = 0.0
    enabled: bool = False


@dataclass(frozen=True)
class ThresholdCriterion:
    value: float = 0.0
    enabled: bool = False


@dataclass(frozen=True)
class BuyPolicy:
    """Buy criteria. Disabled criteria are skipped, they never pass or fail."""
    duplicates: ToggleCriterion = field(default_factory=ToggleCriterion)
    market_cap: RangeCriterion = field(default_factory=lambda: RangeCriterion(8000, 15000, True))
    age: RangeCriterion = field(default_factory=lambda: RangeCriterion(0, 30, True))
    max_dev_holding_amount: ThresholdCriterion = field(default_factory=lambda: ThresholdCriterion(10))
    max_dev_buy_amount: ThresholdCriterion = field(default_factory=lambda: ThresholdCriterion(10))
    holders: ThresholdCriterion = field(default_factory=lambda: ThresholdCriterion(10))
    last_minute_txns: ThresholdCriterion = field(default_factory=ThresholdCriterion)
    last_hour_volume: ThresholdCriterion = field(default_factory=ThresholdCriterion)
    x_score: ThresholdCriterion = field(default_factory=lambda: ThresholdCriterion(30, True))
    max_gas_price: float = 0.00001
    slippage: float = 100.0
    jito_tip_amount: float = 0.0001
    investment_per_token: float = 0.0000001

    _RANGES = ("market_cap", "age")
    _THRESHOLDS = (
        "max_dev_holding_amount", "max_dev_buy_amount", "holders",
        "last_minute_txns", "last_hour_volume", "x_score",
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuyPolicy":
        data = dict(data or {})
        kwargs: dict[str, Any] = {}
        if "duplicates" in data:
            kwargs["duplicates"] = ToggleCriterion(**data.pop("duplicates"))
        for name in cls._RANGES:
            if name in data:
                kwargs[name] = RangeCriterion(**data.pop(name))
        for name in cls._THRESHOLDS:
            if name in data:
                kwargs[name] = ThresholdCriterion(**data.pop(name))
        return cls(**kwargs, **data)


@dataclass(frozen=True)
class SaleRule:
    min_growth_percent: float
    sell_percent_of_invested: float


@dataclass(frozen=True)
class StagnationPolicy:
    min_growth_percent: float = 10.0
    duration_seconds: float = 30.0

    @property
    def threshold_fraction(self) -> float:
        return self.min_growth_percent / 100

    @property
    def duration_sec(self) -> float:
        # Older settings documents stored the duration in milliseconds
        if self.duration_seconds > STAGNATION_MS_CUTOFF:
            return self.duration_seconds / 1000
        return self.duration_seconds


def _default_sale_rules() -> tuple[SaleRule, ...]:
    return (
        SaleRule(5, 10),
        SaleRule(10, 20),
        SaleRule(30, 30),
        SaleRule(50, 40),
    )


@dataclass(frozen=True)
class SellPolicy:
    sale_rules: tuple[SaleRule, ...] = field(default_factory=_default_sale_rules)
    loss_exit_percent: float = 30.0
    stagnation: StagnationPolicy = field(default_factory=StagnationPolicy)
    max_hold_seconds: float = 0.0     # 0 disables the age-limit exit

    @property
    def rules_liquidate_fully(self) -> bool:
        total = sum(rule.sell_percent_of_invested for rule in self.sale_rules)
        return abs(total - 100.0) < 1e-9

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SellPolicy":
        data = dict(data or {})
        kwargs: dict[str, Any] = {}
        if "sale_rules" in data:
            kwargs["sale_rules"] = tuple(SaleRule(**rule) for rule in data.pop("sale_rules"))
        if "stagnation" in data:
            kwargs["stagnation"] = StagnationPolicy(**data.pop("stagnation"))
        return cls(**kwargs, **data)


@dataclass(frozen=True)
class BotSettings:
    """Complete operator policy"""
    version: str = "1.0"
    main: MainConfig = field(default_factory=MainConfig)
    buy: BuyPolicy = field(default_factory=BuyPolicy)
    sell: SellPolicy = field(default_factory=SellPolicy)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["sell"]["sale_rules"] = [asdict(rule) for rule in self.sell.sale_rules]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BotSettings":
        return cls(
            version=data.get("version", "1.0"),
            main=MainConfig.from_dict(data.get("main", {})),
            buy=BuyPolicy.from_dict(data.get("buy", {})),
            sell=SellPolicy.from_dict(data.get("sell", {})),
        )


def validate_settings(settings: BotSettings) -> list[str]:
    """Validate a settings object, return list of errors"""
    errors = []

    for label, hours in (("start", settings.main.working_hours.start), ("end", settings.main.working_hours.end)):
        try:
            parse_hhmm(hours)
        except ValueError:
            errors.append(f"working_hours.{label} must be HH:MM")

    if settings.main.buy_interval_time <= 0:
        errors.append("buy_interval_time must be > 0")
    if settings.main.sell_interval_time <= 0:
        errors.append("sell_interval_time must be > 0")

    buy = settings.buy
    if buy.market_cap.enabled and buy.market_cap.min > buy.market_cap.max:
        errors.append("market_cap.min must be <= market_cap.max")
    if buy.age.enabled and buy.age.min >= buy.age.max:
        errors.append("age.min must be < age.max")
    if buy.investment_per_token <= 0:
        errors.append("investment_per_token must be > 0")
    if buy.slippage < 0:
        errors.append("slippage must be >= 0")
    if buy.jito_tip_amount < 0:
        errors.append("jito_tip_amount must be >= 0")

    sell = settings.sell
    if len(sell.sale_rules) > MAX_SELLING_STEP:
        errors.append(f"at most {MAX_SELLING_STEP} sale rules are supported")
    total = 0.0
    previous = None
    for index, rule in enumerate(sell.sale_rules):
        if rule.sell_percent_of_invested <= 0 or rule.sell_percent_of_invested > 100:
            errors.append(f"sale_rules[{index}].sell_percent_of_invested must be in (0, 100]")
        if previous is not None and rule.min_growth_percent < previous:
            errors.append("sale_rules must have ascending min_growth_percent")
        previous = rule.min_growth_percent
        total += rule.sell_percent_of_invested
    if total > 100 + 1e-9:
        errors.append("sale_rules sell percentages must not exceed 100 in total")
    if sell.loss_exit_percent <= 0 or sell.loss_exit_percent > 100:
        errors.append("loss_exit_percent must be between 0 and 100")
    if sell.stagnation.duration_seconds <= 0:
        errors.append("stagnation.duration_seconds must be > 0")
    if sell.max_hold_seconds < 0:
        errors.append("max_hold_seconds must be >= 0")

    return errors


class SettingsStore:
    """YAML/JSON file holding the persisted BotSettings document."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> BotSettings:
        """Load settings, writing defaults when the file does not exist yet"""
        if not self.path.exists():
            settings = BotSettings()
            self.save(settings)
            logger.info("Default bot settings created at %s", self.path)
            return settings

        with open(self.path, "r", encoding="utf-8") as f:
            if self.path.suffix in [".yaml", ".yml"]:
                data = yaml.safe_load(f)
            else:
                data = json.load(f)

        try:
            settings = BotSettings.from_dict(data or {})
        except TypeError as exc:
            raise ConfigurationError("Malformed bot settings", path=str(self.path), error=str(exc))
        logger.info("Bot settings loaded from %s", self.path)
        return settings

    def save(self, settings: BotSettings) -> None:
        data = settings.to_dict()
        with open(self.path, "w", encoding="utf-8") as f:
            if self.path.suffix in [".yaml", ".yml"]:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
            else:
                json.dump(data, f, indent=2, ensure_ascii=False)


class BotSettingsManager:
    """
    Cached access to the bot settings.

    Usage:
        manager = BotSettingsManager(SettingsStore("config/bot_settings.yaml"))
        sell_policy = manager.get().sell

        # Replace a whole section (validated, persisted, swapped atomically)
        manager.replace_sell(SellPolicy(loss_exit_percent=25))
    """

    def __init__(self, store: SettingsStore):
        self.store = store
        self._lock = threading.Lock()
        self._settings = store.load()
        errors = validate_settings(self._settings)
        if errors:
            raise ConfigurationError("Invalid bot settings", errors="; ".join(errors))

    def get(self) -> BotSettings:
        return self._settings

    def replace(self, settings: BotSettings) -> BotSettings:
        errors = validate_settings(settings)
        if errors:
            raise ConfigurationError("Invalid bot settings", errors="; ".join(errors))
        with self._lock:
            self.store.save(settings)
            self._settings = settings
        logger.info("🔧 Bot settings updated")
        return settings

    def replace_main(self, main: MainConfig) -> BotSettings:
        return self.replace(replace(self._settings, main=main))

    def replace_buy(self, buy: BuyPolicy) -> BotSettings:
        return self.replace(replace(self._settings, buy=buy))

    def replace_sell(self, sell: SellPolicy) -> BotSettings:
        return self.replace(replace(self._settings, sell=sell))

    def set_running(self, running: bool) -> BotSettings:
        main = replace(self._settings.main, is_running=running)
        return self.replace_main(main)

    @property
    def is_running(self) -> bool:
        return self._settings.main.is_running

    def is_working_time(self, now: datetime | None = None) -> bool:
        hours = self._settings.main.working_hours
        if not hours.enabled:
            return True
        return is_working_time(hours.start, hours.end, now or datetime.now(timezone.utc))

    def can_buy(self, now: datetime | None = None) -> bool:
        return self.is_running and self.is_working_time(now)
