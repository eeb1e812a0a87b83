"""Config package"""
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .. import constants

# Load environment variables
load_dotenv()

from .bot_settings import (
    BotSettings,
    BotSettingsManager,
    BuyPolicy,
    MainConfig,
    RangeCriterion,
    SaleRule,
    SellPolicy,
    SettingsStore,
    StagnationPolicy,
    ThresholdCriterion,
    ToggleCriterion,
    WorkingHours,
)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes")


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class Settings:
    """Process-level settings read from the environment.

    Operator policy (buy/sell rules, working hours) lives in BotSettings and is
    editable at runtime; everything here is fixed for the life of the process.
    """

    # ============================================
    # CREDENTIALS & ENDPOINTS
    # ============================================
    RPC_URL: str = "https://api.mainnet-beta.solana.com"
    WSS_URL: str = ""
    SOLANA_PRIVATE_KEY: str = ""
    PUMPPORTAL_WS_URL: str = "wss://pumpportal.fun/api/data"
    PUMPPORTAL_TRADE_URL: str = "https://pumpportal.fun/api/trade-local"
    PUMPFUN_API_BASE: str = "https://frontend-api.pump.fun"
    JUPITER_QUOTE_API_BASE: str = "https://lite-api.jup.ag/swap/v1"
    JUPITER_PRICE_API_BASE: str = "https://lite-api.jup.ag/price/v3"
    JUPITER_API_KEY: str = ""
    DEXSCREENER_API_BASE: str = "https://api.dexscreener.com"
    JITO_BLOCK_ENGINE_URL: str = "https://mainnet.block-engine.jito.wtf"
    JITO_ENABLED: bool = True
    API_TIMEOUT_SEC: float = 10.0
    DEXSCREENER_MAX_RETRIES: int = 3
    DEXSCREENER_RETRY_BACKOFF_SEC: float = 1.0

    # ============================================
    # TELEGRAM
    # ============================================
    TELEGRAM_ENABLED: bool = False
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""

    # ============================================
    # FILES & LOGGING
    # ============================================
    DB_PATH: str = "data/sniper.db"
    BOT_SETTINGS_PATH: str = "config/bot_settings.yaml"
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"

    # ============================================
    # MANAGEMENT API
    # ============================================
    MANAGEMENT_ENABLED: bool = True
    MANAGEMENT_HOST: str = "0.0.0.0"
    MANAGEMENT_PORT: int = 8088
    MANAGEMENT_AUTH_TOKEN: str = ""

    # ============================================
    # MONITOR TIMING
    # ============================================
    EVENT_DEBOUNCE_SEC: float = constants.EVENT_DEBOUNCE_SEC
    CLAIM_TIMEOUT_SEC: float = constants.CLAIM_TIMEOUT_SEC
    MAX_CONCURRENT_SELLS: int = constants.MAX_CONCURRENT_SELLS
    SELL_COOLDOWN_SEC: float = constants.SELL_COOLDOWN_SEC
    FAILED_SELL_COOLDOWN_SEC: float = constants.FAILED_SELL_COOLDOWN_SEC
    WALLET_SYNC_INTERVAL_SEC: float = constants.WALLET_SYNC_INTERVAL_SEC
    STATUS_LOG_INTERVAL_SEC: float = constants.STATUS_LOG_INTERVAL_SEC
    BALANCE_REFRESH_SEC: float = 60.0
    SOL_PRICE_REFRESH_SEC: float = 60.0

    @classmethod
    def from_env(cls) -> "Settings":
        rpc_url = os.getenv("RPC_URL", cls.RPC_URL)
        return cls(
            RPC_URL=rpc_url,
            WSS_URL=os.getenv("WSS_URL", rpc_url.replace("https", "wss")),
            SOLANA_PRIVATE_KEY=os.getenv("SOLANA_PRIVATE_KEY", ""),
            PUMPPORTAL_WS_URL=os.getenv("PUMPPORTAL_WS_URL", cls.PUMPPORTAL_WS_URL),
            PUMPPORTAL_TRADE_URL=os.getenv("PUMPPORTAL_TRADE_URL", cls.PUMPPORTAL_TRADE_URL),
            PUMPFUN_API_BASE=os.getenv("PUMPFUN_API_BASE", cls.PUMPFUN_API_BASE),
            JUPITER_QUOTE_API_BASE=os.getenv("JUPITER_QUOTE_API_BASE", cls.JUPITER_QUOTE_API_BASE),
            JUPITER_PRICE_API_BASE=os.getenv("JUPITER_PRICE_API_BASE", cls.JUPITER_PRICE_API_BASE),
            JUPITER_API_KEY=os.getenv("JUPITER_API_KEY", ""),
            DEXSCREENER_API_BASE=os.getenv("DEXSCREENER_API_BASE", cls.DEXSCREENER_API_BASE),
            JITO_BLOCK_ENGINE_URL=os.getenv("JITO_BLOCK_ENGINE_URL", cls.JITO_BLOCK_ENGINE_URL),
            JITO_ENABLED=_env_bool("JITO_ENABLED", cls.JITO_ENABLED),
            API_TIMEOUT_SEC=_env_float("API_TIMEOUT_SEC", cls.API_TIMEOUT_SEC),
            DEXSCREENER_MAX_RETRIES=_env_int("DEXSCREENER_MAX_RETRIES", cls.DEXSCREENER_MAX_RETRIES),
            DEXSCREENER_RETRY_BACKOFF_SEC=_env_float(
                "DEXSCREENER_RETRY_BACKOFF_SEC", cls.DEXSCREENER_RETRY_BACKOFF_SEC
            ),
            TELEGRAM_ENABLED=_env_bool("TELEGRAM_ENABLED", cls.TELEGRAM_ENABLED),
            TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            TELEGRAM_CHAT_ID=os.getenv("TELEGRAM_CHAT_ID", ""),
            DB_PATH=os.getenv("DB_PATH", cls.DB_PATH),
            BOT_SETTINGS_PATH=os.getenv("BOT_SETTINGS_PATH", cls.BOT_SETTINGS_PATH),
            LOG_DIR=os.getenv("LOG_DIR", cls.LOG_DIR),
            LOG_LEVEL=os.getenv("LOG_LEVEL", cls.LOG_LEVEL),
            MANAGEMENT_ENABLED=_env_bool("MANAGEMENT_ENABLED", cls.MANAGEMENT_ENABLED),
            MANAGEMENT_HOST=os.getenv("MANAGEMENT_HOST", cls.MANAGEMENT_HOST),
            MANAGEMENT_PORT=_env_int("MANAGEMENT_PORT", cls.MANAGEMENT_PORT),
            MANAGEMENT_AUTH_TOKEN=os.getenv("MANAGEMENT_AUTH_TOKEN", ""),
            EVENT_DEBOUNCE_SEC=_env_float("EVENT_DEBOUNCE_SEC", cls.EVENT_DEBOUNCE_SEC),
            CLAIM_TIMEOUT_SEC=_env_float("CLAIM_TIMEOUT_SEC", cls.CLAIM_TIMEOUT_SEC),
            MAX_CONCURRENT_SELLS=_env_int("MAX_CONCURRENT_SELLS", cls.MAX_CONCURRENT_SELLS),
            SELL_COOLDOWN_SEC=_env_float("SELL_COOLDOWN_SEC", cls.SELL_COOLDOWN_SEC),
            FAILED_SELL_COOLDOWN_SEC=_env_float("FAILED_SELL_COOLDOWN_SEC", cls.FAILED_SELL_COOLDOWN_SEC),
            WALLET_SYNC_INTERVAL_SEC=_env_float("WALLET_SYNC_INTERVAL_SEC", cls.WALLET_SYNC_INTERVAL_SEC),
            STATUS_LOG_INTERVAL_SEC=_env_float("STATUS_LOG_INTERVAL_SEC", cls.STATUS_LOG_INTERVAL_SEC),
            BALANCE_REFRESH_SEC=_env_float("BALANCE_REFRESH_SEC", cls.BALANCE_REFRESH_SEC),
            SOL_PRICE_REFRESH_SEC=_env_float("SOL_PRICE_REFRESH_SEC", cls.SOL_PRICE_REFRESH_SEC),
        )


__all__ = [
    "Settings",
    "BotSettings",
    "BotSettingsManager",
    "BuyPolicy",
    "MainConfig",
    "RangeCriterion",
    "SaleRule",
    "SellPolicy",
    "SettingsStore",
    "StagnationPolicy",
    "ThresholdCriterion",
    "ToggleCriterion",
    "WorkingHours",
]
