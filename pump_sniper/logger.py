"""
Structured logging configuration for the sniper bot.

Human-readable coloured console output plus JSON log files with rotation.
"""

import json
import logging
import logging.handlers
import os
from datetime import datetime

DEFAULT_LOG_DIR = "logs"


class StructuredFormatter(logging.Formatter):
    """
    Custom formatter that outputs structured JSON logs.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter for console output (human-readable).
    """

    COLOR_CODES = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLOR_CODES.get(record.levelname, self.COLOR_CODES['RESET'])
        reset = self.COLOR_CODES['RESET']

        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        component = record.name.rsplit(".", 1)[-1]

        msg = f"{color}[{timestamp}] [{record.levelname:8s}]{reset} [{component}] {record.getMessage()}"

        if hasattr(record, 'extra_data') and record.extra_data:
            context = " | ".join(f"{k}={v}" for k, v in record.extra_data.items())
            msg += f" ({context})"

        if record.exc_info:
            msg += f"\n{self.formatException(record.exc_info)}"

        return msg


def _is_trade_record(record: logging.LogRecord) -> bool:
    return bool(getattr(record, 'extra_data', {}).get('trade_event'))


def setup_logging(
    level: str = "INFO",
    log_dir: str = DEFAULT_LOG_DIR,
    enable_console: bool = True,
    enable_file: bool = True,
):
    """
    Configure logging system with both file and console handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for bot.log, errors.log and trades.log
        enable_console: Enable console output
        enable_file: Enable file output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    if enable_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(HumanReadableFormatter())
        console_handler.setLevel(getattr(logging, level.upper()))
        root_logger.addHandler(console_handler)

    if enable_file:
        os.makedirs(log_dir, exist_ok=True)

        main_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "bot.log"),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        main_handler.setFormatter(StructuredFormatter())
        main_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(main_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "errors.log"),
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3
        )
        error_handler.setFormatter(StructuredFormatter())
        error_handler.setLevel(logging.ERROR)
        root_logger.addHandler(error_handler)

        trade_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "trades.log"),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=10
        )
        trade_handler.setFormatter(StructuredFormatter())
        trade_handler.addFilter(_is_trade_record)
        root_logger.addHandler(trade_handler)

    # Quiet noisy libraries
    for name in ("solana", "solders", "httpx", "httpcore", "websockets", "aiohttp.access"):
        logging.getLogger(name).setLevel(logging.WARNING)


def read_logs(log_dir: str = DEFAULT_LOG_DIR, limit: int = 500) -> list:
    """Last `limit` records of bot.log, oldest first. Lines that are not JSON
    come back as {"message": line}."""
    path = os.path.join(log_dir, "bot.log")
    if not os.path.exists(path):
        return []

    with open(path, 'r', encoding='utf-8', errors='replace') as f:
        lines = f.readlines()[-limit:] if limit > 0 else []

    records = []
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError:
            records.append({"message": line})
    return records


def clear_logs(log_dir: str = DEFAULT_LOG_DIR) -> int:
    """
    Empty bot.log and delete its rotated backups.

    The live file is truncated in place so the open handler keeps writing to it.

    Returns:
        Number of files cleared
    """
    if not os.path.isdir(log_dir):
        return 0

    base = os.path.join(log_dir, "bot.log")
    cleared = 0
    if os.path.exists(base):
        with open(base, 'w'):
            pass
        cleared += 1
    for name in os.listdir(log_dir):
        if name.startswith("bot.log."):
            os.remove(os.path.join(log_dir, name))
            cleared += 1
    return cleared


class TradeLogger:
    """
    Specialized logger for trade events.

    Records land in trades.log through the root handler filter.

    Usage:
        trade_logger = TradeLogger()
        trade_logger.log_buy(mint="ABC", amount_sol=0.1, signature="xyz...")
        trade_logger.log_sell(mint="ABC", token_amount=1000, reason="STEP_1")
    """

    def __init__(self):
        self.logger = logging.getLogger("trades")

    def log_buy(
        self,
        mint: str,
        amount_sol: float,
        signature: str,
        price_usd: float = 0.0,
        dex: str = "",
        token_amount: int = 0
    ):
        """Log buy trade event"""
        self.logger.info("BUY", extra={'extra_data': {
            'trade_event': True,
            'event_type': 'BUY',
            'mint': mint,
            'amount_sol': amount_sol,
            'signature': signature,
            'price_usd': price_usd,
            'dex': dex,
            'token_amount': token_amount,
            'timestamp': datetime.now().isoformat()
        }})

    def log_sell(
        self,
        mint: str,
        token_amount: int,
        signature: str,
        reason: str,
        price_usd: float = 0.0,
        pnl_usd: float = 0.0,
        pnl_pct: float = 0.0,
        hold_time_seconds: float = 0.0,
        dex: str = ""
    ):
        """Log sell trade event"""
        self.logger.info("SELL", extra={'extra_data': {
            'trade_event': True,
            'event_type': 'SELL',
            'mint': mint,
            'token_amount': token_amount,
            'signature': signature,
            'reason': reason,
            'price_usd': price_usd,
            'pnl_usd': pnl_usd,
            'pnl_pct': pnl_pct,
            'hold_time_seconds': hold_time_seconds,
            'dex': dex,
            'timestamp': datetime.now().isoformat()
        }})
