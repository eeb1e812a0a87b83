"""
Custom exception classes for the sniper bot.

Provides typed exceptions so each layer can tell a transient lookup problem
from a bad position or a failed swap.
"""

class BotException(Exception):
    """Base exception for all bot-related errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class TransientLookupFailure(BotException):
    """Price, balance or market-data fetch failed; retry on the next trigger."""
    pass


class InvalidPositionState(BotException):
    """Position data cannot be evaluated (bad invested price, already tracked...)."""
    pass


class NoPositionFound(InvalidPositionState):
    """The ledger has no buy fill for the token."""
    pass


class ExecutionFailure(BotException):
    """A swap attempt failed or timed out."""
    pass


class PolicyViolation(BotException):
    """A buy candidate failed validation and is skipped for good."""
    pass


class DuplicateClaim(BotException):
    """Another evaluation already holds the token's single-flight claim."""
    pass


class ConfigurationError(BotException):
    """Raised when configuration is invalid."""
    pass


class WalletError(BotException):
    """Raised when wallet operations fail."""
    pass
