from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Optional

import base58
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import MemcmpOpts, TokenAccountOpts
from solders.keypair import Keypair  # type: ignore
from solders.pubkey import Pubkey  # type: ignore
from spl.token.instructions import get_associated_token_address

from ..constants import LAMPORTS_PER_SOL, SPL_ACCOUNT_SIZE, TOKEN_PROGRAM
from ..exceptions import TransientLookupFailure, WalletError


def load_keypair(private_key: str) -> Keypair:
    """Keypair from a base58 string or a JSON byte array."""
    if not private_key:
        raise WalletError("SOLANA_PRIVATE_KEY not found in environment")
    try:
        if private_key.strip().startswith("["):
            return Keypair.from_bytes(bytes(json.loads(private_key)))
        return Keypair.from_bytes(base58.b58decode(private_key.strip()))
    except (ValueError, TypeError) as e:
        raise WalletError("Invalid SOLANA_PRIVATE_KEY", error=str(e))


class WalletManager:
    def __init__(self, client: AsyncClient, private_key: str):
        self.client = client
        self.payer = load_keypair(private_key)
        self.pubkey = self.payer.pubkey()
        self.logger = logging.getLogger("pump_sniper.wallet")

    async def get_sol_balance(self) -> float:
        """Returns available SOL balance."""
        try:
            resp = await self.client.get_balance(self.pubkey, commitment=Confirmed)
        except Exception as e:
            raise TransientLookupFailure("SOL balance read failed", error=str(e))
        return (resp.value or 0) / LAMPORTS_PER_SOL

    async def get_token_balance(self, mint_str: str, owner: Optional[Pubkey] = None) -> int:
        """
        Returns token balance (raw amount) summed over every token account the
        owner holds for the mint. DEX routers sometimes create accounts that are
        not the standard ATA, so the ATA alone is not enough.
        """
        owner = owner or self.pubkey
        mint = Pubkey.from_string(mint_str)
        try:
            resp = await self.client.get_token_accounts_by_owner_json_parsed(
                owner, TokenAccountOpts(mint=mint), commitment=Confirmed
            )
        except Exception as e:
            raise TransientLookupFailure("token balance read failed", mint=mint_str[:12], error=str(e))

        total_balance = 0
        for acc in resp.value or []:
            try:
                total_balance += int(acc.account.data.parsed['info']['tokenAmount']['amount'])
            except (KeyError, TypeError):
                continue
        return total_balance

    async def get_token_balances(self) -> dict[str, int]:
        """Raw balance per mint for every SPL token account of the wallet."""
        try:
            resp = await self.client.get_token_accounts_by_owner_json_parsed(
                self.pubkey, TokenAccountOpts(program_id=TOKEN_PROGRAM), commitment=Confirmed
            )
        except Exception as e:
            raise TransientLookupFailure("token accounts read failed", error=str(e))

        balances: dict[str, int] = {}
        for acc in resp.value or []:
            try:
                info = acc.account.data.parsed['info']
                mint = info['mint']
                balances[mint] = balances.get(mint, 0) + int(info['tokenAmount']['amount'])
            except (KeyError, TypeError):
                continue
        return balances

    async def count_holders(self, mint_str: str) -> int:
        """Number of token accounts with a non-zero balance for the mint."""
        try:
            resp = await self.client.get_program_accounts(
                TOKEN_PROGRAM,
                encoding="jsonParsed",
                filters=[SPL_ACCOUNT_SIZE, MemcmpOpts(offset=0, bytes=mint_str)],
            )
        except Exception as e:
            raise TransientLookupFailure("holder count failed", mint=mint_str[:12], error=str(e))

        holders = 0
        for acc in resp.value or []:
            try:
                if int(acc.account.data.parsed['info']['tokenAmount']['amount']) > 0:
                    holders += 1
            except (KeyError, TypeError, AttributeError):
                continue
        return holders

    def get_token_account_address(self, mint_str: str) -> Pubkey:
        return get_associated_token_address(self.pubkey, Pubkey.from_string(mint_str))


class WalletBalanceCache:
    """SOL and token balances refreshed in the background.

    Readers get the last refreshed value; nothing here hits the RPC on read.
    """

    def __init__(self, wallet: WalletManager, refresh_sec: float = 60.0) -> None:
        self.wallet = wallet
        self.refresh_sec = refresh_sec
        self.logger = logging.getLogger("pump_sniper.wallet")
        self._sol_balance: float | None = None
        self._token_balances: dict[str, int] = {}
        self._loaded = False
        self._booked: dict[str, float] = {}
        self._task: asyncio.Task | None = None

    async def refresh(self) -> None:
        started = time.monotonic()
        sol_balance = await self.wallet.get_sol_balance()
        balances = await self.wallet.get_token_balances()

        # Fills booked while the RPC reads were in flight are newer than the snapshot
        for mint, booked_at in self._booked.items():
            if booked_at >= started:
                balances[mint] = self._token_balances.get(mint, 0)
        self._booked = {m: t for m, t in self._booked.items() if t >= started}

        self._sol_balance = sol_balance
        self._token_balances = balances
        self._loaded = True
        self.logger.debug("Wallet refreshed: %.4f SOL, %d token accounts", sol_balance, len(balances))

    async def refresh_token(self, mint: str) -> int:
        amount = await self.wallet.get_token_balance(mint)
        self._set(mint, amount)
        return amount

    def get_sol_balance(self) -> float | None:
        return self._sol_balance

    def get_current_balance(self, mint: str) -> int | None:
        """Cached raw balance; None until the first refresh has completed."""
        if not self._loaded:
            return None
        return self._token_balances.get(mint, 0)

    def tokens_with_balance(self) -> dict[str, int]:
        return {mint: amount for mint, amount in self._token_balances.items() if amount > 0}

    def record_buy(self, mint: str, amount_raw: int, sol_spent: float) -> None:
        self._set(mint, self._token_balances.get(mint, 0) + amount_raw)
        if self._sol_balance is not None:
            self._sol_balance = max(self._sol_balance - sol_spent, 0.0)

    def record_sell(self, mint: str, amount_raw: int) -> None:
        self._set(mint, max(self._token_balances.get(mint, 0) - amount_raw, 0))

    def mark_empty(self, mint: str) -> None:
        self._set(mint, 0)

    def _set(self, mint: str, amount_raw: int) -> None:
        self._token_balances[mint] = amount_raw
        self._booked[mint] = time.monotonic()

    async def start(self) -> None:
        await self._refresh_logged()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_sec)
            await self._refresh_logged()

    async def _refresh_logged(self) -> None:
        try:
            await self.refresh()
        except TransientLookupFailure as e:
            self.logger.warning("Wallet refresh failed: %s", e)
