"""Swap venues: PumpPortal local trades on the bonding curve, Jupiter routes
for graduated tokens, and burn-and-close for dust balances.

Every venue builds an unsigned (or re-signable) transaction, hands it to the
TransactionSender and returns a Fill. Failures raise ExecutionFailure.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import TYPE_CHECKING

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.message import MessageV0  # type: ignore
from solders.pubkey import Pubkey  # type: ignore
from solders.signature import Signature  # type: ignore
from solders.transaction import VersionedTransaction  # type: ignore
from solders.transaction_status import TransactionConfirmationStatus  # type: ignore
from spl.token.instructions import BurnParams, CloseAccountParams, burn, close_account

from pump_sniper.config import Settings
from pump_sniper.constants import LAMPORTS_PER_SOL, SOL_MINT, TOKEN_PROGRAM, TX_CONFIRMATION_TIMEOUT
from pump_sniper.core.models import Fill, Side, SwapRequest, Venue, to_ui_amount
from pump_sniper.exceptions import ExecutionFailure, TransientLookupFailure

if TYPE_CHECKING:
    from pump_sniper.core.price_oracle import PriceOracle
    from pump_sniper.core.wallet import WalletManager

CONFIRMED_STATUSES = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)


class TransactionSender:
    """Signs, submits (Jito bundle or plain RPC) and confirms transactions.

    RPC submission and confirmation go through the solana AsyncClient; only
    the Jito bundle endpoint is called over plain HTTP.
    """

    def __init__(
        self,
        settings: Settings,
        wallet: "WalletManager",
        rpc: AsyncClient,
        client: httpx.AsyncClient,
    ) -> None:
        self.settings = settings
        self.wallet = wallet
        self.rpc = rpc
        self.client = client
        self.logger = logging.getLogger("pump_sniper.sender")
        self.jito_bundle_url = settings.JITO_BLOCK_ENGINE_URL.rstrip("/") + "/api/v1/bundles"

    def sign(self, tx_bytes: bytes) -> VersionedTransaction:
        try:
            tx = VersionedTransaction.from_bytes(tx_bytes)
            return VersionedTransaction(tx.message, [self.wallet.payer])
        except ValueError as e:
            raise ExecutionFailure("transaction signing failed", error=str(e))

    async def send(self, tx_bytes: bytes, use_jito: bool | None = None) -> str:
        """Sign, submit and wait for confirmation. Returns the signature."""
        signed = self.sign(tx_bytes)
        signature = str(signed.signatures[0])
        raw = bytes(signed)

        if use_jito is None:
            use_jito = self.settings.JITO_ENABLED
        if use_jito:
            await self._submit_via_jito(raw)
        else:
            await self._submit_via_rpc(raw)

        await self.confirm(signature)
        return signature

    async def confirm(self, signature: str, timeout_sec: float = TX_CONFIRMATION_TIMEOUT) -> None:
        """Poll signature status until confirmed. Raises ExecutionFailure on error or timeout."""
        deadline = time.monotonic() + timeout_sec
        sig = Signature.from_string(signature)

        while time.monotonic() < deadline:
            try:
                response = await self.rpc.get_signature_statuses([sig], search_transaction_history=True)
                status = response.value[0] if response.value else None
            except Exception as e:
                self.logger.debug("Signature confirmation error: %s", e)
                status = None

            if status is not None:
                if status.err is not None:
                    raise ExecutionFailure("transaction failed on chain", sig=signature[:16], err=str(status.err))
                if status.confirmation_status in CONFIRMED_STATUSES:
                    return
            await asyncio.sleep(0.5)

        raise ExecutionFailure("confirmation timed out", sig=signature[:16], timeout=timeout_sec)

    async def _submit_via_jito(self, raw: bytes) -> None:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendBundle",
            "params": [[base64.b64encode(raw).decode()], {"encoding": "base64"}],
        }
        try:
            response = await self.client.post(self.jito_bundle_url, json=payload)
            response.raise_for_status()
            bundle_id = response.json().get("result")
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning("Jito submission failed (%s), falling back to RPC", e)
            await self._submit_via_rpc(raw)
            return

        if not bundle_id:
            self.logger.warning("Jito returned no bundle id, falling back to RPC")
            await self._submit_via_rpc(raw)
            return
        self.logger.debug("Jito bundle submitted: %s", bundle_id)

    async def _submit_via_rpc(self, raw: bytes) -> None:
        try:
            result = await self.rpc.send_raw_transaction(
                raw, opts=TxOpts(skip_preflight=True, preflight_commitment=Confirmed, max_retries=3)
            )
        except (RPCException, SolanaRpcException, httpx.HTTPError) as e:
            raise ExecutionFailure("RPC rejected transaction", error=str(e))
        self.logger.debug("Submitted via RPC: %s", result.value)


class PumpPortalVenue:
    """Bonding-curve trades built by the PumpPortal local-trade API."""

    venue = Venue.PUMPFUN

    def __init__(
        self,
        settings: Settings,
        sender: TransactionSender,
        oracle: "PriceOracle",
        client: httpx.AsyncClient,
    ) -> None:
        self.settings = settings
        self.sender = sender
        self.oracle = oracle
        self.client = client
        self.logger = logging.getLogger("pump_sniper.venue.pumpportal")

    async def swap(self, request: SwapRequest) -> Fill:
        try:
            curve = await self.oracle.get_bonding_curve(request.token_id)
        except TransientLookupFailure as e:
            raise ExecutionFailure("bonding curve unavailable", mint=request.token_id[:12], error=str(e))
        if curve is None or curve.complete or not curve.is_priceable:
            raise ExecutionFailure("token is not on the bonding curve", mint=request.token_id[:12])

        sol_price = await self.oracle.get_sol_price()
        is_buy = request.side == Side.BUY
        payload = {
            "publicKey": str(self.sender.wallet.pubkey),
            "action": "buy" if is_buy else "sell",
            "mint": request.token_id,
            "amount": request.amount_sol if is_buy else ("100%" if request.sell_all else request.amount_ui),
            "denominatedInSol": "true" if is_buy else "false",
            "slippage": request.slippage_pct,
            "priorityFee": request.priority_fee_sol + request.tip_sol,
            "pool": "pump",
        }

        try:
            response = await self.client.post(self.settings.PUMPPORTAL_TRADE_URL, data=payload)
        except httpx.HTTPError as e:
            raise ExecutionFailure("PumpPortal request failed", mint=request.token_id[:12], error=str(e))
        if response.status_code != 200:
            raise ExecutionFailure(
                "PumpPortal rejected trade", mint=request.token_id[:12], status=response.status_code
            )

        signature = await self.sender.send(response.content)
        fee_usd = (request.tip_sol + request.priority_fee_sol) * sol_price

        if is_buy:
            lamports = int(request.amount_sol * LAMPORTS_PER_SOL)
            tokens_raw = curve.buy_quote(lamports)
            tokens_ui = to_ui_amount(tokens_raw)
            price_usd = request.amount_sol / tokens_ui * sol_price if tokens_ui > 0 else curve.price_usd(sol_price)
            return Fill(
                request.token_id, Side.BUY, True, price_usd, tokens_raw, tokens_ui,
                signature, self.venue, fee_usd, timestamp=time.time(),
            )

        sol_out = curve.sell_quote(request.amount_raw) / LAMPORTS_PER_SOL
        price_usd = sol_out * sol_price / request.amount_ui if request.amount_ui > 0 else 0.0
        return Fill(
            request.token_id, Side.SELL, True, price_usd or curve.price_usd(sol_price),
            request.amount_raw, sol_out, signature, self.venue, fee_usd, timestamp=time.time(),
        )


class JupiterVenue:
    """Pool trades for tokens that left the bonding curve, routed by Jupiter."""

    venue = Venue.RAYDIUM

    def __init__(
        self,
        settings: Settings,
        sender: TransactionSender,
        oracle: "PriceOracle",
        client: httpx.AsyncClient,
    ) -> None:
        self.settings = settings
        self.sender = sender
        self.oracle = oracle
        self.client = client
        self.logger = logging.getLogger("pump_sniper.venue.jupiter")
        self.base_url = settings.JUPITER_QUOTE_API_BASE.rstrip("/")
        self.headers = {"x-api-key": settings.JUPITER_API_KEY} if settings.JUPITER_API_KEY else None

    async def swap(self, request: SwapRequest) -> Fill:
        is_buy = request.side == Side.BUY
        if is_buy:
            input_mint, output_mint = SOL_MINT, request.token_id
            amount = int(request.amount_sol * LAMPORTS_PER_SOL)
        else:
            input_mint, output_mint = request.token_id, SOL_MINT
            amount = request.amount_raw
        if amount <= 0:
            raise ExecutionFailure("nothing to swap", mint=request.token_id[:12])

        quote = await self._get_quote(input_mint, output_mint, amount, int(request.slippage_pct * 100))
        swap_tx = await self._build_swap_transaction(quote, request)
        signature = await self.sender.send(swap_tx)

        sol_price = await self.oracle.get_sol_price()
        out_amount = int(quote.get("outAmount", 0))
        fee_usd = (request.tip_sol + request.priority_fee_sol) * sol_price

        if is_buy:
            tokens_ui = to_ui_amount(out_amount)
            price_usd = request.amount_sol / tokens_ui * sol_price if tokens_ui > 0 else 0.0
            return Fill(
                request.token_id, Side.BUY, True, price_usd, out_amount, tokens_ui,
                signature, self.venue, fee_usd, timestamp=time.time(),
            )

        sol_out = out_amount / LAMPORTS_PER_SOL
        price_usd = sol_out * sol_price / request.amount_ui if request.amount_ui > 0 else 0.0
        return Fill(
            request.token_id, Side.SELL, True, price_usd, request.amount_raw, sol_out,
            signature, self.venue, fee_usd, timestamp=time.time(),
        )

    async def _get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> dict:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "onlyDirectRoutes": "false",
        }
        try:
            response = await self.client.get(f"{self.base_url}/quote", params=params, headers=self.headers)
            response.raise_for_status()
            quote = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ExecutionFailure("Jupiter quote failed", mint=output_mint[:12], error=str(e))

        if not quote or not quote.get("outAmount"):
            raise ExecutionFailure("Jupiter found no route", input=input_mint[:12], output=output_mint[:12])
        self.logger.debug(
            "Jupiter quote: in=%s out=%s hops=%d",
            quote.get("inAmount"), quote.get("outAmount"), len(quote.get("routePlan", [])),
        )
        return quote

    async def _build_swap_transaction(self, quote: dict, request: SwapRequest) -> bytes:
        payload = {
            "quoteResponse": quote,
            "userPublicKey": str(self.sender.wallet.pubkey),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }
        if request.tip_sol > 0 and self.settings.JITO_ENABLED:
            payload["prioritizationFeeLamports"] = {"jitoTipLamports": int(request.tip_sol * LAMPORTS_PER_SOL)}
        else:
            payload["computeUnitPriceMicroLamports"] = int(request.priority_fee_sol * LAMPORTS_PER_SOL) * 1000
        try:
            response = await self.client.post(f"{self.base_url}/swap", json=payload, headers=self.headers)
            response.raise_for_status()
            swap_tx_b64 = response.json().get("swapTransaction")
        except (httpx.HTTPError, ValueError) as e:
            raise ExecutionFailure("Jupiter swap build failed", error=str(e))
        if not swap_tx_b64:
            raise ExecutionFailure("Jupiter returned no transaction")
        return base64.b64decode(swap_tx_b64)


class TokenBurner:
    """Burns a dust balance and closes the token account to reclaim rent."""

    venue = Venue.BURN

    def __init__(self, rpc: AsyncClient, sender: TransactionSender, oracle: "PriceOracle") -> None:
        self.rpc = rpc
        self.sender = sender
        self.oracle = oracle
        self.logger = logging.getLogger("pump_sniper.venue.burn")

    async def swap(self, request: SwapRequest) -> Fill:
        wallet = self.sender.wallet
        mint = Pubkey.from_string(request.token_id)
        account = wallet.get_token_account_address(request.token_id)

        instructions = []
        if request.amount_raw > 0:
            instructions.append(burn(BurnParams(
                program_id=TOKEN_PROGRAM,
                account=account,
                mint=mint,
                owner=wallet.pubkey,
                amount=request.amount_raw,
            )))
        instructions.append(close_account(CloseAccountParams(
            program_id=TOKEN_PROGRAM,
            account=account,
            dest=wallet.pubkey,
            owner=wallet.pubkey,
        )))

        try:
            blockhash = (await self.rpc.get_latest_blockhash()).value.blockhash
        except Exception as e:
            raise ExecutionFailure("blockhash unavailable", error=str(e))

        message = MessageV0.try_compile(wallet.pubkey, instructions, [], blockhash)
        tx = VersionedTransaction(message, [wallet.payer])
        signature = await self.sender.send(bytes(tx), use_jito=False)

        self.logger.info("🔥 Burned %.6f %s and closed account", request.amount_ui, request.token_id[:12])
        return Fill(
            request.token_id, Side.SELL, True, self.oracle.cached_price(request.token_id),
            request.amount_raw, 0.0, signature, self.venue, burned=True, timestamp=time.time(),
        )
