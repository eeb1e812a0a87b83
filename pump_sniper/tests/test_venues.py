"""Tests for TransactionSender submission and confirmation over the solana client"""
from types import SimpleNamespace

import pytest
from solana.rpc.core import RPCException
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from pump_sniper.config import Settings
from pump_sniper.core.venues import TransactionSender
from pump_sniper.exceptions import ExecutionFailure

SIGNATURE = str(Signature.default())


class FakeRpc:
    """Serves scripted signature statuses and records raw submissions."""

    def __init__(self, statuses=None):
        self.statuses = list(statuses or [])
        self.submitted: list[bytes] = []
        self.reject = False

    async def get_signature_statuses(self, signatures, search_transaction_history=False):
        status = self.statuses.pop(0) if self.statuses else None
        return SimpleNamespace(value=[status])

    async def send_raw_transaction(self, raw, opts=None):
        if self.reject:
            raise RPCException("Blockhash not found")
        self.submitted.append(raw)
        return SimpleNamespace(value=SIGNATURE)


def status(confirmation=TransactionConfirmationStatus.Confirmed, err=None):
    return SimpleNamespace(err=err, confirmation_status=confirmation)


def sender_for(rpc):
    return TransactionSender(Settings(JITO_ENABLED=False), wallet=None, rpc=rpc, client=None)


class TestConfirm:
    async def test_confirmed(self):
        rpc = FakeRpc([status()])
        await sender_for(rpc).confirm(SIGNATURE)

    async def test_waits_through_processed(self):
        """A processed status keeps polling until the cluster confirms"""
        rpc = FakeRpc([status(TransactionConfirmationStatus.Processed), status(TransactionConfirmationStatus.Finalized)])
        await sender_for(rpc).confirm(SIGNATURE, timeout_sec=5)
        assert rpc.statuses == []

    async def test_on_chain_error(self):
        rpc = FakeRpc([status(err="InstructionError")])
        with pytest.raises(ExecutionFailure) as info:
            await sender_for(rpc).confirm(SIGNATURE)
        assert "failed on chain" in info.value.message

    async def test_timeout(self):
        """An unknown signature is a failure once the deadline passes"""
        with pytest.raises(ExecutionFailure) as info:
            await sender_for(FakeRpc()).confirm(SIGNATURE, timeout_sec=0.1)
        assert "timed out" in info.value.message


class TestSubmit:
    async def test_rpc_submission(self):
        rpc = FakeRpc()
        await sender_for(rpc)._submit_via_rpc(b"signed-tx")
        assert rpc.submitted == [b"signed-tx"]

    async def test_rpc_rejection_is_execution_failure(self):
        rpc = FakeRpc()
        rpc.reject = True
        with pytest.raises(ExecutionFailure):
            await sender_for(rpc)._submit_via_rpc(b"signed-tx")
