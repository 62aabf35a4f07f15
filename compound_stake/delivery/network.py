"""
Ledger network access for the delivery engine.

LedgerNetwork is the protocol the engine depends on; SolanaLedgerNetwork
implements it on solana-py's AsyncClient with solders transactions.

- get_liveness_token: getLatestBlockhash, minus a safety margin on the valid height.
- simulate: simulateTransaction without signature verification.
- broadcast: sendRawTransaction with preflight skipped (simulation runs separately).
- confirm: polls getSignatureStatuses until the commitment is reached, the
  transaction fails on chain, or the block height passes the token's window
  (a block height source that keeps failing closes the window too).
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, runtime_checkable

from compound_stake.delivery.models import (
    LivenessToken,
    Operation,
    SignedOperation,
    SimulationResult,
)
from compound_stake.logging import get_logger

logger = get_logger(__name__)

# Stop rebroadcasting this many blocks before the blockhash actually expires
LAST_VALID_HEIGHT_MARGIN = 150
DEFAULT_CONFIRM_POLL_INTERVAL_SEC = 2.0
# About LAST_VALID_HEIGHT_MARGIN blocks at 0.4 s per block
DEFAULT_HEIGHT_TIMEOUT_SEC = 60.0
BLOCKHASH_NOT_FOUND = "BlockhashNotFound"


@runtime_checkable
class LedgerNetwork(Protocol):
    async def get_liveness_token(self) -> LivenessToken: ...

    def sign(self, operation: Operation, token: LivenessToken) -> SignedOperation: ...

    async def simulate(self, serialized: bytes) -> SimulationResult: ...

    async def broadcast(self, serialized: bytes) -> str: ...

    async def confirm(self, signature: str, token: LivenessToken, commitment: str | None = None) -> bool: ...

    async def get_block_height(self) -> int: ...

    async def fetch_token_balance(self, token_account: Any) -> int | None: ...


def _accepted_statuses(commitment: str) -> tuple[Any, ...]:
    from solders.transaction_status import TransactionConfirmationStatus

    processed = TransactionConfirmationStatus.Processed
    confirmed = TransactionConfirmationStatus.Confirmed
    finalized = TransactionConfirmationStatus.Finalized
    if commitment == "finalized":
        return (finalized,)
    if commitment == "processed":
        return (processed, confirmed, finalized)
    return (confirmed, finalized)


class SolanaLedgerNetwork:
    """
    LedgerNetwork over Solana JSON-RPC.

    The AsyncClient is created lazily on first use unless one is injected
    (tests pass a mock). Call close() on shutdown.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = "confirmed",
        client: Any | None = None,
        confirm_poll_interval_sec: float = DEFAULT_CONFIRM_POLL_INTERVAL_SEC,
        last_valid_height_margin: int = LAST_VALID_HEIGHT_MARGIN,
        height_timeout_sec: float = DEFAULT_HEIGHT_TIMEOUT_SEC,
    ) -> None:
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        self._rpc_url = rpc_url.strip()
        self._commitment = commitment
        self._client = client
        self._confirm_poll_interval = confirm_poll_interval_sec
        self._margin = last_valid_height_margin
        self._height_timeout = height_timeout_sec

    def _client_ensure(self) -> Any:
        if self._client is None:
            from solana.rpc.async_api import AsyncClient
            from solana.rpc.commitment import Commitment

            self._client = AsyncClient(self._rpc_url, commitment=Commitment(self._commitment))
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def get_liveness_token(self) -> LivenessToken:
        from solana.rpc.commitment import Commitment

        resp = await self._client_ensure().get_latest_blockhash(Commitment(self._commitment))
        value = getattr(resp, "value", None)
        if value is None:
            raise RuntimeError("getLatestBlockhash returned no value")
        token = LivenessToken(
            blockhash=str(value.blockhash),
            last_valid_height=int(value.last_valid_block_height) - self._margin,
        )
        logger.debug(
            "network_liveness_token",
            blockhash=token.blockhash,
            last_valid_height=token.last_valid_height,
        )
        return token

    def sign(self, operation: Operation, token: LivenessToken) -> SignedOperation:
        from solders.compute_budget import set_compute_unit_limit
        from solders.hash import Hash
        from solders.transaction import Transaction

        instructions = list(operation.instructions)
        if operation.compute_unit_limit is not None:
            instructions.insert(0, set_compute_unit_limit(operation.compute_unit_limit))
        tx = Transaction.new_signed_with_payer(
            instructions,
            operation.payer.pubkey(),
            [operation.payer, *operation.extra_signers],
            Hash.from_string(token.blockhash),
        )
        return SignedOperation(serialized=bytes(tx), signature=str(tx.signatures[0]))

    async def simulate(self, serialized: bytes) -> SimulationResult:
        from solders.transaction import Transaction

        tx = Transaction.from_bytes(serialized)
        resp = await self._client_ensure().simulate_transaction(tx, sig_verify=False)
        value = getattr(resp, "value", None)
        if value is None:
            return SimulationResult(ok=False, error="simulateTransaction returned no value")
        err = getattr(value, "err", None)
        units = getattr(value, "units_consumed", None)
        if err is not None:
            text = str(err)
            return SimulationResult(
                ok=False,
                units_consumed=units,
                error=text,
                blockhash_not_found=BLOCKHASH_NOT_FOUND in text,
            )
        return SimulationResult(ok=True, units_consumed=units)

    async def broadcast(self, serialized: bytes) -> str:
        from solana.rpc.models import TxOpts

        resp = await self._client_ensure().send_raw_transaction(
            serialized,
            opts=TxOpts(skip_preflight=True, skip_confirmation=True),
        )
        sig = getattr(resp, "value", None)
        if not sig:
            raise RuntimeError(f"sendRawTransaction returned no signature: {resp}")
        return str(sig)

    async def get_block_height(self) -> int:
        from solana.rpc.commitment import Commitment

        resp = await self._client_ensure().get_block_height(Commitment(self._commitment))
        return int(resp.value)

    async def confirm(self, signature: str, token: LivenessToken, commitment: str | None = None) -> bool:
        """
        True once the signature reaches the commitment level (default: the
        network's); False if it failed on chain, the block height passed
        token.last_valid_height first, or no block height could be read for
        height_timeout_sec. Transient RPC errors keep polling.
        """
        from solders.signature import Signature

        sig = Signature.from_string(signature)
        accepted = _accepted_statuses(commitment or self._commitment)
        client = self._client_ensure()
        loop = asyncio.get_running_loop()
        height_read_at = loop.time()
        while True:
            try:
                resp = await client.get_signature_statuses([sig])
                statuses = getattr(resp, "value", None) or []
                st = statuses[0] if statuses else None
                if st is not None:
                    if getattr(st, "err", None) is not None:
                        logger.warning("network_tx_failed_on_chain", signature=signature, err=str(st.err))
                        return False
                    if getattr(st, "confirmation_status", None) in accepted:
                        return True
                height = await self.get_block_height()
                height_read_at = loop.time()
                if height > token.last_valid_height:
                    logger.debug(
                        "network_confirm_window_expired",
                        signature=signature,
                        block_height=height,
                        last_valid_height=token.last_valid_height,
                    )
                    return False
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("network_confirm_poll_error", signature=signature, error=str(e))
                if loop.time() - height_read_at >= self._height_timeout:
                    logger.warning(
                        "network_confirm_window_unknown",
                        signature=signature,
                        height_timeout_sec=self._height_timeout,
                    )
                    return False
            await asyncio.sleep(self._confirm_poll_interval)

    async def fetch_token_balance(self, token_account: Any) -> int | None:
        """Native token amount, or None when the token account does not exist."""
        from solders.pubkey import Pubkey

        pubkey = token_account if isinstance(token_account, Pubkey) else Pubkey.from_string(str(token_account))
        client = self._client_ensure()
        info = await client.get_account_info(pubkey)
        if getattr(info, "value", None) is None:
            return None
        resp = await client.get_token_account_balance(pubkey)
        value = getattr(resp, "value", None)
        if value is None:
            return None
        return int(value.amount)
