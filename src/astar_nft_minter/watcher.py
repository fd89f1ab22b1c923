from __future__ import annotations

import asyncio
import enum
import logging
from typing import Optional, Protocol

from .credentials import Credential
from .errors import ChainQueryError, MintError, StoreError, VerificationError
from .mint import MintCoordinator, MintReceipt
from .project_constants import MIN_BALANCE, POLL_INTERVAL_S
from .rpc import ChainClient, to_tokens
from .store import WalletRegistry

log = logging.getLogger(__name__)


class WatchState(str, enum.Enum):
    VERIFYING = "Verifying"
    POLLING = "Polling"
    MINTING = "Minting"
    MINTED = "Minted"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


DONE_STATES = frozenset({WatchState.MINTED, WatchState.FAILED, WatchState.CANCELLED})


class Notifier(Protocol):
    async def send(self, text: str) -> bool:
        ...


class WatcherHandle:
    """
    Liveness flag and observable lifecycle of one watcher task.

    `cancel()` only clears liveness; the watcher notices at its next poll
    boundary (the interval sleep wakes early on cancellation).
    """

    def __init__(self, address: str) -> None:
        self.address = address
        self.state = WatchState.VERIFYING
        self.reason: Optional[str] = None
        self.receipt: Optional[MintReceipt] = None
        self.task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()

    def __repr__(self) -> str:
        return f"WatcherHandle({self.address!r}, state={self.state.value}, live={self.live})"

    @property
    def live(self) -> bool:
        return not self._stopped.is_set()

    @property
    def done(self) -> bool:
        return self.state in DONE_STATES

    def cancel(self) -> None:
        self._stopped.set()

    def finish(self, state: WatchState, reason: Optional[str] = None) -> WatchState:
        self.state = state
        self.reason = reason
        return state

    async def sleep(self, seconds: float) -> bool:
        """Waits up to `seconds`; returns True if woken by cancellation."""
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait(self) -> WatchState:
        if self.task is not None:
            await asyncio.shield(self.task)
        return self.state


class BalanceWatcher:
    """Verifying -> Polling -> Minting -> Minted | Failed | Cancelled."""

    def __init__(
        self,
        chain: ChainClient,
        coordinator: MintCoordinator,
        registry: WalletRegistry,
        threshold: int = MIN_BALANCE,
        poll_interval_s: float = POLL_INTERVAL_S,
    ) -> None:
        self.chain = chain
        self.coordinator = coordinator
        self.registry = registry
        self.threshold = threshold
        self.poll_interval_s = poll_interval_s

    async def run(self, handle: WatcherHandle, credential: Credential, notifier: Notifier) -> WatchState:
        address = handle.address

        handle.state = WatchState.VERIFYING
        try:
            await self.chain.verify_signing(credential)
        except VerificationError as e:
            log.warning("Verification failed for %s: %s", address, e)
            await notifier.send(f"❌ Wallet {address} failed verification")
            return handle.finish(WatchState.FAILED, str(e))

        if not handle.live:
            log.info("Stopped monitoring %s before the first balance check", address)
            return handle.finish(WatchState.CANCELLED, "stopped by operator")

        handle.state = WatchState.POLLING
        balance_text = await self._describe_balance(address)
        log.info("Monitoring wallet %s | ASTR balance: %s", address, balance_text)
        await notifier.send(f"📡 Monitoring wallet {address}\n💰 Current ASTR Balance: {balance_text}")

        if not await self._poll_until_funded(handle):
            log.info("Stopped monitoring %s", address)
            return handle.finish(WatchState.CANCELLED, "stopped by operator")

        handle.state = WatchState.MINTING
        log.info("%s has %s+ ASTR, minting NFT", address, to_tokens(self.threshold))
        try:
            receipt = await self.coordinator.mint(credential)
        except MintError as e:
            log.error("Mint failed for %s: %s", address, e)
            await notifier.send(f"❌ Mint error for {address}: {e}")
            return handle.finish(WatchState.FAILED, str(e))
        handle.receipt = receipt

        message = f"✅ Minted NFT from {receipt.contract_address} for wallet {address}"
        try:
            await asyncio.to_thread(self.registry.mark_minted, address)
        except StoreError as e:
            log.error("Minted %s but could not record it: %s", address, e)
            message += "\n⚠️ Could not record the mint in the database"
        await notifier.send(message)
        return handle.finish(WatchState.MINTED, receipt.tx_hash)

    async def _poll_until_funded(self, handle: WatcherHandle) -> bool:
        """Returns True once the threshold is crossed, False when cancelled."""
        while handle.live:
            try:
                balance = await self.chain.get_balance(handle.address)
            except ChainQueryError as e:
                log.warning("Balance check failed for %s: %s", handle.address, e)
            else:
                log.debug("%s balance %s ASTR", handle.address, to_tokens(balance))
                # A stop that arrived during the query still wins over minting.
                if balance >= self.threshold and handle.live:
                    return True
            await handle.sleep(self.poll_interval_s)
        return False

    async def _describe_balance(self, address: str) -> str:
        try:
            return f"{to_tokens(await self.chain.get_balance(address)):f}"
        except ChainQueryError as e:
            log.warning("Could not read initial balance for %s: %s", address, e)
            return "unavailable"
