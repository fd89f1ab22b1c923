from __future__ import annotations

import asyncio
import logging
import threading
from functools import partial
from typing import Dict, List, Optional

from .credentials import Credential
from .watcher import BalanceWatcher, Notifier, WatcherHandle, WatchState

log = logging.getLogger(__name__)


class MonitorScheduler:
    """
    Owns the running watcher tasks, at most one live watcher per address.

    Every read or write of the handle map happens under one lock, so a
    repeated start can never launch a second watcher and a stop can never
    be lost.
    """

    def __init__(self, watcher: BalanceWatcher) -> None:
        self.watcher = watcher
        self._handles: Dict[str, WatcherHandle] = {}
        self._lock = threading.Lock()

    def start(self, address: str, credential: Credential, notifier: Notifier) -> WatcherHandle:
        """Must be called from inside the running event loop."""
        loop = asyncio.get_running_loop()
        with self._lock:
            existing = self._handles.get(address)
            if existing is not None and existing.live:
                log.info("Wallet %s is already being monitored", address)
                return existing

            handle = WatcherHandle(address)
            handle.task = loop.create_task(
                self._supervise(handle, credential, notifier), name=f"watch-{address}"
            )
            handle.task.add_done_callback(partial(self._on_done, handle))
            self._handles[address] = handle
        log.debug("Started watcher for %s", address)
        return handle

    def stop(self, address: str) -> bool:
        with self._lock:
            handle = self._handles.get(address)
            if handle is None:
                return False
            handle.cancel()
        log.debug("Requested stop for %s", address)
        return True

    def get(self, address: str) -> Optional[WatcherHandle]:
        with self._lock:
            return self._handles.get(address)

    def is_monitoring(self, address: str) -> bool:
        with self._lock:
            handle = self._handles.get(address)
            return handle is not None and handle.live

    def active_addresses(self) -> List[str]:
        with self._lock:
            return [a for a, h in self._handles.items() if h.live]

    async def shutdown(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
        for handle in handles:
            handle.cancel()
        tasks = [h.task for h in handles if h.task is not None]
        if tasks:
            log.info("Waiting for %d watcher(s) to stop...", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _supervise(self, handle: WatcherHandle, credential: Credential, notifier: Notifier) -> WatchState:
        try:
            return await self.watcher.run(handle, credential, notifier)
        except Exception as e:
            log.error("Watcher for %s crashed", handle.address, exc_info=True)
            handle.cancel()
            handle.finish(WatchState.FAILED, repr(e))
            await notifier.send(f"❌ Monitoring {handle.address} stopped unexpectedly: {e}")
            return handle.state

    def _on_done(self, handle: WatcherHandle, task: asyncio.Task) -> None:
        with self._lock:
            # A stopped handle may already have been replaced by a fresh start.
            if self._handles.get(handle.address) is handle:
                del self._handles[handle.address]

        if task.cancelled():
            handle.finish(WatchState.CANCELLED, "task cancelled")
        log.info("Watcher for %s finished: %s", handle.address, handle.state.value)
