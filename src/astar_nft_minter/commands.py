from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Protocol

from .credentials import Credential
from .errors import ChainQueryError, MinterError
from .project_constants import EXPORT_FILENAME
from .rpc import ChainClient, to_tokens
from .scheduler import MonitorScheduler
from .store import WalletRecord, WalletRegistry, WalletStatus

log = logging.getLogger(__name__)

HELP_TEXT = (
    "/generate_wallets [count] - create wallets and start monitoring them\n"
    "/check_balance - show the ASTR balance of every active wallet\n"
    "/export_wallets - download active wallets as CSV\n"
    "/remove_wallet <address> - stop monitoring a wallet"
)


class Reply(Protocol):
    async def send(self, text: str) -> bool:
        ...

    async def send_document(self, path: Path, filename: str) -> None:
        ...


def render_wallets_csv(records: Iterable[WalletRecord]) -> str:
    lines = ["Address,PrivateKey,Minted"]
    for r in records:
        key = r.credential.private_key if r.credential else ""
        lines.append(f"{r.address},{key},{'TRUE' if r.minted else 'FALSE'}")
    return "\n".join(lines)


def parse_count(args: List[str]) -> int:
    if not args:
        return 1
    count = int(args[0])
    if count < 1:
        raise ValueError(f"count must be at least 1, got {count}")
    return count


class CommandHandler:
    def __init__(self, registry: WalletRegistry, scheduler: MonitorScheduler, chain: ChainClient) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.chain = chain
        self._commands: Dict[str, Callable[[Reply, List[str]], Awaitable[None]]] = {
            "start": self.help,
            "help": self.help,
            "generate_wallets": self.generate_wallets,
            "check_balance": self.check_balance,
            "export_wallets": self.export_wallets,
            "remove_wallet": self.remove_wallet,
        }

    async def dispatch(self, chat: Reply, name: str, args: List[str]) -> None:
        command = self._commands.get(name)
        if command is None:
            await chat.send(f"Unknown command /{name}. Try /help")
            return
        try:
            await command(chat, args)
        except MinterError as e:
            log.error("/%s failed: %s", name, e)
            await chat.send(f"⚠️ /{name} failed: {e}")

    async def help(self, chat: Reply, args: List[str]) -> None:
        await chat.send(HELP_TEXT)

    async def generate_wallets(self, chat: Reply, args: List[str]) -> None:
        try:
            count = parse_count(args)
        except ValueError:
            await chat.send("⚠️ Usage: /generate_wallets [count], count is a positive number")
            return

        created = 0
        for _ in range(count):
            credential = Credential.generate()
            try:
                record = await asyncio.to_thread(self.registry.create, credential.address, credential)
            except MinterError as e:
                # Never monitor a wallet whose key did not persist.
                log.error("Could not store wallet %s: %s", credential.address, e)
                await chat.send(f"⚠️ Could not store wallet {credential.address}: {e}")
                continue

            log.info("Wallet created: %s", record.address)
            self._start_monitoring(record, credential, chat)
            await chat.send(f"📅 Wallet created: {record.address}")
            created += 1

        summary = f"✅ Generated and monitoring {created} wallet(s)"
        if created < count:
            summary += f" ({count - created} failed)"
        await chat.send(summary)

    async def check_balance(self, chat: Reply, args: List[str]) -> None:
        records = await asyncio.to_thread(self.registry.list_active)
        if not records:
            await chat.send("📭 No active wallets to check.")
            return

        for record in records:
            if record.credential is None or not record.credential.is_valid():
                log.warning("Skipping %s: missing or invalid private key", record.address)
                continue
            try:
                balance = await self.chain.get_balance(record.address)
            except ChainQueryError as e:
                log.warning("Failed to check balance for %s: %s", record.address, e)
                continue
            await chat.send(f"💼 {record.address} → {to_tokens(balance):f} ASTR")

    async def export_wallets(self, chat: Reply, args: List[str]) -> None:
        records = await asyncio.to_thread(self.registry.list_active)
        if not records:
            await chat.send("📍 No wallets to export.")
            return

        with tempfile.TemporaryDirectory(prefix="wallet-export-") as tmp:
            path = Path(tmp) / EXPORT_FILENAME
            path.write_text(render_wallets_csv(records), encoding="utf-8")
            log.info("Exported %d wallet(s) to %s", len(records), path)
            await chat.send_document(path, EXPORT_FILENAME)

    async def remove_wallet(self, chat: Reply, args: List[str]) -> None:
        if not args:
            await chat.send("⚠️ Provide wallet address: /remove_wallet <address>")
            return

        record = await asyncio.to_thread(self.registry.get, args[0])
        if record is None:
            self.scheduler.stop(args[0])
            log.warning("remove_wallet: %s is not a stored wallet", args[0])
            await chat.send(f"⚠️ Wallet {args[0]} not found")
            return

        # Watchers are keyed by the stored spelling of the address.
        address = record.address
        self.scheduler.stop(address)
        await asyncio.to_thread(self.registry.mark_removed, address)

        log.info("Removed wallet %s from monitoring", address)
        await chat.send(f"❌ Wallet {address} removed from monitoring")

    def _start_monitoring(self, record: WalletRecord, credential: Credential, chat: Reply) -> None:
        # Minted and removed wallets must never get a watcher again.
        if record.status is not WalletStatus.CREATED:
            log.info("Not monitoring %s: wallet is %s", record.address, record.status.value)
            return
        self.scheduler.start(record.address, credential, chat)
