from __future__ import annotations

import asyncio

from astar_nft_minter.commands import CommandHandler, render_wallets_csv
from astar_nft_minter.credentials import Credential
from astar_nft_minter.errors import ChainQueryError, StoreError
from astar_nft_minter.project_constants import MIN_BALANCE
from astar_nft_minter.scheduler import MonitorScheduler
from astar_nft_minter.store import WalletRecord, WalletRow, WalletStatus
from fakes import FakeChat, wait_until


class IdleWatcher:
    def __init__(self) -> None:
        self.runs: list[str] = []

    async def run(self, handle, credential, notifier):
        self.runs.append(handle.address)
        while handle.live:
            await handle.sleep(30)


def _record(address: str, key: str, minted: bool) -> WalletRecord:
    status = WalletStatus.MINTED if minted else WalletStatus.CREATED
    return WalletRecord(address, Credential(address, key), status, None)


def test_render_wallets_csv() -> None:
    records = [_record("A1", "K1", False), _record("A2", "K2", True)]
    assert render_wallets_csv(records) == "Address,PrivateKey,Minted\nA1,K1,FALSE\nA2,K2,TRUE"


def test_generate_wallets_creates_records_and_watchers(registry, chain) -> None:
    watcher = IdleWatcher()
    scheduler = MonitorScheduler(watcher)
    handler = CommandHandler(registry, scheduler, chain)
    chat = FakeChat()

    async def scenario():
        await handler.dispatch(chat, "generate_wallets", ["2"])
        await wait_until(lambda: len(watcher.runs) == 2)
        active = sorted(scheduler.active_addresses())
        await scheduler.shutdown()
        return active

    active = asyncio.run(scenario())
    records = registry.list_active()
    assert len(records) == 2
    assert all(r.status is WalletStatus.CREATED for r in records)
    assert sorted(r.address for r in records) == active
    assert sorted(watcher.runs) == active
    assert chat.messages[:2] == [f"📅 Wallet created: {r.address}" for r in records]
    assert chat.messages[-1] == "✅ Generated and monitoring 2 wallet(s)"


def test_generate_wallets_defaults_to_one(registry, chain) -> None:
    scheduler = MonitorScheduler(IdleWatcher())
    handler = CommandHandler(registry, scheduler, chain)

    async def scenario():
        await handler.dispatch(FakeChat(), "generate_wallets", [])
        await scheduler.shutdown()

    asyncio.run(scenario())
    assert len(registry.list_active()) == 1


def test_generate_wallets_rejects_bad_count(registry, chain) -> None:
    handler = CommandHandler(registry, MonitorScheduler(IdleWatcher()), chain)
    chat = FakeChat()

    asyncio.run(handler.dispatch(chat, "generate_wallets", ["lots"]))
    asyncio.run(handler.dispatch(chat, "generate_wallets", ["0"]))

    assert all(m.startswith("⚠️ Usage: /generate_wallets") for m in chat.messages)
    assert registry.list_active() == []


def test_generate_wallets_does_not_monitor_unsaved_wallets(registry, chain, monkeypatch) -> None:
    def broken_create(address, credential):
        raise StoreError("connection refused")

    monkeypatch.setattr(registry, "create", broken_create)
    watcher = IdleWatcher()
    scheduler = MonitorScheduler(watcher)
    handler = CommandHandler(registry, scheduler, chain)
    chat = FakeChat()

    asyncio.run(handler.dispatch(chat, "generate_wallets", ["2"]))

    assert watcher.runs == []
    assert scheduler.active_addresses() == []
    assert sum("Could not store wallet" in m for m in chat.messages) == 2
    assert chat.messages[-1] == "✅ Generated and monitoring 0 wallet(s) (2 failed)"


def test_check_balance_skips_missing_credentials(registry, chain) -> None:
    good = Credential.generate()
    broken = Credential.generate()
    registry.create(good.address, good)
    registry.create(broken.address, broken)
    with registry._sessions.begin() as session:
        session.add(WalletRow(address="0xnokey", privatekey=None))
        row = session.query(WalletRow).filter_by(address=broken.address).one()
        row.privatekey = "not-a-key"
    chain.script(good.address, [15 * 10**18])
    handler = CommandHandler(registry, MonitorScheduler(IdleWatcher()), chain)
    chat = FakeChat()

    asyncio.run(handler.dispatch(chat, "check_balance", []))

    assert chat.messages == [f"💼 {good.address} → 15 ASTR"]
    assert set(chain.calls) == {good.address}


def test_check_balance_keeps_going_after_rpc_failure(registry, chain) -> None:
    first, second = Credential.generate(), Credential.generate()
    registry.create(first.address, first)
    registry.create(second.address, second)
    chain.script(first.address, [ChainQueryError("503")])
    chain.script(second.address, [MIN_BALANCE])
    handler = CommandHandler(registry, MonitorScheduler(IdleWatcher()), chain)
    chat = FakeChat()

    asyncio.run(handler.dispatch(chat, "check_balance", []))

    assert chat.messages == [f"💼 {second.address} → 10 ASTR"]


def test_check_balance_with_no_wallets(registry, chain) -> None:
    handler = CommandHandler(registry, MonitorScheduler(IdleWatcher()), chain)
    chat = FakeChat()
    asyncio.run(handler.dispatch(chat, "check_balance", []))
    assert chat.messages == ["📭 No active wallets to check."]


def test_export_wallets_sends_csv_and_deletes_it(registry, chain) -> None:
    first, second = Credential.generate(), Credential.generate()
    registry.create(first.address, first)
    registry.create(second.address, second)
    registry.mark_minted(second.address)
    handler = CommandHandler(registry, MonitorScheduler(IdleWatcher()), chain)
    chat = FakeChat()

    asyncio.run(handler.dispatch(chat, "export_wallets", []))

    (path, filename, content), = chat.documents
    assert filename == "wallets.csv"
    assert content == (
        "Address,PrivateKey,Minted\n"
        f"{first.address},{first.private_key},FALSE\n"
        f"{second.address},{second.private_key},TRUE"
    )
    assert not path.exists()


def test_export_wallets_with_no_wallets(registry, chain) -> None:
    handler = CommandHandler(registry, MonitorScheduler(IdleWatcher()), chain)
    chat = FakeChat()
    asyncio.run(handler.dispatch(chat, "export_wallets", []))
    assert chat.messages == ["📍 No wallets to export."]
    assert chat.documents == []


def test_remove_wallet_requires_an_address(registry, chain) -> None:
    credential = Credential.generate()
    registry.create(credential.address, credential)
    handler = CommandHandler(registry, MonitorScheduler(IdleWatcher()), chain)
    chat = FakeChat()

    asyncio.run(handler.dispatch(chat, "remove_wallet", []))

    assert chat.messages == ["⚠️ Provide wallet address: /remove_wallet <address>"]
    assert registry.get(credential.address).status is WalletStatus.CREATED


def test_remove_wallet_stops_watcher_and_marks_removed(registry, chain, make_watcher, claimer) -> None:
    scheduler = MonitorScheduler(make_watcher(poll_interval_s=60))
    handler = CommandHandler(registry, scheduler, chain)
    chat = FakeChat()

    async def scenario():
        await handler.dispatch(chat, "generate_wallets", ["1"])
        (address,) = scheduler.active_addresses()
        handle = scheduler.get(address)
        await wait_until(lambda: chain.calls.get(address, 0) >= 2)
        # Funding arrives right as the operator removes the wallet.
        chain.script(address, [MIN_BALANCE])
        await handler.dispatch(chat, "remove_wallet", [address])
        await asyncio.wait_for(handle.wait(), 1)
        return address, handle

    address, handle = asyncio.run(scenario())
    assert handle.state.value == "Cancelled"
    assert claimer.calls == []
    assert registry.get(address).status is WalletStatus.REMOVED
    assert registry.list_active() == []
    assert chat.messages[-1] == f"❌ Wallet {address} removed from monitoring"


def test_unknown_command_gets_a_hint(registry, chain) -> None:
    handler = CommandHandler(registry, MonitorScheduler(IdleWatcher()), chain)
    chat = FakeChat()
    asyncio.run(handler.dispatch(chat, "mint_everything", []))
    assert chat.messages == ["Unknown command /mint_everything. Try /help"]


def test_store_errors_are_reported_to_the_operator(registry, chain, monkeypatch) -> None:
    def broken_list():
        raise StoreError("list active wallets: server closed the connection")

    monkeypatch.setattr(registry, "list_active", broken_list)
    handler = CommandHandler(registry, MonitorScheduler(IdleWatcher()), chain)
    chat = FakeChat()

    asyncio.run(handler.dispatch(chat, "export_wallets", []))

    assert chat.messages == ["⚠️ /export_wallets failed: list active wallets: server closed the connection"]


def test_remove_wallet_matches_address_case_insensitively(registry, chain) -> None:
    watcher = IdleWatcher()
    scheduler = MonitorScheduler(watcher)
    handler = CommandHandler(registry, scheduler, chain)
    credential = Credential.generate()
    registry.create(credential.address, credential)
    chat = FakeChat()

    async def scenario():
        handle = scheduler.start(credential.address, credential, chat)
        await asyncio.sleep(0)
        await handler.dispatch(chat, "remove_wallet", [credential.address.lower()])
        await asyncio.wait_for(handle.wait(), 1)

    asyncio.run(scenario())
    assert not scheduler.is_monitoring(credential.address)
    assert registry.get(credential.address).status is WalletStatus.REMOVED
    assert chat.messages == [f"❌ Wallet {credential.address} removed from monitoring"]


def test_remove_unknown_wallet_says_not_found(registry, chain) -> None:
    credential = Credential.generate()
    registry.create(credential.address, credential)
    handler = CommandHandler(registry, MonitorScheduler(IdleWatcher()), chain)
    chat = FakeChat()
    missing = "0x" + "ab" * 20

    asyncio.run(handler.dispatch(chat, "remove_wallet", [missing]))

    assert chat.messages == [f"⚠️ Wallet {missing} not found"]
    assert registry.get(credential.address).status is WalletStatus.CREATED
