from __future__ import annotations

import argparse
import asyncio
import logging

from .commands import CommandHandler, render_wallets_csv
from .config import Settings
from .errors import MinterError
from .mint import DropClaimer, MintCoordinator
from .rpc import ChainClient
from .scheduler import MonitorScheduler
from .store import WalletRegistry
from .telegram import TelegramBot
from .watcher import BalanceWatcher


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    # httpx logs every request at INFO, including the bot token in the URL.
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def serve(settings: Settings, bot_token: str, timeout_s: float) -> None:
    log = logging.getLogger("run")

    registry = WalletRegistry(settings.database_url)
    registry.create_schema()
    chain = ChainClient(settings.rpc_url, timeout_s=timeout_s)
    coordinator = MintCoordinator(
        DropClaimer(settings.rpc_url, chain_id=settings.chain_id, timeout_s=timeout_s)
    )
    watcher = BalanceWatcher(
        chain, coordinator, registry, poll_interval_s=settings.poll_interval_s
    )
    scheduler = MonitorScheduler(watcher)
    handler = CommandHandler(registry, scheduler, chain)
    bot = TelegramBot(bot_token, timeout_s=timeout_s)

    log.info("RPC URL          : %s", settings.rpc_url)
    log.info("Poll interval    : %ss", settings.poll_interval_s)
    log.info("🚀 Bot is running...")
    try:
        await bot.run_polling(handler.dispatch)
    finally:
        await scheduler.shutdown()
        await bot.aclose()
        await chain.aclose()
        registry.close()


def cmd_run(args: argparse.Namespace) -> int:
    settings = Settings.from_env(rpc_url_override=args.rpc_url)
    bot_token = settings.require_bot_token()
    try:
        asyncio.run(serve(settings, bot_token, args.timeout))
    except KeyboardInterrupt:
        logging.getLogger("run").info("Stopped.")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    settings = Settings.from_env(rpc_url_override=args.rpc_url)
    registry = WalletRegistry(settings.database_url)
    try:
        records = registry.list_active()
    finally:
        registry.close()

    with open(args.out, "w", encoding="utf-8") as f:
        f.write(render_wallets_csv(records))
    print(f"📤 Exported {len(records)} wallet(s) to {args.out}")
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    settings = Settings.from_env(rpc_url_override=args.rpc_url)
    registry = WalletRegistry(settings.database_url)
    try:
        registry.create_schema()
    finally:
        registry.close()
    print("✅ wallets table ready")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="astar-nft-minter",
        description="Telegram bot that funds-watches generated Astar wallets and mints an NFT for each.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=60.0, help="HTTP timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("run", help="Start the Telegram bot and serve commands.")
    r.set_defaults(func=cmd_run)

    e = sub.add_parser("export", help="Write active wallets to a CSV file.")
    e.add_argument("--out", default="wallets.csv", help="CSV output path.")
    e.set_defaults(func=cmd_export)

    i = sub.add_parser("init-db", help="Create the wallets table if it is missing.")
    i.set_defaults(func=cmd_init_db)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    try:
        code = args.func(args)
    except (RuntimeError, MinterError) as e:
        raise SystemExit(f"error: {e}")
    raise SystemExit(code)
