from __future__ import annotations

import os
from dataclasses import dataclass
from dotenv import load_dotenv

from .project_constants import DEFAULT_RPC_URL, POLL_INTERVAL_S


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    database_url: str
    bot_token: str | None = None
    poll_interval_s: float = POLL_INTERVAL_S
    chain_id: int | None = None

    @staticmethod
    def from_env(rpc_url_override: str | None = None) -> "Settings":
        load_dotenv()

        # If user provides --rpc-url, trust it.
        rpc_url = rpc_url_override or os.getenv("RPC_URL", "").strip() or DEFAULT_RPC_URL

        interval_raw = os.getenv("POLL_INTERVAL_S", "").strip()
        try:
            poll_interval_s = float(interval_raw) if interval_raw else POLL_INTERVAL_S
        except ValueError:
            raise RuntimeError(f"POLL_INTERVAL_S must be a number, got {interval_raw!r}")
        if poll_interval_s <= 0:
            raise RuntimeError("POLL_INTERVAL_S must be positive.")

        chain_id_raw = os.getenv("CHAIN_ID", "").strip()
        try:
            chain_id = int(chain_id_raw, 0) if chain_id_raw else None
        except ValueError:
            raise RuntimeError(f"CHAIN_ID must be an integer, got {chain_id_raw!r}")

        return Settings(
            rpc_url=rpc_url,
            database_url=_database_url_from_env(),
            bot_token=os.getenv("BOT_TOKEN", "").strip() or None,
            poll_interval_s=poll_interval_s,
            chain_id=chain_id,
        )

    def require_bot_token(self) -> str:
        if not self.bot_token:
            raise RuntimeError("Missing BOT_TOKEN. Put it in .env or export it.")
        return self.bot_token


def _database_url_from_env() -> str:
    env_url = os.getenv("DATABASE_URL", "").strip()
    if env_url:
        return env_url

    # Otherwise build a Postgres URL from the split DB_* variables.
    parts = {k: os.getenv(k, "").strip() for k in ("DB_USER", "DB_PASS", "DB_HOST", "DB_NAME")}
    if all(parts.values()):
        return (
            f"postgresql+psycopg://{parts['DB_USER']}:{parts['DB_PASS']}"
            f"@{parts['DB_HOST']}/{parts['DB_NAME']}?sslmode=require"
        )

    return "sqlite:///wallets.db"
