from __future__ import annotations

from pathlib import Path

import pytest

from astar_nft_minter.mint import MintCoordinator
from astar_nft_minter.project_constants import MIN_BALANCE
from astar_nft_minter.store import WalletRegistry
from astar_nft_minter.watcher import BalanceWatcher
from fakes import TEST_CONTRACT, FakeChain, FakeClaimer


@pytest.fixture
def registry(tmp_path: Path) -> WalletRegistry:
    reg = WalletRegistry(f"sqlite:///{tmp_path / 'wallets.db'}")
    reg.create_schema()
    yield reg
    reg.close()


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def claimer() -> FakeClaimer:
    return FakeClaimer()


@pytest.fixture
def make_watcher(chain: FakeChain, claimer: FakeClaimer, registry: WalletRegistry):
    def _make(poll_interval_s: float = 0.01, threshold: int = MIN_BALANCE) -> BalanceWatcher:
        coordinator = MintCoordinator(claimer, contracts=(TEST_CONTRACT,))
        return BalanceWatcher(
            chain, coordinator, registry, threshold=threshold, poll_interval_s=poll_interval_s
        )

    return _make
