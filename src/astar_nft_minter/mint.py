from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Sequence

from web3 import Web3

from .credentials import Credential
from .errors import MintError
from .project_constants import NATIVE_CURRENCY, NFT_CONTRACTS

log = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MAX_UINT256 = 2**256 - 1

_CLAIM_CONDITION = {
    "name": "condition",
    "type": "tuple",
    "components": [
        {"name": "startTimestamp", "type": "uint256"},
        {"name": "maxClaimableSupply", "type": "uint256"},
        {"name": "supplyClaimed", "type": "uint256"},
        {"name": "quantityLimitPerWallet", "type": "uint256"},
        {"name": "merkleRoot", "type": "bytes32"},
        {"name": "pricePerToken", "type": "uint256"},
        {"name": "currency", "type": "address"},
        {"name": "metadata", "type": "string"},
    ],
}

# Subset of the ERC-721 drop ABI needed for a public claim.
DROP_ABI: List[Dict[str, Any]] = [
    {
        "name": "getActiveClaimConditionId",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "getClaimConditionById",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "_conditionId", "type": "uint256"}],
        "outputs": [_CLAIM_CONDITION],
    },
    {
        "name": "claim",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "_receiver", "type": "address"},
            {"name": "_quantity", "type": "uint256"},
            {"name": "_currency", "type": "address"},
            {"name": "_pricePerToken", "type": "uint256"},
            {
                "name": "_allowlistProof",
                "type": "tuple",
                "components": [
                    {"name": "proof", "type": "bytes32[]"},
                    {"name": "quantityLimitPerWallet", "type": "uint256"},
                    {"name": "pricePerToken", "type": "uint256"},
                    {"name": "currency", "type": "address"},
                ],
            },
            {"name": "_data", "type": "bytes"},
        ],
        "outputs": [],
    },
]


class Claimer(Protocol):
    def claim(self, credential: Credential, contract_address: str, quantity: int) -> str:
        ...


@dataclass(frozen=True)
class MintReceipt:
    contract_address: str
    tx_hash: str
    success: bool = True


def choose_contract(contracts: Sequence[str], rng: random.Random) -> str:
    if not contracts:
        raise ValueError("No NFT contracts configured.")
    return contracts[rng.randrange(len(contracts))]


class DropClaimer:
    """Claims from an ERC-721 drop contract with a signed raw transaction."""

    def __init__(
        self,
        rpc_url: str,
        chain_id: int | None = None,
        timeout_s: float = 60.0,
        receipt_timeout_s: float = 180.0,
    ) -> None:
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_s}))
        self.chain_id = chain_id
        self.receipt_timeout_s = receipt_timeout_s

    def tx_params(self, sender: str, value: int, nonce: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {"from": sender, "value": value, "nonce": nonce}
        # Without a pinned chain id web3 asks the node for it.
        if self.chain_id is not None:
            params["chainId"] = self.chain_id
        return params

    def claim(self, credential: Credential, contract_address: str, quantity: int = 1) -> str:
        acct = credential.account()
        contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=DROP_ABI
        )

        condition_id = contract.functions.getActiveClaimConditionId().call()
        condition = contract.functions.getClaimConditionById(condition_id).call()
        price, currency = int(condition[5]), condition[6]
        value = price * quantity if currency.lower() == NATIVE_CURRENCY.lower() else 0

        # Public phase: empty proof, the contract falls back to the condition price.
        allowlist_proof = ([], 0, MAX_UINT256, ZERO_ADDRESS)
        tx = contract.functions.claim(
            acct.address, quantity, currency, price, allowlist_proof, b""
        ).build_transaction(
            self.tx_params(acct.address, value, self.w3.eth.get_transaction_count(acct.address))
        )
        signed = acct.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout_s)
        if receipt["status"] != 1:
            raise MintError(f"Claim transaction {Web3.to_hex(tx_hash)} reverted")
        return Web3.to_hex(tx_hash)


class MintCoordinator:
    def __init__(
        self,
        claimer: Claimer,
        contracts: Sequence[str] = NFT_CONTRACTS,
        rng: random.Random | None = None,
    ) -> None:
        self.claimer = claimer
        self.contracts = tuple(contracts)
        self.rng = rng or random.Random()

    async def mint(self, credential: Credential) -> MintReceipt:
        """Claims one NFT. A failure is final: nothing here retries."""
        try:
            contract_address = choose_contract(self.contracts, self.rng)
        except ValueError as e:
            raise MintError(str(e)) from e
        log.info("Minting NFT from %s for %s...", contract_address, credential.address)
        try:
            tx_hash = await asyncio.to_thread(
                self.claimer.claim, credential, contract_address, 1
            )
        except MintError:
            raise
        except Exception as e:
            raise MintError(f"Claim on {contract_address} failed: {e}") from e
        log.info("NFT minted for %s (tx %s)", credential.address, tx_hash)
        return MintReceipt(contract_address=contract_address, tx_hash=tx_hash)
