from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List

import httpx

from .credentials import Credential, recover_signer, sign_message
from .errors import ChainQueryError, VerificationError
from .project_constants import ASTR_DECIMALS, VERIFICATION_MESSAGE

log = logging.getLogger(__name__)


def to_tokens(raw_amount: int) -> Decimal:
    return Decimal(raw_amount) / (10**ASTR_DECIMALS)


class ChainClient:
    """Balance lookups over EVM JSON-RPC plus the local signing check."""

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.AsyncClient(timeout=timeout_s, transport=transport)
        self._next_id = 0

    async def aclose(self) -> None:
        await self.client.aclose()

    async def get_balance(self, address: str, block: str = "latest") -> int:
        """Returns the native balance of `address` in wei."""
        data = await self._call("eth_getBalance", [address, block])
        result = data.get("result")
        if not isinstance(result, str):
            raise ChainQueryError(f"eth_getBalance returned no result for {address}")
        try:
            return int(result, 16)
        except ValueError as e:
            raise ChainQueryError(f"eth_getBalance returned {result!r}") from e

    async def verify_signing(self, credential: Credential) -> str:
        """
        Signs the fixed verification message and checks that the signature
        recovers to the wallet address. Returns the signature.
        """
        try:
            signature = sign_message(credential, VERIFICATION_MESSAGE)
            signer = recover_signer(VERIFICATION_MESSAGE, signature)
        except (ValueError, TypeError) as e:
            raise VerificationError(f"Could not sign with {credential.address}: {e}") from e

        if not signature:
            raise VerificationError(f"No signature produced for {credential.address}")
        if signer.lower() != credential.address.lower():
            raise VerificationError(
                f"Signature recovers to {signer}, expected {credential.address}"
            )
        return signature

    async def _call(self, method: str, params: List[Any]) -> Dict[str, Any]:
        self._next_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": method,
            "params": params,
        }
        try:
            resp = await self.client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChainQueryError(f"{method} failed: {e}") from e
        if "error" in data:
            raise ChainQueryError(f"RPC error: {data['error']}")
        return data
