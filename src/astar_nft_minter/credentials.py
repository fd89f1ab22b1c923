from __future__ import annotations

from dataclasses import dataclass, field

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount


@dataclass(frozen=True)
class Credential:
    """Signing material for one wallet. The key is kept out of repr()."""

    address: str
    private_key: str = field(repr=False)

    @staticmethod
    def generate() -> "Credential":
        acct = Account.create()
        return Credential(address=acct.address, private_key="0x" + bytes(acct.key).hex())

    def account(self) -> LocalAccount:
        """Raises ValueError if the stored key is not a valid secp256k1 key."""
        return Account.from_key(self.private_key)

    def is_valid(self) -> bool:
        if not self.private_key or not isinstance(self.private_key, str):
            return False
        try:
            return self.account().address.lower() == self.address.lower()
        except (ValueError, TypeError):
            return False


def sign_message(credential: Credential, message: str) -> str:
    signed = credential.account().sign_message(encode_defunct(text=message))
    return "0x" + bytes(signed.signature).hex()


def recover_signer(message: str, signature: str) -> str:
    return Account.recover_message(encode_defunct(text=message), signature=signature)
