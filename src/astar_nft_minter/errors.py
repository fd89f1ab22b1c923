from __future__ import annotations


class MinterError(Exception):
    """Base class for every failure the minter reports."""


class VerificationError(MinterError):
    """A wallet could not prove it can sign messages."""


class ChainQueryError(MinterError):
    """A balance or other JSON-RPC call failed."""


class MintError(MinterError):
    """The claim transaction could not be sent or was reverted."""


class StoreError(MinterError):
    """A read or write against the wallet table failed."""


class NotificationError(MinterError):
    """The chat API rejected or failed to deliver a request."""
