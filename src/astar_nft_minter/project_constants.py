"""
Fixed parameters of the Astar NFT minter.

These values define when a wallet qualifies and what it claims.
Changing them changes behaviour for every monitored wallet.
"""

# Drop contracts a funded wallet may claim from (one chosen at random)
NFT_CONTRACTS = (
    "0x434DFB1A21dd42860ad36A6a0bb4E4a1D7Bf55C9",
    "0xb6B80160cD08AbE679dE2Ff7d7bc0348f6D52a29",
    "0x4DA05305e74Fc5459caf601200E1a8e9a8e56aa3",
    "0x67bDc801e2aDF5D7301F48314a5f5035338b189f",
    "0xe5B371c43bbf4103C3D0d020096a5055579ECbc6",
    "0xa52bfb7BbA6e40a2F0Bc1177787D58bA915bB5aA",
    "0x1D98101247FB761c9aDC4e2EaD6aA6b6a00c170e",
)

DEFAULT_RPC_URL = "https://evm.astar.network"

# ASTR uses 18 decimals
ASTR_DECIMALS = 18

# Minimum balance to trigger a mint (raw units)
MIN_BALANCE = 10 * (10**ASTR_DECIMALS)  # 10 ASTR in wei

POLL_INTERVAL_S = 10.0

VERIFICATION_MESSAGE = "wallet verification"

# Drop contracts use this pseudo-address for the chain's native currency
NATIVE_CURRENCY = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

EXPORT_FILENAME = "wallets.csv"
