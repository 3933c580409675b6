"""Chain adapters and price quotes for on-chain payment verification."""

from .ethereum_provider import Erc20TransferAdapter, EthereumNativeAdapter
from .interfaces import (
    ChainAdapter,
    Unverified,
    VerificationQuery,
    VerificationResult,
    Verified,
)
from .pricing import FixedRatePriceOracle, PriceOracle, to_crypto_quantity
from .rpc import JsonRpcClient
from .solana_provider import SolanaBalanceDeltaAdapter

__all__ = [
    "ChainAdapter",
    "Erc20TransferAdapter",
    "EthereumNativeAdapter",
    "FixedRatePriceOracle",
    "JsonRpcClient",
    "PriceOracle",
    "SolanaBalanceDeltaAdapter",
    "Unverified",
    "VerificationQuery",
    "VerificationResult",
    "Verified",
    "to_crypto_quantity",
]
