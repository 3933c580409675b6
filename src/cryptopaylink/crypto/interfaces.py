"""
Protocol-based interface for blockchain payment verification.
Enables chain-agnostic verification across ledger models.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class VerificationQuery:
    """
    Expected payment, rebuilt for every verification attempt.

    All parties are required: matching on the receiver alone can be
    satisfied by anyone's transfer of the same amount.
    """

    sender_address: str
    receiver_address: str
    asset_symbol: str
    expected_quantity: float
    time_window_ms: int


@dataclass(frozen=True)
class Verified:
    """A transaction satisfying the adapter's match predicate was found."""

    transaction_hash: str
    diagnostic: dict[str, Any] = field(default_factory=dict)

    verified = True


@dataclass(frozen=True)
class Unverified:
    """No matching transaction (yet). The diagnostic is for logs only."""

    diagnostic: dict[str, Any] = field(default_factory=dict)

    verified = False


VerificationResult = Verified | Unverified


class ChainAdapter(Protocol):
    """
    Protocol for per-ledger payment verification.

    Example implementations:
    - SolanaBalanceDeltaAdapter: SOL transfers via pre/post account balances
    - EthereumNativeAdapter: ETH value transfers
    - Erc20TransferAdapter: ERC-20 Transfer event logs (USDC, USDT)
    """

    async def verify_payment(self, query: VerificationQuery) -> VerificationResult:
        """
        Searches recent chain history for a transfer matching the query.

        Implementation Notes:
            - MUST only read chain state; safe to call repeatedly
            - MUST match sender and receiver on the same transaction
            - MUST compare scaled decimal amounts, never raw integers
            - SHOULD return Unverified (not raise) on transient RPC failures
        """
        ...
