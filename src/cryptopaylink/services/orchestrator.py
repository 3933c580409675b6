"""
Routes a payment to the chain adapter for its (chain, currency) pair.
"""

import httpx
import structlog

from cryptopaylink.config import Settings
from cryptopaylink.crypto.ethereum_provider import (
    Erc20TransferAdapter,
    EthereumNativeAdapter,
)
from cryptopaylink.crypto.interfaces import (
    ChainAdapter,
    VerificationQuery,
    VerificationResult,
)
from cryptopaylink.crypto.rpc import JsonRpcClient
from cryptopaylink.crypto.solana_provider import SolanaBalanceDeltaAdapter
from cryptopaylink.db import PaymentIntent, Product
from cryptopaylink.exceptions import MissingSenderError, UnsupportedAssetError

logger = structlog.get_logger(__name__)

AdapterKey = tuple[str, str]


class VerificationOrchestrator:
    """
    Holds an explicit adapter registry keyed by (chain, currency).

    Adapters and their RPC clients are constructed by the caller and passed
    in, so tests can register fakes for any pair.
    """

    def __init__(
        self,
        adapters: dict[AdapterKey, ChainAdapter],
        time_window_ms: int = 30 * 60 * 1000,
    ):
        self.adapters = {
            (chain.lower(), currency.upper()): adapter
            for (chain, currency), adapter in adapters.items()
        }
        self.time_window_ms = time_window_ms

    def supports(self, chain: str, currency: str) -> bool:
        return (chain.lower(), currency.upper()) in self.adapters

    def adapter_for(self, chain: str, currency: str) -> ChainAdapter:
        try:
            return self.adapters[(chain.lower(), currency.upper())]
        except KeyError:
            raise UnsupportedAssetError(chain, currency) from None

    def build_query(self, intent: PaymentIntent, product: Product) -> VerificationQuery:
        if not intent.buyer_wallet:
            raise MissingSenderError(intent.id)
        return VerificationQuery(
            sender_address=intent.buyer_wallet,
            receiver_address=product.recipient_wallet,
            asset_symbol=product.currency.upper(),
            expected_quantity=intent.amount_crypto,
            time_window_ms=self.time_window_ms,
        )

    async def verify(
        self, intent: PaymentIntent, product: Product
    ) -> VerificationResult:
        """
        Verify one intent against chain state.

        Raises:
            UnsupportedAssetError: no adapter for the product's chain/currency
            MissingSenderError: the intent has no buyer wallet
        """
        adapter = self.adapter_for(product.chain, product.currency)
        query = self.build_query(intent, product)
        logger.info(
            "verification_started",
            payment_id=intent.id,
            chain=product.chain,
            currency=product.currency,
            expected=query.expected_quantity,
        )
        return await adapter.verify_payment(query)


def build_orchestrator(
    settings: Settings, http_client: httpx.AsyncClient
) -> VerificationOrchestrator:
    """Wire the production adapters from settings over one shared HTTP client."""
    chains = settings.chains
    solana_rpc = JsonRpcClient(
        http_client, str(chains.solana_rpc_url), timeout=chains.rpc_timeout_seconds
    )
    ethereum_rpc = JsonRpcClient(
        http_client, str(chains.ethereum_rpc_url), timeout=chains.rpc_timeout_seconds
    )

    adapters: dict[AdapterKey, ChainAdapter] = {
        ("solana", "SOL"): SolanaBalanceDeltaAdapter(
            solana_rpc,
            signature_limit=chains.signature_limit,
            tolerance=chains.sol_tolerance,
            commitment=chains.solana_commitment,
        ),
        ("ethereum", "ETH"): EthereumNativeAdapter(
            ethereum_rpc,
            tolerance=chains.eth_tolerance,
            avg_block_time_ms=chains.eth_avg_block_time_ms,
            block_batch_size=chains.eth_block_batch_size,
        ),
    }
    for symbol, token in chains.token_contracts.items():
        adapters[("ethereum", symbol)] = Erc20TransferAdapter(
            ethereum_rpc,
            contract_address=token.address,
            decimals=token.decimals,
            tolerance=chains.token_tolerance,
            avg_block_time_ms=chains.eth_avg_block_time_ms,
        )

    logger.info("adapters_registered", pairs=sorted(f"{c}:{s}" for c, s in adapters))
    return VerificationOrchestrator(
        adapters, time_window_ms=settings.verification.time_window_ms
    )
