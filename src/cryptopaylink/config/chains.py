from pydantic import BaseModel, Field, HttpUrl, model_validator


class TokenContract(BaseModel):
    """ERC-20 contract used for stable-token payments."""

    address: str
    decimals: int = 6


class ChainSettings(BaseModel):
    """RPC endpoints and matching parameters for each supported ledger."""

    # Solana
    solana_rpc_url: HttpUrl = "https://api.devnet.solana.com"  # type: ignore
    solana_commitment: str = "confirmed"
    signature_limit: int = 50  # bounds RPC cost, not a correctness guarantee
    sol_tolerance: float = 0.001

    # Ethereum
    ethereum_rpc_url: HttpUrl = "https://ethereum-rpc.publicnode.com"  # type: ignore
    eth_tolerance: float = 0.001
    token_tolerance: float = 0.01
    eth_avg_block_time_ms: int = 12_000
    eth_block_batch_size: int = 20
    token_contracts: dict[str, TokenContract] = Field(
        default_factory=lambda: {
            "USDC": TokenContract(
                address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", decimals=6
            ),
            "USDT": TokenContract(
                address="0xdAC17F958D2ee523a2206206994597C13D831ec7", decimals=6
            ),
        }
    )

    # Transport
    rpc_timeout_seconds: float = 15.0

    @model_validator(mode="after")
    def validate_chain_config(self) -> "ChainSettings":
        """Reject tolerances and limits that would make matching meaningless."""
        for name in ("sol_tolerance", "eth_tolerance", "token_tolerance"):
            if getattr(self, name) <= 0:
                raise ValueError(f"CRYPTOPAYLINK_CHAINS__{name.upper()} must be positive")
        if self.signature_limit <= 0:
            raise ValueError("CRYPTOPAYLINK_CHAINS__SIGNATURE_LIMIT must be positive")
        if self.eth_avg_block_time_ms <= 0:
            raise ValueError(
                "CRYPTOPAYLINK_CHAINS__ETH_AVG_BLOCK_TIME_MS must be positive"
            )
        if self.rpc_timeout_seconds <= 0:
            raise ValueError("CRYPTOPAYLINK_CHAINS__RPC_TIMEOUT_SECONDS must be positive")
        return self
