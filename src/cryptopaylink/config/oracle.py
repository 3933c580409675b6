from pydantic import BaseModel, Field, HttpUrl


class OracleSettings(BaseModel):
    """Price quote source configuration."""

    base_url: HttpUrl = "https://api.coingecko.com/api/v3"  # type: ignore
    timeout_seconds: float = 10.0

    # Fixed rates are for local development only (USD per 1 unit)
    use_fixed_rates: bool = False
    fixed_rates: dict[str, float] = Field(
        default_factory=lambda: {
            "solana": 100.0,
            "ethereum": 2500.0,
            "tether": 1.0,
            "usd-coin": 1.0,
        }
    )
