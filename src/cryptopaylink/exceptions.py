"""Error taxonomy for payment verification and reconciliation."""


class CryptoPayLinkError(Exception):
    """Base class for all domain errors."""


class PriceUnavailable(CryptoPayLinkError):
    """The quote source returned no usable price for a symbol."""

    def __init__(self, symbol: str, reason: str = "no price returned"):
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"Price unavailable for {symbol!r}: {reason}")


class UpstreamError(CryptoPayLinkError):
    """Transport failure or non-2xx response from the quote source."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class UnsupportedAssetError(CryptoPayLinkError):
    """No adapter is configured for a (chain, currency) pair."""

    def __init__(self, chain: str, currency: str):
        self.chain = chain
        self.currency = currency
        super().__init__(f"No verification adapter for {currency} on {chain}")


class ChainQueryError(CryptoPayLinkError):
    """RPC or network failure while reading chain history."""

    def __init__(self, method: str, message: str):
        self.method = method
        super().__init__(f"{method}: {message}")


class DuplicateTransactionError(CryptoPayLinkError):
    """A transaction hash is already claimed by a different payment intent."""

    def __init__(self, transaction_hash: str, intent_id: str, claimed_by: str):
        self.transaction_hash = transaction_hash
        self.intent_id = intent_id
        self.claimed_by = claimed_by
        super().__init__(
            f"Transaction {transaction_hash} is already claimed by payment {claimed_by}"
        )


class MissingSenderError(CryptoPayLinkError):
    """The payment intent has no buyer wallet to match against."""

    def __init__(self, intent_id: str):
        self.intent_id = intent_id
        super().__init__(f"Payment {intent_id} has no buyer wallet address")


class PaymentNotFoundError(CryptoPayLinkError):
    def __init__(self, intent_id: str):
        self.intent_id = intent_id
        super().__init__(f"Payment {intent_id} not found")


class ProductNotFoundError(CryptoPayLinkError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found or inactive")
