"""
Ethereum payment verification.
Native ETH transfers via block scans and ERC-20 payments via Transfer logs.
"""

import time
from decimal import Decimal
from typing import Any

import structlog

from cryptopaylink.exceptions import ChainQueryError

from .interfaces import Unverified, VerificationQuery, VerificationResult, Verified
from .rpc import JsonRpcClient

logger = structlog.get_logger(__name__)

WEI_PER_ETH = Decimal(10**18)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def address_topic(address: str) -> str:
    """Left-pad a 20-byte address to a 32-byte indexed topic."""
    raw = address.lower().removeprefix("0x")
    if len(raw) != 40:
        raise ValueError(f"Not an EVM address: {address!r}")
    int(raw, 16)
    return "0x" + raw.rjust(64, "0")


def _is_evm_address(address: str) -> bool:
    try:
        address_topic(address)
    except ValueError:
        return False
    return True


def _hex_to_int(value: str | None) -> int:
    if not value or value == "0x":
        return 0
    return int(value, 16)


class EvmBlockRange:
    """Maps a time window to a block range using an assumed block time."""

    def __init__(self, rpc: JsonRpcClient, avg_block_time_ms: int = 12_000):
        self.rpc = rpc
        self.avg_block_time_ms = avg_block_time_ms

    async def resolve(self, time_window_ms: int) -> tuple[int, int]:
        latest = _hex_to_int(await self.rpc.call("eth_blockNumber"))
        blocks_to_check = time_window_ms // self.avg_block_time_ms
        return max(0, latest - blocks_to_check), latest


class EthereumNativeAdapter:
    """
    Verifies native ETH payments.

    Scans the window's blocks newest-first for transactions addressed to the
    receiver, then requires the declared sender, an amount within tolerance
    and a successful receipt.
    """

    def __init__(
        self,
        rpc: JsonRpcClient,
        tolerance: float = 0.001,
        avg_block_time_ms: int = 12_000,
        block_batch_size: int = 20,
    ):
        self.rpc = rpc
        self.tolerance = Decimal(str(tolerance))
        self.block_range = EvmBlockRange(rpc, avg_block_time_ms)
        self.block_batch_size = block_batch_size

    async def verify_payment(self, query: VerificationQuery) -> VerificationResult:
        log = logger.bind(
            receiver=query.receiver_address,
            sender=query.sender_address,
            expected=query.expected_quantity,
            asset=query.asset_symbol,
        )
        for address in (query.receiver_address, query.sender_address):
            if not _is_evm_address(address):
                log.warning("invalid_evm_address", address=address)
                return Unverified({"reason": "invalid_address", "address": address})

        try:
            return await self._search(query, log)
        except ChainQueryError as e:
            log.error("ethereum_rpc_failed", method=e.method, error=str(e))
            return Unverified({"error": str(e), "method": e.method})
        except (KeyError, TypeError, ValueError) as e:
            log.error("ethereum_tx_parse_failed", error=str(e), exc_info=True)
            return Unverified({"error": f"unparseable transaction data: {e}"})

    async def _search(self, query: VerificationQuery, log: Any) -> VerificationResult:
        from_block, to_block = await self.block_range.resolve(query.time_window_ms)
        cutoff_s = time.time() - query.time_window_ms / 1000
        receiver = query.receiver_address.lower()
        sender = query.sender_address.lower()
        expected = Decimal(str(query.expected_quantity))
        inspected: list[dict[str, Any]] = []

        block_numbers = list(range(to_block, from_block - 1, -1))
        for start in range(0, len(block_numbers), self.block_batch_size):
            chunk = block_numbers[start : start + self.block_batch_size]
            blocks = await self.rpc.batch(
                [("eth_getBlockByNumber", [hex(n), True]) for n in chunk]
            )
            for block in blocks:
                if not block:
                    continue
                if _hex_to_int(block.get("timestamp")) < cutoff_s:
                    # Blocks are newest-first; everything after is older
                    return self._not_found(log, from_block, to_block, inspected)

                for tx in block.get("transactions", []):
                    if not isinstance(tx, dict) or (tx.get("to") or "").lower() != receiver:
                        continue
                    candidate = await self._evaluate(tx, sender, expected)
                    inspected.append(candidate)
                    if candidate["reason"] == "match":
                        log.info(
                            "payment_verified",
                            chain="ethereum",
                            transaction_hash=tx["hash"],
                            amount=candidate["amount"],
                        )
                        return Verified(
                            transaction_hash=tx["hash"],
                            diagnostic={
                                "amount": candidate["amount"],
                                "block_number": candidate["block_number"],
                                "expected": query.expected_quantity,
                            },
                        )

        return self._not_found(log, from_block, to_block, inspected)

    async def _evaluate(
        self, tx: dict[str, Any], sender: str, expected: Decimal
    ) -> dict[str, Any]:
        amount = Decimal(_hex_to_int(tx.get("value"))) / WEI_PER_ETH
        candidate = {
            "transaction_hash": tx["hash"],
            "block_number": _hex_to_int(tx.get("blockNumber")),
            "from": tx.get("from"),
            "amount": float(amount),
        }
        if (tx.get("from") or "").lower() != sender:
            candidate["reason"] = "sender_mismatch"
        elif abs(amount - expected) >= self.tolerance:
            candidate["reason"] = "amount_mismatch"
        else:
            receipt = await self.rpc.call("eth_getTransactionReceipt", [tx["hash"]])
            if not receipt:
                candidate["reason"] = "receipt_unavailable"
            elif _hex_to_int(receipt.get("status")) != 1:
                candidate["reason"] = "transaction_reverted"
            else:
                candidate["reason"] = "match"
        return candidate

    @staticmethod
    def _not_found(
        log: Any, from_block: int, to_block: int, inspected: list[dict[str, Any]]
    ) -> Unverified:
        log.info(
            "payment_not_found",
            chain="ethereum",
            from_block=from_block,
            to_block=to_block,
            inspected=len(inspected),
        )
        return Unverified(
            {"from_block": from_block, "to_block": to_block, "candidates": inspected}
        )


class Erc20TransferAdapter:
    """
    Verifies ERC-20 token payments (USDC, USDT).

    Sender and receiver are pushed into the log filter as indexed topics, so
    every returned log already involves both parties; only the amount is
    checked afterwards.
    """

    def __init__(
        self,
        rpc: JsonRpcClient,
        contract_address: str,
        decimals: int = 6,
        tolerance: float = 0.01,
        avg_block_time_ms: int = 12_000,
    ):
        self.rpc = rpc
        self.contract_address = contract_address
        self.scale = Decimal(10**decimals)
        self.tolerance = Decimal(str(tolerance))
        self.block_range = EvmBlockRange(rpc, avg_block_time_ms)

    async def verify_payment(self, query: VerificationQuery) -> VerificationResult:
        log = logger.bind(
            receiver=query.receiver_address,
            sender=query.sender_address,
            expected=query.expected_quantity,
            asset=query.asset_symbol,
            contract=self.contract_address,
        )
        try:
            topics = [
                TRANSFER_TOPIC,
                address_topic(query.sender_address),
                address_topic(query.receiver_address),
            ]
        except ValueError as e:
            log.warning("invalid_evm_address", error=str(e))
            return Unverified({"reason": "invalid_address", "error": str(e)})

        try:
            return await self._search(query, topics, log)
        except ChainQueryError as e:
            log.error("ethereum_rpc_failed", method=e.method, error=str(e))
            return Unverified({"error": str(e), "method": e.method})
        except (KeyError, TypeError, ValueError) as e:
            log.error("erc20_log_parse_failed", error=str(e), exc_info=True)
            return Unverified({"error": f"unparseable log data: {e}"})

    async def _search(
        self, query: VerificationQuery, topics: list[str], log: Any
    ) -> VerificationResult:
        from_block, to_block = await self.block_range.resolve(query.time_window_ms)
        logs = await self.rpc.call(
            "eth_getLogs",
            [
                {
                    "address": self.contract_address,
                    "fromBlock": hex(from_block),
                    "toBlock": "latest",
                    "topics": topics,
                }
            ],
        ) or []

        live = [entry for entry in logs if not entry.get("removed")]
        live.sort(
            key=lambda entry: (
                _hex_to_int(entry.get("blockNumber")),
                _hex_to_int(entry.get("logIndex")),
            ),
            reverse=True,
        )

        expected = Decimal(str(query.expected_quantity))
        inspected: list[dict[str, Any]] = []
        for entry in live:
            amount = Decimal(_hex_to_int(entry.get("data"))) / self.scale
            candidate = {
                "transaction_hash": entry["transactionHash"],
                "block_number": _hex_to_int(entry.get("blockNumber")),
                "amount": float(amount),
            }
            inspected.append(candidate)
            if abs(amount - expected) < self.tolerance:
                log.info(
                    "payment_verified",
                    chain="ethereum",
                    transaction_hash=entry["transactionHash"],
                    amount=float(amount),
                )
                return Verified(
                    transaction_hash=entry["transactionHash"],
                    diagnostic={
                        "amount": float(amount),
                        "block_number": candidate["block_number"],
                        "expected": query.expected_quantity,
                    },
                )

        log.info(
            "payment_not_found",
            chain="ethereum",
            from_block=from_block,
            to_block=to_block,
            logs=len(live),
        )
        return Unverified(
            {"from_block": from_block, "to_block": to_block, "candidates": inspected}
        )
