"""
Solana payment verification.
Matches SOL transfers using per-account pre/post balance deltas.
"""

import time
from decimal import Decimal
from typing import Any

import structlog
from solders.pubkey import Pubkey  # type: ignore

from cryptopaylink.exceptions import ChainQueryError

from .interfaces import Unverified, VerificationQuery, VerificationResult, Verified
from .rpc import JsonRpcClient

logger = structlog.get_logger(__name__)

LAMPORTS_PER_SOL = Decimal(1_000_000_000)


def _is_valid_pubkey(address: str) -> bool:
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


def _account_keys(tx_detail: dict[str, Any]) -> list[str]:
    """
    Full account list aligned with meta.preBalances/postBalances.

    Versioned transactions append addresses loaded from lookup tables after
    the static keys: writable first, then readonly.
    """
    message = tx_detail.get("transaction", {}).get("message", {})
    keys = [
        key if isinstance(key, str) else key.get("pubkey", "")
        for key in message.get("accountKeys", [])
    ]
    loaded = (tx_detail.get("meta") or {}).get("loadedAddresses") or {}
    keys.extend(loaded.get("writable", []))
    keys.extend(loaded.get("readonly", []))
    return keys


class SolanaBalanceDeltaAdapter:
    """
    Verifies native SOL payments on Solana.

    A transaction matches when, in that same transaction, the receiver's
    balance grew by the expected quantity (within tolerance) and the sender's
    balance shrank. The sender's exact debit is not compared because it also
    pays network fees.
    """

    def __init__(
        self,
        rpc: JsonRpcClient,
        signature_limit: int = 50,
        tolerance: float = 0.001,
        commitment: str = "confirmed",
    ):
        self.rpc = rpc
        self.signature_limit = signature_limit
        self.tolerance = Decimal(str(tolerance))
        self.commitment = commitment

    async def verify_payment(self, query: VerificationQuery) -> VerificationResult:
        log = logger.bind(
            receiver=query.receiver_address,
            sender=query.sender_address,
            expected=query.expected_quantity,
        )
        for address in (query.receiver_address, query.sender_address):
            if not _is_valid_pubkey(address):
                log.warning("invalid_solana_address", address=address)
                return Unverified({"reason": "invalid_address", "address": address})

        try:
            return await self._search(query, log)
        except ChainQueryError as e:
            log.error("solana_rpc_failed", method=e.method, error=str(e))
            return Unverified({"error": str(e), "method": e.method})
        except (KeyError, IndexError, TypeError, ValueError) as e:
            log.error("solana_tx_parse_failed", error=str(e), exc_info=True)
            return Unverified({"error": f"unparseable transaction data: {e}"})

    async def _search(self, query: VerificationQuery, log: Any) -> VerificationResult:
        signatures = await self.rpc.call(
            "getSignaturesForAddress",
            [
                query.receiver_address,
                {"limit": self.signature_limit, "commitment": self.commitment},
            ],
        ) or []

        cutoff_ms = time.time() * 1000 - query.time_window_ms
        recent = [
            sig
            for sig in signatures
            if sig.get("err") is None
            and sig.get("blockTime")
            and sig["blockTime"] * 1000 > cutoff_ms
        ]
        recent.sort(key=lambda sig: sig["blockTime"], reverse=True)

        expected = Decimal(str(query.expected_quantity))
        inspected: list[dict[str, Any]] = []

        for sig_info in recent:
            signature = sig_info["signature"]
            tx_detail = await self.rpc.call(
                "getTransaction",
                [
                    signature,
                    {
                        "encoding": "json",
                        "commitment": self.commitment,
                        "maxSupportedTransactionVersion": 0,
                    },
                ],
            )
            candidate = self._evaluate(
                tx_detail, query.sender_address, query.receiver_address, expected
            )
            candidate.update(signature=signature, block_time=sig_info["blockTime"])
            inspected.append(candidate)

            if candidate["reason"] == "match":
                log.info(
                    "payment_verified",
                    chain="solana",
                    transaction_hash=signature,
                    receiver_delta=candidate["receiver_delta"],
                    sender_delta=candidate["sender_delta"],
                )
                return Verified(
                    transaction_hash=signature,
                    diagnostic={
                        "receiver_delta": candidate["receiver_delta"],
                        "sender_delta": candidate["sender_delta"],
                        "expected": query.expected_quantity,
                    },
                )

        log.info(
            "payment_not_found",
            chain="solana",
            total_signatures=len(signatures),
            inspected=len(inspected),
        )
        return Unverified(
            {
                "total_signatures": len(signatures),
                "cutoff_ms": int(cutoff_ms),
                "expected": query.expected_quantity,
                "candidates": inspected,
            }
        )

    def _evaluate(
        self,
        tx_detail: dict[str, Any] | None,
        sender: str,
        receiver: str,
        expected: Decimal,
    ) -> dict[str, Any]:
        if not tx_detail:
            return {"reason": "transaction_unavailable"}

        meta = tx_detail.get("meta") or {}
        if meta.get("err") is not None:
            return {"reason": "transaction_failed"}
        pre_balances = meta.get("preBalances")
        post_balances = meta.get("postBalances")
        if not pre_balances or not post_balances:
            return {"reason": "balances_missing"}

        keys = _account_keys(tx_detail)
        if sender not in keys or receiver not in keys:
            return {"reason": "party_not_in_transaction"}
        sender_idx = keys.index(sender)
        receiver_idx = keys.index(receiver)
        if sender_idx == receiver_idx:
            return {"reason": "self_transfer"}

        receiver_delta = (
            Decimal(post_balances[receiver_idx] - pre_balances[receiver_idx])
            / LAMPORTS_PER_SOL
        )
        sender_delta = (
            Decimal(post_balances[sender_idx] - pre_balances[sender_idx])
            / LAMPORTS_PER_SOL
        )
        result = {
            "receiver_delta": float(receiver_delta),
            "sender_delta": float(sender_delta),
        }

        if receiver_delta <= 0 or abs(receiver_delta - expected) >= self.tolerance:
            result["reason"] = "amount_mismatch"
        elif sender_delta >= 0:
            result["reason"] = "sender_not_debited"
        else:
            result["reason"] = "match"
        return result
