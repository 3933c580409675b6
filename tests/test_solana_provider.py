import time

import pytest
from solders.pubkey import Pubkey

from cryptopaylink.crypto.interfaces import Unverified, VerificationQuery, Verified
from cryptopaylink.crypto.rpc import JsonRpcClient
from cryptopaylink.crypto.solana_provider import SolanaBalanceDeltaAdapter

from .conftest import FakeRpcNode

SOL = 1_000_000_000
SENDER = str(Pubkey.new_unique())
RECEIVER = str(Pubkey.new_unique())
OTHER = str(Pubkey.new_unique())
SYSTEM_PROGRAM = "11111111111111111111111111111111"


def now_s(offset: int = 0) -> int:
    return int(time.time()) + offset


def transfer_tx(keys, pre, post, err=None, loaded=None):
    return {
        "slot": 1234,
        "meta": {
            "err": err,
            "fee": 5000,
            "preBalances": pre,
            "postBalances": post,
            "loadedAddresses": loaded or {"writable": [], "readonly": []},
        },
        "transaction": {"message": {"accountKeys": keys}},
    }


def make_adapter(rpc_client_factory, signatures, transactions):
    node = FakeRpcNode(
        {
            "getSignaturesForAddress": lambda params: signatures,
            "getTransaction": lambda params: transactions.get(params[0]),
        }
    )
    rpc = JsonRpcClient(rpc_client_factory(node), "https://solana.test")
    return SolanaBalanceDeltaAdapter(rpc, signature_limit=50, tolerance=0.001), node


def query(expected: float = 5.0, sender: str = SENDER) -> VerificationQuery:
    return VerificationQuery(
        sender_address=sender,
        receiver_address=RECEIVER,
        asset_symbol="SOL",
        expected_quantity=expected,
        time_window_ms=30 * 60 * 1000,
    )


@pytest.mark.asyncio
async def test_verifies_transfer_within_tolerance(rpc_client_factory):
    # Receiver +5.0003 SOL, sender -5.0021 SOL (amount plus fees)
    tx = transfer_tx(
        [SENDER, RECEIVER, SYSTEM_PROGRAM],
        [10 * SOL, 1 * SOL, 1],
        [10 * SOL - 5_002_100_000, 1 * SOL + 5_000_300_000, 1],
    )
    adapter, node = make_adapter(
        rpc_client_factory,
        [{"signature": "sig-match", "blockTime": now_s(-60), "err": None}],
        {"sig-match": tx},
    )

    result = await adapter.verify_payment(query(5.0))

    assert isinstance(result, Verified)
    assert result.transaction_hash == "sig-match"
    assert result.diagnostic["receiver_delta"] == pytest.approx(5.0003)
    assert result.diagnostic["sender_delta"] == pytest.approx(-5.0021)
    assert node.calls[0][1][0] == RECEIVER
    assert node.calls[0][1][1]["limit"] == 50


@pytest.mark.asyncio
async def test_amount_outside_tolerance_is_unverified(rpc_client_factory):
    tx = transfer_tx(
        [SENDER, RECEIVER],
        [10 * SOL, 1 * SOL],
        [10 * SOL - 4_502_000_000, 1 * SOL + 4_500_000_000],
    )
    adapter, _ = make_adapter(
        rpc_client_factory,
        [{"signature": "sig-short", "blockTime": now_s(-60), "err": None}],
        {"sig-short": tx},
    )

    result = await adapter.verify_payment(query(5.0))

    assert isinstance(result, Unverified)
    assert not result.verified
    [candidate] = result.diagnostic["candidates"]
    assert candidate["signature"] == "sig-short"
    assert candidate["reason"] == "amount_mismatch"
    assert candidate["receiver_delta"] == pytest.approx(4.5)


@pytest.mark.asyncio
async def test_sender_and_receiver_must_be_in_same_transaction(rpc_client_factory):
    # Right amount arrives from someone else; the buyer pays in a different tx
    from_stranger = transfer_tx(
        [OTHER, RECEIVER], [10 * SOL, 0], [10 * SOL - 5_000_005_000, 5 * SOL]
    )
    buyer_elsewhere = transfer_tx(
        [SENDER, OTHER], [10 * SOL, 0], [10 * SOL - 5_000_005_000, 5 * SOL]
    )
    adapter, _ = make_adapter(
        rpc_client_factory,
        [
            {"signature": "sig-a", "blockTime": now_s(-30), "err": None},
            {"signature": "sig-b", "blockTime": now_s(-40), "err": None},
        ],
        {"sig-a": from_stranger, "sig-b": buyer_elsewhere},
    )

    result = await adapter.verify_payment(query(5.0))

    assert isinstance(result, Unverified)
    reasons = {c["signature"]: c["reason"] for c in result.diagnostic["candidates"]}
    assert reasons == {
        "sig-a": "party_not_in_transaction",
        "sig-b": "party_not_in_transaction",
    }


@pytest.mark.asyncio
async def test_sender_balance_must_decrease(rpc_client_factory):
    # Sender listed in the tx but not debited (e.g. a third party paid)
    tx = transfer_tx(
        [OTHER, SENDER, RECEIVER],
        [20 * SOL, 3 * SOL, 0],
        [20 * SOL - 5_000_005_000, 3 * SOL, 5 * SOL],
    )
    adapter, _ = make_adapter(
        rpc_client_factory,
        [{"signature": "sig-3p", "blockTime": now_s(-30), "err": None}],
        {"sig-3p": tx},
    )

    result = await adapter.verify_payment(query(5.0))

    assert isinstance(result, Unverified)
    assert result.diagnostic["candidates"][0]["reason"] == "sender_not_debited"


@pytest.mark.asyncio
async def test_old_and_failed_signatures_are_not_fetched(rpc_client_factory):
    tx = transfer_tx([SENDER, RECEIVER], [10 * SOL, 0], [5 * SOL - 5000, 5 * SOL])
    adapter, node = make_adapter(
        rpc_client_factory,
        [
            {"signature": "sig-failed", "blockTime": now_s(-10), "err": {"InstructionError": [0, "Custom"]}},
            {"signature": "sig-old", "blockTime": now_s(-3 * 3600), "err": None},
            {"signature": "sig-no-time", "blockTime": None, "err": None},
        ],
        {"sig-failed": tx, "sig-old": tx, "sig-no-time": tx},
    )

    result = await adapter.verify_payment(query(5.0))

    assert isinstance(result, Unverified)
    assert result.diagnostic["candidates"] == []
    assert "getTransaction" not in node.methods()


@pytest.mark.asyncio
async def test_candidates_processed_newest_first(rpc_client_factory):
    older = transfer_tx([SENDER, RECEIVER], [10 * SOL, 0], [5 * SOL - 5000, 5 * SOL])
    newer = transfer_tx([SENDER, RECEIVER], [20 * SOL, 0], [15 * SOL - 5000, 5 * SOL])
    adapter, node = make_adapter(
        rpc_client_factory,
        [
            {"signature": "sig-older", "blockTime": now_s(-600), "err": None},
            {"signature": "sig-newer", "blockTime": now_s(-60), "err": None},
        ],
        {"sig-older": older, "sig-newer": newer},
    )

    result = await adapter.verify_payment(query(5.0))

    assert isinstance(result, Verified)
    assert result.transaction_hash == "sig-newer"
    fetched = [params[0] for method, params in node.calls if method == "getTransaction"]
    assert fetched == ["sig-newer"]


@pytest.mark.asyncio
async def test_receiver_from_lookup_table(rpc_client_factory):
    # v0 transaction: receiver is loaded from an address lookup table
    tx = transfer_tx(
        [SENDER, SYSTEM_PROGRAM],
        [10 * SOL, 1, 2 * SOL],
        [5 * SOL - 5000, 1, 7 * SOL],
        loaded={"writable": [RECEIVER], "readonly": []},
    )
    adapter, _ = make_adapter(
        rpc_client_factory,
        [{"signature": "sig-v0", "blockTime": now_s(-60), "err": None}],
        {"sig-v0": tx},
    )

    result = await adapter.verify_payment(query(5.0))

    assert isinstance(result, Verified)
    assert result.transaction_hash == "sig-v0"


@pytest.mark.asyncio
async def test_rpc_failure_is_absorbed(rpc_client_factory):
    node = FakeRpcNode({})
    node.status_code = 503
    adapter = SolanaBalanceDeltaAdapter(
        JsonRpcClient(rpc_client_factory(node), "https://solana.test")
    )

    result = await adapter.verify_payment(query(5.0))

    assert isinstance(result, Unverified)
    assert "HTTP 503" in result.diagnostic["error"]


@pytest.mark.asyncio
async def test_rpc_error_object_is_absorbed(rpc_client_factory):
    node = FakeRpcNode({})
    adapter = SolanaBalanceDeltaAdapter(
        JsonRpcClient(rpc_client_factory(node), "https://solana.test")
    )

    result = await adapter.verify_payment(query(5.0))

    assert isinstance(result, Unverified)
    assert result.diagnostic["method"] == "getSignaturesForAddress"


@pytest.mark.asyncio
async def test_invalid_sender_address(rpc_client_factory):
    adapter, node = make_adapter(rpc_client_factory, [], {})

    result = await adapter.verify_payment(query(5.0, sender="not-a-solana-key"))

    assert isinstance(result, Unverified)
    assert result.diagnostic["reason"] == "invalid_address"
    assert node.calls == []
