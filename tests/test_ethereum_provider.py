import time

import pytest

from cryptopaylink.crypto.ethereum_provider import (
    TRANSFER_TOPIC,
    Erc20TransferAdapter,
    EthereumNativeAdapter,
    address_topic,
)
from cryptopaylink.crypto.interfaces import Unverified, VerificationQuery, Verified
from cryptopaylink.crypto.rpc import JsonRpcClient

from .conftest import FakeRpcNode

SENDER = "0x52908400098527886E0F7030069857D2E4169EE7"
RECEIVER = "0x8617E340B3D01FA5F11F306F4090FD50E238070D"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
LATEST_BLOCK = 1_000


def uint256(value: int) -> str:
    return "0x" + format(value, "064x")


def query(expected: float, asset: str = "ETH", window_ms: int = 60_000) -> VerificationQuery:
    return VerificationQuery(
        sender_address=SENDER,
        receiver_address=RECEIVER,
        asset_symbol=asset,
        expected_quantity=expected,
        time_window_ms=window_ms,
    )


def transfer_log(tx_hash: str, raw_amount: int, block: int = 998, **extra):
    entry = {
        "address": USDC.lower(),
        "topics": [TRANSFER_TOPIC, address_topic(SENDER), address_topic(RECEIVER)],
        "data": uint256(raw_amount),
        "blockNumber": hex(block),
        "logIndex": "0x3",
        "transactionHash": tx_hash,
        "removed": False,
    }
    entry.update(extra)
    return entry


def token_adapter(rpc_client_factory, logs):
    node = FakeRpcNode(
        {
            "eth_blockNumber": lambda params: hex(LATEST_BLOCK),
            "eth_getLogs": lambda params: logs,
        }
    )
    rpc = JsonRpcClient(rpc_client_factory(node), "https://eth.test")
    adapter = Erc20TransferAdapter(
        rpc, contract_address=USDC, decimals=6, tolerance=0.01, avg_block_time_ms=12_000
    )
    return adapter, node


def test_address_topic_pads_to_32_bytes():
    topic = address_topic(SENDER)

    assert len(topic) == 66
    assert topic == "0x" + "0" * 24 + SENDER[2:].lower()
    with pytest.raises(ValueError):
        address_topic("0x1234")


@pytest.mark.asyncio
async def test_usdc_transfer_log_matches(rpc_client_factory):
    adapter, node = token_adapter(rpc_client_factory, [transfer_log("0xusdc", 5_000_000)])

    result = await adapter.verify_payment(query(5.0, asset="USDC"))

    assert isinstance(result, Verified)
    assert result.transaction_hash == "0xusdc"
    assert result.diagnostic["amount"] == 5.0


@pytest.mark.asyncio
async def test_log_filter_carries_both_parties(rpc_client_factory):
    adapter, node = token_adapter(rpc_client_factory, [])

    await adapter.verify_payment(query(5.0, asset="USDC", window_ms=120_000))

    [(_, [log_filter])] = [call for call in node.calls if call[0] == "eth_getLogs"]
    assert log_filter["address"] == USDC
    assert log_filter["topics"] == [
        TRANSFER_TOPIC,
        address_topic(SENDER),
        address_topic(RECEIVER),
    ]
    # 120s window at 12s per block
    assert log_filter["fromBlock"] == hex(LATEST_BLOCK - 10)


@pytest.mark.asyncio
async def test_token_amount_outside_tolerance(rpc_client_factory):
    adapter, _ = token_adapter(rpc_client_factory, [transfer_log("0xshort", 4_950_000)])

    result = await adapter.verify_payment(query(5.0, asset="USDC"))

    assert isinstance(result, Unverified)
    assert result.diagnostic["candidates"][0]["amount"] == pytest.approx(4.95)


@pytest.mark.asyncio
async def test_token_rounding_within_tolerance(rpc_client_factory):
    # 100 USD at 1.0003 USD/USDC, truncated to 6 decimals by the wallet
    adapter, _ = token_adapter(rpc_client_factory, [transfer_log("0xround", 99_970_008)])

    result = await adapter.verify_payment(query(100 / 1.0003, asset="USDC"))

    assert isinstance(result, Verified)


@pytest.mark.asyncio
async def test_removed_logs_are_ignored(rpc_client_factory):
    adapter, _ = token_adapter(
        rpc_client_factory, [transfer_log("0xreorged", 5_000_000, removed=True)]
    )

    result = await adapter.verify_payment(query(5.0, asset="USDC"))

    assert isinstance(result, Unverified)
    assert result.diagnostic["candidates"] == []


@pytest.mark.asyncio
async def test_newest_log_wins(rpc_client_factory):
    adapter, _ = token_adapter(
        rpc_client_factory,
        [
            transfer_log("0xolder", 5_000_000, block=990),
            transfer_log("0xnewer", 5_000_000, block=999),
        ],
    )

    result = await adapter.verify_payment(query(5.0, asset="USDC"))

    assert isinstance(result, Verified)
    assert result.transaction_hash == "0xnewer"


@pytest.mark.asyncio
async def test_token_invalid_sender_address(rpc_client_factory):
    adapter, node = token_adapter(rpc_client_factory, [])

    result = await adapter.verify_payment(
        VerificationQuery("buyer.eth", RECEIVER, "USDC", 5.0, 60_000)
    )

    assert isinstance(result, Unverified)
    assert result.diagnostic["reason"] == "invalid_address"
    assert node.calls == []


def native_node(transactions_by_block, receipts, timestamp=None):
    block_time = timestamp if timestamp is not None else int(time.time())

    def get_block(params):
        number = int(params[0], 16)
        return {
            "number": params[0],
            "timestamp": hex(block_time),
            "transactions": transactions_by_block.get(number, []),
        }

    return FakeRpcNode(
        {
            "eth_blockNumber": lambda params: hex(LATEST_BLOCK),
            "eth_getBlockByNumber": get_block,
            "eth_getTransactionReceipt": lambda params: receipts.get(params[0]),
        }
    )


def eth_tx(tx_hash, value_wei, sender=SENDER, to=RECEIVER, block=999):
    return {
        "hash": tx_hash,
        "from": sender.lower(),
        "to": to.lower(),
        "value": hex(value_wei),
        "blockNumber": hex(block),
    }


def native_adapter(rpc_client_factory, node):
    rpc = JsonRpcClient(rpc_client_factory(node), "https://eth.test")
    return EthereumNativeAdapter(rpc, tolerance=0.001, block_batch_size=2)


@pytest.mark.asyncio
async def test_native_transfer_matches(rpc_client_factory):
    node = native_node(
        {999: [eth_tx("0xeth", 500_000_000_000_000_000)]},
        {"0xeth": {"status": "0x1"}},
    )

    result = await native_adapter(rpc_client_factory, node).verify_payment(query(0.5))

    assert isinstance(result, Verified)
    assert result.transaction_hash == "0xeth"
    # 60s window at 12s per block: blocks 995..1000 scanned newest-first
    scanned = [int(p[0], 16) for m, p in node.calls if m == "eth_getBlockByNumber"]
    assert scanned[:2] == [1000, 999]


@pytest.mark.asyncio
async def test_native_transfer_from_other_sender(rpc_client_factory):
    stranger = "0x0000000000000000000000000000000000000bad"
    node = native_node(
        {999: [eth_tx("0xeth", 500_000_000_000_000_000, sender=stranger)]},
        {"0xeth": {"status": "0x1"}},
    )

    result = await native_adapter(rpc_client_factory, node).verify_payment(query(0.5))

    assert isinstance(result, Unverified)
    assert result.diagnostic["candidates"][0]["reason"] == "sender_mismatch"
    assert "eth_getTransactionReceipt" not in node.methods()


@pytest.mark.asyncio
async def test_native_reverted_transfer_is_rejected(rpc_client_factory):
    node = native_node(
        {999: [eth_tx("0xeth", 500_000_000_000_000_000)]},
        {"0xeth": {"status": "0x0"}},
    )

    result = await native_adapter(rpc_client_factory, node).verify_payment(query(0.5))

    assert isinstance(result, Unverified)
    assert result.diagnostic["candidates"][0]["reason"] == "transaction_reverted"


@pytest.mark.asyncio
async def test_native_amount_outside_tolerance(rpc_client_factory):
    node = native_node(
        {999: [eth_tx("0xeth", 480_000_000_000_000_000)]},
        {"0xeth": {"status": "0x1"}},
    )

    result = await native_adapter(rpc_client_factory, node).verify_payment(query(0.5))

    assert isinstance(result, Unverified)
    assert result.diagnostic["candidates"][0]["reason"] == "amount_mismatch"


@pytest.mark.asyncio
async def test_native_blocks_older_than_window_stop_scan(rpc_client_factory):
    node = native_node(
        {999: [eth_tx("0xeth", 500_000_000_000_000_000)]},
        {"0xeth": {"status": "0x1"}},
        timestamp=int(time.time()) - 3600,
    )

    result = await native_adapter(rpc_client_factory, node).verify_payment(query(0.5))

    assert isinstance(result, Unverified)
    assert result.diagnostic["candidates"] == []


@pytest.mark.asyncio
async def test_native_rpc_outage_is_absorbed(rpc_client_factory):
    node = native_node({}, {})
    node.status_code = 502

    result = await native_adapter(rpc_client_factory, node).verify_payment(query(0.5))

    assert isinstance(result, Unverified)
    assert result.diagnostic["method"] == "eth_blockNumber"


@pytest.mark.asyncio
async def test_token_log_query_error_is_absorbed(rpc_client_factory):
    node = FakeRpcNode({"eth_blockNumber": lambda params: hex(LATEST_BLOCK)})
    adapter = Erc20TransferAdapter(
        JsonRpcClient(rpc_client_factory(node), "https://eth.test"), contract_address=USDC
    )

    result = await adapter.verify_payment(query(5.0, asset="USDC"))

    assert isinstance(result, Unverified)
    assert result.diagnostic["method"] == "eth_getLogs"
    assert "Method not found" in result.diagnostic["error"]
    assert node.methods() == ["eth_blockNumber", "eth_getLogs"]


@pytest.mark.asyncio
async def test_token_rpc_outage_is_absorbed(rpc_client_factory):
    adapter, node = token_adapter(rpc_client_factory, [transfer_log("0xusdc", 5_000_000)])
    node.status_code = 503

    result = await adapter.verify_payment(query(5.0, asset="USDC"))

    assert isinstance(result, Unverified)
    assert result.diagnostic["method"] == "eth_blockNumber"
    assert "HTTP 503" in result.diagnostic["error"]
