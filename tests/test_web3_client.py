from unittest.mock import MagicMock

import pytest
import requests
from eth_account import Account
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from chain_deployer.chain.params import FunctionParameters
from chain_deployer.chain.web3_client import Web3ChainClient
from chain_deployer.config import AppConfig
from chain_deployer.errors import ConfigError, RemoteRejectedError, TransientChainError
from chain_deployer.orchestrator import RetryPolicy

PRIVATE_KEY = "0x" + "4c" * 32
TARGET = "0x" + "12" * 20
TX_HASH = b"\xaa" * 32


@pytest.fixture
def w3() -> MagicMock:
    mock = MagicMock()
    mock.eth.account = Account
    mock.eth.get_transaction_count.return_value = 7
    mock.eth.gas_price = 10
    mock.eth.send_raw_transaction.return_value = TX_HASH
    mock.eth.wait_for_transaction_receipt.return_value = {
        "status": 1,
        "transactionHash": TX_HASH,
        "contractAddress": TARGET,
    }
    return mock


@pytest.fixture
def client(w3: MagicMock) -> Web3ChainClient:
    return Web3ChainClient(w3, PRIVATE_KEY, chain_id=296, receipt_timeout=5)


def test_account_address_from_key(client: Web3ChainClient) -> None:
    assert client.account_address == Account.from_key(PRIVATE_KEY).address


def test_create_contract_appends_constructor_args(client: Web3ChainClient, w3: MagicMock) -> None:
    args = FunctionParameters().add_uint256(5)

    created = client.create_contract("0x6080", args, gas_limit=123_456, initial_funds=3)

    assert created.address == TARGET
    assert created.tx_hash == "0x" + "aa" * 32
    w3.eth.send_raw_transaction.assert_called_once()
    w3.eth.wait_for_transaction_receipt.assert_called_once_with(TX_HASH, timeout=5)
    w3.eth.get_transaction_count.assert_called_once_with(client.account_address, "pending")


def test_call_function_returns_receipt_status(client: Web3ChainClient) -> None:
    result = client.call_function(TARGET, "unpause")
    assert result.ok
    assert result.receipt_status == 1


def test_reverted_receipt_is_rejected(client: Web3ChainClient, w3: MagicMock) -> None:
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "transactionHash": TX_HASH}
    with pytest.raises(RemoteRejectedError):
        client.call_function(TARGET, "unpause")


def test_missing_contract_address_is_rejected(client: Web3ChainClient, w3: MagicMock) -> None:
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "transactionHash": TX_HASH}
    with pytest.raises(RemoteRejectedError):
        client.create_contract("0x6080")


@pytest.mark.parametrize(
    "error, expected",
    [
        (TimeExhausted("no receipt"), TransientChainError),
        (requests.exceptions.ConnectionError("down"), TransientChainError),
        (requests.exceptions.ReadTimeout("slow"), TransientChainError),
        (ContractLogicError("execution reverted"), RemoteRejectedError),
        (ValueError({"code": -32000, "message": "insufficient funds"}), RemoteRejectedError),
    ],
)
def test_errors_are_classified(client: Web3ChainClient, w3: MagicMock, error, expected) -> None:
    w3.eth.wait_for_transaction_receipt.side_effect = error
    with pytest.raises(expected) as excinfo:
        client.call_function(TARGET, "unpause")
    assert excinfo.value.__cause__ is error


def test_query_decodes_result(client: Web3ChainClient, w3: MagicMock) -> None:
    w3.eth.call.return_value = bytes(12) + bytes.fromhex("12" * 20)

    value = client.query_function(TARGET, "TOKEN_ID")

    assert value.lower() == TARGET
    call = w3.eth.call.call_args[0][0]
    assert call["from"] == client.account_address


def test_chain_id_fetched_when_not_configured(w3: MagicMock) -> None:
    w3.eth.chain_id = 31337
    client = Web3ChainClient(w3, PRIVATE_KEY)
    assert client.chain_id == 31337


def test_get_balance(client: Web3ChainClient, w3: MagicMock) -> None:
    w3.eth.get_balance.return_value = 42
    assert client.get_balance() == 42


def test_from_config_requires_rpc_url() -> None:
    config = AppConfig.from_dict({"networks": {"nowhere": {"rpc_url": None}}})
    config.deployment.private_key = PRIVATE_KEY
    with pytest.raises(ConfigError):
        Web3ChainClient.from_config(config, "nowhere")


def test_from_config_requires_private_key() -> None:
    config = AppConfig.from_dict({"networks": {"local": {"rpc_url": "http://127.0.0.1:1"}}})
    with pytest.raises(ConfigError):
        Web3ChainClient.from_config(config, "local")


def test_receipt_timeout_retry_waits_on_the_same_transaction(client: Web3ChainClient, w3: MagicMock) -> None:
    receipt = {"status": 1, "transactionHash": TX_HASH}
    w3.eth.wait_for_transaction_receipt.side_effect = [TimeExhausted("slow block"), receipt]
    w3.eth.get_transaction.return_value = {"hash": TX_HASH}

    result = RetryPolicy(max_attempts=2).execute(
        lambda: client.call_function(TARGET, "unpause"), label="unpause"
    )

    assert result.ok
    w3.eth.send_raw_transaction.assert_called_once()
    w3.eth.get_transaction_count.assert_called_once()
    w3.eth.get_transaction.assert_called_once_with(TX_HASH)
    waited = [c.args[0] for c in w3.eth.wait_for_transaction_receipt.call_args_list]
    assert waited == [TX_HASH, TX_HASH]


def test_dropped_transaction_is_rebroadcast_with_same_nonce(client: Web3ChainClient, w3: MagicMock) -> None:
    w3.eth.send_raw_transaction.side_effect = [requests.exceptions.ConnectionError("reset"), TX_HASH]
    w3.eth.get_transaction.side_effect = TransactionNotFound("unknown")

    result = RetryPolicy(max_attempts=2).execute(
        lambda: client.call_function(TARGET, "unpause"), label="unpause"
    )

    assert result.ok
    first, second = (c.args[0] for c in w3.eth.send_raw_transaction.call_args_list)
    assert first == second
    w3.eth.get_transaction_count.assert_called_once()


def test_rejected_transaction_is_forgotten(client: Web3ChainClient, w3: MagicMock) -> None:
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "transactionHash": TX_HASH}
    with pytest.raises(RemoteRejectedError):
        client.call_function(TARGET, "unpause")

    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "transactionHash": TX_HASH}
    client.call_function(TARGET, "unpause")

    assert w3.eth.send_raw_transaction.call_count == 2
    assert w3.eth.get_transaction_count.call_count == 2
    w3.eth.get_transaction.assert_not_called()


def test_call_function_returns_simulated_value(client: Web3ChainClient, w3: MagicMock) -> None:
    pair = "0x" + "34" * 20
    w3.eth.call.return_value = bytes(12) + bytes.fromhex(pair[2:])

    result = client.call_function(TARGET, "createPair", gas_limit=2_900_000, returns=("address",))

    assert result.ok
    assert result.result.lower() == pair
    simulated = w3.eth.call.call_args[0][0]
    assert simulated["gas"] == 2_900_000
    assert simulated["from"] == client.account_address


def test_create_account_funds_new_address(client: Web3ChainClient, w3: MagicMock) -> None:
    created = client.create_account(initial_balance=1_000)

    assert created.address == Account.from_key(created.private_key).address
    assert created.tx_hash == "0x" + "aa" * 32
    w3.eth.send_raw_transaction.assert_called_once()


def test_create_account_retry_funds_the_same_account(client: Web3ChainClient, w3: MagicMock) -> None:
    w3.eth.send_raw_transaction.side_effect = [requests.exceptions.ConnectionError("reset"), TX_HASH]
    w3.eth.get_transaction.side_effect = TransactionNotFound("unknown")
    generated = []
    original_create = Account.create

    def create(*args, **kwargs):
        account = original_create(*args, **kwargs)
        generated.append(account)
        return account

    w3.eth.account = MagicMock(wraps=Account)
    w3.eth.account.create.side_effect = create

    created = RetryPolicy(max_attempts=2).execute(
        lambda: client.create_account(initial_balance=1_000), label="create account"
    )

    assert len(generated) == 1
    assert created.address == generated[0].address


def test_create_account_without_balance_sends_nothing(client: Web3ChainClient, w3: MagicMock) -> None:
    created = client.create_account()

    assert created.tx_hash is None
    w3.eth.send_raw_transaction.assert_not_called()


def test_from_config_does_not_contact_rpc() -> None:
    config = AppConfig.from_dict({"networks": {"local": {"rpc_url": "http://127.0.0.1:9", "chain_id": 31337}}})
    config.deployment.private_key = PRIVATE_KEY

    client = Web3ChainClient.from_config(config, "local")

    assert client.account_address == Account.from_key(PRIVATE_KEY).address
    assert client.chain_id == 31337
