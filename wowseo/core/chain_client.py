"""
The chain client module provides read access to an EVM chain
for the indexer: block height, blocks with transactions, receipts and logs.
This implementation uses Web3.HTTPProvider.
"""

import logging
import os
import pprint
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, List, Mapping, Optional, Union

import requests
from dotenv import load_dotenv
from web3 import Web3
from web3.exceptions import BlockNotFound, TimeExhausted, Web3RPCError
from web3.middleware import ExtraDataToPOAMiddleware

from wowseo.core.types import ChainBlock, ChainLog, ChainReceipt, ChainTransaction
from wowseo.utils.crypto_utils import bytes_to_hex_str_auto
from wowseo.utils.error_utils import (
    ConfigurationError,
    TransientChainError,
    check_for_missing_env_vars,
)
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


# Settings for the connection retry for Web3.HTTPProvider.
# Maximum number of retries.
_W3_CONNECTION_MAX_RETRIES = 5
# Linear backoff in seconds.
_W3_CONNECTION_BACKOFF = 1
# HTTP request timeout in seconds.
_W3_REQUEST_TIMEOUT = 30

# RPC error messages that indicate a transient node condition.
_TRANSIENT_RPC_MARKERS = (
    "rate limit",
    "too many requests",
    "timeout",
    "timed out",
    "header not found",
    "try again",
    "capacity",
)

# Hosted node URL prefixes per network.
_ALCHEMY_URLS = {
    "mainnet": "https://eth-mainnet.g.alchemy.com/v2/",
    "sepolia": "https://eth-sepolia.g.alchemy.com/v2/",
    "polygon": "https://polygon-mainnet.g.alchemy.com/v2/",
    "arbitrum": "https://arb-mainnet.g.alchemy.com/v2/",
    "optimism": "https://opt-mainnet.g.alchemy.com/v2/",
}
_INFURA_URLS = {
    "mainnet": "https://mainnet.infura.io/v3/",
    "sepolia": "https://sepolia.infura.io/v3/",
    "polygon": "https://polygon-mainnet.infura.io/v3/",
    "arbitrum": "https://arbitrum-mainnet.infura.io/v3/",
    "optimism": "https://optimism-mainnet.infura.io/v3/",
}
_PUBLIC_URLS = {
    "mainnet": "https://eth.llamarpc.com",
    "sepolia": "https://ethereum-sepolia-rpc.publicnode.com",
    "polygon": "https://polygon-rpc.com",
    "arbitrum": "https://arbitrum-one-rpc.publicnode.com",
    "optimism": "https://optimism-rpc.publicnode.com",
}
_NETWORK_ALIASES = {
    "ethereum": "mainnet",
    "eth": "mainnet",
    "matic": "polygon",
}


def normalize_network(network: str) -> str:
    """
    Canonical lowercase network name.

    :param network: The network name or alias.
    :return: The canonical name.
    """
    name = network.strip().lower()
    return _NETWORK_ALIASES.get(name, name)


def resolve_rpc_url(network: str, env: Optional[Mapping[str, str]] = None) -> str:
    """
    Resolve the node RPC URL for a network.
    An explicit WOWSEO_RPC_URL_<NETWORK> variable wins,
    then an Alchemy key, then an Infura project id, then a public node.

    :param network: The network name.
    :param env: The environment mapping. Defaults to os.environ.
    :return: The RPC URL.
    """
    if env is None:
        env = os.environ
    name = normalize_network(network)
    override = env.get("WOWSEO_RPC_URL_" + name.upper().replace("-", "_"))
    if override:
        return override
    alchemy_key = env.get("ALCHEMY_API_KEY")
    if alchemy_key and name in _ALCHEMY_URLS:
        return _ALCHEMY_URLS[name] + alchemy_key
    infura_id = env.get("INFURA_PROJECT_ID")
    if infura_id and name in _INFURA_URLS:
        return _INFURA_URLS[name] + infura_id
    if name in _PUBLIC_URLS:
        return _PUBLIC_URLS[name]
    raise ConfigurationError(f"No RPC URL configured for network '{network}'")


def connect_http_web3(
    node_rpc_url: str,
    network: str,
    inject_poa_middleware: bool = False,
    request_timeout: int = _W3_REQUEST_TIMEOUT,
) -> Web3:
    """
    Connect to a node over HTTP with retries and linear backoff.

    :param node_rpc_url: Node RPC URL.
    :param network: The network name, used in messages.
    :param inject_poa_middleware: True if the ExtraDataToPOAMiddleware
        is required to read blocks from the network.
        This option is required for Polygon PoS, BNB, and other chains.
    :param request_timeout: HTTP request timeout in seconds.
    :return: The connected Web3 object.
        Raises TransientChainError if the node stays unreachable.
    """
    backoff = 0
    for retry_count in range(_W3_CONNECTION_MAX_RETRIES):
        w3 = Web3(
            Web3.HTTPProvider(node_rpc_url, request_kwargs={"timeout": request_timeout})
        )
        if w3.is_connected():
            break
        _LOG.warning(
            "connect_http_web3(): Attempt %s failed to connect to %s",
            retry_count + 1,
            network,
        )
        backoff += _W3_CONNECTION_BACKOFF
        time.sleep(backoff)
    else:
        # The URL may embed an API key; report the network only.
        raise TransientChainError(
            f"Failed to connect to the {network} node "
            f"after {_W3_CONNECTION_MAX_RETRIES} retries"
        )

    if inject_poa_middleware:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return w3


def get_bool_env_var(val: Optional[str], default=False) -> bool:
    """
    Parse a boolean environment value.

    :param val: The raw value.
    :param default: The value returned when val is None.
    :return: The boolean.
    """
    if val is None:
        return default
    return val.lower() in ["true", "1", "t", "y", "yes"]


def _is_transient_rpc_error(e: Exception) -> bool:
    message = str(e).lower()
    return any(marker in message for marker in _TRANSIENT_RPC_MARKERS)


@contextmanager
def translate_chain_errors(operation: str):
    """
    Re-raise provider failures that are worth retrying as TransientChainError.
    Anything else propagates unchanged.

    :param operation: The operation name used in error messages.
    """
    try:
        yield
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
        raise TransientChainError(f"{operation}: {e}") from e
    except requests.exceptions.HTTPError as e:
        status_code = e.response.status_code if e.response is not None else None
        if status_code is None or status_code == 429 or status_code >= 500:
            raise TransientChainError(f"{operation}: {e}") from e
        raise
    except (BlockNotFound, TimeExhausted) as e:
        # The node may lag behind the head it reported.
        raise TransientChainError(f"{operation}: {e}") from e
    except Web3RPCError as e:
        if _is_transient_rpc_error(e):
            raise TransientChainError(f"{operation}: {e}") from e
        raise


class ChainClient(ABC):
    """
    Read-only chain access used by the indexer.
    Implementations raise TransientChainError for retryable failures.
    """

    @abstractmethod
    def get_block_number(self) -> int:
        """
        Get the current chain head.

        :return: The latest block number.
        """

    @abstractmethod
    def get_block(self, block_number: int, full_transactions: bool = False) -> ChainBlock:
        """
        Get a block.

        :param block_number: The block number.
        :param full_transactions: If True, include the block's transactions.
        :return: The block.
        """

    @abstractmethod
    def get_block_receipts(self, block_number: int) -> Dict[str, ChainReceipt]:
        """
        Get the receipts of all transactions in a block.

        :param block_number: The block number.
        :return: The receipts keyed by transaction hash.
        """

    @abstractmethod
    def get_logs(
        self,
        from_block: int,
        to_block: int,
        addresses: Optional[List[str]] = None,
        topics: Optional[List[str]] = None,
    ) -> List[ChainLog]:
        """
        Get logs for an inclusive block range.

        :param from_block: The first block.
        :param to_block: The last block.
        :param addresses: Emitting contract addresses. None for any.
        :param topics: Accepted first topics (event signatures). None for any.
        :return: The logs ordered by block and log index.
        """


class Web3ChainClient(ChainClient):
    """
    Chain client over an existing Web3 object.
    """

    def __init__(self, w3: Web3, network: str):
        self.w3 = w3
        self.network = normalize_network(network)

    def get_block_number(self) -> int:
        with translate_chain_errors("get_block_number"):
            return int(self.w3.eth.block_number)

    def get_block(self, block_number: int, full_transactions: bool = False) -> ChainBlock:
        with translate_chain_errors(f"get_block({block_number})"):
            block = self.w3.eth.get_block(block_number, full_transactions=full_transactions)
        raw_txs = block.get("transactions", [])
        txs = []
        if full_transactions:
            txs = [self._convert_transaction(tx, block_number) for tx in raw_txs]
        return ChainBlock(
            number=int(block["number"]),
            block_hash=bytes_to_hex_str_auto(block["hash"]),
            parent_hash=bytes_to_hex_str_auto(block["parentHash"]),
            timestamp=int(block["timestamp"]),
            transactions=txs,
            transaction_count=len(raw_txs),
        )

    def get_block_receipts(self, block_number: int) -> Dict[str, ChainReceipt]:
        with translate_chain_errors(f"get_block_receipts({block_number})"):
            receipts = self.w3.eth.get_block_receipts(block_number)
        result = {}
        for receipt in receipts:
            tx_hash = bytes_to_hex_str_auto(receipt["transactionHash"])
            result[tx_hash] = ChainReceipt(
                tx_hash=tx_hash,
                gas_used=int(receipt["gasUsed"]),
                status=receipt.get("status"),
            )
        return result

    def get_logs(
        self,
        from_block: int,
        to_block: int,
        addresses: Optional[List[str]] = None,
        topics: Optional[List[str]] = None,
    ) -> List[ChainLog]:
        filter_params = {"fromBlock": from_block, "toBlock": to_block}
        if addresses:
            filter_params["address"] = [Web3.to_checksum_address(a) for a in addresses]
        if topics:
            # A nested list is an OR over the first topic position.
            filter_params["topics"] = [list(topics)]
        with translate_chain_errors(f"get_logs({from_block}, {to_block})"):
            logs = self.w3.eth.get_logs(filter_params)
        result = [
            ChainLog(
                block_number=int(log["blockNumber"]),
                tx_hash=bytes_to_hex_str_auto(log["transactionHash"]),
                log_index=int(log["logIndex"]),
                address=str(log["address"]).lower(),
                topics=[bytes_to_hex_str_auto(t) for t in log["topics"]],
                data=bytes_to_hex_str_auto(log["data"]) or "0x",
            )
            for log in logs
        ]
        result.sort(key=lambda log: (log.block_number, log.log_index))
        return result

    @staticmethod
    def _convert_transaction(tx, block_number: int) -> ChainTransaction:
        to_address = tx.get("to")
        return ChainTransaction(
            tx_hash=bytes_to_hex_str_auto(tx["hash"]),
            block_number=block_number,
            from_address=str(tx["from"]).lower(),
            # None for contract creations.
            to_address=str(to_address).lower() if to_address else None,
            value=int(tx.get("value", 0)),
            # Type 2 transactions report gasPrice as the effective price.
            gas_price=int(tx.get("gasPrice") or tx.get("maxFeePerGas") or 0),
            input=bytes_to_hex_str_auto(tx.get("input")) or "0x",
        )


class Web3HTTPChainClient(Web3ChainClient):
    """
    Chain client accessible using Web3.HTTPProvider.
    """

    def __init__(
        self,
        node_rpc_url: str,
        network: str,
        inject_poa_middleware: bool = False,
        request_timeout: int = _W3_REQUEST_TIMEOUT,
    ):
        """
        Initialize the client object.

        :param node_rpc_url: Node RPC URL.
        :param network: The network name the node serves.
        :param inject_poa_middleware: True if the ExtraDataToPOAMiddleware
            is required to read blocks from the network.
            This option is required for Polygon PoS, BNB, and other chains.
        :param request_timeout: HTTP request timeout in seconds.
        """
        self.node_rpc_url = node_rpc_url
        w3 = connect_http_web3(
            node_rpc_url, network, inject_poa_middleware, request_timeout
        )
        super().__init__(w3, network)

    @staticmethod
    def get_init_args_from_env(
        network: str, dotenv_path: Union[str, None] = None
    ) -> dict:
        # Load .env file if it exists.
        if dotenv_path:
            load_dotenv(dotenv_path, verbose=True, override=True)
        init_args = {
            "node_rpc_url": resolve_rpc_url(network),
            "network": network,
            "inject_poa_middleware": get_bool_env_var(
                os.getenv("WOWSEO_INJECT_POA_MIDDLEWARE", default="False")
            ),
        }
        check_for_missing_env_vars(init_args)
        _LOG.debug(
            "Web3HTTPChainClient.get_init_args_from_env(): network = %s, args =\n%s",
            network,
            pprint.pformat({k: v for k, v in init_args.items() if k != "node_rpc_url"}),
        )
        return init_args

    @staticmethod
    def create_instance_from_env(
        network: str, dotenv_path: Union[str, None] = None
    ) -> "Web3HTTPChainClient":
        return Web3HTTPChainClient(
            **Web3HTTPChainClient.get_init_args_from_env(network, dotenv_path)
        )
